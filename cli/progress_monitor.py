#!/usr/bin/env python3
"""
CLI Progress Monitor for DuoCast Jobs

Connects to the server's SSE stream and displays real-time progress with
visual formatting.

Usage:
    python -m cli.progress_monitor 1767268800000-3fa9c1d2
    python -m cli.progress_monitor --server http://localhost:5000 1767268800000-3fa9c1d2
"""

import argparse
import asyncio
import json
import sys

import aiohttp


# ANSI color codes
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"


def colored(text: str, color: str) -> str:
    """Apply color to text."""
    return f"{color}{text}{Colors.RESET}"


def format_duration(seconds: float) -> str:
    """Format duration as HH:MM:SS or MM:SS."""
    if seconds < 0:
        return "--:--"

    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)

    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


STAGE_LABELS = {
    "composing_scene": "Stage 1/2: SCENE COMPOSITION",
    "synthesizing_video": "Stage 2/2: VIDEO SYNTHESIS",
}


def format_event(event: dict) -> str:
    """Format event for display."""
    event_type = event.get("type", "info")
    message = event.get("message", "")
    stage = event.get("stage", "")
    elapsed = event.get("elapsed_seconds", 0)
    data = event.get("data", {}) or {}

    type_config = {
        "started": ("🚀", Colors.GREEN),
        "completed": ("✅", Colors.GREEN),
        "failed": ("❌", Colors.RED),
        "stage_started": ("▶️", Colors.CYAN),
        "stage_completed": ("✔️", Colors.GREEN),
        "remote_status": ("⏳", Colors.YELLOW),
        "info": ("ℹ️", Colors.BLUE),
    }
    icon, color = type_config.get(event_type, ("•", Colors.WHITE))
    time_info = colored(format_duration(elapsed), Colors.DIM)

    lines = []

    if event_type == "stage_started":
        label = STAGE_LABELS.get(stage, stage.upper() or "UNKNOWN")
        lines.append("")
        lines.append(colored(f"═══ {icon} {label} ═══", color))

    elif event_type == "stage_completed":
        lines.append(f"{icon} {colored(message, color)} {time_info}")
        ref = data.get("composite_image_ref")
        if ref:
            shown = ref if not ref.startswith("data:") else "inline image data"
            lines.append(colored(f"    → {shown[:100]}", Colors.DIM))

    elif event_type == "remote_status":
        job = data.get("remote_job_id", "")
        lines.append(f"{icon} {colored(data.get('remote_status', message), color)} "
                     f"{colored(job, Colors.DIM)} {time_info}")

    elif event_type == "completed":
        lines.append("")
        lines.append(f"{icon} {colored('Video ready', Colors.GREEN + Colors.BOLD)} {time_info}")
        if data.get("video_ref"):
            lines.append(f"    Video: {data['video_ref']}")
        if "credits" in data:
            lines.append(colored(f"    Credits used: {data['credits']:,}", Colors.DIM))
        if "credits_remaining" in data:
            lines.append(colored(f"    Credits remaining: {data['credits_remaining']:,}", Colors.DIM))

    elif event_type == "failed":
        lines.append("")
        lines.append(f"{icon} {colored(message, color)}")
        if data.get("error_stage"):
            lines.append(colored(
                f"    Stage: {data['error_stage']} ({data.get('error_kind', 'error')})", Colors.DIM
            ))

    else:
        lines.append(f"{icon} {colored(message, color)}")

    return "\n".join(lines)


class ProgressMonitor:
    """CLI progress monitor for one pipeline job."""

    def __init__(
        self,
        job_id: str,
        server_url: str = "http://localhost:5000",
    ):
        self.job_id = job_id
        self.server_url = server_url.rstrip("/")
        self.stream_url = f"{self.server_url}/api/monitor/{job_id}"

        self._running = False
        self.final_event: dict = {}

    @property
    def succeeded(self) -> bool:
        return self.final_event.get("type") == "completed"

    async def start(self):
        """Start monitoring progress."""
        self._running = True

        print(colored("\n╔═══════════════════════════════════════════╗", Colors.CYAN))
        print(colored("║  DuoCast Progress Monitor                 ║", Colors.CYAN))
        print(colored("╚═══════════════════════════════════════════╝", Colors.CYAN))
        print(f"Job:    {colored(self.job_id, Colors.BOLD)}")
        print(f"Server: {colored(self.stream_url, Colors.DIM)}")
        print(colored("─" * 45, Colors.DIM))

        retry_count = 0
        max_retries = 5

        while self._running and retry_count < max_retries:
            try:
                await self._stream_events()
                break
            except aiohttp.ClientError as e:
                retry_count += 1
                if retry_count < max_retries:
                    wait = 2 ** retry_count
                    print(
                        colored(
                            f"\n⚠️ Connection lost ({e}). Retrying in {wait}s... ({retry_count}/{max_retries})",
                            Colors.YELLOW,
                        )
                    )
                    await asyncio.sleep(wait)
                else:
                    print(colored(f"\n❌ Failed to connect after {max_retries} attempts", Colors.RED))
            except asyncio.CancelledError:
                break

        print(colored("─" * 45, Colors.DIM))
        print(colored("Monitor stopped.", Colors.DIM))

    async def _stream_events(self):
        """Stream and display events."""
        async with aiohttp.ClientSession() as session:
            async with session.get(self.stream_url) as response:
                if response.status == 404:
                    print(colored(f"❌ Job {self.job_id} not found", Colors.RED))
                    self._running = False
                    return
                if response.status != 200:
                    raise aiohttp.ClientError(f"Server returned {response.status}")

                async for line in response.content:
                    if not self._running:
                        break

                    line = line.decode("utf-8").strip()

                    if line.startswith("data:"):
                        try:
                            data = json.loads(line[5:].strip())
                        except json.JSONDecodeError:
                            continue
                        self._handle_event(data)

    def _handle_event(self, event: dict):
        """Handle incoming event."""
        print(format_event(event))

        if event.get("type") in ("completed", "failed"):
            self.final_event = event
            self._running = False

    def stop(self):
        """Stop monitoring."""
        self._running = False


async def main() -> int:
    parser = argparse.ArgumentParser(
        description="Monitor DuoCast job progress",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    %(prog)s 1767268800000-3fa9c1d2
    %(prog)s --server http://remote:5000 1767268800000-3fa9c1d2
        """,
    )
    parser.add_argument("job_id", help="Job ID to monitor")
    parser.add_argument(
        "--server",
        default="http://localhost:5000",
        help="API server URL (default: http://localhost:5000)",
    )

    args = parser.parse_args()

    monitor = ProgressMonitor(job_id=args.job_id, server_url=args.server)

    try:
        await monitor.start()
    except KeyboardInterrupt:
        print(colored("\n\nInterrupted by user.", Colors.YELLOW))
        monitor.stop()

    return 0 if monitor.succeeded else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
