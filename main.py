#!/usr/bin/env python3
"""
DuoCast - Main Entry Point

Two portraits and a scenario in, one talking video out.

Usage:
    # Start the API server (HTTP + SSE)
    python main.py server

    # Run the full pipeline locally
    python main.py generate -a alice.jpg -b bob.jpg -s "Two colleagues in an office"

    # Animate an existing scene
    python main.py from-scene -i scene.png -s "Two colleagues in an office"

    # Monitor a job running on the server
    python main.py monitor 1767268800000-3fa9c1d2
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("duocast")


def _check_config() -> bool:
    from core.config import get_config

    issues = get_config().validate()
    for issue in issues:
        logger.error(f"Config: {issue}")
    return not issues


def _build_orchestrator():
    """Orchestrator wired to the process ledger, printing progress to the console."""
    from services.credits import get_ledger
    from services.orchestrator import PipelineOrchestrator
    from services.scene_composition import SceneCompositionClient
    from services.streaming import ProgressHub
    from services.video_generation import VideoSynthesisClient

    ledger = get_ledger()
    hub = ProgressHub()
    hub.on_event(lambda event: print(event.to_cli_line()))

    return PipelineOrchestrator(
        scene_client=SceneCompositionClient(ledger=ledger),
        video_client=VideoSynthesisClient(ledger=ledger),
        ledger=ledger,
        observers=[hub.observe],
    )


def _print_result(result) -> int:
    print()
    if not result.success:
        print(f"Failed during {result.error_stage} [{result.error_kind}]: {result.error}")
        if result.composite_image_ref:
            print(f"Scene (kept): {_short_ref(result.composite_image_ref)}")
        return 1

    print(f"Scene: {result.scene_path or _short_ref(result.composite_image_ref)}")
    print(f"Video: {result.video_path or result.video_ref}")
    print(f"Credits used: {result.credits_charged:,}")
    print(
        f"Timing: scene {result.timing.scene_ms / 1000:.1f}s, "
        f"video {result.timing.video_ms / 1000:.1f}s, total {result.timing.total_ms / 1000:.1f}s"
    )
    return 0


def _short_ref(ref: str) -> str:
    if ref and ref.startswith("data:"):
        return f"{ref[:30]}... (inline, {len(ref):,} chars)"
    return ref or "-"


def _options_from_args(args):
    from services.orchestrator import PipelineOptions

    return PipelineOptions(
        action_prompt=args.action_prompt,
        duration=args.duration,
        tone=args.tone,
        camera_style=args.camera,
        save_scene=not args.no_save_scene,
        download_video=not args.no_download,
        output_dir=args.output_dir,
    )


def start_server(host: str, port: int):
    """Start the API server."""
    import uvicorn

    _check_config()
    logger.info(f"DuoCast server running at http://{host}:{port}")
    uvicorn.run("services.orchestrator.server:app", host=host, port=port)


async def generate_video(args) -> int:
    """Run the full pipeline from two portrait files."""
    from services.media import load_image

    portrait_a = load_image(args.portrait_a)
    portrait_b = load_image(args.portrait_b)

    orchestrator = _build_orchestrator()
    try:
        result = await orchestrator.run(portrait_a, portrait_b, args.scenario, _options_from_args(args))
    finally:
        await orchestrator.close()
    return _print_result(result)


async def generate_from_scene(args) -> int:
    """Animate an existing scene image (URL, data URI or local file)."""
    orchestrator = _build_orchestrator()
    try:
        result = await orchestrator.run_from_scene(args.image, args.scenario, _options_from_args(args))
    finally:
        await orchestrator.close()
    return _print_result(result)


async def compose_scene_only(args) -> int:
    """Compose and save the scene image without generating a video."""
    from services.credits import get_ledger
    from services.media import load_image, save_image_ref
    from services.scene_composition import SceneCompositionClient

    portrait_a = load_image(args.portrait_a)
    portrait_b = load_image(args.portrait_b)

    client = SceneCompositionClient(ledger=get_ledger())
    try:
        scene = await client.compose_scene(portrait_a, portrait_b, args.scenario)
        path = await save_image_ref(scene.image_ref, args.output)
    finally:
        await client.close()

    print(f"Scene: {path or _short_ref(scene.image_ref)}")
    print(f"Credits used: {scene.credits_charged:,}")
    return 0 if path else 1


def show_credits() -> int:
    from services.credits import get_ledger

    snapshot = get_ledger().snapshot()
    print(f"Starting balance: {snapshot.starting_balance:,}")
    print(f"Consumed:         {snapshot.consumed_total:,}")
    print(f"Remaining:        {snapshot.remaining:,}")
    if snapshot.last_updated:
        print(f"Last updated:     {snapshot.last_updated}")
    return 0


async def monitor_job(job_id: str, server_url: str) -> int:
    """Monitor a job running on the server."""
    from cli.progress_monitor import ProgressMonitor

    monitor = ProgressMonitor(job_id=job_id, server_url=server_url)
    await monitor.start()
    return 0 if monitor.succeeded else 1


def _add_video_options(parser: argparse.ArgumentParser):
    parser.add_argument("--action-prompt", help="Custom action/dialogue prompt for the video")
    parser.add_argument("--duration", type=int, choices=[4, 6, 8], default=8, help="Video length in seconds")
    parser.add_argument(
        "--tone",
        choices=["professional", "casual", "dramatic", "humorous"],
        default="professional",
        help="Conversation tone",
    )
    parser.add_argument(
        "--camera",
        choices=["static", "slow_pan", "dynamic"],
        default="static",
        help="Camera style",
    )
    parser.add_argument("--output-dir", "-o", default=None, help="Output directory")
    parser.add_argument("--no-save-scene", action="store_true", help="Do not save the scene image")
    parser.add_argument("--no-download", action="store_true", help="Do not download the video")


def main():
    parser = argparse.ArgumentParser(
        description="DuoCast - two-person talking video generator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start API server
    python main.py server --port 5000

    # Full pipeline
    python main.py generate -a alice.jpg -b bob.jpg -s "Two colleagues discussing a project"

    # Video from an existing scene
    python main.py from-scene -i output/scene.png -s "Two friends at a cafe" --duration 6

    # Scene only
    python main.py scene-only -a alice.jpg -b bob.jpg -s "Two chefs in a kitchen" -o scene.png

    # Credit balance
    python main.py credits
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Server command
    server_parser = subparsers.add_parser("server", help="Start API server")
    server_parser.add_argument("--host", default=None, help="Host to bind")
    server_parser.add_argument("--port", type=int, default=None, help="Port to bind")

    # Generate command
    gen_parser = subparsers.add_parser("generate", help="Generate a video from two portraits")
    gen_parser.add_argument("--portrait-a", "-a", required=True, help="Left person image")
    gen_parser.add_argument("--portrait-b", "-b", required=True, help="Right person image")
    gen_parser.add_argument("--scenario", "-s", required=True, help="Scene / conversation description")
    _add_video_options(gen_parser)

    # From-scene command
    scene_parser = subparsers.add_parser("from-scene", help="Generate a video from an existing scene")
    scene_parser.add_argument("--image", "-i", required=True, help="Scene image path, URL or data URI")
    scene_parser.add_argument("--scenario", "-s", required=True, help="Scene / conversation description")
    _add_video_options(scene_parser)

    # Scene-only command
    only_parser = subparsers.add_parser("scene-only", help="Compose the scene image only")
    only_parser.add_argument("--portrait-a", "-a", required=True, help="Left person image")
    only_parser.add_argument("--portrait-b", "-b", required=True, help="Right person image")
    only_parser.add_argument("--scenario", "-s", required=True, help="Scene description")
    only_parser.add_argument("--output", "-o", default="output/scene.png", help="Output image path")

    # Credits command
    subparsers.add_parser("credits", help="Show credit balance")

    # Monitor command
    mon_parser = subparsers.add_parser("monitor", help="Monitor job progress")
    mon_parser.add_argument("job_id", help="Job ID to monitor")
    mon_parser.add_argument(
        "--server",
        default="http://localhost:5000",
        help="API server URL",
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    from core.errors import DuoCastError

    try:
        if args.command == "server":
            from core.config import get_config

            config = get_config()
            start_server(args.host or config.server.host, args.port or config.server.port)
            exit_code = 0

        elif args.command == "credits":
            exit_code = show_credits()

        elif args.command == "monitor":
            exit_code = asyncio.run(monitor_job(args.job_id, args.server))

        else:
            if not _check_config():
                sys.exit(1)
            if args.command == "generate":
                exit_code = asyncio.run(generate_video(args))
            elif args.command == "from-scene":
                exit_code = asyncio.run(generate_from_scene(args))
            else:
                Path(args.output).parent.mkdir(parents=True, exist_ok=True)
                exit_code = asyncio.run(compose_scene_only(args))

    except DuoCastError as e:
        logger.error(f"[{e.kind}] {e.message}")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
