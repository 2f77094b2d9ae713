"""
Progress hub tests: event classification, history replay, live fan-out.

Run with:
    python -m pytest tests/test_progress_streaming.py -v
"""

import asyncio
import json
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.orchestrator.state import JobStage, StageUpdate
from services.streaming import EventType, ProgressEvent, ProgressHub


def full_run(job_id: str = "job-a") -> list[StageUpdate]:
    return [
        StageUpdate(job_id, JobStage.PENDING, "Starting..."),
        StageUpdate(job_id, JobStage.COMPOSING_SCENE, "Composing scene..."),
        StageUpdate(job_id, JobStage.COMPOSING_SCENE, "Scene composed", {"composite_image_ref": "https://x"}),
        StageUpdate(job_id, JobStage.SYNTHESIZING_VIDEO, "Synthesizing video..."),
        StageUpdate(
            job_id, JobStage.SYNTHESIZING_VIDEO, "Video status: queued",
            {"remote_status": "queued", "remote_job_id": "job-1"},
        ),
        StageUpdate(job_id, JobStage.COMPLETE, "Complete", {"video_ref": "https://example/video.mp4"}),
    ]


class TestProgressHub:

    def test_classifies_stage_updates(self):
        hub = ProgressHub()
        for update in full_run():
            hub.observe(update)

        assert [e.event_type for e in hub.get_history("job-a")] == [
            EventType.STARTED,
            EventType.STAGE_STARTED,
            EventType.STAGE_COMPLETED,
            EventType.STAGE_STARTED,
            EventType.REMOTE_STATUS,
            EventType.COMPLETED,
        ]

    def test_error_is_terminal(self):
        hub = ProgressHub()
        hub.observe(StageUpdate("job-b", JobStage.ERROR, "bad image", {"error_kind": "client_error"}))

        event = hub.get_history("job-b")[0]
        assert event.event_type == EventType.FAILED
        assert event.is_terminal

    def test_history_is_bounded(self):
        hub = ProgressHub(history_limit=3)
        for update in full_run():
            hub.observe(update)

        history = hub.get_history("job-a")
        assert len(history) == 3
        assert history[-1].event_type == EventType.COMPLETED

    def test_oldest_jobs_forgotten(self):
        hub = ProgressHub(max_jobs=2)
        for job_id in ("j1", "j2", "j3"):
            hub.observe(StageUpdate(job_id, JobStage.PENDING, "Starting..."))

        assert not hub.knows("j1")
        assert hub.knows("j2") and hub.knows("j3")

    def test_callbacks_receive_events(self):
        hub = ProgressHub()
        received = []
        hub.on_event(received.append)
        hub.on_event(lambda event: 1 / 0)

        hub.observe(StageUpdate("job-c", JobStage.PENDING, "Starting..."))

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_subscribe_replays_finished_job(self):
        hub = ProgressHub()
        for update in full_run():
            hub.observe(update)

        events = [event async for event in hub.subscribe("job-a")]

        assert len(events) == 6
        assert events[-1].event_type == EventType.COMPLETED

    @pytest.mark.asyncio
    async def test_subscribe_streams_live_events(self):
        hub = ProgressHub()

        async def consume():
            return [event async for event in hub.subscribe("job-d")]

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)

        hub.observe(StageUpdate("job-d", JobStage.PENDING, "Starting..."))
        hub.observe(StageUpdate("job-d", JobStage.ERROR, "boom"))

        events = await asyncio.wait_for(task, timeout=1.0)
        assert [e.event_type for e in events] == [EventType.STARTED, EventType.FAILED]

    @pytest.mark.asyncio
    async def test_heartbeat_when_idle(self):
        hub = ProgressHub()
        stream = hub.subscribe("job-e", heartbeat_interval=0.01)

        event = await stream.__anext__()
        await stream.aclose()

        assert event.event_type == EventType.HEARTBEAT


class TestProgressEvent:

    def test_sse_format(self):
        event = ProgressEvent(
            job_id="job-a",
            event_type=EventType.COMPLETED,
            stage="complete",
            message="Complete",
            data={"video_ref": "https://example/video.mp4"},
        )

        sse = event.to_sse()
        lines = sse.strip().split("\n")

        assert lines[0] == f"id: {event.event_id}"
        assert lines[1] == "event: completed"
        payload = json.loads(lines[2][len("data: "):])
        assert payload["job_id"] == "job-a"
        assert payload["data"]["video_ref"] == "https://example/video.mp4"
        assert sse.endswith("\n\n")

    def test_cli_line(self):
        event = ProgressEvent(
            job_id="job-a",
            event_type=EventType.STAGE_STARTED,
            stage="synthesizing_video",
            message="Synthesizing video...",
            elapsed_seconds=42.7,
        )

        line = event.to_cli_line()

        assert "[2/2]" in line
        assert "Synthesizing video..." in line
        assert "42s" in line


class TestCliFormatting:

    def test_format_duration(self):
        from cli.progress_monitor import format_duration

        assert format_duration(75) == "01:15"
        assert format_duration(3725) == "1:02:05"
        assert format_duration(-1) == "--:--"

    def test_completed_event_lists_video_and_credits(self):
        from cli.progress_monitor import format_event

        text = format_event({
            "type": "completed",
            "message": "Complete",
            "elapsed_seconds": 90,
            "data": {"video_ref": "https://example/video.mp4", "credits": 370},
        })

        assert "Video ready" in text
        assert "https://example/video.mp4" in text
        assert "370" in text

    def test_stage_banner(self):
        from cli.progress_monitor import format_event

        text = format_event({"type": "stage_started", "stage": "composing_scene", "message": "Composing scene..."})

        assert "Stage 1/2: SCENE COMPOSITION" in text
