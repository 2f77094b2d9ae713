"""
Progress Tracker for the Generation Pipeline

Turns orchestrator stage updates into structured progress events, keeps a
bounded history per job, and fans events out to SSE subscribers.
Provides structured events for CLI rendering.
"""

import asyncio
import json
import logging
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable, Optional
from uuid import uuid4

from services.orchestrator.state import JobStage, StageUpdate

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of progress events."""

    # Lifecycle events
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"

    # Stage events
    STAGE_STARTED = "stage_started"
    STAGE_COMPLETED = "stage_completed"

    # Remote job status change during video synthesis
    REMOTE_STATUS = "remote_status"

    # Stream control
    HEARTBEAT = "heartbeat"
    INFO = "info"


TERMINAL_EVENTS = {EventType.COMPLETED, EventType.FAILED}

STAGE_NUMBERS = {
    JobStage.COMPOSING_SCENE.value: 1,
    JobStage.SYNTHESIZING_VIDEO.value: 2,
    JobStage.COMPLETE.value: 2,
}
TOTAL_STAGES = 2


@dataclass
class ProgressEvent:
    """A progress event for SSE streaming."""

    event_id: str = field(default_factory=lambda: str(uuid4()))
    job_id: str = ""
    event_type: EventType = EventType.INFO
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    stage: str = ""
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    elapsed_seconds: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.event_type in TERMINAL_EVENTS

    def to_dict(self) -> dict[str, Any]:
        event_data = {
            "id": self.event_id,
            "job_id": self.job_id,
            "type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "stage": self.stage,
            "message": self.message,
            "elapsed_seconds": round(self.elapsed_seconds, 1),
        }
        if self.data:
            event_data["data"] = self.data
        return event_data

    def to_sse(self) -> str:
        """Format as SSE message."""
        json_data = json.dumps(self.to_dict())
        return f"id: {self.event_id}\nevent: {self.event_type.value}\ndata: {json_data}\n\n"

    def to_cli_line(self) -> str:
        """Format as single CLI line."""
        icons = {
            EventType.STARTED: "🚀",
            EventType.COMPLETED: "✅",
            EventType.FAILED: "❌",
            EventType.STAGE_STARTED: "▶️",
            EventType.STAGE_COMPLETED: "✔️",
            EventType.REMOTE_STATUS: "⏳",
            EventType.INFO: "ℹ️",
        }
        icon = icons.get(self.event_type, "•")
        elapsed = f"{int(self.elapsed_seconds)}s"

        stage_number = STAGE_NUMBERS.get(self.stage, 0)
        indicator = f"[{stage_number}/{TOTAL_STAGES}] " if stage_number else ""

        return f"{icon} {indicator}{self.message} | {elapsed}"


def event_type_for(update: StageUpdate, previous_stage: Optional[JobStage]) -> EventType:
    """Classify a stage update."""
    if update.stage == JobStage.COMPLETE:
        return EventType.COMPLETED
    if update.stage == JobStage.ERROR:
        return EventType.FAILED
    if update.stage == JobStage.PENDING:
        return EventType.STARTED
    if "remote_status" in update.data:
        return EventType.REMOTE_STATUS
    if update.stage == previous_stage:
        return EventType.STAGE_COMPLETED
    return EventType.STAGE_STARTED


class ProgressHub:
    """
    Collects progress for many jobs and streams it to subscribers.

    Register ``hub.observe`` as an orchestrator observer; SSE handlers then
    iterate ``hub.subscribe(job_id)``.

    Usage:
        hub = ProgressHub()
        orchestrator.add_observer(hub.observe)

        async for event in hub.subscribe(job_id):
            send(event.to_sse())
    """

    def __init__(
        self,
        history_limit: int = 100,
        max_jobs: int = 200,
        queue_size: int = 100,
    ):
        self.history_limit = history_limit
        self.max_jobs = max_jobs
        self.queue_size = queue_size

        self._history: "OrderedDict[str, deque[ProgressEvent]]" = OrderedDict()
        self._started: dict[str, float] = {}
        self._last_stage: dict[str, JobStage] = {}
        self._subscribers: dict[str, list[asyncio.Queue]] = {}
        self._callbacks: list[Callable[[ProgressEvent], None]] = []

    def on_event(self, callback: Callable[[ProgressEvent], None]):
        """Register callback for progress events."""
        self._callbacks.append(callback)

    def observe(self, update: StageUpdate):
        """Orchestrator observer: record the update and push it to subscribers."""
        job_id = update.job_id
        if job_id not in self._started:
            self._started[job_id] = time.monotonic()

        event = ProgressEvent(
            job_id=job_id,
            event_type=event_type_for(update, self._last_stage.get(job_id)),
            stage=update.stage.value,
            message=update.message,
            data=dict(update.data),
            elapsed_seconds=time.monotonic() - self._started[job_id],
        )
        self._last_stage[job_id] = update.stage
        self.publish(event)

    def publish(self, event: ProgressEvent):
        history = self._history.get(event.job_id)
        if history is None:
            history = deque(maxlen=self.history_limit)
            self._history[event.job_id] = history
            self._evict()
        history.append(event)

        for callback in self._callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Progress callback error: {e}")

        for queue in self._subscribers.get(event.job_id, []):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Event queue full for job {event.job_id}")

    def get_history(self, job_id: str) -> list[ProgressEvent]:
        return list(self._history.get(job_id, ()))

    def knows(self, job_id: str) -> bool:
        return job_id in self._history

    async def subscribe(
        self,
        job_id: str,
        heartbeat_interval: Optional[float] = None,
    ) -> AsyncIterator[ProgressEvent]:
        """
        Replay the job's history, then stream live events until a terminal one.

        With ``heartbeat_interval`` set, a HEARTBEAT event is yielded whenever
        no event arrived in that many seconds.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.setdefault(job_id, []).append(queue)

        try:
            for event in self.get_history(job_id):
                yield event
                if event.is_terminal:
                    return

            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=heartbeat_interval)
                except asyncio.TimeoutError:
                    yield ProgressEvent(job_id=job_id, event_type=EventType.HEARTBEAT)
                    continue

                yield event
                if event.is_terminal:
                    return
        finally:
            subscribers = self._subscribers.get(job_id, [])
            if queue in subscribers:
                subscribers.remove(queue)
            if not subscribers:
                self._subscribers.pop(job_id, None)

    def _evict(self):
        while len(self._history) > self.max_jobs:
            job_id, _ = self._history.popitem(last=False)
            self._started.pop(job_id, None)
            self._last_stage.pop(job_id, None)
