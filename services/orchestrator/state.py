"""
Generation Job State

Defines the job record, stage updates and run results shared by the
pipeline orchestrator, the job registry and the HTTP server.
"""

import secrets
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class JobStage(str, Enum):
    """Lifecycle of one pipeline run."""
    PENDING = "pending"
    COMPOSING_SCENE = "composing_scene"
    SYNTHESIZING_VIDEO = "synthesizing_video"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStage.COMPLETE, JobStage.ERROR)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_job_id() -> str:
    """Millisecond timestamp plus a random suffix, e.g. ``1767268800000-3fa9c1d2``."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"


@dataclass
class GenerationJob:
    """One pipeline run as seen by pollers and the status endpoint."""
    job_id: str = field(default_factory=new_job_id)
    stage: JobStage = JobStage.PENDING
    message: str = "Starting..."

    # Stage outputs
    composite_image_ref: Optional[str] = None
    video_ref: Optional[str] = None
    remote_job_id: Optional[str] = None
    remote_status: Optional[str] = None

    # Failure details (stage == ERROR)
    error: Optional[str] = None
    error_kind: Optional[str] = None
    error_stage: Optional[str] = None

    credits_charged: int = 0
    created_at: str = field(default_factory=_utcnow)
    updated_at: str = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["stage"] = self.stage.value
        return data


@dataclass
class StageUpdate:
    """Observer payload emitted on every stage transition and remote status change."""
    job_id: str
    stage: JobStage
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "stage": self.stage.value,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp,
        }


@dataclass
class StageTiming:
    """Wall-clock durations in milliseconds."""
    scene_ms: float = 0.0
    video_ms: float = 0.0
    total_ms: float = 0.0


@dataclass
class PipelineOptions:
    """Per-run options for the orchestrator."""
    action_prompt: Optional[str] = None
    duration: int = 8
    tone: str = "professional"
    camera_style: str = "static"
    save_scene: bool = False
    download_video: bool = False
    output_dir: Optional[str] = None


@dataclass
class PipelineResult:
    """Final outcome of one run. Returned for failures too; check ``success``."""
    job_id: str
    stage: JobStage
    composite_image_ref: Optional[str] = None
    video_ref: Optional[str] = None
    remote_job_id: Optional[str] = None

    # Local copies (only when requested in PipelineOptions)
    scene_path: Optional[str] = None
    video_path: Optional[str] = None

    prompt: Optional[str] = None

    error: Optional[str] = None
    error_kind: Optional[str] = None
    error_stage: Optional[str] = None

    scene_credits: int = 0
    video_credits: int = 0
    timing: StageTiming = field(default_factory=StageTiming)

    @property
    def success(self) -> bool:
        return self.stage == JobStage.COMPLETE

    @property
    def credits_charged(self) -> int:
        return self.scene_credits + self.video_credits

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["stage"] = self.stage.value
        data["success"] = self.success
        data["credits_charged"] = self.credits_charged
        return data
