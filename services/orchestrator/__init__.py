"""
Pipeline Orchestrator Service

Sequences scene composition and video synthesis for each job:
- Stage-by-stage job records, queryable while a run is in flight
- Observer callbacks for progress streaming
- Background runs for the HTTP server
"""

from .pipeline import PipelineOrchestrator
from .registry import InMemoryJobStore, JobStore
from .state import (
    GenerationJob,
    JobStage,
    PipelineOptions,
    PipelineResult,
    StageTiming,
    StageUpdate,
)

__all__ = [
    "PipelineOrchestrator",
    "InMemoryJobStore",
    "JobStore",
    "GenerationJob",
    "JobStage",
    "PipelineOptions",
    "PipelineResult",
    "StageTiming",
    "StageUpdate",
]
