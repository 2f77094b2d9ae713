"""
SSE Progress Streaming Service

Provides real-time visibility into pipeline progress via Server-Sent
Events (SSE). Designed for CLI consumption.

Usage:
    # In the server
    hub = ProgressHub()
    orchestrator.add_observer(hub.observe)

    # In CLI
    curl -N http://localhost:5000/api/monitor/<job_id>
"""

from .progress_tracker import EventType, ProgressEvent, ProgressHub, event_type_for

__all__ = [
    "EventType",
    "ProgressEvent",
    "ProgressHub",
    "event_type_for",
]
