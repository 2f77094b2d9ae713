"""
DuoCast CLI Tools

Command-line tools for interacting with the generation server.

Tools:
- progress_monitor: Real-time progress visualization for a running job
"""

from .progress_monitor import ProgressMonitor, format_event

__all__ = ["ProgressMonitor", "format_event"]
