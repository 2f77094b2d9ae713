"""
DuoCast Core Components

Provides foundational infrastructure for the two-stage generation pipeline:
- Configuration loaded from the environment
- Error taxonomy shared by clients, orchestrator and HTTP layer
- Retry/backoff and polling for remote generation APIs
"""

from .config import Config, get_config
from .errors import (
    DuoCastError,
    GenerationTimeout,
    InsufficientCredits,
    InvalidInput,
    PersistenceWarning,
    RemoteServiceBusinessFailure,
    RemoteServiceClientError,
    RemoteServiceFailure,
    RemoteServiceTransientFailure,
)
from .resilience import PollPolicy, ResilientRemoteCall, RetryPolicy

__all__ = [
    "Config",
    "get_config",
    "DuoCastError",
    "GenerationTimeout",
    "InsufficientCredits",
    "InvalidInput",
    "PersistenceWarning",
    "RemoteServiceBusinessFailure",
    "RemoteServiceClientError",
    "RemoteServiceFailure",
    "RemoteServiceTransientFailure",
    "PollPolicy",
    "ResilientRemoteCall",
    "RetryPolicy",
]
