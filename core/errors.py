"""
Error taxonomy for the generation pipeline.

Every failure carries a ``kind`` so the HTTP and CLI layers can tell
"gave up waiting" apart from "the vendor rejected the job" without
string matching.
"""

from typing import Optional


class DuoCastError(Exception):
    """Base class for all pipeline errors."""

    kind = "error"

    def __init__(self, message: str, stage: Optional[str] = None):
        self.message = message
        self.stage = stage
        super().__init__(message)


class InvalidInput(DuoCastError):
    """Missing or malformed images or text fields. Never retried."""

    kind = "invalid_input"


class InsufficientCredits(DuoCastError):
    """Raised by the pre-flight check when the credit cap is enforced."""

    kind = "insufficient_credits"

    def __init__(self, remaining: int, stage: Optional[str] = None):
        self.remaining = remaining
        super().__init__(f"Insufficient credits: {remaining} remaining", stage=stage)


class RemoteServiceFailure(DuoCastError):
    """
    A remote call failed.

    Used directly for permanent failures such as a success response that
    is missing the fields we need (task id, image locator, video URL).
    """

    kind = "remote_failure"

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        status_code: Optional[int] = None,
        attempts: int = 0,
        stage: Optional[str] = None,
    ):
        self.service = service
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(message, stage=stage)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "service": self.service,
            "status_code": self.status_code,
            "attempts": self.attempts,
            "stage": self.stage,
        }


class RemoteServiceTransientFailure(RemoteServiceFailure):
    """5xx, network error, gateway timeout page. Eligible for retry."""

    kind = "transient"

    def __init__(self, *args, exhausted: bool = False, **kwargs):
        self.exhausted = exhausted
        super().__init__(*args, **kwargs)


class RemoteServiceClientError(RemoteServiceFailure):
    """4xx from the remote API. Never retried."""

    kind = "client_error"


class RemoteServiceBusinessFailure(RemoteServiceFailure):
    """The remote job itself reached a failed terminal state."""

    kind = "business_failure"

    def __init__(self, message: str, remote_message: Optional[str] = None, **kwargs):
        self.remote_message = remote_message
        super().__init__(message, **kwargs)


class GenerationTimeout(RemoteServiceFailure):
    """Polling exceeded the wall-clock ceiling."""

    kind = "timeout"

    def __init__(self, message: str, elapsed: float = 0.0, polls: int = 0, **kwargs):
        self.elapsed = elapsed
        self.polls = polls
        super().__init__(message, **kwargs)


class PersistenceWarning(UserWarning):
    """Ledger store could not be read at startup; treated as zero consumed."""
