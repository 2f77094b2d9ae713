"""
Resilient Remote Calls

Two shapes of protection for slow, rate-limited, failure-prone generation APIs:

- call(): one attempt per network round-trip, retried only on transient
  failures with a literal backoff schedule (5s, 15s, 30s by default).
- poll(): query a remote job on a fixed interval until it reaches a terminal
  state, tolerating a bounded run of consecutive transient poll failures
  and giving up at a wall-clock ceiling.

Attempts are strictly sequential since each one may be billed remotely.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
)

from .errors import (
    GenerationTimeout,
    RemoteServiceFailure,
    RemoteServiceTransientFailure,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[Any]]


@dataclass
class RetryPolicy:
    """Retry schedule for a single create/complete request."""
    backoff_delays: tuple[float, ...] = (5.0, 15.0, 30.0)

    @property
    def max_attempts(self) -> int:
        return len(self.backoff_delays) + 1


@dataclass
class PollPolicy:
    """Polling behaviour for an asynchronous remote job."""
    interval: float = 10.0
    timeout: float = 300.0
    max_consecutive_failures: int = 5


@dataclass
class ResilienceStats:
    """Runtime statistics for one remote service."""
    total_calls: int = 0
    total_attempts: int = 0
    total_retries: int = 0
    total_successes: int = 0
    total_failures: int = 0
    total_polls: int = 0
    total_poll_failures: int = 0
    last_status_code: Optional[int] = None
    last_error: Optional[str] = None
    last_success_time: float = 0
    last_failure_time: float = 0
    created_at: float = field(default_factory=time.time)


class ResilientRemoteCall:
    """
    Retry/backoff and poll-until-terminal wrapper for one remote service.

    Usage:
        remote = ResilientRemoteCall("scene", RetryPolicy())

        # Create-and-complete request
        payload = await remote.call(send_request, body)

        # Poll a job; poll_once returns None while the job is still running
        result = await remote.poll(check_status, PollPolicy(interval=10, timeout=300))
    """

    def __init__(
        self,
        service_name: str,
        policy: Optional[RetryPolicy] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.service_name = service_name
        self.policy = policy or RetryPolicy()
        self.stats = ResilienceStats()
        self._sleep = sleep

    def _build_wait(self):
        delays = self.policy.backoff_delays
        if not delays:
            return wait_fixed(0)
        return wait_chain(*[wait_fixed(delay) for delay in delays])

    def _before_sleep(self, retry_state: RetryCallState):
        """Log and count each retry before the backoff delay."""
        self.stats.total_retries += 1
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"[{self.service_name}] attempt {retry_state.attempt_number}/{self.policy.max_attempts} "
            f"failed: {error} - retrying in {delay:.0f}s"
        )

    async def call(
        self,
        operation: Callable[..., Awaitable[T]],
        *args,
        **kwargs,
    ) -> T:
        """Run an attempt operation with the fixed retry schedule."""
        result, _ = await self.call_with_attempts(operation, *args, **kwargs)
        return result

    async def call_with_attempts(
        self,
        operation: Callable[..., Awaitable[T]],
        *args,
        **kwargs,
    ) -> tuple[T, int]:
        """
        Like call(), but also returns how many attempts this call used.

        The count is local to the call, so concurrent callers sharing one
        instance each see their own number.

        Args:
            operation: Async function performing exactly one round-trip
            *args, **kwargs: Arguments to pass to the operation

        Returns:
            (result from the first successful attempt, attempts used)

        Raises:
            RemoteServiceTransientFailure: last transient error once all attempts are used
            RemoteServiceFailure: any permanent failure, immediately
        """
        self.stats.total_calls += 1
        attempts = 0

        retrying = AsyncRetrying(
            sleep=self._sleep,
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=self._build_wait(),
            retry=retry_if_exception_type(RemoteServiceTransientFailure),
            before_sleep=self._before_sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    self.stats.total_attempts += 1
                    result = await operation(*args, **kwargs)
        except RemoteServiceFailure as e:
            e.attempts = attempts
            self._record_failure(e)
            if isinstance(e, RemoteServiceTransientFailure):
                logger.error(
                    f"[{self.service_name}] giving up after {attempts} attempts: {e}"
                )
            raise

        self.stats.total_successes += 1
        self.stats.last_success_time = time.time()
        if attempts > 1:
            logger.info(f"[{self.service_name}] succeeded on attempt {attempts}")
        return result, attempts

    async def poll(
        self,
        poll_once: Callable[[], Awaitable[Optional[T]]],
        policy: Optional[PollPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> T:
        """
        Poll until poll_once returns a terminal result.

        Each cycle waits ``interval`` first. poll_once returns None while the
        job is still running and raises for terminal failures; those
        propagate untouched. Transient failures are tolerated up to
        ``max_consecutive_failures`` in a row.

        Raises:
            GenerationTimeout: ``timeout`` seconds passed without a terminal state
            RemoteServiceTransientFailure: one more consecutive failure than tolerated
        """
        policy = policy or PollPolicy()
        started = clock()
        polls = 0
        consecutive_failures = 0

        while True:
            elapsed = clock() - started
            if elapsed >= policy.timeout:
                error = GenerationTimeout(
                    f"{self.service_name} did not finish within {policy.timeout:g}s "
                    f"({polls} polls)",
                    elapsed=elapsed,
                    polls=polls,
                    service=self.service_name,
                    attempts=polls,
                )
                self._record_failure(error)
                raise error

            await self._sleep(policy.interval)
            polls += 1
            self.stats.total_polls += 1

            try:
                result = await poll_once()
            except RemoteServiceTransientFailure as e:
                consecutive_failures += 1
                self.stats.total_poll_failures += 1
                logger.warning(
                    f"[{self.service_name}] poll error, attempt "
                    f"{consecutive_failures}/{policy.max_consecutive_failures}: {e}"
                )
                if consecutive_failures > policy.max_consecutive_failures:
                    error = RemoteServiceTransientFailure(
                        f"{self.service_name} polling failed after "
                        f"{consecutive_failures} consecutive errors: {e.message}",
                        service=self.service_name,
                        status_code=e.status_code,
                        attempts=consecutive_failures,
                        exhausted=True,
                    )
                    self._record_failure(error)
                    raise error from e
                continue
            except RemoteServiceFailure as e:
                e.attempts = e.attempts or polls
                self._record_failure(e)
                raise

            consecutive_failures = 0
            if result is not None:
                self.stats.total_successes += 1
                self.stats.last_success_time = time.time()
                return result

    def _record_failure(self, error: RemoteServiceFailure):
        self.stats.total_failures += 1
        self.stats.last_failure_time = time.time()
        self.stats.last_status_code = error.status_code
        self.stats.last_error = str(error)

    def get_status(self) -> dict:
        """Get current statistics as a dictionary."""
        return {
            "service": self.service_name,
            "max_attempts": self.policy.max_attempts,
            "backoff_delays": list(self.policy.backoff_delays),
            "total_calls": self.stats.total_calls,
            "total_attempts": self.stats.total_attempts,
            "total_retries": self.stats.total_retries,
            "total_successes": self.stats.total_successes,
            "total_failures": self.stats.total_failures,
            "total_polls": self.stats.total_polls,
            "total_poll_failures": self.stats.total_poll_failures,
            "last_status_code": self.stats.last_status_code,
            "last_error": self.stats.last_error,
        }
