"""
Video Synthesis Client

Animates a composed scene image with the image-to-video model:
- Create: submit the job (fixed 5s/15s/30s retry schedule on transient errors)
- Poll: query the job every poll interval until completed/failed, tolerating
  a bounded run of transient poll errors and a wall-clock ceiling
- Credits: charged once from the completed job's usage block

Status callbacks let the orchestrator stream remote job progress.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import httpx

from core.config import get_config
from core.errors import (
    InvalidInput,
    RemoteServiceBusinessFailure,
    RemoteServiceFailure,
)
from core.http import credits_used, nested_get, send_json
from core.resilience import PollPolicy, ResilientRemoteCall, RetryPolicy, SleepFunc
from services.media.assets import download_asset

logger = logging.getLogger(__name__)

SERVICE_NAME = "video"

StatusCallback = Callable[[str, str], None]


class GenerationStatus(str, Enum):
    """Remote job status as reported by the video API."""
    QUEUED = "queued"
    GENERATING = "generating"
    ACTIVE = "active"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    ERROR = "error"


FAILED_STATUSES = {GenerationStatus.FAILED.value, GenerationStatus.ERROR.value}


@dataclass
class VideoResult:
    """Result from video synthesis."""
    video_ref: str
    remote_job_id: str
    credits_charged: int = 0
    status: GenerationStatus = GenerationStatus.COMPLETED
    prompt: str = ""
    elapsed_seconds: float = 0.0
    polls: int = 0


class VideoSynthesisClient:
    """
    Client for the image-to-video model.

    Usage:
        client = VideoSynthesisClient(ledger=get_ledger())

        result = await client.synthesize_video(
            image_ref=scene.image_ref,
            prompt="Two people having a conversation: ...",
            duration_seconds=8,
            on_status=lambda status, job_id: print(job_id, status),
        )
        print(result.video_ref)
    """

    def __init__(
        self,
        config: Optional[Any] = None,
        ledger: Optional[Any] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
        poll_policy: Optional[PollPolicy] = None,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the video synthesis client.

        Args:
            config: Optional config override
            ledger: CreditLedger charged once per completed video
            http_client: Pre-built client (tests pass one with a mock transport)
            retry_policy: Override of the create-request backoff schedule
            poll_policy: Override of poll interval / timeout / error budget
            sleep: Sleep function used for backoff and poll waits
            clock: Monotonic clock used for the wall-clock ceiling
        """
        self.config = config or get_config()
        self.ledger = ledger
        self._http_client = http_client
        self._owns_client = http_client is None
        self._clock = clock

        policy = retry_policy or RetryPolicy(backoff_delays=tuple(self.config.retry.backoff_delays))
        self.poll_policy = poll_policy or PollPolicy(
            interval=self.config.retry.poll_interval,
            timeout=self.config.retry.video_timeout,
            max_consecutive_failures=self.config.retry.max_consecutive_poll_failures,
        )
        self.remote = ResilientRemoteCall(SERVICE_NAME, policy, sleep=sleep)

    @property
    def endpoint(self) -> str:
        return f"{self.config.api.api_base.rstrip('/')}/v2/video/generations"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.config.api.video_request_timeout)
            self._owns_client = True
        return self._http_client

    async def close(self):
        """Close the HTTP client if we created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api.api_key}",
            "Content-Type": "application/json",
        }

    def build_payload(self, image_ref: str, prompt: str, duration_seconds: int) -> dict[str, Any]:
        models = self.config.models
        return {
            "model": models.video_model,
            "prompt": prompt,
            "image_url": image_ref,
            "generate_audio": models.generate_audio,
            "duration": str(duration_seconds),
            "aspect_ratio": models.video_aspect_ratio,
            "resolution": models.video_resolution,
        }

    def _validate(self, image_ref: str, prompt: str, duration_seconds: int):
        if not image_ref or not image_ref.strip():
            raise InvalidInput("Scene image reference is required")
        if not prompt or not prompt.strip():
            raise InvalidInput("Video prompt is required")
        allowed = self.config.pipeline.allowed_durations
        if isinstance(duration_seconds, bool) or duration_seconds not in allowed:
            raise InvalidInput(
                f"Duration must be one of {', '.join(str(d) for d in allowed)} seconds "
                f"(got {duration_seconds!r})"
            )

    def _emit_status(self, on_status: Optional[StatusCallback], status: str, job_id: str):
        """Emit a status change via callback."""
        if on_status:
            try:
                on_status(status, job_id)
            except Exception as e:
                logger.warning(f"Status callback failed: {e}")

    async def _create_attempt(self, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        return await send_json(
            client,
            "POST",
            self.endpoint,
            SERVICE_NAME,
            json=payload,
            headers=self._headers(),
            timeout=self.config.api.video_request_timeout,
        )

    async def _query_job(self, job_id: str) -> dict[str, Any]:
        client = await self._get_client()
        return await send_json(
            client,
            "GET",
            self.endpoint,
            SERVICE_NAME,
            params={"generation_id": job_id},
            headers=self._headers(),
            timeout=self.config.api.video_request_timeout,
        )

    async def create_job(self, image_ref: str, prompt: str, duration_seconds: int) -> str:
        """
        Submit the generation job.

        Returns:
            The remote job id

        Raises:
            RemoteServiceFailure: create failed, or the response carried no id
        """
        payload = self.build_payload(image_ref, prompt, duration_seconds)
        logger.info(f"Creating {duration_seconds}s video with {self.config.models.video_model}")

        data = await self.remote.call(self._create_attempt, payload)

        job_id = data.get("id")
        if not job_id:
            raise RemoteServiceFailure(
                f"No generation id in video response (keys: {', '.join(sorted(data)) or 'none'})",
                service=SERVICE_NAME,
            )
        return str(job_id)

    async def synthesize_video(
        self,
        image_ref: str,
        prompt: str,
        duration_seconds: int = 8,
        on_status: Optional[StatusCallback] = None,
    ) -> VideoResult:
        """
        Create a video job from a scene image and poll it to completion.

        Args:
            image_ref: Scene image as an https URL or data URI
            prompt: Action / dialogue prompt
            duration_seconds: One of 4, 6, 8
            on_status: Called as (status, remote_job_id) on "queued" and on every status change

        Raises:
            InvalidInput: empty image/prompt or unsupported duration (no network call made)
            RemoteServiceBusinessFailure: the job ended failed/error
            GenerationTimeout: no terminal status within the wall-clock ceiling
            RemoteServiceFailure: create or poll failed for any other reason
        """
        self._validate(image_ref, prompt, duration_seconds)

        started = self._clock()
        job_id = await self.create_job(image_ref, prompt, duration_seconds)
        logger.info(f"Video job created: {job_id}")

        last_status = GenerationStatus.QUEUED.value
        self._emit_status(on_status, last_status, job_id)
        polls = 0

        async def poll_once() -> Optional[dict[str, Any]]:
            nonlocal last_status, polls
            polls += 1
            data = await self._query_job(job_id)
            status = str(data.get("status") or "").lower()

            if status and status != last_status:
                logger.info(f"Video job {job_id}: {last_status} -> {status}")
                last_status = status
                self._emit_status(on_status, status, job_id)

            if status == GenerationStatus.COMPLETED.value:
                return data

            if status in FAILED_STATUSES:
                remote_message = nested_get(data, "error", "message") or "Video generation failed"
                raise RemoteServiceBusinessFailure(
                    f"Video generation failed: {remote_message}",
                    remote_message=remote_message,
                    service=SERVICE_NAME,
                )

            return None

        data = await self.remote.poll(poll_once, self.poll_policy, clock=self._clock)

        video_url = nested_get(data, "video", "url")
        if not video_url:
            raise RemoteServiceFailure(
                f"Video job {job_id} completed without a video URL",
                service=SERVICE_NAME,
                attempts=polls,
            )

        credits = credits_used(data)
        if self.ledger is not None:
            self.ledger.charge(credits)

        elapsed = self._clock() - started
        logger.info(f"Video ready after {polls} polls ({elapsed:.0f}s), {credits:,} credits")
        return VideoResult(
            video_ref=video_url,
            remote_job_id=job_id,
            credits_charged=credits,
            status=GenerationStatus.COMPLETED,
            prompt=prompt,
            elapsed_seconds=elapsed,
            polls=polls,
        )

    async def download_video(self, video_url: str, output_path: str) -> Optional[str]:
        """Download a finished video. Returns the local path, or None if failed."""
        client = await self._get_client()
        return await download_asset(video_url, output_path, client)

    def get_resilience_status(self) -> dict:
        return self.remote.get_status()
