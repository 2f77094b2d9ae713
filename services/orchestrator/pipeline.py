"""
Pipeline Orchestrator

Sequences the two generation stages for one job:

    pending -> composing_scene -> synthesizing_video -> complete
                     |                    |
                     +------> error <-----+

The job record is updated before observers are notified, so anything an
observer reacts to is already visible through get_job(). Runs never raise
for pipeline failures; they end in the ``error`` stage and return a
PipelineResult describing what went wrong and where.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from core.config import get_config
from core.errors import DuoCastError, InsufficientCredits, InvalidInput
from services.media.assets import (
    PortraitImage,
    resolve_image_ref,
    save_image_ref,
    validate_portrait,
)
from services.prompting.templates import CAMERA_DESCRIPTIONS, TONE_DESCRIPTIONS, build_video_prompt

from .registry import InMemoryJobStore, JobStore
from .state import (
    GenerationJob,
    JobStage,
    PipelineOptions,
    PipelineResult,
    StageUpdate,
)

logger = logging.getLogger(__name__)

Observer = Callable[[StageUpdate], None]


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


class PipelineOrchestrator:
    """
    Runs scene composition then video synthesis for one job at a time per task.

    Usage:
        orchestrator = PipelineOrchestrator(
            scene_client=SceneCompositionClient(ledger=ledger),
            video_client=VideoSynthesisClient(ledger=ledger),
            ledger=ledger,
            observers=[hub.observe],
        )

        result = await orchestrator.run(portrait_a, portrait_b, "Two colleagues in an office")
        if result.success:
            print(result.video_ref)

    The clients charge the ledger themselves; the orchestrator only reads it
    for the optional credit cap and for reporting.
    """

    def __init__(
        self,
        scene_client: Any,
        video_client: Any,
        job_store: Optional[JobStore] = None,
        ledger: Optional[Any] = None,
        config: Optional[Any] = None,
        observers: Iterable[Observer] = (),
    ):
        self.config = config or get_config()
        self.scene_client = scene_client
        self.video_client = video_client
        self.job_store = job_store or InMemoryJobStore(max_jobs=self.config.pipeline.max_jobs)
        self.ledger = ledger
        self._observers: list[Observer] = list(observers)
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Observers and job updates
    # ------------------------------------------------------------------

    def add_observer(self, observer: Observer):
        """Register a callable receiving every StageUpdate."""
        self._observers.append(observer)

    def _notify(self, update: StageUpdate):
        for observer in self._observers:
            try:
                observer(update)
            except Exception as e:
                logger.warning(f"Progress observer failed for job {update.job_id}: {e}")

    def _advance(
        self,
        job_id: str,
        stage: JobStage,
        message: str,
        data: Optional[dict] = None,
        **changes,
    ):
        """Write the job record first, then tell observers."""
        self.job_store.update(job_id, stage=stage, message=message, **changes)
        self._notify(StageUpdate(job_id=job_id, stage=stage, message=message, data=data or {}))

    def _open_job(self, job_id: Optional[str]) -> GenerationJob:
        if job_id:
            existing = self.job_store.get(job_id)
            if existing is not None:
                return existing
            return self.job_store.create(GenerationJob(job_id=job_id))
        return self.job_store.create(GenerationJob())

    def get_job(self, job_id: str) -> Optional[GenerationJob]:
        """Snapshot of a job, or None if unknown (or evicted)."""
        return self.job_store.get(job_id)

    def list_jobs(self) -> list[GenerationJob]:
        return self.job_store.list_jobs()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_options(self, options: PipelineOptions):
        allowed = self.config.pipeline.allowed_durations
        if isinstance(options.duration, bool) or options.duration not in allowed:
            raise InvalidInput(
                f"Duration must be one of {', '.join(str(d) for d in allowed)} seconds "
                f"(got {options.duration!r})"
            )
        if options.tone not in TONE_DESCRIPTIONS:
            raise InvalidInput(f"Unknown tone: {options.tone}")
        if options.camera_style not in CAMERA_DESCRIPTIONS:
            raise InvalidInput(f"Unknown camera style: {options.camera_style}")

    def _validate_scenario(self, scenario: Optional[str]):
        if not scenario or not scenario.strip():
            raise InvalidInput("Scenario is required")

    def check_credit_cap(self):
        if not self.config.credits.enforce_cap or self.ledger is None:
            return
        if not self.ledger.has_remaining():
            raise InsufficientCredits(self.ledger.snapshot().remaining)

    def _default_options(self) -> PipelineOptions:
        return PipelineOptions(duration=self.config.pipeline.default_duration)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def run(
        self,
        portrait_a: Optional[PortraitImage],
        portrait_b: Optional[PortraitImage],
        scenario: str,
        options: Optional[PipelineOptions] = None,
        job_id: Optional[str] = None,
    ) -> PipelineResult:
        """
        Full pipeline: compose the scene from two portraits, then animate it.

        Returns:
            PipelineResult in ``complete`` or ``error`` stage
        """
        options = options or self._default_options()
        job = self._open_job(job_id)
        started = time.perf_counter()
        result = PipelineResult(job_id=job.job_id, stage=JobStage.PENDING)

        self._notify(StageUpdate(job_id=job.job_id, stage=JobStage.PENDING, message=job.message))
        logger.info(f"Job {job.job_id}: starting full pipeline")

        try:
            validate_portrait(portrait_a, "Portrait A", self.config.pipeline.max_upload_bytes)
            validate_portrait(portrait_b, "Portrait B", self.config.pipeline.max_upload_bytes)
            self._validate_scenario(scenario)
            self.validate_options(options)
            self.check_credit_cap()
        except DuoCastError as e:
            return self._fail(result, e, JobStage.PENDING, started)

        # Stage 1: scene composition
        self._advance(job.job_id, JobStage.COMPOSING_SCENE, "Composing scene...")
        scene_started = time.perf_counter()
        try:
            scene = await self.scene_client.compose_scene(portrait_a, portrait_b, scenario)
        except Exception as e:
            result.timing.scene_ms = _elapsed_ms(scene_started)
            return self._fail(result, e, JobStage.COMPOSING_SCENE, started)

        result.timing.scene_ms = _elapsed_ms(scene_started)
        result.composite_image_ref = scene.image_ref
        result.scene_credits = scene.credits_charged
        self.job_store.update(
            job.job_id,
            composite_image_ref=scene.image_ref,
            credits_charged=scene.credits_charged,
        )
        self._notify(StageUpdate(
            job_id=job.job_id,
            stage=JobStage.COMPOSING_SCENE,
            message="Scene composed",
            data={
                "composite_image_ref": scene.image_ref,
                "credits": scene.credits_charged,
                "attempts": scene.attempts,
            },
        ))

        if options.save_scene:
            try:
                result.scene_path = await save_image_ref(
                    scene.image_ref,
                    str(self._output_dir(options) / f"scene_{job.job_id}.png"),
                )
            except Exception as e:
                return self._fail(result, e, JobStage.COMPOSING_SCENE, started)

        return await self._synthesize(result, scenario, options, started)

    async def run_from_scene(
        self,
        scene_image_ref: str,
        scenario: str,
        options: Optional[PipelineOptions] = None,
        job_id: Optional[str] = None,
    ) -> PipelineResult:
        """
        Skip scene composition and animate an existing scene.

        ``scene_image_ref`` may be an https URL, a data URI, or a local image path.
        """
        options = options or self._default_options()
        job = self._open_job(job_id)
        started = time.perf_counter()
        result = PipelineResult(job_id=job.job_id, stage=JobStage.PENDING)

        self._notify(StageUpdate(job_id=job.job_id, stage=JobStage.PENDING, message=job.message))
        logger.info(f"Job {job.job_id}: starting from existing scene")

        try:
            image_ref = resolve_image_ref(scene_image_ref)
            self._validate_scenario(scenario)
            self.validate_options(options)
            self.check_credit_cap()
        except DuoCastError as e:
            return self._fail(result, e, JobStage.PENDING, started)

        result.composite_image_ref = image_ref
        self.job_store.update(job.job_id, composite_image_ref=image_ref)

        return await self._synthesize(result, scenario, options, started)

    async def _synthesize(
        self,
        result: PipelineResult,
        scenario: str,
        options: PipelineOptions,
        started: float,
    ) -> PipelineResult:
        """Stage 2: video synthesis from result.composite_image_ref."""
        job_id = result.job_id
        prompt = options.action_prompt or build_video_prompt(
            scenario,
            tone=options.tone,
            camera_style=options.camera_style,
        )
        result.prompt = prompt

        self._advance(job_id, JobStage.SYNTHESIZING_VIDEO, "Synthesizing video...")

        def on_status(status: str, remote_job_id: str):
            self._advance(
                job_id,
                JobStage.SYNTHESIZING_VIDEO,
                f"Video status: {status}",
                data={"remote_status": status, "remote_job_id": remote_job_id},
                remote_status=status,
                remote_job_id=remote_job_id,
            )

        video_started = time.perf_counter()
        try:
            video = await self.video_client.synthesize_video(
                result.composite_image_ref,
                prompt,
                duration_seconds=options.duration,
                on_status=on_status,
            )
        except Exception as e:
            result.timing.video_ms = _elapsed_ms(video_started)
            return self._fail(result, e, JobStage.SYNTHESIZING_VIDEO, started)

        result.timing.video_ms = _elapsed_ms(video_started)
        result.video_ref = video.video_ref
        result.remote_job_id = video.remote_job_id
        result.video_credits = video.credits_charged

        if options.download_video:
            try:
                result.video_path = await self.video_client.download_video(
                    video.video_ref,
                    str(self._output_dir(options) / f"video_{job_id}.mp4"),
                )
            except Exception as e:
                return self._fail(result, e, JobStage.SYNTHESIZING_VIDEO, started)

        result.stage = JobStage.COMPLETE
        result.timing.total_ms = _elapsed_ms(started)

        data = {
            "composite_image_ref": result.composite_image_ref,
            "video_ref": result.video_ref,
            "remote_job_id": result.remote_job_id,
            "credits": result.credits_charged,
            "timing": {
                "scene_ms": result.timing.scene_ms,
                "video_ms": result.timing.video_ms,
                "total_ms": result.timing.total_ms,
            },
        }
        if self.ledger is not None:
            data["credits_remaining"] = self.ledger.snapshot().remaining

        self._advance(
            job_id,
            JobStage.COMPLETE,
            "Complete",
            data=data,
            video_ref=video.video_ref,
            remote_job_id=video.remote_job_id,
            credits_charged=result.credits_charged,
        )
        logger.info(
            f"Job {job_id} complete in {result.timing.total_ms / 1000:.1f}s "
            f"(scene {result.timing.scene_ms / 1000:.1f}s, video {result.timing.video_ms / 1000:.1f}s)"
        )
        return result

    def _fail(
        self,
        result: PipelineResult,
        error: Exception,
        stage: JobStage,
        started: float,
    ) -> PipelineResult:
        """Move the job to ``error``, keeping whatever the earlier stages produced."""
        if isinstance(error, DuoCastError):
            message = error.message
            kind = error.kind
            error.stage = error.stage or stage.value
        else:
            logger.exception(f"Job {result.job_id}: unexpected error in {stage.value}")
            message = f"{type(error).__name__}: {error}"
            kind = "internal"

        result.stage = JobStage.ERROR
        result.error = message
        result.error_kind = kind
        result.error_stage = stage.value
        result.timing.total_ms = _elapsed_ms(started)

        logger.error(f"Job {result.job_id} failed during {stage.value} [{kind}]: {message}")
        self._advance(
            result.job_id,
            JobStage.ERROR,
            message,
            data={"error_kind": kind, "error_stage": stage.value},
            error=message,
            error_kind=kind,
            error_stage=stage.value,
        )
        return result

    def _output_dir(self, options: PipelineOptions) -> Path:
        return Path(options.output_dir or self.config.pipeline.output_dir)

    # ------------------------------------------------------------------
    # Background runs
    # ------------------------------------------------------------------

    def _schedule(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def start(
        self,
        portrait_a: Optional[PortraitImage],
        portrait_b: Optional[PortraitImage],
        scenario: str,
        options: Optional[PipelineOptions] = None,
    ) -> str:
        """Create the job and run the full pipeline in the background. Returns the job id."""
        job = self.job_store.create(GenerationJob())
        self._schedule(self.run(portrait_a, portrait_b, scenario, options, job_id=job.job_id))
        return job.job_id

    def start_from_scene(
        self,
        scene_image_ref: str,
        scenario: str,
        options: Optional[PipelineOptions] = None,
    ) -> str:
        """Create the job and run from an existing scene in the background."""
        job = self.job_store.create(GenerationJob())
        self._schedule(self.run_from_scene(scene_image_ref, scenario, options, job_id=job.job_id))
        return job.job_id

    async def wait_all(self):
        """Wait for every background run started by this orchestrator."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self):
        await self.scene_client.close()
        await self.video_client.close()
