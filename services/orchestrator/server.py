"""
DuoCast HTTP + SSE Server

FastAPI server that provides:
- GET /api/health - Health check
- GET /api/credits - Credit balance
- POST /api/generate-scene - Compose a scene from two portraits (waits for result)
- POST /api/generate-video - Animate an existing scene (waits for result)
- POST /api/generate - Start the full pipeline in the background
- POST /api/generate-from-scene - Start video-only pipeline in the background
- GET /api/jobs - Recent jobs
- GET /api/status/{job_id} - Job snapshot
- GET /api/monitor/{job_id} - SSE stream for progress

Usage:
    # Start server
    python -m uvicorn services.orchestrator.server:app --host 0.0.0.0 --port 5000

    # Or via main.py
    python main.py server
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from core.config import get_config
from core.errors import (
    DuoCastError,
    GenerationTimeout,
    InsufficientCredits,
    InvalidInput,
    RemoteServiceClientError,
    RemoteServiceFailure,
)
from services.credits.ledger import get_ledger
from services.media.assets import PortraitImage, validate_portrait
from services.scene_composition.client import SceneCompositionClient
from services.streaming.progress_tracker import EventType, ProgressEvent, ProgressHub
from services.video_generation.client import VideoSynthesisClient

from .pipeline import PipelineOrchestrator
from .state import PipelineOptions

logger = logging.getLogger(__name__)

HEARTBEAT_SECONDS = 30.0


# Request/Response Models
class GenerateVideoRequest(BaseModel):
    """Animate an existing scene image."""
    sceneImageUrl: str
    videoPrompt: str
    duration: int = 8


class GenerateFromSceneRequest(BaseModel):
    """Start a video-only pipeline run."""
    sceneImageUrl: str
    scenario: str
    actionPrompt: Optional[str] = None
    duration: int = 8
    tone: str = "professional"
    cameraStyle: str = "static"


class GenerateResponse(BaseModel):
    """Response from the background generate endpoints."""
    generationId: str
    status: str
    monitorUrl: str


def build_orchestrator(ledger: Any, hub: ProgressHub) -> PipelineOrchestrator:
    """Wire the default clients, ledger and progress hub together."""
    config = get_config()
    return PipelineOrchestrator(
        scene_client=SceneCompositionClient(config=config, ledger=ledger),
        video_client=VideoSynthesisClient(config=config, ledger=ledger),
        ledger=ledger,
        config=config,
        observers=[hub.observe],
    )


def create_app(
    orchestrator: Optional[PipelineOrchestrator] = None,
    ledger: Optional[Any] = None,
    hub: Optional[ProgressHub] = None,
) -> FastAPI:
    """
    Build the API app.

    Components not passed in are created on startup from the global config.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting DuoCast server...")
        owns_orchestrator = app.state.orchestrator is None

        if app.state.ledger is None:
            app.state.ledger = get_ledger()
        if app.state.hub is None:
            app.state.hub = ProgressHub()
        if owns_orchestrator:
            app.state.orchestrator = build_orchestrator(app.state.ledger, app.state.hub)

        issues = get_config().validate()
        for issue in issues:
            logger.warning(f"Config: {issue}")

        yield

        logger.info("Shutting down DuoCast server...")
        if owns_orchestrator:
            await app.state.orchestrator.close()

    app = FastAPI(
        title="DuoCast API",
        description="Two portraits and a scenario in, one talking video out",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator
    app.state.ledger = ledger
    app.state.hub = hub

    app.add_exception_handler(DuoCastError, _handle_pipeline_error)
    _register_routes(app)
    return app


def error_status(error: DuoCastError) -> int:
    """HTTP status for a pipeline error."""
    if isinstance(error, InvalidInput):
        return 400
    if isinstance(error, InsufficientCredits):
        return 402
    if isinstance(error, GenerationTimeout):
        return 504
    if isinstance(error, RemoteServiceFailure):
        return 502
    return 500


async def _handle_pipeline_error(request: Request, exc: DuoCastError) -> JSONResponse:
    body = {"success": False, "error": exc.message, "kind": exc.kind}
    if isinstance(exc, RemoteServiceClientError):
        body["vendorStatus"] = exc.status_code
    if isinstance(exc, RemoteServiceFailure):
        body["attempts"] = exc.attempts

    status = error_status(exc)
    logger.error(f"{request.url.path} -> {status} [{exc.kind}]: {exc.message}")
    return JSONResponse(status_code=status, content=body)


async def _read_portrait(upload: Optional[UploadFile], label: str, max_bytes: int) -> PortraitImage:
    """Turn an upload into a validated portrait (400 on any violation)."""
    if upload is None:
        raise InvalidInput(f"{label} is required")
    if not (upload.content_type or "").startswith("image/"):
        raise InvalidInput(f"{label} must be an image file")

    data = await upload.read()
    image = PortraitImage(data=data, mime_type=upload.content_type, filename=upload.filename or "")
    return validate_portrait(image, label, max_bytes)


def _format_sse(event: ProgressEvent) -> str:
    if event.event_type == EventType.HEARTBEAT:
        return ": heartbeat\n\n"
    return event.to_sse()


def _register_routes(app: FastAPI):

    @app.get("/")
    async def root():
        """Root endpoint with API info."""
        return {
            "service": "DuoCast",
            "version": "1.0.0",
            "endpoints": {
                "GET /api/health": "Health check",
                "GET /api/jobs": "Recent jobs",
                "GET /api/credits": "Credit balance",
                "POST /api/generate-scene": "Compose a scene from two portraits",
                "POST /api/generate-video": "Animate a scene image",
                "POST /api/generate": "Start full pipeline",
                "POST /api/generate-from-scene": "Start pipeline from an existing scene",
                "GET /api/status/{job_id}": "Job status",
                "GET /api/monitor/{job_id}": "SSE progress stream",
            },
        }

    @app.get("/api/health")
    async def health(request: Request):
        """Health check with retry/poll statistics for both remote services."""
        orchestrator: PipelineOrchestrator = request.app.state.orchestrator
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "remote": {
                "scene": orchestrator.scene_client.get_resilience_status(),
                "video": orchestrator.video_client.get_resilience_status(),
            },
        }

    @app.get("/api/credits")
    async def credits(request: Request):
        return request.app.state.ledger.snapshot().to_dict()

    @app.post("/api/generate-scene")
    async def generate_scene(
        request: Request,
        portraitA: Optional[UploadFile] = File(None),
        portraitB: Optional[UploadFile] = File(None),
        scenario: str = Form(""),
    ):
        """Compose a scene and wait for the result."""
        state = request.app.state
        max_bytes = state.orchestrator.config.pipeline.max_upload_bytes

        portrait_a = await _read_portrait(portraitA, "Portrait A", max_bytes)
        portrait_b = await _read_portrait(portraitB, "Portrait B", max_bytes)
        state.orchestrator.check_credit_cap()

        scene = await state.orchestrator.scene_client.compose_scene(portrait_a, portrait_b, scenario)
        return {
            "success": True,
            "imageUrl": scene.image_ref,
            "creditsUsed": scene.credits_charged,
            "creditsRemaining": state.ledger.snapshot().remaining,
        }

    @app.post("/api/generate-video")
    async def generate_video(request: Request, body: GenerateVideoRequest):
        """Animate an existing scene and wait for the result."""
        state = request.app.state
        state.orchestrator.check_credit_cap()

        video = await state.orchestrator.video_client.synthesize_video(
            body.sceneImageUrl,
            body.videoPrompt,
            duration_seconds=body.duration,
        )
        return {
            "success": True,
            "videoUrl": video.video_ref,
            "generationId": video.remote_job_id,
            "creditsUsed": video.credits_charged,
            "creditsRemaining": state.ledger.snapshot().remaining,
        }

    @app.post("/api/generate", response_model=GenerateResponse)
    async def generate(
        request: Request,
        portraitA: Optional[UploadFile] = File(None),
        portraitB: Optional[UploadFile] = File(None),
        scenario: str = Form(""),
        actionPrompt: Optional[str] = Form(None),
        duration: int = Form(8),
        tone: str = Form("professional"),
        cameraStyle: str = Form("static"),
    ):
        """
        Start the full pipeline.

        Returns immediately with the job id. Use /api/monitor/{job_id} to
        track progress via SSE or /api/status/{job_id} to poll.
        """
        orchestrator: PipelineOrchestrator = request.app.state.orchestrator
        max_bytes = request.app.state.orchestrator.config.pipeline.max_upload_bytes

        portrait_a = await _read_portrait(portraitA, "Portrait A", max_bytes)
        portrait_b = await _read_portrait(portraitB, "Portrait B", max_bytes)
        if not scenario.strip():
            raise InvalidInput("Scenario is required")

        options = PipelineOptions(
            action_prompt=actionPrompt or None,
            duration=duration,
            tone=tone,
            camera_style=cameraStyle,
        )
        orchestrator.validate_options(options)
        orchestrator.check_credit_cap()

        job_id = orchestrator.start(portrait_a, portrait_b, scenario, options)
        logger.info(f"Job {job_id} started")
        return GenerateResponse(
            generationId=job_id,
            status="started",
            monitorUrl=f"/api/monitor/{job_id}",
        )

    @app.post("/api/generate-from-scene", response_model=GenerateResponse)
    async def generate_from_scene(request: Request, body: GenerateFromSceneRequest):
        """Start a pipeline run that skips scene composition."""
        orchestrator: PipelineOrchestrator = request.app.state.orchestrator
        if not body.sceneImageUrl.strip():
            raise InvalidInput("Scene image reference is required")
        if not body.scenario.strip():
            raise InvalidInput("Scenario is required")

        options = PipelineOptions(
            action_prompt=body.actionPrompt or None,
            duration=body.duration,
            tone=body.tone,
            camera_style=body.cameraStyle,
        )
        orchestrator.validate_options(options)
        orchestrator.check_credit_cap()

        job_id = orchestrator.start_from_scene(body.sceneImageUrl, body.scenario, options)
        logger.info(f"Job {job_id} started from existing scene")
        return GenerateResponse(
            generationId=job_id,
            status="started",
            monitorUrl=f"/api/monitor/{job_id}",
        )

    @app.get("/api/jobs")
    async def jobs(request: Request):
        """Recent jobs, oldest first."""
        return {"jobs": [job.to_dict() for job in request.app.state.orchestrator.list_jobs()]}

    @app.get("/api/status/{job_id}")
    async def status(request: Request, job_id: str):
        job = request.app.state.orchestrator.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
        return job.to_dict()

    @app.get("/api/monitor/{job_id}")
    async def monitor(request: Request, job_id: str):
        """
        SSE endpoint for real-time progress monitoring.

        Replays events already emitted for the job, then streams new ones
        until the job completes or fails. Sends a heartbeat comment every 30s.

        Usage:
            curl -N http://localhost:5000/api/monitor/<job_id>
        """
        hub: ProgressHub = request.app.state.hub
        job = request.app.state.orchestrator.get_job(job_id)
        if job is None and not hub.knows(job_id):
            raise HTTPException(status_code=404, detail=f"Job {job_id} not found")

        async def event_stream():
            yield ProgressEvent(
                job_id=job_id,
                event_type=EventType.INFO,
                stage=job.stage.value if job else "",
                message="Connected to progress stream",
            ).to_sse()

            # Finished before any history was recorded (or history evicted)
            if job is not None and job.stage.is_terminal and not hub.knows(job_id):
                yield ProgressEvent(
                    job_id=job_id,
                    event_type=EventType.COMPLETED if job.error is None else EventType.FAILED,
                    stage=job.stage.value,
                    message=job.message,
                    data=job.to_dict(),
                ).to_sse()
                return

            async for event in hub.subscribe(job_id, heartbeat_interval=HEARTBEAT_SECONDS):
                yield _format_sse(event)

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )


app = create_app()
