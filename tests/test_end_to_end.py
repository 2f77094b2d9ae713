"""
End-to-end pipeline tests: the real scene and video clients behind the
scripted fake API, driven by the orchestrator with a file-backed ledger.

Run with:
    python -m pytest tests/test_end_to_end.py -v
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.resilience import PollPolicy, RetryPolicy
from services.credits.ledger import CreditLedger
from services.orchestrator import JobStage, PipelineOrchestrator
from services.scene_composition.client import SceneCompositionClient
from services.video_generation.client import VideoSynthesisClient

SCENE_PATH = "/v1/images/generations"
VIDEO_PATH = "/v2/video/generations"
SCENARIO = "Two colleagues in an office"
SCENE_URL = "https://cdn.test/scene.png"
VIDEO_URL = "https://example/video.mp4"


def scene_reply(fake_api, credits=120):
    return fake_api.reply(200, {"data": [{"url": SCENE_URL}], "meta": {"usage": {"credits_used": credits}}})


def video_status(fake_api, status, **extra):
    return fake_api.reply(200, {"id": "job-1", "status": status, **extra})


@pytest.fixture
def orchestrator_for(config, fake_api, ledger):
    def build(poll_policy=None, observers=()):
        no_backoff = RetryPolicy(backoff_delays=(0.0, 0.0, 0.0))
        scene = SceneCompositionClient(
            config=config,
            ledger=ledger,
            http_client=fake_api.client(),
            retry_policy=no_backoff,
        )
        video = VideoSynthesisClient(
            config=config,
            ledger=ledger,
            http_client=fake_api.client(),
            retry_policy=no_backoff,
            poll_policy=poll_policy or PollPolicy(interval=0.01, timeout=5.0, max_consecutive_failures=5),
        )
        return PipelineOrchestrator(
            scene_client=scene,
            video_client=video,
            ledger=ledger,
            config=config,
            observers=observers,
        )
    return build


class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_two_portraits_to_video(self, fake_api, ledger, portraits, orchestrator_for):
        fake_api.queue("POST", SCENE_PATH, scene_reply(fake_api))
        fake_api.queue("POST", VIDEO_PATH, video_status(fake_api, "queued"))
        fake_api.queue(
            "GET",
            VIDEO_PATH,
            video_status(fake_api, "queued"),
            video_status(fake_api, "generating"),
            video_status(
                fake_api,
                "completed",
                video={"url": VIDEO_URL},
                meta={"usage": {"credits_used": 250}},
            ),
        )
        updates = []
        orchestrator = orchestrator_for(observers=[updates.append])
        consumed_before = ledger.consumed_total

        result = await orchestrator.run(*portraits, SCENARIO)

        assert result.success
        assert result.composite_image_ref == SCENE_URL
        assert result.video_ref == VIDEO_URL
        assert result.remote_job_id == "job-1"
        assert result.scene_credits == 120
        assert result.video_credits == 250
        assert result.timing.total_ms > 0
        assert ledger.consumed_total == consumed_before + 370

        reloaded = CreditLedger(str(ledger.path), starting_balance=20_000_000)
        assert reloaded.load() == consumed_before + 370

        remote = [u.data["remote_status"] for u in updates if "remote_status" in u.data]
        assert remote == ["queued", "generating", "completed"]
        assert updates[-1].stage == JobStage.COMPLETE

        video_request = fake_api.body(fake_api.calls("POST", VIDEO_PATH)[0])
        assert video_request["image_url"] == SCENE_URL
        assert SCENARIO in video_request["prompt"]
        assert len(fake_api.calls("POST", SCENE_PATH)) == 1

        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_poll_budget_exhausted_is_transient(self, fake_api, ledger, portraits, orchestrator_for):
        fake_api.queue("POST", SCENE_PATH, scene_reply(fake_api))
        fake_api.queue("POST", VIDEO_PATH, video_status(fake_api, "queued"))
        fake_api.queue("GET", VIDEO_PATH, fake_api.reply(503, {"error": "unavailable"}))
        orchestrator = orchestrator_for(
            poll_policy=PollPolicy(interval=0.0, timeout=5.0, max_consecutive_failures=5),
        )

        result = await orchestrator.run(*portraits, SCENARIO)

        assert result.stage == JobStage.ERROR
        assert result.error_kind == "transient"
        assert result.error_stage == "synthesizing_video"
        assert result.composite_image_ref == SCENE_URL
        assert len(fake_api.calls("GET", VIDEO_PATH)) == 6
        assert ledger.consumed_total == 120

        job = orchestrator.get_job(result.job_id)
        assert job.error_kind == "transient"

    @pytest.mark.asyncio
    async def test_remote_job_failure_is_business_failure(self, fake_api, ledger, portraits, orchestrator_for):
        fake_api.queue("POST", SCENE_PATH, scene_reply(fake_api))
        fake_api.queue("POST", VIDEO_PATH, video_status(fake_api, "queued"))
        fake_api.queue(
            "GET",
            VIDEO_PATH,
            video_status(fake_api, "generating"),
            video_status(fake_api, "failed", error={"message": "Content policy violation"}),
        )
        orchestrator = orchestrator_for(
            poll_policy=PollPolicy(interval=0.0, timeout=5.0, max_consecutive_failures=5),
        )

        result = await orchestrator.run(*portraits, SCENARIO)

        assert result.error_kind == "business_failure"
        assert "Content policy violation" in result.error
        assert ledger.consumed_total == 120
