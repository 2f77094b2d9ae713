"""
Scene composition client tests against a scripted fake API.

Run with:
    python -m pytest tests/test_scene_composition.py -v
"""

import asyncio
import json
import os
import sys

import httpx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.errors import (
    InvalidInput,
    RemoteServiceClientError,
    RemoteServiceFailure,
    RemoteServiceTransientFailure,
)
from core.resilience import RetryPolicy
from services.media.assets import PortraitImage
from services.scene_composition.client import SceneCompositionClient, extract_image_ref

SCENE_PATH = "/v1/images/generations"
SCENARIO = "Two colleagues discussing a project in a modern office"


def scene_payload(url: str = "https://cdn.test/scene.png", credits=None) -> dict:
    payload = {"data": [{"url": url}]}
    if credits is not None:
        payload["meta"] = {"usage": {"credits_used": credits}}
    return payload


class TestImageExtraction:
    """Image locator is taken from the first shape that matches."""

    @pytest.mark.parametrize(
        "payload, expected",
        [
            (
                {
                    "data": [{"url": "https://a.test/1.png", "b64_json": "QUJD"}],
                    "images": [{"url": "https://b.test/2.png"}],
                    "url": "https://c.test/3.png",
                },
                "https://a.test/1.png",
            ),
            (
                {"data": [{"b64_json": "QUJD"}], "images": [{"url": "https://b.test/2.png"}]},
                "data:image/png;base64,QUJD",
            ),
            (
                {"images": [{"url": "https://b.test/2.png"}], "url": "https://c.test/3.png"},
                "https://b.test/2.png",
            ),
            ({"url": "https://c.test/3.png"}, "https://c.test/3.png"),
        ],
    )
    def test_priority_order(self, payload, expected):
        assert extract_image_ref(payload) == expected

    def test_no_locator(self):
        assert extract_image_ref({"data": [], "status": "ok"}) is None


class TestComposeScene:
    """compose_scene request shape, retries and credit accounting."""

    def make_client(self, config, fake_api, ledger=None, sleep=None, policy=None):
        kwargs = {"sleep": sleep} if sleep else {}
        return SceneCompositionClient(
            config=config,
            ledger=ledger,
            http_client=fake_api.client(),
            retry_policy=policy or RetryPolicy(backoff_delays=(0.0, 0.0, 0.0)),
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_request_shape(self, config, fake_api, portraits):
        fake_api.queue("POST", SCENE_PATH, fake_api.reply(200, scene_payload()))
        client = self.make_client(config, fake_api)

        result = await client.compose_scene(*portraits, SCENARIO)

        assert result.image_ref == "https://cdn.test/scene.png"
        request = fake_api.calls("POST", SCENE_PATH)[0]
        assert request.headers["Authorization"] == "Bearer test-key"

        body = fake_api.body(request)
        assert body["model"] == "google/nano-banana-pro-edit"
        assert body["aspect_ratio"] == "16:9"
        assert body["resolution"] == "2K"
        assert body["num_images"] == 1
        assert body["image_urls"] == [portraits[0].to_data_uri(), portraits[1].to_data_uri()]
        assert SCENARIO in body["prompt"]
        assert "Left side" in body["prompt"] and "Right side" in body["prompt"]

    @pytest.mark.asyncio
    async def test_charges_ledger_once(self, config, fake_api, portraits, ledger):
        fake_api.queue("POST", SCENE_PATH, fake_api.reply(200, scene_payload(credits=120)))
        client = self.make_client(config, fake_api, ledger=ledger)

        result = await client.compose_scene(*portraits, SCENARIO)

        assert result.credits_charged == 120
        assert ledger.consumed_total == 120

    @pytest.mark.asyncio
    async def test_missing_usage_counts_as_zero(self, config, fake_api, portraits, ledger):
        fake_api.queue("POST", SCENE_PATH, fake_api.reply(200, scene_payload()))
        client = self.make_client(config, fake_api, ledger=ledger)

        result = await client.compose_scene(*portraits, SCENARIO)

        assert result.credits_charged == 0
        assert ledger.consumed_total == 0
        assert not ledger.path.exists()

    @pytest.mark.asyncio
    async def test_retries_server_errors_then_succeeds(self, config, fake_api, portraits, ledger, sleeps):
        fake_api.queue(
            "POST",
            SCENE_PATH,
            fake_api.reply(503, {"error": "overloaded"}),
            fake_api.reply(502, text="<!DOCTYPE html><html>Bad gateway</html>"),
            fake_api.reply(200, scene_payload(credits=80)),
        )
        client = self.make_client(config, fake_api, ledger=ledger, sleep=sleeps, policy=RetryPolicy())

        result = await client.compose_scene(*portraits, SCENARIO)

        assert result.attempts == 3
        assert sleeps.delays == [5.0, 15.0]
        assert ledger.consumed_total == 80

    @pytest.mark.asyncio
    async def test_network_errors_are_transient(self, config, fake_api, portraits):
        fake_api.queue("POST", SCENE_PATH, fake_api.fail(httpx.ConnectError))
        client = self.make_client(config, fake_api)

        with pytest.raises(RemoteServiceTransientFailure) as exc_info:
            await client.compose_scene(*portraits, SCENARIO)

        assert exc_info.value.attempts == 4
        assert len(fake_api.requests) == 4

    @pytest.mark.asyncio
    async def test_gateway_page_described(self, config, fake_api, portraits):
        fake_api.queue("POST", SCENE_PATH, fake_api.reply(524, text="<html><body>timeout</body></html>"))
        client = self.make_client(config, fake_api)

        with pytest.raises(RemoteServiceTransientFailure) as exc_info:
            await client.compose_scene(*portraits, SCENARIO)

        assert "gateway" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, config, fake_api, portraits, ledger):
        fake_api.queue("POST", SCENE_PATH, fake_api.reply(400, {"error": "bad image"}))
        client = self.make_client(config, fake_api, ledger=ledger)

        with pytest.raises(RemoteServiceClientError) as exc_info:
            await client.compose_scene(*portraits, SCENARIO)

        assert exc_info.value.status_code == 400
        assert len(fake_api.requests) == 1
        assert ledger.consumed_total == 0

    @pytest.mark.asyncio
    async def test_response_without_image_fails(self, config, fake_api, portraits):
        fake_api.queue("POST", SCENE_PATH, fake_api.reply(200, {"status": "ok", "meta": {}}))
        client = self.make_client(config, fake_api)

        with pytest.raises(RemoteServiceFailure) as exc_info:
            await client.compose_scene(*portraits, SCENARIO)

        assert not isinstance(exc_info.value, RemoteServiceTransientFailure)
        assert "meta" in exc_info.value.message and "status" in exc_info.value.message
        assert len(fake_api.requests) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "portrait_a, scenario",
        [
            (PortraitImage(data=b"", mime_type="image/png"), SCENARIO),
            (PortraitImage(data=b"text", mime_type="text/plain"), SCENARIO),
            (None, SCENARIO),
            (PortraitImage(data=b"\x89PNG", mime_type="image/png"), "   "),
        ],
    )
    async def test_invalid_input_makes_no_request(self, config, fake_api, portraits, portrait_a, scenario):
        client = self.make_client(config, fake_api)

        with pytest.raises(InvalidInput):
            await client.compose_scene(portrait_a, portraits[1], scenario)

        assert fake_api.requests == []


class TestConcurrentCalls:
    """One client shared by overlapping runs, as the server and CLI do."""

    @pytest.mark.asyncio
    async def test_attempts_counted_per_call(self, config, portraits):
        fast_done = asyncio.Event()
        fast_requests = []

        async def handler(request: httpx.Request) -> httpx.Response:
            prompt = json.loads(request.content)["prompt"]
            if "Slow" in prompt:
                await fast_done.wait()
                return httpx.Response(200, json=scene_payload("https://cdn.test/slow.png"))

            fast_requests.append(request)
            if len(fast_requests) < 3:
                return httpx.Response(503, json={"error": "overloaded"})
            fast_done.set()
            return httpx.Response(200, json=scene_payload("https://cdn.test/fast.png"))

        client = SceneCompositionClient(
            config=config,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            retry_policy=RetryPolicy(backoff_delays=(0.0, 0.0, 0.0)),
        )

        slow_task = asyncio.create_task(client.compose_scene(*portraits, "Slow chat in a library"))
        await asyncio.sleep(0)
        fast = await client.compose_scene(*portraits, "Fast chat at a bus stop")
        slow = await asyncio.wait_for(slow_task, timeout=1.0)

        assert fast.attempts == 3
        assert slow.attempts == 1
        assert slow.image_ref == "https://cdn.test/slow.png"
        assert client.remote.stats.total_attempts == 4
