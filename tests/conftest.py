"""
Shared fixtures: test config, portrait images, and a scripted fake of the
generation API served through httpx.MockTransport.
"""

import json
import os
import sys

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import Config
from core.resilience import RetryPolicy
from services.credits.ledger import CreditLedger
from services.media.assets import PortraitImage

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class FakeAPI:
    """
    Scripted stand-in for the generation gateway.

    Each route holds a queue of responders; the last responder repeats
    once the queue is down to one.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list] = {}
        self.requests: list[httpx.Request] = []

    @staticmethod
    def reply(status: int = 200, payload=None, text: str = None):
        def responder(request: httpx.Request) -> httpx.Response:
            if text is not None:
                return httpx.Response(status, text=text)
            return httpx.Response(status, json=payload if payload is not None else {})
        return responder

    @staticmethod
    def fail(exc_type=httpx.ConnectError):
        def responder(request: httpx.Request):
            raise exc_type("simulated network failure", request=request)
        return responder

    def queue(self, method: str, path: str, *responders):
        self.routes.setdefault((method, path), []).extend(responders)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responders = self.routes.get((request.method, request.url.path))
        if not responders:
            raise AssertionError(f"Unexpected request: {request.method} {request.url}")
        responder = responders.pop(0) if len(responders) > 1 else responders[0]
        return responder(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @staticmethod
    def body(request: httpx.Request) -> dict:
        return json.loads(request.content)


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float):
        self.delays.append(float(delay))


@pytest.fixture
def config(tmp_path):
    config = Config()
    config.api.api_key = "test-key"
    config.api.api_base = "https://api.test"
    config.credits.ledger_path = str(tmp_path / "credits.json")
    config.credits.starting_balance = 20_000_000
    config.credits.enforce_cap = False
    config.pipeline.output_dir = str(tmp_path / "output")
    return config


@pytest.fixture
def ledger(tmp_path):
    ledger = CreditLedger(str(tmp_path / "credits.json"), starting_balance=20_000_000)
    ledger.load()
    return ledger


@pytest.fixture
def fake_api():
    return FakeAPI()


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def fast_retry():
    return RetryPolicy(backoff_delays=(0.0, 0.0, 0.0))


@pytest.fixture
def portraits():
    return (
        PortraitImage(data=PNG_BYTES, mime_type="image/png", filename="alice.png"),
        PortraitImage(data=PNG_BYTES + b"\x01", mime_type="image/png", filename="bob.png"),
    )
