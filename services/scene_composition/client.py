"""
Scene Composition Client

Composes two portrait photos into one landscape scene through the image
edit endpoint. The request completes synchronously (no task polling), so a
single create-and-complete call is wrapped in the fixed retry schedule.

Response shapes vary between model versions; the image locator is taken
from the first extractor in IMAGE_EXTRACTORS that finds one.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from core.config import get_config
from core.errors import InvalidInput, RemoteServiceFailure
from core.http import credits_used, nested_get, send_json
from core.resilience import ResilientRemoteCall, RetryPolicy, SleepFunc
from services.media.assets import PortraitImage, validate_portrait
from services.prompting.templates import build_scene_prompt

logger = logging.getLogger(__name__)

SERVICE_NAME = "scene"


@dataclass
class SceneResult:
    """Result from scene composition."""
    image_ref: str
    credits_charged: int = 0
    attempts: int = 1
    prompt: str = ""


def _first_data_url(payload: dict) -> Optional[str]:
    return nested_get(payload, "data", 0, "url")


def _first_data_b64(payload: dict) -> Optional[str]:
    encoded = nested_get(payload, "data", 0, "b64_json")
    if not encoded:
        return None
    return f"data:image/png;base64,{encoded}"


def _first_images_url(payload: dict) -> Optional[str]:
    return nested_get(payload, "images", 0, "url")


def _top_level_url(payload: dict) -> Optional[str]:
    return nested_get(payload, "url")


# First match wins
IMAGE_EXTRACTORS: tuple[Callable[[dict], Optional[str]], ...] = (
    _first_data_url,
    _first_data_b64,
    _first_images_url,
    _top_level_url,
)


def extract_image_ref(payload: dict[str, Any]) -> Optional[str]:
    """Return the image locator from a scene response, or None if absent."""
    for extractor in IMAGE_EXTRACTORS:
        ref = extractor(payload)
        if isinstance(ref, str) and ref:
            return ref
    return None


class SceneCompositionClient:
    """
    Client for the two-portrait scene composition model.

    Usage:
        client = SceneCompositionClient(ledger=get_ledger())

        result = await client.compose_scene(
            portrait_a=load_image("alice.jpg"),
            portrait_b=load_image("bob.jpg"),
            scenario="Two colleagues discussing a project in a modern office",
        )
        print(result.image_ref)
    """

    def __init__(
        self,
        config: Optional[Any] = None,
        ledger: Optional[Any] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """
        Args:
            config: Optional config override
            ledger: CreditLedger charged once per successful composition
            http_client: Pre-built client (tests pass one with a mock transport)
            retry_policy: Override of the configured backoff schedule
            sleep: Backoff sleep function
        """
        self.config = config or get_config()
        self.ledger = ledger
        self._http_client = http_client
        self._owns_client = http_client is None

        policy = retry_policy or RetryPolicy(backoff_delays=tuple(self.config.retry.backoff_delays))
        self.remote = ResilientRemoteCall(SERVICE_NAME, policy, sleep=sleep)

    @property
    def endpoint(self) -> str:
        return f"{self.config.api.api_base.rstrip('/')}/v1/images/generations"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.config.api.scene_request_timeout)
            self._owns_client = True
        return self._http_client

    async def close(self):
        """Close the HTTP client if we created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    def get_resilience_status(self) -> dict:
        return self.remote.get_status()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api.api_key}",
            "Content-Type": "application/json",
        }

    def build_payload(self, prompt: str, image_urls: list[str]) -> dict[str, Any]:
        models = self.config.models
        return {
            "model": models.scene_model,
            "prompt": prompt,
            "image_urls": image_urls,
            "aspect_ratio": models.scene_aspect_ratio,
            "resolution": models.scene_resolution,
            "num_images": models.scene_num_images,
        }

    async def _attempt(self, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        return await send_json(
            client,
            "POST",
            self.endpoint,
            SERVICE_NAME,
            json=payload,
            headers=self._headers(),
            timeout=self.config.api.scene_request_timeout,
        )

    async def compose_scene(
        self,
        portrait_a: PortraitImage,
        portrait_b: PortraitImage,
        scenario: str,
    ) -> SceneResult:
        """
        Compose one scene with person A on the left and person B on the right.

        Raises:
            InvalidInput: missing/empty images or empty scenario (no network call made)
            RemoteServiceFailure: remote call failed or returned no image
        """
        validate_portrait(portrait_a, "Portrait A")
        validate_portrait(portrait_b, "Portrait B")
        if not scenario or not scenario.strip():
            raise InvalidInput("Scenario is required")

        prompt = build_scene_prompt(scenario)
        payload = self.build_payload(prompt, [portrait_a.to_data_uri(), portrait_b.to_data_uri()])

        logger.info(f"Composing scene with {self.config.models.scene_model}")
        data, attempts = await self.remote.call_with_attempts(self._attempt, payload)

        image_ref = extract_image_ref(data)
        if not image_ref:
            raise RemoteServiceFailure(
                f"No image in scene response (keys: {', '.join(sorted(data)) or 'none'})",
                service=SERVICE_NAME,
                attempts=attempts,
            )

        credits = credits_used(data)
        if self.ledger is not None:
            self.ledger.charge(credits)

        logger.info(f"Scene composed after {attempts} attempt(s), {credits:,} credits")
        return SceneResult(
            image_ref=image_ref,
            credits_charged=credits,
            attempts=attempts,
            prompt=prompt,
        )
