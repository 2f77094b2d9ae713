"""
HTTP helpers shared by the remote API clients.

Turns one httpx round-trip into either a parsed JSON object or one of the
classified remote failures from ``core.errors``.
"""

import json
import logging
from typing import Any

import httpx

from .errors import (
    RemoteServiceClientError,
    RemoteServiceTransientFailure,
)

logger = logging.getLogger(__name__)


def is_html_response(text: str) -> bool:
    """Gateways (Cloudflare 524 etc.) answer with an HTML page instead of JSON."""
    head = text.lstrip()[:20].lower()
    return head.startswith("<!doctype") or head.startswith("<html")


def describe_body(text: str, limit: int = 100) -> str:
    if is_html_response(text):
        return "gateway timeout/error page"
    return text[:limit]


def parse_response(response: httpx.Response, service: str) -> dict[str, Any]:
    """
    Classify a response.

    Raises:
        RemoteServiceTransientFailure: status >= 500, or a 2xx body that is not a JSON object
        RemoteServiceClientError: status 400-499
    """
    status = response.status_code

    if status >= 500:
        raise RemoteServiceTransientFailure(
            f"{service} error ({status}): {describe_body(response.text)}",
            service=service,
            status_code=status,
        )

    if status >= 400:
        raise RemoteServiceClientError(
            f"{service} error ({status}): {response.text}",
            service=service,
            status_code=status,
        )

    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise RemoteServiceTransientFailure(
            f"{service} returned a non-JSON body ({status}): {describe_body(response.text)}",
            service=service,
            status_code=status,
        )

    if not isinstance(data, dict):
        raise RemoteServiceTransientFailure(
            f"{service} returned unexpected JSON ({type(data).__name__})",
            service=service,
            status_code=status,
        )

    return data


async def send_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    service: str,
    **kwargs,
) -> dict[str, Any]:
    """Perform one request and return the classified JSON payload."""
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise RemoteServiceTransientFailure(
            f"{service} request timed out: {type(e).__name__}",
            service=service,
        )
    except httpx.TransportError as e:
        raise RemoteServiceTransientFailure(
            f"{service} request failed: {type(e).__name__}: {e}",
            service=service,
        )

    return parse_response(response, service)


def nested_get(payload: Any, *path: Any) -> Any:
    """Walk dict keys / list indexes, returning None on any missing step."""
    current = payload
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
        elif not isinstance(current, dict):
            return None
        current = current[key] if isinstance(key, int) else current.get(key)
        if current is None:
            return None
    return current


def credits_used(payload: dict[str, Any]) -> int:
    """Read ``meta.usage.credits_used``; missing or malformed usage counts as 0."""
    value = nested_get(payload, "meta", "usage", "credits_used")
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        return 0
    return int(value)
