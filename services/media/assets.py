"""
Image and Asset Utilities

Handles portrait loading, validation and data-URI encoding for API
submission, and saving generated scene images / videos to local storage.
"""

import base64
import binascii
import logging
import mimetypes
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from core.errors import InvalidInput

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
}

# API docs say 10MB but base64 inflates the payload
MAX_FILE_SIZE = 20 * 1024 * 1024

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.*)$", re.DOTALL)


@dataclass
class PortraitImage:
    """Raw image bytes plus the MIME type the API needs."""
    data: bytes
    mime_type: str
    filename: str = ""

    @property
    def size(self) -> int:
        return len(self.data)

    def to_data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"

    @classmethod
    def from_data_uri(cls, uri: str, filename: str = "") -> "PortraitImage":
        match = _DATA_URI_RE.match(uri.strip())
        if not match:
            raise InvalidInput("Not a base64 data URI")
        try:
            data = base64.b64decode(match.group("data"), validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidInput(f"Invalid base64 image data: {e}")
        return cls(data=data, mime_type=match.group("mime"), filename=filename)


def is_data_uri(ref: str) -> bool:
    return ref.startswith("data:")


def is_remote_url(ref: str) -> bool:
    return ref.startswith("http://") or ref.startswith("https://")


def load_image(image_path: str) -> PortraitImage:
    """Load and validate an image from the filesystem."""
    path = Path(image_path).resolve()

    if not path.exists():
        raise InvalidInput(f"Image file not found: {path}")

    ext = path.suffix.lower()
    if ext not in SUPPORTED_FORMATS:
        raise InvalidInput(
            f"Unsupported image format: {ext}. Supported: {', '.join(SUPPORTED_FORMATS)}"
        )

    data = path.read_bytes()
    if len(data) > MAX_FILE_SIZE:
        raise InvalidInput(
            f"Image file too large: {len(data) / 1024 / 1024:.2f}MB. "
            f"Max: {MAX_FILE_SIZE // 1024 // 1024}MB"
        )

    return PortraitImage(data=data, mime_type=SUPPORTED_FORMATS[ext], filename=path.name)


def validate_portrait(
    image: Optional[PortraitImage],
    label: str,
    max_bytes: Optional[int] = None,
) -> PortraitImage:
    """Check a portrait is present, non-empty, an image, and within size."""
    if image is None:
        raise InvalidInput(f"{label} is required")
    if not isinstance(image.data, (bytes, bytearray)) or not image.data:
        raise InvalidInput(f"{label} is empty")
    if not image.mime_type or not image.mime_type.startswith("image/"):
        raise InvalidInput(f"{label} must be an image (got {image.mime_type or 'unknown type'})")
    if max_bytes is not None and len(image.data) > max_bytes:
        raise InvalidInput(
            f"{label} is too large: {len(image.data) / 1024 / 1024:.2f}MB "
            f"(max {max_bytes / 1024 / 1024:.0f}MB)"
        )
    return image


def resolve_image_ref(ref: str) -> str:
    """
    Turn a caller-supplied scene reference into something the video API accepts.

    URLs and data URIs pass through; anything else is treated as a local path
    and inlined as a data URI.
    """
    ref = (ref or "").strip()
    if not ref:
        raise InvalidInput("Scene image reference is required")
    if is_remote_url(ref) or is_data_uri(ref):
        return ref
    return load_image(ref).to_data_uri()


async def download_asset(
    url: str,
    output_path: str,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[str]:
    """
    Download a generated asset from a temporary URL to local storage.

    Returns:
        Local path to the downloaded file, or None if failed
    """
    own_client = client is None
    http = client or httpx.AsyncClient(timeout=300.0)

    try:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        response = await http.get(url, follow_redirects=True)
        response.raise_for_status()

        path.write_bytes(response.content)

        logger.info(f"Downloaded: {path} ({len(response.content) / 1024 / 1024:.1f} MB)")
        return str(path)

    except (httpx.HTTPError, OSError) as e:
        logger.error(f"Failed to download {url[:80]}: {e}")
        return None

    finally:
        if own_client:
            await http.aclose()


async def save_image_ref(
    ref: str,
    output_path: str,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[str]:
    """Save a scene image given as a data URI or URL. Returns the local path or None."""
    if is_data_uri(ref):
        try:
            image = PortraitImage.from_data_uri(ref)
        except InvalidInput as e:
            logger.error(f"Could not decode scene image: {e}")
            return None

        path = Path(output_path)
        if not path.suffix:
            path = path.with_suffix(mimetypes.guess_extension(image.mime_type) or ".png")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(image.data)
        except OSError as e:
            logger.error(f"Failed to save scene to {path}: {e}")
            return None

        logger.info(f"Scene saved to: {path}")
        return str(path)

    if is_remote_url(ref):
        return await download_asset(ref, output_path, client)

    logger.warning(f"Unrecognised image reference, not saved: {ref[:40]}")
    return None
