"""
Media helpers: portrait loading/validation and generated asset storage.
"""

from .assets import (
    PortraitImage,
    download_asset,
    load_image,
    resolve_image_ref,
    save_image_ref,
    validate_portrait,
)

__all__ = [
    "PortraitImage",
    "download_asset",
    "load_image",
    "resolve_image_ref",
    "save_image_ref",
    "validate_portrait",
]
