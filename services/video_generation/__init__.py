"""
Video Generation Service

Turns a composed scene image into a talking video with native audio.
"""

from .client import (
    GenerationStatus,
    VideoResult,
    VideoSynthesisClient,
)

__all__ = [
    "GenerationStatus",
    "VideoResult",
    "VideoSynthesisClient",
]
