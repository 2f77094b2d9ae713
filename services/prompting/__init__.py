"""
Prompt templates for scene composition and video synthesis.
"""

from .templates import (
    CAMERA_DESCRIPTIONS,
    TONE_DESCRIPTIONS,
    build_conversation_context,
    build_scene_prompt,
    build_video_prompt,
)

__all__ = [
    "CAMERA_DESCRIPTIONS",
    "TONE_DESCRIPTIONS",
    "build_conversation_context",
    "build_scene_prompt",
    "build_video_prompt",
]
