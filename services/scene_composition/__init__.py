"""
Scene Composition Service

Places two people into one photorealistic landscape scene.
"""

from .client import IMAGE_EXTRACTORS, SceneCompositionClient, SceneResult, extract_image_ref

__all__ = [
    "IMAGE_EXTRACTORS",
    "SceneCompositionClient",
    "SceneResult",
    "extract_image_ref",
]
