"""
Storyweaver Generation Collaborators
"""

from .base import (
    ImageGenerator,
    NarrationGenerator,
    NarrationRequest,
    SceneImageRequest,
    VideoClipRequest,
    VideoGenerator,
)

__all__ = [
    "ImageGenerator",
    "NarrationGenerator",
    "NarrationRequest",
    "SceneImageRequest",
    "VideoClipRequest",
    "VideoGenerator",
]
