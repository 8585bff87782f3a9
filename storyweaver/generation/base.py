"""
Generation collaborator interfaces.

The production pipeline only depends on these shapes. Implementations raise
GenerationError subclasses (RateLimitedError, ForbiddenError) so the retry
helper can decide what to wait out.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class SceneImageRequest:
    """Everything the image collaborator needs to render one scene frame."""
    scene_description: str
    character_images: List[str] = field(default_factory=list)
    establishing_frame: Optional[str] = None
    previous_frame: Optional[str] = None
    character_dna: str = ""
    style: str = ""
    aspect_ratio: str = "16:9"
    scene_index: int = 0
    total_scenes: int = 1

    @property
    def reference_images(self) -> List[str]:
        """Character references first, then the establishing and previous frames."""
        images = list(self.character_images)
        if self.establishing_frame:
            images.append(self.establishing_frame)
        if self.previous_frame:
            images.append(self.previous_frame)
        return images


@dataclass
class NarrationRequest:
    text: str
    voice: str


@dataclass
class VideoClipRequest:
    """A clip bridging two consecutive scene frames."""
    start_frame: str
    end_frame: str
    aspect_ratio: str = "16:9"
    motion: Optional[str] = None


class ImageGenerator(ABC):
    """Renders a still frame; returns an image URL or data URI."""

    @abstractmethod
    async def generate_scene_image(self, request: SceneImageRequest) -> str:
        ...


class NarrationGenerator(ABC):
    """Synthesizes narration; returns an audio URL or data URI."""

    @abstractmethod
    async def generate_narration(self, request: NarrationRequest) -> str:
        ...


class VideoGenerator(ABC):
    """Generates a motion clip between two frames; returns a video URL or data URI."""

    @abstractmethod
    async def generate_clip(self, request: VideoClipRequest) -> str:
        ...
