"""
Pytest Configuration and Fixtures

Shared fixtures for all tests: in-memory stores, an initialized registry,
fake media collaborators and a seeded sample storyboard.
"""

import pytest
import pytest_asyncio
import tempfile
import shutil
from pathlib import Path
from typing import Any, Dict, List

from storyweaver.core.config import StoryweaverConfig
from storyweaver.generation.base import (
    ImageGenerator,
    NarrationGenerator,
    NarrationRequest,
    SceneImageRequest,
    VideoClipRequest,
    VideoGenerator,
)
from storyweaver.pipelines.storyboard_production import StoryboardProductionPipeline
from storyweaver.storage.record_store import RecordStores
from storyweaver.tasks.registry import TaskRegistry


class FakeCollaborator:
    """Records calls; raises queued errors for a key before succeeding."""

    def __init__(self):
        self.requests: List[Any] = []
        self._errors: Dict[Any, List[Exception]] = {}
        self._always: Dict[Any, Exception] = {}

    def fail_once(self, key, *errors: Exception) -> None:
        self._errors.setdefault(key, []).extend(errors)

    def fail_always(self, key, error: Exception) -> None:
        self._always[key] = error

    def _record(self, key, request) -> None:
        self.requests.append(request)
        if key in self._always:
            raise self._always[key]
        queued = self._errors.get(key)
        if queued:
            raise queued.pop(0)


class FakeImageGenerator(FakeCollaborator, ImageGenerator):
    """Keyed by scene index."""

    async def generate_scene_image(self, request: SceneImageRequest) -> str:
        self._record(request.scene_index, request)
        return f"data:image/png;base64,frame-{request.scene_index}"


class FakeNarrationGenerator(FakeCollaborator, NarrationGenerator):
    """Keyed by narration text."""

    async def generate_narration(self, request: NarrationRequest) -> str:
        self._record(request.text, request)
        return f"data:audio/wav;base64,{request.voice}"


class FakeVideoGenerator(FakeCollaborator, VideoGenerator):
    """Keyed by start frame."""

    async def generate_clip(self, request: VideoClipRequest) -> str:
        self._record(request.start_frame, request)
        return f"data:video/mp4;base64,clip-from-{request.start_frame[-1]}"


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def stores() -> RecordStores:
    return RecordStores.in_memory()


@pytest.fixture
def config() -> StoryweaverConfig:
    return StoryweaverConfig()


@pytest_asyncio.fixture
async def registry(stores):
    """Initialized task registry over in-memory stores."""
    registry = TaskRegistry(stores.tasks)
    await registry.init()
    yield registry
    await registry.dispose()


@pytest.fixture
def sleeps() -> List[float]:
    """Backoff delays requested through fake_sleep."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def sleep(delay: float) -> None:
        sleeps.append(delay)
    return sleep


@pytest.fixture
def image_generator() -> FakeImageGenerator:
    return FakeImageGenerator()


@pytest.fixture
def narration_generator() -> FakeNarrationGenerator:
    return FakeNarrationGenerator()


@pytest.fixture
def video_generator() -> FakeVideoGenerator:
    return FakeVideoGenerator()


@pytest.fixture
def pipeline(stores, image_generator, narration_generator, video_generator, config, fake_sleep):
    return StoryboardProductionPipeline(
        stores.storyboards,
        stores.characters,
        image_generator,
        narration_generator,
        video_generator,
        config,
        sleep=fake_sleep,
    )


@pytest.fixture
def sample_characters() -> List[Dict[str, Any]]:
    """Mira has no front image; Pip has no visual traits."""
    return [
        {
            "id": "mira",
            "name": "Mira",
            "description": "A young sailor",
            "visualTraits": "red scarf, silver eyes",
            "images": {
                "threeQuarter": "data:image/png;base64,mira-3q",
                "back": "data:image/png;base64,mira-back",
            },
            "createdAt": 1,
        },
        {
            "id": "pip",
            "name": "Pip",
            "description": "a small orange fox",
            "visualTraits": "",
            "images": {"front": "data:image/png;base64,pip-front"},
            "createdAt": 2,
        },
    ]


@pytest.fixture
def sample_storyboard() -> Dict[str, Any]:
    """Three scenes; scenes 1 and 3 have dialogue."""
    return {
        "id": "sb-harbor",
        "title": "The Harbor",
        "script": "Mira and Pip leave the harbor.",
        "characters": ["mira", "pip"],
        "aspectRatio": "9:16",
        "style": "watercolor",
        "createdAt": 10,
        "scenes": [
            {
                "id": "s1",
                "description": "Mira arrives at the harbor",
                "characterIds": ["mira"],
                "dialogue": "The tide is turning.",
            },
            {
                "id": "s2",
                "description": "A crate on the quay",
                "characterIds": [],
            },
            {
                "id": "s3",
                "description": "They sail at dawn",
                "characterIds": ["mira", "pip", "mira"],
                "dialogue": "  Hold on tight!  ",
            },
        ],
    }


@pytest_asyncio.fixture
async def seeded(stores, sample_storyboard, sample_characters) -> RecordStores:
    """Stores holding the sample storyboard and its characters."""
    await stores.storyboards.put(sample_storyboard)
    for character in sample_characters:
        await stores.characters.put(character)
    return stores
