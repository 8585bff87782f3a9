"""
Process-wide services behind the HTTP API.

One StudioServices instance lives on app.state for the lifetime of the
application: the record stores, the task registry and, when generation
collaborators are available, the production pipeline.
"""

from dataclasses import dataclass
from typing import Optional

from storyweaver.core.config import StoryweaverConfig
from storyweaver.core.exceptions import ConfigurationError
from storyweaver.core.logging_config import get_logger
from storyweaver.generation.base import ImageGenerator, NarrationGenerator, VideoGenerator
from storyweaver.pipelines.storyboard_production import StoryboardProductionPipeline
from storyweaver.storage.record_store import RecordStores
from storyweaver.tasks.registry import TaskRegistry

logger = get_logger("api.services")


@dataclass
class Generators:
    """The three media collaborators a production run needs."""
    image: ImageGenerator
    narration: NarrationGenerator
    video: VideoGenerator


class StudioServices:
    """
    Owns startup and shutdown of the stores, registry and pipeline.

    When no generators are supplied the Gemini collaborators are built at
    start(); without an API key the API still serves records and tasks but
    production endpoints answer 503.
    """

    def __init__(
        self,
        config: StoryweaverConfig,
        stores: Optional[RecordStores] = None,
        generators: Optional[Generators] = None,
    ):
        self.config = config
        self.stores = stores or RecordStores.on_disk(config.storage.data_dir)
        self.registry = TaskRegistry(self.stores.tasks)
        self.generators = generators
        self.pipeline: Optional[StoryboardProductionPipeline] = None
        self._gemini_client = None

    async def start(self) -> None:
        await self.registry.init()

        if self.generators is None:
            self.generators = self._create_gemini_generators()

        if self.generators is not None:
            self.pipeline = StoryboardProductionPipeline(
                self.stores.storyboards,
                self.stores.characters,
                self.generators.image,
                self.generators.narration,
                self.generators.video,
                self.config,
            )
        logger.info(f"Studio services started (production {'enabled' if self.pipeline else 'disabled'})")

    async def stop(self) -> None:
        await self.registry.dispose()
        if self._gemini_client is not None:
            await self._gemini_client.aclose()
            self._gemini_client = None
        logger.info("Studio services stopped")

    def _create_gemini_generators(self) -> Optional[Generators]:
        from storyweaver.generation.gemini import create_gemini_generators

        try:
            client, image, narration, video = create_gemini_generators(self.config.gemini)
        except ConfigurationError as e:
            logger.warning(f"Generation unavailable: {e}")
            return None

        self._gemini_client = client
        return Generators(image=image, narration=narration, video=video)
