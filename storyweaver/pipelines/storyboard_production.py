"""
Storyweaver Storyboard Production Pipeline

Turns a storyboard's scenes into media in three phases:

    1. image  - one frame per scene, in order, chained for visual continuity
    2. audio  - narration for every scene with dialogue
    3. video  - one clip per consecutive pair of frames

Each result is written back to the storyboard as soon as it exists, so an
interrupted run resumes where it stopped: populated media fields are never
generated again. A scene that fails is recorded and the run moves on.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from storyweaver.core.config import StoryweaverConfig
from storyweaver.core.constants import (
    CameraMotion,
    OperationStatus,
    SceneOperation,
)
from storyweaver.core.exceptions import (
    PipelineError,
    SceneOperationError,
    StoryboardNotFoundError,
)
from storyweaver.core.logging_config import get_logger
from storyweaver.core.retry import Sleep, retry_on_rate_limit
from storyweaver.generation.base import (
    ImageGenerator,
    NarrationGenerator,
    NarrationRequest,
    SceneImageRequest,
    VideoClipRequest,
    VideoGenerator,
)
from storyweaver.models.storyboard import Character, Scene, Storyboard
from storyweaver.storage.record_store import RecordStore
from storyweaver.tasks.job import Job, ProgressReporter

logger = get_logger("pipelines.storyboard_production")

MISSING_ENDPOINT_FRAME = "missing endpoint frame"
ALREADY_GENERATED = "already generated"
NO_DIALOGUE = "no dialogue"


@dataclass
class SceneOutcome:
    """What happened to one operation on one scene."""
    scene_index: int
    operation: SceneOperation
    status: OperationStatus
    error: Optional[str] = None
    reason: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status is OperationStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "sceneIndex": self.scene_index,
            "operation": self.operation.value,
            "status": self.status.value,
        }
        if self.error:
            data["error"] = self.error
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class ProductionReport:
    """Result of a production run; becomes the hosting task's result."""
    storyboard_id: str
    outcomes: List[SceneOutcome] = field(default_factory=list)
    cancelled: bool = False
    storyboard: Optional[Storyboard] = None

    @property
    def failures(self) -> List[SceneOutcome]:
        return [o for o in self.outcomes if o.failed]

    def count(self, status: OperationStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "storyboardId": self.storyboard_id,
            "cancelled": self.cancelled,
            "completed": self.count(OperationStatus.COMPLETED),
            "skipped": self.count(OperationStatus.SKIPPED),
            "failed": self.count(OperationStatus.FAILED),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "storyboard": self.storyboard.to_dict() if self.storyboard else None,
        }


class _StepCounter:
    """Records each step's outcome, then reports steps done out of total."""

    def __init__(self, progress: ProgressReporter, report: ProductionReport, total: int):
        self.progress = progress
        self.report = report
        self.total = total
        self.done = 0

    async def complete(self, label: str, outcome: SceneOutcome) -> None:
        self.report.outcomes.append(outcome)
        self.done += 1
        await self.progress(round(self.done / self.total * 100), f"{label} {outcome.status.value}")


def _normalize_motion(camera_motion: Union[CameraMotion, str, None]) -> Optional[str]:
    if camera_motion is None:
        return None
    if isinstance(camera_motion, str):
        try:
            camera_motion = CameraMotion(camera_motion)
        except ValueError:
            raise PipelineError(f"Unknown camera motion: {camera_motion}")
    return camera_motion.directive


class StoryboardProductionPipeline:
    """
    Three-phase media production for one storyboard.

    Usage:
        pipeline = StoryboardProductionPipeline(
            stores.storyboards, stores.characters,
            image_generator, narration_generator, video_generator,
            config,
        )
        report = await pipeline.run(storyboard_id, progress)
    """

    def __init__(
        self,
        storyboards: RecordStore,
        characters: RecordStore,
        image_generator: ImageGenerator,
        narration_generator: NarrationGenerator,
        video_generator: VideoGenerator,
        config: Optional[StoryweaverConfig] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Initialize the pipeline.

        Args:
            storyboards: Record store for storyboards
            characters: Record store for characters
            image_generator: Renders scene frames
            narration_generator: Synthesizes dialogue
            video_generator: Animates between consecutive frames
            config: Retry and production settings
            sleep: Backoff sleep, replaceable in tests
        """
        self.storyboards = storyboards
        self.characters = characters
        self.image_generator = image_generator
        self.narration_generator = narration_generator
        self.video_generator = video_generator
        self.config = config or StoryweaverConfig()
        self.retry_config = self.config.retry.to_retry_config()
        self._sleep = sleep

    # =========================================================================
    # FULL RUN
    # =========================================================================

    async def run(
        self,
        storyboard_id: str,
        progress: ProgressReporter,
        camera_motion: Union[CameraMotion, str, None] = None,
    ) -> ProductionReport:
        """
        Produce every missing frame, narration and clip of a storyboard.

        Raises:
            StoryboardNotFoundError: If the storyboard does not exist. Scene
                failures never raise; they are recorded in the report.
        """
        motion = _normalize_motion(camera_motion)
        storyboard = await self._load_storyboard(storyboard_id)
        cast = await self._load_characters(storyboard)
        scenes = storyboard.scenes
        n = len(scenes)

        report = ProductionReport(storyboard_id=storyboard_id)
        steps = _StepCounter(
            progress,
            report,
            n + sum(1 for s in scenes if s.has_dialogue) + max(n - 1, 0),
        )
        logger.info(f"Producing storyboard {storyboard_id}: {n} scene(s), {steps.total} step(s)")

        # Phase 1: frames
        for i, scene in enumerate(scenes):
            if progress.cancelled:
                return await self._stop(report)
            if scene.frame_image:
                outcome = self._skipped(i, SceneOperation.IMAGE, ALREADY_GENERATED)
            else:
                outcome = await self._render_image(storyboard, cast, i)
            await steps.complete(f"Scene {i + 1} image", outcome)

        # Phase 2: narration
        for i, scene in enumerate(scenes):
            if not scene.has_dialogue:
                continue
            if progress.cancelled:
                return await self._stop(report)
            if scene.audio_clip:
                outcome = self._skipped(i, SceneOperation.AUDIO, ALREADY_GENERATED)
            else:
                outcome = await self._narrate(storyboard, i)
            await steps.complete(f"Scene {i + 1} narration", outcome)

        # Phase 3: transitions
        for i in range(n - 1):
            if progress.cancelled:
                return await self._stop(report)
            if scenes[i].video_clip:
                outcome = self._skipped(i, SceneOperation.VIDEO, ALREADY_GENERATED)
            elif not (scenes[i].frame_image and scenes[i + 1].frame_image):
                outcome = self._skipped(i, SceneOperation.VIDEO, MISSING_ENDPOINT_FRAME)
            else:
                outcome = await self._animate(storyboard, i, motion)
            await steps.complete(f"Scene {i + 1} to {i + 2} transition", outcome)

        await progress(100, "Production finished")
        report.storyboard = await self._load_storyboard(storyboard_id)

        failed = len(report.failures)
        if failed:
            logger.warning(f"Storyboard {storyboard_id} produced with {failed} failed operation(s)")
        else:
            logger.info(f"Storyboard {storyboard_id} produced")
        return report

    async def _stop(self, report: ProductionReport) -> ProductionReport:
        logger.info(f"Production of {report.storyboard_id} cancelled")
        report.cancelled = True
        report.storyboard = await self._load_storyboard(report.storyboard_id)
        return report

    # =========================================================================
    # SINGLE-SCENE OPERATIONS
    # =========================================================================

    async def render_scene_image(self, storyboard_id: str, scene_index: int) -> SceneOutcome:
        """(Re)render one scene's frame."""
        storyboard = await self._load_storyboard(storyboard_id)
        self._check_index(storyboard, scene_index, len(storyboard.scenes))
        cast = await self._load_characters(storyboard)
        return await self._render_image(storyboard, cast, scene_index)

    async def narrate_scene(self, storyboard_id: str, scene_index: int) -> SceneOutcome:
        """(Re)narrate one scene's dialogue."""
        storyboard = await self._load_storyboard(storyboard_id)
        self._check_index(storyboard, scene_index, len(storyboard.scenes))
        if not storyboard.scenes[scene_index].has_dialogue:
            return self._skipped(scene_index, SceneOperation.AUDIO, NO_DIALOGUE)
        return await self._narrate(storyboard, scene_index)

    async def animate_transition(
        self,
        storyboard_id: str,
        scene_index: int,
        camera_motion: Union[CameraMotion, str, None] = None,
    ) -> SceneOutcome:
        """(Re)generate the clip from scene_index to the scene after it."""
        motion = _normalize_motion(camera_motion)
        storyboard = await self._load_storyboard(storyboard_id)
        self._check_index(storyboard, scene_index, len(storyboard.scenes) - 1)
        scenes = storyboard.scenes
        if not (scenes[scene_index].frame_image and scenes[scene_index + 1].frame_image):
            return self._skipped(scene_index, SceneOperation.VIDEO, MISSING_ENDPOINT_FRAME)
        return await self._animate(storyboard, scene_index, motion)

    @staticmethod
    def _check_index(storyboard: Storyboard, index: int, limit: int) -> None:
        if not 0 <= index < limit:
            raise PipelineError(
                f"Scene index {index} is out of range for storyboard {storyboard.id}",
                {"storyboard_id": storyboard.id, "scene_index": index},
            )

    # =========================================================================
    # STEPS
    # =========================================================================

    def build_image_request(
        self,
        storyboard: Storyboard,
        cast: Dict[str, Character],
        index: int,
    ) -> SceneImageRequest:
        """Assemble the references and continuity frames for one scene."""
        scenes = storyboard.scenes
        scene = scenes[index]

        character_ids = scene.character_ids or storyboard.characters
        character_images: List[str] = []
        for character_id in dict.fromkeys(character_ids):
            character = cast.get(character_id)
            image = character.reference_image() if character else None
            if image:
                character_images.append(image)
        character_images = character_images[:self.config.production.max_character_references]

        establishing = scenes[0].frame_image if index > 0 else None
        previous = scenes[index - 1].frame_image if index > 0 else None
        if previous == establishing:
            previous = None

        dna = "\n".join(
            cast[character_id].dna
            for character_id in storyboard.characters
            if character_id in cast
        )

        return SceneImageRequest(
            scene_description=scene.description,
            character_images=character_images,
            establishing_frame=establishing,
            previous_frame=previous,
            character_dna=dna,
            style=storyboard.style or self.config.production.default_style,
            aspect_ratio=storyboard.aspect_ratio or self.config.production.default_aspect_ratio,
            scene_index=index,
            total_scenes=len(scenes),
        )

    def voice_for(self, index: int) -> str:
        pool = self.config.production.voice_pool
        return pool[index % len(pool)]

    async def _render_image(
        self,
        storyboard: Storyboard,
        cast: Dict[str, Character],
        index: int,
    ) -> SceneOutcome:
        request = self.build_image_request(storyboard, cast, index)
        try:
            image = await self._call(self.image_generator.generate_scene_image, request)
            await self._store_media(storyboard, index, "frame_image", image)
        except Exception as e:
            return self._failed(index, SceneOperation.IMAGE, e)

        logger.info(f"Scene {index + 1} image rendered")
        return SceneOutcome(index, SceneOperation.IMAGE, OperationStatus.COMPLETED)

    async def _narrate(self, storyboard: Storyboard, index: int) -> SceneOutcome:
        scene = storyboard.scenes[index]
        request = NarrationRequest(text=scene.dialogue.strip(), voice=self.voice_for(index))
        try:
            audio = await self._call(self.narration_generator.generate_narration, request)
            await self._store_media(storyboard, index, "audio_clip", audio)
        except Exception as e:
            return self._failed(index, SceneOperation.AUDIO, e)

        logger.info(f"Scene {index + 1} narrated with voice {request.voice}")
        return SceneOutcome(index, SceneOperation.AUDIO, OperationStatus.COMPLETED)

    async def _animate(self, storyboard: Storyboard, index: int, motion: Optional[str]) -> SceneOutcome:
        scenes = storyboard.scenes
        request = VideoClipRequest(
            start_frame=scenes[index].frame_image,
            end_frame=scenes[index + 1].frame_image,
            aspect_ratio=storyboard.aspect_ratio or self.config.production.default_aspect_ratio,
            motion=motion,
        )
        try:
            clip = await self._call(self.video_generator.generate_clip, request)
            await self._store_media(storyboard, index, "video_clip", clip)
        except Exception as e:
            return self._failed(index, SceneOperation.VIDEO, e)

        logger.info(f"Scene {index + 1} transition animated")
        return SceneOutcome(index, SceneOperation.VIDEO, OperationStatus.COMPLETED)

    async def _call(self, func, request):
        def on_retry(error: Exception, attempt: int, delay: float) -> None:
            logger.info(f"{type(request).__name__} rate limited; retry {attempt + 1} in {delay:.0f}s")

        return await retry_on_rate_limit(
            func,
            request,
            config=self.retry_config,
            on_retry=on_retry,
            sleep=self._sleep,
        )

    @staticmethod
    def _skipped(index: int, operation: SceneOperation, reason: str) -> SceneOutcome:
        logger.debug(f"Scene {index + 1} {operation.value} skipped: {reason}")
        return SceneOutcome(index, operation, OperationStatus.SKIPPED, reason=reason)

    @staticmethod
    def _failed(index: int, operation: SceneOperation, error: Exception) -> SceneOutcome:
        message = str(error) or type(error).__name__
        logger.error(f"Scene {index + 1} {operation.value} failed: {message}")
        return SceneOutcome(index, operation, OperationStatus.FAILED, error=message)

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    async def _load_storyboard(self, storyboard_id: str) -> Storyboard:
        record = await self.storyboards.get(storyboard_id)
        if record is None:
            raise StoryboardNotFoundError(storyboard_id)
        return Storyboard.from_dict(record)

    async def _load_characters(self, storyboard: Storyboard) -> Dict[str, Character]:
        """Roster characters plus any referenced only by a scene."""
        wanted = list(storyboard.characters)
        for scene in storyboard.scenes:
            wanted.extend(scene.character_ids)

        cast: Dict[str, Character] = {}
        for character_id in dict.fromkeys(wanted):
            record = await self.characters.get(character_id)
            if record is None:
                logger.warning(f"Character {character_id} not found; ignoring")
                continue
            cast[character_id] = Character.from_dict(record)
        return cast

    async def _store_media(self, storyboard: Storyboard, index: int, attr: str, value: str) -> None:
        """
        Write one media field to the stored storyboard.

        The stored copy is re-read so edits made while the run was in flight
        survive; the scene is matched by id, falling back to its index. The
        run's own copy only takes the value once the write has succeeded.
        """
        scene = storyboard.scenes[index]

        latest = await self._load_storyboard(storyboard.id)
        target = next((s for s in latest.scenes if s.id == scene.id), None)
        if target is None and index < len(latest.scenes):
            target = latest.scenes[index]
        if target is None:
            logger.warning(f"Scene {index + 1} no longer exists in {storyboard.id}; result dropped")
        else:
            setattr(target, attr, value)
            await self.storyboards.put(latest.to_dict())

        setattr(scene, attr, value)


# =============================================================================
# JOBS
# =============================================================================

class StoryboardProductionJob(Job):
    """Full production run, hosted by the task registry."""

    def __init__(
        self,
        pipeline: StoryboardProductionPipeline,
        storyboard_id: str,
        camera_motion: Union[CameraMotion, str, None] = None,
    ):
        self.pipeline = pipeline
        self.storyboard_id = storyboard_id
        self.camera_motion = camera_motion

    async def run(self, progress: ProgressReporter) -> Dict[str, Any]:
        report = await self.pipeline.run(self.storyboard_id, progress, self.camera_motion)
        return report.to_dict()


class SceneOperationJob(Job):
    """One scene's image, narration or transition; fails the task if it fails."""

    def __init__(
        self,
        pipeline: StoryboardProductionPipeline,
        storyboard_id: str,
        operation: Union[SceneOperation, str],
        scene_index: int,
        camera_motion: Union[CameraMotion, str, None] = None,
    ):
        self.pipeline = pipeline
        self.storyboard_id = storyboard_id
        self.operation = SceneOperation(operation)
        self.scene_index = scene_index
        self.camera_motion = camera_motion

    @property
    def title(self) -> str:
        labels = {
            SceneOperation.IMAGE: "image",
            SceneOperation.AUDIO: "narration",
            SceneOperation.VIDEO: "transition",
        }
        return f"Scene {self.scene_index + 1} {labels[self.operation]}"

    async def run(self, progress: ProgressReporter) -> Dict[str, Any]:
        await progress(0, f"Generating {self.title.lower()}")

        if self.operation is SceneOperation.IMAGE:
            outcome = await self.pipeline.render_scene_image(self.storyboard_id, self.scene_index)
        elif self.operation is SceneOperation.AUDIO:
            outcome = await self.pipeline.narrate_scene(self.storyboard_id, self.scene_index)
        else:
            outcome = await self.pipeline.animate_transition(
                self.storyboard_id, self.scene_index, self.camera_motion
            )

        if outcome.failed:
            raise SceneOperationError(self.operation.value, self.scene_index, outcome.error)

        await progress(100, f"{self.title} {outcome.status.value}")
        return {"storyboardId": self.storyboard_id, **outcome.to_dict()}
