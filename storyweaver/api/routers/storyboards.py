"""Storyboard endpoints.

Storyboard records plus the two production actions: a full production run
and the per-scene retry of one image, narration or transition. Both are
hosted by the task registry and answer with the new task id.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from slowapi import Limiter
from slowapi.util import get_remote_address

from storyweaver.api.deps import get_pipeline, get_registry, get_stores
from storyweaver.core.constants import (
    AspectRatio,
    CameraMotion,
    DEFAULT_STYLE,
    SceneOperation,
    TaskType,
)
from storyweaver.core.logging_config import get_logger
from storyweaver.models.storyboard import Storyboard
from storyweaver.pipelines.storyboard_production import (
    SceneOperationJob,
    StoryboardProductionJob,
    StoryboardProductionPipeline,
)
from storyweaver.storage.record_store import RecordStores
from storyweaver.tasks.registry import TaskRegistry

logger = get_logger("api.storyboards")

router = APIRouter()

# Production calls are the expensive ones
limiter = Limiter(key_func=get_remote_address)


def limits_disabled(request: Request) -> bool:
    """Per-app switch; each app carries its own config on app.state."""
    return not request.app.state.services.config.server.rate_limit_enabled

OPERATION_TASK_TYPES = {
    SceneOperation.IMAGE: TaskType.IMAGE,
    SceneOperation.AUDIO: TaskType.AUDIO,
    SceneOperation.VIDEO: TaskType.VIDEO,
}


class SceneModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    description: str = ""
    character_ids: List[str] = Field(default_factory=list, alias="characterIds")
    dialogue: Optional[str] = None
    frame_image: Optional[str] = Field(None, alias="frameImage")
    audio_clip: Optional[str] = Field(None, alias="audioClip")
    video_clip: Optional[str] = Field(None, alias="videoClip")


class StoryboardModel(BaseModel):
    """Storyboard record as sent by the client (camelCase or snake_case)."""
    model_config = ConfigDict(populate_by_name=True)

    title: str
    script: str = ""
    characters: List[str] = Field(default_factory=list)
    scenes: List[SceneModel] = Field(default_factory=list)
    aspect_ratio: AspectRatio = Field(AspectRatio.LANDSCAPE, alias="aspectRatio")
    style: str = DEFAULT_STYLE
    created_at: Optional[int] = Field(None, alias="createdAt")


class ProduceRequest(BaseModel):
    camera_motion: Optional[CameraMotion] = None


async def _load(stores: RecordStores, storyboard_id: str) -> Storyboard:
    record = await stores.storyboards.get(storyboard_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Storyboard not found: {storyboard_id}")
    return Storyboard.from_dict(record)


@router.get("")
async def list_storyboards(stores: RecordStores = Depends(get_stores)):
    storyboards = [Storyboard.from_dict(r) for r in await stores.storyboards.get_all()]
    storyboards.sort(key=lambda s: s.created_at, reverse=True)
    return [s.to_dict() for s in storyboards]


@router.get("/{storyboard_id}")
async def get_storyboard(storyboard_id: str, stores: RecordStores = Depends(get_stores)):
    return (await _load(stores, storyboard_id)).to_dict()


@router.put("/{storyboard_id}")
async def save_storyboard(
    storyboard_id: str,
    body: StoryboardModel,
    stores: RecordStores = Depends(get_stores),
):
    """Create or replace a storyboard."""
    data = body.model_dump(mode="json", by_alias=True, exclude_none=True)
    data["id"] = storyboard_id
    storyboard = Storyboard.from_dict(data)
    await stores.storyboards.put(storyboard.to_dict())
    logger.info(f"Saved storyboard {storyboard_id} ({len(storyboard.scenes)} scenes)")
    return storyboard.to_dict()


@router.post("/{storyboard_id}/produce")
@limiter.limit("5/minute", exempt_when=limits_disabled)
async def produce_storyboard(
    request: Request,
    storyboard_id: str,
    body: Optional[ProduceRequest] = None,
    stores: RecordStores = Depends(get_stores),
    registry: TaskRegistry = Depends(get_registry),
    pipeline: StoryboardProductionPipeline = Depends(get_pipeline),
):
    """Start a background production run for every missing scene asset."""
    storyboard = await _load(stores, storyboard_id)
    camera_motion = body.camera_motion if body else None

    task_id = await registry.enqueue(
        TaskType.STORYBOARD,
        f"Produce: {storyboard.title}",
        StoryboardProductionJob(pipeline, storyboard_id, camera_motion),
        related_id=storyboard_id,
    )
    return {"taskId": task_id}


@router.post("/{storyboard_id}/scenes/{scene_index}/{operation}")
@limiter.limit("20/minute", exempt_when=limits_disabled)
async def retry_scene_operation(
    request: Request,
    storyboard_id: str,
    scene_index: int,
    operation: SceneOperation,
    body: Optional[ProduceRequest] = None,
    stores: RecordStores = Depends(get_stores),
    registry: TaskRegistry = Depends(get_registry),
    pipeline: StoryboardProductionPipeline = Depends(get_pipeline),
):
    """Regenerate one scene's image, narration or outgoing transition."""
    storyboard = await _load(stores, storyboard_id)

    limit = len(storyboard.scenes) - (1 if operation is SceneOperation.VIDEO else 0)
    if not 0 <= scene_index < limit:
        raise HTTPException(
            status_code=400,
            detail=f"Scene index {scene_index} is out of range for {operation.value}",
        )

    job = SceneOperationJob(
        pipeline,
        storyboard_id,
        operation,
        scene_index,
        camera_motion=body.camera_motion if body else None,
    )
    task_id = await registry.enqueue(
        OPERATION_TASK_TYPES[operation],
        f"{storyboard.title}: {job.title}",
        job,
        related_id=storyboard_id,
    )
    return {"taskId": task_id}
