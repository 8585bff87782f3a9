"""
API Dependencies

Common dependencies for route handlers.
"""

from fastapi import HTTPException, Request

from storyweaver.api.services import StudioServices
from storyweaver.pipelines.storyboard_production import StoryboardProductionPipeline
from storyweaver.storage.record_store import RecordStores
from storyweaver.tasks.registry import TaskRegistry


def get_services(request: Request) -> StudioServices:
    return request.app.state.services


def get_registry(request: Request) -> TaskRegistry:
    return get_services(request).registry


def get_stores(request: Request) -> RecordStores:
    return get_services(request).stores


def get_pipeline(request: Request) -> StoryboardProductionPipeline:
    """Production pipeline, or 503 when no generation backend is configured."""
    pipeline = get_services(request).pipeline
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Media generation is not configured")
    return pipeline
