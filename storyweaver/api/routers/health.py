"""
Health Check Endpoints
"""

from fastapi import APIRouter, Depends

from storyweaver.api.deps import get_services
from storyweaver.api.services import StudioServices
from storyweaver.core.constants import VERSION

router = APIRouter()


@router.get("/health")
async def health_check(services: StudioServices = Depends(get_services)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": VERSION,
        "registry": services.registry.initialized,
        "generation": services.pipeline is not None,
    }
