"""Main FastAPI application for Storyweaver."""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from storyweaver.api.routers import characters, health, storyboards, tasks
from storyweaver.api.services import Generators, StudioServices
from storyweaver.core.config import StoryweaverConfig, load_config
from storyweaver.core.constants import PROJECT_NAME, VERSION
from storyweaver.core.logging_config import get_logger
from storyweaver.storage.record_store import RecordStores

logger = get_logger("api.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    services: StudioServices = app.state.services
    logger.info(f"Starting {PROJECT_NAME} API...")
    await services.start()
    yield
    logger.info(f"Shutting down {PROJECT_NAME} API...")
    await services.stop()


def create_app(
    config: Optional[StoryweaverConfig] = None,
    stores: Optional[RecordStores] = None,
    generators: Optional[Generators] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        config: Loaded configuration (defaults from load_config())
        stores: Record stores (JSON files under config.storage.data_dir by default)
        generators: Media collaborators (Gemini by default)
    """
    config = config or load_config()

    app = FastAPI(
        title=f"{PROJECT_NAME} API",
        description="Background tasks and storyboard production",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.services = StudioServices(config, stores=stores, generators=generators)

    # Rate limiter for production endpoints; server.rate_limit_enabled exempts per app
    app.state.limiter = storyboards.limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(tasks.router, prefix="/api/tasks", tags=["tasks"])
    app.include_router(storyboards.router, prefix="/api/storyboards", tags=["storyboards"])
    app.include_router(characters.router, prefix="/api/characters", tags=["characters"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"message": f"{PROJECT_NAME} API", "version": VERSION}

    return app


def start_server(config: Optional[StoryweaverConfig] = None, host: str = None, port: int = None):
    """Start the FastAPI server."""
    config = config or load_config()
    uvicorn.run(
        create_app(config),
        host=host or config.server.host,
        port=port or config.server.port,
        log_level="warning",  # Suppress INFO logs for each request
    )
