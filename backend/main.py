"""FastAPI backend for mediagen: image/video generation jobs, history and stored assets."""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from mediagen import __version__
from mediagen.config import Settings, get_settings
from mediagen.jobs import JobManager

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)


class HealthResponse(BaseModel):
    status: str
    data_dir: str
    live_jobs: int


def create_app(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the app. ``transport`` replaces the provider HTTP transport (tests)."""
    settings = settings or get_settings()
    settings.ensure_dirs()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        manager = JobManager(settings, transport=transport)
        app.state.manager = manager
        logger.info("Provider gateway: %s", settings.provider_base_url)
        logger.info("Assets served from %s as %s", settings.uploads_dir, settings.asset_base_url)
        try:
            yield
        finally:
            await manager.aclose()

    app = FastAPI(
        title="mediagen API",
        description="Text-to-image and text/image-to-video generation jobs.",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # -----------------------------------------------------------------------
    # CORS
    # -----------------------------------------------------------------------
    cors_origins = settings.cors_origin_list
    logger.info("CORS configured for origins: %s", cors_origins)
    cors_kw: dict = {
        "allow_origins": cors_origins,
        "allow_credentials": True,
        "allow_methods": ["*"],
        "allow_headers": ["*"],
    }
    if settings.cors_origin_regex:
        logger.info("CORS origin regex: %s", settings.cors_origin_regex)
        cors_kw["allow_origin_regex"] = settings.cors_origin_regex
    app.add_middleware(CORSMiddleware, **cors_kw)

    # -----------------------------------------------------------------------
    # Health & root
    # -----------------------------------------------------------------------
    @app.get("/health", response_model=HealthResponse)
    @app.get("/api/health", response_model=HealthResponse)
    async def health(request: Request):
        """Health check endpoint."""
        manager: JobManager | None = getattr(request.app.state, "manager", None)
        return HealthResponse(
            status="ok",
            data_dir=str(settings.data_dir),
            live_jobs=manager.live_count() if manager is not None else 0,
        )

    @app.get("/api/")
    async def root():
        """API root."""
        return {"message": "mediagen API", "version": __version__}

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------
    from backend.routes import generation, history

    app.include_router(generation.router, prefix="/api", tags=["generation"])
    app.include_router(history.router, prefix="/api", tags=["history"])

    # Stored inputs and results; providers fetch input images from here
    app.mount("/uploads", StaticFiles(directory=str(settings.uploads_dir)), name="uploads")
    return app


app = create_app()
