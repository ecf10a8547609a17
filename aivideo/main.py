"""
FastAPI entrypoint for the AI Video Orchestrator API.

Videos are generated through the pipeline CLI (run_video_pipeline.py);
this API exposes progress and scene recovery for a UI.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from aivideo.api.routes_videos import router as videos_router
from aivideo.core.config import settings
from aivideo.core.logging_config import get_logger, intercept_standard_logging, setup_logging
from aivideo.utils.rate_limiter import get_all_rate_limiter_stats

# Setup logging
setup_logging(log_level=settings.log_level, log_file=settings.log_file, serialize=settings.log_json)
intercept_standard_logging(settings.log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info("=" * 60)
    yield
    logger.info("Shutting down application")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="AI Video Orchestrator - scene generation progress and recovery API",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(videos_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "running",
        "endpoints": {
            "checkpoint": "/videos/{video_id}/checkpoint",
            "failed_scenes": "/videos/{video_id}/failed-scenes",
            "regenerate": "/videos/{video_id}/scenes/{scene_id}/regenerate",
            "retry_failed": "/videos/{video_id}/retry-failed",
            "resume": "/videos/{video_id}/resume",
            "cancel": "/videos/{video_id}/cancel",
            "docs": "/docs",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint with per-model pacing."""
    return {"status": "healthy", "rate_limiters": get_all_rate_limiter_stats()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "aivideo.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
