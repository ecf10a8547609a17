"""FastAPI routes for scene recovery and progress."""

from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException

from aivideo.core.config import settings
from aivideo.core.errors import InvalidTransitionError, SceneNotFoundError
from aivideo.core.logging_config import get_logger
from aivideo.models.schemas import (
    Checkpoint,
    FailedSceneInfo,
    FailedScenesRetryRequest,
    FailedScenesRetryResponse,
    GenerationContext,
    ProcessResumeRequest,
    ProcessResumeResponse,
    ProcessType,
    SceneRegenerateRequest,
    SceneRegenerateResponse,
)
from aivideo.pipelines.run_video_pipeline import build_lifecycle_manager
from aivideo.services.scene_lifecycle import SceneLifecycleManager

router = APIRouter(prefix="/videos", tags=["videos"])


@lru_cache
def get_lifecycle_manager() -> SceneLifecycleManager:
    """Process-wide lifecycle manager (one cancel registry for all requests)."""
    return build_lifecycle_manager(settings, get_logger(__name__))


def get_generation_context(
    x_api_key: Optional[str] = Header(default=None),
    x_creator_id: Optional[str] = Header(default=None),
) -> GenerationContext:
    """Build the per-request generation context from headers."""
    return GenerationContext(
        api_key=x_api_key or settings.gemini_api_key,
        creator_id=x_creator_id,
        voice=settings.default_voice,
    )


def _require_scenes(manager: SceneLifecycleManager, video_id: str) -> None:
    if not manager.repository.list_scenes(video_id):
        raise HTTPException(status_code=404, detail=f"Video {video_id} not found")


@router.get("/{video_id}/checkpoint", response_model=Checkpoint)
def get_checkpoint(
    video_id: str,
    process_type: ProcessType = ProcessType.SCENE_PREVIEW,
    manager: SceneLifecycleManager = Depends(get_lifecycle_manager),
) -> Checkpoint:
    """Current progress of a video, rebuilt from its scenes."""
    _require_scenes(manager, video_id)
    return manager.get_checkpoint(video_id, process_type)


@router.get("/{video_id}/failed-scenes", response_model=list[FailedSceneInfo])
def list_failed_scenes(
    video_id: str,
    manager: SceneLifecycleManager = Depends(get_lifecycle_manager),
) -> list[FailedSceneInfo]:
    _require_scenes(manager, video_id)
    return manager.list_failed_scenes(video_id)


@router.post("/{video_id}/scenes/{scene_id}/regenerate", response_model=SceneRegenerateResponse)
def regenerate_scene(
    video_id: str,
    scene_id: str,
    request: SceneRegenerateRequest,
    background_tasks: BackgroundTasks,
    context: GenerationContext = Depends(get_generation_context),
    manager: SceneLifecycleManager = Depends(get_lifecycle_manager),
) -> SceneRegenerateResponse:
    """
    Regenerate one scene.

    The scene is invalidated and moved to REGENERATING before this returns;
    generation runs after the response is sent.
    """
    logger = get_logger(__name__, video_id=video_id, scene_id=scene_id)
    logger.info(f"Regenerate requested (media_only={request.media_only})")
    try:
        return manager.regenerate_scene(
            video_id,
            request.model_copy(update={"scene_id": scene_id}),
            context,
            schedule=background_tasks.add_task,
        )
    except SceneNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{video_id}/retry-failed", response_model=FailedScenesRetryResponse)
def retry_failed_scenes(
    video_id: str,
    request: FailedScenesRetryRequest,
    background_tasks: BackgroundTasks,
    context: GenerationContext = Depends(get_generation_context),
    manager: SceneLifecycleManager = Depends(get_lifecycle_manager),
) -> FailedScenesRetryResponse:
    _require_scenes(manager, video_id)
    return manager.retry_failed_scenes(video_id, request, context, schedule=background_tasks.add_task)


@router.post("/{video_id}/resume", response_model=ProcessResumeResponse)
def resume_video(
    video_id: str,
    request: ProcessResumeRequest,
    background_tasks: BackgroundTasks,
    context: GenerationContext = Depends(get_generation_context),
    manager: SceneLifecycleManager = Depends(get_lifecycle_manager),
) -> ProcessResumeResponse:
    _require_scenes(manager, video_id)
    return manager.resume(video_id, request, context, schedule=background_tasks.add_task)


@router.post("/{video_id}/cancel")
def cancel_video(
    video_id: str,
    manager: SceneLifecycleManager = Depends(get_lifecycle_manager),
) -> dict:
    """Cancel generation; in-flight scenes are marked FAILED."""
    _require_scenes(manager, video_id)
    cancelled = manager.cancel(video_id)
    return {"video_id": video_id, "status": "cancelled", "cancelled_count": cancelled}
