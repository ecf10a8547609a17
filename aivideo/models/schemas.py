"""Pydantic models and schemas for the video generation pipeline."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Enums
# ============================================================================


class SceneType(str, Enum):
    """Kind of visual a scene is built from."""

    OPENING = "OPENING"
    SLIDE = "SLIDE"


class SceneStatus(str, Enum):
    """Scene lifecycle states."""

    PENDING = "PENDING"
    GENERATING = "GENERATING"
    MEDIA_READY = "MEDIA_READY"
    TTS_READY = "TTS_READY"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REGENERATING = "REGENERATING"


class FailedStep(str, Enum):
    """Pipeline step at which a scene failed."""

    MEDIA = "MEDIA"
    TTS = "TTS"
    SUBTITLE = "SUBTITLE"
    VIDEO = "VIDEO"


class ProcessType(str, Enum):
    """Which process a checkpoint tracks."""

    SCENE_PREVIEW = "scene_preview"
    SCENE_AUDIO = "scene_audio"
    FINAL_VIDEO = "final_video"


class CheckpointStatus(str, Enum):
    """Overall status reported by a checkpoint."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


# ============================================================================
# Rate Limiting Models
# ============================================================================


class RateLimitProfile(BaseModel):
    """Pacing and retry parameters for one (api-kind, model) pair."""

    model_name: str = Field(..., description="Model the profile applies to")
    max_retries: int = Field(default=5, ge=1, description="Attempts per model for transient failures")
    initial_backoff_ms: int = Field(default=5000, description="First retry backoff; also the adaptive delay floor")
    max_backoff_ms: int = Field(default=60000, description="Backoff cap; also the adaptive delay ceiling")
    initial_delay_ms: int = Field(default=6000, description="Adaptive delay a fresh limiter starts with")
    success_decrease_ratio: float = Field(default=0.9, gt=0.0, le=1.0)
    error_increase_ratio: float = Field(default=1.5, ge=1.0)
    success_streak_for_decrease: int = Field(default=3, ge=1)

    model_config = ConfigDict(protected_namespaces=())


# ============================================================================
# Generation Context
# ============================================================================


class GenerationContext(BaseModel):
    """Per-request values threaded explicitly through every generation call."""

    api_key: Optional[str] = Field(default=None, description="API key for this request (overrides settings)")
    creator_id: Optional[str] = Field(default=None, description="Active creator identifier")
    tier: Optional[str] = Field(default=None, description="Active subscription tier")
    format_id: Optional[str] = Field(default=None, description="Active output format identifier")
    output_width: Optional[int] = Field(default=None, description="Output width override")
    output_height: Optional[int] = Field(default=None, description="Output height override")
    creator_name: Optional[str] = Field(default=None, description="Persona name, stripped on sanitized retries")
    channel_name: Optional[str] = Field(default=None, description="Channel name, stripped on sanitized retries")
    voice: Optional[str] = Field(default=None, description="Prebuilt TTS voice id")

    model_config = ConfigDict(frozen=True)


class GeneratedMedia(BaseModel):
    """Raw bytes returned by a generation API."""

    data: bytes
    mime_type: str = "application/octet-stream"
    model: Optional[str] = None


# ============================================================================
# Scene Models
# ============================================================================


class Scene(BaseModel):
    """One addressable unit of a generated video."""

    scene_id: str = Field(..., description="Unique scene identifier")
    video_id: str = Field(..., description="Owning video identifier")
    order: int = Field(..., ge=0, description="Position in the video (ascending)")
    type: SceneType = Field(default=SceneType.SLIDE, description="OPENING clip or narrated SLIDE")
    narration: str = Field(default="", description="Narration text spoken over the scene")
    prompt: str = Field(default="", description="Visual generation prompt")
    media_url: Optional[str] = None
    audio_url: Optional[str] = None
    subtitle_url: Optional[str] = None
    composed_video_url: Optional[str] = None
    audio_duration: Optional[float] = Field(default=None, description="Measured narration length in seconds")
    status: SceneStatus = SceneStatus.PENDING
    retry_count: int = 0
    user_feedback: Optional[str] = None
    error_message: Optional[str] = None
    failed_at: Optional[FailedStep] = None
    version: int = Field(default=1, description="Bumped whenever assets are soft-invalidated")
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def scene_filename(self) -> str:
        """File name of the composed scene video."""
        if self.type == SceneType.OPENING:
            return f"scene_{self.order:02d}_opening.mp4"
        return f"scene_{self.order:02d}.mp4"


class Checkpoint(BaseModel):
    """Derived snapshot of a video's generation progress."""

    video_id: str = Field(..., alias="videoId")
    process_type: ProcessType = Field(default=ProcessType.SCENE_PREVIEW, alias="processType")
    status: CheckpointStatus = CheckpointStatus.PROCESSING
    total_count: int = Field(default=0, alias="totalCount")
    completed_count: int = Field(default=0, alias="completedCount")
    failed_count: int = Field(default=0, alias="failedCount")
    completed_scene_ids: list[str] = Field(default_factory=list, alias="completedSceneIds")
    failed_scene_ids: list[str] = Field(default_factory=list, alias="failedSceneIds")
    last_updated: Optional[str] = Field(default=None, alias="lastUpdated")
    can_resume: bool = Field(default=False, alias="canResume")

    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Audio Timing Models
# ============================================================================


class SilenceInterval(BaseModel):
    """A detected range of sub-threshold audio."""

    start: float
    end: float
    duration: float

    @property
    def midpoint(self) -> float:
        return self.start + self.duration / 2


class SentenceBoundary(BaseModel):
    """Time range of one narration sentence."""

    start: float
    end: float


class NarrationResult(BaseModel):
    """Rendered narration for a scene."""

    audio_path: Path
    duration: float


# ============================================================================
# Composition Models
# ============================================================================


class CompositionRequest(BaseModel):
    """Inputs for one composeVideo invocation."""

    job_name: str = Field(..., description="Label used in logs")
    image_paths: list[str] = Field(default_factory=list, description="Ordered slide images (paths or URLs)")
    slide_durations: list[Optional[float]] = Field(
        default_factory=list, description="Seconds per slide; missing entries use the default duration"
    )
    opening_clip: Optional[str] = Field(default=None, description="Opening video clip (path or URL)")
    audio_path: Optional[str] = Field(default=None, description="Narration audio (path or URL)")
    subtitle_path: Optional[str] = Field(default=None, description="ASS subtitle file")
    output_key: str = Field(..., description="Storage key for the final artifact")


class CompositionResult(BaseModel):
    """Where a composed artifact ended up."""

    storage_key: str
    output_path: Path
    work_dir: Path


# ============================================================================
# Recovery API Models
# ============================================================================


class SceneRegenerateRequest(BaseModel):
    """Request to regenerate a single scene."""

    scene_id: Optional[str] = Field(default=None, description="Scene to regenerate (the API takes it from the path)")
    user_feedback: Optional[str] = Field(default=None, description="What the user wants changed")
    new_prompt: Optional[str] = Field(default=None, description="Replacement prompt (keeps existing if omitted)")
    media_only: bool = Field(default=False, description="Redo image/video only; keep audio and subtitles")


class SceneRegenerateResponse(BaseModel):
    video_id: str
    scene_id: str
    status: str
    message: str
    scene: Optional[Scene] = None


class FailedScenesRetryRequest(BaseModel):
    """Request to retry failed scenes."""

    scene_ids: Optional[list[str]] = Field(default=None, description="Restrict to these scenes (all failed if omitted)")
    retry_media_only: bool = Field(default=True, description="Keep existing narration audio when present")


class FailedSceneInfo(BaseModel):
    scene_id: str
    scene_order: int
    scene_type: SceneType
    failed_at: Optional[FailedStep] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    is_retrying: bool = False


class FailedScenesRetryResponse(BaseModel):
    video_id: str
    status: str = Field(..., description="processing, completed or no_failed_scenes")
    total_failed_count: int = 0
    retrying_count: int = 0
    failed_scenes: list[FailedSceneInfo] = Field(default_factory=list)
    message: str = ""


class ProcessResumeRequest(BaseModel):
    skip_failed: bool = Field(default=False, description="Leave failed scenes alone and continue")


class ProcessResumeResponse(BaseModel):
    video_id: str
    status: str
    resumed_from_index: Optional[int] = None
    remaining_count: int = 0
    message: str = ""


# ============================================================================
# Pipeline Input Models
# ============================================================================


class SceneSpec(BaseModel):
    """A scene as written in an accepted scenario."""

    type: SceneType = SceneType.SLIDE
    narration: str = ""
    prompt: str = ""


class Scenario(BaseModel):
    """An accepted scenario: title plus ordered scenes."""

    title: str = "Untitled"
    scenes: list[SceneSpec] = Field(default_factory=list)


class ScriptOpening(BaseModel):
    """Opening clip as written by the script model."""

    model_config = ConfigDict(populate_by_name=True)

    video_prompt: str = Field(..., alias="videoPrompt", min_length=1)
    narration: str = Field(..., min_length=1)


class ScriptSlide(BaseModel):
    """One narrated slide as written by the script model."""

    model_config = ConfigDict(populate_by_name=True)

    narration: str = Field(..., min_length=1)
    image_prompt: str = Field(default="", alias="imagePrompt")


class GeneratedScript(BaseModel):
    """JSON document the script model must return."""

    title: str = "Untitled"
    opening: ScriptOpening
    slides: list[ScriptSlide] = Field(..., min_length=1)

    def to_scenario(self) -> Scenario:
        """Opening clip first, then the slides in order."""
        scenes = [
            SceneSpec(type=SceneType.OPENING, narration=self.opening.narration, prompt=self.opening.video_prompt)
        ]
        scenes += [SceneSpec(narration=s.narration, prompt=s.image_prompt or s.narration) for s in self.slides]
        return Scenario(title=self.title, scenes=scenes)


class Voice(BaseModel):
    """A prebuilt TTS voice."""

    voice_id: str
    gender: str
    tone: str
    description: str
