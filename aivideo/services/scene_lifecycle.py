"""Scene Lifecycle Manager - per-scene state machine, bulk recovery and checkpoints.

Lifecycle::

    PENDING -> GENERATING -> MEDIA_READY -> TTS_READY -> COMPLETED
    (any in-progress state) -> FAILED
    FAILED -> REGENERATING -> GENERATING
    COMPLETED -> REGENERATING            (explicit regeneration only)

Every status change is one short repository commit followed by a checkpoint
rebuild. Generation work happens between commits, never inside one.
"""

import threading
from pathlib import Path
from typing import Any, Callable, Optional

from aivideo.core.config import Settings
from aivideo.core.errors import (
    GenerationCancelledError,
    InvalidTransitionError,
    VideoPipelineError,
)
from aivideo.models.schemas import (
    Checkpoint,
    CompositionResult,
    FailedSceneInfo,
    FailedScenesRetryRequest,
    FailedScenesRetryResponse,
    FailedStep,
    GenerationContext,
    ProcessResumeRequest,
    ProcessResumeResponse,
    ProcessType,
    Scenario,
    Scene,
    SceneRegenerateRequest,
    SceneRegenerateResponse,
    SceneStatus,
    SceneType,
)
from aivideo.services.audio_segmentation import AudioSegmentationEngine
from aivideo.services.checkpoint_manager import IN_FLIGHT_STATUSES, CheckpointManager, build_checkpoint
from aivideo.services.media_composition import MediaCompositionPipeline
from aivideo.services.media_generator import MediaGenerator
from aivideo.services.narration_service import NarrationService
from aivideo.services.subtitle_service import SubtitleService, split_sentences
from aivideo.storage.repository import SceneRepository
from aivideo.utils.error_handler import format_error_message, get_recovery_suggestion
from aivideo.utils.parallel_executor import ParallelExecutor

TRANSITIONS: dict[SceneStatus, set[SceneStatus]] = {
    SceneStatus.PENDING: {SceneStatus.GENERATING, SceneStatus.FAILED},
    SceneStatus.GENERATING: {SceneStatus.MEDIA_READY, SceneStatus.FAILED},
    SceneStatus.MEDIA_READY: {SceneStatus.TTS_READY, SceneStatus.FAILED},
    SceneStatus.TTS_READY: {SceneStatus.COMPLETED, SceneStatus.FAILED},
    SceneStatus.COMPLETED: set(),
    SceneStatus.FAILED: {SceneStatus.REGENERATING},
    SceneStatus.REGENERATING: {SceneStatus.GENERATING, SceneStatus.FAILED},
}

# Edges that only an explicit user regeneration may take
EXPLICIT_TRANSITIONS: dict[SceneStatus, set[SceneStatus]] = {
    SceneStatus.COMPLETED: {SceneStatus.REGENERATING},
}

# Step a scene was on when it stopped in a given status
_STEP_FOR_STATUS = {
    SceneStatus.PENDING: FailedStep.MEDIA,
    SceneStatus.REGENERATING: FailedStep.MEDIA,
    SceneStatus.GENERATING: FailedStep.MEDIA,
    SceneStatus.MEDIA_READY: FailedStep.TTS,
    SceneStatus.TTS_READY: FailedStep.VIDEO,
}


def is_valid_transition(current: SceneStatus, target: SceneStatus, explicit_regeneration: bool = False) -> bool:
    """Check an edge of the lifecycle graph."""
    if target in TRANSITIONS[current]:
        return True
    return explicit_regeneration and target in EXPLICIT_TRANSITIONS.get(current, set())


def scenes_from_scenario(video_id: str, scenario: Scenario) -> list[Scene]:
    """Turn an accepted scenario into PENDING scenes numbered from 0."""
    return [
        Scene(
            scene_id=f"{video_id}-s{order:02d}",
            video_id=video_id,
            order=order,
            type=spec.type,
            narration=spec.narration,
            prompt=spec.prompt,
        )
        for order, spec in enumerate(scenario.scenes)
    ]


class SceneLifecycleManager:
    """Drives scenes through generation and recovers from partial failure."""

    def __init__(
        self,
        settings: Settings,
        logger: Any,
        repository: SceneRepository,
        checkpoints: CheckpointManager,
        media_generator: MediaGenerator,
        narration: NarrationService,
        segmentation: AudioSegmentationEngine,
        subtitles: SubtitleService,
        composer: MediaCompositionPipeline,
        parallel_executor: Optional[ParallelExecutor] = None,
    ):
        """
        Initialize scene lifecycle manager.

        Args:
            settings: Application settings
            logger: Logger instance
            repository: Scene repository
            checkpoints: Checkpoint manager
            media_generator: Image/clip generator
            narration: TTS service
            segmentation: Audio segmentation engine
            subtitles: Subtitle writer
            composer: Media composition pipeline
            parallel_executor: Scene worker pool (created if omitted)
        """
        self.settings = settings
        self.logger = logger
        self.repository = repository
        self.checkpoints = checkpoints
        self.media_generator = media_generator
        self.narration = narration
        self.segmentation = segmentation
        self.subtitles = subtitles
        self.composer = composer
        self.parallel_executor = parallel_executor or ParallelExecutor(settings, logger)

        # Guards scene commits and the checkpoint rebuild that follows each one
        self._transition_lock = threading.RLock()
        self._state_lock = threading.Lock()
        self._cancel_events: dict[str, threading.Event] = {}
        self._active_scenes: set[str] = set()

    # ========================================================================
    # Single-scene transitions
    # ========================================================================

    def transition(
        self,
        video_id: str,
        scene_id: str,
        target: SceneStatus,
        explicit_regeneration: bool = False,
        **fields: Any,
    ) -> Scene:
        """
        Move a scene to ``target`` and persist ``fields`` in the same commit.

        Raises:
            InvalidTransitionError: If the edge is not in the lifecycle graph
            SceneNotFoundError: If the scene does not exist
        """
        with self._transition_lock:
            scene = self.repository.get_scene(video_id, scene_id)
            if not is_valid_transition(scene.status, target, explicit_regeneration):
                raise InvalidTransitionError(scene_id, scene.status.value, target.value)
            updated = self.repository.update_scene(video_id, scene_id, status=target, **fields)
            self.refresh_checkpoint(video_id)
        self.logger.debug(f"Scene {scene_id}: {scene.status.value} → {target.value}")
        return updated

    def refresh_checkpoint(self, video_id: str) -> Checkpoint:
        """Rebuild and persist the video's checkpoint from its scenes.

        Listing and saving happen under the transition lock, so the stored
        checkpoint always reflects the latest committed scene rows.
        """
        with self._transition_lock:
            scenes = self.repository.list_scenes(video_id)
            return self.checkpoints.refresh(video_id, scenes, ProcessType.SCENE_PREVIEW)

    def get_checkpoint(self, video_id: str, process_type: ProcessType = ProcessType.SCENE_PREVIEW) -> Checkpoint:
        """
        Current checkpoint for a video.

        Scene progress is always rebuilt from scene rows; the final-video
        checkpoint is read back as stored.
        """
        if process_type == ProcessType.SCENE_PREVIEW:
            return self.refresh_checkpoint(video_id)
        stored = self.checkpoints.load_checkpoint(video_id, process_type)
        return stored or build_checkpoint(video_id, self.repository.list_scenes(video_id), process_type)

    # ========================================================================
    # Scene worker
    # ========================================================================

    def process_scene(
        self,
        video_id: str,
        scene_id: str,
        context: GenerationContext,
        prompt_override: Optional[str] = None,
    ) -> Scene:
        """
        Run one scene from PENDING/REGENERATING to COMPLETED.

        Assets that already exist on disk (kept by a media-only regeneration
        or left by an interrupted run) are reused. Failures are recorded on
        the scene as FAILED and never raised, so one scene cannot stop the
        others.

        Args:
            video_id: Owning video
            scene_id: Scene to process
            context: Generation context passed to every external call
            prompt_override: Prompt to use instead of the stored one

        Returns:
            The scene in its final state (COMPLETED or FAILED)
        """
        with self._state_lock:
            self._active_scenes.add(scene_id)
        step = FailedStep.MEDIA
        try:
            scene = self.repository.get_scene(video_id, scene_id)
            if scene.status in (SceneStatus.PENDING, SceneStatus.REGENERATING):
                scene = self.transition(video_id, scene_id, SceneStatus.GENERATING)

            # Media
            self._check_cancelled(video_id)
            media_path = self._existing(scene.media_url)
            if media_path is None:
                media_path = self.media_generator.generate_scene_media(scene, context, prompt=prompt_override)
            self._check_cancelled(video_id)
            scene = self.transition(video_id, scene_id, SceneStatus.MEDIA_READY, media_url=str(media_path))

            # Narration (silent opening clips have none)
            step = FailedStep.TTS
            audio_path: Optional[Path] = None
            duration: Optional[float] = None
            if scene.narration.strip():
                audio_path = self._existing(scene.audio_url)
                if audio_path is None or not scene.audio_duration:
                    target_duration = None
                    if scene.type == SceneType.OPENING:
                        # Opening narration plays over the clip, so it is fitted to the clip length
                        target_duration = self.segmentation.get_audio_duration(media_path)
                    result = self.narration.synthesize(scene, context, target_duration=target_duration)
                    audio_path, duration = result.audio_path, result.duration
                else:
                    duration = scene.audio_duration
            self._check_cancelled(video_id)
            scene = self.transition(
                video_id,
                scene_id,
                SceneStatus.TTS_READY,
                audio_url=str(audio_path) if audio_path else None,
                audio_duration=duration,
            )

            # Subtitles
            step = FailedStep.SUBTITLE
            subtitle_path = self._existing(scene.subtitle_url)
            if subtitle_path is None and audio_path is not None:
                sentences = split_sentences(scene.narration)
                boundaries = self.segmentation.detect_sentence_boundaries(audio_path, len(sentences))
                subtitle_path = self.subtitles.write_scene_subtitles(
                    scene.narration,
                    boundaries,
                    duration,
                    self._subtitle_path(scene),
                    width=context.output_width,
                    height=context.output_height,
                )
                scene = self.repository.update_scene(video_id, scene_id, subtitle_url=str(subtitle_path))

            # Scene video
            step = FailedStep.VIDEO
            self._check_cancelled(video_id)
            composed: CompositionResult = self.composer.compose_scene_video(
                scene, media_path, audio_path, subtitle_path
            )
            scene = self.transition(
                video_id,
                scene_id,
                SceneStatus.COMPLETED,
                composed_video_url=composed.storage_key,
                error_message=None,
                failed_at=None,
            )
            self.logger.info(f"✅ Scene {scene.order} of {video_id} completed")
            return scene
        except (VideoPipelineError, ValueError, OSError) as e:
            return self._record_failure(video_id, scene_id, step, e)
        finally:
            with self._state_lock:
                self._active_scenes.discard(scene_id)

    def _record_failure(self, video_id: str, scene_id: str, step: FailedStep, error: Exception) -> Scene:
        message = format_error_message(
            f"Scene {step.value.lower()} step",
            error,
            context={"video_id": video_id, "scene_id": scene_id},
            suggestion=get_recovery_suggestion(error),
        )
        self.logger.error(message)
        with self._transition_lock:
            scene = self.repository.get_scene(video_id, scene_id)
            if scene.status == SceneStatus.FAILED:
                # Already failed by a cancel; keep the first recorded step
                updated = self.repository.update_scene(video_id, scene_id, error_message=scene.error_message or message)
            elif is_valid_transition(scene.status, SceneStatus.FAILED):
                updated = self.repository.update_scene(
                    video_id, scene_id, status=SceneStatus.FAILED, failed_at=step, error_message=message
                )
            else:
                # COMPLETED scenes stay completed; the error is logged only
                updated = scene
            self.refresh_checkpoint(video_id)
        return updated

    # ========================================================================
    # Video-level operations
    # ========================================================================

    def create_scenes(self, scenes: list[Scene]) -> Checkpoint:
        """Persist accepted scenes as PENDING and write the first checkpoint."""
        self.repository.create_scenes(scenes)
        video_id = scenes[0].video_id if scenes else ""
        return self.refresh_checkpoint(video_id)

    def generate_video(
        self,
        video_id: str,
        context: GenerationContext,
        schedule: Optional[Callable[..., Any]] = None,
    ) -> Checkpoint:
        """
        Generate every PENDING scene of a video in ascending order.

        Args:
            video_id: Video to generate
            context: Generation context
            schedule: Hand the scene batch to this callable (e.g. BackgroundTasks.add_task)
                instead of running it before returning

        Returns:
            Checkpoint after the run (or at submission when scheduled)
        """
        self._clear_cancel(video_id)
        pending = [s for s in self.repository.list_scenes(video_id) if s.status == SceneStatus.PENDING]
        self.logger.info(f"Generating {len(pending)} pending scenes for video {video_id}")
        self._run_scenes(video_id, [(s.scene_id, None) for s in pending], context, schedule)
        return self.refresh_checkpoint(video_id)

    def regenerate_scene(
        self,
        video_id: str,
        request: SceneRegenerateRequest,
        context: GenerationContext,
        schedule: Optional[Callable[..., Any]] = None,
    ) -> SceneRegenerateResponse:
        """
        Explicitly regenerate one COMPLETED or FAILED scene.

        The scene's media and composed video are soft-invalidated (version
        bump). Unless ``media_only`` is set, audio and subtitles are
        invalidated too.

        Raises:
            InvalidTransitionError: If the scene is still in progress
        """
        if not request.scene_id:
            raise ValueError("scene_id is required to regenerate a scene")
        scene = self.repository.get_scene(video_id, request.scene_id)
        invalidated: dict[str, Any] = {
            "media_url": None,
            "composed_video_url": None,
            "version": scene.version + 1,
            "retry_count": scene.retry_count + 1,
            "user_feedback": request.user_feedback,
            "error_message": None,
            "failed_at": None,
        }
        if request.new_prompt:
            invalidated["prompt"] = request.new_prompt
        if not request.media_only:
            invalidated.update(audio_url=None, audio_duration=None, subtitle_url=None)

        self._clear_cancel(video_id)
        self.transition(
            video_id, scene.scene_id, SceneStatus.REGENERATING, explicit_regeneration=True, **invalidated
        )
        self.logger.info(
            f"Regenerating scene {scene.order} of {video_id} ({'media only' if request.media_only else 'full'})"
        )

        prompt = request.new_prompt or scene.prompt
        if request.user_feedback:
            prompt = f"{prompt}. {request.user_feedback}" if prompt else request.user_feedback
        self._run_scenes(video_id, [(scene.scene_id, prompt)], context, schedule)

        current = self.repository.get_scene(video_id, scene.scene_id)
        if schedule is not None:
            status, message = "processing", "Regeneration started"
        elif current.status == SceneStatus.COMPLETED:
            status, message = "completed", "Scene regenerated"
        else:
            status, message = "failed", current.error_message or "Regeneration failed"
        return SceneRegenerateResponse(
            video_id=video_id, scene_id=scene.scene_id, status=status, message=message, scene=current
        )

    def retry_failed_scenes(
        self,
        video_id: str,
        request: FailedScenesRetryRequest,
        context: GenerationContext,
        schedule: Optional[Callable[..., Any]] = None,
    ) -> FailedScenesRetryResponse:
        """
        Retry FAILED scenes in ascending order.

        With ``retry_media_only`` the narration audio is kept when it exists;
        otherwise the scene is redone from scratch.
        """
        failed = [
            s
            for s in self.repository.list_scenes(video_id)
            if s.status == SceneStatus.FAILED and (request.scene_ids is None or s.scene_id in request.scene_ids)
        ]
        if not failed:
            return FailedScenesRetryResponse(
                video_id=video_id, status="no_failed_scenes", message="No failed scenes to retry"
            )

        self._clear_cancel(video_id)
        infos = []
        for scene in failed:
            fields: dict[str, Any] = {
                "media_url": None,
                "composed_video_url": None,
                "version": scene.version + 1,
                "retry_count": scene.retry_count + 1,
                "error_message": None,
            }
            if not request.retry_media_only:
                fields.update(audio_url=None, audio_duration=None, subtitle_url=None)
            self.transition(video_id, scene.scene_id, SceneStatus.REGENERATING, **fields)
            infos.append(self._failed_info(scene, is_retrying=True))

        self.logger.info(f"Retrying {len(failed)} failed scenes of {video_id}")
        self._run_scenes(video_id, [(s.scene_id, None) for s in failed], context, schedule)

        if schedule is None:
            after = {s.scene_id: s for s in self.repository.list_scenes(video_id)}
            still_failed = [after[s.scene_id] for s in failed if after[s.scene_id].status == SceneStatus.FAILED]
            status = "completed" if not still_failed else "partially_failed"
            message = f"{len(failed) - len(still_failed)}/{len(failed)} scenes recovered"
            infos = [self._failed_info(s) for s in still_failed]
        else:
            status, message = "processing", f"Retrying {len(failed)} scenes"

        return FailedScenesRetryResponse(
            video_id=video_id,
            status=status,
            total_failed_count=len(failed),
            retrying_count=len(failed),
            failed_scenes=infos,
            message=message,
        )

    def resume(
        self,
        video_id: str,
        request: ProcessResumeRequest,
        context: GenerationContext,
        schedule: Optional[Callable[..., Any]] = None,
    ) -> ProcessResumeResponse:
        """
        Continue a video from its last durable state.

        Scenes left in an in-progress status by a crashed run are marked
        FAILED and resumed with their assets reused. PENDING scenes run
        as-is. FAILED scenes are retried unless ``skip_failed`` is set.
        """
        scenes = self.repository.list_scenes(video_id)
        checkpoint = build_checkpoint(video_id, scenes)
        if not checkpoint.can_resume:
            return ProcessResumeResponse(
                video_id=video_id, status="completed", remaining_count=0, message="All scenes already completed"
            )

        with self._state_lock:
            active = set(self._active_scenes)

        self._clear_cancel(video_id)
        to_run: list[Scene] = []
        for scene in scenes:
            if scene.scene_id in active:
                continue
            if scene.status in IN_FLIGHT_STATUSES:
                scene = self._record_failure(
                    video_id,
                    scene.scene_id,
                    _STEP_FOR_STATUS[scene.status],
                    GenerationCancelledError("Interrupted before completion"),
                )
                to_run.append(scene)
            elif scene.status == SceneStatus.PENDING:
                to_run.append(scene)
            elif scene.status == SceneStatus.FAILED and not request.skip_failed:
                to_run.append(scene)

        if not to_run:
            return ProcessResumeResponse(
                video_id=video_id,
                status="no_resumable_scenes",
                remaining_count=0,
                message="Only skipped failed scenes remain",
            )

        for scene in to_run:
            if scene.status == SceneStatus.FAILED:
                self.transition(
                    video_id,
                    scene.scene_id,
                    SceneStatus.REGENERATING,
                    retry_count=scene.retry_count + 1,
                    error_message=None,
                )

        resumed_from = to_run[0].order
        self.logger.info(f"Resuming {video_id} from scene {resumed_from} ({len(to_run)} scenes)")
        self._run_scenes(video_id, [(s.scene_id, None) for s in to_run], context, schedule)

        if schedule is None:
            final = build_checkpoint(video_id, self.repository.list_scenes(video_id))
            status = final.status.value
        else:
            status = "processing"
        return ProcessResumeResponse(
            video_id=video_id,
            status=status,
            resumed_from_index=resumed_from,
            remaining_count=len(to_run),
            message=f"Resumed {len(to_run)} scenes",
        )

    def cancel(self, video_id: str) -> int:
        """
        Cancel a video's generation cooperatively.

        In-flight scenes are marked FAILED immediately; their workers stop at
        the next step boundary. External calls already running finish on
        their own timeouts.

        Returns:
            Number of scenes marked FAILED
        """
        with self._state_lock:
            self._cancel_events.setdefault(video_id, threading.Event()).set()

        cancelled = 0
        for scene in self.repository.list_scenes(video_id):
            if scene.status not in IN_FLIGHT_STATUSES:
                continue
            try:
                self.transition(
                    video_id,
                    scene.scene_id,
                    SceneStatus.FAILED,
                    failed_at=_STEP_FOR_STATUS[scene.status],
                    error_message="Cancelled by user",
                )
                cancelled += 1
            except InvalidTransitionError:
                # The worker moved the scene on concurrently
                continue
        self.logger.warning(f"⚠️ Cancelled video {video_id}: {cancelled} in-flight scenes marked FAILED")
        return cancelled

    def list_failed_scenes(self, video_id: str) -> list[FailedSceneInfo]:
        return [self._failed_info(s) for s in self.repository.list_scenes(video_id) if s.status == SceneStatus.FAILED]

    def finalize_video(self, video_id: str) -> CompositionResult:
        """
        Concatenate all completed scene videos into the final video.

        Raises:
            CompositionError: If no scene is completed or concatenation fails
        """
        scenes = self.repository.list_scenes(video_id)
        completed = [s for s in scenes if s.status == SceneStatus.COMPLETED and s.composed_video_url]
        if len(completed) < len(scenes):
            self.logger.warning(
                f"⚠️ Finalizing {video_id} with {len(completed)}/{len(scenes)} completed scenes"
            )
        sources = [self.composer.storage.presigned_url(s.composed_video_url) for s in completed]
        result = self.composer.concat_scene_videos(video_id, sources)
        final_checkpoint = build_checkpoint(video_id, scenes, ProcessType.FINAL_VIDEO)
        self.checkpoints.save_checkpoint(final_checkpoint)
        return result

    # ========================================================================
    # Helpers
    # ========================================================================

    def _run_scenes(
        self,
        video_id: str,
        jobs: list[tuple[str, Optional[str]]],
        context: GenerationContext,
        schedule: Optional[Callable[..., Any]],
    ) -> None:
        if not jobs:
            return
        prompts = dict(jobs)
        scene_ids = [scene_id for scene_id, _ in jobs]

        def worker(scene_id: str) -> Scene:
            return self.process_scene(video_id, scene_id, context, prompts[scene_id])

        if schedule is None:
            self.parallel_executor.run_scenes(video_id, scene_ids, worker)
        else:
            schedule(self.parallel_executor.run_scenes, video_id, scene_ids, worker)

    def _check_cancelled(self, video_id: str) -> None:
        with self._state_lock:
            event = self._cancel_events.get(video_id)
        if event is not None and event.is_set():
            raise GenerationCancelledError(f"Generation of {video_id} was cancelled")

    def _clear_cancel(self, video_id: str) -> None:
        with self._state_lock:
            self._cancel_events.pop(video_id, None)

    @staticmethod
    def _existing(url: Optional[str]) -> Optional[Path]:
        if not url:
            return None
        path = Path(url)
        if path.exists() and path.stat().st_size > 0:
            return path
        return None

    def _subtitle_path(self, scene: Scene) -> Path:
        return (
            Path(self.settings.work_dir)
            / "videos"
            / scene.video_id
            / "subtitles"
            / f"scene_{scene.order:02d}_v{scene.version}.ass"
        )

    @staticmethod
    def _failed_info(scene: Scene, is_retrying: bool = False) -> FailedSceneInfo:
        return FailedSceneInfo(
            scene_id=scene.scene_id,
            scene_order=scene.order,
            scene_type=scene.type,
            failed_at=scene.failed_at,
            error_message=scene.error_message,
            retry_count=scene.retry_count,
            is_retrying=is_retrying,
        )
