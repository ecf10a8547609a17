"""Video pipeline orchestrator - scenario → scenes → scene videos → final video."""

import argparse
import json
import shutil
import sys
import time
import uuid
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from aivideo.core.config import Settings, settings
from aivideo.core.errors import VideoPipelineError
from aivideo.core.logging_config import get_logger, setup_logging
from aivideo.models.schemas import (
    Checkpoint,
    CheckpointStatus,
    FailedScenesRetryRequest,
    GenerationContext,
    ProcessResumeRequest,
    Scenario,
)
from aivideo.services.audio_segmentation import AudioSegmentationEngine
from aivideo.services.checkpoint_manager import CheckpointManager
from aivideo.services.gemini_client import GeminiClient
from aivideo.services.media_composition import MediaCompositionPipeline
from aivideo.services.media_generator import MediaGenerator
from aivideo.services.narration_service import NarrationService
from aivideo.services.retry_dispatcher import RetryDispatcher
from aivideo.services.scenario_generator import ScenarioGenerator
from aivideo.services.scene_lifecycle import SceneLifecycleManager, scenes_from_scenario
from aivideo.services.subtitle_service import SubtitleService
from aivideo.storage.repository import SceneRepository
from aivideo.storage.storage_service import LocalStorageService
from aivideo.utils.parallel_executor import ParallelExecutor
from aivideo.utils.process_executor import ProcessExecutor


def build_lifecycle_manager(settings: Settings, logger: Any) -> SceneLifecycleManager:
    """Wire every service the scene lifecycle needs."""
    executor = ProcessExecutor(settings, logger)
    client = GeminiClient(settings, logger)
    dispatcher = RetryDispatcher(settings, logger)
    segmentation = AudioSegmentationEngine(settings, logger, executor)
    storage = LocalStorageService(settings, logger)
    return SceneLifecycleManager(
        settings,
        logger,
        repository=SceneRepository(settings, logger),
        checkpoints=CheckpointManager(settings, logger),
        media_generator=MediaGenerator(settings, logger, client, dispatcher),
        narration=NarrationService(settings, logger, client, dispatcher, executor, segmentation),
        segmentation=segmentation,
        subtitles=SubtitleService(settings, logger),
        composer=MediaCompositionPipeline(settings, logger, executor, storage),
        parallel_executor=ParallelExecutor(settings, logger),
    )


def build_scenario_generator(settings: Settings, logger: Any) -> ScenarioGenerator:
    return ScenarioGenerator(settings, logger, GeminiClient(settings, logger), RetryDispatcher(settings, logger))


def load_scenario(path: Path) -> Scenario:
    """
    Read an accepted scenario from a JSON file.

    Raises:
        ValueError: If the file is not valid JSON or has no scenes
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    try:
        scenario = Scenario(**data)
    except ValidationError as e:
        raise ValueError(f"Invalid scenario {path}: {e}") from e
    if not scenario.scenes:
        raise ValueError(f"Scenario {path} has no scenes")
    return scenario


def save_scenario(scenario: Scenario, path: Path) -> Path:
    """Write a scenario as JSON so a generated script can be reviewed or reused with --scenario."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(scenario.model_dump_json(indent=2), encoding="utf-8")
    return path


def log_failed_scenes(manager: SceneLifecycleManager, video_id: str, logger: Any) -> None:
    for info in manager.list_failed_scenes(video_id):
        step = info.failed_at.value if info.failed_at else "UNKNOWN"
        logger.error(f"Scene {info.scene_order} ({info.scene_type.value}) failed at {step}, retries: {info.retry_count}")
        if info.error_message:
            logger.error(info.error_message)


def run_video_pipeline(
    manager: SceneLifecycleManager,
    video_id: str,
    context: GenerationContext,
    logger: Any,
    scenario: Optional[Scenario] = None,
    resume: bool = False,
    retry_failed: bool = False,
    skip_failed: bool = False,
    output_dir: Optional[Path] = None,
) -> Optional[Path]:
    """
    Run a video from scenario (or stored scenes) to the final file.

    Args:
        manager: Scene lifecycle manager
        video_id: Video identifier
        context: Generation context
        logger: Logger instance
        scenario: Scenario for a new video
        resume: Continue an existing video from its checkpoint
        retry_failed: Retry the video's FAILED scenes first
        skip_failed: Compose the final video without failed scenes
        output_dir: Where to copy the final video

    Returns:
        Path of the final video, or None if scenes are still failed
    """
    # Step 1: Scenes
    if scenario is not None:
        logger.info(f"Step 1: Creating {len(scenario.scenes)} scenes for '{scenario.title}'...")
        manager.create_scenes(scenes_from_scenario(video_id, scenario))
    else:
        logger.info("Step 1: Using stored scenes...")
        if not manager.repository.list_scenes(video_id):
            raise ValueError(f"No scenes stored for video {video_id}")

    # Step 2: Generate / recover
    if retry_failed:
        logger.info("Step 2: Retrying failed scenes...")
        response = manager.retry_failed_scenes(video_id, FailedScenesRetryRequest(retry_media_only=False), context)
        logger.info(f"Retry: {response.status} - {response.message}")
    if resume:
        logger.info("Step 2: Resuming from checkpoint...")
        response = manager.resume(video_id, ProcessResumeRequest(skip_failed=skip_failed), context)
        logger.info(f"Resume: {response.status} - {response.message}")
    elif not retry_failed:
        logger.info("Step 2: Generating scenes...")
        manager.generate_video(video_id, context)

    # Step 3: Checkpoint
    checkpoint: Checkpoint = manager.get_checkpoint(video_id)
    logger.info(
        f"Step 3: {checkpoint.completed_count}/{checkpoint.total_count} scenes completed, "
        f"{checkpoint.failed_count} failed"
    )
    if checkpoint.status != CheckpointStatus.COMPLETED:
        log_failed_scenes(manager, video_id, logger)
        if not skip_failed or checkpoint.completed_count == 0:
            logger.warning(f"⚠️ Video {video_id} is incomplete; run again with --resume or --retry-failed")
            return None

    # Step 4: Final video
    logger.info("Step 4: Composing final video...")
    result = manager.finalize_video(video_id)
    final_path = result.output_path
    if output_dir is not None:
        output_dir.mkdir(parents=True, exist_ok=True)
        final_path = output_dir / f"{video_id}.mp4"
        storage = manager.composer.storage
        source = storage.local_path(result.storage_key) if hasattr(storage, "local_path") else result.output_path
        shutil.copyfile(source, final_path)
    logger.info(f"✅ Final video: {final_path}")
    return final_path


def main():
    """Main entrypoint for the video pipeline."""
    parser = argparse.ArgumentParser(
        description="AI Video Orchestrator - scenario to narrated video",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--scenario",
        type=str,
        default=None,
        help="Scenario JSON file (title and scenes)",
    )
    source.add_argument(
        "--prompt",
        type=str,
        default=None,
        help="Topic to write a scenario for with the script model",
    )
    parser.add_argument(
        "--slides",
        type=int,
        default=None,
        help=f"Slides to request with --prompt (default: {settings.scenario_slide_count})",
    )
    parser.add_argument(
        "--video-id",
        type=str,
        default=None,
        help="Video identifier (generated for new videos; required with --resume / --retry-failed)",
    )
    parser.add_argument(
        "--resume",
        action="store_true",
        help="Resume a video from its last checkpoint",
    )
    parser.add_argument(
        "--retry-failed",
        action="store_true",
        help="Retry the video's failed scenes",
    )
    parser.add_argument(
        "--skip-failed",
        action="store_true",
        help="Leave failed scenes out: do not retry them on resume and compose the final video without them",
    )
    parser.add_argument(
        "--voice",
        type=str,
        default=None,
        help=f"Prebuilt TTS voice (default: {settings.default_voice})",
    )
    parser.add_argument(
        "--api-key",
        type=str,
        default=None,
        help="Gemini API key (default: GEMINI_API_KEY from the environment)",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default="outputs/videos",
        help="Output directory for final videos (default: outputs/videos)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Also write logs to this file",
    )

    args = parser.parse_args()

    new_video = bool(args.scenario or args.prompt)
    if not new_video and not (args.resume or args.retry_failed):
        parser.error("One of --scenario, --prompt or --resume/--retry-failed must be provided")
    if (args.resume or args.retry_failed) and not args.video_id:
        parser.error("--resume and --retry-failed require --video-id")
    if new_video and (args.resume or args.retry_failed):
        parser.error("--scenario/--prompt start a new video and cannot be combined with --resume/--retry-failed")
    if args.slides is not None and not args.prompt:
        parser.error("--slides only applies to --prompt")
    if args.slides is not None and args.slides < 1:
        parser.error("--slides must be at least 1")

    video_id = args.video_id or f"video_{uuid.uuid4().hex[:12]}"

    setup_logging(
        log_level=settings.log_level, log_file=args.log_file or settings.log_file, serialize=settings.log_json
    )
    logger = get_logger(__name__, video_id=video_id)

    logger.info("=" * 60)
    logger.info("AI Video Orchestrator - Video Pipeline")
    logger.info(f"Video ID: {video_id}")
    if args.resume:
        logger.info(f"Mode: RESUME{' (skipping failed scenes)' if args.skip_failed else ''}")
    elif args.retry_failed:
        logger.info("Mode: RETRY FAILED")
    elif args.prompt:
        logger.info(f"Prompt: {args.prompt}")
    else:
        logger.info(f"Scenario: {args.scenario}")
    logger.info("=" * 60)

    start_time = time.time()
    try:
        context = GenerationContext(
            api_key=args.api_key or settings.gemini_api_key,
            voice=args.voice or settings.default_voice,
        )
        scenario = load_scenario(Path(args.scenario)) if args.scenario else None
        if args.prompt:
            scenario = build_scenario_generator(settings, logger).generate(args.prompt, context, args.slides)
            saved = save_scenario(scenario, Path(settings.storage_path) / "scenarios" / f"{video_id}.json")
            logger.info(f"Scenario saved to {saved}")
        manager = build_lifecycle_manager(settings, logger)
        final_path = run_video_pipeline(
            manager,
            video_id,
            context,
            logger,
            scenario=scenario,
            resume=args.resume,
            retry_failed=args.retry_failed,
            skip_failed=args.skip_failed,
            output_dir=Path(args.output_dir),
        )

        elapsed = time.time() - start_time
        logger.info("=" * 60)
        if final_path is None:
            logger.info(f"Pipeline stopped with failed scenes after {elapsed:.2f}s")
            logger.info("=" * 60)
            return 1
        logger.info(f"Pipeline complete in {elapsed:.2f}s")
        logger.info("=" * 60)
        return 0

    except KeyboardInterrupt:
        logger.warning("Pipeline interrupted by user; resume with --resume --video-id " + video_id)
        return 1
    except (VideoPipelineError, ValueError, OSError) as e:
        logger.error(f"Pipeline failed: {e}")
        logger.error(f"\n❌ Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
