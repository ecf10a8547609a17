"""Media Composition Pipeline - slideshow, opening clip, audio mux, subtitles, storage hand-off.

Every step is one ffmpeg invocation through ``ProcessExecutor`` and must
leave a non-empty output file, otherwise the job stops with
``CompositionError``. Failed jobs keep their working directory for
diagnosis; successful ones are deleted after a grace period.
"""

import shutil
import threading
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

import requests
from apscheduler.executors.pool import ThreadPoolExecutor as SchedulerThreadPool
from apscheduler.job import Job
from apscheduler.schedulers.background import BackgroundScheduler

from aivideo.core.config import Settings
from aivideo.core.errors import CompositionError, ProcessError, UnsafeArgumentError
from aivideo.models.schemas import CompositionRequest, CompositionResult, Scene, SceneType
from aivideo.storage.storage_service import StorageService
from aivideo.utils.process_executor import ProcessExecutor

VIDEO_EXTENSIONS = {".mp4", ".mov", ".webm", ".mkv"}


class CleanupScheduler:
    """Deletes directories after a delay on a small fixed pool of daemon threads.

    Pending deletions are jobs in one apscheduler ``BackgroundScheduler``;
    at most ``workers`` of them run at once no matter how many are queued.
    """

    def __init__(self, logger: Any, workers: int = 2):
        self.logger = logger
        self._scheduler = BackgroundScheduler(
            executors={"default": SchedulerThreadPool(max(workers, 1))},
            job_defaults={"misfire_grace_time": None, "coalesce": False},
            daemon=True,
        )
        self._lock = threading.Lock()

    def _ensure_started(self) -> None:
        with self._lock:
            if not self._scheduler.running:
                self._scheduler.start()

    def schedule(self, path: Path, delay: float) -> Job:
        """
        Schedule recursive deletion of ``path`` after ``delay`` seconds.

        Returns:
            The scheduled apscheduler job
        """
        self._ensure_started()
        run_date = datetime.now() + timedelta(seconds=max(delay, 0))
        job = self._scheduler.add_job(self._delete, "date", run_date=run_date, args=[path])
        self.logger.debug(f"Cleanup of {path} scheduled in {delay:.0f}s")
        return job

    def _delete(self, path: Path) -> None:
        try:
            shutil.rmtree(path)
            self.logger.debug(f"Cleaned up {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Failed to clean up {path}: {e}")

    def pending(self) -> int:
        """Number of deletions not yet started."""
        return len(self._scheduler.get_jobs())

    def cancel_all(self) -> None:
        self._scheduler.remove_all_jobs()

    def shutdown(self) -> None:
        with self._lock:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)


class MediaCompositionPipeline:
    """Assembles scene and final videos from generated assets."""

    def __init__(
        self,
        settings: Settings,
        logger: Any,
        executor: ProcessExecutor,
        storage: StorageService,
        cleanup_scheduler: Optional[CleanupScheduler] = None,
        http_get: Optional[Callable[..., Any]] = None,
    ):
        """
        Initialize composition pipeline.

        Args:
            settings: Application settings
            logger: Logger instance
            executor: Process executor used for ffmpeg
            storage: Storage collaborator that receives finished files
            cleanup_scheduler: Optional scheduler for work dir deletion
            http_get: Optional HTTP GET function used to download URL inputs
        """
        self.settings = settings
        self.logger = logger
        self.executor = executor
        self.storage = storage
        self.cleanup_scheduler = cleanup_scheduler or CleanupScheduler(logger, settings.cleanup_workers)
        self.http_get = http_get or requests.get
        self.width = settings.video_width
        self.height = settings.video_height
        self.fps = settings.video_fps

    # ========================================================================
    # Public operations
    # ========================================================================

    def compose_video(self, request: CompositionRequest) -> CompositionResult:
        """
        Build a narrated video from slides, an optional opening clip, audio and subtitles.

        Steps:
            1. Fetch inputs into a fresh work dir
            2. Build the slideshow
            3. Upscale and prepend the opening clip (if any)
            4. Mux narration audio (trimmed to the shorter stream) or a silent track
            5. Burn in subtitles (if any)
            6. Hand the result to storage

        Args:
            request: Composition inputs

        Returns:
            CompositionResult with the storage key

        Raises:
            CompositionError: If any step fails; the work dir is kept
        """
        work_dir = self._create_work_dir()
        self.logger.info(f"Composing {request.job_name} in {work_dir}")

        try:
            self.logger.info("Step 1: Fetching inputs...")
            images = [
                self._fetch_input(src, work_dir / f"image_{i:03d}{self._suffix(src, '.png')}")
                for i, src in enumerate(request.image_paths)
            ]
            opening = None
            if request.opening_clip:
                opening = self._fetch_input(
                    request.opening_clip, work_dir / f"opening{self._suffix(request.opening_clip, '.mp4')}"
                )
            audio = None
            if request.audio_path:
                audio = self._fetch_input(request.audio_path, work_dir / f"narration{self._suffix(request.audio_path, '.mp3')}")
            subtitle = None
            if request.subtitle_path:
                subtitle = self._fetch_input(request.subtitle_path, work_dir / "subtitles.ass")

            if not images and opening is None:
                raise CompositionError("fetch", "no images or opening clip to compose", str(work_dir))

            combined = work_dir / "combined.mp4"
            if images:
                self.logger.info(f"Step 2: Building slideshow from {len(images)} images...")
                slideshow = self.build_slideshow(images, request.slide_durations, work_dir)
                self.logger.info("Step 3: Attaching opening clip...")
                self.attach_opening(opening, slideshow, combined, work_dir)
            else:
                self.logger.info("Step 2-3: Opening clip only, normalizing...")
                self.upscale_clip(opening, combined)

            # Every output carries exactly one audio track in the same layout,
            # so scene videos can later be stream-copied into one file
            if audio is not None:
                self.logger.info("Step 4: Muxing narration audio...")
                current = self.mux_audio(combined, audio, work_dir / "with_audio.mp4")
            else:
                self.logger.info("Step 4: No narration, adding a silent track...")
                current = self.add_silent_audio(combined, work_dir / "with_audio.mp4")

            if subtitle is not None:
                self.logger.info("Step 5: Burning subtitles...")
                current = self.burn_subtitles(current, subtitle, work_dir / "final.mp4")

            self.logger.info("Step 6: Handing off to storage...")
            size = current.stat().st_size
            with open(current, "rb") as stream:
                key = self.storage.put(request.output_key, stream, "video/mp4", size)
        except CompositionError as e:
            if e.work_dir is None:
                e.work_dir = str(work_dir)
            self.logger.error(f"❌ Composition of {request.job_name} failed at {e.step}; kept {work_dir}")
            raise
        except (ProcessError, UnsafeArgumentError, OSError, requests.RequestException) as e:
            self.logger.error(f"❌ Composition of {request.job_name} failed: {e}; kept {work_dir}")
            raise CompositionError("compose", str(e), str(work_dir)) from e

        self.logger.info(f"✅ Composed {request.job_name} → {key}")
        self.cleanup_scheduler.schedule(work_dir, self.settings.cleanup_delay_seconds)
        return CompositionResult(storage_key=key, output_path=current, work_dir=work_dir)

    def compose_scene_video(
        self,
        scene: Scene,
        media_path: Path,
        audio_path: Optional[Path],
        subtitle_path: Optional[Path],
    ) -> CompositionResult:
        """
        Compose one scene's video.

        Image scenes become a single slide lasting the narration; opening
        scenes use the generated clip.
        """
        is_clip = scene.type == SceneType.OPENING or media_path.suffix.lower() in VIDEO_EXTENSIONS
        request = CompositionRequest(
            job_name=f"{scene.video_id}/{scene.scene_filename()}",
            image_paths=[] if is_clip else [str(media_path)],
            slide_durations=[] if is_clip else [scene.audio_duration],
            opening_clip=str(media_path) if is_clip else None,
            audio_path=str(audio_path) if audio_path else None,
            subtitle_path=str(subtitle_path) if subtitle_path else None,
            output_key=f"videos/{scene.video_id}/scenes/{scene.scene_filename()}",
        )
        return self.compose_video(request)

    def concat_scene_videos(self, video_id: str, scene_paths: list[Union[str, Path]]) -> CompositionResult:
        """
        Concatenate composed scene videos into the final video.

        All scene videos share resolution, frame rate and codecs, so the
        concat demuxer can copy streams without re-encoding.

        Raises:
            CompositionError: If there is nothing to concatenate or ffmpeg fails
        """
        if not scene_paths:
            raise CompositionError("concat", f"no scene videos for {video_id}")

        work_dir = self._create_work_dir()
        try:
            inputs = [self._fetch_input(str(p), work_dir / f"part_{i:03d}.mp4") for i, p in enumerate(scene_paths)]
            list_file = work_dir / "scenes.txt"
            list_file.write_text("".join(f"file '{p}'\n" for p in inputs), encoding="utf-8")
            output = work_dir / "final.mp4"
            self._run_step(
                "concat",
                [
                    self.settings.ffmpeg_binary, "-y",
                    "-f", "concat", "-safe", "0",
                    "-i", str(list_file),
                    "-c", "copy",
                    str(output),
                ],
                output,
                work_dir,
            )
            key = f"videos/{video_id}/final.mp4"
            with open(output, "rb") as stream:
                key = self.storage.put(key, stream, "video/mp4", output.stat().st_size)
        except CompositionError:
            self.logger.error(f"❌ Final concat for {video_id} failed; kept {work_dir}")
            raise
        except (ProcessError, UnsafeArgumentError, OSError) as e:
            self.logger.error(f"❌ Final concat for {video_id} failed: {e}; kept {work_dir}")
            raise CompositionError("concat", str(e), str(work_dir)) from e

        self.logger.info(f"✅ Final video for {video_id} → {key} ({len(inputs)} scenes)")
        self.cleanup_scheduler.schedule(work_dir, self.settings.cleanup_delay_seconds)
        return CompositionResult(storage_key=key, output_path=output, work_dir=work_dir)

    # ========================================================================
    # Steps
    # ========================================================================

    def build_slideshow(self, images: list[Path], durations: list[Optional[float]], work_dir: Path) -> Path:
        """Render images into one video, each shown for its duration."""
        default = self.settings.default_slide_duration_seconds
        lines = []
        for i, image in enumerate(images):
            duration = durations[i] if i < len(durations) and durations[i] else default
            lines.append(f"file '{image}'\n")
            lines.append(f"duration {duration:.3f}\n")
        # The concat demuxer ignores the last duration unless the file repeats
        lines.append(f"file '{images[-1]}'\n")

        concat_file = work_dir / "concat.txt"
        concat_file.write_text("".join(lines), encoding="utf-8")

        output = work_dir / "slideshow.mp4"
        self._run_step(
            "slideshow",
            [
                self.settings.ffmpeg_binary, "-y",
                "-f", "concat", "-safe", "0",
                "-i", str(concat_file),
                "-vf", self._scale_filter(),
                "-c:v", "libx264",
                "-r", str(self.fps),
                "-pix_fmt", "yuv420p",
                str(output),
            ],
            output,
            work_dir,
        )
        return output

    def upscale_clip(self, clip: Path, output: Path) -> Path:
        """Normalize a clip to the slideshow's resolution and frame rate, without audio."""
        self._run_step(
            "upscale_opening",
            [
                self.settings.ffmpeg_binary, "-y",
                "-i", str(clip),
                "-vf", self._scale_filter(),
                "-c:v", "libx264",
                "-r", str(self.fps),
                "-pix_fmt", "yuv420p",
                "-an",
                str(output),
            ],
            output,
            output.parent,
        )
        return output

    def attach_opening(self, opening: Optional[Path], slideshow: Path, output: Path, work_dir: Path) -> Path:
        """Prepend the opening clip to the slideshow, or use the slideshow as-is."""
        if opening is None:
            shutil.copyfile(slideshow, output)
            self._validate_output("attach_opening", output, work_dir)
            return output

        upscaled = self.upscale_clip(opening, work_dir / "opening_upscaled.mp4")
        list_file = work_dir / "opening_concat.txt"
        list_file.write_text(f"file '{upscaled}'\nfile '{slideshow}'\n", encoding="utf-8")
        self._run_step(
            "concat_opening",
            [
                self.settings.ffmpeg_binary, "-y",
                "-f", "concat", "-safe", "0",
                "-i", str(list_file),
                "-c", "copy",
                str(output),
            ],
            output,
            work_dir,
        )
        return output

    def mux_audio(self, video: Path, audio: Path, output: Path) -> Path:
        """Lay narration over the video, trimming to the shorter stream."""
        self._run_step(
            "mux_audio",
            [
                self.settings.ffmpeg_binary, "-y",
                "-i", str(video),
                "-i", str(audio),
                "-c:v", "copy",
                *self._audio_codec_args(),
                "-map", "0:v:0",
                "-map", "1:a:0",
                "-shortest",
                str(output),
            ],
            output,
            output.parent,
        )
        return output

    def add_silent_audio(self, video: Path, output: Path) -> Path:
        """Give a video without narration a silent track in the shared audio layout."""
        layout = "stereo" if self.settings.audio_channels == 2 else "mono"
        self._run_step(
            "silent_audio",
            [
                self.settings.ffmpeg_binary, "-y",
                "-i", str(video),
                "-f", "lavfi",
                "-i", f"anullsrc=channel_layout={layout}:sample_rate={self.settings.audio_sample_rate}",
                "-c:v", "copy",
                *self._audio_codec_args(),
                "-map", "0:v:0",
                "-map", "1:a:0",
                "-shortest",
                str(output),
            ],
            output,
            output.parent,
        )
        return output

    def burn_subtitles(self, video: Path, subtitle: Path, output: Path) -> Path:
        """Re-encode the video with the ASS subtitles rendered in."""
        self._run_step(
            "burn_subtitles",
            [
                self.settings.ffmpeg_binary, "-y",
                "-i", str(video),
                "-vf", f"ass={subtitle}",
                "-c:v", "libx264",
                "-c:a", "copy",
                "-preset", "fast",
                "-crf", "23",
                str(output),
            ],
            output,
            output.parent,
        )
        return output

    # ========================================================================
    # Helpers
    # ========================================================================

    def _scale_filter(self) -> str:
        w, h = self.width, self.height
        return f"scale={w}:{h}:force_original_aspect_ratio=increase,crop={w}:{h},setsar=1"

    def _audio_codec_args(self) -> list[str]:
        return [
            "-c:a", "aac",
            "-b:a", "192k",
            "-ar", str(self.settings.audio_sample_rate),
            "-ac", str(self.settings.audio_channels),
        ]

    def _create_work_dir(self) -> Path:
        work_dir = Path(self.settings.work_dir) / uuid.uuid4().hex
        work_dir.mkdir(parents=True, exist_ok=False)
        return work_dir

    @staticmethod
    def _suffix(source: str, default: str) -> str:
        suffix = Path(source.split("?", 1)[0]).suffix
        return suffix if suffix else default

    @staticmethod
    def _local_path(source: str) -> Path:
        """Turn a plain path or a percent-encoded file:// URL into a filesystem path."""
        if source.startswith("file:"):
            return Path(url2pathname(urlparse(source).path))
        return Path(source)

    def _fetch_input(self, source: str, target: Path) -> Path:
        """Copy a local file or download a URL into the work dir."""
        if source.startswith(("http://", "https://")):
            response = self.http_get(source, timeout=self.settings.http_timeout_seconds)
            if response.status_code != 200:
                raise CompositionError("fetch", f"download of {source} returned {response.status_code}")
            target.write_bytes(response.content)
        else:
            local = self._local_path(source)
            if not local.exists():
                raise CompositionError("fetch", f"input not found: {local}")
            if local.stat().st_size == 0:
                raise CompositionError("fetch", f"input is empty: {local}")
            shutil.copyfile(local, target)

        if not target.exists() or target.stat().st_size == 0:
            raise CompositionError("fetch", f"fetched input is empty: {source}")
        return target

    def _run_step(self, step: str, command: list[str], output: Path, work_dir: Path) -> None:
        try:
            self.executor.execute_or_raise(command, timeout=self.settings.encode_timeout_seconds, cwd=work_dir)
        except (ProcessError, UnsafeArgumentError) as e:
            raise CompositionError(step, str(e), str(work_dir)) from e
        self._validate_output(step, output, work_dir)

    @staticmethod
    def _validate_output(step: str, output: Path, work_dir: Path) -> None:
        if not output.exists():
            raise CompositionError(step, f"output missing: {output.name}", str(work_dir))
        if output.stat().st_size == 0:
            raise CompositionError(step, f"output is empty: {output.name}", str(work_dir))
