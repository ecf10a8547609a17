"""Narration Service - TTS synthesis, PCM conversion and duration measurement."""

from pathlib import Path
from typing import Any, Optional

from aivideo.core.config import Settings
from aivideo.core.errors import ProcessError
from aivideo.models.schemas import GeneratedMedia, GenerationContext, NarrationResult, Scene
from aivideo.services.audio_segmentation import AudioSegmentationEngine
from aivideo.services.gemini_client import GeminiClient
from aivideo.services.retry_dispatcher import RetryDispatcher
from aivideo.utils.process_executor import ProcessExecutor

# Gemini TTS output format
PCM_SAMPLE_RATE = 24000
PCM_CHANNELS = 1


class NarrationService:
    """Turns scene narration into an MP3 with a measured duration."""

    def __init__(
        self,
        settings: Settings,
        logger: Any,
        client: GeminiClient,
        dispatcher: RetryDispatcher,
        executor: ProcessExecutor,
        segmentation: AudioSegmentationEngine,
    ):
        """
        Initialize narration service.

        Args:
            settings: Application settings
            logger: Logger instance
            client: Gemini API client
            dispatcher: Retry/fallback dispatcher
            executor: Process executor for ffmpeg
            segmentation: Audio segmentation engine (duration probing)
        """
        self.settings = settings
        self.logger = logger
        self.client = client
        self.dispatcher = dispatcher
        self.executor = executor
        self.segmentation = segmentation

    def audio_dir(self, video_id: str) -> Path:
        return Path(self.settings.work_dir) / "videos" / video_id / "audio"

    def synthesize(
        self,
        scene: Scene,
        context: GenerationContext,
        target_duration: Optional[float] = None,
    ) -> NarrationResult:
        """
        Synthesize a scene's narration.

        Args:
            scene: Scene whose narration is spoken
            context: Generation context (voice, API key)
            target_duration: Optional length to fit the audio to (best effort)

        Returns:
            NarrationResult with the MP3 path and its duration

        Raises:
            ValueError: If the scene has no narration
            GenerationFailedError: If both TTS models fail
            ProcessError: If PCM conversion fails
        """
        if not scene.narration or not scene.narration.strip():
            raise ValueError(f"Scene {scene.scene_id} has no narration")

        self.logger.info(f"Generating narration for scene {scene.order} ({len(scene.narration)} characters)...")
        media: GeneratedMedia = self.dispatcher.dispatch(
            self.client.synthesize_speech,
            scene.narration,
            self.settings.tts_model,
            self.settings.tts_fallback_model,
            context,
            operation=f"narration (scene {scene.order})",
        )

        audio_dir = self.audio_dir(scene.video_id)
        audio_dir.mkdir(parents=True, exist_ok=True)
        stem = f"scene_{scene.order:02d}_v{scene.version}"

        if "mpeg" in media.mime_type or "mp3" in media.mime_type:
            mp3_path = audio_dir / f"{stem}.mp3"
            mp3_path.write_bytes(media.data)
        else:
            pcm_path = audio_dir / f"{stem}.pcm"
            pcm_path.write_bytes(media.data)
            mp3_path = self.convert_pcm_to_mp3(pcm_path, audio_dir / f"{stem}.mp3")
            pcm_path.unlink(missing_ok=True)

        if target_duration:
            mp3_path = self.segmentation.adjust_tempo(mp3_path, target_duration)

        duration = self.segmentation.get_audio_duration(mp3_path)
        self.logger.info(f"✅ Narration for scene {scene.order}: {duration:.2f}s")
        return NarrationResult(audio_path=mp3_path, duration=duration)

    def convert_pcm_to_mp3(self, pcm_path: Path, mp3_path: Path) -> Path:
        """
        Encode raw 16-bit PCM to MP3.

        Raises:
            ProcessError: If ffmpeg fails, times out or writes nothing
        """
        command = [
            self.settings.ffmpeg_binary, "-y",
            "-f", "s16le",
            "-ar", str(PCM_SAMPLE_RATE),
            "-ac", str(PCM_CHANNELS),
            "-i", str(pcm_path),
            "-codec:a", "libmp3lame",
            "-b:a", "192k",
            str(mp3_path),
        ]
        self.executor.execute_or_raise(command, timeout=self.settings.silence_timeout_seconds)
        if not mp3_path.exists() or mp3_path.stat().st_size == 0:
            raise ProcessError(f"PCM conversion produced no output: {mp3_path}", command=command)
        return mp3_path
