"""Media Generator - scene images and opening clips via the retry dispatcher."""

import mimetypes
from pathlib import Path
from typing import Any, Optional

from aivideo.core.config import Settings
from aivideo.models.schemas import GeneratedMedia, GenerationContext, Scene, SceneType
from aivideo.services.gemini_client import GeminiClient
from aivideo.services.retry_dispatcher import RetryDispatcher

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
}


class MediaGenerator:
    """Generates the visual asset of a scene."""

    def __init__(
        self,
        settings: Settings,
        logger: Any,
        client: GeminiClient,
        dispatcher: RetryDispatcher,
    ):
        """
        Initialize media generator.

        Args:
            settings: Application settings
            logger: Logger instance
            client: Gemini API client
            dispatcher: Retry/fallback dispatcher
        """
        self.settings = settings
        self.logger = logger
        self.client = client
        self.dispatcher = dispatcher

    def media_dir(self, video_id: str) -> Path:
        return Path(self.settings.work_dir) / "videos" / video_id / "media"

    def generate_scene_media(
        self,
        scene: Scene,
        context: GenerationContext,
        prompt: Optional[str] = None,
    ) -> Path:
        """
        Generate and save a scene's image (SLIDE) or clip (OPENING).

        Args:
            scene: Scene to generate for
            context: Generation context
            prompt: Prompt override (defaults to the scene prompt)

        Returns:
            Path of the saved media file

        Raises:
            GenerationFailedError: If primary and fallback models both fail
        """
        prompt = prompt or scene.prompt or scene.narration
        if scene.type == SceneType.OPENING:
            self.logger.info(f"Generating opening clip for scene {scene.order}...")
            media: GeneratedMedia = self.dispatcher.dispatch(
                self.client.generate_video,
                prompt,
                self.settings.video_model,
                self.settings.video_fallback_model,
                context,
                operation=f"opening clip (scene {scene.order})",
            )
        else:
            self.logger.info(f"Generating image for scene {scene.order}...")
            media = self.dispatcher.dispatch(
                self.client.generate_image,
                prompt,
                self.settings.image_model,
                self.settings.image_fallback_model,
                context,
                operation=f"image (scene {scene.order})",
            )

        extension = _EXTENSIONS.get(media.mime_type) or mimetypes.guess_extension(media.mime_type) or ".bin"
        output_path = self.media_dir(scene.video_id) / f"scene_{scene.order:02d}_v{scene.version}{extension}"
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(media.data)
        self.logger.info(f"✅ Saved {media.mime_type} from {media.model} → {output_path.name}")
        return output_path
