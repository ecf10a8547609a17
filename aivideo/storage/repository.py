"""Storage repository for scenes."""

import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Optional

from aivideo.core.config import Settings
from aivideo.core.errors import SceneNotFoundError
from aivideo.models.schemas import Scene


class SceneRepository:
    """Repository for storing and loading scenes.

    Each scene is one JSON document and every update rewrites only that
    document through a temp file and ``os.replace``, so updates are short,
    independent commits. The write lock is never held while media is being
    generated.
    """

    def __init__(self, settings: Settings, logger: Any):
        """
        Initialize the repository.

        Args:
            settings: Application settings
            logger: Logger instance
        """
        self.settings = settings
        self.logger = logger
        self.storage_path = Path(settings.storage_path) / "videos"
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    def _scene_dir(self, video_id: str) -> Path:
        return self.storage_path / video_id / "scenes"

    def _scene_file(self, video_id: str, scene_id: str) -> Path:
        return self._scene_dir(video_id) / f"{scene_id}.json"

    def _write(self, scene: Scene) -> None:
        scene_dir = self._scene_dir(scene.video_id)
        scene_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=scene_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(scene.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self._scene_file(scene.video_id, scene.scene_id))
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def create_scenes(self, scenes: list[Scene]) -> list[Scene]:
        """
        Save newly accepted scenes.

        Args:
            scenes: Scenes to persist

        Returns:
            The same scenes
        """
        with self._lock:
            for scene in scenes:
                self._write(scene)
        if scenes:
            self.logger.info(f"Saved {len(scenes)} scenes for video {scenes[0].video_id}")
        return scenes

    def get_scene(self, video_id: str, scene_id: str) -> Scene:
        """
        Load a scene.

        Raises:
            SceneNotFoundError: If the scene does not exist
        """
        file_path = self._scene_file(video_id, scene_id)
        if not file_path.exists():
            raise SceneNotFoundError(f"Scene not found: {video_id}/{scene_id}")
        with open(file_path, "r", encoding="utf-8") as f:
            return Scene(**json.load(f))

    def find_scene(self, video_id: str, scene_id: str) -> Optional[Scene]:
        try:
            return self.get_scene(video_id, scene_id)
        except SceneNotFoundError:
            return None

    def list_scenes(self, video_id: str) -> list[Scene]:
        """
        List a video's scenes in ascending order.

        Returns:
            Scenes sorted by ``order``
        """
        scene_dir = self._scene_dir(video_id)
        if not scene_dir.exists():
            return []
        scenes = []
        for file_path in scene_dir.glob("*.json"):
            with open(file_path, "r", encoding="utf-8") as f:
                scenes.append(Scene(**json.load(f)))
        return sorted(scenes, key=lambda s: s.order)

    def update_scene(self, video_id: str, scene_id: str, **fields: Any) -> Scene:
        """
        Apply field updates to one scene in a single commit.

        Args:
            video_id: Owning video
            scene_id: Scene to update
            **fields: Scene fields to set

        Returns:
            The updated scene
        """
        with self._lock:
            scene = self.get_scene(video_id, scene_id)
            updated = scene.model_copy(update={**fields, "updated_at": datetime.now()})
            # model_copy skips validation; round-trip to coerce enums and types
            updated = Scene(**updated.model_dump())
            self._write(updated)
        return updated

    def list_videos(self) -> list[str]:
        """List all video IDs with stored scenes."""
        return sorted(p.name for p in self.storage_path.iterdir() if p.is_dir())
