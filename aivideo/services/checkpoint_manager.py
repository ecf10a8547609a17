"""Checkpoint Manager - derives, saves and restores video progress for resume."""

import json
from pathlib import Path
from threading import Lock
from typing import Any, Optional

from aivideo.core.config import Settings
from aivideo.models.schemas import Checkpoint, CheckpointStatus, ProcessType, Scene, SceneStatus

IN_FLIGHT_STATUSES = {
    SceneStatus.GENERATING,
    SceneStatus.MEDIA_READY,
    SceneStatus.TTS_READY,
    SceneStatus.REGENERATING,
}


def build_checkpoint(
    video_id: str,
    scenes: list[Scene],
    process_type: ProcessType = ProcessType.SCENE_PREVIEW,
) -> Checkpoint:
    """
    Derive a checkpoint from the current scene rows.

    Pure and idempotent: the same scenes always give the same checkpoint.
    ``last_updated`` is the newest scene update, not the wall clock.

    Args:
        video_id: Video identifier
        scenes: All scenes of the video
        process_type: Process the checkpoint describes

    Returns:
        Checkpoint snapshot
    """
    ordered = sorted(scenes, key=lambda s: s.order)
    completed = [s.scene_id for s in ordered if s.status == SceneStatus.COMPLETED]
    failed = [s.scene_id for s in ordered if s.status == SceneStatus.FAILED]
    in_flight = any(s.status in IN_FLIGHT_STATUSES for s in ordered)
    pending = any(s.status == SceneStatus.PENDING for s in ordered)

    if ordered and len(completed) == len(ordered):
        status = CheckpointStatus.COMPLETED
    elif in_flight:
        status = CheckpointStatus.PROCESSING
    elif failed:
        status = CheckpointStatus.FAILED
    elif pending:
        status = CheckpointStatus.PAUSED
    else:
        status = CheckpointStatus.PROCESSING

    last_updated = max((s.updated_at for s in ordered), default=None)
    return Checkpoint(
        video_id=video_id,
        process_type=process_type,
        status=status,
        total_count=len(ordered),
        completed_count=len(completed),
        failed_count=len(failed),
        completed_scene_ids=completed,
        failed_scene_ids=failed,
        last_updated=last_updated.isoformat() if last_updated else None,
        can_resume=len(completed) < len(ordered),
    )


class CheckpointManager:
    """Manages persisted checkpoints for resume after restart."""

    def __init__(self, settings: Settings, logger: Any):
        """
        Initialize checkpoint manager.

        Args:
            settings: Application settings
            logger: Logger instance
        """
        self.settings = settings
        self.logger = logger
        self.checkpoint_dir = Path(settings.storage_path) / "checkpoints"
        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    def _file(self, video_id: str, process_type: ProcessType) -> Path:
        return self.checkpoint_dir / f"{video_id}_{ProcessType(process_type).value}.json"

    def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        """
        Save a checkpoint (camelCase keys, one file per video and process).

        Args:
            checkpoint: Checkpoint to persist
        """
        checkpoint_file = self._file(checkpoint.video_id, checkpoint.process_type)
        tmp_file = checkpoint_file.with_suffix(".json.tmp")
        with self._lock:
            with open(tmp_file, "w") as f:
                json.dump(checkpoint.model_dump(mode="json", by_alias=True), f, indent=2, default=str)
            tmp_file.replace(checkpoint_file)

        self.logger.debug(
            f"Saved checkpoint: {checkpoint.video_id} {checkpoint.process_type.value} "
            f"({checkpoint.completed_count}/{checkpoint.total_count} completed, {checkpoint.failed_count} failed)"
        )

    def refresh(
        self,
        video_id: str,
        scenes: list[Scene],
        process_type: ProcessType = ProcessType.SCENE_PREVIEW,
    ) -> Checkpoint:
        """Rebuild a checkpoint from scenes and persist it."""
        checkpoint = build_checkpoint(video_id, scenes, process_type)
        self.save_checkpoint(checkpoint)
        return checkpoint

    def load_checkpoint(
        self,
        video_id: str,
        process_type: ProcessType = ProcessType.SCENE_PREVIEW,
    ) -> Optional[Checkpoint]:
        """
        Load a checkpoint for a video.

        Args:
            video_id: Video identifier
            process_type: Process type

        Returns:
            Checkpoint or None if not found
        """
        checkpoint_file = self._file(video_id, process_type)

        if not checkpoint_file.exists():
            return None

        try:
            with open(checkpoint_file, "r") as f:
                checkpoint_data = json.load(f)
            return Checkpoint(**checkpoint_data)
        except (OSError, ValueError) as e:
            self.logger.warning(f"Failed to load checkpoint {checkpoint_file}: {e}")
            return None

    def clear_checkpoint(self, video_id: str, process_type: ProcessType = ProcessType.SCENE_PREVIEW):
        checkpoint_file = self._file(video_id, process_type)
        if checkpoint_file.exists():
            checkpoint_file.unlink()
            self.logger.debug(f"Cleared checkpoint: {video_id} {ProcessType(process_type).value}")

    def list_checkpoints(self, video_id: Optional[str] = None) -> list[dict]:
        """
        List all checkpoints.

        Args:
            video_id: Optional video ID filter

        Returns:
            List of checkpoint metadata dicts
        """
        checkpoints = []
        pattern = f"{video_id}_*.json" if video_id else "*.json"

        for checkpoint_file in self.checkpoint_dir.glob(pattern):
            try:
                with open(checkpoint_file, "r") as f:
                    checkpoint_data = json.load(f)
                checkpoints.append({
                    "video_id": checkpoint_data.get("videoId"),
                    "process_type": checkpoint_data.get("processType"),
                    "status": checkpoint_data.get("status"),
                    "last_updated": checkpoint_data.get("lastUpdated"),
                    "file": str(checkpoint_file),
                })
            except (OSError, ValueError) as e:
                self.logger.warning(f"Failed to read checkpoint {checkpoint_file}: {e}")

        return checkpoints
