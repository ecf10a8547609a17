"""Pipeline orchestrators for the AI Video Orchestrator."""

from aivideo.pipelines.run_video_pipeline import build_lifecycle_manager, main, run_video_pipeline

__all__ = ["build_lifecycle_manager", "main", "run_video_pipeline"]
