"""Parallel Executor - bounded pool of scene workers."""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Optional

from aivideo.core.config import Settings


@dataclass
class SceneRun:
    """Outcome of one scene worker."""

    scene_id: str
    result: Any = None
    error: Optional[Exception] = None
    elapsed: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None


class ParallelExecutor:
    """Runs a video's scene workers on at most ``max_parallel_scenes`` threads.

    Scenes are submitted in the order given, so with one worker they run
    strictly one after another and with more they start in ascending order.
    """

    def __init__(self, settings: Settings, logger: Any, max_workers: Optional[int] = None):
        """
        Initialize parallel executor.

        Args:
            settings: Application settings
            logger: Logger instance
            max_workers: Pool size (defaults to settings.max_parallel_scenes)
        """
        self.settings = settings
        self.logger = logger
        self.max_workers = max(1, max_workers or settings.max_parallel_scenes)

    def run_scenes(
        self,
        video_id: str,
        scene_ids: list[str],
        worker: Callable[[str], Any],
    ) -> list[SceneRun]:
        """
        Run ``worker(scene_id)`` for every scene.

        A worker that raises does not stop the others; its exception is
        kept on its ``SceneRun``.

        Args:
            video_id: Owning video (used for thread names and logs)
            scene_ids: Scenes to run, in submission order
            worker: Callable doing one scene's work

        Returns:
            One SceneRun per scene id, in input order
        """
        if not scene_ids:
            return []

        workers = min(self.max_workers, len(scene_ids))
        self.logger.info(f"Running {len(scene_ids)} scenes of {video_id} on {workers} worker(s)")
        started = time.monotonic()
        runs: list[Optional[SceneRun]] = [None] * len(scene_ids)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"scene-{video_id}") as pool:
            futures = {
                pool.submit(self._run_one, video_id, scene_id, worker): index
                for index, scene_id in enumerate(scene_ids)
            }
            for done, future in enumerate(as_completed(futures), start=1):
                run = future.result()
                runs[futures[future]] = run
                status = "done" if run.succeeded else "crashed"
                self.logger.debug(f"Scene {run.scene_id} {status} ({done}/{len(scene_ids)}) in {run.elapsed:.2f}s")

        crashed = sum(1 for run in runs if run and not run.succeeded)
        self.logger.info(
            f"Scene batch of {video_id} finished in {time.monotonic() - started:.2f}s"
            + (f", {crashed} worker(s) crashed" if crashed else "")
        )
        return [run for run in runs if run is not None]

    def _run_one(self, video_id: str, scene_id: str, worker: Callable[[str], Any]) -> SceneRun:
        started = time.monotonic()
        try:
            result = worker(scene_id)
        except Exception as e:
            # Workers record scene failures themselves; this is an unexpected crash
            self.logger.bind(video_id=video_id, scene_id=scene_id).exception(f"Scene worker crashed: {e}")
            return SceneRun(scene_id=scene_id, error=e, elapsed=time.monotonic() - started)
        return SceneRun(scene_id=scene_id, result=result, elapsed=time.monotonic() - started)
