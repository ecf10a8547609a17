"""Tests for the scene worker pool."""

import threading
import time

from aivideo.utils.parallel_executor import ParallelExecutor


def test_results_come_back_in_scene_order(settings, logger):
    executor = ParallelExecutor(settings, logger, max_workers=3)

    def worker(scene_id):
        # Later scenes finish first
        time.sleep(0.05 if scene_id.endswith("0") else 0.0)
        return scene_id.upper()

    runs = executor.run_scenes("v", ["v-s00", "v-s01", "v-s02"], worker)

    assert [run.scene_id for run in runs] == ["v-s00", "v-s01", "v-s02"]
    assert [run.result for run in runs] == ["V-S00", "V-S01", "V-S02"]
    assert all(run.succeeded for run in runs)


def test_concurrency_is_bounded(settings, logger):
    """Test no more than max_workers scenes run at the same time."""
    executor = ParallelExecutor(settings, logger, max_workers=2)
    lock = threading.Lock()
    running = 0
    peak = 0

    def worker(scene_id):
        nonlocal running, peak
        with lock:
            running += 1
            peak = max(peak, running)
        time.sleep(0.05)
        with lock:
            running -= 1

    executor.run_scenes("v", [f"v-s{i:02d}" for i in range(6)], worker)

    assert peak == 2


def test_single_worker_runs_in_submission_order(settings, logger):
    executor = ParallelExecutor(settings, logger)
    started = []

    executor.run_scenes("v", ["v-s02", "v-s00", "v-s01"], started.append)

    assert settings.max_parallel_scenes == 1
    assert started == ["v-s02", "v-s00", "v-s01"]


def test_crashing_worker_does_not_stop_the_rest(settings, logger):
    executor = ParallelExecutor(settings, logger, max_workers=2)

    def worker(scene_id):
        if scene_id == "v-s01":
            raise RuntimeError("disk full")
        return scene_id

    runs = executor.run_scenes("v", ["v-s00", "v-s01", "v-s02"], worker)

    assert [run.succeeded for run in runs] == [True, False, True]
    assert str(runs[1].error) == "disk full"


def test_no_scenes(settings, logger):
    assert ParallelExecutor(settings, logger).run_scenes("v", [], lambda scene_id: None) == []
