"""Tests for logging configuration."""

import json
import logging

from loguru import logger as root_logger

from aivideo.core.logging_config import (
    get_logger,
    intercept_standard_logging,
    scope_of,
    setup_logging,
)


def test_scope_prefers_scene_over_video():
    assert scope_of({"video_id": "v1", "scene_id": "v1-s02"}) == "[v1-s02] "
    assert scope_of({"video_id": "v1"}) == "[v1] "
    assert scope_of({}) == ""


def test_file_sink_carries_scope(tmp_path):
    log_file = tmp_path / "logs" / "run.log"
    setup_logging(log_level="DEBUG", log_file=log_file)
    try:
        get_logger("aivideo.test", video_id="v1", scene_id="v1-s03").info("Scene started")
        root_logger.complete()

        line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
        assert "aivideo.test" in line
        assert "[v1-s03] Scene started" in line
    finally:
        setup_logging()


def test_serialized_file_is_json_lines(tmp_path):
    log_file = tmp_path / "run.jsonl"
    setup_logging(log_level="INFO", log_file=log_file, serialize=True)
    try:
        get_logger("aivideo.test", video_id="v9").warning("Slow upstream")
        root_logger.complete()

        record = json.loads(log_file.read_text(encoding="utf-8").strip().splitlines()[-1])["record"]
        assert record["message"] == "Slow upstream"
        assert record["extra"]["video_id"] == "v9"
    finally:
        setup_logging()


def test_stdlib_records_reach_loguru(tmp_path):
    log_file = tmp_path / "server.log"
    setup_logging(log_level="INFO", log_file=log_file)
    try:
        intercept_standard_logging("INFO")
        logging.getLogger("uvicorn.error").info("Application startup complete.")
        root_logger.complete()

        assert "uvicorn.error | Application startup complete." in log_file.read_text(encoding="utf-8")
    finally:
        for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
            logging.getLogger(name).handlers = []
            logging.getLogger(name).propagate = True
        setup_logging()
