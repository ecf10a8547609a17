"""Logging setup - loguru sinks that show which video and scene a line belongs to."""

import logging
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> | <magenta>{extra[scope]}</magenta><level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]} | {extra[scope]}{message}"

# Third-party loggers routed through loguru when the API server runs
STDLIB_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")


def scope_of(extra: dict[str, Any]) -> str:
    """Prefix for a log line: the scene id if bound, else the video id."""
    scene_id = extra.get("scene_id")
    if scene_id:
        return f"[{scene_id}] "
    video_id = extra.get("video_id")
    if video_id:
        return f"[{video_id}] "
    return ""


def _patch_record(record: dict) -> None:
    extra = record["extra"]
    extra.setdefault("name", record["name"])
    extra["scope"] = scope_of(extra)


class InterceptHandler(logging.Handler):
    """Forwards standard-library log records (uvicorn, fastapi) to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: Any = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.bind(name=record.name).opt(exception=record.exc_info).log(level, record.getMessage())


def intercept_standard_logging(level: str = "INFO") -> None:
    """Send the server's stdlib loggers through the loguru sinks."""
    handler = InterceptHandler()
    for name in STDLIB_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [handler]
        std_logger.propagate = False
        std_logger.setLevel(level)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
    serialize: bool = False,
) -> None:
    """
    Configure console logging and an optional rotated file.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path to log file
        rotation: Log rotation size
        retention: Log retention period
        serialize: Write the file as JSON lines (bound video_id/scene_id/model become fields)
    """
    logger.remove()
    logger.configure(patcher=_patch_record)

    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=log_level, colorize=True)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        # Scene workers log from several threads at once
        logger.add(
            log_file,
            format=FILE_FORMAT,
            level=log_level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            serialize=serialize,
            enqueue=True,
        )


def get_logger(name: str, **context: Any) -> Any:
    """
    Logger bound to a module name and optional scope.

    Args:
        name: Logger name (typically __name__)
        **context: Scope fields such as video_id, scene_id or model

    Returns:
        Bound loguru logger
    """
    return logger.bind(name=name, **context)


setup_logging()
