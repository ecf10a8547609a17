"""Utility functions for the AI Video Orchestrator."""

from aivideo.utils.error_handler import format_error_message, get_recovery_suggestion
from aivideo.utils.path_validator import PathValidator

__all__ = [
    "format_error_message",
    "get_recovery_suggestion",
    "PathValidator",
]
