"""Shared pytest fixtures and configuration."""

import pytest

from aivideo.core.config import Settings
from aivideo.core.logging_config import get_logger
from aivideo.utils.rate_limiter import reset_rate_limiters


@pytest.fixture
def settings(tmp_path):
    """Create test settings with work and storage dirs under tmp_path and fast pacing."""
    return Settings(
        gemini_api_key="test-key",
        work_dir=str(tmp_path / "work"),
        storage_path=str(tmp_path / "storage"),
        rate_limit_requests_per_minute=60000,
        rate_limit_initial_backoff_ms=1,
        rate_limit_max_backoff_ms=10,
        rate_limit_min_delay_ms=1,
        video_poll_interval_seconds=0,
        cleanup_delay_seconds=3600,
        max_parallel_scenes=1,
    )


@pytest.fixture
def logger():
    """Create test logger instance."""
    return get_logger(__name__)


@pytest.fixture(autouse=True)
def clean_rate_limiters():
    """Each test starts with an empty limiter registry."""
    reset_rate_limiters()
    yield
    reset_rate_limiters()
