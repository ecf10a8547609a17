"""Rate Limiter - adaptive per-model pacing for generation API calls."""

import time
from threading import Lock
from typing import Any, Callable, Optional

from aivideo.core.config import Settings
from aivideo.models.schemas import RateLimitProfile


class AdaptiveRateLimiter:
    """Thread-safe pacing controller whose delay follows observed outcomes.

    Admissions are spaced by ``current_delay``: each caller takes the next
    free slot under a short lock and sleeps until it without holding the
    lock. Successes shrink the delay after a streak; errors grow it. The
    delay always stays within ``[min_delay, max_delay]``.
    """

    def __init__(
        self,
        name: str,
        initial_delay: float,
        min_delay: float,
        max_delay: float,
        success_decrease_ratio: float = 0.9,
        error_increase_ratio: float = 1.5,
        success_streak_for_decrease: int = 3,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize rate limiter.

        Args:
            name: Model name this limiter paces
            initial_delay: Starting delay between calls in milliseconds
            min_delay: Delay floor in milliseconds
            max_delay: Delay ceiling in milliseconds
            success_decrease_ratio: Multiplier applied after a success streak
            error_increase_ratio: Multiplier applied after an error
            success_streak_for_decrease: Successes needed before the delay shrinks
            clock: Monotonic clock in seconds (injectable for tests)
            sleep: Sleep function in seconds (injectable for tests)
        """
        self.name = name
        self.min_delay = float(min_delay)
        self.max_delay = float(max(max_delay, min_delay))
        self.success_decrease_ratio = success_decrease_ratio
        self.error_increase_ratio = error_increase_ratio
        self.success_streak_for_decrease = success_streak_for_decrease
        self._clock = clock
        self._sleep = sleep

        self.lock = Lock()
        self.current_delay = self._clamp(initial_delay)
        self.consecutive_successes = 0
        # First call is admitted immediately
        self.last_call = self._clock() - self.current_delay / 1000.0

        self.total_calls = 0
        self.total_successes = 0
        self.total_errors = 0
        self.total_severe_errors = 0

    def _clamp(self, delay: float) -> float:
        return min(self.max_delay, max(self.min_delay, float(delay)))

    def wait_if_needed(self) -> float:
        """
        Block until this caller's admission slot, ``current_delay`` after the previous one.

        The slot is reserved under the lock and the sleep happens outside
        it, so outcome recording and stats never queue behind a sleeper.

        Returns:
            Seconds actually waited
        """
        with self.lock:
            now = self._clock()
            slot = max(now, self.last_call + self.current_delay / 1000.0)
            self.last_call = slot
            self.total_calls += 1
        wait_time = slot - now
        if wait_time <= 0:
            return 0.0
        self._sleep(wait_time)
        return wait_time

    def record_success(self) -> None:
        """Count a success; shrink the delay once the streak threshold is hit."""
        with self.lock:
            self.total_successes += 1
            self.consecutive_successes += 1
            if self.consecutive_successes >= self.success_streak_for_decrease:
                self.current_delay = self._clamp(self.current_delay * self.success_decrease_ratio)
                self.consecutive_successes = 0

    def record_error(self) -> None:
        """Count an error and grow the delay."""
        with self.lock:
            self.total_errors += 1
            self.consecutive_successes = 0
            self.current_delay = self._clamp(self.current_delay * self.error_increase_ratio)

    def record_severe_error(self) -> None:
        """Count a rate-limit/overload error (429/503) and grow the delay steeply."""
        with self.lock:
            self.total_errors += 1
            self.total_severe_errors += 1
            self.consecutive_successes = 0
            self.current_delay = self._clamp(self.current_delay * self.error_increase_ratio * 1.5)

    def set_delay(self, delay_ms: float) -> None:
        """Force the current delay (clamped to the limiter's bounds)."""
        with self.lock:
            self.current_delay = self._clamp(delay_ms)

    def get_current_delay(self) -> float:
        with self.lock:
            return self.current_delay

    def get_stats(self) -> dict[str, Any]:
        """Snapshot of counters and the current delay."""
        with self.lock:
            return {
                "name": self.name,
                "current_delay_ms": self.current_delay,
                "consecutive_successes": self.consecutive_successes,
                "total_calls": self.total_calls,
                "total_successes": self.total_successes,
                "total_errors": self.total_errors,
                "total_severe_errors": self.total_severe_errors,
            }

    def reset_stats(self) -> None:
        with self.lock:
            self.total_calls = 0
            self.total_successes = 0
            self.total_errors = 0
            self.total_severe_errors = 0


# Global limiter registry: one instance per model name
_limiters: dict[str, AdaptiveRateLimiter] = {}
_registry_lock = Lock()


def build_rate_limit_profile(settings: Settings, model_name: str) -> RateLimitProfile:
    """Derive a model's profile from the rate limiting settings."""
    return RateLimitProfile(
        model_name=model_name,
        max_retries=settings.rate_limit_max_retries,
        initial_backoff_ms=settings.rate_limit_initial_backoff_ms,
        max_backoff_ms=settings.rate_limit_max_backoff_ms,
        initial_delay_ms=max(
            settings.rate_limit_min_delay_ms,
            int(60000 / max(settings.rate_limit_requests_per_minute, 1)),
        ),
        success_decrease_ratio=settings.rate_limit_success_decrease_ratio,
        error_increase_ratio=settings.rate_limit_error_increase_ratio,
        success_streak_for_decrease=settings.rate_limit_success_streak_for_decrease,
    )


def get_rate_limiter(model_name: str, profile: Optional[RateLimitProfile] = None) -> AdaptiveRateLimiter:
    """
    Get or create the shared limiter for a model.

    Args:
        model_name: Model the limiter paces
        profile: Parameters used only when the limiter is first created

    Returns:
        The process-wide limiter for ``model_name``
    """
    with _registry_lock:
        limiter = _limiters.get(model_name)
        if limiter is None:
            profile = profile or RateLimitProfile(model_name=model_name)
            limiter = AdaptiveRateLimiter(
                name=model_name,
                initial_delay=profile.initial_delay_ms,
                min_delay=profile.initial_backoff_ms,
                max_delay=profile.max_backoff_ms,
                success_decrease_ratio=profile.success_decrease_ratio,
                error_increase_ratio=profile.error_increase_ratio,
                success_streak_for_decrease=profile.success_streak_for_decrease,
            )
            _limiters[model_name] = limiter
        return limiter


def get_all_rate_limiter_stats() -> list[dict[str, Any]]:
    with _registry_lock:
        limiters = list(_limiters.values())
    return [limiter.get_stats() for limiter in limiters]


def reset_rate_limiters() -> None:
    """Drop every registered limiter (used by tests and on reconfiguration)."""
    with _registry_lock:
        _limiters.clear()
