"""Exception hierarchy for the generation and composition pipeline.

Errors are grouped the way callers branch on them:

* transient upstream failures (rate limited, overloaded, network timeout) are
  retried with backoff and then handed to a fallback model;
* content-policy blocks get one sanitized retry and carry the safety detail;
* malformed responses count as a single failed attempt;
* local tool and file failures are fatal for the step that hit them.
"""

from dataclasses import dataclass
from typing import Optional


class VideoPipelineError(Exception):
    """Base class for all pipeline errors."""


# ============================================================================
# Upstream generation API errors
# ============================================================================


class UpstreamError(VideoPipelineError):
    """An error reported by a generation API."""

    def __init__(self, message: str, status_code: Optional[int] = None, model: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.model = model


class TransientUpstreamError(UpstreamError):
    """Retryable upstream failure.

    ``severe`` marks rate limiting and overload (429/503), which slow the
    model's pacing more steeply than an ordinary error.
    """

    severe = False


class RateLimitedError(TransientUpstreamError):
    """HTTP 429 from the generation API."""

    severe = True

    def __init__(self, message: str, model: Optional[str] = None):
        super().__init__(message, status_code=429, model=model)


class UpstreamOverloadedError(TransientUpstreamError):
    """HTTP 503 from the generation API (UNAVAILABLE / RESOURCE_EXHAUSTED)."""

    severe = True

    def __init__(self, message: str, status: Optional[str] = None, model: Optional[str] = None):
        super().__init__(message, status_code=503, model=model)
        self.status = status


class NetworkTimeoutError(TransientUpstreamError):
    """Connection failure, read timeout or an exhausted poll loop."""


class UpstreamClientError(UpstreamError):
    """Non-retryable 4xx response (bad request, auth, unknown model)."""


class MalformedResponseError(UpstreamError):
    """A successful response that lacks the fields we need."""


@dataclass
class SafetyRating:
    """One category verdict from a safety filter."""

    category: str
    probability: str = "UNKNOWN"
    blocked: bool = False


class ContentPolicyError(UpstreamError):
    """The request was refused by a safety or real-person filter."""

    def __init__(
        self,
        message: str,
        finish_reason: str = "SAFETY",
        original_prompt: Optional[str] = None,
        safety_ratings: Optional[list[SafetyRating]] = None,
        model: Optional[str] = None,
    ):
        super().__init__(message, model=model)
        self.finish_reason = finish_reason
        self.original_prompt = original_prompt
        self.safety_ratings = safety_ratings or []

    def safety_issue_description(self) -> str:
        """Human-readable summary of the categories that caused the block."""
        blocked = [r for r in self.safety_ratings if r.blocked] or [
            r for r in self.safety_ratings if r.probability in ("MEDIUM", "HIGH")
        ]
        if not blocked:
            return f"Content blocked by safety filter ({self.finish_reason})"
        categories = ", ".join(r.category.replace("HARM_CATEGORY_", "") for r in blocked)
        return f"Content blocked by safety filter ({self.finish_reason}): {categories}"


class GenerationFailedError(VideoPipelineError):
    """Primary and fallback attempts both failed."""

    def __init__(
        self,
        operation: str,
        primary_error: Optional[Exception],
        fallback_error: Optional[Exception] = None,
    ):
        parts = [f"{operation} failed"]
        if primary_error is not None:
            parts.append(f"primary: {type(primary_error).__name__}: {primary_error}")
        if fallback_error is not None:
            parts.append(f"fallback: {type(fallback_error).__name__}: {fallback_error}")
        super().__init__("; ".join(parts))
        self.operation = operation
        self.primary_error = primary_error
        self.fallback_error = fallback_error


class ContentPolicyExhaustedError(GenerationFailedError):
    """Terminal failure caused by a content-policy block; the prompt should be edited."""

    @property
    def policy_error(self) -> Optional[ContentPolicyError]:
        for error in (self.fallback_error, self.primary_error):
            if isinstance(error, ContentPolicyError):
                return error
        return None


# ============================================================================
# Local process / file errors
# ============================================================================


class ProcessError(VideoPipelineError):
    """Base class for external tool failures."""

    def __init__(self, message: str, command: Optional[list[str]] = None, output: str = ""):
        super().__init__(message)
        self.command = command or []
        self.output = output


class ProcessTimeoutError(ProcessError):
    """The tool exceeded its timeout and was killed."""


class ProcessFailedError(ProcessError):
    """The tool exited with a non-zero code."""

    def __init__(self, message: str, exit_code: int, command: Optional[list[str]] = None, output: str = ""):
        super().__init__(message, command=command, output=output)
        self.exit_code = exit_code


class UnsafeArgumentError(VideoPipelineError):
    """A command argument failed path or metacharacter validation."""


class CompositionError(VideoPipelineError):
    """A composition step failed or left a missing/empty output file."""

    def __init__(self, step: str, message: str, work_dir: Optional[str] = None):
        super().__init__(f"{step}: {message}")
        self.step = step
        self.work_dir = work_dir


# ============================================================================
# Scene lifecycle errors
# ============================================================================


class SceneNotFoundError(VideoPipelineError):
    """No scene with the requested id exists for the video."""


class InvalidTransitionError(VideoPipelineError):
    """A requested status change is not an edge of the lifecycle graph."""

    def __init__(self, scene_id: str, current: str, target: str):
        super().__init__(f"Scene {scene_id}: cannot move from {current} to {target}")
        self.scene_id = scene_id
        self.current = current
        self.target = target


class GenerationCancelledError(VideoPipelineError):
    """The video's generation was cancelled while this scene was in flight."""
