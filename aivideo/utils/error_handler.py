"""Error Handler - provides user-friendly error messages for failed scenes and runs."""

from typing import Optional

from aivideo.core.errors import (
    CompositionError,
    ContentPolicyError,
    ContentPolicyExhaustedError,
    GenerationCancelledError,
    GenerationFailedError,
    ProcessFailedError,
    ProcessTimeoutError,
    TransientUpstreamError,
    UpstreamClientError,
)


def format_error_message(
    operation: str,
    error: Exception,
    context: Optional[dict] = None,
    suggestion: Optional[str] = None,
) -> str:
    """
    Format a user-friendly error message.

    Args:
        operation: What operation was being performed (e.g., "Generating scene image")
        error: The exception that occurred
        context: Additional context (e.g., {"video_id": "vid_123", "scene_id": "scene_456"})
        suggestion: Optional suggestion for how to fix the issue

    Returns:
        Formatted error message
    """
    error_type = type(error).__name__
    error_msg = str(error)

    context_str = ""
    if context:
        context_parts = [f"{k}={v}" for k, v in context.items()]
        context_str = f" ({', '.join(context_parts)})"

    message = f"❌ {operation} failed{context_str}\n"
    message += f"   Error: {error_type}: {error_msg}"

    if suggestion:
        message += f"\n   💡 Suggestion: {suggestion}"

    return message


def get_recovery_suggestion(error: Exception) -> Optional[str]:
    """
    Get a suggestion for how a user can recover from a scene failure.

    Args:
        error: The exception

    Returns:
        Suggestion string or None
    """
    if isinstance(error, ContentPolicyExhaustedError):
        policy = error.policy_error
        detail = f" {policy.safety_issue_description()}." if policy else ""
        return f"The prompt was blocked by the safety filter.{detail} Edit the prompt and regenerate the scene."
    if isinstance(error, ContentPolicyError):
        return f"{error.safety_issue_description()}. Edit the prompt and regenerate the scene."
    if isinstance(error, GenerationFailedError):
        causes = (error.primary_error, error.fallback_error)
        if any(isinstance(cause, TransientUpstreamError) for cause in causes):
            return "The generation API is rate limited or overloaded. Retry the failed scenes in a few minutes."
        if any(isinstance(cause, UpstreamClientError) for cause in causes):
            return "The generation API rejected the request. Check the API key and model configuration."
        return "Generation failed on both models. Retry the failed scenes."
    if isinstance(error, TransientUpstreamError):
        return "The generation API is rate limited or overloaded. Retry the failed scenes in a few minutes."
    if isinstance(error, ProcessTimeoutError):
        return "A media tool timed out. Retry the scene; the working directory was kept for diagnosis."
    if isinstance(error, (ProcessFailedError, CompositionError)):
        return "A media tool failed. Check that ffmpeg is installed, then retry the scene."
    if isinstance(error, GenerationCancelledError):
        return "Generation was cancelled. Resume the video to continue."
    return None
