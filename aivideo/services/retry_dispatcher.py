"""Retry Dispatcher - bounded retries, prompt sanitization and model fallback."""

import re
import time
from typing import Any, Callable, Optional, TypeVar

from aivideo.core.config import Settings
from aivideo.core.errors import (
    ContentPolicyError,
    ContentPolicyExhaustedError,
    GenerationFailedError,
    MalformedResponseError,
    TransientUpstreamError,
    UpstreamError,
)
from aivideo.models.schemas import GenerationContext
from aivideo.utils.rate_limiter import build_rate_limit_profile, get_rate_limiter

T = TypeVar("T")

# One generation attempt: (model, prompt, context) -> result
GenerationCall = Callable[[str, str, GenerationContext], T]

PERSON_PLACEHOLDER = "a young woman"


def sanitize_prompt(prompt: str, context: GenerationContext) -> str:
    """
    Strip names that trip real-person filters from a prompt.

    The creator's persona name becomes a neutral description and the channel
    name is removed. A channel written as ``"English (Native)"`` also has
    each part removed on its own. Runs of whitespace are collapsed.

    Args:
        prompt: Prompt that was blocked
        context: Generation context carrying the creator and channel names

    Returns:
        Sanitized prompt (unchanged if there is nothing to strip)
    """
    if not prompt:
        return prompt

    sanitized = prompt
    name = (context.creator_name or "").strip()
    if name:
        for variant in (name, name.lower(), name.upper()):
            sanitized = sanitized.replace(variant, PERSON_PLACEHOLDER)

    channel = (context.channel_name or "").strip()
    if channel:
        sanitized = sanitized.replace(channel, "")
        if "(" in channel and ")" in channel:
            native_part = channel[channel.index("(") + 1 : channel.index(")")].strip()
            if native_part:
                sanitized = sanitized.replace(native_part, "")
            english_part = channel[: channel.index("(")].strip()
            if english_part:
                sanitized = sanitized.replace(english_part, "")
                sanitized = sanitized.replace(english_part.lower(), "")

    return re.sub(r"\s{2,}", " ", sanitized).strip()


class RetryDispatcher:
    """Runs a generation call against a primary model, then a fallback.

    Per model:

    * transient failures (429, 503, network timeout) retry with doubling
      backoff up to ``max_retries`` attempts;
    * a content-policy block gets one retry with a sanitized prompt;
    * a malformed response gets one more attempt;
    * any other upstream error moves on immediately.

    Whatever the primary could not handle goes to the fallback model with the
    same rules. Every attempt is admitted by, and reported to, the model's
    shared ``AdaptiveRateLimiter``.
    """

    def __init__(self, settings: Settings, logger: Any, sleep: Callable[[float], None] = time.sleep):
        """
        Initialize dispatcher.

        Args:
            settings: Application settings
            logger: Logger instance
            sleep: Backoff sleep function (injectable for tests)
        """
        self.settings = settings
        self.logger = logger
        self._sleep = sleep

    def dispatch(
        self,
        call: GenerationCall,
        prompt: str,
        primary_model: str,
        fallback_model: Optional[str],
        context: GenerationContext,
        operation: str = "generation",
    ) -> T:
        """
        Run ``call`` with retries and fallback.

        Args:
            call: Performs one attempt for (model, prompt, context)
            prompt: Prompt for the primary model
            primary_model: Model tried first
            fallback_model: Model tried when the primary gives up (optional)
            context: Generation context passed to every attempt
            operation: Label for logs and error messages

        Returns:
            Result of the first successful attempt

        Raises:
            ContentPolicyExhaustedError: If a policy block caused the terminal failure
            GenerationFailedError: If both models failed for any other reason
        """
        try:
            return self._run_model(call, prompt, primary_model, context, operation, allow_sanitize=True)
        except _ModelGaveUp as gave_up:
            primary_error = gave_up.error
            prompt = gave_up.prompt
            primary_sanitized = gave_up.sanitized

        if not fallback_model or fallback_model == primary_model:
            self.logger.error(f"❌ {operation}: {primary_model} failed and no fallback model is configured")
            raise self._aggregate(operation, primary_error, None) from primary_error

        self.logger.warning(
            f"⚠️ {operation}: falling back from {primary_model} to {fallback_model} "
            f"after {type(primary_error).__name__}"
        )
        # A prompt already sanitized on the primary is not sanitized again
        try:
            return self._run_model(
                call, prompt, fallback_model, context, operation, allow_sanitize=not primary_sanitized
            )
        except _ModelGaveUp as fallback_gave_up:
            fallback_error = fallback_gave_up.error

        self.logger.error(f"❌ {operation}: primary ({primary_model}) and fallback ({fallback_model}) both failed")
        raise self._aggregate(operation, primary_error, fallback_error) from fallback_error

    def _run_model(
        self,
        call: GenerationCall,
        prompt: str,
        model: str,
        context: GenerationContext,
        operation: str,
        allow_sanitize: bool,
    ) -> T:
        profile = build_rate_limit_profile(self.settings, model)
        limiter = get_rate_limiter(model, profile)
        backoff_ms = profile.initial_backoff_ms
        transient_attempts = 0
        sanitized = False
        malformed_retried = False

        while True:
            limiter.wait_if_needed()
            try:
                result = call(model, prompt, context)
                limiter.record_success()
                return result
            except TransientUpstreamError as e:
                if e.severe:
                    limiter.record_severe_error()
                else:
                    limiter.record_error()
                transient_attempts += 1
                if transient_attempts >= profile.max_retries:
                    self.logger.warning(
                        f"{operation}: {model} still failing after {transient_attempts} attempts: {e}"
                    )
                    raise _ModelGaveUp(e, prompt, sanitized)
                self.logger.warning(
                    f"{operation}: {model} attempt {transient_attempts}/{profile.max_retries} failed "
                    f"({type(e).__name__}), retrying in {backoff_ms / 1000:.1f}s"
                )
                self._sleep(backoff_ms / 1000.0)
                backoff_ms = min(backoff_ms * 2, profile.max_backoff_ms)
            except ContentPolicyError as e:
                # The request was served; pacing is not at fault
                limiter.record_success()
                if e.original_prompt is None:
                    e.original_prompt = prompt
                if sanitized or not allow_sanitize:
                    raise _ModelGaveUp(e, prompt, sanitized)
                cleaned = sanitize_prompt(prompt, context)
                sanitized = True
                if cleaned == prompt:
                    self.logger.warning(f"{operation}: {model} blocked the prompt and nothing could be sanitized")
                    raise _ModelGaveUp(e, prompt, sanitized)
                self.logger.warning(f"⚠️ {operation}: {model} blocked the prompt, retrying with a sanitized prompt")
                prompt = cleaned
            except MalformedResponseError as e:
                limiter.record_error()
                if malformed_retried:
                    raise _ModelGaveUp(e, prompt, sanitized)
                malformed_retried = True
                self.logger.warning(f"{operation}: {model} returned a malformed response, retrying once: {e}")
            except UpstreamError as e:
                limiter.record_error()
                self.logger.warning(f"{operation}: {model} rejected the request: {e}")
                raise _ModelGaveUp(e, prompt, sanitized)

    @staticmethod
    def _aggregate(
        operation: str,
        primary_error: Exception,
        fallback_error: Optional[Exception],
    ) -> GenerationFailedError:
        if isinstance(primary_error, ContentPolicyError) or isinstance(fallback_error, ContentPolicyError):
            return ContentPolicyExhaustedError(operation, primary_error, fallback_error)
        return GenerationFailedError(operation, primary_error, fallback_error)


class _ModelGaveUp(Exception):
    """Internal signal: one model exhausted its attempts."""

    def __init__(self, error: Exception, prompt: str, sanitized: bool):
        super().__init__(str(error))
        self.error = error
        self.prompt = prompt
        self.sanitized = sanitized
