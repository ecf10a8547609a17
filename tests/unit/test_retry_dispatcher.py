"""Tests for retry dispatcher."""

import pytest

from aivideo.core.errors import (
    ContentPolicyError,
    ContentPolicyExhaustedError,
    GenerationFailedError,
    MalformedResponseError,
    NetworkTimeoutError,
    RateLimitedError,
    UpstreamClientError,
    UpstreamOverloadedError,
)
from aivideo.models.schemas import GenerationContext
from aivideo.services.retry_dispatcher import RetryDispatcher, sanitize_prompt
from aivideo.utils.rate_limiter import get_rate_limiter


class ScriptedCall:
    """Generation call that raises or returns scripted outcomes per model."""

    def __init__(self, outcomes: dict):
        self.outcomes = {model: list(items) for model, items in outcomes.items()}
        self.calls = []

    def __call__(self, model, prompt, context):
        self.calls.append((model, prompt))
        outcome = self.outcomes[model].pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def dispatcher(settings, logger, sleeps):
    return RetryDispatcher(settings, logger, sleep=sleeps.append)


@pytest.fixture
def context():
    return GenerationContext(creator_name="Jisoo", channel_name="Daily Talk (데일리토크)")


def test_transient_errors_then_success(dispatcher, context, sleeps):
    """Test 503, 503, success returns the result with doubling backoff and slower pacing."""
    call = ScriptedCall(
        {
            "primary": [
                UpstreamOverloadedError("overloaded", status="UNAVAILABLE"),
                UpstreamOverloadedError("overloaded", status="UNAVAILABLE"),
                "image-bytes",
            ]
        }
    )
    result = dispatcher.dispatch(call, "a cat", "primary", "fallback", context)

    assert result == "image-bytes"
    assert [m for m, _ in call.calls] == ["primary", "primary", "primary"]
    assert sleeps == [0.001, 0.002]
    limiter = get_rate_limiter("primary")
    # Pacing starts at the 1 ms floor configured in the settings fixture
    assert limiter.get_current_delay() > 1
    assert limiter.get_stats()["total_severe_errors"] == 2


def test_backoff_is_capped(settings, logger, context, sleeps):
    settings.rate_limit_initial_backoff_ms = 4
    settings.rate_limit_max_backoff_ms = 10
    dispatcher = RetryDispatcher(settings, logger, sleep=sleeps.append)
    call = ScriptedCall({"primary": [NetworkTimeoutError("t")] * 4 + ["ok"]})

    assert dispatcher.dispatch(call, "p", "primary", None, context) == "ok"
    assert sleeps == [0.004, 0.008, 0.01, 0.01]


def test_transient_exhaustion_falls_back(dispatcher, context):
    """Test the fallback model runs after max_retries transient failures."""
    call = ScriptedCall({"primary": [RateLimitedError("429")] * 5, "fallback": ["clip"]})

    result = dispatcher.dispatch(call, "prompt", "primary", "fallback", context)

    assert result == "clip"
    assert [m for m, _ in call.calls] == ["primary"] * 5 + ["fallback"]


def test_both_models_fail_aggregates_errors(dispatcher, context):
    call = ScriptedCall(
        {
            "primary": [UpstreamClientError("bad request", status_code=400)],
            "fallback": [UpstreamClientError("unknown model", status_code=404)],
        }
    )

    with pytest.raises(GenerationFailedError) as exc_info:
        dispatcher.dispatch(call, "prompt", "primary", "fallback", context, operation="image")

    error = exc_info.value
    assert not isinstance(error, ContentPolicyExhaustedError)
    assert "bad request" in str(error.primary_error)
    assert "unknown model" in str(error.fallback_error)
    assert "image failed" in str(error)


def test_client_error_skips_retries(dispatcher, context, sleeps):
    """Test a non-retryable error goes straight to the fallback."""
    call = ScriptedCall({"primary": [UpstreamClientError("403")], "fallback": ["ok"]})

    assert dispatcher.dispatch(call, "prompt", "primary", "fallback", context) == "ok"
    assert len(call.calls) == 2
    assert sleeps == []


def test_no_fallback_raises_after_primary(dispatcher, context):
    call = ScriptedCall({"primary": [UpstreamClientError("403")]})

    with pytest.raises(GenerationFailedError) as exc_info:
        dispatcher.dispatch(call, "prompt", "primary", None, context)

    assert exc_info.value.fallback_error is None


def test_policy_block_retries_with_sanitized_prompt(dispatcher, context):
    """Test a policy block retries once on the same model with names stripped."""
    call = ScriptedCall({"primary": [ContentPolicyError("blocked", finish_reason="SAFETY"), "ok"]})

    result = dispatcher.dispatch(call, "Jisoo waves on Daily Talk (데일리토크)", "primary", "fallback", context)

    assert result == "ok"
    assert call.calls[0] == ("primary", "Jisoo waves on Daily Talk (데일리토크)")
    assert call.calls[1] == ("primary", "a young woman waves on")


def test_policy_block_is_recorded_as_success(dispatcher, context):
    call = ScriptedCall({"primary": [ContentPolicyError("blocked"), "ok"]})

    dispatcher.dispatch(call, "Jisoo smiling", "primary", None, context)

    stats = get_rate_limiter("primary").get_stats()
    assert stats["total_errors"] == 0
    assert stats["total_successes"] == 2


def test_sanitized_prompt_is_not_sanitized_again_on_fallback(dispatcher, context):
    """Test the fallback gets the sanitized prompt and a second block is terminal."""
    call = ScriptedCall(
        {
            "primary": [ContentPolicyError("blocked"), ContentPolicyError("blocked again")],
            "fallback": [ContentPolicyError("still blocked")],
        }
    )

    with pytest.raises(ContentPolicyExhaustedError) as exc_info:
        dispatcher.dispatch(call, "Jisoo dancing", "primary", "fallback", context)

    assert call.calls == [
        ("primary", "Jisoo dancing"),
        ("primary", "a young woman dancing"),
        ("fallback", "a young woman dancing"),
    ]
    assert exc_info.value.policy_error is not None
    assert exc_info.value.policy_error.original_prompt == "a young woman dancing"


def test_policy_block_with_nothing_to_sanitize_goes_to_fallback(dispatcher, context):
    call = ScriptedCall({"primary": [ContentPolicyError("blocked")], "fallback": ["ok"]})

    assert dispatcher.dispatch(call, "a sunset", "primary", "fallback", context) == "ok"
    assert call.calls == [("primary", "a sunset"), ("fallback", "a sunset")]


def test_malformed_response_retried_once(dispatcher, context):
    call = ScriptedCall({"primary": [MalformedResponseError("no data"), "ok"]})

    assert dispatcher.dispatch(call, "prompt", "primary", None, context) == "ok"
    assert get_rate_limiter("primary").get_stats()["total_errors"] == 1


def test_malformed_twice_falls_back(dispatcher, context):
    call = ScriptedCall(
        {"primary": [MalformedResponseError("no data"), MalformedResponseError("no data")], "fallback": ["ok"]}
    )

    assert dispatcher.dispatch(call, "prompt", "primary", "fallback", context) == "ok"
    assert [m for m, _ in call.calls] == ["primary", "primary", "fallback"]


def test_sanitize_prompt_variants():
    context = GenerationContext(creator_name="Mina", channel_name="Cozy Kitchen (코지키친)")

    assert sanitize_prompt("MINA and mina cook", context) == "a young woman and a young woman cook"
    assert sanitize_prompt("Welcome to Cozy Kitchen (코지키친)!", context) == "Welcome to !"
    assert sanitize_prompt("cozy kitchen vibes at 코지키친", context) == "vibes at"


def test_sanitize_prompt_without_names_is_unchanged():
    assert sanitize_prompt("a quiet  street", GenerationContext()) == "a quiet street"
    assert sanitize_prompt("", GenerationContext(creator_name="Mina")) == ""
