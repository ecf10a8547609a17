"""Tests for Gemini REST client error translation and response parsing."""

import base64
from unittest.mock import MagicMock

import pytest
import requests

from aivideo.core.errors import (
    ContentPolicyError,
    MalformedResponseError,
    NetworkTimeoutError,
    RateLimitedError,
    TransientUpstreamError,
    UpstreamClientError,
    UpstreamOverloadedError,
)
from aivideo.models.schemas import GenerationContext
from aivideo.services.gemini_client import GeminiClient


def make_response(status_code=200, json_data=None, text="", content=b""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.content = content
    if json_data is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = json_data
    return response


def inline_response(data: bytes, mime: str) -> dict:
    return {
        "candidates": [
            {
                "content": {"parts": [{"inlineData": {"mimeType": mime, "data": base64.b64encode(data).decode()}}]},
                "finishReason": "STOP",
            }
        ]
    }


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(settings, logger, session):
    return GeminiClient(settings, logger, session=session, sleep=lambda s: None)


@pytest.fixture
def context():
    return GenerationContext(api_key="request-key", voice="Puck")


def test_generate_image_inline_data(client, session, context):
    """Test image bytes are decoded from inlineData."""
    session.post.return_value = make_response(json_data=inline_response(b"png-bytes", "image/png"))

    media = client.generate_image("gemini-2.5-flash-image", "a cat", context)

    assert media.data == b"png-bytes"
    assert media.mime_type == "image/png"
    url = session.post.call_args[0][0]
    assert url.endswith("models/gemini-2.5-flash-image:generateContent")
    assert session.post.call_args[1]["headers"]["x-goog-api-key"] == "request-key"


def test_generate_image_imagen_predict(client, session, context):
    session.post.return_value = make_response(
        json_data={"predictions": [{"bytesBase64Encoded": base64.b64encode(b"jpg").decode(), "mimeType": "image/jpeg"}]}
    )

    media = client.generate_image("imagen-4.0-generate-001", "a dog", context)

    assert media.data == b"jpg"
    assert media.mime_type == "image/jpeg"
    payload = session.post.call_args[1]["json"]
    assert payload["parameters"]["aspectRatio"] == "16:9"


def test_synthesize_speech_uses_voice(client, session, context):
    session.post.return_value = make_response(json_data=inline_response(b"\x00\x01", "audio/L16;rate=24000"))

    media = client.synthesize_speech("gemini-2.5-flash-preview-tts", "Hello there.", context)

    assert media.data == b"\x00\x01"
    payload = session.post.call_args[1]["json"]
    voice = payload["generationConfig"]["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]["voiceName"]
    assert voice == "Puck"


def test_unknown_voice_falls_back_to_default(client, session):
    session.post.return_value = make_response(json_data=inline_response(b"\x00", "audio/pcm"))

    client.synthesize_speech("tts", "Hi.", GenerationContext(api_key="k", voice="NoSuchVoice"))

    payload = session.post.call_args[1]["json"]
    assert payload["generationConfig"]["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]["voiceName"] == "Kore"


@pytest.mark.parametrize(
    "status,expected",
    [
        (429, RateLimitedError),
        (503, UpstreamOverloadedError),
        (500, TransientUpstreamError),
        (400, UpstreamClientError),
        (404, UpstreamClientError),
    ],
)
def test_http_status_translation(client, session, context, status, expected):
    """Test HTTP failures map onto the typed error hierarchy."""
    session.post.return_value = make_response(status_code=status, text="error body")

    with pytest.raises(expected):
        client.generate_image("gemini-2.5-flash-image", "a cat", context)


def test_rate_limit_and_overload_are_severe(client, session, context):
    session.post.return_value = make_response(
        status_code=503, json_data={"error": {"status": "RESOURCE_EXHAUSTED"}}, text="busy"
    )

    with pytest.raises(UpstreamOverloadedError) as exc_info:
        client.generate_image("gemini-2.5-flash-image", "a cat", context)

    assert exc_info.value.severe
    assert exc_info.value.status == "RESOURCE_EXHAUSTED"


def test_network_timeout(client, session, context):
    session.post.side_effect = requests.Timeout("read timed out")

    with pytest.raises(NetworkTimeoutError):
        client.generate_image("gemini-2.5-flash-image", "a cat", context)


def test_prompt_feedback_block_is_policy_error(client, session, context):
    """Test a blocked prompt carries finish reason and safety ratings."""
    session.post.return_value = make_response(
        json_data={
            "promptFeedback": {
                "blockReason": "SAFETY",
                "safetyRatings": [
                    {"category": "HARM_CATEGORY_HARASSMENT", "probability": "HIGH", "blocked": True},
                    {"category": "HARM_CATEGORY_HATE_SPEECH", "probability": "NEGLIGIBLE"},
                ],
            }
        }
    )

    with pytest.raises(ContentPolicyError) as exc_info:
        client.generate_image("gemini-2.5-flash-image", "a person", context)

    error = exc_info.value
    assert error.finish_reason == "SAFETY"
    assert error.original_prompt == "a person"
    assert "HARASSMENT" in error.safety_issue_description()
    assert "HATE_SPEECH" not in error.safety_issue_description()


def test_safety_finish_reason_is_policy_error(client, session, context):
    session.post.return_value = make_response(
        json_data={"candidates": [{"content": {"parts": []}, "finishReason": "IMAGE_SAFETY"}]}
    )

    with pytest.raises(ContentPolicyError):
        client.generate_image("gemini-2.5-flash-image", "a person", context)


def test_missing_inline_data_is_malformed(client, session, context):
    session.post.return_value = make_response(
        json_data={"candidates": [{"content": {"parts": [{"text": "sorry"}]}, "finishReason": "STOP"}]}
    )

    with pytest.raises(MalformedResponseError):
        client.generate_image("gemini-2.5-flash-image", "a cat", context)


def test_missing_api_key_is_client_error(settings, logger, session):
    settings.gemini_api_key = None
    client = GeminiClient(settings, logger, session=session)

    with pytest.raises(UpstreamClientError):
        client.generate_image("gemini-2.5-flash-image", "a cat", GenerationContext())
    session.post.assert_not_called()


def test_generate_video_polls_until_done(client, session, context):
    """Test the long-running operation is polled and the clip downloaded."""
    session.post.return_value = make_response(json_data={"name": "operations/op-1"})
    session.get.side_effect = [
        make_response(json_data={"name": "operations/op-1", "done": False}),
        make_response(
            json_data={
                "name": "operations/op-1",
                "done": True,
                "response": {
                    "generateVideoResponse": {"generatedSamples": [{"video": {"uri": "https://files/clip.mp4"}}]}
                },
            }
        ),
        make_response(content=b"mp4-bytes"),
    ]

    media = client.generate_video("veo-3.0-generate-001", "opening", context)

    assert media.data == b"mp4-bytes"
    assert media.mime_type == "video/mp4"
    assert session.get.call_count == 3
    assert session.get.call_args_list[2][0][0] == "https://files/clip.mp4"


def test_generate_video_poll_budget_exhausted(client, session, context, settings):
    settings.video_max_poll_attempts = 3
    session.post.return_value = make_response(json_data={"name": "operations/op-2"})
    session.get.return_value = make_response(json_data={"name": "operations/op-2", "done": False})

    with pytest.raises(NetworkTimeoutError):
        client.generate_video("veo-3.0-generate-001", "opening", context)
    assert session.get.call_count == 3


def test_generate_video_filtered_is_policy_error(client, session, context):
    session.post.return_value = make_response(json_data={"name": "operations/op-3"})
    session.get.return_value = make_response(
        json_data={
            "done": True,
            "response": {"generateVideoResponse": {"raiMediaFilteredReasons": ["person generation blocked"]}},
        }
    )

    with pytest.raises(ContentPolicyError):
        client.generate_video("veo-3.0-generate-001", "opening", context)


def text_response(text: str, finish_reason: str = "STOP") -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": finish_reason}]}


def test_generate_text_requests_json(client, session, context, settings):
    """Test script calls ask for JSON output and carry the system instruction."""
    session.post.return_value = make_response(json_data=text_response('{"title": "T"}'))

    text = client.generate_text("gemini-2.5-flash", "Topic: rivers", context, system_instruction="Write JSON.")

    assert text == '{"title": "T"}'
    payload = session.post.call_args[1]["json"]
    assert payload["generationConfig"]["responseMimeType"] == "application/json"
    assert payload["generationConfig"]["temperature"] == settings.scenario_temperature
    assert payload["systemInstruction"] == {"parts": [{"text": "Write JSON."}]}
    assert payload["contents"][0]["parts"][0]["text"] == "Topic: rivers"


def test_generate_text_joins_parts_and_skips_thoughts(client, session, context):
    session.post.return_value = make_response(
        json_data={
            "candidates": [
                {"content": {"parts": [{"text": "planning", "thought": True}, {"text": '{"a": '}, {"text": "1}"}]}}
            ]
        }
    )

    assert client.generate_text("gemini-2.5-flash", "p", context) == '{"a": 1}'


def test_generate_text_safety_stop_is_policy_error(client, session, context):
    session.post.return_value = make_response(json_data=text_response("", finish_reason="SAFETY"))

    with pytest.raises(ContentPolicyError):
        client.generate_text("gemini-2.5-flash", "p", context)


def test_generate_text_empty_is_malformed(client, session, context):
    session.post.return_value = make_response(json_data=text_response("  "))

    with pytest.raises(MalformedResponseError):
        client.generate_text("gemini-2.5-flash", "p", context)
