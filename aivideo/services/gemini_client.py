"""Gemini REST client for script, image, speech and opening-clip generation.

Each public method performs exactly one generation attempt and translates
every failure into the typed errors of ``aivideo.core.errors`` so the
``RetryDispatcher`` can decide what to do next.
"""

import base64
import time
from typing import Any, Callable, Optional

import requests

from aivideo.core.config import Settings
from aivideo.core.errors import (
    ContentPolicyError,
    MalformedResponseError,
    NetworkTimeoutError,
    RateLimitedError,
    SafetyRating,
    TransientUpstreamError,
    UpstreamClientError,
    UpstreamError,
    UpstreamOverloadedError,
)
from aivideo.models.schemas import GeneratedMedia, GenerationContext
from aivideo.models.voices import resolve_voice

SAFETY_FINISH_REASONS = {"SAFETY", "IMAGE_SAFETY", "BLOCKED", "PROHIBITED_CONTENT", "RECITATION"}


class GeminiClient:
    """Client for the Gemini generateContent / predict / predictLongRunning endpoints."""

    def __init__(
        self,
        settings: Settings,
        logger: Any,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the Gemini client.

        Args:
            settings: Application settings
            logger: Logger instance
            session: Optional requests session (a new one is created if omitted)
            sleep: Poll interval sleep function (injectable for tests)
        """
        self.settings = settings
        self.logger = logger
        self.session = session or requests.Session()
        self.base_url = settings.gemini_base_url.rstrip("/")
        self._sleep = sleep

    # ========================================================================
    # Public generation calls
    # ========================================================================

    def generate_image(self, model: str, prompt: str, context: GenerationContext) -> GeneratedMedia:
        """
        Generate one image.

        Gemini image models answer inline through ``generateContent``;
        Imagen models use ``predict`` and return ``bytesBase64Encoded``.
        """
        if model.startswith("imagen"):
            aspect = self._aspect_ratio(context)
            payload = {
                "instances": [{"prompt": prompt}],
                "parameters": {"sampleCount": 1, "aspectRatio": aspect},
            }
            data = self._post(f"models/{model}:predict", payload, context, model)
            predictions = data.get("predictions") or []
            if not predictions:
                raise ContentPolicyError(
                    f"{model} returned no predictions", finish_reason="BLOCKED", original_prompt=prompt, model=model
                )
            encoded = predictions[0].get("bytesBase64Encoded")
            if not encoded:
                raise MalformedResponseError(f"{model} prediction has no image bytes", model=model)
            return GeneratedMedia(
                data=base64.b64decode(encoded),
                mime_type=predictions[0].get("mimeType", "image/png"),
                model=model,
            )

        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"responseModalities": ["IMAGE"]},
        }
        data = self._post(f"models/{model}:generateContent", payload, context, model)
        return self._extract_inline_data(data, model, prompt, default_mime="image/png")

    def synthesize_speech(self, model: str, text: str, context: GenerationContext) -> GeneratedMedia:
        """Synthesize narration; the result is raw 16-bit PCM, 24 kHz mono."""
        voice = resolve_voice(context.voice, default=self.settings.default_voice)
        payload = {
            "contents": [{"parts": [{"text": text}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice.voice_id}}
                },
            },
        }
        data = self._post(f"models/{model}:generateContent", payload, context, model)
        return self._extract_inline_data(data, model, text, default_mime="audio/pcm")

    def generate_text(
        self,
        model: str,
        prompt: str,
        context: GenerationContext,
        system_instruction: Optional[str] = None,
        json_mode: bool = True,
    ) -> str:
        """
        Generate text, by default constrained to a JSON document.

        Returns:
            The concatenated text parts of the first candidate
        """
        config: dict[str, Any] = {
            "temperature": self.settings.scenario_temperature,
            "maxOutputTokens": self.settings.scenario_max_output_tokens,
        }
        if json_mode:
            config["responseMimeType"] = "application/json"
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": config,
        }
        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        data = self._post(f"models/{model}:generateContent", payload, context, model)

        candidate = self._first_candidate(data, model, prompt)
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts if not part.get("thought"))
        if text.strip():
            return text
        self._raise_for_finish_reason(candidate, model, prompt)
        raise MalformedResponseError(f"{model} returned no text", model=model)

    def generate_video(self, model: str, prompt: str, context: GenerationContext) -> GeneratedMedia:
        """
        Generate an opening clip through a long-running operation.

        Polls the operation every ``video_poll_interval_seconds`` until it is
        done, then downloads the clip.

        Raises:
            NetworkTimeoutError: If the operation is not done after the poll budget
        """
        payload = {
            "instances": [{"prompt": prompt}],
            "parameters": {"aspectRatio": self._aspect_ratio(context)},
        }
        data = self._post(f"models/{model}:predictLongRunning", payload, context, model)
        operation_name = data.get("name")
        if not operation_name:
            raise MalformedResponseError(f"{model} did not return an operation name", model=model)

        self.logger.info(f"Opening clip operation started: {operation_name}")
        operation = None
        for attempt in range(1, self.settings.video_max_poll_attempts + 1):
            self._sleep(self.settings.video_poll_interval_seconds)
            operation = self._get(operation_name, context, model)
            if operation.get("done"):
                self.logger.info(f"✅ Operation {operation_name} done after {attempt} polls")
                break
            self.logger.debug(f"Operation {operation_name} not done ({attempt}/{self.settings.video_max_poll_attempts})")
        else:
            raise NetworkTimeoutError(
                f"{model} operation {operation_name} not done after "
                f"{self.settings.video_max_poll_attempts} polls",
                model=model,
            )

        if operation.get("error"):
            raise self._error_from_body(operation["error"], model, prompt)

        response = operation.get("response") or {}
        filtered = self._dig(response, "generateVideoResponse", "raiMediaFilteredReasons") or response.get(
            "raiMediaFilteredReasons"
        )
        if filtered:
            raise ContentPolicyError(
                f"{model} filtered the clip: {'; '.join(str(r) for r in filtered)}",
                finish_reason="SAFETY",
                original_prompt=prompt,
                model=model,
            )

        uri = self._video_uri(operation)
        if not uri:
            raise MalformedResponseError(f"{model} operation finished without a video URI", model=model)
        return GeneratedMedia(data=self._download(uri, context, model), mime_type="video/mp4", model=model)

    # ========================================================================
    # HTTP helpers
    # ========================================================================

    def _headers(self, context: GenerationContext) -> dict[str, str]:
        api_key = context.api_key or self.settings.gemini_api_key
        if not api_key:
            raise UpstreamClientError("Gemini API key not configured. Set GEMINI_API_KEY in .env file.")
        return {"x-goog-api-key": api_key, "Content-Type": "application/json"}

    def _post(self, path: str, payload: dict, context: GenerationContext, model: str) -> dict:
        url = f"{self.base_url}/{path}"
        try:
            response = self.session.post(
                url, json=payload, headers=self._headers(context), timeout=self.settings.http_timeout_seconds
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise NetworkTimeoutError(f"{model} request failed: {e}", model=model) from e
        return self._parse(response, model)

    def _get(self, path: str, context: GenerationContext, model: str) -> dict:
        url = f"{self.base_url}/{path}"
        try:
            response = self.session.get(url, headers=self._headers(context), timeout=self.settings.http_timeout_seconds)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise NetworkTimeoutError(f"{model} poll failed: {e}", model=model) from e
        return self._parse(response, model)

    def _download(self, uri: str, context: GenerationContext, model: str) -> bytes:
        try:
            response = self.session.get(
                uri,
                headers={"x-goog-api-key": context.api_key or self.settings.gemini_api_key or ""},
                timeout=self.settings.http_timeout_seconds,
                allow_redirects=True,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise NetworkTimeoutError(f"Clip download failed: {e}", model=model) from e
        if response.status_code != 200:
            self._raise_for_status(response, model)
        if not response.content:
            raise MalformedResponseError("Downloaded clip is empty", model=model)
        return response.content

    def _parse(self, response: requests.Response, model: str) -> dict:
        if response.status_code != 200:
            self._raise_for_status(response, model)
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(f"{model} returned non-JSON body", model=model) from e
        if not isinstance(data, dict):
            raise MalformedResponseError(f"{model} returned unexpected JSON", model=model)
        if data.get("error"):
            raise self._error_from_body(data["error"], model)
        return data

    def _raise_for_status(self, response: requests.Response, model: str) -> None:
        status = response.status_code
        body = ""
        try:
            body = response.text[:500]
        except (AttributeError, UnicodeDecodeError):
            pass

        if status == 429:
            raise RateLimitedError(f"{model} rate limited (429): {body}", model=model)
        if status == 503:
            upstream_status = None
            try:
                upstream_status = (response.json().get("error") or {}).get("status")
            except (ValueError, AttributeError):
                pass
            if upstream_status is None:
                for candidate in ("RESOURCE_EXHAUSTED", "UNAVAILABLE"):
                    if candidate in body:
                        upstream_status = candidate
                        break
            raise UpstreamOverloadedError(
                f"{model} overloaded (503 {upstream_status or 'UNAVAILABLE'}): {body}",
                status=upstream_status or "UNAVAILABLE",
                model=model,
            )
        if status >= 500:
            raise TransientUpstreamError(f"{model} server error ({status}): {body}", status_code=status, model=model)
        raise UpstreamClientError(f"{model} rejected request ({status}): {body}", status_code=status, model=model)

    def _error_from_body(self, error: Any, model: str, prompt: Optional[str] = None) -> UpstreamError:
        if not isinstance(error, dict):
            return MalformedResponseError(f"{model} error: {error}", model=model)
        code = error.get("code")
        status = error.get("status", "")
        message = error.get("message", "")
        if code == 429 or status == "RESOURCE_EXHAUSTED":
            return RateLimitedError(f"{model}: {message}", model=model)
        if code == 503 or status == "UNAVAILABLE":
            return UpstreamOverloadedError(f"{model}: {message}", status=status or "UNAVAILABLE", model=model)
        if "safety" in message.lower() or "policy" in message.lower():
            return ContentPolicyError(f"{model}: {message}", finish_reason="BLOCKED", original_prompt=prompt, model=model)
        if isinstance(code, int) and code >= 500:
            return TransientUpstreamError(f"{model}: {message}", status_code=code, model=model)
        return UpstreamClientError(f"{model}: {message}", status_code=code if isinstance(code, int) else None, model=model)

    # ========================================================================
    # Response parsing
    # ========================================================================

    def _first_candidate(self, data: dict, model: str, prompt: str) -> dict:
        candidates = data.get("candidates") or []
        if candidates:
            return candidates[0]
        feedback = data.get("promptFeedback") or {}
        block_reason = feedback.get("blockReason")
        if block_reason:
            raise ContentPolicyError(
                f"{model} blocked the prompt ({block_reason})",
                finish_reason=block_reason,
                original_prompt=prompt,
                safety_ratings=self._safety_ratings(feedback),
                model=model,
            )
        raise MalformedResponseError(f"{model} returned no candidates", model=model)

    def _raise_for_finish_reason(self, candidate: dict, model: str, prompt: str) -> None:
        finish_reason = candidate.get("finishReason", "")
        if finish_reason in SAFETY_FINISH_REASONS:
            raise ContentPolicyError(
                f"{model} stopped with finishReason={finish_reason}",
                finish_reason=finish_reason,
                original_prompt=prompt,
                safety_ratings=self._safety_ratings(candidate),
                model=model,
            )

    def _extract_inline_data(self, data: dict, model: str, prompt: str, default_mime: str) -> GeneratedMedia:
        candidate = self._first_candidate(data, model, prompt)
        parts = (candidate.get("content") or {}).get("parts") or []
        for part in parts:
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                return GeneratedMedia(
                    data=base64.b64decode(inline["data"]),
                    mime_type=inline.get("mimeType") or inline.get("mime_type") or default_mime,
                    model=model,
                )

        self._raise_for_finish_reason(candidate, model, prompt)
        raise MalformedResponseError(
            f"{model} response has no inline data (finishReason={candidate.get('finishReason') or 'none'})",
            model=model,
        )

    @staticmethod
    def _safety_ratings(holder: dict) -> list[SafetyRating]:
        return [
            SafetyRating(
                category=rating.get("category", "UNKNOWN"),
                probability=rating.get("probability", "UNKNOWN"),
                blocked=bool(rating.get("blocked", False)),
            )
            for rating in holder.get("safetyRatings") or []
        ]

    @classmethod
    def _video_uri(cls, operation: dict) -> Optional[str]:
        response = operation.get("response") or {}
        videos = response.get("videos") or []
        if videos:
            uri = videos[0].get("gcsUri") or videos[0].get("uri")
            if uri:
                return uri
        samples = cls._dig(response, "generateVideoResponse", "generatedSamples") or []
        if samples:
            uri = (samples[0].get("video") or {}).get("uri")
            if uri:
                return uri
        result_videos = (operation.get("result") or {}).get("videos") or []
        if result_videos:
            return (result_videos[0].get("video") or {}).get("uri")
        return None

    @staticmethod
    def _dig(data: dict, *keys: str) -> Any:
        for key in keys:
            if not isinstance(data, dict):
                return None
            data = data.get(key)
        return data

    def _aspect_ratio(self, context: GenerationContext) -> str:
        width = context.output_width or self.settings.video_width
        height = context.output_height or self.settings.video_height
        return "9:16" if height > width else "16:9"
