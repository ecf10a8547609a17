"""Scenario Generator - turns a topic prompt into an opening clip plus narrated slides."""

import json
from typing import Any, Optional

from pydantic import ValidationError

from aivideo.core.config import Settings
from aivideo.core.errors import MalformedResponseError
from aivideo.models.schemas import GeneratedScript, GenerationContext, Scenario
from aivideo.services.gemini_client import GeminiClient
from aivideo.services.retry_dispatcher import RetryDispatcher

SYSTEM_PROMPT = """You write scripts for narrated videos.
Answer with a single JSON object and nothing else:
{"title": string,
 "opening": {"videoPrompt": string, "narration": string},
 "slides": [{"narration": string, "imagePrompt": string}]}
Rules:
- The opening is an 8 second cinematic clip. Its narration is one or two short spoken sentences.
- Write exactly {slide_count} slides. Each slide narration is two to four spoken sentences.
- Each imagePrompt describes one still image in English, with no text or logos in the image.
- Write narration in the language of the topic."""

# Placeholders the model may leave in prompts for the creator's own values
PLACEHOLDERS = {
    "{{CREATOR_NAME}}": "creator_name",
    "{{YOUTUBE_CHANNEL}}": "channel_name",
}


def strip_code_fence(text: str) -> str:
    """Remove a markdown code fence the model sometimes wraps JSON in."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned[3:]
        if cleaned[:4].lower() == "json":
            cleaned = cleaned[4:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_script(text: str, model: str) -> GeneratedScript:
    """
    Parse and validate the script model's JSON answer.

    Raises:
        MalformedResponseError: If the text is not JSON or misses required fields
    """
    try:
        data = json.loads(strip_code_fence(text))
        return GeneratedScript.model_validate(data)
    except (ValueError, ValidationError) as e:
        raise MalformedResponseError(f"{model} returned an invalid script: {e}", model=model) from e


def fill_placeholders(text: str, context: GenerationContext) -> str:
    for placeholder, field in PLACEHOLDERS.items():
        value = getattr(context, field)
        if value and placeholder in text:
            text = text.replace(placeholder, value)
    return text


class ScenarioGenerator:
    """Writes a scenario with the script model through the retry dispatcher."""

    def __init__(
        self,
        settings: Settings,
        logger: Any,
        client: GeminiClient,
        dispatcher: RetryDispatcher,
    ):
        """
        Initialize scenario generator.

        Args:
            settings: Application settings
            logger: Logger instance
            client: Gemini API client
            dispatcher: Retry/fallback dispatcher
        """
        self.settings = settings
        self.logger = logger
        self.client = client
        self.dispatcher = dispatcher

    def generate(
        self,
        prompt: str,
        context: GenerationContext,
        slide_count: Optional[int] = None,
    ) -> Scenario:
        """
        Generate a scenario for a topic.

        A reply that is not valid script JSON counts as a malformed
        response, so the dispatcher retries it and then tries the fallback
        model.

        Args:
            prompt: Topic or story idea
            context: Generation context
            slide_count: Slides to request (defaults to settings.scenario_slide_count)

        Returns:
            Scenario with the opening clip first

        Raises:
            ValueError: If the prompt is empty
            GenerationFailedError: If primary and fallback models both fail
        """
        if not prompt or not prompt.strip():
            raise ValueError("A topic prompt is required to generate a scenario")
        slides = slide_count or self.settings.scenario_slide_count
        system_instruction = SYSTEM_PROMPT.replace("{slide_count}", str(slides))

        def write_script(model: str, topic: str, ctx: GenerationContext) -> GeneratedScript:
            text = self.client.generate_text(model, f"Topic: {topic}", ctx, system_instruction=system_instruction)
            return parse_script(text, model)

        self.logger.info(f"Generating scenario with {slides} slides...")
        script: GeneratedScript = self.dispatcher.dispatch(
            write_script,
            prompt.strip(),
            self.settings.scenario_model,
            self.settings.scenario_fallback_model,
            context,
            operation="scenario",
        )

        scenario = script.to_scenario()
        for scene in scenario.scenes:
            scene.prompt = fill_placeholders(scene.prompt, context)
        if len(script.slides) != slides:
            self.logger.warning(f"⚠️ Asked for {slides} slides, model wrote {len(script.slides)}")
        self.logger.info(f"✅ Scenario '{scenario.title}': {len(scenario.scenes)} scenes")
        return scenario
