"""Subtitle Service - writes ASS subtitle files timed to narration."""

import re
from pathlib import Path
from typing import Any, Optional

from aivideo.core.config import Settings
from aivideo.models.schemas import SentenceBoundary

SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?。！？])(?![0-9])\s*")
DISPLAY_GAP = 0.05


def split_sentences(text: str) -> list[str]:
    """Split narration into sentences, dropping fragments under 2 characters."""
    if not text:
        return []
    parts = SENTENCE_SPLIT_RE.split(text.strip())
    return [p.strip() for p in parts if len(p.strip()) >= 2 and not re.fullmatch(r"[.!?…\s]+", p.strip())]


def format_ass_time(seconds: float) -> str:
    """Format seconds as ASS ``H:MM:SS.CC``."""
    seconds = max(seconds, 0.0)
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds - hours * 3600 - minutes * 60
    return "%d:%02d:%05.2f" % (hours, minutes, secs)


def estimate_sentence_timings(
    sentences: list[str],
    total_duration: float,
    chars_per_second: float = 4.5,
    start_offset: float = 0.0,
) -> list[SentenceBoundary]:
    """
    Character-count timing used when audio boundaries are unusable.

    Each sentence lasts ``chars / chars_per_second`` plus a pause after
    terminal punctuation (0.5s) or a comma (0.2s). Timing starts at
    ``start_offset`` (the detected speech onset, if any). The timings are
    scaled down if they overrun the remaining track, and the last sentence
    always ends at ``total_duration``.
    """
    if not sentences:
        return []
    durations = []
    for sentence in sentences:
        chars = len(re.sub(r"\s", "", sentence))
        duration = chars / chars_per_second
        if sentence[-1] in ".!?:":
            duration += 0.5
        elif sentence[-1] == ",":
            duration += 0.2
        durations.append(duration)

    start_offset = min(max(start_offset, 0.0), max(total_duration, 0.0))
    available = total_duration - start_offset
    total = sum(durations)
    if total > available > 0:
        scale = available / total
        durations = [d * scale for d in durations]

    timings = []
    start = start_offset
    for i, duration in enumerate(durations):
        end = total_duration if i == len(durations) - 1 else start + duration
        timings.append(SentenceBoundary(start=start, end=end))
        start = end
    return timings


def align_boundaries(
    sentences: list[str],
    boundaries: list[SentenceBoundary],
    total_duration: float,
    chars_per_second: float = 4.5,
) -> list[SentenceBoundary]:
    """
    Match detected boundaries to sentences.

    Equal counts are used as-is; surplus boundaries are merged into the last
    sentence; too few boundaries fall back to character-count timing, which
    starts at the first boundary so a detected speech onset is kept.
    """
    if len(boundaries) == len(sentences):
        return boundaries
    if len(boundaries) > len(sentences) and sentences:
        merged = boundaries[: len(sentences)]
        merged[-1] = SentenceBoundary(start=merged[-1].start, end=boundaries[-1].end)
        return merged
    onset = boundaries[0].start if boundaries else 0.0
    return estimate_sentence_timings(sentences, total_duration, chars_per_second, start_offset=onset)


class SubtitleService:
    """Generates ASS subtitle files for scenes."""

    def __init__(self, settings: Settings, logger: Any):
        """
        Initialize subtitle service.

        Args:
            settings: Application settings
            logger: Logger instance
        """
        self.settings = settings
        self.logger = logger

    def write_scene_subtitles(
        self,
        narration: str,
        boundaries: list[SentenceBoundary],
        total_duration: float,
        output_path: Path,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> Path:
        """
        Write an ASS file for one scene.

        Args:
            narration: Scene narration text
            boundaries: Sentence intervals from audio segmentation
            total_duration: Narration length in seconds
            output_path: Where to write the .ass file
            width: Output width (defaults to settings)
            height: Output height (defaults to settings)

        Returns:
            Path to the written file
        """
        sentences = split_sentences(narration)
        timings = align_boundaries(
            sentences, boundaries, total_duration, self.settings.subtitle_chars_per_second
        )

        lines = [self._header(width or self.settings.video_width, height or self.settings.video_height)]
        for sentence, timing in zip(sentences, timings):
            end = max(timing.end - DISPLAY_GAP, timing.start)
            lines.append(
                "Dialogue: 0,%s,%s,%s,,0,0,0,,%s"
                % (format_ass_time(timing.start), format_ass_time(end), self._style_for(sentence), self._display_text(sentence))
            )

        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        self.logger.debug(f"Wrote {len(sentences)} subtitle events to {output_path.name}")
        return output_path

    def _header(self, width: int, height: int) -> str:
        font = self.settings.subtitle_font
        size = self.settings.subtitle_font_size
        margin = self.settings.subtitle_margin_v
        return "\n".join(
            [
                "[Script Info]",
                "ScriptType: v4.00+",
                f"PlayResX: {width}",
                f"PlayResY: {height}",
                "WrapStyle: 0",
                "ScaledBorderAndShadow: yes",
                "",
                "[V4+ Styles]",
                "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, "
                "Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, "
                "Shadow, Alignment, MarginL, MarginR, MarginV, Encoding",
                f"Style: Default,{font},{size},&H00FFFFFF,&H000000FF,&H00000000,&HB0000000,1,0,0,0,100,100,3,0,1,6,4,2,10,10,{margin},1",
                f"Style: Emotion,{font},{size},&H0000FFFF,&H000000FF,&H00000000,&HB0000000,1,0,0,0,100,100,3,0,1,6,4,2,10,10,{margin},1",
                "",
                "[Events]",
                "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text",
            ]
        )

    @staticmethod
    def _style_for(sentence: str) -> str:
        if "!" in sentence or "..." in sentence or "…" in sentence:
            return "Emotion"
        return "Default"

    def _display_text(self, text: str) -> str:
        # ASS override braces would be interpreted as tags
        text = text.replace("{", "(").replace("}", ")").replace("\n", " ")
        limit = self.settings.subtitle_max_chars_per_line
        if len(text) <= limit:
            return text
        mid = len(text) // 2
        break_at = text.rfind(" ", 0, mid + 5)
        if break_at < mid - 10:
            break_at = text.find(" ", mid - 5)
        if 0 < break_at < len(text) - 1:
            return text[:break_at].strip() + "\\N" + text[break_at:].strip()
        return text
