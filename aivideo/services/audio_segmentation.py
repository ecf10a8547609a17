"""Audio Segmentation Engine - sentence timing from narration silences."""

import re
from pathlib import Path
from typing import Any, Union

from aivideo.core.config import Settings
from aivideo.core.errors import ProcessError, UnsafeArgumentError
from aivideo.models.schemas import SentenceBoundary, SilenceInterval
from aivideo.utils.process_executor import ProcessExecutor

DEFAULT_DURATION = 5.0

_SILENCE_START_RE = re.compile(r"silence_start:\s*(-?[0-9.]+)")
_SILENCE_END_RE = re.compile(r"silence_end:\s*(-?[0-9.]+)\s*\|\s*silence_duration:\s*([0-9.]+)")


def parse_silencedetect_output(output: str) -> list[SilenceInterval]:
    """
    Parse ffmpeg ``silencedetect`` log lines into intervals.

    A ``silence_end`` without a preceding ``silence_start`` is rebuilt as
    ``end - duration``.
    """
    silences = []
    pending_start = None
    for line in output.splitlines():
        start_match = _SILENCE_START_RE.search(line)
        if start_match:
            pending_start = float(start_match.group(1))
            continue
        end_match = _SILENCE_END_RE.search(line)
        if end_match:
            end = float(end_match.group(1))
            duration = float(end_match.group(2))
            start = pending_start if pending_start is not None else end - duration
            silences.append(SilenceInterval(start=max(start, 0.0), end=end, duration=duration))
            pending_start = None
    return silences


def select_sentence_boundaries(
    silences: list[SilenceInterval],
    sentence_count: int,
    total_duration: float,
    leading_window: float = 0.05,
) -> list[SentenceBoundary]:
    """
    Split ``[first speech onset, total_duration]`` into per-sentence intervals.

    Sentence pauses are reliably longer than pauses inside a sentence, so the
    ``sentence_count - 1`` longest silences are taken as cut points (ties keep
    their original order) and cut at their midpoints. With fewer silences than
    needed, every silence is used. With none, one interval covers the speech.

    Args:
        silences: Detected silences in time order
        sentence_count: Number of sentences in the narration
        total_duration: Track length in seconds
        leading_window: A silence starting before this offset is head-room

    Returns:
        Ordered, gap-free intervals from the speech onset to ``total_duration``
    """
    onset = 0.0
    candidates = list(silences)
    if candidates and candidates[0].start < leading_window:
        onset = min(candidates[0].end, total_duration)
        candidates = candidates[1:]

    # Silences that reach the end of the track are trailing room, not pauses
    candidates = [s for s in candidates if onset < s.midpoint < total_duration]

    if sentence_count <= 1 or not candidates:
        return [SentenceBoundary(start=onset, end=total_duration)]

    needed = sentence_count - 1
    if len(candidates) > needed:
        # sorted() is stable, so equal durations keep their time order
        candidates = sorted(candidates, key=lambda s: s.duration, reverse=True)[:needed]
    cut_points = sorted(s.midpoint for s in candidates)

    boundaries = []
    previous = onset
    for cut in cut_points:
        boundaries.append(SentenceBoundary(start=previous, end=cut))
        previous = cut
    boundaries.append(SentenceBoundary(start=previous, end=total_duration))
    return boundaries


class AudioSegmentationEngine:
    """Measures narration audio and derives sentence-level timing."""

    def __init__(self, settings: Settings, logger: Any, executor: ProcessExecutor):
        """
        Initialize segmentation engine.

        Args:
            settings: Application settings
            logger: Logger instance
            executor: Process executor used for ffmpeg/ffprobe
        """
        self.settings = settings
        self.logger = logger
        self.executor = executor

    def get_audio_duration(self, audio_path: Union[str, Path]) -> float:
        """
        Measure a media file's duration with ffprobe.

        Returns:
            Duration in seconds, or 5.0 if it cannot be measured
        """
        command = [
            self.settings.ffprobe_binary,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(audio_path),
        ]
        try:
            result = self.executor.execute(command, timeout=self.settings.probe_timeout_seconds)
            if result.succeeded:
                for line in result.output.splitlines():
                    line = line.strip()
                    if line and line != "N/A":
                        return float(line)
            self.logger.warning(f"ffprobe could not read duration of {audio_path}, using {DEFAULT_DURATION}s")
        except (ProcessError, UnsafeArgumentError, ValueError) as e:
            self.logger.warning(f"Duration probe failed for {audio_path}: {e}, using {DEFAULT_DURATION}s")
        return DEFAULT_DURATION

    def detect_silences(self, audio_path: Union[str, Path]) -> list[SilenceInterval]:
        """
        Run ffmpeg silencedetect over a track.

        Raises:
            ProcessError: If ffmpeg fails or times out
        """
        audio_filter = (
            f"silencedetect=n={self.settings.silence_noise_db}dB:d={self.settings.silence_min_duration}"
        )
        command = [
            self.settings.ffmpeg_binary,
            "-i", str(audio_path),
            "-af", audio_filter,
            "-f", "null",
            "-",
        ]
        result = self.executor.execute_or_raise(command, timeout=self.settings.silence_timeout_seconds)
        silences = parse_silencedetect_output(result.output)
        self.logger.debug(f"Detected {len(silences)} silences in {Path(audio_path).name}")
        return silences

    def detect_sentence_boundaries(
        self,
        audio_path: Union[str, Path],
        sentence_count: int,
    ) -> list[SentenceBoundary]:
        """
        Derive one time interval per narration sentence.

        Never raises: if detection fails, a single interval spanning the whole
        track is returned and callers fall back to character-count timing.

        Args:
            audio_path: Narration audio file
            sentence_count: Number of sentences in the narration

        Returns:
            Ordered intervals covering the narration
        """
        total_duration = self.get_audio_duration(audio_path)
        try:
            silences = self.detect_silences(audio_path)
        except (ProcessError, UnsafeArgumentError) as e:
            self.logger.warning(f"⚠️ Silence detection failed for {audio_path}: {e}; using one interval")
            return [SentenceBoundary(start=0.0, end=total_duration)]

        boundaries = select_sentence_boundaries(
            silences, sentence_count, total_duration, leading_window=self.settings.leading_silence_window
        )
        if len(boundaries) != max(sentence_count, 1):
            self.logger.info(
                f"Found {len(boundaries)} sentence intervals for {sentence_count} sentences "
                f"({len(silences)} silences)"
            )
        return boundaries

    def adjust_tempo(self, audio_path: Union[str, Path], target_duration: float) -> Path:
        """
        Stretch or compress narration to a target length.

        Best effort: the ratio is clamped to the allowed tempo range and the
        original file is returned unchanged when the audio is already close
        enough or the adjustment fails.

        Args:
            audio_path: Narration audio file
            target_duration: Desired length in seconds

        Returns:
            Path of the adjusted file, or the original path
        """
        audio_path = Path(audio_path)
        if target_duration <= 0:
            return audio_path

        actual = self.get_audio_duration(audio_path)
        if abs(actual - target_duration) <= self.settings.tempo_tolerance_seconds:
            return audio_path

        tempo = actual / target_duration
        clamped = min(self.settings.max_tempo, max(self.settings.min_tempo, tempo))
        if clamped != tempo:
            self.logger.warning(f"Tempo {tempo:.3f} clamped to {clamped:.3f} for {audio_path.name}")

        output_path = audio_path.with_name(f"{audio_path.stem}_tempo.mp3")
        command = [
            self.settings.ffmpeg_binary, "-y",
            "-i", str(audio_path),
            "-filter:a", f"atempo={clamped:.4f}",
            "-c:a", "libmp3lame",
            "-b:a", "192k",
            str(output_path),
        ]
        try:
            self.executor.execute_or_raise(command, timeout=self.settings.silence_timeout_seconds)
        except (ProcessError, UnsafeArgumentError) as e:
            self.logger.warning(f"⚠️ Tempo adjustment failed for {audio_path.name}: {e}; keeping original")
            return audio_path

        if not output_path.exists() or output_path.stat().st_size == 0:
            self.logger.warning(f"⚠️ Tempo adjustment produced no output for {audio_path.name}; keeping original")
            return audio_path

        self.logger.info(f"Adjusted tempo of {audio_path.name}: {actual:.2f}s → ~{target_duration:.2f}s")
        return output_path
