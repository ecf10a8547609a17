"""Tests for subtitle service."""

import pytest

from aivideo.models.schemas import SentenceBoundary
from aivideo.services.subtitle_service import (
    SubtitleService,
    align_boundaries,
    estimate_sentence_timings,
    format_ass_time,
    split_sentences,
)


@pytest.fixture
def service(settings, logger):
    return SubtitleService(settings, logger)


def dialogue_lines(path):
    return [line for line in path.read_text(encoding="utf-8").splitlines() if line.startswith("Dialogue:")]


def test_format_ass_time():
    assert format_ass_time(0) == "0:00:00.00"
    assert format_ass_time(7.3) == "0:00:07.30"
    assert format_ass_time(3725.5) == "1:02:05.50"
    assert format_ass_time(-1) == "0:00:00.00"


def test_split_sentences():
    assert split_sentences("Hello there. How are you? Great!") == ["Hello there.", "How are you?", "Great!"]
    assert split_sentences("오늘은 날씨가 좋네요. 산책 갈까요?") == ["오늘은 날씨가 좋네요.", "산책 갈까요?"]
    assert split_sentences("") == []


def test_split_sentences_keeps_decimals():
    assert split_sentences("It costs 3.5 dollars. Cheap.") == ["It costs 3.5 dollars.", "Cheap."]


def test_estimate_timings_fill_track():
    timings = estimate_sentence_timings(["One two three.", "Four five."], 20.0)

    assert timings[0].start == 0.0
    assert timings[0].end == timings[1].start
    assert timings[-1].end == 20.0


def test_estimate_timings_scale_down_when_overrunning():
    timings = estimate_sentence_timings(["x" * 90 + ".", "y" * 90 + "."], 10.0)

    assert timings[0].end == pytest.approx(5.0)
    assert timings[-1].end == 10.0


def test_align_boundaries_merges_surplus():
    boundaries = [SentenceBoundary(start=0, end=2), SentenceBoundary(start=2, end=5), SentenceBoundary(start=5, end=9)]

    aligned = align_boundaries(["First.", "Second."], boundaries, 9.0)

    assert len(aligned) == 2
    assert aligned[1].start == 2
    assert aligned[1].end == 9


def test_align_boundaries_too_few_estimates():
    aligned = align_boundaries(["First one.", "Second one."], [SentenceBoundary(start=0, end=8)], 8.0)

    assert len(aligned) == 2
    assert aligned[-1].end == 8.0


def test_estimate_timings_start_at_offset():
    timings = estimate_sentence_timings(["x" * 90 + ".", "y" * 90 + "."], 10.0, start_offset=0.8)

    assert timings[0].start == pytest.approx(0.8)
    assert timings[0].end == pytest.approx(5.4)
    assert timings[-1].end == 10.0


def test_align_boundaries_fallback_keeps_speech_onset():
    """Test a single detected interval's lead-in survives the character-count fallback."""
    aligned = align_boundaries(["First one.", "Second one."], [SentenceBoundary(start=0.6, end=8.0)], 8.0)

    assert aligned[0].start == pytest.approx(0.6)
    assert aligned[0].end == aligned[1].start
    assert aligned[-1].end == 8.0


def test_write_scene_subtitles(service, tmp_path):
    """Test one dialogue event per sentence with the display gap applied."""
    output = tmp_path / "subs" / "scene_00_v1.ass"
    boundaries = [SentenceBoundary(start=0.0, end=3.0), SentenceBoundary(start=3.0, end=6.0)]

    path = service.write_scene_subtitles("Good morning. Let's go.", boundaries, 6.0, output)

    assert path == output
    content = output.read_text(encoding="utf-8")
    assert "PlayResX: 1920" in content
    assert "PlayResY: 1080" in content
    lines = dialogue_lines(output)
    assert lines[0] == "Dialogue: 0,0:00:00.00,0:00:02.95,Default,,0,0,0,,Good morning."
    assert lines[1] == "Dialogue: 0,0:00:03.00,0:00:05.95,Default,,0,0,0,,Let's go."


def test_custom_resolution(service, tmp_path):
    output = tmp_path / "v.ass"

    service.write_scene_subtitles("Hi there.", [SentenceBoundary(start=0, end=2)], 2.0, output, width=1080, height=1920)

    content = output.read_text(encoding="utf-8")
    assert "PlayResX: 1080" in content
    assert "PlayResY: 1920" in content


def test_emotion_style_for_exclamations_and_ellipsis(service, tmp_path):
    output = tmp_path / "e.ass"
    boundaries = [SentenceBoundary(start=0, end=2), SentenceBoundary(start=2, end=4)]

    service.write_scene_subtitles("Wow that is huge! I wonder… maybe.", boundaries, 4.0, output)

    lines = dialogue_lines(output)
    assert ",Emotion," in lines[0]
    assert ",Emotion," in lines[1]


def test_long_line_is_broken(service, tmp_path):
    output = tmp_path / "long.ass"
    sentence = "This narration sentence is definitely longer than the subtitle line limit."

    service.write_scene_subtitles(sentence, [SentenceBoundary(start=0, end=5)], 5.0, output)

    text = dialogue_lines(output)[0].split(",,")[-1]
    assert "\\N" in text
    assert text.replace("\\N", " ") == sentence


def test_braces_are_escaped(service, tmp_path):
    output = tmp_path / "b.ass"

    service.write_scene_subtitles("Say {hello} now.", [SentenceBoundary(start=0, end=2)], 2.0, output)

    assert dialogue_lines(output)[0].endswith("Say (hello) now.")
