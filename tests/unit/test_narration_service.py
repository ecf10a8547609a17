"""Tests for narration service."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from aivideo.core.errors import ProcessError
from aivideo.models.schemas import GeneratedMedia, GenerationContext, Scene
from aivideo.services.narration_service import NarrationService
from aivideo.utils.process_executor import ProcessResult


@pytest.fixture
def dispatcher():
    return MagicMock()


@pytest.fixture
def executor():
    return MagicMock()


@pytest.fixture
def segmentation():
    engine = MagicMock()
    engine.get_audio_duration.return_value = 6.5
    engine.adjust_tempo.side_effect = lambda path, target: path
    return engine


@pytest.fixture
def service(settings, logger, dispatcher, executor, segmentation):
    return NarrationService(settings, logger, MagicMock(), dispatcher, executor, segmentation)


@pytest.fixture
def scene():
    return Scene(scene_id="v-s01", video_id="v", order=1, narration="Hello. Welcome back!")


def test_pcm_is_converted_to_mp3(service, dispatcher, executor, scene):
    """Test raw PCM from the TTS model is encoded and measured."""
    dispatcher.dispatch.return_value = GeneratedMedia(data=b"\x00\x01" * 100, mime_type="audio/L16;rate=24000")

    def encode(command, timeout):
        Path(command[-1]).write_bytes(b"mp3")
        return ProcessResult(command=command, exit_code=0, output="", duration=0.1)

    executor.execute_or_raise.side_effect = encode

    result = service.synthesize(scene, GenerationContext(voice="Puck"))

    assert result.audio_path.name == "scene_01_v1.mp3"
    assert result.duration == 6.5
    command = executor.execute_or_raise.call_args[0][0]
    assert command[command.index("-f") + 1] == "s16le"
    assert command[command.index("-ar") + 1] == "24000"
    assert not result.audio_path.with_suffix(".pcm").exists()


def test_mp3_is_written_directly(service, dispatcher, executor, scene):
    dispatcher.dispatch.return_value = GeneratedMedia(data=b"ID3", mime_type="audio/mpeg")

    result = service.synthesize(scene, GenerationContext())

    assert result.audio_path.read_bytes() == b"ID3"
    executor.execute_or_raise.assert_not_called()


def test_target_duration_adjusts_tempo(service, dispatcher, segmentation, scene):
    dispatcher.dispatch.return_value = GeneratedMedia(data=b"ID3", mime_type="audio/mp3")

    service.synthesize(scene, GenerationContext(), target_duration=5.0)

    assert segmentation.adjust_tempo.call_args[0][1] == 5.0


def test_empty_narration_is_rejected(service, dispatcher):
    with pytest.raises(ValueError):
        service.synthesize(Scene(scene_id="v-s00", video_id="v", order=0, narration="  "), GenerationContext())
    dispatcher.dispatch.assert_not_called()


def test_empty_conversion_output_raises(service, dispatcher, executor, scene):
    dispatcher.dispatch.return_value = GeneratedMedia(data=b"\x00", mime_type="audio/pcm")
    executor.execute_or_raise.return_value = ProcessResult(command=["ffmpeg"], exit_code=0, output="", duration=0.1)

    with pytest.raises(ProcessError):
        service.synthesize(scene, GenerationContext())
