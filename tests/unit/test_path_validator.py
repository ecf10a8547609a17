"""Tests for path validator."""

import pytest

from aivideo.core.errors import UnsafeArgumentError
from aivideo.utils.path_validator import PathValidator


@pytest.fixture
def base_dir(tmp_path):
    work = tmp_path / "work"
    work.mkdir()
    return work


@pytest.fixture
def validator(base_dir):
    return PathValidator([str(base_dir)])


def test_path_inside_base_is_allowed(validator, base_dir):
    path = base_dir / "job" / "slide_000.png"

    assert validator.validate_path(str(path)) == path.resolve()
    assert validator.is_within_base(str(base_dir))


def test_path_outside_base_is_rejected(validator):
    with pytest.raises(UnsafeArgumentError):
        validator.validate_path("/etc/passwd")


def test_dev_null_is_always_allowed(validator):
    assert validator.is_within_base("/dev/null")


@pytest.mark.parametrize(
    "suffix",
    ["../escape.mp4", "a;rm.mp4", "a|b.mp4", "a&b.mp4", "$(id).mp4", "`id`.mp4", "a\x00b.mp4"],
)
def test_forbidden_sequences(validator, base_dir, suffix):
    with pytest.raises(UnsafeArgumentError):
        validator.validate_path(f"{base_dir}/{suffix}")


def test_empty_path_is_rejected(validator):
    with pytest.raises(UnsafeArgumentError):
        validator.validate_path("")


def test_symlink_escape_is_rejected(validator, base_dir, tmp_path):
    outside = tmp_path / "outside"
    outside.mkdir()
    (base_dir / "link").symlink_to(outside)

    with pytest.raises(UnsafeArgumentError):
        validator.validate_path(str(base_dir / "link" / "secret.txt"))


def test_command_args_skip_flags_and_tokens(validator, base_dir):
    """Test flags, timestamps, sizes and codec names are not treated as paths."""
    validator.validate_command_args(
        [
            "/usr/bin/ffmpeg",
            "-y",
            "-ss",
            "00:00:01.5",
            "-s",
            "1920x1080",
            "-c:v",
            "libx264",
            "-i",
            str(base_dir / "in.mp4"),
            str(base_dir / "out.mp4"),
        ]
    )


def test_command_args_reject_outside_path(validator):
    with pytest.raises(UnsafeArgumentError):
        validator.validate_command_args(["ffmpeg", "-i", "/etc/shadow"])


def test_command_args_reject_traversal_anywhere(validator):
    with pytest.raises(UnsafeArgumentError):
        validator.validate_command_args(["ffmpeg", "-i", "clips/../../secret.mp4"])


def test_command_args_reject_newline(validator):
    with pytest.raises(UnsafeArgumentError):
        validator.validate_command_args(["ffmpeg", "-metadata", "title=a\nb"])


def test_embedded_subtitle_path_is_validated(validator, base_dir):
    validator.validate_command_args(["ffmpeg", "-vf", f"ass={base_dir}/subs/scene.ass"])

    with pytest.raises(UnsafeArgumentError):
        validator.validate_command_args(["ffmpeg", "-vf", "scale=1920:1080,subtitles=/etc/evil.ass"])
