"""Path Validator - confines external tool arguments to known directories."""

import os
import re
from pathlib import Path
from typing import Iterable

from aivideo.core.errors import UnsafeArgumentError

FORBIDDEN_SEQUENCES = ("..", "//", "\x00", "\n", "\r", ";", "|", "&", "$(", "`")

# Values that can never be paths: flags, timestamps, sizes, codec and preset names
_NUMERIC_RE = re.compile(r"^[0-9:x.]+$")
_TOKEN_RE = re.compile(r"^[a-z0-9_]+$")
# Filter arguments that embed a file path, e.g. ass=/tmp/aivideo/x/sub.ass
_EMBEDDED_PATH_RE = re.compile(r"(?:^|[,;:])(?:ass|subtitles)=(?:filename=)?'?([^:',]+)")

ALWAYS_ALLOWED = ("/dev/null",)


class PathValidator:
    """Validates command arguments before they reach an external process."""

    def __init__(self, base_dirs: Iterable[str]):
        """
        Initialize validator.

        Args:
            base_dirs: Directories that absolute path arguments must live under
        """
        self.base_dirs = [self._resolve(Path(d)) for d in base_dirs if d]

    @staticmethod
    def _resolve(path: Path) -> Path:
        # realpath follows symlinks when the path exists; otherwise normalizes lexically
        return Path(os.path.realpath(path))

    def is_within_base(self, path: str) -> bool:
        """Check whether an absolute path resolves inside one of the base dirs."""
        if path in ALWAYS_ALLOWED:
            return True
        resolved = self._resolve(Path(path))
        for base in self.base_dirs:
            if resolved == base or base in resolved.parents:
                return True
        return False

    def validate_path(self, path: str) -> Path:
        """
        Validate a single file path.

        Args:
            path: Absolute or relative path

        Returns:
            The resolved path

        Raises:
            UnsafeArgumentError: If the path contains forbidden sequences or escapes the base dirs
        """
        if not path:
            raise UnsafeArgumentError("Empty path")
        for seq in FORBIDDEN_SEQUENCES:
            if seq in path:
                raise UnsafeArgumentError(f"Forbidden sequence {seq!r} in path: {path!r}")
        if os.path.isabs(path) and not self.is_within_base(path):
            raise UnsafeArgumentError(f"Path outside allowed directories: {path}")
        return self._resolve(Path(path))

    def validate_command_args(self, command: list[str]) -> None:
        """
        Validate every path-like argument of a command.

        The executable itself (first element) is not checked.

        Raises:
            UnsafeArgumentError: On the first offending argument
        """
        for arg in command[1:]:
            if arg is None:
                raise UnsafeArgumentError("None argument in command")
            if ".." in arg or "\x00" in arg or "\n" in arg or "\r" in arg:
                raise UnsafeArgumentError(f"Forbidden sequence in argument: {arg!r}")
            if arg.startswith("-") or _NUMERIC_RE.match(arg) or _TOKEN_RE.match(arg):
                continue
            if os.path.isabs(arg):
                self.validate_path(arg)
                continue
            for embedded in _EMBEDDED_PATH_RE.findall(arg):
                if os.path.isabs(embedded):
                    self.validate_path(embedded)
