"""Process Executor - runs external media tools with timeouts and output capture."""

import subprocess
import time
from collections import deque
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel

from aivideo.core.config import Settings
from aivideo.core.errors import ProcessFailedError, ProcessTimeoutError
from aivideo.utils.path_validator import PathValidator


class ProcessResult(BaseModel):
    """Outcome of one external process invocation."""

    command: list[str]
    exit_code: int
    output: str
    duration: float

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class ProcessExecutor:
    """Runs ffmpeg/ffprobe style commands safely.

    Every command is validated by ``PathValidator`` before it starts. stdout and
    stderr are merged and only the last ``max_output_lines`` lines are kept.
    A process that outlives its timeout is killed and reported with
    ``ProcessTimeoutError``, never as a normal non-zero exit.
    """

    def __init__(self, settings: Settings, logger: Any, validator: Optional[PathValidator] = None):
        """
        Initialize process executor.

        Args:
            settings: Application settings
            logger: Logger instance
            validator: Optional path validator (defaults to the settings' tool base dirs)
        """
        self.settings = settings
        self.logger = logger
        self.validator = validator or PathValidator(settings.tool_base_dirs())
        self.max_output_lines = settings.max_output_lines

    def execute(
        self,
        command: list[str],
        timeout: float,
        cwd: Optional[Union[str, Path]] = None,
    ) -> ProcessResult:
        """
        Execute a command and capture its combined output.

        Args:
            command: Executable followed by its arguments
            timeout: Seconds before the process is force-killed
            cwd: Optional working directory

        Returns:
            ProcessResult (non-zero exit codes are returned, not raised)

        Raises:
            UnsafeArgumentError: If an argument fails validation
            ProcessTimeoutError: If the process exceeded its timeout
            ProcessFailedError: If the executable could not be started
        """
        command = [str(part) for part in command]
        self.validator.validate_command_args(command)

        self.logger.debug(f"Executing: {' '.join(command)} (timeout={timeout}s)")
        start_time = time.time()
        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                cwd=str(cwd) if cwd else None,
                text=True,
                errors="replace",
            )
        except OSError as e:
            raise ProcessFailedError(
                f"Failed to start {command[0]}: {e}", exit_code=-1, command=command
            ) from e

        try:
            raw_output, _ = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            raw_output, _ = process.communicate()
            elapsed = time.time() - start_time
            output = self._tail(raw_output)
            self.logger.error(f"❌ {command[0]} timed out after {elapsed:.1f}s and was killed")
            raise ProcessTimeoutError(
                f"{command[0]} timed out after {timeout}s", command=command, output=output
            )

        elapsed = time.time() - start_time
        result = ProcessResult(
            command=command,
            exit_code=process.returncode,
            output=self._tail(raw_output),
            duration=elapsed,
        )
        if result.succeeded:
            self.logger.debug(f"{command[0]} finished in {elapsed:.2f}s")
        else:
            self.logger.warning(f"{command[0]} exited with code {result.exit_code} after {elapsed:.2f}s")
        return result

    def execute_or_raise(
        self,
        command: list[str],
        timeout: float,
        cwd: Optional[Union[str, Path]] = None,
    ) -> ProcessResult:
        """Like ``execute`` but raises ``ProcessFailedError`` on a non-zero exit."""
        result = self.execute(command, timeout, cwd=cwd)
        if not result.succeeded:
            last_lines = "\n".join(result.output.splitlines()[-5:])
            raise ProcessFailedError(
                f"{result.command[0]} exited with code {result.exit_code}: {last_lines}",
                exit_code=result.exit_code,
                command=result.command,
                output=result.output,
            )
        return result

    def _tail(self, output: Optional[str]) -> str:
        if not output:
            return ""
        return "\n".join(deque(output.splitlines(), maxlen=self.max_output_lines))
