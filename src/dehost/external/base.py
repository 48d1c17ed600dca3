"""
Running external classifiers as subprocesses.

``ExternalTool`` locates an executable through a swappable resolver
(``shutil.which`` unless a test injects another), runs the command a
subclass builds and turns a missing binary or a non-zero exit into a
``DehostError`` with exit code 7.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from dehost.core.exceptions import DehostError, UpstreamError

logger = logging.getLogger(__name__)

# Lines of classifier stderr quoted in a failure message
STDERR_TAIL_LINES = 10


class ToolNotFoundError(DehostError):
    """The classifier executable is not on PATH."""

    exit_code = UpstreamError.exit_code

    def __init__(self, tool_name: str, install_hint: str = ""):
        suggestion = f"Put {tool_name} on your PATH"
        suggestion += f", e.g. '{install_hint}'." if install_hint else "."
        super().__init__(message=f"{tool_name} not found on PATH", suggestion=suggestion)
        self.tool_name = tool_name


class ToolExecutionError(UpstreamError):
    """The classifier ran but exited with a non-zero status."""

    def __init__(self, tool_name: str, command: tuple[str, ...], return_code: int, stderr: str):
        tail = stderr.strip().splitlines()[-STDERR_TAIL_LINES:]
        message = f"{tool_name} exited with status {return_code}"
        if tail:
            message += ":\n  " + "\n  ".join(tail)
        super().__init__(
            message=message,
            suggestion=f"Command was: {' '.join(command)}",
        )
        self.tool_name = tool_name
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool invocation (or of a dry run)."""

    command: tuple[str, ...]
    return_code: int
    stdout: str
    stderr: str
    elapsed_seconds: float

    @property
    def success(self) -> bool:
        return self.return_code == 0

    @property
    def command_string(self) -> str:
        return " ".join(self.command)


class ExternalTool(ABC):
    """A command-line program dehost shells out to.

    Subclasses set ``TOOL_NAME`` and ``INSTALL_HINT`` and implement
    ``build_command``. Tests swap executable lookup with
    ``set_executable_resolver``.
    """

    TOOL_NAME: ClassVar[str]
    INSTALL_HINT: ClassVar[str] = ""

    _resolver: ClassVar[Callable[[str], str | None]] = staticmethod(shutil.which)

    @classmethod
    def set_executable_resolver(cls, resolver: Callable[[str], str | None]) -> None:
        """Look executables up with ``resolver`` (tool name -> path or None)."""
        ExternalTool._resolver = staticmethod(resolver)

    @classmethod
    def reset_executable_resolver(cls) -> None:
        ExternalTool._resolver = staticmethod(shutil.which)

    @classmethod
    def get_executable(cls) -> Path:
        """Path of the executable.

        Raises:
            ToolNotFoundError: If the resolver cannot find it.
        """
        found = ExternalTool._resolver(cls.TOOL_NAME)
        if not found:
            raise ToolNotFoundError(cls.TOOL_NAME, cls.INSTALL_HINT)
        return Path(found)

    @classmethod
    def check_available(cls) -> bool:
        try:
            cls.get_executable()
        except ToolNotFoundError:
            return False
        return True

    @abstractmethod
    def build_command(self, **kwargs: object) -> list[str]:
        """Full argument list, executable first."""

    def run(self, *, dry_run: bool = False, **kwargs: object) -> ToolResult:
        """Build the command from ``kwargs`` and run it to completion.

        With ``dry_run`` the command is built but not executed.

        Raises:
            ToolNotFoundError: If the executable is missing or vanished.
            ToolExecutionError: If the process exits non-zero.
        """
        command = tuple(self.build_command(**kwargs))
        if dry_run:
            return ToolResult(command, 0, "", "", 0.0)

        logger.debug("Running: %s", " ".join(command))
        start = time.perf_counter()
        try:
            completed = subprocess.run(command, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise ToolNotFoundError(self.TOOL_NAME, self.INSTALL_HINT) from e

        result = ToolResult(
            command=command,
            return_code=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            elapsed_seconds=time.perf_counter() - start,
        )
        if not result.success:
            raise ToolExecutionError(self.TOOL_NAME, command, result.return_code, result.stderr)
        logger.debug("%s finished in %.1fs", self.TOOL_NAME, result.elapsed_seconds)
        return result

    def version(self) -> str | None:
        """First non-blank line of ``<tool> --version``; None if it cannot be run."""
        try:
            completed = subprocess.run(
                [str(self.get_executable()), "--version"], capture_output=True, text=True
            )
        except (ToolNotFoundError, FileNotFoundError):
            return None
        if completed.returncode != 0:
            return None
        return next((line.strip() for line in completed.stdout.splitlines() if line.strip()), None)
