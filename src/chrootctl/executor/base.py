"""Types shared by the execution adapter and its backends."""
from __future__ import annotations

import abc
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum


class ChunkKind(str, Enum):
    """Origin of an :class:`OutputChunk`."""

    NOTICE = "notice"
    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class OutputChunk:
    """A piece of text produced while a command runs."""

    kind: ChunkKind
    text: str

    @property
    def is_notice(self) -> bool:
        """Return ``True`` for adapter-generated notices such as ``[Executing: ...]``."""
        return self.kind is ChunkKind.NOTICE

    def lines(self) -> list[str]:
        """Split the chunk into non-empty, right-stripped lines."""
        return [line.rstrip() for line in self.text.splitlines() if line.strip()]


@dataclass(frozen=True)
class CommandResult:
    """Terminal result of one command."""

    success: bool
    exit_code: int | None = None
    output: str = ""
    error: str | None = None


@dataclass(frozen=True)
class BackendResult:
    """Raw outcome returned by an :class:`ExecutionBackend`."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""


LineCallback = Callable[[str], None]


@dataclass
class ExecutionCallbacks:
    """Optional hooks receiving the same events as the handle's stream.

    Each hook may be a plain function or a coroutine function.
    """

    on_output: Callable[[str], object] | None = None
    on_error: Callable[[str], object] | None = None
    on_complete: Callable[[CommandResult], object] | None = None


class ExecutionBackend(abc.ABC):
    """A mechanism able to run a shell command with root privileges."""

    #: Short identifier shown in diagnostics (``su``, ``root-shell``...).
    name: str = "backend"
    #: Whether :meth:`run` reports stdout lines while the command runs.
    streams: bool = False

    @abc.abstractmethod
    async def run(self, command: str, on_line: LineCallback) -> BackendResult:
        """Run *command* and return its exit status and captured output.

        Streaming backends call *on_line* for each stdout line as it arrives;
        others ignore it and report everything in the returned result.
        """



__all__ = [
    "BackendResult",
    "ChunkKind",
    "CommandResult",
    "ExecutionBackend",
    "ExecutionCallbacks",
    "LineCallback",
    "OutputChunk",
]
