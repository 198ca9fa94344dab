"""Terminal output log rendered with Rich.

:class:`OutputLog` is the single place chrootctl writes user-facing text.
Lines carry a level (``info``, ``success``, ``warn``, ``err``) that maps to a
Rich style. At most one progress line exists at a time; on a terminal it is
drawn in a transient :class:`rich.live.Live` region that stays below the
ordinary lines, elsewhere it is tracked but not printed.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from rich.console import Console
from rich.live import Live
from rich.text import Text


class LogLevel(str, Enum):
    """Severity of a log line."""

    INFO = "info"
    SUCCESS = "success"
    WARN = "warn"
    ERR = "err"


_STYLES = {
    LogLevel.INFO: "",
    LogLevel.SUCCESS: "green",
    LogLevel.WARN: "yellow",
    LogLevel.ERR: "red",
}


@dataclass(frozen=True)
class LogLine:
    """A line that was written to the log."""

    text: str
    level: LogLevel


class OutputLog:
    """Append-only output log with a single trailing progress line."""

    def __init__(self, console: Console | None = None) -> None:
        """Render to *console* (a default Rich console when omitted)."""
        self.console = console or Console()
        self.lines: list[LogLine] = []
        self.progress_text: str | None = None
        self._live: Live | None = None

    def append(self, text: str, level: LogLevel | str = LogLevel.INFO) -> None:
        """Write *text* (one or more lines) at *level*."""
        resolved = LogLevel(level)
        for line in text.splitlines() or [""]:
            self.lines.append(LogLine(line, resolved))
            self.console.print(Text(line, style=_STYLES[resolved]))

    def info(self, text: str) -> None:
        """Write an informational line."""
        self.append(text, LogLevel.INFO)

    def success(self, text: str) -> None:
        """Write a success line."""
        self.append(text, LogLevel.SUCCESS)

    def warn(self, text: str) -> None:
        """Write a warning line."""
        self.append(text, LogLevel.WARN)

    def err(self, text: str) -> None:
        """Write an error line."""
        self.append(text, LogLevel.ERR)

    def banner(self, title: str) -> None:
        """Write the section banner that opens an operation."""
        self.append(f"━━━ {title} ━━━", LogLevel.INFO)

    # ------------------------------------------------------------------
    # Progress line
    # ------------------------------------------------------------------
    def show_progress(self, text: str) -> None:
        """Set the progress line, starting the live region if needed."""
        self.progress_text = text
        if not self.console.is_terminal:
            return
        renderable = Text(text, style="cyan")
        if self._live is None:
            self._live = Live(
                renderable,
                console=self.console,
                transient=True,
                auto_refresh=False,
            )
            self._live.start()
        self._live.update(renderable, refresh=True)

    def clear_progress(self) -> None:
        """Remove the progress line; a no-op when none is shown."""
        self.progress_text = None
        live = self._live
        if live is None:
            return
        self._live = None
        live.stop()

    def texts(self, level: LogLevel | str | None = None) -> list[str]:
        """Return the written lines, optionally filtered by *level*."""
        if level is None:
            return [line.text for line in self.lines]
        resolved = LogLevel(level)
        return [line.text for line in self.lines if line.level is resolved]


__all__ = ["LogLevel", "LogLine", "OutputLog"]
