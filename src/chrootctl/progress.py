"""Animated progress indicator for long-running operations."""
from __future__ import annotations

import asyncio
import logging
from enum import Enum

from .config import DelaysConfig
from .console import OutputLog

_LOG = logging.getLogger(__name__)

PROGRESS_PREFIX = "⏳ "
SPINNER_FRAMES = ("|", "/", "-", "\\")
MAX_DOTS = 3


class ProgressStyle(str, Enum):
    """Animation shown after the progress text."""

    SPINNER = "spinner"
    DOTS = "dots"


class ProgressHandle:
    """The live progress line of one operation."""

    def __init__(self, text: str, style: ProgressStyle) -> None:
        """Start with *text* animated in *style*."""
        self.display_text = text
        self.style = style
        self.frame = 0
        self.removed = False
        self._timer: asyncio.Task[None] | None = None

    def render(self) -> str:
        """Return the line for the current animation frame."""
        if self.style is ProgressStyle.SPINNER:
            glyph = SPINNER_FRAMES[self.frame % len(SPINNER_FRAMES)]
            return f"{PROGRESS_PREFIX}{self.display_text} {glyph}"
        dots = "." * (self.frame % (MAX_DOTS + 1))
        return f"{PROGRESS_PREFIX}{self.display_text}{dots}"


class ProgressReporter:
    """Create, update and remove progress handles on an :class:`OutputLog`."""

    def __init__(self, log: OutputLog, delays: DelaysConfig | None = None) -> None:
        """Render into *log* using the frame intervals from *delays*."""
        self.log = log
        self.delays = delays or DelaysConfig()
        self._active: ProgressHandle | None = None

    @property
    def active(self) -> ProgressHandle | None:
        """Return the handle currently owning the progress line."""
        return self._active

    def create(
        self,
        initial_text: str,
        style: ProgressStyle = ProgressStyle.SPINNER,
    ) -> ProgressHandle:
        """Show a new progress line, replacing any previous one."""
        if self._active is not None:
            self.remove(self._active)
        handle = ProgressHandle(initial_text, style)
        self._active = handle
        self.log.show_progress(handle.render())
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _LOG.debug("No running event loop, progress will not animate")
        else:
            handle._timer = loop.create_task(self._animate(handle))
        return handle

    def update(self, handle: ProgressHandle, text: str) -> None:
        """Replace the text of *handle*; ignored once removed."""
        if handle.removed:
            return
        handle.display_text = text
        if handle is self._active:
            self.log.show_progress(handle.render())

    def remove(self, handle: ProgressHandle) -> None:
        """Stop the animation and clear the line; repeated calls do nothing."""
        if handle.removed:
            return
        handle.removed = True
        timer = handle._timer
        handle._timer = None
        if timer is not None and not timer.done():
            timer.cancel()
        if handle is self._active:
            self._active = None
            self.log.clear_progress()

    def _interval(self, style: ProgressStyle) -> float:
        if style is ProgressStyle.SPINNER:
            return self.delays.spinner_interval
        return self.delays.dots_interval

    async def _animate(self, handle: ProgressHandle) -> None:
        interval = self._interval(handle.style)
        while not handle.removed:
            await asyncio.sleep(interval)
            if handle.removed:
                return
            handle.frame += 1
            if handle is self._active:
                self.log.show_progress(handle.render())


__all__ = [
    "MAX_DOTS",
    "PROGRESS_PREFIX",
    "ProgressHandle",
    "ProgressReporter",
    "ProgressStyle",
    "SPINNER_FRAMES",
]
