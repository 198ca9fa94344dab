"""Backend-agnostic asynchronous command execution.

:class:`CommandExecutor` hides which privileged backend is in use. Every
dispatch returns a :class:`CommandHandle` immediately; the command itself
runs as an asyncio task. Consumers either iterate ``handle.outputs()`` for
progress text, await ``handle.wait()`` for the terminal
:class:`~chrootctl.executor.base.CommandResult`, or both. Optional
:class:`~chrootctl.executor.base.ExecutionCallbacks` receive the same events.

Backend failures never escape as exceptions from ``wait()``: they become an
unsuccessful result whose ``error`` carries the exception text. The only
synchronous failure is :class:`~chrootctl.errors.BackendUnavailableError`
when no backend was detected.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

from ..errors import BackendUnavailableError, CommandFailedError
from .base import (
    ChunkKind,
    CommandResult,
    ExecutionBackend,
    ExecutionCallbacks,
    OutputChunk,
)

_LOG = logging.getLogger(__name__)

DEBUG_PREFIX = "LOGGING_ENABLED=1 "

_END = object()


@dataclass(frozen=True)
class RunningCommand:
    """Registry entry describing an in-flight command."""

    id: str
    command: str
    started_at: float
    duration: float


class CommandHandle:
    """Handle on one dispatched command."""

    def __init__(self, command_id: str, command: str) -> None:
        """Create the handle; the executor attaches the task afterwards."""
        self.id = command_id
        self.command = command
        self.started_at = time.time()
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._task: asyncio.Task[CommandResult] | None = None

    @property
    def done(self) -> bool:
        """Return ``True`` once the terminal result is available."""
        return self._task is not None and self._task.done()

    async def outputs(self) -> AsyncIterator[OutputChunk]:
        """Yield output chunks in order until the command completes.

        The stream is single-consumer: each chunk is delivered once.
        """
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            assert isinstance(item, OutputChunk)
            yield item

    async def wait(self) -> CommandResult:
        """Return the terminal result, waiting for the command if needed."""
        assert self._task is not None, "handle was not started"
        return await asyncio.shield(self._task)

    def _push(self, chunk: OutputChunk) -> None:
        self._queue.put_nowait(chunk)

    def _close(self) -> None:
        self._queue.put_nowait(_END)


class CommandExecutor:
    """Dispatch shell commands to the detected privileged backend."""

    def __init__(
        self,
        backend: ExecutionBackend | None,
        *,
        debug_enabled: Callable[[], bool] | None = None,
    ) -> None:
        """Wrap *backend*; *debug_enabled* is consulted on every dispatch."""
        self.backend = backend
        self._debug_enabled = debug_enabled
        self._running: dict[str, CommandHandle] = {}

    @property
    def available(self) -> bool:
        """Return whether a backend was detected."""
        return self.backend is not None

    def execute_async(
        self,
        command: str,
        *,
        privileged: bool = True,
        callbacks: ExecutionCallbacks | None = None,
    ) -> CommandHandle:
        """Start *command* and return its handle without waiting.

        Must be called from a running event loop.
        """
        backend = self.backend
        if backend is None:
            raise BackendUnavailableError()

        full_command = command
        if privileged and self._debug_enabled is not None and self._debug_enabled():
            full_command = f"{DEBUG_PREFIX}{command}"

        handle = CommandHandle(f"cmd_{uuid.uuid4().hex[:12]}", full_command)
        self._running[handle.id] = handle
        loop = asyncio.get_running_loop()
        handle._task = loop.create_task(
            self._run(backend, handle, command, callbacks or ExecutionCallbacks())
        )
        return handle

    async def execute(self, command: str, *, privileged: bool = True) -> str:
        """Run *command* to completion and return its output.

        Raises :class:`~chrootctl.errors.CommandFailedError` on failure.
        """
        handle = self.execute_async(command, privileged=privileged)
        result = await handle.wait()
        if result.success:
            return result.output or ""
        raise CommandFailedError(result.error or "Command failed", exit_code=result.exit_code)

    def is_running(self, command_id: str) -> bool:
        """Return ``True`` while *command_id* has not completed."""
        return command_id in self._running

    def running_commands(self) -> list[RunningCommand]:
        """Describe every in-flight command."""
        now = time.time()
        return [
            RunningCommand(
                id=handle.id,
                command=handle.command,
                started_at=handle.started_at,
                duration=now - handle.started_at,
            )
            for handle in self._running.values()
        ]

    async def _run(
        self,
        backend: ExecutionBackend,
        handle: CommandHandle,
        display_command: str,
        callbacks: ExecutionCallbacks,
    ) -> CommandResult:
        result = CommandResult(success=False, error="Command did not complete")
        try:
            await self._emit(handle, callbacks, ChunkKind.NOTICE, f"[Executing: {display_command}]")
            pending: list[asyncio.Future[object]] = []

            def on_line(line: str) -> None:
                handle._push(OutputChunk(ChunkKind.STDOUT, line))
                if callbacks.on_output is not None:
                    outcome = callbacks.on_output(line)
                    if inspect.isawaitable(outcome):
                        pending.append(asyncio.ensure_future(outcome))

            try:
                raw = await backend.run(handle.command, on_line)
                if pending:
                    await asyncio.gather(*pending)
            except Exception as exc:  # backend crashed: report as a failed result
                _LOG.debug("Backend %s raised for %s: %s", backend.name, handle.id, exc)
                message = str(exc) or exc.__class__.__name__
                await self._emit(handle, callbacks, ChunkKind.STDERR, message)
                result = CommandResult(success=False, error=message)
            else:
                if not backend.streams and raw.stdout:
                    await self._emit(handle, callbacks, ChunkKind.STDOUT, raw.stdout)
                if raw.exit_code == 0:
                    result = CommandResult(success=True, exit_code=0, output=raw.stdout)
                else:
                    stderr = raw.stderr.strip()
                    if stderr:
                        await self._emit(handle, callbacks, ChunkKind.STDERR, stderr)
                    result = CommandResult(
                        success=False,
                        exit_code=raw.exit_code,
                        output=raw.stdout,
                        error=stderr or f"exit:{raw.exit_code}",
                    )
            if callbacks.on_complete is not None:
                await _call(callbacks.on_complete, result)
            return result
        finally:
            self._running.pop(handle.id, None)
            handle._close()

    async def _emit(
        self,
        handle: CommandHandle,
        callbacks: ExecutionCallbacks,
        kind: ChunkKind,
        text: str,
    ) -> None:
        handle._push(OutputChunk(kind, text))
        hook = callbacks.on_error if kind is ChunkKind.STDERR else callbacks.on_output
        if hook is not None:
            await _call(hook, text)


async def _call(hook: Callable[..., object], *args: object) -> None:
    outcome = hook(*args)
    if inspect.isawaitable(outcome):
        await outcome


__all__ = ["CommandExecutor", "CommandHandle", "DEBUG_PREFIX", "RunningCommand"]
