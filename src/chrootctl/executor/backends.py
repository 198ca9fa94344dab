"""Concrete privileged-execution backends and backend detection."""
from __future__ import annotations

import asyncio
import logging
import os
import shutil

from ..config import BackendConfig
from .base import BackendResult, ExecutionBackend, LineCallback

_LOG = logging.getLogger(__name__)


def _decode(raw: bytes | None) -> str:
    return (raw or b"").decode("utf-8", errors="replace")


class SuBinaryBackend(ExecutionBackend):
    """Run commands through ``su -c``.

    Output is collected and handed back once the command exits, matching how
    root managers report exit code, stdout and stderr in one callback.
    """

    name = "su"
    streams = False

    def __init__(self, su_bin: str = "su") -> None:
        """Use *su_bin* (a name on ``PATH`` or an absolute path)."""
        self.su_bin = su_bin

    async def run(self, command: str, on_line: LineCallback) -> BackendResult:
        """Run *command* via ``su -c`` and wait for it to finish."""
        process = await asyncio.create_subprocess_exec(
            self.su_bin,
            "-c",
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        return BackendResult(
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=_decode(stdout),
            stderr=_decode(stderr),
        )


class RootShellBackend(ExecutionBackend):
    """Run commands with ``sh -c`` when the process is already root."""

    name = "root-shell"
    streams = True

    def __init__(self, shell: str = "sh") -> None:
        """Use *shell* as the command interpreter."""
        self.shell = shell

    async def run(self, command: str, on_line: LineCallback) -> BackendResult:
        """Run *command*, reporting stdout lines as they are printed."""
        process = await asyncio.create_subprocess_exec(
            self.shell,
            "-c",
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        assert process.stdout is not None
        assert process.stderr is not None
        stderr_task = asyncio.ensure_future(process.stderr.read())
        lines: list[str] = []
        async for raw in process.stdout:
            line = _decode(raw).rstrip("\r\n")
            lines.append(line)
            on_line(line)
        stderr = await stderr_task
        returncode = await process.wait()
        return BackendResult(
            exit_code=returncode,
            stdout="\n".join(lines),
            stderr=_decode(stderr),
        )


def detect_backend(config: BackendConfig) -> ExecutionBackend | None:
    """Return the backend selected by *config*, or ``None`` when unavailable."""
    method = config.method
    if method == "none":
        return None

    is_root = os.geteuid() == 0
    if method in {"auto", "root-shell"} and is_root:
        if shutil.which(config.shell):
            _LOG.debug("Using root shell backend (%s)", config.shell)
            return RootShellBackend(config.shell)
        _LOG.debug("Root shell %s not found on PATH", config.shell)
    if method in {"auto", "su"}:
        if shutil.which(config.su_bin):
            _LOG.debug("Using su backend (%s)", config.su_bin)
            return SuBinaryBackend(config.su_bin)
        _LOG.debug("su binary %s not found on PATH", config.su_bin)
    return None


__all__ = ["RootShellBackend", "SuBinaryBackend", "detect_backend"]
