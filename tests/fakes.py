"""Test doubles shared across the suite."""
from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

from chrootctl.executor import BackendResult, ExecutionBackend
from chrootctl.executor.base import LineCallback


@dataclass
class Reply:
    """Scripted response for commands containing a fragment."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    gate: asyncio.Event | None = None
    raises: Exception | None = None
    after: Callable[[], None] | None = None


class FakeBackend(ExecutionBackend):
    """Backend answering from scripted replies and recording every command.

    Replies are matched by substring; the most recently registered match wins.
    """

    name = "fake"

    def __init__(self, *, streams: bool = True) -> None:
        self.streams = streams
        self.calls: list[str] = []
        self._rules: list[tuple[str, Reply]] = []

    def on(self, fragment: str, **reply: object) -> Reply:
        rule = Reply(**reply)  # type: ignore[arg-type]
        self._rules.insert(0, (fragment, rule))
        return rule

    def ran(self, fragment: str) -> bool:
        return any(fragment in call for call in self.calls)

    async def run(self, command: str, on_line: LineCallback) -> BackendResult:
        self.calls.append(command)
        reply = next((rule for fragment, rule in self._rules if fragment in command), Reply())
        if reply.gate is not None:
            await reply.gate.wait()
        if reply.after is not None:
            reply.after()
        if reply.raises is not None:
            raise reply.raises
        if self.streams:
            for line in reply.stdout.splitlines():
                on_line(line)
        return BackendResult(exit_code=reply.exit_code, stdout=reply.stdout, stderr=reply.stderr)


def script_probes(
    backend: FakeBackend,
    *,
    running: bool = False,
    sparse: bool = False,
    hotspot: bool = False,
    forwarding: bool = False,
    exists: bool = True,
) -> None:
    """Register probe replies describing the device state."""
    backend.on("echo test", stdout="test\n")
    backend.on("ip link show", stdout="exists\n" if hotspot else "not_exists\n")
    backend.on("forward-nat.state", stdout="exists\n" if forwarding else "not_exists\n")
    backend.on("test -d", stdout="exists\n" if exists else "not_exists\n")
    backend.on("rootfs.img", stdout="exists\n" if sparse else "not_exists\n")
    backend.on(
        "chroot.sh status",
        stdout="Status: RUNNING\n" if running else "Status: STOPPED\n",
        exit_code=0 if running else 1,
    )


