"""Tests for the status service."""
from __future__ import annotations

import pytest

from chrootctl.cli import RuntimeContext
from chrootctl.console import LogLevel
from chrootctl.status import StatusSnapshot
from tests.fakes import FakeBackend, script_probes


@pytest.mark.asyncio
async def test_unknown_without_access(runtime: RuntimeContext, fake_backend: FakeBackend) -> None:
    snapshot = await runtime.status.refresh()

    assert snapshot.state == "unknown"
    assert fake_backend.calls == []


@pytest.mark.asyncio
async def test_not_found(runtime: RuntimeContext, fake_backend: FakeBackend) -> None:
    script_probes(fake_backend, exists=False)
    await runtime.session.confirm_privileged_access()

    snapshot = await runtime.status.refresh()

    assert snapshot.state == "not_found"
    assert not fake_backend.ran("chroot.sh status")


@pytest.mark.asyncio
async def test_stopped_sets_sparse_without_hotspot_probe(
    runtime: RuntimeContext, fake_backend: FakeBackend
) -> None:
    script_probes(fake_backend, sparse=True)
    await runtime.session.confirm_privileged_access()

    snapshot = await runtime.status.refresh()

    assert snapshot.state == "stopped"
    assert snapshot.sparse is True
    assert runtime.flags.get("sparse") is True
    assert not fake_backend.ran("ip link show")


@pytest.mark.asyncio
async def test_running_reconciles_hotspot(runtime: RuntimeContext, fake_backend: FakeBackend) -> None:
    """A hotspot flag left set after a reboot is corrected once."""
    script_probes(fake_backend, running=True)
    runtime.flags.set("hotspot", True)
    await runtime.session.confirm_privileged_access()

    first = await runtime.status.refresh()
    second = await runtime.status.refresh()

    assert first.state == second.state == "running"
    assert first.hotspot is False
    assert runtime.log.texts(LogLevel.WARN) == ["Hotspot state corrected: stopped"]
    assert runtime.status.last == second


@pytest.mark.asyncio
async def test_probe_failure_reports_unknown(
    runtime: RuntimeContext, fake_backend: FakeBackend
) -> None:
    fake_backend.on("chroot.sh status", stderr="permission denied", exit_code=126)
    await runtime.session.confirm_privileged_access()

    snapshot = await runtime.status.refresh()

    assert snapshot.state == "unknown"
    warnings = runtime.log.texts(LogLevel.WARN)
    assert len(warnings) == 1
    assert warnings[0].startswith("Could not refresh status:")


@pytest.mark.asyncio
async def test_schedule_debounces(runtime: RuntimeContext, fake_backend: FakeBackend) -> None:
    """Only the last of several scheduled refreshes runs."""
    await runtime.session.confirm_privileged_access()

    runtime.status.schedule(10)
    runtime.status.schedule(10)
    runtime.status.schedule(0)
    snapshot = await runtime.status.wait_idle()

    assert snapshot is not None
    assert snapshot.state == "stopped"
    assert sum("chroot.sh status" in call for call in fake_backend.calls) == 1


@pytest.mark.asyncio
async def test_wait_idle_without_pending(runtime: RuntimeContext) -> None:
    assert await runtime.status.wait_idle() is None


def test_schedule_without_loop_is_ignored(runtime: RuntimeContext) -> None:
    runtime.status.schedule(0)

    assert runtime.status.last is None


def test_snapshot_to_dict() -> None:
    assert StatusSnapshot(state="running", running=True).to_dict() == {
        "state": "running",
        "exists": False,
        "running": True,
        "sparse": False,
        "hotspot": False,
        "forwarding": False,
        "debug": False,
    }
