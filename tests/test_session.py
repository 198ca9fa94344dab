"""Tests for privileged-access confirmation and the single-flight guard."""
from __future__ import annotations

from pathlib import Path

import pytest

from chrootctl.errors import BackendUnavailableError, PrivilegeDeniedError
from chrootctl.executor import CommandExecutor
from chrootctl.locking import OperationLock
from chrootctl.session import Session
from tests.fakes import FakeBackend


@pytest.mark.asyncio
async def test_access_confirmed_and_cached() -> None:
    backend = FakeBackend()
    backend.on("echo test", stdout="test\n")
    session = Session(CommandExecutor(backend))

    assert await session.confirm_privileged_access() is True
    assert await session.confirm_privileged_access() is True
    assert backend.calls == ["echo test"]

    await session.confirm_privileged_access(recheck=True)
    assert len(backend.calls) == 2


@pytest.mark.asyncio
async def test_access_without_backend() -> None:
    session = Session(CommandExecutor(None))

    assert await session.confirm_privileged_access() is False
    assert isinstance(session.access_failure(), BackendUnavailableError)


@pytest.mark.asyncio
async def test_access_denied_by_su() -> None:
    backend = FakeBackend()
    backend.on("echo test", stderr="Permission denied", exit_code=1)
    session = Session(CommandExecutor(backend))

    assert await session.confirm_privileged_access() is False
    error = session.access_failure()
    assert isinstance(error, PrivilegeDeniedError)
    assert "Permission denied" in str(error)


@pytest.mark.asyncio
async def test_access_unexpected_output() -> None:
    backend = FakeBackend()
    backend.on("echo test", stdout="nope\n")
    session = Session(CommandExecutor(backend))

    assert await session.confirm_privileged_access() is False
    assert isinstance(session.access_failure(), PrivilegeDeniedError)


def test_access_failure_before_probe() -> None:
    session = Session(CommandExecutor(None))
    assert str(session.access_failure()) == "Cannot execute: root access not available"


def test_guard_is_single_flight() -> None:
    session = Session(CommandExecutor(None))

    assert session.try_acquire("op-1") is True
    assert session.is_held() is True
    assert session.active_operation_id == "op-1"
    assert session.try_acquire("op-2") is False
    assert session.active_operation_id == "op-1"

    session.release()
    session.release()
    assert session.is_held() is False
    assert session.try_acquire("op-2") is True


def test_guard_respects_other_process_lock(tmp_path: Path) -> None:
    """A lock held elsewhere refuses the guard without changing session state."""
    other = OperationLock(tmp_path / "run")
    assert other.try_acquire("elsewhere")
    session = Session(CommandExecutor(None), lock=OperationLock(tmp_path / "run"))
    try:
        assert session.try_acquire("op-1") is False
        assert session.is_held() is False
    finally:
        other.release()

    assert session.try_acquire("op-1") is True
    assert session.lock is not None and session.lock.held
    session.release()
    assert session.lock.held is False
