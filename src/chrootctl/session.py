"""Per-process session state and the single-flight guard.

A :class:`Session` is created once per chrootctl process. It records whether
privileged access was confirmed at startup and which operation, if any,
currently holds the guard. The guard never queues: a second request while
one operation is in flight is refused immediately. When a lock file is
configured the guard also refuses while another chrootctl process holds it.
"""
from __future__ import annotations

import logging

from .errors import (
    BackendUnavailableError,
    ChrootctlError,
    CommandFailedError,
    PrivilegeDeniedError,
)
from .executor import CommandExecutor
from .locking import OperationLock

_LOG = logging.getLogger(__name__)

ACCESS_PROBE_COMMAND = "echo test"


class Session:
    """Holds access confirmation and the active operation id."""

    def __init__(self, executor: CommandExecutor, *, lock: OperationLock | None = None) -> None:
        """Bind the session to *executor* and an optional cross-process *lock*."""
        self.executor = executor
        self.lock = lock
        self.privileged_access_confirmed = False
        self.access_error: ChrootctlError | None = None
        self.active_operation_id: str | None = None
        self._access_checked = False

    # ------------------------------------------------------------------
    # Privileged access
    # ------------------------------------------------------------------
    async def confirm_privileged_access(self, *, recheck: bool = False) -> bool:
        """Probe the backend once and cache the outcome.

        Later calls return the cached answer unless *recheck* is set.
        """
        if self._access_checked and not recheck:
            return self.privileged_access_confirmed

        self._access_checked = True
        self.privileged_access_confirmed = False
        self.access_error = None

        if not self.executor.available:
            self.access_error = BackendUnavailableError()
            return False

        try:
            output = await self.executor.execute(ACCESS_PROBE_COMMAND)
        except CommandFailedError as exc:
            _LOG.debug("Privileged access probe failed: %s", exc)
            self.access_error = PrivilegeDeniedError(f"Root access denied: {exc}")
            return False

        if "test" not in output:
            self.access_error = PrivilegeDeniedError(
                "Root access check returned an unexpected response."
            )
            return False

        self.privileged_access_confirmed = True
        return True

    def access_failure(self) -> ChrootctlError:
        """Return the cached access error (or a generic one if never probed)."""
        if self.access_error is not None:
            return self.access_error
        return PrivilegeDeniedError("Cannot execute: root access not available")

    # ------------------------------------------------------------------
    # Single-flight guard
    # ------------------------------------------------------------------
    def try_acquire(self, operation_id: str) -> bool:
        """Claim the guard for *operation_id*; ``False`` when already held."""
        if self.active_operation_id is not None:
            return False
        if self.lock is not None and not self.lock.try_acquire(operation_id):
            return False
        self.active_operation_id = operation_id
        return True

    def release(self) -> None:
        """Free the guard; releasing an unheld guard does nothing."""
        if self.active_operation_id is None:
            return
        self.active_operation_id = None
        if self.lock is not None:
            self.lock.release()

    def is_held(self) -> bool:
        """Return ``True`` while an operation holds the guard."""
        return self.active_operation_id is not None


__all__ = ["ACCESS_PROBE_COMMAND", "Session"]
