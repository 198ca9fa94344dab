"""Cross-process lock file backing the single-flight guard.

Only one chrootctl process may drive a privileged operation at a time. The
lock lives in the runtime directory (``<runtime_dir>/chrootctl.lock``) and is
taken with a non-blocking ``fcntl.flock``; the guard never queues, so a held
lock simply reports failure. While held, the file carries JSON metadata
describing the holder so ``chrootctl status`` and operators can see who owns
it. The file itself is left behind after release for diagnostics.
"""
from __future__ import annotations

import fcntl
import json
import logging
import os
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import IO

from .errors import ChrootctlError
from .exit_codes import ExitCode

_LOG = logging.getLogger(__name__)

DEFAULT_LOCK_NAME = "chrootctl.lock"


class LockError(ChrootctlError):
    """Raised when the lock file cannot be opened or written."""

    exit_code = ExitCode.ENVIRONMENT


class OperationLock:
    """Non-blocking exclusive lock on ``<runtime_dir>/<name>``."""

    def __init__(self, runtime_dir: Path, name: str = DEFAULT_LOCK_NAME) -> None:
        """Bind the lock to *runtime_dir*; nothing is created until acquired."""
        self.runtime_dir = Path(runtime_dir)
        self.path = self.runtime_dir / name
        self._handle: IO[str] | None = None
        self.wait_ms = 0

    @property
    def held(self) -> bool:
        """Return ``True`` while this instance owns the lock."""
        return self._handle is not None

    def try_acquire(self, operation_id: str) -> bool:
        """Take the lock for *operation_id*, returning ``False`` if it is busy."""
        if self._handle is not None:
            return False
        started = time.monotonic()
        try:
            self.runtime_dir.mkdir(parents=True, exist_ok=True)
            handle = self.path.open("a+", encoding="utf-8")
        except OSError as exc:
            raise LockError(f"Unable to open lock file {self.path}: {exc}") from exc

        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.close()
            return False
        except OSError as exc:
            handle.close()
            raise LockError(f"Unable to lock {self.path}: {exc}") from exc

        self.wait_ms = int((time.monotonic() - started) * 1000)
        metadata = {
            "pid": os.getpid(),
            "path": str(self.path),
            "operation_id": operation_id,
            "acquired_at": datetime.now(UTC).isoformat(),
        }
        try:
            handle.seek(0)
            handle.truncate()
            handle.write(json.dumps(metadata))
            handle.flush()
        except OSError as exc:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            handle.close()
            raise LockError(f"Unable to write lock metadata to {self.path}: {exc}") from exc

        self._handle = handle
        return True

    def release(self) -> None:
        """Drop the lock; calling it when not held does nothing."""
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()

    def holder(self) -> dict[str, object] | None:
        """Return the metadata last written to the lock file, if readable."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            _LOG.debug("Unable to read lock metadata %s: %s", self.path, exc)
            return None
        try:
            data = json.loads(raw) if raw.strip() else None
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None


__all__ = ["DEFAULT_LOCK_NAME", "LockError", "OperationLock"]
