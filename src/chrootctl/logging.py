"""Structured operation logging for chrootctl.

Each CLI invocation that touches the chroot produces one JSON line in
``<logs_dir>/operations.jsonl``. The record captures the command name, its
arguments, the target it acted on, how long the single-flight lock took to
obtain, and the result the command reported through :class:`OperationScope`.

The logger never raises on I/O problems: when the log directory or file
cannot be written it disables itself and the calling command carries on.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

_LOG = logging.getLogger(__name__)

OPERATIONS_LOG_NAME = "operations.jsonl"


class OperationScope:
    """Collects the result of a single logged operation."""

    def __init__(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Start timing an operation called *name*."""
        self.operation_id = uuid.uuid4().hex
        self.name = name
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.started_at = datetime.now(UTC)
        self._started = time.monotonic()
        self._lock_wait_ms: int | None = None
        self._result: dict[str, object] | None = None

    @property
    def has_result(self) -> bool:
        """Return ``True`` once success, warning or error was recorded."""
        return self._result is not None

    def set_lock_wait_ms(self, wait_ms: int) -> None:
        """Record how long the operation waited for its lock."""
        self._lock_wait_ms = int(wait_ms)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a successful outcome."""
        self._record(
            "success",
            message,
            changed=changed,
            warnings=warnings,
            errors=None,
            context=context,
            rc=0,
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
        rc: int = 0,
    ) -> None:
        """Record an outcome that completed with warnings."""
        self._record(
            "warning",
            message,
            changed=changed,
            warnings=warnings if warnings is not None else [message],
            errors=errors,
            context=context,
            rc=rc,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
        rc: int = 1,
    ) -> None:
        """Record a failed outcome."""
        self._record(
            "error",
            message,
            changed=0,
            warnings=None,
            errors=errors if errors is not None else [message],
            context=context,
            rc=rc,
        )

    def to_record(self) -> dict[str, object]:
        """Return the JSON-ready record for this operation."""
        duration_ms = int((time.monotonic() - self._started) * 1000)
        result = self._result or {
            "status": "error",
            "message": "Operation exited without reporting a result.",
            "errors": [],
            "rc": 1,
        }
        return {
            "id": self.operation_id,
            "timestamp": self.started_at.isoformat(),
            "command": self.name,
            "args": _sanitise(self.args),
            "target": _sanitise(self.target),
            "lock_wait_ms": self._lock_wait_ms,
            "duration_ms": duration_ms,
            "result": result,
        }

    def _record(
        self,
        status: str,
        message: str,
        *,
        changed: int,
        warnings: Iterable[str] | None,
        errors: Iterable[str] | None,
        context: Mapping[str, object] | None,
        rc: int,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
            "rc": rc,
        }
        if warnings is not None:
            result["warnings"] = [str(item) for item in warnings]
        if errors is not None:
            result["errors"] = [str(item) for item in errors]
        if context:
            result["context"] = _sanitise(context)
        self._result = result


class StructuredLogger:
    """Append operation records to ``operations.jsonl``."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare *log_dir*; the logger disables itself when that fails."""
        self.log_dir = Path(log_dir)
        self._operations_log_path = self.log_dir / OPERATIONS_LOG_NAME
        self._enabled = True
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _LOG.debug("Operation log disabled, cannot create %s: %s", self.log_dir, exc)
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Return whether records are still being written."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and write its record on exit."""
        scope = OperationScope(name, args=args, target=target)
        try:
            yield scope
        except BaseException as exc:
            if not scope.has_result:
                scope.error(str(exc) or exc.__class__.__name__, rc=_exit_code_of(exc))
            raise
        finally:
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as exc:
            _LOG.debug("Operation log disabled after write failure: %s", exc)
            self._enabled = False


def _exit_code_of(exc: BaseException) -> int:
    code = getattr(exc, "exit_code", None)
    if isinstance(code, int):
        return int(code)
    return 1


def _sanitise(value: object) -> object:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitise(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitise(item) for item in value]
    return str(value)


__all__ = ["OPERATIONS_LOG_NAME", "OperationScope", "StructuredLogger"]
