"""Error taxonomy shared by the executor, session and orchestrator.

Every error carries the :class:`~chrootctl.exit_codes.ExitCode` the CLI
reports when the error terminates a command, and a single human-readable
message suitable for the output log.
"""
from __future__ import annotations

from .exit_codes import ExitCode

NO_BACKEND_MESSAGE = (
    "No root execution method available (su binary or root shell not detected)."
)
GUARD_BUSY_MESSAGE = "Another command is already running. Please wait..."


class ChrootctlError(RuntimeError):
    """Base class for errors surfaced to the operator."""

    exit_code: ExitCode = ExitCode.PROVIDER


class BackendUnavailableError(ChrootctlError):
    """No privileged execution backend was detected for this session."""

    exit_code = ExitCode.ENVIRONMENT

    def __init__(self, message: str = NO_BACKEND_MESSAGE) -> None:
        """Initialise with the canonical no-backend message by default."""
        super().__init__(message)


class PrivilegeDeniedError(ChrootctlError):
    """A backend exists but elevating to root failed."""

    exit_code = ExitCode.ENVIRONMENT


class ValidationFailedError(ChrootctlError):
    """Caller input was rejected before any command ran."""

    exit_code = ExitCode.VALIDATION


class GuardBusyError(ChrootctlError):
    """Another operation currently holds the single-flight guard."""

    exit_code = ExitCode.BUSY

    def __init__(self, message: str = GUARD_BUSY_MESSAGE, *, holder: str | None = None) -> None:
        """Record the identifier of the operation holding the guard, if known."""
        super().__init__(message)
        self.holder = holder


class CommandFailedError(ChrootctlError):
    """A privileged command ran and reported failure."""

    exit_code = ExitCode.PROVIDER

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        step: str | None = None,
    ) -> None:
        """Store the backend exit status and the failing pre-step label."""
        super().__init__(message)
        self.command_exit_code = exit_code
        self.step = step


__all__ = [
    "BackendUnavailableError",
    "ChrootctlError",
    "CommandFailedError",
    "GUARD_BUSY_MESSAGE",
    "GuardBusyError",
    "NO_BACKEND_MESSAGE",
    "PrivilegeDeniedError",
    "ValidationFailedError",
]
