"""Bring persisted flags back in line with what the system reports."""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

from .console import OutputLog
from .state import FlagRegistry

_LOG = logging.getLogger(__name__)

Probe = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class ReconcileResult:
    """Whether a flag was corrected and the value it now holds.

    ``new_value`` is ``None`` when the probe failed and the flag was left
    untouched.
    """

    changed: bool
    new_value: bool | None


class ReconciliationEngine:
    """Compare flags against probes and persist the probe's answer."""

    def __init__(self, flags: FlagRegistry, log: OutputLog) -> None:
        """Write corrections to *flags* and notices to *log*."""
        self.flags = flags
        self.log = log

    async def reconcile(self, flag_name: str, probe: Probe) -> ReconcileResult:
        """Correct *flag_name* if *probe* disagrees with its stored value."""
        try:
            actual = bool(await probe())
        except Exception as exc:  # unknown state: leave the flag alone
            _LOG.debug("Probe for %s failed, keeping stored value: %s", flag_name, exc)
            return ReconcileResult(changed=False, new_value=None)

        if self.flags.get(flag_name) == actual:
            return ReconcileResult(changed=False, new_value=actual)

        self.flags.set(flag_name, actual)
        label = self.flags.flag(flag_name).label
        notice = f"{label} state corrected: {'running' if actual else 'stopped'}"
        if actual:
            self.log.info(notice)
        else:
            self.log.warn(notice)
        return ReconcileResult(changed=True, new_value=actual)

    async def reconcile_all(self, probes: Mapping[str, Probe]) -> dict[str, ReconcileResult]:
        """Reconcile each flag in *probes* in order."""
        results: dict[str, ReconcileResult] = {}
        for name, probe in probes.items():
            results[name] = await self.reconcile(name, probe)
        return results


__all__ = ["Probe", "ReconcileResult", "ReconciliationEngine"]
