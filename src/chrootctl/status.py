"""Overall status refresh with debounced scheduling."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass

from .console import OutputLog
from .errors import ChrootctlError
from .probes import SystemProbes
from .reconcile import ReconciliationEngine
from .session import Session
from .state import FlagRegistry

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusSnapshot:
    """Result of one status refresh."""

    state: str
    exists: bool = False
    running: bool = False
    sparse: bool = False
    hotspot: bool = False
    forwarding: bool = False
    debug: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-ready representation."""
        return asdict(self)


class StatusService:
    """Probe the chroot, refresh flags and reconcile dependent services."""

    def __init__(
        self,
        *,
        session: Session,
        probes: SystemProbes,
        flags: FlagRegistry,
        reconciler: ReconciliationEngine,
        log: OutputLog,
    ) -> None:
        """Wire the service to its collaborators."""
        self.session = session
        self.probes = probes
        self.flags = flags
        self.reconciler = reconciler
        self.log = log
        self.last: StatusSnapshot | None = None
        self._pending: asyncio.Task[StatusSnapshot] | None = None

    async def refresh(self) -> StatusSnapshot:
        """Collect the current status.

        The hotspot flag is reconciled only while the chroot runs, since the
        hotspot cannot be up otherwise.
        """
        if not self.session.privileged_access_confirmed:
            snapshot = self._snapshot("unknown")
            self.last = snapshot
            return snapshot

        try:
            exists = await self.probes.chroot_exists()
            running = False
            if exists:
                self.flags.set("sparse", await self.probes.sparse_image_exists())
                running = await self.probes.chroot_running()
                if running:
                    await self.reconciler.reconcile("hotspot", self.probes.hotspot_active)
        except ChrootctlError as exc:
            _LOG.debug("Status refresh failed: %s", exc)
            self.log.warn(f"Could not refresh status: {exc}")
            snapshot = self._snapshot("unknown")
        else:
            state = "running" if running else ("stopped" if exists else "not_found")
            snapshot = self._snapshot(state, exists=exists, running=running)
        self.last = snapshot
        return snapshot

    def schedule(self, delay: float) -> None:
        """Refresh after *delay* seconds, replacing any pending request."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _LOG.debug("No running event loop, status refresh not scheduled")
            return
        pending = self._pending
        if pending is not None and not pending.done():
            pending.cancel()
        self._pending = loop.create_task(self._delayed_refresh(delay))

    async def wait_idle(self) -> StatusSnapshot | None:
        """Wait for the pending refresh, if any, and return its snapshot."""
        while self._pending is not None:
            pending = self._pending
            try:
                await pending
            except asyncio.CancelledError:
                if pending is self._pending:
                    raise
                continue
            if pending is self._pending:
                self._pending = None
        return self.last

    async def _delayed_refresh(self, delay: float) -> StatusSnapshot:
        await asyncio.sleep(delay)
        return await self.refresh()

    def _snapshot(self, state: str, *, exists: bool = False, running: bool = False) -> StatusSnapshot:
        flags = self.flags.snapshot()
        return StatusSnapshot(
            state=state,
            exists=exists,
            running=running,
            sparse=flags.get("sparse", False),
            hotspot=flags.get("hotspot", False),
            forwarding=flags.get("forwarding", False),
            debug=flags.get("debug", False),
        )


__all__ = ["StatusService", "StatusSnapshot"]
