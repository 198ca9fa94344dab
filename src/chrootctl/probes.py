"""Cheap, side-effect-free checks of the live system.

Every probe runs one short command through the executor and interprets its
output. Probes never take the single-flight guard. A probe whose command
fails raises :class:`~chrootctl.errors.CommandFailedError`; callers decide
whether that means "unknown" (reconciliation) or "skip" (pre-steps).
"""
from __future__ import annotations

import re
import shlex

from .config import AppConfig
from .errors import CommandFailedError
from .executor import CommandExecutor

RUNNING_STATUS_PATTERN = re.compile(r"Status:\s*RUNNING", re.IGNORECASE)

EXISTS = "exists"
NOT_EXISTS = "not_exists"


def _quote(value: object) -> str:
    return shlex.quote(str(value))


class SystemProbes:
    """Probes for the chroot, its image and the network services."""

    def __init__(self, executor: CommandExecutor, config: AppConfig) -> None:
        """Run probe commands through *executor* using paths from *config*."""
        self.executor = executor
        self.config = config

    async def _exists(self, command: str) -> bool:
        output = await self.executor.execute(command)
        return output.strip() == EXISTS

    async def interface_exists(self, interface: str | None = None) -> bool:
        """Return whether the hotspot interface (``ap0`` by default) is up."""
        iface = _quote(interface or self.config.hotspot.interface)
        return await self._exists(
            f'ip link show {iface} 2>/dev/null | grep -q {iface} && echo "{EXISTS}" || echo "{NOT_EXISTS}"'
        )

    async def hotspot_active(self) -> bool:
        """Return whether the hotspot is running (its interface exists)."""
        return await self.interface_exists()

    async def forwarding_active(self) -> bool:
        """Return whether forward NAT left its state marker behind."""
        marker = _quote(self.config.paths.forward_nat_state)
        return await self._exists(f'[ -f {marker} ] && echo "{EXISTS}" || echo "{NOT_EXISTS}"')

    async def chroot_exists(self) -> bool:
        """Return whether the chroot root filesystem directory exists."""
        rootfs = _quote(self.config.paths.rootfs)
        return await self._exists(f'test -d {rootfs} && echo "{EXISTS}" || echo "{NOT_EXISTS}"')

    async def sparse_image_exists(self) -> bool:
        """Return whether the root filesystem lives in a sparse image."""
        image = _quote(self.config.paths.sparse_image)
        return await self._exists(f'[ -f {image} ] && echo "{EXISTS}" || echo "{NOT_EXISTS}"')

    async def chroot_running(self) -> bool:
        """Return whether ``chroot.sh status`` reports the chroot as running."""
        script = _quote(self.config.paths.chroot_script)
        handle = self.executor.execute_async(f"sh {script} status")
        result = await handle.wait()
        # A stopped chroot may exit non-zero; only a silent failure is an error.
        if not result.success and not result.output.strip():
            raise CommandFailedError(result.error or "Command failed", exit_code=result.exit_code)
        return bool(RUNNING_STATUS_PATTERN.search(result.output))


__all__ = ["EXISTS", "NOT_EXISTS", "RUNNING_STATUS_PATTERN", "SystemProbes"]
