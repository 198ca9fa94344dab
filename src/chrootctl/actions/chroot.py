"""Chroot lifecycle, storage and maintenance flows."""
from __future__ import annotations

import asyncio
import base64
import logging

from ..errors import ValidationFailedError
from ..orchestrator import ActionOrchestrator, ActionRun, ActionSpec, Operation
from ..progress import ProgressStyle

_LOG = logging.getLogger(__name__)

LIFECYCLE_ACTIONS = ("start", "stop", "restart")
SPARSE_SIZES_GB = (4, 8, 16, 32, 64, 128, 256, 512)
STATE_FLAGS = ("hotspot", "sparse")

_PROGRESS_VERBS = {"start": "Starting", "stop": "Stopping", "restart": "Restarting"}


def validate_size(size_gb: int) -> str | None:
    """Return an error message unless *size_gb* is an offered sparse image size."""
    if size_gb not in SPARSE_SIZES_GB:
        sizes = ", ".join(str(size) for size in SPARSE_SIZES_GB)
        return f"Size must be one of {sizes} GB"
    return None


class ChrootActions:
    """Named flows operating on the chroot itself."""

    def __init__(self, orchestrator: ActionOrchestrator) -> None:
        """Run every flow through *orchestrator*."""
        self.orchestrator = orchestrator
        self.commands = orchestrator.commands

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def lifecycle_spec(self, action: str) -> ActionSpec:
        """Build the action for ``start``, ``stop`` or ``restart``."""
        if action not in LIFECYCLE_ACTIONS:
            raise ValueError(f"Unknown lifecycle action: {action}")
        pre_steps = []
        if action != "start":
            pre_steps = self.orchestrator.ensure_stopped(network=True, chroot=False)
        return ActionSpec(
            name=f"chroot-{action}",
            title=f"{_PROGRESS_VERBS[action]} chroot",
            banner=f"Starting {action}",
            command=self.commands.chroot(action),
            progress_text=f"{_PROGRESS_VERBS[action]} chroot",
            progress_style=ProgressStyle.DOTS,
            pre_steps=pre_steps,
            success_message=f"✓ {action} completed successfully",
            failure_message=f"✗ {action} failed",
            reconcile_flags=STATE_FLAGS,
            log_args={"action": action},
        )

    async def start(self) -> Operation:
        return await self.orchestrator.run(self.lifecycle_spec("start"))

    async def stop(self) -> Operation:
        return await self.orchestrator.run(self.lifecycle_spec("stop"))

    async def restart(self) -> Operation:
        return await self.orchestrator.run(self.lifecycle_spec("restart"))

    # ------------------------------------------------------------------
    # Backup / restore
    # ------------------------------------------------------------------
    async def backup(self, path: str) -> Operation:
        """Archive the chroot to *path*, stopping it and its services first."""
        path = path.strip()
        spec = ActionSpec(
            name="chroot-backup",
            title="Backup",
            banner="Starting Chroot Backup",
            command=self.commands.backup(path),
            progress_text="Creating backup",
            progress_style=ProgressStyle.DOTS,
            validator=lambda: None if path else "A backup path is required",
            pre_steps=self.orchestrator.ensure_stopped(),
            success_message="✓ Backup completed successfully",
            success_lines=(f"Saved to: {path}", "━━━ Backup Complete ━━━"),
            failure_message="✗ Backup failed",
            reconcile_flags=STATE_FLAGS,
            log_args={"path": path},
        )
        return await self.orchestrator.run(spec)

    async def restore(self, path: str) -> Operation:
        """Replace the chroot with the archive at *path*."""
        path = path.strip()
        spec = ActionSpec(
            name="chroot-restore",
            title="Restore",
            banner="Starting Chroot Restore",
            command=self.commands.restore(path),
            progress_text="Restoring chroot",
            progress_style=ProgressStyle.DOTS,
            validator=lambda: None if path else "A backup path is required",
            pre_steps=self.orchestrator.ensure_stopped(),
            success_message="✓ Restore completed successfully",
            success_lines=("The chroot environment has been restored", "━━━ Restore Complete ━━━"),
            failure_message="✗ Restore failed",
            reconcile_flags=STATE_FLAGS,
            refresh_delay_factor=2,
            log_args={"path": path},
        )
        return await self.orchestrator.run(spec)

    # ------------------------------------------------------------------
    # Sparse image
    # ------------------------------------------------------------------
    async def migrate(self, size_gb: int) -> Operation:
        """Convert the root filesystem into a sparse image of *size_gb*."""
        spec = ActionSpec(
            name="sparse-migrate",
            title="Sparse image migration",
            banner="Starting Sparse Image Migration",
            command=self.commands.migrate(size_gb),
            progress_text="Migrating",
            progress_style=ProgressStyle.DOTS,
            validator=lambda: validate_size(size_gb),
            pre_steps=self.orchestrator.ensure_stopped(),
            on_success={"sparse": True},
            success_message="✅ Sparse image migration completed successfully!",
            success_lines=(
                "Your rootfs has been converted to a sparse image.",
                "━━━ Migration Complete ━━━",
            ),
            failure_message="✗ Sparse image migration failed!",
            failure_lines=("Check the logs above for details.", "━━━ Migration Failed ━━━"),
            reconcile_flags=STATE_FLAGS,
            refresh_delay_factor=2,
            log_args={"size_gb": size_gb},
        )
        return await self.orchestrator.run(spec)

    async def resize(self, size_gb: int) -> Operation:
        """Resize the sparse image to *size_gb*."""

        def validate() -> str | None:
            if not self.orchestrator.flags.get("sparse"):
                return "Sparse image not detected - cannot resize"
            return validate_size(size_gb)

        spec = ActionSpec(
            name="sparse-resize",
            title="Sparse image resize",
            banner=f"Resizing Sparse Image to {size_gb}GB",
            command=self.commands.resize(size_gb),
            progress_text="Preparing resize operation",
            progress_style=ProgressStyle.DOTS,
            validator=validate,
            pre_steps=self.orchestrator.ensure_stopped(),
            success_message="✅ Sparse image resized successfully",
            success_lines=(f"New size: {size_gb}GB", "━━━ Resize Complete ━━━"),
            failure_message="✗ Sparse image resize failed",
            failure_lines=("Check the logs above for details", "━━━ Resize Failed ━━━"),
            reconcile_flags=STATE_FLAGS,
            log_args={"size_gb": size_gb},
        )
        return await self.orchestrator.run(spec)

    async def trim(self) -> Operation:
        """Run ``fstrim`` on the sparse image."""
        spec = ActionSpec(
            name="sparse-trim",
            title="Sparse image trim",
            banner="Trimming Sparse Image",
            command=self.commands.fstrim(),
            progress_text="Trimming sparse image",
            progress_style=ProgressStyle.DOTS,
            validator=lambda: (
                None
                if self.orchestrator.flags.get("sparse")
                else "Sparse image not detected - cannot trim"
            ),
            success_message="✓ Sparse image trimmed successfully",
            success_lines=("Space may be reclaimed after a few minutes", "━━━ Trim Complete ━━━"),
            failure_message="✗ Sparse image trim failed",
            failure_lines=("This may be expected on some Android kernels",),
            reconcile_flags=("sparse",),
        )
        return await self.orchestrator.run(spec)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------
    async def uninstall(self) -> Operation:
        """Remove the chroot and all of its data."""
        spec = ActionSpec(
            name="chroot-uninstall",
            title="Uninstallation",
            banner="Starting Uninstallation",
            command=self.commands.uninstall(),
            progress_text="Uninstalling chroot",
            progress_style=ProgressStyle.DOTS,
            pre_steps=self.orchestrator.ensure_stopped(),
            success_message="✅ Chroot uninstalled successfully!",
            success_lines=("All chroot data has been removed.", "━━━ Uninstallation Complete ━━━"),
            failure_message="✗ Uninstallation failed",
            failure_lines=("Check the logs above for details.",),
            reconcile_flags=STATE_FLAGS,
            refresh_delay_factor=2,
        )
        return await self.orchestrator.run(spec)

    async def update(self) -> Operation:
        """Apply OTA updates, then restart the chroot."""
        spec = ActionSpec(
            name="chroot-update",
            title="Chroot update",
            banner="Starting Chroot Update",
            command=self.commands.ota_update(),
            progress_text="Updating chroot",
            progress_style=ProgressStyle.DOTS,
            success_message="✓ Chroot update completed successfully",
            failure_message="✗ Chroot update failed",
            after_success=self._restart_after_update,
            reconcile_flags=STATE_FLAGS,
        )
        return await self.orchestrator.run(spec)

    async def _restart_after_update(self, run: ActionRun) -> None:
        await asyncio.sleep(self.orchestrator.config.delays.ui_update)
        run.restart_progress("Restarting chroot", ProgressStyle.DOTS)
        result = await run.run_command(self.commands.chroot_quiet("restart"), log_output=False)
        if run.progress is not None:
            self.orchestrator.progress.remove(run.progress)
        if result.success:
            run.log.success("✓ Chroot restarted successfully")
        else:
            warning = "⚠ Chroot restart failed, but update was successful"
            run.log.warn(warning)
            run.operation.warnings.append(warning)
        run.log.success("━━━ Update Complete ━━━")

    # ------------------------------------------------------------------
    # Settings files (no guard: single short commands)
    # ------------------------------------------------------------------
    def _require_access(self) -> None:
        session = self.orchestrator.session
        if not session.privileged_access_confirmed:
            raise session.access_failure()

    async def set_boot(self, enabled: bool) -> None:
        """Enable or disable starting the chroot at boot."""
        self._require_access()
        await self.orchestrator.executor.execute(self.commands.boot_write(enabled))
        self.orchestrator.log.success(f"Run-at-boot {'enabled' if enabled else 'disabled'}")

    async def read_boot(self) -> bool:
        """Return whether the chroot starts at boot."""
        self._require_access()
        output = await self.orchestrator.executor.execute(self.commands.boot_read())
        return output.strip() == "1"

    async def read_post_exec(self) -> str:
        """Return the post-exec script contents."""
        self._require_access()
        output = await self.orchestrator.executor.execute(self.commands.post_exec_read())
        return output.strip()

    async def save_post_exec(self, script: str) -> None:
        """Store *script* as the post-exec script (transferred base64-encoded)."""
        self._require_access()
        body = script.strip()
        if not body:
            raise ValidationFailedError("Post-exec script is empty; use clear instead")
        encoded = base64.b64encode(body.encode("utf-8")).decode("ascii")
        await self.orchestrator.executor.execute(self.commands.post_exec_write(encoded))
        self.orchestrator.log.success("Post-exec script saved successfully")

    async def clear_post_exec(self) -> None:
        """Empty the post-exec script."""
        self._require_access()
        await self.orchestrator.executor.execute(self.commands.post_exec_clear())
        self.orchestrator.log.info("Post-exec script cleared successfully")

    async def list_users(self) -> list[str]:
        """Return the regular users defined inside the chroot."""
        self._require_access()
        output = await self.orchestrator.executor.execute(self.commands.list_users())
        return [user.strip() for user in output.strip().split(",") if user.strip()]


__all__ = ["ChrootActions", "LIFECYCLE_ACTIONS", "SPARSE_SIZES_GB", "validate_size"]
