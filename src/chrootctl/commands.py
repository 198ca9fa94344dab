"""Shell command lines for the scripts shipped inside the chroot directory.

All user-supplied values are quoted with :func:`shlex.quote`. Nothing here
runs a command; see :mod:`chrootctl.executor`.
"""
from __future__ import annotations

import shlex

from .config import ChrootPaths

QUIET = ">/dev/null 2>&1"


def _q(value: object) -> str:
    return shlex.quote(str(value))


class ScriptCommands:
    """Build command lines against the configured script paths."""

    def __init__(self, paths: ChrootPaths) -> None:
        """Use the script locations in *paths*."""
        self.paths = paths

    # chroot.sh ---------------------------------------------------------
    def chroot(self, action: str) -> str:
        """Lifecycle action without dropping into an interactive shell."""
        return f"sh {_q(self.paths.chroot_script)} {action} --no-shell"

    def chroot_quiet(self, action: str) -> str:
        """Lifecycle action with all output discarded."""
        return f"sh {_q(self.paths.chroot_script)} {action} {QUIET}"

    def backup(self, path: str) -> str:
        return f"sh {_q(self.paths.chroot_script)} backup --webui {_q(path)}"

    def restore(self, path: str) -> str:
        return f"sh {_q(self.paths.chroot_script)} restore --webui {_q(path)}"

    def resize(self, size_gb: int) -> str:
        return f"sh {_q(self.paths.chroot_script)} resize --webui {int(size_gb)}"

    def fstrim(self) -> str:
        return f"sh {_q(self.paths.chroot_script)} fstrim"

    def uninstall(self) -> str:
        return f"sh {_q(self.paths.chroot_script)} uninstall --webui"

    def list_users(self) -> str:
        return f"sh {_q(self.paths.chroot_script)} list-users"

    # helper scripts ----------------------------------------------------
    def migrate(self, size_gb: int) -> str:
        return f"sh {_q(self.paths.sparse_manager)} migrate {int(size_gb)}"

    def ota_update(self) -> str:
        return f"sh {_q(self.paths.ota_updater)}"

    def hotspot_start(
        self,
        *,
        interface: str,
        ssid: str,
        password: str,
        band: str,
        channel: str,
    ) -> str:
        return (
            f"sh {_q(self.paths.hotspot_script)} -o {_q(interface)} -s {_q(ssid)} "
            f"-p {_q(password)} -b {_q(band)} -c {_q(channel)} 2>&1"
        )

    def hotspot_stop(self) -> str:
        return f"sh {_q(self.paths.hotspot_script)} -k 2>&1"

    def forward_start(self, interface: str) -> str:
        return f"sh {_q(self.paths.forward_nat_script)} -i {_q(interface)} 2>&1"

    def forward_stop(self) -> str:
        return f"sh {_q(self.paths.forward_nat_script)} -k 2>&1"

    def list_interfaces(self, *, include_all: bool) -> str:
        """``list-all-iface`` for hotspot candidates, ``list-iface`` for forwarding."""
        verb = "list-all-iface" if include_all else "list-iface"
        return f"sh {_q(self.paths.forward_nat_script)} {verb}"

    # files -------------------------------------------------------------
    def boot_write(self, enabled: bool) -> str:
        boot_file = self.paths.boot_file
        return f"mkdir -p {_q(boot_file.parent)} && echo {1 if enabled else 0} > {_q(boot_file)}"

    def boot_read(self) -> str:
        return f"cat {_q(self.paths.boot_file)} 2>/dev/null || echo 0"

    def post_exec_read(self) -> str:
        return f"cat {_q(self.paths.post_exec_script)} 2>/dev/null || echo ''"

    def post_exec_write(self, encoded: str) -> str:
        """Decode a base64 payload into the post-exec script and make it executable."""
        script = _q(self.paths.post_exec_script)
        return f"echo {_q(encoded)} | base64 -d > {script} && chmod 755 {script}"

    def post_exec_clear(self) -> str:
        return f"echo '' > {_q(self.paths.post_exec_script)}"


__all__ = ["QUIET", "ScriptCommands"]
