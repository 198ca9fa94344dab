"""Typer-powered command line for ``chrootctl``.

Each command builds (or reuses) a :class:`RuntimeContext`, confirms
privileged access once, and then either runs a guarded action through the
:class:`~chrootctl.orchestrator.ActionOrchestrator` or a short settings
command directly through the executor.
"""
from __future__ import annotations

import asyncio
import json
import sys
import textwrap
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .actions import BAND_CHANNELS, SPARSE_SIZES_GB, ChrootActions, HotspotSettings, NetworkActions
from .config import ALLOWED_BACKEND_METHODS, AppConfig, ConfigError, load_config
from .console import OutputLog
from .errors import ChrootctlError
from .executor import CommandExecutor, detect_backend
from .exit_codes import ExitCode
from .locking import OperationLock
from .logging import OperationScope, StructuredLogger
from .orchestrator import ActionOrchestrator, Operation
from .probes import SystemProbes
from .progress import ProgressReporter
from .reconcile import ReconciliationEngine
from .session import Session
from .state import FlagRegistry, SettingsStore
from .status import StatusService, StatusSnapshot

console = Console()

T = TypeVar("T")

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to chrootctl's YAML config file.",
)
BACKEND_OPTION = typer.Option(
    None,
    "--backend",
    help="Override the root execution method (auto|su|root-shell|none).",
)
YES_OPTION = typer.Option(
    False,
    "--yes",
    "-y",
    help="Do not ask for confirmation.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)
REFRESH_OPTION = typer.Option(
    False,
    "--refresh",
    help="Query the device instead of using the cached list.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Manage an Ubuntu chroot on a rooted Android device.

        Lifecycle, backup and restore, sparse image maintenance, Wi-Fi
        hotspot and forward NAT are all driven through root-privileged shell
        scripts living inside the chroot directory.
        """
    ).strip(),
)
sparse_app = typer.Typer(help="Migrate, resize and trim the sparse root image.")
hotspot_app = typer.Typer(help="Start and stop the Wi-Fi hotspot.")
forward_app = typer.Typer(help="Route chroot traffic through a device interface.")
post_exec_app = typer.Typer(help="Inspect and edit the post-exec script.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(sparse_app, name="sparse")
app.add_typer(hotspot_app, name="hotspot")
app.add_typer(forward_app, name="forward")
app.add_typer(post_exec_app, name="post-exec")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    store: SettingsStore
    flags: FlagRegistry
    executor: CommandExecutor
    session: Session
    log: OutputLog
    progress: ProgressReporter
    probes: SystemProbes
    reconciler: ReconciliationEngine
    status: StatusService
    orchestrator: ActionOrchestrator
    chroot: ChrootActions
    network: NetworkActions


def build_runtime(config: AppConfig, *, output: Console | None = None) -> RuntimeContext:
    """Wire every collaborator for *config*."""
    logger = StructuredLogger(config.logs_dir)
    store = SettingsStore(config.state_file)
    flags = FlagRegistry(store)
    executor = CommandExecutor(
        detect_backend(config.backend),
        debug_enabled=lambda: flags.get("debug"),
    )
    session = Session(executor, lock=OperationLock(config.runtime_dir))
    log = OutputLog(output or console)
    progress = ProgressReporter(log, config.delays)
    probes = SystemProbes(executor, config)
    reconciler = ReconciliationEngine(flags, log)
    status = StatusService(
        session=session,
        probes=probes,
        flags=flags,
        reconciler=reconciler,
        log=log,
    )
    orchestrator = ActionOrchestrator(
        config=config,
        session=session,
        executor=executor,
        flags=flags,
        log=log,
        progress=progress,
        reconciler=reconciler,
        probes=probes,
        status=status,
        logger=logger,
    )
    return RuntimeContext(
        config=config,
        logger=logger,
        store=store,
        flags=flags,
        executor=executor,
        session=session,
        log=log,
        progress=progress,
        probes=probes,
        reconciler=reconciler,
        status=status,
        orchestrator=orchestrator,
        chroot=ChrootActions(orchestrator),
        network=NetworkActions(orchestrator, store),
    )


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    backend: str | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if backend is not None:
        if backend not in ALLOWED_BACKEND_METHODS:
            allowed = ", ".join(sorted(ALLOWED_BACKEND_METHODS))
            console.print(f"[red]--backend must be one of: {allowed}.[/red]")
            raise typer.Exit(code=int(ExitCode.VALIDATION))
        overrides["backend"] = {"method": backend}

    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc

    runtime = build_runtime(config)
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the chrootctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    backend: str | None = BACKEND_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file, backend)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"chrootctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file, backend)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _run(
    runtime: RuntimeContext,
    factory: Callable[[], Awaitable[T]],
    *,
    warn_access: bool = False,
) -> T:
    """Confirm access, run *factory* and let any scheduled refresh finish.

    Guarded actions and settings commands report a missing backend
    themselves; *warn_access* is for commands that would otherwise stay
    silent about it.
    """

    async def runner() -> T:
        if not await runtime.session.confirm_privileged_access() and warn_access:
            runtime.log.warn(f"⚠ {runtime.session.access_failure()}")
        try:
            return await factory()
        finally:
            await runtime.status.wait_idle()

    return asyncio.run(runner())


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = int(ExitCode.VALIDATION),
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _finish(runtime: RuntimeContext, operation: Operation) -> None:
    """Report the refreshed status and exit with the operation's code."""
    snapshot = runtime.status.last
    if snapshot is not None:
        console.print(f"[dim]Status: {snapshot.state}[/dim]")
    if operation.succeeded:
        return
    code = operation.error.exit_code if operation.error is not None else ExitCode.PROVIDER
    raise typer.Exit(code=int(code))


def _run_operation(
    runtime: RuntimeContext,
    factory: Callable[[], Awaitable[Operation]],
) -> None:
    _finish(runtime, _run(runtime, factory))


def _confirm(prompt: str, assume_yes: bool) -> None:
    if assume_yes:
        return
    if not typer.confirm(prompt, default=False):
        console.print("[yellow]Aborted.[/yellow]")
        raise typer.Exit(code=int(ExitCode.VALIDATION))


def _parse_switch(value: str | None) -> bool | None:
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in {"on", "true", "1", "yes", "enable"}:
        return True
    if lowered in {"off", "false", "0", "no", "disable"}:
        return False
    raise typer.BadParameter("Expected 'on' or 'off'.")


def _render_status(snapshot: StatusSnapshot) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Item", style="bold")
    table.add_column("Value")
    for key, value in snapshot.to_dict().items():
        if isinstance(value, bool):
            rendered = "[green]yes[/green]" if value else "no"
        else:
            rendered = str(value)
        table.add_row(key, rendered)
    console.print(table)


def _render_list(title: str, entries: Sequence[str], *, json_output: bool) -> None:
    if json_output:
        console.print_json(data=list(entries))
        return
    if not entries:
        console.print(f"[yellow]No {title} found.[/yellow]")
        return
    for entry in entries:
        console.print(entry)


# ----------------------------------------------------------------------
# Status and lifecycle
# ----------------------------------------------------------------------
@app.command()
def status(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show whether the chroot exists and runs, plus service flags."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "status",
        args={"json": json_output},
        target={"kind": "chroot", "path": str(runtime.config.chroot_dir)},
    ) as op:
        snapshot = _run(runtime, runtime.status.refresh, warn_access=True)
        if json_output:
            console.print_json(data=snapshot.to_dict())
        else:
            _render_status(snapshot)
        op.success("Reported chroot status.", changed=0, context=snapshot.to_dict())


@app.command()
def start(ctx: typer.Context) -> None:
    """Start the chroot."""
    runtime = _get_runtime(ctx)
    _run_operation(runtime, runtime.chroot.start)


@app.command()
def stop(ctx: typer.Context) -> None:
    """Stop the hotspot and forward NAT, then the chroot."""
    runtime = _get_runtime(ctx)
    _run_operation(runtime, runtime.chroot.stop)


@app.command()
def restart(ctx: typer.Context) -> None:
    """Restart the chroot."""
    runtime = _get_runtime(ctx)
    _run_operation(runtime, runtime.chroot.restart)


@app.command()
def backup(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Destination archive path on the device."),
) -> None:
    """Stop everything and archive the chroot to PATH."""
    runtime = _get_runtime(ctx)
    _run_operation(runtime, lambda: runtime.chroot.backup(path))


@app.command()
def restore(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Archive to restore from."),
    assume_yes: bool = YES_OPTION,
) -> None:
    """Replace the chroot with the archive at PATH."""
    runtime = _get_runtime(ctx)
    _confirm(f"Restore will overwrite the current chroot from {path}. Continue?", assume_yes)
    _run_operation(runtime, lambda: runtime.chroot.restore(path))


@app.command()
def uninstall(
    ctx: typer.Context,
    assume_yes: bool = YES_OPTION,
) -> None:
    """Remove the chroot and all of its data."""
    runtime = _get_runtime(ctx)
    _confirm("Uninstall will delete all chroot data. Continue?", assume_yes)
    _run_operation(runtime, runtime.chroot.uninstall)


@app.command()
def update(ctx: typer.Context) -> None:
    """Apply OTA updates and restart the chroot."""
    runtime = _get_runtime(ctx)
    _run_operation(runtime, runtime.chroot.update)


@app.command()
def users(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """List regular users defined inside the chroot."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("users", args={"json": json_output}) as op:
        try:
            names = _run(runtime, runtime.chroot.list_users)
        except ChrootctlError as exc:
            _command_error(op, str(exc), rc=int(exc.exit_code))
        _render_list("users", names, json_output=json_output)
        op.success("Listed chroot users.", changed=0, context={"count": len(names)})


# ----------------------------------------------------------------------
# Sparse image
# ----------------------------------------------------------------------
_SIZES_HELP = ", ".join(str(size) for size in SPARSE_SIZES_GB)


@sparse_app.command("migrate")
def sparse_migrate(
    ctx: typer.Context,
    size_gb: int = typer.Argument(..., help=f"Image size in GB ({_SIZES_HELP})."),
    assume_yes: bool = YES_OPTION,
) -> None:
    """Convert the root filesystem into a sparse image."""
    runtime = _get_runtime(ctx)
    _confirm(f"Migrate the rootfs into a {size_gb}GB sparse image?", assume_yes)
    _run_operation(runtime, lambda: runtime.chroot.migrate(size_gb))


@sparse_app.command("resize")
def sparse_resize(
    ctx: typer.Context,
    size_gb: int = typer.Argument(..., help=f"New size in GB ({_SIZES_HELP})."),
    assume_yes: bool = YES_OPTION,
) -> None:
    """Resize the sparse image."""
    runtime = _get_runtime(ctx)
    _confirm(f"Resize the sparse image to {size_gb}GB?", assume_yes)
    _run_operation(runtime, lambda: runtime.chroot.resize(size_gb))


@sparse_app.command("trim")
def sparse_trim(ctx: typer.Context) -> None:
    """Reclaim unused blocks in the sparse image."""
    runtime = _get_runtime(ctx)
    _run_operation(runtime, runtime.chroot.trim)


# ----------------------------------------------------------------------
# Hotspot
# ----------------------------------------------------------------------
@hotspot_app.command("start")
def hotspot_start(
    ctx: typer.Context,
    iface: str | None = typer.Option(None, "--iface", help="Uplink interface."),
    ssid: str | None = typer.Option(None, "--ssid", help="Network name."),
    password: str | None = typer.Option(None, "--password", help="WPA passphrase."),
    band: str | None = typer.Option(None, "--band", help="Frequency band (2 or 5)."),
    channel: str | None = typer.Option(None, "--channel", help="Channel number."),
) -> None:
    """Start the hotspot; omitted options fall back to the saved settings."""
    runtime = _get_runtime(ctx)
    saved = runtime.network.load_hotspot_settings()
    if band is not None and band not in BAND_CHANNELS:
        raise typer.BadParameter("Band must be 2 or 5.", param_hint="--band")
    settings = HotspotSettings.from_mapping(
        {
            "iface": iface if iface is not None else saved.iface,
            "ssid": ssid if ssid is not None else saved.ssid,
            "password": password if password is not None else saved.password,
            "band": band if band is not None else saved.band,
            "channel": channel if channel is not None else (saved.channel if band is None else ""),
        }
    )
    _run_operation(runtime, lambda: runtime.network.start_hotspot(settings))


@hotspot_app.command("stop")
def hotspot_stop(ctx: typer.Context) -> None:
    """Stop the hotspot."""
    runtime = _get_runtime(ctx)
    _run_operation(runtime, runtime.network.stop_hotspot)


@hotspot_app.command("interfaces")
def hotspot_interfaces(
    ctx: typer.Context,
    refresh: bool = REFRESH_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """List interfaces the hotspot can share."""
    _list_interfaces(ctx, "hotspot", refresh=refresh, json_output=json_output)


# ----------------------------------------------------------------------
# Forward NAT
# ----------------------------------------------------------------------
@forward_app.command("start")
def forward_start(
    ctx: typer.Context,
    iface: str | None = typer.Argument(None, help="Interface to route through."),
) -> None:
    """Start forward NAT through IFACE (defaults to the last one used)."""
    runtime = _get_runtime(ctx)
    chosen = iface if iface is not None else (runtime.network.saved_forward_interface() or "")
    _run_operation(runtime, lambda: runtime.network.start_forwarding(chosen))


@forward_app.command("stop")
def forward_stop(ctx: typer.Context) -> None:
    """Stop forward NAT."""
    runtime = _get_runtime(ctx)
    _run_operation(runtime, runtime.network.stop_forwarding)


@forward_app.command("interfaces")
def forward_interfaces(
    ctx: typer.Context,
    refresh: bool = REFRESH_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """List interfaces forward NAT can route through."""
    _list_interfaces(ctx, "forward", refresh=refresh, json_output=json_output)


def _list_interfaces(ctx: typer.Context, kind: str, *, refresh: bool, json_output: bool) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        f"{kind} interfaces",
        args={"refresh": refresh, "json": json_output},
        target={"kind": "interfaces", "scope": kind},
    ) as op:
        try:
            entries = _run(runtime, lambda: runtime.network.interfaces(kind, refresh=refresh))
        except ChrootctlError as exc:
            _command_error(op, str(exc), rc=int(exc.exit_code))
        _render_list("interfaces", entries, json_output=json_output)
        op.success("Listed interfaces.", changed=0, context={"count": len(entries)})


# ----------------------------------------------------------------------
# Settings
# ----------------------------------------------------------------------
@app.command()
def boot(
    ctx: typer.Context,
    state: str | None = typer.Argument(None, help="on or off; omit to show."),
) -> None:
    """Show or change whether the chroot starts at boot."""
    runtime = _get_runtime(ctx)
    enabled = _parse_switch(state)
    with runtime.logger.operation(
        "boot",
        args={"state": state},
        target={"kind": "setting", "path": str(runtime.config.paths.boot_file)},
    ) as op:
        try:
            if enabled is None:
                current = _run(runtime, runtime.chroot.read_boot)
                console.print(f"Run at boot: {'on' if current else 'off'}")
                op.success("Reported run-at-boot.", changed=0)
                return
            _run(runtime, lambda: runtime.chroot.set_boot(enabled))
        except ChrootctlError as exc:
            _command_error(op, str(exc), rc=int(exc.exit_code))
        op.success("Updated run-at-boot.", changed=1)


@app.command()
def debug(
    ctx: typer.Context,
    state: str | None = typer.Argument(None, help="on or off; omit to show."),
) -> None:
    """Show or toggle debug logging for privileged scripts."""
    runtime = _get_runtime(ctx)
    enabled = _parse_switch(state)
    with runtime.logger.operation("debug", args={"state": state}) as op:
        if enabled is None:
            console.print(f"Debug mode: {'on' if runtime.flags.get('debug') else 'off'}")
            op.success("Reported debug mode.", changed=0)
            return
        try:
            runtime.flags.set("debug", enabled)
        except ChrootctlError as exc:
            _command_error(op, str(exc), rc=int(exc.exit_code))
        console.print(f"Debug mode {'enabled' if enabled else 'disabled'}")
        op.success("Updated debug mode.", changed=1)


@post_exec_app.command("show")
def post_exec_show(ctx: typer.Context) -> None:
    """Print the post-exec script."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("post-exec show") as op:
        try:
            script = _run(runtime, runtime.chroot.read_post_exec)
        except ChrootctlError as exc:
            _command_error(op, str(exc), rc=int(exc.exit_code))
        if script:
            console.print(script, markup=False, highlight=False)
        else:
            console.print("[yellow]No post-exec script set.[/yellow]")
        op.success("Printed post-exec script.", changed=0)


@post_exec_app.command("set")
def post_exec_set(
    ctx: typer.Context,
    source: Path | None = typer.Option(
        None,
        "--file",
        "-f",
        dir_okay=False,
        exists=True,
        help="Read the script from this file (defaults to standard input).",
    ),
) -> None:
    """Replace the post-exec script."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "post-exec set",
        args={"file": str(source) if source else None},
    ) as op:
        script = source.read_text(encoding="utf-8") if source is not None else sys.stdin.read()
        try:
            _run(runtime, lambda: runtime.chroot.save_post_exec(script))
        except ChrootctlError as exc:
            _command_error(op, str(exc), rc=int(exc.exit_code))
        op.success("Saved post-exec script.", changed=1)


@post_exec_app.command("clear")
def post_exec_clear(ctx: typer.Context) -> None:
    """Empty the post-exec script."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("post-exec clear") as op:
        try:
            _run(runtime, runtime.chroot.clear_post_exec)
        except ChrootctlError as exc:
            _command_error(op, str(exc), rc=int(exc.exit_code))
        op.success("Cleared post-exec script.", changed=1)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["RuntimeContext", "app", "build_runtime", "main"]
