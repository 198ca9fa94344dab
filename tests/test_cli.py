"""Tests for the chrootctl command line."""
from __future__ import annotations

import io
import json
from pathlib import Path

import yaml
from typer.testing import CliRunner

from chrootctl import __version__
from chrootctl.actions import HotspotSettings
from chrootctl.cli import RuntimeContext, app
from chrootctl.exit_codes import ExitCode
from tests.fakes import FakeBackend, script_probes

runner = CliRunner()


def _extract_json(output: str) -> dict[str, object]:
    """Extract the first JSON object embedded in *output*."""
    start = output.find("{")
    end = output.rfind("}")
    assert start != -1 and end != -1, f"No JSON payload found in output: {output}"
    return json.loads(output[start : end + 1])


def _prepare_environment(
    tmp_path: Path,
    *,
    config_overrides: dict[str, object] | None = None,
) -> tuple[dict[str, str], Path]:
    state_dir = tmp_path / "state"
    config: dict[str, object] = {
        "chroot_dir": str(tmp_path / "chroot"),
        "state_dir": str(state_dir),
        "backend": {"method": "none"},
        "delays": {"ui_update": 0, "status_refresh": 0},
    }
    if config_overrides:
        config.update(config_overrides)
    config_path = tmp_path / "config.yml"
    config_path.write_text(yaml.safe_dump(config), encoding="utf-8")
    return {"CHROOTCTL_CONFIG_FILE": str(config_path)}, state_dir


def _read_operations(runtime: RuntimeContext) -> list[dict[str, object]]:
    path = runtime.config.logs_dir / "operations.jsonl"
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_version_option_outputs_package_version(tmp_path: Path) -> None:
    """CLI ``--version`` flag emits the package version."""
    env, state_dir = _prepare_environment(tmp_path)
    result = runner.invoke(app, ["--version"], env=env)

    assert result.exit_code == 0
    assert __version__ in result.stdout
    record = json.loads((state_dir / "logs" / "operations.jsonl").read_text().splitlines()[-1])
    assert record["command"] == "root --version"
    assert record["result"]["status"] == "success"


def test_invocation_without_subcommand_shows_help(tmp_path: Path) -> None:
    env, _ = _prepare_environment(tmp_path)
    result = runner.invoke(app, env=env)

    assert result.exit_code == 0
    assert "Manage an Ubuntu chroot on a rooted Android device" in result.stdout


def test_invalid_backend_option(tmp_path: Path) -> None:
    env, _ = _prepare_environment(tmp_path)
    result = runner.invoke(app, ["--backend", "sudo", "status"], env=env)

    assert result.exit_code == ExitCode.VALIDATION
    assert "--backend must be one of" in result.stdout


def test_invalid_config_exits_with_validation_code(tmp_path: Path) -> None:
    env, _ = _prepare_environment(tmp_path, config_overrides={"command_timeout": "soon"})
    result = runner.invoke(app, ["status"], env=env)

    assert result.exit_code == ExitCode.VALIDATION


def test_config_show_renders_table(tmp_path: Path) -> None:
    env, state_dir = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["config", "show"], env=env)

    assert result.exit_code == 0
    assert "state_dir" in result.stdout
    assert state_dir.name in result.stdout
    assert "hotspot_script" in result.stdout


def test_config_show_json(tmp_path: Path) -> None:
    env, state_dir = _prepare_environment(
        tmp_path, config_overrides={"backend": {"method": "su", "su_bin": "/system/xbin/su"}}
    )

    result = runner.invoke(app, ["config", "show", "--json"], env=env)

    assert result.exit_code == 0
    payload = _extract_json(result.stdout)
    assert payload["state_dir"] == str(state_dir)
    assert payload["backend"]["su_bin"] == "/system/xbin/su"


def test_status_without_backend_reports_unknown(tmp_path: Path) -> None:
    env, _ = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["status", "--json"], env=env)

    assert result.exit_code == 0
    assert _extract_json(result.stdout)["state"] == "unknown"


def test_start_without_backend_exits_with_environment_code(tmp_path: Path) -> None:
    env, _ = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["start"], env=env)

    assert result.exit_code == ExitCode.ENVIRONMENT
    assert "Cannot execute: root access not available" in result.stdout


def test_status_json(runtime: RuntimeContext, fake_backend: FakeBackend) -> None:
    script_probes(fake_backend, running=True, sparse=True)

    result = runner.invoke(app, ["status", "--json"], obj=runtime)

    assert result.exit_code == 0
    payload = _extract_json(result.stdout)
    assert payload["state"] == "running"
    assert payload["sparse"] is True


def test_status_table(runtime: RuntimeContext) -> None:
    result = runner.invoke(app, ["status"], obj=runtime)

    assert result.exit_code == 0
    assert "stopped" in result.stdout
    assert "forwarding" in result.stdout


def test_start_reports_status_and_records_operation(
    runtime: RuntimeContext, fake_backend: FakeBackend
) -> None:
    result = runner.invoke(app, ["start"], obj=runtime)

    assert result.exit_code == 0
    assert "Status: stopped" in result.stdout
    assert fake_backend.ran("chroot.sh start --no-shell")
    record = _read_operations(runtime)[-1]
    assert record["command"] == "chroot-start"
    assert record["result"]["status"] == "success"


def test_start_failure_exit_code(runtime: RuntimeContext, fake_backend: FakeBackend) -> None:
    fake_backend.on("chroot.sh start", stderr="mount: permission denied", exit_code=1)

    result = runner.invoke(app, ["start"], obj=runtime)

    assert result.exit_code == ExitCode.PROVIDER
    assert _read_operations(runtime)[-1]["result"]["rc"] == int(ExitCode.PROVIDER)


def test_busy_guard_exit_code(runtime: RuntimeContext, fake_backend: FakeBackend) -> None:
    assert runtime.session.try_acquire("chroot-backup-1234")
    try:
        result = runner.invoke(app, ["stop"], obj=runtime)
    finally:
        runtime.session.release()

    assert result.exit_code == ExitCode.BUSY
    assert not fake_backend.ran("chroot.sh stop")


def test_restore_requires_confirmation(runtime: RuntimeContext, fake_backend: FakeBackend) -> None:
    result = runner.invoke(app, ["restore", "/sdcard/backup.tar.gz"], obj=runtime, input="n\n")

    assert result.exit_code == ExitCode.VALIDATION
    assert "Aborted." in result.stdout
    assert not fake_backend.ran("restore")


def test_restore_with_yes(runtime: RuntimeContext, fake_backend: FakeBackend) -> None:
    result = runner.invoke(app, ["restore", "/sdcard/backup.tar.gz", "--yes"], obj=runtime)

    assert result.exit_code == 0
    assert fake_backend.ran("chroot.sh restore --webui /sdcard/backup.tar.gz")


def test_sparse_migrate_rejects_unknown_size(
    runtime: RuntimeContext, fake_backend: FakeBackend
) -> None:
    result = runner.invoke(app, ["sparse", "migrate", "10", "--yes"], obj=runtime)

    assert result.exit_code == ExitCode.VALIDATION
    assert not fake_backend.ran("sparsemgr.sh")


def test_hotspot_start_merges_saved_settings(
    runtime: RuntimeContext, fake_backend: FakeBackend
) -> None:
    """A new band without a channel falls back to that band's default channel."""
    runtime.network.save_hotspot_settings(
        HotspotSettings(iface="wlan0", ssid="ubuntu", password="secret123")
    )
    fake_backend.on("start-hotspot -o", stdout="AP-ENABLED\n")

    result = runner.invoke(app, ["hotspot", "start", "--band", "5"], obj=runtime)

    assert result.exit_code == 0
    assert fake_backend.ran("-o wlan0 -s ubuntu -p secret123 -b 5 -c 36")
    assert runtime.flags.get("hotspot") is True


def test_hotspot_start_rejects_band(runtime: RuntimeContext) -> None:
    result = runner.invoke(app, ["hotspot", "start", "--band", "6"], obj=runtime)

    assert result.exit_code == 2


def test_forward_start_uses_saved_interface(
    runtime: RuntimeContext, fake_backend: FakeBackend
) -> None:
    runtime.store.set("chroot_selected_interface", "rmnet0")
    fake_backend.on("forward-nat.sh -i", stdout="Gateway: 10.0.0.1\n")

    result = runner.invoke(app, ["forward", "start"], obj=runtime)

    assert result.exit_code == 0
    assert fake_backend.ran("forward-nat.sh -i rmnet0")


def test_forward_interfaces_json(runtime: RuntimeContext, fake_backend: FakeBackend) -> None:
    fake_backend.on("list-iface", stdout="wlan0,rmnet0\n")

    result = runner.invoke(app, ["forward", "interfaces", "--json"], obj=runtime)

    assert result.exit_code == 0
    assert json.loads(result.stdout) == ["wlan0", "rmnet0"]


def test_users_json(runtime: RuntimeContext, fake_backend: FakeBackend) -> None:
    fake_backend.on("list-users", stdout="alice,bob\n")

    result = runner.invoke(app, ["users", "--json"], obj=runtime)

    assert result.exit_code == 0
    assert json.loads(result.stdout) == ["alice", "bob"]


def test_boot_show_and_set(runtime: RuntimeContext, fake_backend: FakeBackend) -> None:
    fake_backend.on("boot-service 2>/dev/null", stdout="0\n")

    shown = runner.invoke(app, ["boot"], obj=runtime)
    changed = runner.invoke(app, ["boot", "on"], obj=runtime)
    invalid = runner.invoke(app, ["boot", "maybe"], obj=runtime)

    assert shown.exit_code == 0
    assert "Run at boot: off" in shown.stdout
    assert changed.exit_code == 0
    assert fake_backend.ran("echo 1 >")
    assert invalid.exit_code == 2


def test_boot_without_access_fails(runtime: RuntimeContext, fake_backend: FakeBackend) -> None:
    fake_backend.on("echo test", stderr="Permission denied", exit_code=1)

    result = runner.invoke(app, ["boot", "on"], obj=runtime)

    assert result.exit_code == ExitCode.ENVIRONMENT
    assert not fake_backend.ran("echo 1 >")
    assert _read_operations(runtime)[-1]["result"]["status"] == "error"


def test_debug_toggle(runtime: RuntimeContext) -> None:
    result = runner.invoke(app, ["debug", "on"], obj=runtime)

    assert result.exit_code == 0
    assert "Debug mode enabled" in result.stdout
    assert runtime.flags.get("debug") is True

    shown = runner.invoke(app, ["debug"], obj=runtime)
    assert "Debug mode: on" in shown.stdout


def _block_state_file(runtime: RuntimeContext, tmp_path: Path) -> None:
    """Point the settings store below a regular file so every write fails."""
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    runtime.store.path = blocker / "state.yml"


def test_debug_toggle_with_unwritable_state(runtime: RuntimeContext, tmp_path: Path) -> None:
    _block_state_file(runtime, tmp_path)

    result = runner.invoke(app, ["debug", "on"], obj=runtime)

    assert result.exit_code == ExitCode.ENVIRONMENT
    assert "Unable to write settings" in result.stdout
    assert isinstance(result.exception, SystemExit)
    record = _read_operations(runtime)[-1]
    assert record["result"]["status"] == "error"
    assert record["result"]["rc"] == int(ExitCode.ENVIRONMENT)


def test_sparse_migrate_with_unwritable_state(
    runtime: RuntimeContext, fake_backend: FakeBackend, output: io.StringIO, tmp_path: Path
) -> None:
    """A flag that cannot be persisted fails the command with the environment code."""
    fake_backend.on("sparsemgr.sh migrate 16", stdout="Creating image\n")
    _block_state_file(runtime, tmp_path)

    result = runner.invoke(app, ["sparse", "migrate", "16", "--yes"], obj=runtime)

    assert result.exit_code == ExitCode.ENVIRONMENT
    assert isinstance(result.exception, SystemExit)
    assert fake_backend.ran("sparsemgr.sh migrate 16")
    assert "Unable to write settings" in output.getvalue()
    assert runtime.session.is_held() is False
    assert _read_operations(runtime)[-1]["result"]["status"] == "error"


def test_start_without_backend_reports_access_once(tmp_path: Path) -> None:
    env, _ = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["start"], env=env)

    assert result.exit_code == ExitCode.ENVIRONMENT
    assert result.stdout.count("Cannot execute: root access not available") == 1
    assert "No root execution method available" not in result.stdout


def test_status_without_backend_warns_about_access(tmp_path: Path) -> None:
    env, _ = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["status"], env=env)

    assert result.exit_code == 0
    assert result.stdout.count("No root execution method available") == 1


def test_post_exec_set_from_file(
    runtime: RuntimeContext, fake_backend: FakeBackend, tmp_path: Path
) -> None:
    script = tmp_path / "post.sh"
    script.write_text("#!/bin/sh\nservice ssh start\n", encoding="utf-8")

    result = runner.invoke(app, ["post-exec", "set", "--file", str(script)], obj=runtime)

    assert result.exit_code == 0
    assert fake_backend.ran("| base64 -d >")


def test_post_exec_set_rejects_empty_stdin(
    runtime: RuntimeContext, fake_backend: FakeBackend
) -> None:
    result = runner.invoke(app, ["post-exec", "set"], obj=runtime, input="\n")

    assert result.exit_code == ExitCode.VALIDATION
    assert not fake_backend.ran("base64 -d")


def test_post_exec_show_and_clear(runtime: RuntimeContext, fake_backend: FakeBackend) -> None:
    fake_backend.on("post_exec.sh 2>/dev/null", stdout="service ssh start\n")

    shown = runner.invoke(app, ["post-exec", "show"], obj=runtime)
    cleared = runner.invoke(app, ["post-exec", "clear"], obj=runtime)

    assert "service ssh start" in shown.stdout
    assert cleared.exit_code == 0
    assert fake_backend.ran("echo '' >")
