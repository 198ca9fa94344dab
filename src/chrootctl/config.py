"""Configuration loader for chrootctl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``/etc/chrootctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``CHROOTCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export CHROOTCTL_BACKEND__METHOD=su
    export CHROOTCTL_DELAYS__STATUS_REFRESH=1.5

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load chrootctl configuration. Install with "
        "`pip install chrootctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "CHROOTCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ChrootPaths:
    """Scripts and marker files that live inside the chroot directory."""

    chroot_script: Path
    hotspot_script: Path
    forward_nat_script: Path
    forward_nat_state: Path
    sparse_manager: Path
    ota_updater: Path
    post_exec_script: Path
    boot_file: Path
    rootfs: Path
    sparse_image: Path

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "chroot_script": str(self.chroot_script),
            "hotspot_script": str(self.hotspot_script),
            "forward_nat_script": str(self.forward_nat_script),
            "forward_nat_state": str(self.forward_nat_state),
            "sparse_manager": str(self.sparse_manager),
            "ota_updater": str(self.ota_updater),
            "post_exec_script": str(self.post_exec_script),
            "boot_file": str(self.boot_file),
            "rootfs": str(self.rootfs),
            "sparse_image": str(self.sparse_image),
        }


@dataclass(frozen=True)
class BackendConfig:
    """Privileged execution backend selection."""

    method: str = "auto"
    su_bin: str = "su"
    shell: str = "sh"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"method": self.method, "su_bin": self.su_bin, "shell": self.shell}


@dataclass(frozen=True)
class DelaysConfig:
    """Fixed pauses (seconds) between orchestration phases and progress frames."""

    ui_update: float = 0.05
    status_refresh: float = 0.5
    spinner_interval: float = 0.2
    dots_interval: float = 0.4

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "ui_update": self.ui_update,
            "status_refresh": self.status_refresh,
            "spinner_interval": self.spinner_interval,
            "dots_interval": self.dots_interval,
        }


@dataclass(frozen=True)
class HotspotConfig:
    """Hotspot defaults and validation thresholds."""

    interface: str = "ap0"
    min_password_length: int = 8

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "interface": self.interface,
            "min_password_length": self.min_password_length,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for chrootctl."""

    config_file: Path
    chroot_dir: Path
    state_dir: Path
    logs_dir: Path
    runtime_dir: Path
    command_timeout: float | None
    paths: ChrootPaths
    backend: BackendConfig
    delays: DelaysConfig
    hotspot: HotspotConfig

    @property
    def state_file(self) -> Path:
        """Return the persisted settings file path."""
        return self.state_dir / "state.yml"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "chroot_dir": str(self.chroot_dir),
            "state_dir": str(self.state_dir),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "command_timeout": self.command_timeout,
            "paths": self.paths.to_dict(),
            "backend": self.backend.to_dict(),
            "delays": self.delays.to_dict(),
            "hotspot": self.hotspot.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/chrootctl/config.yml",
    "chroot_dir": "/data/local/ubuntu-chroot",
    "state_dir": "/data/local/tmp/chrootctl",
    "logs_dir": None,  # derived from state_dir when absent
    "runtime_dir": None,  # derived from state_dir when absent
    "command_timeout": None,
    "paths": {
        "chroot_script": "chroot.sh",
        "hotspot_script": "start-hotspot",
        "forward_nat_script": "forward-nat.sh",
        "forward_nat_state": "forward-nat.state",
        "sparse_manager": "sparsemgr.sh",
        "ota_updater": "ota/updater.sh",
        "post_exec_script": "post_exec.sh",
        "boot_file": "boot-service",
        "rootfs": "rootfs",
        "sparse_image": "rootfs.img",
    },
    "backend": {
        "method": "auto",
        "su_bin": "su",
        "shell": "sh",
    },
    "delays": {
        "ui_update": 0.05,
        "status_refresh": 0.5,
        "spinner_interval": 0.2,
        "dots_interval": 0.4,
    },
    "hotspot": {
        "interface": "ap0",
        "min_password_length": 8,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_BACKEND_METHODS = {"auto", "su", "root-shell", "none"}
_PATH_KEYS = set(cast(Mapping[str, object], DEFAULTS["paths"]).keys())
_DELAY_KEYS = set(cast(Mapping[str, object], DEFAULTS["delays"]).keys())


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    timeout = raw.get("command_timeout")
    if timeout is not None:
        _expect_positive_float(timeout, "command_timeout", default=1.0)

    paths = raw.get("paths")
    if paths is not None:
        unknown = set(_as_dict(paths, "paths").keys()) - _PATH_KEYS
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown paths configuration keys: {joined}.")

    backend = raw.get("backend")
    if backend is not None:
        backend_map = _as_dict(backend, "backend")
        unknown = set(backend_map.keys()) - {"method", "su_bin", "shell"}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown backend configuration keys: {joined}.")
        method = backend_map.get("method")
        if method is not None and str(method) not in ALLOWED_BACKEND_METHODS:
            allowed = ", ".join(sorted(ALLOWED_BACKEND_METHODS))
            raise ConfigError(
                f"Unsupported backend method '{method}'. Allowed: {allowed}."
            )

    delays = raw.get("delays")
    if delays is not None:
        delays_map = _as_dict(delays, "delays")
        unknown = set(delays_map.keys()) - _DELAY_KEYS
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown delays configuration keys: {joined}.")
        for key, value in delays_map.items():
            if value is not None and _expect_float(value, f"delays.{key}", default=0.0) < 0:
                raise ConfigError(f"delays.{key} must be non-negative.")

    hotspot = raw.get("hotspot")
    if hotspot is not None:
        hotspot_map = _as_dict(hotspot, "hotspot")
        unknown = set(hotspot_map.keys()) - {"interface", "min_password_length"}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown hotspot configuration keys: {joined}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    chroot_dir = _to_path(raw.get("chroot_dir"))
    state_dir = _to_path(raw.get("state_dir"))

    logs_dir_value = raw.get("logs_dir")
    logs_dir = _to_path(logs_dir_value) if logs_dir_value else state_dir / "logs"
    runtime_dir_value = raw.get("runtime_dir")
    runtime_dir = _to_path(runtime_dir_value) if runtime_dir_value else state_dir / "run"

    timeout_value = raw.get("command_timeout")
    command_timeout: float | None = None
    if timeout_value not in (None, ""):
        command_timeout = _expect_positive_float(timeout_value, "command_timeout", default=1.0)

    paths_mapping = _as_dict(raw.get("paths"), "paths")
    default_paths = cast(Mapping[str, str], DEFAULTS["paths"])

    def _chroot_path(key: str) -> Path:
        candidate = _to_path(paths_mapping.get(key, default_paths[key]))
        return candidate if candidate.is_absolute() else chroot_dir / candidate

    paths = ChrootPaths(
        chroot_script=_chroot_path("chroot_script"),
        hotspot_script=_chroot_path("hotspot_script"),
        forward_nat_script=_chroot_path("forward_nat_script"),
        forward_nat_state=_chroot_path("forward_nat_state"),
        sparse_manager=_chroot_path("sparse_manager"),
        ota_updater=_chroot_path("ota_updater"),
        post_exec_script=_chroot_path("post_exec_script"),
        boot_file=_chroot_path("boot_file"),
        rootfs=_chroot_path("rootfs"),
        sparse_image=_chroot_path("sparse_image"),
    )

    backend_mapping = _as_dict(raw.get("backend"), "backend")
    backend = BackendConfig(
        method=str(backend_mapping.get("method", "auto")),
        su_bin=str(backend_mapping.get("su_bin", "su")),
        shell=str(backend_mapping.get("shell", "sh")),
    )

    delays_mapping = _as_dict(raw.get("delays"), "delays")
    default_delays = DelaysConfig()
    delays = DelaysConfig(
        ui_update=_expect_float(
            delays_mapping.get("ui_update"), "delays.ui_update", default=default_delays.ui_update
        ),
        status_refresh=_expect_float(
            delays_mapping.get("status_refresh"),
            "delays.status_refresh",
            default=default_delays.status_refresh,
        ),
        spinner_interval=_expect_float(
            delays_mapping.get("spinner_interval"),
            "delays.spinner_interval",
            default=default_delays.spinner_interval,
        ),
        dots_interval=_expect_float(
            delays_mapping.get("dots_interval"),
            "delays.dots_interval",
            default=default_delays.dots_interval,
        ),
    )

    hotspot_mapping = _as_dict(raw.get("hotspot"), "hotspot")
    min_length = _expect_int(
        hotspot_mapping.get("min_password_length"),
        "hotspot.min_password_length",
        default=8,
    )
    if min_length < 1:
        raise ConfigError("hotspot.min_password_length must be at least 1.")
    hotspot = HotspotConfig(
        interface=str(hotspot_mapping.get("interface", "ap0")),
        min_password_length=min_length,
    )

    return AppConfig(
        config_file=config_file,
        chroot_dir=chroot_dir,
        state_dir=state_dir,
        logs_dir=logs_dir,
        runtime_dir=runtime_dir,
        command_timeout=command_timeout,
        paths=paths,
        backend=backend,
        delays=delays,
        hotspot=hotspot,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_float(value: object | None, label: str, *, default: float) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    numeric = _expect_float(value, label, default=default)
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "BackendConfig",
    "ChrootPaths",
    "ConfigError",
    "DelaysConfig",
    "HotspotConfig",
    "load_config",
]
