"""Flat key/value settings store persisted as YAML.

The store holds the small amount of state chrootctl keeps between runs: the
persisted status flags, cached interface lists and the saved hotspot
settings. Everything lives in a single mapping of string keys to string
values inside ``<state_dir>/state.yml``; writes are atomic (temporary file +
``os.replace``) so a crash never leaves a truncated file behind.

Malformed content never raises out of a read: a corrupt file is treated as
empty and a malformed value falls back to the caller's default.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Mapping
from pathlib import Path

from ..errors import ChrootctlError
from ..exit_codes import ExitCode

try:  # PyYAML is a runtime dependency declared in pyproject.toml
    import yaml
except Exception as exc:  # pragma: no cover - import failure handled in tests
    raise RuntimeError(
        "PyYAML is required to manage chrootctl state. Install with `pip install chrootctl`."
    ) from exc

_LOG = logging.getLogger(__name__)

_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off"}


class StateStoreError(ChrootctlError):
    """Raised when the settings file cannot be written."""

    exit_code = ExitCode.ENVIRONMENT


class SettingsStore:
    """String-keyed persistent store backed by one YAML file."""

    def __init__(self, path: Path) -> None:
        """Bind the store to *path*; the file is created on first write."""
        self.path = Path(path).expanduser()

    # ------------------------------------------------------------------
    # Raw access
    # ------------------------------------------------------------------
    def get(self, key: str, default: str | None = None) -> str | None:
        """Return the stored value for *key* or *default*."""
        value = self._load().get(key)
        return default if value is None else value

    def set(self, key: str, value: object) -> None:
        """Persist *value* (stringified) under *key*."""
        data = self._load()
        data[key] = _stringify(value)
        self._dump(data)

    def remove(self, key: str) -> None:
        """Delete *key*; removing an absent key is a no-op."""
        data = self._load()
        if key not in data:
            return
        del data[key]
        self._dump(data)

    def items(self) -> dict[str, str]:
        """Return a copy of every stored key/value pair."""
        return dict(self._load())

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------
    def get_boolean(self, key: str, default: bool = False) -> bool:
        """Return *key* parsed as a boolean, *default* when absent or malformed."""
        raw = self.get(key)
        if raw is None:
            return default
        lowered = raw.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        _LOG.debug("Ignoring malformed boolean %r for %s", raw, key)
        return default

    def set_boolean(self, key: str, value: bool) -> None:
        """Persist a boolean as ``"true"``/``"false"``."""
        self.set(key, "true" if value else "false")

    def get_json(self, key: str, default: object = None) -> object:
        """Return *key* decoded from JSON, *default* when absent or malformed."""
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            _LOG.debug("Ignoring malformed JSON value for %s", key)
            return default

    def set_json(self, key: str, value: object) -> None:
        """Persist *value* encoded as JSON."""
        self.set(key, json.dumps(value))

    # ------------------------------------------------------------------
    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            _LOG.warning("Settings file %s is unreadable, using defaults: %s", self.path, exc)
            return {}
        if not isinstance(data, Mapping):
            if data is not None:
                _LOG.warning("Settings file %s is not a mapping, using defaults", self.path)
            return {}
        return {
            str(key): _stringify(value)
            for key, value in data.items()
            if value is not None
        }

    def _dump(self, data: Mapping[str, str]) -> None:
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_name = tempfile.mkstemp(dir=str(directory), prefix=f".{self.path.name}.")
        except OSError as exc:
            raise StateStoreError(f"Unable to write settings to {self.path}: {exc}") from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(dict(data), handle, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StateStoreError(f"Unable to write settings to {self.path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)


def _stringify(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


__all__ = ["SettingsStore", "StateStoreError"]
