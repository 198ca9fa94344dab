"""Tests for the persisted settings store and status flags."""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from chrootctl.errors import ChrootctlError
from chrootctl.exit_codes import ExitCode
from chrootctl.state import FlagRegistry, SettingsStore, StateStoreError, UnknownFlagError


def test_store_round_trips_values(tmp_path: Path) -> None:
    """Values persist across store instances."""
    path = tmp_path / "state" / "state.yml"
    store = SettingsStore(path)
    store.set("chroot_selected_interface", "rmnet0")
    store.set_boolean("hotspot_active", True)
    store.set_json("chroot_hotspot_interfaces_cache", ["wlan0", "rmnet0"])

    reopened = SettingsStore(path)
    assert reopened.get("chroot_selected_interface") == "rmnet0"
    assert reopened.get_boolean("hotspot_active") is True
    assert reopened.get_json("chroot_hotspot_interfaces_cache") == ["wlan0", "rmnet0"]

    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert raw["hotspot_active"] == "true"


def test_missing_keys_use_defaults(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "state.yml")
    assert store.get("absent") is None
    assert store.get("absent", "fallback") == "fallback"
    assert store.get_boolean("absent", default=True) is True
    assert store.get_json("absent", default=[]) == []
    assert store.items() == {}


def test_malformed_values_fall_back(tmp_path: Path) -> None:
    """Malformed booleans and JSON read as the default."""
    store = SettingsStore(tmp_path / "state.yml")
    store.set("hotspot_active", "maybe")
    store.set("chroot_hotspot_settings", "{not json")

    assert store.get_boolean("hotspot_active") is False
    assert store.get_json("chroot_hotspot_settings", default={}) == {}


@pytest.mark.parametrize("content", ["[1, 2, 3]\n", "key: [unclosed\n"])
def test_corrupt_file_reads_as_empty(tmp_path: Path, content: str) -> None:
    """Non-mapping or unparsable files behave like an empty store and are rewritten on set."""
    path = tmp_path / "state.yml"
    path.write_text(content, encoding="utf-8")
    store = SettingsStore(path)

    assert store.items() == {}
    store.set("debug_mode_active", "true")
    assert yaml.safe_load(path.read_text(encoding="utf-8")) == {"debug_mode_active": "true"}


def test_remove_key(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "state.yml")
    store.set("a", "1")
    store.remove("a")
    store.remove("never-set")
    assert store.get("a") is None


def test_write_failure_raises(tmp_path: Path) -> None:
    """An unusable parent directory surfaces as StateStoreError."""
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    store = SettingsStore(blocker / "state.yml")

    with pytest.raises(StateStoreError) as excinfo:
        store.set("a", "1")
    assert isinstance(excinfo.value, ChrootctlError)
    assert excinfo.value.exit_code is ExitCode.ENVIRONMENT


def test_flag_registry_defaults_and_updates(tmp_path: Path) -> None:
    """Flags default to False and persist under their storage keys."""
    store = SettingsStore(tmp_path / "state.yml")
    flags = FlagRegistry(store)

    assert flags.names() == ["hotspot", "forwarding", "debug", "sparse"]
    assert flags.snapshot() == {
        "hotspot": False,
        "forwarding": False,
        "debug": False,
        "sparse": False,
    }

    flags.set("sparse", True)
    flags.set("forwarding", True)
    assert store.get("sparse_migrated") == "true"
    assert store.get("forwarding_active") == "true"
    assert FlagRegistry(SettingsStore(tmp_path / "state.yml")).get("sparse") is True
    assert flags.flag("hotspot").label == "Hotspot"


def test_unknown_flag_rejected(tmp_path: Path) -> None:
    flags = FlagRegistry(SettingsStore(tmp_path / "state.yml"))
    with pytest.raises(UnknownFlagError):
        flags.get("wifi")
    with pytest.raises(UnknownFlagError):
        flags.set("wifi", True)
