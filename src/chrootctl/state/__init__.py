"""Persisted settings and status flags."""
from __future__ import annotations

from .flags import (
    DEBUG,
    DEFAULT_FLAGS,
    FORWARDING,
    HOTSPOT,
    SPARSE,
    FlagRegistry,
    PersistedFlag,
    UnknownFlagError,
)
from .store import SettingsStore, StateStoreError

__all__ = [
    "DEBUG",
    "DEFAULT_FLAGS",
    "FORWARDING",
    "FlagRegistry",
    "HOTSPOT",
    "PersistedFlag",
    "SPARSE",
    "SettingsStore",
    "StateStoreError",
    "UnknownFlagError",
]
