"""Named boolean flags persisted in the settings store."""
from __future__ import annotations

from dataclasses import dataclass

from .store import SettingsStore


@dataclass(frozen=True)
class PersistedFlag:
    """A boolean flag with its storage key, display label and default."""

    name: str
    key: str
    label: str
    default: bool = False


HOTSPOT = PersistedFlag("hotspot", "hotspot_active", "Hotspot")
FORWARDING = PersistedFlag("forwarding", "forwarding_active", "Forwarding")
DEBUG = PersistedFlag("debug", "debug_mode_active", "Debug mode")
SPARSE = PersistedFlag("sparse", "sparse_migrated", "Sparse image")

DEFAULT_FLAGS: tuple[PersistedFlag, ...] = (HOTSPOT, FORWARDING, DEBUG, SPARSE)


class UnknownFlagError(KeyError):
    """Raised when a flag name is not registered."""


class FlagRegistry:
    """Read and write the registered flags through a :class:`SettingsStore`."""

    def __init__(
        self,
        store: SettingsStore,
        flags: tuple[PersistedFlag, ...] = DEFAULT_FLAGS,
    ) -> None:
        """Register *flags* on top of *store*."""
        self.store = store
        self._flags = {flag.name: flag for flag in flags}

    def names(self) -> list[str]:
        """Return the registered flag names in declaration order."""
        return list(self._flags)

    def flag(self, name: str) -> PersistedFlag:
        """Return the flag definition called *name*."""
        try:
            return self._flags[name]
        except KeyError:
            raise UnknownFlagError(name) from None

    def get(self, name: str) -> bool:
        """Return the persisted value, or the flag default if absent or corrupt."""
        flag = self.flag(name)
        return self.store.get_boolean(flag.key, flag.default)

    def set(self, name: str, value: bool) -> None:
        """Persist *value* for *name*."""
        flag = self.flag(name)
        self.store.set_boolean(flag.key, bool(value))

    def snapshot(self) -> dict[str, bool]:
        """Return every flag value keyed by name."""
        return {name: self.get(name) for name in self._flags}


__all__ = [
    "DEBUG",
    "DEFAULT_FLAGS",
    "FORWARDING",
    "FlagRegistry",
    "HOTSPOT",
    "PersistedFlag",
    "SPARSE",
    "UnknownFlagError",
]
