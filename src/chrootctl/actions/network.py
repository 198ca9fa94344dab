"""Hotspot and forward-NAT flows plus their persisted settings."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass

from ..orchestrator import ActionOrchestrator, ActionSpec, Operation
from ..outcomes import ExitCodeClassifier, LenientStopClassifier, forwarding_started, hotspot_started
from ..state import SettingsStore

_LOG = logging.getLogger(__name__)

HOTSPOT_SETTINGS_KEY = "chroot_hotspot_settings"
HOTSPOT_IFACE_KEY = "chroot_hotspot_iface"
HOTSPOT_IFACES_CACHE_KEY = "chroot_hotspot_interfaces_cache"
FORWARD_IFACES_CACHE_KEY = "chroot_forward_nat_interfaces_cache"
FORWARD_IFACE_KEY = "chroot_selected_interface"

BAND_CHANNELS: dict[str, tuple[int, ...]] = {
    "2": tuple(range(1, 12)),
    "5": (
        36, 40, 44, 48, 52, 56, 60, 64, 100, 104, 108, 112,
        116, 120, 124, 128, 132, 136, 140, 149, 153, 157, 161, 165,
    ),
}
DEFAULT_CHANNELS = {"2": "6", "5": "36"}

INTERFACE_KINDS = ("hotspot", "forward")


def default_channel(band: str) -> str:
    """Return the default channel for *band* (``2`` or ``5``)."""
    return DEFAULT_CHANNELS.get(band, DEFAULT_CHANNELS["2"])


def interface_name(entry: str) -> str:
    """Strip the ``:address`` suffix some interface entries carry."""
    return entry.split(":", 1)[0].strip()


@dataclass
class HotspotSettings:
    """Saved hotspot form values."""

    iface: str = ""
    ssid: str = ""
    password: str = ""
    band: str = "2"
    channel: str = "6"

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> HotspotSettings:
        """Build settings from a stored mapping, repairing band and channel."""
        band = str(data.get("band") or "2")
        if band not in BAND_CHANNELS:
            band = "2"
        channel = str(data.get("channel") or "")
        if not channel.isdigit() or int(channel) not in BAND_CHANNELS[band]:
            channel = default_channel(band)
        return cls(
            iface=str(data.get("iface") or ""),
            ssid=str(data.get("ssid") or ""),
            password=str(data.get("password") or ""),
            band=band,
            channel=channel,
        )

    def to_dict(self) -> dict[str, str]:
        """Return the JSON-ready representation."""
        return asdict(self)


class NetworkActions:
    """Hotspot and forward-NAT control."""

    def __init__(self, orchestrator: ActionOrchestrator, store: SettingsStore) -> None:
        """Run flows through *orchestrator*, persist settings in *store*."""
        self.orchestrator = orchestrator
        self.store = store
        self.commands = orchestrator.commands

    # ------------------------------------------------------------------
    # Hotspot
    # ------------------------------------------------------------------
    def load_hotspot_settings(self) -> HotspotSettings:
        """Return the saved hotspot settings (defaults when absent or corrupt)."""
        data = self.store.get_json(HOTSPOT_SETTINGS_KEY)
        if not isinstance(data, Mapping):
            return HotspotSettings()
        return HotspotSettings.from_mapping(data)

    def save_hotspot_settings(self, settings: HotspotSettings) -> None:
        """Persist *settings* and remember the chosen interface."""
        self.store.set_json(HOTSPOT_SETTINGS_KEY, settings.to_dict())
        if settings.iface:
            self.store.set(HOTSPOT_IFACE_KEY, settings.iface)

    def validate_hotspot(self, settings: HotspotSettings) -> str | None:
        """Return the first problem with *settings*, or ``None``."""
        if not (settings.iface.strip() and settings.ssid.strip() and settings.password and settings.channel):
            return "All fields are required"
        minimum = self.orchestrator.config.hotspot.min_password_length
        if len(settings.password) < minimum:
            return f"Password must be at least {minimum} characters"
        return None

    async def start_hotspot(self, settings: HotspotSettings) -> Operation:
        """Start the access point with *settings*."""
        settings = HotspotSettings(
            iface=settings.iface.strip(),
            ssid=settings.ssid.strip(),
            password=settings.password,
            band=settings.band,
            channel=settings.channel,
        )
        spec = ActionSpec(
            name="hotspot-start",
            title="Starting hotspot",
            command=self.commands.hotspot_start(
                interface=settings.iface,
                ssid=settings.ssid,
                password=settings.password,
                band=settings.band,
                channel=settings.channel,
            ),
            progress_text="Starting hotspot",
            validator=lambda: self.validate_hotspot(settings),
            on_start=lambda: self.save_hotspot_settings(settings),
            classifier=hotspot_started(),
            on_success={"hotspot": True},
            success_message="✓ Hotspot started successfully",
            failure_message="✗ Failed to start hotspot",
            log_args={"iface": settings.iface, "band": settings.band, "channel": settings.channel},
        )
        return await self.orchestrator.run(spec)

    async def stop_hotspot(self) -> Operation:
        """Tear the access point down."""
        spec = ActionSpec(
            name="hotspot-stop",
            title="Stopping hotspot",
            command=self.commands.hotspot_stop(),
            progress_text="Stopping hotspot",
            classifier=ExitCodeClassifier("✗ Failed to stop hotspot (exit code: {exit_code})"),
            on_success={"hotspot": False},
            success_message="✓ Hotspot stopped successfully",
            reconcile_flags=("hotspot",),
        )
        return await self.orchestrator.run(spec)

    # ------------------------------------------------------------------
    # Forward NAT
    # ------------------------------------------------------------------
    async def start_forwarding(self, interface: str) -> Operation:
        """Route chroot traffic out through *interface*."""
        iface = interface.strip()
        spec = ActionSpec(
            name="forwarding-start",
            title=f"Starting forwarding on {iface}",
            command=self.commands.forward_start(iface),
            progress_text=f"Starting forwarding on {iface}",
            validator=lambda: None if iface else "Please select a network interface",
            on_start=lambda: self.store.set(FORWARD_IFACE_KEY, iface),
            classifier=forwarding_started(),
            on_success={"forwarding": True},
            success_message=f"✓ Forwarding started successfully on {iface}",
            failure_message="✗ Failed to start forwarding",
            log_args={"iface": iface},
        )
        return await self.orchestrator.run(spec)

    async def stop_forwarding(self) -> Operation:
        """Remove the forwarding rules; the flag is cleared whatever happens."""
        spec = ActionSpec(
            name="forwarding-stop",
            title="Stopping forwarding",
            command=self.commands.forward_stop(),
            progress_text="Stopping forwarding",
            classifier=LenientStopClassifier(),
            always={"forwarding": False},
            success_message="✓ Forwarding stopped successfully",
        )
        return await self.orchestrator.run(spec)

    def saved_forward_interface(self) -> str | None:
        """Return the interface last used for forwarding."""
        return self.store.get(FORWARD_IFACE_KEY)

    # ------------------------------------------------------------------
    # Interfaces
    # ------------------------------------------------------------------
    async def interfaces(self, kind: str, *, refresh: bool = False) -> list[str]:
        """List candidate interfaces for ``hotspot`` or ``forward``.

        Results are cached in the settings store; the cache is used unless it
        is empty or *refresh* is set. The hotspot's own interface is never
        offered as a hotspot uplink.
        """
        if kind not in INTERFACE_KINDS:
            raise ValueError(f"Unknown interface kind: {kind}")
        hotspot = kind == "hotspot"
        cache_key = HOTSPOT_IFACES_CACHE_KEY if hotspot else FORWARD_IFACES_CACHE_KEY

        cached = self.store.get_json(cache_key)
        if not refresh and isinstance(cached, list) and cached:
            entries = [str(item) for item in cached]
            return self._filter(entries) if hotspot else entries

        session = self.orchestrator.session
        if not session.privileged_access_confirmed:
            raise session.access_failure()
        output = await self.orchestrator.executor.execute(
            self.commands.list_interfaces(include_all=hotspot)
        )
        entries = [item.strip() for item in output.strip().split(",") if item.strip()]
        if hotspot:
            entries = self._filter(entries)
        self.store.set_json(cache_key, entries)
        return entries

    def _filter(self, entries: list[str]) -> list[str]:
        own = self.orchestrator.config.hotspot.interface
        return [entry for entry in entries if interface_name(entry) != own]


__all__ = [
    "BAND_CHANNELS",
    "DEFAULT_CHANNELS",
    "HotspotSettings",
    "NetworkActions",
    "default_channel",
    "interface_name",
]
