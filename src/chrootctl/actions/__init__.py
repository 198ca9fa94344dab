"""Named flows built on the action orchestrator."""
from __future__ import annotations

from .chroot import LIFECYCLE_ACTIONS, SPARSE_SIZES_GB, ChrootActions, validate_size
from .network import (
    BAND_CHANNELS,
    DEFAULT_CHANNELS,
    HotspotSettings,
    NetworkActions,
    default_channel,
    interface_name,
)

__all__ = [
    "BAND_CHANNELS",
    "ChrootActions",
    "DEFAULT_CHANNELS",
    "HotspotSettings",
    "LIFECYCLE_ACTIONS",
    "NetworkActions",
    "SPARSE_SIZES_GB",
    "default_channel",
    "interface_name",
    "validate_size",
]
