"""
NetPresence - network presence tracking for home automation.

Discovers devices on the local IPv4 networks and reports, for each tracked
device, whether it is present, how long ago it was last seen and its address.
"""

__version__ = "0.3.0"
__author__ = "ByteCreeper"

from netpresence.config import PresenceConfig, load_config
from netpresence.agent import (
    DeviceId,
    DeviceInventory,
    DeviceRegistry,
    ExpiryUnit,
    ScanScheduler,
    TrackedDevice,
)

__all__ = [
    "PresenceConfig",
    "load_config",
    "DeviceId",
    "DeviceInventory",
    "DeviceRegistry",
    "ExpiryUnit",
    "ScanScheduler",
    "TrackedDevice",
]
