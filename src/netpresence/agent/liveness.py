# NetPresence Agent - Liveness Model
"""
Per-device liveness state.
Turns "time since last contact" into age fields and a present/absent flag.
"""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .identifiers import DeviceId

logger = logging.getLogger("netpresence.agent.liveness")

EXPIRY_MIN = 1
EXPIRY_MAX = 60 * 60 * 24 * 31  # one month of seconds

NEVER_SEEN = -1


class ExpiryUnit(str, Enum):
    """Granularity of the expiry threshold."""
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"

    @property
    def factor(self) -> int:
        return UNIT_LOOKUPS[self][0]

    @property
    def default_expiry(self) -> int:
        return UNIT_LOOKUPS[self][1]


# unit -> (seconds per unit, default threshold in that unit)
UNIT_LOOKUPS: dict[ExpiryUnit, tuple[int, int]] = {
    ExpiryUnit.SECONDS: (1, 600),
    ExpiryUnit.MINUTES: (60, 10),
    ExpiryUnit.HOURS: (60 * 60, 1),
    ExpiryUnit.DAYS: (60 * 60 * 24, 1),
}


PropertyObserver = Callable[["TrackedDevice", str, Any], None]


@dataclass
class TrackedDevice:
    """
    A fully resolved device under continuous monitoring.

    Age fields and the present flag are derived state: only record_contact()
    and refresh() write them.
    """
    device_id: DeviceId
    title: str
    mac_address: str
    interface: str
    last_seen: datetime | None = None
    present: bool = False
    expiry: int = 600
    expiry_unit: ExpiryUnit = ExpiryUnit.SECONDS
    seconds: int = NEVER_SEEN
    minutes: int = NEVER_SEEN
    hours: int = NEVER_SEEN
    days: int = NEVER_SEEN
    address: str | None = None
    _observers: list[PropertyObserver] = field(default_factory=list, repr=False, compare=False)

    @property
    def description(self) -> str:
        return f"Network Presence of {self.title}"

    def on_change(self, observer: PropertyObserver) -> None:
        """Register an observer for property changes."""
        self._observers.append(observer)

    def _set(self, name: str, value: Any) -> None:
        if getattr(self, name) == value:
            return
        setattr(self, name, value)
        for observer in self._observers:
            try:
                observer(self, name, value)
            except Exception as e:
                logger.warning(f"Property observer failed for {self.device_id}.{name}: {e}")

    def record_contact(self, timestamp: datetime, address: str | None = None) -> None:
        """The device answered: reset ages and mark it present."""
        self.last_seen = timestamp
        self._set("seconds", 0)
        self._set("minutes", 0)
        self._set("hours", 0)
        self._set("days", 0)
        if address:
            self._set("address", address)
        self._set("present", True)

    def refresh(self, now: datetime) -> None:
        """Recompute ages and presence. Does nothing before the first contact."""
        if self.last_seen is None:
            return

        seconds_since = math.floor((now - self.last_seen).total_seconds())
        self._set("seconds", seconds_since)
        self._set("minutes", seconds_since // 60)
        self._set("hours", seconds_since // (60 * 60))
        self._set("days", seconds_since // (60 * 60 * 24))
        self._set("present", seconds_since // self.expiry_unit.factor < self.expiry)

    def change_expiry_unit(self, unit: ExpiryUnit | str) -> None:
        """Switch units. The threshold snaps back to the new unit's default."""
        unit = ExpiryUnit(unit)
        self._set("expiry_unit", unit)
        self._set("expiry", unit.default_expiry)

    def set_expiry(self, value: int) -> None:
        """Set the threshold, expressed in the current unit."""
        if not EXPIRY_MIN <= value <= EXPIRY_MAX:
            raise ValueError(f"Expiry must be between {EXPIRY_MIN} and {EXPIRY_MAX}, got {value}")
        self._set("expiry", value)

    def update_link(self, mac_address: str, interface: str) -> None:
        """Rediscovery moved the device; keep probing the right place."""
        self.mac_address = mac_address
        self.interface = interface

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "device_id": str(self.device_id),
            "title": self.title,
            "mac_address": self.mac_address,
            "interface": self.interface,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "present": self.present,
            "expiry": self.expiry,
            "expiry_unit": self.expiry_unit.value,
            "seconds": self.seconds,
            "minutes": self.minutes,
            "hours": self.hours,
            "days": self.days,
            "address": self.address,
        }
