# NetPresence Agent - Device Registry
"""
Single owner of the identifier -> device mapping.

An identifier is either Pending (the user asked for it but it has not been
found on the network yet) or Resolved (a fully constructed TrackedDevice).
Callers never touch the mapping directly; everything goes through resolve().
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from .identifiers import DEFAULT_SUFFIX, DeviceId
from .liveness import TrackedDevice

logger = logging.getLogger("netpresence.agent.registry")


class DeviceProvider(Protocol):
    """Host-side object store the registry promotes devices from."""

    def get_device_object(self, device_id: DeviceId) -> TrackedDevice | None: ...

    def register_new_device(self, device: TrackedDevice) -> None: ...


@dataclass(frozen=True)
class PendingDevice:
    """A device of interest with no link details yet."""
    device_id: DeviceId
    name: str


@dataclass
class UpsertResult:
    """Outcome of feeding one neighbor-table row into the registry."""
    created: bool
    device: TrackedDevice


class DeviceRegistry:
    """
    Maps identifiers to Pending or Resolved entries.

    An entry moves from Pending to Resolved at most once and never back.
    Resolved entries only start probing once someone has asked for them,
    either through mark_pending() or because they were pending when found.
    """

    def __init__(
        self,
        provider: DeviceProvider,
        suffix: str = DEFAULT_SUFFIX,
        hunt: Callable[[DeviceId], None] | None = None,
        on_resolved: Callable[[TrackedDevice], None] | None = None,
    ):
        """
        Args:
            provider: Object store consulted when promoting pending entries
            suffix: Per-installation identifier suffix
            hunt: Called to request a targeted search for a pending identifier
            on_resolved: Called once a tracked identifier becomes a device
        """
        self.provider = provider
        self.suffix = suffix
        self._hunt = hunt or (lambda device_id: None)
        self._on_resolved = on_resolved or (lambda device: None)

        self._entries: dict[DeviceId, PendingDevice | TrackedDevice] = {}
        # insertion-ordered set of identifiers the user is interested in
        self._tracked: dict[DeviceId, None] = {}

    def resolve(self, device_id: DeviceId) -> TrackedDevice | None:
        """
        Return the device for an identifier, promoting a pending entry when
        the provider has an object for it. Unknown identifiers give None
        and leave the registry unchanged.
        """
        entry = self._entries.get(device_id)
        if entry is None:
            return None
        if isinstance(entry, TrackedDevice):
            return entry

        device = self.provider.get_device_object(device_id)
        if device is None:
            self._hunt(device_id)
            return None

        self._promote(device)
        return device

    def mark_pending(self, device_id: DeviceId) -> None:
        """
        Record interest in an identifier and start hunting for it.
        An existing entry is never replaced, so repeated calls do not
        spawn duplicate hunts.
        """
        entry = self._entries.get(device_id)
        if entry is None:
            self._entries[device_id] = PendingDevice(device_id=device_id, name=device_id.name)
            self._tracked[device_id] = None
            logger.debug(f"pending {device_id}")
            self._hunt(device_id)
            return

        if isinstance(entry, TrackedDevice) and device_id not in self._tracked:
            # discovered earlier, only now asked for
            self._tracked[device_id] = None
            self._on_resolved(entry)

    def upsert_from_discovery(
        self,
        name: str,
        mac_address: str,
        interface: str,
        address: str | None = None,
    ) -> UpsertResult:
        """Insert or update the device behind one neighbor-table row."""
        device_id = DeviceId.from_name(name, self.suffix)
        entry = self._entries.get(device_id)

        if isinstance(entry, TrackedDevice):
            entry.update_link(mac_address, interface)
            return UpsertResult(created=False, device=entry)

        if isinstance(entry, PendingDevice):
            existing = self.provider.get_device_object(device_id)
            if existing is not None:
                existing.update_link(mac_address, interface)
                self._promote(existing)
                return UpsertResult(created=False, device=existing)

        device = TrackedDevice(
            device_id=device_id,
            title=name,
            mac_address=mac_address,
            interface=interface,
            address=address,
        )
        self._entries[device_id] = device
        logger.debug(f"found {name}")
        if entry is not None:
            self._on_resolved(device)
        return UpsertResult(created=True, device=device)

    def _promote(self, device: TrackedDevice) -> None:
        self._entries[device.device_id] = device
        logger.debug(f"resolved {device.device_id}")
        self._on_resolved(device)

    def get(self, device_id: DeviceId) -> PendingDevice | TrackedDevice | None:
        """Peek at an entry without promotion or hunting."""
        return self._entries.get(device_id)

    def is_tracked(self, device_id: DeviceId) -> bool:
        return device_id in self._tracked

    @property
    def tracked(self) -> list[DeviceId]:
        """Identifiers the user asked for, in the order they were added."""
        return list(self._tracked)

    @property
    def devices(self) -> list[TrackedDevice]:
        """All resolved devices, tracked or merely discovered."""
        return [e for e in self._entries.values() if isinstance(e, TrackedDevice)]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, device_id: DeviceId) -> bool:
        return device_id in self._entries
