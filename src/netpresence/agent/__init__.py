"""
NetPresence Agent - presence tracking engine.

Components:
- Liveness: per-device age and present/absent state
- Probe: ping sweeps and long-running ARP probes
- Neighbors: ARP cache reader
- Registry: pending and resolved devices by identifier
- Scheduler: sweep, tick and probe schedules
- Inventory: JSON-backed device object store
"""

from .identifiers import DeviceId
from .inventory import DeviceInventory
from .liveness import ExpiryUnit, TrackedDevice
from .neighbors import NeighborEntry, read_neighbor_table
from .probe import ContactEvent, ReachabilityProbe, Subnet, local_subnets
from .registry import DeviceProvider, DeviceRegistry, PendingDevice, UpsertResult
from .scheduler import ScanScheduler

__all__ = [
    "ContactEvent",
    "DeviceId",
    "DeviceInventory",
    "DeviceProvider",
    "DeviceRegistry",
    "ExpiryUnit",
    "NeighborEntry",
    "PendingDevice",
    "ReachabilityProbe",
    "ScanScheduler",
    "Subnet",
    "TrackedDevice",
    "UpsertResult",
    "local_subnets",
    "read_neighbor_table",
]
