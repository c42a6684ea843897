# NetPresence Agent - Scan Scheduler
"""
Drives the presence engine.

Three independent schedules share one event loop:
  - network sweep: at startup, then every network_rescan_interval minutes
  - tick: every tick_interval seconds, recomputes ages and presence
  - active probe restart: every (arping_count - 1) seconds

Each schedule's effect is idempotent or only moves state forward in time,
so their relative order does not matter.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from datetime import datetime, timezone
from typing import Any

from ..config import PresenceConfig
from .identifiers import DeviceId
from .liveness import TrackedDevice
from .neighbors import NeighborEntry, read_neighbor_table
from .probe import ReachabilityProbe, Subnet, local_subnets
from .registry import DeviceProvider, DeviceRegistry, UpsertResult

logger = logging.getLogger("netpresence.agent.scheduler")

NeighborReader = Callable[[], Awaitable[list[NeighborEntry] | None]]


class ScanScheduler:
    """
    Owns the registry and the recurring work that feeds it.
    All registry and device mutation happens on the event loop between awaits.
    """

    def __init__(
        self,
        provider: DeviceProvider,
        config: PresenceConfig | None = None,
        probe: ReachabilityProbe | None = None,
        subnets: list[Subnet] | None = None,
        neighbor_reader: NeighborReader = read_neighbor_table,
    ):
        """
        Args:
            provider: Host object store for devices
            config: Engine settings, defaults when omitted
            probe: Reachability probe, built from config when omitted
            subnets: Networks to sweep, detected at start() when omitted
            neighbor_reader: Coroutine returning the parsed neighbor table
        """
        self.config = config or PresenceConfig()
        self.provider = provider
        self.probe = probe or ReachabilityProbe(
            batch_size=self.config.ping_batch_size,
            ping_timeout=self.config.ping_timeout,
            max_concurrent=self.config.max_concurrent_sweeps,
        )
        self.registry = DeviceRegistry(
            provider,
            suffix=self.config.device_suffix,
            hunt=self.hunt,
            on_resolved=self.start_probe,
        )
        self.subnets = subnets
        self._read_table = neighbor_reader

        self._running = False
        self._start_time: datetime | None = None
        self._loops: list[asyncio.Task] = []
        self._background: set[asyncio.Task] = set()
        self._hunting: set[DeviceId] = set()

        self.stats = {
            "sweeps_completed": 0,
            "sweeps_failed": 0,
            "hunts": 0,
            "probes_started": 0,
            "contacts": 0,
        }

    async def start(self) -> None:
        """Detect subnets and start the schedules. Returns immediately."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        self._start_time = datetime.now(timezone.utc)

        if self.subnets is None:
            self.subnets = local_subnets()
        if not self.subnets:
            logger.warning("No IPv4 interfaces found, network sweeps will find nothing")

        logger.info(
            f"Presence scheduler starting: {len(self.subnets)} subnets, "
            f"rescan every {self.config.network_rescan_interval} min"
        )

        self._loops = [
            asyncio.create_task(self._sweep_loop(), name="netpresence-sweep"),
            asyncio.create_task(self._tick_loop(), name="netpresence-tick"),
            asyncio.create_task(self._probe_loop(), name="netpresence-probe"),
        ]

    async def run(self) -> None:
        """Start and keep running until cancelled or stopped."""
        await self.start()
        try:
            await asyncio.gather(*self._loops)
        except asyncio.CancelledError:
            logger.info("Scheduler cancelled")
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Cancel the schedules and every in-flight sweep and probe."""
        if not self._running:
            return

        self._running = False
        tasks = self._loops + list(self._background)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops = []
        self._background.clear()
        self._hunting.clear()
        logger.info("Presence scheduler stopped")

    # Schedules

    async def _sweep_loop(self) -> None:
        interval = self.config.network_rescan_interval * 60
        while self._running:
            # a slow sweep may still be running when the next one fires
            self._spawn(self._safe_scan(), "netpresence-scan")
            await asyncio.sleep(interval)

    async def _tick_loop(self) -> None:
        while self._running:
            self.tick()
            await asyncio.sleep(self.config.tick_interval)

    async def _probe_loop(self) -> None:
        interval = self.config.arping_count - 1
        while self._running:
            await asyncio.sleep(interval)
            self.restart_probes()

    # Work

    async def scan_network(self, device_id: DeviceId | None = None) -> list[UpsertResult]:
        """
        Sweep, then fold the neighbor table into the registry.

        With device_id, only that device's name is probed; the whole table
        is still read so anything else that answered is picked up too.
        """
        if device_id is None:
            sweep = await self.probe.bulk_sweep(self.subnets or [])
        else:
            logger.debug(f"hunting {device_id.name}")
            sweep = await self.probe.targeted_sweep(device_id.name)

        if sweep.all_failed:
            logger.warning("Every sweep command failed, skipping neighbor table read")
            self.stats["sweeps_failed"] += 1
            return []

        entries = await self._read_table()
        if entries is None:
            self.stats["sweeps_failed"] += 1
            return []

        results = []
        for entry in entries:
            result = self.registry.upsert_from_discovery(
                entry.name, entry.mac_address, entry.interface, entry.address
            )
            if result.created:
                self.provider.register_new_device(result.device)
                self.registry.resolve(result.device.device_id)
            results.append(result)

        self.stats["sweeps_completed"] += 1
        return results

    async def _safe_scan(self, device_id: DeviceId | None = None) -> None:
        try:
            await self.scan_network(device_id)
        except Exception as e:
            logger.error(f"Network scan error: {e}")
            self.stats["sweeps_failed"] += 1

    def hunt(self, device_id: DeviceId) -> None:
        """Start a targeted search unless one is already running for this device."""
        if device_id in self._hunting:
            return
        self._hunting.add(device_id)
        self.stats["hunts"] += 1
        self._spawn(self._hunt(device_id), f"netpresence-hunt-{device_id}")

    async def _hunt(self, device_id: DeviceId) -> None:
        try:
            await self._safe_scan(device_id)
        finally:
            self._hunting.discard(device_id)

    def tick(self, now: datetime | None = None) -> None:
        """Resolve every tracked identifier and refresh the resolved ones."""
        now = now or datetime.now(timezone.utc)
        for device_id in self.registry.tracked:
            device = self.registry.resolve(device_id)
            if device:
                device.refresh(now)

    def restart_probes(self) -> None:
        """Start a fresh active probe for every resolved tracked device."""
        for device_id in self.registry.tracked:
            device = self.registry.resolve(device_id)
            if device:
                self.start_probe(device)

    def start_probe(self, device: TrackedDevice) -> None:
        """Run one active probe for the device in the background."""
        self.stats["probes_started"] += 1
        self._spawn(self._track(device), f"netpresence-probe-{device.device_id}")

    async def _track(self, device: TrackedDevice) -> None:
        async for event in self.probe.active_probe(device, self.config.arping_count):
            device.record_contact(event.timestamp, event.source_address)
            self.stats["contacts"] += 1

    # Host hooks

    def start_pairing(self) -> None:
        """Sweep once right away so new devices show up quickly."""
        self._spawn(self._safe_scan(), "netpresence-pairing")

    def handle_device_saved(self, raw_id: str, title: str = "") -> None:
        """The user saved a device: track it, hunting for it if needed."""
        device_id = DeviceId.parse(raw_id, self.config.device_suffix)
        if device_id is None:
            return

        logger.debug(f"informed of {title or device_id.name}")
        if self.registry.resolve(device_id) is None or not self.registry.is_tracked(device_id):
            self.registry.mark_pending(device_id)

    # Helpers

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"{task.get_name()} failed: {exc!r}")

    def get_status(self) -> dict[str, Any]:
        """Snapshot for status displays."""
        devices = []
        for device_id in self.registry.tracked:
            entry = self.registry.get(device_id)
            if isinstance(entry, TrackedDevice):
                devices.append(entry.to_dict())
            else:
                devices.append({"device_id": str(device_id), "title": device_id.name, "pending": True})

        return {
            "running": self._running,
            "start_time": self._start_time.isoformat() if self._start_time else None,
            "subnets": [str(s.network) for s in self.subnets or []],
            "known_devices": len(self.registry),
            "tracked": devices,
            "background_tasks": len(self._background),
            **self.stats,
        }

    @property
    def is_running(self) -> bool:
        return self._running
