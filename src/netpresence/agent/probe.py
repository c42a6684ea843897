# NetPresence Agent - Reachability Probe
"""
Echo-request sweeps and long-running ARP probes.

Sweeps only exist to populate the neighbor table; their results are read
back from there. The active probe is the real-time liveness signal: many
devices ignore pings to save battery or for privacy, but still answer ARP.
"""

import asyncio
import logging
import shlex
import socket
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from ipaddress import IPv4Network

import psutil

from ..config import ARPING_COUNT
from .liveness import TrackedDevice
from .process import CommandResult, run_shell, stream_lines

logger = logging.getLogger("netpresence.agent.probe")

TINY_RANGE = 4

ShellRunner = Callable[[str], Awaitable[CommandResult]]
LineStreamer = Callable[..., AsyncIterator[str]]


@dataclass(frozen=True)
class Subnet:
    """A local IPv4 network to sweep."""
    interface: str
    network: IPv4Network

    def targets(self) -> list[str]:
        """Addresses to probe, skipping network and broadcast unless the range is tiny."""
        if self.network.num_addresses <= TINY_RANGE:
            return [str(ip) for ip in self.network]
        return [str(ip) for ip in self.network.hosts()]


@dataclass
class ContactEvent:
    """A reply observed by the active probe."""
    source_address: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SweepResult:
    """Summary of one sweep. Success says nothing about devices found."""
    commands: int = 0
    failures: list[CommandResult] = field(default_factory=list)

    @property
    def all_failed(self) -> bool:
        return self.commands > 0 and len(self.failures) == self.commands


def local_subnets() -> list[Subnet]:
    """Find every non-loopback IPv4 network this host is attached to."""
    subnets = []
    for iface, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family != socket.AF_INET or not addr.netmask:
                continue
            try:
                network = IPv4Network(f"{addr.address}/{addr.netmask}", strict=False)
            except ValueError:
                continue
            if network.is_loopback:
                continue
            subnets.append(Subnet(interface=iface, network=network))
            logger.debug(f"interface {iface}: {network}")
    return subnets


def build_sweep_commands(
    subnets: list[Subnet],
    batch_size: int = 11,
    ping_timeout: int = 1,
) -> list[str]:
    """
    Group one-shot pings into shell commands of batch_size pings each.
    Every command ends with `exit 0` so unanswered pings do not show as errors.
    """
    commands = []
    for subnet in subnets:
        batch: list[str] = []
        for ip in subnet.targets():
            batch.append(f"ping -c 1 -W {ping_timeout} {ip};")
            if len(batch) >= batch_size:
                commands.append("".join(batch) + "exit 0")
                batch = []
        if batch:
            commands.append("".join(batch) + "exit 0")
    return commands


def parse_arping_line(line: str) -> str | None:
    """
    Extract the responder from an arping reply line:

        42 bytes from 192.168.1.20 (aa:bb:cc:dd:ee:ff): index=0 time=1.1 msec
    """
    if " bytes " not in line:
        return None
    parts = line.split(" ")
    return parts[3] if len(parts) > 3 else None


class ReachabilityProbe:
    """Runs sweeps and active probes through injectable process runners."""

    def __init__(
        self,
        batch_size: int = 11,
        ping_timeout: int = 1,
        max_concurrent: int = 16,
        runner: ShellRunner = run_shell,
        streamer: LineStreamer = stream_lines,
    ):
        """
        Args:
            batch_size: Pings per shell invocation
            ping_timeout: Seconds to wait for each echo reply
            max_concurrent: Shell invocations allowed to run at once
            runner: Runs one shell command
            streamer: Spawns a process and yields its stdout lines
        """
        self.batch_size = batch_size
        self.ping_timeout = ping_timeout
        self.max_concurrent = max_concurrent
        self._runner = runner
        self._streamer = streamer

    async def bulk_sweep(self, subnets: list[Subnet]) -> SweepResult:
        """Ping every address of every subnet. Returns once all batches finish."""
        commands = build_sweep_commands(subnets, self.batch_size, self.ping_timeout)
        logger.debug(f"Sweeping {len(subnets)} subnets in {len(commands)} batches")
        return await self._run_all(commands)

    async def targeted_sweep(self, name: str) -> SweepResult:
        """One ping and one ARP request aimed at a single name or address."""
        target = shlex.quote(name)
        return await self._run_all([
            f"ping -c 1 -4 -W {self.ping_timeout} {target} ; exit 0",
            f"arping -c 1 {target} ; exit 0",
        ])

    async def _run_all(self, commands: list[str]) -> SweepResult:
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def run(command: str) -> CommandResult:
            async with semaphore:
                return await self._runner(command)

        results = await asyncio.gather(*[run(c) for c in commands])

        sweep = SweepResult(commands=len(commands))
        for result in results:
            tool = result.command.split(maxsplit=1)[0] if result.command.strip() else "command"
            if result.error:
                logger.error(f"{tool}: {result.error}")
            if result.failed:
                if result.stderr.strip():
                    logger.warning(f"{tool} failed: {result.stderr.strip()}")
                sweep.failures.append(result)
        return sweep

    async def active_probe(
        self,
        device: TrackedDevice,
        count: int = ARPING_COUNT,
    ) -> AsyncIterator[ContactEvent]:
        """
        Stream contacts from a long-running arping bound to the device's MAC.
        Ends when the run's query budget is spent or the process fails.
        """
        logger.debug(f"tracking {device.title}")
        async for line in self._streamer(
            "arping", "-c", str(count), "-i", device.interface, device.mac_address
        ):
            source = parse_arping_line(line)
            if source:
                yield ContactEvent(source_address=source)
        logger.debug(f"arping completed for {device.title}")
