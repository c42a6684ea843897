# NetPresence Agent - Neighbor Table
"""
Reads the system ARP cache.
Each resolved row becomes a (name, MAC, interface) entry.
"""

import logging
import re
from dataclasses import dataclass
from ipaddress import IPv4Address

from .process import run_shell

logger = logging.getLogger("netpresence.agent.neighbors")

NEIGHBOR_COMMAND = "arp ; exit 0"

MAC_PATTERN = re.compile(r"^([0-9A-Fa-f]{2}[:-]){5}[0-9A-Fa-f]{2}$")


@dataclass(frozen=True)
class NeighborEntry:
    """One resolved row of the neighbor table."""
    name: str
    mac_address: str
    interface: str
    address: str | None = None


def _is_ipv4(value: str) -> bool:
    try:
        IPv4Address(value)
        return True
    except ValueError:
        return False


def parse_neighbor_line(line: str) -> NeighborEntry | None:
    """
    Parse one line of `arp` output:

        router.lan   ether   aa:bb:cc:dd:ee:ff   C   eth0

    Returns None for headers, unresolved and malformed rows.
    """
    line = re.sub(r" +", " ", line.strip())
    if not line or "(incomplete)" in line or "HWtype" in line:
        return None

    cols = line.split(" ")
    if len(cols) < 5:
        return None

    host, mac, iface = cols[0], cols[2], cols[-1]
    if not MAC_PATTERN.match(mac):
        return None

    if _is_ipv4(host):
        return NeighborEntry(name=host, mac_address=mac.lower(), interface=iface, address=host)

    name = host.split(".")[0]
    if not name:
        return None
    return NeighborEntry(name=name, mac_address=mac.lower(), interface=iface)


def parse_neighbor_table(output: str) -> list[NeighborEntry]:
    """Parse the full `arp` output. Bad lines are skipped, never raised."""
    entries = []
    for line in output.splitlines():
        entry = parse_neighbor_line(line)
        if entry:
            entries.append(entry)
    return entries


async def read_neighbor_table() -> list[NeighborEntry] | None:
    """
    Query the neighbor table.
    Returns None when the query itself failed, so callers can skip the cycle.
    """
    result = await run_shell(NEIGHBOR_COMMAND)
    if result.error:
        logger.error(f"arp: {result.error}")
        return None
    if result.stderr.strip():
        logger.error(f"arp failed: {result.stderr.strip()}")
        return None
    return parse_neighbor_table(result.stdout)
