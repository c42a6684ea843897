"""Tests for the reachability probe."""

import asyncio
import logging
import socket
from collections import namedtuple
from ipaddress import IPv4Network
from unittest.mock import AsyncMock, patch

import pytest

from netpresence.agent.identifiers import DeviceId
from netpresence.agent.liveness import TrackedDevice
from netpresence.agent.probe import (
    ReachabilityProbe,
    Subnet,
    build_sweep_commands,
    local_subnets,
    parse_arping_line,
)
from netpresence.agent.process import CommandResult


Addr = namedtuple("Addr", "family address netmask broadcast ptp")


def subnet(cidr: str, iface: str = "eth0") -> Subnet:
    return Subnet(interface=iface, network=IPv4Network(cidr))


def ok(command: str) -> CommandResult:
    return CommandResult(command=command, returncode=0)


@pytest.fixture
def device():
    return TrackedDevice(
        device_id=DeviceId.from_name("phone"),
        title="phone",
        mac_address="aa:bb:cc:dd:ee:ff",
        interface="wlan0",
    )


class TestSubnet:
    """Test sweep target selection."""

    def test_tiny_range_probes_everything(self):
        """A /30 has four addresses and all of them are probed."""
        assert subnet("10.0.0.0/30").targets() == ["10.0.0.0", "10.0.0.1", "10.0.0.2", "10.0.0.3"]

    def test_skips_network_and_broadcast(self):
        targets = subnet("192.168.1.0/25").targets()
        assert len(targets) == 126
        assert "192.168.1.0" not in targets
        assert "192.168.1.127" not in targets
        assert targets[0] == "192.168.1.1"

    def test_single_host(self):
        assert subnet("10.1.2.3/32").targets() == ["10.1.2.3"]


class TestBuildSweepCommands:
    """Test batching of ping commands."""

    def test_batches(self):
        """A /28 has 14 targets: one full batch of 11 and one of 3."""
        commands = build_sweep_commands([subnet("10.0.0.0/28")], batch_size=11)

        assert len(commands) == 2
        assert commands[0].count("ping -c 1") == 11
        assert commands[1].count("ping -c 1") == 3
        assert all(c.endswith("exit 0") for c in commands)

    def test_command_format(self):
        commands = build_sweep_commands([subnet("10.0.0.0/31")], batch_size=5, ping_timeout=2)
        assert commands == ["ping -c 1 -W 2 10.0.0.0;ping -c 1 -W 2 10.0.0.1;exit 0"]

    def test_exact_multiple(self):
        """No empty trailing batch when targets divide evenly."""
        commands = build_sweep_commands([subnet("10.0.0.0/30")], batch_size=2)
        assert len(commands) == 2

    def test_batches_per_subnet(self):
        commands = build_sweep_commands(
            [subnet("10.0.0.0/30"), subnet("10.0.1.0/30", "eth1")], batch_size=11
        )
        assert len(commands) == 2
        assert "10.0.1.3" in commands[1]

    def test_no_subnets(self):
        assert build_sweep_commands([]) == []


class TestLocalSubnets:
    """Test interface discovery."""

    def test_filters_interfaces(self):
        fake = {
            "lo": [Addr(socket.AF_INET, "127.0.0.1", "255.0.0.0", None, None)],
            "eth0": [
                Addr(socket.AF_INET, "192.168.1.10", "255.255.255.0", None, None),
                Addr(socket.AF_INET6, "fe80::1", "ffff:ffff:ffff:ffff::", None, None),
            ],
            "tun0": [Addr(socket.AF_INET, "10.8.0.2", None, None, None)],
        }
        with patch("netpresence.agent.probe.psutil.net_if_addrs", return_value=fake):
            subnets = local_subnets()

        assert subnets == [Subnet(interface="eth0", network=IPv4Network("192.168.1.0/24"))]


class TestParseArpingLine:
    """Test reply line parsing."""

    def test_reply(self):
        line = "42 bytes from 192.168.1.20 (aa:bb:cc:dd:ee:ff): index=0 time=1.103 msec"
        assert parse_arping_line(line) == "192.168.1.20"

    @pytest.mark.parametrize("line", [
        "ARPING aa:bb:cc:dd:ee:ff",
        "Timeout",
        "",
        "--- aa:bb:cc:dd:ee:ff statistics ---",
    ])
    def test_non_reply(self, line):
        assert parse_arping_line(line) is None


class TestReachabilityProbe:
    """Test sweeps and active probing."""

    @pytest.mark.asyncio
    async def test_bulk_sweep_runs_every_batch(self):
        runner = AsyncMock(side_effect=ok)
        probe = ReachabilityProbe(batch_size=11, runner=runner)

        result = await probe.bulk_sweep([subnet("10.0.0.0/28")])

        assert runner.await_count == 2
        assert result.commands == 2
        assert result.failures == []
        assert not result.all_failed

    @pytest.mark.asyncio
    async def test_bulk_sweep_bounded(self):
        """No more than max_concurrent batches run at the same time."""
        running = 0
        peak = 0

        async def runner(command):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0)
            running -= 1
            return ok(command)

        probe = ReachabilityProbe(batch_size=1, max_concurrent=3, runner=runner)
        result = await probe.bulk_sweep([subnet("10.0.0.0/28")])

        assert result.commands == 14
        assert peak <= 3

    @pytest.mark.asyncio
    async def test_bulk_sweep_reports_failures(self):
        """Failed batches are collected, not raised."""
        results = iter([
            CommandResult(command="a", stderr="ping: socket: Operation not permitted"),
            ok("b"),
        ])
        probe = ReachabilityProbe(batch_size=11, runner=AsyncMock(side_effect=lambda c: next(results)))

        result = await probe.bulk_sweep([subnet("10.0.0.0/28")])

        assert len(result.failures) == 1
        assert not result.all_failed

    @pytest.mark.asyncio
    async def test_bulk_sweep_all_failed(self):
        runner = AsyncMock(side_effect=lambda c: CommandResult(command=c, error="not found"))
        probe = ReachabilityProbe(runner=runner)

        result = await probe.bulk_sweep([subnet("10.0.0.0/30")])

        assert result.all_failed

    @pytest.mark.asyncio
    async def test_targeted_sweep(self):
        runner = AsyncMock(side_effect=ok)
        probe = ReachabilityProbe(runner=runner)

        await probe.targeted_sweep("phone")

        commands = [call.args[0] for call in runner.await_args_list]
        assert commands == [
            "ping -c 1 -4 -W 1 phone ; exit 0",
            "arping -c 1 phone ; exit 0",
        ]

    @pytest.mark.asyncio
    async def test_targeted_sweep_logs_tool_name(self, caplog):
        """Failures are attributed to the command that produced them."""
        def runner(command):
            if command.startswith("arping"):
                return CommandResult(command=command, stderr="arping: no such device\n")
            return CommandResult(command=command, error="not found")
        probe = ReachabilityProbe(runner=AsyncMock(side_effect=runner))

        with caplog.at_level(logging.WARNING, logger="netpresence.agent.probe"):
            await probe.targeted_sweep("phone")

        assert "arping failed: arping: no such device" in caplog.text
        assert "ping: not found" in caplog.text
        assert "ping failed: arping" not in caplog.text

    @pytest.mark.asyncio
    async def test_targeted_sweep_quotes_name(self):
        runner = AsyncMock(side_effect=ok)
        probe = ReachabilityProbe(runner=runner)

        await probe.targeted_sweep("x; rm -rf /")

        for call in runner.await_args_list:
            assert "'x; rm -rf /'" in call.args[0]

    @pytest.mark.asyncio
    async def test_active_probe(self, device):
        """Reply lines become contact events; other lines are ignored."""
        lines = [
            "ARPING aa:bb:cc:dd:ee:ff",
            "42 bytes from 192.168.1.20 (aa:bb:cc:dd:ee:ff): index=0 time=1.1 msec",
            "Timeout",
            "42 bytes from 192.168.1.21 (aa:bb:cc:dd:ee:ff): index=1 time=0.9 msec",
        ]
        calls = []

        async def streamer(*args):
            calls.append(args)
            for line in lines:
                yield line

        probe = ReachabilityProbe(streamer=streamer)
        events = [event async for event in probe.active_probe(device, count=5)]

        assert calls == [("arping", "-c", "5", "-i", "wlan0", "aa:bb:cc:dd:ee:ff")]
        assert [e.source_address for e in events] == ["192.168.1.20", "192.168.1.21"]
        assert events[0].timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_active_probe_process_failure(self, device):
        """A probe that never produced output just ends."""
        async def streamer(*args):
            return
            yield

        probe = ReachabilityProbe(streamer=streamer)
        events = [event async for event in probe.active_probe(device)]

        assert events == []
