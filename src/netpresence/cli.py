"""Command-line interface for NetPresence."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from netpresence import __version__
from netpresence.agent import DeviceInventory, ScanScheduler, local_subnets
from netpresence.agent.neighbors import read_neighbor_table
from netpresence.agent.probe import ReachabilityProbe
from netpresence.config import PresenceConfig, load_config


console = Console()


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def load_settings(config_path: Optional[str], verbose: bool = False) -> PresenceConfig:
    """Load config, then configure logging from the flag or the config."""
    config = load_config(Path(config_path) if config_path else None)
    setup_logging(verbose or config.logging)
    return config


def format_age(seconds: int) -> str:
    if seconds < 0:
        return "never"
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m"
    elif minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def print_status(status: dict) -> None:
    """Print tracked devices as a table."""
    table = Table(title="Tracked Devices")
    table.add_column("Device", style="cyan")
    table.add_column("Present")
    table.add_column("Last Seen", justify="right")
    table.add_column("Address")
    table.add_column("MAC", style="dim")
    table.add_column("Expiry", style="dim")

    for device in status["tracked"]:
        if device.get("pending"):
            table.add_row(device["title"], "[yellow]hunting[/yellow]", "-", "-", "-", "-")
            continue
        present = "[green]yes[/green]" if device["present"] else "[red]no[/red]"
        table.add_row(
            device["title"],
            present,
            format_age(device["seconds"]),
            device["address"] or "-",
            device["mac_address"],
            f"{device['expiry']} {device['expiry_unit']}",
        )

    console.print(table)
    console.print(
        f"[dim]Known devices: {status['known_devices']} | "
        f"Sweeps: {status['sweeps_completed']} | Hunts: {status['hunts']} | "
        f"Contacts: {status['contacts']}[/dim]"
    )


@click.group()
@click.version_option(version=__version__, prog_name="netpresence")
def main():
    """NetPresence - network presence detection.

    Tracks whether devices on the local network are present.
    """
    pass


@main.command()
@click.option("-c", "--config", "config_path", type=click.Path(), help="Config file (YAML)")
@click.option("-t", "--track", "names", multiple=True, help="Device name to track (can repeat)")
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.option("--report-interval", default=30.0, type=float, help="Seconds between status tables")
def run(config_path: Optional[str], names: tuple[str, ...], verbose: bool, report_interval: float):
    """Run the presence engine until Ctrl+C.

    Saved devices from the inventory are tracked automatically; names passed
    with --track are tracked for this run only.
    """
    config = load_settings(config_path, verbose)

    inventory = DeviceInventory(config.inventory_file, suffix=config.device_suffix)
    inventory.load()
    scheduler = ScanScheduler(inventory, config=config)

    console.print(Panel.fit(
        f"[bold cyan]NetPresence[/bold cyan]\n\n"
        f"[dim]Saved devices:[/dim] {len(inventory.saved)}\n"
        f"[dim]Extra names:[/dim] {', '.join(names) or '-'}\n"
        f"[dim]Rescan:[/dim] every {config.network_rescan_interval} min",
        border_style="cyan",
    ))
    console.print("[dim]Press Ctrl+C to stop[/dim]\n")

    async def run_engine():
        await scheduler.start()
        for device_id, title in inventory.saved:
            scheduler.handle_device_saved(str(device_id), title)
        for name in names:
            scheduler.handle_device_saved(f"{name}{config.device_suffix}", name)

        try:
            while scheduler.is_running:
                await asyncio.sleep(report_interval)
                print_status(scheduler.get_status())
        finally:
            await scheduler.stop()

    try:
        asyncio.run(run_engine())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@main.command()
@click.option("-c", "--config", "config_path", type=click.Path(), help="Config file (YAML)")
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
def scan(config_path: Optional[str], verbose: bool):
    """Sweep the local networks once and show the neighbor table."""
    config = load_settings(config_path, verbose)
    subnets = local_subnets()
    if not subnets:
        console.print("[yellow]No IPv4 interfaces found[/yellow]")
        return

    probe = ReachabilityProbe(
        batch_size=config.ping_batch_size,
        ping_timeout=config.ping_timeout,
        max_concurrent=config.max_concurrent_sweeps,
    )

    async def sweep():
        result = await probe.bulk_sweep(subnets)
        if result.all_failed:
            return None
        return await read_neighbor_table()

    with console.status(f"[blue]Sweeping {len(subnets)} networks...[/blue]"):
        entries = asyncio.run(sweep())

    if entries is None:
        console.print("[red]Sweep failed, see log for details[/red]")
        return

    table = Table(title="Neighbors")
    table.add_column("Name", style="cyan")
    table.add_column("MAC")
    table.add_column("Interface", style="dim")
    for entry in entries:
        table.add_row(entry.name, entry.mac_address, entry.interface)
    console.print(table)
    console.print(f"\n[bold]Found:[/bold] {len(entries)} devices")


@main.command()
def subnets():
    """List the networks that would be swept."""
    table = Table(title="Local Networks")
    table.add_column("Interface", style="cyan")
    table.add_column("Network")
    table.add_column("Addresses", justify="right")

    for subnet in local_subnets():
        table.add_row(subnet.interface, str(subnet.network), str(len(subnet.targets())))

    console.print(table)


@main.command()
@click.argument("name")
@click.option("--title", default=None, help="Display name")
@click.option("-c", "--config", "config_path", type=click.Path(), help="Config file (YAML)")
def track(name: str, title: Optional[str], config_path: Optional[str]):
    """Save a device so every run tracks it."""
    config = load_settings(config_path)
    inventory = DeviceInventory(config.inventory_file, suffix=config.device_suffix)
    inventory.load()
    try:
        device_id = inventory.save_device(name, title)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1)
    console.print(f"[green]Tracking[/green] {device_id}")


@main.command()
@click.argument("name")
@click.option("-c", "--config", "config_path", type=click.Path(), help="Config file (YAML)")
def forget(name: str, config_path: Optional[str]):
    """Stop tracking a saved device."""
    config = load_settings(config_path)
    inventory = DeviceInventory(config.inventory_file, suffix=config.device_suffix)
    inventory.load()
    if inventory.remove_device(name):
        console.print(f"[green]Removed[/green] {name}")
    else:
        console.print(f"[yellow]{name} is not saved[/yellow]")


@main.command()
@click.option("-c", "--config", "config_path", type=click.Path(), help="Config file (YAML)")
def devices(config_path: Optional[str]):
    """List saved devices."""
    config = load_settings(config_path)
    inventory = DeviceInventory(config.inventory_file, suffix=config.device_suffix)
    inventory.load()

    records = inventory.saved_records()
    if not records:
        console.print("[yellow]No saved devices[/yellow]")
        return

    table = Table(title="Saved Devices")
    table.add_column("Identifier", style="cyan")
    table.add_column("Title")
    table.add_column("MAC")
    table.add_column("Interface", style="dim")
    table.add_column("Expiry", style="dim")

    for record in records:
        expiry = f"{record['expiry']} {record.get('expiry_unit', 'seconds')}" if "expiry" in record else "-"
        table.add_row(
            record["device_id"],
            record.get("title", record["name"]),
            record.get("mac_address") or "-",
            record.get("interface") or "-",
            expiry,
        )

    console.print(table)


if __name__ == "__main__":
    main()
