# NetPresence Agent - Device Inventory
"""
Device object store backed by a JSON file.
Holds every device the engine has registered and remembers which ones the
user saved, along with their expiry settings and last known link details.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .identifiers import DEFAULT_SUFFIX, DeviceId
from .liveness import EXPIRY_MAX, EXPIRY_MIN, ExpiryUnit, TrackedDevice

logger = logging.getLogger("netpresence.agent.inventory")

PERSISTED_PROPERTIES = {"expiry", "expiry_unit", "address"}


class DeviceInventory:
    """Provider of device objects, with the saved ones persisted to disk."""

    def __init__(self, inventory_file: Path | None = None, suffix: str = DEFAULT_SUFFIX):
        self.inventory_file = inventory_file or (Path.home() / ".netpresence" / "devices.json")
        self.suffix = suffix
        self._devices: dict[DeviceId, TrackedDevice] = {}
        self._saved: dict[DeviceId, dict[str, Any]] = {}

    # Provider interface

    def get_device_object(self, device_id: DeviceId) -> TrackedDevice | None:
        return self._devices.get(device_id)

    def register_new_device(self, device: TrackedDevice) -> None:
        """Take ownership of a newly discovered device."""
        self._attach(device)
        record = self._saved.get(device.device_id)
        if record is None:
            return

        # a saved device showed up for the first time: apply its settings
        # read both first, observers rewrite the record as they change
        unit, expiry = record.get("expiry_unit"), record.get("expiry")
        try:
            if unit:
                device.change_expiry_unit(unit)
            if expiry:
                device.set_expiry(expiry)
        except ValueError as e:
            logger.warning(f"Ignoring saved settings for {device.device_id}: {e}")
        self._remember(device)
        self.save()

    # Saved devices

    def save_device(self, name: str, title: str | None = None) -> DeviceId:
        """Mark a device as tracked by the user and persist it."""
        device_id = DeviceId.from_name(name, self.suffix)
        record = self._saved.setdefault(device_id, {"name": name})
        record["title"] = title or record.get("title") or name

        device = self._devices.get(device_id)
        if device:
            self._remember(device)
        self.save()
        logger.info(f"Saved device {device_id}")
        return device_id

    def remove_device(self, name: str) -> bool:
        """Forget a saved device. Returns False if it was not saved."""
        device_id = DeviceId.from_name(name, self.suffix)
        if self._saved.pop(device_id, None) is None:
            return False
        self.save()
        return True

    @property
    def saved(self) -> list[tuple[DeviceId, str]]:
        """Saved devices as (identifier, title) pairs."""
        return [(device_id, record.get("title", device_id.name)) for device_id, record in self._saved.items()]

    @property
    def devices(self) -> list[TrackedDevice]:
        return list(self._devices.values())

    def saved_records(self) -> list[dict[str, Any]]:
        return [dict(r, device_id=str(i)) for i, r in self._saved.items()]

    # Persistence

    def load(self) -> None:
        """
        Load saved devices. Records with link details become device objects
        right away so they resolve as soon as the engine asks for them.
        """
        if not self.inventory_file.exists():
            return

        try:
            data = json.loads(self.inventory_file.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load inventory: {e}")
            return

        records = data.get("devices", []) if isinstance(data, dict) else None
        if not isinstance(records, list):
            logger.warning(f"Failed to load inventory: unexpected layout in {self.inventory_file}")
            return

        for record in records:
            problem = _check_record(record)
            if problem:
                logger.warning(f"Skipping saved device: {problem}")
                continue
            name = record["name"]
            device_id = DeviceId.from_name(name, self.suffix)
            self._saved[device_id] = record

            if record.get("mac_address") and record.get("interface"):
                device = TrackedDevice(
                    device_id=device_id,
                    title=record.get("title", name),
                    mac_address=record["mac_address"],
                    interface=record["interface"],
                    expiry=record.get("expiry", ExpiryUnit.SECONDS.default_expiry),
                    expiry_unit=ExpiryUnit(record.get("expiry_unit", ExpiryUnit.SECONDS.value)),
                    address=record.get("address"),
                )
                self._attach(device)

        logger.info(f"Loaded {len(self._saved)} saved devices from inventory")

    def save(self) -> None:
        """Write saved devices to the inventory file."""
        self.inventory_file.parent.mkdir(parents=True, exist_ok=True)

        try:
            data = {
                "last_updated": datetime.now(timezone.utc).isoformat(),
                "suffix": self.suffix,
                "devices": list(self._saved.values()),
            }
            self.inventory_file.write_text(json.dumps(data, indent=2))
        except OSError as e:
            logger.warning(f"Failed to save inventory: {e}")

    # Internals

    def _attach(self, device: TrackedDevice) -> None:
        self._devices[device.device_id] = device
        device.on_change(self._on_property)

    def _remember(self, device: TrackedDevice) -> None:
        record = self._saved[device.device_id]
        record.update({
            "mac_address": device.mac_address,
            "interface": device.interface,
            "expiry": device.expiry,
            "expiry_unit": device.expiry_unit.value,
            "address": device.address,
        })

    def _on_property(self, device: TrackedDevice, name: str, value: Any) -> None:
        if name == "present":
            logger.info(f"{device.title} is {'present' if value else 'absent'}")
        else:
            logger.debug(f"{device.device_id}.{name} = {value}")

        if name in PERSISTED_PROPERTIES and device.device_id in self._saved:
            self._remember(device)
            self.save()


def _check_record(record: Any) -> str | None:
    """Return why a saved record can't be used, or None if it can."""
    if not isinstance(record, dict):
        return f"not an object: {record!r}"
    name = record.get("name")
    if not isinstance(name, str) or not name:
        return f"missing name in {record!r}"

    unit = record.get("expiry_unit")
    if unit is not None:
        try:
            ExpiryUnit(unit)
        except ValueError:
            return f"{name} has unknown expiry unit {unit!r}"

    expiry = record.get("expiry")
    if expiry is not None:
        if isinstance(expiry, bool) or not isinstance(expiry, int) or not EXPIRY_MIN <= expiry <= EXPIRY_MAX:
            return f"{name} has expiry {expiry!r} outside [{EXPIRY_MIN}, {EXPIRY_MAX}]"
    return None
