# NetPresence Agent - Device Identifiers
"""Stable device identifiers derived from discovered names."""

from dataclasses import dataclass

DEFAULT_SUFFIX = "-netpresence"


@dataclass(frozen=True)
class DeviceId:
    """
    Identifier of a device: its discovered name plus a per-installation suffix.

    Built once from a name and passed around as-is; the name is never
    re-derived from the string form.
    """
    name: str
    suffix: str = DEFAULT_SUFFIX

    @classmethod
    def from_name(cls, name: str, suffix: str = DEFAULT_SUFFIX) -> "DeviceId":
        if not name:
            raise ValueError("Device name must not be empty")
        return cls(name=name, suffix=suffix)

    @classmethod
    def parse(cls, raw: str, suffix: str = DEFAULT_SUFFIX) -> "DeviceId | None":
        """Parse an identifier string. Returns None if it is not one of ours."""
        if not raw.endswith(suffix) or len(raw) == len(suffix):
            return None
        return cls(name=raw[: -len(suffix)], suffix=suffix)

    def __str__(self) -> str:
        return f"{self.name}{self.suffix}"
