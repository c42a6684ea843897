"""Configuration model and loader for NetPresence."""

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger("netpresence.config")

DEFAULT_CONFIG_DIR = Path.home() / ".netpresence"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

ARPING_COUNT = 60 * 60 * 6  # one query per second, so six hours per run


class PresenceConfig(BaseModel):
    """Startup settings. Read once; the engine never writes them back."""
    logging: bool = Field(False, description="Enable verbose trace logging")
    ping_batch_size: int = Field(11, ge=1, description="Ping commands per shell invocation")
    network_rescan_interval: int = Field(60, ge=1, description="Minutes between bulk sweeps")
    device_suffix: str = Field("-netpresence", min_length=1, description="Suffix appended to device names to form identifiers")
    arping_count: int = Field(ARPING_COUNT, ge=2, description="Queries per active probe run (one per second)")
    tick_interval: float = Field(0.25, gt=0, description="Seconds between presence recomputations")
    ping_timeout: int = Field(1, ge=1, description="Seconds to wait for each echo reply")
    max_concurrent_sweeps: int = Field(16, ge=1, description="Ping batches allowed to run at once")
    inventory_file: Path = Field(DEFAULT_CONFIG_DIR / "devices.json", description="Saved device inventory")


def load_config(path: Optional[Path] = None) -> PresenceConfig:
    """
    Load configuration from a YAML file.

    A missing file yields the defaults. An unreadable or invalid file is
    logged and also yields the defaults, so startup always continues.
    """
    path = path or DEFAULT_CONFIG_FILE

    if not path.exists():
        logger.debug(f"No config file at {path}, using defaults")
        return PresenceConfig()

    try:
        data = yaml.safe_load(path.read_text()) or {}
        if not isinstance(data, dict):
            raise ValueError(f"expected a mapping, got {type(data).__name__}")
        config = PresenceConfig(**data)
    except (OSError, yaml.YAMLError, ValueError, ValidationError) as e:
        logger.error(f"Failed to load config from {path}: {e}")
        return PresenceConfig()

    logger.debug(f"Loaded config from {path}")
    return config
