"""Settings storage for agent configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get("VM_AGENT_SETTINGS_PATH", "/etc/vm-agent/settings.json")
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_PARTITION_SETTLE_SECONDS = 5.0
DEFAULT_POLL_INTERVAL_SECONDS = 1.0
DEFAULT_SERVICE_TIMEOUT_SECONDS = 300.0
DEFAULT_VAULT_TIMEOUT_SECONDS = 600.0
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0

DEVICE_PREFIX = "/dev/disk/by-id/scsi-0QEMU_QEMU_HARDDISK_drive-"

# Environment variables that take precedence over the settings file
ENV_OVERRIDES: dict[str, str] = {
    "INFRA_CONFIG_MAPPER_URL": "infra_config_mapper_url",
    "LOG_LEVEL": "log_level",
    "VM_AGENT_LOG_DIR": "log_dir",
}

DEFAULT_SETTINGS: dict[str, Any] = {
    "infra_config_mapper_url": "",
    "log_level": "INFO",
    "log_dir": "/var/log/vm-agent",
    "http_timeout_seconds": DEFAULT_HTTP_TIMEOUT_SECONDS,
    "service_poll_interval_seconds": DEFAULT_POLL_INTERVAL_SECONDS,
    "service_poll_timeout_seconds": DEFAULT_SERVICE_TIMEOUT_SECONDS,
    "vault_poll_interval_seconds": DEFAULT_POLL_INTERVAL_SECONDS,
    "vault_poll_timeout_seconds": DEFAULT_VAULT_TIMEOUT_SECONDS,
    "partition_settle_seconds": DEFAULT_PARTITION_SETTLE_SECONDS,
    "hostname_path": "/etc/hostname",
    "hostname_wait_attempts": 60,
    "hostname_wait_interval_seconds": 1.0,
    "devices": {
        "scsi1": DEVICE_PREFIX + "scsi1",
        "scsi2": DEVICE_PREFIX + "scsi2",
        "scsi3": DEVICE_PREFIX + "scsi3",
        "scsi4": DEVICE_PREFIX + "scsi4",
    },
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings(path: Path | None = None) -> None:
    settings_store.values = json.loads(json.dumps(DEFAULT_SETTINGS))
    path = path or SETTINGS_PATH
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            data = None
        if isinstance(data, dict):
            settings_store.values.update(data)
    for env_name, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            settings_store.values[key] = value


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value


def get_float(key: str, default: float = 0.0) -> float:
    value = get_setting(key, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def get_int(key: str, default: int = 0) -> int:
    value = get_setting(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_device_path(slot: str) -> str:
    """Stable by-id path of the disk attached at ``slot`` (e.g. ``scsi1``)."""
    devices = get_setting("devices") or {}
    return devices.get(slot, DEVICE_PREFIX + slot)


load_settings()
