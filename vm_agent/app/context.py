from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from vm_agent.config import settings
from vm_agent.services.inventory import InfraConfigMapperClient
from vm_agent.services.polling import PollPolicy
from vm_agent.services.selinux import SeLinuxService
from vm_agent.services.systemd import SystemdService
from vm_agent.services.vault_client import VaultClient
from vm_agent.storage.filesystems import (
    FilesystemHandle,
    RootFilesystem,
    get_filesystem_from_device,
)


@dataclass
class AppContext:
    """Components shared by the role routines, built once per run."""

    hostname: str = ""
    root_fs: RootFilesystem = field(default_factory=RootFilesystem)
    systemd: SystemdService = field(default_factory=SystemdService)
    selinux: SeLinuxService = field(default_factory=SeLinuxService)
    inventory: Optional[InfraConfigMapperClient] = None
    cancel: threading.Event = field(default_factory=threading.Event)
    service_policy: PollPolicy = field(default_factory=PollPolicy)
    vault_policy: PollPolicy = field(default_factory=lambda: PollPolicy(timeout_seconds=600.0))
    settle_seconds: float = settings.DEFAULT_PARTITION_SETTLE_SECONDS
    http_timeout_seconds: float = settings.DEFAULT_HTTP_TIMEOUT_SECONDS
    devices: Dict[str, str] = field(default_factory=dict)
    volume_opener: Callable[[str], FilesystemHandle] = get_filesystem_from_device
    vault_client_factory: Callable[..., VaultClient] = VaultClient

    def device_path(self, slot: str) -> str:
        return self.devices.get(slot) or settings.get_device_path(slot)

    def open_volume(self, slot: str) -> FilesystemHandle:
        """Open the config volume attached at ``slot``."""
        return self.volume_opener(self.device_path(slot))

    @classmethod
    def from_settings(cls, hostname: str) -> AppContext:
        http_timeout = settings.get_float(
            "http_timeout_seconds", settings.DEFAULT_HTTP_TIMEOUT_SECONDS
        )
        return cls(
            hostname=hostname,
            inventory=InfraConfigMapperClient(
                settings.get_setting("infra_config_mapper_url", ""),
                hostname,
                timeout_seconds=http_timeout,
            ),
            service_policy=PollPolicy(
                interval_seconds=settings.get_float(
                    "service_poll_interval_seconds", settings.DEFAULT_POLL_INTERVAL_SECONDS
                ),
                timeout_seconds=settings.get_float(
                    "service_poll_timeout_seconds", settings.DEFAULT_SERVICE_TIMEOUT_SECONDS
                ),
            ),
            vault_policy=PollPolicy(
                interval_seconds=settings.get_float(
                    "vault_poll_interval_seconds", settings.DEFAULT_POLL_INTERVAL_SECONDS
                ),
                timeout_seconds=settings.get_float(
                    "vault_poll_timeout_seconds", settings.DEFAULT_VAULT_TIMEOUT_SECONDS
                ),
            ),
            settle_seconds=settings.get_float(
                "partition_settle_seconds", settings.DEFAULT_PARTITION_SETTLE_SECONDS
            ),
            http_timeout_seconds=http_timeout,
            devices=dict(settings.get_setting("devices") or {}),
        )
