"""Domain model for volume provisioning and role setup.

Type-safe value objects passed between the storage, service and role layers
instead of raw sfdisk/inventory dictionaries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


# ==============================================================================
# Disk Domain
# ==============================================================================


@dataclass(frozen=True)
class Partition:
    """One entry of a partition table as reported by sfdisk."""

    node: str  # e.g., "/dev/sdb1"
    start: int  # First sector
    size: int  # Length in sectors
    type: str = ""  # GUID (gpt) or hex id (dos)
    number: int = 1

    @classmethod
    def from_sfdisk_dict(cls, data: dict[str, Any], number: int) -> Partition:
        return cls(
            node=data["node"],
            start=int(data.get("start", 0)),
            size=int(data.get("size", 0)),
            type=str(data.get("type", "")),
            number=number,
        )


@dataclass(frozen=True)
class PartitionTable:
    """Partition table of a block device.

    An empty ``partitions`` tuple means the disk carries a label but no
    partitions yet.
    """

    device: str
    label: str = ""  # "gpt" or "dos"
    sector_size: int = 512
    partitions: tuple[Partition, ...] = ()

    @property
    def is_empty(self) -> bool:
        return len(self.partitions) == 0

    @classmethod
    def from_sfdisk_json(cls, data: dict[str, Any]) -> PartitionTable:
        """Convert ``sfdisk --json`` output to a PartitionTable.

        Raises:
            KeyError: If the ``partitiontable`` object is missing
        """
        table = data["partitiontable"]
        partitions = tuple(
            Partition.from_sfdisk_dict(entry, number)
            for number, entry in enumerate(table.get("partitions", []) or [], start=1)
        )
        return cls(
            device=table.get("device", ""),
            label=table.get("label", ""),
            sector_size=int(table.get("sectorsize", 512)),
            partitions=partitions,
        )


# ==============================================================================
# Filesystem Domain
# ==============================================================================


@dataclass(frozen=True)
class FileEntry:
    """A directory entry or stat result.

    Volume listings include the ``.`` and ``..`` pseudo-entries; ``mode``,
    ``uid`` and ``gid`` are only known for the root filesystem.
    """

    name: str
    is_dir: bool
    size: int = 0
    mode: Optional[int] = None
    uid: Optional[int] = None
    gid: Optional[int] = None

    @property
    def is_pseudo(self) -> bool:
        return self.name in (".", "..")


@dataclass(frozen=True)
class CopyMapping:
    """One source path on a config volume and where it lands on the root fs."""

    source_path: str
    dest_path: str
    recursive: bool = False
    mode: Optional[int] = None  # Applied to dest_path itself
    children_mode: Optional[int] = None  # Applied to everything below dest_path
    owner: Optional[str] = None


# ==============================================================================
# Service Domain
# ==============================================================================


class ServiceState(Enum):
    """Lifecycle of a systemd unit as seen by the orchestrator."""

    NOT_STARTED = "not-started"
    STARTING = "activating"
    ACTIVE = "active"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ServiceState.ACTIVE, ServiceState.FAILED)

    @classmethod
    def from_status_text(cls, text: str) -> ServiceState:
        """Classify ``systemctl is-active`` output."""
        status = (text or "").strip()
        if status == "activating":
            return cls.STARTING
        if status == "active":
            return cls.ACTIVE
        return cls.FAILED


# ==============================================================================
# Vault Domain
# ==============================================================================


@dataclass(frozen=True)
class SealStatus:
    """Response of the vault ``sys/seal-status`` and ``sys/unseal`` endpoints."""

    initialized: bool
    sealed: bool
    type: str = ""
    t: int = 0  # Threshold of shares
    n: int = 0  # Total shares
    progress: int = 0
    nonce: str = ""
    version: str = ""
    build_date: str = ""
    migration: bool = False
    recovery_seal: bool = False
    storage_type: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SealStatus:
        return cls(
            initialized=bool(data.get("initialized", False)),
            sealed=bool(data.get("sealed", True)),
            type=data.get("type") or "",
            t=int(data.get("t") or 0),
            n=int(data.get("n") or 0),
            progress=int(data.get("progress") or 0),
            nonce=data.get("nonce") or "",
            version=data.get("version") or "",
            build_date=data.get("build_date") or "",
            migration=bool(data.get("migration", False)),
            recovery_seal=bool(data.get("recovery_seal", False)),
            storage_type=data.get("storage_type") or "",
        )


# ==============================================================================
# Inventory Domain
# ==============================================================================


@dataclass(frozen=True)
class IpConfig:
    ip_address: str
    gateway: str = ""
    order: int = 0


@dataclass(frozen=True)
class DiskSpec:
    id: int
    size: str = ""
    storage_location: str = ""
    bus_type: str = ""
    order: int = 0


@dataclass(frozen=True)
class NetworkInterface:
    bridge: str = ""
    mac_address: str = ""
    mtu: int = 0
    order: int = 0
    type: str = ""


@dataclass(frozen=True)
class VmDetails:
    """VM record returned by the infra config mapper."""

    vm_id: str
    name: str = ""
    node_name: str = ""
    tags: tuple[str, ...] = ()
    ip_config: tuple[IpConfig, ...] = ()
    disks: tuple[DiskSpec, ...] = ()
    network_interfaces: tuple[NetworkInterface, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def primary_ip(self) -> Optional[str]:
        if not self.ip_config:
            return None
        return sorted(self.ip_config, key=lambda entry: entry.order)[0].ip_address

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VmDetails:
        """Convert the mapper's JSON document to VmDetails.

        Raises:
            KeyError: If ``vm_id`` is missing
        """
        return cls(
            vm_id=str(data["vm_id"]),
            name=data.get("name") or "",
            node_name=data.get("node_name") or "",
            tags=tuple(data.get("tags") or ()),
            ip_config=tuple(
                IpConfig(
                    ip_address=entry.get("ip_address", ""),
                    gateway=entry.get("gateway", ""),
                    order=int(entry.get("order") or 0),
                )
                for entry in data.get("ip_config") or ()
            ),
            disks=tuple(
                DiskSpec(
                    id=int(entry.get("id") or 0),
                    size=entry.get("size", ""),
                    storage_location=entry.get("storage_location", ""),
                    bus_type=entry.get("bus_type", ""),
                    order=int(entry.get("order") or 0),
                )
                for entry in data.get("disk") or ()
            ),
            network_interfaces=tuple(
                NetworkInterface(
                    bridge=entry.get("bridge", ""),
                    mac_address=entry.get("mac_address", ""),
                    mtu=int(entry.get("mtu") or 0),
                    order=int(entry.get("order") or 0),
                    type=entry.get("type", ""),
                )
                for entry in data.get("network_interface") or ()
            ),
            raw=dict(data),
        )
