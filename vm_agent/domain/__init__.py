"""Domain models for volume provisioning and role setup."""

from __future__ import annotations

from .models import (
    CopyMapping,
    DiskSpec,
    FileEntry,
    IpConfig,
    NetworkInterface,
    Partition,
    PartitionTable,
    SealStatus,
    ServiceState,
    VmDetails,
)


__all__ = [
    "CopyMapping",
    "DiskSpec",
    "FileEntry",
    "IpConfig",
    "NetworkInterface",
    "Partition",
    "PartitionTable",
    "SealStatus",
    "ServiceState",
    "VmDetails",
]
