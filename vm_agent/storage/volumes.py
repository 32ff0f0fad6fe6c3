"""Data volume provisioning: partition, format, mount, own."""

from __future__ import annotations

import threading
from typing import Optional

from vm_agent.logging import LoggerFactory
from vm_agent.storage.devices import (
    DEFAULT_SETTLE_SECONDS,
    ensure_data_partition,
    open_disk,
    partition_device_path,
)
from vm_agent.storage.exceptions import DeviceBusyError
from vm_agent.storage.filesystems import RootFilesystem
from vm_agent.storage.format import create_xfs_filesystem
from vm_agent.storage.mount import mount
from vm_agent.storage.ownership import create_directory, set_owner


log = LoggerFactory.for_disk()


def provision_data_volume(
    device_path: str,
    mount_point: str,
    owner: Optional[str] = None,
    settle_seconds: float = DEFAULT_SETTLE_SECONDS,
    cancel: Optional[threading.Event] = None,
    root_fs: Optional[RootFilesystem] = None,
) -> bool:
    """Make ``device_path`` a mounted XFS volume at ``mount_point``.

    A busy disk is assumed to be provisioned already and is skipped.

    Returns:
        True when the volume was provisioned, False when the disk was busy
    """
    root_fs = root_fs or RootFilesystem()
    try:
        disk = open_disk(device_path)
    except DeviceBusyError as error:
        log.info(f"Skipping {device_path}: {error}")
        return False

    with disk:
        partition = ensure_data_partition(disk, settle_seconds=settle_seconds, cancel=cancel)

    # Address the partition through the same alias family as the disk
    node = partition_device_path(device_path, partition.number)
    create_xfs_filesystem(node)
    create_directory(mount_point, recursive=True, mode=0o755, fs=root_fs)
    mount(node, str(root_fs.resolve(mount_point)))
    if owner:
        set_owner(mount_point, owner, recursive=True, fs=root_fs)
    log.info(f"Provisioned {device_path} at {mount_point}")
    return True
