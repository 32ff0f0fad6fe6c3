"""Mounting data partitions on the root filesystem."""

from __future__ import annotations

import os
from pathlib import Path

from vm_agent.exceptions import CommandError
from vm_agent.logging import LoggerFactory
from vm_agent.storage.devices import run_command
from vm_agent.storage.exceptions import MountOperationError


log = LoggerFactory.for_filesystem()

_FORBIDDEN_CHARACTERS = (";", "&", "|", "$", "`", "\n", "\r", " ")


def _validate_paths(device_path: str, mount_point: str) -> None:
    if not isinstance(device_path, str) or not device_path.startswith("/dev/"):
        raise ValueError(f"Invalid device path: {device_path}")
    if any(char in device_path for char in _FORBIDDEN_CHARACTERS):
        raise ValueError(f"Device path contains invalid characters: {device_path}")
    if not isinstance(mount_point, str) or not os.path.isabs(mount_point):
        raise ValueError(f"Mount point must be an absolute path: {mount_point}")
    if ".." in Path(mount_point).parts:
        raise ValueError(f"Mount point must not contain '..': {mount_point}")


def is_mounted(mount_point: str) -> bool:
    return os.path.ismount(mount_point)


def mount(device_path: str, mount_point: str) -> bool:
    """Mount ``device_path`` at ``mount_point``, creating the directory.

    Returns:
        True when mounted now, False when the mount point was already in use

    Raises:
        ValueError: If either path is malformed
        MountOperationError: If mount fails
    """
    _validate_paths(device_path, mount_point)

    if is_mounted(mount_point):
        log.info(f"{mount_point} is already mounted, skipping")
        return False

    Path(mount_point).mkdir(parents=True, exist_ok=True)
    try:
        run_command(["mount", device_path, mount_point])
    except CommandError as error:
        raise MountOperationError(device_path, mount_point, error.output) from error
    log.info(f"Mounted {device_path} at {mount_point}")
    return True
