"""Custom exceptions for storage operations.

This module defines a hierarchy of exceptions for storage operations so that
callers can tell tolerated conditions apart from fatal ones by type instead of
by error text.

Exception Hierarchy:
    StorageError (base)
        ├── DiskError
        │   ├── DeviceNotFoundError
        │   └── DeviceBusyError          (tolerated: disk already provisioned)
        ├── PartitionError
        │   ├── NoPartitionTableError    (tolerated: fresh disk)
        │   └── NoPartitionsCreatedError
        ├── FilesystemError
        │   ├── FilesystemExistsError    (tolerated: re-provisioning)
        │   ├── NotADirectoryEntryError
        │   └── EntryNotFoundError
        ├── FormatError
        │   └── FormatOperationError
        ├── MountError
        │   └── MountOperationError
        ├── CopyError
        │   └── CopyIntegrityError
        └── OwnershipError
            └── UnknownUserError

Usage:
    from vm_agent.storage.exceptions import DeviceBusyError

    try:
        device = open_disk(path)
    except DeviceBusyError:
        log.info(f"Disk {path} is busy, skipping...")
"""

from __future__ import annotations

from vm_agent.exceptions import AgentError


class StorageError(AgentError):
    """Base exception for all storage operations."""


class DiskError(StorageError):
    """Base exception for block device errors."""


class DeviceNotFoundError(DiskError):
    """Device node does not exist."""

    def __init__(self, device_path: str):
        self.device_path = device_path
        super().__init__(f"Device not found: {device_path}")


class DeviceBusyError(DiskError):
    """Device is mounted or held open exclusively by someone else."""

    def __init__(self, device_path: str, reason: str = ""):
        self.device_path = device_path
        self.reason = reason
        msg = f"Device {device_path} is busy"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PartitionError(StorageError):
    """Base exception for partition table errors."""

    def __init__(self, message: str, device_path: str | None = None):
        self.device_path = device_path
        super().__init__(message)


class NoPartitionTableError(PartitionError):
    """Device carries no recognized partition table."""

    def __init__(self, device_path: str):
        super().__init__(
            f"Device {device_path} does not contain a recognized partition table",
            device_path,
        )


class NoPartitionsCreatedError(PartitionError):
    """Partition table is still empty after a partition was written."""

    def __init__(self, device_path: str):
        super().__init__(
            f"no partitions found after creating new partition on {device_path}",
            device_path,
        )


class FilesystemError(StorageError):
    """Base exception for filesystem access errors."""


class FilesystemExistsError(FilesystemError):
    """Target already carries a filesystem signature."""

    def __init__(self, device_path: str, output: str = ""):
        self.device_path = device_path
        self.output = output
        super().__init__(f"{device_path} appears to contain an existing filesystem")


class NotADirectoryEntryError(FilesystemError):
    """A directory listing was requested for a regular file."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"{path} is a file, not a directory")


class EntryNotFoundError(FilesystemError):
    """Path does not exist on the filesystem."""

    def __init__(self, path: str, detail: str = ""):
        self.path = path
        message = f"file {path} could not be found"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class FormatError(StorageError):
    """Base exception for filesystem creation."""


class FormatOperationError(FormatError):
    """mkfs failed for a reason other than an existing filesystem."""

    def __init__(self, message: str, device: str | None = None, output: str = ""):
        self.device = device
        self.output = output
        if output:
            message = f"{message}: {output}"
        super().__init__(message)


class MountError(StorageError):
    """Base exception for mount-related errors."""


class MountOperationError(MountError):
    """mount exited with an error."""

    def __init__(self, device: str, mount_point: str, output: str = ""):
        self.device = device
        self.mount_point = mount_point
        self.output = output
        message = f"Failed to mount {device} at {mount_point}"
        if output:
            message += f": {output}"
        super().__init__(message)


class CopyError(StorageError):
    """Base exception for volume to root filesystem copies."""


class CopyIntegrityError(CopyError):
    """Fewer bytes were written than were read from the source."""

    def __init__(self, destination: str, bytes_written: int, bytes_read: int):
        self.destination = destination
        self.bytes_written = bytes_written
        self.bytes_read = bytes_read
        super().__init__(
            f"Bytes written {bytes_written} to {destination} does not match "
            f"the number of bytes read {bytes_read} from the source file"
        )


class OwnershipError(StorageError):
    """chown/chmod or the metadata read that precedes it failed."""


class UnknownUserError(OwnershipError):
    """User name is not present in the OS user directory."""

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"Unknown user: {username}")
