"""Block device access and partition table management.

This module opens the data disks attached to the VM, reads their partition
tables and creates the single data partition a fresh disk needs before it can
be formatted.

Device Naming:
    Disks are addressed by their stable by-id symlink, for example
    ``/dev/disk/by-id/scsi-0QEMU_QEMU_HARDDISK_drive-scsi1``. Partitions of
    such aliases append ``-part<N>``; kernel names follow ``sda1`` and
    ``nvme0n1p1``.

Partition Tables:
    Tables are read with ``sfdisk --json`` and written with ``sfdisk``. A fresh
    disk has no table at all, which is reported as the typed
    :class:`NoPartitionTableError` and tolerated by
    :func:`ensure_data_partition`.

Device Ownership:
    :func:`open_disk` probes the device with an exclusive open. The kernel
    refuses it with EBUSY while a filesystem on the disk is mounted, which is
    how an already provisioned disk is recognized. The returned
    :class:`BlockDevice` keeps a shared descriptor so that the partitioning
    tools can still open the device, and must be closed before a filesystem is
    created on one of its partitions.

Example:
    >>> with open_disk("/dev/disk/by-id/scsi-0QEMU_QEMU_HARDDISK_drive-scsi1") as disk:
    ...     partition = ensure_data_partition(disk, settle_seconds=5)
    >>> create_xfs_filesystem(partition.node)
"""

from __future__ import annotations

import errno
import json
import os
import subprocess
import threading
from typing import Optional, Sequence, Union

from vm_agent.domain.models import Partition, PartitionTable
from vm_agent.exceptions import CommandError
from vm_agent.logging import EventLogger, LoggerFactory
from vm_agent.services.polling import wait_or_cancel
from vm_agent.storage.exceptions import (
    DeviceBusyError,
    DeviceNotFoundError,
    DiskError,
    NoPartitionsCreatedError,
    NoPartitionTableError,
    PartitionError,
)


log = LoggerFactory.for_disk()

NO_PARTITION_TABLE_MARKER = "does not contain a recognized partition table"
DATA_PARTITION_START_SECTOR = 2048
DEFAULT_SETTLE_SECONDS = 5.0


def run_command(
    command: Sequence[str],
    check: bool = True,
    log_output: bool = True,
    log_command: bool = True,
    input_text: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """Run an external tool and capture its output as text.

    Raises:
        CommandError: If the tool is missing, or exits non-zero with ``check``
    """
    if log_command:
        log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            list(command),
            check=False,
            text=True,
            capture_output=True,
            input=input_text,
        )
    except OSError as error:
        raise CommandError(command, 127, str(error)) from error
    output_log = log.bind(tags=["command-output"])
    if result.stdout and (log_output or result.returncode != 0):
        output_log.debug(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        output_log.debug(f"stderr: {result.stderr.strip()}")
    if log_command:
        log.debug(f"Command completed with return code {result.returncode}")
    if check and result.returncode != 0:
        raise CommandError(command, result.returncode, command_output(result))
    return result


def command_output(result: subprocess.CompletedProcess) -> str:
    """Collapse stderr and stdout of a finished command into one line."""
    stderr = " ".join((result.stderr or "").strip().split())
    stdout = " ".join((result.stdout or "").strip().split())
    return " | ".join(part for part in (stderr, stdout) if part)


class BlockDevice:
    """An open handle on a disk, released with :meth:`close`."""

    def __init__(self, path: str, fd: int):
        self.path = path
        self._fd: Optional[int] = fd

    @property
    def closed(self) -> bool:
        return self._fd is None

    @property
    def size_bytes(self) -> int:
        if self._fd is None:
            raise DiskError(f"Device {self.path} is closed")
        return os.lseek(self._fd, 0, os.SEEK_END)

    def close(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        os.close(fd)
        log.trace(f"Closed {self.path}")

    def __enter__(self) -> BlockDevice:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"BlockDevice({self.path!r}, {state})"


def open_disk(path: str) -> BlockDevice:
    """Open the disk at ``path`` after checking nobody holds it.

    Raises:
        DeviceNotFoundError: If the device node does not exist
        DeviceBusyError: If the device is mounted or exclusively claimed
        DiskError: For any other open failure
    """
    try:
        probe = os.open(path, os.O_RDONLY | os.O_EXCL)
    except OSError as error:
        if error.errno == errno.ENOENT:
            raise DeviceNotFoundError(path) from error
        if error.errno == errno.EBUSY:
            raise DeviceBusyError(path, error.strerror or "") from error
        raise DiskError(f"Failed to open {path}: {error}") from error
    os.close(probe)
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError as error:
        raise DiskError(f"Failed to open {path}: {error}") from error
    log.debug(f"Opened disk {path}")
    return BlockDevice(path, fd)


def _device_path(device: Union[BlockDevice, str]) -> str:
    return device.path if isinstance(device, BlockDevice) else device


def get_partition_table(device: Union[BlockDevice, str]) -> PartitionTable:
    """Read the partition table of ``device``.

    Raises:
        NoPartitionTableError: If the disk carries no recognized table
        PartitionError: If sfdisk fails otherwise or its output is unreadable
    """
    path = _device_path(device)
    try:
        result = run_command(["sfdisk", "--json", path], check=False, log_output=False)
    except CommandError as error:
        raise PartitionError(str(error), path) from error
    if result.returncode != 0:
        output = command_output(result)
        if NO_PARTITION_TABLE_MARKER in output:
            raise NoPartitionTableError(path)
        raise PartitionError(f"Failed to read partition table of {path}: {output}", path)
    try:
        table = PartitionTable.from_sfdisk_json(json.loads(result.stdout))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as error:
        raise PartitionError(f"Unreadable partition table for {path}: {error}", path) from error
    log.trace(f"{path}: {table.label or 'unknown'} label, {len(table.partitions)} partition(s)")
    return table


def create_partition(device: Union[BlockDevice, str]) -> None:
    """Write a GPT label with one partition spanning the disk.

    Destructive: existing signatures on the disk are wiped.

    Raises:
        PartitionError: If sfdisk fails
    """
    path = _device_path(device)
    script = f"label: gpt\nstart={DATA_PARTITION_START_SECTOR}\n"
    log.info(f"Creating data partition on {path}")
    try:
        run_command(
            ["sfdisk", "--wipe", "always", "--force", path],
            input_text=script,
        )
    except CommandError as error:
        raise PartitionError(f"Failed to create partition on {path}: {error.output}", path) from error
    # The re-read in ensure_data_partition decides whether the kernel caught up
    try:
        run_command(["partprobe", path], log_output=False)
    except CommandError as error:
        log.warning(f"partprobe {path} failed: {error.output}")


def ensure_data_partition(
    device: Union[BlockDevice, str],
    settle_seconds: float = DEFAULT_SETTLE_SECONDS,
    cancel: Optional[threading.Event] = None,
) -> Partition:
    """Return the first partition of ``device``, creating it on a fresh disk.

    Raises:
        NoPartitionsCreatedError: If the table is still empty after creation
        PartitionError: If the table cannot be read for any other reason
        OperationCancelledError: If ``cancel`` is set during the settle delay
    """
    path = _device_path(device)
    try:
        table: Optional[PartitionTable] = get_partition_table(device)
    except NoPartitionTableError:
        log.info(f"{path} has no partition table")
        table = None

    if table is not None and not table.is_empty:
        partition = table.partitions[0]
        log.debug(f"{path} already partitioned, using {partition.node}")
        return partition

    create_partition(device)
    log.debug(f"Waiting {settle_seconds}s for {path} partitions to settle")
    wait_or_cancel(settle_seconds, cancel, f"{path} partitions to settle")

    table = get_partition_table(device)
    if table.is_empty:
        raise NoPartitionsCreatedError(path)
    partition = table.partitions[0]
    EventLogger.log_partition_created(log, path, partition.node)
    return partition


def partition_device_path(device_path: str, number: int) -> str:
    """Device node of partition ``number`` of ``device_path``."""
    if device_path.startswith("/dev/disk/by-"):
        return f"{device_path}-part{number}"
    suffix = "p" if device_path[-1].isdigit() else ""
    return f"{device_path}{suffix}{number}"
