"""XFS filesystem creation for data partitions.

``mkfs.xfs`` is run without ``-f`` so an existing filesystem is never
overwritten. Its refusal is mapped to :class:`FilesystemExistsError` by
:func:`run_mkfs_xfs`; :func:`create_xfs_filesystem` treats that as success,
which makes re-provisioning a disk idempotent.
"""

from __future__ import annotations

from vm_agent.exceptions import CommandError
from vm_agent.logging import LoggerFactory
from vm_agent.storage.devices import command_output, run_command
from vm_agent.storage.exceptions import FilesystemExistsError, FormatOperationError


log = LoggerFactory.for_filesystem()

EXISTING_FILESYSTEM_MARKER = "appears to contain an existing filesystem"


def _validate_device_path(device_path: str) -> bool:
    """Validate that device path starts with /dev/."""
    return isinstance(device_path, str) and device_path.startswith("/dev/")


def run_mkfs_xfs(partition_path: str) -> None:
    """Run mkfs.xfs on ``partition_path``.

    Raises:
        FilesystemExistsError: If the partition already holds a filesystem
        FormatOperationError: For every other failure
    """
    if not _validate_device_path(partition_path):
        raise FormatOperationError(f"Invalid partition path: {partition_path}", partition_path)
    try:
        result = run_command(["mkfs.xfs", partition_path], check=False)
    except CommandError as error:
        raise FormatOperationError("mkfs.xfs could not be run", partition_path, error.output) from error
    if result.returncode == 0:
        return
    output = command_output(result)
    if EXISTING_FILESYSTEM_MARKER in output:
        raise FilesystemExistsError(partition_path, output)
    raise FormatOperationError(f"mkfs.xfs failed on {partition_path}", partition_path, output)


def create_xfs_filesystem(partition_path: str) -> bool:
    """Create an XFS filesystem on ``partition_path``.

    Returns:
        True when a filesystem was created, False when one already existed
    """
    log.info(f"Creating xfs filesystem on {partition_path}")
    try:
        run_mkfs_xfs(partition_path)
    except FilesystemExistsError:
        log.info(f"{partition_path} already contains a filesystem, keeping it")
        return False
    log.debug(f"Created xfs filesystem on {partition_path}")
    return True
