"""Tests for XFS filesystem creation (vm_agent/storage/format.py)."""

import pytest

from vm_agent.exceptions import CommandError
from vm_agent.storage import format as format_module
from vm_agent.storage.exceptions import FilesystemExistsError, FormatOperationError


PARTITION = "/dev/disk/by-id/scsi-0QEMU_QEMU_HARDDISK_drive-scsi1-part1"

EXISTING_OUTPUT = (
    f"mkfs.xfs: {PARTITION} appears to contain an existing filesystem (xfs).\n"
    "mkfs.xfs: Use the -f option to force overwrite.\n"
)


class TestValidateDevicePath:
    def test_accepts_dev_paths(self):
        assert format_module._validate_device_path(PARTITION) is True

    @pytest.mark.parametrize("path", ["", "sdb1", "/tmp/sdb1", None])
    def test_rejects_other_paths(self, path):
        assert format_module._validate_device_path(path) is False


class TestRunMkfsXfs:
    def test_runs_without_force(self, mocker, make_completed):
        run = mocker.patch("vm_agent.storage.format.run_command", return_value=make_completed())

        format_module.run_mkfs_xfs(PARTITION)

        command = run.call_args.args[0]
        assert command == ["mkfs.xfs", PARTITION]
        assert "-f" not in command

    def test_existing_filesystem_is_typed(self, mocker, make_completed):
        mocker.patch(
            "vm_agent.storage.format.run_command",
            return_value=make_completed(returncode=1, stderr=EXISTING_OUTPUT),
        )

        with pytest.raises(FilesystemExistsError) as exc_info:
            format_module.run_mkfs_xfs(PARTITION)

        assert exc_info.value.device_path == PARTITION

    def test_other_failures(self, mocker, make_completed):
        mocker.patch(
            "vm_agent.storage.format.run_command",
            return_value=make_completed(returncode=1, stderr="cannot open: Device or resource busy"),
        )

        with pytest.raises(FormatOperationError, match="Device or resource busy"):
            format_module.run_mkfs_xfs(PARTITION)

    def test_missing_tool(self, mocker):
        mocker.patch(
            "vm_agent.storage.format.run_command",
            side_effect=CommandError(["mkfs.xfs"], 127, "No such file or directory"),
        )

        with pytest.raises(FormatOperationError):
            format_module.run_mkfs_xfs(PARTITION)

    def test_invalid_path_never_runs(self, mocker):
        run = mocker.patch("vm_agent.storage.format.run_command")

        with pytest.raises(FormatOperationError, match="Invalid partition path"):
            format_module.run_mkfs_xfs("sdb1")

        run.assert_not_called()


class TestCreateXfsFilesystem:
    def test_returns_true_when_created(self, mocker):
        mocker.patch("vm_agent.storage.format.run_mkfs_xfs")

        assert format_module.create_xfs_filesystem(PARTITION) is True

    def test_existing_filesystem_is_success(self, mocker):
        mocker.patch(
            "vm_agent.storage.format.run_mkfs_xfs",
            side_effect=FilesystemExistsError(PARTITION),
        )

        assert format_module.create_xfs_filesystem(PARTITION) is False

    def test_other_errors_propagate(self, mocker):
        mocker.patch(
            "vm_agent.storage.format.run_mkfs_xfs",
            side_effect=FormatOperationError("mkfs.xfs failed", PARTITION, "bad superblock"),
        )

        with pytest.raises(FormatOperationError, match="bad superblock"):
            format_module.create_xfs_filesystem(PARTITION)
