"""
Pytest configuration and shared fixtures for vm-agent tests.

This module provides common fixtures and utilities used across all test modules.
"""

import io
import posixpath
import subprocess
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional
from unittest.mock import Mock

import pycdlib
import pytest

from vm_agent import logging as logging_module
from vm_agent.app.context import AppContext
from vm_agent.domain.models import VmDetails
from vm_agent.services.polling import PollPolicy
from vm_agent.storage.filesystems import RootFilesystem, get_filesystem_from_device


# ==============================================================================
# Command Fixtures
# ==============================================================================


def completed(command=None, returncode=0, stdout="", stderr="") -> subprocess.CompletedProcess:
    """Build a CompletedProcess like the one subprocess.run returns."""
    return subprocess.CompletedProcess(command or [], returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def make_completed() -> Callable[..., subprocess.CompletedProcess]:
    """Fixture exposing :func:`completed` to test modules."""
    return completed


@pytest.fixture
def mock_subprocess_success(mocker) -> Mock:
    """
    Fixture providing a mock subprocess.run that always succeeds.

    Returns:
        Mock object for subprocess.run.
    """
    return mocker.patch("subprocess.run", return_value=completed())


# ==============================================================================
# Logging Fixtures
# ==============================================================================


@pytest.fixture
def log_records():
    """Capture loguru records emitted during the test."""
    records: List[dict] = []
    handler_id = logging_module.logger.add(
        lambda message: records.append(message.record), level="TRACE"
    )
    yield records
    logging_module.logger.remove(handler_id)


# ==============================================================================
# ISO9660 Volume Fixtures
# ==============================================================================


def build_iso(
    path: Path,
    entries: Dict[str, Optional[bytes]],
    rock_ridge: bool = True,
    joliet: bool = True,
) -> str:
    """
    Write an ISO9660 image containing ``entries``.

    Args:
        path: Where to write the image
        entries: Mapping of volume path to file bytes; None marks a directory.
            Missing parent directories are added automatically.
        rock_ridge: Record Rock Ridge names
        joliet: Record Joliet names

    Returns:
        The image path as a string.
    """
    all_entries: Dict[str, Optional[bytes]] = {}
    for name, data in entries.items():
        name = "/" + name.strip("/")
        parent = posixpath.dirname(name)
        while parent != "/":
            all_entries.setdefault(parent, None)
            parent = posixpath.dirname(parent)
        all_entries[name] = data

    iso = pycdlib.PyCdlib()
    options = {"interchange_level": 1}
    if rock_ridge:
        options["rock_ridge"] = "1.09"
    if joliet:
        options["joliet"] = 3
    iso.new(**options)

    iso_paths = {"/": "/"}
    for index, name in enumerate(sorted(all_entries), start=1):
        data = all_entries[name]
        parent_iso = iso_paths[posixpath.dirname(name)]
        extra = {}
        if rock_ridge:
            extra["rr_name"] = posixpath.basename(name)
        if joliet:
            extra["joliet_path"] = name
        if data is None:
            iso_path = posixpath.join(parent_iso, f"D{index}")
            iso.add_directory(iso_path, **extra)
            iso_paths[name] = iso_path
        else:
            iso_path = posixpath.join(parent_iso, f"F{index}.;1")
            iso.add_fp(io.BytesIO(data), len(data), iso_path, **extra)
    iso.write(str(path))
    iso.close()
    return str(path)


@pytest.fixture
def iso_factory(tmp_path) -> Callable[..., str]:
    """Factory writing ISO images into tmp_path."""
    counter = iter(range(1, 1000))

    def factory(entries, rock_ridge=True, joliet=True, name=None):
        target = tmp_path / (name or f"volume{next(counter)}.iso")
        return build_iso(target, entries, rock_ridge=rock_ridge, joliet=joliet)

    return factory


# ==============================================================================
# Root Filesystem Fixtures
# ==============================================================================


class RecordingRootFilesystem(RootFilesystem):
    """RootFilesystem that records chown calls instead of performing them."""

    def __init__(self, root):
        super().__init__(root)
        self.owners: Dict[str, int] = {}
        self.chown_calls: List[str] = []
        self.chmod_calls: List[str] = []

    def chown(self, path: str, uid: int, gid: int) -> None:
        self.chown_calls.append(path)
        self.owners[path] = uid

    def chmod(self, path: str, mode: int) -> None:
        self.chmod_calls.append(path)
        super().chmod(path, mode)


@pytest.fixture
def root_fs(tmp_path) -> RecordingRootFilesystem:
    root = tmp_path / "root"
    root.mkdir()
    return RecordingRootFilesystem(root)


@pytest.fixture
def fake_users(mocker) -> Dict[str, int]:
    """Resolve a fixed set of service users without touching /etc/passwd."""
    users = {"named": 25, "haproxy": 188, "vault": 990, "root": 0}

    def getpwnam(name):
        if name not in users:
            raise KeyError(name)
        return Mock(pw_uid=users[name], pw_name=name)

    mocker.patch("vm_agent.storage.ownership.pwd.getpwnam", side_effect=getpwnam)
    return users


# ==============================================================================
# Application Context Fixtures
# ==============================================================================


@pytest.fixture
def volumes() -> Dict[str, str]:
    """Slot to ISO path mapping consumed by ``app_context``."""
    return {}


@pytest.fixture
def app_context(root_fs, volumes, mocker) -> AppContext:
    """AppContext wired to a tmp root, mock services and ISO volumes."""
    systemd = mocker.MagicMock()
    selinux = mocker.MagicMock()
    return AppContext(
        hostname="test-vm",
        root_fs=root_fs,
        systemd=systemd,
        selinux=selinux,
        cancel=threading.Event(),
        service_policy=PollPolicy(interval_seconds=0, timeout_seconds=1),
        vault_policy=PollPolicy(interval_seconds=0, timeout_seconds=1),
        settle_seconds=0,
        devices={slot: path for slot, path in volumes.items()},
        volume_opener=get_filesystem_from_device,
    )


@pytest.fixture
def vm_details() -> VmDetails:
    return VmDetails.from_dict(
        {
            "vm_id": "101",
            "name": "test-vm",
            "node_name": "pve-1",
            "tags": ["dns"],
            "ip_config": [{"ip_address": "10.0.0.5/24", "gateway": "10.0.0.1", "order": 0}],
            "disk": [{"id": 1, "size": "10G", "storage_location": "local", "bus_type": "scsi", "order": 1}],
            "network_interface": [{"bridge": "vmbr0", "mac_address": "aa:bb", "mtu": 1500, "order": 0, "type": "virtio"}],
        }
    )
