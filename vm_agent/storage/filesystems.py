"""Filesystem gateway: config volumes and the live root filesystem.

Two backends share one small capability surface (``list_dir``, ``stat``,
``open_file``, ``close``, ``label``) so the copy engine and the ownership
helpers never care where bytes come from:

    VolumeFilesystem:
        An ISO9660 config volume read in place with pycdlib, without mounting.
        Names come from the Rock Ridge extension when present, otherwise from
        Joliet. A volume is only ever a copy source.

    RootFilesystem:
        The live tree being provisioned. It also creates files and
        directories and changes ownership and modes. ``root`` can point
        somewhere other than ``/``, which keeps tests inside ``tmp_path``.

Directory listings of a volume include the ``.`` and ``..`` entries;
callers skip them.
"""

from __future__ import annotations

import contextlib
import os
import posixpath
import stat as stat_module
from pathlib import Path
from typing import BinaryIO, List, Optional, Protocol

import pycdlib
from pycdlib.pycdlibexception import PyCdlibException, PyCdlibInvalidInput

from vm_agent.domain.models import FileEntry
from vm_agent.logging import LoggerFactory
from vm_agent.storage.devices import BlockDevice, get_partition_table
from vm_agent.storage.exceptions import (
    EntryNotFoundError,
    FilesystemError,
    NotADirectoryEntryError,
)


log = LoggerFactory.for_filesystem()


class FilesystemHandle(Protocol):
    """What the copy engine needs from a source filesystem."""

    label: str

    def list_dir(self, path: str) -> List[FileEntry]: ...

    def stat(self, path: str) -> FileEntry: ...

    def open_file(self, path: str) -> BinaryIO: ...

    def close(self) -> None: ...


def _normalize(path: str) -> str:
    normalized = posixpath.normpath("/" + (path or "").lstrip("/"))
    return "/" if normalized in ("/", "//") else normalized


def _strip_version(name: str) -> str:
    if ";" in name:
        name = name.rsplit(";", 1)[0]
    return name.rstrip(".")


class VolumeFilesystem:
    """Read-only view of an ISO9660 volume opened with pycdlib."""

    def __init__(self, iso: pycdlib.PyCdlib, label: str = ""):
        self._iso = iso
        self.label = label
        self._closed = False
        if iso.has_rock_ridge():
            self._facet = "rr_path"
        elif iso.has_joliet():
            self._facet = "joliet_path"
        else:
            raise FilesystemError(
                f"Volume {label or '<unnamed>'} has neither Rock Ridge nor Joliet names"
            )

    def _record(self, path: str):
        path = _normalize(path)
        try:
            return self._iso.get_record(**{self._facet: path})
        except PyCdlibInvalidInput as error:
            raise EntryNotFoundError(path, str(error)) from error

    def _entry_name(self, record) -> str:
        if record.is_dot():
            return "."
        if record.is_dotdot():
            return ".."
        if self._facet == "joliet_path":
            return _strip_version(record.file_identifier().decode("utf-16_be"))
        if record.rock_ridge is not None:
            name = record.rock_ridge.name()
            if name:
                return name.decode("utf-8") if isinstance(name, bytes) else name
        return _strip_version(record.file_identifier().decode("ascii", "replace"))

    def _entry(self, record, name: Optional[str] = None) -> FileEntry:
        is_dir = record.is_dir()
        return FileEntry(
            name=name if name is not None else self._entry_name(record),
            is_dir=is_dir,
            size=0 if is_dir else record.get_data_length(),
        )

    def stat(self, path: str) -> FileEntry:
        path = _normalize(path)
        record = self._record(path)
        return self._entry(record, name=posixpath.basename(path) or "/")

    def list_dir(self, path: str) -> List[FileEntry]:
        """List ``path`` including the ``.`` and ``..`` entries.

        Raises:
            NotADirectoryEntryError: If ``path`` is a regular file
            EntryNotFoundError: If ``path`` does not exist
        """
        path = _normalize(path)
        if not self._record(path).is_dir():
            raise NotADirectoryEntryError(path)
        try:
            return [self._entry(child) for child in self._iso.list_children(**{self._facet: path})]
        except PyCdlibException as error:
            raise FilesystemError(f"Failed to list {path} on {self.label}: {error}") from error

    def open_file(self, path: str) -> BinaryIO:
        path = _normalize(path)
        if self._record(path).is_dir():
            raise FilesystemError(f"{path} is a directory")
        try:
            return self._iso.open_file_from_iso(**{self._facet: path})
        except PyCdlibException as error:
            raise FilesystemError(f"Failed to open {path} on {self.label}: {error}") from error

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._iso.close()
        except PyCdlibException as error:
            log.warning(f"Failed to close volume {self.label}: {error}")

    def __enter__(self) -> VolumeFilesystem:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class RootFilesystem:
    """The live filesystem, optionally re-rooted for tests."""

    def __init__(self, root: str | os.PathLike = "/"):
        self.root = Path(root)
        self.label = str(self.root)

    def resolve(self, path: str) -> Path:
        return self.root / _normalize(path).lstrip("/")

    def exists(self, path: str) -> bool:
        return self.resolve(path).exists()

    def stat(self, path: str) -> FileEntry:
        target = self.resolve(path)
        try:
            info = target.stat()
        except FileNotFoundError as error:
            raise EntryNotFoundError(path) from error
        except OSError as error:
            raise FilesystemError(f"Failed to stat {path}: {error}") from error
        return FileEntry(
            name=target.name or "/",
            is_dir=stat_module.S_ISDIR(info.st_mode),
            size=info.st_size,
            mode=stat_module.S_IMODE(info.st_mode),
            uid=info.st_uid,
            gid=info.st_gid,
        )

    def list_dir(self, path: str) -> List[FileEntry]:
        """List the children of ``path`` (no pseudo-entries)."""
        target = self.resolve(path)
        try:
            names = sorted(os.listdir(target))
        except NotADirectoryError as error:
            raise NotADirectoryEntryError(path) from error
        except FileNotFoundError as error:
            raise EntryNotFoundError(path) from error
        except OSError as error:
            raise FilesystemError(f"Failed to list {path}: {error}") from error
        return [self.stat(posixpath.join(_normalize(path), name)) for name in names]

    def open_file(self, path: str) -> BinaryIO:
        try:
            return open(self.resolve(path), "rb")
        except FileNotFoundError as error:
            raise EntryNotFoundError(path) from error
        except OSError as error:
            raise FilesystemError(f"Failed to open {path}: {error}") from error

    def create_file(self, path: str) -> BinaryIO:
        """Open ``path`` for writing, truncating it.

        Raises:
            IsADirectoryError: If ``path`` is an existing directory
        """
        return open(self.resolve(path), "wb")

    def make_directory(self, path: str, mode: int = 0o755, parents: bool = False) -> None:
        self.resolve(path).mkdir(mode=mode, parents=parents, exist_ok=True)

    def chown(self, path: str, uid: int, gid: int) -> None:
        os.chown(self.resolve(path), uid, gid)

    def chmod(self, path: str, mode: int) -> None:
        os.chmod(self.resolve(path), mode)

    def close(self) -> None:
        return None


def open_volume(path: str) -> VolumeFilesystem:
    """Open the ISO9660 volume at ``path`` and check its root is readable.

    Raises:
        FilesystemError: If the volume cannot be read
    """
    iso = pycdlib.PyCdlib()
    try:
        iso.open(path)
    except (PyCdlibException, OSError) as error:
        raise FilesystemError(f"Failed to read volume {path}: {error}") from error
    try:
        volume = VolumeFilesystem(iso, label=path)
        volume.list_dir("/")
    except FilesystemError as error:
        with contextlib.suppress(PyCdlibException):
            iso.close()
        raise FilesystemError(f"Failed to read volume {path}: {error}") from error
    log.debug(f"Opened volume {path}")
    return volume


def get_filesystem_from_device(path: str) -> VolumeFilesystem:
    """Open a config volume written straight onto a device, no partition table."""
    return open_volume(path)


def get_filesystem_from_disk(device: BlockDevice, partition_index: int) -> VolumeFilesystem:
    """Open the volume of ``device``; index 0 is the whole device.

    Raises:
        FilesystemError: If the partition does not exist or is unreadable
        PartitionError: If the partition table cannot be read
    """
    if partition_index < 0:
        raise FilesystemError(f"Invalid partition index {partition_index} for {device.path}")
    if partition_index == 0:
        return open_volume(device.path)
    table = get_partition_table(device)
    if partition_index > len(table.partitions):
        raise FilesystemError(
            f"{device.path} has {len(table.partitions)} partition(s), "
            f"requested partition {partition_index}"
        )
    return open_volume(table.partitions[partition_index - 1].node)
