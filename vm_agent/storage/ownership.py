"""Ownership and permission changes on the root filesystem.

Recursive changes walk the tree depth-first and change every child before the
directory itself. The first failure aborts the rest of the walk.
"""

from __future__ import annotations

import posixpath
import pwd
from typing import Optional

from vm_agent.logging import LoggerFactory
from vm_agent.storage.exceptions import (
    FilesystemError,
    OwnershipError,
    UnknownUserError,
)
from vm_agent.storage.filesystems import RootFilesystem


log = LoggerFactory.for_filesystem()


def lookup_uid(username: str) -> int:
    try:
        return pwd.getpwnam(username).pw_uid
    except KeyError as error:
        raise UnknownUserError(username) from error


def _children(fs: RootFilesystem, path: str):
    try:
        return [entry for entry in fs.list_dir(path) if not entry.is_pseudo]
    except FilesystemError as error:
        raise OwnershipError(f"Failed to list {path}: {error}") from error


def _apply_owner(fs: RootFilesystem, path: str, uid: int, recursive: bool) -> None:
    try:
        info = fs.stat(path)
    except FilesystemError as error:
        raise OwnershipError(f"Failed to stat {path}: {error}") from error
    if info.is_dir and recursive:
        for entry in _children(fs, path):
            _apply_owner(fs, posixpath.join(path, entry.name), uid, recursive)
    try:
        fs.chown(path, uid, info.gid if info.gid is not None else -1)
    except OSError as error:
        raise OwnershipError(f"Failed to change owner of {path}: {error}") from error


def _apply_mode(fs: RootFilesystem, path: str, mode: int, recursive: bool) -> None:
    try:
        info = fs.stat(path)
    except FilesystemError as error:
        raise OwnershipError(f"Failed to stat {path}: {error}") from error
    if info.is_dir and recursive:
        for entry in _children(fs, path):
            _apply_mode(fs, posixpath.join(path, entry.name), mode, recursive)
    try:
        fs.chmod(path, mode)
    except OSError as error:
        raise OwnershipError(f"Failed to change mode of {path}: {error}") from error


def set_owner(
    path: str,
    owner: str,
    recursive: bool = False,
    fs: Optional[RootFilesystem] = None,
) -> None:
    """Give ``path`` to user ``owner``, keeping its group.

    Raises:
        UnknownUserError: If ``owner`` does not exist
        OwnershipError: If any stat, listing or chown fails
    """
    fs = fs or RootFilesystem()
    uid = lookup_uid(owner)
    log.debug(f"Setting owner of {path} to {owner} ({uid}), recursive={recursive}")
    _apply_owner(fs, path, uid, recursive)


def set_permissions(
    path: str,
    mode: int,
    recursive: bool = False,
    fs: Optional[RootFilesystem] = None,
) -> None:
    """chmod ``path`` (and with ``recursive`` everything below it) to ``mode``."""
    fs = fs or RootFilesystem()
    log.debug(f"Setting mode of {path} to {mode:o}, recursive={recursive}")
    _apply_mode(fs, path, mode, recursive)


def create_directory(
    path: str,
    recursive: bool = False,
    mode: int = 0o755,
    fs: Optional[RootFilesystem] = None,
) -> None:
    """Create ``path`` if missing and set its mode, regardless of umask."""
    fs = fs or RootFilesystem()
    try:
        fs.make_directory(path, mode=mode, parents=recursive)
        fs.chmod(path, mode)
    except OSError as error:
        raise FilesystemError(f"Failed to create directory {path}: {error}") from error


def write_file_contents(
    path: str,
    data: bytes,
    mode: int = 0o644,
    fs: Optional[RootFilesystem] = None,
) -> None:
    fs = fs or RootFilesystem()
    try:
        with fs.create_file(path) as handle:
            handle.write(data)
        fs.chmod(path, mode)
    except OSError as error:
        raise FilesystemError(f"Failed to write {path}: {error}") from error


def read_file_contents(path: str, fs: Optional[RootFilesystem] = None) -> bytes:
    fs = fs or RootFilesystem()
    with fs.open_file(path) as handle:
        return handle.read()
