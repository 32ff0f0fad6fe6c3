"""Copy files and directory trees from a config volume to the root filesystem.

Every file is read completely into memory in ``CHUNK_SIZE`` pieces and written
with one call; the number of bytes written must match the number read or the
copy fails with :class:`CopyIntegrityError`. Integrity failures are never
retried.

Rules:
    - A source that is a regular file is copied as a single file.
    - ``.`` and ``..`` entries are never copied.
    - Sub-directories are mirrored (and created when missing) when
      ``recursive`` is set; otherwise they are skipped.
    - If the destination of a single file is an existing directory, the file
      lands at ``<dest>/<basename(source)>``.
    - The top-level destination directory of a tree copy must already exist.
"""

from __future__ import annotations

import posixpath
from typing import Optional

from vm_agent.logging import EventLogger, LoggerFactory
from vm_agent.storage.exceptions import (
    CopyError,
    CopyIntegrityError,
    EntryNotFoundError,
    NotADirectoryEntryError,
)
from vm_agent.storage.filesystems import FilesystemHandle, RootFilesystem


CHUNK_SIZE = 4096


def read_file(source_fs: FilesystemHandle, path: str) -> bytes:
    """Read a whole file from ``source_fs``."""
    buffer = bytearray()
    with source_fs.open_file(path) as handle:
        while True:
            chunk = handle.read(CHUNK_SIZE)
            if not chunk:
                break
            buffer.extend(chunk)
    return bytes(buffer)


def _write_destination(dest_fs: RootFilesystem, dest_path: str, data: bytes) -> int:
    with dest_fs.create_file(dest_path) as handle:
        written = handle.write(data)
    return written or 0


def copy_file(
    source_fs: FilesystemHandle,
    source_path: str,
    dest_path: str,
    dest_fs: Optional[RootFilesystem] = None,
) -> str:
    """Copy one file and verify the byte count.

    Returns:
        The path the file was written to

    Raises:
        CopyIntegrityError: If fewer bytes were written than read
        CopyError: If the destination cannot be written
    """
    dest_fs = dest_fs or RootFilesystem()
    log = LoggerFactory.for_copy()
    data = read_file(source_fs, source_path)
    bytes_read = len(data)
    try:
        try:
            written = _write_destination(dest_fs, dest_path, data)
        except IsADirectoryError:
            dest_path = posixpath.join(dest_path, posixpath.basename(source_path))
            log.debug(f"Destination is a directory, copying to {dest_path}")
            written = _write_destination(dest_fs, dest_path, data)
    except OSError as error:
        raise CopyError(f"Failed to write {dest_path}: {error}") from error
    if written != bytes_read:
        raise CopyIntegrityError(dest_path, written, bytes_read)
    EventLogger.log_file_copied(log, source_path, dest_path, written)
    return dest_path


def _find_file(source_fs: FilesystemHandle, source_path: str) -> None:
    parent = posixpath.dirname(source_path) or "/"
    name = posixpath.basename(source_path)
    try:
        entries = source_fs.list_dir(parent)
    except EntryNotFoundError as error:
        raise EntryNotFoundError(source_path) from error
    for entry in entries:
        if entry.name == name and not entry.is_dir:
            return
    raise EntryNotFoundError(source_path)


def copy_tree(
    source_fs: FilesystemHandle,
    source_path: str,
    dest_path: str,
    recursive: bool = True,
    dest_fs: Optional[RootFilesystem] = None,
) -> int:
    """Copy ``source_path`` (file or directory) to ``dest_path``.

    Returns:
        Number of files copied

    Raises:
        EntryNotFoundError: If the source does not exist
        CopyIntegrityError: If a file was not written completely
    """
    dest_fs = dest_fs or RootFilesystem()
    log = LoggerFactory.for_copy()

    try:
        entries = source_fs.list_dir(source_path)
    except NotADirectoryEntryError:
        _find_file(source_fs, source_path)
        copy_file(source_fs, source_path, dest_path, dest_fs)
        return 1

    copied = 0
    for entry in entries:
        if entry.is_pseudo:
            continue
        source_child = posixpath.join(source_path, entry.name)
        dest_child = posixpath.join(dest_path, entry.name)
        if entry.is_dir:
            if not recursive:
                log.debug(f"Skipping directory {source_child}")
                continue
            if not dest_fs.exists(dest_child):
                try:
                    dest_fs.make_directory(dest_child)
                except OSError as error:
                    raise CopyError(f"Failed to create {dest_child}: {error}") from error
            copied += copy_tree(source_fs, source_child, dest_child, recursive, dest_fs)
        else:
            copy_file(source_fs, source_child, dest_child, dest_fs)
            copied += 1
    log.debug(f"Copied {copied} file(s) from {source_path} to {dest_path}")
    return copied
