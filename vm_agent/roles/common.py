"""Helpers shared by the role routines."""

from __future__ import annotations

import posixpath
from typing import Iterable

from vm_agent.app.context import AppContext
from vm_agent.domain.models import CopyMapping
from vm_agent.logging import LoggerFactory
from vm_agent.storage.copy import copy_tree
from vm_agent.storage.filesystems import FilesystemHandle
from vm_agent.storage.ownership import set_owner, set_permissions


log = LoggerFactory.for_copy(job_id="roles")


def volume_path(name: str) -> str:
    return posixpath.join("/", name)


def apply_mapping(context: AppContext, volume: FilesystemHandle, mapping: CopyMapping) -> None:
    """Copy one mapping onto the root filesystem and fix its ownership and modes.

    ``children_mode`` is applied to everything below a directory destination,
    ``mode`` to the destination itself, ``owner`` to the whole subtree.
    """
    root_fs = context.root_fs
    log.debug(f"Copying {mapping.source_path} to {mapping.dest_path}")
    copy_tree(
        volume,
        volume_path(mapping.source_path),
        mapping.dest_path,
        recursive=mapping.recursive,
        dest_fs=root_fs,
    )
    if mapping.children_mode is not None and root_fs.stat(mapping.dest_path).is_dir:
        for entry in root_fs.list_dir(mapping.dest_path):
            set_permissions(
                posixpath.join(mapping.dest_path, entry.name),
                mapping.children_mode,
                recursive=True,
                fs=root_fs,
            )
    if mapping.mode is not None:
        set_permissions(mapping.dest_path, mapping.mode, fs=root_fs)
    if mapping.owner:
        set_owner(mapping.dest_path, mapping.owner, recursive=True, fs=root_fs)


def apply_mappings(
    context: AppContext, volume: FilesystemHandle, mappings: Iterable[CopyMapping]
) -> None:
    for mapping in mappings:
        apply_mapping(context, volume, mapping)


def start_services(context: AppContext, names: Iterable[str], wait: bool = True) -> None:
    """Start ``names`` in order, then (with ``wait``) wait for each of them."""
    names = list(names)
    for name in names:
        context.systemd.start_service(name)
    if wait:
        for name in names:
            context.systemd.wait_for_service(name, context.service_policy, context.cancel)
