"""bind9 DNS server role.

The config volume on ``scsi1`` holds ``named.conf``, any number of
``named.conf.*`` includes and the zone files, next to the ``vm-config.json``
that is not meant for named.
"""

from __future__ import annotations

import contextlib

from vm_agent.app.context import AppContext
from vm_agent.domain.models import CopyMapping, FileEntry, VmDetails
from vm_agent.logging import LoggerFactory
from vm_agent.roles.common import apply_mapping, start_services
from vm_agent.storage.ownership import create_directory, set_owner, set_permissions


log = LoggerFactory.for_role("dns")

CONFIG_SLOT = "scsi1"
NAMED_USER = "named"
NAMED_DIR = "/etc/named"
ZONES_DIR = "/etc/named/zones"
FILE_MODE = 0o640
DIR_MODE = 0o750
SKIPPED_FILES = ("vm-config.json",)


def mapping_for(entry: FileEntry) -> CopyMapping | None:
    """Where a file from the root of the config volume belongs."""
    if entry.is_dir or entry.is_pseudo or entry.name in SKIPPED_FILES:
        return None
    if entry.name == "named.conf":
        return CopyMapping(entry.name, "/etc/named.conf", mode=FILE_MODE, owner=NAMED_USER)
    if entry.name.startswith("named.conf."):
        return CopyMapping(entry.name, f"{NAMED_DIR}/{entry.name}", mode=FILE_MODE)
    return CopyMapping(entry.name, f"{ZONES_DIR}/{entry.name}", mode=FILE_MODE)


def copy_configuration(context: AppContext) -> int:
    """Copy named's files off the config volume; returns how many were copied."""
    root_fs = context.root_fs
    create_directory(ZONES_DIR, recursive=True, mode=DIR_MODE, fs=root_fs)

    copied = 0
    with contextlib.closing(context.open_volume(CONFIG_SLOT)) as volume:
        for entry in volume.list_dir("/"):
            mapping = mapping_for(entry)
            if mapping is None:
                if not entry.is_pseudo:
                    log.debug(f"Skipping {entry.name}")
                continue
            apply_mapping(context, volume, mapping)
            copied += 1

    set_owner(NAMED_DIR, NAMED_USER, recursive=True, fs=root_fs)
    set_permissions(NAMED_DIR, DIR_MODE, fs=root_fs)
    log.info(f"Copied {copied} named file(s)")
    return copied


def setup(context: AppContext, vm: VmDetails) -> None:
    log.info(f"Setting up {vm.name or context.hostname} as DNS server")
    copy_configuration(context)
    start_services(context, ["named"])
