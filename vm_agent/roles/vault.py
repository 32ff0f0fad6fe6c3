"""Secret vault role: data volume, configuration, service, unseal."""

from __future__ import annotations

import contextlib

from vm_agent.app.context import AppContext
from vm_agent.domain.models import CopyMapping, VmDetails
from vm_agent.logging import LoggerFactory
from vm_agent.roles.common import apply_mappings
from vm_agent.services.vault import unseal
from vm_agent.storage.copy import read_file
from vm_agent.storage.filesystems import FilesystemHandle
from vm_agent.storage.ownership import create_directory
from vm_agent.storage.volumes import provision_data_volume


log = LoggerFactory.for_role("vault")

DATA_SLOT = "scsi1"
CONFIG_SLOT = "scsi2"
DATA_MOUNT_POINT = "/opt/vault"
VAULT_USER = "vault"
CONFIG_DIR = "/etc/vault.d"
KEY_FILES = ("vault-key-1", "vault-key-2", "vault-key-3")
API_URL_FILE = "vault-api-url"

CONFIG_MAPPINGS = (
    CopyMapping("vault.hcl", f"{CONFIG_DIR}/vault.hcl", mode=0o640, owner=VAULT_USER),
    CopyMapping("vault-public.pem", f"{CONFIG_DIR}/tls.crt", mode=0o644, owner=VAULT_USER),
    CopyMapping("vault-private.pem", f"{CONFIG_DIR}/tls.pem", mode=0o600, owner=VAULT_USER),
)


def _read_text(volume: FilesystemHandle, name: str) -> str:
    return read_file(volume, f"/{name}").decode("utf-8").strip()


def load_unseal_material(volume: FilesystemHandle) -> tuple[str, list[str]]:
    """The vault API URL and the key shares, in submission order."""
    shares = [_read_text(volume, name) for name in KEY_FILES]
    api_url = _read_text(volume, API_URL_FILE)
    return api_url, shares


def setup(context: AppContext, vm: VmDetails) -> None:
    with contextlib.closing(context.open_volume(CONFIG_SLOT)) as volume:
        log.info("Initializing data store")
        provision_data_volume(
            context.device_path(DATA_SLOT),
            DATA_MOUNT_POINT,
            owner=VAULT_USER,
            settle_seconds=context.settle_seconds,
            cancel=context.cancel,
            root_fs=context.root_fs,
        )

        log.info("Copying vault configuration")
        create_directory(CONFIG_DIR, recursive=True, mode=0o755, fs=context.root_fs)
        apply_mappings(context, volume, CONFIG_MAPPINGS)

        log.info("Starting vault service")
        context.systemd.start_service("vault")

        log.info("Unsealing vault")
        api_url, shares = load_unseal_material(volume)

    client = context.vault_client_factory(api_url, timeout_seconds=context.http_timeout_seconds)
    unseal(client, shares, context.vault_policy, context.cancel)
