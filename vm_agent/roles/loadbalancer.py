"""haproxy + keepalived load balancer role."""

from __future__ import annotations

import contextlib
import json

from vm_agent.app.context import AppContext
from vm_agent.domain.models import CopyMapping, VmDetails
from vm_agent.exceptions import AgentError
from vm_agent.logging import LoggerFactory
from vm_agent.roles.common import apply_mappings, start_services
from vm_agent.storage.ownership import create_directory, read_file_contents, set_owner


log = LoggerFactory.for_role("loadbalancer")

HAPROXY_SLOT = "scsi1"
KEEPALIVED_SLOT = "scsi2"
HAPROXY_USER = "haproxy"
VM_CONFIG_PATH = "/tmp/vm-config.json"
SERVICES = ("keepalived", "haproxy")

DIRECTORIES = (
    ("/etc/haproxy", 0o755),
    ("/etc/haproxy/conf.d", 0o755),
    ("/etc/haproxy/certs", 0o700),
)

HAPROXY_MAPPINGS = (
    CopyMapping("haproxy.cfg", "/etc/haproxy/haproxy.cfg", mode=0o644, owner=HAPROXY_USER),
    CopyMapping(
        "certs",
        "/etc/haproxy/certs",
        recursive=True,
        mode=0o700,
        children_mode=0o600,
        owner=HAPROXY_USER,
    ),
    CopyMapping(
        "conf.d",
        "/etc/haproxy/conf.d",
        recursive=True,
        mode=0o755,
        children_mode=0o644,
        owner=HAPROXY_USER,
    ),
    CopyMapping("vm-config.json", VM_CONFIG_PATH, mode=0o400),
)

KEEPALIVED_MAPPINGS = (
    CopyMapping("keepalived.conf", "/etc/keepalived/keepalived.conf", mode=0o600),
)


class LoadBalancerConfigError(AgentError):
    """vm-config.json is missing or malformed."""


def prepare_filesystem(context: AppContext) -> None:
    root_fs = context.root_fs
    for directory, mode in DIRECTORIES:
        log.debug(f"Creating directory {directory}")
        create_directory(directory, recursive=True, mode=mode, fs=root_fs)
        set_owner(directory, HAPROXY_USER, fs=root_fs)
    create_directory("/etc/keepalived", recursive=True, mode=0o755, fs=root_fs)

    log.info("Copying config files...")
    with contextlib.closing(context.open_volume(HAPROXY_SLOT)) as volume:
        apply_mappings(context, volume, HAPROXY_MAPPINGS)
    with contextlib.closing(context.open_volume(KEEPALIVED_SLOT)) as volume:
        apply_mappings(context, volume, KEEPALIVED_MAPPINGS)

    context.selinux.change_context("/etc/haproxy", "system_u", "object_r", "etc_t", recursive=True)
    context.selinux.change_context(
        "/etc/keepalived", "system_u", "object_r", "keepalived_var_run_t", recursive=True
    )


def load_ports(context: AppContext) -> list[tuple[int, str]]:
    """Ports listed in ``vm-config.json`` as ``(port, protocol)`` pairs.

    Raises:
        LoadBalancerConfigError: If the document cannot be parsed
    """
    raw = read_file_contents(VM_CONFIG_PATH, fs=context.root_fs)
    try:
        config = json.loads(raw)
        ports = [(int(item["Port"]), str(item["Protocol"])) for item in config.get("Ports") or []]
    except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as error:
        raise LoadBalancerConfigError(f"Failed to parse vm-configuration json: {error}") from error
    log.debug(f"Found {len(ports)} port mapping(s)")
    return ports


def configure_selinux_ports(context: AppContext) -> None:
    for port, protocol in load_ports(context):
        context.selinux.open_inbound_port(port, protocol)
    log.debug("Opening haproxy to allow all outbound connections")
    context.selinux.allow_all_outbound()


def setup(context: AppContext, vm: VmDetails) -> None:
    log.info("Setting up as load balancer")
    prepare_filesystem(context)
    log.info("Files successfully loaded")
    configure_selinux_ports(context)
    start_services(context, SERVICES)
