"""Kubernetes node role: data volumes for the control plane and kubelet."""

from __future__ import annotations

from vm_agent.app.context import AppContext
from vm_agent.domain.models import VmDetails
from vm_agent.logging import LoggerFactory
from vm_agent.roles.common import start_services
from vm_agent.storage.volumes import provision_data_volume


log = LoggerFactory.for_role("k8s")

DRIVE_MAPPINGS = (
    ("scsi1", "/etc/kubernetes"),
    ("scsi2", "/var/lib/kubelet"),
    ("scsi3", "/var/lib/etcd"),
)

SERVICES = ("containerd", "kubelet")


def mount_drives(context: AppContext) -> int:
    """Provision every data disk; busy disks are skipped. Returns how many were new."""
    provisioned = 0
    for slot, mount_point in DRIVE_MAPPINGS:
        log.debug(f"Provisioning {slot} at {mount_point}")
        if provision_data_volume(
            context.device_path(slot),
            mount_point,
            settle_seconds=context.settle_seconds,
            cancel=context.cancel,
            root_fs=context.root_fs,
        ):
            provisioned += 1
    return provisioned


def setup(context: AppContext, vm: VmDetails) -> None:
    log.info("Setting up as kubernetes node")
    mount_drives(context)
    # kubelet restarts until the node has joined a cluster
    start_services(context, SERVICES, wait=False)
