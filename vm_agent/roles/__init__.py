"""Role routines and the tag based dispatcher."""

from __future__ import annotations

from typing import Callable, Dict, Optional

from vm_agent.app.context import AppContext
from vm_agent.domain.models import VmDetails
from vm_agent.logging import LoggerFactory, operation_context

from . import dns, k8s, loadbalancer, vault


RoleRoutine = Callable[[AppContext, VmDetails], None]

ROLE_ROUTINES: Dict[str, RoleRoutine] = {
    "dns": dns.setup,
    "loadbalancer": loadbalancer.setup,
    "vault": vault.setup,
    "k8s": k8s.setup,
}

log = LoggerFactory.for_system()


def dispatch(context: AppContext, vm: VmDetails) -> Optional[str]:
    """Run the routine of the first tag that names a role.

    Returns:
        The role that ran, or None when no tag matched
    """
    for tag in vm.tags:
        log.debug(f"Parsing tag {tag}")
        routine = ROLE_ROUTINES.get(tag)
        if routine is None:
            continue
        with operation_context(tag, hostname=context.hostname, vm_id=vm.vm_id):
            routine(context, vm)
        return tag
    log.warning(f"No role found in tags {list(vm.tags)} for vm {vm.vm_id}")
    return None


__all__ = ["ROLE_ROUTINES", "RoleRoutine", "dispatch"]
