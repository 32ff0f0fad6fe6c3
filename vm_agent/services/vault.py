"""Vault unseal protocol.

1. Wait until ``seal-status`` reports the vault initialized (bounded poll).
2. Submit the key shares in order, stopping once a response reports the vault
   unsealed. A failed submission aborts the rest.
3. Query ``seal-status`` again; a vault that is still sealed is fatal.

HTTP errors at any step are fatal; only the initialization wait repeats.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Optional, Sequence

from vm_agent.domain.models import SealStatus
from vm_agent.logging import LoggerFactory
from vm_agent.services.polling import PollPolicy, async_poll_until
from vm_agent.services.vault_client import VaultClient, VaultError


log = LoggerFactory.for_vault()


class VaultStillSealedError(VaultError):
    """All shares were submitted but the vault is still sealed."""

    def __init__(self, status: Optional[SealStatus] = None):
        self.status = status
        message = "vault was not unsealed after submitting all unseal keys"
        if status is not None:
            message += f" (progress {status.progress}/{status.t})"
        super().__init__(message)


async def unseal_vault(
    client: VaultClient,
    shares: Sequence[str],
    policy: PollPolicy,
    cancel: Optional[threading.Event] = None,
) -> SealStatus:
    """Run the unseal protocol against ``client``.

    Returns:
        The final seal status (unsealed)

    Raises:
        PollTimeoutError: If the vault never reports itself initialized
        VaultRequestError: If any request fails
        VaultStillSealedError: If the vault is sealed after all shares
    """
    status = await async_poll_until(
        client.seal_status,
        lambda current: current.initialized,
        policy,
        cancel=cancel,
        description="vault to be initialized",
    )
    log.info(f"Vault initialized (sealed={status.sealed}, version={status.version or 'unknown'})")

    if status.sealed:
        for index, share in enumerate(shares, start=1):
            response = await client.submit_unseal_key(share)
            log.debug(f"Submitted unseal key {index}/{len(shares)}, progress {response.progress}/{response.t}")
            if not response.sealed:
                break

    status = await client.seal_status()
    if status.sealed:
        raise VaultStillSealedError(status)
    log.success("Vault unsealed")
    return status


def unseal(
    client: VaultClient,
    shares: Sequence[str],
    policy: PollPolicy,
    cancel: Optional[threading.Event] = None,
) -> SealStatus:
    """Synchronous entry point for :func:`unseal_vault`."""
    return asyncio.run(unseal_vault(client, shares, policy, cancel))
