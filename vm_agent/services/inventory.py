"""Client for the infra config mapper, the inventory of VM roles and details."""

from __future__ import annotations

import asyncio

import aiohttp

from vm_agent.domain.models import VmDetails
from vm_agent.exceptions import AgentError
from vm_agent.logging import LoggerFactory


log = LoggerFactory.for_inventory()


class InventoryError(AgentError):
    """The inventory could not be queried or returned an unusable document."""


class InfraConfigMapperClient:
    """Looks up this VM by hostname."""

    def __init__(self, base_url: str, hostname: str, timeout_seconds: float = 30.0):
        """Initialize the client.

        Args:
            base_url: Mapper root URL (``INFRA_CONFIG_MAPPER_URL``)
            hostname: Name this VM is registered under
            timeout_seconds: HTTP request timeout
        """
        if not base_url:
            raise InventoryError("INFRA_CONFIG_MAPPER_URL is not configured")
        self.base_url = base_url.rstrip("/")
        self.hostname = hostname
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def vm_url(self) -> str:
        return f"{self.base_url}/state/vm/{self.hostname}"

    async def _get_json(self, url: str):
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            try:
                async with session.get(url, headers={"Accept": "application/json"}) as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        raise InventoryError(f"GET {url} returned status {resp.status}: {body.strip()}")
                    return await resp.json(content_type=None)
            except asyncio.TimeoutError as e:
                log.error(f"Timed out during GET {url}")
                raise InventoryError(f"GET {url} timed out") from e
            except aiohttp.ClientError as e:
                log.error(f"Network error during GET {url}: {e}")
                raise InventoryError(f"Network error: {e}") from e
            except ValueError as e:
                raise InventoryError(f"GET {url} returned a body that is not JSON: {e}") from e

    async def fetch_vm_details(self) -> VmDetails:
        """GET ``/state/vm/<hostname>``.

        Raises:
            InventoryError: Non-200 response, network error or bad document
        """
        data = await self._get_json(self.vm_url)
        if not isinstance(data, dict):
            raise InventoryError(f"Unexpected vm details document: {data!r}")
        try:
            details = VmDetails.from_dict(data)
        except (KeyError, TypeError, ValueError) as error:
            raise InventoryError(f"Failed to parse vm details: {error}") from error
        log.debug(f"Retrieved vm details for vm {details.vm_id}")
        return details

    def get_vm_details(self) -> VmDetails:
        return asyncio.run(self.fetch_vm_details())
