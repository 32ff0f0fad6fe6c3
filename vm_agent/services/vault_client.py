"""HTTP client for the vault seal endpoints.

Vault serves a self-signed certificate during bootstrap, so certificate
verification is disabled for these requests.
"""

from __future__ import annotations

import asyncio

import aiohttp

from vm_agent.domain.models import SealStatus
from vm_agent.exceptions import AgentError
from vm_agent.logging import LoggerFactory


log = LoggerFactory.for_vault()

SEAL_STATUS_PATH = "/v1/sys/seal-status"
UNSEAL_PATH = "/v1/sys/unseal"


class VaultError(AgentError):
    """Base exception for vault operations."""


class VaultRequestError(VaultError):
    """A seal endpoint could not be reached or answered with an error."""

    def __init__(self, method: str, url: str, detail: str, status: int | None = None):
        self.method = method
        self.url = url
        self.status = status
        message = f"{method} {url} failed"
        if status is not None:
            message += f" with status {status}"
        super().__init__(f"{message}: {detail}")


class VaultClient:
    """Async client for ``sys/seal-status`` and ``sys/unseal``."""

    def __init__(self, api_url: str, timeout_seconds: float = 30.0, verify_ssl: bool = False):
        self.api_url = api_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.ssl = None if verify_ssl else False

    async def _request(self, method: str, path: str, payload: dict | None = None) -> SealStatus:
        url = f"{self.api_url}{path}"
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            try:
                async with session.request(method, url, json=payload, ssl=self.ssl) as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        raise VaultRequestError(method, url, body.strip(), resp.status)
                    data = await resp.json(content_type=None)
            except asyncio.TimeoutError as e:
                log.error(f"Timed out during {method} {url}")
                raise VaultRequestError(method, url, "request timed out") from e
            except aiohttp.ClientError as e:
                log.error(f"Network error during {method} {url}: {e}")
                raise VaultRequestError(method, url, str(e)) from e
            except ValueError as e:
                raise VaultRequestError(method, url, f"response is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise VaultRequestError(method, url, f"unexpected response body {data!r}")
        return SealStatus.from_dict(data)

    async def seal_status(self) -> SealStatus:
        """GET ``/v1/sys/seal-status``."""
        return await self._request("GET", SEAL_STATUS_PATH)

    async def submit_unseal_key(self, key: str) -> SealStatus:
        """PUT ``/v1/sys/unseal`` with one key share."""
        return await self._request("PUT", UNSEAL_PATH, {"key": key})
