"""Tests for the infra config mapper client (vm_agent/services/inventory.py)."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import aiohttp
import pytest
from aiohttp import web

from vm_agent.services.inventory import InfraConfigMapperClient, InventoryError


VM_DOCUMENT = {
    "vm_id": "204",
    "name": "lb-1",
    "node_name": "pve-2",
    "tags": ["loadbalancer"],
    "ip_config": [{"ip_address": "10.0.0.20/24", "gateway": "10.0.0.1", "order": 0}],
    "disk": [],
    "network_interface": [],
}


async def start_mapper(aiohttp_server, routes, timeout_seconds=5):
    app = web.Application()
    for path, handler in routes:
        app.router.add_get(path, handler)
    server = await aiohttp_server(app)
    return InfraConfigMapperClient(str(server.make_url("")), "lb-1", timeout_seconds=timeout_seconds)


class TestInit:
    def test_requires_base_url(self):
        with pytest.raises(InventoryError, match="INFRA_CONFIG_MAPPER_URL"):
            InfraConfigMapperClient("", "lb-1")

    def test_vm_url(self):
        client = InfraConfigMapperClient("http://mapper:8080/", "lb-1")

        assert client.vm_url == "http://mapper:8080/state/vm/lb-1"


class TestFetchVmDetails:
    @pytest.mark.asyncio
    async def test_returns_details(self, aiohttp_server):
        async def handler(request):
            assert request.match_info["hostname"] == "lb-1"
            return web.json_response(VM_DOCUMENT)

        client = await start_mapper(aiohttp_server, [("/state/vm/{hostname}", handler)])

        details = await client.fetch_vm_details()

        assert details.vm_id == "204"
        assert details.tags == ("loadbalancer",)
        assert details.primary_ip == "10.0.0.20/24"

    @pytest.mark.asyncio
    async def test_unknown_vm(self, aiohttp_server):
        async def handler(request):
            return web.Response(status=404, text="vm not found")

        client = await start_mapper(aiohttp_server, [("/state/vm/{hostname}", handler)])

        with pytest.raises(InventoryError, match="404"):
            await client.fetch_vm_details()

    @pytest.mark.asyncio
    async def test_document_without_vm_id(self, aiohttp_server):
        async def handler(request):
            return web.json_response({"name": "lb-1"})

        client = await start_mapper(aiohttp_server, [("/state/vm/{hostname}", handler)])

        with pytest.raises(InventoryError, match="Failed to parse"):
            await client.fetch_vm_details()

    @pytest.mark.asyncio
    async def test_slow_response_times_out(self, aiohttp_server):
        async def handler(request):
            await asyncio.sleep(2)
            return web.json_response(VM_DOCUMENT)

        client = await start_mapper(
            aiohttp_server, [("/state/vm/{hostname}", handler)], timeout_seconds=0.3
        )

        with pytest.raises(InventoryError, match="timed out"):
            await client.fetch_vm_details()

    @pytest.mark.asyncio
    async def test_html_body(self, aiohttp_server):
        async def handler(request):
            return web.Response(text="<html>bad gateway</html>", content_type="text/html")

        client = await start_mapper(aiohttp_server, [("/state/vm/{hostname}", handler)])

        with pytest.raises(InventoryError, match="not JSON"):
            await client.fetch_vm_details()

    @pytest.mark.asyncio
    async def test_network_error(self):
        client = InfraConfigMapperClient("http://127.0.0.1:9", "lb-1")

        with patch.object(
            aiohttp.ClientSession,
            "get",
            side_effect=aiohttp.ClientConnectionError("Connection refused"),
        ):
            with pytest.raises(InventoryError, match="Network error"):
                await client.fetch_vm_details()


def test_sync_wrapper(mocker):
    client = InfraConfigMapperClient("http://mapper", "lb-1")
    mocker.patch.object(client, "_get_json", return_value=VM_DOCUMENT)

    assert client.get_vm_details().name == "lb-1"
