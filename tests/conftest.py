"""Fixtures built on the fakes in fakes.py."""

import asyncio
from typing import Dict, List, Optional

import httpx
import pytest

from mcpchat.mcp.registry import ConnectionRegistry
from mcpchat.validation.config import ServerConfig

from fakes import FakeMCPServer, InMemoryTransport, SSEServer, make_tool


@pytest.fixture
def make_registry():
    """Build a registry whose servers are FakeMCPServers keyed by name."""
    transports: Dict[str, List[InMemoryTransport]] = {}

    def build(
        servers: Dict[str, FakeMCPServer],
        failing=(),
        configs: Optional[List[ServerConfig]] = None,
        gates: Optional[Dict[str, asyncio.Event]] = None,
        **kwargs,
    ):
        configs = configs or [ServerConfig(name=name, url=f"http://{name}.test/mcp") for name in servers]

        def factory(config: ServerConfig) -> InMemoryTransport:
            transport = InMemoryTransport(
                servers.get(config.name),
                url=config.url,
                fail_start=config.name in failing,
            )
            transport.gate = (gates or {}).get(config.name)
            transports.setdefault(config.name, []).append(transport)
            return transport

        registry = ConnectionRegistry(configs, transport_factory=factory, **kwargs)
        registry.transports = transports
        return registry

    return build


@pytest.fixture
def sse_server():
    return SSEServer(FakeMCPServer("sse", tools=[make_tool("echo", required=["text"], text="string")]))


@pytest.fixture
async def sse_client(sse_server):
    async with httpx.AsyncClient(transport=httpx.MockTransport(sse_server)) as client:
        yield client
