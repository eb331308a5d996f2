"""Connection registry: owns every MCP server connection and routes tool calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import httpx

from mcpchat.mcp.client import MCPClient
from mcpchat.mcp.dual_channel import DualChannelTransport
from mcpchat.mcp.schema import (
    ConnectResult,
    FailedServer,
    ServerStatus,
    ToolsResponse,
    ToolWithServer,
)
from mcpchat.mcp.streamable_http import StreamableHTTPTransport
from mcpchat.mcp.transport import ConnectionLost, Transport
from mcpchat.validation.config import ServerConfig

logger = logging.getLogger(__name__)

ServerSource = Union[Sequence[ServerConfig], Callable[[], Sequence[ServerConfig]]]
TransportFactory = Callable[[ServerConfig], Transport]


class RegistryError(Exception):
    """Base class for registry failures."""


class NoServersConfigured(RegistryError):
    pass


class ConnectionInProgress(RegistryError):
    pass


class ConnectionFailed(RegistryError):
    pass


class ServerNotConnected(RegistryError):
    pass


class ToolNotFound(RegistryError):
    def __init__(self, tool_name: str, available: Sequence[str]):
        super().__init__(
            f'Tool "{tool_name}" not found in any connected server. '
            f"Available tools: {', '.join(available) or '(none)'}"
        )
        self.tool_name = tool_name
        self.available = list(available)


class ToolCallFailed(RegistryError):
    """The owning server failed to execute the tool."""


def create_transport(config: ServerConfig, http_client: Optional[httpx.AsyncClient] = None) -> Transport:
    """Pick the transport variant for a server."""
    if config.resolved_transport() == "streamable-http":
        return StreamableHTTPTransport(config.url, api_key=config.api_key, http_client=http_client)
    return DualChannelTransport(config.url, api_key=config.api_key, http_client=http_client)


@dataclass
class ServerConnection:
    """A configured server paired with its live transport and client."""

    config: ServerConfig
    transport: Transport
    client: MCPClient

    @property
    def alive(self) -> bool:
        return self.client.connection_lost is None


class ConnectionRegistry:
    """
    Manages connections to every configured MCP server.

    Connecting is additive: servers that fail stay out of the registry
    without disturbing the ones that connected. Discovery merges tools
    from all connected servers and reports per-server status as data.
    """

    def __init__(
        self,
        servers: ServerSource,
        transport_factory: Optional[TransportFactory] = None,
        request_timeout: float = 60.0,
    ):
        self._servers = servers
        self._transport_factory = transport_factory or create_transport
        self._request_timeout = request_timeout
        self._connections: Dict[str, ServerConnection] = {}
        self._connecting: set = set()
        self._failures: Dict[str, str] = {}

    # ── Connection management ─────────────────────────────────────────────

    def server_configs(self) -> List[ServerConfig]:
        servers = self._servers() if callable(self._servers) else self._servers
        return list(servers)

    async def connect(self, config: ServerConfig) -> MCPClient:
        """Connect to one server, returning the existing client if already connected."""
        existing = self._connections.get(config.name)
        if existing is not None:
            if existing.alive:
                return existing.client
            await self.disconnect(config.name)

        if config.name in self._connecting:
            raise ConnectionInProgress(f"Connection to {config.name} already in progress")

        logger.info("Connecting to %s at %s", config.label, config.url)
        self._connecting.add(config.name)
        try:
            transport = self._transport_factory(config)
            logger.debug("Using %s for %s", type(transport).__name__, config.name)
            client = MCPClient(
                transport,
                client_name=f"mcpchat-{config.name}",
                request_timeout=self._request_timeout,
            )
            await client.connect()
        except Exception as exc:
            logger.error("Failed to connect to %s: %s", config.label, exc)
            self._failures[config.name] = str(exc)
            raise ConnectionFailed(f"Failed to connect to {config.label}: {exc}") from exc
        finally:
            self._connecting.discard(config.name)

        self._connections[config.name] = ServerConnection(config=config, transport=transport, client=client)
        self._failures.pop(config.name, None)
        logger.info("Connected to %s", config.label)
        return client

    async def connect_all(self) -> ConnectResult:
        """Connect to every enabled server concurrently; partial success is fine."""
        configs = self.server_configs()
        if not configs:
            raise NoServersConfigured(
                "No MCP servers configured. Set MCP_SERVER_URL or TAVILY_API_KEY, "
                "or add mcp.servers to .mcpchat/config.yaml"
            )

        enabled = [config for config in configs if config.enabled]
        outcomes = await asyncio.gather(
            *(self.connect(config) for config in enabled),
            return_exceptions=True,
        )

        result = ConnectResult()
        for config, outcome in zip(enabled, outcomes):
            if isinstance(outcome, BaseException):
                result.failed.append(FailedServer(name=config.name, error=str(outcome)))
            else:
                result.connected.append(config.name)

        if result.connected:
            logger.info("Connected to servers: %s", ", ".join(result.connected))
        if result.failed:
            logger.warning("Failed servers: %s", ", ".join(f.name for f in result.failed))
        return result

    async def reconnect(self, name: str) -> MCPClient:
        """Replace the connection for ``name`` with a fresh one."""
        config = next((c for c in self.server_configs() if c.name == name), None)
        if config is None:
            raise ServerNotConnected(f'Server "{name}" is not configured')
        await self.disconnect(name)
        return await self.connect(config)

    async def _drop_lost(self) -> List[ServerConfig]:
        """Remove connections whose event stream died and return their configs."""
        lost = [(name, c) for name, c in self._connections.items() if not c.alive]
        for name, connection in lost:
            error = connection.client.connection_lost
            logger.warning("Lost connection to %s: %s", connection.config.label, error)
            await self.disconnect(name)
            self._failures[name] = str(error)
        return [connection.config for _, connection in lost]

    async def disconnect(self, name: str) -> None:
        connection = self._connections.pop(name, None)
        if connection is None:
            return
        try:
            await connection.client.close()
        except Exception as exc:
            logger.warning("Error closing connection to %s: %s", name, exc)

    async def close_all(self) -> None:
        """Close every connection concurrently and clear the registry."""
        connections = list(self._connections.items())
        outcomes = await asyncio.gather(
            *(connection.client.close() for _, connection in connections),
            return_exceptions=True,
        )
        for (name, _), outcome in zip(connections, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Error closing connection to %s: %s", name, outcome)
        self._connections.clear()
        self._failures.clear()
        logger.info("All connections closed")

    # ── Introspection ─────────────────────────────────────────────────────

    def is_connected(self) -> bool:
        return any(connection.alive for connection in self._connections.values())

    def connected_servers(self) -> List[str]:
        return [name for name, connection in self._connections.items() if connection.alive]

    def server_info(self, name: str) -> Optional[ServerConfig]:
        connection = self._connections.get(name)
        return connection.config if connection else None

    # ── Tools ─────────────────────────────────────────────────────────────

    async def list_tools(self) -> ToolsResponse:
        """
        Merge tool lists from every connected server.

        A server whose discovery fails is reported as disconnected in
        ``server_statuses``; it never aborts the other servers.
        """
        lost = await self._drop_lost()
        if not self._connections:
            await self.connect_all()
        elif lost:
            await asyncio.gather(*(self.connect(config) for config in lost), return_exceptions=True)

        response = ToolsResponse()
        for name, error in self._failures.items():
            response.server_statuses[name] = ServerStatus(connected=False, error=error, tool_count=0)

        connections = list(self._connections.items())
        outcomes = await asyncio.gather(
            *(connection.client.list_tools() for _, connection in connections),
            return_exceptions=True,
        )

        for (name, connection), outcome in zip(connections, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Failed to fetch tools from %s: %s", name, outcome)
                response.server_statuses[name] = ServerStatus(
                    connected=False,
                    error=str(outcome) or "Failed to fetch tools",
                    tool_count=0,
                )
                continue

            tools = [
                ToolWithServer(**tool.model_dump(), server_name=name, server_url=connection.config.url)
                for tool in outcome
            ]
            response.tools.extend(tools)
            response.server_statuses[name] = ServerStatus(connected=True, tool_count=len(tools))

        return response

    async def call_tool(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        server_name: Optional[str] = None,
    ) -> Any:
        """
        Call a tool, routed to the server that advertises it.

        Returns the raw tool result unmodified. Argument validation is the
        caller's job.
        """
        if server_name:
            await self._drop_lost()
            connection = self._connections.get(server_name)
            if connection is None:
                raise ServerNotConnected(f'Server "{server_name}" not connected')
        else:
            listing = await self.list_tools()
            tool = next((t for t in listing.tools if t.name == name), None)
            if tool is None:
                raise ToolNotFound(name, listing.tool_names())
            connection = self._connections.get(tool.server_name)
            if connection is None or not connection.alive:
                raise ServerNotConnected(
                    f'Server "{tool.server_name}" for tool "{name}" not connected'
                )

        logger.debug('Calling tool "%s" on server "%s" with %s', name, connection.config.name, arguments)
        try:
            result = await connection.client.call_tool(name, arguments or {})
        except ConnectionLost as exc:
            raise ServerNotConnected(
                f'Server "{connection.config.name}" dropped while calling "{name}": {exc}'
            ) from exc
        except Exception as exc:
            raise ToolCallFailed(f'Failed to call MCP tool "{name}": {exc}') from exc
        logger.debug('Tool "%s" returned %s', name, result)
        return result
