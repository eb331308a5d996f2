"""
MCP Client

JSON-RPC session over a Transport: handshake, request/response
correlation, tool discovery and tool invocation.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from mcpchat import __version__
from mcpchat.mcp.protocol import (
    PROTOCOL_VERSION,
    JSONRPCError,
    is_response,
    make_notification,
    make_request,
)
from mcpchat.mcp.schema import ToolDef
from mcpchat.mcp.transport import ConnectionLost, Transport, TransportClosed

logger = logging.getLogger(__name__)


class MCPError(Exception):
    """Base class for protocol-level failures."""


class MCPRequestError(MCPError):
    """The server answered a request with a JSON-RPC error."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"MCP error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class MCPRequestTimeout(MCPError):
    """No response arrived within the request timeout."""


class MCPClient:
    """
    Speaks MCP to one server through a Transport.

    The transport pushes inbound messages onto a queue; a single reader
    task drains it in arrival order and resolves the pending request whose
    id matches.
    """

    def __init__(
        self,
        transport: Transport,
        client_name: str = "mcpchat",
        client_version: str = __version__,
        request_timeout: float = 60.0,
    ):
        self.transport = transport
        self.client_name = client_name
        self.client_version = client_version
        self.request_timeout = request_timeout
        self.server_info: Dict[str, Any] = {}
        self.server_capabilities: Dict[str, Any] = {}
        self.protocol_version: Optional[str] = None
        self.connection_lost: Optional[ConnectionLost] = None

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._pending: Dict[int, asyncio.Future] = {}
        self._request_id = 0
        self._reader: Optional[asyncio.Task] = None
        self._closed = False

        transport.on_message = self._inbox.put_nowait
        transport.on_error = self._on_transport_error
        transport.on_close = self._on_transport_close

    @property
    def initialized(self) -> bool:
        return self.protocol_version is not None and not self._closed and self.connection_lost is None

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def connect(self) -> Dict[str, Any]:
        """Start the transport and perform the MCP initialize handshake."""
        if self._closed:
            raise TransportClosed("Client has been closed")
        if self._reader is None:
            self._reader = asyncio.create_task(self._drain())

        try:
            await self.transport.start()
            result = await self.request("initialize", {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": self.client_name, "version": self.client_version},
            })
            await self.notify("notifications/initialized")
        except Exception:
            await self.close()
            raise

        self.server_info = result.get("serverInfo", {})
        self.server_capabilities = result.get("capabilities", {})
        self.protocol_version = result.get("protocolVersion", PROTOCOL_VERSION)
        return result

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._fail_pending(TransportClosed("Client closed"))

        reader, self._reader = self._reader, None
        if reader is not None and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        await self.transport.close()

    # ── JSON-RPC ──────────────────────────────────────────────────────────

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a request and wait for its response's ``result``."""
        if self._closed:
            raise TransportClosed("Client has been closed")
        if self.connection_lost is not None:
            raise ConnectionLost(str(self.connection_lost))

        self._request_id += 1
        request_id = self._request_id
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self.transport.send(make_request(request_id, method, params))
            response = await asyncio.wait_for(future, timeout=self.request_timeout)
        except asyncio.TimeoutError:
            raise MCPRequestTimeout(
                f"Request '{method}' timed out after {self.request_timeout:g}s"
            ) from None
        finally:
            self._pending.pop(request_id, None)

        if response.get("error"):
            err = JSONRPCError.from_dict(response["error"])
            raise MCPRequestError(err.code, err.message, err.data)

        result = response.get("result")
        return result if isinstance(result, dict) else {}

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        await self.transport.send(make_notification(method, params))

    async def _drain(self) -> None:
        while True:
            message = await self._inbox.get()
            if isinstance(message, ConnectionLost):
                self._fail_pending(message)
                continue
            self._dispatch(message)

    def _dispatch(self, message: Dict[str, Any]) -> None:
        if not is_response(message):
            logger.debug("Ignoring server-initiated message: %s", message.get("method"))
            return

        future = self._pending.get(message.get("id"))
        if future is None:
            logger.debug("No pending request for response id %r", message.get("id"))
            return
        if not future.done():
            future.set_result(message)

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    def _on_transport_error(self, error: Exception) -> None:
        logger.warning("Transport error from %s: %s", self.transport.url, error)
        if isinstance(error, ConnectionLost):
            self.connection_lost = error
            # queued behind any replies that arrived before the stream died
            self._inbox.put_nowait(error)

    def _on_transport_close(self) -> None:
        self._fail_pending(TransportClosed(f"Connection to {self.transport.url} closed"))

    # ── MCP Protocol ──────────────────────────────────────────────────────

    async def list_tools(self) -> List[ToolDef]:
        """Fetch the full tool list, following ``nextCursor`` pagination."""
        tools: List[ToolDef] = []
        cursor: Optional[str] = None
        seen = set()

        while True:
            result = await self.request("tools/list", {"cursor": cursor} if cursor else {})
            tools.extend(ToolDef.model_validate(raw) for raw in result.get("tools", []))
            cursor = result.get("nextCursor")
            if not cursor:
                break
            if cursor in seen:
                logger.warning("Server repeated pagination cursor %r, stopping", cursor)
                break
            seen.add(cursor)

        return tools

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Invoke a tool and return the raw result unchanged."""
        return await self.request("tools/call", {"name": name, "arguments": arguments or {}})
