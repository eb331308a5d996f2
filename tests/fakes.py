"""Shared fakes: an in-process MCP server, an in-memory transport and an SSE server."""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import httpx

from mcpchat.mcp.protocol import PROTOCOL_VERSION, ErrorCodes
from mcpchat.mcp.transport import ConnectionLost, HandshakeFailed, NotStarted, Transport, TransportClosed


def make_tool(name: str, required=(), description: Optional[str] = None, **properties: str) -> Dict[str, Any]:
    """Tool definition in wire format; keyword arguments map property name to type."""
    return {
        "name": name,
        "description": description or f"The {name} tool",
        "inputSchema": {
            "type": "object",
            "properties": {pname: {"type": ptype} for pname, ptype in properties.items()},
            "required": list(required),
        },
    }


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll ``predicate`` until it holds, yielding to the event loop in between."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


# ---------------------------------------------------------------------------
# In-process MCP server
# ---------------------------------------------------------------------------


class FakeMCPServer:
    """Answers initialize, tools/list and tools/call the way an MCP server would."""

    def __init__(
        self,
        name: str,
        tools: Optional[List[Dict[str, Any]]] = None,
        fail_list: bool = False,
        page_size: Optional[int] = None,
        failing_tools=(),
    ):
        self.name = name
        self.tools = tools or []
        self.fail_list = fail_list
        self.page_size = page_size
        self.failing_tools = set(failing_tools)
        self.received: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []

    def handle(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self.received.append(message)
        if "id" not in message:
            return None

        method = message["method"]
        params = message.get("params") or {}
        if method == "initialize":
            return self._result(message, {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": self.name, "version": "0.1.0"},
            })
        if method == "tools/list":
            if self.fail_list:
                return self._error(message, ErrorCodes.INTERNAL_ERROR, "tool listing unavailable")
            start = int(params.get("cursor") or 0)
            size = self.page_size or len(self.tools) or 1
            result: Dict[str, Any] = {"tools": self.tools[start:start + size]}
            if start + size < len(self.tools):
                result["nextCursor"] = str(start + size)
            return self._result(message, result)
        if method == "tools/call":
            self.calls.append((params["name"], params.get("arguments")))
            if params["name"] in self.failing_tools:
                return self._error(message, ErrorCodes.INTERNAL_ERROR, f"{params['name']} exploded")
            return self._result(message, {
                "content": [{"type": "text", "text": f"{self.name}:{params['name']}"}],
                "isError": False,
            })
        return self._error(message, ErrorCodes.METHOD_NOT_FOUND, f"Unknown method {method}")

    @staticmethod
    def _result(message: Dict[str, Any], result: Dict[str, Any]) -> Dict[str, Any]:
        return {"jsonrpc": "2.0", "id": message["id"], "result": result}

    @staticmethod
    def _error(message: Dict[str, Any], code: int, text: str) -> Dict[str, Any]:
        return {"jsonrpc": "2.0", "id": message["id"], "error": {"code": code, "message": text}}


class InMemoryTransport(Transport):
    """Transport wired straight to a FakeMCPServer; replies are delivered synchronously."""

    def __init__(self, server: Optional[FakeMCPServer], url: str = "memory://server", fail_start: bool = False):
        super().__init__(url)
        self.server = server
        self.fail_start = fail_start
        self.gate: Optional[asyncio.Event] = None
        self.sent: List[Dict[str, Any]] = []

    async def start(self) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_start:
            raise HandshakeFailed(f"{self.url} refused the connection")
        self._started = True

    async def send(self, message: Dict[str, Any]) -> None:
        if not self._started:
            raise NotStarted("Transport not started")
        if self._closed:
            raise TransportClosed("Transport has been closed")
        self.sent.append(message)
        if self.server is None:
            return  # black hole: never answers
        reply = self.server.handle(message)
        if reply is not None:
            self._deliver(reply)

    def lose_connection(self) -> None:
        """Report the inbound stream as dead, the way the dual-channel transport does."""
        self._report_error(ConnectionLost(f"{self.url} went away"))


# ---------------------------------------------------------------------------
# HTTP-level fake for the wire transports
# ---------------------------------------------------------------------------


class SSEServer:
    """
    httpx.MockTransport handler emulating an MCP server over HTTP.

    GET returns an event stream fed from ``push``; POST bodies are
    recorded and, when ``reply_on_stream`` is set, answered on the stream.
    """

    def __init__(self, mcp: Optional[FakeMCPServer] = None, reply_on_stream: bool = True):
        self.mcp = mcp or FakeMCPServer("sse")
        self.reply_on_stream = reply_on_stream
        self.requests: List[httpx.Request] = []
        self.posts: List[Dict[str, Any]] = []
        self.get_status = 200
        self.post_status = 202
        self._events: asyncio.Queue = asyncio.Queue()

    def push(self, data: str, event: Optional[str] = None) -> None:
        frame = f"event: {event}\n" if event else ""
        frame += f"data: {data}\n\n"
        self._events.put_nowait(frame)

    def push_raw(self, text: str) -> None:
        self._events.put_nowait(text)

    def end_stream(self) -> None:
        self._events.put_nowait(None)

    async def _stream(self):
        while True:
            frame = await self._events.get()
            if frame is None:
                return
            yield frame.encode()

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET":
            if self.get_status != 200:
                return httpx.Response(self.get_status)
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=self._stream())
        if request.method == "POST":
            message = json.loads(request.content)
            self.posts.append(message)
            if self.post_status >= 300:
                return httpx.Response(self.post_status)
            reply = self.mcp.handle(message)
            if reply is not None and self.reply_on_stream:
                self.push(json.dumps(reply), event="message")
            return httpx.Response(self.post_status, text="Accepted")
        return httpx.Response(405)

