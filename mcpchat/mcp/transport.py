"""MCP server communication over HTTP: the Transport interface and SSE decoding."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Dict[str, Any]], None]
ErrorCallback = Callable[[Exception], None]
CloseCallback = Callable[[], None]


class TransportError(Exception):
    """Raised when MCP transport communication fails."""


class HandshakeTimeout(TransportError):
    """The server never announced its message endpoint."""


class HandshakeFailed(TransportError):
    """The event stream failed before the handshake completed."""


class NotStarted(TransportError):
    """``send()`` was called before ``start()`` completed."""


class SendFailed(TransportError):
    """An outbound POST failed or returned a non-2xx status."""


class TransportClosed(TransportError):
    """The transport has already been closed."""


class ConnectionLost(TransportError):
    """The inbound stream died after the handshake; no further replies can arrive."""


class SSEConnectionError(TransportError):
    """The SSE GET request was answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


# ── Server-Sent Events decoding ──────────────────────────────────────────


@dataclass
class SSEEvent:
    """One dispatched Server-Sent Event."""

    event: str = "message"
    data: str = ""
    id: Optional[str] = None


class SSEDecoder:
    """
    Line-oriented SSE decoder.

    Feed it lines with the line terminator stripped; it returns an
    ``SSEEvent`` when a blank line completes one, ``None`` otherwise.
    """

    def __init__(self) -> None:
        self._event = ""
        self._data: List[str] = []
        self._last_id: Optional[str] = None

    def decode(self, line: str) -> Optional[SSEEvent]:
        if not line:
            if not self._data:
                self._event = ""
                return None
            event = SSEEvent(
                event=self._event or "message",
                data="\n".join(self._data),
                id=self._last_id,
            )
            self._event = ""
            self._data = []
            return event

        if line.startswith(":"):
            return None  # comment / keep-alive

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            self._last_id = value
        return None


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[SSEEvent]:
    """Turn an async stream of text lines into SSE events."""
    decoder = SSEDecoder()
    async for line in lines:
        event = decoder.decode(line.rstrip("\r"))
        if event is not None:
            yield event


def decode_payload(data: str) -> List[Dict[str, Any]]:
    """
    Decode SSE/HTTP payload text into JSON-RPC messages.

    Accepts a single message or a batch. Raises ``ValueError`` when the
    text is not JSON or does not hold JSON-RPC objects.
    """
    payload = json.loads(data)
    if isinstance(payload, dict):
        return [payload]
    if isinstance(payload, list) and all(isinstance(item, dict) for item in payload):
        return payload
    raise ValueError(f"Not a JSON-RPC message: {data[:80]!r}")


# ── Transport interface ──────────────────────────────────────────────────


class Transport(ABC):
    """
    A logical duplex channel to one MCP server.

    Inbound JSON-RPC messages are handed to ``on_message``; stream
    failures after start-up go to ``on_error``; ``on_close`` fires exactly
    once when the transport is closed. The transport never reconnects on
    its own.
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.url = url
        self.api_key = api_key
        self.session_id: Optional[str] = None
        self.on_message: Optional[MessageCallback] = None
        self.on_error: Optional[ErrorCallback] = None
        self.on_close: Optional[CloseCallback] = None
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout
        self._started = False
        self._closed = False
        self._stream_task: Optional[asyncio.Task] = None

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def is_closed(self) -> bool:
        return self._closed

    # ── Lifecycle ─────────────────────────────────────────────────────────

    @abstractmethod
    async def start(self) -> None:
        """Open the inbound event stream."""

    @abstractmethod
    async def send(self, message: Dict[str, Any]) -> None:
        """Send one JSON-RPC message to the server."""

    async def close(self) -> None:
        """Close the transport. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        try:
            await self._terminate_session()
        finally:
            await self._stop_stream()
            if self._owns_client and self._http_client is not None:
                await self._http_client.aclose()
                self._http_client = None
            if self.on_close:
                self.on_close()

    async def _terminate_session(self) -> None:
        """Hook for server-side session teardown before the stream closes."""

    # ── HTTP helpers ──────────────────────────────────────────────────────

    def _http(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def _auth_headers(self) -> Dict[str, str]:
        if self.api_key:
            return {"Authorization": f"Bearer {self.api_key}"}
        return {}

    def _deliver(self, message: Dict[str, Any]) -> None:
        if self.on_message is None:
            logger.debug("No message handler registered, dropping %s", message)
            return
        self.on_message(message)

    def _report_error(self, error: Exception) -> None:
        logger.warning("Transport error on %s: %s", self.url, error)
        if self.on_error:
            self.on_error(error)

    # ── Event stream ──────────────────────────────────────────────────────

    def _start_stream(self, handler: Callable[[SSEEvent], None]) -> None:
        self._stream_task = asyncio.create_task(self._read_stream(handler))

    async def _read_stream(self, handler: Callable[[SSEEvent], None]) -> None:
        headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
            **self._auth_headers(),
        }
        try:
            async with self._http().stream(
                "GET",
                self.url,
                headers=headers,
                timeout=httpx.Timeout(self._timeout, read=None),
            ) as response:
                if not response.is_success:
                    raise SSEConnectionError(
                        response.status_code,
                        f"SSE connection failed: HTTP {response.status_code}",
                    )
                async for event in iter_sse_events(response.aiter_lines()):
                    handler(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._on_stream_failed(exc)
            return
        self._on_stream_ended()

    async def _stop_stream(self) -> None:
        task, self._stream_task = self._stream_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _on_stream_failed(self, error: Exception) -> None:
        if not self._closed:
            self._report_error(TransportError(f"SSE connection error: {error}"))

    def _on_stream_ended(self) -> None:
        if not self._closed:
            logger.info("SSE stream from %s closed by server", self.url)
