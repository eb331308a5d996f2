"""
Dual-channel MCP transport (HTTP+SSE).

- GET <url>: SSE stream carrying every server-to-client message
- POST <endpoint>: client-to-server messages, where <endpoint> is
  announced by the server in an ``endpoint`` event on the stream
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import httpx

from mcpchat.mcp.transport import (
    ConnectionLost,
    HandshakeFailed,
    HandshakeTimeout,
    NotStarted,
    SendFailed,
    SSEEvent,
    Transport,
    TransportClosed,
    TransportError,
    decode_payload,
)

logger = logging.getLogger(__name__)

HANDSHAKE_TIMEOUT = 10.0


class DualChannelTransport(Transport):
    """
    Transport for servers that announce their POST endpoint over SSE.

    POST responses carry no protocol payload; every JSON-RPC response and
    notification arrives on the event stream.
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
    ):
        super().__init__(url, api_key=api_key, http_client=http_client, timeout=timeout)
        self.endpoint: Optional[str] = None
        self.handshake_timeout = handshake_timeout
        self.lost: Optional[ConnectionLost] = None
        self._endpoint_ready: Optional[asyncio.Future] = None
        self._handshake: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """
        Open the SSE stream and wait for the ``endpoint`` event.

        Concurrent callers share the handshake already in flight.
        """
        if self._started:
            return
        if self._closed:
            raise TransportClosed("Transport has been closed")

        handshake = self._handshake
        if handshake is None:
            handshake = self._handshake = asyncio.create_task(self._open())
        try:
            await asyncio.shield(handshake)
        finally:
            # a failed handshake may be retried by a later start()
            if handshake.done() and self._handshake is handshake and not self._started:
                self._handshake = None

    async def _open(self) -> None:
        logger.debug("Opening SSE connection to %s", self.url)
        self._endpoint_ready = asyncio.get_running_loop().create_future()
        self._start_stream(self._handle_event)

        try:
            await asyncio.wait_for(self._endpoint_ready, timeout=self.handshake_timeout)
        except asyncio.TimeoutError:
            await self._stop_stream()
            raise HandshakeTimeout(
                f"Timeout waiting for endpoint event from {self.url} "
                f"after {self.handshake_timeout:g}s"
            ) from None
        except TransportError:
            await self._stop_stream()
            raise

        self._started = True

    async def send(self, message: Dict[str, Any]) -> None:
        """POST a message to the announced endpoint. Replies arrive on the stream."""
        if not self._started or not self.endpoint:
            raise NotStarted("Transport not started or endpoint not available")
        if self._closed:
            raise TransportClosed("Transport has been closed")
        if self.lost is not None:
            raise ConnectionLost(str(self.lost))

        logger.debug("Sending message to %s: %s", self.endpoint, message)
        headers = {"Content-Type": "application/json", **self._auth_headers()}
        try:
            response = await self._http().post(
                self.endpoint,
                content=json.dumps(message),
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise SendFailed(f"Failed to send message to {self.endpoint}: {exc}") from exc

        if not response.is_success:
            raise SendFailed(f"HTTP error: {response.status_code} {response.reason_phrase}")

    # ── Inbound events ────────────────────────────────────────────────────

    def _handle_event(self, event: SSEEvent) -> None:
        if event.event == "endpoint":
            self._handle_endpoint(event.data)
        elif event.event == "message":
            self._handle_message(event.data)
        else:
            logger.debug("Ignoring SSE event of type %r", event.event)

    def _handle_message(self, data: str) -> None:
        if not data.strip():
            return
        try:
            messages = decode_payload(data)
        except ValueError as exc:
            # Some servers emit non-JSON heartbeats on the stream
            logger.debug("Failed to parse SSE message (%s): %r", exc, data)
            return
        for message in messages:
            logger.debug("Received message: %s", message)
            self._deliver(message)

    def _handle_endpoint(self, data: str) -> None:
        ready = self._endpoint_ready
        if ready is None or ready.done():
            logger.debug("Ignoring repeated endpoint event: %r", data)
            return

        try:
            path = self._parse_endpoint(data)
        except HandshakeFailed as exc:
            ready.set_exception(exc)
            return

        endpoint = httpx.URL(self.url).join(path)
        self.endpoint = str(endpoint)
        self.session_id = endpoint.params.get("sessionId")
        logger.debug("Received endpoint %s (session %s)", self.endpoint, self.session_id)
        ready.set_result(self.endpoint)

    @staticmethod
    def _parse_endpoint(data: str) -> str:
        """Accept a bare path, a JSON string, or ``{"endpoint": "..."}``."""
        raw = data.strip()
        if not raw:
            raise HandshakeFailed("Empty endpoint event data")
        try:
            parsed = json.loads(raw)
        except ValueError:
            return raw
        if isinstance(parsed, str) and parsed:
            return parsed
        if isinstance(parsed, dict) and isinstance(parsed.get("endpoint"), str) and parsed["endpoint"]:
            return parsed["endpoint"]
        raise HandshakeFailed(f"Unexpected endpoint event format: {raw[:80]!r}")

    # ── Stream lifecycle ──────────────────────────────────────────────────

    def _handshake_pending(self) -> bool:
        return self._endpoint_ready is not None and not self._endpoint_ready.done()

    def _on_stream_failed(self, error: Exception) -> None:
        if self._handshake_pending():
            self._endpoint_ready.set_exception(
                HandshakeFailed(f"Failed to establish SSE connection to {self.url}: {error}")
            )
            return
        self._connection_lost(f"SSE connection error on {self.url}: {error}")

    def _on_stream_ended(self) -> None:
        if self._handshake_pending():
            self._endpoint_ready.set_exception(
                HandshakeFailed(f"SSE stream from {self.url} closed before endpoint event")
            )
            return
        self._connection_lost(f"SSE stream from {self.url} closed by server")

    def _connection_lost(self, reason: str) -> None:
        # replies only ever travel on the stream
        if self._closed or self.lost is not None:
            return
        self.lost = ConnectionLost(reason)
        self._report_error(self.lost)
