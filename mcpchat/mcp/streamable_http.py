"""
Streamable HTTP MCP transport (protocol revision 2025-06-18).

One URL serves both the SSE GET stream and the POST request channel.
Session identity travels in the ``Mcp-Session-Id`` header.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

import httpx

from mcpchat.mcp.transport import (
    NotStarted,
    SendFailed,
    SSEConnectionError,
    SSEEvent,
    Transport,
    TransportClosed,
    decode_payload,
)

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"


class StreamableHTTPTransport(Transport):
    """
    Transport for single-endpoint servers such as Tavily.

    Replies may come back synchronously in the POST response (as JSON or
    as an SSE body) or later on the GET stream; both paths feed
    ``on_message``.
    """

    async def start(self) -> None:
        """Open the GET stream. There is no handshake to wait for."""
        if self._started:
            return
        if self._closed:
            raise TransportClosed("Transport has been closed")

        logger.debug("Opening SSE connection to %s", self.url)
        self._start_stream(self._handle_event)
        self._started = True

    async def send(self, message: Dict[str, Any]) -> None:
        if not self._started:
            raise NotStarted("Transport not started")
        if self._closed:
            raise TransportClosed("Transport has been closed")

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            **self._auth_headers(),
        }
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id

        logger.debug("Sending message to %s: %s", self.url, message)
        try:
            response = await self._http().post(self.url, content=json.dumps(message), headers=headers)
        except httpx.HTTPError as exc:
            raise SendFailed(f"Failed to send message to {self.url}: {exc}") from exc

        if not response.is_success:
            raise SendFailed(f"HTTP error: {response.status_code} {response.reason_phrase}")

        if message.get("method") == "initialize":
            session_id = response.headers.get(SESSION_HEADER)
            if session_id:
                self.session_id = session_id
                logger.debug("Session ID: %s", session_id)

        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                messages = decode_payload(response.text)
            except ValueError as exc:
                raise SendFailed(f"Invalid JSON response from {self.url}: {exc}") from exc
            for reply in messages:
                self._deliver(reply)
        elif "text/event-stream" in content_type:
            self._handle_event_stream_body(response.text)

    def _handle_event_stream_body(self, text: str) -> None:
        for line in text.splitlines():
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):]
            if data.startswith(" "):
                data = data[1:]
            try:
                messages = decode_payload(data)
            except ValueError as exc:
                logger.warning("Failed to parse SSE message from POST response (%s): %r", exc, line)
                continue
            for reply in messages:
                self._deliver(reply)

    # ── GET stream ────────────────────────────────────────────────────────

    def _handle_event(self, event: SSEEvent) -> None:
        if event.event != "message":
            logger.debug("Ignoring SSE event of type %r", event.event)
            return
        data = event.data.strip()
        if not data or data == "ping":
            return
        try:
            messages = decode_payload(data)
        except ValueError as exc:
            logger.debug("Failed to parse SSE message (%s): %r", exc, data)
            return
        for message in messages:
            self._deliver(message)

    def _on_stream_failed(self, error: Exception) -> None:
        if isinstance(error, SSEConnectionError) and error.status_code == 405:
            # GET stream is optional for this protocol
            logger.debug("%s does not offer a standalone SSE stream", self.url)
            return
        super()._on_stream_failed(error)

    # ── Session teardown ──────────────────────────────────────────────────

    async def _terminate_session(self) -> None:
        if not self.session_id:
            return
        headers = {SESSION_HEADER: self.session_id, **self._auth_headers()}
        try:
            response = await self._http().delete(self.url, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Error terminating session %s: %s", self.session_id, exc)
            return
        if not response.is_success:
            logger.debug("Session DELETE returned HTTP %s", response.status_code)
