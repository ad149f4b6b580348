# =============================================================================
# delivery/transports.py - Push & Poll Transports
# =============================================================================
# Network edges of the client:
# - PushTransport / PushConnection: server-pushed frames (WebSocket)
# - PollTransport: cursor-based REST reads plus message sends (HTTP)
#
# Every network failure surfaces as TransportError. `fatal` errors (bad
# token, no access, unknown project) won't heal by retrying; everything else
# is transient and handled by falling back to polling and reconnecting.
# =============================================================================

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from delivery.config import ChannelConfig, Feed

logger = logging.getLogger(__name__)

# WebSocket close codes that mean "don't reconnect"
FATAL_CLOSE_CODES = {4001, 4003, 4004, 4009}

# HTTP statuses that mean the request will never succeed as-is
FATAL_STATUS_CODES = {401, 403, 404, 409, 422}


class TransportError(Exception):
    """A push or poll request failed."""

    def __init__(self, message: str, fatal: bool = False, code: int | None = None):
        super().__init__(message)
        self.message = message
        self.fatal = fatal
        self.code = code


class CursorLostError(TransportError):
    """The server no longer recognizes the poll cursor; re-read from the start."""

    def __init__(self, cursor: str):
        super().__init__(f"Cursor not found: {cursor}", code=404)
        self.cursor = cursor


# =============================================================================
# Interfaces
# =============================================================================

class PushConnection(ABC):
    """One live push subscription."""

    @abstractmethod
    async def receive(self) -> dict[str, Any]:
        """
        Wait for the next frame.

        Raises:
            TransportError: If the connection failed or was closed
        """

    @abstractmethod
    async def send(self, frame: dict[str, Any]) -> None:
        """Send a frame to the server (e.g. ping)."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""


class PushTransport(ABC):
    @abstractmethod
    async def subscribe(self, feed: Feed) -> PushConnection:
        """
        Open a push subscription for `feed`.

        Raises:
            TransportError: If the connection can't be opened
        """

    async def close(self) -> None:
        """Release shared resources."""


class PollTransport(ABC):
    @abstractmethod
    async def fetch(self, feed: Feed, cursor: str | None = None) -> list[dict[str, Any]]:
        """
        Read the feed after `cursor` (message feeds) or in full (notifications).

        Raises:
            TransportError: On network or server failure
        """

    @abstractmethod
    async def send_message(
        self,
        project_id: str,
        message_text: str,
        vendor_id: str | None = None,
        image_url: str | None = None,
    ) -> dict[str, Any]:
        """
        Append a message and return the stored message.

        Raises:
            TransportError: On network or server failure
        """

    async def close(self) -> None:
        """Release shared resources."""


# =============================================================================
# WebSocket
# =============================================================================

class WebSocketConnection(PushConnection):
    def __init__(self, ws):
        self._ws = ws

    async def receive(self) -> dict[str, Any]:
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd is not None else None
            raise TransportError(
                f"Push connection closed (code={code})",
                fatal=code in FATAL_CLOSE_CODES,
                code=code,
            )
        except (OSError, WebSocketException) as e:
            raise TransportError(f"Push connection failed: {e}")

        if raw == "pong":
            return {"type": "pong"}
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.debug(f"Ignoring non-JSON frame: {str(raw)[:100]}")
            return {"type": "unknown"}
        return frame if isinstance(frame, dict) else {"type": "unknown"}

    async def send(self, frame: dict[str, Any]) -> None:
        try:
            await self._ws.send(json.dumps(frame))
        except (OSError, WebSocketException) as e:
            raise TransportError(f"Push send failed: {e}")

    async def close(self) -> None:
        try:
            await self._ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug(f"Error closing push connection: {e}")


class WebSocketPushTransport(PushTransport):
    """
    Push transport over the server's /ws endpoints (`websockets` library).

    The server's own heartbeat frames keep the connection observable, so
    protocol-level pings are disabled.
    """

    def __init__(self, config: ChannelConfig):
        self.config = config

    def url_for(self, feed: Feed) -> str:
        params = {"token": self.config.token, **feed.query_params()}
        return f"{self.config.ws_base_url}{feed.ws_path}?{urlencode(params)}"

    async def subscribe(self, feed: Feed) -> PushConnection:
        try:
            ws = await websockets.connect(
                self.url_for(feed),
                open_timeout=self.config.subscribe_timeout,
                ping_interval=None,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise TransportError(f"Could not subscribe to {feed}: {e}")

        logger.debug(f"Push connection opened for {feed}")
        return WebSocketConnection(ws)


# =============================================================================
# HTTP
# =============================================================================

class HttpPollTransport(PollTransport):
    """
    REST client for polling and sending (httpx).

    One AsyncClient is shared by every feed of a session.
    """

    def __init__(self, config: ChannelConfig):
        self.config = config
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url.rstrip("/") + self.config.api_prefix,
                timeout=self.config.request_timeout,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.config.token}",
                },
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        """Make an HTTP request, mapping every failure to TransportError."""
        try:
            client = await self._get_client()
            response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}")

        if response.is_success:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}

        details = body.get("details") or {}
        if response.status_code == 404 and details.get("resource") == "cursor":
            raise CursorLostError(details.get("id", ""))

        raise TransportError(
            f"{method} {path} returned {response.status_code}: {body.get('detail', response.text[:100])}",
            fatal=response.status_code in FATAL_STATUS_CODES,
            code=response.status_code,
        )

    async def fetch(self, feed: Feed, cursor: str | None = None) -> list[dict[str, Any]]:
        result = await self._request("GET", feed.http_path, params=feed.query_params(cursor))
        return result.get("data", [])

    async def send_message(
        self,
        project_id: str,
        message_text: str,
        vendor_id: str | None = None,
        image_url: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"messageText": message_text}
        if vendor_id:
            body["vendorId"] = str(vendor_id)
        if image_url:
            body["imageUrl"] = image_url

        result = await self._request("POST", f"/projects/{project_id}/messages", json=body)
        return result["data"]

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
