# =============================================================================
# app/websocket/manager.py - WebSocket Connection Manager
# =============================================================================
# Manages WebSocket connections per real-time channel and handles broadcasting.
#
# A channel is a thread (thread:{project}:{vendor}), a project's monitoring
# view (project:{project}) or a user's notification bell
# (notifications:{user}). Access is checked before a connection joins a
# channel, so broadcast() never filters.
#
# While the Redis listener is down nothing reaches the sockets, so the
# manager closes them with 1011 and new subscriptions are refused. Clients
# treat 1011 as retryable and poll until push is back.
#
# Usage:
#   from app.websocket import websocket_manager
#
#   await websocket_manager.connect(channel, websocket)
#   await websocket_manager.broadcast(channel, {"type": "message", "data": {...}})
#   websocket_manager.disconnect(channel, websocket)
# =============================================================================

import logging
from typing import Dict, Set
from fastapi import WebSocket

logger = logging.getLogger(__name__)

# Close code for "real-time bridge unavailable" (RFC 6455 internal error)
PUSH_UNAVAILABLE_CLOSE_CODE = 1011


class ConnectionManager:
    """
    Manages WebSocket connections organized by channel.

    Each channel can have multiple connected clients (e.g., multiple browser tabs).
    When an event is published on a channel, it's broadcast to all of them.
    """

    def __init__(self):
        # channel -> set of WebSocket connections
        self.connections: Dict[str, Set[WebSocket]] = {}
        self._total_connections = 0
        # Cleared by the Redis listener while it cannot receive events
        self.realtime_available = True

    async def connect(self, channel: str, websocket: WebSocket) -> None:
        """
        Accept a new WebSocket connection and track it.

        Args:
            channel: The channel this connection subscribes to
            websocket: The WebSocket connection
        """
        await websocket.accept()

        self.connections.setdefault(channel, set()).add(websocket)
        self._total_connections += 1

        logger.info(
            f"WebSocket subscribed to {channel}. "
            f"Total connections: {self._total_connections}"
        )

    def disconnect(self, channel: str, websocket: WebSocket) -> None:
        """
        Remove a WebSocket connection from tracking.

        Safe to call for a connection broadcast() already dropped.
        """
        subscribers = self.connections.get(channel)
        if subscribers and websocket in subscribers:
            subscribers.discard(websocket)
            self._total_connections -= 1

            if not subscribers:
                del self.connections[channel]

        logger.info(
            f"WebSocket unsubscribed from {channel}. "
            f"Total connections: {self._total_connections}"
        )

    async def broadcast(self, channel: str, message: dict) -> int:
        """
        Broadcast a message to all connections on a channel.

        Args:
            channel: The channel to broadcast to
            message: The message dict to send (will be JSON encoded)

        Returns:
            int: Number of clients the message was sent to
        """
        if channel not in self.connections:
            logger.debug(f"No connections on {channel}, skipping broadcast")
            return 0

        dead_connections: Set[WebSocket] = set()
        sent_count = 0

        for websocket in list(self.connections[channel]):
            try:
                await websocket.send_json(message)
                sent_count += 1
            except Exception as e:
                logger.warning(f"Failed to send to WebSocket: {e}")
                dead_connections.add(websocket)

        for ws in dead_connections:
            self.disconnect(channel, ws)

        if dead_connections:
            logger.info(f"Cleaned up {len(dead_connections)} dead connections")

        logger.debug(
            f"Broadcast to {channel}: "
            f"type={message.get('type')}, sent to {sent_count} clients"
        )

        return sent_count

    def set_realtime_available(self, available: bool) -> bool:
        """
        Record whether the Redis -> WebSocket bridge is receiving events.

        Returns:
            bool: True if the state changed
        """
        if available == self.realtime_available:
            return False
        self.realtime_available = available
        if available:
            logger.info("Real-time bridge restored; accepting subscriptions")
        else:
            logger.warning("Real-time bridge down; refusing subscriptions")
        return True

    async def close_all(self, code: int, reason: str) -> int:
        """
        Close every tracked connection with `code` and stop tracking them.

        Returns:
            int: Number of connections closed
        """
        sockets = [(channel, ws) for channel, subscribers in self.connections.items() for ws in subscribers]
        for channel, websocket in sockets:
            try:
                await websocket.close(code=code, reason=reason)
            except Exception as e:
                logger.debug(f"Close on {channel} failed, connection already gone: {e}")
            self.disconnect(channel, websocket)

        if sockets:
            logger.warning(f"Closed {len(sockets)} WebSocket connections ({code}: {reason})")
        return len(sockets)

    def get_connection_count(self, channel: str | None = None) -> int:
        """
        Get the number of active connections.

        Args:
            channel: If provided, count for that channel. Otherwise total.
        """
        if channel:
            return len(self.connections.get(channel, set()))
        return self._total_connections

    def get_active_channels(self) -> list[str]:
        """Channels with at least one connection."""
        return list(self.connections.keys())


# Global singleton instance
websocket_manager = ConnectionManager()
