# =============================================================================
# app/websocket/__init__.py - WebSocket Module
# =============================================================================
# Provides real-time push for threads and notifications.
#
# Usage:
#   # Broadcast an event to all connections on a channel (from FastAPI)
#   from app.websocket import websocket_manager
#
#   await websocket_manager.broadcast("thread:<project>:<vendor>", {
#       "type": "message",
#       "data": {...}
#   })
#
#   # Publish events from request handlers or Celery workers
#   from app.websocket.broadcast import publish_notification
#
#   publish_notification(user_id, notification)
# =============================================================================

from app.websocket.manager import PUSH_UNAVAILABLE_CLOSE_CODE, websocket_manager
from app.websocket.broadcast import (
    publish_event,
    publish_message,
    publish_notification,
    REALTIME_CHANNEL,
)

__all__ = [
    "websocket_manager",
    "PUSH_UNAVAILABLE_CLOSE_CODE",
    "publish_event",
    "publish_message",
    "publish_notification",
    "REALTIME_CHANNEL",
]
