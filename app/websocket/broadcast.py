# =============================================================================
# app/websocket/broadcast.py - Cross-Process Broadcasting
# =============================================================================
# Publishes real-time events for WebSocket clients.
#
# Uses Redis pub/sub for cross-process communication:
# - API handlers and Celery workers call publish_event()
# - The FastAPI lifespan listener forwards each event to
#   websocket_manager.broadcast(channel, payload)
#
# Channels:
#   - thread:{project_id}:{vendor_id}: one vendor thread
#   - project:{project_id}: every thread of a project (admin monitoring)
#   - notifications:{user_id}: one user's notification bell
#
# Event types:
#   - message: A message was appended to a thread
#   - notification: A notification was written for a user
# =============================================================================

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

# Redis channel carrying every real-time event
REALTIME_CHANNEL = "sharkbid:realtime:events"


def get_redis_client():
    """Get a Redis client for pub/sub operations."""
    import redis
    from app.config import settings
    return redis.from_url(settings.REDIS_URL)


def notification_channel(user_id: str) -> str:
    return f"notifications:{user_id}"


def publish_event(channel: str, event_type: str, data: dict[str, Any]) -> bool:
    """
    Publish an event that will be broadcast to WebSocket clients on `channel`.

    Publishing is best effort: clients that miss a push catch up by polling.

    Args:
        channel: Real-time channel name (see module header)
        event_type: Event type (message, notification)
        data: JSON-serializable event payload

    Returns:
        bool: True if published successfully
    """
    try:
        client = get_redis_client()

        message = json.dumps({
            "channel": channel,
            "type": event_type,
            "data": data,
        }, default=str)

        client.publish(REALTIME_CHANNEL, message)

        logger.debug(f"Published {event_type} event on {channel}")
        return True

    except Exception as e:
        logger.error(f"Failed to publish {event_type} event on {channel}: {e}")
        return False


def publish_message(message: dict[str, Any], thread_channel: str, project_channel: str) -> bool:
    """
    Publish a message event on its vendor thread and on the project channel.

    Called after a successful append.
    """
    on_thread = publish_event(thread_channel, "message", message)
    on_project = publish_event(project_channel, "message", message)
    return on_thread and on_project


def publish_notification(user_id: str, notification: dict[str, Any]) -> bool:
    """
    Publish a notification event to its recipient.

    Called after a notification row is written.
    """
    return publish_event(notification_channel(user_id), "notification", notification)
