# =============================================================================
# workers/tasks.py - Celery Task Definitions
# =============================================================================
# Defines background tasks for notification delivery.
#
# Tasks:
# - deliver_notification: Write + push one notification, retried with
#   exponential backoff (re-queued by the fanout after a failed write)
# - process_routing_event: Turn a routing/bid change into notifications off
#   the request path
# =============================================================================

import asyncio
import logging
from typing import Any
from celery import shared_task

from app.config import settings

logger = logging.getLogger(__name__)


def retry_countdown(retries: int) -> int:
    """Seconds to wait before retry number `retries + 1`."""
    return settings.FANOUT_RETRY_BACKOFF_SECONDS * (2 ** retries)


# =============================================================================
# Notification Delivery Task
# =============================================================================

@shared_task(bind=True, name="workers.tasks.deliver_notification")
def deliver_notification(self, notification: dict[str, Any]) -> dict[str, Any]:
    """
    Write one notification for one recipient and push it.

    Each recipient gets its own task, so one failing recipient never delays
    the others.

    Args:
        notification: NotificationCreate fields (JSON mode)

    Returns:
        Dict with:
        - success: bool
        - notification_id: Stored notification UUID (if successful)
        - error: Last error (if retries were exhausted)
    """
    from core.models.notification import NotificationCreate
    from core.services.notification_fanout import write_notification
    from lib.supabase_client import SupabaseClientError

    create = NotificationCreate.model_validate(notification)

    try:
        stored = write_notification(create)
    except SupabaseClientError as e:
        retries = self.request.retries
        if retries >= settings.FANOUT_MAX_RETRIES:
            logger.error(
                f"partial_fanout_failure: giving up on notification for user {create.user_id} "
                f"after {retries} retries: {e}"
            )
            return {"success": False, "error": str(e)}

        logger.warning(f"Notification for user {create.user_id} failed (attempt {retries + 1}): {e}")
        raise self.retry(exc=e, countdown=retry_countdown(retries), max_retries=settings.FANOUT_MAX_RETRIES)

    logger.info(f"Delivered notification {stored.id} to user {stored.user_id}")
    return {"success": True, "notification_id": str(stored.id)}


# =============================================================================
# Routing Event Task
# =============================================================================

@shared_task(bind=True, name="workers.tasks.process_routing_event")
def process_routing_event(self, event: dict[str, Any]) -> dict[str, Any]:
    """
    Notify the affected party of a routing or bid change.

    Usage (from the routing workflow):
        from workers.tasks import process_routing_event
        process_routing_event.delay({
            "type": "bid_accepted",
            "projectId": "...",
            "vendorId": "...",
            "previousBidStatus": "submitted",
        })

    Returns:
        Dict with success and the notified user ids
    """
    from core.models.events import RoutingEvent
    from core.services.notification_fanout import NotificationFanout
    from core.services.routing_gate import SupabaseRoutingGate

    routing_event = RoutingEvent.model_validate(event)
    logger.info(f"Processing {routing_event.type.value} for project {routing_event.project_id}")

    fanout = NotificationFanout(SupabaseRoutingGate())
    notifications = asyncio.run(fanout.on_routing_or_bid_change(routing_event))

    return {
        "success": True,
        "notified": [str(n.user_id) for n in notifications],
    }
