# =============================================================================
# core/services/notification_fanout.py - Notification Fanout
# =============================================================================
# Turns messaging and routing/bid activity into per-user notifications.
#
# - on_message_appended(): pushes the message on its real-time channels and
#   notifies {business owner, thread vendor} minus the sender. Admins are only
#   notified when NOTIFY_ADMINS_ON_MESSAGE is set.
# - on_routing_or_bid_change(): one notification per event for the affected
#   party (vendor or business owner).
#
# Recipient writes are independent. A failed write is logged as
# partial_fanout_failure and handed to the deliver_notification Celery task,
# which retries it with backoff. Fanout never raises into the caller, so a
# failure here can't fail the append that triggered it.
# =============================================================================

import asyncio
import logging
from uuid import UUID

from app.config import settings
from app.websocket.broadcast import publish_message, publish_notification
from core.models.events import RoutingEvent, RoutingEventType
from core.models.message import Message, ThreadKey
from core.models.notification import (
    Notification,
    NotificationCategory,
    NotificationCreate,
    NotificationType,
)
from core.services.routing_gate import RoutingBidGate
from lib.supabase_client import SupabaseClient, SupabaseClientError

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 120

# Event type -> (recipient, title, body template, type, category).
# Recipient is "vendor" or "business"; {title} is the project title.
ROUTING_NOTIFICATIONS: dict[RoutingEventType, tuple[str, str, str, NotificationType, NotificationCategory]] = {
    RoutingEventType.ROUTED: (
        "vendor", "New project available",
        "You've been matched with \"{title}\"",
        NotificationType.INFO, NotificationCategory.ROUTING,
    ),
    RoutingEventType.ROUTING_REMOVED: (
        "vendor", "Project no longer available",
        "\"{title}\" is no longer open to you",
        NotificationType.WARNING, NotificationCategory.ROUTING,
    ),
    RoutingEventType.BID_SUBMITTED: (
        "business", "New bid received",
        "A vendor submitted a bid on \"{title}\"",
        NotificationType.INFO, NotificationCategory.BID,
    ),
    RoutingEventType.BID_ACCEPTED: (
        "vendor", "Bid accepted",
        "Your bid on \"{title}\" was accepted",
        NotificationType.SUCCESS, NotificationCategory.BID,
    ),
    RoutingEventType.BID_REJECTED: (
        "vendor", "Bid not selected",
        "Your bid on \"{title}\" was not selected",
        NotificationType.WARNING, NotificationCategory.BID,
    ),
    RoutingEventType.BID_WITHDRAWN: (
        "business", "Bid withdrawn",
        "A vendor withdrew their bid on \"{title}\"",
        NotificationType.WARNING, NotificationCategory.BID,
    ),
}


def message_preview(message: Message) -> str:
    text = message.message_text.strip()
    if not text:
        return "Sent an image"
    if len(text) > PREVIEW_LENGTH:
        return text[:PREVIEW_LENGTH - 3] + "..."
    return text


def write_notification(notification: NotificationCreate) -> Notification:
    """
    Persist one notification and push it to the recipient.

    Shared by the in-request fanout and the deliver_notification retry task.

    Raises:
        SupabaseClientError: If the insert fails
    """
    row = SupabaseClient.insert_notification(notification.to_db_row())
    stored = Notification.from_db_row(row)
    publish_notification(str(stored.user_id), stored.model_dump(mode="json"))
    return stored


class NotificationFanout:
    """
    Writes notifications for message and routing/bid events.

    Example:
        fanout = NotificationFanout(SupabaseRoutingGate())
        await fanout.on_message_appended(message, thread_key)
    """

    def __init__(self, gate: RoutingBidGate, notify_admins: bool | None = None):
        self.gate = gate
        if notify_admins is None:
            notify_admins = settings.NOTIFY_ADMINS_ON_MESSAGE
        self.notify_admins = notify_admins

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    async def on_message_appended(self, message: Message, thread_key: ThreadKey) -> list[Notification]:
        """
        Push a new message and notify the other participants of its thread.

        Args:
            message: The message just stored
            thread_key: Its (project, vendor) thread

        Returns:
            Notifications written in this call (failed recipients are retried later)
        """
        await asyncio.to_thread(
            publish_message,
            message.model_dump(mode="json"),
            thread_key.channel,
            ThreadKey(project_id=thread_key.project_id).channel,
        )

        try:
            project_title, recipients = await self._message_recipients(message, thread_key)
        except SupabaseClientError as e:
            logger.error(f"partial_fanout_failure: could not resolve recipients for message {message.id}: {e}")
            return []
        if not recipients:
            return []

        notifications = [
            NotificationCreate(
                user_id=user_id,
                title=f"New message on {project_title}",
                message=message_preview(message),
                type=NotificationType.INFO,
                category=NotificationCategory.MESSAGE,
                related_id=message.id,
            )
            for user_id in sorted(recipients, key=str)
        ]
        return await self._fan_out(notifications)

    async def _message_recipients(self, message: Message, thread_key: ThreadKey) -> tuple[str, set[UUID]]:
        """Project title and the users to notify about `message`."""
        project = await asyncio.to_thread(self.gate.fetch_project, thread_key.project_id)
        if project is None:
            logger.warning(f"Message {message.id} references unknown project {thread_key.project_id}")
            return "", set()

        users: set[UUID] = {project.business_id}
        if thread_key.vendor_id is not None:
            users.add(thread_key.vendor_id)
        if self.notify_admins:
            admin_ids = await asyncio.to_thread(SupabaseClient.fetch_admin_user_ids)
            users.update(UUID(admin_id) for admin_id in admin_ids)
        users.discard(message.sender_id)

        return project.title, users

    # -------------------------------------------------------------------------
    # Routing / bids
    # -------------------------------------------------------------------------

    async def on_routing_or_bid_change(self, event: RoutingEvent) -> list[Notification]:
        """
        Notify the affected party of a routing or bid change.

        Backward bid transitions (e.g. accepted -> submitted) are logged and
        dropped.

        Returns:
            Notifications written in this call
        """
        target_status = event.type.bid_status
        previous = event.previous_bid_status
        if target_status is not None and previous is not None and not previous.can_transition_to(target_status):
            logger.warning(
                f"Ignoring invalid bid transition {previous.value} -> {target_status.value} "
                f"for vendor {event.vendor_id} on project {event.project_id}"
            )
            return []

        try:
            project = await asyncio.to_thread(self.gate.fetch_project, event.project_id)
        except SupabaseClientError as e:
            logger.error(f"partial_fanout_failure: could not load project {event.project_id}: {e}")
            return []
        if project is None:
            logger.warning(f"{event.type.value} event references unknown project {event.project_id}")
            return []

        recipient, title, body, notification_type, category = ROUTING_NOTIFICATIONS[event.type]
        user_id = event.vendor_id if recipient == "vendor" else project.business_id

        notification = NotificationCreate(
            user_id=user_id,
            title=title,
            message=body.format(title=project.title),
            type=notification_type,
            category=category,
            related_id=project.id,
        )
        return await self._fan_out([notification])

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    async def _fan_out(self, notifications: list[NotificationCreate]) -> list[Notification]:
        """Write every notification independently; re-queue the ones that fail."""
        results = await asyncio.gather(
            *(asyncio.to_thread(write_notification, n) for n in notifications),
            return_exceptions=True,
        )

        written: list[Notification] = []
        for notification, result in zip(notifications, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"partial_fanout_failure: notification for user {notification.user_id} "
                    f"failed ({result}); re-queueing"
                )
                self._requeue(notification)
            else:
                written.append(result)

        if written:
            logger.info(f"Fanout wrote {len(written)}/{len(notifications)} notification(s)")
        return written

    def _requeue(self, notification: NotificationCreate) -> None:
        """Hand a failed write to the deliver_notification worker task."""
        from workers.tasks import deliver_notification

        try:
            deliver_notification.apply_async(
                args=[notification.model_dump(mode="json")],
                countdown=settings.FANOUT_RETRY_BACKOFF_SECONDS,
            )
        except Exception as e:
            logger.error(f"Could not re-queue notification for user {notification.user_id}: {e}")
