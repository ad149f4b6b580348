# =============================================================================
# core/services/notification_service.py - Notification Business Logic
# =============================================================================
# Read and mutate a user's own notifications.
# Only the recipient may read, mark or delete a notification; anyone else gets
# NotificationNotFoundError so the record's existence isn't revealed.
# =============================================================================

import logging
from uuid import UUID

from app.exceptions import NotificationNotFoundError, StoreError
from core.models.notification import Notification
from lib.supabase_client import SupabaseClient, SupabaseClientError
from lib.utils import utc_now

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Service for notification bell operations.

    Provides a clean interface between API routes and database.
    """

    @staticmethod
    def list_notifications(
        user_id: UUID | str,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        """
        List a user's notifications, newest first.

        Args:
            user_id: The recipient
            unread_only: Only return unread notifications
            limit: Maximum number of notifications

        Raises:
            StoreError: If the query fails
        """
        try:
            rows = SupabaseClient.fetch_notifications(user_id, unread_only=unread_only, limit=limit)
        except SupabaseClientError as e:
            logger.error(f"Failed to list notifications for {user_id}: {e}")
            raise StoreError("list_notifications", e.message)
        return [Notification.from_db_row(row) for row in rows]

    @staticmethod
    def unread_count(user_id: UUID | str) -> int:
        """Number of unread notifications for the bell badge."""
        try:
            return SupabaseClient.count_unread_notifications(user_id)
        except SupabaseClientError as e:
            raise StoreError("unread_count", e.message)

    @staticmethod
    def get_notification(notification_id: UUID | str, user_id: UUID | str) -> Notification:
        """
        Get one notification owned by `user_id`.

        Raises:
            NotificationNotFoundError: If it doesn't exist or belongs to someone else
        """
        try:
            row = SupabaseClient.fetch_notification(notification_id)
        except SupabaseClientError as e:
            raise StoreError("get_notification", e.message)

        if not row or str(row.get("user_id")) != str(user_id):
            raise NotificationNotFoundError(str(notification_id))
        return Notification.from_db_row(row)

    @staticmethod
    def mark_read(notification_id: UUID | str, user_id: UUID | str) -> Notification:
        """
        Mark one notification as read. Marking an already-read notification is a no-op.

        Raises:
            NotificationNotFoundError: If the user doesn't own the notification
        """
        notification = NotificationService.get_notification(notification_id, user_id)
        if notification.is_read:
            return notification

        try:
            row = SupabaseClient.mark_notification_read(notification_id, utc_now())
        except SupabaseClientError as e:
            logger.error(f"Failed to mark notification {notification_id} read: {e}")
            raise StoreError("mark_read", e.message)

        if not row:
            raise NotificationNotFoundError(str(notification_id))
        return Notification.from_db_row(row)

    @staticmethod
    def mark_all_read(user_id: UUID | str) -> int:
        """
        Mark every unread notification of the user as read.

        Returns:
            Number of notifications updated
        """
        try:
            updated = SupabaseClient.mark_all_notifications_read(user_id, utc_now())
        except SupabaseClientError as e:
            logger.error(f"Failed to mark notifications read for {user_id}: {e}")
            raise StoreError("mark_all_read", e.message)

        logger.info(f"Marked {updated} notification(s) read for user {user_id}")
        return updated

    @staticmethod
    def delete(notification_id: UUID | str, user_id: UUID | str) -> None:
        """
        Delete one notification.

        Raises:
            NotificationNotFoundError: If the user doesn't own the notification
        """
        NotificationService.get_notification(notification_id, user_id)

        try:
            deleted = SupabaseClient.delete_notification(notification_id)
        except SupabaseClientError as e:
            raise StoreError("delete_notification", e.message)

        if not deleted:
            raise NotificationNotFoundError(str(notification_id))
        logger.info(f"Deleted notification {notification_id} for user {user_id}")
