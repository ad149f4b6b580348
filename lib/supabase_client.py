# =============================================================================
# lib/supabase_client.py - Supabase Client Wrapper
# =============================================================================
# This module provides a typed wrapper for Supabase database operations.
# It implements the singleton pattern to reuse a single client connection
# and provides specialized methods for:
# - Projects, routing entries and bids (read-only facts for access rules)
# - Profiles (marketplace role, display name)
# - Project messages (append + ordered, cursor-based reads)
# - Notifications (insert, list, mark read, delete)
#
# All methods are synchronous (supabase-py's sync client). Async callers
# offload them with asyncio.to_thread.
#
# Usage:
#   from lib.supabase_client import SupabaseClient
#   project = SupabaseClient.fetch_project(project_id)
# =============================================================================

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from supabase import create_client, Client

from app.config import settings
from lib.utils import format_timestamp

# Set up logging for this module
logger = logging.getLogger(__name__)

# PostgREST code for ".single()" matching no rows
NO_ROWS_CODE = "PGRST116"


class SupabaseClientError(Exception):
    """
    Error during Supabase operations.

    Errors should tell HOW to fix, not just WHAT failed.
    """

    def __init__(
        self,
        message: str,
        code: str = "SUPABASE_ERROR",
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}

    def __str__(self) -> str:
        result = f"[{self.code}] {self.message}"
        if self.suggestion:
            result += f" Suggestion: {self.suggestion}"
        return result


class SupabaseClient:
    """
    Typed wrapper for Supabase database operations.

    Implements singleton pattern - one client instance is shared across
    the application. All methods are class methods for easy access without
    instantiation.

    Example:
        project = SupabaseClient.fetch_project("550e8400-...")
        rows = SupabaseClient.fetch_project_messages(
            project_id="550e8400-...",
            vendor_id="770e8400-...",
        )
    """

    _instance: Client | None = None

    @classmethod
    def get_client(cls) -> Client:
        """
        Get or create the singleton Supabase client.

        Uses service_role key which bypasses Row Level Security (RLS).
        Access rules are enforced by core/services/access_resolver.py instead.

        Raises:
            SupabaseClientError: If client creation fails
        """
        if cls._instance is None:
            try:
                cls._instance = create_client(
                    settings.SUPABASE_URL,
                    settings.SUPABASE_SERVICE_KEY
                )
                logger.info("Supabase client initialized successfully")
            except Exception as e:
                raise SupabaseClientError(
                    message=f"Failed to create Supabase client: {e}",
                    code="CLIENT_INIT_FAILED",
                    suggestion="Check SUPABASE_URL and SUPABASE_SERVICE_KEY in your .env file"
                )
        return cls._instance

    @classmethod
    def _normalize_uuid(cls, uuid_value: str | UUID) -> str:
        """Convert UUID to string for queries."""
        return str(uuid_value) if isinstance(uuid_value, UUID) else uuid_value

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    @classmethod
    def fetch_project(cls, project_id: str | UUID) -> dict[str, Any] | None:
        """
        Fetch a project by ID.

        Returns:
            Project dict (id, business_id, title, status, selected_vendor_id),
            or None if not found

        Raises:
            SupabaseClientError: If query fails
        """
        client = cls.get_client()
        project_id_str = cls._normalize_uuid(project_id)

        try:
            response = (
                client.table("projects")
                .select("id, business_id, title, status, selected_vendor_id")
                .eq("id", project_id_str)
                .single()
                .execute()
            )
            return response.data

        except Exception as e:
            if NO_ROWS_CODE in str(e):
                return None
            raise SupabaseClientError(
                message=f"Failed to fetch project: {e}",
                code="FETCH_PROJECT_FAILED",
                suggestion="Check that the project_id exists",
                details={"project_id": project_id_str}
            )

    @classmethod
    def fetch_projects(cls, project_ids: list[str]) -> list[dict[str, Any]]:
        """Fetch several projects at once (used to decorate inbox summaries)."""
        if not project_ids:
            return []

        client = cls.get_client()
        try:
            response = (
                client.table("projects")
                .select("id, business_id, title, status, selected_vendor_id")
                .in_("id", project_ids)
                .execute()
            )
            return response.data or []

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch projects: {e}",
                code="FETCH_PROJECTS_FAILED",
                details={"count": len(project_ids)}
            )

    @classmethod
    def fetch_business_project_ids(cls, business_id: str | UUID) -> list[str]:
        """IDs of every project owned by a business."""
        client = cls.get_client()
        business_id_str = cls._normalize_uuid(business_id)

        try:
            response = (
                client.table("projects")
                .select("id")
                .eq("business_id", business_id_str)
                .execute()
            )
            return [row["id"] for row in response.data or []]

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch business projects: {e}",
                code="FETCH_PROJECTS_FAILED",
                details={"business_id": business_id_str}
            )

    @classmethod
    def fetch_all_project_ids(cls) -> list[str]:
        """IDs of every project (admin monitoring)."""
        client = cls.get_client()

        try:
            response = client.table("projects").select("id").execute()
            return [row["id"] for row in response.data or []]

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch projects: {e}",
                code="FETCH_PROJECTS_FAILED",
            )

    # -------------------------------------------------------------------------
    # Routing & Bids
    # -------------------------------------------------------------------------

    @classmethod
    def fetch_routing_entry(
        cls,
        project_id: str | UUID,
        vendor_id: str | UUID,
    ) -> dict[str, Any] | None:
        """Fetch the project_routing row for (project, vendor), or None."""
        client = cls.get_client()
        project_id_str = cls._normalize_uuid(project_id)
        vendor_id_str = cls._normalize_uuid(vendor_id)

        try:
            response = (
                client.table("project_routing")
                .select("project_id, vendor_id, routed_at")
                .eq("project_id", project_id_str)
                .eq("vendor_id", vendor_id_str)
                .limit(1)
                .execute()
            )
            rows = response.data or []
            return rows[0] if rows else None

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch routing entry: {e}",
                code="FETCH_ROUTING_FAILED",
                details={"project_id": project_id_str, "vendor_id": vendor_id_str}
            )

    @classmethod
    def fetch_bid(
        cls,
        project_id: str | UUID,
        vendor_id: str | UUID,
    ) -> dict[str, Any] | None:
        """Fetch the vendor_responses row for (project, vendor), or None."""
        client = cls.get_client()
        project_id_str = cls._normalize_uuid(project_id)
        vendor_id_str = cls._normalize_uuid(vendor_id)

        try:
            response = (
                client.table("vendor_responses")
                .select("project_id, vendor_id, status")
                .eq("project_id", project_id_str)
                .eq("vendor_id", vendor_id_str)
                .limit(1)
                .execute()
            )
            rows = response.data or []
            return rows[0] if rows else None

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch bid: {e}",
                code="FETCH_BID_FAILED",
                details={"project_id": project_id_str, "vendor_id": vendor_id_str}
            )

    @classmethod
    def fetch_project_routing(cls, project_id: str | UUID) -> list[dict[str, Any]]:
        """All routing rows of a project."""
        client = cls.get_client()
        project_id_str = cls._normalize_uuid(project_id)

        try:
            response = (
                client.table("project_routing")
                .select("project_id, vendor_id, routed_at")
                .eq("project_id", project_id_str)
                .execute()
            )
            return response.data or []

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch project routing: {e}",
                code="FETCH_ROUTING_FAILED",
                details={"project_id": project_id_str}
            )

    @classmethod
    def fetch_project_bids(cls, project_id: str | UUID) -> list[dict[str, Any]]:
        """All bid rows of a project."""
        client = cls.get_client()
        project_id_str = cls._normalize_uuid(project_id)

        try:
            response = (
                client.table("vendor_responses")
                .select("project_id, vendor_id, status")
                .eq("project_id", project_id_str)
                .execute()
            )
            return response.data or []

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch project bids: {e}",
                code="FETCH_BIDS_FAILED",
                details={"project_id": project_id_str}
            )

    @classmethod
    def fetch_vendor_routing(cls, vendor_id: str | UUID) -> list[dict[str, Any]]:
        """All routing rows for a vendor (projects it was routed to)."""
        client = cls.get_client()
        vendor_id_str = cls._normalize_uuid(vendor_id)

        try:
            response = (
                client.table("project_routing")
                .select("project_id, vendor_id, routed_at")
                .eq("vendor_id", vendor_id_str)
                .execute()
            )
            return response.data or []

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch vendor routing: {e}",
                code="FETCH_ROUTING_FAILED",
                details={"vendor_id": vendor_id_str}
            )

    @classmethod
    def fetch_vendor_bids(cls, vendor_id: str | UUID) -> list[dict[str, Any]]:
        """All bid rows placed by a vendor."""
        client = cls.get_client()
        vendor_id_str = cls._normalize_uuid(vendor_id)

        try:
            response = (
                client.table("vendor_responses")
                .select("project_id, vendor_id, status")
                .eq("vendor_id", vendor_id_str)
                .execute()
            )
            return response.data or []

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch vendor bids: {e}",
                code="FETCH_BIDS_FAILED",
                details={"vendor_id": vendor_id_str}
            )

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    @classmethod
    def fetch_profile(cls, user_id: str | UUID) -> dict[str, Any] | None:
        """
        Fetch a user's marketplace profile.

        Returns:
            Profile dict with user_id, role and company_name, or None
        """
        client = cls.get_client()
        user_id_str = cls._normalize_uuid(user_id)

        try:
            response = (
                client.table("profiles")
                .select("user_id, role, company_name")
                .eq("user_id", user_id_str)
                .limit(1)
                .execute()
            )
            rows = response.data or []
            return rows[0] if rows else None

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch profile: {e}",
                code="FETCH_PROFILE_FAILED",
                details={"user_id": user_id_str}
            )

    @classmethod
    def fetch_admin_user_ids(cls) -> list[str]:
        """User IDs of every admin profile."""
        client = cls.get_client()

        try:
            response = (
                client.table("profiles")
                .select("user_id")
                .eq("role", "admin")
                .execute()
            )
            return [row["user_id"] for row in response.data or []]

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch admin profiles: {e}",
                code="FETCH_PROFILE_FAILED",
            )

    # -------------------------------------------------------------------------
    # Project Messages
    # -------------------------------------------------------------------------

    @classmethod
    def insert_project_message(cls, row: dict[str, Any]) -> dict[str, Any]:
        """
        Insert a project message.

        Args:
            row: Column values (project_id, sender_id, vendor_id, message_text,
                 image_url, created_at)

        Returns:
            Inserted message dict with generated id

        Raises:
            SupabaseClientError: If insert fails
        """
        client = cls.get_client()

        try:
            response = (
                client.table("project_messages")
                .insert(row)
                .execute()
            )

            if response.data:
                return response.data[0]
            raise SupabaseClientError(
                message="Insert returned no data",
                code="INSERT_NO_DATA"
            )

        except SupabaseClientError:
            raise
        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to insert project message: {e}",
                code="INSERT_MESSAGE_FAILED",
                details={"project_id": row.get("project_id"), "vendor_id": row.get("vendor_id")}
            )

    @classmethod
    def fetch_project_message(cls, message_id: str | UUID) -> dict[str, Any] | None:
        """Fetch one project message by ID, or None."""
        client = cls.get_client()
        message_id_str = cls._normalize_uuid(message_id)

        try:
            response = (
                client.table("project_messages")
                .select("*")
                .eq("id", message_id_str)
                .limit(1)
                .execute()
            )
            rows = response.data or []
            return rows[0] if rows else None

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch project message: {e}",
                code="FETCH_MESSAGE_FAILED",
                details={"message_id": message_id_str}
            )

    @classmethod
    def fetch_project_messages(
        cls,
        project_id: str | UUID,
        vendor_id: str | UUID | None = None,
        after: tuple[datetime, str] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Fetch the messages of one vendor thread, or of the whole project.

        Returns rows ordered by (created_at, id) ascending. With `after`, only
        rows strictly after that (created_at, id) position are returned.

        Args:
            project_id: The project UUID
            vendor_id: Vendor thread to read; None reads every thread
            after: (created_at, id) of the last message the caller has seen

        Raises:
            SupabaseClientError: If query fails
        """
        client = cls.get_client()
        project_id_str = cls._normalize_uuid(project_id)

        try:
            query = (
                client.table("project_messages")
                .select("id, project_id, sender_id, vendor_id, message_text, image_url, created_at")
                .eq("project_id", project_id_str)
            )
            if vendor_id is not None:
                query = query.eq("vendor_id", cls._normalize_uuid(vendor_id))
            if after is not None:
                ts = format_timestamp(after[0])
                query = query.or_(
                    f'created_at.gt."{ts}",and(created_at.eq."{ts}",id.gt.{after[1]})'
                )

            response = query.order("created_at").order("id").execute()
            rows = response.data or []

            logger.debug(f"Fetched {len(rows)} messages for project {project_id_str}")
            return rows

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch project messages: {e}",
                code="FETCH_MESSAGES_FAILED",
                suggestion="Check that the project exists and project_messages is accessible",
                details={"project_id": project_id_str, "vendor_id": str(vendor_id) if vendor_id else None}
            )

    @classmethod
    def fetch_latest_message(
        cls,
        project_id: str | UUID,
        vendor_id: str | UUID,
    ) -> dict[str, Any] | None:
        """Fetch the newest message of one vendor thread, or None if it is empty."""
        client = cls.get_client()
        project_id_str = cls._normalize_uuid(project_id)
        vendor_id_str = cls._normalize_uuid(vendor_id)

        try:
            response = (
                client.table("project_messages")
                .select("id, created_at")
                .eq("project_id", project_id_str)
                .eq("vendor_id", vendor_id_str)
                .order("created_at", desc=True)
                .order("id", desc=True)
                .limit(1)
                .execute()
            )
            rows = response.data or []
            return rows[0] if rows else None

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch latest message: {e}",
                code="FETCH_MESSAGES_FAILED",
                details={"project_id": project_id_str, "vendor_id": vendor_id_str}
            )

    @classmethod
    def fetch_latest_message_times(cls, project_ids: list[str]) -> list[dict[str, Any]]:
        """
        Fetch (project_id, vendor_id, created_at) for messages of several projects,
        newest first. Used to show last activity in inbox summaries.
        """
        if not project_ids:
            return []

        client = cls.get_client()
        try:
            response = (
                client.table("project_messages")
                .select("project_id, vendor_id, created_at")
                .in_("project_id", project_ids)
                .order("created_at", desc=True)
                .execute()
            )
            return response.data or []

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch message activity: {e}",
                code="FETCH_MESSAGES_FAILED",
                details={"count": len(project_ids)}
            )

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    @classmethod
    def insert_notification(cls, row: dict[str, Any]) -> dict[str, Any]:
        """
        Insert one notification row.

        Raises:
            SupabaseClientError: If insert fails
        """
        client = cls.get_client()

        try:
            response = (
                client.table("notifications")
                .insert(row)
                .execute()
            )

            if response.data:
                return response.data[0]
            raise SupabaseClientError(
                message="Insert returned no data",
                code="INSERT_NO_DATA"
            )

        except SupabaseClientError:
            raise
        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to insert notification: {e}",
                code="INSERT_NOTIFICATION_FAILED",
                details={"user_id": row.get("user_id")}
            )

    @classmethod
    def fetch_notifications(
        cls,
        user_id: str | UUID,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Fetch a user's notifications, newest first."""
        client = cls.get_client()
        user_id_str = cls._normalize_uuid(user_id)

        try:
            query = (
                client.table("notifications")
                .select("*")
                .eq("user_id", user_id_str)
            )
            if unread_only:
                query = query.eq("is_read", False)

            response = query.order("created_at", desc=True).limit(limit).execute()
            return response.data or []

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch notifications: {e}",
                code="FETCH_NOTIFICATIONS_FAILED",
                details={"user_id": user_id_str}
            )

    @classmethod
    def count_unread_notifications(cls, user_id: str | UUID) -> int:
        """Count a user's unread notifications."""
        client = cls.get_client()
        user_id_str = cls._normalize_uuid(user_id)

        try:
            response = (
                client.table("notifications")
                .select("id", count="exact")
                .eq("user_id", user_id_str)
                .eq("is_read", False)
                .execute()
            )
            return response.count or 0

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to count notifications: {e}",
                code="FETCH_NOTIFICATIONS_FAILED",
                details={"user_id": user_id_str}
            )

    @classmethod
    def fetch_notification(cls, notification_id: str | UUID) -> dict[str, Any] | None:
        """Fetch one notification by ID, or None."""
        client = cls.get_client()
        notification_id_str = cls._normalize_uuid(notification_id)

        try:
            response = (
                client.table("notifications")
                .select("*")
                .eq("id", notification_id_str)
                .limit(1)
                .execute()
            )
            rows = response.data or []
            return rows[0] if rows else None

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch notification: {e}",
                code="FETCH_NOTIFICATIONS_FAILED",
                details={"notification_id": notification_id_str}
            )

    @classmethod
    def mark_notification_read(
        cls,
        notification_id: str | UUID,
        read_at: datetime,
    ) -> dict[str, Any] | None:
        """Set is_read/read_at on one notification. Returns the updated row."""
        client = cls.get_client()
        notification_id_str = cls._normalize_uuid(notification_id)

        try:
            response = (
                client.table("notifications")
                .update({"is_read": True, "read_at": format_timestamp(read_at)})
                .eq("id", notification_id_str)
                .execute()
            )
            rows = response.data or []
            return rows[0] if rows else None

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to mark notification read: {e}",
                code="UPDATE_NOTIFICATION_FAILED",
                details={"notification_id": notification_id_str}
            )

    @classmethod
    def mark_all_notifications_read(cls, user_id: str | UUID, read_at: datetime) -> int:
        """Mark every unread notification of a user as read. Returns rows updated."""
        client = cls.get_client()
        user_id_str = cls._normalize_uuid(user_id)

        try:
            response = (
                client.table("notifications")
                .update({"is_read": True, "read_at": format_timestamp(read_at)})
                .eq("user_id", user_id_str)
                .eq("is_read", False)
                .execute()
            )
            return len(response.data or [])

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to mark notifications read: {e}",
                code="UPDATE_NOTIFICATION_FAILED",
                details={"user_id": user_id_str}
            )

    @classmethod
    def delete_notification(cls, notification_id: str | UUID) -> bool:
        """Delete one notification. Returns True if a row was removed."""
        client = cls.get_client()
        notification_id_str = cls._normalize_uuid(notification_id)

        try:
            response = (
                client.table("notifications")
                .delete()
                .eq("id", notification_id_str)
                .execute()
            )
            return bool(response.data)

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to delete notification: {e}",
                code="DELETE_NOTIFICATION_FAILED",
                details={"notification_id": notification_id_str}
            )
