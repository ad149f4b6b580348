# =============================================================================
# core/models/notification.py - Notification Schemas
# =============================================================================
# Per-user notification records created by the notification fanout.
# Only the recipient mutates them (mark read, delete).
# =============================================================================

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from lib.utils import parse_timestamp


class NotificationType(str, Enum):
    """Severity shown by the notification bell."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class NotificationCategory(str, Enum):
    """What kind of event produced the notification."""
    MESSAGE = "message"
    ROUTING = "routing"
    BID = "bid"
    GENERAL = "general"


class NotificationCreate(BaseModel):
    """A notification about to be written for one recipient."""

    user_id: UUID
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(default="")
    type: NotificationType = NotificationType.INFO
    category: NotificationCategory = NotificationCategory.GENERAL
    related_id: UUID | None = Field(
        default=None,
        description="Message or project that triggered the notification"
    )

    def to_db_row(self) -> dict[str, Any]:
        row = {
            "user_id": str(self.user_id),
            "title": self.title,
            "message": self.message,
            "type": self.type.value,
            "category": self.category.value,
        }
        if self.related_id:
            row["related_id"] = str(self.related_id)
        return row


class Notification(BaseModel):
    """
    A stored notification.

    Example:
        {
            "id": "990e8400-e29b-41d4-a716-446655440004",
            "user_id": "660e8400-e29b-41d4-a716-446655440001",
            "title": "New message on Office cleaning",
            "message": "Hello",
            "type": "info",
            "category": "message",
            "related_id": "880e8400-e29b-41d4-a716-446655440003",
            "is_read": false,
            "created_at": "2025-03-01T10:30:00.000000+00:00",
            "read_at": null
        }
    """

    id: UUID
    user_id: UUID
    title: str
    message: str = ""
    type: NotificationType = NotificationType.INFO
    category: NotificationCategory = NotificationCategory.GENERAL
    related_id: UUID | None = None
    is_read: bool = False
    created_at: datetime
    read_at: datetime | None = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> "Notification":
        category = row.get("category") or NotificationCategory.GENERAL.value
        try:
            category = NotificationCategory(category)
        except ValueError:
            category = NotificationCategory.GENERAL
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            title=row.get("title") or "",
            message=row.get("message") or "",
            type=row.get("type") or NotificationType.INFO.value,
            category=category,
            related_id=row.get("related_id"),
            is_read=bool(row.get("is_read", False)),
            created_at=parse_timestamp(row["created_at"]),
            read_at=parse_timestamp(row["read_at"]) if row.get("read_at") else None,
        )
