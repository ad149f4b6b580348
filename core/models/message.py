# =============================================================================
# core/models/message.py - Thread & Message Schemas
# =============================================================================
# These models define the API contract for project messaging:
# - ThreadKey: (project, vendor) pair naming one conversation. vendor_id=None
#   names the admin monitoring view over every vendor thread of the project.
# - MessageCreate: What a client POSTs ({messageText, imageUrl?, vendorId?})
# - Message: A stored, immutable message (project_messages row)
# - ThreadSummary: One entry of a caller's inbox
#
# Messages are ordered by (created_at, id) ascending everywhere.
# =============================================================================

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from lib.utils import parse_timestamp
from .project import BidStatus, ProjectStatus


class ThreadKey(BaseModel):
    """
    Identifies one conversation.

    Threads are not stored; a message belongs to a thread through its
    (project_id, vendor_id) columns.
    """

    project_id: UUID
    vendor_id: UUID | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_project_wide(self) -> bool:
        """True for the admin monitoring view spanning every vendor thread."""
        return self.vendor_id is None

    @property
    def channel(self) -> str:
        """Real-time channel name this thread's messages are published on."""
        if self.vendor_id is None:
            return f"project:{self.project_id}"
        return f"thread:{self.project_id}:{self.vendor_id}"

    def __str__(self) -> str:
        return f"{self.project_id}/{self.vendor_id or '*'}"


class MessageCreate(BaseModel):
    """
    Request body for POST /projects/{project_id}/messages.

    Example:
        {
            "messageText": "Can you start on the 12th?",
            "vendorId": "770e8400-e29b-41d4-a716-446655440002"
        }
    """

    message_text: str = Field(
        default="",
        alias="messageText",
        description="Message body"
    )
    image_url: str | None = Field(
        default=None,
        alias="imageUrl",
        description="Optional URL of an uploaded image attachment"
    )
    vendor_id: UUID | None = Field(
        default=None,
        alias="vendorId",
        description="Vendor thread to write to (required for businesses with several vendor threads)"
    )

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {"messageText": "Hello", "vendorId": "770e8400-e29b-41d4-a716-446655440002"},
                {"messageText": "", "imageUrl": "https://cdn.example.com/site-photo.png"},
            ]
        },
    )


class Message(BaseModel):
    """
    A stored message.

    Example:
        {
            "id": "880e8400-e29b-41d4-a716-446655440003",
            "project_id": "550e8400-e29b-41d4-a716-446655440000",
            "sender_id": "770e8400-e29b-41d4-a716-446655440002",
            "vendor_id": "770e8400-e29b-41d4-a716-446655440002",
            "message_text": "Hello",
            "image_url": null,
            "created_at": "2025-03-01T10:30:00.000000+00:00"
        }
    """

    id: UUID
    project_id: UUID
    sender_id: UUID
    vendor_id: UUID | None = None
    message_text: str
    image_url: str | None = None
    created_at: datetime

    model_config = ConfigDict(frozen=True)

    @property
    def sort_key(self) -> tuple[datetime, str]:
        """Total order used by the store, cursors and client merge."""
        return (self.created_at, str(self.id))

    @property
    def thread_key(self) -> ThreadKey:
        return ThreadKey(project_id=self.project_id, vendor_id=self.vendor_id)

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> "Message":
        """Create a Message from a project_messages row."""
        return cls(
            id=row["id"],
            project_id=row["project_id"],
            sender_id=row["sender_id"],
            vendor_id=row.get("vendor_id"),
            message_text=row.get("message_text") or "",
            image_url=row.get("image_url"),
            created_at=parse_timestamp(row["created_at"]),
        )


class ThreadSummary(BaseModel):
    """
    One conversation visible to the caller (vendor inbox / business overview).

    `is_active_project` is set when the vendor's bid was accepted. It only
    changes how the thread is displayed, never who can access it.
    """

    project_id: UUID
    vendor_id: UUID | None = None
    project_title: str = ""
    project_status: ProjectStatus = ProjectStatus.OPEN
    bid_status: BidStatus = BidStatus.NO_BID
    is_routed: bool = False
    is_active_project: bool = False
    last_message_at: datetime | None = None
