# =============================================================================
# core/models/project.py - Project, Routing & Bid Schemas
# =============================================================================
# Read-only facts owned by the project lifecycle and routing/bidding workflow.
# The messaging core never writes these; it only consults them to decide who
# may see which thread.
#
# Tables (Supabase):
#   projects          -> Project
#   project_routing   -> RoutingEntry
#   vendor_responses  -> Bid
# =============================================================================

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class ProjectStatus(str, Enum):
    """
    Lifecycle states of a project.

    Flow: draft -> open -> in_review -> selected -> completed
                                    \\-> cancelled
    """
    DRAFT = "draft"
    OPEN = "open"
    IN_REVIEW = "in_review"
    SELECTED = "selected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BidStatus(str, Enum):
    """
    Status of a vendor's bid on a project.

    - no_bid: No vendor_responses row exists (synthesized, never stored)
    - submitted: Bid placed, awaiting the business
    - accepted: Business picked this vendor ("active project" thread)
    - rejected: Business declined the bid (terminal)
    - withdrawn: Vendor pulled the bid (terminal)

    Transitions only move forward: no_bid -> submitted -> accepted.
    Rejection and withdrawal end the bid.
    """
    NO_BID = "no_bid"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"

    @property
    def is_terminal(self) -> bool:
        return self in (BidStatus.REJECTED, BidStatus.WITHDRAWN)

    @property
    def has_bid(self) -> bool:
        """A row exists for this vendor, whatever its outcome."""
        return self is not BidStatus.NO_BID

    def can_transition_to(self, new_status: "BidStatus") -> bool:
        """Check whether moving from this status to `new_status` is allowed."""
        if self.is_terminal or new_status is BidStatus.NO_BID:
            return False
        if new_status.is_terminal:
            return self.has_bid
        order = [BidStatus.NO_BID, BidStatus.SUBMITTED, BidStatus.ACCEPTED]
        return order.index(new_status) > order.index(self)

    @classmethod
    def from_db(cls, value: str | None) -> "BidStatus":
        """Map a vendor_responses.status value (or a missing row) to a BidStatus."""
        if not value:
            return cls.NO_BID
        try:
            return cls(value)
        except ValueError:
            # Unknown statuses still prove that a bid row exists
            return cls.SUBMITTED


class Project(BaseModel):
    """
    The subset of a project row the messaging core needs.

    Example:
        {
            "id": "550e8400-e29b-41d4-a716-446655440000",
            "business_id": "660e8400-e29b-41d4-a716-446655440001",
            "title": "Office cleaning, 3 floors",
            "status": "open",
            "selected_vendor_id": null
        }
    """

    id: UUID = Field(..., description="Project identifier")
    business_id: UUID = Field(..., description="Owning business user id")
    title: str = Field(default="", description="Project title for display")
    status: ProjectStatus = Field(default=ProjectStatus.OPEN)
    selected_vendor_id: UUID | None = Field(
        default=None,
        description="Vendor whose bid was selected, if any"
    )

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> "Project":
        status = row.get("status") or ProjectStatus.OPEN.value
        try:
            status = ProjectStatus(status)
        except ValueError:
            status = ProjectStatus.OPEN
        return cls(
            id=row["id"],
            business_id=row["business_id"],
            title=row.get("title") or "",
            status=status,
            selected_vendor_id=row.get("selected_vendor_id"),
        )


class RoutingEntry(BaseModel):
    """A project made visible to one vendor for consideration."""

    project_id: UUID
    vendor_id: UUID
    routed_at: datetime | None = None


class Bid(BaseModel):
    """A vendor's bid on a project."""

    project_id: UUID
    vendor_id: UUID
    status: BidStatus = BidStatus.SUBMITTED
