# =============================================================================
# core/models/events.py - Routing & Bid Change Events
# =============================================================================
# Events emitted by the external routing/bidding workflow. The messaging core
# only turns them into notifications; it never changes routing or bids.
# =============================================================================

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .project import BidStatus


class RoutingEventType(str, Enum):
    """
    - routed: Project was made visible to a vendor
    - routing_removed: Routing was deleted (project cancelled)
    - bid_submitted / bid_accepted / bid_rejected / bid_withdrawn: Bid status moved
    """
    ROUTED = "routed"
    ROUTING_REMOVED = "routing_removed"
    BID_SUBMITTED = "bid_submitted"
    BID_ACCEPTED = "bid_accepted"
    BID_REJECTED = "bid_rejected"
    BID_WITHDRAWN = "bid_withdrawn"

    @property
    def bid_status(self) -> BidStatus | None:
        """Bid status this event moves to, or None for routing events."""
        return {
            RoutingEventType.BID_SUBMITTED: BidStatus.SUBMITTED,
            RoutingEventType.BID_ACCEPTED: BidStatus.ACCEPTED,
            RoutingEventType.BID_REJECTED: BidStatus.REJECTED,
            RoutingEventType.BID_WITHDRAWN: BidStatus.WITHDRAWN,
        }.get(self)


class RoutingEvent(BaseModel):
    """
    A routing or bid change for one (project, vendor) pair.

    Example:
        {
            "type": "bid_accepted",
            "projectId": "550e8400-e29b-41d4-a716-446655440000",
            "vendorId": "770e8400-e29b-41d4-a716-446655440002",
            "previousBidStatus": "submitted"
        }
    """

    type: RoutingEventType
    project_id: UUID = Field(..., alias="projectId")
    vendor_id: UUID = Field(..., alias="vendorId")
    previous_bid_status: BidStatus | None = Field(
        default=None,
        alias="previousBidStatus",
        description="Status before the change, used to drop out-of-order transitions"
    )

    model_config = ConfigDict(populate_by_name=True)
