# =============================================================================
# core/models/ - Pydantic Data Models
# =============================================================================
# This package contains Pydantic schemas for data validation:
# - actor.py: Authenticated caller and marketplace role
# - project.py: Project, routing entry and bid facts (read-only here)
# - message.py: Thread keys, messages and inbox summaries
# - notification.py: Per-user notification records
# - access.py: Access decisions and denial reasons
# - events.py: Routing/bid change events
#
# These models define the "contract" between API and clients.
# =============================================================================

from .actor import Actor, ActorRole

from .project import (
    Bid,
    BidStatus,
    Project,
    ProjectStatus,
    RoutingEntry,
)

from .message import (
    Message,
    MessageCreate,
    ThreadKey,
    ThreadSummary,
)

from .notification import (
    Notification,
    NotificationCategory,
    NotificationCreate,
    NotificationType,
)

from .access import AccessDecision, DenialReason, Operation

from .events import RoutingEvent, RoutingEventType

__all__ = [
    # Actor
    "Actor",
    "ActorRole",
    # Project
    "Bid",
    "BidStatus",
    "Project",
    "ProjectStatus",
    "RoutingEntry",
    # Messages
    "Message",
    "MessageCreate",
    "ThreadKey",
    "ThreadSummary",
    # Notifications
    "Notification",
    "NotificationCategory",
    "NotificationCreate",
    "NotificationType",
    # Access
    "AccessDecision",
    "DenialReason",
    "Operation",
    # Events
    "RoutingEvent",
    "RoutingEventType",
]
