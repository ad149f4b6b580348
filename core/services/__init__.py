# =============================================================================
# core/services/__init__.py - Service Layer Exports
# =============================================================================

from .routing_gate import RoutingBidGate, SupabaseRoutingGate
from .access_resolver import AccessResolver
from .thread_store import ThreadStore
from .notification_fanout import NotificationFanout, write_notification
from .notification_service import NotificationService

__all__ = [
    "RoutingBidGate",
    "SupabaseRoutingGate",
    "AccessResolver",
    "ThreadStore",
    "NotificationFanout",
    "write_notification",
    "NotificationService",
]
