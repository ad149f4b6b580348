# =============================================================================
# app/dependencies.py - Shared Dependencies
# =============================================================================
# FastAPI dependency injection for shared resources.
# These are injected into route handlers using Depends().
#
# Services are process-wide singletons: the ThreadStore's per-thread locks only
# serialize appends if every request goes through the same instance.
# Tests swap them with app.dependency_overrides.
# =============================================================================

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from core.services.access_resolver import AccessResolver
from core.services.notification_fanout import NotificationFanout
from core.services.routing_gate import RoutingBidGate, SupabaseRoutingGate
from core.services.thread_store import ThreadStore


@lru_cache
def get_routing_gate() -> RoutingBidGate:
    """Read-only routing/bid facts backed by Supabase."""
    return SupabaseRoutingGate()


def get_access_resolver(gate: RoutingBidGate = Depends(get_routing_gate)) -> AccessResolver:
    return AccessResolver(gate)


@lru_cache
def get_thread_store() -> ThreadStore:
    """
    Get the shared ThreadStore.

    Returns the process-wide instance.
    """
    return ThreadStore()


def get_notification_fanout(gate: RoutingBidGate = Depends(get_routing_gate)) -> NotificationFanout:
    return NotificationFanout(gate)


# Type aliases for dependency injection
ResolverDep = Annotated[AccessResolver, Depends(get_access_resolver)]
StoreDep = Annotated[ThreadStore, Depends(get_thread_store)]
FanoutDep = Annotated[NotificationFanout, Depends(get_notification_fanout)]
