# =============================================================================
# core/services/routing_gate.py - Routing/Bid Gate
# =============================================================================
# Read-only query surface over the routing/bidding workflow's tables. The
# Access Resolver depends on these facts; nothing in the messaging core writes
# them.
#
# RoutingBidGate is the interface; SupabaseRoutingGate reads project_routing
# and vendor_responses through lib.supabase_client. Supabase failures surface
# as StoreError.
# =============================================================================

import functools
import logging
from abc import ABC, abstractmethod
from uuid import UUID

from app.exceptions import StoreError
from core.models.project import BidStatus, Project
from lib.supabase_client import SupabaseClient, SupabaseClientError

logger = logging.getLogger(__name__)


class RoutingBidGate(ABC):
    """Facts about projects, routing and bids needed to resolve thread access."""

    @abstractmethod
    def fetch_project(self, project_id: UUID) -> Project | None:
        """Return the project, or None if it doesn't exist."""

    @abstractmethod
    def is_routed(self, project_id: UUID, vendor_id: UUID) -> bool:
        """True if a routing entry exists for (project, vendor)."""

    @abstractmethod
    def bid_status(self, project_id: UUID, vendor_id: UUID) -> BidStatus:
        """The vendor's bid status on the project (no_bid when none exists)."""

    @abstractmethod
    def routed_vendor_ids(self, project_id: UUID) -> set[UUID]:
        """Vendors routed to the project."""

    @abstractmethod
    def bid_statuses(self, project_id: UUID) -> dict[UUID, BidStatus]:
        """Bid status of every vendor that bid on the project."""

    @abstractmethod
    def vendor_project_ids(self, vendor_id: UUID) -> set[UUID]:
        """Projects the vendor is routed to or has bid on."""

    @abstractmethod
    def business_project_ids(self, business_id: UUID) -> set[UUID]:
        """Projects owned by the business."""

    @abstractmethod
    def all_project_ids(self) -> set[UUID]:
        """Every project (admin monitoring)."""

    def fetch_projects(self, project_ids: set[UUID]) -> list[Project]:
        """Fetch several projects; missing ones are skipped."""
        projects = (self.fetch_project(pid) for pid in project_ids)
        return [p for p in projects if p is not None]

    def has_standing(self, project_id: UUID, vendor_id: UUID) -> bool:
        """A vendor may see its own thread if it is routed or has bid."""
        return self.is_routed(project_id, vendor_id) or self.bid_status(project_id, vendor_id).has_bid

    def candidate_vendor_ids(self, project_id: UUID) -> list[UUID]:
        """
        Vendors that have a thread on the project (routed or bid), sorted.

        Sorting keeps ambiguous_scope error details stable.
        """
        vendors = self.routed_vendor_ids(project_id) | set(self.bid_statuses(project_id))
        return sorted(vendors, key=str)


def _store_errors(method):
    """Report Supabase failures from a gate read as StoreError."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SupabaseClientError as e:
            logger.error(f"Routing gate {method.__name__} failed: {e}")
            raise StoreError(f"gate.{method.__name__}", e.message)

    return wrapper


class SupabaseRoutingGate(RoutingBidGate):
    """RoutingBidGate backed by the Supabase projects/project_routing/vendor_responses tables."""

    @_store_errors
    def fetch_project(self, project_id: UUID) -> Project | None:
        row = SupabaseClient.fetch_project(project_id)
        return Project.from_db_row(row) if row else None

    @_store_errors
    def fetch_projects(self, project_ids: set[UUID]) -> list[Project]:
        rows = SupabaseClient.fetch_projects([str(pid) for pid in project_ids])
        return [Project.from_db_row(row) for row in rows]

    @_store_errors
    def is_routed(self, project_id: UUID, vendor_id: UUID) -> bool:
        return SupabaseClient.fetch_routing_entry(project_id, vendor_id) is not None

    @_store_errors
    def bid_status(self, project_id: UUID, vendor_id: UUID) -> BidStatus:
        row = SupabaseClient.fetch_bid(project_id, vendor_id)
        return BidStatus.from_db(row.get("status") if row else None)

    @_store_errors
    def routed_vendor_ids(self, project_id: UUID) -> set[UUID]:
        return {UUID(row["vendor_id"]) for row in SupabaseClient.fetch_project_routing(project_id)}

    @_store_errors
    def bid_statuses(self, project_id: UUID) -> dict[UUID, BidStatus]:
        return {
            UUID(row["vendor_id"]): BidStatus.from_db(row.get("status"))
            for row in SupabaseClient.fetch_project_bids(project_id)
        }

    @_store_errors
    def vendor_project_ids(self, vendor_id: UUID) -> set[UUID]:
        routed = {UUID(row["project_id"]) for row in SupabaseClient.fetch_vendor_routing(vendor_id)}
        bid_on = {UUID(row["project_id"]) for row in SupabaseClient.fetch_vendor_bids(vendor_id)}
        logger.debug(f"Vendor {vendor_id}: {len(routed)} routed, {len(bid_on)} bid projects")
        return routed | bid_on

    @_store_errors
    def business_project_ids(self, business_id: UUID) -> set[UUID]:
        return {UUID(pid) for pid in SupabaseClient.fetch_business_project_ids(business_id)}

    @_store_errors
    def all_project_ids(self) -> set[UUID]:
        return {UUID(pid) for pid in SupabaseClient.fetch_all_project_ids()}
