# =============================================================================
# tests/test_access_resolver.py - Thread Access Rule Tests
# =============================================================================
# Unit tests for AccessResolver against an in-memory routing/bid gate:
# - Who may read or write which thread of a project
# - Vendor scope resolution for businesses (explicit, defaulted, ambiguous)
# - Visible thread sets per role and inbox summaries
# - Supabase gate failures surfacing as store errors
#
# Run with: pytest tests/test_access_resolver.py -v
# =============================================================================

from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from uuid import uuid4

import pytest

from app.exceptions import (
    AmbiguousScopeError,
    NotAuthorizedError,
    ProjectNotFoundError,
    StoreError,
    ThreadNotFoundError,
)
from core.models import (
    Actor,
    BidStatus,
    DenialReason,
    Operation,
    ThreadKey,
)
from core.services.access_resolver import AccessResolver
from core.services.routing_gate import SupabaseRoutingGate
from lib.supabase_client import SupabaseClient, SupabaseClientError


@pytest.fixture
def resolver(gate):
    return AccessResolver(gate)


# =============================================================================
# authorize: vendors
# =============================================================================

class TestVendorAccess:
    """Vendors only ever see their own thread."""

    def test_routed_vendor_reads_own_thread(self, resolver, project_id, vendor_1):
        """A routed vendor is allowed and scoped to itself."""
        decision = resolver.authorize(vendor_1, project_id, operation=Operation.READ)

        assert decision.allowed
        assert decision.thread_key == ThreadKey(project_id=project_id, vendor_id=vendor_1.id)

    def test_bidding_vendor_without_routing(self, resolver, gate, project_id, vendor_3):
        """A bid alone gives standing."""
        gate.bid(project_id, vendor_3.id)

        decision = resolver.authorize(vendor_3, project_id, operation=Operation.WRITE)

        assert decision.allowed
        assert decision.thread_key.vendor_id == vendor_3.id

    def test_vendor_scope_is_forced_to_self(self, resolver, project_id, vendor_1, vendor_2):
        """Asking for another vendor's thread still yields the caller's own."""
        decision = resolver.authorize(vendor_1, project_id, vendor_2.id)

        assert decision.allowed
        assert decision.thread_key.vendor_id == vendor_1.id

    def test_unrouted_vendor_is_not_authorized(self, resolver, project_id, vendor_3):
        """Scenario B: no routing and no bid means not_authorized."""
        decision = resolver.authorize(vendor_3, project_id, vendor_3.id)

        assert not decision.allowed
        assert decision.reason is DenialReason.NOT_AUTHORIZED
        with pytest.raises(NotAuthorizedError):
            decision.raise_for_denial(project_id, vendor_3.id)

    def test_rejected_bid_keeps_thread_visible(self, resolver, gate, project_id, vendor_3):
        """A rejected bid row still proves standing."""
        gate.bid(project_id, vendor_3.id, BidStatus.REJECTED)

        assert resolver.authorize(vendor_3, project_id).allowed


# =============================================================================
# authorize: businesses
# =============================================================================

class TestBusinessAccess:
    """The owning business talks to each vendor in a separate thread."""

    def test_explicit_vendor_scope(self, resolver, project_id, business, vendor_2):
        decision = resolver.authorize(business, project_id, vendor_2.id, Operation.WRITE)

        assert decision.allowed
        assert decision.thread_key == ThreadKey(project_id=project_id, vendor_id=vendor_2.id)

    def test_write_without_scope_is_ambiguous(self, resolver, project_id, business, vendor_1, vendor_2):
        """Scenario C: two vendor threads and no vendorId."""
        decision = resolver.authorize(business, project_id, None, Operation.WRITE)

        assert not decision.allowed
        assert decision.reason is DenialReason.AMBIGUOUS_SCOPE
        assert set(decision.candidate_vendor_ids) == {vendor_1.id, vendor_2.id}

        with pytest.raises(AmbiguousScopeError) as exc_info:
            decision.raise_for_denial(project_id)
        assert exc_info.value.status_code == 409
        assert set(exc_info.value.details["vendor_ids"]) == {str(vendor_1.id), str(vendor_2.id)}

    def test_read_without_scope_is_ambiguous(self, resolver, project_id, business):
        decision = resolver.authorize(business, project_id, None, Operation.READ)

        assert decision.reason is DenialReason.AMBIGUOUS_SCOPE

    def test_single_vendor_defaults_scope(self, resolver, gate, business, vendor_1):
        """With exactly one vendor thread the scope is unambiguous."""
        pid = gate.add_project(business.id)
        gate.route(pid, vendor_1.id)

        decision = resolver.authorize(business, pid, None, Operation.WRITE)

        assert decision.allowed
        assert decision.thread_key.vendor_id == vendor_1.id

    def test_no_vendor_threads_is_not_found(self, resolver, gate, business):
        pid = gate.add_project(business.id)

        decision = resolver.authorize(business, pid)

        assert decision.reason is DenialReason.NOT_FOUND
        assert decision.project_found
        with pytest.raises(ThreadNotFoundError):
            decision.raise_for_denial(pid)

    def test_scope_to_vendor_without_standing(self, resolver, project_id, business, vendor_3):
        """A vendorId that isn't routed or bidding names no thread."""
        decision = resolver.authorize(business, project_id, vendor_3.id)

        assert decision.reason is DenialReason.NOT_FOUND

    def test_other_business_is_not_authorized(self, resolver, project_id, other_business, vendor_1):
        decision = resolver.authorize(other_business, project_id, vendor_1.id)

        assert decision.reason is DenialReason.NOT_AUTHORIZED


# =============================================================================
# authorize: admins and edge cases
# =============================================================================

class TestAdminAccess:
    """Admins monitor every thread."""

    def test_read_without_scope_is_project_wide(self, resolver, project_id, admin):
        decision = resolver.authorize(admin, project_id, None, Operation.READ)

        assert decision.allowed
        assert decision.thread_key.is_project_wide
        assert decision.thread_key.channel == f"project:{project_id}"

    def test_read_with_scope(self, resolver, project_id, admin, vendor_2):
        decision = resolver.authorize(admin, project_id, vendor_2.id, Operation.READ)

        assert decision.thread_key.vendor_id == vendor_2.id

    def test_write_needs_a_vendor_thread(self, resolver, project_id, admin):
        """Writes always land in exactly one vendor thread."""
        decision = resolver.authorize(admin, project_id, None, Operation.WRITE)

        assert decision.reason is DenialReason.AMBIGUOUS_SCOPE

    def test_admin_superset(self, resolver, gate, project_id, admin, business, vendor_1, vendor_2):
        """Everything a business or vendor may read, an admin may read too."""
        for actor in (business, vendor_1, vendor_2):
            for key in resolver.resolve_visible_threads(actor):
                assert resolver.authorize(admin, key.project_id, key.vendor_id).allowed


class TestUnknownProject:

    @pytest.mark.parametrize("role_fixture", ["business", "vendor_1", "admin"])
    def test_unknown_project_is_not_found(self, request, resolver, role_fixture):
        actor: Actor = request.getfixturevalue(role_fixture)
        missing = uuid4()

        decision = resolver.authorize(actor, missing)

        assert decision.reason is DenialReason.NOT_FOUND
        assert not decision.project_found
        with pytest.raises(ProjectNotFoundError):
            decision.raise_for_denial(missing)

    def test_actor_without_role(self, resolver, project_id):
        """Users without a profile role have no standing anywhere."""
        decision = resolver.authorize(Actor(id=uuid4()), project_id)

        assert decision.reason is DenialReason.NOT_AUTHORIZED


# =============================================================================
# authorize_overview
# =============================================================================

class TestAuthorizeOverview:
    """Access to every thread of a project at once."""

    def test_owner_gets_project_wide_key(self, resolver, project_id, business):
        decision = resolver.authorize_overview(business, project_id)

        assert decision.allowed
        assert decision.thread_key.is_project_wide

    def test_admin_gets_project_wide_key(self, resolver, project_id, admin):
        assert resolver.authorize_overview(admin, project_id).thread_key.is_project_wide

    def test_vendor_gets_own_thread(self, resolver, project_id, vendor_1):
        decision = resolver.authorize_overview(vendor_1, project_id)

        assert decision.thread_key.vendor_id == vendor_1.id

    def test_outsiders_are_denied(self, resolver, project_id, other_business, vendor_3):
        assert resolver.authorize_overview(other_business, project_id).reason is DenialReason.NOT_AUTHORIZED
        assert resolver.authorize_overview(vendor_3, project_id).reason is DenialReason.NOT_AUTHORIZED


# =============================================================================
# resolve_visible_threads / build_thread_summaries
# =============================================================================

class TestVisibleThreads:
    """Thread sets per role."""

    def test_business_sees_one_thread_per_vendor(self, resolver, project_id, business, vendor_1, vendor_2):
        keys = resolver.resolve_visible_threads(business)

        assert keys == {
            ThreadKey(project_id=project_id, vendor_id=vendor_1.id),
            ThreadKey(project_id=project_id, vendor_id=vendor_2.id),
        }

    def test_vendor_threads_are_disjoint(self, resolver, gate, project_id, vendor_1, vendor_2):
        """Two vendors never share a thread key."""
        gate.bid(project_id, vendor_2.id)

        assert not resolver.resolve_visible_threads(vendor_1) & resolver.resolve_visible_threads(vendor_2)

    def test_vendor_sees_routed_and_bid_projects(self, resolver, gate, business, vendor_3):
        routed = gate.add_project(business.id, "Routed")
        bid_on = gate.add_project(business.id, "Bid on")
        gate.add_project(business.id, "Unrelated")
        gate.route(routed, vendor_3.id)
        gate.bid(bid_on, vendor_3.id)

        keys = resolver.resolve_visible_threads(vendor_3)

        assert {k.project_id for k in keys} == {routed, bid_on}
        assert all(k.vendor_id == vendor_3.id for k in keys)

    def test_admin_sees_every_project(self, resolver, gate, project_id, admin, other_business):
        other = gate.add_project(other_business.id)

        keys = resolver.resolve_visible_threads(admin)

        assert keys == {ThreadKey(project_id=project_id), ThreadKey(project_id=other)}

    def test_no_role_sees_nothing(self, resolver, project_id):
        assert resolver.resolve_visible_threads(Actor(id=uuid4())) == set()


class TestThreadSummaries:
    """Inbox decoration."""

    def test_vendor_summary_flags_accepted_bid(self, resolver, gate, project_id, vendor_1):
        gate.bid(project_id, vendor_1.id, BidStatus.ACCEPTED)

        [summary] = resolver.build_thread_summaries(vendor_1)

        assert summary.project_title == "Office cleaning"
        assert summary.bid_status is BidStatus.ACCEPTED
        assert summary.is_active_project
        assert summary.is_routed

    def test_summaries_sorted_by_activity(self, resolver, project_id, business, vendor_1, vendor_2):
        now = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        activity = {
            ThreadKey(project_id=project_id, vendor_id=vendor_1.id): now - timedelta(hours=1),
            ThreadKey(project_id=project_id, vendor_id=vendor_2.id): now,
        }

        summaries = resolver.build_thread_summaries(business, activity)

        assert [s.vendor_id for s in summaries] == [vendor_2.id, vendor_1.id]
        assert summaries[0].last_message_at == now

    def test_admin_summary_uses_latest_thread_activity(self, resolver, project_id, admin, vendor_1, vendor_2):
        now = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        activity = {
            ThreadKey(project_id=project_id, vendor_id=vendor_1.id): now,
            ThreadKey(project_id=project_id, vendor_id=vendor_2.id): now - timedelta(days=1),
        }

        [summary] = resolver.build_thread_summaries(admin, activity)

        assert summary.vendor_id is None
        assert summary.last_message_at == now


# =============================================================================
# Supabase-backed gate
# =============================================================================

class TestSupabaseGateFailures:
    """A failing gate read is a store error, not an unhandled exception."""

    def test_gate_read_failure_raises_store_error(self, project_id, vendor_1):
        gate = SupabaseRoutingGate()
        with patch.object(SupabaseClient, "fetch_project", side_effect=SupabaseClientError("timeout")):
            with pytest.raises(StoreError) as exc_info:
                gate.fetch_project(project_id)

        assert exc_info.value.status_code == 500
        assert exc_info.value.details == {"operation": "gate.fetch_project"}

    def test_authorize_surfaces_store_error(self, project_id, vendor_1):
        resolver = AccessResolver(SupabaseRoutingGate())
        with patch.object(SupabaseClient, "fetch_project", side_effect=SupabaseClientError("timeout")):
            with pytest.raises(StoreError):
                resolver.authorize(vendor_1, project_id, operation=Operation.READ)
