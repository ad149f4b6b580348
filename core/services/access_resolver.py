# =============================================================================
# core/services/access_resolver.py - Thread Access Rules
# =============================================================================
# Decides which message thread(s) an actor may read or write.
#
# Rules for one project, evaluated in order (first match wins):
#   0. Unknown project                      -> deny(not_found)
#   1. Admin                                -> allow; a read without vendor
#                                              scope spans the whole project.
#                                              Writes pick one vendor thread
#                                              like a business does.
#   2. Business that owns the project       -> allow, scoped to one vendor:
#                                              explicit vendorId, or the only
#                                              vendor thread; several vendor
#                                              threads and no vendorId is
#                                              ambiguous_scope
#   3. Vendor routed to or bidding on it    -> allow, scope forced to itself
#   4. Anyone else                          -> deny(not_authorized)
#
# Purely a predicate: no writes, no exceptions for denials. Routes call
# decision.raise_for_denial() to surface the reason.
# =============================================================================

import logging
from datetime import datetime
from uuid import UUID

from core.models.access import AccessDecision, DenialReason, Operation
from core.models.actor import Actor
from core.models.message import ThreadKey, ThreadSummary
from core.models.project import BidStatus, Project
from core.services.routing_gate import RoutingBidGate

logger = logging.getLogger(__name__)


class AccessResolver:
    """
    Resolves thread visibility from actor role and routing/bid facts.

    Example:
        resolver = AccessResolver(SupabaseRoutingGate())
        decision = resolver.authorize(actor, project_id, vendor_id, Operation.WRITE)
        thread_key = decision.raise_for_denial(project_id, vendor_id)
    """

    def __init__(self, gate: RoutingBidGate):
        self.gate = gate

    # -------------------------------------------------------------------------
    # authorize
    # -------------------------------------------------------------------------

    def authorize(
        self,
        actor: Actor,
        project_id: UUID,
        vendor_scope: UUID | None = None,
        operation: Operation = Operation.READ,
    ) -> AccessDecision:
        """
        Decide whether `actor` may perform `operation` on a thread of `project_id`.

        Args:
            actor: The authenticated caller
            project_id: Project whose thread is requested
            vendor_scope: Requested vendor thread (ignored for vendors)
            operation: read or write

        Returns:
            AccessDecision with the resolved ThreadKey, or a denial reason
        """
        project = self.gate.fetch_project(project_id)
        if project is None:
            return AccessDecision.deny(DenialReason.NOT_FOUND, project_found=False)

        if actor.is_admin:
            if operation is Operation.READ and vendor_scope is None:
                return AccessDecision.allow(ThreadKey(project_id=project.id))
            return self._resolve_vendor_scope(project, vendor_scope)

        if actor.is_business and project.business_id == actor.id:
            return self._resolve_vendor_scope(project, vendor_scope)

        if actor.is_vendor:
            if self.gate.has_standing(project.id, actor.id):
                if vendor_scope is not None and vendor_scope != actor.id:
                    logger.debug(
                        f"Vendor {actor.id} asked for vendor scope {vendor_scope} "
                        f"on project {project.id}; forcing own scope"
                    )
                return AccessDecision.allow(ThreadKey(project_id=project.id, vendor_id=actor.id))
            logger.info(f"Vendor {actor.id} has no routing or bid on project {project.id}")
            return AccessDecision.deny(DenialReason.NOT_AUTHORIZED)

        logger.info(f"Actor {actor.id} ({actor.role}) denied on project {project.id}")
        return AccessDecision.deny(DenialReason.NOT_AUTHORIZED)

    def _resolve_vendor_scope(self, project: Project, vendor_scope: UUID | None) -> AccessDecision:
        """Pick exactly one vendor thread of the project for a business or admin."""
        candidates = self.gate.candidate_vendor_ids(project.id)

        if vendor_scope is not None:
            if vendor_scope in candidates:
                return AccessDecision.allow(ThreadKey(project_id=project.id, vendor_id=vendor_scope))
            return AccessDecision.deny(DenialReason.NOT_FOUND, candidates)

        if len(candidates) == 1:
            return AccessDecision.allow(ThreadKey(project_id=project.id, vendor_id=candidates[0]))
        if not candidates:
            return AccessDecision.deny(DenialReason.NOT_FOUND)
        return AccessDecision.deny(DenialReason.AMBIGUOUS_SCOPE, candidates)

    def authorize_overview(self, actor: Actor, project_id: UUID) -> AccessDecision:
        """
        Decide who may see every thread of a project at once.

        Admins and the owning business get the project-wide key. A vendor with
        standing gets only its own thread. Anyone else is denied.
        """
        project = self.gate.fetch_project(project_id)
        if project is None:
            return AccessDecision.deny(DenialReason.NOT_FOUND, project_found=False)

        if actor.is_admin or (actor.is_business and project.business_id == actor.id):
            return AccessDecision.allow(ThreadKey(project_id=project.id))

        if actor.is_vendor and self.gate.has_standing(project.id, actor.id):
            return AccessDecision.allow(ThreadKey(project_id=project.id, vendor_id=actor.id))

        logger.info(f"Actor {actor.id} ({actor.role}) denied project overview of {project.id}")
        return AccessDecision.deny(DenialReason.NOT_AUTHORIZED)

    # -------------------------------------------------------------------------
    # resolve_visible_threads
    # -------------------------------------------------------------------------

    def resolve_visible_threads(self, actor: Actor) -> set[ThreadKey]:
        """
        Every thread key the actor may read.

        - admin: one project-wide key per project
        - business: one key per (owned project, vendor with a thread)
        - vendor: its own key on each project it is routed to or bid on
        """
        if actor.is_admin:
            return {ThreadKey(project_id=pid) for pid in self.gate.all_project_ids()}

        if actor.is_business:
            return {
                ThreadKey(project_id=pid, vendor_id=vid)
                for pid in self.gate.business_project_ids(actor.id)
                for vid in self.gate.candidate_vendor_ids(pid)
            }

        if actor.is_vendor:
            return {
                ThreadKey(project_id=pid, vendor_id=actor.id)
                for pid in self.gate.vendor_project_ids(actor.id)
            }

        return set()

    # -------------------------------------------------------------------------
    # Inbox summaries
    # -------------------------------------------------------------------------

    def build_thread_summaries(
        self,
        actor: Actor,
        last_activity: dict[ThreadKey, datetime] | None = None,
        keys: set[ThreadKey] | None = None,
    ) -> list[ThreadSummary]:
        """
        Decorate the actor's visible threads for an inbox view.

        Args:
            actor: The caller
            last_activity: Latest message time per thread key (see ThreadStore.latest_activity)
            keys: Already-resolved visible threads; resolved here when omitted

        Returns:
            Summaries, most recently active first, then by project title
        """
        last_activity = last_activity or {}
        if keys is None:
            keys = self.resolve_visible_threads(actor)
        projects = {p.id: p for p in self.gate.fetch_projects({k.project_id for k in keys})}

        summaries: list[ThreadSummary] = []
        facts: dict[UUID, tuple[set[UUID], dict[UUID, BidStatus]]] = {}
        for key in keys:
            project = projects.get(key.project_id)
            if project is None:
                continue

            if key.project_id not in facts:
                facts[key.project_id] = (
                    self.gate.routed_vendor_ids(key.project_id),
                    self.gate.bid_statuses(key.project_id),
                )
            routed, bids = facts[key.project_id]

            bid_status = bids.get(key.vendor_id, BidStatus.NO_BID) if key.vendor_id else BidStatus.NO_BID
            if key.is_project_wide:
                activity = [t for k, t in last_activity.items() if k.project_id == key.project_id]
                last_message_at = max(activity) if activity else None
            else:
                last_message_at = last_activity.get(key)

            summaries.append(ThreadSummary(
                project_id=key.project_id,
                vendor_id=key.vendor_id,
                project_title=project.title,
                project_status=project.status,
                bid_status=bid_status,
                is_routed=key.vendor_id in routed if key.vendor_id else False,
                is_active_project=bid_status is BidStatus.ACCEPTED,
                last_message_at=last_message_at,
            ))

        summaries.sort(key=lambda s: (
            -s.last_message_at.timestamp() if s.last_message_at else float("inf"),
            s.project_title,
            str(s.vendor_id),
        ))
        return summaries
