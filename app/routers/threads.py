# =============================================================================
# app/routers/threads.py - Thread Overview Endpoints
# =============================================================================
# - GET /threads: the caller's inbox (one entry per visible thread)
# - GET /projects/{project_id}/threads: a project's messages grouped by vendor
#   thread. Routed or bidding vendors without messages still get an entry.
# =============================================================================

import asyncio
import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Path

from app.auth import get_current_actor
from app.dependencies import ResolverDep, StoreDep
from core.models.actor import Actor
from core.models.project import BidStatus

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/threads")
async def list_threads(
    resolver: ResolverDep,
    store: StoreDep,
    actor: Actor = Depends(get_current_actor),
):
    """
    List every thread the caller can read, most recently active first.

    Vendors see one entry per project they were routed to or bid on, with
    their bid status. Accepted bids are flagged as active projects.
    """
    keys = await asyncio.to_thread(resolver.resolve_visible_threads, actor)
    activity = await store.latest_activity({k.project_id for k in keys}) if keys else {}
    summaries = await asyncio.to_thread(resolver.build_thread_summaries, actor, activity, keys)

    return {
        "success": True,
        "data": [s.model_dump(mode="json") for s in summaries],
    }


@router.get("/projects/{project_id}/threads")
async def list_project_threads(
    project_id: Annotated[UUID, Path(description="Project UUID")],
    resolver: ResolverDep,
    store: StoreDep,
    actor: Actor = Depends(get_current_actor),
):
    """
    Get a project's messages grouped per vendor thread.

    Admins and the owning business see every vendor thread; a vendor sees
    only its own.
    """
    decision = await asyncio.to_thread(resolver.authorize_overview, actor, project_id)
    thread_key = decision.raise_for_denial(project_id)

    messages = await store.list(thread_key)
    grouped = store.group_by_vendor(messages)

    gate = resolver.gate
    if thread_key.is_project_wide:
        vendor_ids = await asyncio.to_thread(gate.candidate_vendor_ids, project_id)
    else:
        vendor_ids = [thread_key.vendor_id]
    routed = await asyncio.to_thread(gate.routed_vendor_ids, project_id)
    bids = await asyncio.to_thread(gate.bid_statuses, project_id)

    # Candidates first (stable order), then any legacy groups without standing
    ordered = list(vendor_ids) + [v for v in grouped if v not in vendor_ids and thread_key.is_project_wide]

    threads = []
    for vendor_id in ordered:
        threads.append({
            "vendor_id": str(vendor_id) if vendor_id else None,
            "bid_status": bids.get(vendor_id, BidStatus.NO_BID).value if vendor_id else None,
            "is_routed": vendor_id in routed,
            "messages": [m.model_dump(mode="json") for m in grouped.get(vendor_id, [])],
        })

    return {
        "success": True,
        "data": threads,
    }
