# =============================================================================
# app/routers/messages.py - Project Message Endpoints
# =============================================================================
# Read and write one thread of a project.
#
# Every request is authorized first; the resolved thread key (never the raw
# vendorId) is what reaches the store. Businesses with several vendor threads
# must pass vendorId; vendors are always scoped to their own thread.
# =============================================================================

import asyncio
import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Path, Query, status

from app.auth import get_current_actor
from app.dependencies import FanoutDep, ResolverDep, StoreDep
from core.models.access import Operation
from core.models.actor import Actor
from core.models.message import MessageCreate

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/{project_id}/messages")
async def list_messages(
    project_id: Annotated[UUID, Path(description="Project UUID")],
    resolver: ResolverDep,
    store: StoreDep,
    actor: Actor = Depends(get_current_actor),
    vendor_id: Annotated[UUID | None, Query(alias="vendorId", description="Vendor thread to read")] = None,
    since: Annotated[UUID | None, Query(description="Id of the last message already received")] = None,
):
    """
    List a thread's messages in order.

    Admins without vendorId get every vendor thread of the project merged.
    Pass the returned cursor as `since` to fetch only newer messages.
    """
    decision = await asyncio.to_thread(
        resolver.authorize, actor, project_id, vendor_id, Operation.READ
    )
    thread_key = decision.raise_for_denial(project_id, vendor_id)

    messages = await store.list(thread_key, since=since)
    cursor = messages[-1].id if messages else since

    return {
        "success": True,
        "data": [m.model_dump(mode="json") for m in messages],
        "cursor": str(cursor) if cursor else None,
    }


@router.post("/{project_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    project_id: Annotated[UUID, Path(description="Project UUID")],
    body: MessageCreate,
    background_tasks: BackgroundTasks,
    resolver: ResolverDep,
    store: StoreDep,
    fanout: FanoutDep,
    actor: Actor = Depends(get_current_actor),
):
    """
    Append a message to one vendor thread.

    Participants are notified after the response; a notification failure
    never fails the send.
    """
    decision = await asyncio.to_thread(
        resolver.authorize, actor, project_id, body.vendor_id, Operation.WRITE
    )
    thread_key = decision.raise_for_denial(project_id, body.vendor_id)

    message = await store.append(thread_key, actor.id, body)
    background_tasks.add_task(fanout.on_message_appended, message, thread_key)

    return {
        "success": True,
        "data": message.model_dump(mode="json"),
    }
