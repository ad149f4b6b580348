# =============================================================================
# app/routers/notifications.py - Notification Bell Endpoints
# =============================================================================
# The caller's own notifications. Every endpoint is scoped to the
# authenticated user; other users' notifications answer 404. Supabase calls
# are blocking, so they run in worker threads.
# =============================================================================

import asyncio
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query

from app.auth import get_current_actor
from core.models.actor import Actor
from core.services.notification_service import NotificationService

router = APIRouter()


@router.get("")
async def list_notifications(
    actor: Actor = Depends(get_current_actor),
    unread_only: Annotated[bool, Query(alias="unreadOnly", description="Only unread notifications")] = False,
    limit: Annotated[int, Query(ge=1, le=100, description="Maximum notifications to return")] = 50,
):
    """
    List the caller's notifications, newest first.
    """
    notifications = await asyncio.to_thread(
        NotificationService.list_notifications, actor.id, unread_only=unread_only, limit=limit
    )
    return {
        "success": True,
        "data": [n.model_dump(mode="json") for n in notifications],
    }


@router.get("/unread-count")
async def unread_count(actor: Actor = Depends(get_current_actor)):
    """Unread badge count."""
    return {
        "success": True,
        "count": await asyncio.to_thread(NotificationService.unread_count, actor.id),
    }


@router.patch("/read-all")
async def mark_all_read(actor: Actor = Depends(get_current_actor)):
    """Mark every unread notification as read."""
    updated = await asyncio.to_thread(NotificationService.mark_all_read, actor.id)
    return {
        "success": True,
        "updated": updated,
    }


@router.patch("/{notification_id}")
async def mark_read(
    notification_id: Annotated[UUID, Path(description="Notification UUID")],
    actor: Actor = Depends(get_current_actor),
):
    """Mark one notification as read."""
    notification = await asyncio.to_thread(NotificationService.mark_read, notification_id, actor.id)
    return {
        "success": True,
        "data": notification.model_dump(mode="json"),
    }


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: Annotated[UUID, Path(description="Notification UUID")],
    actor: Actor = Depends(get_current_actor),
):
    """Delete one notification."""
    await asyncio.to_thread(NotificationService.delete, notification_id, actor.id)
    return {
        "success": True,
        "message": "Notification deleted",
    }
