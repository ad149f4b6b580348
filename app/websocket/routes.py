# =============================================================================
# app/websocket/routes.py - WebSocket Routes
# =============================================================================
# WebSocket endpoints for real-time thread and notification updates.
#
# Connect:
#   ws://host/ws/projects/{project_id}/messages?token={jwt}&vendorId={vendor}
#   ws://host/ws/notifications?token={jwt}
#
# Frames sent by the server:
#   - {"type": "connected", "channel": "...", "heartbeat_interval": 15}
#   - {"type": "heartbeat"}  every HEARTBEAT_INTERVAL_SECONDS
#   - {"type": "message", "channel": "...", "data": {...}}
#   - {"type": "notification", "channel": "...", "data": {...}}
# Client may send "ping" (or {"type": "ping"}) and gets a pong back.
#
# Close codes:
#   4001 invalid token, 4003 not_authorized, 4004 not_found,
#   4009 ambiguous_scope, 1011 real-time bridge unavailable (retryable)
# =============================================================================

import asyncio
import json
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect

from app.auth import authenticate_token, require_admin
from app.config import settings
from app.dependencies import get_access_resolver
from app.websocket.broadcast import notification_channel
from app.websocket.manager import PUSH_UNAVAILABLE_CLOSE_CODE, websocket_manager
from core.models.access import DenialReason, Operation
from core.models.actor import Actor
from core.services.access_resolver import AccessResolver

logger = logging.getLogger(__name__)

router = APIRouter()

CLOSE_CODES = {
    DenialReason.NOT_AUTHORIZED: 4003,
    DenialReason.NOT_FOUND: 4004,
    DenialReason.AMBIGUOUS_SCOPE: 4009,
}


async def _reject(websocket: WebSocket, code: int, reason: str) -> None:
    """Accept then close, so the client receives the close code."""
    await websocket.accept()
    await websocket.close(code=code, reason=reason)


async def _authenticate(websocket: WebSocket, token: str) -> Actor | None:
    """Verify the token, closing the socket with 4001 when it's invalid."""
    try:
        return await asyncio.to_thread(authenticate_token, token)
    except HTTPException as e:
        logger.warning(f"WebSocket auth failed: {e.detail}")
        await _reject(websocket, 4001, "Invalid token")
        return None


async def _send_heartbeats(websocket: WebSocket) -> None:
    """Heartbeat only while events can actually arrive; otherwise close with 1011."""
    while True:
        await asyncio.sleep(settings.HEARTBEAT_INTERVAL_SECONDS)
        if not websocket_manager.realtime_available:
            await websocket.close(code=PUSH_UNAVAILABLE_CLOSE_CODE, reason="Real-time bridge unavailable")
            return
        await websocket.send_json({"type": "heartbeat"})


async def _serve(websocket: WebSocket, channel: str) -> None:
    """Subscribe the socket to `channel` until the client goes away."""
    if not websocket_manager.realtime_available:
        logger.warning(f"Refusing subscription to {channel}: real-time bridge down")
        await _reject(websocket, PUSH_UNAVAILABLE_CLOSE_CODE, "Real-time bridge unavailable")
        return

    await websocket_manager.connect(channel, websocket)
    heartbeat = asyncio.create_task(_send_heartbeats(websocket))

    try:
        await websocket.send_json({
            "type": "connected",
            "channel": channel,
            "heartbeat_interval": settings.HEARTBEAT_INTERVAL_SECONDS,
        })

        while True:
            try:
                data = await websocket.receive_text()

                if data == "ping":
                    await websocket.send_text("pong")
                    continue

                try:
                    frame = json.loads(data)
                except json.JSONDecodeError:
                    frame = None
                if isinstance(frame, dict) and frame.get("type") == "ping":
                    await websocket.send_json({"type": "pong"})
                else:
                    logger.debug(f"WebSocket received: {data[:100]}")

            except WebSocketDisconnect:
                raise
            except Exception as e:
                logger.warning(f"WebSocket receive error: {e}")
                break

    except WebSocketDisconnect:
        logger.info(f"WebSocket client disconnected from {channel}")
    finally:
        heartbeat.cancel()
        await asyncio.gather(heartbeat, return_exceptions=True)
        websocket_manager.disconnect(channel, websocket)


@router.websocket("/ws/projects/{project_id}/messages")
async def thread_websocket(
    websocket: WebSocket,
    project_id: UUID,
    token: str = Query(..., description="JWT token for authentication"),
    vendor_id: UUID | None = Query(default=None, alias="vendorId"),
    resolver: AccessResolver = Depends(get_access_resolver),
):
    """
    WebSocket endpoint for new messages of one thread.

    The same access rules as GET /projects/{project_id}/messages apply. Admins
    without vendorId subscribe to the whole project.
    """
    actor = await _authenticate(websocket, token)
    if actor is None:
        return

    try:
        decision = await asyncio.to_thread(
            resolver.authorize, actor, project_id, vendor_id, Operation.READ
        )
    except Exception as e:
        logger.error(f"WebSocket: error resolving access to {project_id}: {e}")
        await _reject(websocket, 4000, "Server error")
        return

    if not decision.allowed:
        logger.warning(f"WebSocket access denied: {actor.id} on project {project_id} ({decision.reason.value})")
        await _reject(websocket, CLOSE_CODES[decision.reason], decision.reason.value)
        return

    await _serve(websocket, decision.thread_key.channel)


@router.websocket("/ws/notifications")
async def notifications_websocket(
    websocket: WebSocket,
    token: str = Query(..., description="JWT token for authentication"),
):
    """WebSocket endpoint for the caller's own notifications."""
    actor = await _authenticate(websocket, token)
    if actor is None:
        return

    await _serve(websocket, notification_channel(str(actor.id)))


@router.get("/ws/status")
async def websocket_status(admin: Actor = Depends(require_admin)):
    """
    Get WebSocket connection statistics (admins only).

    Channel names reveal which vendors hold threads on which projects.

    Returns:
        dict: Connection counts, active channels and bridge state
    """
    channels = websocket_manager.get_active_channels()
    return {
        "total_connections": websocket_manager.get_connection_count(),
        "active_channels": channels,
        "channel_count": len(channels),
        "realtime_available": websocket_manager.realtime_available,
    }
