# =============================================================================
# app/routers/health.py - Health Check Endpoints
# =============================================================================
# Liveness, readiness and a basic status check for load balancers.
#
# Readiness covers the two things messaging depends on: Supabase (threads and
# notifications) and the Redis bus behind WebSocket push. Redis being down
# only degrades delivery, since clients fall back to polling.
# =============================================================================

import asyncio
import logging

from fastapi import APIRouter
from pydantic import BaseModel

from app.config import settings
from app.websocket import websocket_manager
from lib.utils import utc_now

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Response Models
# =============================================================================

class HealthResponse(BaseModel):
    """Basic health check response."""
    status: str
    timestamp: str
    environment: str
    version: str


class DependencyChecks(BaseModel):
    database: str
    realtime: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""
    status: str
    checks: DependencyChecks
    websocket_connections: int
    timestamp: str


class LivenessResponse(BaseModel):
    status: str
    timestamp: str


# =============================================================================
# Dependency checks
# =============================================================================

def _check_database() -> str:
    from lib.supabase_client import SupabaseClient

    try:
        SupabaseClient.get_client().table("project_messages").select("id").limit(1).execute()
        return "healthy"
    except Exception as e:
        logger.warning(f"Readiness: database check failed: {e}")
        return f"unhealthy: {str(e)[:50]}"


def _check_realtime() -> str:
    from app.websocket.broadcast import get_redis_client

    try:
        get_redis_client().ping()
        return "healthy"
    except Exception as e:
        logger.warning(f"Readiness: Redis check failed: {e}")
        return f"unhealthy: {str(e)[:50]}"


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse(
        status="healthy",
        timestamp=utc_now().isoformat(),
        environment=settings.ENVIRONMENT,
        version="1.0.0",
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check():
    """
    Readiness check endpoint.

    "ready" when both dependencies answer. A failed database check is
    "unavailable" (nothing can be read or written); a failed Redis check is
    "degraded" (messages still flow, push does not).
    """
    database, realtime = await asyncio.gather(
        asyncio.to_thread(_check_database),
        asyncio.to_thread(_check_realtime),
    )

    if database != "healthy":
        overall = "unavailable"
    elif realtime != "healthy":
        overall = "degraded"
    else:
        overall = "ready"

    return ReadinessResponse(
        status=overall,
        checks=DependencyChecks(database=database, realtime=realtime),
        websocket_connections=websocket_manager.get_connection_count(),
        timestamp=utc_now().isoformat(),
    )


@router.get("/health/live", response_model=LivenessResponse)
async def liveness_check():
    """Process is up; used for restart decisions."""
    return LivenessResponse(
        status="alive",
        timestamp=utc_now().isoformat(),
    )
