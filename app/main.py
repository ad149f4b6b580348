# =============================================================================
# app/main.py - FastAPI Application Entry Point
# =============================================================================
# This is the main entry point for the SharkBid messaging API.
# It configures the FastAPI application with middleware, routers, and handlers.
#
# Usage:
#   uvicorn app.main:app --reload
# =============================================================================

import asyncio
import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.websocket import websocket_manager, PUSH_UNAVAILABLE_CLOSE_CODE, REALTIME_CHANNEL
from app.exceptions import (
    SharkBidException,
    sharkbid_exception_handler,
    validation_exception_handler,
)
from app.routers import health, messages, threads, notifications, events
from app.auth import routes as auth_routes
from app.websocket import routes as websocket_routes

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


# Global flag for Redis listener task
_redis_listener_task = None
_shutdown_event = None


async def redis_pubsub_listener():
    """
    Background task that listens to Redis pub/sub and broadcasts to WebSockets.

    This bridges request handlers and Celery workers with WebSocket clients by:
    1. Subscribing to the Redis channel every publisher writes to
    2. Broadcasting each event to the connections on its real-time channel

    On any Redis error the listener resubscribes with exponential backoff.
    While it is down, subscribed sockets are closed with 1011 so clients fall
    back to polling instead of trusting heartbeats from a dead bridge.
    """
    import redis.asyncio as aioredis

    logger.info("Starting Redis pub/sub listener for WebSocket broadcasts")
    attempt = 0

    while not (_shutdown_event and _shutdown_event.is_set()):
        redis_client = None
        pubsub = None
        try:
            redis_client = aioredis.from_url(settings.REDIS_URL)
            pubsub = redis_client.pubsub()
            await pubsub.subscribe(REALTIME_CHANNEL)
            attempt = 0
            websocket_manager.set_realtime_available(True)
            logger.info(f"Redis pub/sub listener subscribed to {REALTIME_CHANNEL}")

            async for message in pubsub.listen():
                if _shutdown_event and _shutdown_event.is_set():
                    break

                if message["type"] == "message":
                    try:
                        event = json.loads(message["data"])
                        channel = event.get("channel")

                        if channel:
                            await websocket_manager.broadcast(channel, event)
                            logger.debug(f"Broadcast {event.get('type')} to {channel}")

                    except json.JSONDecodeError as e:
                        logger.warning(f"Invalid JSON in Redis message: {e}")
                    except Exception as e:
                        logger.error(f"Error processing Redis message: {e}")
            else:
                logger.warning("Redis pub/sub stream ended")

        except asyncio.CancelledError:
            logger.info("Redis pub/sub listener cancelled")
            raise
        except Exception as e:
            logger.error(f"Redis pub/sub listener error: {e}")
        finally:
            try:
                if pubsub is not None:
                    await pubsub.unsubscribe(REALTIME_CHANNEL)
                if redis_client is not None:
                    await redis_client.close()
            except Exception as e:
                logger.debug(f"Redis listener cleanup failed: {e}")

        if _shutdown_event and _shutdown_event.is_set():
            break

        if websocket_manager.set_realtime_available(False):
            await websocket_manager.close_all(PUSH_UNAVAILABLE_CLOSE_CODE, "Real-time bridge unavailable")

        delay = min(
            settings.REALTIME_RECONNECT_BASE_SECONDS * (2 ** attempt),
            settings.REALTIME_RECONNECT_MAX_SECONDS,
        )
        attempt += 1
        logger.info(f"Resubscribing Redis pub/sub listener in {delay:.1f}s (attempt {attempt})")
        await asyncio.sleep(delay)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup and shutdown:
    - Startup: Log config, start the Redis -> WebSocket bridge
    - Shutdown: Stop the bridge
    """
    global _redis_listener_task, _shutdown_event

    # Startup
    logger.info(f"Starting SharkBid messaging API in {settings.ENVIRONMENT} mode")
    logger.info(f"CORS origins: {settings.cors_origins_list}")

    _shutdown_event = asyncio.Event()
    _redis_listener_task = asyncio.create_task(redis_pubsub_listener())

    yield

    # Shutdown
    logger.info("Shutting down SharkBid messaging API")

    if _shutdown_event:
        _shutdown_event.set()
    if _redis_listener_task:
        _redis_listener_task.cancel()
        try:
            await _redis_listener_task
        except asyncio.CancelledError:
            pass


# Create FastAPI application
app = FastAPI(
    title="SharkBid Messaging API",
    description="""
## Project Messaging & Notifications

Scoped conversations between a business and each vendor on a project, plus
per-user notifications.

### Who sees what

| Role | Threads |
|------|---------|
| **Business** | One thread per vendor routed to or bidding on its project (pass `vendorId`) |
| **Vendor** | Only its own thread, on projects it was routed to or bid on |
| **Admin** | Every thread (read-only monitoring view without `vendorId`) |

### Real-time

Connect to `/ws/projects/{project_id}/messages` or `/ws/notifications` with
`?token=<jwt>`. If the socket drops, poll the REST endpoints with the last
`cursor` until it reconnects.

### Quick Start

```bash
# 1. Send a message to a vendor thread
curl -X POST http://localhost:8000/api/v1/projects/{id}/messages \\
  -H "Authorization: Bearer $TOKEN" \\
  -H "Content-Type: application/json" \\
  -d '{"messageText": "Can you start on the 12th?", "vendorId": "..."}'

# 2. Read new messages after the last one you saw
curl "http://localhost:8000/api/v1/projects/{id}/messages?vendorId=...&since={cursor}" \\
  -H "Authorization: Bearer $TOKEN"
```
""",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Auth",
            "description": "Verify JWT tokens and show the caller's role",
        },
        {
            "name": "Messages",
            "description": "Read and send project thread messages",
        },
        {
            "name": "Threads",
            "description": "Inbox and per-project thread overviews",
        },
        {
            "name": "Notifications",
            "description": "Notification bell: list, mark read, delete",
        },
        {
            "name": "Events",
            "description": "Routing/bid change intake from the routing workflow",
        },
        {
            "name": "WebSocket",
            "description": "Real-time thread and notification updates",
        },
        {
            "name": "Health",
            "description": "API health and readiness checks",
        },
    ],
)


# =============================================================================
# Middleware
# =============================================================================

# CORS middleware - allows cross-origin requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list if settings.is_production else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Exception Handlers
# =============================================================================

@app.exception_handler(SharkBidException)
async def handle_sharkbid_exception(request: Request, exc: SharkBidException):
    """Handle custom SharkBid exceptions."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    return await sharkbid_exception_handler(request, exc)


@app.exception_handler(RequestValidationError)
async def handle_validation_exception(request: Request, exc: RequestValidationError):
    """Handle malformed requests."""
    return await validation_exception_handler(request, exc)


@app.exception_handler(Exception)
async def handle_general_exception(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "detail": "An unexpected error occurred",
            "code": "INTERNAL_ERROR",
        }
    )


# =============================================================================
# Routers
# =============================================================================

# Authentication endpoints (router carries the /auth prefix)
app.include_router(
    auth_routes.router,
    prefix="/api/v1",
)

# Health check endpoints
app.include_router(
    health.router,
    prefix="/api/v1",
    tags=["Health"]
)

# Project message endpoints
app.include_router(
    messages.router,
    prefix="/api/v1/projects",
    tags=["Messages"]
)

# Inbox and project thread overviews
app.include_router(
    threads.router,
    prefix="/api/v1",
    tags=["Threads"]
)

# Notification endpoints
app.include_router(
    notifications.router,
    prefix="/api/v1/notifications",
    tags=["Notifications"]
)

# Routing/bid event intake
app.include_router(
    events.router,
    prefix="/api/v1/events",
    tags=["Events"]
)

# WebSocket endpoints (Real-time updates)
app.include_router(
    websocket_routes.router,
    tags=["WebSocket"]
)


# =============================================================================
# Root Endpoint
# =============================================================================

@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint - returns API info.
    """
    return {
        "name": "SharkBid Messaging API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/v1/health",
    }
