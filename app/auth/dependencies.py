# =============================================================================
# app/auth/dependencies.py - FastAPI Auth Dependencies
# =============================================================================
# Provides dependency injection for authentication.
#
# Supports both:
# - ES256 (new Supabase JWT signing keys) via JWKS
# - HS256 (legacy Supabase JWT secret) as fallback
#
# The caller's marketplace role is read from the token's app_metadata.role,
# then the profiles table. user_metadata is never trusted for the role.
#
# Usage:
#   from app.auth import get_current_actor
#   from core.models.actor import Actor
#
#   @router.get("/protected")
#   async def protected(actor: Actor = Depends(get_current_actor)):
#       return {"user_id": actor.id, "role": actor.role}
# =============================================================================

import asyncio
import logging
import time
from typing import Any
from uuid import UUID

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError, ExpiredSignatureError

from app.config import settings
from app.exceptions import NotAuthorizedError
from core.models.actor import Actor, ActorRole
from lib.supabase_client import SupabaseClient, SupabaseClientError

logger = logging.getLogger(__name__)

# HTTP Bearer token extractor
security = HTTPBearer()

# Cache for JWKS keys
_jwks_cache: dict = {}
_jwks_cache_time: float = 0
JWKS_CACHE_TTL = 3600  # 1 hour


def _get_jwks_url() -> str:
    """Get the JWKS URL from Supabase URL."""
    supabase_url = settings.SUPABASE_URL.rstrip('/')
    return f"{supabase_url}/auth/v1/.well-known/jwks.json"


def _fetch_jwks() -> dict:
    """Fetch JWKS from Supabase with caching."""
    global _jwks_cache, _jwks_cache_time

    current_time = time.time()

    # Return cached if valid
    if _jwks_cache and (current_time - _jwks_cache_time) < JWKS_CACHE_TTL:
        return _jwks_cache

    try:
        jwks_url = _get_jwks_url()
        response = httpx.get(jwks_url, timeout=10)
        response.raise_for_status()
        _jwks_cache = response.json()
        _jwks_cache_time = current_time
        logger.debug(f"Fetched JWKS from {jwks_url}")
        return _jwks_cache
    except Exception as e:
        logger.warning(f"Failed to fetch JWKS: {e}")
        # Return cached even if expired, as fallback
        if _jwks_cache:
            return _jwks_cache
        return {"keys": []}


def _get_signing_key(token: str) -> tuple[Any, str]:
    """
    Get the appropriate signing key for a token.

    Returns:
        Tuple of (key, algorithm) to use for verification
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError:
        return settings.SUPABASE_JWT_SECRET, "HS256"

    alg = unverified_header.get("alg", "HS256")
    kid = unverified_header.get("kid")

    if alg == "HS256":
        return settings.SUPABASE_JWT_SECRET, "HS256"

    if kid:
        for key in _fetch_jwks().get("keys", []):
            if key.get("kid") == kid:
                return key, alg

    logger.warning(f"Could not find key for alg={alg}, kid={kid}, falling back to HS256")
    return settings.SUPABASE_JWT_SECRET, "HS256"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# =============================================================================
# Role Resolution
# =============================================================================

def _role_from_claims(payload: dict[str, Any]) -> ActorRole | None:
    # user_metadata is writable by the user, so only app_metadata counts
    role = (payload.get("app_metadata") or {}).get("role")
    if role:
        try:
            return ActorRole(role)
        except ValueError:
            logger.debug(f"Ignoring unknown app_metadata.role: {role}")
    return None


def resolve_role(payload: dict[str, Any], user_id: UUID) -> ActorRole | None:
    """
    Marketplace role of the token's user.

    Checks the JWT app_metadata claim first and falls back to profiles.role.
    Returns None when no role is recorded anywhere.
    """
    role = _role_from_claims(payload)
    if role is not None:
        return role

    try:
        profile = SupabaseClient.fetch_profile(user_id)
    except SupabaseClientError as e:
        logger.warning(f"Could not load profile for {user_id}: {e}")
        return None

    if profile and profile.get("role"):
        try:
            return ActorRole(profile["role"])
        except ValueError:
            logger.warning(f"Profile {user_id} has unknown role: {profile['role']}")
    return None


def authenticate_token(token: str) -> Actor:
    """
    Verify a Supabase JWT and build the Actor it identifies.

    Shared by HTTP routes and WebSocket endpoints (which pass the token as a
    query parameter).

    Raises:
        HTTPException: 401 if token is invalid, expired, or has no usable subject
    """
    try:
        signing_key, algorithm = _get_signing_key(token)
        payload = jwt.decode(
            token,
            signing_key,
            algorithms=[algorithm],
            audience="authenticated"
        )
    except ExpiredSignatureError:
        logger.warning("JWT token has expired")
        raise _unauthorized("Token has expired")
    except JWTError as e:
        logger.warning(f"JWT validation failed: {e}")
        raise _unauthorized(f"Invalid token: {str(e)}")

    user_id = payload.get("sub")
    if not user_id:
        logger.warning("JWT token missing 'sub' claim")
        raise _unauthorized("Invalid token: missing user ID")

    try:
        user_uuid = UUID(user_id)
    except ValueError:
        logger.warning(f"Invalid UUID in token: {user_id}")
        raise _unauthorized("Invalid token: malformed user ID")

    actor = Actor(id=user_uuid, role=resolve_role(payload, user_uuid), email=payload.get("email"))
    logger.debug(f"Authenticated {actor.role.value if actor.role else 'unassigned'} user: {user_id}")
    return actor


# =============================================================================
# Dependencies
# =============================================================================

async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Actor:
    """
    Extract and validate the caller from the Supabase JWT.

    Returns:
        Actor: The authenticated user and their marketplace role

    Raises:
        HTTPException: 401 if token is invalid or expired
    """
    # May hit the profiles table or the JWKS endpoint
    return await asyncio.to_thread(authenticate_token, credentials.credentials)


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Allow only admins (routing event intake)."""
    if not actor.is_admin:
        raise NotAuthorizedError("*", reason="Admin role required")
    return actor
