# =============================================================================
# app/auth/routes.py - Authentication Routes
# =============================================================================
# API endpoints for authentication-related operations.
#
# Note: Actual signup/login is handled by Supabase Auth client-side.
# These routes tell a client who it is and which role the messaging rules
# will apply to it.
# =============================================================================

import asyncio
import logging

from fastapi import APIRouter, Depends

from app.auth.dependencies import get_current_actor
from app.auth.models import ActorResponse
from core.models.actor import Actor
from lib.supabase_client import SupabaseClient, SupabaseClientError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.get("/me", response_model=ActorResponse)
async def get_current_actor_info(
    actor: Actor = Depends(get_current_actor)
) -> ActorResponse:
    """
    Get the current authenticated user's role and profile.

    Raises:
        401: If not authenticated
    """
    company_name = None
    try:
        profile = await asyncio.to_thread(SupabaseClient.fetch_profile, actor.id)
        if profile:
            company_name = profile.get("company_name")
    except SupabaseClientError as e:
        logger.warning(f"Could not fetch profile for {actor.id}: {e}")

    return ActorResponse(
        id=actor.id,
        email=actor.email,
        role=actor.role,
        company_name=company_name,
    )


@router.get("/verify")
async def verify_token(
    actor: Actor = Depends(get_current_actor)
) -> dict:
    """
    Verify that the current token is valid.

    Useful for checking if a stored token is still valid.

    Raises:
        401: If token is invalid or expired
    """
    return {
        "valid": True,
        "user_id": str(actor.id),
        "email": actor.email,
        "role": actor.role.value if actor.role else None,
    }
