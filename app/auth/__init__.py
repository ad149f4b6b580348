# =============================================================================
# app/auth/__init__.py - Authentication Module
# =============================================================================
# Provides JWT-based authentication using Supabase Auth.
#
# Usage:
#   from app.auth import get_current_actor
#
#   @router.get("/protected")
#   async def protected(actor: Actor = Depends(get_current_actor)):
#       return {"user_id": actor.id}
# =============================================================================

from app.auth.dependencies import (
    authenticate_token,
    get_current_actor,
    require_admin,
)
from app.auth.models import ActorResponse

__all__ = [
    "authenticate_token",
    "get_current_actor",
    "require_admin",
    "ActorResponse",
]
