# =============================================================================
# app/auth/models.py - Authentication Models
# =============================================================================
# Pydantic models for authentication responses.
# The authenticated caller itself is core.models.actor.Actor.
# =============================================================================

from pydantic import BaseModel
from uuid import UUID
from typing import Optional

from core.models.actor import ActorRole


class ActorResponse(BaseModel):
    """
    The caller's identity and marketplace profile.

    company_name comes from the profiles table and is None for users
    without a profile row.
    """
    id: UUID
    email: Optional[str] = None
    role: Optional[ActorRole] = None
    company_name: Optional[str] = None
