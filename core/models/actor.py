# =============================================================================
# core/models/actor.py - Actor Schema
# =============================================================================
# The authenticated caller as seen by the access rules: a user id plus the
# marketplace role stored on the Supabase profile (or in the JWT metadata).
# =============================================================================

from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class ActorRole(str, Enum):
    """
    Marketplace roles.

    - business: Posts projects and talks to each vendor separately
    - vendor: Sees only its own thread on projects it was routed to or bid on
    - admin: Monitors every thread of every project
    """
    BUSINESS = "business"
    VENDOR = "vendor"
    ADMIN = "admin"


class Actor(BaseModel):
    """An authenticated user acting in a role. `role` is None for users without a profile."""

    id: UUID
    role: ActorRole | None = None
    email: str | None = None

    model_config = {"frozen": True}

    @property
    def is_admin(self) -> bool:
        return self.role is ActorRole.ADMIN

    @property
    def is_business(self) -> bool:
        return self.role is ActorRole.BUSINESS

    @property
    def is_vendor(self) -> bool:
        return self.role is ActorRole.VENDOR
