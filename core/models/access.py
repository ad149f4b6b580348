# =============================================================================
# core/models/access.py - Access Decision Schemas
# =============================================================================
# The Access Resolver answers with an AccessDecision instead of raising, so the
# rules can be tested as a pure predicate. Callers that want an exception use
# decision.raise_for_denial().
# =============================================================================

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from .message import ThreadKey


class Operation(str, Enum):
    READ = "read"
    WRITE = "write"


class DenialReason(str, Enum):
    """Typed reasons a thread access is refused. The caller must surface them."""
    NOT_AUTHORIZED = "not_authorized"
    AMBIGUOUS_SCOPE = "ambiguous_scope"
    NOT_FOUND = "not_found"


class AccessDecision(BaseModel):
    """
    Outcome of authorize().

    On allow, `thread_key` is the resolved scope: the actor's own thread for a
    vendor, the chosen vendor thread for a business, or the project-wide key
    for an admin read without vendor scope.
    """

    allowed: bool
    thread_key: ThreadKey | None = None
    reason: DenialReason | None = None
    candidate_vendor_ids: list[UUID] = Field(
        default_factory=list,
        description="Vendors routed to or bidding on the project (filled on ambiguous_scope)"
    )
    project_found: bool = True

    @classmethod
    def allow(cls, thread_key: ThreadKey) -> "AccessDecision":
        return cls(allowed=True, thread_key=thread_key)

    @classmethod
    def deny(
        cls,
        reason: DenialReason,
        candidate_vendor_ids: list[UUID] | None = None,
        project_found: bool = True,
    ) -> "AccessDecision":
        return cls(
            allowed=False,
            reason=reason,
            candidate_vendor_ids=candidate_vendor_ids or [],
            project_found=project_found,
        )

    def raise_for_denial(self, project_id: UUID | str, vendor_id: UUID | str | None = None) -> ThreadKey:
        """
        Return the resolved thread key, or raise the exception matching the denial.

        Raises:
            NotAuthorizedError, AmbiguousScopeError, ThreadNotFoundError, ProjectNotFoundError
        """
        from app.exceptions import (
            AmbiguousScopeError,
            NotAuthorizedError,
            ProjectNotFoundError,
            ThreadNotFoundError,
        )

        if self.allowed and self.thread_key is not None:
            return self.thread_key

        project_id = str(project_id)
        if self.reason is DenialReason.AMBIGUOUS_SCOPE:
            raise AmbiguousScopeError(project_id, [str(v) for v in self.candidate_vendor_ids])
        if self.reason is DenialReason.NOT_FOUND:
            if not self.project_found:
                raise ProjectNotFoundError(project_id)
            raise ThreadNotFoundError(project_id, str(vendor_id) if vendor_id else None)
        raise NotAuthorizedError(project_id)
