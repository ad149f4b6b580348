# =============================================================================
# app/exceptions.py - Custom Exception Handlers
# =============================================================================
# Centralized exception handling for the API.
# Errors should tell HOW to fix, not just WHAT failed.
#
# Taxonomy (the `code` field clients switch on):
#   not_authorized   - actor has no standing for the thread          (403)
#   ambiguous_scope  - business omitted a required vendor scope      (409)
#   not_found        - project / thread / cursor / record is missing (404)
#   validation_error - malformed request or thread key               (422)
#   store_error      - the Supabase store rejected the operation     (500)
#
# partial_fanout_failure never reaches a client: it is logged and retried
# by core/services/notification_fanout.py.
# =============================================================================

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class SharkBidException(Exception):
    """
    Base exception for the SharkBid messaging API.

    All custom exceptions inherit from this class.
    Provides structured error responses with actionable suggestions.
    """

    def __init__(
        self,
        message: str,
        code: str = "sharkbid_error",
        status_code: int = 500,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.suggestion = suggestion
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response dict."""
        result = {
            "success": False,
            "detail": self.message,
            "code": self.code,
        }
        if self.suggestion:
            result["suggestion"] = self.suggestion
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Access Exceptions
# =============================================================================

class NotAuthorizedError(SharkBidException):
    """Raised when the actor has no standing for the requested thread."""

    def __init__(self, project_id: str, reason: str | None = None):
        super().__init__(
            message=reason or f"Not authorized for project: {project_id}",
            code="not_authorized",
            status_code=403,
            suggestion="Only the owning business, routed or bidding vendors, and admins can access a project's messages",
            details={"project_id": project_id}
        )


class AmbiguousScopeError(SharkBidException):
    """Raised when a business must pick one vendor thread but didn't."""

    def __init__(self, project_id: str, vendor_ids: list[str]):
        super().__init__(
            message=f"Project {project_id} has {len(vendor_ids)} vendor threads; vendorId is required",
            code="ambiguous_scope",
            status_code=409,
            suggestion="Pass vendorId to choose which vendor thread to read or write",
            details={"project_id": project_id, "vendor_ids": vendor_ids}
        )


class NotFoundError(SharkBidException):
    """Raised when a project, thread, cursor or record doesn't exist."""

    def __init__(self, resource: str, resource_id: str, suggestion: str | None = None):
        super().__init__(
            message=f"{resource.capitalize()} not found: {resource_id}",
            code="not_found",
            status_code=404,
            suggestion=suggestion or f"Check that the {resource} id is correct",
            details={"resource": resource, "id": resource_id}
        )


class ProjectNotFoundError(NotFoundError):
    """Raised when a project ID doesn't exist."""

    def __init__(self, project_id: str):
        super().__init__("project", project_id)


class ThreadNotFoundError(NotFoundError):
    """Raised when the requested vendor thread doesn't exist for a project."""

    def __init__(self, project_id: str, vendor_id: str | None):
        super().__init__(
            "thread",
            f"{project_id}/{vendor_id or '-'}",
            suggestion="Only vendors routed to the project or with a bid on it have a thread",
        )


class CursorNotFoundError(NotFoundError):
    """Raised when a `since` cursor doesn't name a message in the thread."""

    def __init__(self, cursor: str):
        super().__init__(
            "cursor",
            cursor,
            suggestion="Pass the id of the last message you received from this thread, or omit it",
        )


class NotificationNotFoundError(NotFoundError):
    """Raised when a notification doesn't exist or belongs to someone else."""

    def __init__(self, notification_id: str):
        super().__init__("notification", notification_id)


# =============================================================================
# Input / Store Exceptions
# =============================================================================

class InvalidThreadKeyError(SharkBidException):
    """Raised when a thread key has malformed identifiers."""

    def __init__(self, field: str, value: Any):
        super().__init__(
            message=f"Invalid {field}: {value!r}",
            code="validation_error",
            status_code=422,
            suggestion=f"{field} must be a UUID",
            details={"field": field, "value": str(value)}
        )


class InvalidMessageError(SharkBidException):
    """Raised when a message body fails validation."""

    def __init__(self, reason: str):
        super().__init__(
            message=f"Invalid message: {reason}",
            code="validation_error",
            status_code=422,
            suggestion="Send non-empty messageText (or an imageUrl) within the length limit",
        )


class StoreError(SharkBidException):
    """Raised when the Supabase store fails an operation."""

    def __init__(self, operation: str, error: str):
        super().__init__(
            message=f"Store operation failed ({operation}): {error}",
            code="store_error",
            status_code=500,
            suggestion="Try again later or contact support if the issue persists",
            details={"operation": operation}
        )


# =============================================================================
# Exception Handlers
# =============================================================================

async def sharkbid_exception_handler(
    request: Request,
    exc: SharkBidException
) -> JSONResponse:
    """
    Convert SharkBidException to JSON response.

    Returns structured error with:
    - detail: Human-readable message
    - code: Machine-readable error code
    - suggestion: How to fix (if available)
    - details: Additional context
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


async def validation_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """
    Handle Pydantic validation errors.

    Converts validation errors to user-friendly messages.
    """
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "detail": "Validation error",
            "code": "validation_error",
            "errors": str(exc)
        }
    )
