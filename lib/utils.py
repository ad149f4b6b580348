# =============================================================================
# lib/utils.py - Shared Utilities
# =============================================================================
# Common utilities used across the application.
# =============================================================================

from datetime import datetime, timezone
from uuid import UUID


# =============================================================================
# UUID Utilities
# =============================================================================

def is_uuid(value: object) -> bool:
    """Check whether a value is a UUID or a string that parses as one."""
    if isinstance(value, UUID):
        return True
    if not isinstance(value, str):
        return False
    try:
        UUID(value)
    except ValueError:
        return False
    return True


# =============================================================================
# Timestamp Utilities
# =============================================================================

def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime) -> datetime:
    """
    Parse a Supabase timestamp into an aware datetime.

    PostgREST returns ISO strings, sometimes with a trailing "Z" and sometimes
    with fewer than six fractional digits, which older fromisoformat rejects.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    text = value.strip().replace("Z", "+00:00")
    # Pad fractional seconds to 6 digits
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        while rest and rest[0].isdigit():
            digits, rest = digits + rest[0], rest[1:]
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"

    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as an ISO string with microsecond precision (UTC)."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
