# =============================================================================
# app/routers/ - API Route Definitions
# =============================================================================
# This package contains FastAPI routers organized by feature:
# - health.py: Health check endpoints
# - messages.py: Read and send messages in one project thread
# - threads.py: Inbox summaries and per-project thread overviews
# - notifications.py: Notification bell endpoints
# - events.py: Routing/bid change intake (admin only)
#
# Each router is mounted in main.py with a URL prefix.
# =============================================================================

from . import health
from . import messages
from . import threads
from . import notifications
from . import events

__all__ = [
    "health",
    "messages",
    "threads",
    "notifications",
    "events",
]
