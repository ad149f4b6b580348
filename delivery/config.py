# =============================================================================
# delivery/config.py - Client Channel Settings
# =============================================================================
# Plain dataclasses so the client package never needs server secrets.
# The cadences match the server defaults in app/config.py.
# =============================================================================

from dataclasses import dataclass
from enum import Enum


@dataclass
class ChannelConfig:
    """
    Connection and timing settings for one client session.

    Example:
        config = ChannelConfig(base_url="https://api.sharkbid.com", token=jwt)
    """

    base_url: str = "http://localhost:8000"
    token: str = ""
    api_prefix: str = "/api/v1"

    # Fallback polling cadences (seconds)
    message_poll_interval: float = 10.0
    notification_poll_interval: float = 30.0

    # No frame (data or heartbeat) for this long means the push channel is dead
    heartbeat_timeout: float = 45.0
    subscribe_timeout: float = 10.0

    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0

    # Consecutive poll failures before connectivity_degraded is raised
    max_poll_failures: int = 3

    request_timeout: float = 10.0

    @property
    def ws_base_url(self) -> str:
        """base_url with the http(s) scheme swapped for ws(s)."""
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):]
        if self.base_url.startswith("http://"):
            return "ws://" + self.base_url[len("http://"):]
        return self.base_url


class FeedKind(str, Enum):
    MESSAGES = "messages"
    NOTIFICATIONS = "notifications"


@dataclass(frozen=True)
class Feed:
    """
    One stream a client follows: a project thread or the user's notifications.

    Message feeds are read with a cursor (id of the last message seen) and
    kept oldest first. The notification feed is re-read whole, newest first.
    """

    kind: FeedKind
    project_id: str | None = None
    vendor_id: str | None = None

    @classmethod
    def messages(cls, project_id: str, vendor_id: str | None = None) -> "Feed":
        return cls(FeedKind.MESSAGES, str(project_id), str(vendor_id) if vendor_id else None)

    @classmethod
    def notifications(cls) -> "Feed":
        return cls(FeedKind.NOTIFICATIONS)

    @property
    def uses_cursor(self) -> bool:
        return self.kind is FeedKind.MESSAGES

    @property
    def newest_first(self) -> bool:
        return self.kind is FeedKind.NOTIFICATIONS

    @property
    def data_frame_type(self) -> str:
        """Push frame type carrying this feed's items."""
        return "message" if self.kind is FeedKind.MESSAGES else "notification"

    @property
    def http_path(self) -> str:
        if self.kind is FeedKind.MESSAGES:
            return f"/projects/{self.project_id}/messages"
        return "/notifications"

    @property
    def ws_path(self) -> str:
        if self.kind is FeedKind.MESSAGES:
            return f"/ws/projects/{self.project_id}/messages"
        return "/ws/notifications"

    def query_params(self, cursor: str | None = None) -> dict[str, str]:
        params = {}
        if self.vendor_id:
            params["vendorId"] = self.vendor_id
        if cursor and self.uses_cursor:
            params["since"] = cursor
        return params

    def poll_interval(self, config: ChannelConfig) -> float:
        if self.kind is FeedKind.MESSAGES:
            return config.message_poll_interval
        return config.notification_poll_interval

    def __str__(self) -> str:
        if self.kind is FeedKind.MESSAGES:
            return f"messages:{self.project_id}/{self.vendor_id or '*'}"
        return "notifications"
