# =============================================================================
# delivery/ - Client-Side Delivery Channels
# =============================================================================
# Keeps a client's threads and notifications current: WebSocket push while
# it works, REST polling while it doesn't, merged into one de-duplicated
# stream per feed.
#
# This package only talks to the API over the network. It never imports the
# server packages (app/, core/, lib/) and needs no server configuration.
#
# Usage:
#   from delivery import ChannelConfig, ClientSession
#
#   session = ClientSession(ChannelConfig(base_url=url, token=jwt), on_message=render)
#   await session.start()
#   await session.open_thread(project_id, vendor_id)
# =============================================================================

from delivery.config import ChannelConfig, Feed, FeedKind
from delivery.manager import ChannelState, DeliveryChannelManager
from delivery.merge import MergedStream
from delivery.session import ClientSession
from delivery.transports import (
    CursorLostError,
    HttpPollTransport,
    PollTransport,
    PushConnection,
    PushTransport,
    TransportError,
    WebSocketPushTransport,
)

__all__ = [
    # Config
    "ChannelConfig",
    "Feed",
    "FeedKind",
    # State machine
    "ChannelState",
    "DeliveryChannelManager",
    "MergedStream",
    "ClientSession",
    # Transports
    "CursorLostError",
    "HttpPollTransport",
    "PollTransport",
    "PushConnection",
    "PushTransport",
    "TransportError",
    "WebSocketPushTransport",
]
