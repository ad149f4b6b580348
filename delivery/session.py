# =============================================================================
# delivery/session.py - Client Session
# =============================================================================
# Per-login lifecycle for a client: the notification feed for the whole
# session plus at most one open thread feed.
#
# - open_thread() stops the previous thread feed (its in-flight read and poll
#   timer are cancelled) before starting the new one.
# - send_message() runs as its own task. Switching threads never cancels it;
#   only close() waits for it.
# - close() releases every feed, pending send and transport.
# =============================================================================

import asyncio
import logging
from typing import Any, Callable

from delivery.config import ChannelConfig, Feed
from delivery.manager import ChannelState, DeliveryChannelManager
from delivery.transports import (
    HttpPollTransport,
    PollTransport,
    PushTransport,
    WebSocketPushTransport,
)

logger = logging.getLogger(__name__)


class ClientSession:
    """
    Everything one signed-in client keeps in sync.

    Example:
        session = ClientSession(ChannelConfig(base_url=url, token=jwt), on_message=render)
        await session.start()
        await session.open_thread(project_id, vendor_id)
        session.send_message("Hello")
        ...
        await session.close()
    """

    def __init__(
        self,
        config: ChannelConfig,
        push: PushTransport | None = None,
        poll: PollTransport | None = None,
        on_message: Callable[[list[dict[str, Any]]], Any] | None = None,
        on_notification: Callable[[list[dict[str, Any]]], Any] | None = None,
        on_connectivity_change: Callable[[bool], Any] | None = None,
    ):
        self.config = config
        self.push = push or WebSocketPushTransport(config)
        self.poll = poll or HttpPollTransport(config)
        self.on_message = on_message
        self.on_notification = on_notification
        self.on_connectivity_change = on_connectivity_change

        self.notifications: DeliveryChannelManager | None = None
        self.thread: DeliveryChannelManager | None = None
        self._sends: set[asyncio.Task] = set()
        self._closed = False

    def _manager(self, feed: Feed, on_items) -> DeliveryChannelManager:
        return DeliveryChannelManager(
            feed,
            self.push,
            self.poll,
            self.config,
            on_items=on_items,
            on_connectivity_change=self.on_connectivity_change,
        )

    async def start(self) -> None:
        """Start the notification feed."""
        if self.notifications is None:
            self.notifications = self._manager(Feed.notifications(), self.on_notification)
        await self.notifications.start()

    async def open_thread(self, project_id: str, vendor_id: str | None = None) -> DeliveryChannelManager:
        """
        Switch the active thread.

        Reopening the thread that is already open keeps its feed running.
        """
        feed = Feed.messages(project_id, vendor_id)
        if self.thread is not None:
            if self.thread.feed == feed and self.thread.state is not ChannelState.DISCONNECTED:
                return self.thread
            await self.thread.stop()

        self.thread = self._manager(feed, self.on_message)
        await self.thread.start()
        return self.thread

    async def close_thread(self) -> None:
        if self.thread is not None:
            await self.thread.stop()
            self.thread = None

    def send_message(
        self,
        project_id: str,
        message_text: str,
        vendor_id: str | None = None,
        image_url: str | None = None,
    ) -> asyncio.Task:
        """
        Send a message without tying it to the open thread's lifecycle.

        The stored message is merged into the thread feed if that thread is
        still open when the send completes.

        Returns:
            The send task; await it to get the stored message or the TransportError
        """
        task = asyncio.create_task(
            self._send(str(project_id), message_text, vendor_id, image_url),
            name=f"send:{project_id}",
        )
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)
        return task

    async def _send(
        self,
        project_id: str,
        message_text: str,
        vendor_id: str | None,
        image_url: str | None,
    ) -> dict[str, Any]:
        message = await self.poll.send_message(project_id, message_text, vendor_id, image_url)

        thread = self.thread
        if thread is not None and thread.feed.project_id == project_id:
            if thread.feed.vendor_id in (None, message.get("vendor_id")):
                thread.merge([message])
        return message

    async def close(self) -> None:
        """Stop every feed, let pending sends finish, release transports."""
        if self._closed:
            return
        self._closed = True

        await self.close_thread()
        if self.notifications is not None:
            await self.notifications.stop()

        if self._sends:
            results = await asyncio.gather(*self._sends, return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException):
                    logger.warning(f"Message send failed during close: {result}")

        await self.push.close()
        await self.poll.close()
        logger.debug("Client session closed")
