# =============================================================================
# delivery/manager.py - Delivery Channel Manager
# =============================================================================
# Keeps one feed (a thread or the notification bell) current for the UI using
# push when it works and polling when it doesn't.
#
# States:
#   DISCONNECTED -> SUBSCRIBING   start()
#   SUBSCRIBING  -> LIVE          push acknowledged ({"type": "connected"})
#   SUBSCRIBING  -> DEGRADED      subscription failed or timed out
#   LIVE         -> DEGRADED      push error, or no frame within heartbeat_timeout
#   DEGRADED     -> LIVE          a reconnect attempt succeeded (one trailing
#                                 poll closes the gap, then polling stops)
#   any          -> DISCONNECTED  stop(), or an error retrying can't fix
#
# In DEGRADED the feed is polled immediately, then every poll interval, while
# reconnects are attempted with exponential backoff. Push and poll results go
# through one MergedStream, so nothing is delivered twice. The poll cursor
# only advances from poll results, which are contiguous; a pushed message
# that raced ahead can't make the poll skip an earlier one.
# =============================================================================

import asyncio
import logging
from enum import Enum
from typing import Any, Callable

from delivery.config import ChannelConfig, Feed
from delivery.merge import MergedStream, order_key
from delivery.transports import (
    CursorLostError,
    PollTransport,
    PushConnection,
    PushTransport,
    TransportError,
)

logger = logging.getLogger(__name__)


class ChannelState(str, Enum):
    DISCONNECTED = "disconnected"
    SUBSCRIBING = "subscribing"
    LIVE = "live"
    DEGRADED = "degraded"


class DeliveryChannelManager:
    """
    Push/poll state machine for one feed.

    Example:
        manager = DeliveryChannelManager(
            Feed.messages(project_id, vendor_id), push, poll, config,
            on_items=render_messages,
        )
        await manager.start()
        ...
        await manager.stop()

    Callbacks run on the event loop and must not block:
        on_items(items): newly merged items, in feed order
        on_state_change(state): every state transition
        on_connectivity_change(degraded): True after max_poll_failures
            consecutive poll failures, False on the next success
    """

    def __init__(
        self,
        feed: Feed,
        push: PushTransport,
        poll: PollTransport,
        config: ChannelConfig,
        on_items: Callable[[list[dict[str, Any]]], Any] | None = None,
        on_state_change: Callable[[ChannelState], Any] | None = None,
        on_connectivity_change: Callable[[bool], Any] | None = None,
    ):
        self.feed = feed
        self.push = push
        self.poll = poll
        self.config = config
        self.on_items = on_items
        self.on_state_change = on_state_change
        self.on_connectivity_change = on_connectivity_change

        self.state = ChannelState.DISCONNECTED
        self.stream = MergedStream(newest_first=feed.newest_first)
        self.cursor: str | None = None
        self.connectivity_degraded = False
        self.last_error: TransportError | None = None

        self._poll_failures = 0
        self._reconnect_attempts = 0
        self._connection: PushConnection | None = None
        self._supervisor: asyncio.Task | None = None
        self._poller: asyncio.Task | None = None
        self._state_changed = asyncio.Event()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._supervisor is not None and not self._supervisor.done()

    async def start(self) -> None:
        """Begin the initial read and push subscription. No-op if already running."""
        if self.running:
            return
        self.last_error = None
        self._set_state(ChannelState.SUBSCRIBING)
        self._supervisor = asyncio.create_task(self._run(), name=f"delivery:{self.feed}")

    async def stop(self) -> None:
        """
        Cancel any in-flight read and poll timer, close push, go DISCONNECTED.

        Merged items are kept, so a restarted manager doesn't redeliver them.
        """
        tasks = [t for t in (self._supervisor, self._poller) if t is not None]
        self._supervisor = None
        self._poller = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        await self._close_connection()
        self._set_state(ChannelState.DISCONNECTED)
        logger.debug(f"Delivery for {self.feed} stopped")

    async def wait_for_state(self, state: ChannelState, timeout: float | None = None) -> None:
        """
        Wait until the manager reaches `state`.

        Raises:
            asyncio.TimeoutError: If it doesn't within `timeout` seconds
        """
        async def _wait():
            while self.state is not state:
                self._state_changed.clear()
                await self._state_changed.wait()

        await asyncio.wait_for(_wait(), timeout)

    def merge(self, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Merge items obtained outside the feed (e.g. a message we just sent).

        The poll cursor is untouched. Returns the items that were new.
        """
        fresh = self.stream.add(items)
        if fresh and self.on_items is not None:
            try:
                self.on_items(fresh)
            except Exception:
                logger.exception(f"on_items callback failed for {self.feed}")
        return fresh

    # -------------------------------------------------------------------------
    # Supervisor
    # -------------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            await self._poll_once()

            while True:
                connection = await self._subscribe()
                if connection is None:
                    self._degrade()
                    await asyncio.sleep(self._next_reconnect_delay())
                    continue

                recovering = self.state is ChannelState.DEGRADED
                self._connection = connection
                self._reconnect_attempts = 0
                self._set_state(ChannelState.LIVE)
                if recovering:
                    await self._stop_polling()
                # Catch anything written between the last read and the subscription
                await self._poll_once()

                await self._receive_loop(connection)

                await self._close_connection()
                self._degrade()
                await asyncio.sleep(self._next_reconnect_delay())

        except TransportError as e:
            await self._fail(e)

    async def _subscribe(self) -> PushConnection | None:
        """Open push and wait for the server's acknowledgement."""
        connection = None
        try:
            connection = await asyncio.wait_for(self.push.subscribe(self.feed), self.config.subscribe_timeout)
            ack = await asyncio.wait_for(connection.receive(), self.config.subscribe_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Push subscription for {self.feed} timed out")
        except TransportError as e:
            if e.fatal:
                if connection is not None:
                    await connection.close()
                raise
            logger.warning(f"Push subscription for {self.feed} failed: {e.message}")
        else:
            if ack.get("type") == "connected":
                logger.info(f"Push live for {self.feed}")
                return connection
            logger.warning(f"Unexpected first push frame for {self.feed}: {ack.get('type')}")

        if connection is not None:
            await connection.close()
        return None

    async def _receive_loop(self, connection: PushConnection) -> None:
        """Apply push frames until the connection dies or goes quiet."""
        while True:
            try:
                frame = await asyncio.wait_for(connection.receive(), self.config.heartbeat_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"No push frame for {self.feed} in {self.config.heartbeat_timeout}s")
                return
            except TransportError as e:
                if e.fatal:
                    raise
                logger.warning(f"Push connection for {self.feed} lost: {e.message}")
                return

            if frame.get("type") == self.feed.data_frame_type:
                data = frame.get("data")
                if isinstance(data, dict):
                    self.merge([data])

    def _next_reconnect_delay(self) -> float:
        delay = min(
            self.config.reconnect_base_delay * (2 ** self._reconnect_attempts),
            self.config.reconnect_max_delay,
        )
        self._reconnect_attempts += 1
        return delay

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    def _degrade(self) -> None:
        """Enter DEGRADED and make sure the poll loop is running."""
        self._set_state(ChannelState.DEGRADED)
        if self._poller is None or self._poller.done():
            self._poller = asyncio.create_task(self._poll_loop(), name=f"poll:{self.feed}")

    async def _stop_polling(self) -> None:
        poller, self._poller = self._poller, None
        if poller is not None and poller is not asyncio.current_task():
            poller.cancel()
            await asyncio.gather(poller, return_exceptions=True)

    async def _poll_loop(self) -> None:
        interval = self.feed.poll_interval(self.config)
        try:
            while True:
                await self._poll_once()
                await asyncio.sleep(interval)
        except TransportError as e:
            await self._fail(e)

    async def _poll_once(self) -> bool:
        """
        One read of the feed after the cursor.

        Returns:
            True if the read succeeded

        Raises:
            TransportError: Only for fatal errors
        """
        cursor = self.cursor if self.feed.uses_cursor else None
        try:
            items = await self.poll.fetch(self.feed, cursor)
        except CursorLostError as e:
            logger.warning(f"{e.message} on {self.feed}; re-reading from the start")
            self.cursor = None
            if cursor is None:
                return False
            # The catch-up read after going LIVE is the last poll, so re-read now
            return await self._poll_once()
        except TransportError as e:
            if e.fatal:
                raise
            self._record_poll_failure(e)
            return False

        self._record_poll_success()
        if items and self.feed.uses_cursor:
            self.cursor = str(max(items, key=order_key)["id"])
        self.merge(items)
        return True

    def _record_poll_failure(self, error: TransportError) -> None:
        self._poll_failures += 1
        logger.warning(f"Poll {self._poll_failures} for {self.feed} failed: {error.message}")
        if self._poll_failures >= self.config.max_poll_failures and not self.connectivity_degraded:
            self.connectivity_degraded = True
            logger.error(f"connectivity_degraded: {self._poll_failures} consecutive poll failures for {self.feed}")
            self._notify_connectivity()

    def _record_poll_success(self) -> None:
        self._poll_failures = 0
        if self.connectivity_degraded:
            self.connectivity_degraded = False
            logger.info(f"Connectivity restored for {self.feed}")
            self._notify_connectivity()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _fail(self, error: TransportError) -> None:
        """Stop for an error that retrying can't fix (bad token, no access)."""
        logger.error(f"Delivery for {self.feed} stopped: {error.message}")
        self.last_error = error

        current = asyncio.current_task()
        others = [t for t in (self._supervisor, self._poller) if t is not None and t is not current]
        self._supervisor = None
        self._poller = None
        for task in others:
            task.cancel()
        await asyncio.gather(*others, return_exceptions=True)

        await self._close_connection()
        self._set_state(ChannelState.DISCONNECTED)

    async def _close_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()

    def _set_state(self, state: ChannelState) -> None:
        if state is self.state:
            return
        logger.info(f"Delivery for {self.feed}: {self.state.value} -> {state.value}")
        self.state = state
        self._state_changed.set()
        if self.on_state_change is not None:
            try:
                self.on_state_change(state)
            except Exception:
                logger.exception(f"on_state_change callback failed for {self.feed}")

    def _notify_connectivity(self) -> None:
        if self.on_connectivity_change is not None:
            try:
                self.on_connectivity_change(self.connectivity_degraded)
            except Exception:
                logger.exception(f"on_connectivity_change callback failed for {self.feed}")
