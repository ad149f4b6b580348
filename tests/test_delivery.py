# =============================================================================
# tests/test_delivery.py - Client Delivery Channel Tests
# =============================================================================
# Tests for the client-side push/poll state machine with in-memory transports:
# - SUBSCRIBING -> LIVE -> DEGRADED -> LIVE transitions
# - Polling while degraded, cursor handling, no duplicate delivery
# - Fatal errors stop the feed; stop() cancels timers and reads
# - ClientSession thread switching and message sends
#
# Run with: pytest tests/test_delivery.py -v
# =============================================================================

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from delivery import (
    ChannelConfig,
    ChannelState,
    ClientSession,
    CursorLostError,
    DeliveryChannelManager,
    Feed,
    MergedStream,
    PollTransport,
    PushConnection,
    PushTransport,
    TransportError,
)

BASE = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)
THREAD = Feed.messages("p1", "v1")


def msg(n: int, **extra) -> dict[str, Any]:
    return {
        "id": f"m{n}",
        "created_at": (BASE + timedelta(seconds=n)).isoformat(),
        "message_text": f"message {n}",
        **extra,
    }


def fast_config(**overrides) -> ChannelConfig:
    values = dict(
        base_url="http://api.test",
        token="jwt",
        message_poll_interval=0.02,
        notification_poll_interval=0.02,
        heartbeat_timeout=0.2,
        subscribe_timeout=0.1,
        reconnect_base_delay=0.01,
        reconnect_max_delay=0.05,
        max_poll_failures=2,
    )
    values.update(overrides)
    return ChannelConfig(**values)


async def eventually(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


# =============================================================================
# In-memory transports
# =============================================================================

class FakeConnection(PushConnection):
    def __init__(self):
        self.frames: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def receive(self) -> dict[str, Any]:
        frame = await self.frames.get()
        if isinstance(frame, Exception):
            raise frame
        return frame

    async def send(self, frame: dict[str, Any]) -> None:
        pass

    async def close(self) -> None:
        self.closed = True


class FakePush(PushTransport):
    """Hands out connections that acknowledge immediately, unless unavailable."""

    def __init__(self):
        self.connections: list[FakeConnection] = []
        self.available = True
        self.error: TransportError | None = None
        self.closed = False

    async def subscribe(self, feed: Feed) -> PushConnection:
        if self.error is not None:
            raise self.error
        if not self.available:
            raise TransportError("connection refused")
        connection = FakeConnection()
        connection.frames.put_nowait({"type": "connected"})
        self.connections.append(connection)
        return connection

    async def close(self) -> None:
        self.closed = True


class FakePoll(PollTransport):
    """Serves each feed from a list, honoring message cursors."""

    def __init__(self):
        self.feeds: dict[Feed, list[dict[str, Any]]] = defaultdict(list)
        self.calls: list[str | None] = []
        self.error: TransportError | None = None
        self.sent: list[dict[str, Any]] = []
        self.closed = False

    async def fetch(self, feed: Feed, cursor: str | None = None) -> list[dict[str, Any]]:
        self.calls.append(cursor)
        if self.error is not None:
            raise self.error
        items = self.feeds[feed]
        if cursor is None:
            return list(items)
        ids = [item["id"] for item in items]
        if cursor not in ids:
            raise CursorLostError(cursor)
        return items[ids.index(cursor) + 1:]

    async def send_message(self, project_id, message_text, vendor_id=None, image_url=None):
        n = 100 + len(self.sent)
        item = msg(n, project_id=project_id, vendor_id=vendor_id, message_text=message_text)
        item["id"] = f"s{n}"
        self.sent.append(item)
        self.feeds[Feed.messages(project_id, vendor_id)].append(item)
        return item

    async def close(self) -> None:
        self.closed = True


class GatedPoll(FakePoll):
    """send_message blocks until `release` is set."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def send_message(self, project_id, message_text, vendor_id=None, image_url=None):
        await self.release.wait()
        return await super().send_message(project_id, message_text, vendor_id, image_url)


class Recorder:
    """Collects callback output from a manager."""

    def __init__(self):
        self.ids: list[str] = []
        self.batches: list[list[str]] = []
        self.states: list[ChannelState] = []
        self.connectivity: list[bool] = []

    def on_items(self, items):
        self.batches.append([i["id"] for i in items])
        self.ids.extend(i["id"] for i in items)


@pytest.fixture
def push():
    return FakePush()


@pytest.fixture
def poll():
    return FakePoll()


@pytest.fixture
def recorder():
    return Recorder()


def make_manager(feed, push, poll, recorder, **config) -> DeliveryChannelManager:
    return DeliveryChannelManager(
        feed,
        push,
        poll,
        fast_config(**config),
        on_items=recorder.on_items,
        on_state_change=recorder.states.append,
        on_connectivity_change=recorder.connectivity.append,
    )


# =============================================================================
# MergedStream
# =============================================================================

class TestMergedStream:

    def test_duplicates_are_dropped(self):
        stream = MergedStream()

        assert stream.add([msg(2), msg(1)]) == [msg(1), msg(2)]
        assert stream.add([msg(1), msg(3)]) == [msg(3)]
        assert [i["id"] for i in stream.items()] == ["m1", "m2", "m3"]

    def test_newest_first(self):
        stream = MergedStream(newest_first=True)
        stream.add([msg(1), msg(2)])

        assert [i["id"] for i in stream.items()] == ["m2", "m1"]

    def test_update_keeps_single_copy(self):
        stream = MergedStream()
        stream.add([msg(1, is_read=False)])

        assert stream.add([msg(1, is_read=True)]) == []
        assert len(stream) == 1
        assert stream.items()[0]["is_read"] is True
        assert "m1" in stream


# =============================================================================
# State machine
# =============================================================================

class TestLiveDelivery:

    @pytest.mark.asyncio
    async def test_start_reads_then_goes_live(self, push, poll, recorder):
        poll.feeds[THREAD] = [msg(1), msg(2)]
        manager = make_manager(THREAD, push, poll, recorder)

        try:
            await manager.start()
            await manager.wait_for_state(ChannelState.LIVE, 1)
            await eventually(lambda: len(poll.calls) >= 2)
        finally:
            await manager.stop()

        assert recorder.ids == ["m1", "m2"]
        assert recorder.states[:2] == [ChannelState.SUBSCRIBING, ChannelState.LIVE]
        # Catch-up read after subscribing starts from the cursor
        assert poll.calls[:2] == [None, "m2"]

    @pytest.mark.asyncio
    async def test_pushed_items_are_delivered_once(self, push, poll, recorder):
        poll.feeds[THREAD] = [msg(1)]
        manager = make_manager(THREAD, push, poll, recorder, heartbeat_timeout=1.0)

        try:
            await manager.start()
            await manager.wait_for_state(ChannelState.LIVE, 1)
            connection = push.connections[-1]
            connection.frames.put_nowait({"type": "heartbeat"})
            connection.frames.put_nowait({"type": "message", "data": msg(2)})
            connection.frames.put_nowait({"type": "message", "data": msg(2)})
            await eventually(lambda: "m2" in recorder.ids)

            assert manager.merge([msg(2)]) == []
        finally:
            await manager.stop()

        assert recorder.ids == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_push_does_not_move_cursor(self, push, poll, recorder):
        """Only contiguous poll results advance the cursor."""
        poll.feeds[THREAD] = [msg(1)]
        manager = make_manager(THREAD, push, poll, recorder, heartbeat_timeout=1.0)

        try:
            await manager.start()
            await manager.wait_for_state(ChannelState.LIVE, 1)
            push.connections[-1].frames.put_nowait({"type": "message", "data": msg(5)})
            await eventually(lambda: "m5" in recorder.ids)
        finally:
            await manager.stop()

        assert manager.cursor == "m1"

    @pytest.mark.asyncio
    async def test_frames_for_other_feeds_are_ignored(self, push, poll, recorder):
        manager = make_manager(THREAD, push, poll, recorder, heartbeat_timeout=1.0)

        try:
            await manager.start()
            await manager.wait_for_state(ChannelState.LIVE, 1)
            connection = push.connections[-1]
            connection.frames.put_nowait({"type": "notification", "data": msg(7)})
            connection.frames.put_nowait({"type": "message", "data": msg(8)})
            await eventually(lambda: "m8" in recorder.ids)
        finally:
            await manager.stop()

        assert "m7" not in recorder.ids


class TestDegradedMode:

    @pytest.mark.asyncio
    async def test_heartbeat_timeout_falls_back_to_polling(self, push, poll, recorder):
        """Scenario D: silence -> DEGRADED -> polling -> reconnect -> LIVE, without gaps."""
        poll.feeds[THREAD] = [msg(1)]
        manager = make_manager(THREAD, push, poll, recorder)

        try:
            await manager.start()
            await manager.wait_for_state(ChannelState.LIVE, 1)
            push.available = False

            await manager.wait_for_state(ChannelState.DEGRADED, 1)
            poll.feeds[THREAD].append(msg(2))
            await eventually(lambda: "m2" in recorder.ids)

            polls_so_far = len(poll.calls)
            await eventually(lambda: len(poll.calls) >= polls_so_far + 2)
            assert manager.state is ChannelState.DEGRADED

            push.available = True
            poll.feeds[THREAD].append(msg(3))
            await manager.wait_for_state(ChannelState.LIVE, 1)
            await eventually(lambda: "m3" in recorder.ids)

            connection = push.connections[-1]
            connection.frames.put_nowait({"type": "message", "data": msg(3)})
            connection.frames.put_nowait({"type": "message", "data": msg(4)})
            await eventually(lambda: "m4" in recorder.ids)
            assert manager._poller is None
        finally:
            await manager.stop()

        assert recorder.ids == ["m1", "m2", "m3", "m4"]
        assert recorder.states[:4] == [
            ChannelState.SUBSCRIBING,
            ChannelState.LIVE,
            ChannelState.DEGRADED,
            ChannelState.LIVE,
        ]
        assert len(push.connections) == 2
        assert push.connections[0].closed

    @pytest.mark.asyncio
    async def test_push_error_degrades_immediately(self, push, poll, recorder):
        manager = make_manager(THREAD, push, poll, recorder, heartbeat_timeout=1.0)

        try:
            await manager.start()
            await manager.wait_for_state(ChannelState.LIVE, 1)
            push.available = False
            push.connections[-1].frames.put_nowait(TransportError("connection reset"))

            await manager.wait_for_state(ChannelState.DEGRADED, 0.5)
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_server_push_outage_close_falls_back_to_polling(self, push, poll, recorder):
        """1011 (server's real-time bridge down) is retryable: poll until push returns."""
        poll.feeds[THREAD] = [msg(1)]
        manager = make_manager(THREAD, push, poll, recorder, heartbeat_timeout=1.0)

        try:
            await manager.start()
            await manager.wait_for_state(ChannelState.LIVE, 1)
            push.available = False
            push.connections[-1].frames.put_nowait(
                TransportError("Push connection closed (code=1011)", code=1011)
            )

            await manager.wait_for_state(ChannelState.DEGRADED, 0.5)
            poll.feeds[THREAD].append(msg(2))
            await eventually(lambda: "m2" in recorder.ids)
        finally:
            await manager.stop()

        assert manager.last_error is None

    @pytest.mark.asyncio
    async def test_subscription_failure_starts_degraded(self, push, poll, recorder):
        push.available = False
        poll.feeds[THREAD] = [msg(1)]
        manager = make_manager(THREAD, push, poll, recorder)

        try:
            await manager.start()
            await manager.wait_for_state(ChannelState.DEGRADED, 1)
            poll.feeds[THREAD].append(msg(2))
            await eventually(lambda: "m2" in recorder.ids)
        finally:
            await manager.stop()

        assert ChannelState.LIVE not in recorder.states

    @pytest.mark.asyncio
    async def test_connectivity_degraded_after_repeated_failures(self, push, poll, recorder):
        push.available = False
        poll.error = TransportError("timeout")
        manager = make_manager(THREAD, push, poll, recorder)

        try:
            await manager.start()
            await eventually(lambda: recorder.connectivity == [True])
            assert manager.connectivity_degraded

            poll.error = None
            await eventually(lambda: recorder.connectivity == [True, False])
        finally:
            await manager.stop()

        assert not manager.connectivity_degraded

    @pytest.mark.asyncio
    async def test_lost_cursor_rereads_from_start(self, push, poll, recorder):
        poll.feeds[THREAD] = [msg(1), msg(2)]
        manager = make_manager(THREAD, push, poll, recorder)
        manager.cursor = "m-unknown"

        assert await manager._poll_once() is True
        assert poll.calls == ["m-unknown", None]
        assert manager.cursor == "m2"
        assert recorder.ids == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_lost_cursor_on_catch_up_read_closes_gap(self, push, poll, recorder):
        """The read after going LIVE is the only one, so a lost cursor must not leave a gap."""
        poll.feeds[THREAD] = [msg(1)]
        manager = make_manager(THREAD, push, poll, recorder, heartbeat_timeout=1.0)

        try:
            await manager.start()
            await manager.wait_for_state(ChannelState.LIVE, 1)
            await eventually(lambda: len(poll.calls) >= 2)

            # History rewritten under the client: its cursor no longer exists
            poll.feeds[THREAD] = [msg(2), msg(3)]
            push.connections[-1].frames.put_nowait(TransportError("connection reset"))
            await eventually(lambda: len(push.connections) == 2)
            await manager.wait_for_state(ChannelState.LIVE, 1)
            await eventually(lambda: "m3" in recorder.ids)
        finally:
            await manager.stop()

        assert None in poll.calls[2:]
        assert manager.cursor == "m3"
        assert recorder.ids == ["m1", "m2", "m3"]


class TestStopping:

    @pytest.mark.asyncio
    async def test_stop_cancels_polling(self, push, poll, recorder):
        push.available = False
        manager = make_manager(THREAD, push, poll, recorder)

        await manager.start()
        await manager.wait_for_state(ChannelState.DEGRADED, 1)
        await manager.stop()
        polls = len(poll.calls)
        await asyncio.sleep(0.1)

        assert manager.state is ChannelState.DISCONNECTED
        assert not manager.running
        assert len(poll.calls) == polls

    @pytest.mark.asyncio
    async def test_stop_closes_push(self, push, poll, recorder):
        manager = make_manager(THREAD, push, poll, recorder, heartbeat_timeout=1.0)

        await manager.start()
        await manager.wait_for_state(ChannelState.LIVE, 1)
        await manager.stop()

        assert push.connections[-1].closed

    @pytest.mark.asyncio
    async def test_fatal_subscribe_error_disconnects(self, push, poll, recorder):
        push.error = TransportError("closed", fatal=True, code=4003)
        manager = make_manager(THREAD, push, poll, recorder)

        await manager.start()
        await manager.wait_for_state(ChannelState.DISCONNECTED, 1)

        assert manager.last_error.code == 4003
        assert not manager.running

    @pytest.mark.asyncio
    async def test_fatal_close_while_live_disconnects(self, push, poll, recorder):
        manager = make_manager(THREAD, push, poll, recorder, heartbeat_timeout=1.0)

        await manager.start()
        await manager.wait_for_state(ChannelState.LIVE, 1)
        push.connections[-1].frames.put_nowait(TransportError("closed", fatal=True, code=4001))
        await manager.wait_for_state(ChannelState.DISCONNECTED, 1)

        assert manager.last_error.code == 4001
        assert push.connections[-1].closed

    @pytest.mark.asyncio
    async def test_fatal_poll_error_disconnects(self, push, poll, recorder):
        poll.error = TransportError("GET returned 403", fatal=True, code=403)
        manager = make_manager(THREAD, push, poll, recorder)

        await manager.start()
        await manager.wait_for_state(ChannelState.DISCONNECTED, 1)

        assert manager.last_error.code == 403
        assert push.connections == []


class TestNotificationFeed:

    @pytest.mark.asyncio
    async def test_full_reads_deliver_only_new_items(self, push, poll, recorder):
        feed = Feed.notifications()
        poll.feeds[feed] = [msg(1), msg(2)]
        manager = make_manager(feed, push, poll, recorder)

        await manager._poll_once()
        poll.feeds[feed] = [msg(1, is_read=True), msg(2), msg(3)]
        await manager._poll_once()

        assert recorder.batches == [["m2", "m1"], ["m3"]]
        assert poll.calls == [None, None]
        assert manager.stream.items()[-1]["is_read"] is True


# =============================================================================
# ClientSession
# =============================================================================

class TestClientSession:

    def make_session(self, push, poll) -> ClientSession:
        return ClientSession(fast_config(heartbeat_timeout=1.0), push=push, poll=poll)

    @pytest.mark.asyncio
    async def test_sent_message_joins_open_thread(self, push, poll):
        session = self.make_session(push, poll)
        try:
            thread = await session.open_thread("p1", "v1")
            message = await session.send_message("p1", "Hello", vendor_id="v1")
        finally:
            await session.close()

        assert message["id"] in thread.stream

    @pytest.mark.asyncio
    async def test_switching_threads_does_not_cancel_send(self, push):
        poll = GatedPoll()
        session = self.make_session(push, poll)
        try:
            first = await session.open_thread("p1", "v1")
            send = session.send_message("p1", "Still sending", vendor_id="v1")
            await asyncio.sleep(0)

            second = await session.open_thread("p2", "v1")
            poll.release.set()
            message = await send
        finally:
            await session.close()

        assert not send.cancelled()
        assert first.state is ChannelState.DISCONNECTED
        assert message["id"] not in second.stream
        assert poll.sent == [message]

    @pytest.mark.asyncio
    async def test_reopening_same_thread_keeps_feed(self, push, poll):
        session = self.make_session(push, poll)
        try:
            first = await session.open_thread("p1", "v1")
            again = await session.open_thread("p1", "v1")
        finally:
            await session.close()

        assert first is again

    @pytest.mark.asyncio
    async def test_close_waits_for_pending_sends(self, push):
        poll = GatedPoll()
        session = self.make_session(push, poll)
        await session.start()
        send = session.send_message("p1", "Hello", vendor_id="v1")

        closing = asyncio.create_task(session.close())
        await asyncio.sleep(0.02)
        assert not closing.done()

        poll.release.set()
        await closing

        assert send.done() and not send.cancelled()
        assert session.notifications.state is ChannelState.DISCONNECTED
        assert push.closed and poll.closed
