# =============================================================================
# core/services/thread_store.py - Thread Store
# =============================================================================
# Persists project messages keyed by (project, vendor) and serves ordered,
# cursor-based reads.
#
# Guarantees:
# - list() returns messages strictly ordered by (created_at, id) ascending.
# - A cursor is the id of the last message the caller saw; list(since=cursor)
#   returns only messages after it, with no gaps or duplicates.
# - Appends to the same thread key are serialized by a per-key asyncio.Lock.
#   The store stamps created_at under that lock and never reuses or goes back
#   on a thread's last stamp, so one sender's messages keep submission order.
# - Appends to different thread keys never wait on each other.
#
# The store checks thread-key shape only. Authorization is the caller's job
# (core/services/access_resolver.py) and must happen before append().
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from app.config import settings
from app.exceptions import (
    CursorNotFoundError,
    InvalidMessageError,
    InvalidThreadKeyError,
    StoreError,
)
from core.models.message import Message, MessageCreate, ThreadKey
from lib.supabase_client import SupabaseClient, SupabaseClientError
from lib.utils import format_timestamp, is_uuid, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

ONE_TICK = timedelta(microseconds=1)

# Threads whose last stamp is kept in memory
STAMP_CACHE_SIZE = 10_000


class ThreadStore:
    """
    Message persistence scoped by thread key.

    One instance is shared by the API process (see app/dependencies.py) so that
    the per-thread locks and last stamps are shared by every request.

    Example:
        store = ThreadStore()
        message = await store.append(thread_key, sender_id, MessageCreate(message_text="Hello"))
        newer = await store.list(thread_key, since=message.id)
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        max_length: int | None = None,
        stamp_cache_size: int = STAMP_CACHE_SIZE,
    ):
        self._clock = clock
        self._max_length = max_length or settings.MESSAGE_MAX_LENGTH
        self._stamp_cache_size = stamp_cache_size
        # Only threads with an append in flight have a lock
        self._locks: dict[ThreadKey, asyncio.Lock] = {}
        self._lock_users: dict[ThreadKey, int] = {}
        self._last_stamp: OrderedDict[ThreadKey, datetime] = OrderedDict()

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    @staticmethod
    def validate_key(thread_key: ThreadKey, require_vendor: bool = False) -> None:
        """
        Check thread-key shape.

        Raises:
            InvalidThreadKeyError: If an id is malformed, or a vendor scope is
                required (appends) but missing
        """
        if not is_uuid(thread_key.project_id):
            raise InvalidThreadKeyError("project_id", thread_key.project_id)
        if thread_key.vendor_id is None:
            if require_vendor:
                raise InvalidThreadKeyError("vendor_id", None)
        elif not is_uuid(thread_key.vendor_id):
            raise InvalidThreadKeyError("vendor_id", thread_key.vendor_id)

    def _validate_body(self, body: MessageCreate) -> tuple[str, str | None]:
        text = (body.message_text or "").strip()
        image_url = (body.image_url or "").strip() or None

        if not text and not image_url:
            raise InvalidMessageError("messageText is empty")
        if len(text) > self._max_length:
            raise InvalidMessageError(f"messageText exceeds {self._max_length} characters")
        if image_url and not image_url.startswith(("http://", "https://")):
            raise InvalidMessageError("imageUrl must be an http(s) URL")
        return text, image_url

    # -------------------------------------------------------------------------
    # append
    # -------------------------------------------------------------------------

    async def append(
        self,
        thread_key: ThreadKey,
        sender_id: UUID,
        body: MessageCreate,
    ) -> Message:
        """
        Persist a message in a vendor thread.

        Args:
            thread_key: Resolved (project, vendor) key; must name a vendor
            sender_id: Author of the message
            body: Text and optional image

        Returns:
            The stored Message

        Raises:
            InvalidThreadKeyError, InvalidMessageError: On malformed input
            StoreError: If Supabase rejects the insert
        """
        self.validate_key(thread_key, require_vendor=True)
        if not is_uuid(sender_id):
            raise InvalidThreadKeyError("sender_id", sender_id)
        text, image_url = self._validate_body(body)

        async with self._thread_lock(thread_key):
            created_at = await self._next_stamp(thread_key)
            row = {
                "project_id": str(thread_key.project_id),
                "vendor_id": str(thread_key.vendor_id),
                "sender_id": str(sender_id),
                "message_text": text,
                "image_url": image_url,
                "created_at": format_timestamp(created_at),
            }
            try:
                stored = await asyncio.to_thread(SupabaseClient.insert_project_message, row)
            except SupabaseClientError as e:
                # The stamp was never persisted; let the next append reuse the slot
                self._remember_stamp(thread_key, created_at - ONE_TICK)
                logger.error(f"Append to thread {thread_key} failed: {e}")
                raise StoreError("append", e.message)

        message = Message.from_db_row(stored)
        logger.info(f"Appended message {message.id} to thread {thread_key}")
        return message

    async def _next_stamp(self, thread_key: ThreadKey) -> datetime:
        """Next created_at for the thread: now, or one tick after the last stamp."""
        last = self._last_stamp.get(thread_key)
        if last is None:
            try:
                latest = await asyncio.to_thread(
                    SupabaseClient.fetch_latest_message,
                    thread_key.project_id,
                    thread_key.vendor_id,
                )
            except SupabaseClientError as e:
                logger.error(f"Reading last stamp of thread {thread_key} failed: {e}")
                raise StoreError("append", e.message)
            if latest:
                last = parse_timestamp(latest["created_at"])

        stamp = self._clock()
        if last is not None and stamp <= last:
            stamp = last + ONE_TICK
        self._remember_stamp(thread_key, stamp)
        return stamp

    def _remember_stamp(self, thread_key: ThreadKey, stamp: datetime) -> None:
        # Least recently written threads are forgotten and re-seeded from the table
        self._last_stamp[thread_key] = stamp
        self._last_stamp.move_to_end(thread_key)
        while len(self._last_stamp) > self._stamp_cache_size:
            self._last_stamp.popitem(last=False)

    @asynccontextmanager
    async def _thread_lock(self, thread_key: ThreadKey):
        """Hold the thread's lock; the lock is dropped once nobody holds or awaits it."""
        lock = self._locks.get(thread_key)
        if lock is None:
            lock = self._locks[thread_key] = asyncio.Lock()
        self._lock_users[thread_key] = self._lock_users.get(thread_key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[thread_key] -= 1
            if not self._lock_users[thread_key]:
                del self._lock_users[thread_key]
                del self._locks[thread_key]

    # -------------------------------------------------------------------------
    # list
    # -------------------------------------------------------------------------

    async def list(self, thread_key: ThreadKey, since: UUID | None = None) -> list[Message]:
        """
        Read a thread in (created_at, id) order.

        Args:
            thread_key: Vendor thread, or project-wide key for the admin view
            since: Id of the last message already seen (exclusive cursor)

        Returns:
            Messages after the cursor (all messages without one)

        Raises:
            CursorNotFoundError: If `since` isn't a message of this thread
            StoreError: If the read fails
        """
        self.validate_key(thread_key)
        try:
            after = await self._cursor_position(thread_key, since) if since is not None else None
            rows = await asyncio.to_thread(
                SupabaseClient.fetch_project_messages,
                thread_key.project_id,
                thread_key.vendor_id,
                after,
            )
        except SupabaseClientError as e:
            logger.error(f"Listing thread {thread_key} failed: {e}")
            raise StoreError("list", e.message)

        messages = sorted((Message.from_db_row(row) for row in rows), key=lambda m: m.sort_key)
        if after is not None:
            messages = [m for m in messages if m.sort_key > after]
        return messages

    async def _cursor_position(self, thread_key: ThreadKey, cursor: UUID) -> tuple[datetime, str]:
        row = await asyncio.to_thread(SupabaseClient.fetch_project_message, cursor)
        if row is None:
            raise CursorNotFoundError(str(cursor))

        message = Message.from_db_row(row)
        in_thread = message.project_id == thread_key.project_id and (
            thread_key.is_project_wide or message.vendor_id == thread_key.vendor_id
        )
        if not in_thread:
            raise CursorNotFoundError(str(cursor))
        return message.sort_key

    async def list_project(self, project_id: UUID, since: UUID | None = None) -> list[Message]:
        """Admin monitoring view: every vendor thread of a project, merged in order."""
        return await self.list(ThreadKey(project_id=project_id), since=since)

    @staticmethod
    def group_by_vendor(messages: list[Message]) -> dict[UUID | None, list[Message]]:
        """Split a project-wide listing back into per-vendor threads (order kept)."""
        threads: dict[UUID | None, list[Message]] = {}
        for message in messages:
            threads.setdefault(message.vendor_id, []).append(message)
        return threads

    async def latest_activity(self, project_ids: set[UUID]) -> dict[ThreadKey, datetime]:
        """Latest message time per vendor thread across several projects."""
        try:
            rows = await asyncio.to_thread(
                SupabaseClient.fetch_latest_message_times,
                [str(pid) for pid in project_ids],
            )
        except SupabaseClientError as e:
            raise StoreError("latest_activity", e.message)

        activity: dict[ThreadKey, datetime] = {}
        for row in rows:
            key = ThreadKey(project_id=row["project_id"], vendor_id=row.get("vendor_id"))
            stamp = parse_timestamp(row["created_at"])
            if key not in activity or stamp > activity[key]:
                activity[key] = stamp
        return activity
