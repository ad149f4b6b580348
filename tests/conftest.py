# =============================================================================
# tests/conftest.py - Pytest Configuration
# =============================================================================
# This module provides pytest fixtures and configuration for all tests.
#
# Key features:
# - Sets up mock environment variables before any imports
# - In-memory stand-ins for the Supabase tables the messaging core touches
# - A dict-backed routing/bid gate and one actor per marketplace role
# - Redis publishing replaced by a MagicMock (no broker needed)
# =============================================================================

import os

# =============================================================================
# Set up test environment BEFORE any imports
# =============================================================================
# This must happen before importing app.config which loads settings immediately

os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-with-at-least-32-characters")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DEBUG", "true")

from contextlib import ExitStack
from typing import Any
from unittest.mock import MagicMock, patch
from uuid import UUID, uuid4

import pytest

from core.models.actor import Actor, ActorRole
from core.models.project import BidStatus, Project
from core.services.routing_gate import RoutingBidGate
from lib.supabase_client import SupabaseClient, SupabaseClientError
from lib.utils import format_timestamp, parse_timestamp, utc_now


# =============================================================================
# In-memory Supabase
# =============================================================================

class FakeSupabase:
    """
    Dict-backed project_messages / notifications / profiles tables.

    Each public method mirrors the SupabaseClient classmethod of the same name.
    `failing_users` makes insert_notification fail for those recipients.
    """

    def __init__(self):
        self.messages: list[dict[str, Any]] = []
        self.notifications: dict[str, dict[str, Any]] = {}
        self.profiles: dict[str, dict[str, Any]] = {}
        self.failing_users: set[str] = set()
        self.fail_message_insert = False

    # -- seeding ---------------------------------------------------------------

    def add_profile(self, user_id: UUID, role: str) -> None:
        self.profiles[str(user_id)] = {"user_id": str(user_id), "role": role}

    def add_notification(self, user_id: UUID, title: str = "Hello", is_read: bool = False) -> str:
        row = self.insert_notification({
            "user_id": str(user_id),
            "title": title,
            "message": "",
            "type": "info",
            "category": "general",
        })
        if is_read:
            self.notifications[row["id"]].update(is_read=True, read_at=format_timestamp(utc_now()))
        return row["id"]

    # -- project_messages ------------------------------------------------------

    @staticmethod
    def _position(row: dict[str, Any]):
        return (parse_timestamp(row["created_at"]), row["id"])

    def _thread_rows(self, project_id, vendor_id=None) -> list[dict[str, Any]]:
        rows = [
            r for r in self.messages
            if r["project_id"] == str(project_id)
            and (vendor_id is None or r["vendor_id"] == str(vendor_id))
        ]
        return sorted(rows, key=self._position)

    def insert_project_message(self, row: dict[str, Any]) -> dict[str, Any]:
        if self.fail_message_insert:
            raise SupabaseClientError(message="insert refused", code="INSERT_MESSAGE_FAILED")
        stored = {**row, "id": str(uuid4())}
        self.messages.append(stored)
        return dict(stored)

    def fetch_project_message(self, message_id) -> dict[str, Any] | None:
        for row in self.messages:
            if row["id"] == str(message_id):
                return dict(row)
        return None

    def fetch_project_messages(self, project_id, vendor_id=None, after=None) -> list[dict[str, Any]]:
        rows = self._thread_rows(project_id, vendor_id)
        if after is not None:
            rows = [r for r in rows if self._position(r) > (after[0], str(after[1]))]
        return [dict(r) for r in rows]

    def fetch_latest_message(self, project_id, vendor_id) -> dict[str, Any] | None:
        rows = self._thread_rows(project_id, vendor_id)
        if not rows:
            return None
        return {"id": rows[-1]["id"], "created_at": rows[-1]["created_at"]}

    def fetch_latest_message_times(self, project_ids: list[str]) -> list[dict[str, Any]]:
        rows = [r for r in self.messages if r["project_id"] in project_ids]
        rows.sort(key=self._position, reverse=True)
        return [
            {"project_id": r["project_id"], "vendor_id": r["vendor_id"], "created_at": r["created_at"]}
            for r in rows
        ]

    # -- notifications ---------------------------------------------------------

    def insert_notification(self, row: dict[str, Any]) -> dict[str, Any]:
        if row["user_id"] in self.failing_users:
            raise SupabaseClientError(message="insert refused", code="INSERT_NOTIFICATION_FAILED")
        stored = {
            "id": str(uuid4()),
            "is_read": False,
            "read_at": None,
            "created_at": format_timestamp(utc_now()),
            **row,
        }
        self.notifications[stored["id"]] = stored
        return dict(stored)

    def fetch_notifications(self, user_id, unread_only: bool = False, limit: int = 50) -> list[dict[str, Any]]:
        rows = [
            r for r in self.notifications.values()
            if r["user_id"] == str(user_id) and not (unread_only and r["is_read"])
        ]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return [dict(r) for r in rows[:limit]]

    def count_unread_notifications(self, user_id) -> int:
        return sum(1 for r in self.notifications.values() if r["user_id"] == str(user_id) and not r["is_read"])

    def fetch_notification(self, notification_id) -> dict[str, Any] | None:
        row = self.notifications.get(str(notification_id))
        return dict(row) if row else None

    def mark_notification_read(self, notification_id, read_at) -> dict[str, Any] | None:
        row = self.notifications.get(str(notification_id))
        if row is None:
            return None
        row.update(is_read=True, read_at=format_timestamp(read_at))
        return dict(row)

    def mark_all_notifications_read(self, user_id, read_at) -> int:
        updated = 0
        for row in self.notifications.values():
            if row["user_id"] == str(user_id) and not row["is_read"]:
                row.update(is_read=True, read_at=format_timestamp(read_at))
                updated += 1
        return updated

    def delete_notification(self, notification_id) -> bool:
        return self.notifications.pop(str(notification_id), None) is not None

    # -- profiles --------------------------------------------------------------

    def fetch_profile(self, user_id) -> dict[str, Any] | None:
        return self.profiles.get(str(user_id))

    def fetch_admin_user_ids(self) -> list[str]:
        return [uid for uid, p in self.profiles.items() if p["role"] == "admin"]


PATCHED_METHODS = [
    "insert_project_message",
    "fetch_project_message",
    "fetch_project_messages",
    "fetch_latest_message",
    "fetch_latest_message_times",
    "insert_notification",
    "fetch_notifications",
    "count_unread_notifications",
    "fetch_notification",
    "mark_notification_read",
    "mark_all_notifications_read",
    "delete_notification",
    "fetch_profile",
    "fetch_admin_user_ids",
]


# =============================================================================
# In-memory routing/bid gate
# =============================================================================

class FakeRoutingGate(RoutingBidGate):
    """RoutingBidGate over plain dicts and sets."""

    def __init__(self):
        self.projects: dict[UUID, Project] = {}
        self.routing: set[tuple[UUID, UUID]] = set()
        self.bids: dict[tuple[UUID, UUID], BidStatus] = {}

    def add_project(self, business_id: UUID, title: str = "Office cleaning") -> UUID:
        project = Project(id=uuid4(), business_id=business_id, title=title)
        self.projects[project.id] = project
        return project.id

    def route(self, project_id: UUID, vendor_id: UUID) -> None:
        self.routing.add((project_id, vendor_id))

    def bid(self, project_id: UUID, vendor_id: UUID, status: BidStatus = BidStatus.SUBMITTED) -> None:
        self.bids[(project_id, vendor_id)] = status

    def fetch_project(self, project_id: UUID) -> Project | None:
        return self.projects.get(project_id)

    def is_routed(self, project_id: UUID, vendor_id: UUID) -> bool:
        return (project_id, vendor_id) in self.routing

    def bid_status(self, project_id: UUID, vendor_id: UUID) -> BidStatus:
        return self.bids.get((project_id, vendor_id), BidStatus.NO_BID)

    def routed_vendor_ids(self, project_id: UUID) -> set[UUID]:
        return {v for p, v in self.routing if p == project_id}

    def bid_statuses(self, project_id: UUID) -> dict[UUID, BidStatus]:
        return {v: s for (p, v), s in self.bids.items() if p == project_id}

    def vendor_project_ids(self, vendor_id: UUID) -> set[UUID]:
        routed = {p for p, v in self.routing if v == vendor_id}
        return routed | {p for p, v in self.bids if v == vendor_id}

    def business_project_ids(self, business_id: UUID) -> set[UUID]:
        return {pid for pid, p in self.projects.items() if p.business_id == business_id}

    def all_project_ids(self) -> set[UUID]:
        return set(self.projects)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def redis_publisher():
    """Replace the Redis client used for real-time publishing."""
    client = MagicMock()
    with patch("app.websocket.broadcast.get_redis_client", return_value=client):
        yield client


@pytest.fixture
def fake_db():
    """Route SupabaseClient calls to a fresh in-memory database."""
    db = FakeSupabase()
    with ExitStack() as stack:
        for name in PATCHED_METHODS:
            stack.enter_context(patch.object(SupabaseClient, name, getattr(db, name)))
        yield db


@pytest.fixture
def gate():
    return FakeRoutingGate()


@pytest.fixture
def business():
    return Actor(id=uuid4(), role=ActorRole.BUSINESS, email="owner@acme.test")


@pytest.fixture
def other_business():
    return Actor(id=uuid4(), role=ActorRole.BUSINESS)


@pytest.fixture
def vendor_1():
    return Actor(id=uuid4(), role=ActorRole.VENDOR)


@pytest.fixture
def vendor_2():
    return Actor(id=uuid4(), role=ActorRole.VENDOR)


@pytest.fixture
def vendor_3():
    return Actor(id=uuid4(), role=ActorRole.VENDOR)


@pytest.fixture
def admin():
    return Actor(id=uuid4(), role=ActorRole.ADMIN)


@pytest.fixture
def project_id(gate, business, vendor_1, vendor_2):
    """Project P owned by `business`, routed to vendor_1 and vendor_2."""
    pid = gate.add_project(business.id, "Office cleaning")
    gate.route(pid, vendor_1.id)
    gate.route(pid, vendor_2.id)
    return pid
