"""Pytest configuration and fixtures for unit tests."""

from datetime import UTC, datetime, timedelta

import pytest

from src.core.rate_limiter import InMemoryWindowStore, RateLimiter
from src.domain.rooms import role_room, user_room
from src.domain.user import Identity, UserRole
from src.services.directory import DatabaseReportDirectory, DatabaseUserDirectory, SignedTokenAuthenticator
from src.services.engine import SyncEngine
from src.services.room_registry import SessionChannel
from tests.unit.mocks import InMemoryDBClient


@pytest.fixture
def in_memory_db():
    """Provides a fresh InMemoryDBClient for each test."""
    return InMemoryDBClient()


@pytest.fixture
def patched_db(monkeypatch, in_memory_db):
    """Patches src.core.db_client functions to use InMemoryDBClient."""
    for name in (
        "create_record",
        "get_record",
        "update_record",
        "compare_and_update",
        "update_records",
        "delete_record",
        "delete_records",
        "count_records",
        "list_records",
        "get_first_record",
    ):
        monkeypatch.setattr(f"src.core.db_client.{name}", getattr(in_memory_db, name))
    return in_memory_db


@pytest.fixture
def users(patched_db):
    return DatabaseUserDirectory()


@pytest.fixture
def reports(patched_db):
    return DatabaseReportDirectory()


@pytest.fixture
async def people(users):
    """One active account per role, plus a second collector."""
    admin = await users.create_user(name="Ada Admin", email="ada@test.local", role=UserRole.ADMIN)
    collector = await users.create_user(
        name="Cole Collector", email="cole@test.local", role=UserRole.COLLECTOR, latitude=40.7128, longitude=-74.006
    )
    other_collector = await users.create_user(name="Otto Other", email="otto@test.local", role=UserRole.COLLECTOR)
    resident = await users.create_user(
        name="Rita Resident", email="rita@test.local", role=UserRole.RESIDENT, latitude=40.7139, longitude=-74.0051
    )
    return {
        "admin": Identity.from_profile(admin),
        "collector": Identity.from_profile(collector),
        "other_collector": Identity.from_profile(other_collector),
        "resident": Identity.from_profile(resident),
    }


@pytest.fixture
async def report(reports, people):
    return await reports.create_report(
        resident_id=people["resident"].user_id,
        waste_type="bulky",
        address="1 Main St",
        latitude=40.7139,
        longitude=-74.0051,
    )


@pytest.fixture
def tomorrow():
    return datetime.now(UTC) + timedelta(days=1)


@pytest.fixture
def rate_limiter():
    return RateLimiter(store=InMemoryWindowStore(), production=True)


@pytest.fixture
def engine(users, reports, rate_limiter):
    return SyncEngine(
        users=users,
        reports=reports,
        auth=SignedTokenAuthenticator(users, secret_key="test-secret"),
        rate_limiter=rate_limiter,
    )


@pytest.fixture
def connect(engine):
    """Register a live session for an identity and join its standing rooms."""

    def _connect(identity: Identity, *rooms: str, client_host: str = "10.0.0.1") -> SessionChannel:
        channel = SessionChannel(identity=identity, outbox_size=32, client_host=client_host)
        engine.registry.register(channel)
        for room in (user_room(identity.user_id), role_room(identity.role), *rooms):
            engine.registry.join(channel.session_id, room)
        return channel

    return _connect

