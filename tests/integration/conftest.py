"""Pytest configuration and fixtures for integration tests.

The app runs with its real lifespan against a temporary SQLite file. Records
are seeded through ``client.portal`` so they use the same event loop (and so
the same cached connection) as the requests under test.
"""

from collections.abc import Generator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import partial

import pytest
from fastapi.testclient import TestClient

from src.core import db_client
from src.domain.task import ReportSummary
from src.domain.user import UserRole
from src.main import create_app


@dataclass(frozen=True)
class Account:
    """A seeded user and a valid session token for it."""

    id: str
    name: str
    role: UserRole
    token: str

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


@pytest.fixture
async def sqlite_db(sqlite_db_path):
    """Initialized schema on the temporary database, closed after the test."""
    await db_client.init_db()
    yield sqlite_db_path
    await db_client.close_connection()


@pytest.fixture
def client(sqlite_db_path) -> Generator[TestClient, None, None]:
    """Test client with the lifespan (schema, engine, scheduler) running."""
    with TestClient(create_app()) as test_client:
        yield test_client


@pytest.fixture
def accounts(client: TestClient) -> dict[str, Account]:
    """One account per role plus a second collector, keyed like the unit fixtures."""
    engine = client.app.state.engine
    seeded: dict[str, Account] = {}
    for key, name, role, coordinates in (
        ("admin", "Ada Admin", UserRole.ADMIN, (None, None)),
        ("collector", "Cole Collector", UserRole.COLLECTOR, (40.7128, -74.006)),
        ("other_collector", "Otto Other", UserRole.COLLECTOR, (None, None)),
        ("resident", "Rita Resident", UserRole.RESIDENT, (40.7139, -74.0051)),
    ):
        profile = client.portal.call(
            partial(
                engine.users.create_user,
                name=name,
                email=f"{key}@test.local",
                role=role,
                latitude=coordinates[0],
                longitude=coordinates[1],
            )
        )
        seeded[key] = Account(id=profile.id, name=name, role=role, token=engine.auth.issue_token(profile.id))
    return seeded


@pytest.fixture
def report(client: TestClient, accounts: dict[str, Account]) -> ReportSummary:
    engine = client.app.state.engine
    return client.portal.call(
        partial(
            engine.reports.create_report,
            resident_id=accounts["resident"].id,
            waste_type="bulky",
            address="1 Main St",
            latitude=40.7139,
            longitude=-74.0051,
        )
    )


@pytest.fixture
def tomorrow_iso() -> str:
    return (datetime.now(UTC) + timedelta(days=1)).isoformat()
