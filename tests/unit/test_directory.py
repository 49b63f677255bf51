"""Tests for the default user/report directories and session tokens."""

import time
from unittest.mock import patch

import pytest
from itsdangerous import URLSafeTimedSerializer

from src.core.errors import AuthenticationError
from src.domain.task import ReportStatus
from src.domain.user import UserRole, UserStatus
from src.services.directory import SignedTokenAuthenticator


@pytest.fixture
def auth(users):
    return SignedTokenAuthenticator(users, secret_key="test-secret", max_age_seconds=60)


class TestSignedTokenAuthenticator:
    @pytest.mark.asyncio
    async def test_issued_token_resolves_to_identity(self, auth, people) -> None:
        token = auth.issue_token(people["collector"].user_id)

        identity = await auth.verify_session(token)

        assert identity.user_id == people["collector"].user_id
        assert identity.role == UserRole.COLLECTOR
        assert identity.latitude == pytest.approx(40.7128)

    @pytest.mark.asyncio
    async def test_missing_token(self, auth) -> None:
        with pytest.raises(AuthenticationError, match="Missing"):
            await auth.verify_session("")

    @pytest.mark.asyncio
    async def test_tampered_token(self, auth, people) -> None:
        token = auth.issue_token(people["resident"].user_id)

        with pytest.raises(AuthenticationError, match="Invalid"):
            await auth.verify_session(token[:-2] + "xx")

    @pytest.mark.asyncio
    async def test_token_signed_with_another_secret(self, users, auth, people) -> None:
        foreign = SignedTokenAuthenticator(users, secret_key="other-secret").issue_token(people["resident"].user_id)

        with pytest.raises(AuthenticationError, match="Invalid"):
            await auth.verify_session(foreign)

    @pytest.mark.asyncio
    async def test_expired_token(self, auth, people) -> None:
        with patch("itsdangerous.timed.time.time", return_value=time.time() - 3600):
            token = auth.issue_token(people["resident"].user_id)

        with pytest.raises(AuthenticationError, match="expired"):
            await auth.verify_session(token)

    @pytest.mark.asyncio
    async def test_token_without_user_id(self, auth) -> None:
        token = URLSafeTimedSerializer("test-secret", salt="wastesync-session").dumps({"role": "admin"})

        with pytest.raises(AuthenticationError, match="Invalid"):
            await auth.verify_session(token)

    @pytest.mark.asyncio
    async def test_unknown_user(self, auth, patched_db) -> None:
        with pytest.raises(AuthenticationError, match="not found or inactive"):
            await auth.verify_session(auth.issue_token("424242"))

    @pytest.mark.asyncio
    async def test_suspended_user(self, auth, users) -> None:
        suspended = await users.create_user(
            name="Sam Suspended", email="sam@test.local", role=UserRole.RESIDENT, status=UserStatus.SUSPENDED
        )

        with pytest.raises(AuthenticationError, match="not found or inactive"):
            await auth.verify_session(auth.issue_token(suspended.id))


class TestDirectories:
    @pytest.mark.asyncio
    async def test_admin_ids_exclude_inactive_admins(self, users, people) -> None:
        await users.create_user(
            name="Old Admin", email="old@test.local", role=UserRole.ADMIN, status=UserStatus.SUSPENDED
        )

        assert await users.list_admin_ids() == [people["admin"].user_id]

    @pytest.mark.asyncio
    async def test_missing_records_return_none(self, users, reports, patched_db) -> None:
        assert await users.get_user("999") is None
        assert await reports.get_report("999") is None

    @pytest.mark.asyncio
    async def test_set_role(self, users, people) -> None:
        profile = await users.set_role(people["resident"].user_id, UserRole.COLLECTOR)

        assert profile.role == UserRole.COLLECTOR

    @pytest.mark.asyncio
    async def test_report_status_mirroring(self, reports, report, people, patched_db) -> None:
        await reports.update_report_status(report.id, ReportStatus.ASSIGNED, collector_id=people["collector"].user_id)
        assigned = await patched_db.get_record(collection="waste_reports", record_id=report.id)

        await reports.update_report_status(report.id, ReportStatus.PENDING)
        pending = await patched_db.get_record(collection="waste_reports", record_id=report.id)

        assert assigned["status"] == "assigned"
        assert assigned["assigned_collector_id"] == people["collector"].user_id
        assert pending["status"] == "pending"
        assert pending["assigned_collector_id"] is None
