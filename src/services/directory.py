"""Collaborator interfaces the engine consumes, with SQLite-backed defaults.

Credential storage, report CRUD and login live outside the engine. The engine
only needs to verify a session token, look users up, and read or mirror a
report's status. The default adapters below keep the service runnable on its
own database.
"""

import logging
from datetime import UTC, datetime
from typing import Any, Protocol

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from pydantic import ValidationError

from src.core import db_client
from src.core.config import Constants, settings
from src.core.errors import AuthenticationError
from src.domain.task import ReportStatus, ReportSummary
from src.domain.user import Identity, UserProfile, UserRole, UserStatus


logger = logging.getLogger(__name__)


class AuthVerifier(Protocol):
    """Turns a session token into a verified identity."""

    async def verify_session(self, token: str) -> Identity: ...


class UserDirectory(Protocol):
    """Read access to user records."""

    async def get_user(self, user_id: str) -> UserProfile | None: ...

    async def list_admin_ids(self) -> list[str]: ...


class ReportDirectory(Protocol):
    """Read access to waste reports plus status mirroring."""

    async def get_report(self, report_id: str) -> ReportSummary | None: ...

    async def update_report_status(
        self,
        report_id: str,
        status: ReportStatus,
        *,
        collector_id: str | None = None,
    ) -> None: ...


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class DatabaseUserDirectory:
    """User directory over the ``users`` table."""

    async def get_user(self, user_id: str) -> UserProfile | None:
        try:
            record = await db_client.get_record(collection="users", record_id=user_id)
        except KeyError:
            return None
        return UserProfile(**record)

    async def list_admin_ids(self) -> list[str]:
        records = await db_client.list_records(
            collection="users",
            filter_query=f'role = "{UserRole.ADMIN}" && status = "{UserStatus.ACTIVE}"',
            per_page=Constants.DEFAULT_PER_PAGE_LIMIT,
        )
        return [record["id"] for record in records]

    async def create_user(
        self,
        *,
        name: str,
        email: str,
        role: UserRole,
        status: UserStatus = UserStatus.ACTIVE,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> UserProfile:
        now = _now_iso()
        record = await db_client.create_record(
            collection="users",
            data={
                "name": name,
                "email": email,
                "role": role,
                "status": status,
                "latitude": latitude,
                "longitude": longitude,
                "created": now,
                "updated": now,
            },
        )
        return UserProfile(**record)

    async def set_role(self, user_id: str, role: UserRole) -> UserProfile:
        record = await db_client.update_record(
            collection="users",
            record_id=user_id,
            data={"role": role, "updated": _now_iso()},
        )
        return UserProfile(**record)


class DatabaseReportDirectory:
    """Report directory over the ``waste_reports`` table."""

    async def get_report(self, report_id: str) -> ReportSummary | None:
        try:
            record = await db_client.get_record(collection="waste_reports", record_id=report_id)
        except KeyError:
            return None
        return ReportSummary(**record)

    async def update_report_status(
        self,
        report_id: str,
        status: ReportStatus,
        *,
        collector_id: str | None = None,
    ) -> None:
        data: dict[str, Any] = {"status": status, "updated": _now_iso()}
        if status == ReportStatus.ASSIGNED and collector_id is not None:
            data["assigned_collector_id"] = collector_id
        elif status == ReportStatus.PENDING:
            data["assigned_collector_id"] = None
        elif status == ReportStatus.COMPLETED:
            data["completed_at"] = _now_iso()
        await db_client.update_record(collection="waste_reports", record_id=report_id, data=data)

    async def create_report(
        self,
        *,
        resident_id: str,
        waste_type: str = "general",
        description: str = "",
        address: str = "",
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> ReportSummary:
        now = _now_iso()
        record = await db_client.create_record(
            collection="waste_reports",
            data={
                "resident_id": resident_id,
                "waste_type": waste_type,
                "description": description,
                "address": address,
                "latitude": latitude,
                "longitude": longitude,
                "status": ReportStatus.PENDING,
                "created": now,
                "updated": now,
            },
        )
        return ReportSummary(**record)


class SignedTokenAuthenticator:
    """Session tokens signed with itsdangerous, resolved against the user directory."""

    def __init__(
        self,
        users: UserDirectory,
        *,
        secret_key: str | None = None,
        max_age_seconds: int | None = None,
    ) -> None:
        self._users = users
        self._serializer = URLSafeTimedSerializer(
            str(secret_key or settings.secret_key or "wastesync-dev-secret"),
            salt="wastesync-session",
        )
        self._max_age = max_age_seconds or settings.session_token_max_age_seconds

    def issue_token(self, user_id: str) -> str:
        return self._serializer.dumps({"uid": str(user_id)})

    async def verify_session(self, token: str) -> Identity:
        """Resolve a token to an identity.

        Raises:
            AuthenticationError: If the token is tampered, expired, or names an unusable account
        """
        if not token:
            raise AuthenticationError("Missing session token")
        try:
            payload = self._serializer.loads(token, max_age=self._max_age)
        except SignatureExpired as e:
            raise AuthenticationError("Session token expired") from e
        except BadSignature as e:
            raise AuthenticationError("Invalid session token") from e

        user_id = payload.get("uid") if isinstance(payload, dict) else None
        if not user_id:
            raise AuthenticationError("Invalid session token")

        try:
            profile = await self._users.get_user(str(user_id))
        except ValidationError as e:
            logger.error("user_record_invalid", extra={"user_id": user_id, "error": str(e)})
            raise AuthenticationError("Invalid session token") from e
        if profile is None or not profile.is_active:
            logger.warning("auth_unknown_or_inactive_user", extra={"user_id": user_id})
            raise AuthenticationError("Account not found or inactive")

        return Identity.from_profile(profile)
