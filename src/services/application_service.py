"""Collector applications: residents apply, admins approve or reject."""

import logging
from datetime import UTC, datetime
from typing import Any

from src.core import db_client
from src.core.errors import InvalidRequestError, InvalidTransitionError, NotFoundError, UnauthorizedError
from src.core.logging import span
from src.domain.events import ApplicationDecided
from src.domain.user import Identity, UserRole, UserSummary


logger = logging.getLogger(__name__)

APPLICATIONS = "collector_applications"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


async def submit_application(*, applicant: Identity) -> dict[str, Any]:
    """File a pending application for the applicant."""
    with span("application_service.submit_application"):
        if applicant.role != UserRole.RESIDENT:
            raise InvalidRequestError("Only residents can apply to become collectors")
        existing = await db_client.get_first_record(
            collection=APPLICATIONS,
            filter_query=f'user_id = "{db_client.sanitize_param(applicant.user_id)}" && status = "pending"',
        )
        if existing is not None:
            raise InvalidRequestError("An application is already pending", application_id=existing["id"])

        now = _now_iso()
        record = await db_client.create_record(
            collection=APPLICATIONS,
            data={"user_id": applicant.user_id, "status": "pending", "created": now, "updated": now},
        )
        logger.info("collector_application_submitted", extra={"application_id": record["id"]})
        return record


async def decide_application(
    *,
    reviewer: Identity,
    application_id: str,
    approved: bool,
    reason: str | None = None,
) -> ApplicationDecided:
    """Approve or reject a pending application; approval promotes the user to collector."""
    with span("application_service.decide_application"):
        if not reviewer.is_admin:
            raise UnauthorizedError("Only admins can review collector applications")

        try:
            application = await db_client.get_record(collection=APPLICATIONS, record_id=application_id)
        except KeyError as e:
            raise NotFoundError(f"Application {application_id} not found", application_id=application_id) from e

        if application["status"] != "pending":
            raise InvalidTransitionError(
                f"Cannot review: application {application_id} is already {application['status']}",
                application_id=application_id,
            )

        now = _now_iso()
        await db_client.update_record(
            collection=APPLICATIONS,
            record_id=application_id,
            data={
                "status": "approved" if approved else "rejected",
                "reviewed_by": reviewer.user_id,
                "reason": reason,
                "updated": now,
            },
        )
        if approved:
            await db_client.update_record(
                collection="users",
                record_id=application["user_id"],
                data={"role": UserRole.COLLECTOR, "updated": now},
            )

        logger.info(
            "collector_application_decided",
            extra={"application_id": application_id, "approved": approved, "reviewer_id": reviewer.user_id},
        )
        return ApplicationDecided(
            application_id=application_id,
            applicant_id=application["user_id"],
            approved=approved,
            reviewer=UserSummary(id=reviewer.user_id, name=reviewer.name, role=reviewer.role),
            reason=reason,
        )
