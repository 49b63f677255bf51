"""Collector applications: residents apply, admins decide."""

from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from src.core.config import Constants
from src.core.rate_limiter import RateLimitTier
from src.domain.user import Identity
from src.interface.dependencies import general_rate_limit, get_engine, rate_limited, require_admin
from src.services import application_service
from src.services.engine import SyncEngine


router = APIRouter(tags=["applications"], dependencies=[Depends(general_rate_limit)])


class DecisionRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=Constants.MAX_NOTIFICATION_MESSAGE_LENGTH)


@router.post("/api/collector-applications", status_code=status.HTTP_201_CREATED)
async def submit_application(
    identity: Identity = Depends(rate_limited(RateLimitTier.WRITE)),
) -> dict[str, Any]:
    record = await application_service.submit_application(applicant=identity)
    return {"success": True, "data": {"application": record}}


async def _decide(
    engine: SyncEngine, admin: Identity, application_id: str, *, approved: bool, reason: str | None
) -> dict[str, Any]:
    await engine.rate_limiter.check(RateLimitTier.WRITE, admin.user_id)
    event = await application_service.decide_application(
        reviewer=admin, application_id=application_id, approved=approved, reason=reason
    )
    await engine.publish(event)
    return {
        "success": True,
        "data": {"applicationId": application_id, "status": "approved" if approved else "rejected"},
    }


@router.post("/api/admin/collector-applications/{application_id}/approve")
async def approve_application(
    application_id: str,
    body: DecisionRequest | None = None,
    admin: Identity = Depends(require_admin),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    return await _decide(engine, admin, application_id, approved=True, reason=body.reason if body else None)


@router.post("/api/admin/collector-applications/{application_id}/reject")
async def reject_application(
    application_id: str,
    body: DecisionRequest | None = None,
    admin: Identity = Depends(require_admin),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    return await _decide(engine, admin, application_id, approved=False, reason=body.reason if body else None)
