"""Admin endpoints for broadcasts and live-session oversight."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from src.core.config import Constants
from src.core.rate_limiter import RateLimitTier
from src.domain.notification import NotificationPriority
from src.domain.user import Identity
from src.interface.dependencies import general_rate_limit, get_engine, require_admin
from src.services.engine import SyncEngine


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(general_rate_limit)])


class SystemNotificationRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=Constants.MAX_NOTIFICATION_TITLE_LENGTH)
    message: str = Field(..., min_length=1, max_length=Constants.MAX_NOTIFICATION_MESSAGE_LENGTH)
    rooms: list[str] = Field(default_factory=lambda: ["role:resident", "role:collector"], min_length=1)
    priority: NotificationPriority = NotificationPriority.MEDIUM


@router.post("/system-notifications", status_code=status.HTTP_202_ACCEPTED)
async def broadcast_system_notification(
    body: SystemNotificationRequest,
    admin: Identity = Depends(require_admin),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Push a notice to every live session in the target rooms. Nothing is persisted."""
    await engine.rate_limiter.check(RateLimitTier.WRITE, admin.user_id)
    report = await engine.broadcast_notice(
        sender=admin, title=body.title, message=body.message, rooms=body.rooms, priority=body.priority
    )
    logger.info(
        "system_notification_broadcast",
        extra={"admin_id": admin.user_id, "rooms": report.rooms, "delivered": report.delivered},
    )
    return {"success": True, "data": report.model_dump()}


@router.get("/realtime/sessions")
async def realtime_sessions(
    admin: Identity = Depends(require_admin),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    await engine.rate_limiter.check(RateLimitTier.READ, admin.user_id)
    return {
        "success": True,
        "data": {**engine.registry.stats(), "rooms": engine.registry.room_sizes()},
    }
