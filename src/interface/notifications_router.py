"""Notification inbox endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.core.config import Constants
from src.core.rate_limiter import RateLimitTier
from src.domain.events import NotificationIssued
from src.domain.notification import NotificationPriority, NotificationType
from src.domain.user import Identity
from src.interface.dependencies import general_rate_limit, get_engine, rate_limited, require_admin
from src.services.engine import SyncEngine


router = APIRouter(prefix="/api/notifications", tags=["notifications"], dependencies=[Depends(general_rate_limit)])


class SendNotificationRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_ids: list[str] = Field(..., min_length=1)
    type: NotificationType = NotificationType.GENERAL
    title: str = Field(..., min_length=1, max_length=Constants.MAX_NOTIFICATION_TITLE_LENGTH)
    message: str = Field(..., min_length=1, max_length=Constants.MAX_NOTIFICATION_MESSAGE_LENGTH)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    data: dict[str, Any] = Field(default_factory=dict)


@router.get("")
async def list_notifications(
    page: int = Query(default=1, ge=1),
    limit: int = Query(
        default=Constants.DEFAULT_NOTIFICATIONS_PER_PAGE, ge=1, le=Constants.MAX_NOTIFICATIONS_PER_PAGE
    ),
    type_filter: NotificationType | None = Query(default=None, alias="type"),
    is_read: bool | None = Query(default=None, alias="isRead"),
    identity: Identity = Depends(rate_limited(RateLimitTier.READ)),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    result = await engine.notifications.get_notifications(
        identity.user_id, type=type_filter, is_read=is_read, page=page, limit=limit
    )
    return {
        "success": True,
        "data": {
            "notifications": [n.to_wire() for n in result.notifications],
            "pagination": result.pagination.model_dump(),
            "unreadCount": result.unread_count,
        },
    }


@router.get("/unread-count")
async def unread_count(
    identity: Identity = Depends(rate_limited(RateLimitTier.READ)),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    count = await engine.notifications.unread_count(identity.user_id)
    return {"success": True, "data": {"unreadCount": count}}


@router.patch("/mark-all-read")
async def mark_all_read(
    identity: Identity = Depends(rate_limited(RateLimitTier.WRITE)),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    updated = await engine.notifications.mark_all_read(identity.user_id)
    return {"success": True, "data": {"updated": updated}}


@router.delete("/clear-all")
async def clear_all(
    identity: Identity = Depends(rate_limited(RateLimitTier.WRITE)),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    deleted = await engine.notifications.clear_all(identity.user_id)
    return {"success": True, "data": {"deleted": deleted}}


@router.post("/send", status_code=status.HTTP_201_CREATED)
async def send_notification(
    body: SendNotificationRequest,
    admin: Identity = Depends(require_admin),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Admin-authored notification to a list of users, pushed to any of them online."""
    await engine.rate_limiter.check(RateLimitTier.WRITE, admin.user_id)
    result = await engine.notifications.send_to_users(
        sender=admin,
        user_ids=body.user_ids,
        type=body.type,
        title=body.title,
        message=body.message,
        priority=body.priority,
        data=body.data,
    )
    for notification in result.created:
        engine.dispatcher.dispatch(NotificationIssued(notification=notification))
    return {
        "success": True,
        "data": {"created": len(result.created), "duplicates": result.duplicates, "failed": result.failed},
    }


@router.get("/stats")
async def notification_stats(
    admin: Identity = Depends(require_admin),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    await engine.rate_limiter.check(RateLimitTier.READ, admin.user_id)
    stats = await engine.notifications.stats()
    return {"success": True, "data": stats.model_dump()}


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    identity: Identity = Depends(rate_limited(RateLimitTier.WRITE)),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    notification = await engine.notifications.mark_read(notification_id, identity.user_id)
    return {"success": True, "data": {"notification": notification.to_wire()}}


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    identity: Identity = Depends(rate_limited(RateLimitTier.WRITE)),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    await engine.notifications.delete(notification_id, identity.user_id)
    return {"success": True, "data": {"id": notification_id}}
