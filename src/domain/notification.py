"""Notification domain models and enums."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from src.core.config import Constants
from src.domain.task import ensure_utc


class NotificationType(StrEnum):
    """Kinds of persisted notifications."""

    REPORT_CREATED = "report_created"
    REPORT_ASSIGNED = "report_assigned"
    REPORT_COMPLETED = "report_completed"
    PICKUP_SCHEDULED = "pickup_scheduled"
    PICKUP_REMINDER = "pickup_reminder"
    PICKUP_RESCHEDULED = "pickup_rescheduled"
    APPLICATION_APPROVED = "application_approved"
    APPLICATION_REJECTED = "application_rejected"
    SYSTEM_ALERT = "system_alert"
    GENERAL = "general"


class NotificationPriority(StrEnum):
    """Notification priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class NotificationDraft(BaseModel):
    """A notification projected from an event, not yet persisted."""

    user_id: str
    type: NotificationType
    title: str = Field(..., max_length=Constants.MAX_NOTIFICATION_TITLE_LENGTH)
    message: str = Field(..., max_length=Constants.MAX_NOTIFICATION_MESSAGE_LENGTH)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    data: dict[str, Any] = Field(default_factory=dict)


class Notification(BaseModel):
    """Persisted notification."""

    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    priority: NotificationPriority = NotificationPriority.MEDIUM
    data: dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    read_at: datetime | None = None
    event_id: str
    expires_at: datetime
    created: datetime

    @field_validator("read_at", "expires_at", "created")
    @classmethod
    def normalize_timezone(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None

    def to_wire(self) -> dict[str, Any]:
        """Client-facing payload of ``new_notification``."""
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "priority": self.priority.value,
            "data": self.data,
            "isRead": self.is_read,
            "createdAt": self.created.isoformat(),
        }
