"""Domain events emitted by the engine.

Events form a closed union discriminated by ``kind``. Routing, notification
projection and wire encoding each handle the union with a single ``match``.
"""

import uuid
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter

from src.domain.chat import ChatMessage
from src.domain.notification import Notification, NotificationPriority
from src.domain.task import PickupTask, ReportSummary, TaskStatus
from src.domain.user import UserSummary


def _new_event_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(UTC)


class _EventBase(BaseModel):
    event_id: str = Field(default_factory=_new_event_id)
    occurred_at: datetime = Field(default_factory=_now)


class TaskAssigned(_EventBase):
    """A collector was assigned a new pickup task."""

    kind: Literal["task_assigned"] = "task_assigned"
    task: PickupTask
    report: ReportSummary
    collector: UserSummary
    actor: UserSummary


class TaskStatusChanged(_EventBase):
    """A pickup task moved along the state machine."""

    kind: Literal["task_status_changed"] = "task_status_changed"
    task: PickupTask
    status: TaskStatus
    previous_status: TaskStatus
    report: ReportSummary
    collector: UserSummary
    actor: UserSummary
    reason: str | None = None


class ChatPosted(_EventBase):
    """A chat message was persisted."""

    kind: Literal["chat_posted"] = "chat_posted"
    message: ChatMessage


class ApplicationDecided(_EventBase):
    """An admin approved or rejected a collector application."""

    kind: Literal["application_decided"] = "application_decided"
    application_id: str
    applicant_id: str
    approved: bool
    reviewer: UserSummary
    reason: str | None = None


class EmergencyAlert(_EventBase):
    """A collector raised an emergency from the field."""

    kind: Literal["emergency_alert"] = "emergency_alert"
    reporter: UserSummary
    message: str
    latitude: float | None = None
    longitude: float | None = None


class SystemNotice(_EventBase):
    """An admin broadcast to a set of rooms."""

    kind: Literal["system_notice"] = "system_notice"
    title: str
    message: str
    rooms: list[str]
    priority: NotificationPriority = NotificationPriority.MEDIUM
    sender: UserSummary | None = None


class NotificationIssued(_EventBase):
    """A notification was persisted for a user."""

    kind: Literal["notification_issued"] = "notification_issued"
    notification: Notification


class CollectorOffline(_EventBase):
    """A collector's last session disconnected."""

    kind: Literal["collector_offline"] = "collector_offline"
    collector: UserSummary


DomainEvent = Annotated[
    TaskAssigned
    | TaskStatusChanged
    | ChatPosted
    | ApplicationDecided
    | EmergencyAlert
    | SystemNotice
    | NotificationIssued
    | CollectorOffline,
    Field(discriminator="kind"),
]

domain_event_adapter: TypeAdapter[DomainEvent] = TypeAdapter(DomainEvent)


def _task_payload(
    task: PickupTask,
    report: ReportSummary,
    collector: UserSummary,
    actor: UserSummary,
) -> dict[str, Any]:
    return {
        "taskId": task.id,
        "reportId": report.id,
        "task": task.model_dump(mode="json"),
        "report": report.model_dump(mode="json"),
        "collector": collector.model_dump(mode="json"),
        "actor": actor.model_dump(mode="json"),
    }


def wire_name(event: DomainEvent) -> str:
    """Name of the client-facing event."""
    match event:
        case TaskAssigned():
            return "assign_task"
        case TaskStatusChanged():
            return "task_update"
        case ChatPosted():
            return "new_message"
        case ApplicationDecided(approved=True):
            return "application_approved"
        case ApplicationDecided():
            return "application_rejected"
        case EmergencyAlert():
            return "emergency_alert"
        case SystemNotice():
            return "system_notification"
        case NotificationIssued():
            return "new_notification"
        case CollectorOffline():
            return "collector_offline"


def wire_payload(event: DomainEvent) -> dict[str, Any]:
    """Client-facing payload of an event."""
    match event:
        case TaskAssigned(task=task, report=report, collector=collector, actor=actor):
            payload = _task_payload(task, report, collector, actor)
            payload["status"] = task.status.value
        case TaskStatusChanged(task=task, report=report, collector=collector, actor=actor):
            payload = _task_payload(task, report, collector, actor)
            payload.update(
                status=event.status.value,
                previousStatus=event.previous_status.value,
                reason=event.reason,
            )
        case ChatPosted(message=message):
            payload = message.to_wire()
        case ApplicationDecided():
            payload = {
                "applicationId": event.application_id,
                "userId": event.applicant_id,
                "approved": event.approved,
                "reason": event.reason,
                "reviewer": event.reviewer.model_dump(mode="json"),
            }
        case EmergencyAlert():
            payload = {
                "collector": event.reporter.model_dump(mode="json"),
                "message": event.message,
                "location": (
                    {"lat": event.latitude, "lng": event.longitude}
                    if event.latitude is not None and event.longitude is not None
                    else None
                ),
            }
        case SystemNotice():
            payload = {
                "title": event.title,
                "message": event.message,
                "priority": event.priority.value,
                "sender": event.sender.model_dump(mode="json") if event.sender else None,
            }
        case NotificationIssued(notification=notification):
            payload = notification.to_wire()
        case CollectorOffline(collector=collector):
            payload = {"collectorId": collector.id, "name": collector.name}
    payload["eventId"] = event.event_id
    payload.setdefault("timestamp", event.occurred_at.isoformat())
    return payload


def to_envelope(event: DomainEvent) -> dict[str, Any]:
    """Wire frame ``{"event": name, "data": payload}`` for an event."""
    return {"event": wire_name(event), "data": wire_payload(event)}
