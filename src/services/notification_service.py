"""Notification fan-out: projects domain events into per-user notification records.

Projection is declarative. ``PROJECTION_TABLE`` maps an event (and, for task
updates, the new status) to the notifications it produces. Persistence is
idempotent per ``(user_id, event_id)``, so replaying an event never duplicates
a notification.
"""

import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from src.core import db_client
from src.core.config import Constants, settings
from src.core.errors import ForbiddenError, InvalidRequestError, NotFoundError, UnauthorizedError
from src.core.logging import span
from src.domain.events import (
    ApplicationDecided,
    DomainEvent,
    EmergencyAlert,
    TaskAssigned,
    TaskStatusChanged,
)
from src.domain.notification import Notification, NotificationDraft, NotificationPriority, NotificationType
from src.domain.task import TaskStatus
from src.domain.user import Identity, UserRole
from src.models.service_models import FanoutResult, NotificationPage, NotificationStats, Pagination
from src.services.directory import UserDirectory


logger = logging.getLogger(__name__)

NOTIFICATIONS = "notifications"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _date(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC")


def _task_data(event: TaskAssigned | TaskStatusChanged) -> dict[str, Any]:
    data: dict[str, Any] = {
        "taskId": event.task.id,
        "reportId": event.report.id,
        "scheduledDate": event.task.scheduled_date.isoformat(),
    }
    if isinstance(event, TaskStatusChanged):
        data["status"] = event.status.value
        if event.reason:
            data["reason"] = event.reason
    return data


# Recipient selectors: (event, active admin ids) -> user ids
Recipients = Callable[[Any, Sequence[str]], list[str]]


def _collector(event: Any, _admins: Sequence[str]) -> list[str]:
    return [event.task.collector_id]


def _resident(event: Any, _admins: Sequence[str]) -> list[str]:
    return [event.report.resident_id] if event.report.resident_id else []


def _admins(_event: Any, admins: Sequence[str]) -> list[str]:
    return list(admins)


def _collector_when_admin_acted(event: Any, _admins: Sequence[str]) -> list[str]:
    if event.actor.role == UserRole.ADMIN and event.actor.id != event.task.collector_id:
        return [event.task.collector_id]
    return []


def _applicant(event: Any, _admins: Sequence[str]) -> list[str]:
    return [event.applicant_id]


@dataclass(frozen=True)
class ProjectionRule:
    """One notification produced for each recipient of an event."""

    recipients: Recipients
    type: NotificationType
    priority: NotificationPriority
    title: Callable[[Any], str]
    message: Callable[[Any], str]
    data: Callable[[Any], dict[str, Any]] = _task_data


ProjectionKey = tuple[str, str | None]

PROJECTION_TABLE: dict[ProjectionKey, tuple[ProjectionRule, ...]] = {
    ("task_assigned", None): (
        ProjectionRule(
            recipients=_collector,
            type=NotificationType.REPORT_ASSIGNED,
            priority=NotificationPriority.HIGH,
            title=lambda e: "New Pickup Task Assigned",
            message=lambda e: (
                f"You have been assigned a {e.report.waste_type} waste pickup"
                f"{' at ' + e.report.address if e.report.address else ''} on {_date(e.task.scheduled_date)}"
            ),
        ),
        ProjectionRule(
            recipients=_resident,
            type=NotificationType.PICKUP_SCHEDULED,
            priority=NotificationPriority.MEDIUM,
            title=lambda e: "Pickup Scheduled",
            message=lambda e: (
                f"Your waste pickup has been scheduled for {_date(e.task.scheduled_date)} with {e.collector.name}"
            ),
        ),
    ),
    ("task_status_changed", TaskStatus.IN_PROGRESS): (
        ProjectionRule(
            recipients=_resident,
            type=NotificationType.PICKUP_REMINDER,
            priority=NotificationPriority.MEDIUM,
            title=lambda e: "Pickup Started",
            message=lambda e: f"{e.collector.name} has started your waste pickup",
        ),
    ),
    ("task_status_changed", TaskStatus.COMPLETED): (
        ProjectionRule(
            recipients=_resident,
            type=NotificationType.REPORT_COMPLETED,
            priority=NotificationPriority.MEDIUM,
            title=lambda e: "Pickup Completed",
            message=lambda e: f"Your {e.report.waste_type} waste pickup has been completed",
        ),
        ProjectionRule(
            recipients=_admins,
            type=NotificationType.GENERAL,
            priority=NotificationPriority.LOW,
            title=lambda e: "Task Completed",
            message=lambda e: f"Pickup task {e.task.id} was completed by {e.collector.name}",
        ),
    ),
    ("task_status_changed", TaskStatus.CANCELLED): (
        ProjectionRule(
            recipients=_resident,
            type=NotificationType.SYSTEM_ALERT,
            priority=NotificationPriority.HIGH,
            title=lambda e: "Pickup Cancelled",
            message=lambda e: f"Your waste pickup has been cancelled{': ' + e.reason if e.reason else ''}",
        ),
        ProjectionRule(
            recipients=_collector_when_admin_acted,
            type=NotificationType.SYSTEM_ALERT,
            priority=NotificationPriority.HIGH,
            title=lambda e: "Pickup Task Cancelled",
            message=lambda e: f"Pickup task {e.task.id} was cancelled by {e.actor.name}",
        ),
    ),
    ("task_status_changed", TaskStatus.RESCHEDULED): (
        ProjectionRule(
            recipients=_resident,
            type=NotificationType.PICKUP_RESCHEDULED,
            priority=NotificationPriority.MEDIUM,
            title=lambda e: "Pickup Rescheduled",
            message=lambda e: f"Your waste pickup has been moved to {_date(e.task.scheduled_date)}",
        ),
        ProjectionRule(
            recipients=_collector,
            type=NotificationType.PICKUP_RESCHEDULED,
            priority=NotificationPriority.MEDIUM,
            title=lambda e: "Pickup Task Rescheduled",
            message=lambda e: f"Pickup task {e.task.id} has been moved to {_date(e.task.scheduled_date)}",
        ),
    ),
    ("application_decided", "approved"): (
        ProjectionRule(
            recipients=_applicant,
            type=NotificationType.APPLICATION_APPROVED,
            priority=NotificationPriority.HIGH,
            title=lambda e: "Collector Application Approved",
            message=lambda e: "Your collector application has been approved. You can now accept pickup tasks.",
            data=lambda e: {"applicationId": e.application_id},
        ),
    ),
    ("application_decided", "rejected"): (
        ProjectionRule(
            recipients=_applicant,
            type=NotificationType.APPLICATION_REJECTED,
            priority=NotificationPriority.MEDIUM,
            title=lambda e: "Collector Application Update",
            message=lambda e: (
                f"Your collector application was not approved{': ' + e.reason if e.reason else ''}"
            ),
            data=lambda e: {"applicationId": e.application_id},
        ),
    ),
    ("emergency_alert", None): (
        ProjectionRule(
            recipients=_admins,
            type=NotificationType.SYSTEM_ALERT,
            priority=NotificationPriority.URGENT,
            title=lambda e: "Emergency Alert",
            message=lambda e: f"{e.reporter.name}: {e.message}",
            data=lambda e: {
                "collectorId": e.reporter.id,
                "latitude": e.latitude,
                "longitude": e.longitude,
            },
        ),
    ),
}


def projection_key(event: DomainEvent) -> ProjectionKey:
    match event:
        case TaskStatusChanged(status=status):
            return (event.kind, status)
        case ApplicationDecided(approved=approved):
            return (event.kind, "approved" if approved else "rejected")
        case _:
            return (event.kind, None)


def needs_admin_ids(event: DomainEvent) -> bool:
    rules = PROJECTION_TABLE.get(projection_key(event), ())
    return any(rule.recipients is _admins for rule in rules)


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"


def project(event: DomainEvent, admin_ids: Sequence[str] = ()) -> list[NotificationDraft]:
    """Notifications an event produces. Events without a table entry produce none."""
    drafts: list[NotificationDraft] = []
    seen: set[tuple[str, NotificationType]] = set()
    for rule in PROJECTION_TABLE.get(projection_key(event), ()):
        for user_id in rule.recipients(event, admin_ids):
            if not user_id or (user_id, rule.type) in seen:
                continue
            seen.add((user_id, rule.type))
            drafts.append(
                NotificationDraft(
                    user_id=user_id,
                    type=rule.type,
                    title=_truncate(rule.title(event), Constants.MAX_NOTIFICATION_TITLE_LENGTH),
                    message=_truncate(rule.message(event), Constants.MAX_NOTIFICATION_MESSAGE_LENGTH),
                    priority=rule.priority,
                    data=rule.data(event),
                )
            )
    return drafts


class NotificationFanout:
    """Persists projected notifications and serves the per-user notification API."""

    def __init__(
        self,
        users: UserDirectory,
        *,
        ttl_days: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._users = users
        self._ttl = timedelta(days=ttl_days or settings.notification_ttl_days)
        self._clock = clock

    # ------------------------------------------------------------ fan-out

    async def handle_event(self, event: DomainEvent) -> FanoutResult:
        """Project and persist an event's notifications.

        Persistence failures are logged and counted; they never propagate to the
        action that produced the event.
        """
        with span("notification_service.handle_event"):
            admin_ids: list[str] = []
            if needs_admin_ids(event):
                try:
                    admin_ids = await self._users.list_admin_ids()
                except db_client.DatabaseError as e:
                    logger.error("admin_lookup_failed", extra={"event_id": event.event_id, "error": str(e)})

            drafts = project(event, admin_ids)
            if not drafts:
                return FanoutResult()
            return await self._persist(drafts, event_id=event.event_id)

    async def _persist(self, drafts: Sequence[NotificationDraft], *, event_id: str) -> FanoutResult:
        result = FanoutResult()
        now = self._clock()
        for draft in drafts:
            try:
                record = await db_client.create_record(
                    collection=NOTIFICATIONS,
                    data={
                        "user_id": draft.user_id,
                        "type": draft.type,
                        "title": draft.title,
                        "message": draft.message,
                        "priority": draft.priority,
                        "data": draft.data,
                        "is_read": False,
                        "read_at": None,
                        "event_id": event_id,
                        "expires_at": now + self._ttl,
                        "created": now,
                    },
                )
            except db_client.DuplicateRecordError:
                result.duplicates += 1
                continue
            except db_client.DatabaseError as e:
                result.failed += 1
                logger.error(
                    "notification_persist_failed",
                    extra={"user_id": draft.user_id, "event_id": event_id, "error": str(e)},
                )
                continue
            result.created.append(Notification(**record))

        logger.info(
            "notifications_fanned_out",
            extra={
                "event_id": event_id,
                "created": len(result.created),
                "duplicates": result.duplicates,
                "failed": result.failed,
            },
        )
        return result

    async def send_to_users(
        self,
        *,
        sender: Identity,
        user_ids: Sequence[str],
        type: NotificationType,  # noqa: A002
        title: str,
        message: str,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        data: dict[str, Any] | None = None,
    ) -> FanoutResult:
        """Admin broadcast of a hand-written notification."""
        with span("notification_service.send_to_users"):
            if not sender.is_admin:
                raise UnauthorizedError("Only admins can send notifications")
            if not user_ids:
                raise InvalidRequestError("At least one recipient is required", field="user_ids")
            drafts = [
                NotificationDraft(
                    user_id=user_id,
                    type=type,
                    title=title.strip(),
                    message=message.strip(),
                    priority=priority,
                    data=data or {},
                )
                for user_id in dict.fromkeys(user_ids)
            ]
            return await self._persist(drafts, event_id=f"manual-{uuid.uuid4().hex}")

    # -------------------------------------------------------------- reads

    def _visible_filter(self, user_id: str) -> str:
        now = self._clock().isoformat()
        return f'user_id = "{db_client.sanitize_param(user_id)}" && expires_at > "{now}"'

    async def get_notifications(
        self,
        user_id: str,
        *,
        type: NotificationType | None = None,  # noqa: A002
        is_read: bool | None = None,
        page: int = 1,
        limit: int = Constants.DEFAULT_NOTIFICATIONS_PER_PAGE,
    ) -> NotificationPage:
        with span("notification_service.get_notifications"):
            limit = max(1, min(limit, Constants.MAX_NOTIFICATIONS_PER_PAGE))
            page = max(page, 1)

            filter_query = self._visible_filter(user_id)
            if type is not None:
                filter_query += f' && type = "{type}"'
            if is_read is not None:
                filter_query += f' && is_read = "{str(is_read).lower()}"'

            records = await db_client.list_records(
                collection=NOTIFICATIONS,
                filter_query=filter_query,
                sort="-created,-id",
                page=page,
                per_page=limit,
            )
            total = await db_client.count_records(collection=NOTIFICATIONS, filter_query=filter_query)
            unread = await self.unread_count(user_id)

            return NotificationPage(
                notifications=[Notification(**record) for record in records],
                pagination=Pagination.build(page=page, limit=limit, total=total),
                unread_count=unread,
            )

    async def unread_count(self, user_id: str) -> int:
        """Derived from the records on every call; there is no stored counter to drift."""
        return await db_client.count_records(
            collection=NOTIFICATIONS,
            filter_query=f'{self._visible_filter(user_id)} && is_read = "false"',
        )

    # ----------------------------------------------------------- mutations

    async def _owned(self, notification_id: str, actor_id: str) -> Notification:
        try:
            record = await db_client.get_record(collection=NOTIFICATIONS, record_id=notification_id)
        except KeyError as e:
            raise NotFoundError(f"Notification {notification_id} not found", notification_id=notification_id) from e
        notification = Notification(**record)
        if notification.user_id != actor_id:
            raise ForbiddenError("Not authorized to access this notification", notification_id=notification_id)
        return notification

    async def mark_read(self, notification_id: str, actor_id: str) -> Notification:
        """Mark one notification read. Marking an already-read notification is a no-op."""
        with span("notification_service.mark_read"):
            notification = await self._owned(notification_id, actor_id)
            if notification.is_read:
                return notification
            record = await db_client.update_record(
                collection=NOTIFICATIONS,
                record_id=notification_id,
                data={"is_read": True, "read_at": self._clock()},
            )
            return Notification(**record)

    async def mark_all_read(self, actor_id: str) -> int:
        with span("notification_service.mark_all_read"):
            updated = await db_client.update_records(
                collection=NOTIFICATIONS,
                filter_query=f'user_id = "{db_client.sanitize_param(actor_id)}" && is_read = "false"',
                data={"is_read": True, "read_at": self._clock()},
            )
            logger.info("notifications_marked_read", extra={"user_id": actor_id, "count": updated})
            return updated

    async def delete(self, notification_id: str, actor_id: str) -> None:
        with span("notification_service.delete"):
            await self._owned(notification_id, actor_id)
            await db_client.delete_record(collection=NOTIFICATIONS, record_id=notification_id)

    async def clear_all(self, actor_id: str) -> int:
        with span("notification_service.clear_all"):
            deleted = await db_client.delete_records(
                collection=NOTIFICATIONS,
                filter_query=f'user_id = "{db_client.sanitize_param(actor_id)}"',
            )
            logger.info("notifications_cleared", extra={"user_id": actor_id, "count": deleted})
            return deleted

    async def purge_expired(self) -> int:
        """Delete notifications past their expiry."""
        with span("notification_service.purge_expired"):
            deleted = await db_client.delete_records(
                collection=NOTIFICATIONS,
                filter_query=f'expires_at <= "{self._clock().isoformat()}"',
            )
            if deleted:
                logger.info("expired_notifications_purged", extra={"count": deleted})
            return deleted

    async def stats(self) -> NotificationStats:
        with span("notification_service.stats"):
            by_type: dict[str, int] = {}
            unread_by_type: dict[str, int] = {}
            for notification_type in NotificationType:
                total = await db_client.count_records(
                    collection=NOTIFICATIONS, filter_query=f'type = "{notification_type}"'
                )
                if not total:
                    continue
                by_type[notification_type.value] = total
                unread_by_type[notification_type.value] = await db_client.count_records(
                    collection=NOTIFICATIONS,
                    filter_query=f'type = "{notification_type}" && is_read = "false"',
                )
            return NotificationStats(
                total=await db_client.count_records(collection=NOTIFICATIONS),
                unread=await db_client.count_records(collection=NOTIFICATIONS, filter_query='is_read = "false"'),
                by_type=by_type,
                unread_by_type=unread_by_type,
            )
