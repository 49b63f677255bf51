"""Composition root for the sync engine.

``SyncEngine`` wires the task store, room registry, dispatcher, chat history,
notification fan-out and rate limiter together and exposes ``publish``: the
single path by which a domain event reaches live sessions and notification
records.
"""

import logging
from collections.abc import Iterable

from src.core.errors import InvalidRequestError, UnauthorizedError
from src.core.logging import span
from src.core.rate_limiter import RateLimiter
from src.domain.chat import ChatMessage, MessageKind
from src.domain.events import (
    ChatPosted,
    CollectorOffline,
    DomainEvent,
    EmergencyAlert,
    NotificationIssued,
    SystemNotice,
)
from src.domain.notification import NotificationPriority
from src.domain.rooms import RoomKind, normalize_room
from src.domain.user import Identity, UserRole, UserSummary
from src.models.service_models import DispatchReport
from src.services.chat_service import ChatService
from src.services.directory import (
    AuthVerifier,
    DatabaseReportDirectory,
    DatabaseUserDirectory,
    ReportDirectory,
    SignedTokenAuthenticator,
    UserDirectory,
)
from src.services.event_dispatcher import EventDispatcher
from src.services.notification_service import NotificationFanout
from src.services.room_access import authorize_static_room, authorize_task_room
from src.services.room_registry import RoomRegistry
from src.services.task_store import TaskStore


logger = logging.getLogger(__name__)


class SyncEngine:
    """All engine components for one process."""

    def __init__(
        self,
        *,
        users: UserDirectory,
        reports: ReportDirectory,
        auth: AuthVerifier,
        rate_limiter: RateLimiter | None = None,
        registry: RoomRegistry | None = None,
        area_precision: int = 2,
    ) -> None:
        self.users = users
        self.reports = reports
        self.auth = auth
        self.rate_limiter = rate_limiter or RateLimiter()
        self.registry = registry or RoomRegistry()
        self.dispatcher = EventDispatcher(self.registry)
        self.tasks = TaskStore(users, reports)
        self.chat = ChatService()
        self.notifications = NotificationFanout(users)
        self.area_precision = area_precision

    async def publish(self, event: DomainEvent, *, exclude: Iterable[str] = ()) -> DispatchReport:
        """Deliver an event to live sessions, then persist and push its notifications."""
        with span("engine.publish"):
            report = self.dispatcher.dispatch(event, exclude=exclude)

            fanout = await self.notifications.handle_event(event)
            for notification in fanout.created:
                self.dispatcher.dispatch(NotificationIssued(notification=notification))
            return report

    async def authorize_room(self, identity: Identity, room: str) -> str:
        """Normalize a room key and check the identity may read it."""
        try:
            room = normalize_room(room, self.area_precision)
            parsed = authorize_static_room(identity, room)
        except ValueError as e:
            raise InvalidRequestError(str(e), room=room) from e
        if parsed.kind == RoomKind.TASK:
            task = await self.tasks.get_task(parsed.parts[0])
            report = await self.reports.get_report(task.report_id)
            authorize_task_room(identity, task, report)
        return room

    async def post_chat_message(
        self,
        *,
        sender: Identity,
        room: str,
        body: str,
        kind: MessageKind = MessageKind.TEXT,
        client_id: str | None = None,
        sender_session_id: str | None = None,
    ) -> ChatMessage:
        """Persist a message, then deliver it to everyone else in the room."""
        room = normalize_room(room, self.area_precision)
        message = await self.chat.post_message(sender=sender, room=room, body=body, kind=kind, client_id=client_id)
        exclude = [sender_session_id] if sender_session_id else []
        await self.publish(ChatPosted(message=message), exclude=exclude)
        return message

    async def raise_emergency(
        self,
        *,
        reporter: Identity,
        message: str,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> EmergencyAlert:
        if reporter.role != UserRole.COLLECTOR:
            raise UnauthorizedError("Only collectors can raise emergency alerts")
        event = EmergencyAlert(
            reporter=UserSummary(id=reporter.user_id, name=reporter.name, role=reporter.role),
            message=message,
            latitude=latitude if latitude is not None else reporter.latitude,
            longitude=longitude if longitude is not None else reporter.longitude,
        )
        logger.warning("emergency_alert_raised", extra={"collector_id": reporter.user_id})
        await self.publish(event)
        return event

    async def broadcast_notice(
        self,
        *,
        sender: Identity,
        title: str,
        message: str,
        rooms: list[str],
        priority: NotificationPriority = NotificationPriority.MEDIUM,
    ) -> DispatchReport:
        if not sender.is_admin:
            raise UnauthorizedError("Only admins can broadcast system notifications")
        if not rooms:
            raise InvalidRequestError("At least one target room is required", field="rooms")
        try:
            targets = [normalize_room(room, self.area_precision) for room in rooms]
        except ValueError as e:
            raise InvalidRequestError(str(e), field="rooms") from e
        event = SystemNotice(
            title=title,
            message=message,
            rooms=targets,
            priority=priority,
            sender=UserSummary(id=sender.user_id, name=sender.name, role=sender.role),
        )
        return await self.publish(event)

    async def session_closed(self, identity: Identity) -> None:
        """Presence bookkeeping once a session is gone."""
        if identity.role != UserRole.COLLECTOR:
            return
        if self.registry.sessions_for_user(identity.user_id):
            return
        await self.publish(
            CollectorOffline(collector=UserSummary(id=identity.user_id, name=identity.name, role=identity.role))
        )


def create_engine(*, area_precision: int = 2, rate_limiter: RateLimiter | None = None) -> SyncEngine:
    """Engine wired to the SQLite-backed default collaborators."""
    users = DatabaseUserDirectory()
    return SyncEngine(
        users=users,
        reports=DatabaseReportDirectory(),
        auth=SignedTokenAuthenticator(users),
        rate_limiter=rate_limiter,
        area_precision=area_precision,
    )
