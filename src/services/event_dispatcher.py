"""Event dispatcher: resolves rooms for a domain event and enqueues it to sessions."""

import logging
from collections.abc import Iterable

from src.core.errors import RoomCapacityError
from src.domain.events import (
    ApplicationDecided,
    ChatPosted,
    CollectorOffline,
    DomainEvent,
    EmergencyAlert,
    NotificationIssued,
    SystemNotice,
    TaskAssigned,
    TaskStatusChanged,
    to_envelope,
    wire_name,
)
from src.domain.rooms import role_room, task_room, user_room
from src.domain.user import UserRole
from src.models.service_models import DispatchReport
from src.services.room_registry import RoomRegistry


logger = logging.getLogger(__name__)


def _user_rooms(*user_ids: str) -> set[str]:
    return {user_room(uid) for uid in user_ids if uid}


def resolve_rooms_for_event(event: DomainEvent) -> frozenset[str]:
    """Rooms an event is delivered to. Pure; depends only on the event."""
    match event:
        case TaskAssigned(task=task, report=report):
            rooms = {task_room(task.id), role_room(UserRole.ADMIN)}
            rooms |= _user_rooms(task.collector_id, report.resident_id)
        case TaskStatusChanged(task=task):
            rooms = {task_room(task.id), role_room(UserRole.ADMIN)}
        case ChatPosted(message=message):
            rooms = {message.room}
        case ApplicationDecided(applicant_id=applicant_id):
            rooms = {role_room(UserRole.ADMIN)} | _user_rooms(applicant_id)
        case EmergencyAlert():
            rooms = {role_room(UserRole.COLLECTOR), role_room(UserRole.ADMIN)}
        case SystemNotice(rooms=targets):
            rooms = set(targets)
        case NotificationIssued(notification=notification):
            rooms = _user_rooms(notification.user_id)
        case CollectorOffline():
            rooms = {role_room(UserRole.ADMIN)}
    return frozenset(rooms)


class EventDispatcher:
    """Delivers events to every live session in the resolved rooms.

    Dispatch never awaits: frames are pushed onto per-session queues drained by
    each session's writer, so one slow or dead session cannot stall the others.
    """

    def __init__(self, registry: RoomRegistry) -> None:
        self._registry = registry

    def dispatch(self, event: DomainEvent, *, exclude: Iterable[str] = ()) -> DispatchReport:
        self._attach_participants(event)

        rooms = resolve_rooms_for_event(event)
        frame = to_envelope(event)
        excluded = set(exclude)

        targets: set[str] = set()
        for room in rooms:
            targets |= self._registry.members(room)
        targets -= excluded

        delivered = 0
        failed = 0
        for session_id in targets:
            channel = self._registry.channel(session_id)
            if channel is None:
                continue
            if channel.offer(frame):
                delivered += 1
            else:
                failed += 1

        name = wire_name(event)
        logger.info(
            "event_dispatched",
            extra={
                "event": name,
                "event_id": event.event_id,
                "rooms": sorted(rooms),
                "delivered": delivered,
                "failed": failed,
            },
        )
        return DispatchReport(event=name, rooms=sorted(rooms), delivered=delivered, failed=failed)

    def send_to_session(self, session_id: str, event: str, data: dict[str, object]) -> bool:
        """Push a frame to a single session (acks, errors, backfill)."""
        channel = self._registry.channel(session_id)
        if channel is None:
            return False
        return channel.offer({"event": event, "data": data})

    def _attach_participants(self, event: DomainEvent) -> None:
        """A newly assigned task's collector and resident follow its task room."""
        if not isinstance(event, TaskAssigned):
            return
        room = task_room(event.task.id)
        for user_id in (event.task.collector_id, event.report.resident_id):
            if not user_id:
                continue
            for channel in self._registry.sessions_for_user(user_id):
                try:
                    self._registry.join(channel.session_id, room)
                except RoomCapacityError:
                    logger.warning("task_room_attach_failed", extra={"session_id": channel.session_id, "room": room})
