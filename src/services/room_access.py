"""Who may join which room."""

from src.core.errors import UnauthorizedError
from src.domain.rooms import ParsedRoom, RoomKind, parse_room
from src.domain.task import PickupTask, ReportSummary
from src.domain.user import Identity


def authorize_static_room(identity: Identity, room: str) -> ParsedRoom:
    """Check rooms that can be decided from the key alone.

    Task rooms need the task record and are reported back to the caller with
    kind ``TASK`` for :func:`authorize_task_room`.

    Raises:
        UnauthorizedError: If the identity may not join
        ValueError: If the key is malformed
    """
    parsed = parse_room(room)
    match parsed.kind:
        case RoomKind.USER:
            if parsed.parts[0] != identity.user_id:
                raise UnauthorizedError("Cannot join another user's room", room=room)
        case RoomKind.ROLE:
            if parsed.parts[0] != identity.role.value:
                raise UnauthorizedError("Cannot join another role's room", room=room)
        case RoomKind.DM:
            if identity.user_id not in parsed.parts:
                raise UnauthorizedError("Not a participant of this conversation", room=room)
        case RoomKind.AREA | RoomKind.TASK:
            pass
    return parsed


def authorize_task_room(identity: Identity, task: PickupTask, report: ReportSummary | None) -> None:
    """Admins, the assigned collector and the report's resident may follow a task."""
    if identity.is_admin or task.collector_id == identity.user_id:
        return
    if report is not None and report.resident_id == identity.user_id:
        return
    raise UnauthorizedError("Not a participant of this task", task_id=task.id)
