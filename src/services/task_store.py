"""Pickup task store: the task state machine and its status history.

Every mutation follows the same shape: load, authorize, validate the edge,
commit with compare-and-set on ``version``, append history, mirror the report
status, and return exactly one domain event. The store never talks to the
network; publishing the event is the caller's job.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from src.core import db_client
from src.core.config import Constants
from src.core.errors import (
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
    StaleVersionError,
    UnauthorizedError,
)
from src.core.locks import KeyedLockManager
from src.core.logging import span
from src.domain.events import TaskAssigned, TaskStatusChanged
from src.domain.task import (
    ACTIVE_STATUSES,
    PickupTask,
    ReportStatus,
    ReportSummary,
    TaskStatus,
    TaskStatusChange,
    can_transition,
    ensure_utc,
)
from src.domain.user import Identity, UserRole, UserSummary
from src.models.service_models import TransitionResult
from src.services.directory import ReportDirectory, UserDirectory


logger = logging.getLogger(__name__)

TASKS = "pickup_tasks"
HISTORY = "task_status_history"

# Report status mirrored after each committed transition
_REPORT_STATUS_FOR: dict[TaskStatus, ReportStatus] = {
    TaskStatus.SCHEDULED: ReportStatus.ASSIGNED,
    TaskStatus.IN_PROGRESS: ReportStatus.IN_PROGRESS,
    TaskStatus.COMPLETED: ReportStatus.COMPLETED,
    TaskStatus.CANCELLED: ReportStatus.PENDING,
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _check_length(value: str | None, limit: int, field: str) -> None:
    if value is not None and len(value) > limit:
        raise InvalidRequestError(f"{field} must be at most {limit} characters", field=field, limit=limit)


class TaskStore:
    """Owns pickup task records and enforces the lifecycle."""

    def __init__(
        self,
        users: UserDirectory,
        reports: ReportDirectory,
        *,
        locks: KeyedLockManager | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._users = users
        self._reports = reports
        self._locks = locks or KeyedLockManager()
        self._clock = clock

    # ------------------------------------------------------------------ reads

    async def get_task(self, task_id: str) -> PickupTask:
        try:
            record = await db_client.get_record(collection=TASKS, record_id=task_id)
        except KeyError as e:
            raise NotFoundError(f"Pickup task {task_id} not found", task_id=task_id) from e
        return PickupTask(**record)

    async def get_task_for(self, task_id: str, actor: Identity) -> PickupTask:
        """Fetch a task the actor is allowed to see."""
        task = await self.get_task(task_id)
        if actor.is_admin or task.collector_id == actor.user_id:
            return task
        report = await self._reports.get_report(task.report_id)
        if report is not None and report.resident_id == actor.user_id:
            return task
        raise UnauthorizedError("You are not allowed to view this task", task_id=task_id)

    async def list_history(self, task_id: str) -> list[TaskStatusChange]:
        records = await db_client.list_records(
            collection=HISTORY,
            filter_query=f'task_id = "{db_client.sanitize_param(task_id)}"',
            sort="occurred_at,id",
            per_page=Constants.DEFAULT_PER_PAGE_LIMIT,
        )
        return [TaskStatusChange(**record) for record in records]

    async def list_tasks_for_collector(
        self, collector_id: str, *, status: TaskStatus | None = None
    ) -> list[PickupTask]:
        filter_query = f'collector_id = "{db_client.sanitize_param(collector_id)}"'
        if status is not None:
            filter_query += f' && status = "{status}"'
        records = await db_client.list_records(
            collection=TASKS,
            filter_query=filter_query,
            sort="scheduled_date",
            per_page=Constants.DEFAULT_PER_PAGE_LIMIT,
        )
        return [PickupTask(**record) for record in records]

    async def find_active_task_for_report(self, report_id: str) -> PickupTask | None:
        statuses = " || ".join(f'status = "{s}"' for s in sorted(ACTIVE_STATUSES))
        record = await db_client.get_first_record(
            collection=TASKS,
            filter_query=f'report_id = "{db_client.sanitize_param(report_id)}" && ({statuses})',
        )
        return PickupTask(**record) if record else None

    # -------------------------------------------------------------- mutations

    async def assign(
        self,
        *,
        actor: Identity,
        report_id: str,
        collector_id: str,
        scheduled_date: datetime,
        estimated_duration: int = Constants.DEFAULT_ESTIMATED_DURATION_MINUTES,
        notes: str | None = None,
    ) -> TransitionResult:
        """Create a scheduled task for a report and assign it to a collector."""
        with span("task_store.assign"):
            if not actor.is_admin:
                raise UnauthorizedError("Only admins can assign pickup tasks")

            if estimated_duration < Constants.MIN_ESTIMATED_DURATION_MINUTES:
                raise InvalidRequestError(
                    f"Estimated duration must be at least {Constants.MIN_ESTIMATED_DURATION_MINUTES} minutes",
                    field="estimated_duration",
                )
            _check_length(notes, Constants.MAX_TASK_NOTES_LENGTH, "notes")

            report = await self._reports.get_report(report_id)
            if report is None:
                raise NotFoundError(f"Report {report_id} not found", report_id=report_id)
            if report.status == ReportStatus.COMPLETED:
                raise InvalidRequestError(f"Report {report_id} is already completed", report_id=report_id)

            collector = await self._users.get_user(collector_id)
            if collector is None:
                raise NotFoundError(f"Collector {collector_id} not found", collector_id=collector_id)
            if collector.role != UserRole.COLLECTOR or not collector.is_active:
                raise InvalidRequestError(
                    f"User {collector_id} is not an active collector", collector_id=collector_id
                )

            async with self._locks.hold(f"report:{report_id}"):
                if await self.find_active_task_for_report(report_id) is not None:
                    raise InvalidTransitionError(
                        f"Cannot assign: report {report_id} already has an active pickup task",
                        report_id=report_id,
                    )

                now = self._clock()
                record = await db_client.create_record(
                    collection=TASKS,
                    data={
                        "report_id": report_id,
                        "collector_id": collector_id,
                        "status": TaskStatus.SCHEDULED,
                        "scheduled_date": ensure_utc(scheduled_date),
                        "estimated_duration": estimated_duration,
                        "notes": notes,
                        "images": [],
                        "version": 1,
                        "created": now,
                        "updated": now,
                    },
                )
                task = PickupTask(**record)
                await self._append_history(task.id, TaskStatus.SCHEDULED, None, actor.user_id, notes, now)

            await self._mirror_report(report_id, TaskStatus.SCHEDULED, collector_id=collector_id)

            event = TaskAssigned(
                task=task,
                report=report,
                collector=UserSummary(id=collector.id, name=collector.name, role=collector.role),
                actor=UserSummary(id=actor.user_id, name=actor.name, role=actor.role),
            )
            logger.info(
                "task_assigned",
                extra={"task_id": task.id, "report_id": report_id, "collector_id": collector_id},
            )
            return TransitionResult(task=task, event=event)

    async def start(
        self,
        *,
        task_id: str,
        actor: Identity,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """Begin a scheduled pickup. Only the assigned collector may start it."""
        with span("task_store.start"):
            return await self._transition(
                task_id=task_id,
                actor=actor,
                target=TaskStatus.IN_PROGRESS,
                verb="start",
                authorize=self._require_assigned_collector,
                changes=lambda task, now: {"actual_start_time": now},
                expected_version=expected_version,
            )

    async def complete(
        self,
        *,
        task_id: str,
        actor: Identity,
        notes: str | None = None,
        images: list[str] | None = None,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """Finish an in-progress pickup. Only the assigned collector may complete it."""
        with span("task_store.complete"):
            _check_length(notes, Constants.MAX_COMPLETION_NOTES_LENGTH, "completion_notes")

            def _changes(task: PickupTask, now: datetime) -> dict[str, Any]:
                data: dict[str, Any] = {"actual_end_time": now, "completion_notes": notes}
                if images:
                    data["images"] = [*task.images, *images]
                return data

            return await self._transition(
                task_id=task_id,
                actor=actor,
                target=TaskStatus.COMPLETED,
                verb="complete",
                authorize=self._require_assigned_collector,
                changes=_changes,
                expected_version=expected_version,
                note=notes,
            )

    async def cancel(
        self,
        *,
        task_id: str,
        actor: Identity,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """Cancel a scheduled or in-progress pickup (assigned collector or any admin)."""
        with span("task_store.cancel"):
            _check_length(reason, Constants.MAX_TASK_NOTES_LENGTH, "reason")

            def _changes(task: PickupTask, now: datetime) -> dict[str, Any]:
                return {"notes": reason} if reason else {}

            return await self._transition(
                task_id=task_id,
                actor=actor,
                target=TaskStatus.CANCELLED,
                verb="cancel",
                authorize=self._require_collector_or_admin,
                changes=_changes,
                expected_version=expected_version,
                note=reason,
            )

    async def reschedule(
        self,
        *,
        task_id: str,
        actor: Identity,
        new_date: datetime,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """Move a scheduled pickup to a new future date (admins only).

        The task passes through ``rescheduled`` and rests at ``scheduled``; both
        steps land in the history, and the emitted event reports ``rescheduled``.
        """
        with span("task_store.reschedule"):
            _check_length(reason, Constants.MAX_TASK_NOTES_LENGTH, "reason")
            new_date = ensure_utc(new_date)
            if new_date <= self._clock():
                raise InvalidRequestError("Reschedule date must be in the future", field="new_date")

            def _changes(task: PickupTask, now: datetime) -> dict[str, Any]:
                data: dict[str, Any] = {"scheduled_date": new_date}
                if reason:
                    data["notes"] = reason
                return data

            return await self._transition(
                task_id=task_id,
                actor=actor,
                target=TaskStatus.RESCHEDULED,
                verb="reschedule",
                authorize=self._require_admin,
                changes=_changes,
                expected_version=expected_version,
                note=reason,
                rest_at=TaskStatus.SCHEDULED,
            )

    # ---------------------------------------------------------------- helpers

    @staticmethod
    def _require_assigned_collector(task: PickupTask, actor: Identity, verb: str) -> None:
        if task.collector_id != actor.user_id:
            raise UnauthorizedError(f"Only the assigned collector can {verb} this task", task_id=task.id)

    @staticmethod
    def _require_collector_or_admin(task: PickupTask, actor: Identity, verb: str) -> None:
        if not actor.is_admin and task.collector_id != actor.user_id:
            raise UnauthorizedError(
                f"Only the assigned collector or an admin can {verb} this task", task_id=task.id
            )

    @staticmethod
    def _require_admin(task: PickupTask, actor: Identity, verb: str) -> None:
        if not actor.is_admin:
            raise UnauthorizedError(f"Only admins can {verb} tasks", task_id=task.id)

    async def _transition(
        self,
        *,
        task_id: str,
        actor: Identity,
        target: TaskStatus,
        verb: str,
        authorize: Callable[[PickupTask, Identity, str], None],
        changes: Callable[[PickupTask, datetime], dict[str, Any]],
        expected_version: int | None,
        note: str | None = None,
        rest_at: TaskStatus | None = None,
    ) -> TransitionResult:
        async with self._locks.hold(f"task:{task_id}"):
            task = await self.get_task(task_id)

            # Ownership first, so unauthorized callers learn nothing about state
            authorize(task, actor, verb)

            if expected_version is not None and expected_version != task.version:
                raise StaleVersionError(
                    f"Cannot {verb}: task {task_id} changed (version {task.version}, expected {expected_version})",
                    task_id=task_id,
                    version=task.version,
                )
            if not can_transition(task.status, target):
                raise InvalidTransitionError(
                    f"Cannot {verb}: task {task_id} is in {task.status} state",
                    task_id=task_id,
                    status=task.status.value,
                )

            now = self._clock()
            final_status = rest_at or target
            data = {
                **changes(task, now),
                "status": final_status,
                "version": task.version + 1,
                "updated": now,
            }
            record = await db_client.compare_and_update(
                collection=TASKS,
                record_id=task_id,
                expected={"version": task.version, "status": task.status},
                data=data,
            )
            if record is None:
                raise StaleVersionError(f"Cannot {verb}: task {task_id} was modified concurrently", task_id=task_id)
            updated = PickupTask(**record)

            await self._append_history(task_id, target, task.status, actor.user_id, note, now)
            if rest_at is not None:
                await self._append_history(task_id, rest_at, target, actor.user_id, None, now)

        await self._mirror_report(updated.report_id, final_status, collector_id=updated.collector_id)
        report, collector = await self._event_context(updated)

        event = TaskStatusChanged(
            task=updated,
            status=target,
            previous_status=task.status,
            report=report,
            collector=collector,
            actor=UserSummary(id=actor.user_id, name=actor.name, role=actor.role),
            reason=note if target in {TaskStatus.CANCELLED, TaskStatus.RESCHEDULED} else None,
        )
        logger.info(
            "task_transitioned",
            extra={
                "task_id": task_id,
                "from_status": task.status.value,
                "to_status": target.value,
                "actor_id": actor.user_id,
                "version": updated.version,
            },
        )
        return TransitionResult(task=updated, event=event)

    async def _append_history(
        self,
        task_id: str,
        status: TaskStatus,
        previous_status: TaskStatus | None,
        actor_id: str,
        note: str | None,
        occurred_at: datetime,
    ) -> None:
        await db_client.create_record(
            collection=HISTORY,
            data={
                "task_id": task_id,
                "status": status,
                "previous_status": previous_status,
                "actor_id": actor_id,
                "note": note,
                "occurred_at": occurred_at,
            },
        )

    async def _mirror_report(self, report_id: str, status: TaskStatus, *, collector_id: str) -> None:
        report_status = _REPORT_STATUS_FOR.get(status)
        if report_status is None:
            return
        try:
            await self._reports.update_report_status(report_id, report_status, collector_id=collector_id)
        except (KeyError, db_client.DatabaseError) as e:
            logger.error(
                "report_status_mirror_failed",
                extra={"report_id": report_id, "status": report_status.value, "error": str(e)},
            )

    async def _event_context(self, task: PickupTask) -> tuple[ReportSummary, UserSummary]:
        report = await self._reports.get_report(task.report_id)
        if report is None:
            logger.warning("task_report_missing", extra={"task_id": task.id, "report_id": task.report_id})
            report = ReportSummary(id=task.report_id, resident_id="")

        profile = await self._users.get_user(task.collector_id)
        if profile is None:
            collector = UserSummary(id=task.collector_id, name="Collector", role=UserRole.COLLECTOR)
        else:
            collector = UserSummary(id=profile.id, name=profile.name, role=profile.role)
        return report, collector
