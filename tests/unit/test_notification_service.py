"""Unit tests for notification projection and the per-user notification API."""

from datetime import UTC, datetime, timedelta

import pytest

from src.core.errors import ForbiddenError, InvalidRequestError, NotFoundError, UnauthorizedError
from src.domain.chat import ChatMessage
from src.domain.events import (
    ApplicationDecided,
    ChatPosted,
    EmergencyAlert,
    TaskAssigned,
    TaskStatusChanged,
)
from src.domain.notification import NotificationPriority, NotificationType
from src.domain.task import PickupTask, ReportSummary, TaskStatus
from src.domain.user import UserRole, UserSummary
from src.services.notification_service import NotificationFanout, needs_admin_ids, project


NOW = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


def _summary(identity) -> UserSummary:
    return UserSummary(id=identity.user_id, name=identity.name, role=identity.role)


def _task(people, status: TaskStatus = TaskStatus.SCHEDULED) -> PickupTask:
    return PickupTask(
        id="500",
        report_id="400",
        collector_id=people["collector"].user_id,
        status=status,
        scheduled_date=NOW + timedelta(days=1),
    )


def _report(people) -> ReportSummary:
    return ReportSummary(id="400", resident_id=people["resident"].user_id, waste_type="bulky", address="1 Main St")


def _status_event(people, status: TaskStatus, actor: str = "collector", reason: str | None = None):
    return TaskStatusChanged(
        task=_task(people, status),
        status=status,
        previous_status=TaskStatus.SCHEDULED,
        report=_report(people),
        collector=_summary(people["collector"]),
        actor=_summary(people[actor]),
        reason=reason,
    )


@pytest.fixture
def fanout(users):
    return NotificationFanout(users, ttl_days=30, clock=lambda: NOW)


class TestProjection:
    """Which notifications each event produces."""

    def test_assignment_notifies_collector_and_resident(self, people) -> None:
        event = TaskAssigned(
            task=_task(people),
            report=_report(people),
            collector=_summary(people["collector"]),
            actor=_summary(people["admin"]),
        )

        drafts = project(event)

        by_user = {d.user_id: d for d in drafts}
        assert by_user[people["collector"].user_id].type == NotificationType.REPORT_ASSIGNED
        assert by_user[people["collector"].user_id].priority == NotificationPriority.HIGH
        assert "1 Main St" in by_user[people["collector"].user_id].message
        assert by_user[people["resident"].user_id].type == NotificationType.PICKUP_SCHEDULED
        assert by_user[people["resident"].user_id].data["taskId"] == "500"

    def test_cancel_by_collector_notifies_only_resident(self, people) -> None:
        drafts = project(_status_event(people, TaskStatus.CANCELLED, reason="Blocked driveway"))

        assert [d.user_id for d in drafts] == [people["resident"].user_id]
        assert drafts[0].message.endswith("Blocked driveway")

    def test_cancel_by_admin_also_notifies_collector(self, people) -> None:
        drafts = project(_status_event(people, TaskStatus.CANCELLED, actor="admin"))

        assert {d.user_id for d in drafts} == {people["resident"].user_id, people["collector"].user_id}

    def test_completion_notifies_admins(self, people) -> None:
        event = _status_event(people, TaskStatus.COMPLETED)
        assert needs_admin_ids(event)

        drafts = project(event, [people["admin"].user_id])

        assert {(d.user_id, d.type) for d in drafts} == {
            (people["resident"].user_id, NotificationType.REPORT_COMPLETED),
            (people["admin"].user_id, NotificationType.GENERAL),
        }

    def test_reschedule_notifies_both_parties(self, people) -> None:
        drafts = project(_status_event(people, TaskStatus.RESCHEDULED, actor="admin"))

        assert {d.type for d in drafts} == {NotificationType.PICKUP_RESCHEDULED}
        assert len(drafts) == 2

    def test_application_decisions(self, people) -> None:
        approved = ApplicationDecided(
            application_id="9", applicant_id="3", approved=True, reviewer=_summary(people["admin"])
        )
        rejected = ApplicationDecided(
            application_id="9", applicant_id="3", approved=False, reviewer=_summary(people["admin"]), reason="Docs"
        )

        assert project(approved)[0].type == NotificationType.APPLICATION_APPROVED
        assert project(rejected)[0].type == NotificationType.APPLICATION_REJECTED
        assert project(rejected)[0].message.endswith("Docs")

    def test_emergency_goes_to_admins_as_urgent(self, people) -> None:
        reporter = _summary(people["collector"])
        event = EmergencyAlert(reporter=reporter, message="Truck fire", latitude=1.0, longitude=2.0)

        drafts = project(event, ["1", "2"])

        assert [d.priority for d in drafts] == [NotificationPriority.URGENT, NotificationPriority.URGENT]
        assert drafts[0].data == {"collectorId": people["collector"].user_id, "latitude": 1.0, "longitude": 2.0}

    def test_chat_produces_no_notifications(self, people) -> None:
        message = ChatMessage(
            id="1",
            room="role:admin",
            sender_id="1",
            sender_name="Ada",
            sender_role=UserRole.ADMIN,
            body="hi",
            timestamp=NOW,
        )
        assert project(ChatPosted(message=message)) == []

    def test_long_text_is_truncated(self, people) -> None:
        event = EmergencyAlert(reporter=_summary(people["collector"]), message="x" * 800)

        draft = project(event, ["1"])[0]

        assert len(draft.message) == 500
        assert draft.message.endswith("…")


class TestFanout:
    """Persistence of projected notifications."""

    @pytest.mark.asyncio
    async def test_handle_event_persists_for_each_recipient(self, fanout, people) -> None:
        result = await fanout.handle_event(_status_event(people, TaskStatus.COMPLETED))

        assert {n.user_id for n in result.created} == {people["resident"].user_id, people["admin"].user_id}
        assert all(not n.is_read for n in result.created)
        assert result.created[0].expires_at == NOW + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_replaying_an_event_creates_no_duplicates(self, fanout, people) -> None:
        event = _status_event(people, TaskStatus.IN_PROGRESS)

        first = await fanout.handle_event(event)
        second = await fanout.handle_event(event)

        assert len(first.created) == 1
        assert second.created == []
        assert second.duplicates == 1

    @pytest.mark.asyncio
    async def test_send_to_users_is_admin_only(self, fanout, people) -> None:
        with pytest.raises(UnauthorizedError):
            await fanout.send_to_users(
                sender=people["collector"],
                user_ids=[people["resident"].user_id],
                type=NotificationType.GENERAL,
                title="Hi",
                message="There",
            )

    @pytest.mark.asyncio
    async def test_send_to_users_dedups_recipients(self, fanout, people) -> None:
        resident_id = people["resident"].user_id

        result = await fanout.send_to_users(
            sender=people["admin"],
            user_ids=[resident_id, resident_id],
            type=NotificationType.SYSTEM_ALERT,
            title="Service change",
            message="Pickups move to Tuesdays",
            priority=NotificationPriority.HIGH,
        )

        assert len(result.created) == 1
        assert result.created[0].event_id.startswith("manual-")

    @pytest.mark.asyncio
    async def test_send_to_nobody_is_rejected(self, fanout, people) -> None:
        with pytest.raises(InvalidRequestError):
            await fanout.send_to_users(
                sender=people["admin"], user_ids=[], type=NotificationType.GENERAL, title="a", message="b"
            )


class TestInbox:
    """Reading and managing one user's notifications."""

    async def _seed(self, fanout, people, count: int = 3) -> list:
        created = []
        for i in range(count):
            result = await fanout.send_to_users(
                sender=people["admin"],
                user_ids=[people["resident"].user_id],
                type=NotificationType.GENERAL,
                title=f"Notice {i}",
                message="Body",
            )
            created.extend(result.created)
        return created

    @pytest.mark.asyncio
    async def test_pages_are_newest_first_with_unread_count(self, fanout, people) -> None:
        created = await self._seed(fanout, people)

        page = await fanout.get_notifications(people["resident"].user_id, page=1, limit=2)

        assert [n.id for n in page.notifications] == [created[2].id, created[1].id]
        assert page.pagination.total == 3
        assert page.pagination.pages == 2
        assert page.unread_count == 3

    @pytest.mark.asyncio
    async def test_mark_read_is_idempotent_and_updates_count(self, fanout, people) -> None:
        created = await self._seed(fanout, people, count=2)
        resident_id = people["resident"].user_id

        first = await fanout.mark_read(created[0].id, resident_id)
        again = await fanout.mark_read(created[0].id, resident_id)

        assert first.is_read and again.is_read
        assert await fanout.unread_count(resident_id) == 1
        unread = await fanout.get_notifications(resident_id, is_read=False)
        assert [n.id for n in unread.notifications] == [created[1].id]

    @pytest.mark.asyncio
    async def test_other_users_cannot_touch_a_notification(self, fanout, people) -> None:
        created = await self._seed(fanout, people, count=1)

        with pytest.raises(ForbiddenError):
            await fanout.mark_read(created[0].id, people["collector"].user_id)
        with pytest.raises(ForbiddenError):
            await fanout.delete(created[0].id, people["collector"].user_id)

    @pytest.mark.asyncio
    async def test_missing_notification(self, fanout, people) -> None:
        with pytest.raises(NotFoundError):
            await fanout.mark_read("987654", people["resident"].user_id)

    @pytest.mark.asyncio
    async def test_mark_all_read_and_clear_all(self, fanout, people) -> None:
        await self._seed(fanout, people)
        resident_id = people["resident"].user_id

        assert await fanout.mark_all_read(resident_id) == 3
        assert await fanout.unread_count(resident_id) == 0
        assert await fanout.clear_all(resident_id) == 3
        assert (await fanout.get_notifications(resident_id)).pagination.total == 0

    @pytest.mark.asyncio
    async def test_expired_notifications_are_hidden_then_purged(self, users, people) -> None:
        early = NotificationFanout(users, ttl_days=1, clock=lambda: NOW)
        late = NotificationFanout(users, ttl_days=1, clock=lambda: NOW + timedelta(days=2))
        await self._seed(early, people, count=2)
        resident_id = people["resident"].user_id

        assert await late.unread_count(resident_id) == 0
        assert (await late.get_notifications(resident_id)).notifications == []
        assert await early.purge_expired() == 0
        assert await late.purge_expired() == 2

    @pytest.mark.asyncio
    async def test_stats(self, fanout, people) -> None:
        created = await self._seed(fanout, people, count=2)
        await fanout.mark_read(created[0].id, people["resident"].user_id)

        stats = await fanout.stats()

        assert stats.total == 2
        assert stats.unread == 1
        assert stats.by_type == {"general": 2}
        assert stats.unread_by_type == {"general": 1}
