"""Tests for the engine's publish path and its realtime actions."""

import pytest

from src.core.errors import InvalidRequestError, NotFoundError, UnauthorizedError
from src.core.rate_limiter import RateLimiter
from src.domain.notification import NotificationPriority
from src.services.engine import SyncEngine, create_engine
from tests.unit.mocks import drain


def _events(channel) -> list[str]:
    return [frame["event"] for frame in drain(channel)]


class TestPublish:
    @pytest.mark.asyncio
    async def test_assignment_reaches_collector_with_notification(
        self, engine, connect, people, report, tomorrow, patched_db
    ) -> None:
        collector = connect(people["collector"])
        admin = connect(people["admin"])
        result = await engine.tasks.assign(
            actor=people["admin"],
            report_id=report.id,
            collector_id=people["collector"].user_id,
            scheduled_date=tomorrow,
        )

        await engine.publish(result.event)

        frames = drain(collector)
        assert [f["event"] for f in frames] == ["assign_task", "new_notification"]
        assert frames[1]["data"]["type"] == "report_assigned"
        assert _events(admin) == ["assign_task"]
        assert await patched_db.count_records(collection="notifications") == 2

    @pytest.mark.asyncio
    async def test_status_change_reaches_resident_through_task_room(
        self, engine, connect, people, report, tomorrow
    ) -> None:
        resident = connect(people["resident"])
        assigned = await engine.tasks.assign(
            actor=people["admin"],
            report_id=report.id,
            collector_id=people["collector"].user_id,
            scheduled_date=tomorrow,
        )
        await engine.publish(assigned.event)
        drain(resident)

        started = await engine.tasks.start(task_id=assigned.task.id, actor=people["collector"])
        await engine.publish(started.event)

        frames = drain(resident)
        assert [f["event"] for f in frames] == ["task_update", "new_notification"]
        assert frames[0]["data"]["status"] == "in_progress"


class TestChat:
    @pytest.mark.asyncio
    async def test_sender_session_is_excluded(self, engine, connect, people) -> None:
        sender = connect(people["collector"])
        peer = connect(people["other_collector"])

        message = await engine.post_chat_message(
            sender=people["collector"],
            room="role:collector",
            body="Road closed on 5th",
            client_id="tmp-1",
            sender_session_id=sender.session_id,
        )

        assert drain(sender) == []
        frames = drain(peer)
        assert [f["event"] for f in frames] == ["new_message"]
        assert frames[0]["data"]["id"] == message.id
        assert frames[0]["data"]["clientId"] == "tmp-1"

    @pytest.mark.asyncio
    async def test_dm_room_is_canonicalized(self, engine, connect, people) -> None:
        a, b = people["collector"].user_id, people["other_collector"].user_id
        room = f"dm:{max(a, b)}:{min(a, b)}"

        message = await engine.post_chat_message(sender=people["collector"], room=room, body="hi")

        assert message.room == f"dm:{min(a, b)}:{max(a, b)}"


class TestEmergencyAndNotices:
    @pytest.mark.asyncio
    async def test_only_collectors_raise_emergencies(self, engine, people) -> None:
        with pytest.raises(UnauthorizedError):
            await engine.raise_emergency(reporter=people["resident"], message="Help")

    @pytest.mark.asyncio
    async def test_emergency_uses_collector_location_and_notifies_admins(self, engine, connect, people) -> None:
        admin = connect(people["admin"])
        peer = connect(people["other_collector"])

        event = await engine.raise_emergency(reporter=people["collector"], message="Truck breakdown")

        assert (event.latitude, event.longitude) == (pytest.approx(40.7128), pytest.approx(-74.006))
        assert _events(peer) == ["emergency_alert"]
        frames = drain(admin)
        assert [f["event"] for f in frames] == ["emergency_alert", "new_notification"]
        assert frames[1]["data"]["priority"] == "urgent"

    @pytest.mark.asyncio
    async def test_broadcast_notice(self, engine, connect, people) -> None:
        resident = connect(people["resident"])
        collector = connect(people["collector"])

        report = await engine.broadcast_notice(
            sender=people["admin"],
            title="Holiday",
            message="No pickups on Monday",
            rooms=["role:resident"],
            priority=NotificationPriority.HIGH,
        )

        assert report.delivered == 1
        assert drain(resident)[0]["data"]["priority"] == "high"
        assert drain(collector) == []

    @pytest.mark.asyncio
    async def test_broadcast_notice_validation(self, engine, people) -> None:
        with pytest.raises(UnauthorizedError):
            await engine.broadcast_notice(sender=people["collector"], title="t", message="m", rooms=["role:admin"])
        with pytest.raises(InvalidRequestError):
            await engine.broadcast_notice(sender=people["admin"], title="t", message="m", rooms=[])
        with pytest.raises(InvalidRequestError):
            await engine.broadcast_notice(sender=people["admin"], title="t", message="m", rooms=["lobby"])


class TestPresence:
    @pytest.mark.asyncio
    async def test_last_collector_session_closing_announces_offline(self, engine, connect, people) -> None:
        admin = connect(people["admin"])
        phone = connect(people["collector"])
        laptop = connect(people["collector"])

        engine.registry.unregister(phone.session_id)
        await engine.session_closed(people["collector"])
        assert drain(admin) == []

        engine.registry.unregister(laptop.session_id)
        await engine.session_closed(people["collector"])
        frames = drain(admin)
        assert [f["event"] for f in frames] == ["collector_offline"]
        assert frames[0]["data"]["collectorId"] == people["collector"].user_id

    @pytest.mark.asyncio
    async def test_residents_have_no_presence_events(self, engine, connect, people) -> None:
        admin = connect(people["admin"])

        await engine.session_closed(people["resident"])

        assert drain(admin) == []


class TestAuthorizeRoom:
    @pytest.mark.asyncio
    async def test_own_rooms(self, engine, people) -> None:
        resident = people["resident"]

        assert await engine.authorize_room(resident, f"user:{resident.user_id}") == f"user:{resident.user_id}"
        assert await engine.authorize_room(resident, "role:resident") == "role:resident"
        assert await engine.authorize_room(resident, "area:40.71391,-74.00512") == "area:40.71,-74.00"

    @pytest.mark.asyncio
    async def test_foreign_rooms_are_refused(self, engine, people) -> None:
        resident = people["resident"]

        with pytest.raises(UnauthorizedError):
            await engine.authorize_room(resident, f"user:{people['admin'].user_id}")
        with pytest.raises(UnauthorizedError):
            await engine.authorize_room(resident, "role:admin")
        with pytest.raises(UnauthorizedError):
            await engine.authorize_room(resident, "dm:x:y")

    @pytest.mark.asyncio
    async def test_malformed_room(self, engine, people) -> None:
        with pytest.raises(InvalidRequestError):
            await engine.authorize_room(people["resident"], "lobby:1")

    @pytest.mark.asyncio
    async def test_task_room_participants(self, engine, people, report, tomorrow) -> None:
        result = await engine.tasks.assign(
            actor=people["admin"],
            report_id=report.id,
            collector_id=people["collector"].user_id,
            scheduled_date=tomorrow,
        )
        room = f"task:{result.task.id}"

        for who in ("admin", "collector", "resident"):
            assert await engine.authorize_room(people[who], room) == room
        with pytest.raises(UnauthorizedError):
            await engine.authorize_room(people["other_collector"], room)

    @pytest.mark.asyncio
    async def test_unknown_task_room(self, engine, people) -> None:
        with pytest.raises(NotFoundError):
            await engine.authorize_room(people["admin"], "task:8888")


def test_create_engine_wires_defaults() -> None:
    limiter = RateLimiter(production=True)

    engine = create_engine(area_precision=3, rate_limiter=limiter)

    assert isinstance(engine, SyncEngine)
    assert engine.rate_limiter is limiter
    assert engine.area_precision == 3
