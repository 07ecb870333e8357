"""SQLAlchemy repositories and the watcher against a SQLite database."""

from datetime import datetime, time, timedelta, timezone

import pytest
import pytest_asyncio

from deskwatch.config import Priority, SLAStatus, SLATrack, TicketStatus
from deskwatch.infrastructure.database import (
    close_database, create_tables, get_session_maker, init_database
)
from deskwatch.sla.application import SLAAdminService, SLAQueryService, TicketStateWatcher
from deskwatch.sla.domain import (
    EscalationEvent, Interval, PausePeriod, SLAConfig, SLAHistoryEntry, SLARule, TicketSLAState,
    WorkingHours
)
from deskwatch.sla.infrastructure import (
    StaticConfigProvider, TicketLockRegistry, sqlalchemy_uow_factory
)

UTC = timezone.utc
NOW = datetime(2025, 6, 30, 12, 0, tzinfo=UTC)

SEED = SLAConfig(
    rules=[
        {
            "priority": "urgent",
            "response_time": 60,
            "resolution_time": 240,
            "escalation_rules": [
                {"threshold_pct": 100, "notify_roles": ["manager"]},
                {"threshold_pct": 75, "notify_roles": ["team_lead"]},
            ],
        },
        {"priority": "medium", "response_time": 60, "resolution_time": 480, "business_hours_only": True},
    ],
    business_hours=[
        {"day_of_week": day, "start_time": "09:00", "end_time": "17:00"} for day in range(1, 6)
    ],
)


@pytest_asyncio.fixture
async def db_uow_factory(tmp_path):
    init_database(f"sqlite+aiosqlite:///{tmp_path / 'sla.db'}")
    await create_tables()
    factory = sqlalchemy_uow_factory(get_session_maker(), TicketLockRegistry(timeout_seconds=0.05))
    await SLAAdminService(factory).seed_from_config(SEED)
    yield factory
    await close_database()


@pytest.fixture
def db_watcher(db_uow_factory, publisher, clock):
    return TicketStateWatcher(
        db_uow_factory, publisher, StaticConfigProvider(SEED), clock=clock, backoff_seconds=0
    )


class TestRuleAndCalendarRepositories:

    @pytest.mark.asyncio
    async def test_seeded_rules(self, db_uow_factory):
        async with db_uow_factory() as uow:
            rule = await uow.rules.get_active_by_priority(Priority.URGENT)
            missing = await uow.rules.get_active_by_priority(Priority.LOW)

        assert rule.response_time == 60
        assert [e.threshold_pct for e in rule.escalation_rules] == [75, 100]
        assert rule.escalation_rules[0].notify_roles == ("team_lead",)
        assert missing is None

    @pytest.mark.asyncio
    async def test_replace_rules_keeps_history(self, db_uow_factory):
        admin = SLAAdminService(db_uow_factory)

        await admin.replace_rules([SLARule(priority=Priority.LOW, response_time=30, resolution_time=60)])

        assert [rule.priority for rule in await admin.list_rules()] == [Priority.LOW]
        assert len(await admin.list_rules(include_inactive=True)) == 3

    @pytest.mark.asyncio
    async def test_business_hours_round_trip(self, db_uow_factory):
        async with db_uow_factory() as uow:
            hours = await uow.calendar.get_hours()

        assert [entry.day_of_week for entry in hours] == list(range(7))
        assert hours[1].start_time == time(9, 0)
        assert not hours[0].is_working_day

        admin = SLAAdminService(db_uow_factory)
        await admin.replace_business_hours([WorkingHours(day, time(8, 0), time(12, 0)) for day in range(7)])
        assert all(entry.end_time == time(12, 0) for entry in await admin.get_business_hours())


class TestTicketRepository:

    @pytest.mark.asyncio
    async def test_state_round_trip(self, db_uow_factory):
        state = TicketSLAState(
            ticket_id="T-1",
            priority=Priority.HIGH,
            created_at=NOW,
            response_status=SLAStatus.WARNING,
            response_elapsed=42.5,
            pause_intervals=[Interval(NOW, NOW + timedelta(minutes=15))],
        )
        async with db_uow_factory() as uow:
            await uow.tickets.add(state)

        async with db_uow_factory() as uow:
            loaded = await uow.tickets.get("T-1")

        assert loaded.created_at == NOW
        assert loaded.created_at.tzinfo is not None
        assert loaded.response_status == SLAStatus.WARNING
        assert loaded.response_elapsed == 42.5
        assert loaded.pause_intervals == [Interval(NOW, NOW + timedelta(minutes=15))]

    @pytest.mark.asyncio
    async def test_rollback_on_error(self, db_uow_factory):
        with pytest.raises(RuntimeError):
            async with db_uow_factory() as uow:
                await uow.tickets.add(TicketSLAState("T-1", Priority.HIGH, NOW))
                raise RuntimeError("abort")

        async with db_uow_factory() as uow:
            assert await uow.tickets.get("T-1") is None

    @pytest.mark.asyncio
    async def test_list_tracked_ids(self, db_uow_factory):
        frozen = TicketSLAState(
            "T-2", Priority.HIGH, NOW - timedelta(hours=1),
            response_status=SLAStatus.MET, resolution_status=SLAStatus.MET
        )
        async with db_uow_factory() as uow:
            await uow.tickets.add(TicketSLAState("T-3", Priority.HIGH, NOW))
            await uow.tickets.add(TicketSLAState("T-1", Priority.HIGH, NOW - timedelta(hours=2)))
            await uow.tickets.add(frozen)

        async with db_uow_factory() as uow:
            assert await uow.tickets.list_tracked_ids() == ["T-1", "T-3"]
            window = Interval(NOW - timedelta(hours=3), NOW - timedelta(minutes=30))
            assert await uow.tickets.list_tracked_ids(overlapping=window) == ["T-1"]


class TestHistoryAndOutboxRepositories:

    @pytest.mark.asyncio
    async def test_history_latest(self, db_uow_factory):
        async with db_uow_factory() as uow:
            for minutes, status in ((0, SLAStatus.OK), (30, SLAStatus.WARNING)):
                await uow.history.append(SLAHistoryEntry(
                    "T-1", SLATrack.RESPONSE, status, minutes, 60, NOW + timedelta(minutes=minutes)
                ))

        async with db_uow_factory() as uow:
            latest = await uow.history.latest("T-1", SLATrack.RESPONSE)
            rows = await uow.history.list_for_ticket("T-1")

        assert latest.status == SLAStatus.WARNING
        assert [row.status for row in rows] == [SLAStatus.OK, SLAStatus.WARNING]

    @pytest.mark.asyncio
    async def test_outbox(self, db_uow_factory):
        event = EscalationEvent(
            ticket_id="T-1",
            track=SLATrack.RESOLUTION,
            threshold_pct=75,
            notify_roles=("admin",),
            elapsed_time=180,
            target_time=240,
            triggered_at=NOW,
        )
        async with db_uow_factory() as uow:
            stored = await uow.escalations.add(event)

        async with db_uow_factory() as uow:
            assert await uow.escalations.last_triggered_at("T-1:resolution:75") == NOW
            pending = await uow.escalations.get_pending()
            assert [e.id for e in pending] == [stored.id]
            await uow.escalations.mark_sent(stored.id, NOW)

        async with db_uow_factory() as uow:
            assert await uow.escalations.get_pending() == []


class TestWatcherOnDatabase:

    @pytest.mark.asyncio
    async def test_ticket_lifecycle(self, db_watcher, db_uow_factory, clock, publisher):
        state = await db_watcher.on_ticket_created("T-1", Priority.URGENT, clock.now - timedelta(minutes=50))
        assert state.response_status == SLAStatus.WARNING
        assert [event.threshold_pct for event in publisher.events] == [75]
        assert publisher.events[0].notify_roles == ("team_lead",)

        clock.now += timedelta(minutes=11)
        summary = await db_watcher.tick()
        assert summary.evaluated == 1
        assert [event.threshold_pct for event in publisher.events] == [75, 100]

        state = await db_watcher.on_status_changed("T-1", TicketStatus.RESOLVED, clock.now)
        assert state.response_status == SLAStatus.BREACHED
        assert state.resolution_status == SLAStatus.MET

        query = SLAQueryService(db_uow_factory)
        stored = await query.get_state("T-1")
        assert stored.sla_resolution_met is True
        history = await query.get_history("T-1")
        assert history[-1].status in (SLAStatus.MET, SLAStatus.BREACHED)

        async with db_uow_factory() as uow:
            assert await uow.tickets.list_tracked_ids() == []
            assert await uow.escalations.get_pending() == []

    @pytest.mark.asyncio
    async def test_pause_period_recalculates(self, db_watcher, db_uow_factory, clock):
        created = clock.now - timedelta(hours=1)
        await db_watcher.on_ticket_created("T-1", Priority.URGENT, created)

        period = await db_watcher.add_pause_period(PausePeriod(
            name="maintenance", start_time=created, end_time=created + timedelta(minutes=45)
        ))
        state = await SLAQueryService(db_uow_factory).get_state("T-1")
        assert state.response_elapsed == pytest.approx(15)
        assert state.response_status == SLAStatus.OK

        await db_watcher.remove_pause_period(period.id)
        state = await SLAQueryService(db_uow_factory).get_state("T-1")
        assert state.response_elapsed == pytest.approx(60)

    @pytest.mark.asyncio
    async def test_business_hours_ticket(self, db_watcher, clock):
        clock.now = datetime(2025, 6, 30, 10, 0, tzinfo=UTC)
        state = await db_watcher.on_ticket_created(
            "T-1", Priority.MEDIUM, datetime(2025, 6, 27, 16, 30, tzinfo=UTC)
        )
        assert state.response_elapsed == pytest.approx(90)
        assert state.sla_response_due == datetime(2025, 6, 30, 9, 30, tzinfo=UTC)
