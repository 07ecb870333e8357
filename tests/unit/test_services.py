"""Tests for SLA application services over in-memory repositories."""

from datetime import datetime, time, timedelta, timezone

import pytest

from deskwatch.config import Priority, SLAStatus, SLATrack
from deskwatch.core import (
    ConfigurationException, NoActiveRuleForPriority, ResourceNotFoundException,
    ValidationException
)
from deskwatch.sla.application import (
    EscalationDispatcher, HistoryRecorder, RuleResolver, SLAAdminService, SLAQueryService
)
from deskwatch.sla.domain import EscalationRule, SLAConfig, SLAHistoryEntry, SLARule, WorkingHours
from deskwatch.sla.infrastructure import InMemorySLAStore, in_memory_uow_factory

NOW = datetime(2025, 6, 30, 12, 0, tzinfo=timezone.utc)


def history_entry(status, recorded_at):
    return SLAHistoryEntry(
        ticket_id="T-1",
        track=SLATrack.RESPONSE,
        status=status,
        elapsed_time=10,
        target_time=60,
        recorded_at=recorded_at,
    )


class TestHistoryRecorder:

    def test_first_row_always_recorded(self):
        assert HistoryRecorder.should_record(None, SLAStatus.OK, NOW, timedelta(minutes=1))

    def test_status_change_bypasses_debounce(self):
        last = history_entry(SLAStatus.OK, NOW - timedelta(seconds=5))
        assert HistoryRecorder.should_record(last, SLAStatus.WARNING, NOW, timedelta(minutes=1))

    def test_same_status_debounced(self):
        last = history_entry(SLAStatus.OK, NOW - timedelta(seconds=5))
        assert not HistoryRecorder.should_record(last, SLAStatus.OK, NOW, timedelta(minutes=1))

    def test_same_status_after_debounce(self):
        last = history_entry(SLAStatus.OK, NOW - timedelta(minutes=1))
        assert HistoryRecorder.should_record(last, SLAStatus.OK, NOW, timedelta(minutes=1))

    @pytest.mark.asyncio
    async def test_record_rounds_elapsed(self, uow_factory, store):
        async with uow_factory() as uow:
            recorder = HistoryRecorder(uow.history, timedelta(minutes=1))
            entry = await recorder.record("T-1", SLATrack.RESPONSE, SLAStatus.OK, 12.3456, 60, NOW)

        assert entry.elapsed_time == 12.35
        assert store.history == [entry]

        async with uow_factory() as uow:
            recorder = HistoryRecorder(uow.history, timedelta(minutes=1))
            skipped = await recorder.record(
                "T-1", SLATrack.RESPONSE, SLAStatus.OK, 13, 60, NOW + timedelta(seconds=10)
            )
        assert skipped is None


class TestRuleResolver:

    @pytest.mark.asyncio
    async def test_resolves_active_rule(self, uow_factory):
        async with uow_factory() as uow:
            rule = await RuleResolver(uow.rules).resolve(Priority.URGENT)
        assert rule.id == "rule-urgent"

    @pytest.mark.asyncio
    async def test_no_fallback_for_missing_priority(self, uow_factory):
        async with uow_factory() as uow:
            with pytest.raises(NoActiveRuleForPriority) as exc_info:
                await RuleResolver(uow.rules).resolve(Priority.LOW)
        assert exc_info.value.priority == "low"
        assert isinstance(exc_info.value, ConfigurationException)


class TestEscalationDispatcher:

    @pytest.fixture
    def rule(self):
        return SLARule(
            priority=Priority.URGENT,
            response_time=60,
            resolution_time=240,
            id="rule-urgent",
            escalation_rules=(
                EscalationRule(threshold_pct=75, notify_roles=("team_lead",)),
                EscalationRule(threshold_pct=100, notify_roles=("manager",), template="breach"),
                EscalationRule(threshold_pct=50, is_active=False),
            ),
        )

    @pytest.mark.asyncio
    async def test_emits_each_crossed_threshold_once(self, uow_factory, store, rule):
        async with uow_factory() as uow:
            dispatcher = EscalationDispatcher(uow.escalations, timedelta(hours=1))
            events = await dispatcher.evaluate("T-1", SLATrack.RESPONSE, 0, 61, 60, rule, NOW)

        assert [event.threshold_pct for event in events] == [75, 100]
        assert events[1].notify_roles == ("manager",)
        assert events[1].template == "breach"
        assert events[0].idempotency_key == "T-1:response:75"
        assert len(store.events) == 2

        async with uow_factory() as uow:
            dispatcher = EscalationDispatcher(uow.escalations, timedelta(hours=1))
            again = await dispatcher.evaluate(
                "T-1", SLATrack.RESPONSE, 61, 70, 60, rule, NOW + timedelta(hours=2)
            )
        assert again == []

    @pytest.mark.asyncio
    async def test_fresh_crossing_respects_cooldown(self, uow_factory, store, rule):
        async with uow_factory() as uow:
            await EscalationDispatcher(uow.escalations, timedelta(hours=1)).evaluate(
                "T-1", SLATrack.RESPONSE, 0, 46, 60, rule, NOW
            )

        async with uow_factory() as uow:
            dispatcher = EscalationDispatcher(uow.escalations, timedelta(hours=1))
            within = await dispatcher.evaluate(
                "T-1", SLATrack.RESPONSE, 30, 46, 60, rule, NOW + timedelta(minutes=30)
            )
            after = await dispatcher.evaluate(
                "T-1", SLATrack.RESPONSE, 30, 46, 60, rule, NOW + timedelta(hours=1)
            )

        assert within == []
        assert [event.threshold_pct for event in after] == [75]

    @pytest.mark.asyncio
    async def test_below_threshold_emits_nothing(self, uow_factory, rule):
        async with uow_factory() as uow:
            events = await EscalationDispatcher(uow.escalations, timedelta(hours=1)).evaluate(
                "T-1", SLATrack.RESOLUTION, 0, 100, 240, rule, NOW
            )
        assert events == []


class TestSLAAdminService:

    @pytest.mark.asyncio
    async def test_replace_rules_retires_previous(self, uow_factory, store):
        admin = SLAAdminService(uow_factory)
        stored = await admin.replace_rules([
            SLARule(priority=Priority.LOW, response_time=480, resolution_time=2880,
                    escalation_rules=(EscalationRule(threshold_pct=80),))
        ])

        assert stored[0].id is not None
        assert stored[0].escalation_rules[0].sla_rule_id == stored[0].id
        active = await admin.list_rules()
        assert [rule.priority for rule in active] == [Priority.LOW]
        assert len(await admin.list_rules(include_inactive=True)) == 4

    @pytest.mark.asyncio
    async def test_replace_rules_rejects_duplicate_priority(self, uow_factory, store):
        admin = SLAAdminService(uow_factory)
        rule = SLARule(priority=Priority.HIGH, response_time=60, resolution_time=120)
        with pytest.raises(ValidationException):
            await admin.replace_rules([rule, rule])
        assert len(await admin.list_rules()) == 3

    @pytest.mark.asyncio
    async def test_replace_business_hours(self, uow_factory, store):
        admin = SLAAdminService(uow_factory)
        hours = [WorkingHours(day, time(8, 0), time(20, 0)) for day in range(7)]
        await admin.replace_business_hours(hours)
        assert (await admin.get_business_hours())[0].end_time == time(20, 0)

    @pytest.mark.asyncio
    async def test_replace_business_hours_needs_seven_days(self, uow_factory, store, nine_to_five):
        admin = SLAAdminService(uow_factory)
        with pytest.raises(ConfigurationException):
            await admin.replace_business_hours(nine_to_five[1:])
        assert len(store.hours) == 7

    @pytest.mark.asyncio
    async def test_seed_fills_empty_tables_only(self):
        store = InMemorySLAStore()
        admin = SLAAdminService(in_memory_uow_factory(store))
        config = SLAConfig(rules=[{"priority": "urgent", "response_time": 30, "resolution_time": 120}])

        await admin.seed_from_config(config)
        await admin.seed_from_config(SLAConfig(rules=[
            {"priority": "low", "response_time": 30, "resolution_time": 120}
        ]))

        assert [rule.priority for rule in store.rules] == [Priority.URGENT]
        assert sorted(store.hours) == list(range(7))


class TestSLAQueryService:

    @pytest.mark.asyncio
    async def test_unknown_ticket(self, uow_factory):
        with pytest.raises(ResourceNotFoundException):
            await SLAQueryService(uow_factory).get_state("missing")

    @pytest.mark.asyncio
    async def test_history_empty(self, uow_factory):
        assert await SLAQueryService(uow_factory).get_history("missing") == []
