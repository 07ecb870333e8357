"""Shared fixtures: in-memory SLA store, fixed clock, recording publisher."""

from datetime import datetime, time, timezone

import pytest

from deskwatch.config import Priority
from deskwatch.core import NotificationException
from deskwatch.sla.application import IEscalationPublisher, TicketStateWatcher
from deskwatch.sla.domain import SLAConfig, SLARule, WorkingHours
from deskwatch.sla.infrastructure import (
    InMemorySLAStore, StaticConfigProvider, TicketLockRegistry, in_memory_uow_factory
)


class FixedClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingPublisher(IEscalationPublisher):
    """Keeps published events; raises while ``fail`` is set."""

    def __init__(self):
        self.events = []
        self.fail = False

    async def publish(self, event):
        if self.fail:
            raise NotificationException("webhook down")
        self.events.append(event)


@pytest.fixture
def nine_to_five():
    """Mon-Fri 09:00-17:00, weekend off."""
    return [
        WorkingHours(day, time(9, 0), time(17, 0), True)
        if 1 <= day <= 5
        else WorkingHours(day, time(0, 0), time(0, 0), False)
        for day in range(7)
    ]


@pytest.fixture
def urgent_rule():
    """24/7 rule: response 60, resolution 240, warning and escalation at 75%."""
    return SLARule(
        id="rule-urgent",
        name="Urgent SLA",
        priority=Priority.URGENT,
        response_time=60,
        resolution_time=240,
        warning_threshold_pct=75,
        escalation_threshold_pct=75,
    )


@pytest.fixture
def high_rule():
    return SLARule(
        id="rule-high",
        name="High SLA",
        priority=Priority.HIGH,
        response_time=120,
        resolution_time=480,
    )


@pytest.fixture
def medium_rule():
    """Business-hours rule: response 60, resolution 480."""
    return SLARule(
        id="rule-medium",
        name="Medium SLA",
        priority=Priority.MEDIUM,
        response_time=60,
        resolution_time=480,
        business_hours_only=True,
    )


@pytest.fixture
def store(nine_to_five, urgent_rule, high_rule, medium_rule):
    """Committed data with rules for urgent/high/medium (no rule for low)."""
    store = InMemorySLAStore(locks=TicketLockRegistry(timeout_seconds=0.05))
    store.rules.extend([urgent_rule, high_rule, medium_rule])
    store.hours.update({entry.day_of_week: entry for entry in nine_to_five})
    return store


@pytest.fixture
def uow_factory(store):
    return in_memory_uow_factory(store)


@pytest.fixture
def clock():
    # Monday
    return FixedClock(datetime(2025, 6, 30, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def config_provider():
    return StaticConfigProvider(SLAConfig())


@pytest.fixture
def watcher(uow_factory, publisher, config_provider, clock):
    return TicketStateWatcher(
        uow_factory,
        publisher,
        config_provider,
        clock=clock,
        max_retries=3,
        backoff_seconds=0,
    )
