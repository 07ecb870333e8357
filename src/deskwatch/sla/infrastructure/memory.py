"""
In-Memory SLA Storage
=====================

Dictionary-backed repositories behind the same interfaces as the SQLAlchemy
ones. Used by the unit tests and for running the engine without a database.

Writes are staged per unit of work and applied to the shared store on
commit; reads always see committed data.
"""

from copy import deepcopy
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import AsyncContextManager, Callable, Dict, List, Optional
from uuid import uuid4

from deskwatch.config import Priority, SLATrack
from deskwatch.core import RepositoryException
from deskwatch.sla.application import (
    ITicketSLARepository, ISLARuleRepository, IBusinessCalendarRepository,
    IPausePeriodRepository, ISLAHistoryRepository, IEscalationEventRepository,
    ISLAConfigProvider, ISLAUnitOfWork
)
from deskwatch.sla.domain import (
    TicketSLAState, SLARule, PausePeriod, SLAHistoryEntry, EscalationEvent,
    WorkingHours, Interval, SLAConfig, to_utc
)
from deskwatch.sla.infrastructure.locks import TicketLockRegistry

StagedWrite = Callable[[], None]


@dataclass
class InMemorySLAStore:
    """Committed data shared by every in-memory unit of work."""
    tickets: Dict[str, TicketSLAState] = field(default_factory=dict)
    rules: List[SLARule] = field(default_factory=list)
    hours: Dict[int, WorkingHours] = field(default_factory=dict)
    pauses: Dict[str, PausePeriod] = field(default_factory=dict)
    history: List[SLAHistoryEntry] = field(default_factory=list)
    events: Dict[str, EscalationEvent] = field(default_factory=dict)
    locks: TicketLockRegistry = field(default_factory=TicketLockRegistry)
    commits: int = 0


class _StagedRepository:
    def __init__(self, store: InMemorySLAStore, staged: List[StagedWrite]):
        self._store = store
        self._staged = staged


class InMemoryTicketSLARepository(_StagedRepository, ITicketSLARepository):

    async def get(self, ticket_id: str) -> Optional[TicketSLAState]:
        state = self._store.tickets.get(ticket_id)
        return deepcopy(state) if state else None

    async def add(self, state: TicketSLAState) -> TicketSLAState:
        if state.ticket_id in self._store.tickets:
            raise RepositoryException(f"SLA state for ticket {state.ticket_id} already exists")
        snapshot = deepcopy(state)
        self._staged.append(lambda: self._store.tickets.__setitem__(snapshot.ticket_id, snapshot))
        return state

    async def save(self, state: TicketSLAState) -> TicketSLAState:
        if state.ticket_id not in self._store.tickets:
            raise RepositoryException(f"SLA state for ticket {state.ticket_id} not found")
        snapshot = deepcopy(state)
        self._staged.append(lambda: self._store.tickets.__setitem__(snapshot.ticket_id, snapshot))
        return state

    async def list_tracked_ids(self, overlapping: Optional[Interval] = None) -> List[str]:
        states = [state for state in self._store.tickets.values() if state.is_tracked]
        if overlapping is not None:
            states = [state for state in states if to_utc(state.created_at) < overlapping.end]
        states.sort(key=lambda state: to_utc(state.created_at))
        return [state.ticket_id for state in states]


class InMemorySLARuleRepository(_StagedRepository, ISLARuleRepository):

    async def get_active_by_priority(self, priority: Priority) -> Optional[SLARule]:
        for rule in reversed(self._store.rules):
            if rule.is_active and rule.priority == priority:
                return rule
        return None

    async def list_rules(self, include_inactive: bool = False) -> List[SLARule]:
        return [rule for rule in self._store.rules if include_inactive or rule.is_active]

    async def replace_rules(self, rules: List[SLARule]) -> List[SLARule]:
        stored = []
        for rule in rules:
            rule_id = str(uuid4())
            stored.append(replace(
                rule,
                id=rule_id,
                escalation_rules=tuple(
                    replace(escalation, id=str(uuid4()), sla_rule_id=rule_id)
                    for escalation in rule.escalation_rules
                ),
            ))

        def apply() -> None:
            retired = [replace(rule, is_active=False) for rule in self._store.rules]
            self._store.rules[:] = retired + stored

        self._staged.append(apply)
        return stored


class InMemoryBusinessCalendarRepository(_StagedRepository, IBusinessCalendarRepository):

    async def get_hours(self) -> List[WorkingHours]:
        return [self._store.hours[day] for day in sorted(self._store.hours)]

    async def replace_hours(self, hours: List[WorkingHours]) -> List[WorkingHours]:
        rows = {entry.day_of_week: entry for entry in hours}

        def apply() -> None:
            self._store.hours.clear()
            self._store.hours.update(rows)

        self._staged.append(apply)
        return sorted(hours, key=lambda entry: entry.day_of_week)


class InMemoryPausePeriodRepository(_StagedRepository, IPausePeriodRepository):

    async def list_periods(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[PausePeriod]:
        periods = []
        for period in self._store.pauses.values():
            window = period.interval
            if start is not None and window.end <= to_utc(start):
                continue
            if end is not None and window.start >= to_utc(end):
                continue
            periods.append(period)
        return sorted(periods, key=lambda period: period.interval.start)

    async def get(self, period_id: str) -> Optional[PausePeriod]:
        return self._store.pauses.get(period_id)

    async def add(self, period: PausePeriod) -> PausePeriod:
        stored = replace(period, id=str(uuid4()))
        self._staged.append(lambda: self._store.pauses.__setitem__(stored.id, stored))
        return stored

    async def remove(self, period_id: str) -> Optional[PausePeriod]:
        period = self._store.pauses.get(period_id)
        if period is None:
            return None
        self._staged.append(lambda: self._store.pauses.pop(period_id, None))
        return period


class InMemorySLAHistoryRepository(_StagedRepository, ISLAHistoryRepository):

    async def append(self, entry: SLAHistoryEntry) -> SLAHistoryEntry:
        stored = replace(entry, id=str(uuid4()))
        self._staged.append(lambda: self._store.history.append(stored))
        return stored

    async def latest(self, ticket_id: str, track: SLATrack) -> Optional[SLAHistoryEntry]:
        rows = [
            entry for entry in self._store.history
            if entry.ticket_id == ticket_id and entry.track == track
        ]
        return max(rows, key=lambda entry: entry.recorded_at) if rows else None

    async def list_for_ticket(self, ticket_id: str) -> List[SLAHistoryEntry]:
        rows = [entry for entry in self._store.history if entry.ticket_id == ticket_id]
        return sorted(rows, key=lambda entry: entry.recorded_at)


class InMemoryEscalationEventRepository(_StagedRepository, IEscalationEventRepository):

    async def add(self, event: EscalationEvent) -> EscalationEvent:
        event.id = str(uuid4())
        snapshot = deepcopy(event)
        self._staged.append(lambda: self._store.events.__setitem__(snapshot.id, snapshot))
        return event

    async def last_triggered_at(self, idempotency_key: str) -> Optional[datetime]:
        times = [
            event.triggered_at for event in self._store.events.values()
            if event.idempotency_key == idempotency_key
        ]
        return max(times) if times else None

    async def get_pending(self, limit: int = 100) -> List[EscalationEvent]:
        pending = [event for event in self._store.events.values() if not event.notification_sent]
        pending.sort(key=lambda event: event.triggered_at)
        return [deepcopy(event) for event in pending[:limit]]

    async def mark_sent(self, event_id: str, sent_at: datetime) -> None:
        if event_id not in self._store.events:
            raise RepositoryException(f"Escalation event {event_id} not found")
        self._staged.append(lambda: self._store.events[event_id].mark_notification_sent(sent_at))


class InMemoryUnitOfWork(ISLAUnitOfWork):
    """Unit of work over an InMemorySLAStore."""

    def __init__(self, store: InMemorySLAStore):
        self._store = store
        self._staged: List[StagedWrite] = []
        self.tickets = InMemoryTicketSLARepository(store, self._staged)
        self.rules = InMemorySLARuleRepository(store, self._staged)
        self.calendar = InMemoryBusinessCalendarRepository(store, self._staged)
        self.pauses = InMemoryPausePeriodRepository(store, self._staged)
        self.history = InMemorySLAHistoryRepository(store, self._staged)
        self.escalations = InMemoryEscalationEventRepository(store, self._staged)

    async def commit(self) -> None:
        for write in self._staged:
            write()
        self._staged.clear()
        self._store.commits += 1

    async def rollback(self) -> None:
        self._staged.clear()

    def lock_ticket(self, ticket_id: str) -> AsyncContextManager[None]:
        return self._store.locks.hold(ticket_id)


def in_memory_uow_factory(store: InMemorySLAStore) -> Callable[[], InMemoryUnitOfWork]:
    def factory() -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(store)
    return factory


class StaticConfigProvider(ISLAConfigProvider):
    """Config provider returning a fixed SLAConfig."""

    def __init__(self, config: Optional[SLAConfig] = None):
        self._config = config or SLAConfig()

    def get_config(self) -> SLAConfig:
        return self._config

    def set_config(self, config: SLAConfig) -> None:
        self._config = config
