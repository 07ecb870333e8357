"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import AsyncContextManager, List, Optional

from deskwatch.config import Priority, SLATrack, SLAStatus
from deskwatch.core import (
    NoActiveRuleForPriority, ResourceNotFoundException, ValidationException
)
from deskwatch.shared.infrastructure.logging import get_logger
from deskwatch.sla.domain import (
    TicketSLAState, SLARule, PausePeriod, SLAHistoryEntry, EscalationEvent,
    WorkingHours, Interval, BusinessCalendar, StatusClassifier, SLAConfig
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketSLARepository(ABC):
    """Interface for ticket SLA state access."""

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[TicketSLAState]:
        """Get SLA state by ticket ID."""

    @abstractmethod
    async def add(self, state: TicketSLAState) -> TicketSLAState:
        """Store SLA state for a new ticket."""

    @abstractmethod
    async def save(self, state: TicketSLAState) -> TicketSLAState:
        """Write back a modified SLA state."""

    @abstractmethod
    async def list_tracked_ids(self, overlapping: Optional[Interval] = None) -> List[str]:
        """IDs of tickets with an unfrozen track, optionally overlapping a window."""


class ISLARuleRepository(ABC):
    """Interface for SLA rule access."""

    @abstractmethod
    async def get_active_by_priority(self, priority: Priority) -> Optional[SLARule]:
        """Get the active rule for a priority."""

    @abstractmethod
    async def list_rules(self, include_inactive: bool = False) -> List[SLARule]:
        """List rules with their escalation rules."""

    @abstractmethod
    async def replace_rules(self, rules: List[SLARule]) -> List[SLARule]:
        """Deactivate current rules and store the given set."""


class IBusinessCalendarRepository(ABC):
    """Interface for the seven-row business hours table."""

    @abstractmethod
    async def get_hours(self) -> List[WorkingHours]:
        """Get working hours for every weekday."""

    @abstractmethod
    async def replace_hours(self, hours: List[WorkingHours]) -> List[WorkingHours]:
        """Replace all weekday rows."""


class IPausePeriodRepository(ABC):
    """Interface for pause period access."""

    @abstractmethod
    async def list_periods(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[PausePeriod]:
        """List periods overlapping ``[start, end)``; open bounds match all."""

    @abstractmethod
    async def get(self, period_id: str) -> Optional[PausePeriod]:
        """Get a pause period by ID."""

    @abstractmethod
    async def add(self, period: PausePeriod) -> PausePeriod:
        """Create a pause period."""

    @abstractmethod
    async def remove(self, period_id: str) -> Optional[PausePeriod]:
        """Delete a pause period, returning it if it existed."""


class ISLAHistoryRepository(ABC):
    """Interface for the append-only SLA history."""

    @abstractmethod
    async def append(self, entry: SLAHistoryEntry) -> SLAHistoryEntry:
        """Append a history row."""

    @abstractmethod
    async def latest(self, ticket_id: str, track: SLATrack) -> Optional[SLAHistoryEntry]:
        """Most recent row for one ticket track."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> List[SLAHistoryEntry]:
        """All rows for a ticket ordered by recorded_at."""


class IEscalationEventRepository(ABC):
    """Interface for the escalation outbox."""

    @abstractmethod
    async def add(self, event: EscalationEvent) -> EscalationEvent:
        """Store a new escalation event."""

    @abstractmethod
    async def last_triggered_at(self, idempotency_key: str) -> Optional[datetime]:
        """When an event with this key was last created."""

    @abstractmethod
    async def get_pending(self, limit: int = 100) -> List[EscalationEvent]:
        """Events not yet accepted by the notification collaborator."""

    @abstractmethod
    async def mark_sent(self, event_id: str, sent_at: datetime) -> None:
        """Mark event as accepted."""


class IEscalationPublisher(ABC):
    """Notification collaborator port; raises on failed handoff."""

    @abstractmethod
    async def publish(self, event: EscalationEvent) -> None:
        """Hand an escalation event to the notification service."""


class ISLAConfigProvider(ABC):
    """Interface for SLA configuration access."""

    @abstractmethod
    def get_config(self) -> SLAConfig:
        """Get current SLA configuration."""


class ISLAUnitOfWork(ABC):
    """
    Transaction boundary for one read-modify-write.

    Commits on clean exit and rolls back when the block raises, so an
    aborted recalculation leaves no partial writes.
    """

    tickets: ITicketSLARepository
    rules: ISLARuleRepository
    calendar: IBusinessCalendarRepository
    pauses: IPausePeriodRepository
    history: ISLAHistoryRepository
    escalations: IEscalationEventRepository

    async def __aenter__(self) -> "ISLAUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()

    @abstractmethod
    async def commit(self) -> None:
        """Persist staged changes."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard staged changes."""

    @abstractmethod
    def lock_ticket(self, ticket_id: str) -> AsyncContextManager[None]:
        """
        Single-writer lock for one ticket, held for the rest of the unit of work.

        Raises ConcurrencyConflictException when the lock cannot be taken.
        """


# ========== Application Services ==========

class RuleResolver:
    """Maps ticket priority to its active SLA rule."""

    def __init__(self, rule_repository: ISLARuleRepository):
        self._rule_repo = rule_repository

    async def resolve(self, priority: Priority) -> SLARule:
        """
        Get the active rule for a priority.

        Raises:
            NoActiveRuleForPriority: never falls back to a default rule
        """
        rule = await self._rule_repo.get_active_by_priority(priority)
        if rule is None:
            raise NoActiveRuleForPriority(priority)
        return rule


class HistoryRecorder:
    """
    Append-only SLA audit trail with debounce.

    A row is written when the status changed since the last row of the same
    track, or when the debounce window has passed since that row.
    """

    def __init__(self, history_repository: ISLAHistoryRepository, debounce: timedelta):
        self._history_repo = history_repository
        self._debounce = debounce

    @staticmethod
    def should_record(
        last: Optional[SLAHistoryEntry],
        status: SLAStatus,
        now: datetime,
        debounce: timedelta
    ) -> bool:
        if last is None:
            return True
        if last.status != status:
            return True
        return now - last.recorded_at >= debounce

    async def record(
        self,
        ticket_id: str,
        track: SLATrack,
        status: SLAStatus,
        elapsed: float,
        target: int,
        now: datetime
    ) -> Optional[SLAHistoryEntry]:
        last = await self._history_repo.latest(ticket_id, track)
        if not self.should_record(last, status, now, self._debounce):
            return None

        entry = SLAHistoryEntry(
            ticket_id=ticket_id,
            track=track,
            status=status,
            elapsed_time=round(elapsed, 2),
            target_time=target,
            recorded_at=now,
        )
        return await self._history_repo.append(entry)


class EscalationDispatcher:
    """
    Edge-triggered escalation emission.

    An event is written to the outbox the first time a track crosses an
    escalation threshold. A later fresh crossing of the same threshold (for
    example after a pause pulled elapsed time back under it) is only emitted
    again once the cool-down since the previous event has passed.
    """

    def __init__(self, event_repository: IEscalationEventRepository, cooldown: timedelta):
        self._event_repo = event_repository
        self._cooldown = cooldown

    async def evaluate(
        self,
        ticket_id: str,
        track: SLATrack,
        previous_elapsed: float,
        elapsed: float,
        target: int,
        rule: SLARule,
        now: datetime
    ) -> List[EscalationEvent]:
        percent = StatusClassifier.percent_elapsed(elapsed, target)
        previous_percent = StatusClassifier.percent_elapsed(previous_elapsed, target)

        events = []
        for escalation in rule.effective_escalation_rules():
            if percent < escalation.threshold_pct:
                continue

            event = EscalationEvent(
                ticket_id=ticket_id,
                track=track,
                threshold_pct=escalation.threshold_pct,
                notify_roles=tuple(escalation.notify_roles),
                template=escalation.template,
                elapsed_time=elapsed,
                target_time=target,
                triggered_at=now,
            )

            last = await self._event_repo.last_triggered_at(event.idempotency_key)
            if last is not None:
                fresh_crossing = previous_percent < escalation.threshold_pct
                if not fresh_crossing or now - last < self._cooldown:
                    logger.debug(
                        "Escalation suppressed",
                        extra={"idempotency_key": event.idempotency_key, "fresh_crossing": fresh_crossing}
                    )
                    continue

            events.append(await self._event_repo.add(event))
            logger.info(
                "Escalation threshold crossed",
                extra={
                    "ticket_id": ticket_id,
                    "track": track.value,
                    "threshold_pct": escalation.threshold_pct,
                    "percent_elapsed": round(percent, 1),
                }
            )

        return events


class SLAAdminService:
    """Configuration surface: rules and business hours."""

    def __init__(self, uow_factory):
        self._uow_factory = uow_factory

    async def list_rules(self, include_inactive: bool = False) -> List[SLARule]:
        async with self._uow_factory() as uow:
            return await uow.rules.list_rules(include_inactive)

    async def replace_rules(self, rules: List[SLARule]) -> List[SLARule]:
        """
        Replace the rule set; previous rules are kept as inactive.

        Raises:
            ValidationException: more than one active rule for a priority
        """
        active = [rule.priority for rule in rules if rule.is_active]
        duplicates = sorted({priority.value for priority in active if active.count(priority) > 1})
        if duplicates:
            raise ValidationException(
                "At most one active SLA rule per priority",
                {"priorities": duplicates}
            )

        async with self._uow_factory() as uow:
            stored = await uow.rules.replace_rules(rules)
        logger.info("SLA rules replaced", extra={"rule_count": len(stored)})
        return stored

    async def get_business_hours(self) -> List[WorkingHours]:
        async with self._uow_factory() as uow:
            return await uow.calendar.get_hours()

    async def replace_business_hours(self, hours: List[WorkingHours]) -> List[WorkingHours]:
        """
        Replace the seven weekday rows.

        Raises:
            ConfigurationException: duplicate or missing weekdays
        """
        BusinessCalendar(hours)
        async with self._uow_factory() as uow:
            stored = await uow.calendar.replace_hours(hours)
        logger.info("Business hours replaced")
        return stored

    async def list_pause_periods(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[PausePeriod]:
        async with self._uow_factory() as uow:
            return await uow.pauses.list_periods(start, end)

    async def seed_from_config(self, config: SLAConfig) -> None:
        """Write YAML seed data into empty configuration tables."""
        async with self._uow_factory() as uow:
            if not await uow.rules.list_rules(include_inactive=True) and config.rules:
                await uow.rules.replace_rules(config.build_rules())
                logger.info("Seeded SLA rules from config", extra={"rule_count": len(config.rules)})
            if not await uow.calendar.get_hours():
                await uow.calendar.replace_hours(config.build_working_hours())
                logger.info("Seeded business hours from config")


class SLAQueryService:
    """Read side: SLA state and history for the ticket collaborator."""

    def __init__(self, uow_factory):
        self._uow_factory = uow_factory

    async def get_state(self, ticket_id: str) -> TicketSLAState:
        async with self._uow_factory() as uow:
            state = await uow.tickets.get(ticket_id)
        if state is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return state

    async def get_history(self, ticket_id: str) -> List[SLAHistoryEntry]:
        async with self._uow_factory() as uow:
            return await uow.history.list_for_ticket(ticket_id)
