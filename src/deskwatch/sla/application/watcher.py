"""
Ticket State Watcher
====================

Orchestrates the SLA engine: reacts to ticket events, pause-period changes
and the periodic tick, and drives calculator, classifier, history recorder
and escalation dispatcher for one ticket at a time.

Every recalculation runs inside one unit of work while holding that ticket's
lock, so concurrent events and ticks for the same ticket are serialized.
Escalation events are published only after the unit of work has committed.
"""

import asyncio
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from deskwatch.config import Priority, TicketStatus, SLATrack
from deskwatch.core import (
    ConcurrencyConflictException, ConfigurationException,
    DataIntegrityException, ResourceNotFoundException
)
from deskwatch.shared.infrastructure.logging import get_logger
from deskwatch.sla.application.services import (
    ISLAUnitOfWork, IEscalationPublisher, ISLAConfigProvider,
    RuleResolver, HistoryRecorder, EscalationDispatcher
)
from deskwatch.sla.domain import (
    TicketSLAState, PausePeriod, Interval, BusinessCalendar, PauseSchedule,
    SLACalculator, StatusClassifier, EscalationEvent, to_utc
)

logger = get_logger(__name__)

UnitOfWorkFactory = Callable[[], ISLAUnitOfWork]
StateMutation = Callable[[TicketSLAState], None]


@dataclass
class TickSummary:
    """Outcome of one batch recalculation."""
    evaluated: int = 0
    deferred: int = 0
    failed: int = 0
    not_found: int = 0
    escalations: int = 0
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TicketStateWatcher:
    """
    Event handlers and periodic tick of the SLA engine.

    Lock conflicts are retried with exponential backoff; once retries are
    exhausted the recalculation is deferred to the next tick.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        publisher: IEscalationPublisher,
        config_provider: ISLAConfigProvider,
        clock: Callable[[], datetime] = utc_now,
        max_retries: int = 3,
        backoff_seconds: float = 0.25
    ):
        self._uow_factory = uow_factory
        self._publisher = publisher
        self._config_provider = config_provider
        self._clock = clock
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds

    # ========== Ticket events ==========

    async def on_ticket_created(
        self,
        ticket_id: str,
        priority: Priority,
        created_at: datetime,
        status: TicketStatus = TicketStatus.OPEN,
        first_response_at: Optional[datetime] = None,
        resolved_at: Optional[datetime] = None,
        closed_at: Optional[datetime] = None
    ) -> Optional[TicketSLAState]:
        """Start tracking a ticket; a repeated event re-evaluates the stored state."""
        def create() -> TicketSLAState:
            return TicketSLAState(
                ticket_id=ticket_id,
                priority=priority,
                created_at=created_at,
                ticket_status=status,
                first_response_at=first_response_at,
                resolved_at=resolved_at,
                closed_at=closed_at,
            )

        return await self._recalculate(ticket_id, create=create)

    async def on_first_response(self, ticket_id: str, responded_at: datetime) -> Optional[TicketSLAState]:
        """First agent reply: freezes the response track."""
        def mutate(state: TicketSLAState) -> None:
            if not state.mark_first_response(responded_at):
                logger.debug("First response already recorded", extra={"ticket_id": ticket_id})

        return await self._recalculate(ticket_id, mutate)

    async def on_status_changed(
        self,
        ticket_id: str,
        status: TicketStatus,
        changed_at: datetime
    ) -> Optional[TicketSLAState]:
        """Status change; resolved/closed freezes the resolution track."""
        def mutate(state: TicketSLAState) -> None:
            state.change_status(status, changed_at)

        return await self._recalculate(ticket_id, mutate)

    async def on_priority_changed(self, ticket_id: str, priority: Priority) -> Optional[TicketSLAState]:
        """
        Priority change; unfrozen tracks switch to the new rule.

        Elapsed time is re-measured up to the current clock, never rewound to
        the moment the change was reported.
        """
        def mutate(state: TicketSLAState) -> None:
            state.priority = priority

        return await self._recalculate(ticket_id, mutate)

    async def on_ticket_paused(
        self,
        ticket_id: str,
        paused_at: datetime,
        reason: Optional[str] = None
    ) -> Optional[TicketSLAState]:
        def mutate(state: TicketSLAState) -> None:
            state.pause(paused_at, reason)

        return await self._recalculate(ticket_id, mutate)

    async def on_ticket_resumed(self, ticket_id: str, resumed_at: datetime) -> Optional[TicketSLAState]:
        def mutate(state: TicketSLAState) -> None:
            state.resume(resumed_at)

        return await self._recalculate(ticket_id, mutate)

    async def recalculate(self, ticket_id: str, now: Optional[datetime] = None) -> Optional[TicketSLAState]:
        """Recompute one ticket without changing its lifecycle data."""
        return await self._recalculate(ticket_id, now=now)

    # ========== Pause periods ==========

    async def add_pause_period(self, period: PausePeriod) -> PausePeriod:
        async with self._uow_factory() as uow:
            stored = await uow.pauses.add(period)
        logger.info(
            "Pause period added",
            extra={"pause_period_id": stored.id, "pause_name": stored.name}
        )
        await self._recalculate_overlapping(stored.interval)
        return stored

    async def remove_pause_period(self, period_id: str) -> PausePeriod:
        async with self._uow_factory() as uow:
            removed = await uow.pauses.remove(period_id)
        if removed is None:
            raise ResourceNotFoundException("PausePeriod", period_id)
        logger.info("Pause period removed", extra={"pause_period_id": period_id})
        await self._recalculate_overlapping(removed.interval)
        return removed

    async def _recalculate_overlapping(self, window: Interval) -> TickSummary:
        async with self._uow_factory() as uow:
            ticket_ids = await uow.tickets.list_tracked_ids(overlapping=window)
        return await self._recalculate_many(ticket_ids, self._clock())

    # ========== Periodic tick ==========

    async def tick(self, now: Optional[datetime] = None) -> TickSummary:
        """Recompute every ticket that still has an unfrozen track."""
        now = to_utc(now or self._clock())
        async with self._uow_factory() as uow:
            ticket_ids = await uow.tickets.list_tracked_ids()

        summary = await self._recalculate_many(ticket_ids, now)
        logger.info("SLA tick completed", extra=summary.to_dict())
        return summary

    async def _recalculate_many(self, ticket_ids: Iterable[str], now: datetime) -> TickSummary:
        started = time.perf_counter()
        summary = TickSummary()

        for ticket_id in ticket_ids:
            try:
                state = await self._recalculate(ticket_id, now=now, flush=False)
            except ResourceNotFoundException:
                summary.not_found += 1
                logger.debug("Ticket vanished before recalculation", extra={"ticket_id": ticket_id})
                continue
            except Exception:
                summary.failed += 1
                logger.exception("SLA recalculation failed", extra={"ticket_id": ticket_id})
                continue

            if state is None:
                summary.deferred += 1
            else:
                summary.evaluated += 1

        summary.escalations = await self.flush_outbox()
        summary.duration_ms = round((time.perf_counter() - started) * 1000, 2)
        return summary

    # ========== Escalation outbox ==========

    async def flush_outbox(self, limit: int = 100) -> int:
        """
        Hand pending escalation events to the notification collaborator.

        Failed handoffs stay pending and are retried on the next flush.
        """
        async with self._uow_factory() as uow:
            pending = await uow.escalations.get_pending(limit)

        sent = 0
        for event in pending:
            try:
                await self._publisher.publish(event)
            except Exception as e:
                logger.warning(
                    "Escalation handoff failed, will retry",
                    extra={"idempotency_key": event.idempotency_key, "error": str(e)}
                )
                continue

            async with self._uow_factory() as uow:
                await uow.escalations.mark_sent(event.id, self._clock())
            sent += 1

        return sent

    # ========== Recalculation core ==========

    async def _recalculate(
        self,
        ticket_id: str,
        mutate: Optional[StateMutation] = None,
        create: Optional[Callable[[], TicketSLAState]] = None,
        now: Optional[datetime] = None,
        flush: bool = True
    ) -> Optional[TicketSLAState]:
        """
        Locked read-modify-write of one ticket's SLA state.

        Returns None when the lock stayed busy through every retry.

        Raises:
            ResourceNotFoundException: ticket unknown and no ``create`` given
        """
        for attempt in range(1, self._max_retries + 1):
            try:
                state = await self._recalculate_once(
                    ticket_id, mutate, create, to_utc(now or self._clock())
                )
            except ConcurrencyConflictException:
                if attempt == self._max_retries:
                    logger.warning(
                        "SLA recalculation deferred to next tick",
                        extra={"ticket_id": ticket_id, "attempts": attempt}
                    )
                    return None
                await asyncio.sleep(self._backoff_seconds * 2 ** (attempt - 1))
                continue

            if flush:
                await self.flush_outbox()
            return state

        return None

    async def _recalculate_once(
        self,
        ticket_id: str,
        mutate: Optional[StateMutation],
        create: Optional[Callable[[], TicketSLAState]],
        now: datetime
    ) -> TicketSLAState:
        async with self._uow_factory() as uow:
            async with uow.lock_ticket(ticket_id):
                state = await uow.tickets.get(ticket_id)
                is_new = state is None
                if is_new:
                    if create is None:
                        raise ResourceNotFoundException("Ticket", ticket_id)
                    state = create()
                elif mutate is not None:
                    mutate(state)

                await self._evaluate(uow, state, now)

                if is_new:
                    await uow.tickets.add(state)
                else:
                    await uow.tickets.save(state)

                # Commit before the lock is released.
                await uow.commit()
        return state

    async def _evaluate(self, uow: ISLAUnitOfWork, state: TicketSLAState, now: datetime) -> List[EscalationEvent]:
        """Recompute, reclassify, record and escalate every unfrozen track."""
        if state.excluded:
            return []

        try:
            state.validate()
        except DataIntegrityException as e:
            state.exclude(e.reason)
            logger.error(
                "Ticket excluded from SLA tracking",
                extra={"ticket_id": state.ticket_id, "reason": e.reason}
            )
            return []

        state.last_evaluated_at = now
        if not state.has_open_track:
            return []

        policy = self._config_provider.get_config().to_policy()
        try:
            rule = await RuleResolver(uow.rules).resolve(state.priority)
            calendar = BusinessCalendar(await uow.calendar.get_hours(), policy.timezone)
            periods = await uow.pauses.list_periods(start=state.created_at)
            calculator = SLACalculator(
                calendar,
                PauseSchedule.from_periods(periods),
                policy.pause_policy
            ).with_pause_windows(state.pause_windows(now))

            measurements = []
            for track in SLATrack:
                if state.is_frozen(track):
                    continue

                target = rule.target_for(track)
                terminal_at = state.terminal_at(track)
                elapsed = calculator.calculate_elapsed(
                    state.created_at, terminal_at or now, rule.business_hours_only
                )
                due = calculator.due_at(state.created_at, target, rule.business_hours_only)

                if terminal_at is not None:
                    status = StatusClassifier.freeze(elapsed, target)
                else:
                    status = StatusClassifier.classify(elapsed, target, rule.warning_threshold_pct)
                measurements.append((track, target, elapsed, due, status, terminal_at is not None))

            pause_minutes = calculator.pause_minutes(
                state.created_at, state.resolution_end or now, rule.business_hours_only
            )
        except ConfigurationException as e:
            state.sla_unavailable = True
            state.reset_open_tracks()
            logger.warning(
                "SLA unavailable for ticket",
                extra={"ticket_id": state.ticket_id, "error": e.message, "details": e.details}
            )
            return []

        state.sla_unavailable = False
        state.sla_rule_id = rule.id
        state.total_pause_duration = round(pause_minutes, 2)

        recorder = HistoryRecorder(uow.history, policy.history_debounce)
        dispatcher = EscalationDispatcher(uow.escalations, policy.escalation_cooldown)

        events: List[EscalationEvent] = []
        for track, target, elapsed, due, status, frozen in measurements:
            previous_elapsed = state.elapsed_for(track)
            state.apply_measurement(track, status, elapsed, due)
            await recorder.record(state.ticket_id, track, status, elapsed, target, now)

            if not frozen:
                events.extend(await dispatcher.evaluate(
                    state.ticket_id, track, previous_elapsed, elapsed, target, rule, now
                ))

        return events
