"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database.
"""

from datetime import datetime
from typing import AsyncContextManager, Callable, List, Optional
from uuid import UUID

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deskwatch.config import Priority, TicketStatus, SLATrack, SLAStatus
from deskwatch.core import RepositoryException
from deskwatch.sla.application import (
    ITicketSLARepository, ISLARuleRepository, IBusinessCalendarRepository,
    IPausePeriodRepository, ISLAHistoryRepository, IEscalationEventRepository,
    ISLAUnitOfWork
)
from deskwatch.sla.domain import (
    TicketSLAState, SLARule, EscalationRule, PausePeriod, SLAHistoryEntry,
    EscalationEvent, WorkingHours, Interval
)
from deskwatch.sla.infrastructure.locks import TicketLockRegistry, advisory_ticket_lock
from deskwatch.sla.infrastructure.models import (
    TicketSLAStateModel, SLARuleModel, EscalationRuleModel, BusinessHoursModel,
    PausePeriodModel, SLAHistoryModel, EscalationEventModel
)


def _parse_uuid(value: Optional[str]) -> Optional[UUID]:
    if value is None:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _dump_intervals(intervals: List[Interval]) -> list:
    return [[window.start.isoformat(), window.end.isoformat()] for window in intervals]


def _load_intervals(raw: Optional[list]) -> List[Interval]:
    return [
        Interval(datetime.fromisoformat(start), datetime.fromisoformat(end))
        for start, end in (raw or [])
    ]


class SQLAlchemyTicketSLARepository(ITicketSLARepository):
    """
    SQLAlchemy implementation of the ticket SLA state repository.

    Handles persistence of TicketSLAState entities using async SQLAlchemy.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, ticket_id: str) -> Optional[TicketSLAState]:
        model = await self._session.get(TicketSLAStateModel, ticket_id)
        if model is None:
            return None
        return self._to_domain(model)

    async def add(self, state: TicketSLAState) -> TicketSLAState:
        model = TicketSLAStateModel(ticket_id=state.ticket_id)
        self._apply(model, state)
        self._session.add(model)
        await self._session.flush()
        return state

    async def save(self, state: TicketSLAState) -> TicketSLAState:
        model = await self._session.get(TicketSLAStateModel, state.ticket_id)
        if model is None:
            raise RepositoryException(f"SLA state for ticket {state.ticket_id} not found")
        self._apply(model, state)
        await self._session.flush()
        return state

    async def list_tracked_ids(self, overlapping: Optional[Interval] = None) -> List[str]:
        stmt = select(TicketSLAStateModel.ticket_id).where(TicketSLAStateModel.is_tracked.is_(True))
        if overlapping is not None:
            stmt = stmt.where(TicketSLAStateModel.created_at < overlapping.end)
        stmt = stmt.order_by(TicketSLAStateModel.created_at.asc())

        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    def _apply(model: TicketSLAStateModel, state: TicketSLAState) -> None:
        model.priority = state.priority.value
        model.ticket_status = state.ticket_status.value
        model.created_at = state.created_at
        model.first_response_at = state.first_response_at
        model.resolved_at = state.resolved_at
        model.closed_at = state.closed_at
        model.sla_rule_id = state.sla_rule_id
        model.sla_response_due = state.sla_response_due
        model.sla_resolution_due = state.sla_resolution_due
        model.sla_response_met = state.sla_response_met
        model.sla_resolution_met = state.sla_resolution_met
        model.total_pause_duration = state.total_pause_duration
        model.response_status = state.response_status.value
        model.resolution_status = state.resolution_status.value
        model.response_elapsed = state.response_elapsed
        model.resolution_elapsed = state.resolution_elapsed
        model.is_tracked = state.is_tracked
        model.sla_paused_at = state.paused_at
        model.pause_reason = state.pause_reason
        model.pause_intervals = _dump_intervals(state.pause_intervals)
        model.sla_unavailable = state.sla_unavailable
        model.excluded = state.excluded
        model.exclusion_reason = state.exclusion_reason
        model.last_evaluated_at = state.last_evaluated_at

    @staticmethod
    def _to_domain(model: TicketSLAStateModel) -> TicketSLAState:
        return TicketSLAState(
            ticket_id=model.ticket_id,
            priority=Priority(model.priority),
            created_at=model.created_at,
            ticket_status=TicketStatus(model.ticket_status),
            first_response_at=model.first_response_at,
            resolved_at=model.resolved_at,
            closed_at=model.closed_at,
            sla_rule_id=model.sla_rule_id,
            sla_response_due=model.sla_response_due,
            sla_resolution_due=model.sla_resolution_due,
            sla_response_met=model.sla_response_met,
            sla_resolution_met=model.sla_resolution_met,
            total_pause_duration=model.total_pause_duration,
            response_status=SLAStatus(model.response_status),
            resolution_status=SLAStatus(model.resolution_status),
            response_elapsed=model.response_elapsed,
            resolution_elapsed=model.resolution_elapsed,
            paused_at=model.sla_paused_at,
            pause_reason=model.pause_reason,
            pause_intervals=_load_intervals(model.pause_intervals),
            sla_unavailable=model.sla_unavailable,
            excluded=model.excluded,
            exclusion_reason=model.exclusion_reason,
            last_evaluated_at=model.last_evaluated_at,
        )


class SQLAlchemySLARuleRepository(ISLARuleRepository):
    """SLA rules with their escalation rules (eager-loaded)."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_active_by_priority(self, priority: Priority) -> Optional[SLARule]:
        stmt = (
            select(SLARuleModel)
            .where(SLARuleModel.priority == priority.value, SLARuleModel.is_active.is_(True))
            .order_by(SLARuleModel.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def list_rules(self, include_inactive: bool = False) -> List[SLARule]:
        stmt = select(SLARuleModel)
        if not include_inactive:
            stmt = stmt.where(SLARuleModel.is_active.is_(True))
        stmt = stmt.order_by(SLARuleModel.priority.asc(), SLARuleModel.created_at.desc())

        result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def replace_rules(self, rules: List[SLARule]) -> List[SLARule]:
        await self._session.execute(
            update(SLARuleModel)
            .where(SLARuleModel.is_active.is_(True))
            .values(is_active=False)
        )

        models = []
        for rule in rules:
            model = SLARuleModel(
                name=rule.name,
                priority=rule.priority.value,
                response_time=rule.response_time,
                resolution_time=rule.resolution_time,
                warning_threshold_pct=rule.warning_threshold_pct,
                escalation_threshold_pct=rule.escalation_threshold_pct,
                business_hours_only=rule.business_hours_only,
                is_active=rule.is_active,
                escalation_rules=[
                    EscalationRuleModel(
                        threshold_pct=escalation.threshold_pct,
                        notify_roles=list(escalation.notify_roles),
                        template=escalation.template,
                        is_active=escalation.is_active,
                    )
                    for escalation in rule.escalation_rules
                ],
            )
            self._session.add(model)
            models.append(model)

        await self._session.flush()
        return [self._to_domain(model) for model in models]

    @staticmethod
    def _to_domain(model: SLARuleModel) -> SLARule:
        return SLARule(
            id=str(model.id),
            name=model.name,
            priority=Priority(model.priority),
            response_time=model.response_time,
            resolution_time=model.resolution_time,
            warning_threshold_pct=model.warning_threshold_pct,
            escalation_threshold_pct=model.escalation_threshold_pct,
            business_hours_only=model.business_hours_only,
            is_active=model.is_active,
            escalation_rules=tuple(
                EscalationRule(
                    id=str(escalation.id),
                    sla_rule_id=str(model.id),
                    threshold_pct=escalation.threshold_pct,
                    notify_roles=tuple(escalation.notify_roles or ()),
                    template=escalation.template,
                    is_active=escalation.is_active,
                )
                for escalation in sorted(model.escalation_rules, key=lambda e: e.threshold_pct)
            ),
        )


class SQLAlchemyBusinessCalendarRepository(IBusinessCalendarRepository):
    """Seven-row business hours table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_hours(self) -> List[WorkingHours]:
        result = await self._session.execute(
            select(BusinessHoursModel).order_by(BusinessHoursModel.day_of_week.asc())
        )
        return [
            WorkingHours(
                day_of_week=model.day_of_week,
                start_time=model.start_time,
                end_time=model.end_time,
                is_working_day=model.is_working_day,
            )
            for model in result.scalars().all()
        ]

    async def replace_hours(self, hours: List[WorkingHours]) -> List[WorkingHours]:
        await self._session.execute(delete(BusinessHoursModel))
        for entry in hours:
            self._session.add(BusinessHoursModel(
                day_of_week=entry.day_of_week,
                start_time=entry.start_time,
                end_time=entry.end_time,
                is_working_day=entry.is_working_day,
            ))
        await self._session.flush()
        return sorted(hours, key=lambda entry: entry.day_of_week)


class SQLAlchemyPausePeriodRepository(IPausePeriodRepository):
    """Global maintenance windows."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_periods(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[PausePeriod]:
        stmt = select(PausePeriodModel)
        if start is not None:
            stmt = stmt.where(PausePeriodModel.end_time > start)
        if end is not None:
            stmt = stmt.where(PausePeriodModel.start_time < end)
        stmt = stmt.order_by(PausePeriodModel.start_time.asc())

        result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def get(self, period_id: str) -> Optional[PausePeriod]:
        model = await self._get_model(period_id)
        return self._to_domain(model) if model else None

    async def add(self, period: PausePeriod) -> PausePeriod:
        model = PausePeriodModel(
            name=period.name,
            start_time=period.start_time,
            end_time=period.end_time,
            reason=period.reason,
            created_by=period.created_by,
        )
        self._session.add(model)
        await self._session.flush()
        return self._to_domain(model)

    async def remove(self, period_id: str) -> Optional[PausePeriod]:
        model = await self._get_model(period_id)
        if model is None:
            return None
        period = self._to_domain(model)
        await self._session.delete(model)
        await self._session.flush()
        return period

    async def _get_model(self, period_id: str) -> Optional[PausePeriodModel]:
        period_uuid = _parse_uuid(period_id)
        if period_uuid is None:
            return None
        return await self._session.get(PausePeriodModel, period_uuid)

    @staticmethod
    def _to_domain(model: PausePeriodModel) -> PausePeriod:
        return PausePeriod(
            id=str(model.id),
            name=model.name,
            start_time=model.start_time,
            end_time=model.end_time,
            reason=model.reason,
            created_by=model.created_by,
        )


class SQLAlchemySLAHistoryRepository(ISLAHistoryRepository):
    """Append-only sla_history table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def append(self, entry: SLAHistoryEntry) -> SLAHistoryEntry:
        model = SLAHistoryModel(
            ticket_id=entry.ticket_id,
            sla_type=entry.track.value,
            status=entry.status.value,
            elapsed_time=entry.elapsed_time,
            target_time=entry.target_time,
            recorded_at=entry.recorded_at,
        )
        self._session.add(model)
        await self._session.flush()
        return self._to_domain(model)

    async def latest(self, ticket_id: str, track: SLATrack) -> Optional[SLAHistoryEntry]:
        stmt = (
            select(SLAHistoryModel)
            .where(SLAHistoryModel.ticket_id == ticket_id, SLAHistoryModel.sla_type == track.value)
            .order_by(SLAHistoryModel.recorded_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def list_for_ticket(self, ticket_id: str) -> List[SLAHistoryEntry]:
        stmt = (
            select(SLAHistoryModel)
            .where(SLAHistoryModel.ticket_id == ticket_id)
            .order_by(SLAHistoryModel.recorded_at.asc())
        )
        result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    @staticmethod
    def _to_domain(model: SLAHistoryModel) -> SLAHistoryEntry:
        return SLAHistoryEntry(
            id=str(model.id),
            ticket_id=model.ticket_id,
            track=SLATrack(model.sla_type),
            status=SLAStatus(model.status),
            elapsed_time=model.elapsed_time,
            target_time=model.target_time,
            recorded_at=model.recorded_at,
        )


class SQLAlchemyEscalationEventRepository(IEscalationEventRepository):
    """
    SQLAlchemy implementation of the escalation outbox.

    Handles persistence of EscalationEvent entities.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, event: EscalationEvent) -> EscalationEvent:
        model = EscalationEventModel(
            idempotency_key=event.idempotency_key,
            ticket_id=event.ticket_id,
            sla_type=event.track.value,
            threshold_pct=event.threshold_pct,
            notify_roles=list(event.notify_roles),
            template=event.template,
            elapsed_time=event.elapsed_time,
            target_time=event.target_time,
            triggered_at=event.triggered_at,
            notification_sent=event.notification_sent,
            notification_sent_at=event.notification_sent_at,
        )
        self._session.add(model)
        await self._session.flush()

        # Update event with generated ID
        event.id = str(model.id)
        return event

    async def last_triggered_at(self, idempotency_key: str) -> Optional[datetime]:
        stmt = (
            select(EscalationEventModel.triggered_at)
            .where(EscalationEventModel.idempotency_key == idempotency_key)
            .order_by(EscalationEventModel.triggered_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_pending(self, limit: int = 100) -> List[EscalationEvent]:
        """Get events that haven't been accepted yet, oldest first."""
        stmt = (
            select(EscalationEventModel)
            .where(EscalationEventModel.notification_sent.is_(False))
            .order_by(EscalationEventModel.triggered_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def mark_sent(self, event_id: str, sent_at: datetime) -> None:
        event_uuid = _parse_uuid(event_id)
        if event_uuid is None:
            raise RepositoryException(f"Invalid escalation event ID: {event_id}")

        model = await self._session.get(EscalationEventModel, event_uuid)
        if model is None:
            raise RepositoryException(f"Escalation event {event_id} not found")

        model.notification_sent = True
        model.notification_sent_at = sent_at
        await self._session.flush()

    @staticmethod
    def _to_domain(model: EscalationEventModel) -> EscalationEvent:
        return EscalationEvent(
            id=str(model.id),
            ticket_id=model.ticket_id,
            track=SLATrack(model.sla_type),
            threshold_pct=model.threshold_pct,
            notify_roles=tuple(model.notify_roles or ()),
            template=model.template,
            elapsed_time=model.elapsed_time,
            target_time=model.target_time,
            triggered_at=model.triggered_at,
            notification_sent=model.notification_sent,
            notification_sent_at=model.notification_sent_at,
        )


class SQLAlchemyUnitOfWork(ISLAUnitOfWork):
    """
    One AsyncSession per unit of work.

    Repositories share the session, so everything done inside the block
    commits or rolls back together.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        lock_registry: TicketLockRegistry
    ):
        self._session_maker = session_maker
        self._lock_registry = lock_registry
        self._session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        self._session = self._session_maker()
        self.tickets = SQLAlchemyTicketSLARepository(self._session)
        self.rules = SQLAlchemySLARuleRepository(self._session)
        self.calendar = SQLAlchemyBusinessCalendarRepository(self._session)
        self.pauses = SQLAlchemyPausePeriodRepository(self._session)
        self.history = SQLAlchemySLAHistoryRepository(self._session)
        self.escalations = SQLAlchemyEscalationEventRepository(self._session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            await self._session.close()
            self._session = None

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()

    def lock_ticket(self, ticket_id: str) -> AsyncContextManager[None]:
        return advisory_ticket_lock(self._session, self._lock_registry, ticket_id)


def sqlalchemy_uow_factory(
    session_maker: async_sessionmaker[AsyncSession],
    lock_registry: TicketLockRegistry
) -> Callable[[], SQLAlchemyUnitOfWork]:
    """Factory handed to the watcher and services."""
    def factory() -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_maker, lock_registry)
    return factory
