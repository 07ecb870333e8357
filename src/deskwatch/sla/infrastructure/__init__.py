"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for the SLA engine:
- Models: SQLAlchemy ORM models
- Repositories: SQLAlchemy data access and unit of work
- Memory: In-memory repositories and unit of work
- Locks: Per-ticket single-writer locks
- External: Notification webhook, config watcher, scheduler
"""

from deskwatch.sla.infrastructure.locks import TicketLockRegistry, advisory_ticket_lock
from deskwatch.sla.infrastructure.repositories import (
    SQLAlchemyTicketSLARepository,
    SQLAlchemySLARuleRepository,
    SQLAlchemyBusinessCalendarRepository,
    SQLAlchemyPausePeriodRepository,
    SQLAlchemySLAHistoryRepository,
    SQLAlchemyEscalationEventRepository,
    SQLAlchemyUnitOfWork,
    sqlalchemy_uow_factory,
)
from deskwatch.sla.infrastructure.memory import (
    InMemorySLAStore,
    InMemoryUnitOfWork,
    StaticConfigProvider,
    in_memory_uow_factory,
)
from deskwatch.sla.infrastructure.external import (
    SLAConfigManager,
    CircuitBreaker,
    WebhookEscalationPublisher,
    LoggingEscalationPublisher,
    SLAScheduler,
)

__all__ = [
    "TicketLockRegistry",
    "advisory_ticket_lock",
    "SQLAlchemyTicketSLARepository",
    "SQLAlchemySLARuleRepository",
    "SQLAlchemyBusinessCalendarRepository",
    "SQLAlchemyPausePeriodRepository",
    "SQLAlchemySLAHistoryRepository",
    "SQLAlchemyEscalationEventRepository",
    "SQLAlchemyUnitOfWork",
    "sqlalchemy_uow_factory",
    "InMemorySLAStore",
    "InMemoryUnitOfWork",
    "StaticConfigProvider",
    "in_memory_uow_factory",
    "SLAConfigManager",
    "CircuitBreaker",
    "WebhookEscalationPublisher",
    "LoggingEscalationPublisher",
    "SLAScheduler",
]
