"""
SLA Application Layer
======================

Application layer for the SLA engine.

Contains:
- Services: rule resolver, history recorder, escalation dispatcher, admin
  and query services, and the ticket state watcher that orchestrates them
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from deskwatch.sla.application.dto import (
    TicketCreatedRequest,
    FirstResponseRequest,
    StatusChangeRequest,
    PriorityChangeRequest,
    PauseToggleRequest,
    PausePeriodCreateRequest,
    TrackStatusResponse,
    TicketSLAResponse,
    SLAHistoryResponse,
    PausePeriodResponse,
    SLARuleResponse,
    BusinessHoursResponse,
    TickSummaryResponse,
)
from deskwatch.sla.application.services import (
    ITicketSLARepository,
    ISLARuleRepository,
    IBusinessCalendarRepository,
    IPausePeriodRepository,
    ISLAHistoryRepository,
    IEscalationEventRepository,
    IEscalationPublisher,
    ISLAConfigProvider,
    ISLAUnitOfWork,
    RuleResolver,
    HistoryRecorder,
    EscalationDispatcher,
    SLAAdminService,
    SLAQueryService,
)
from deskwatch.sla.application.watcher import TicketStateWatcher, TickSummary

__all__ = [
    # DTOs
    "TicketCreatedRequest",
    "FirstResponseRequest",
    "StatusChangeRequest",
    "PriorityChangeRequest",
    "PauseToggleRequest",
    "PausePeriodCreateRequest",
    "TrackStatusResponse",
    "TicketSLAResponse",
    "SLAHistoryResponse",
    "PausePeriodResponse",
    "SLARuleResponse",
    "BusinessHoursResponse",
    "TickSummaryResponse",
    # Services
    "RuleResolver",
    "HistoryRecorder",
    "EscalationDispatcher",
    "SLAAdminService",
    "SLAQueryService",
    "TicketStateWatcher",
    "TickSummary",
    # Repository Interfaces
    "ITicketSLARepository",
    "ISLARuleRepository",
    "IBusinessCalendarRepository",
    "IPausePeriodRepository",
    "ISLAHistoryRepository",
    "IEscalationEventRepository",
    "IEscalationPublisher",
    "ISLAConfigProvider",
    "ISLAUnitOfWork",
]
