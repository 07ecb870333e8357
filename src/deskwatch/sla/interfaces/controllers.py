"""
SLA Controllers (API Routes)
=============================

FastAPI routes for the SLA engine.

Controllers are thin - they delegate to the ticket state watcher and the
admin/query services held on ``app.state``. Application exceptions are
mapped to HTTP status codes by the handlers registered in ``main``.
"""

from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from deskwatch.core import ConcurrencyConflictException
from deskwatch.shared.infrastructure.logging import get_logger
from deskwatch.sla.application import (
    TicketStateWatcher, SLAAdminService, SLAQueryService,
    TicketCreatedRequest, FirstResponseRequest, StatusChangeRequest,
    PriorityChangeRequest, PauseToggleRequest, PausePeriodCreateRequest,
    TicketSLAResponse, SLAHistoryResponse, PausePeriodResponse,
    SLARuleResponse, BusinessHoursResponse, TickSummaryResponse
)
from deskwatch.sla.domain import TicketSLAState, SLARuleConfig, BusinessHoursConfig

logger = get_logger(__name__)
sla_router = APIRouter(prefix="/sla", tags=["SLA Engine"])


# ========== Example payloads for Swagger ==========

TICKET_CREATED_EXAMPLE = {
    "ticket_id": "TICKET-001",
    "priority": "urgent",
    "created_at": "2025-06-27T10:00:00Z",
    "status": "open"
}

TICKET_SLA_RESPONSE_EXAMPLE = {
    "ticket_id": "TICKET-001",
    "priority": "urgent",
    "ticket_status": "open",
    "created_at": "2025-06-27T10:00:00Z",
    "sla_rule_id": "5b0c7c1e-3f7a-4d1e-9a55-0d5f4bb3e0a1",
    "sla_response_due": "2025-06-27T11:00:00Z",
    "sla_resolution_due": "2025-06-27T14:00:00Z",
    "sla_response_met": None,
    "sla_resolution_met": None,
    "total_pause_duration": 0.0,
    "response": {"status": "warning", "elapsed_minutes": 50.0, "due_at": "2025-06-27T11:00:00Z", "met": None, "frozen": False},
    "resolution": {"status": "ok", "elapsed_minutes": 50.0, "due_at": "2025-06-27T14:00:00Z", "met": None, "frozen": False},
    "is_paused": False,
    "sla_unavailable": False,
    "message": None,
    "excluded": False
}


# ========== Dependencies ==========

def get_watcher(request: Request) -> TicketStateWatcher:
    return request.app.state.sla_watcher


def get_admin_service(request: Request) -> SLAAdminService:
    return request.app.state.sla_admin


def get_query_service(request: Request) -> SLAQueryService:
    return request.app.state.sla_query


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _respond(ticket_id: str, state: Optional[TicketSLAState]) -> TicketSLAResponse:
    if state is None:
        raise ConcurrencyConflictException(ticket_id)
    return TicketSLAResponse.from_domain(state)


# ========== Ticket events ==========

@sla_router.post(
    "/tickets",
    response_model=TicketSLAResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start SLA tracking for a ticket",
    description="""
    Ticket created event. Resolves the active rule for the ticket's priority,
    computes due dates and initial statuses for the response and resolution
    tracks.

    **Idempotent**: a repeated event for a known ticket re-evaluates the stored
    state and leaves its lifecycle data untouched.

    **Priority Levels**: `low`, `medium`, `high`, `urgent`

    Without an active rule for the priority the ticket is stored with
    `sla_unavailable: true` and both tracks stay `pending`.
    """,
    responses={201: {"content": {"application/json": {"example": TICKET_SLA_RESPONSE_EXAMPLE}}}}
)
async def ticket_created(
    body: TicketCreatedRequest,
    watcher: TicketStateWatcher = Depends(get_watcher)
):
    state = await watcher.on_ticket_created(
        ticket_id=body.ticket_id,
        priority=body.priority,
        created_at=body.created_at,
        status=body.status,
        first_response_at=body.first_response_at,
        resolved_at=body.resolved_at,
        closed_at=body.closed_at,
    )
    return _respond(body.ticket_id, state)


@sla_router.post(
    "/tickets/{ticket_id}/first-response",
    response_model=TicketSLAResponse,
    summary="Record the first agent reply",
    description="Freezes the response track as `met` or `breached`. Later replies are ignored."
)
async def first_response(
    ticket_id: str,
    body: FirstResponseRequest,
    watcher: TicketStateWatcher = Depends(get_watcher)
):
    state = await watcher.on_first_response(ticket_id, body.responded_at or _now())
    return _respond(ticket_id, state)


@sla_router.post(
    "/tickets/{ticket_id}/status",
    response_model=TicketSLAResponse,
    summary="Ticket status change",
    description="`resolved` or `closed` freezes the resolution track (and a still-open response track)."
)
async def status_changed(
    ticket_id: str,
    body: StatusChangeRequest,
    watcher: TicketStateWatcher = Depends(get_watcher)
):
    state = await watcher.on_status_changed(ticket_id, body.status, body.changed_at or _now())
    return _respond(ticket_id, state)


@sla_router.post(
    "/tickets/{ticket_id}/priority",
    response_model=TicketSLAResponse,
    summary="Ticket priority change",
    description="Unfrozen tracks are re-measured against the rule of the new priority."
)
async def priority_changed(
    ticket_id: str,
    body: PriorityChangeRequest,
    watcher: TicketStateWatcher = Depends(get_watcher)
):
    state = await watcher.on_priority_changed(ticket_id, body.priority)
    return _respond(ticket_id, state)


@sla_router.post(
    "/tickets/{ticket_id}/pause",
    response_model=TicketSLAResponse,
    summary="Pause a ticket's SLA clocks"
)
async def pause_ticket(
    ticket_id: str,
    body: PauseToggleRequest,
    watcher: TicketStateWatcher = Depends(get_watcher)
):
    state = await watcher.on_ticket_paused(ticket_id, body.at or _now(), body.reason)
    return _respond(ticket_id, state)


@sla_router.post(
    "/tickets/{ticket_id}/resume",
    response_model=TicketSLAResponse,
    summary="Resume a paused ticket's SLA clocks"
)
async def resume_ticket(
    ticket_id: str,
    body: PauseToggleRequest,
    watcher: TicketStateWatcher = Depends(get_watcher)
):
    state = await watcher.on_ticket_resumed(ticket_id, body.at or _now())
    return _respond(ticket_id, state)


@sla_router.get(
    "/tickets/{ticket_id}",
    response_model=TicketSLAResponse,
    summary="Get SLA state for a ticket",
    responses={
        200: {"content": {"application/json": {"example": TICKET_SLA_RESPONSE_EXAMPLE}}},
        404: {"description": "Ticket not tracked"}
    }
)
async def get_ticket_sla(
    ticket_id: str,
    query: SLAQueryService = Depends(get_query_service)
):
    state = await query.get_state(ticket_id)
    return TicketSLAResponse.from_domain(state)


@sla_router.get(
    "/tickets/{ticket_id}/history",
    response_model=List[SLAHistoryResponse],
    summary="SLA history for a ticket",
    description="Append-only audit trail ordered by `recorded_at`."
)
async def get_ticket_history(
    ticket_id: str,
    query: SLAQueryService = Depends(get_query_service)
):
    await query.get_state(ticket_id)
    entries = await query.get_history(ticket_id)
    return [SLAHistoryResponse.from_domain(entry) for entry in entries]


# ========== Pause periods ==========

@sla_router.get(
    "/pause-periods",
    response_model=List[PausePeriodResponse],
    summary="List pause periods",
    description="Periods overlapping `[start, end)`; open bounds match everything."
)
async def list_pause_periods(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    admin: SLAAdminService = Depends(get_admin_service)
):
    periods = await admin.list_pause_periods(start, end)
    return [PausePeriodResponse.from_domain(period) for period in periods]


@sla_router.post(
    "/pause-periods",
    response_model=PausePeriodResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a pause period",
    description="Stops every SLA clock inside the window. Overlapping tickets are recalculated."
)
async def create_pause_period(
    body: PausePeriodCreateRequest,
    watcher: TicketStateWatcher = Depends(get_watcher)
):
    period = await watcher.add_pause_period(body.to_domain())
    return PausePeriodResponse.from_domain(period)


@sla_router.delete(
    "/pause-periods/{period_id}",
    response_model=PausePeriodResponse,
    summary="Delete a pause period",
    responses={404: {"description": "Pause period not found"}}
)
async def delete_pause_period(
    period_id: str,
    watcher: TicketStateWatcher = Depends(get_watcher)
):
    period = await watcher.remove_pause_period(period_id)
    return PausePeriodResponse.from_domain(period)


# ========== Configuration ==========

@sla_router.get(
    "/business-hours",
    response_model=List[BusinessHoursResponse],
    summary="Business calendar (0 = Sunday)"
)
async def get_business_hours(admin: SLAAdminService = Depends(get_admin_service)):
    hours = await admin.get_business_hours()
    return [BusinessHoursResponse.from_domain(entry) for entry in hours]


@sla_router.put(
    "/business-hours",
    response_model=List[BusinessHoursResponse],
    summary="Replace the business calendar",
    description="Exactly one row per weekday. Takes effect at the next recalculation."
)
async def replace_business_hours(
    body: List[BusinessHoursConfig],
    admin: SLAAdminService = Depends(get_admin_service)
):
    hours = await admin.replace_business_hours([row.to_domain() for row in body])
    return [BusinessHoursResponse.from_domain(entry) for entry in hours]


@sla_router.get(
    "/rules",
    response_model=List[SLARuleResponse],
    summary="List SLA rules"
)
async def list_rules(
    include_inactive: bool = Query(False),
    admin: SLAAdminService = Depends(get_admin_service)
):
    rules = await admin.list_rules(include_inactive)
    return [SLARuleResponse.from_domain(rule) for rule in rules]


@sla_router.put(
    "/rules",
    response_model=List[SLARuleResponse],
    summary="Replace SLA rules",
    description="""
    Replaces the active rule set. Previous rules are kept as inactive so
    historic `sla_rule_id` references stay valid. At most one active rule
    per priority.
    """
)
async def replace_rules(
    body: List[SLARuleConfig],
    admin: SLAAdminService = Depends(get_admin_service)
):
    rules = await admin.replace_rules([rule.to_domain() for rule in body])
    return [SLARuleResponse.from_domain(rule) for rule in rules]


# ========== Evaluation ==========

@sla_router.post(
    "/evaluate",
    response_model=TickSummaryResponse,
    summary="Run one SLA tick now",
    description="Recomputes every ticket with an unfrozen track and flushes pending escalations."
)
async def evaluate(watcher: TicketStateWatcher = Depends(get_watcher)):
    summary = await watcher.tick()
    return TickSummaryResponse(**summary.to_dict())
