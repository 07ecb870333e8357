"""
SLA Application DTOs
=====================

Data Transfer Objects for the SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from datetime import datetime, time
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from deskwatch.config import Priority, TicketStatus, SLATrack, SLAStatus
from deskwatch.sla.domain import (
    TicketSLAState, SLAHistoryEntry, PausePeriod, SLARule, WorkingHours, to_utc
)


SLA_UNAVAILABLE_MESSAGE = "SLA unavailable"


# ========== Request DTOs ==========

class TicketCreatedRequest(BaseModel):
    """Ticket created event from the ticket collaborator."""
    ticket_id: str = Field(..., min_length=1, description="Ticket ID")
    priority: Priority = Field(..., description="Ticket priority")
    created_at: datetime = Field(..., description="Ticket creation timestamp")
    status: TicketStatus = Field(default=TicketStatus.OPEN, description="Ticket status")
    first_response_at: Optional[datetime] = Field(None, description="First agent reply")
    resolved_at: Optional[datetime] = Field(None, description="Resolution time")
    closed_at: Optional[datetime] = Field(None, description="Close time")

    @field_validator("created_at", "first_response_at", "resolved_at", "closed_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive timestamps are read as UTC."""
        return to_utc(v) if v is not None else None


class FirstResponseRequest(BaseModel):
    """First agent reply detected by the chat/comment collaborator."""
    responded_at: Optional[datetime] = Field(None, description="Reply time (defaults to now)")
    responder_id: Optional[str] = Field(None, description="Agent who replied")

    @field_validator("responded_at")
    @classmethod
    def normalize_responded_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc(v) if v is not None else None


class StatusChangeRequest(BaseModel):
    status: TicketStatus
    changed_at: Optional[datetime] = Field(None, description="Change time (defaults to now)")

    @field_validator("changed_at")
    @classmethod
    def normalize_changed_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc(v) if v is not None else None


class PriorityChangeRequest(BaseModel):
    priority: Priority


class PauseToggleRequest(BaseModel):
    at: Optional[datetime] = Field(None, description="Toggle time (defaults to now)")
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("at")
    @classmethod
    def normalize_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc(v) if v is not None else None


class PausePeriodCreateRequest(BaseModel):
    """Maintenance window during which all SLA clocks stop."""
    name: str = Field(..., min_length=1, max_length=255)
    start_time: datetime
    end_time: datetime
    reason: Optional[str] = None
    created_by: Optional[str] = None

    @field_validator("start_time")
    @classmethod
    def normalize_start_time(cls, v: datetime) -> datetime:
        return to_utc(v)

    @field_validator("end_time")
    @classmethod
    def validate_end_time(cls, v: datetime, info) -> datetime:
        """Ensure end_time is after start_time."""
        v = to_utc(v)
        if "start_time" in info.data and v <= info.data["start_time"]:
            raise ValueError("end_time must be after start_time")
        return v

    def to_domain(self) -> PausePeriod:
        return PausePeriod(
            name=self.name,
            start_time=self.start_time,
            end_time=self.end_time,
            reason=self.reason,
            created_by=self.created_by,
        )


# ========== Response DTOs ==========

class TrackStatusResponse(BaseModel):
    """SLA status of one track."""
    status: SLAStatus
    elapsed_minutes: float
    due_at: Optional[datetime] = None
    met: Optional[bool] = None
    frozen: bool = False


class TicketSLAResponse(BaseModel):
    """SLA fields produced back to the ticket collaborator."""
    ticket_id: str
    priority: Priority
    ticket_status: TicketStatus
    created_at: datetime
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    sla_rule_id: Optional[str] = None
    sla_response_due: Optional[datetime] = None
    sla_resolution_due: Optional[datetime] = None
    sla_response_met: Optional[bool] = None
    sla_resolution_met: Optional[bool] = None
    total_pause_duration: float = 0.0

    response: TrackStatusResponse
    resolution: TrackStatusResponse

    is_paused: bool = False
    sla_unavailable: bool = False
    message: Optional[str] = Field(None, description="Shown to admins when SLA cannot be tracked")
    excluded: bool = False
    exclusion_reason: Optional[str] = None
    last_evaluated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, state: TicketSLAState) -> "TicketSLAResponse":
        def track(sla_track: SLATrack) -> TrackStatusResponse:
            return TrackStatusResponse(
                status=state.status_for(sla_track),
                elapsed_minutes=round(state.elapsed_for(sla_track), 2),
                due_at=state.due_for(sla_track),
                met=state.met_for(sla_track),
                frozen=state.is_frozen(sla_track),
            )

        message = None
        if state.excluded:
            message = state.exclusion_reason
        elif state.sla_unavailable:
            message = SLA_UNAVAILABLE_MESSAGE

        return cls(
            ticket_id=state.ticket_id,
            priority=state.priority,
            ticket_status=state.ticket_status,
            created_at=state.created_at,
            first_response_at=state.first_response_at,
            resolved_at=state.resolved_at,
            closed_at=state.closed_at,
            sla_rule_id=state.sla_rule_id,
            sla_response_due=state.sla_response_due,
            sla_resolution_due=state.sla_resolution_due,
            sla_response_met=state.sla_response_met,
            sla_resolution_met=state.sla_resolution_met,
            total_pause_duration=state.total_pause_duration,
            response=track(SLATrack.RESPONSE),
            resolution=track(SLATrack.RESOLUTION),
            is_paused=state.is_paused,
            sla_unavailable=state.sla_unavailable,
            message=message,
            excluded=state.excluded,
            exclusion_reason=state.exclusion_reason,
            last_evaluated_at=state.last_evaluated_at,
        )


class SLAHistoryResponse(BaseModel):
    ticket_id: str
    track: SLATrack
    status: SLAStatus
    elapsed_time: float
    target_time: int
    recorded_at: datetime

    @classmethod
    def from_domain(cls, entry: SLAHistoryEntry) -> "SLAHistoryResponse":
        return cls(
            ticket_id=entry.ticket_id,
            track=entry.track,
            status=entry.status,
            elapsed_time=entry.elapsed_time,
            target_time=entry.target_time,
            recorded_at=entry.recorded_at,
        )


class PausePeriodResponse(BaseModel):
    id: Optional[str]
    name: str
    start_time: datetime
    end_time: datetime
    reason: Optional[str] = None
    created_by: Optional[str] = None

    @classmethod
    def from_domain(cls, period: PausePeriod) -> "PausePeriodResponse":
        return cls(
            id=period.id,
            name=period.name,
            start_time=period.start_time,
            end_time=period.end_time,
            reason=period.reason,
            created_by=period.created_by,
        )


class EscalationRuleResponse(BaseModel):
    id: Optional[str]
    threshold_pct: int
    notify_roles: List[str]
    template: Optional[str] = None
    is_active: bool = True


class SLARuleResponse(BaseModel):
    id: Optional[str]
    name: Optional[str]
    priority: Priority
    response_time: int = Field(..., description="Minutes")
    resolution_time: int = Field(..., description="Minutes")
    warning_threshold_pct: int
    escalation_threshold_pct: int
    business_hours_only: bool
    is_active: bool
    escalation_rules: List[EscalationRuleResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, rule: SLARule) -> "SLARuleResponse":
        return cls(
            id=rule.id,
            name=rule.name,
            priority=rule.priority,
            response_time=rule.response_time,
            resolution_time=rule.resolution_time,
            warning_threshold_pct=rule.warning_threshold_pct,
            escalation_threshold_pct=rule.escalation_threshold_pct,
            business_hours_only=rule.business_hours_only,
            is_active=rule.is_active,
            escalation_rules=[
                EscalationRuleResponse(
                    id=escalation.id,
                    threshold_pct=escalation.threshold_pct,
                    notify_roles=list(escalation.notify_roles),
                    template=escalation.template,
                    is_active=escalation.is_active,
                )
                for escalation in rule.escalation_rules
            ],
        )


class BusinessHoursResponse(BaseModel):
    day_of_week: int = Field(..., description="0 = Sunday")
    start_time: time
    end_time: time
    is_working_day: bool

    @classmethod
    def from_domain(cls, hours: WorkingHours) -> "BusinessHoursResponse":
        return cls(
            day_of_week=hours.day_of_week,
            start_time=hours.start_time,
            end_time=hours.end_time,
            is_working_day=hours.is_working_day,
        )


class TickSummaryResponse(BaseModel):
    evaluated: int
    deferred: int
    failed: int
    not_found: int
    escalations: int
    duration_ms: float
