"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, time, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    String, Boolean, Integer, Float, Text, Uuid, Time, JSON, ForeignKey, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from deskwatch.infrastructure.database import Base, UTCDateTime
from deskwatch.config import Priority, TicketStatus, SLATrack, SLAStatus


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TicketSLAStateModel(Base):
    """
    SLA state attached to a ticket.

    Maps to the 'ticket_sla_states' table. The ticket itself lives with the
    ticket collaborator; the row is keyed by its ticket ID.
    """
    __tablename__ = "ticket_sla_states"

    ticket_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    # Lifecycle data mirrored from the ticket
    priority: Mapped[Priority] = mapped_column(String(50), nullable=False)
    ticket_status: Mapped[TicketStatus] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    first_response_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Produced SLA fields
    sla_rule_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    sla_response_due: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    sla_resolution_due: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    sla_response_met: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    sla_resolution_met: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    total_pause_duration: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    # Per-track bookkeeping
    response_status: Mapped[SLAStatus] = mapped_column(String(50), nullable=False, default=SLAStatus.PENDING)
    resolution_status: Mapped[SLAStatus] = mapped_column(String(50), nullable=False, default=SLAStatus.PENDING)
    response_elapsed: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    resolution_elapsed: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_tracked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    # Ticket-level pause toggle; closed windows as [[start_iso, end_iso], ...]
    sla_paused_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    pause_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pause_intervals: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Error surfacing
    sla_unavailable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    excluded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    exclusion_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_evaluated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utc_now, onupdate=_utc_now)


class SLARuleModel(Base):
    """
    Database model for SLA rules.

    Maps to the 'sla_rules' table. At most one active row per priority.
    """
    __tablename__ = "sla_rules"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    priority: Mapped[Priority] = mapped_column(String(50), nullable=False, index=True)
    response_time: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution_time: Mapped[int] = mapped_column(Integer, nullable=False)
    warning_threshold_pct: Mapped[int] = mapped_column(Integer, nullable=False, default=75)
    escalation_threshold_pct: Mapped[int] = mapped_column(Integer, nullable=False, default=75)
    business_hours_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utc_now)

    escalation_rules: Mapped[List["EscalationRuleModel"]] = relationship(
        back_populates="sla_rule",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="EscalationRuleModel.threshold_pct",
    )


class EscalationRuleModel(Base):
    """Maps to the 'sla_escalation_rules' table."""
    __tablename__ = "sla_escalation_rules"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    sla_rule_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("sla_rules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    threshold_pct: Mapped[int] = mapped_column(Integer, nullable=False)
    notify_roles: Mapped[list] = mapped_column(JSON, nullable=False, default=lambda: ["admin"])
    template: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    sla_rule: Mapped[SLARuleModel] = relationship(back_populates="escalation_rules")


class BusinessHoursModel(Base):
    """
    One row per weekday (0 = Sunday).

    Maps to the 'business_hours' table.
    """
    __tablename__ = "business_hours"

    day_of_week: Mapped[int] = mapped_column(Integer, primary_key=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_working_day: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class PausePeriodModel(Base):
    """Maps to the 'sla_pause_periods' table."""
    __tablename__ = "sla_pause_periods"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utc_now)

    __table_args__ = (
        Index("ix_sla_pause_periods_window", "start_time", "end_time"),
    )


class SLAHistoryModel(Base):
    """
    Append-only SLA audit trail.

    Maps to the 'sla_history' table.
    """
    __tablename__ = "sla_history"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sla_type: Mapped[SLATrack] = mapped_column(String(50), nullable=False)  # response or resolution
    status: Mapped[SLAStatus] = mapped_column(String(50), nullable=False)
    elapsed_time: Mapped[float] = mapped_column(Float, nullable=False)
    target_time: Mapped[int] = mapped_column(Integer, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utc_now)

    __table_args__ = (
        Index("ix_sla_history_ticket_track", "ticket_id", "sla_type", "recorded_at"),
    )


class EscalationEventModel(Base):
    """
    Escalation outbox.

    Maps to the 'sla_escalation_events' table. Rows stay with
    notification_sent = False until the notification collaborator accepts them.
    """
    __tablename__ = "sla_escalation_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    idempotency_key: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    ticket_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    sla_type: Mapped[SLATrack] = mapped_column(String(50), nullable=False)
    threshold_pct: Mapped[int] = mapped_column(Integer, nullable=False)
    notify_roles: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    template: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    elapsed_time: Mapped[float] = mapped_column(Float, nullable=False)
    target_time: Mapped[int] = mapped_column(Integer, nullable=False)
    triggered_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utc_now)

    # Notification tracking
    notification_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    notification_sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
