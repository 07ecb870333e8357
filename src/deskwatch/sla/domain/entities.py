"""
SLA Domain Entities
====================

Pure Python domain entities for SLA tracking.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from deskwatch.config import (
    Priority, TicketStatus, SLATrack, SLAStatus,
    FROZEN_SLA_STATUSES, DEFAULT_NOTIFY_ROLES
)
from deskwatch.core import DataIntegrityException, ValidationException
from deskwatch.sla.domain.business_time import Interval, to_utc


@dataclass(frozen=True)
class EscalationRule:
    """Who to notify once a track has used ``threshold_pct`` of its target."""

    threshold_pct: int
    notify_roles: Tuple[str, ...] = DEFAULT_NOTIFY_ROLES
    template: Optional[str] = None
    is_active: bool = True
    id: Optional[str] = None
    sla_rule_id: Optional[str] = None


@dataclass(frozen=True)
class SLARule:
    """
    SLA targets for one priority.

    Targets are expressed in minutes; thresholds in percent of the target.
    """

    priority: Priority
    response_time: int
    resolution_time: int
    warning_threshold_pct: int = 75
    escalation_threshold_pct: int = 75
    business_hours_only: bool = False
    is_active: bool = True
    name: Optional[str] = None
    id: Optional[str] = None
    escalation_rules: Tuple[EscalationRule, ...] = ()

    def __post_init__(self):
        if self.response_time <= 0 or self.resolution_time <= 0:
            raise ValidationException(
                "SLA targets must be positive minutes",
                {"response_time": self.response_time, "resolution_time": self.resolution_time}
            )

    def target_for(self, track: SLATrack) -> int:
        if track == SLATrack.RESPONSE:
            return self.response_time
        return self.resolution_time

    def effective_escalation_rules(self) -> List[EscalationRule]:
        """Active escalation rules, falling back to the rule's own threshold."""
        active = [rule for rule in self.escalation_rules if rule.is_active]
        if active:
            return sorted(active, key=lambda rule: rule.threshold_pct)
        return [EscalationRule(
            threshold_pct=self.escalation_threshold_pct,
            sla_rule_id=self.id
        )]


@dataclass(frozen=True)
class PausePeriod:
    """Maintenance window during which every SLA clock stops."""

    name: str
    start_time: datetime
    end_time: datetime
    reason: Optional[str] = None
    created_by: Optional[str] = None
    id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "start_time", to_utc(self.start_time))
        object.__setattr__(self, "end_time", to_utc(self.end_time))
        if self.end_time <= self.start_time:
            raise ValidationException(
                "Pause period must end after it starts",
                {"name": self.name}
            )

    @property
    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time)


@dataclass(frozen=True)
class SLAHistoryEntry:
    """Append-only audit row for one track's status at one recalculation."""

    ticket_id: str
    track: SLATrack
    status: SLAStatus
    elapsed_time: float
    target_time: int
    recorded_at: datetime
    id: Optional[str] = None


@dataclass
class EscalationEvent:
    """
    Escalation handed to the notification collaborator.

    Kept in an outbox until the collaborator has accepted it.
    """

    ticket_id: str
    track: SLATrack
    threshold_pct: int
    notify_roles: Tuple[str, ...]
    elapsed_time: float
    target_time: int
    triggered_at: datetime
    template: Optional[str] = None
    id: Optional[str] = None
    notification_sent: bool = False
    notification_sent_at: Optional[datetime] = None

    @property
    def idempotency_key(self) -> str:
        track = getattr(self.track, "value", self.track)
        return f"{self.ticket_id}:{track}:{self.threshold_pct}"

    def mark_notification_sent(self, timestamp: Optional[datetime] = None) -> None:
        self.notification_sent = True
        self.notification_sent_at = timestamp or datetime.now(timezone.utc)

    def to_payload(self) -> dict:
        return {
            "idempotency_key": self.idempotency_key,
            "ticket_id": self.ticket_id,
            "track": getattr(self.track, "value", self.track),
            "threshold_pct": self.threshold_pct,
            "notify_roles": list(self.notify_roles),
            "template": self.template,
            "elapsed_time": round(self.elapsed_time, 2),
            "target_time": self.target_time,
            "triggered_at": self.triggered_at.isoformat(),
        }


@dataclass
class TicketSLAState:
    """
    SLA state attached to a ticket and owned by the engine.

    The ticket collaborator only sees the produced fields (due dates, met
    flags, total pause duration); everything else is engine bookkeeping.
    """

    ticket_id: str
    priority: Priority
    created_at: datetime
    ticket_status: TicketStatus = TicketStatus.OPEN

    # Lifecycle timestamps supplied by collaborators
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    # Produced fields
    sla_rule_id: Optional[str] = None
    sla_response_due: Optional[datetime] = None
    sla_resolution_due: Optional[datetime] = None
    sla_response_met: Optional[bool] = None
    sla_resolution_met: Optional[bool] = None
    total_pause_duration: float = 0.0

    # Per-track bookkeeping
    response_status: SLAStatus = SLAStatus.PENDING
    resolution_status: SLAStatus = SLAStatus.PENDING
    response_elapsed: float = 0.0
    resolution_elapsed: float = 0.0

    # Ticket-level pause toggle
    paused_at: Optional[datetime] = None
    pause_reason: Optional[str] = None
    pause_intervals: List[Interval] = field(default_factory=list)

    # Error surfacing
    sla_unavailable: bool = False
    excluded: bool = False
    exclusion_reason: Optional[str] = None
    last_evaluated_at: Optional[datetime] = None

    def __post_init__(self):
        self.created_at = to_utc(self.created_at)
        for name in ("first_response_at", "resolved_at", "closed_at", "paused_at", "last_evaluated_at"):
            value = getattr(self, name)
            if value is not None:
                setattr(self, name, to_utc(value))

    # ---------- integrity ----------

    def validate(self) -> None:
        """Raise DataIntegrityException when lifecycle timestamps contradict."""
        created = to_utc(self.created_at)
        for label, value in (
            ("first_response_at", self.first_response_at),
            ("resolved_at", self.resolved_at),
            ("closed_at", self.closed_at),
        ):
            if value is not None and to_utc(value) < created:
                raise DataIntegrityException(self.ticket_id, f"{label} is earlier than created_at")

        if self.resolved_at and self.closed_at and to_utc(self.closed_at) < to_utc(self.resolved_at):
            raise DataIntegrityException(self.ticket_id, "closed_at is earlier than resolved_at")

    def exclude(self, reason: str) -> None:
        self.excluded = True
        self.exclusion_reason = reason

    # ---------- track accessors ----------

    @property
    def resolution_end(self) -> Optional[datetime]:
        """Instant the resolution clock stopped: resolved, else closed."""
        return self.resolved_at or self.closed_at

    def terminal_at(self, track: SLATrack) -> Optional[datetime]:
        """Instant of the event that freezes ``track``, if it happened."""
        if track == SLATrack.RESPONSE:
            if self.first_response_at is not None:
                return self.first_response_at
            # Resolving without a reply also answers the customer.
            return self.resolution_end
        return self.resolution_end

    def status_for(self, track: SLATrack) -> SLAStatus:
        if track == SLATrack.RESPONSE:
            return self.response_status
        return self.resolution_status

    def elapsed_for(self, track: SLATrack) -> float:
        if track == SLATrack.RESPONSE:
            return self.response_elapsed
        return self.resolution_elapsed

    def due_for(self, track: SLATrack) -> Optional[datetime]:
        if track == SLATrack.RESPONSE:
            return self.sla_response_due
        return self.sla_resolution_due

    def met_for(self, track: SLATrack) -> Optional[bool]:
        if track == SLATrack.RESPONSE:
            return self.sla_response_met
        return self.sla_resolution_met

    def is_frozen(self, track: SLATrack) -> bool:
        return self.status_for(track) in FROZEN_SLA_STATUSES

    @property
    def has_open_track(self) -> bool:
        return not (self.is_frozen(SLATrack.RESPONSE) and self.is_frozen(SLATrack.RESOLUTION))

    @property
    def is_tracked(self) -> bool:
        """Whether periodic ticks should still look at this ticket."""
        return not self.excluded and self.has_open_track

    def apply_measurement(
        self,
        track: SLATrack,
        status: SLAStatus,
        elapsed: float,
        due: Optional[datetime]
    ) -> None:
        """Store one track's recalculated values; frozen tracks are left alone."""
        if self.is_frozen(track):
            return
        met = None
        if status in FROZEN_SLA_STATUSES:
            met = status == SLAStatus.MET

        if track == SLATrack.RESPONSE:
            self.response_status = status
            self.response_elapsed = elapsed
            self.sla_response_due = due
            self.sla_response_met = met
        else:
            self.resolution_status = status
            self.resolution_elapsed = elapsed
            self.sla_resolution_due = due
            self.sla_resolution_met = met

    def reset_open_tracks(self) -> None:
        """Drop live values of unfrozen tracks (rule no longer resolvable)."""
        for track in SLATrack:
            if not self.is_frozen(track):
                self.apply_measurement(track, SLAStatus.PENDING, 0.0, None)

    # ---------- lifecycle ----------

    def mark_first_response(self, timestamp: datetime) -> bool:
        """Record the first agent reply; later replies are ignored."""
        if self.first_response_at is not None:
            return False
        self.first_response_at = to_utc(timestamp)
        return True

    def change_status(self, status: TicketStatus, timestamp: datetime) -> None:
        self.ticket_status = status
        if status == TicketStatus.RESOLVED and self.resolved_at is None:
            self.resolved_at = to_utc(timestamp)
        elif status == TicketStatus.CLOSED and self.closed_at is None:
            self.closed_at = to_utc(timestamp)

    @property
    def is_paused(self) -> bool:
        return self.paused_at is not None

    def pause(self, timestamp: datetime, reason: Optional[str] = None) -> bool:
        if self.paused_at is not None:
            return False
        self.paused_at = to_utc(timestamp)
        self.pause_reason = reason
        return True

    def resume(self, timestamp: datetime) -> bool:
        if self.paused_at is None:
            return False
        if to_utc(timestamp) > to_utc(self.paused_at):
            self.pause_intervals.append(Interval(self.paused_at, timestamp))
        self.paused_at = None
        self.pause_reason = None
        return True

    def pause_windows(self, now: datetime) -> List[Interval]:
        """Ticket-level pauses, including a still-open one up to ``now``."""
        windows = list(self.pause_intervals)
        if self.paused_at is not None and to_utc(now) > to_utc(self.paused_at):
            windows.append(Interval(self.paused_at, now))
        return windows
