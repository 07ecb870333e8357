"""
SLA Domain Layer
================

Domain layer for the SLA tracking and escalation engine.

Contains:
- Business time: Interval, BusinessCalendar, PauseSchedule
- Entities: TicketSLAState, SLARule, EscalationRule, PausePeriod,
  SLAHistoryEntry, EscalationEvent
- Domain Services: SLACalculator, StatusClassifier
- Value Objects: SLAPolicy, SLAConfig

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from deskwatch.sla.domain.business_time import (
    Interval,
    WorkingHours,
    BusinessCalendar,
    PauseSchedule,
    DEFAULT_WORKING_HOURS,
    merge_intervals,
    to_utc,
)
from deskwatch.sla.domain.entities import (
    TicketSLAState,
    SLARule,
    EscalationRule,
    PausePeriod,
    SLAHistoryEntry,
    EscalationEvent,
)
from deskwatch.sla.domain.value_objects import (
    SLACalculator,
    StatusClassifier,
    SLAPolicy,
    SLAConfig,
    SLARuleConfig,
    EscalationRuleConfig,
    BusinessHoursConfig,
)

__all__ = [
    # Business time
    "Interval",
    "WorkingHours",
    "BusinessCalendar",
    "PauseSchedule",
    "DEFAULT_WORKING_HOURS",
    "merge_intervals",
    "to_utc",
    # Entities
    "TicketSLAState",
    "SLARule",
    "EscalationRule",
    "PausePeriod",
    "SLAHistoryEntry",
    "EscalationEvent",
    # Domain Services & Value Objects
    "SLACalculator",
    "StatusClassifier",
    "SLAPolicy",
    "SLAConfig",
    "SLARuleConfig",
    "EscalationRuleConfig",
    "BusinessHoursConfig",
]
