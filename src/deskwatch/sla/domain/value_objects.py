"""
SLA Value Objects
==================

Immutable value objects for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Iterable, Iterator, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from deskwatch.config import (
    Priority, SLAStatus, PausePolicy, DEFAULT_NOTIFY_ROLES
)
from deskwatch.core import ConfigurationException
from deskwatch.sla.domain.business_time import (
    BusinessCalendar, Interval, PauseSchedule, WorkingHours,
    DEFAULT_WORKING_HOURS, minutes_between, to_utc, total_minutes
)
from deskwatch.sla.domain.entities import EscalationRule, SLARule


# Due dates further out than this are treated as a configuration problem.
MAX_DUE_HORIZON_DAYS = 3 * 366


class SLACalculator:
    """
    Elapsed-time calculator.

    Holds only immutable inputs (calendar, pause union, policy), so every
    call is deterministic and safe to repeat.
    """

    def __init__(
        self,
        calendar: BusinessCalendar,
        pauses: Optional[PauseSchedule] = None,
        pause_policy: PausePolicy = PausePolicy.UNIFORM
    ):
        self._calendar = calendar
        self._pauses = pauses or PauseSchedule()
        self._pause_policy = pause_policy

    @property
    def calendar(self) -> BusinessCalendar:
        return self._calendar

    @property
    def pauses(self) -> PauseSchedule:
        return self._pauses

    def with_pause_windows(self, windows: Iterable[Interval]) -> "SLACalculator":
        """Calculator whose pause union also covers ``windows``."""
        return SLACalculator(
            self._calendar,
            self._pauses.with_windows(windows),
            self._pause_policy
        )

    def raw_minutes(self, start: datetime, end: datetime, business_hours_only: bool = False) -> float:
        if to_utc(end) <= to_utc(start):
            return 0.0
        if business_hours_only:
            return self._calendar.business_minutes_between(start, end)
        return minutes_between(start, end)

    def pause_minutes(self, start: datetime, end: datetime, business_hours_only: bool = False) -> float:
        overlap = self._pauses.overlap_intervals(start, end)
        if business_hours_only and self._pause_policy == PausePolicy.BUSINESS_HOURS:
            return sum(
                self._calendar.business_minutes_between(window.start, window.end)
                for window in overlap
            )
        return total_minutes(overlap)

    def calculate_elapsed(
        self,
        start: datetime,
        end: datetime,
        business_hours_only: bool = False
    ) -> float:
        """
        SLA minutes consumed between start and end.

        elapsed = max(raw - pause, 0), where raw is wall-clock or business
        minutes and pause is the union of pause windows inside the span.
        """
        if to_utc(end) <= to_utc(start):
            return 0.0
        raw = self.raw_minutes(start, end, business_hours_only)
        pause = self.pause_minutes(start, end, business_hours_only)
        return max(raw - pause, 0.0)

    def due_at(
        self,
        start: datetime,
        target_minutes: float,
        business_hours_only: bool = False
    ) -> datetime:
        """
        Earliest instant at which calculate_elapsed reaches the target.

        Without pauses this is plain (business) minute addition. Otherwise it
        walks the timeline one day at a time, splitting each day at working
        window and pause boundaries so every piece has a constant slope.
        """
        start = to_utc(start)
        if target_minutes <= 0:
            return start
        if business_hours_only and not self._calendar.has_working_time:
            raise ConfigurationException("Business calendar has no working hours")
        if self._pauses.is_empty:
            if business_hours_only:
                return self._calendar.add_business_minutes(start, target_minutes)
            return start + timedelta(minutes=target_minutes)

        accumulated = 0.0
        chunk_start = start
        for _ in range(MAX_DUE_HORIZON_DAYS):
            chunk = Interval(chunk_start, chunk_start + timedelta(days=1))
            for piece, slope in self._segments(chunk, business_hours_only):
                gained = slope * piece.minutes
                if slope > 0 and accumulated + gained >= target_minutes:
                    return piece.start + timedelta(minutes=target_minutes - accumulated)
                accumulated += gained
            chunk_start = chunk.end

        raise ConfigurationException(
            "SLA target cannot be reached within the calendar horizon",
            {"target_minutes": target_minutes, "horizon_days": MAX_DUE_HORIZON_DAYS}
        )

    def _segments(self, chunk: Interval, business_hours_only: bool) -> Iterator[Tuple[Interval, int]]:
        if business_hours_only:
            counting = list(self._calendar.working_intervals(chunk.start, chunk.end))
        else:
            counting = [chunk]
        paused = self._pauses.overlap_intervals(chunk.start, chunk.end)
        clip_pause = business_hours_only and self._pause_policy == PausePolicy.BUSINESS_HOURS

        cuts = {chunk.start, chunk.end}
        for window in counting + paused:
            cuts.update((window.start, window.end))
        ordered = sorted(cuts)

        for left, right in zip(ordered, ordered[1:]):
            probe = left + (right - left) / 2
            is_counting = any(window.contains(probe) for window in counting)
            is_paused = any(window.contains(probe) for window in paused)
            if clip_pause:
                slope = 1 if is_counting and not is_paused else 0
            else:
                slope = int(is_counting) - int(is_paused)
            if slope:
                yield Interval(left, right), slope


class StatusClassifier:
    """
    Pure status rules for one SLA track.

    Stateless utility class; the watcher applies it independently per track.
    """

    @staticmethod
    def classify(elapsed: float, target: float, warning_pct: float) -> SLAStatus:
        """
        Live status of an unfrozen track.

        Example:
            classify(50, 60, 75) -> WARNING   (45 <= 50 < 60)
            classify(61, 60, 75) -> OVERDUE
        """
        if elapsed >= target:
            return SLAStatus.OVERDUE
        if elapsed >= target * warning_pct / 100:
            return SLAStatus.WARNING
        return SLAStatus.OK

    @staticmethod
    def freeze(elapsed: float, target: float) -> SLAStatus:
        """Terminal status captured at the freezing event."""
        if elapsed <= target:
            return SLAStatus.MET
        return SLAStatus.BREACHED

    @staticmethod
    def percent_elapsed(elapsed: float, target: float) -> float:
        if target <= 0:
            return 100.0
        return elapsed / target * 100


@dataclass(frozen=True)
class SLAPolicy:
    """Runtime knobs of the engine, taken from the YAML config."""

    pause_policy: PausePolicy = PausePolicy.UNIFORM
    history_debounce: timedelta = timedelta(minutes=1)
    escalation_cooldown: timedelta = timedelta(hours=1)
    timezone: str = "UTC"


# ========== YAML configuration ==========

class EscalationRuleConfig(BaseModel):
    """Configuration for a single escalation threshold."""
    threshold_pct: int = Field(ge=1, le=1000, description="Percent of target that triggers")
    notify_roles: List[str] = Field(default_factory=lambda: list(DEFAULT_NOTIFY_ROLES))
    template: Optional[str] = Field(default=None, description="Notification template key")
    is_active: bool = True


class SLARuleConfig(BaseModel):
    """SLA rule seed row. Targets are minutes."""
    name: Optional[str] = None
    priority: Priority
    response_time: int = Field(gt=0, description="Response target in minutes")
    resolution_time: int = Field(gt=0, description="Resolution target in minutes")
    warning_threshold_pct: int = Field(default=75, ge=1, le=100)
    escalation_threshold_pct: int = Field(default=75, ge=1, le=1000)
    business_hours_only: bool = False
    is_active: bool = True
    escalation_rules: List[EscalationRuleConfig] = Field(default_factory=list)

    def to_domain(self) -> SLARule:
        return SLARule(
            priority=self.priority,
            response_time=self.response_time,
            resolution_time=self.resolution_time,
            warning_threshold_pct=self.warning_threshold_pct,
            escalation_threshold_pct=self.escalation_threshold_pct,
            business_hours_only=self.business_hours_only,
            is_active=self.is_active,
            name=self.name or f"{self.priority.value} SLA",
            escalation_rules=tuple(
                EscalationRule(
                    threshold_pct=rule.threshold_pct,
                    notify_roles=tuple(rule.notify_roles),
                    template=rule.template,
                    is_active=rule.is_active,
                )
                for rule in self.escalation_rules
            ),
        )


class BusinessHoursConfig(BaseModel):
    """One weekday row; 0 = Sunday."""
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    is_working_day: bool = True

    def to_domain(self) -> WorkingHours:
        return WorkingHours(
            day_of_week=self.day_of_week,
            start_time=self.start_time,
            end_time=self.end_time,
            is_working_day=self.is_working_day,
        )


class SLAConfig(BaseModel):
    """
    SLA configuration loaded from YAML.

    Policy knobs apply immediately (hot reload); rules and business hours are
    seed data written to the configuration tables when those are empty.
    """
    timezone: str = Field(default="UTC", description="IANA zone of the business calendar")
    pause_policy: PausePolicy = Field(default=PausePolicy.UNIFORM)
    history_debounce_seconds: int = Field(default=60, ge=0)
    escalation_cooldown_seconds: int = Field(default=3600, ge=0)
    rules: List[SLARuleConfig] = Field(default_factory=list)
    business_hours: List[BusinessHoursConfig] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown time zone: {v}")
        return v

    @field_validator("rules")
    @classmethod
    def validate_rules(cls, v: List[SLARuleConfig]) -> List[SLARuleConfig]:
        """At most one active rule per priority."""
        seen = set()
        for rule in v:
            if not rule.is_active:
                continue
            if rule.priority in seen:
                raise ValueError(f"more than one active rule for priority '{rule.priority.value}'")
            seen.add(rule.priority)
        return v

    @field_validator("business_hours")
    @classmethod
    def validate_business_hours(cls, v: List[BusinessHoursConfig]) -> List[BusinessHoursConfig]:
        """Reject duplicate weekdays and fill missing ones with defaults."""
        days = [row.day_of_week for row in v]
        duplicates = sorted({day for day in days if days.count(day) > 1})
        if duplicates:
            raise ValueError(f"duplicate business hours for weekdays {duplicates}")

        for default in DEFAULT_WORKING_HOURS:
            if default.day_of_week not in days:
                v.append(BusinessHoursConfig(
                    day_of_week=default.day_of_week,
                    start_time=default.start_time,
                    end_time=default.end_time,
                    is_working_day=default.is_working_day,
                ))
        return sorted(v, key=lambda row: row.day_of_week)

    def to_policy(self) -> SLAPolicy:
        return SLAPolicy(
            pause_policy=self.pause_policy,
            history_debounce=timedelta(seconds=self.history_debounce_seconds),
            escalation_cooldown=timedelta(seconds=self.escalation_cooldown_seconds),
            timezone=self.timezone,
        )

    def build_rules(self) -> List[SLARule]:
        return [rule.to_domain() for rule in self.rules]

    def build_working_hours(self) -> List[WorkingHours]:
        if not self.business_hours:
            return list(DEFAULT_WORKING_HOURS)
        return [row.to_domain() for row in self.business_hours]

    def build_calendar(self) -> BusinessCalendar:
        return BusinessCalendar(self.build_working_hours(), self.timezone)
