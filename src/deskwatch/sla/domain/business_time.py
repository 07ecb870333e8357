"""
Business Time
=============

Interval arithmetic behind the SLA clocks: working hours per weekday,
business-minute counting and the union of pause windows.

All instants are normalised to UTC before any arithmetic. Day windows are
built in the calendar's own time zone and converted back to UTC, so offset
changes (DST) are handled by zoneinfo rather than by hand.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from itertools import chain
from typing import Iterable, Iterator, List, Optional, Union
from zoneinfo import ZoneInfo

from deskwatch.core import ConfigurationException, ValidationException


def to_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def minutes_between(start: datetime, end: datetime) -> float:
    """Signed wall-clock minutes from start to end."""
    return (to_utc(end) - to_utc(start)).total_seconds() / 60


def day_of_week(day: date) -> int:
    """Weekday number with 0 = Sunday ... 6 = Saturday."""
    return day.isoweekday() % 7


@dataclass(frozen=True)
class Interval:
    """Half-open time span ``[start, end)`` stored in UTC."""

    start: datetime
    end: datetime

    def __post_init__(self):
        object.__setattr__(self, "start", to_utc(self.start))
        object.__setattr__(self, "end", to_utc(self.end))

    @property
    def minutes(self) -> float:
        return max((self.end - self.start).total_seconds() / 60, 0.0)

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start

    def contains(self, instant: datetime) -> bool:
        instant = to_utc(instant)
        return self.start <= instant < self.end

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end

    def intersect(self, other: "Interval") -> Optional["Interval"]:
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        if end <= start:
            return None
        return Interval(start, end)


def merge_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    """Union of intervals as a sorted list of disjoint spans."""
    ordered = sorted(
        (interval for interval in intervals if not interval.is_empty),
        key=lambda interval: interval.start
    )
    merged: List[Interval] = []
    for interval in ordered:
        if merged and interval.start <= merged[-1].end:
            if interval.end > merged[-1].end:
                merged[-1] = Interval(merged[-1].start, interval.end)
        else:
            merged.append(interval)
    return merged


def clip_intervals(
    intervals: Iterable[Interval],
    start: datetime,
    end: datetime
) -> List[Interval]:
    """Intersect every interval with ``[start, end)``, dropping empty pieces."""
    window = Interval(start, end)
    if window.is_empty:
        return []
    pieces = (interval.intersect(window) for interval in intervals)
    return [piece for piece in pieces if piece is not None]


def total_minutes(intervals: Iterable[Interval]) -> float:
    return sum(interval.minutes for interval in intervals)


# ========== Business Calendar ==========

@dataclass(frozen=True)
class WorkingHours:
    """Working window for one weekday (0 = Sunday)."""

    day_of_week: int
    start_time: time
    end_time: time
    is_working_day: bool = True

    def __post_init__(self):
        if not 0 <= self.day_of_week <= 6:
            raise ValidationException(
                f"day_of_week must be between 0 and 6, got {self.day_of_week}"
            )

    @property
    def has_window(self) -> bool:
        """A working day whose end is not after its start counts no minutes."""
        return self.is_working_day and self.end_time > self.start_time


DEFAULT_WORKING_HOURS = tuple(
    WorkingHours(day, time(9, 0), time(18, 0), True)
    if 1 <= day <= 5
    else WorkingHours(day, time(0, 0), time(0, 0), False)
    for day in range(7)
)


class BusinessCalendar:
    """
    Seven-row working-hours calendar.

    Example:
        calendar = BusinessCalendar.default()
        calendar.business_minutes_between(friday_16_30, monday_09_30)
    """

    def __init__(
        self,
        hours: Iterable[WorkingHours],
        tz: Union[tzinfo, str, None] = None
    ):
        by_day = {}
        for entry in hours:
            if entry.day_of_week in by_day:
                raise ConfigurationException(
                    f"Duplicate business hours for weekday {entry.day_of_week}",
                    {"day_of_week": entry.day_of_week}
                )
            by_day[entry.day_of_week] = entry

        missing = sorted(set(range(7)) - set(by_day))
        if missing:
            raise ConfigurationException(
                "Business calendar needs exactly one entry per weekday",
                {"missing_days": missing}
            )

        if isinstance(tz, str):
            tz = ZoneInfo(tz)

        self._hours = by_day
        self._tz = tz or timezone.utc

    @classmethod
    def default(cls, tz: Union[tzinfo, str, None] = None) -> "BusinessCalendar":
        """Mon-Fri 09:00-18:00, weekend off."""
        return cls(DEFAULT_WORKING_HOURS, tz)

    @property
    def tz(self) -> tzinfo:
        return self._tz

    @property
    def hours(self) -> List[WorkingHours]:
        return [self._hours[day] for day in range(7)]

    @property
    def has_working_time(self) -> bool:
        return any(entry.has_window for entry in self._hours.values())

    def hours_for(self, day: date) -> WorkingHours:
        return self._hours[day_of_week(day)]

    def local_date(self, instant: datetime) -> date:
        return to_utc(instant).astimezone(self._tz).date()

    def window_for(self, day: date) -> Optional[Interval]:
        """Working window of a local calendar date, or None on days off."""
        entry = self.hours_for(day)
        if not entry.has_window:
            return None
        return Interval(
            datetime.combine(day, entry.start_time, tzinfo=self._tz),
            datetime.combine(day, entry.end_time, tzinfo=self._tz)
        )

    def is_working(self, instant: datetime) -> bool:
        window = self.window_for(self.local_date(instant))
        return window is not None and window.contains(instant)

    def working_intervals(self, start: datetime, end: datetime) -> Iterator[Interval]:
        """Working windows clipped to ``[start, end)``, in order."""
        span = Interval(start, end)
        if span.is_empty:
            return

        day = self.local_date(span.start)
        last_day = self.local_date(span.end)
        while day <= last_day:
            window = self.window_for(day)
            if window is not None:
                piece = window.intersect(span)
                if piece is not None:
                    yield piece
            day += timedelta(days=1)

    def business_minutes_between(self, start: datetime, end: datetime) -> float:
        if to_utc(end) <= to_utc(start):
            return 0.0
        return total_minutes(self.working_intervals(start, end))

    def add_business_minutes(self, start: datetime, minutes: float) -> datetime:
        """Instant reached after ``minutes`` of working time from ``start``."""
        cursor = to_utc(start)
        if minutes <= 0:
            return cursor
        if not self.has_working_time:
            raise ConfigurationException("Business calendar has no working hours")

        remaining = minutes
        day = self.local_date(cursor)
        while True:
            window = self.window_for(day)
            if window is not None and window.end > cursor:
                begin = max(window.start, cursor)
                available = (window.end - begin).total_seconds() / 60
                if available >= remaining:
                    return begin + timedelta(minutes=remaining)
                remaining -= available
            day += timedelta(days=1)


# ========== Pause windows ==========

class PauseSchedule:
    """
    Union of pause windows.

    Overlapping periods are merged once at construction so overlap queries
    never count the same minute twice.
    """

    def __init__(self, windows: Iterable[Interval] = ()):
        self._union = merge_intervals(windows)

    @classmethod
    def from_periods(cls, periods: Iterable, extra: Iterable[Interval] = ()) -> "PauseSchedule":
        """Build from pause-period entities (anything exposing ``interval``)."""
        return cls(chain((period.interval for period in periods), extra))

    def with_windows(self, windows: Iterable[Interval]) -> "PauseSchedule":
        return PauseSchedule(chain(self._union, windows))

    @property
    def is_empty(self) -> bool:
        return not self._union

    def union(self) -> List[Interval]:
        return list(self._union)

    def is_paused(self, instant: datetime) -> bool:
        return any(window.contains(instant) for window in self._union)

    def overlap_intervals(self, start: datetime, end: datetime) -> List[Interval]:
        return clip_intervals(self._union, start, end)

    def overlap_duration(self, start: datetime, end: datetime) -> float:
        """Minutes of ``[start, end)`` covered by at least one pause."""
        return total_minutes(self.overlap_intervals(start, end))
