"""Tests for the business calendar and interval helpers."""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from deskwatch.core import ConfigurationException, ValidationException
from deskwatch.sla.domain import BusinessCalendar, Interval, WorkingHours, merge_intervals
from deskwatch.sla.domain.business_time import day_of_week, to_utc

UTC = timezone.utc

FRIDAY_16_30 = datetime(2025, 6, 27, 16, 30, tzinfo=UTC)
MONDAY_09_30 = datetime(2025, 6, 30, 9, 30, tzinfo=UTC)
MONDAY_10_00 = datetime(2025, 6, 30, 10, 0, tzinfo=UTC)


class TestIntervals:

    def test_naive_datetimes_are_taken_as_utc(self):
        assert to_utc(datetime(2025, 1, 1, 12, 0)) == datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def test_offsets_are_normalised(self):
        berlin = datetime(2025, 1, 1, 13, 0, tzinfo=ZoneInfo("Europe/Berlin"))
        assert Interval(berlin, berlin + timedelta(hours=1)).start == datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def test_merge_overlapping_and_adjacent(self):
        base = datetime(2025, 1, 1, tzinfo=UTC)
        merged = merge_intervals([
            Interval(base + timedelta(hours=2), base + timedelta(hours=3)),
            Interval(base, base + timedelta(hours=1)),
            Interval(base + timedelta(minutes=30), base + timedelta(hours=2)),
        ])
        assert merged == [Interval(base, base + timedelta(hours=3))]

    def test_merge_drops_empty_intervals(self):
        base = datetime(2025, 1, 1, tzinfo=UTC)
        assert merge_intervals([Interval(base, base)]) == []

    def test_intersect(self):
        base = datetime(2025, 1, 1, tzinfo=UTC)
        first = Interval(base, base + timedelta(hours=2))
        second = Interval(base + timedelta(hours=1), base + timedelta(hours=3))
        assert first.intersect(second) == Interval(base + timedelta(hours=1), base + timedelta(hours=2))
        assert first.intersect(Interval(base + timedelta(hours=5), base + timedelta(hours=6))) is None


class TestWorkingHours:

    def test_day_of_week_starts_on_sunday(self):
        assert day_of_week(date(2025, 6, 29)) == 0
        assert day_of_week(date(2025, 6, 30)) == 1
        assert day_of_week(date(2025, 7, 5)) == 6

    def test_rejects_day_outside_week(self):
        with pytest.raises(ValidationException):
            WorkingHours(7, time(9, 0), time(17, 0))

    def test_end_not_after_start_has_no_window(self):
        assert not WorkingHours(1, time(17, 0), time(9, 0)).has_window
        assert not WorkingHours(1, time(9, 0), time(9, 0)).has_window
        assert not WorkingHours(1, time(9, 0), time(17, 0), is_working_day=False).has_window


class TestBusinessCalendar:

    def test_missing_weekday_is_a_configuration_error(self, nine_to_five):
        with pytest.raises(ConfigurationException) as exc_info:
            BusinessCalendar(nine_to_five[:6])
        assert exc_info.value.details["missing_days"] == [6]

    def test_duplicate_weekday_is_a_configuration_error(self, nine_to_five):
        with pytest.raises(ConfigurationException):
            BusinessCalendar(nine_to_five + [WorkingHours(1, time(8, 0), time(12, 0))])

    def test_default_calendar(self):
        calendar = BusinessCalendar.default()
        assert calendar.is_working(datetime(2025, 6, 30, 17, 30, tzinfo=UTC))
        assert not calendar.is_working(datetime(2025, 6, 29, 12, 0, tzinfo=UTC))

    @pytest.mark.parametrize("offset_minutes", [0, -1, -600])
    def test_end_not_after_start_gives_zero(self, nine_to_five, offset_minutes):
        calendar = BusinessCalendar(nine_to_five)
        end = MONDAY_10_00 + timedelta(minutes=offset_minutes)
        assert calendar.business_minutes_between(MONDAY_10_00, end) == 0

    def test_friday_afternoon_to_monday_morning(self, nine_to_five):
        """30 Friday minutes, weekend excluded, then Monday from 09:00."""
        calendar = BusinessCalendar(nine_to_five)
        assert calendar.business_minutes_between(FRIDAY_16_30, MONDAY_09_30) == pytest.approx(60)
        assert calendar.business_minutes_between(FRIDAY_16_30, MONDAY_10_00) == pytest.approx(90)

    def test_within_one_day(self, nine_to_five):
        calendar = BusinessCalendar(nine_to_five)
        start = datetime(2025, 7, 1, 7, 0, tzinfo=UTC)
        assert calendar.business_minutes_between(start, start + timedelta(hours=6)) == pytest.approx(240)

    def test_weekend_only_span_is_zero(self, nine_to_five):
        calendar = BusinessCalendar(nine_to_five)
        saturday = datetime(2025, 6, 28, 8, 0, tzinfo=UTC)
        assert calendar.business_minutes_between(saturday, saturday + timedelta(hours=30)) == 0

    def test_inverted_day_counts_nothing(self, nine_to_five):
        hours = list(nine_to_five)
        hours[1] = WorkingHours(1, time(17, 0), time(9, 0), True)
        calendar = BusinessCalendar(hours)
        monday = datetime(2025, 6, 30, 0, 0, tzinfo=UTC)
        assert calendar.business_minutes_between(monday, monday + timedelta(days=1)) == 0

    def test_local_windows_follow_dst(self):
        """Berlin switches to CEST on 2025-03-30: 00:00-06:00 local is five real hours."""
        hours = [WorkingHours(day, time(0, 0), time(0, 0), False) for day in range(7)]
        hours[0] = WorkingHours(0, time(0, 0), time(6, 0), True)
        calendar = BusinessCalendar(hours, "Europe/Berlin")

        start = datetime(2025, 3, 29, 12, 0, tzinfo=UTC)
        end = datetime(2025, 3, 31, 0, 0, tzinfo=UTC)
        assert calendar.business_minutes_between(start, end) == pytest.approx(300)

    def test_add_business_minutes_skips_weekend(self, nine_to_five):
        calendar = BusinessCalendar(nine_to_five)
        assert calendar.add_business_minutes(FRIDAY_16_30, 60) == MONDAY_09_30

    def test_add_business_minutes_without_working_time(self):
        calendar = BusinessCalendar(WorkingHours(day, time(0, 0), time(0, 0), False) for day in range(7))
        with pytest.raises(ConfigurationException):
            calendar.add_business_minutes(FRIDAY_16_30, 60)
