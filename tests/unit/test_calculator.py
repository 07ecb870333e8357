"""Tests for elapsed-time and due-date calculation."""

from datetime import datetime, time, timedelta, timezone

import pytest

from deskwatch.config import PausePolicy
from deskwatch.core import ConfigurationException
from deskwatch.sla.domain import (
    BusinessCalendar, Interval, PauseSchedule, SLACalculator, WorkingHours
)

UTC = timezone.utc
T0 = datetime(2025, 6, 30, 12, 0, tzinfo=UTC)
FRIDAY_16_30 = datetime(2025, 6, 27, 16, 30, tzinfo=UTC)


@pytest.fixture
def calendar(nine_to_five):
    return BusinessCalendar(nine_to_five)


class TestCalculateElapsed:

    def test_wall_clock_minutes(self, calendar):
        calculator = SLACalculator(calendar)
        assert calculator.calculate_elapsed(T0, T0 + timedelta(minutes=50)) == pytest.approx(50)

    def test_pause_covering_first_hour(self, calendar):
        """A pause covering the first hour after creation leaves nothing elapsed."""
        calculator = SLACalculator(calendar, PauseSchedule([Interval(T0, T0 + timedelta(hours=1))]))
        assert calculator.calculate_elapsed(T0, T0 + timedelta(hours=1)) == 0
        assert calculator.calculate_elapsed(T0, T0 + timedelta(hours=2)) == pytest.approx(60)

    def test_end_before_start_is_zero(self, calendar):
        calculator = SLACalculator(calendar)
        assert calculator.calculate_elapsed(T0, T0 - timedelta(hours=1)) == 0

    def test_never_negative(self, calendar):
        """Pause outside working hours cannot push business elapsed below zero."""
        evening = datetime(2025, 6, 30, 18, 0, tzinfo=UTC)
        calculator = SLACalculator(
            calendar, PauseSchedule([Interval(evening, evening + timedelta(hours=12))])
        )
        start = datetime(2025, 6, 30, 16, 50, tzinfo=UTC)
        assert calculator.calculate_elapsed(start, evening + timedelta(hours=13), True) == 0

    def test_monotonic_in_end(self, calendar):
        calculator = SLACalculator(
            calendar, PauseSchedule([Interval(T0 + timedelta(hours=1), T0 + timedelta(hours=2))])
        )
        values = [
            calculator.calculate_elapsed(T0, T0 + timedelta(minutes=step * 15), True)
            for step in range(40)
        ]
        assert values == sorted(values)

    def test_business_hours_friday_to_monday(self, calendar):
        calculator = SLACalculator(calendar)
        monday_10 = datetime(2025, 6, 30, 10, 0, tzinfo=UTC)
        assert calculator.calculate_elapsed(FRIDAY_16_30, monday_10, True) == pytest.approx(90)

    def test_uniform_policy_subtracts_whole_pause(self, calendar):
        """Pause 16:00-18:00 on a 09-17 day: uniform subtracts 120 minutes."""
        pause = Interval(datetime(2025, 6, 30, 16, 0, tzinfo=UTC), datetime(2025, 6, 30, 18, 0, tzinfo=UTC))
        start = datetime(2025, 6, 30, 9, 0, tzinfo=UTC)
        end = datetime(2025, 6, 30, 18, 0, tzinfo=UTC)

        uniform = SLACalculator(calendar, PauseSchedule([pause]), PausePolicy.UNIFORM)
        clipped = SLACalculator(calendar, PauseSchedule([pause]), PausePolicy.BUSINESS_HOURS)

        assert uniform.calculate_elapsed(start, end, True) == pytest.approx(480 - 120)
        assert clipped.calculate_elapsed(start, end, True) == pytest.approx(480 - 60)

    def test_policies_agree_on_wall_clock_rules(self, calendar):
        pause = Interval(T0, T0 + timedelta(minutes=30))
        for policy in PausePolicy:
            calculator = SLACalculator(calendar, PauseSchedule([pause]), policy)
            assert calculator.calculate_elapsed(T0, T0 + timedelta(hours=1)) == pytest.approx(30)

    def test_with_pause_windows_extends_union(self, calendar):
        calculator = SLACalculator(calendar).with_pause_windows(
            [Interval(T0, T0 + timedelta(minutes=20))]
        )
        assert calculator.pause_minutes(T0, T0 + timedelta(hours=1)) == pytest.approx(20)


class TestDueAt:

    def test_wall_clock_due(self, calendar):
        assert SLACalculator(calendar).due_at(T0, 60) == T0 + timedelta(minutes=60)

    def test_business_hours_due_skips_weekend(self, calendar):
        due = SLACalculator(calendar).due_at(FRIDAY_16_30, 60, True)
        assert due == datetime(2025, 6, 30, 9, 30, tzinfo=UTC)

    def test_known_pause_shifts_due(self, calendar):
        calculator = SLACalculator(calendar, PauseSchedule([Interval(T0, T0 + timedelta(minutes=30))]))
        assert calculator.due_at(T0, 60) == T0 + timedelta(minutes=90)

    def test_due_matches_elapsed(self, calendar):
        calculator = SLACalculator(
            calendar,
            PauseSchedule([Interval(T0 + timedelta(hours=3), T0 + timedelta(hours=4))]),
            PausePolicy.UNIFORM
        )
        due = calculator.due_at(T0, 480, True)
        assert calculator.calculate_elapsed(T0, due, True) == pytest.approx(480)

    def test_pause_free_due_uses_calendar_addition(self, calendar):
        """Without pauses the due date is the calendar's business-minute addition."""
        due = SLACalculator(calendar).due_at(FRIDAY_16_30, 600, True)
        assert due == calendar.add_business_minutes(FRIDAY_16_30, 600)
        assert due == datetime(2025, 7, 1, 10, 30, tzinfo=UTC)

        earlier = PauseSchedule([Interval(FRIDAY_16_30 - timedelta(days=2), FRIDAY_16_30 - timedelta(days=1))])
        assert SLACalculator(calendar, earlier).due_at(FRIDAY_16_30, 600, True) == due

    def test_zero_target_is_start(self, calendar):
        assert SLACalculator(calendar).due_at(T0, 0) == T0

    def test_calendar_without_working_hours(self):
        idle = BusinessCalendar(WorkingHours(day, time(0, 0), time(0, 0), False) for day in range(7))
        with pytest.raises(ConfigurationException):
            SLACalculator(idle).due_at(T0, 60, True)
