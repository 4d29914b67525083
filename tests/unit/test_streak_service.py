"""Streak-day derivation and streak walking."""

from datetime import date, datetime, timedelta, timezone

import pytest

from famquest.errors import ValidationError
from famquest.gamification.entities import CompletionRecord
from famquest.gamification.streak_service import (
    calculate_longest_streak,
    calculate_streak,
    get_streak_day,
)

D = datetime(2026, 3, 10, tzinfo=timezone.utc)


def completions(*times: datetime) -> list[CompletionRecord]:
    return [CompletionRecord("child-a", f"task-{i}", t) for i, t in enumerate(times)]


def noon(days_ago: int) -> datetime:
    return D + timedelta(hours=12) - timedelta(days=days_ago)


class TestStreakDay:
    """Test the grace-period bucketing."""

    def test_inside_grace_counts_for_previous_day(self):
        assert get_streak_day(D.replace(hour=1, minute=30), 4) == date(2026, 3, 9)

    def test_after_grace_counts_for_same_day(self):
        assert get_streak_day(D.replace(hour=5), 4) == date(2026, 3, 10)

    def test_grace_boundary_is_exclusive(self):
        assert get_streak_day(D.replace(hour=4), 4) == date(2026, 3, 10)

    def test_zero_grace_is_calendar_day(self):
        assert get_streak_day(D.replace(hour=0, minute=1), 0) == date(2026, 3, 10)

    def test_converts_to_family_timezone_first(self):
        # 06:00 UTC is 01:00 in New York (EST), inside the grace period
        ts = datetime(2026, 1, 10, 6, 0, tzinfo=timezone.utc)
        assert get_streak_day(ts, 4, "America/New_York") == date(2026, 1, 9)
        assert get_streak_day(ts, 4, "UTC") == date(2026, 1, 10)

    def test_naive_timestamp_taken_as_utc(self):
        naive = datetime(2026, 1, 10, 6, 0)
        assert get_streak_day(naive, 4, "America/New_York") == date(2026, 1, 9)


class TestCalculateStreak:
    """Test walking back from today."""

    def test_three_consecutive_days(self):
        result = calculate_streak(completions(noon(0), noon(1), noon(2)), D.replace(hour=18))
        assert result.current_streak == 3
        assert result.streak_at_risk is False
        assert result.completed_today == 1

    def test_today_pending_does_not_break_streak(self):
        result = calculate_streak(completions(noon(1), noon(2)), D.replace(hour=18))
        assert result.current_streak == 2
        assert result.streak_at_risk is True
        assert result.completed_today == 0

    def test_missed_day_breaks_streak(self):
        result = calculate_streak(completions(noon(0), noon(2), noon(3)), D.replace(hour=18))
        assert result.current_streak == 1

    def test_no_history(self):
        result = calculate_streak([], D.replace(hour=18))
        assert result.current_streak == 0
        assert result.streak_at_risk is False

    def test_unordered_history(self):
        result = calculate_streak(completions(noon(2), noon(0), noon(1)), D.replace(hour=18))
        assert result.current_streak == 3

    def test_late_night_completion_bridges_days(self):
        # 01:30 on D counts for D-1, so D-2 -> D-1 -> D is unbroken
        history = completions(noon(2), D.replace(hour=1, minute=30), noon(0))
        result = calculate_streak(history, D.replace(hour=18), grace_period_hours=4)
        assert result.current_streak == 3

    def test_same_late_completion_without_grace(self):
        history = completions(noon(2), D.replace(hour=1, minute=30))
        result = calculate_streak(history, D.replace(hour=18), grace_period_hours=0)
        assert result.current_streak == 1
        assert result.streak_at_risk is False

    def test_minimum_tasks_per_day(self):
        history = completions(noon(1), noon(1) + timedelta(hours=1), noon(2))
        result = calculate_streak(history, D.replace(hour=18), minimum_tasks_per_day=2)
        assert result.current_streak == 1
        assert result.required_daily == 2

    def test_early_morning_now_uses_previous_streak_day(self):
        # at 02:00 with a 4h grace it is still "yesterday"
        result = calculate_streak(completions(noon(1)), D.replace(hour=2))
        assert result.current_streak == 1
        assert result.streak_at_risk is False
        assert result.streak_day == date(2026, 3, 9)

    def test_window_bounds_walk(self):
        history = completions(*(noon(n) for n in range(10)))
        result = calculate_streak(history, D.replace(hour=18), window_days=5)
        assert result.current_streak == 6

    def test_invalid_grace(self):
        with pytest.raises(ValidationError):
            calculate_streak([], D, grace_period_hours=13)

    def test_invalid_minimum(self):
        with pytest.raises(ValidationError):
            calculate_streak([], D, minimum_tasks_per_day=0)


class TestLongestStreak:
    """Test the longest run anywhere in history."""

    def test_longest_run(self):
        history = completions(noon(9), noon(8), noon(7), noon(5), noon(4))
        assert calculate_longest_streak(history) == 3

    def test_empty(self):
        assert calculate_longest_streak([]) == 0

    def test_duplicates_on_one_day(self):
        history = completions(noon(1), noon(1) + timedelta(hours=2), noon(0))
        assert calculate_longest_streak(history) == 2
