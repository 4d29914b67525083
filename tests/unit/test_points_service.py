"""Point awards: streak multiplier, milestones, early-completion bonus."""

from datetime import datetime, timedelta, timezone

import pytest

from famquest.errors import ValidationError
from famquest.gamification.points_service import (
    calculate_early_completion_bonus,
    calculate_streak_bonus,
    calculate_task_points,
    streak_multiplier,
)

T = datetime(2026, 3, 11, 12, 0, tzinfo=timezone.utc)


class TestStreakBonus:
    """Test calculate_streak_bonus."""

    def test_no_streak(self):
        bonus = calculate_streak_bonus(100, 0)
        assert bonus.multiplier == 1.0
        assert bonus.total_points == 100
        assert bonus.breakdown == {"base": 100, "streak": 0, "milestone": 0}

    def test_milestone_day(self):
        bonus = calculate_streak_bonus(100, 7)
        assert bonus.bonus_points == 35
        assert bonus.breakdown["milestone"] == 35
        assert bonus.total_points == 170

    def test_day_after_milestone(self):
        bonus = calculate_streak_bonus(100, 8)
        assert bonus.breakdown["milestone"] == 0
        assert bonus.total_points == 140

    def test_multiplier_capped(self):
        bonus = calculate_streak_bonus(100, 200)
        assert bonus.multiplier == 2.5
        assert bonus.bonus_points == 150
        assert bonus.total_points == 250

    def test_bonuses_never_reduce_points(self):
        for days in range(0, 201):
            bonus = calculate_streak_bonus(100, days)
            assert bonus.total_points >= 100
            assert bonus.multiplier <= 2.5
            assert sum(bonus.breakdown.values()) == bonus.total_points

    def test_rounds_half_up(self):
        # 10 * 0.15 = 1.5
        bonus = calculate_streak_bonus(10, 3)
        assert bonus.bonus_points == 2
        assert bonus.milestone_bonus == 15

    def test_multiplier_is_exact(self):
        assert str(streak_multiplier(3)) == "1.15"

    def test_negative_inputs_rejected(self):
        with pytest.raises(ValidationError):
            calculate_streak_bonus(-1, 3)
        with pytest.raises(ValidationError):
            calculate_streak_bonus(10, -1)


class TestEarlyCompletionBonus:
    """Test calculate_early_completion_bonus tiers."""

    @pytest.mark.parametrize(
        ("hours_early", "expected"),
        [(48, 25), (72, 25), (30, 15), (24, 15), (12, 10), (6, 5), (5, 0)],
    )
    def test_tiers(self, hours_early, expected):
        assert calculate_early_completion_bonus(100, T + timedelta(hours=hours_early), T) == expected

    def test_completed_at_due_date(self):
        assert calculate_early_completion_bonus(100, T, T) == 0

    def test_completed_late(self):
        assert calculate_early_completion_bonus(100, T - timedelta(hours=1), T) == 0

    def test_no_due_date(self):
        assert calculate_early_completion_bonus(100, None, T) == 0

    def test_rounds_half_up(self):
        assert calculate_early_completion_bonus(10, T + timedelta(hours=6), T) == 1


class TestTaskPoints:
    """Test the full itemized award."""

    def test_breakdown_components(self):
        breakdown = calculate_task_points(100, 7, T + timedelta(hours=48), T)
        assert breakdown == {"base": 100, "streak": 35, "milestone": 35, "early": 25}

    def test_milestone_suppressed_for_repeat_completions(self):
        breakdown = calculate_task_points(100, 7, None, T, milestone_eligible=False)
        assert breakdown == {"base": 100, "streak": 35, "milestone": 0, "early": 0}
