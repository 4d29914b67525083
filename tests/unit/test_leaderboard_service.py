"""Leaderboard periods, scoring and ranking."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from famquest.errors import LeaderboardDisabledError, ValidationError
from famquest.gamification.entities import ChildProfile, FamilySettings, TransactionType
from famquest.gamification.points_service import record_transaction
from famquest.leaderboard.leaderboard_service import (
    EPOCH,
    build_cache_key,
    compute_score,
    get_family_leaderboard,
    get_period_range,
    rank_entries,
)
from tests.helpers import add_completions, give_points

WEDNESDAY = datetime(2026, 3, 11, 12, 0, tzinfo=timezone.utc)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def profile(child_id: str, created_day: int) -> ChildProfile:
    return ChildProfile(child_id, "fam-1", child_id.title(), utc(2026, 1, created_day))


def stats(score: float) -> dict:
    return {"score": score, "points": 0, "tasks": 0, "streak": 0, "achievements": 0}


class TestPeriodRange:
    """Test period boundaries."""

    def test_daily(self):
        assert get_period_range("daily", WEDNESDAY) == (utc(2026, 3, 11), utc(2026, 3, 12))

    def test_weekly_sunday_start(self):
        assert get_period_range("weekly", WEDNESDAY) == (utc(2026, 3, 8), utc(2026, 3, 15))

    def test_weekly_monday_start(self):
        start, end = get_period_range("weekly", WEDNESDAY, week_start_day="monday")
        assert (start, end) == (utc(2026, 3, 9), utc(2026, 3, 16))

    def test_week_start_day_itself(self):
        sunday = utc(2026, 3, 8, 0, 0)
        assert get_period_range("weekly", sunday)[0] == sunday

    def test_monthly(self):
        assert get_period_range("monthly", WEDNESDAY) == (utc(2026, 3, 1), utc(2026, 4, 1))

    def test_monthly_december(self):
        assert get_period_range("monthly", utc(2026, 12, 20)) == (utc(2026, 12, 1), utc(2027, 1, 1))

    def test_all_time(self):
        start, end = get_period_range("all_time", WEDNESDAY)
        assert start == EPOCH
        assert end == utc(2026, 3, 12)

    def test_family_timezone(self):
        # 03:00 UTC on Jan 10 is still Jan 9 in New York
        start, end = get_period_range("daily", utc(2026, 1, 10, 3, 0), tz="America/New_York")
        assert start == utc(2026, 1, 9, 5, 0)
        assert end == utc(2026, 1, 10, 5, 0)

    def test_unknown_period(self):
        with pytest.raises(ValidationError):
            get_period_range("yearly", WEDNESDAY)


class TestScoring:
    """Test composite score and ranking."""

    def test_default_weights(self):
        assert compute_score(10, 2, 3, 1) == 36.0

    def test_custom_weights(self):
        weights = {"points": 0.5, "tasks": 1.0, "streak": 0.0, "achievements": 0.0}
        assert compute_score(10, 2, 3, 1, weights) == 7.0

    def test_ties_broken_by_creation_order(self):
        rows = [
            (profile("amy", 2), stats(100.0)),
            (profile("ben", 1), stats(100.0)),
            (profile("cal", 3), stats(50.0)),
        ]
        ranked = rank_entries(rows)
        assert [(e.child_id, e.rank) for e in ranked] == [("ben", 1), ("amy", 2), ("cal", 3)]

    def test_scores_descending(self):
        rows = [(profile(f"kid{i}", i + 1), stats(float(s))) for i, s in enumerate([5, 50, 20, 50, 0])]
        ranked = rank_entries(rows)
        scores = [e.score for e in ranked]
        assert scores == sorted(scores, reverse=True)
        assert [e.rank for e in ranked] == [1, 2, 3, 4, 5]


class TestFamilyLeaderboard:
    """Test the store-backed leaderboard."""

    @pytest.mark.asyncio
    async def test_ranking(self, store, now):
        await give_points(store, "child-b", 30, now - timedelta(hours=1))
        await add_completions(store, "child-b", now - timedelta(hours=2), now - timedelta(hours=1))

        entries = await get_family_leaderboard(store, "fam-1", "weekly", now)

        assert [e.child_id for e in entries] == ["child-b", "child-a", "child-c"]
        top = entries[0]
        assert top.period_points == 30
        assert top.period_tasks == 2
        assert top.current_streak == 1
        assert top.score == 30 + 2 * 5.0 + 1 * 2.0
        assert [e.rank for e in entries] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_points_outside_period_excluded(self, store, now):
        await give_points(store, "child-a", 40, now - timedelta(days=10))
        weekly = await get_family_leaderboard(store, "fam-1", "weekly", now)
        all_time = await get_family_leaderboard(store, "fam-1", "all_time", now)

        assert next(e for e in weekly if e.child_id == "child-a").period_points == 0
        assert next(e for e in all_time if e.child_id == "child-a").period_points == 40

    @pytest.mark.asyncio
    async def test_redemptions_do_not_lower_score(self, store, now):
        await give_points(store, "child-a", 40, now - timedelta(hours=1))
        await record_transaction(store, "child-a", TransactionType.REDEEMED, 30, now=now)
        entries = await get_family_leaderboard(store, "fam-1", "daily", now)
        assert next(e for e in entries if e.child_id == "child-a").period_points == 40

    @pytest.mark.asyncio
    async def test_inactive_children_excluded(self, store, now):
        store.add_child(ChildProfile("child-z", "fam-1", "Gone", utc(2025, 1, 1), is_active=False))
        entries = await get_family_leaderboard(store, "fam-1", "weekly", now)
        assert "child-z" not in {e.child_id for e in entries}

    @pytest.mark.asyncio
    async def test_disabled(self, store, now):
        store.add_family(FamilySettings(family_id="fam-1", enable_leaderboard=False))
        with pytest.raises(LeaderboardDisabledError):
            await get_family_leaderboard(store, "fam-1", "weekly", now)


class TestLeaderboardCache:
    """Test the Redis cache around the leaderboard."""

    @pytest.mark.asyncio
    async def test_miss_then_write(self, store, now):
        redis = AsyncMock()
        redis.get.return_value = None

        entries = await get_family_leaderboard(store, "fam-1", "weekly", now, redis=redis)

        start, _ = get_period_range("weekly", now)
        key = build_cache_key("fam-1", "weekly", start)
        redis.get.assert_awaited_once_with(key)
        args, kwargs = redis.set.await_args
        assert args[0] == key
        assert kwargs["ex"] == 60
        assert [row["child_id"] for row in json.loads(args[1])] == [e.child_id for e in entries]

    @pytest.mark.asyncio
    async def test_hit_skips_computation(self, store, now):
        cached = [{
            "child_id": "child-c", "display_name": "Child C", "score": 99.0, "rank": 1,
            "period_points": 99, "period_tasks": 0, "current_streak": 0, "achievement_count": 0,
        }]
        redis = AsyncMock()
        redis.get.return_value = json.dumps(cached)

        entries = await get_family_leaderboard(store, "fam-1", "weekly", now, redis=redis)

        assert [e.child_id for e in entries] == ["child-c"]
        redis.set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_failure_falls_back(self, store, now):
        redis = AsyncMock()
        redis.get.side_effect = ConnectionError("redis down")
        redis.set.side_effect = ConnectionError("redis down")

        entries = await get_family_leaderboard(store, "fam-1", "weekly", now, redis=redis)
        assert len(entries) == 3
