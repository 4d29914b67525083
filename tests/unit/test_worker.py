"""Worker job tests against the in-memory store."""

from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from famquest.gamification.entities import FamilySettings
from famquest.leaderboard.leaderboard_service import PERIODS
from famquest.leaderboard.worker import WorkerSettings, _every, reconcile_counters, refresh_leaderboards


class TestRefreshLeaderboards:
    """Test the cache refresh job."""

    @pytest.mark.asyncio
    async def test_refreshes_every_period(self, store):
        redis = AsyncMock()
        refreshed = await refresh_leaderboards({"store": store, "redis": redis})

        assert refreshed == len(PERIODS)
        assert redis.set.await_count == len(PERIODS)
        redis.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_skips_disabled_families(self, store):
        store.add_family(FamilySettings(family_id="fam-1", enable_leaderboard=False))
        redis = AsyncMock()
        assert await refresh_leaderboards({"store": store, "redis": redis}) == 0
        redis.set.assert_not_awaited()


class TestReconcileCounters:
    """Test the reconciliation job."""

    @pytest.mark.asyncio
    async def test_clean_store(self, store):
        assert await reconcile_counters({"store": store}) == 0

    @pytest.mark.asyncio
    async def test_counts_drifted_children(self, store):
        counters = await store.get_child_counter_state("child-b")
        await store.save_counter_state(replace(counters, total_xp=999))

        assert await reconcile_counters({"store": store}) == 1
        assert (await store.get_child_counter_state("child-b")).total_xp == 0


class TestSchedule:
    """Test cron minute sets."""

    def test_every_five_minutes(self):
        assert _every(5) == {0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}

    def test_hourly(self):
        assert _every(60) == {0}

    def test_zero_clamped(self):
        assert _every(0) == set(range(60))

    def test_jobs_registered(self):
        assert refresh_leaderboards in WorkerSettings.functions
        assert reconcile_counters in WorkerSettings.functions
        assert len(WorkerSettings.cron_jobs) == 2
