"""Task-approval orchestration over the in-memory store."""

import asyncio
import json
from dataclasses import replace
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from famquest.errors import NotFoundError, ValidationError
from famquest.gamification.approval_service import on_task_approved
from famquest.gamification.entities import (
    REFERENCE_TASK_COMPLETION,
    ApprovedTask,
    TransactionType,
)
from famquest.gamification.events import ACHIEVEMENT_CHANNEL, LEVEL_UP_CHANNEL
from famquest.gamification.ledger import replay_balance
from famquest.gamification.reconcile import reconcile_child
from famquest.gamification.streak_service import get_streak_status
from famquest.store.memory import InMemoryStore


def task(task_id: str = "dishes", points: int = 20, **kwargs) -> ApprovedTask:
    return ApprovedTask(task_id=task_id, points_value=points, **kwargs)


class TestFirstApproval:
    """Test the very first approved task for a child."""

    @pytest.mark.asyncio
    async def test_result_bundle(self, store, now):
        result = await on_task_approved(store, "child-a", task(), now)

        # 20 base + round(20 * 0.05) streak, then +10 for "first_task"
        assert result.breakdown == {"base": 20, "streak": 1, "milestone": 0, "early": 0}
        assert result.points_awarded == 31
        assert result.new_balance == 31
        assert result.xp_awarded == 45
        assert [a.id for a in result.unlocked_achievements] == ["first_task"]
        assert result.streak.current_streak == 1
        assert result.leveled_up is False
        assert result.new_level is None

    @pytest.mark.asyncio
    async def test_ledger_and_counters(self, store, now):
        await on_task_approved(store, "child-a", task(), now)

        entries = await store.get_ledger("child-a")
        assert [e.transaction_type for e in entries] == [TransactionType.EARNED, TransactionType.BONUS]
        assert entries[0].reference_type == REFERENCE_TASK_COMPLETION
        assert entries[0].reference_id == "dishes"
        assert entries[0].breakdown == {"base": 20, "streak": 1, "milestone": 0, "early": 0}

        counters = await store.get_child_counter_state("child-a")
        assert counters.total_points_earned == 31
        assert counters.total_tasks_completed == 1
        assert counters.total_xp == 45
        assert counters.current_streak_days == 1
        assert counters.longest_streak_days == 1
        assert counters.last_streak_date == now.date()

    @pytest.mark.asyncio
    async def test_completion_recorded(self, store, now):
        await on_task_approved(store, "child-a", task(category="kitchen"), now)
        assert await store.get_category_completion_count("child-a", "kitchen") == 1

    @pytest.mark.asyncio
    async def test_early_completion(self, store, now):
        result = await on_task_approved(store, "child-a", task(due_date=now + timedelta(hours=48)), now)
        assert result.breakdown["early"] == 5
        # medium 20 * 1.25 + 25 for "first_task"
        assert result.xp_awarded == 50


class TestStreaks:
    """Test streak progression across approvals."""

    @pytest.mark.asyncio
    async def test_three_day_streak_hits_milestone(self, store, now):
        await on_task_approved(store, "child-a", task("t1"), now - timedelta(days=2))
        await on_task_approved(store, "child-a", task("t2"), now - timedelta(days=1))
        result = await on_task_approved(store, "child-a", task("t3"), now)

        assert result.streak.current_streak == 3
        # 20 * 0.15 = 3 streak bonus, 3 * 5 milestone
        assert result.breakdown == {"base": 20, "streak": 3, "milestone": 15, "early": 0}
        assert "streak_3" in [a.id for a in result.unlocked_achievements]

    @pytest.mark.asyncio
    async def test_milestone_paid_once_per_day(self, store, now):
        await on_task_approved(store, "child-a", task("t1"), now - timedelta(days=2))
        await on_task_approved(store, "child-a", task("t2"), now - timedelta(days=1))
        await on_task_approved(store, "child-a", task("t3"), now)
        again = await on_task_approved(store, "child-a", task("t4"), now + timedelta(hours=1))

        assert again.streak.current_streak == 3
        assert again.breakdown["milestone"] == 0

    @pytest.mark.asyncio
    async def test_longest_streak_survives_break(self, store, now):
        await on_task_approved(store, "child-a", task("t1"), now - timedelta(days=5))
        await on_task_approved(store, "child-a", task("t2"), now - timedelta(days=4))
        result = await on_task_approved(store, "child-a", task("t3"), now)

        assert result.counters.current_streak_days == 1
        assert result.counters.longest_streak_days == 2


class TestLevelUp:
    """Test level-up detection and event publishing."""

    @pytest.mark.asyncio
    async def test_level_up_publishes_events(self, store, now):
        counters = await store.get_child_counter_state("child-a")
        await store.save_counter_state(replace(counters, total_xp=90))
        redis = AsyncMock()

        result = await on_task_approved(store, "child-a", task(), now, redis=redis)

        assert result.leveled_up is True
        assert result.new_level == 2
        channels = [call.args[0] for call in redis.publish.await_args_list]
        assert channels == [LEVEL_UP_CHANNEL, ACHIEVEMENT_CHANNEL]
        payload = json.loads(redis.publish.await_args_list[0].args[1])
        assert payload == {"child_id": "child-a", "old_level": 1, "new_level": 2, "title": "Rookie Helper"}

    @pytest.mark.asyncio
    async def test_publish_failure_is_not_fatal(self, store, now):
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("redis down")

        result = await on_task_approved(store, "child-a", task(), now, redis=redis)
        assert result.new_balance == 31


class TestFailures:
    """Test validation and atomicity."""

    @pytest.mark.asyncio
    async def test_negative_points(self, store, now):
        with pytest.raises(ValidationError):
            await on_task_approved(store, "child-a", task(points=-1), now)

    @pytest.mark.asyncio
    async def test_unknown_child(self, store, now):
        with pytest.raises(NotFoundError):
            await on_task_approved(store, "nobody", task(), now)

    @pytest.mark.asyncio
    async def test_failure_leaves_no_partial_state(self, store, now, monkeypatch):
        async def boom(self, child_id, counters, when):
            raise RuntimeError("catalog unavailable")

        monkeypatch.setattr("famquest.gamification.approval_service.AchievementEngine.evaluate", boom)

        with pytest.raises(RuntimeError):
            await on_task_approved(store, "child-a", task(), now)

        assert await store.count_ledger_entries("child-a") == 0
        assert await store.get_completion_history("child-a") == []
        counters = await store.get_child_counter_state("child-a")
        assert counters.total_tasks_completed == 0
        assert counters.total_xp == 0


class TestSerialization:
    """Test per-child serialization under concurrent events."""

    @pytest.mark.asyncio
    async def test_concurrent_approvals_keep_balance_consistent(self, store, now):
        await asyncio.gather(*(
            on_task_approved(store, "child-a", task(f"t{i}"), now + timedelta(minutes=i))
            for i in range(5)
        ))

        entries = list(await store.get_ledger("child-a"))
        running = 0
        for entry in entries:
            running += entry.points_amount
            assert entry.balance_after == running
        assert replay_balance(entries) == await store.get_balance("child-a")
        assert (await store.get_child_counter_state("child-a")).total_tasks_completed == 5

    @pytest.mark.asyncio
    async def test_different_children_are_independent(self, store, now):
        a, b = await asyncio.gather(
            on_task_approved(store, "child-a", task(), now),
            on_task_approved(store, "child-b", task(), now),
        )
        assert a.new_balance == b.new_balance == 31


class TestRepeatedApproval:
    """Test that re-delivering the same approval changes nothing."""

    @pytest.mark.asyncio
    async def test_repeat_is_a_no_op(self, store, now):
        first = await on_task_approved(store, "child-a", task("t1", 10, difficulty="hard"), now)
        again = await on_task_approved(store, "child-a", task("t1", 10, difficulty="hard"), now)

        assert again.duplicate is True
        assert again.points_awarded == 0
        assert again.xp_awarded == 0
        assert again.breakdown == {}
        assert again.unlocked_achievements == []
        assert again.new_balance == first.new_balance
        assert again.counters == first.counters
        assert await store.count_ledger_entries("child-a") == 2

        counters = await store.get_child_counter_state("child-a")
        assert counters.total_tasks_completed == 1
        assert counters.total_xp == first.counters.total_xp

    @pytest.mark.asyncio
    async def test_repeat_leaves_counters_rebuildable(self, store, now):
        await on_task_approved(store, "child-a", task("t1", 10, difficulty="hard"), now)
        await on_task_approved(store, "child-a", task("t1", 10, difficulty="hard"), now)

        report = await reconcile_child(store, "child-a", now)
        assert report["drift"] == {}

    @pytest.mark.asyncio
    async def test_same_task_at_another_time_counts(self, store, now):
        await on_task_approved(store, "child-a", task("t1"), now)
        later = await on_task_approved(store, "child-a", task("t1"), now + timedelta(hours=1))

        assert later.duplicate is False
        assert later.counters.total_tasks_completed == 2


class TestBackdatedApproval:
    """Test approvals that arrive after a newer completion was processed."""

    @pytest.mark.asyncio
    async def test_streak_does_not_go_backwards(self, store, now):
        await on_task_approved(store, "child-a", task("t-today"), now)
        result = await on_task_approved(store, "child-a", task("t-yday"), now - timedelta(days=1))

        # priced as of its own day
        assert result.streak.current_streak == 1
        counters = await store.get_child_counter_state("child-a")
        assert counters.current_streak_days == 2
        assert counters.longest_streak_days == 2
        assert counters.last_streak_date == now.date()
        assert (await get_streak_status(store, "child-a", now))["current_streak"] == 2

    @pytest.mark.asyncio
    async def test_counters_stay_rebuildable(self, store, now):
        await on_task_approved(store, "child-a", task("t-today"), now)
        await on_task_approved(store, "child-a", task("t-yday"), now - timedelta(days=1))

        report = await reconcile_child(store, "child-a", now)
        assert report["drift"] == {}

    @pytest.mark.asyncio
    async def test_gap_fill_unlocks_streak_achievement(self, store, now):
        await on_task_approved(store, "child-a", task("t1"), now - timedelta(days=2))
        await on_task_approved(store, "child-a", task("t3"), now)
        result = await on_task_approved(store, "child-a", task("t2"), now - timedelta(days=1))

        assert result.counters.current_streak_days == 3
        assert "streak_3" in [a.id for a in result.unlocked_achievements]

    @pytest.mark.asyncio
    async def test_ledger_replays_in_append_order(self, store, now):
        await on_task_approved(store, "child-a", task("t-today"), now)
        await on_task_approved(store, "child-a", task("t-yday"), now - timedelta(days=1))

        entries = list(await store.get_ledger("child-a"))
        assert replay_balance(entries) == await store.get_balance("child-a")


class _LockRecordingStore(InMemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.counter_reads: list[bool] = []

    async def get_child_counter_state(self, child_id, for_update=False):
        self.counter_reads.append(for_update)
        return await super().get_child_counter_state(child_id, for_update)


class TestCounterRowLock:
    """Test that the approval reads the counters it advances under a row lock."""

    @pytest.mark.asyncio
    async def test_first_counter_read_is_locked(self, store, now):
        recording = _LockRecordingStore()
        recording.add_family(await store.get_family_settings("fam-1"))
        recording.add_child(await store.get_child_profile("child-a"))
        for definition in await store.get_achievement_catalog():
            recording.add_achievement(definition)

        await on_task_approved(recording, "child-a", task(), now)
        assert recording.counter_reads[0] is True
