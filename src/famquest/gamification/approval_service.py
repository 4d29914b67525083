"""Task-approval orchestration.

One approval event runs, for one child, strictly in this order:

1. record the completion (a repeat of an already recorded completion stops
   here and changes nothing) and derive the live streak including it,
2. price the completion (base + streak + milestone + early) and its XP,
3. append one ``earned`` ledger entry together with the counter update,
4. evaluate the achievement catalog against the new counters.

Everything from 1 to 4 happens inside a single store transaction while the
child's lock and counter row are held, so a failure anywhere leaves no
partial state.

A completion approved after a later one moves the totals but not the
streak position: the cached streak stays anchored at the newest approval.
Level-up and unlock broadcasts go out only after the commit.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

from famquest.errors import ValidationError
from famquest.gamification.achievement_engine import AchievementEngine
from famquest.gamification.entities import (
    REFERENCE_TASK_COMPLETION,
    ApprovalResult,
    ApprovedTask,
    ChildCounterState,
    CompletionRecord,
    StreakResult,
    TransactionType,
)
from famquest.gamification.events import publish_achievement_unlocked, publish_level_up
from famquest.gamification.ledger import build_ledger_entry
from famquest.gamification.levels import calculate_task_xp, level_from_xp
from famquest.gamification.locks import child_locks
from famquest.gamification.points_service import calculate_task_points
from famquest.gamification.reconcile import rebuild_streak_counters
from famquest.gamification.streak_service import load_streak
from famquest.gamification.time_utils import as_utc, utcnow

logger = logging.getLogger(__name__)


def _advance_counters(
    before: ChildCounterState,
    streak: StreakResult,
    xp: int,
) -> ChildCounterState:
    last_streak_date = before.last_streak_date
    if streak.completed_today >= streak.required_daily and (
        last_streak_date is None or streak.streak_day > last_streak_date
    ):
        last_streak_date = streak.streak_day

    return replace(
        before,
        total_tasks_completed=before.total_tasks_completed + 1,
        total_xp=before.total_xp + xp,
        current_streak_days=streak.current_streak,
        longest_streak_days=max(before.longest_streak_days, streak.current_streak),
        last_streak_date=last_streak_date,
    )


async def on_task_approved(
    store,
    child_id: str,
    task: ApprovedTask,
    completed_at: datetime | None = None,
    redis: object = None,
) -> ApprovalResult:
    """Award points, XP, streak progress and achievements for one approved task.

    ``points_awarded`` and ``xp_awarded`` include the rewards of any
    achievements the event unlocked; ``breakdown`` itemizes the task entry only.
    """
    if task.points_value < 0:
        raise ValidationError(f"points_value must be >= 0, got {task.points_value}")

    completed_at = as_utc(completed_at or utcnow())
    due_date = as_utc(task.due_date) if task.due_date is not None else None
    record = CompletionRecord(
        child_id=child_id,
        task_id=task.task_id,
        approved_at=completed_at,
        task_difficulty=task.difficulty,
        task_category=task.category,
        due_date=due_date,
    )
    engine = AchievementEngine(store)

    async with child_locks.hold(child_id), store.transaction():
        before = await store.get_child_counter_state(child_id, for_update=True)
        if not await store.record_completion(record):
            logger.info(
                "Ignoring repeated approval of task %s for child %s at %s",
                task.task_id, child_id, completed_at.isoformat(),
            )
            return ApprovalResult(
                child_id=child_id,
                points_awarded=0,
                xp_awarded=0,
                new_balance=await store.get_balance(child_id),
                leveled_up=False,
                new_level=None,
                unlocked_achievements=[],
                streak=await load_streak(store, child_id, now=completed_at),
                breakdown={},
                counters=before,
                duplicate=True,
            )

        streak = await load_streak(store, child_id, now=completed_at, extra=[record])

        # the completion that makes the day qualify is the one that gets the milestone
        breakdown = calculate_task_points(
            task.points_value,
            streak.current_streak,
            due_date,
            completed_at,
            milestone_eligible=streak.completed_today == streak.required_daily,
        )
        xp = calculate_task_xp(task.difficulty, due_date, completed_at)

        entry = build_ledger_entry(
            child_id,
            await store.get_balance(child_id),
            TransactionType.EARNED,
            breakdown,
            completed_at,
            reference_type=REFERENCE_TASK_COMPLETION,
            reference_id=task.task_id,
            description=f"Completed task {task.task_id}",
        )
        advanced = _advance_counters(before, streak, xp)
        newer = [
            r for r in await store.get_completion_history(child_id, completed_at.date())
            if as_utc(r.approved_at) > completed_at
        ]
        if newer:
            latest = max(as_utc(r.approved_at) for r in newer)
            advanced = replace(advanced, **await rebuild_streak_counters(store, child_id, latest))
        counters = await store.append_ledger_entry(entry, advanced)

        unlocked = await engine.evaluate(child_id, counters, completed_at)
        final = await store.get_child_counter_state(child_id)
        new_balance = await store.get_balance(child_id)

    old_level = level_from_xp(before.total_xp)
    new_level = level_from_xp(final.total_xp)
    leveled_up = new_level["level"] > old_level["level"]

    logger.info(
        "Approved task %s for child %s: +%d points, +%d XP, streak %d",
        task.task_id, child_id, entry.points_amount, xp, streak.current_streak,
    )

    if leveled_up:
        logger.info("Child %s leveled up: %d -> %d", child_id, old_level["level"], new_level["level"])
        await publish_level_up(redis, child_id, old_level["level"], new_level["level"], new_level["title"])
    for achievement in unlocked:
        await publish_achievement_unlocked(redis, child_id, achievement)

    return ApprovalResult(
        child_id=child_id,
        points_awarded=new_balance - (entry.balance_after - entry.points_amount),
        xp_awarded=final.total_xp - before.total_xp,
        new_balance=new_balance,
        leveled_up=leveled_up,
        new_level=new_level["level"] if leveled_up else None,
        unlocked_achievements=unlocked,
        streak=streak,
        breakdown=breakdown,
        counters=final,
    )
