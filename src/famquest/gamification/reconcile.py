"""Rebuild the counter projection from the ledger and completion history."""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime

from famquest.gamification.entities import ChildCounterState, CompletionRecord
from famquest.gamification.levels import calculate_task_xp
from famquest.gamification.locks import child_locks
from famquest.gamification.streak_service import (
    calculate_longest_streak,
    count_completions_by_day,
    load_streak,
)
from famquest.gamification.time_utils import utcnow

logger = logging.getLogger(__name__)


async def rebuild_counter_state(store, child_id: str, now: datetime | None = None) -> ChildCounterState:
    """Recompute a child's counters from scratch without touching the store."""
    if now is None:
        now = utcnow()

    history = list(await store.get_completion_history(child_id))

    catalog = {d.id: d for d in await store.get_achievement_catalog()}
    achievement_xp = sum(
        catalog[u.achievement_id].xp_reward
        for u in await store.get_unlocked_achievements(child_id)
        if u.achievement_id in catalog
    )
    task_xp = sum(calculate_task_xp(r.task_difficulty, r.due_date, r.approved_at) for r in history)

    return ChildCounterState(
        child_id=child_id,
        total_points_earned=await store.get_balance(child_id),
        total_tasks_completed=len(history),
        total_xp=task_xp + achievement_xp,
        **await rebuild_streak_counters(store, child_id, now, history),
    )


async def rebuild_streak_counters(
    store,
    child_id: str,
    now: datetime,
    history: list[CompletionRecord] | None = None,
) -> dict:
    """Streak fields of ``ChildCounterState`` as of ``now``, from the completion history."""
    profile = await store.get_child_profile(child_id)
    family = await store.get_family_settings(profile.family_id)
    if history is None:
        history = list(await store.get_completion_history(child_id))

    streak = await load_streak(store, child_id, now)
    longest = calculate_longest_streak(
        history,
        grace_period_hours=family.streak_grace_period_hours,
        minimum_tasks_per_day=family.minimum_tasks_per_day,
        tz=family.timezone,
    )
    counts = count_completions_by_day(history, family.streak_grace_period_hours, family.timezone)
    qualifying = [day for day, n in counts.items() if n >= family.minimum_tasks_per_day]

    return {
        "current_streak_days": streak.current_streak,
        "longest_streak_days": max(longest, streak.current_streak),
        "last_streak_date": max(qualifying) if qualifying else None,
    }


async def reconcile_child(store, child_id: str, now: datetime | None = None) -> dict:
    """Compare cached counters with a rebuild and persist the rebuild.

    Returns ``{"child_id", "drift", "counters"}`` where ``drift`` maps each
    field that differed to its ``(cached, rebuilt)`` pair.
    """
    async with child_locks.hold(child_id), store.transaction():
        cached = await store.get_child_counter_state(child_id, for_update=True)
        rebuilt = await rebuild_counter_state(store, child_id, now)

        cached_fields, rebuilt_fields = asdict(cached), asdict(rebuilt)
        drift = {
            name: (cached_fields[name], value)
            for name, value in rebuilt_fields.items()
            if cached_fields[name] != value
        }
        if drift:
            logger.warning("Counter drift for child %s: %s", child_id, drift)
            await store.save_counter_state(rebuilt)

    return {"child_id": child_id, "drift": drift, "counters": rebuilt}
