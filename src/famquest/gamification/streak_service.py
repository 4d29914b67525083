"""Daily completion streaks with a grace period after local midnight.

A completion belongs to the "streak-day" obtained by converting its
timestamp to the family timezone and then subtracting the grace period,
so with a 4 hour grace a task approved at 01:30 counts for yesterday.
Streaks are derived from completion history on demand; nothing about a
streak is stored that cannot be recomputed.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from famquest.config import get_settings
from famquest.errors import ValidationError
from famquest.gamification.entities import CompletionRecord, FamilySettings, StreakResult

logger = logging.getLogger(__name__)

MAX_GRACE_PERIOD_HOURS = 12


def _resolve_tz(tz: str | tzinfo | None) -> tzinfo | None:
    if tz is None or isinstance(tz, tzinfo):
        return tz
    return ZoneInfo(tz)


def _validate(grace_period_hours: int, minimum_tasks_per_day: int) -> None:
    if not 0 <= grace_period_hours <= MAX_GRACE_PERIOD_HOURS:
        raise ValidationError(
            f"grace_period_hours must be within 0-{MAX_GRACE_PERIOD_HOURS}, got {grace_period_hours}"
        )
    if minimum_tasks_per_day < 1:
        raise ValidationError(f"minimum_tasks_per_day must be >= 1, got {minimum_tasks_per_day}")


def get_streak_day(
    timestamp: datetime,
    grace_period_hours: int = 4,
    tz: str | tzinfo | None = None,
) -> date:
    """Map a completion timestamp to the streak-day it counts toward.

    With ``tz`` set, the timestamp is converted to that zone first (naive
    timestamps are taken as UTC); without it the wall clock of the
    timestamp is used as-is.
    """
    zone = _resolve_tz(tz)
    if zone is not None:
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        timestamp = timestamp.astimezone(zone)
    return (timestamp - timedelta(hours=grace_period_hours)).date()


def count_completions_by_day(
    records: Iterable[CompletionRecord],
    grace_period_hours: int = 4,
    tz: str | tzinfo | None = None,
) -> Counter[date]:
    zone = _resolve_tz(tz)
    return Counter(get_streak_day(r.approved_at, grace_period_hours, zone) for r in records)


def calculate_streak(
    records: Iterable[CompletionRecord],
    now: datetime,
    grace_period_hours: int = 4,
    minimum_tasks_per_day: int = 1,
    tz: str | tzinfo | None = None,
    window_days: int = 90,
) -> StreakResult:
    """Walk back from today's streak-day counting consecutive qualifying days.

    Today never breaks a streak: if it has not reached the minimum yet it
    is skipped and the walk starts at yesterday, with ``streak_at_risk``
    raised when there is a streak to lose.
    """
    _validate(grace_period_hours, minimum_tasks_per_day)
    zone = _resolve_tz(tz)

    today = get_streak_day(now, grace_period_hours, zone)
    window_start = today - timedelta(days=window_days)
    counts = count_completions_by_day(records, grace_period_hours, zone)

    completed_today = counts.get(today, 0)
    streak = 1 if completed_today >= minimum_tasks_per_day else 0

    day = today - timedelta(days=1)
    while day >= window_start and counts.get(day, 0) >= minimum_tasks_per_day:
        streak += 1
        day -= timedelta(days=1)

    return StreakResult(
        current_streak=streak,
        streak_at_risk=streak > 0 and completed_today < minimum_tasks_per_day,
        completed_today=completed_today,
        required_daily=minimum_tasks_per_day,
        streak_day=today,
    )


def calculate_longest_streak(
    records: Iterable[CompletionRecord],
    grace_period_hours: int = 4,
    minimum_tasks_per_day: int = 1,
    tz: str | tzinfo | None = None,
) -> int:
    """Longest run of consecutive qualifying streak-days anywhere in the history."""
    _validate(grace_period_hours, minimum_tasks_per_day)
    counts = count_completions_by_day(records, grace_period_hours, tz)
    qualifying = sorted(d for d, n in counts.items() if n >= minimum_tasks_per_day)

    longest = 0
    run = 0
    previous: date | None = None
    for day in qualifying:
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
        longest = max(longest, run)
        previous = day
    return longest


def history_since(now: datetime, family: FamilySettings, window_days: int) -> date:
    """Earliest calendar date whose completions can touch the live streak."""
    today = get_streak_day(now, family.streak_grace_period_hours, family.timezone)
    # one extra day: a grace-period completion is stamped the day after its streak-day
    return today - timedelta(days=window_days + 1)


async def load_streak(
    store,
    child_id: str,
    now: datetime | None = None,
    extra: Iterable[CompletionRecord] = (),
) -> StreakResult:
    """Compute a child's live streak from the store's completion history.

    ``extra`` lets the approval flow include the completion being approved
    when the task store has not exposed it yet.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    window_days = get_settings().streak_window_days

    profile = await store.get_child_profile(child_id)
    family = await store.get_family_settings(profile.family_id)
    history = list(
        await store.get_completion_history(child_id, history_since(now, family, window_days))
    )
    known = {(r.task_id, r.approved_at) for r in history}
    history.extend(r for r in extra if (r.task_id, r.approved_at) not in known)

    return calculate_streak(
        history,
        now,
        grace_period_hours=family.streak_grace_period_hours,
        minimum_tasks_per_day=family.minimum_tasks_per_day,
        tz=family.timezone,
        window_days=window_days,
    )


async def get_streak_status(store, child_id: str, now: datetime | None = None) -> dict:
    """Streak summary for dashboards."""
    result = await load_streak(store, child_id, now)
    return {
        "current_streak": result.current_streak,
        "streak_at_risk": result.streak_at_risk,
        "completed_today": result.completed_today,
        "required_daily": result.required_daily,
        "streak_day": result.streak_day,
    }
