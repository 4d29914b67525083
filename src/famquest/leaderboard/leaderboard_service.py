"""Family leaderboards: period ranges, composite score, deterministic ranking.

Scores are derived on demand from the ledger, the completion history and
unlocked achievements; nothing here is authoritative state. Results may be
cached in Redis for a short TTL, keyed by family, period and range start.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from famquest.config import get_settings
from famquest.errors import LeaderboardDisabledError, ValidationError
from famquest.gamification.entities import ChildProfile, LeaderboardEntry, TransactionType
from famquest.gamification.math_utils import to_decimal
from famquest.gamification.streak_service import load_streak
from famquest.gamification.time_utils import as_utc, utcnow

logger = logging.getLogger(__name__)

PERIODS = ("daily", "weekly", "monthly", "all_time")
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Python weekday() of the first day of the week
_WEEK_START = {"monday": 0, "sunday": 6}


def default_weights() -> dict[str, float]:
    settings = get_settings()
    return {
        "points": settings.leaderboard_weight_points,
        "tasks": settings.leaderboard_weight_tasks,
        "streak": settings.leaderboard_weight_streak,
        "achievements": settings.leaderboard_weight_achievements,
    }


def _local_midnight(day: date, zone: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=zone).astimezone(timezone.utc)


def get_period_range(
    period: str,
    now: datetime,
    tz: str = "UTC",
    week_start_day: str = "sunday",
) -> tuple[datetime, datetime]:
    """UTC ``[start, end)`` of the period containing ``now`` in the family timezone."""
    if period not in PERIODS:
        raise ValidationError(f"Unknown leaderboard period: {period}")
    if week_start_day not in _WEEK_START:
        raise ValidationError(f"Unknown week_start_day: {week_start_day}")

    zone = ZoneInfo(tz)
    today = as_utc(now).astimezone(zone).date()
    tomorrow = _local_midnight(today + timedelta(days=1), zone)

    if period == "daily":
        return _local_midnight(today, zone), tomorrow
    if period == "weekly":
        offset = (today.weekday() - _WEEK_START[week_start_day]) % 7
        first = today - timedelta(days=offset)
        return _local_midnight(first, zone), _local_midnight(first + timedelta(days=7), zone)
    if period == "monthly":
        first = today.replace(day=1)
        following = (first + timedelta(days=32)).replace(day=1)
        return _local_midnight(first, zone), _local_midnight(following, zone)
    return EPOCH, tomorrow


def compute_score(
    points: int,
    tasks: int,
    streak: int,
    achievements: int,
    weights: dict[str, float] | None = None,
) -> float:
    """Weighted composite score."""
    if weights is None:
        weights = default_weights()
    total = (
        points * to_decimal(weights["points"])
        + tasks * to_decimal(weights["tasks"])
        + streak * to_decimal(weights["streak"])
        + achievements * to_decimal(weights["achievements"])
    )
    return float(total)


def rank_entries(rows: list[tuple[ChildProfile, dict]]) -> list[LeaderboardEntry]:
    """Sort by score descending; ties go to the child whose account is older.

    ``rows`` pairs each profile with its period stats
    (``score``, ``points``, ``tasks``, ``streak``, ``achievements``).
    Ranks are 1-based positions, so tied scores still get distinct ranks.
    """
    ordered = sorted(
        rows,
        key=lambda row: (-Decimal(str(row[1]["score"])), as_utc(row[0].created_at), row[0].child_id),
    )
    return [
        LeaderboardEntry(
            child_id=profile.child_id,
            display_name=profile.display_name,
            score=stats["score"],
            rank=position,
            period_points=stats["points"],
            period_tasks=stats["tasks"],
            current_streak=stats["streak"],
            achievement_count=stats["achievements"],
        )
        for position, (profile, stats) in enumerate(ordered, start=1)
    ]


def build_cache_key(family_id: str, period: str, range_start: datetime) -> str:
    return f"leaderboard:{family_id}:{period}:{range_start.strftime('%Y-%m-%dT%H:%M')}"


async def _read_cache(redis: object, key: str) -> list[LeaderboardEntry] | None:
    if redis is None:
        return None
    try:
        cached = await redis.get(key)  # type: ignore[attr-defined]
    except Exception:
        logger.warning("Failed to read leaderboard cache %s", key, exc_info=True)
        return None
    if not cached:
        return None
    return [LeaderboardEntry(**row) for row in json.loads(cached)]


async def _write_cache(redis: object, key: str, entries: list[LeaderboardEntry]) -> None:
    if redis is None:
        return
    try:
        await redis.set(  # type: ignore[attr-defined]
            key,
            json.dumps([asdict(e) for e in entries]),
            ex=get_settings().leaderboard_cache_ttl_seconds,
        )
    except Exception:
        logger.warning("Failed to write leaderboard cache %s", key, exc_info=True)


async def compute_family_leaderboard(
    store,
    family_id: str,
    period: str,
    now: datetime | None = None,
    weights: dict[str, float] | None = None,
) -> list[LeaderboardEntry]:
    """Rank a family's active children for ``period``, bypassing any cache."""
    if now is None:
        now = utcnow()
    family = await store.get_family_settings(family_id)
    start, end = get_period_range(period, now, family.timezone, family.week_start_day)
    if weights is None:
        weights = default_weights()

    rows: list[tuple[ChildProfile, dict]] = []
    for child in await store.get_family_children(family_id):
        points = await store.sum_points_between(child.child_id, start, end, TransactionType.EARNED)
        tasks = await store.count_completions_between(child.child_id, start, end)
        streak = (await load_streak(store, child.child_id, now)).current_streak
        achievements = len(await store.get_unlocked_achievements(child.child_id))
        rows.append((child, {
            "score": compute_score(points, tasks, streak, achievements, weights),
            "points": points,
            "tasks": tasks,
            "streak": streak,
            "achievements": achievements,
        }))

    return rank_entries(rows)


async def get_family_leaderboard(
    store,
    family_id: str,
    period: str,
    now: datetime | None = None,
    redis: object = None,
    refresh: bool = False,
) -> list[LeaderboardEntry]:
    """Ranked leaderboard for a family, served from Redis when a fresh copy exists."""
    if now is None:
        now = utcnow()
    family = await store.get_family_settings(family_id)
    if not family.enable_leaderboard:
        raise LeaderboardDisabledError(f"Leaderboard is disabled for family {family_id}")

    start, _ = get_period_range(period, now, family.timezone, family.week_start_day)
    key = build_cache_key(family_id, period, start)

    if not refresh:
        cached = await _read_cache(redis, key)
        if cached is not None:
            return cached

    entries = await compute_family_leaderboard(store, family_id, period, now)
    await _write_cache(redis, key, entries)
    return entries
