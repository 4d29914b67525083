"""XP curve, level computation, and per-task XP rewards.

Level ``n`` costs ``floor(BASE_XP * n ** GROWTH_FACTOR)`` XP to clear:
100, 282, 519, 800, 1118, ...  Levels are walked from 1 and capped at
MAX_LEVEL; XP beyond the cap is kept but progress stops at 100%.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from decimal import Decimal

from famquest.errors import ValidationError
from famquest.gamification.math_utils import round_half_up

BASE_XP = 100
GROWTH_FACTOR = 1.5
MAX_LEVEL = 100

TASK_XP_BY_DIFFICULTY: dict[str, int] = {
    "easy": 10,
    "medium": 20,
    "hard": 35,
}
DEFAULT_TASK_XP = 15

# (minimum hours early, multiplier); highest matching tier wins
EARLY_XP_TIERS: list[tuple[int, Decimal]] = [
    (24, Decimal("1.25")),
    (6, Decimal("1.10")),
]

# (first level of band, title)
LEVEL_TITLES: list[tuple[int, str]] = [
    (1, "Rookie Helper"),
    (5, "Task Tackler"),
    (10, "Chore Champion"),
    (20, "Household Hero"),
    (35, "Family Legend"),
    (50, "Quest Master"),
    (75, "Grand Master"),
    (100, "Mythic Helper"),
]


def xp_required_for_level(level: int) -> int:
    """XP needed to clear ``level``. Level 0 costs nothing; negatives are rejected."""
    if level < 0:
        raise ValidationError(f"level must be >= 0, got {level}")
    if level == 0:
        return 0
    return math.floor(BASE_XP * level**GROWTH_FACTOR)


def cumulative_xp_for_level(level: int) -> int:
    """Total XP at which a child first reaches ``level``.

    Sum of the cost of every level below it, so
    ``level_from_xp(cumulative_xp_for_level(n))`` lands on ``n`` with
    ``current_xp == 0``.
    """
    if level < 0:
        raise ValidationError(f"level must be >= 0, got {level}")
    return sum(xp_required_for_level(i) for i in range(1, level))


def level_title(level: int) -> str:
    title = LEVEL_TITLES[0][1]
    for first_level, band_title in LEVEL_TITLES:
        if level >= first_level:
            title = band_title
    return title


def level_from_xp(total_xp: int) -> dict:
    """Compute level info from total XP."""
    if total_xp < 0:
        raise ValidationError(f"total_xp must be >= 0, got {total_xp}")

    level = 1
    remaining = total_xp
    while level < MAX_LEVEL and remaining >= xp_required_for_level(level):
        remaining -= xp_required_for_level(level)
        level += 1

    xp_to_next = xp_required_for_level(level)
    progress = min(100, round_half_up(Decimal(remaining) / Decimal(xp_to_next) * 100))

    return {
        "level": level,
        "title": level_title(level),
        "total_xp": total_xp,
        "current_xp": remaining,
        "xp_to_next": xp_to_next,
        "progress_percent": progress,
    }


def calculate_task_xp(
    difficulty: str | None,
    due_date: datetime | None = None,
    completed_at: datetime | None = None,
) -> int:
    """XP for one completed task: difficulty base times the earliness tier."""
    base = TASK_XP_BY_DIFFICULTY.get((difficulty or "").lower(), DEFAULT_TASK_XP)

    multiplier = Decimal("1")
    if due_date is not None and completed_at is not None and completed_at < due_date:
        early = due_date - completed_at
        for hours, tier_multiplier in EARLY_XP_TIERS:
            if early > timedelta(hours=hours):
                multiplier = tier_multiplier
                break

    return round_half_up(base * multiplier)
