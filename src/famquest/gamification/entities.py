"""Value objects exchanged between the gamification core and its stores.

The core never mutates these; stores hand out snapshots and accept
append requests. Everything persisted is derivable from the ledger, the
completion history and the unlocked-achievement records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from famquest.errors import ValidationError


class TransactionType(str, Enum):
    """Ledger transaction kinds."""

    EARNED = "earned"
    REDEEMED = "redeemed"
    BONUS = "bonus"
    PENALTY = "penalty"
    ADJUSTMENT = "adjustment"


class CriteriaType(str, Enum):
    """Achievement unlock criteria kinds."""

    STREAK_DAYS = "streak_days"
    TASKS_COMPLETED = "tasks_completed"
    POINTS_EARNED = "points_earned"
    CATEGORY_MASTER = "category_master"
    TIME_BASED = "time_based"


REFERENCE_TASK_COMPLETION = "task_completion"
REFERENCE_ACHIEVEMENT_UNLOCK = "achievement_unlock"
REFERENCE_REWARD_REDEMPTION = "reward_redemption"
REFERENCE_MANUAL = "manual"


@dataclass(frozen=True)
class ChildCounterState:
    """Read-optimized projection of a child's ledger and completion history."""

    child_id: str
    total_points_earned: int = 0
    total_tasks_completed: int = 0
    total_xp: int = 0
    current_streak_days: int = 0
    longest_streak_days: int = 0
    last_streak_date: date | None = None


@dataclass(frozen=True)
class LedgerEntry:
    """One immutable points transaction."""

    child_id: str
    transaction_type: TransactionType
    points_amount: int
    balance_after: int
    created_at: datetime
    breakdown: dict[str, int] = field(default_factory=dict)
    reference_type: str | None = None
    reference_id: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class CompletionRecord:
    """An approved task completion, owned by the task store."""

    child_id: str
    task_id: str
    approved_at: datetime
    task_difficulty: str = "medium"
    task_category: str | None = None
    due_date: datetime | None = None


@dataclass(frozen=True)
class ApprovedTask:
    """The task half of an approval event."""

    task_id: str
    points_value: int
    difficulty: str = "medium"
    category: str | None = None
    due_date: datetime | None = None


@dataclass(frozen=True)
class AchievementDefinition:
    """Catalog entry. Immutable once loaded."""

    id: str
    name: str
    criteria_type: CriteriaType
    criteria_value: int
    description: str = ""
    criteria_config: dict[str, Any] = field(default_factory=dict)
    tier: str = "bronze"
    points_reward: int = 0
    xp_reward: int = 0


@dataclass(frozen=True)
class UnlockedAchievement:
    child_id: str
    achievement_id: str
    unlocked_at: datetime


@dataclass(frozen=True)
class ChildProfile:
    child_id: str
    family_id: str
    display_name: str
    created_at: datetime
    is_active: bool = True


@dataclass(frozen=True)
class FamilySettings:
    """Per-family gamification knobs."""

    family_id: str
    streak_grace_period_hours: int = 4
    minimum_tasks_per_day: int = 1
    timezone: str = "UTC"
    week_start_day: str = "sunday"
    enable_leaderboard: bool = True

    def __post_init__(self) -> None:
        if not 0 <= self.streak_grace_period_hours <= 12:
            raise ValidationError(
                f"streak_grace_period_hours must be within 0-12, got {self.streak_grace_period_hours}"
            )
        if self.minimum_tasks_per_day < 1:
            raise ValidationError("minimum_tasks_per_day must be at least 1")
        if self.week_start_day not in ("sunday", "monday"):
            raise ValidationError(f"Unknown week_start_day: {self.week_start_day}")


@dataclass(frozen=True)
class StreakResult:
    current_streak: int
    streak_at_risk: bool
    completed_today: int
    required_daily: int
    streak_day: date


@dataclass(frozen=True)
class StreakBonus:
    """Itemized streak bonus. ``breakdown`` is persisted verbatim on the ledger."""

    multiplier: float
    bonus_points: int
    milestone_bonus: int
    total_points: int
    breakdown: dict[str, int]


@dataclass(frozen=True)
class ApprovalResult:
    """Everything one approval event produced."""

    child_id: str
    points_awarded: int
    xp_awarded: int
    new_balance: int
    leveled_up: bool
    new_level: int | None
    unlocked_achievements: list[AchievementDefinition]
    streak: StreakResult
    breakdown: dict[str, int]
    counters: ChildCounterState
    duplicate: bool = False


@dataclass(frozen=True)
class LeaderboardEntry:
    """Derived ranking row. ``period_*`` fields cover the requested period."""

    child_id: str
    display_name: str
    score: float
    rank: int
    period_points: int
    period_tasks: int
    current_streak: int
    achievement_count: int
