"""Point awards: streak multiplier, milestone spikes, early-completion bonus.

All arithmetic runs on ``Decimal`` and rounds half-up, so the breakdown
stored on a ledger entry can be re-derived exactly from the task, the
streak length and the two timestamps.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from famquest.errors import InsufficientPointsError, ValidationError
from famquest.gamification.entities import (
    REFERENCE_MANUAL,
    REFERENCE_REWARD_REDEMPTION,
    ChildCounterState,
    LedgerEntry,
    StreakBonus,
    TransactionType,
)
from famquest.gamification.ledger import build_ledger_entry
from famquest.gamification.locks import child_locks
from famquest.gamification.math_utils import round_half_up
from famquest.gamification.time_utils import as_utc, utcnow

logger = logging.getLogger(__name__)

STREAK_STEP = Decimal("0.05")
MAX_STREAK_MULTIPLIER = Decimal("2.5")
MILESTONE_DAYS = frozenset({3, 7, 14, 30, 60, 100})
MILESTONE_POINTS_PER_DAY = 5

# (minimum hours early, bonus fraction); best matching tier only
EARLY_COMPLETION_TIERS: list[tuple[int, Decimal]] = [
    (48, Decimal("0.25")),
    (24, Decimal("0.15")),
    (12, Decimal("0.10")),
    (6, Decimal("0.05")),
]


def _check_base(base_points: int) -> None:
    if base_points < 0:
        raise ValidationError(f"base_points must be >= 0, got {base_points}")


def streak_multiplier(streak_days: int) -> Decimal:
    if streak_days < 0:
        raise ValidationError(f"streak_days must be >= 0, got {streak_days}")
    return min(1 + streak_days * STREAK_STEP, MAX_STREAK_MULTIPLIER)


def calculate_streak_bonus(base_points: int, streak_days: int) -> StreakBonus:
    """Base points plus the streak multiplier share and any milestone spike."""
    _check_base(base_points)
    multiplier = streak_multiplier(streak_days)

    bonus_points = round_half_up(base_points * (multiplier - 1))
    milestone = streak_days * MILESTONE_POINTS_PER_DAY if streak_days in MILESTONE_DAYS else 0

    return StreakBonus(
        multiplier=float(multiplier),
        bonus_points=bonus_points,
        milestone_bonus=milestone,
        total_points=base_points + bonus_points + milestone,
        breakdown={"base": base_points, "streak": bonus_points, "milestone": milestone},
    )


def calculate_early_completion_bonus(
    base_points: int,
    due_date: datetime | None,
    completed_at: datetime,
) -> int:
    """Bonus for finishing ahead of the due date; zero at or after it."""
    _check_base(base_points)
    if due_date is None:
        return 0

    due, done = as_utc(due_date), as_utc(completed_at)
    if done >= due:
        return 0

    early = due - done
    for hours, fraction in EARLY_COMPLETION_TIERS:
        if early >= timedelta(hours=hours):
            return round_half_up(base_points * fraction)
    return 0


def calculate_task_points(
    base_points: int,
    streak_days: int,
    due_date: datetime | None,
    completed_at: datetime,
    milestone_eligible: bool = True,
) -> dict[str, int]:
    """Full itemized award for one completion: base, streak, milestone, early.

    The milestone spike is paid once per streak-day; later completions on
    the same day pass ``milestone_eligible=False``.
    """
    streak = calculate_streak_bonus(base_points, streak_days)
    breakdown = dict(streak.breakdown)
    if not milestone_eligible:
        breakdown["milestone"] = 0
    breakdown["early"] = calculate_early_completion_bonus(base_points, due_date, completed_at)
    return breakdown


async def record_transaction(
    store,
    child_id: str,
    transaction_type: TransactionType,
    amount: int,
    reference_type: str | None = None,
    reference_id: str | None = None,
    description: str | None = None,
    now: datetime | None = None,
) -> tuple[LedgerEntry, ChildCounterState]:
    """Append a redemption, penalty or manual adjustment.

    ``amount`` is the magnitude for redemptions and penalties and a signed
    delta for adjustments. The resulting balance may not go below zero.
    """
    if now is None:
        now = utcnow()

    if transaction_type in (TransactionType.REDEEMED, TransactionType.PENALTY):
        if amount <= 0:
            raise ValidationError(f"{transaction_type.value} amount must be positive, got {amount}")
        delta = -amount
    elif transaction_type == TransactionType.ADJUSTMENT:
        if amount == 0:
            raise ValidationError("adjustment amount cannot be zero")
        delta = amount
    else:
        raise ValidationError(f"Unsupported manual transaction type: {transaction_type.value}")

    if reference_type is None:
        reference_type = (
            REFERENCE_REWARD_REDEMPTION if transaction_type == TransactionType.REDEEMED else REFERENCE_MANUAL
        )

    async with child_locks.hold(child_id), store.transaction():
        balance = await store.get_balance(child_id)
        if balance + delta < 0:
            raise InsufficientPointsError(child_id, balance, -delta)

        entry = build_ledger_entry(
            child_id,
            balance,
            transaction_type,
            {transaction_type.value: delta},
            now,
            reference_type=reference_type,
            reference_id=reference_id,
            description=description,
        )
        counters = await store.append_ledger_entry(entry)

    logger.info(
        "Recorded %s of %d points for child %s (balance %d)",
        transaction_type.value, delta, child_id, entry.balance_after,
    )
    return entry, counters
