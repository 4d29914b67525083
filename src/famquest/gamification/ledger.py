"""Append-only points ledger rules.

Every entry carries the balance it produces. A store must call
``verify_ledger_append`` with the balance it recomputed from its own
entries before writing; a mismatch is an ``IntegrityError`` and nothing is
written.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

from famquest.errors import IntegrityError, ValidationError
from famquest.gamification.entities import ChildCounterState, LedgerEntry, TransactionType
from famquest.gamification.time_utils import as_utc

logger = logging.getLogger(__name__)

_NON_NEGATIVE = {TransactionType.EARNED, TransactionType.BONUS}
_NON_POSITIVE = {TransactionType.REDEEMED, TransactionType.PENALTY}


def build_ledger_entry(
    child_id: str,
    prior_balance: int,
    transaction_type: TransactionType,
    breakdown: dict[str, int],
    created_at: datetime,
    reference_type: str | None = None,
    reference_id: str | None = None,
    description: str | None = None,
) -> LedgerEntry:
    """Create the entry for one event; the amount is the sum of its breakdown."""
    amount = sum(breakdown.values())
    return LedgerEntry(
        child_id=child_id,
        transaction_type=transaction_type,
        points_amount=amount,
        balance_after=prior_balance + amount,
        created_at=as_utc(created_at),
        breakdown=dict(breakdown),
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
    )


def verify_ledger_append(prior_balance: int, entry: LedgerEntry) -> None:
    """Reject an entry that would break the running-balance invariant."""
    if entry.transaction_type in _NON_NEGATIVE and entry.points_amount < 0:
        raise ValidationError(f"{entry.transaction_type.value} entries cannot be negative")
    if entry.transaction_type in _NON_POSITIVE and entry.points_amount > 0:
        raise ValidationError(f"{entry.transaction_type.value} entries cannot be positive")
    if entry.breakdown and sum(entry.breakdown.values()) != entry.points_amount:
        raise ValidationError(
            f"breakdown sums to {sum(entry.breakdown.values())}, "
            f"points_amount is {entry.points_amount}"
        )

    expected = prior_balance + entry.points_amount
    if entry.balance_after != expected:
        logger.error(
            "Rejected ledger append for child %s: expected %d, declared %d",
            entry.child_id, expected, entry.balance_after,
        )
        raise IntegrityError(entry.child_id, expected, entry.balance_after)
    if entry.balance_after < 0:
        raise ValidationError(f"balance_after cannot be negative, got {entry.balance_after}")


def apply_entry(counters: ChildCounterState, entry: LedgerEntry) -> ChildCounterState:
    """Project an accepted entry onto the counters."""
    return replace(counters, total_points_earned=entry.balance_after)


def replay_balance(entries: list[LedgerEntry]) -> int:
    """Re-derive the balance from scratch, verifying each step.

    ``entries`` must be in append order (as ``get_ledger`` returns them).
    ``created_at`` is the event time, and a backdated approval is appended
    after entries with later timestamps.
    """
    balance = 0
    for entry in entries:
        verify_ledger_append(balance, entry)
        balance = entry.balance_after
    return balance
