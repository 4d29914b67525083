"""Gamification error taxonomy.

Core functions raise these and never retry; retry and rollback belong to the
transaction boundary at the call site. The HTTP layer maps each class to a
status code in ``famquest.middleware.error_handler``.
"""

from __future__ import annotations


class GamificationError(Exception):
    """Base class for all gamification failures."""


class ValidationError(GamificationError, ValueError):
    """Malformed input: negative points, negative streak, bad level, ..."""


class InsufficientPointsError(ValidationError):
    """A redemption or penalty would drive a child's balance below zero."""

    def __init__(self, child_id: str, balance: int, requested: int) -> None:
        self.child_id = child_id
        self.balance = balance
        self.requested = requested
        self.shortfall = requested - balance
        super().__init__(
            f"Insufficient points for child {child_id}: "
            f"balance={balance}, requested={requested}, shortfall={self.shortfall}"
        )


class IntegrityError(GamificationError):
    """Declared ``balance_after`` does not match the recomputed running sum."""

    def __init__(self, child_id: str, expected: int, declared: int) -> None:
        self.child_id = child_id
        self.expected = expected
        self.declared = declared
        super().__init__(
            f"Ledger balance mismatch for child {child_id}: "
            f"expected balance_after={expected}, got {declared}"
        )


class NotFoundError(GamificationError, LookupError):
    """A referenced child, family, or achievement does not exist."""


class LeaderboardDisabledError(GamificationError):
    """The family has switched the leaderboard off."""
