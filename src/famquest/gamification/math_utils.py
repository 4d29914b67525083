"""Exact rounding for point and XP arithmetic.

All multipliers are applied as ``Decimal`` so that an award can be
re-derived bit-for-bit from its inputs during an audit.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal


def to_decimal(value: int | float | str | Decimal) -> Decimal:
    """Convert without inheriting binary float noise (0.05 stays 0.05)."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def round_half_up(value: int | float | Decimal) -> int:
    """Round to the nearest integer, halves away from zero (12.5 -> 13)."""
    return int(to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
