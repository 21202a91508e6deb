"""Exact conversion between Decimal amounts and integer minor units.

Amounts are persisted as integer cents so that SQL sums never touch binary
floating point. Every value handed back to callers is a ``Decimal`` with two
fractional digits.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")
PERCENT_QUANTUM = Decimal("0.0001")


def to_cents(value: Union[Decimal, int, str]) -> int:
    try:
        amount = Decimal(value)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    if amount != amount.quantize(CENT):
        raise ValueError("Amount must have at most 2 decimal places")
    return int(amount * 100)


def from_cents(cents: Union[int, None]) -> Decimal:
    return (Decimal(int(cents or 0)) / 100).quantize(CENT)


def percentage(part_cents: int, whole_cents: int) -> Decimal:
    # Zero denominators yield 0 rather than raising.
    if whole_cents == 0:
        return Decimal(0).quantize(PERCENT_QUANTUM)
    ratio = Decimal(part_cents) * 100 / Decimal(whole_cents)
    return ratio.quantize(PERCENT_QUANTUM, rounding=ROUND_HALF_UP)
