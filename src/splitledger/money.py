"""Decimal money helpers shared by every ledger component."""

from collections.abc import Iterable
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation

from .exceptions import ValidationError

ZERO = Decimal("0")
CENT = Decimal("0.01")

# Absolute tolerance used for every share and settlement comparison
TOLERANCE = Decimal("0.01")


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """Convert a number to Decimal without inheriting float noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def parse_amount(value: str) -> Decimal:
    """Parse a money amount from text, rejecting anything that is not a number."""
    try:
        amount = to_decimal(value.strip())
    except InvalidOperation:
        raise ValidationError(f"Not a valid amount: {value}") from None
    if not amount.is_finite():
        raise ValidationError(f"Not a valid amount: {value}")
    return amount


def require_cents(amount: Decimal, label: str = "Amount") -> Decimal:
    """
    Reject amounts with more than two decimal places.

    Balances are stored in milliunits; anything finer would be lost.
    """
    if not amount.is_finite() or amount != amount.quantize(CENT, rounding=ROUND_DOWN):
        raise ValidationError(f"{label} must have at most two decimal places (got {amount})")
    return amount


def to_cents(amount: Decimal) -> Decimal:
    """Round to whole cents using ROUND_HALF_UP."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_milliunits(amount: Decimal) -> int:
    """
    Convert Decimal dollars to integer milliunits.
    Uses ROUND_HALF_UP for consistency.

    Args:
        amount: Dollar amount as Decimal

    Returns:
        Amount in milliunits (integer)
    """
    milliunits = amount * 1000
    return int(milliunits.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_milliunits(milliunits: int) -> Decimal:
    """Convert integer milliunits back to a Decimal amount."""
    return Decimal(milliunits).scaleb(-3)


def sum_amounts(amounts: Iterable[Decimal]) -> Decimal:
    """Exact Decimal sum; an empty iterable sums to zero."""
    return sum(amounts, ZERO)


def within_tolerance(a: Decimal, b: Decimal) -> bool:
    """True when two amounts differ by at most the system tolerance."""
    return abs(a - b) <= TOLERANCE


def exceeds(amount: Decimal, limit: Decimal) -> bool:
    """True when amount is above limit by more than the system tolerance."""
    return amount - limit > TOLERANCE


def allocate_evenly(amount: Decimal, count: int) -> list[Decimal]:
    """
    Split an amount into `count` cent-rounded parts that sum exactly to it.

    Every part gets the amount divided by count, truncated to cents. The
    leftover is handed out one cent at a time from the first part onward,
    and any sub-cent remainder goes to the first part.
    """
    if count <= 0:
        raise ValueError("count must be positive")

    base = (amount / count).quantize(CENT, rounding=ROUND_DOWN)
    parts = [base] * count
    leftover = amount - base * count

    index = 0
    while leftover >= CENT and index < count:
        parts[index] += CENT
        leftover -= CENT
        index += 1

    parts[0] += leftover
    return parts
