"""
valuation.py - Present Value and Precision Normalization

Pure functions. No ledger access, no collaborators: every input is passed in.

    normalized_amount  raw repo tokens -> base-asset units
    present_value      simple annualized discounting to as_of
    weighted_time_to_maturity  seconds remaining x amount

Amounts are integral Decimals. Intermediate results carry the module-wide
Decimal context; whatever represents tokens is truncated toward zero.
"""
from __future__ import annotations
from datetime import datetime
from decimal import Decimal, ROUND_DOWN

from .core import SECONDS_PER_YEAR, ONE, ZERO

# 10 ** 77 is the largest power of ten below 2 ** 256.
MAX_DECIMALS = 77


def _truncate(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_DOWN)


def seconds_to_maturity(maturity: datetime, as_of: datetime) -> int:
    """Whole seconds until maturity, never negative."""
    remaining = int((maturity - as_of).total_seconds())
    return remaining if remaining > 0 else 0


def normalized_amount(
    amount: Decimal,
    decimals: int,
    base_precision: int,
    redemption_value: Decimal = ONE,
    haircut: Decimal = ZERO,
) -> Decimal:
    """
    Rescale a raw repo-token amount into base-asset units.

    amount * redemption_value * base_precision / 10**decimals * (1 - haircut),
    truncated to a whole unit.

    Args:
        amount: Raw token amount (smallest units of the repo token)
        decimals: Native decimals of the repo token
        base_precision: 10 ** decimals of the base asset
        redemption_value: Base-asset face paid per whole repo token
        haircut: Fraction withheld at redemption (0 <= haircut <= 1)

    Raises:
        ValueError: If decimals would overflow the fixed-point range or the
            haircut is outside [0, 1].
    """
    if decimals < 0 or decimals > MAX_DECIMALS:
        raise ValueError(f"decimals {decimals} outside [0, {MAX_DECIMALS}]")
    if haircut < ZERO or haircut > ONE:
        raise ValueError(f"haircut must be within [0, 1], got {haircut}")
    scaled = Decimal(amount) * Decimal(redemption_value) * Decimal(base_precision)
    scaled = scaled / (Decimal(10) ** decimals)
    return _truncate(scaled * (ONE - Decimal(haircut)))


def present_value(
    face_amount: Decimal,
    base_precision: int,
    maturity: datetime,
    discount_rate: Decimal,
    as_of: datetime,
) -> Decimal:
    """
    Discount a face amount to as_of using simple annualized discounting.

        pv = face / (1 + rate * seconds / SECONDS_PER_YEAR)

    The year fraction is held in base_precision fixed point, as is the rate
    term, and both are truncated the way integer fixed-point arithmetic
    truncates. A matured instrument (seconds <= 0) is worth its face amount.

    Example:
        >>> present_value(Decimal(1_000_000), 10**6, now + timedelta(days=30),
        ...               Decimal("0.05"), now)
        Decimal('995907')
    """
    seconds = seconds_to_maturity(maturity, as_of)
    face_amount = Decimal(face_amount)
    if seconds <= 0:
        return face_amount
    bp = Decimal(base_precision)
    year_fraction = _truncate(Decimal(seconds) * bp / Decimal(SECONDS_PER_YEAR))
    rate_term = _truncate(Decimal(discount_rate) * year_fraction)
    return _truncate(face_amount * bp / (bp + rate_term))


def weighted_time_to_maturity(maturity: datetime, amount: Decimal, as_of: datetime) -> Decimal:
    """amount x seconds to maturity; zero once matured."""
    return Decimal(seconds_to_maturity(maturity, as_of)) * Decimal(amount)
