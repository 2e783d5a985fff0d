"""
accrual.py - Continuous-compounding interest accrual

Pure functions that bring a stored principal up to date:

    accrued = floor(principal * e^(rate * elapsed_seconds))

The rate is a continuous per-second rate, so accruing once over two intervals
equals accruing twice over one interval each, up to integer truncation.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_FLOOR

from .core import (
    NegativeElapsedTime,
    checked_u64, to_decimal,
)


def elapsed_seconds(checkpoint: datetime, now: datetime) -> int:
    """
    Whole seconds from checkpoint to now.

    Raises:
        NegativeElapsedTime: if checkpoint is after now (clock skew or a
            checkpoint written by a later transaction).
    """
    delta = now - checkpoint
    if delta < timedelta(0):
        raise NegativeElapsedTime(
            f"Accrual checkpoint {checkpoint} is after current time {now}"
        )
    return delta // timedelta(seconds=1)


def growth_factor(rate: Decimal, elapsed: int) -> Decimal:
    """e^(rate * elapsed) as a Decimal."""
    rate = to_decimal(rate)
    if rate < 0:
        raise ValueError(f"interest rate cannot be negative, got {rate}")
    if elapsed < 0:
        raise NegativeElapsedTime(f"elapsed seconds cannot be negative, got {elapsed}")
    return (rate * Decimal(elapsed)).exp()


def accrued_value(principal: int, rate: Decimal, elapsed: int) -> int:
    """
    Present value of principal after elapsed seconds at a continuous rate.

    PURE FUNCTION - all inputs explicit.

    Args:
        principal: Stored value in base units (u64)
        rate: Continuous per-second rate (>= 0)
        elapsed: Seconds since the value was last accrued (>= 0)

    Returns:
        floor(principal * e^(rate * elapsed)). Equal to principal when
        elapsed or rate is zero. With a positive rate and elapsed time the
        result exceeds principal once the growth is worth a whole base unit.

    Raises:
        NegativeElapsedTime: if elapsed < 0
        ValueError: if principal or rate is negative
        ArithmeticFailure: if the result overflows u64
    """
    if principal < 0:
        raise ValueError(f"principal cannot be negative, got {principal}")
    factor = growth_factor(rate, elapsed)
    if principal == 0 or factor == 1:
        return principal
    value = (Decimal(principal) * factor).to_integral_value(rounding=ROUND_FLOOR)
    return checked_u64(int(value), "accrued value")


def accrue_since(principal: int, rate: Decimal, checkpoint: datetime, now: datetime) -> int:
    """Convenience: accrued_value over the time between checkpoint and now."""
    return accrued_value(principal, rate, elapsed_seconds(checkpoint, now))
