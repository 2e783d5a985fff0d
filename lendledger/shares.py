"""
shares.py - Share accounting for one side of one pool

Converts between absolute value and shares. Totals passed in must already be
accrued to the current time (see units.pool.accrue_pool).

Every conversion multiplies before dividing and takes an explicit rounding
direction:

    deposit  mint  round down   (depositor credited at most what they paid)
    withdraw burn  round up     (remaining depositors never diluted)
    borrow   mint  round up     (borrower owes at least what they took)
    repay    burn  round down

Converting a holder's shares back to value always rounds down.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Optional

from .core import (
    ONE,
    ArithmeticFailure, InsufficientShares,
    checked_u64, div_ceil, div_floor,
)


def value_per_share(total_value: int, total_shares: int) -> Decimal:
    """Accrued value of one share; 1 for a side with no shares outstanding."""
    if total_shares == 0:
        return ONE
    return Decimal(total_value) / Decimal(total_shares)


def shares_to_value(shares: int, total_value: int, total_shares: int) -> int:
    """
    Value of a holder's shares, rounded down.

    Raises:
        ArithmeticFailure: if shares are held against a side with none outstanding
    """
    if shares == 0:
        return 0
    if total_shares == 0:
        raise ArithmeticFailure(f"{shares} shares held but none outstanding")
    if shares > total_shares:
        raise ArithmeticFailure(
            f"holder shares {shares} exceed outstanding shares {total_shares}"
        )
    return div_floor(shares * total_value, total_shares)


def mint_shares(
    value_in: int,
    total_value: int,
    total_shares: int,
    round_up: bool = False,
) -> int:
    """
    Shares to mint for value_in added to a side.

    Args:
        value_in: Value added, in base units (> 0)
        total_value: Accrued value of the side before the addition
        total_shares: Shares outstanding before the addition
        round_up: True on the borrow side, False on the deposit side

    Returns:
        value_in when no shares are outstanding (1:1 bootstrap), otherwise
        value_in * total_shares / total_value rounded as requested.

    Raises:
        ValueError: if value_in is not positive, or mints zero shares
        ArithmeticFailure: if shares are outstanding against zero value,
            or the result overflows u64
    """
    if value_in <= 0:
        raise ValueError(f"value to mint shares for must be positive, got {value_in}")

    if total_shares == 0:
        return checked_u64(value_in, "minted shares")

    if total_value == 0:
        raise ArithmeticFailure(
            f"{total_shares} shares outstanding against zero value"
        )

    divide = div_ceil if round_up else div_floor
    shares = divide(value_in * total_shares, total_value)
    if shares == 0:
        raise ValueError(
            f"{value_in} is worth less than one share "
            f"(value per share {value_per_share(total_value, total_shares)})"
        )
    return checked_u64(shares, "minted shares")


def burn_shares_for_value(
    value_out: int,
    total_value: int,
    total_shares: int,
    holder_shares: int,
    holder_value: Optional[int] = None,
    round_up: bool = True,
) -> int:
    """
    Shares to burn for value_out removed from a side.

    Args:
        value_out: Value removed, in base units (> 0)
        total_value: Accrued value of the side
        total_shares: Shares outstanding
        holder_shares: Shares the caller holds
        holder_value: The caller's full accrued value, when known. Removing
            exactly that much burns all of the caller's shares.
        round_up: True on the deposit side, False on the borrow side

    Raises:
        ValueError: if value_out is not positive
        InsufficientShares: if the burn exceeds holder_shares
        ArithmeticFailure: if the side has no value to burn against
    """
    if value_out <= 0:
        raise ValueError(f"value to burn shares for must be positive, got {value_out}")

    if holder_value is not None and value_out == holder_value:
        return holder_shares

    if total_shares == 0 or total_value == 0:
        raise ArithmeticFailure(
            f"cannot burn shares on an empty side (value={total_value}, shares={total_shares})"
        )

    divide = div_ceil if round_up else div_floor
    shares = divide(value_out * total_shares, total_value)
    if shares > holder_shares:
        raise InsufficientShares(
            f"burning {shares} shares for {value_out} exceeds holder balance of {holder_shares}"
        )
    return shares
