"""
pool.py - Per-asset lending pool records

One pool exists per supported asset. It aggregates everything deposited into
and borrowed out of that asset, and carries the asset's risk parameters.

ARCHITECTURE (same split as every record in this package):

1. FROZEN DATACLASSES: PoolTerms (set at creation, never changes) and
   PoolState (totals and accrual checkpoint, replaced on every action).
2. ADAPTERS: load_pool() / to_state_dict() are the only bridge between the
   ledger's stored record and the typed dataclasses.
3. PURE FUNCTIONS: accrue_pool(), available_liquidity(), utilization(),
   check_pool_invariants() take explicit inputs only.
4. FACTORIES: create_pool() builds the record, initialize_bank() wraps it in
   a PendingTransaction for the ledger to register.

Storage layout:
    record unit  POOL:<asset_id>   (state only, no balances)
    vault wallet pool:<asset_id>   (custody of the pooled asset)
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from ..accrual import accrued_value, elapsed_seconds
from ..core import (
    LedgerView, PendingTransaction, Unit, TransactionOrigin, OriginType,
    UNIT_TYPE_POOL, ZERO, ONE,
    ArithmeticFailure,
    build_transaction, checked_u64, to_decimal,
    _freeze_state,
)


def pool_symbol(asset_id: str) -> str:
    """Symbol of the unit holding an asset's pool record."""
    return f"POOL:{asset_id}"


def pool_wallet(asset_id: str) -> str:
    """Wallet holding custody of an asset's pooled funds."""
    return f"pool:{asset_id}"


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PoolTerms:
    """
    Immutable pool parameters, fixed when the pool is initialized.

    Risk parameters are fractions in [0, 1]. interest_rate is a continuous
    per-second rate applied to both the deposit and the borrow side.
    """
    authority: str
    asset_id: str
    liquidation_threshold: Decimal
    max_ltv: Decimal
    liquidation_bonus: Decimal
    liquidation_close_factor: Decimal
    interest_rate: Decimal

    def __post_init__(self):
        """Convert float values to Decimal to ensure type consistency."""
        for name in ('liquidation_threshold', 'max_ltv', 'liquidation_bonus',
                     'liquidation_close_factor', 'interest_rate'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))


@dataclass(frozen=True, slots=True)
class PoolState:
    """
    Snapshot of a pool's totals.

    Values are the principal as of last_updated; call accrue_pool() before
    pricing shares against them.
    """
    total_deposit_value: int
    total_deposit_shares: int
    total_borrow_value: int
    total_borrow_shares: int
    last_updated: datetime


# ============================================================================
# ADAPTERS
# ============================================================================

def load_pool(view: LedgerView, asset_id: str) -> Tuple[PoolTerms, PoolState]:
    """
    Load a pool record from the ledger as typed frozen dataclasses.

    Returns:
        (PoolTerms, PoolState)

    Raises:
        UnitNotRegistered: if the pool has not been initialized
    """
    raw = view.get_unit_state(pool_symbol(asset_id))
    return pool_from_state_dict(raw)


def pool_from_state_dict(raw: Dict[str, Any]) -> Tuple[PoolTerms, PoolState]:
    """Build (PoolTerms, PoolState) from a stored record."""
    terms = PoolTerms(
        authority=raw['authority'],
        asset_id=raw['asset_id'],
        liquidation_threshold=raw['liquidation_threshold'],
        max_ltv=raw['max_ltv'],
        liquidation_bonus=raw['liquidation_bonus'],
        liquidation_close_factor=raw['liquidation_close_factor'],
        interest_rate=raw['interest_rate'],
    )
    state = PoolState(
        total_deposit_value=int(raw.get('total_deposit_value', 0)),
        total_deposit_shares=int(raw.get('total_deposit_shares', 0)),
        total_borrow_value=int(raw.get('total_borrow_value', 0)),
        total_borrow_shares=int(raw.get('total_borrow_shares', 0)),
        last_updated=raw['last_updated'],
    )
    return terms, state


def to_state_dict(terms: PoolTerms, state: PoolState) -> Dict[str, Any]:
    """
    Convert typed dataclasses back to a record for ledger storage.

    Inverse of load_pool(). Runs check_pool_invariants() so an inconsistent
    pool can never be written.
    """
    check_pool_invariants(state)
    return {
        'authority': terms.authority,
        'asset_id': terms.asset_id,
        'liquidation_threshold': terms.liquidation_threshold,
        'max_ltv': terms.max_ltv,
        'liquidation_bonus': terms.liquidation_bonus,
        'liquidation_close_factor': terms.liquidation_close_factor,
        'interest_rate': terms.interest_rate,
        'total_deposit_value': state.total_deposit_value,
        'total_deposit_shares': state.total_deposit_shares,
        'total_borrow_value': state.total_borrow_value,
        'total_borrow_shares': state.total_borrow_shares,
        'last_updated': state.last_updated,
    }


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def check_pool_invariants(state: PoolState) -> None:
    """
    Check the structural invariants of a pool snapshot.

    - every total fits u64 (in particular, none is negative)
    - total_deposit_shares == 0 <=> total_deposit_value == 0
    - total_borrow_shares == 0 <=> total_borrow_value == 0

    Raises:
        ArithmeticFailure: on any violation
    """
    checked_u64(state.total_deposit_value, "total_deposit_value")
    checked_u64(state.total_deposit_shares, "total_deposit_shares")
    checked_u64(state.total_borrow_value, "total_borrow_value")
    checked_u64(state.total_borrow_shares, "total_borrow_shares")
    if (state.total_deposit_shares == 0) != (state.total_deposit_value == 0):
        raise ArithmeticFailure(
            f"deposit side inconsistent: value={state.total_deposit_value} "
            f"shares={state.total_deposit_shares}"
        )
    if (state.total_borrow_shares == 0) != (state.total_borrow_value == 0):
        raise ArithmeticFailure(
            f"borrow side inconsistent: value={state.total_borrow_value} "
            f"shares={state.total_borrow_shares}"
        )


def accrue_pool(terms: PoolTerms, state: PoolState, now: datetime) -> PoolState:
    """
    Bring both sides of a pool up to now.

    PURE FUNCTION - returns a new PoolState with accrued totals and
    last_updated = now. Shares are unchanged.

    Raises:
        NegativeElapsedTime: if last_updated is after now
    """
    elapsed = elapsed_seconds(state.last_updated, now)
    return replace(
        state,
        total_deposit_value=accrued_value(state.total_deposit_value, terms.interest_rate, elapsed),
        total_borrow_value=accrued_value(state.total_borrow_value, terms.interest_rate, elapsed),
        last_updated=now,
    )


def available_liquidity(state: PoolState, vault_balance: Optional[int] = None) -> int:
    """
    Deposited value not lent out, the most a withdrawal or borrow may take.

    Accrued deposit interest is book value the vault has not received, so
    when vault_balance is given the result is capped at it.
    """
    book = max(0, state.total_deposit_value - state.total_borrow_value)
    if vault_balance is None:
        return book
    return max(0, min(book, vault_balance))


def utilization(state: PoolState) -> Decimal:
    """Borrowed value as a fraction of deposited value (0 for an empty pool)."""
    if state.total_deposit_value == 0:
        return ZERO
    return Decimal(state.total_borrow_value) / Decimal(state.total_deposit_value)


# ============================================================================
# CREATION
# ============================================================================

def _validate_fraction(name: str, value: Decimal) -> None:
    if value < ZERO or value > ONE:
        raise ValueError(f"{name} must be in [0, 1], got {value}")


def create_pool(
    asset_id: str,
    authority: str,
    liquidation_threshold: Decimal,
    max_ltv: Decimal,
    liquidation_bonus: Decimal,
    liquidation_close_factor: Decimal,
    interest_rate: Decimal,
    created_at: datetime,
) -> Unit:
    """
    Create the pool record for an asset.

    Args:
        asset_id: The pooled asset
        authority: Identity allowed to configure the pool
        liquidation_threshold: Fraction of collateral value counted toward
            health and the borrow limit (e.g., 0.8)
        max_ltv: Maximum debt-to-collateral ratio at borrow time (e.g., 0.8)
        liquidation_bonus: Extra fraction of collateral paid to liquidators
        liquidation_close_factor: Fraction of debt one liquidation repays
        interest_rate: Continuous per-second rate
        created_at: Initial accrual checkpoint

    Returns:
        Unit of type POOL holding an empty pool record.

    Raises:
        ValueError: if identifiers are empty or a parameter is out of range.

    Example:
        pool = create_pool("SOL", "admin", Decimal("0.8"), Decimal("0.75"),
                           Decimal("0.05"), Decimal("0.5"), Decimal("0"), now)
    """
    if not asset_id or not asset_id.strip():
        raise ValueError("asset_id cannot be empty")
    if not authority or not authority.strip():
        raise ValueError("authority cannot be empty")

    terms = PoolTerms(
        authority=authority,
        asset_id=asset_id,
        liquidation_threshold=liquidation_threshold,
        max_ltv=max_ltv,
        liquidation_bonus=liquidation_bonus,
        liquidation_close_factor=liquidation_close_factor,
        interest_rate=interest_rate,
    )
    _validate_fraction("liquidation_threshold", terms.liquidation_threshold)
    _validate_fraction("max_ltv", terms.max_ltv)
    _validate_fraction("liquidation_bonus", terms.liquidation_bonus)
    _validate_fraction("liquidation_close_factor", terms.liquidation_close_factor)
    if terms.liquidation_close_factor == ZERO:
        raise ValueError("liquidation_close_factor must be positive")
    if terms.interest_rate < ZERO:
        raise ValueError(f"interest_rate cannot be negative, got {terms.interest_rate}")

    state = PoolState(
        total_deposit_value=0,
        total_deposit_shares=0,
        total_borrow_value=0,
        total_borrow_shares=0,
        last_updated=created_at,
    )
    return Unit(
        symbol=pool_symbol(asset_id),
        name=f"{asset_id} lending pool",
        unit_type=UNIT_TYPE_POOL,
        _frozen_state=_freeze_state(to_state_dict(terms, state)),
    )


def initialize_bank(
    view: LedgerView,
    asset_id: str,
    authority: str,
    liquidation_threshold: Decimal,
    max_ltv: Decimal,
    liquidation_bonus: Decimal,
    liquidation_close_factor: Decimal,
    interest_rate: Decimal,
) -> PendingTransaction:
    """
    Build the administrative transaction that registers a new pool.

    The pool's accrual checkpoint is the ledger's current time. Executing the
    transaction twice is refused by the ledger (unit already registered).
    """
    pool = create_pool(
        asset_id=asset_id,
        authority=authority,
        liquidation_threshold=liquidation_threshold,
        max_ltv=max_ltv,
        liquidation_bonus=liquidation_bonus,
        liquidation_close_factor=liquidation_close_factor,
        interest_rate=interest_rate,
        created_at=view.current_time,
    )
    origin = TransactionOrigin(OriginType.ADMIN, authority, pool.symbol, "INITIALIZE_BANK")
    return build_transaction(view, [], origin=origin, units_to_create=(pool,))


# ============================================================================
# ENGINE HELPERS
# ============================================================================

def load_accrued_pool(
    view: LedgerView,
    asset_id: str,
    now: datetime,
) -> Tuple[Dict[str, Any], PoolTerms, PoolState]:
    """
    Read a pool and bring it up to now.

    Returns:
        (stored record, terms, accrued state). The stored record is the
        old_state of the UnitStateChange the caller eventually builds.
    """
    raw = view.get_unit_state(pool_symbol(asset_id))
    terms, state = pool_from_state_dict(raw)
    return raw, terms, accrue_pool(terms, state, now)


def pool_liquidity(view: LedgerView, asset_id: str, state: PoolState) -> int:
    """available_liquidity() capped at what the pool's vault actually holds."""
    vault = int(view.get_balance(pool_wallet(asset_id), asset_id))
    return available_liquidity(state, vault)


def with_deposit_side(state: PoolState, value: int, shares: int) -> PoolState:
    """
    Replace the deposit totals.

    When the last share is burned any rounding residue stays in the vault
    and the side restarts from zero.
    """
    if shares == 0:
        value = 0
    return replace(
        state,
        total_deposit_value=checked_u64(value, "total_deposit_value"),
        total_deposit_shares=checked_u64(shares, "total_deposit_shares"),
    )


def with_borrow_side(state: PoolState, value: int, shares: int) -> PoolState:
    """Replace the borrow totals (same residue rule as the deposit side)."""
    if shares == 0:
        value = 0
    return replace(
        state,
        total_borrow_value=checked_u64(value, "total_borrow_value"),
        total_borrow_shares=checked_u64(shares, "total_borrow_shares"),
    )
