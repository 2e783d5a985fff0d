"""
lending.py - Deposit, withdraw, borrow and repay

Each compute_* function reads the ledger through a LedgerView and returns a
PendingTransaction; nothing is written until the ledger executes it. Every
function follows the same order:

    1. accrue   - bring the touched pools up to the ledger's time
    2. validate - raise before any delta is computed
    3. compute  - share deltas, new Pool/Position records, custody moves

The transaction carries the custody moves and the record changes together,
so the ledger applies both or neither. Each record change carries the record
it was computed from; if another transaction has changed that record in the
meantime, the ledger refuses the change as STALE.
"""

from __future__ import annotations
from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, Tuple

from .core import (
    LedgerView, Move, PendingTransaction, UnitStateChange,
    TransactionOrigin, OriginType,
    InsufficientFunds, InsufficientLiquidity, OverRepayAmount,
    build_transaction,
)
from .health import calculate_health, check_borrow_limit
from .pricing_source import PricingSource, fetch_price
from .shares import burn_shares_for_value, mint_shares, shares_to_value
from .units.pool import (
    PoolTerms, PoolState,
    load_accrued_pool, pool_liquidity, pool_symbol, pool_wallet,
    to_state_dict as pool_state_dict,
    with_borrow_side, with_deposit_side,
)
from .units.position import (
    PositionState,
    get_balance, other_asset, position_from_state_dict, position_symbol,
    side_of, touch_borrow, touch_deposit, with_balance,
    to_state_dict as position_state_dict,
)


# ============================================================================
# SHARED HELPERS
# ============================================================================

def require_amount(amount: int) -> int:
    """
    Validate a caller-supplied asset amount.

    Raises:
        ValueError: if amount is not a positive integer
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"amount must be an integer number of base units, got {amount!r}")
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")
    return amount


def load_position_record(view: LedgerView, owner: str) -> Tuple[Dict[str, Any], PositionState]:
    """Read a position, returning the stored record alongside the typed state."""
    raw = view.get_unit_state(position_symbol(owner))
    return raw, position_from_state_dict(raw)


def pool_change(
    asset_id: str,
    old_raw: Dict[str, Any],
    terms: PoolTerms,
    new_state: PoolState,
) -> UnitStateChange:
    return UnitStateChange(pool_symbol(asset_id), old_raw, pool_state_dict(terms, new_state))


def position_change(old_raw: Dict[str, Any], position: PositionState) -> UnitStateChange:
    """Record change writing back position, counting one more action."""
    counted = replace(position, action_count=position.action_count + 1)
    return UnitStateChange(position_symbol(position.owner), old_raw, position_state_dict(counted))


def _origin(owner: str, asset_id: str, event_type: str) -> TransactionOrigin:
    return TransactionOrigin(OriginType.USER_ACTION, owner, pool_symbol(asset_id), event_type)


# ============================================================================
# DEPOSIT SIDE
# ============================================================================

def compute_deposit(
    view: LedgerView,
    owner: str,
    asset_id: str,
    amount: int,
) -> PendingTransaction:
    """
    Deposit amount of asset_id from the owner's wallet into the pool.

    Mints deposit shares rounded down; the first deposit into an empty pool
    mints 1:1.

    Raises:
        ValueError: if amount is not positive or is worth less than one share
        UnsupportedAsset: if asset_id is not one of the owner's assets
        ArithmeticFailure: if a pool total would overflow u64
    """
    require_amount(amount)
    now = view.current_time

    pool_raw, terms, pool = load_accrued_pool(view, asset_id, now)
    position_raw, position = load_position_record(view, owner)
    side = side_of(position, asset_id)

    minted = mint_shares(amount, pool.total_deposit_value, pool.total_deposit_shares)
    new_pool = with_deposit_side(
        pool,
        pool.total_deposit_value + amount,
        pool.total_deposit_shares + minted,
    )

    balance = get_balance(position, side)
    new_position = with_balance(
        touch_deposit(position, now),
        side,
        replace(balance, deposited_shares=balance.deposited_shares + minted),
    )

    moves = [Move(
        quantity=Decimal(amount),
        unit_symbol=asset_id,
        source=owner,
        dest=pool_wallet(asset_id),
        contract_id=f"deposit_{owner}_{asset_id}",
        metadata={'shares': minted},
    )]
    state_changes = [
        pool_change(asset_id, pool_raw, terms, new_pool),
        position_change(position_raw, new_position),
    ]
    return build_transaction(view, moves, state_changes, _origin(owner, asset_id, "DEPOSIT"))


def compute_withdraw(
    view: LedgerView,
    pricing_source: PricingSource,
    owner: str,
    asset_id: str,
    amount: int,
    max_age: int,
) -> PendingTransaction:
    """
    Withdraw amount of asset_id from the pool to the owner's wallet.

    Burns deposit shares rounded up; withdrawing the whole accrued balance
    burns every share. When the owner has debt on the other asset, the
    remaining deposit must still cover it within the borrow limit; prices
    are only fetched in that case.

    Raises:
        ValueError: if amount is not positive
        InsufficientFunds: if amount exceeds the owner's accrued deposit
        InsufficientLiquidity: if amount exceeds the pool's un-borrowed value
        OverBorrowableAmount: if the withdrawal leaves the debt uncovered
        StaleOrMissingPrice: if a needed price is unusable
    """
    require_amount(amount)
    now = view.current_time

    pool_raw, terms, pool = load_accrued_pool(view, asset_id, now)
    position_raw, position = load_position_record(view, owner)
    side = side_of(position, asset_id)
    balance = get_balance(position, side)

    deposited = shares_to_value(
        balance.deposited_shares, pool.total_deposit_value, pool.total_deposit_shares
    )
    if amount > deposited:
        raise InsufficientFunds(
            f"{owner} cannot withdraw {amount} {asset_id}: accrued deposit is {deposited}"
        )
    liquidity = pool_liquidity(view, asset_id, pool)
    if amount > liquidity:
        raise InsufficientLiquidity(
            f"pool {asset_id} holds {liquidity} un-borrowed, cannot pay out {amount}"
        )

    burned = burn_shares_for_value(
        amount,
        pool.total_deposit_value,
        pool.total_deposit_shares,
        balance.deposited_shares,
        holder_value=deposited,
        round_up=True,
    )
    new_pool = with_deposit_side(
        pool,
        pool.total_deposit_value - amount,
        pool.total_deposit_shares - burned,
    )
    new_position = with_balance(
        touch_deposit(position, now),
        side,
        replace(balance, deposited_shares=balance.deposited_shares - burned),
    )

    debt_asset = other_asset(position, asset_id)
    if get_balance(new_position, side_of(new_position, debt_asset)).borrowed_shares > 0:
        _, _, debt_pool = load_accrued_pool(view, debt_asset, now)
        health = calculate_health(
            new_position,
            asset_id,
            debt_asset,
            terms,
            new_pool,
            debt_pool,
            fetch_price(pricing_source, asset_id, now, max_age).price,
            fetch_price(pricing_source, debt_asset, now, max_age).price,
        )
        check_borrow_limit(health)

    moves = [Move(
        quantity=Decimal(amount),
        unit_symbol=asset_id,
        source=pool_wallet(asset_id),
        dest=owner,
        contract_id=f"withdraw_{owner}_{asset_id}",
        metadata={'shares': burned},
    )]
    state_changes = [
        pool_change(asset_id, pool_raw, terms, new_pool),
        position_change(position_raw, new_position),
    ]
    return build_transaction(view, moves, state_changes, _origin(owner, asset_id, "WITHDRAW"))


# ============================================================================
# BORROW SIDE
# ============================================================================

def compute_borrow(
    view: LedgerView,
    pricing_source: PricingSource,
    owner: str,
    asset_id: str,
    amount: int,
    max_age: int,
) -> PendingTransaction:
    """
    Borrow amount of asset_id against the owner's deposit of the other asset.

    The health check runs with the hypothetical post-borrow debt. Borrow
    shares are minted rounded up. The accrued collateral pool is written
    back too, so a concurrent change to it makes this transaction STALE
    instead of letting it pass on an outdated valuation.

    Raises:
        ValueError: if amount is not positive
        UnsupportedAsset: if asset_id is not one of the owner's assets
        StaleOrMissingPrice: if either price is unusable
        OverBorrowableAmount: if post-borrow debt exceeds the borrow limit
        InsufficientLiquidity: if the pool cannot lend that much
    """
    require_amount(amount)
    now = view.current_time

    position_raw, position = load_position_record(view, owner)
    side = side_of(position, asset_id)
    collateral_asset = other_asset(position, asset_id)

    pool_raw, terms, pool = load_accrued_pool(view, asset_id, now)
    collateral_raw, collateral_terms, collateral_pool = load_accrued_pool(
        view, collateral_asset, now
    )
    collateral_quote = fetch_price(pricing_source, collateral_asset, now, max_age)
    borrowed_quote = fetch_price(pricing_source, asset_id, now, max_age)

    health = calculate_health(
        position,
        collateral_asset,
        asset_id,
        collateral_terms,
        collateral_pool,
        pool,
        collateral_quote.price,
        borrowed_quote.price,
        additional_debt=amount,
    )
    check_borrow_limit(health)

    liquidity = pool_liquidity(view, asset_id, pool)
    if amount > liquidity:
        raise InsufficientLiquidity(
            f"pool {asset_id} holds {liquidity} un-borrowed, cannot lend {amount}"
        )

    minted = mint_shares(
        amount, pool.total_borrow_value, pool.total_borrow_shares, round_up=True
    )
    new_pool = with_borrow_side(
        pool,
        pool.total_borrow_value + amount,
        pool.total_borrow_shares + minted,
    )
    balance = get_balance(position, side)
    new_position = with_balance(
        touch_borrow(position, now),
        side,
        replace(balance, borrowed_shares=balance.borrowed_shares + minted),
    )

    moves = [Move(
        quantity=Decimal(amount),
        unit_symbol=asset_id,
        source=pool_wallet(asset_id),
        dest=owner,
        contract_id=f"borrow_{owner}_{asset_id}",
        metadata={'shares': minted},
    )]
    state_changes = [
        pool_change(asset_id, pool_raw, terms, new_pool),
        pool_change(collateral_asset, collateral_raw, collateral_terms, collateral_pool),
        position_change(position_raw, new_position),
    ]
    return build_transaction(view, moves, state_changes, _origin(owner, asset_id, "BORROW"))


def compute_repay(
    view: LedgerView,
    owner: str,
    asset_id: str,
    amount: int,
) -> PendingTransaction:
    """
    Repay amount of the owner's asset_id debt from the owner's wallet.

    Burns borrow shares rounded down; repaying the whole accrued debt burns
    every share.

    Raises:
        ValueError: if amount is not positive
        OverRepayAmount: if amount exceeds the accrued debt
    """
    require_amount(amount)
    now = view.current_time

    pool_raw, terms, pool = load_accrued_pool(view, asset_id, now)
    position_raw, position = load_position_record(view, owner)
    side = side_of(position, asset_id)
    balance = get_balance(position, side)

    owed = shares_to_value(
        balance.borrowed_shares, pool.total_borrow_value, pool.total_borrow_shares
    )
    if amount > owed:
        raise OverRepayAmount(
            f"{owner} cannot repay {amount} {asset_id}: accrued debt is {owed}"
        )

    burned = burn_shares_for_value(
        amount,
        pool.total_borrow_value,
        pool.total_borrow_shares,
        balance.borrowed_shares,
        holder_value=owed,
        round_up=False,
    )
    new_pool = with_borrow_side(
        pool,
        pool.total_borrow_value - amount,
        pool.total_borrow_shares - burned,
    )
    new_position = with_balance(
        touch_borrow(position, now),
        side,
        replace(balance, borrowed_shares=balance.borrowed_shares - burned),
    )

    moves = [Move(
        quantity=Decimal(amount),
        unit_symbol=asset_id,
        source=owner,
        dest=pool_wallet(asset_id),
        contract_id=f"repay_{owner}_{asset_id}",
        metadata={'shares': burned},
    )]
    state_changes = [
        pool_change(asset_id, pool_raw, terms, new_pool),
        position_change(position_raw, new_position),
    ]
    return build_transaction(view, moves, state_changes, _origin(owner, asset_id, "REPAY"))
