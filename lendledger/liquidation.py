"""
liquidation.py - Partial liquidation of unhealthy positions

A third party repays part of an unhealthy position's debt and receives the
equivalent collateral plus a bonus:

    liquidation_value = borrowed_value * close_factor      (borrowed pool)
    seize_value       = liquidation_value * (1 + bonus)    (collateral pool)

Values convert to asset amounts through each asset's price, rounded down.
The health check, both share burns and both custody moves are computed from
one freshly accrued snapshot and returned as a single PendingTransaction, so
either both legs commit or neither does. A concurrent repay, withdrawal or
competing liquidation changes one of the records and the ledger refuses the
transaction as STALE.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal, ROUND_FLOOR
from typing import Tuple

from .core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, OriginType,
    ONE,
    InsufficientCollateral, InsufficientLiquidity, NotBelowHealthFactor,
    build_transaction, to_decimal,
)
from .health import HealthResult, calculate_health
from .lending import load_position_record, pool_change, position_change
from .pricing_source import PricingSource, fetch_price
from .shares import burn_shares_for_value
from .units.pool import (
    load_accrued_pool, pool_liquidity, pool_wallet,
    with_borrow_side, with_deposit_side,
)
from .units.position import (
    get_balance, position_symbol, side_of, touch_borrow, touch_deposit, with_balance,
)


@dataclass(frozen=True, slots=True)
class LiquidationResult:
    """Immutable record of the amounts a liquidation moves."""
    target_user: str
    liquidator: str
    collateral_asset_id: str
    borrowed_asset_id: str
    health_factor: Decimal
    liquidation_value: Decimal
    seize_value: Decimal
    repay_amount: int
    seize_amount: int
    debt_shares_burned: int
    collateral_shares_burned: int

    def __post_init__(self):
        """Convert float values to Decimal to ensure type consistency."""
        for name in ('health_factor', 'liquidation_value', 'seize_value'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))


def _floor_amount(value: Decimal, price: Decimal) -> int:
    return int((value / price).to_integral_value(rounding=ROUND_FLOOR))


def calculate_liquidation_amounts(
    health: HealthResult,
    close_factor: Decimal,
    liquidation_bonus: Decimal,
) -> Tuple[Decimal, Decimal, int, int]:
    """
    Size a liquidation from a position's valuation.

    PURE FUNCTION.

    Returns:
        (liquidation_value, seize_value, repay_amount, seize_amount). The
        seized amount is priced from the repay amount actually paid, so
        rounding never hands the liquidator more than their bonus.

    Raises:
        NotBelowHealthFactor: if health_factor >= 1
        InsufficientCollateral: if seize_value exceeds the collateral value
        ValueError: if either amount rounds down to zero
    """
    if not health.is_liquidatable:
        raise NotBelowHealthFactor(
            f"{health.owner} has health factor {health.health_factor}, not below 1"
        )

    liquidation_value = health.borrowed_value * close_factor
    seize_value = liquidation_value * (ONE + liquidation_bonus)
    if seize_value > health.collateral_value:
        raise InsufficientCollateral(
            f"seizing {seize_value} exceeds {health.owner}'s collateral value "
            f"of {health.collateral_value}"
        )

    repay_amount = _floor_amount(liquidation_value, health.borrowed_price)
    if repay_amount <= 0:
        raise ValueError(
            f"liquidation of {health.owner} repays less than one base unit of "
            f"{health.borrowed_asset_id}"
        )
    paid_value = Decimal(repay_amount) * health.borrowed_price
    seize_amount = _floor_amount(paid_value * (ONE + liquidation_bonus), health.collateral_price)
    if seize_amount <= 0:
        raise ValueError(
            f"liquidation of {health.owner} seizes less than one base unit of "
            f"{health.collateral_asset_id}"
        )
    return liquidation_value, seize_value, repay_amount, seize_amount


def build_liquidation(
    view: LedgerView,
    pricing_source: PricingSource,
    liquidator: str,
    collateral_asset_id: str,
    borrowed_asset_id: str,
    target_user: str,
    max_age: int,
) -> Tuple[PendingTransaction, LiquidationResult]:
    """
    Build a liquidation of target_user's borrowed_asset_id debt.

    Returns:
        (PendingTransaction, LiquidationResult). The transaction moves
        repay_amount of the borrowed asset from the liquidator to the
        borrowed pool and seize_amount of collateral from the collateral
        pool to the liquidator, and rewrites both pools and the position.

    Raises:
        UnsupportedAsset: if either asset is not in the target's position
        StaleOrMissingPrice: if either price is unusable
        NotBelowHealthFactor: if the position is healthy
        InsufficientCollateral: if the seizure exceeds the collateral
        InsufficientLiquidity: if the collateral pool cannot release it
    """
    now = view.current_time

    position_raw, position = load_position_record(view, target_user)
    collateral_side = side_of(position, collateral_asset_id)
    debt_side = side_of(position, borrowed_asset_id)

    collateral_raw, collateral_terms, collateral_pool = load_accrued_pool(
        view, collateral_asset_id, now
    )
    borrowed_raw, borrowed_terms, borrowed_pool = load_accrued_pool(
        view, borrowed_asset_id, now
    )
    collateral_quote = fetch_price(pricing_source, collateral_asset_id, now, max_age)
    borrowed_quote = fetch_price(pricing_source, borrowed_asset_id, now, max_age)

    health = calculate_health(
        position,
        collateral_asset_id,
        borrowed_asset_id,
        collateral_terms,
        collateral_pool,
        borrowed_pool,
        collateral_quote.price,
        borrowed_quote.price,
    )
    liquidation_value, seize_value, repay_amount, seize_amount = calculate_liquidation_amounts(
        health,
        borrowed_terms.liquidation_close_factor,
        collateral_terms.liquidation_bonus,
    )

    liquidity = pool_liquidity(view, collateral_asset_id, collateral_pool)
    if seize_amount > liquidity:
        raise InsufficientLiquidity(
            f"pool {collateral_asset_id} holds {liquidity} un-borrowed, "
            f"cannot release {seize_amount} to the liquidator"
        )

    # Debt leg, as in repay
    debt_balance = get_balance(position, debt_side)
    debt_burned = burn_shares_for_value(
        repay_amount,
        borrowed_pool.total_borrow_value,
        borrowed_pool.total_borrow_shares,
        debt_balance.borrowed_shares,
        holder_value=health.borrowed_amount,
        round_up=False,
    )
    new_borrowed_pool = with_borrow_side(
        borrowed_pool,
        borrowed_pool.total_borrow_value - repay_amount,
        borrowed_pool.total_borrow_shares - debt_burned,
    )

    # Collateral leg, as in withdraw
    collateral_balance = get_balance(position, collateral_side)
    collateral_burned = burn_shares_for_value(
        seize_amount,
        collateral_pool.total_deposit_value,
        collateral_pool.total_deposit_shares,
        collateral_balance.deposited_shares,
        holder_value=health.collateral_amount,
        round_up=True,
    )
    new_collateral_pool = with_deposit_side(
        collateral_pool,
        collateral_pool.total_deposit_value - seize_amount,
        collateral_pool.total_deposit_shares - collateral_burned,
    )

    new_position = touch_borrow(touch_deposit(position, now), now)
    new_position = with_balance(
        new_position,
        debt_side,
        replace(debt_balance, borrowed_shares=debt_balance.borrowed_shares - debt_burned),
    )
    collateral_balance = get_balance(new_position, collateral_side)
    new_position = with_balance(
        new_position,
        collateral_side,
        replace(
            collateral_balance,
            deposited_shares=collateral_balance.deposited_shares - collateral_burned,
        ),
    )

    contract_id = f"liquidate_{target_user}_{borrowed_asset_id}_{collateral_asset_id}"
    moves = [
        Move(
            quantity=Decimal(repay_amount),
            unit_symbol=borrowed_asset_id,
            source=liquidator,
            dest=pool_wallet(borrowed_asset_id),
            contract_id=contract_id,
        ),
        Move(
            quantity=Decimal(seize_amount),
            unit_symbol=collateral_asset_id,
            source=pool_wallet(collateral_asset_id),
            dest=liquidator,
            contract_id=contract_id,
        ),
    ]
    state_changes = [
        pool_change(borrowed_asset_id, borrowed_raw, borrowed_terms, new_borrowed_pool),
        pool_change(collateral_asset_id, collateral_raw, collateral_terms, new_collateral_pool),
        position_change(position_raw, new_position),
    ]
    origin = TransactionOrigin(
        OriginType.LIQUIDATION, liquidator, position_symbol(target_user), "LIQUIDATE"
    )
    pending = build_transaction(view, moves, state_changes, origin)

    result = LiquidationResult(
        target_user=target_user,
        liquidator=liquidator,
        collateral_asset_id=collateral_asset_id,
        borrowed_asset_id=borrowed_asset_id,
        health_factor=health.health_factor,
        liquidation_value=liquidation_value,
        seize_value=seize_value,
        repay_amount=repay_amount,
        seize_amount=seize_amount,
        debt_shares_burned=debt_burned,
        collateral_shares_burned=collateral_burned,
    )
    return pending, result


def compute_liquidation(
    view: LedgerView,
    pricing_source: PricingSource,
    liquidator: str,
    collateral_asset_id: str,
    borrowed_asset_id: str,
    target_user: str,
    max_age: int,
) -> PendingTransaction:
    """
    Liquidate part of target_user's debt. See build_liquidation().

    Example:
        pending = compute_liquidation(ledger, feed, "keeper", "SOL", "USDC",
                                      "alice", max_age=100)
        ledger.execute(pending)
    """
    pending, _ = build_liquidation(
        view, pricing_source, liquidator, collateral_asset_id,
        borrowed_asset_id, target_user, max_age,
    )
    return pending
