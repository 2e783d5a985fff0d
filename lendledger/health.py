"""
health.py - Valuation and health of a lending position

A position is valued for one (collateral asset, borrowed asset) pair:

    collateral_value = accrued deposit value of the collateral asset * price
    borrowed_value   = accrued debt of the borrowed asset * price
    borrowable_value = collateral_value * min(liquidation_threshold, max_ltv)
    health_factor    = collateral_value * liquidation_threshold / borrowed_value

Risk parameters come from the collateral asset's pool. With no debt the
health factor is Infinity. A position is liquidatable when health_factor < 1.

calculate_health() is pure; assess_health() reads the ledger and the price
feed, accrues both pools to the ledger's time, and delegates.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal

from .core import (
    LedgerView, ZERO, ONE,
    OverBorrowableAmount,
    to_decimal,
)
from .pricing_source import PricingSource, fetch_price
from .shares import shares_to_value
from .units.pool import PoolTerms, PoolState, load_accrued_pool
from .units.position import PositionState, get_balance, load_position, side_of


INFINITE_HEALTH = Decimal("Infinity")


@dataclass(frozen=True, slots=True)
class HealthResult:
    """
    Immutable valuation of a position.

    Amounts are in base units of each asset; values are in the price feed's
    base currency.
    """
    owner: str
    collateral_asset_id: str
    borrowed_asset_id: str
    collateral_amount: int
    borrowed_amount: int
    collateral_price: Decimal
    borrowed_price: Decimal
    collateral_value: Decimal
    borrowed_value: Decimal
    liquidation_threshold: Decimal
    max_ltv: Decimal
    borrowable_value: Decimal
    health_factor: Decimal

    def __post_init__(self):
        """Convert float values to Decimal to ensure type consistency."""
        for name in ('collateral_price', 'borrowed_price', 'collateral_value',
                     'borrowed_value', 'liquidation_threshold', 'max_ltv',
                     'borrowable_value', 'health_factor'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))

    @property
    def is_liquidatable(self) -> bool:
        return self.health_factor < ONE

    @property
    def remaining_borrowable_value(self) -> Decimal:
        """Further debt value the collateral supports (never negative)."""
        return max(ZERO, self.borrowable_value - self.borrowed_value)


def calculate_health(
    position: PositionState,
    collateral_asset_id: str,
    borrowed_asset_id: str,
    collateral_terms: PoolTerms,
    collateral_state: PoolState,
    borrowed_state: PoolState,
    collateral_price: Decimal,
    borrowed_price: Decimal,
    additional_debt: int = 0,
) -> HealthResult:
    """
    Value a position from explicit inputs.

    PURE FUNCTION - pool states must already be accrued to the valuation time.

    Args:
        position: The user's position
        collateral_asset_id: Asset whose deposits back the debt
        borrowed_asset_id: Asset whose debt is measured
        collateral_terms: Terms of the collateral pool (risk parameters)
        collateral_state: Accrued state of the collateral pool
        borrowed_state: Accrued state of the borrowed pool
        collateral_price: Price of one base unit of collateral
        borrowed_price: Price of one base unit of the borrowed asset
        additional_debt: Hypothetical extra debt in borrowed base units, used
            to test a borrow before it happens

    Returns:
        HealthResult

    Raises:
        ValueError: if the two assets are the same or additional_debt < 0
        UnsupportedAsset: if either asset is not in the position

    Example:
        # Would borrowing 400 more keep the position within its limit?
        result = calculate_health(position, "SOL", "USDC", sol_terms,
                                  sol_state, usdc_state, Decimal("180"),
                                  Decimal("1"), additional_debt=400)
    """
    if collateral_asset_id == borrowed_asset_id:
        raise ValueError(
            f"collateral and borrowed asset must differ, both are {collateral_asset_id}"
        )
    if additional_debt < 0:
        raise ValueError(f"additional_debt cannot be negative, got {additional_debt}")

    collateral_price = to_decimal(collateral_price)
    borrowed_price = to_decimal(borrowed_price)

    collateral_shares = get_balance(position, side_of(position, collateral_asset_id)).deposited_shares
    debt_shares = get_balance(position, side_of(position, borrowed_asset_id)).borrowed_shares

    collateral_amount = shares_to_value(
        collateral_shares,
        collateral_state.total_deposit_value,
        collateral_state.total_deposit_shares,
    )
    borrowed_amount = shares_to_value(
        debt_shares,
        borrowed_state.total_borrow_value,
        borrowed_state.total_borrow_shares,
    ) + additional_debt

    collateral_value = Decimal(collateral_amount) * collateral_price
    borrowed_value = Decimal(borrowed_amount) * borrowed_price
    threshold = collateral_terms.liquidation_threshold
    borrowable_value = collateral_value * min(threshold, collateral_terms.max_ltv)

    if borrowed_value == ZERO:
        health_factor = INFINITE_HEALTH
    else:
        health_factor = (collateral_value * threshold) / borrowed_value

    return HealthResult(
        owner=position.owner,
        collateral_asset_id=collateral_asset_id,
        borrowed_asset_id=borrowed_asset_id,
        collateral_amount=collateral_amount,
        borrowed_amount=borrowed_amount,
        collateral_price=collateral_price,
        borrowed_price=borrowed_price,
        collateral_value=collateral_value,
        borrowed_value=borrowed_value,
        liquidation_threshold=threshold,
        max_ltv=collateral_terms.max_ltv,
        borrowable_value=borrowable_value,
        health_factor=health_factor,
    )


def check_borrow_limit(result: HealthResult) -> None:
    """
    Require the (post-borrow) debt to fit within the borrow limit.

    Raises:
        OverBorrowableAmount: if borrowed_value > borrowable_value
    """
    if result.borrowed_value > result.borrowable_value:
        raise OverBorrowableAmount(
            f"{result.owner}: debt of {result.borrowed_value} {result.borrowed_asset_id} value "
            f"exceeds borrowable {result.borrowable_value} against "
            f"{result.collateral_value} of {result.collateral_asset_id}"
        )


def assess_health(
    view: LedgerView,
    pricing_source: PricingSource,
    owner: str,
    collateral_asset_id: str,
    borrowed_asset_id: str,
    max_age: int,
    additional_debt: int = 0,
) -> HealthResult:
    """
    Value a user's position at the ledger's current time.

    Raises:
        StaleOrMissingPrice: if either price is unusable
        UnitNotRegistered: if the user or a pool does not exist
    """
    now = view.current_time
    position = load_position(view, owner)
    _, collateral_terms, collateral_state = load_accrued_pool(view, collateral_asset_id, now)
    _, _, borrowed_state = load_accrued_pool(view, borrowed_asset_id, now)
    collateral_quote = fetch_price(pricing_source, collateral_asset_id, now, max_age)
    borrowed_quote = fetch_price(pricing_source, borrowed_asset_id, now, max_age)

    return calculate_health(
        position,
        collateral_asset_id,
        borrowed_asset_id,
        collateral_terms,
        collateral_state,
        borrowed_state,
        collateral_quote.price,
        borrowed_quote.price,
        additional_debt=additional_debt,
    )
