"""
Liquidation Conformance Tests

INVARIANT: Only unhealthy positions can be liquidated, and a liquidation is
bounded by the close factor and the bonus.

    health_factor >= 1  ⟹  liquidation refused
    repay_amount * borrowed_price            <= close_factor * borrowed_value
    seize_amount * collateral_price          <= repay_amount * borrowed_price * (1 + bonus)
    seize_amount                             <= collateral held

A liquidation the liquidator cannot pay for changes nothing.
"""

import pytest
from decimal import Decimal

from hypothesis import given, settings, assume
from hypothesis import strategies as st

from lendledger import (
    InsufficientCollateral, NotBelowHealthFactor, TransferFailure,
    load_pool, pool_wallet,
)
from tests.market_setup import fund, make_market, set_price


CLOSE_FACTOR = Decimal("0.5")
BONUS = Decimal("0.1")

PRICE = st.decimals(min_value=Decimal("0.05"), max_value=Decimal("2"), places=2,
                    allow_nan=False, allow_infinity=False)


@st.composite
def loan(draw):
    """(collateral deposited, debt) with the debt inside the borrow limit at price 1."""
    collateral = draw(st.integers(min_value=10, max_value=1000))
    debt = draw(st.integers(min_value=1, max_value=collateral * 8 // 10))
    return collateral, debt


def _borrowed_market(collateral, debt, liquidator_funds=10_000):
    market = fund(make_market())
    market.deposit("alice", "SOL", collateral)
    market.borrow("alice", "USDC", debt)
    market.ledger.ensure_wallet("keeper")
    market.ledger.issue("keeper", "USDC", liquidator_funds)
    return market


class TestLiquidationGating:

    @given(loan(), PRICE)
    @settings(max_examples=150, deadline=None)
    def test_healthy_positions_are_never_liquidated(self, position, price):
        collateral, debt = position
        assume(collateral * price * Decimal("0.8") >= debt)
        market = _borrowed_market(collateral, debt)
        set_price(market, "SOL", price)

        with pytest.raises(NotBelowHealthFactor):
            market.liquidate("keeper", "SOL", "USDC", "alice")
        assert market.borrowed_amount("alice", "USDC") == debt

    @given(loan(), PRICE)
    @settings(max_examples=150, deadline=None)
    def test_liquidation_is_bounded(self, position, price):
        collateral, debt = position
        assume(collateral * price * Decimal("0.8") < debt)
        market = _borrowed_market(collateral, debt)
        set_price(market, "SOL", price)

        try:
            result = market.liquidate("keeper", "SOL", "USDC", "alice")
        except (InsufficientCollateral, ValueError):
            assert market.borrowed_amount("alice", "USDC") == debt
            return

        assert result.health_factor < 1
        assert Decimal(result.repay_amount) <= CLOSE_FACTOR * debt
        assert Decimal(result.seize_amount) * price <= Decimal(result.repay_amount) * (1 + BONUS)
        assert result.seize_amount <= collateral

        ledger = market.ledger
        assert ledger.get_balance("keeper", "USDC") == Decimal(10_000 - result.repay_amount)
        assert ledger.get_balance("keeper", "SOL") == Decimal(result.seize_amount)
        assert market.borrowed_amount("alice", "USDC") == debt - result.repay_amount
        assert market.deposited_amount("alice", "SOL") == collateral - result.seize_amount

        for asset in ("SOL", "USDC"):
            _, pool = load_pool(ledger, asset)
            assert ledger.get_balance(pool_wallet(asset), asset) == (
                pool.total_deposit_value - pool.total_borrow_value
            )


class TestLiquidationAtomicity:

    @given(st.integers(min_value=1, max_value=249))
    @settings(max_examples=30, deadline=None)
    def test_unfunded_liquidation_changes_nothing(self, funds):
        # 1000 SOL against 500 USDC at SOL = 0.5 needs 250 USDC to liquidate
        market = _borrowed_market(1000, 500, liquidator_funds=funds)
        set_price(market, "SOL", "0.5")
        ledger = market.ledger
        records = {symbol: unit.state for symbol, unit in ledger.units.items()}
        log_length = len(ledger.transaction_log)

        with pytest.raises(TransferFailure):
            market.liquidate("keeper", "SOL", "USDC", "alice")

        assert {symbol: unit.state for symbol, unit in ledger.units.items()} == records
        assert len(ledger.transaction_log) == log_length
        assert ledger.get_balance("keeper", "USDC") == Decimal(funds)
        assert ledger.get_balance("keeper", "SOL") == Decimal("0")
