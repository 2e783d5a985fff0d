"""
test_position.py - Unit tests for position records

Tests:
- create_position factory and validation
- AssetSide resolution (side_of, asset_of, other_asset)
- load_position / to_state_dict adapters
- accrual checkpoints
- initialize_user against a ledger
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from lendledger import (
    ExecuteResult,
    AssetSide, SideBalance, create_position, initialize_user, load_position,
    side_of, other_asset, position_symbol,
    ArithmeticFailure, NegativeElapsedTime, UnsupportedAsset, UnitNotRegistered,
    UNIT_TYPE_POSITION,
)
from lendledger.units.position import (
    asset_of, get_balance, with_balance, touch_borrow, touch_deposit,
    position_from_state_dict, to_state_dict,
)
from tests.market_setup import T0, make_market


def _position(owner="alice"):
    return position_from_state_dict(create_position(owner, "USDC", "SOL", T0).state)


class TestCreatePosition:
    """Tests for create_position factory function."""

    def test_create_basic_position(self):
        unit = create_position("alice", "USDC", "SOL", T0)

        assert unit.symbol == "POSITION:alice"
        assert unit.unit_type == UNIT_TYPE_POSITION

        state = unit.state
        assert state['owner'] == "alice"
        assert state['stable_asset_id'] == "USDC"
        assert state['collateral_asset_id'] == "SOL"
        assert state['asset_sides'] == {"SOL": "collateral", "USDC": "stable"}
        assert state['collateral_deposited_shares'] == 0
        assert state['stable_borrowed_shares'] == 0
        assert state['deposit_accrual_checkpoint'] == T0
        assert state['borrow_accrual_checkpoint'] == T0

    def test_same_asset_twice_rejected(self):
        with pytest.raises(ValueError):
            create_position("alice", "USDC", "USDC", T0)

    def test_empty_owner_rejected(self):
        with pytest.raises(ValueError):
            create_position("", "USDC", "SOL", T0)

    def test_symbol(self):
        assert position_symbol("bob") == "POSITION:bob"


class TestAssetSides:
    """Asset-to-side resolution."""

    def test_side_of(self):
        position = _position()
        assert side_of(position, "SOL") is AssetSide.COLLATERAL
        assert side_of(position, "USDC") is AssetSide.STABLE

    def test_unsupported_asset(self):
        with pytest.raises(UnsupportedAsset):
            side_of(_position(), "ETH")

    def test_asset_of(self):
        position = _position()
        assert asset_of(position, AssetSide.COLLATERAL) == "SOL"
        assert asset_of(position, AssetSide.STABLE) == "USDC"

    def test_other_asset(self):
        position = _position()
        assert other_asset(position, "SOL") == "USDC"
        assert other_asset(position, "USDC") == "SOL"

    def test_with_balance_touches_one_side(self):
        position = with_balance(_position(), AssetSide.STABLE, SideBalance(10, 4))

        assert get_balance(position, AssetSide.STABLE) == SideBalance(10, 4)
        assert get_balance(position, AssetSide.COLLATERAL) == SideBalance()

    def test_negative_shares_rejected(self):
        with pytest.raises(ArithmeticFailure):
            SideBalance(deposited_shares=-1)


class TestAdapters:

    def test_round_trip(self):
        position = with_balance(_position(), AssetSide.COLLATERAL, SideBalance(1000, 0))
        assert position_from_state_dict(to_state_dict(position)) == position


class TestCheckpoints:
    """Accrual checkpoints only move forward."""

    def test_touch_deposit_advances(self):
        later = T0 + timedelta(hours=1)
        position = touch_deposit(_position(), later)
        assert position.deposit_accrual_checkpoint == later
        assert position.borrow_accrual_checkpoint == T0

    def test_touch_borrow_advances(self):
        later = T0 + timedelta(hours=1)
        assert touch_borrow(_position(), later).borrow_accrual_checkpoint == later

    def test_checkpoint_in_future_rejected(self):
        with pytest.raises(NegativeElapsedTime):
            touch_deposit(_position(), T0 - timedelta(seconds=1))


class TestInitializeUser:
    """Tests for initialize_user against a ledger."""

    def test_registers_position(self):
        market = make_market()
        ledger = market.ledger

        result = ledger.execute(initialize_user(ledger, "alice", "USDC", "SOL"))

        assert result == ExecuteResult.APPLIED
        position = load_position(ledger, "alice")
        assert position.owner == "alice"
        assert position.collateral == SideBalance()
        assert position.deposit_accrual_checkpoint == ledger.current_time

    def test_missing_pool_raises(self, ledger):
        with pytest.raises(UnitNotRegistered):
            initialize_user(ledger, "alice", "USDC", "SOL")

    def test_missing_position_raises(self, ledger):
        with pytest.raises(UnitNotRegistered):
            load_position(ledger, "nobody")
