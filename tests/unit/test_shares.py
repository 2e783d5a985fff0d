"""
test_shares.py - Unit tests for share accounting

Tests:
- value_per_share, including the empty side
- mint_shares: bootstrap, rounding direction, dust, guards
- burn_shares_for_value: rounding direction, whole-balance burn, guards
- shares_to_value
"""

import pytest
from decimal import Decimal

from lendledger import (
    value_per_share, mint_shares, burn_shares_for_value, shares_to_value,
    ArithmeticFailure, InsufficientShares,
)


class TestValuePerShare:

    def test_empty_side_is_one(self):
        assert value_per_share(0, 0) == Decimal("1")

    def test_accrued_side(self):
        assert value_per_share(1500, 1000) == Decimal("1.5")


class TestMintShares:
    """Tests for mint_shares."""

    def test_bootstrap_is_one_to_one(self):
        assert mint_shares(1000, 0, 0) == 1000

    def test_mints_pro_rata(self):
        assert mint_shares(500, 1000, 1000) == 500

    def test_rounds_down_by_default(self):
        # 100 * 1000 / 1500 = 66.67
        assert mint_shares(100, 1500, 1000) == 66

    def test_rounds_up_on_request(self):
        assert mint_shares(100, 1500, 1000, round_up=True) == 67

    def test_multiply_before_divide_keeps_small_deposits(self):
        # 10 / 1000 would be 0 if divided first
        assert mint_shares(10, 1000, 1000) == 10

    def test_zero_value_rejected(self):
        with pytest.raises(ValueError):
            mint_shares(0, 1000, 1000)

    def test_negative_value_rejected(self):
        with pytest.raises(ValueError):
            mint_shares(-5, 1000, 1000)

    def test_dust_worth_less_than_a_share_rejected(self):
        with pytest.raises(ValueError):
            mint_shares(1, 3000, 1000)

    def test_shares_against_zero_value_raises(self):
        with pytest.raises(ArithmeticFailure):
            mint_shares(100, 0, 1000)


class TestBurnSharesForValue:
    """Tests for burn_shares_for_value."""

    def test_rounds_up_by_default(self):
        # 100 * 1000 / 1500 = 66.67
        assert burn_shares_for_value(100, 1500, 1000, 500) == 67

    def test_rounds_down_on_request(self):
        assert burn_shares_for_value(100, 1500, 1000, 500, round_up=False) == 66

    def test_exact_division(self):
        assert burn_shares_for_value(300, 1500, 1000, 500) == 200

    def test_whole_balance_burns_all_shares(self):
        assert burn_shares_for_value(750, 1500, 1000, 500, holder_value=750) == 500

    def test_exceeding_holder_shares_raises(self):
        with pytest.raises(InsufficientShares):
            burn_shares_for_value(1000, 1500, 1000, 500)

    def test_zero_value_rejected(self):
        with pytest.raises(ValueError):
            burn_shares_for_value(0, 1500, 1000, 500)

    def test_empty_side_raises(self):
        with pytest.raises(ArithmeticFailure):
            burn_shares_for_value(10, 0, 0, 0)


class TestSharesToValue:
    """Tests for shares_to_value."""

    def test_pro_rata_value(self):
        assert shares_to_value(500, 1500, 1000) == 750

    def test_rounds_down(self):
        assert shares_to_value(1, 1500, 1000) == 1

    def test_no_shares_no_value(self):
        assert shares_to_value(0, 0, 0) == 0

    def test_shares_without_outstanding_raises(self):
        with pytest.raises(ArithmeticFailure):
            shares_to_value(10, 0, 0)

    def test_more_than_outstanding_raises(self):
        with pytest.raises(ArithmeticFailure):
            shares_to_value(2000, 1500, 1000)
