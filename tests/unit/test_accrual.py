"""
test_accrual.py - Unit tests for continuous-compounding accrual

Tests:
- elapsed_seconds: whole seconds, truncation, negative elapsed rejected
- accrued_value: zero elapsed, zero rate, known growth, overflow
- checkpoint-interval independence within truncation
- input validation
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from lendledger import (
    elapsed_seconds, growth_factor, accrued_value, accrue_since,
    NegativeElapsedTime, ArithmeticFailure, U64_MAX,
)


T0 = datetime(2025, 1, 15, 9, 30)


class TestElapsedSeconds:
    """Tests for elapsed_seconds."""

    def test_whole_seconds(self):
        assert elapsed_seconds(T0, T0 + timedelta(minutes=2)) == 120

    def test_same_instant_is_zero(self):
        assert elapsed_seconds(T0, T0) == 0

    def test_partial_seconds_truncate(self):
        assert elapsed_seconds(T0, T0 + timedelta(seconds=5, milliseconds=999)) == 5

    def test_checkpoint_after_now_raises(self):
        with pytest.raises(NegativeElapsedTime):
            elapsed_seconds(T0 + timedelta(seconds=1), T0)


class TestAccruedValue:
    """Tests for accrued_value."""

    def test_zero_elapsed_returns_principal(self):
        assert accrued_value(1_000_000, Decimal("0.0001"), 0) == 1_000_000

    def test_zero_rate_returns_principal(self):
        assert accrued_value(1_000_000, Decimal("0"), 86_400) == 1_000_000

    def test_zero_principal_stays_zero(self):
        assert accrued_value(0, Decimal("0.0001"), 86_400) == 0

    def test_known_growth_truncates(self):
        """1,000,000 * e^0.01 = 1,010,050.167..."""
        assert accrued_value(1_000_000, Decimal("0.0001"), 100) == 1_010_050

    def test_growth_factor(self):
        factor = growth_factor(Decimal("0.0001"), 100)
        assert Decimal("1.010050167") < factor < Decimal("1.010050168")

    def test_float_rate_accepted(self):
        assert accrued_value(1_000_000, 0.0001, 100) == 1_010_050

    def test_positive_growth_exceeds_principal(self):
        assert accrued_value(10_000, Decimal("0.001"), 10) > 10_000

    def test_two_steps_match_one_within_truncation(self):
        direct = accrued_value(1_000_000, Decimal("0.0001"), 100)
        stepped = accrued_value(accrued_value(1_000_000, Decimal("0.0001"), 50), Decimal("0.0001"), 50)
        assert 0 <= direct - stepped <= 2

    def test_negative_elapsed_raises(self):
        with pytest.raises(NegativeElapsedTime):
            accrued_value(1_000, Decimal("0.0001"), -1)

    def test_negative_rate_rejected(self):
        with pytest.raises(ValueError):
            accrued_value(1_000, Decimal("-0.0001"), 10)

    def test_negative_principal_rejected(self):
        with pytest.raises(ValueError):
            accrued_value(-1, Decimal("0.0001"), 10)

    def test_overflow_raises(self):
        with pytest.raises(ArithmeticFailure):
            accrued_value(U64_MAX, Decimal("0.01"), 100)


class TestAccrueSince:
    """Tests for accrue_since."""

    def test_uses_checkpoint_distance(self):
        assert accrue_since(1_000_000, Decimal("0.0001"), T0, T0 + timedelta(seconds=100)) == 1_010_050

    def test_future_checkpoint_raises(self):
        with pytest.raises(NegativeElapsedTime):
            accrue_since(1_000_000, Decimal("0.0001"), T0 + timedelta(hours=1), T0)
