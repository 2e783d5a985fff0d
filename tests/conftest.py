"""
conftest.py - Shared pytest fixtures for lending ledger tests

Provides common fixtures used across unit, functional and conformance tests:
- A ledger with the SOL and USDC tokens registered
- A market with both pools initialized
- A funded market: bob supplies USDC, alice holds SOL to deposit
- A funded market whose pools accrue interest
"""

import pytest
from decimal import Decimal

from tests.market_setup import make_ledger, make_market, fund


@pytest.fixture
def ledger():
    """Ledger at T0 with SOL and USDC tokens."""
    return make_ledger()


@pytest.fixture
def market():
    """Market with SOL and USDC pools: threshold 0.8, max LTV 0.8, no interest."""
    return make_market()


@pytest.fixture
def funded_market():
    """Market where bob has supplied USDC and alice holds SOL."""
    return fund(make_market())


@pytest.fixture
def interest_market():
    """Funded market whose pools accrue at 1e-6 per second."""
    return fund(make_market(interest_rate=Decimal("0.000001")))
