"""
Market Solvency Conformance Tests

INVARIANT: Whatever sequence of user actions is attempted, at zero interest:

    vault(asset) = total_deposit_value(asset) - total_borrow_value(asset)
    Σ user shares = pool shares, on both sides of every pool
    pool shares = 0  ⟹  pool value = 0
    no user wallet balance is negative
    no position's debt exceeds its borrow limit (prices held fixed)
    Σ_{w} balance(w, u) = 0 for every asset (issuance is from the system wallet)

Refused actions (LedgerError, ValueError) are part of the sequence and must
leave every balance and record as they were.
"""

from decimal import Decimal

from hypothesis import given, settings, note
from hypothesis import strategies as st

from lendledger import LedgerError, SYSTEM_WALLET, load_pool, pool_wallet, side_of
from lendledger.units.position import get_balance
from tests.market_setup import make_market


USERS = ["alice", "bob", "carol"]
ASSETS = ["SOL", "USDC"]


@st.composite
def action(draw):
    """One attempted user action; many will be refused."""
    return (
        draw(st.sampled_from(["deposit", "withdraw", "borrow", "repay"])),
        draw(st.sampled_from(USERS)),
        draw(st.sampled_from(ASSETS)),
        draw(st.integers(min_value=1, max_value=2000)),
    )


def _market():
    market = make_market(prices={"SOL": Decimal("2"), "USDC": Decimal("1")})
    for user in USERS:
        market.initialize_user(user, "USDC")
        market.ledger.issue(user, "SOL", 1000)
        market.ledger.issue(user, "USDC", 2000)
    return market


def _snapshot(ledger):
    balances = {
        wallet: {unit: qty for unit, qty in held.items() if qty != 0}
        for wallet, held in ledger.balances.items()
    }
    records = {symbol: unit.state for symbol, unit in ledger.units.items()}
    return balances, records


def _check_invariants(market):
    ledger = market.ledger
    positions = [market.get_position(user) for user in USERS]

    for asset in ASSETS:
        _, pool = load_pool(ledger, asset)
        vault = ledger.get_balance(pool_wallet(asset), asset)
        assert vault == pool.total_deposit_value - pool.total_borrow_value

        deposit_shares = sum(
            get_balance(p, side_of(p, asset)).deposited_shares for p in positions
        )
        borrow_shares = sum(
            get_balance(p, side_of(p, asset)).borrowed_shares for p in positions
        )
        assert deposit_shares == pool.total_deposit_shares
        assert borrow_shares == pool.total_borrow_shares

        if pool.total_deposit_shares == 0:
            assert pool.total_deposit_value == 0
        if pool.total_borrow_shares == 0:
            assert pool.total_borrow_value == 0

    for wallet in ledger.list_wallets() - {SYSTEM_WALLET}:
        for asset in ASSETS:
            assert ledger.get_balance(wallet, asset) >= 0

    for user in USERS:
        for asset in ASSETS:
            health = market.health(user, asset)
            assert health.borrowed_value <= health.borrowable_value

    result = ledger.verify_double_entry({asset: Decimal("0") for asset in ASSETS})
    assert result['valid'], result['discrepancies']


class TestMarketSolvency:
    """Property-based solvency tests over random action sequences."""

    @given(st.lists(action(), min_size=1, max_size=25))
    @settings(max_examples=60, deadline=None)
    def test_invariants_hold_after_every_action(self, actions):
        market = _market()

        for name, user, asset, amount in actions:
            before = _snapshot(market.ledger)
            try:
                getattr(market, name)(user, asset, amount)
            except (LedgerError, ValueError) as exc:
                note(f"{name} {user} {amount} {asset} refused: {exc}")
                assert _snapshot(market.ledger) == before
            _check_invariants(market)

    @given(st.lists(st.integers(min_value=1, max_value=1000), min_size=1, max_size=10))
    @settings(max_examples=50, deadline=None)
    def test_deposit_then_full_withdraw_round_trip(self, amounts):
        market = _market()
        ledger = market.ledger

        for amount in amounts:
            if market.deposited_amount("alice", "SOL") + amount > 1000:
                break
            market.deposit("alice", "SOL", amount)

        held = market.deposited_amount("alice", "SOL")
        if held:
            market.withdraw("alice", "SOL", held)

        assert ledger.get_balance("alice", "SOL") == Decimal("1000")
        _, pool = load_pool(ledger, "SOL")
        assert (pool.total_deposit_value, pool.total_deposit_shares) == (0, 0)
