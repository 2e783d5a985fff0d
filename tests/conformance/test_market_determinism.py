"""
Determinism Conformance Tests

INVARIANT: Given identical inputs, two markets reach identical state.

    ∀ action sequences A, interest rates r:
        market1.run(A) = market2.run(A)

Intent ids, balances and records all match, including after interest
accrual over arbitrary gaps between actions.
"""

from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from lendledger import LedgerError
from tests.market_setup import advance, fund, make_market


@st.composite
def timed_action(draw):
    return (
        draw(st.integers(min_value=0, max_value=86_400)),
        draw(st.sampled_from(["deposit", "withdraw", "borrow", "repay"])),
        draw(st.sampled_from(["alice", "bob"])),
        draw(st.sampled_from(["SOL", "USDC"])),
        draw(st.integers(min_value=1, max_value=1500)),
    )


def _run(actions, rate):
    market = fund(make_market(interest_rate=rate))
    outcomes = []
    for gap, name, user, asset, amount in actions:
        advance(market, gap)
        try:
            tx = getattr(market, name)(user, asset, amount)
            outcomes.append(tx.intent_id)
        except (LedgerError, ValueError) as exc:
            outcomes.append(type(exc).__name__)
    return market, outcomes


class TestMarketDeterminism:

    @given(
        st.lists(timed_action(), min_size=1, max_size=15),
        st.sampled_from([Decimal("0"), Decimal("0.000001")]),
    )
    @settings(max_examples=40, deadline=None)
    def test_identical_runs_match(self, actions, rate):
        first, first_outcomes = _run(actions, rate)
        second, second_outcomes = _run(actions, rate)

        assert first_outcomes == second_outcomes
        assert [tx.exec_id for tx in first.ledger.transaction_log] == [
            tx.exec_id for tx in second.ledger.transaction_log
        ]
        for symbol in first.ledger.list_units():
            assert first.ledger.get_unit_state(symbol) == second.ledger.get_unit_state(symbol)
        for wallet in first.ledger.list_wallets():
            for asset in ("SOL", "USDC"):
                assert first.ledger.get_balance(wallet, asset) == second.ledger.get_balance(wallet, asset)
