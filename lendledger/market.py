"""
market.py - LendingMarket facade

Ties the engines to one Ledger and one price feed and exposes the caller
surface: initialize_bank, initialize_user, deposit, withdraw, borrow, repay
and liquidate, plus read-only views of pools, positions and health.

Each action builds its PendingTransaction against the ledger's current
snapshot and executes it immediately. Execution outcomes map to errors:

    REJECTED -> TransferFailure   (custody refused a move)
    STALE    -> StaleState        (a record changed between build and commit)

Callers that want to retry on StaleState simply call the action again; the
market never retries on its own. The caller identity is trusted as given.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

from .core import (
    PendingTransaction, Transaction, ExecuteResult,
    DEFAULT_MAX_PRICE_AGE, UNIT_TYPE_POOL,
    LedgerError, StaleState, TransferFailure,
)
from .health import HealthResult, assess_health
from .ledger import Ledger
from .lending import compute_borrow, compute_deposit, compute_repay, compute_withdraw
from .liquidation import LiquidationResult, build_liquidation
from .pricing_source import PricingSource
from .shares import shares_to_value
from .units.pool import (
    PoolTerms, PoolState,
    accrue_pool, initialize_bank, load_pool, pool_symbol, pool_wallet,
)
from .units.position import (
    PositionState,
    get_balance, initialize_user, load_position, other_asset, position_symbol, side_of,
)


@dataclass(frozen=True, slots=True)
class MarketConfig:
    """
    Market-wide settings.

    Attributes:
        max_price_age: Oldest accepted price quote, in seconds
        verbose: Print one line per action
    """
    max_price_age: int = DEFAULT_MAX_PRICE_AGE
    verbose: bool = True

    def __post_init__(self):
        if not isinstance(self.max_price_age, int):
            object.__setattr__(self, 'max_price_age', int(self.max_price_age))
        if self.max_price_age < 0:
            raise ValueError(f"max_price_age cannot be negative, got {self.max_price_age}")


class LendingMarket:
    """
    Two-asset lending market over a Ledger.

    Example:
        ledger = Ledger("main", verbose=False)
        ledger.register_unit(token("SOL", "Solana"))
        ledger.register_unit(token("USDC", "USD Coin"))
        feed = StaticPricingSource({"SOL": Decimal("180"), "USDC": Decimal("1")})
        market = LendingMarket(ledger, feed, MarketConfig(verbose=False))

        market.initialize_bank("SOL", "admin", Decimal("0.8"), Decimal("0.75"),
                               Decimal("0.05"), Decimal("0.5"), Decimal("0"))
        market.initialize_bank("USDC", "admin", Decimal("0.9"), Decimal("0.85"),
                               Decimal("0.05"), Decimal("0.5"), Decimal("0"))
        market.initialize_user("alice", "USDC")
        ledger.issue("alice", "SOL", 10)
        market.deposit("alice", "SOL", 10)
    """

    def __init__(
        self,
        ledger: Ledger,
        pricing_source: PricingSource,
        config: Optional[MarketConfig] = None,
    ):
        self.ledger = ledger
        self.pricing_source = pricing_source
        self.config = config or MarketConfig()

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def initialize_bank(
        self,
        asset_id: str,
        authority: str,
        liquidation_threshold: Decimal,
        max_ltv: Decimal,
        liquidation_bonus: Decimal,
        liquidation_close_factor: Decimal,
        interest_rate: Decimal,
    ) -> Transaction:
        """
        Create the pool for a registered asset and its custody wallet.

        Raises:
            UnitNotRegistered: if the asset is not a registered unit
            ValueError: if the pool exists or a parameter is out of range
        """
        self.ledger.get_unit(asset_id)
        if self._pool_exists(asset_id):
            raise ValueError(f"Pool for {asset_id} already initialized")

        pending = initialize_bank(
            self.ledger, asset_id, authority, liquidation_threshold, max_ltv,
            liquidation_bonus, liquidation_close_factor, interest_rate,
        )
        self.ledger.ensure_wallet(pool_wallet(asset_id))
        tx = self._submit(pending)
        self._log(f"INITIALIZE_BANK {asset_id} by {authority}")
        return tx

    def initialize_user(
        self,
        owner: str,
        stable_asset_id: str,
        collateral_asset_id: Optional[str] = None,
    ) -> Transaction:
        """
        Create a user's position and register their wallet.

        collateral_asset_id defaults to the one initialized pool other than
        stable_asset_id; it must be given when there is not exactly one.

        Raises:
            ValueError: if the position exists or the collateral asset is ambiguous
            UnitNotRegistered: if either asset has no pool
        """
        if position_symbol(owner) in self.ledger.units:
            raise ValueError(f"Position for {owner} already initialized")

        if collateral_asset_id is None:
            others = [a for a in self.pool_assets() if a != stable_asset_id]
            if len(others) != 1:
                raise ValueError(
                    f"Cannot infer collateral asset for {owner}: candidates {others}"
                )
            collateral_asset_id = others[0]

        pending = initialize_user(self.ledger, owner, stable_asset_id, collateral_asset_id)
        self.ledger.ensure_wallet(owner)
        tx = self._submit(pending)
        self._log(
            f"INITIALIZE_USER {owner} stable={stable_asset_id} collateral={collateral_asset_id}"
        )
        return tx

    # ========================================================================
    # USER ACTIONS
    # ========================================================================

    def deposit(self, owner: str, asset_id: str, amount: int) -> Transaction:
        tx = self._submit(compute_deposit(self.ledger, owner, asset_id, amount))
        self._log(f"DEPOSIT {owner} {amount} {asset_id}")
        return tx

    def withdraw(self, owner: str, asset_id: str, amount: int) -> Transaction:
        tx = self._submit(compute_withdraw(
            self.ledger, self.pricing_source, owner, asset_id, amount,
            self.config.max_price_age,
        ))
        self._log(f"WITHDRAW {owner} {amount} {asset_id}")
        return tx

    def borrow(self, owner: str, asset_id: str, amount: int) -> Transaction:
        tx = self._submit(compute_borrow(
            self.ledger, self.pricing_source, owner, asset_id, amount,
            self.config.max_price_age,
        ))
        self._log(f"BORROW {owner} {amount} {asset_id}")
        return tx

    def repay(self, owner: str, asset_id: str, amount: int) -> Transaction:
        tx = self._submit(compute_repay(self.ledger, owner, asset_id, amount))
        self._log(f"REPAY {owner} {amount} {asset_id}")
        return tx

    def liquidate(
        self,
        liquidator: str,
        collateral_asset_id: str,
        borrowed_asset_id: str,
        target_user: str,
    ) -> LiquidationResult:
        """
        Liquidate part of target_user's debt.

        Returns:
            LiquidationResult with the repaid and seized amounts
        """
        pending, result = build_liquidation(
            self.ledger, self.pricing_source, liquidator, collateral_asset_id,
            borrowed_asset_id, target_user, self.config.max_price_age,
        )
        self._submit(pending)
        self._log(
            f"LIQUIDATE {target_user} by {liquidator}: repaid {result.repay_amount} "
            f"{borrowed_asset_id}, seized {result.seize_amount} {collateral_asset_id} "
            f"(health factor {result.health_factor:.4f})"
        )
        return result

    # ========================================================================
    # READ-ONLY VIEWS
    # ========================================================================

    def pool_assets(self) -> List[str]:
        """Asset ids of all initialized pools, sorted."""
        return sorted(
            self.ledger.get_unit(symbol).state['asset_id']
            for symbol in self.ledger.list_units()
            if self.ledger.get_unit(symbol).unit_type == UNIT_TYPE_POOL
        )

    def get_pool(self, asset_id: str) -> Tuple[PoolTerms, PoolState]:
        """Pool terms and state accrued to the ledger's current time."""
        terms, state = load_pool(self.ledger, asset_id)
        return terms, accrue_pool(terms, state, self.ledger.current_time)

    def get_position(self, owner: str) -> PositionState:
        return load_position(self.ledger, owner)

    def deposited_amount(self, owner: str, asset_id: str) -> int:
        """Owner's accrued deposit of asset_id, in base units."""
        position = self.get_position(owner)
        _, pool = self.get_pool(asset_id)
        shares = get_balance(position, side_of(position, asset_id)).deposited_shares
        return shares_to_value(shares, pool.total_deposit_value, pool.total_deposit_shares)

    def borrowed_amount(self, owner: str, asset_id: str) -> int:
        """Owner's accrued debt of asset_id, in base units."""
        position = self.get_position(owner)
        _, pool = self.get_pool(asset_id)
        shares = get_balance(position, side_of(position, asset_id)).borrowed_shares
        return shares_to_value(shares, pool.total_borrow_value, pool.total_borrow_shares)

    def health(self, owner: str, borrowed_asset_id: str) -> HealthResult:
        """Health of owner's borrowed_asset_id debt against their other asset."""
        position = self.get_position(owner)
        return assess_health(
            self.ledger,
            self.pricing_source,
            owner,
            other_asset(position, borrowed_asset_id),
            borrowed_asset_id,
            self.config.max_price_age,
        )

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _pool_exists(self, asset_id: str) -> bool:
        return pool_symbol(asset_id) in self.ledger.units

    def _submit(self, pending: PendingTransaction) -> Transaction:
        result = self.ledger.execute(pending)
        if result == ExecuteResult.REJECTED:
            raise TransferFailure(self.ledger.last_rejection)
        if result == ExecuteResult.STALE:
            raise StaleState(self.ledger.last_rejection)
        for tx in reversed(self.ledger.transaction_log):
            if tx.intent_id == pending.intent_id:
                return tx
        raise LedgerError(f"executed intent {pending.intent_id} missing from transaction log")

    def _log(self, message: str) -> None:
        if self.config.verbose:
            print(f"[{self.ledger.current_time}] {message}")
