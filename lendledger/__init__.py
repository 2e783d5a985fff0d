"""
lendledger - Collateralized lending ledger

Per-asset pools track deposits and borrows as shares of continuously
accruing totals. Users borrow one asset against a deposit of another, and
unhealthy positions can be partially liquidated by third parties.

Usage:
    from lendledger import Ledger, LendingMarket, MarketConfig, StaticPricingSource, token

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

    ledger.issue("alice", "SOL", 100)
    market.deposit("alice", "SOL", 100)
    market.borrow("alice", "USDC", 5000)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    token,
    checked_u64,
    U64_MAX,
    SYSTEM_WALLET,
    DEFAULT_MAX_PRICE_AGE,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_POOL,
    UNIT_TYPE_POSITION,
    # Errors
    LedgerError,
    InsufficientFunds,
    InsufficientLiquidity,
    OverBorrowableAmount,
    OverRepayAmount,
    NotBelowHealthFactor,
    InsufficientCollateral,
    InsufficientShares,
    StaleOrMissingPrice,
    TransferFailure,
    StaleState,
    ArithmeticFailure,
    NegativeElapsedTime,
    UnsupportedAsset,
    UnitNotRegistered,
    WalletNotRegistered,
)

# Ledger
from .ledger import Ledger

# Pricing
from .pricing_source import (
    PriceQuote,
    PricingSource,
    StaticPricingSource,
    TimeSeriesPricingSource,
    fetch_price,
)

# Accrual and shares
from .accrual import elapsed_seconds, growth_factor, accrued_value, accrue_since
from .shares import value_per_share, shares_to_value, mint_shares, burn_shares_for_value

# Records
from .units import (
    PoolTerms, PoolState, create_pool, initialize_bank, load_pool, accrue_pool,
    available_liquidity, pool_liquidity, utilization, check_pool_invariants,
    pool_symbol, pool_wallet,
    AssetSide, SideBalance, PositionState, create_position, initialize_user,
    load_position, side_of, other_asset, position_symbol,
)

# Engines
from .health import HealthResult, calculate_health, check_borrow_limit, assess_health
from .lending import compute_deposit, compute_withdraw, compute_borrow, compute_repay
from .liquidation import (
    LiquidationResult,
    calculate_liquidation_amounts,
    build_liquidation,
    compute_liquidation,
)

# Facade
from .market import MarketConfig, LendingMarket


__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin',
    'OriginType', 'build_transaction', 'Unit', 'UnitStateChange', 'ExecuteResult',
    'token', 'checked_u64',
    'U64_MAX', 'SYSTEM_WALLET', 'DEFAULT_MAX_PRICE_AGE',
    'UNIT_TYPE_TOKEN', 'UNIT_TYPE_POOL', 'UNIT_TYPE_POSITION',
    # Errors
    'LedgerError', 'InsufficientFunds', 'InsufficientLiquidity', 'OverBorrowableAmount',
    'OverRepayAmount', 'NotBelowHealthFactor', 'InsufficientCollateral',
    'InsufficientShares', 'StaleOrMissingPrice', 'TransferFailure', 'StaleState',
    'ArithmeticFailure', 'NegativeElapsedTime', 'UnsupportedAsset',
    'UnitNotRegistered', 'WalletNotRegistered',
    # Ledger
    'Ledger',
    # Pricing
    'PriceQuote', 'PricingSource', 'StaticPricingSource', 'TimeSeriesPricingSource',
    'fetch_price',
    # Accrual and shares
    'elapsed_seconds', 'growth_factor', 'accrued_value', 'accrue_since',
    'value_per_share', 'shares_to_value', 'mint_shares', 'burn_shares_for_value',
    # Pools
    'PoolTerms', 'PoolState', 'create_pool', 'initialize_bank', 'load_pool',
    'accrue_pool', 'available_liquidity', 'pool_liquidity', 'utilization',
    'check_pool_invariants', 'pool_symbol', 'pool_wallet',
    # Positions
    'AssetSide', 'SideBalance', 'PositionState', 'create_position', 'initialize_user',
    'load_position', 'side_of', 'other_asset', 'position_symbol',
    # Health
    'HealthResult', 'calculate_health', 'check_borrow_limit', 'assess_health',
    # Lending
    'compute_deposit', 'compute_withdraw', 'compute_borrow', 'compute_repay',
    # Liquidation
    'LiquidationResult', 'calculate_liquidation_amounts', 'build_liquidation',
    'compute_liquidation',
    # Facade
    'MarketConfig', 'LendingMarket',
]

__version__ = '1.0.0'
