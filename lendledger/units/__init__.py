"""
Units module - Pool and Position records.

Pools and positions are stored in the ledger as unit state. Each module
provides frozen dataclasses, the load/to_state_dict adapters, and the
factory that registers the record.
"""

# Pools
from .pool import (
    PoolTerms,
    PoolState,
    create_pool,
    initialize_bank,
    load_pool,
    load_accrued_pool,
    accrue_pool,
    available_liquidity,
    pool_liquidity,
    utilization,
    check_pool_invariants,
    pool_symbol,
    pool_wallet,
)

# Positions
from .position import (
    AssetSide,
    SideBalance,
    PositionState,
    create_position,
    initialize_user,
    load_position,
    side_of,
    asset_of,
    other_asset,
    position_symbol,
)

__all__ = [
    'PoolTerms', 'PoolState', 'create_pool', 'initialize_bank', 'load_pool',
    'load_accrued_pool', 'accrue_pool', 'available_liquidity', 'pool_liquidity', 'utilization',
    'check_pool_invariants', 'pool_symbol', 'pool_wallet',
    'AssetSide', 'SideBalance', 'PositionState', 'create_position',
    'initialize_user', 'load_position', 'side_of', 'asset_of', 'other_asset',
    'position_symbol',
]
