"""
position.py - Per-user lending positions

A position is one record per user covering exactly two assets: a collateral
asset and a stable (quote) asset. For each asset it holds the user's deposit
shares and borrow shares. Shares price against the pool's accrued totals, so
the position itself stores no values.

Each asset is tagged with an AssetSide when the position is created. Engines
resolve an asset to its side with side_of() and then work on that side's
SideBalance; no code compares asset identifiers to decide which is stable.

Storage layout:
    record unit  POSITION:<owner>   (state only, no balances)
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Tuple

from ..accrual import elapsed_seconds
from .pool import pool_symbol
from ..core import (
    LedgerView, PendingTransaction, Unit, TransactionOrigin, OriginType,
    UNIT_TYPE_POSITION,
    UnsupportedAsset,
    build_transaction, checked_u64,
    _freeze_state,
)


class AssetSide(Enum):
    """Which of a position's two assets a balance belongs to."""
    COLLATERAL = "collateral"
    STABLE = "stable"


def position_symbol(owner: str) -> str:
    """Symbol of the unit holding a user's position record."""
    return f"POSITION:{owner}"


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class SideBalance:
    """Deposit and borrow shares a user holds in one asset's pool."""
    deposited_shares: int = 0
    borrowed_shares: int = 0

    def __post_init__(self):
        checked_u64(self.deposited_shares, "deposited_shares")
        checked_u64(self.borrowed_shares, "borrowed_shares")


@dataclass(frozen=True, slots=True)
class PositionState:
    """
    Snapshot of a user's position.

    asset_sides maps each of the two asset ids to its AssetSide and is fixed
    at creation. action_count goes up by one with every committed action so
    that repeating an action from identical balances still hashes to a new
    intent.
    """
    owner: str
    stable_asset_id: str
    collateral_asset_id: str
    collateral: SideBalance
    stable: SideBalance
    deposit_accrual_checkpoint: datetime
    borrow_accrual_checkpoint: datetime
    asset_sides: Tuple[Tuple[str, AssetSide], ...] = ()
    action_count: int = 0

    def __post_init__(self):
        sides = self.asset_sides or (
            (self.collateral_asset_id, AssetSide.COLLATERAL),
            (self.stable_asset_id, AssetSide.STABLE),
        )
        object.__setattr__(self, 'asset_sides', tuple(sorted(sides, key=lambda pair: pair[0])))


def side_of(position: PositionState, asset_id: str) -> AssetSide:
    """
    Resolve an asset to its side of the position.

    Raises:
        UnsupportedAsset: if asset_id is neither of the position's assets
    """
    for candidate, side in position.asset_sides:
        if candidate == asset_id:
            return side
    raise UnsupportedAsset(
        f"{asset_id} is not an asset of {position.owner}'s position "
        f"(collateral={position.collateral_asset_id}, stable={position.stable_asset_id})"
    )


def asset_of(position: PositionState, side: AssetSide) -> str:
    """Asset id held on a side of the position."""
    for asset_id, candidate in position.asset_sides:
        if candidate is side:
            return asset_id
    raise UnsupportedAsset(f"{position.owner}'s position has no {side.value} asset")


def other_asset(position: PositionState, asset_id: str) -> str:
    """The position's asset on the opposite side from asset_id."""
    side = side_of(position, asset_id)
    for candidate, candidate_side in position.asset_sides:
        if candidate_side is not side:
            return candidate
    raise UnsupportedAsset(f"{position.owner}'s position has a single asset")


def get_balance(position: PositionState, side: AssetSide) -> SideBalance:
    if side is AssetSide.COLLATERAL:
        return position.collateral
    return position.stable


def with_balance(position: PositionState, side: AssetSide, balance: SideBalance) -> PositionState:
    """Return a copy of position with one side's balance replaced."""
    if side is AssetSide.COLLATERAL:
        return replace(position, collateral=balance)
    return replace(position, stable=balance)


def touch_deposit(position: PositionState, now: datetime) -> PositionState:
    """
    Advance the deposit accrual checkpoint to now.

    Raises:
        NegativeElapsedTime: if the stored checkpoint is after now
    """
    elapsed_seconds(position.deposit_accrual_checkpoint, now)
    return replace(position, deposit_accrual_checkpoint=now)


def touch_borrow(position: PositionState, now: datetime) -> PositionState:
    """
    Advance the borrow accrual checkpoint to now.

    Raises:
        NegativeElapsedTime: if the stored checkpoint is after now
    """
    elapsed_seconds(position.borrow_accrual_checkpoint, now)
    return replace(position, borrow_accrual_checkpoint=now)


# ============================================================================
# ADAPTERS
# ============================================================================

def load_position(view: LedgerView, owner: str) -> PositionState:
    """
    Load a user's position from the ledger.

    Raises:
        UnitNotRegistered: if the user has not been initialized
    """
    return position_from_state_dict(view.get_unit_state(position_symbol(owner)))


def position_from_state_dict(raw: Dict[str, Any]) -> PositionState:
    """Build a PositionState from a stored record."""
    return PositionState(
        owner=raw['owner'],
        stable_asset_id=raw['stable_asset_id'],
        collateral_asset_id=raw['collateral_asset_id'],
        collateral=SideBalance(
            deposited_shares=int(raw.get('collateral_deposited_shares', 0)),
            borrowed_shares=int(raw.get('collateral_borrowed_shares', 0)),
        ),
        stable=SideBalance(
            deposited_shares=int(raw.get('stable_deposited_shares', 0)),
            borrowed_shares=int(raw.get('stable_borrowed_shares', 0)),
        ),
        deposit_accrual_checkpoint=raw['deposit_accrual_checkpoint'],
        borrow_accrual_checkpoint=raw['borrow_accrual_checkpoint'],
        asset_sides=tuple(
            (asset_id, AssetSide(side)) for asset_id, side in raw['asset_sides'].items()
        ),
        action_count=int(raw.get('action_count', 0)),
    )


def to_state_dict(position: PositionState) -> Dict[str, Any]:
    """Convert a PositionState back to a record for ledger storage."""
    return {
        'owner': position.owner,
        'stable_asset_id': position.stable_asset_id,
        'collateral_asset_id': position.collateral_asset_id,
        'asset_sides': {asset_id: side.value for asset_id, side in position.asset_sides},
        'collateral_deposited_shares': position.collateral.deposited_shares,
        'collateral_borrowed_shares': position.collateral.borrowed_shares,
        'stable_deposited_shares': position.stable.deposited_shares,
        'stable_borrowed_shares': position.stable.borrowed_shares,
        'deposit_accrual_checkpoint': position.deposit_accrual_checkpoint,
        'borrow_accrual_checkpoint': position.borrow_accrual_checkpoint,
        'action_count': position.action_count,
    }


# ============================================================================
# CREATION
# ============================================================================

def create_position(
    owner: str,
    stable_asset_id: str,
    collateral_asset_id: str,
    created_at: datetime,
) -> Unit:
    """
    Create an empty position record for a user.

    Args:
        owner: The user's identity
        stable_asset_id: Asset treated as the stable/quote unit
        collateral_asset_id: The other supported asset
        created_at: Initial value of both accrual checkpoints

    Raises:
        ValueError: if an identifier is empty or the two assets are the same
    """
    if not owner or not owner.strip():
        raise ValueError("owner cannot be empty")
    if not stable_asset_id or not collateral_asset_id:
        raise ValueError("both asset ids are required")
    if stable_asset_id == collateral_asset_id:
        raise ValueError(
            f"stable and collateral asset must differ, both are {stable_asset_id}"
        )

    position = PositionState(
        owner=owner,
        stable_asset_id=stable_asset_id,
        collateral_asset_id=collateral_asset_id,
        collateral=SideBalance(),
        stable=SideBalance(),
        deposit_accrual_checkpoint=created_at,
        borrow_accrual_checkpoint=created_at,
    )
    return Unit(
        symbol=position_symbol(owner),
        name=f"Lending position of {owner}",
        unit_type=UNIT_TYPE_POSITION,
        _frozen_state=_freeze_state(to_state_dict(position)),
    )


def initialize_user(
    view: LedgerView,
    owner: str,
    stable_asset_id: str,
    collateral_asset_id: str,
) -> PendingTransaction:
    """
    Build the transaction that registers a user's position.

    Both assets must already have pools; the ledger refuses a second
    registration for the same owner.
    """
    view.get_unit(pool_symbol(stable_asset_id))
    view.get_unit(pool_symbol(collateral_asset_id))

    unit = create_position(owner, stable_asset_id, collateral_asset_id, view.current_time)
    origin = TransactionOrigin(OriginType.ADMIN, owner, unit.symbol, "INITIALIZE_USER")
    return build_transaction(view, [], origin=origin, units_to_create=(unit,))
