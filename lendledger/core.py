"""
Core types and pure helpers for the lending ledger.

This module provides the foundational data structures shared by every engine:
1. Protocols: LedgerView for read-only access to balances and records
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the lending error taxonomy
4. Constants: u64 range, price staleness default, unit types
5. Integer helpers: checked u64 conversion and directed integer division
6. Unit factories: token() for fungible assets

All functions in this module are pure. Nothing here mutates ledger state.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Rates, prices and risk parameters are Decimal. Amounts and shares are int.
# The global context is configured once at import for deterministic results.
#
# PRECONDITION: No other code should modify the global Decimal context.
# Code that needs a different rounding uses decimal.localcontext().
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Amounts, pool totals and shares are stored as unsigned 64-bit quantities.
U64_MAX = 2 ** 64 - 1

# Reserved wallet for issuance and redemption of assets.
# The system wallet is exempt from balance validation.
SYSTEM_WALLET = "system"

# Maximum age of a price quote, in seconds, accepted by the health engine.
DEFAULT_MAX_PRICE_AGE = 100

# Unit type constants (strings, not enum).
UNIT_TYPE_TOKEN = "TOKEN"
UNIT_TYPE_POOL = "POOL"
UNIT_TYPE_POSITION = "POSITION"

# Epsilon for Decimal comparisons.
QUANTITY_EPSILON = Decimal("1e-12")

ZERO = Decimal("0")
ONE = Decimal("1")


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Stored record for a unit (pool terms and totals, position shares, ...).
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Engines receive a LedgerView, read the Pool and Position records and the
    custody balances they need, and return a PendingTransaction describing the
    change. They never write.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet (Decimal("0") if none)."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's stored record."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction intent was previously processed (idempotent).
    REJECTED: A custody move failed validation (unknown wallet or unit,
              balance below the unit's minimum).
    STALE: A state change was built against a record that has since changed
           (optimistic concurrency rejection).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"
    STALE = "stale"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"     # deposit, withdraw, borrow, repay
    LIQUIDATION = "liquidation"     # third-party liquidation
    ADMIN = "admin"                 # initialize_bank, initialize_user
    SYSTEM = "system"               # issuance, test setup


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a withdrawal exceeds the caller's accrued deposit value."""
    pass


class InsufficientLiquidity(InsufficientFunds):
    """Raised when a pool does not hold enough un-borrowed value to pay out."""
    pass


class OverBorrowableAmount(LedgerError):
    """Raised when a borrow would push debt past the collateral's borrow limit."""
    pass


class OverRepayAmount(LedgerError):
    """Raised when a repayment exceeds the caller's accrued debt."""
    pass


class NotBelowHealthFactor(LedgerError):
    """Raised when liquidation is attempted on a position with health factor >= 1."""
    pass


class InsufficientCollateral(LedgerError):
    """Raised when a liquidation would seize more collateral than the position holds."""
    pass


class InsufficientShares(LedgerError):
    """Raised when a share burn exceeds the holder's share balance."""
    pass


class StaleOrMissingPrice(LedgerError):
    """Raised when the price feed has no usable quote for an asset."""
    pass


class TransferFailure(LedgerError):
    """Raised when the custody layer rejects an asset movement."""
    pass


class StaleState(LedgerError):
    """Raised when a record changed between read and commit."""
    pass


class ArithmeticFailure(LedgerError, ArithmeticError):
    """Raised on u64 overflow, negative totals, or an unguarded zero denominator."""
    pass


class NegativeElapsedTime(LedgerError):
    """Raised when an accrual checkpoint lies after the current time."""
    pass


class UnsupportedAsset(LedgerError):
    """Raised when an asset is not one of a position's two assets."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when operating on a unit that has not been registered."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when operating on a wallet that has not been registered."""
    pass


# ============================================================================
# INTEGER HELPERS
# ============================================================================

def to_decimal(value: Any) -> Decimal:
    """Convert int/float/str to Decimal via str() so floats do not leak binary noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def checked_u64(value: int, name: str = "value") -> int:
    """
    Return value if it fits an unsigned 64-bit integer.

    Raises:
        ArithmeticFailure: if value is negative or above U64_MAX.
    """
    if value < 0:
        raise ArithmeticFailure(f"{name} cannot be negative, got {value}")
    if value > U64_MAX:
        raise ArithmeticFailure(f"{name} overflows u64: {value}")
    return value


def div_floor(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero for non-negative operands."""
    if denominator == 0:
        raise ArithmeticFailure("division by zero")
    return numerator // denominator


def div_ceil(numerator: int, denominator: int) -> int:
    """Integer division rounding up for non-negative operands."""
    if denominator == 0:
        raise ArithmeticFailure("division by zero")
    return -(-numerator // denominator)


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin (user action, liquidation, ...)
        source_id: The acting identity (depositor, liquidator, pool authority)
        unit_symbol: The pool or position record that triggered this, if any
        event_type: The operation name ("DEPOSIT", "LIQUIDATE", ...)
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change.

    old_state is the record the change was computed from. The ledger refuses
    the change if the stored record no longer equals old_state.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            if old.get(key) != new.get(key):
                changes[key] = (old.get(key), new.get(key))
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single custody transfer of an asset between two wallets.

    Attributes:
        quantity: The amount to transfer (finite, positive Decimal).
        unit_symbol: The asset being transferred.
        source: The wallet debited.
        dest: The wallet credited.
        contract_id: Identifier of the operation generating this move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity <= QUANTITY_EPSILON:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """Canonical string for a Decimal: Decimal("1.0") and Decimal("1.00") both give "1"."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Independent of dict insertion order and Decimal representation.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = (),
) -> str:
    """
    Deterministic content hash of a transaction's intent.

    Used for idempotency: the same deposit built twice against the same
    records hashes identically and is applied once.
    """
    sorted_moves = sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    )

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        content_parts.append(
            f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}"
        )

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction before execution - represents INTENT.

    Built by the lending engines and submitted to the ledger. It carries the
    custody moves and the record changes of one operation; the ledger applies
    them together or not at all.

    Attributes:
        moves: Custody transfers
        state_changes: Pool/Position record changes (old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: Ledger time the transaction was built at
        units_to_create: Records to register (initialize_bank, initialize_user)
        intent_id: Content-addressable hash (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if there is nothing to apply."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and record changes.

    State changes are deep-copied so later mutation of the caller's dicts
    cannot alter the transaction.

    Example:
        old_state = view.get_unit_state("POOL:SOL")
        new_state = {**old_state, "total_deposit_value": 1500}
        changes = [UnitStateChange("POOL:SOL", old_state, new_state)]
        pending = build_transaction(view, moves, changes)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.USER_ACTION,
            source_id="user",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger changes - represents FACT.

    Attributes:
        moves: Custody transfers applied
        state_changes: Record changes applied
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was built
        intent_id: Content hash (from PendingTransaction)
        exec_id: Unique execution identifier
        ledger_name: Name of the ledger that executed this
        execution_time: Ledger time of execution
        sequence_number: Monotonic sequence within the ledger
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        lines = [
            f"Transaction {self.exec_id} [{self.origin}]",
        ]
        for unit in self.units_to_create:
            lines.append(f"  + {unit.symbol} ({unit.unit_type})")
        for move in self.moves:
            lines.append(f"  {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}")
        for sc in self.state_changes:
            for field_name, (old_val, new_val) in sorted(sc.changed_fields().items()):
                lines.append(f"  [{sc.unit}] {field_name}: {old_val!r} → {new_val!r}")
        return "\n".join(lines)


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a sorted tuple of (key, value) pairs."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state back to a dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit in the ledger.

    Fungible assets (UNIT_TYPE_TOKEN) carry balances. Pool and Position
    records (UNIT_TYPE_POOL, UNIT_TYPE_POSITION) carry only state.

    Attributes:
        symbol: Short identifier (e.g., "SOL", "POOL:SOL").
        name: Human-readable name.
        unit_type: Category of the unit.
        min_balance: Minimum allowed balance in any wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Rounding precision for balances (None = no rounding).
        _frozen_state: Frozen record (tuple of key-value pairs).
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """The unit's record as a new dict."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Round a value to this unit's decimal precision (ROUND_HALF_EVEN)."""
        if self.decimal_places is None:
            return value
        value = to_decimal(value)
        quantizer = Decimal(10) ** -self.decimal_places
        return value.quantize(quantizer, rounding=ROUND_HALF_EVEN)


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def token(symbol: str, name: str) -> Unit:
    """
    Create a fungible asset unit held in integer base units.

    Balances cannot go below zero, so a move from an underfunded wallet is
    rejected by the ledger: the custody layer's insufficient-balance case.

    Args:
        symbol: Asset identifier (e.g., "SOL", "USDC").
        name: Full name of the asset.
    """
    if not symbol or not symbol.strip():
        raise ValueError("token symbol cannot be empty")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        min_balance=Decimal("0"),
        max_balance=Decimal(U64_MAX),
        decimal_places=0,
    )
