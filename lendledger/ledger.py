"""
ledger.py - Stateful host ledger for the lending engines

The Ledger is the host environment the lending engines run against. It is the
only module that mutates state.

Key responsibilities:
    - Implements LedgerView for read-only access by the pure engines
    - Holds custody balances (who holds how much of each asset)
    - Stores Pool and Position records as unit state
    - Executes transactions atomically: all moves and record changes, or none
    - Rejects record changes built against stale records (optimistic concurrency)
    - Always validates and always logs
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Set, Optional, Tuple, Any
import copy

from .core import (
    Move, Transaction, Unit,
    PendingTransaction, TransactionOrigin, OriginType,
    build_transaction, to_decimal,
    ExecuteResult,
    UnitState,
    SYSTEM_WALLET,
    UnitNotRegistered, WalletNotRegistered,
    _freeze_state,
)


class Ledger:
    """
    Custody and record ledger with full validation and audit trail.

    Implements the LedgerView protocol, so it can be passed directly to the
    compute_* functions of the lending engines.

    Design Principles:
        - Always validates: every move is checked against registration and
          balance limits, every record change against the stored record.
        - Always logs: every applied transaction is kept in transaction_log.

    Thread Safety:
        Not thread-safe. Concurrent callers are arbitrated by the STALE result:
        a transaction built from a record that another transaction has since
        rewritten is refused and must be rebuilt.

    Example:
        ledger = Ledger("main")
        ledger.register_unit(token("SOL", "Solana"))
        ledger.register_wallet("alice")
        ledger.issue("alice", "SOL", 1000)
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Print registrations and transaction results (default: True)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self.last_rejection: Optional[str] = None
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._next_sequence: int = 0

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Get the balance of a specific unit in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Get a deep copy of a unit's stored record.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return copy.deepcopy(self.units[unit_symbol].state)

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        """List all registered unit symbols."""
        return sorted(self.units.keys())

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def total_supply(self, unit_symbol: str) -> Decimal:
        """Total of a unit across all wallets, summed in sorted wallet order."""
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (self.balances[w].get(unit_symbol, Decimal("0")) for w in sorted(self.registered_wallets)),
            Decimal("0"),
        )

    def verify_double_entry(
        self,
        expected_supplies: Optional[Dict[str, Decimal]] = None,
        tolerance: Decimal = Decimal("1e-9"),
    ) -> Dict[str, Any]:
        """
        Verify that conservation laws hold for all units.

        Returns:
            Dict with keys:
            - 'valid': True if every expected supply matches
            - 'supplies': current total supply per unit
            - 'discrepancies': list of {unit, expected, actual, difference}

        Example:
            result = ledger.verify_double_entry({'SOL': Decimal("0")})
            assert result['valid'], result['discrepancies']
        """
        supplies = {}
        discrepancies = []

        for unit_symbol in self.units:
            current_supply = self.total_supply(unit_symbol)
            supplies[unit_symbol] = current_supply

            if expected_supplies and unit_symbol in expected_supplies:
                expected = expected_supplies[unit_symbol]
                difference = abs(current_supply - expected)
                if difference > tolerance:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': current_supply,
                        'difference': difference,
                    })

        if expected_supplies:
            for unit_symbol, expected in expected_supplies.items():
                if unit_symbol not in supplies:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': Decimal("0"),
                        'difference': abs(expected),
                        'error': 'unit not registered',
                    })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet.

        Raises:
            ValueError: If wallet is already registered
        """
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
        return wallet_id

    def ensure_wallet(self, wallet_id: str) -> str:
        """Register a wallet unless it already exists."""
        if wallet_id not in self.registered_wallets:
            self.register_wallet(wallet_id)
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit (asset, pool record or position record).

        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            print(f"Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    def issue(self, wallet_id: str, unit_symbol: str, quantity: int) -> ExecuteResult:
        """
        Mint asset into a wallet from the system wallet.

        Stands in for the outside world funding a user's account.
        """
        pending = build_transaction(
            self,
            [Move(to_decimal(quantity), unit_symbol, SYSTEM_WALLET, wallet_id, f"issue_{unit_symbol}_{self._next_sequence}")],
            origin=TransactionOrigin(OriginType.SYSTEM, SYSTEM_WALLET, unit_symbol, "ISSUE"),
        )
        return self.execute(pending)

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """Format: exec:{ledger_name}:{sequence:012d}:{timestamp_micros}"""
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        Every check runs before anything is written, so a rejected
        transaction leaves balances, records and the log untouched.

        Checks, in order:
        - timestamp is not in the future
        - records to create do not already exist
        - moves reference registered units and wallets and keep every
          non-system balance within the unit's limits
        - each state change's old_state equals the stored record

        Returns:
            ExecuteResult.APPLIED if applied
            ExecuteResult.ALREADY_APPLIED if the intent was already executed
            ExecuteResult.REJECTED if a move or registration failed validation
            ExecuteResult.STALE if a record changed since the transaction was built
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        valid, reason = self._validate_pending(pending)
        if not valid:
            return self._refuse(ExecuteResult.REJECTED, reason)

        stale_reason = self._check_stale(pending)
        if stale_reason:
            return self._refuse(ExecuteResult.STALE, stale_reason)

        sequence = self._next_sequence
        self._next_sequence += 1

        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
            units_to_create=pending.units_to_create,
        )

        for unit in tx.units_to_create:
            self.register_unit(unit)

        self._execute_moves(tx.moves)

        for sc in tx.state_changes:
            old_unit = self.units[sc.unit]
            new_state = copy.deepcopy(sc.new_state if isinstance(sc.new_state, dict) else {})
            self.units[sc.unit] = replace(old_unit, _frozen_state=_freeze_state(new_state))

        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)
        self.last_rejection = None

        if self.verbose:
            print(f"{tx!r}\n✓ APPLIED")
        return ExecuteResult.APPLIED

    def _refuse(self, result: ExecuteResult, reason: str) -> ExecuteResult:
        self.last_rejection = reason
        if self.verbose:
            print(f"✗ {result.name}: {reason}")
        return result

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate a pending transaction's registrations and moves.

        Returns:
            (True, "") when valid, else (False, reason)
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp"

        creating = {}
        for unit in pending.units_to_create:
            if unit.symbol in self.units or unit.symbol in creating:
                return False, f"unit already registered: {unit.symbol}"
            creating[unit.symbol] = unit

        for move in pending.moves:
            if move.unit_symbol not in self.units and move.unit_symbol not in creating:
                return False, f"unit not registered: {move.unit_symbol}"
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}"

        for sc in pending.state_changes:
            if sc.unit not in self.units:
                return False, f"unit not registered: {sc.unit}"

        # Net balance changes with unit rounding, as applied in _execute_moves
        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = self.units.get(move.unit_symbol) or creating[move.unit_symbol]
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = unit.round(net.get(key_src, Decimal("0")) - move.quantity)
            net[key_dst] = unit.round(net.get(key_dst, Decimal("0")) + move.quantity)

        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            unit = self.units.get(unit_sym) or creating[unit_sym]
            current = self.balances[wallet][unit_sym]
            proposed = unit.round(current + delta)
            if proposed < unit.min_balance:
                return False, f"insufficient balance: {wallet} {unit_sym} {proposed} < min {unit.min_balance}"
            if proposed > unit.max_balance:
                return False, f"balance limit: {wallet} {unit_sym} {proposed} > max {unit.max_balance}"

        return True, ""

    def _check_stale(self, pending: PendingTransaction) -> Optional[str]:
        """Return a reason if any state change was built from an outdated record."""
        for sc in pending.state_changes:
            if sc.old_state is None:
                continue
            current_state = self.units[sc.unit].state
            old_state_dict = sc.old_state if isinstance(sc.old_state, dict) else {}
            for key in set(old_state_dict.keys()) | set(current_state.keys()):
                old_val = old_state_dict.get(key)
                cur_val = current_state.get(key)
                if old_val != cur_val:
                    return (
                        f"stale state for {sc.unit}.{key}: "
                        f"expected {old_val!r}, found {cur_val!r}"
                    )
        return None

    def _execute_moves(self, moves) -> None:
        """Apply moves to wallet balances with unit rounding."""
        for move in moves:
            unit = self.units[move.unit_symbol]
            self.balances[move.source][move.unit_symbol] = unit.round(
                self.balances[move.source][move.unit_symbol] - move.quantity
            )
            self.balances[move.dest][move.unit_symbol] = unit.round(
                self.balances[move.dest][move.unit_symbol] + move.quantity
            )

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create a fully independent deep copy of this ledger.

        Useful for what-if evaluation: run an operation on the clone and
        inspect the result without touching the original.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned._current_time = self._current_time
        cloned.verbose = self.verbose
        cloned.last_rejection = self.last_rejection
        cloned.units = {
            symbol: replace(unit, _frozen_state=_freeze_state(copy.deepcopy(unit.state)))
            for symbol, unit in self.units.items()
        }
        cloned.registered_wallets = self.registered_wallets.copy()
        cloned.seen_intent_ids = self.seen_intent_ids.copy()
        cloned.transaction_log = list(self.transaction_log)
        cloned._next_sequence = self._next_sequence
        cloned.balances = {}
        for wallet, bals in self.balances.items():
            cloned.balances[wallet] = defaultdict(lambda: Decimal("0"), bals)
        return cloned
