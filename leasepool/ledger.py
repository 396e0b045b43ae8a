"""
ledger.py - Stateful Double-Entry Ledger for the rental pool

The Ledger class is the state manager for wallets and units (payment token,
deposited assets, receipts). It is the only module that mutates balances.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by pure functions
    - Executes transactions atomically (all moves succeed or all fail)
    - Maintains wallet balances and unit definitions
    - Tracks the logical tick advanced by the host
    - Captures and restores full snapshots so a pool operation can be unwound
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Dict, List, Set, Optional, Tuple, Any
import copy
from decimal import Decimal

from .core import (
    # Types
    Move, Transaction, Unit,
    PendingTransaction,
    ExecuteResult,
    Positions, UnitState, BalanceMap,
    # Constants
    QUANTITY_EPSILON, SYSTEM_WALLET,
    # Exceptions
    LedgerError, InsufficientFunds, BalanceConstraintViolation,
    UnitNotRegistered, WalletNotRegistered,
    # Helper functions
    _freeze_state,
)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Point-in-time copy of every mutable part of a Ledger."""
    current_tick: int
    balances: Dict[str, Dict[str, Decimal]]
    units: Dict[str, Unit]
    registered_wallets: Set[str]
    log_length: int
    next_sequence: int
    positions_by_unit: Dict[str, Dict[str, Decimal]]


class Ledger:
    """
    Double-entry ledger with full validation and audit trail.

    Implements the LedgerView protocol, allowing the ledger to be passed to pure
    functions that access only read-only methods.

    Design Principles:
        - Always validates: Every transaction is validated against balance
          constraints, transfer rules and tick ordering.
        - Always logs: Every applied transaction is recorded in the audit trail.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own Ledger instance.

    Example:
        ledger = Ledger("main")
        ledger.register_unit(payment_token("WETH", "Wrapped Ether"))
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")

        tx = build_transaction(ledger, [
            Move(Decimal(100), "WETH", "alice", "bob", "payment_001")
        ])
        result = ledger.execute(tx)
    """

    POSITION_EPSILON = QUANTITY_EPSILON

    def __init__(
        self,
        name: str,
        initial_tick: int = 0,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_tick: Starting tick for the ledger (default: 0)
            verbose: Enable debug output (default: True)
            test_mode: Enable test mode to allow set_balance() calls (default: False)
        """
        if initial_tick < 0:
            raise ValueError(f"initial_tick cannot be negative, got {initial_tick}")
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self._current_tick: int = initial_tick
        self.verbose = verbose
        self._test_mode = test_mode
        # Monotonic sequence counter for execution ordering
        self._next_sequence: int = 0
        # Inverted index mapping unit -> {wallet -> quantity} for O(1) position lookups
        self._positions_by_unit: Dict[str, Dict[str, Decimal]] = defaultdict(dict)

        # Auto-register the system wallet (used for issuance and burning)
        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_tick(self) -> int:
        """Current logical tick of the ledger."""
        return self._current_tick

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
        Get a deep copy of a unit's internal state.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        unit_obj = self.units[unit_symbol]
        return self._deep_copy_state(unit_obj.state) if unit_obj.state else {}

    def get_positions(self, unit_symbol: str) -> Positions:
        """Get all non-zero positions for a unit across all wallets."""
        return dict(self._positions_by_unit.get(unit_symbol, {}))

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

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        """Get all balances for a wallet."""
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return dict(self.balances[wallet_id])

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Total supply of a unit across all non-system wallets.

        The system wallet is the issuer: its (negative) balance mirrors what
        has been issued and is left out of the sum.
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (self.balances[w].get(unit_symbol, Decimal("0"))
             for w in sorted(self.registered_wallets) if w != SYSTEM_WALLET),
            Decimal("0"),
        )

    def verify_double_entry(self) -> Dict[str, Any]:
        """
        Verify that every unit nets to zero across all wallets, system included.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every unit nets to zero
            - 'discrepancies': List[Dict] - unit and net amount for each violation
        """
        discrepancies = []
        for unit_symbol in sorted(self.units):
            net = sum(
                (self.balances[w].get(unit_symbol, Decimal("0"))
                 for w in sorted(self.registered_wallets)),
                Decimal("0"),
            )
            if abs(net) > self.POSITION_EPSILON:
                discrepancies.append({'unit': unit_symbol, 'net': net})
        return {
            'valid': len(discrepancies) == 0,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_tick: int) -> None:
        """
        Advance the ledger's logical clock to a new tick.

        Ticks can only move forward, never backward.

        Raises:
            ValueError: If new_tick is before the current tick
        """
        if new_tick < self._current_tick:
            raise ValueError(
                f"Cannot move time backwards: {new_tick} < {self._current_tick}"
            )
        self._current_tick = new_tick

    def advance_ticks(self, count: int = 1) -> int:
        """Advance the clock by count ticks and return the new tick."""
        if count < 0:
            raise ValueError(f"Cannot advance by a negative tick count: {count}")
        self.advance_time(self._current_tick + count)
        return self._current_tick

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet in the ledger.

        Raises:
            ValueError: If wallet is already registered
        """
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit in the ledger.

        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            rule_str = f", rule={unit.transfer_rule.__name__}" if unit.transfer_rule else ""
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]{rule_str}")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Set a wallet's balance for a unit directly.

        WARNING: This method bypasses double-entry accounting and is only
        available in test mode.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use build_transaction() and execute() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        if not isinstance(quantity, Decimal):
            quantity = Decimal(str(quantity))
        self.balances[wallet_id][unit_symbol] = quantity
        self._update_position_index(wallet_id, unit_symbol, quantity)

    def update_unit_state(self, unit_symbol: str, state_updates: UnitState) -> None:
        """
        Merge state_updates into a unit's internal state.

        Since Unit is frozen, this creates a new Unit instance with the updated
        state and replaces the existing unit in the ledger.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        old_unit = self.units[unit_symbol]
        new_state = {**old_unit.state, **state_updates}
        self.units[unit_symbol] = replace(old_unit, _frozen_state=_freeze_state(new_state))

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}:{tick}
        """
        return f"exec:{self.name}:{sequence:012d}:{self._current_tick}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All moves succeed together or all fail together.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.REJECTED if validation failed
        """
        try:
            self.execute_or_raise(pending)
        except LedgerError as e:
            if self.verbose:
                print(f"✗ REJECTED: {e}")
            return ExecuteResult.REJECTED
        return ExecuteResult.APPLIED

    def execute_or_raise(self, pending: PendingTransaction) -> Optional[Transaction]:
        """
        Execute a PendingTransaction atomically, raising on rejection.

        Same validation as execute(), but the failure surfaces as the specific
        LedgerError subclass (InsufficientFunds, TransferRuleViolation, ...)
        so callers can translate it.

        Returns:
            The logged Transaction, or None for an empty pending transaction
        """
        if pending.is_empty():
            return None

        # Units are temporarily registered for validation and unregistered
        # again if validation fails.
        newly_registered_units: List[str] = []
        for unit in pending.units_to_create:
            if unit.symbol not in self.units:
                self.register_unit(unit)
                newly_registered_units.append(unit.symbol)

        try:
            self._validate_pending(pending)
        except LedgerError:
            for sym in newly_registered_units:
                del self.units[sym]
            raise

        sequence = self._next_sequence
        self._next_sequence += 1

        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            tick=pending.tick,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            sequence_number=sequence,
            units_to_create=pending.units_to_create,
        )

        self._execute_moves(tx.moves)

        # Since Unit is frozen, we create new Unit instances with updated state
        for sc in tx.state_changes:
            old_unit = self.units[sc.unit]
            new_state = self._deep_copy_state(
                sc.new_state if isinstance(sc.new_state, dict) else {}
            )
            self.units[sc.unit] = replace(old_unit, _frozen_state=_freeze_state(new_state))

        self.transaction_log.append(tx)

        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")
        return tx

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """Print the Transaction box with a result line appended."""
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))
        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _validate_pending(self, pending: PendingTransaction) -> None:
        """
        Validate pending transaction against all constraints.

        Checks performed:
        1. Tick validation (transaction must not be from the future)
        2. Unit and wallet registration
        3. Transfer rule enforcement
        4. Stale state detection for state changes
        5. Balance constraint validation (min/max balance limits)

        Raises:
            LedgerError subclass describing the first violation found
        """
        if pending.tick > self._current_tick:
            raise LedgerError(
                f"future tick: {pending.tick} > {self._current_tick}"
            )

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                raise UnitNotRegistered(f"unit not registered: {move.unit_symbol}")
            if not self.is_registered(move.source):
                raise WalletNotRegistered(f"wallet not registered: {move.source}")
            if not self.is_registered(move.dest):
                raise WalletNotRegistered(f"wallet not registered: {move.dest}")

            unit = self.units[move.unit_symbol]
            if unit.transfer_rule:
                unit.transfer_rule(self, move)

        for sc in pending.state_changes:
            if sc.unit not in self.units:
                raise UnitNotRegistered(f"state change for unregistered unit: {sc.unit}")
            if sc.old_state is not None:
                current_state = self.units[sc.unit].state
                old_state = sc.old_state if isinstance(sc.old_state, dict) else {}
                if old_state != current_state:
                    raise LedgerError(f"stale state for {sc.unit}")

        # Net balance changes with unit rounding applied
        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = unit.round(net.get(key_src, Decimal("0")) - move.quantity)
            net[key_dst] = unit.round(net.get(key_dst, Decimal("0")) + move.quantity)

        # SYSTEM_WALLET is exempt from balance validation
        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue

            current = self.balances[wallet][unit_sym]
            unit = self.units[unit_sym]
            proposed = unit.round(current + delta)

            if proposed < unit.min_balance:
                raise InsufficientFunds(
                    f"{wallet} {unit_sym}: {proposed} < min {unit.min_balance}"
                )
            if proposed > unit.max_balance:
                raise BalanceConstraintViolation(
                    f"{wallet} {unit_sym}: {proposed} > max {unit.max_balance}"
                )

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """Keep the unit -> {wallet -> quantity} index in step with a balance change."""
        if abs(quantity) > self.POSITION_EPSILON:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        """Apply all moves to wallet balances and update the position index."""
        for move in moves:
            unit = self.units[move.unit_symbol]
            new_src_balance = unit.round(
                self.balances[move.source][move.unit_symbol] - move.quantity
            )
            self.balances[move.source][move.unit_symbol] = new_src_balance
            self._update_position_index(move.source, move.unit_symbol, new_src_balance)
            new_dst_balance = unit.round(
                self.balances[move.dest][move.unit_symbol] + move.quantity
            )
            self.balances[move.dest][move.unit_symbol] = new_dst_balance
            self._update_position_index(move.dest, move.unit_symbol, new_dst_balance)

    # ========================================================================
    # SNAPSHOTS
    # ========================================================================

    @staticmethod
    def _deep_copy_state(state: Optional[UnitState]) -> Optional[UnitState]:
        """Recursively deep copy unit state dictionary."""
        if state is None:
            return None
        return copy.deepcopy(state)

    def snapshot(self) -> LedgerSnapshot:
        """
        Capture every mutable part of the ledger, the tick included.

        Units are frozen dataclasses, so a shallow copy of the unit map is
        enough; balances and the position index are copied per wallet/unit.
        """
        return LedgerSnapshot(
            current_tick=self._current_tick,
            balances={w: dict(b) for w, b in self.balances.items()},
            units=dict(self.units),
            registered_wallets=self.registered_wallets.copy(),
            log_length=len(self.transaction_log),
            next_sequence=self._next_sequence,
            positions_by_unit={u: dict(p) for u, p in self._positions_by_unit.items()},
        )

    def restore(self, snap: LedgerSnapshot) -> None:
        """
        Roll the ledger back to a snapshot taken earlier on this ledger.

        Transactions logged after the snapshot are dropped from the log.
        """
        if snap.log_length > len(self.transaction_log):
            raise LedgerError("Cannot restore a snapshot newer than the ledger")
        self._current_tick = snap.current_tick
        self.balances = {
            w: defaultdict(lambda: Decimal("0"), b) for w, b in snap.balances.items()
        }
        self.units = dict(snap.units)
        self.registered_wallets = snap.registered_wallets.copy()
        del self.transaction_log[snap.log_length:]
        self._next_sequence = snap.next_sequence
        self._positions_by_unit = defaultdict(dict)
        for unit_symbol, positions in snap.positions_by_unit.items():
            self._positions_by_unit[unit_symbol] = dict(positions)

    def clone(self) -> Ledger:
        """
        Create a fully independent deep copy of this ledger.

        Returns:
            A new Ledger instance with identical state
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned._current_tick = self._current_tick
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode
        cloned.transaction_log = list(self.transaction_log)
        cloned.restore(self.snapshot())
        return cloned
