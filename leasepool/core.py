"""
Core types and pure functions for the asset-rental pool.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access, FlashReceiver for callbacks
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit, PoolEvent
3. Exceptions: LedgerError and the ledger/pool error kinds
4. Type aliases: Positions, BalanceMap, UnitState
5. Transfer rules: Pure validation functions for moves
6. Unit factories: Functions to create the payment token

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable, Mapping, TYPE_CHECKING
)

if TYPE_CHECKING:
    from .assets import AssetKey


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Balances are Decimal but every pool amount is an integer number of base
# units. Lease payments can reach price * ticks with 72-bit prices and 24-bit
# durations, so the context needs enough digits to keep those sums exact.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 80
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and burning of units.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Default wallet that holds deposited assets and collected payments.
POOL_WALLET = "pool"

# Unit type constants (strings, not enum).
UNIT_TYPE_PAYMENT_TOKEN = "PAYMENT_TOKEN"
UNIT_TYPE_ASSET = "ASSET"
UNIT_TYPE_LENDER_RECEIPT = "LENDER_RECEIPT"
UNIT_TYPE_BORROWER_RECEIPT = "BORROWER_RECEIPT"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-12")

# Pool fee rate is a fixed-point fraction: RATE_SCALE is 100%.
RATE_SCALE = 10 ** 18

# Largest move of the pool fee rate in a single change (one percentage point).
RATE_STEP = 10 ** 16

DECIMAL_ROUNDING = {
    UNIT_TYPE_PAYMENT_TOKEN: ROUND_DOWN,
}

# Notification names
RECORD_ADDED = "RECORD_ADDED"
RECORD_EDITED = "RECORD_EDITED"
RECORD_REMOVED = "RECORD_REMOVED"
FLASH_ACCESS = "FLASH_ACCESS"
LEASE_ACQUIRED = "LEASE_ACQUIRED"
LEASE_SETTLED = "LEASE_SETTLED"
EARNINGS_WITHDRAWN = "EARNINGS_WITHDRAWN"
POOL_FEE_CHANGED = "POOL_FEE_CHANGED"
OWNERSHIP_PROPOSED = "OWNERSHIP_PROPOSED"
OWNERSHIP_TRANSFERRED = "OWNERSHIP_TRANSFERRED"
RECEIPT_TRANSFERRED = "RECEIPT_TRANSFERRED"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit (receipt claims, pause flag, etc.)
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Functions accepting a LedgerView parameter declare their read-only intent.
    The Ledger class implements this protocol but also provides mutation
    methods. For testing, FakeView provides a truly immutable implementation.
    """

    @property
    def current_tick(self) -> int:
        """Return the current logical tick of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Return the balance of a specific unit in a wallet.

        Returns Decimal("0") if the wallet holds none of the unit.
        """
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """
        Return all non-zero positions for a unit across all wallets.

        Returns a dictionary mapping wallet IDs to quantities.
        """
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


@runtime_checkable
class FlashReceiver(Protocol):
    """
    Callback surface invoked during a flash access.

    The receiver's wallet is given custody of the asset before the call and
    must hand custody back to the pool wallet before returning, otherwise the
    whole flash access is unwound.
    """

    wallet: str

    def on_flash_access(
        self,
        asset: 'AssetKey',
        fee: int,
        initiator: str,
        data: bytes,
    ) -> None:
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    REJECTED: Transaction failed validation due to insufficient funds, balance
              constraints, or transfer rule violations.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Manual user-initiated transaction
    CONTRACT = "contract"                 # Pool operation
    LIFECYCLE = "lifecycle"               # Automatic lifecycle event (lease expiry)
    SYSTEM = "system"                     # Issuance, initial setup


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger and pool errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a move would cause a wallet balance to fall below the unit's minimum."""
    pass


class BalanceConstraintViolation(LedgerError):
    """Raised when a move would cause a wallet balance to exceed the unit's maximum."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    pass


class NotFound(LedgerError):
    """No record, lease or receipt exists for the given key."""
    pass


class Unauthorized(LedgerError):
    """Caller lacks the required receipt, custody or admin identity."""
    pass


class RangeError(LedgerError):
    """A value does not fit the range allotted to it."""
    pass


class InsufficientPayment(LedgerError):
    """Offered fee or price is below the stored floor."""
    pass


class CustodyViolation(LedgerError):
    """Asset was not returned to the pool by the end of a flash access."""
    pass


class Conflict(LedgerError):
    """Duplicate listing, re-entrant operation, or operation on a leased asset."""
    pass


class RateLimited(LedgerError):
    """Pool fee change exceeds the allowed step or frequency."""
    pass


class NoEarnings(LedgerError):
    """Withdrawal requested with a zero accrued balance."""
    pass


class TransferFailed(LedgerError):
    """The payment token refused the outgoing transfer."""
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source ("pool", user ID, etc.)
        unit_symbol: Symbol of the unit that triggered this (if applicable)
        event_type: Specific event within the source (e.g., "FLASH_ACCESS")
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
    Record of a unit state change for transaction logging.

    Attributes:
        unit: Symbol of the unit whose state changed
        old_state: Complete state before the change (dict or None)
        new_state: Complete state after the change (dict)
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """
        Compute fields that differ between old and new state.

        Returns:
            Dict mapping field name to (old_value, new_value) tuples.
        """
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and non-zero).
        unit_symbol: The symbol of the unit being transferred (e.g., "WETH", "PUNK#7").
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
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
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction before execution - represents INTENT.

    Built by pool components and submitted to the ledger for execution.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes (with old_state and new_state)
        units_to_create: Tuple of Unit objects to register before executing moves
        origin: Who/what created this transaction and why
        tick: Ledger tick at which this pending transaction was built
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    tick: int
    units_to_create: Tuple['Unit', ...] = ()

    def is_empty(self) -> bool:
        """Return True if there are no moves, no state deltas and no units to create."""
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
    Build a PendingTransaction from moves and state deltas.

    Args:
        view: Read-only ledger view (provides current_tick)
        moves: List of moves to include in the transaction
        state_changes: Optional list of UnitStateChange objects
        origin: Transaction origin (defaults to CONTRACT origin)
        units_to_create: Optional tuple of Unit objects to register before executing moves

    Returns:
        A PendingTransaction ready for execution

    Example:
        tx = build_transaction(ledger, [
            Move(Decimal(1), "PUNK#7", "alice", "pool", "add_record")
        ])
        ledger.execute(tx)
    """
    import copy

    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    # Deep copy state changes to prevent mutation
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
        tick=view.current_tick,
        units_to_create=units_to_create or (),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes
        origin: Who/what created this transaction and why
        tick: Tick at which the PendingTransaction was built
        exec_id: Unique execution identifier (ledger + sequence + tick)
        ledger_name: Name of the ledger that executed this
        sequence_number: Monotonic sequence within the ledger (for ordering)
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    tick: int
    exec_id: str
    ledger_name: str
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
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            """Pad or truncate text to exactly w characters."""
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   tick           : ' + str(self.tick))}│",
            f"│{pad('   ledger_name    : ' + self.ledger_name)}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
            f"│{pad('   contract_ids   : ' + str(sorted(self.contract_ids)))}│",
        ]
        if self.units_to_create:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Units Created (' + str(len(self.units_to_create)) + '):')}│")
            for unit in self.units_to_create:
                lines.append(f"│{pad('   ' + unit.symbol + ' (' + unit.name + ')')}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}"
            lines.append(f"│{pad(move_str)}│")
        if self.state_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' State Changes (' + str(len(self.state_changes)) + '):')}│")
            for sc in self.state_changes:
                lines.append(f"│{pad('   [' + sc.unit + ']')}│")
                for field_name, (old_val, new_val) in sc.changed_fields().items():
                    lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# Type alias for transfer rule functions.
# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a mutable state dict to a tuple of (key, value) pairs sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a mutable dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit in the ledger: payment token, asset or receipt.

    Attributes:
        symbol: Short identifier for the unit (e.g., "WETH", "PUNK#7", "LENDER#1").
        name: Human-readable name for the unit.
        unit_type: Category of the unit (PAYMENT_TOKEN, ASSET, LENDER_RECEIPT, ...).
        min_balance: Minimum allowed balance in any wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
        transfer_rule: Optional function to validate moves involving this unit.
        _frozen_state: Internal frozen state representation (tuple of key-value pairs).
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """Get the unit's state as a new mutable dictionary."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """
        Round a value to this unit's decimal precision using quantize.

        Returns the value unchanged if decimal_places is None.
        """
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# POOL NOTIFICATIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PoolEvent:
    """
    Notification emitted by a committed pool operation.

    Intended for external observers and indexers; nothing in the pool reads
    these back for control flow.

    Attributes:
        name: Notification name (RECORD_ADDED, FLASH_ACCESS, ...)
        tick: Ledger tick at which the operation ran
        fields: Every field the operation changed, by name
    """
    name: str
    tick: int
    fields: Mapping[str, Any]

    def __repr__(self) -> str:
        body = ", ".join(f"{k}={v!r}" for k, v in self.fields.items())
        return f"PoolEvent({self.name}@{self.tick}: {body})"


# ============================================================================
# TRANSFER RULES
# ============================================================================

def pausable_transfer_rule(view: LedgerView, move: Move) -> None:
    """
    Refuse every transfer of a unit whose state carries paused=True.

    Issuance and burning through the system wallet are refused as well: a
    paused token does not move at all.

    Raises:
        TransferRuleViolation: If the unit is paused.
    """
    state = view.get_unit_state(move.unit_symbol)
    if state.get('paused'):
        raise TransferRuleViolation(
            f"{move.unit_symbol} is paused: {move.source} → {move.dest} refused"
        )


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def payment_token(symbol: str, name: str) -> Unit:
    """
    Create the fungible unit fees and lease payments are paid in.

    Amounts are whole base units (decimal_places=0) and balances cannot go
    negative. The token can be paused by setting paused=True in its state.

    Args:
        symbol: Token symbol (e.g., "WETH").
        name: Full name of the token (e.g., "Wrapped Ether").

    Returns:
        A Unit configured as a pausable payment token.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_PAYMENT_TOKEN,
        decimal_places=0,
        min_balance=Decimal("0"),
        transfer_rule=pausable_transfer_rule,
        _frozen_state=_freeze_state({'paused': False})
    )
