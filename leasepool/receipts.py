"""
receipts.py - Lender and Borrower Receipts

A receipt is a bearer claim on a pool record. Two kinds exist:

    LENDER#{id}     minted to the depositor on add_record, burned on remove_record
    BORROWER#{id}   minted to the lessee's receiver on acquire_lease,
                    burned when the lease is settled

Each receipt is a ledger unit with supply 1. Holding it is the only
authorization the pool checks for the record operations it guards, and it can
be handed to another wallet like any other unit.

The two kinds draw ids from independent counters starting at 1, so id 0 stays
free to mean "no receipt" inside a pool record.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple

from .core import (
    Move, Unit, UnitStateChange, TransactionOrigin, OriginType,
    NotFound, Unauthorized,
    SYSTEM_WALLET, UNIT_TYPE_LENDER_RECEIPT, UNIT_TYPE_BORROWER_RECEIPT,
    build_transaction, _freeze_state,
)
from .assets import AssetKey
from .ledger import Ledger


ONE = Decimal("1")


class ReceiptKind(str, Enum):
    """Which side of a record a receipt represents."""
    LENDER = "LENDER"
    BORROWER = "BORROWER"

    @property
    def unit_type(self) -> str:
        if self is ReceiptKind.LENDER:
            return UNIT_TYPE_LENDER_RECEIPT
        return UNIT_TYPE_BORROWER_RECEIPT


def receipt_symbol(kind: ReceiptKind, receipt_id: int) -> str:
    """Ledger unit symbol of a receipt, e.g. LENDER#3."""
    return f"{kind.value}#{receipt_id}"


@dataclass(frozen=True, slots=True)
class ReceiptMint:
    """Unit and move that together mint one receipt."""
    kind: ReceiptKind
    receipt_id: int
    unit: Unit
    move: Move


@dataclass(frozen=True, slots=True)
class ReceiptBurn:
    """Move and state change that together burn one receipt."""
    kind: ReceiptKind
    receipt_id: int
    move: Move
    state_change: UnitStateChange


class ReceiptIssuer:
    """
    Mints, burns and tracks lender and borrower receipts on a ledger.

    The issuer only prepares the parts of a mint or burn; callers combine
    them with their own moves so a deposit and its receipt land in one
    transaction. mint() and burn() are the standalone variants.
    """

    def __init__(self, ledger: Ledger, pool_wallet: Optional[str] = None):
        self.ledger = ledger
        self.pool_wallet = pool_wallet
        self._counters: Dict[ReceiptKind, int] = {
            ReceiptKind.LENDER: 0,
            ReceiptKind.BORROWER: 0,
        }

    def _check_holder(self, wallet: str) -> None:
        # A receipt parked in either wallet has no bearer and can never be burned
        if wallet == SYSTEM_WALLET or wallet == self.pool_wallet:
            raise Unauthorized(f"{wallet} cannot hold a receipt")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def minted_count(self, kind: ReceiptKind) -> int:
        """Number of receipts of this kind ever minted (burned ones included)."""
        return self._counters[kind]

    def owner_of(self, kind: ReceiptKind, receipt_id: int) -> str:
        """
        Return the wallet holding a live receipt.

        Raises:
            NotFound: If the receipt was never minted or has been burned
        """
        symbol = receipt_symbol(kind, receipt_id)
        if symbol not in self.ledger.units:
            raise NotFound(f"Receipt {symbol} does not exist")
        if self.ledger.get_unit_state(symbol).get('burned'):
            raise NotFound(f"Receipt {symbol} has been burned")
        for wallet, quantity in self.ledger.get_positions(symbol).items():
            if wallet != SYSTEM_WALLET and quantity >= ONE:
                return wallet
        raise NotFound(f"Receipt {symbol} has no holder")

    def holds(self, kind: ReceiptKind, receipt_id: int, wallet: str) -> bool:
        """True if wallet holds the live receipt. Receipt id 0 is never held."""
        if receipt_id == 0:
            return False
        try:
            return self.owner_of(kind, receipt_id) == wallet
        except NotFound:
            return False

    def asset_of(self, kind: ReceiptKind, receipt_id: int) -> AssetKey:
        """Return the asset a receipt was minted against."""
        symbol = receipt_symbol(kind, receipt_id)
        if symbol not in self.ledger.units:
            raise NotFound(f"Receipt {symbol} does not exist")
        state = self.ledger.get_unit_state(symbol)
        return AssetKey(state['collection'], state['asset_id'])

    # ------------------------------------------------------------------
    # Mint / burn parts
    # ------------------------------------------------------------------

    def prepare_mint(self, kind: ReceiptKind, holder: str, asset: AssetKey) -> ReceiptMint:
        """
        Reserve the next id of kind and build the unit and mint move for it.

        The counter advances immediately; an enclosing pool operation that
        fails restores it along with everything else.
        """
        self._check_holder(holder)
        self._counters[kind] += 1
        receipt_id = self._counters[kind]
        symbol = receipt_symbol(kind, receipt_id)
        unit = Unit(
            symbol=symbol,
            name=f"{kind.value.title()} receipt for {asset.symbol}",
            unit_type=kind.unit_type,
            min_balance=Decimal("0"),
            max_balance=ONE,
            decimal_places=0,
            transfer_rule=None,
            _frozen_state=_freeze_state({
                'kind': kind.value,
                'receipt_id': receipt_id,
                'collection': asset.collection,
                'asset_id': asset.asset_id,
                'burned': False,
            }),
        )
        move = Move(ONE, symbol, SYSTEM_WALLET, holder, f"mint_{symbol}")
        return ReceiptMint(kind, receipt_id, unit, move)

    def prepare_burn(self, kind: ReceiptKind, receipt_id: int) -> ReceiptBurn:
        """
        Build the move and state change that burn a live receipt.

        Raises:
            NotFound: If the receipt is not live
        """
        holder = self.owner_of(kind, receipt_id)
        symbol = receipt_symbol(kind, receipt_id)
        old_state = self.ledger.get_unit_state(symbol)
        new_state = {**old_state, 'burned': True}
        return ReceiptBurn(
            kind=kind,
            receipt_id=receipt_id,
            move=Move(ONE, symbol, holder, SYSTEM_WALLET, f"burn_{symbol}"),
            state_change=UnitStateChange(symbol, old_state, new_state),
        )

    def mint(self, kind: ReceiptKind, holder: str, asset: AssetKey) -> int:
        """Mint a receipt in its own transaction and return its id."""
        minted = self.prepare_mint(kind, holder, asset)
        pending = build_transaction(
            self.ledger,
            [minted.move],
            origin=TransactionOrigin(OriginType.CONTRACT, "receipts", minted.unit.symbol, "MINT"),
            units_to_create=(minted.unit,),
        )
        self.ledger.execute_or_raise(pending)
        return minted.receipt_id

    def burn(self, kind: ReceiptKind, receipt_id: int) -> None:
        """Burn a receipt in its own transaction."""
        burned = self.prepare_burn(kind, receipt_id)
        pending = build_transaction(
            self.ledger,
            [burned.move],
            [burned.state_change],
            origin=TransactionOrigin(OriginType.CONTRACT, "receipts", burned.move.unit_symbol, "BURN"),
        )
        self.ledger.execute_or_raise(pending)

    def transfer(self, kind: ReceiptKind, receipt_id: int, source: str, dest: str) -> None:
        """
        Hand a receipt from source to dest.

        Raises:
            NotFound: If the receipt is not live
            Unauthorized: If source does not hold it, or dest is the system
                or pool wallet
        """
        holder = self.owner_of(kind, receipt_id)
        if holder != source:
            raise Unauthorized(f"{source} does not hold {receipt_symbol(kind, receipt_id)}")
        self._check_holder(dest)
        symbol = receipt_symbol(kind, receipt_id)
        pending = build_transaction(
            self.ledger,
            [Move(ONE, symbol, source, dest, f"transfer_{symbol}")],
            origin=TransactionOrigin(OriginType.USER_ACTION, source, symbol, "TRANSFER"),
        )
        self.ledger.execute_or_raise(pending)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> Tuple[Tuple[ReceiptKind, int], ...]:
        return tuple(self._counters.items())

    def restore(self, snap: Tuple[Tuple[ReceiptKind, int], ...]) -> None:
        self._counters = dict(snap)
