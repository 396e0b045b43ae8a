"""
assets.py - Deposited Asset Units and the Custody Surface

Every non-fungible asset is a ledger unit with supply 1. Its custodian is the
single wallet holding that one unit:

    Issuance:
        Move(source="system", dest="alice", unit="PUNK#7", quantity=1)

    Deposit into the pool:
        Move(source="alice", dest="pool", unit="PUNK#7", quantity=1)

The pool only needs two things from an asset: a way to transfer custody and a
way to ask who currently holds it. holder_of() and transfer_asset() are that
surface; flash receivers use transfer_asset() to hand the asset back.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .core import (
    LedgerView, Move, TransactionOrigin, OriginType, Unit,
    SYSTEM_WALLET, UNIT_TYPE_ASSET,
    build_transaction, _freeze_state,
)
from .ledger import Ledger


ONE = Decimal("1")


@dataclass(frozen=True, slots=True, order=True)
class AssetKey:
    """Identity of a non-fungible asset: its collection and id within it."""
    collection: str
    asset_id: int

    def __post_init__(self):
        if not self.collection or not self.collection.strip():
            raise ValueError("AssetKey collection cannot be empty")
        if "#" in self.collection:
            raise ValueError(f"AssetKey collection cannot contain '#': {self.collection}")
        if isinstance(self.asset_id, bool) or not isinstance(self.asset_id, int):
            raise ValueError(f"AssetKey asset_id must be an int, got {type(self.asset_id).__name__}")
        if self.asset_id < 0:
            raise ValueError(f"AssetKey asset_id cannot be negative, got {self.asset_id}")

    @property
    def symbol(self) -> str:
        """Ledger unit symbol for this asset."""
        return f"{self.collection}#{self.asset_id}"

    def __repr__(self) -> str:
        return f"AssetKey({self.symbol})"


def create_asset_unit(asset: AssetKey, name: Optional[str] = None) -> Unit:
    """
    Create the ledger unit for one non-fungible asset.

    Args:
        asset: Asset identity
        name: Optional human-readable name

    Returns:
        Unit with supply 1: balances are 0 or 1 in every wallet.
    """
    return Unit(
        symbol=asset.symbol,
        name=name or f"{asset.collection} #{asset.asset_id}",
        unit_type=UNIT_TYPE_ASSET,
        min_balance=Decimal("0"),
        max_balance=ONE,
        decimal_places=0,
        transfer_rule=None,
        _frozen_state=_freeze_state({
            'collection': asset.collection,
            'asset_id': asset.asset_id,
        }),
    )


def issue_asset(ledger: Ledger, asset: AssetKey, owner: str, name: Optional[str] = None) -> None:
    """
    Register an asset unit and issue its single unit to owner.

    Raises:
        ValueError: If the asset is already registered
        LedgerError: If the issuance is rejected
    """
    if asset.symbol in ledger.units:
        raise ValueError(f"Asset {asset.symbol} already issued")
    pending = build_transaction(
        ledger,
        [Move(ONE, asset.symbol, SYSTEM_WALLET, owner, f"issue_{asset.symbol}")],
        origin=TransactionOrigin(OriginType.SYSTEM, "issuance", asset.symbol, "ISSUE"),
        units_to_create=(create_asset_unit(asset, name),),
    )
    ledger.execute_or_raise(pending)


def holder_of(view: LedgerView, asset: AssetKey) -> Optional[str]:
    """
    Return the wallet currently holding the asset, or None if nobody does.

    Pure function over a read-only view.
    """
    positions = view.get_positions(asset.symbol)
    for wallet, quantity in positions.items():
        if wallet != SYSTEM_WALLET and quantity >= ONE:
            return wallet
    return None


def asset_transfer_move(asset: AssetKey, source: str, dest: str, contract_id: str) -> Move:
    """Build the custody move for an asset."""
    return Move(ONE, asset.symbol, source, dest, contract_id)


def transfer_asset(ledger: Ledger, asset: AssetKey, source: str, dest: str) -> None:
    """
    Move custody of an asset from source to dest as its own transaction.

    Raises:
        InsufficientFunds: If source does not hold the asset
        LedgerError: For any other rejection
    """
    pending = build_transaction(
        ledger,
        [asset_transfer_move(asset, source, dest, f"transfer_{asset.symbol}")],
        origin=TransactionOrigin(OriginType.USER_ACTION, source, asset.symbol, "TRANSFER"),
    )
    ledger.execute_or_raise(pending)
