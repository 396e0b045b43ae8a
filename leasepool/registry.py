"""
registry.py - Pool Records and Custody of Deposited Assets

The registry is where an asset lives while it is listed. Listing moves the
asset into the pool wallet and mints a lender receipt to the depositor in the
same transaction; removal reverses both.

    add_record(alice, PUNK#7, flash_fee=10, price_per_tick=20, max_lease_ticks=100)
        Move(1 PUNK#7: alice -> pool)
        Move(1 LENDER#1: system -> alice)

    remove_record(alice, PUNK#7)
        Move(1 PUNK#7: pool -> alice)
        Move(1 LENDER#1: alice -> system)      LENDER#1 marked burned

Records are kept as packed words (see codec.py), one per asset. An asset is
resident exactly while its word is present. The per-asset lock set marks
assets that are out on an in-flight operation; add and remove refuse them.
"""

from __future__ import annotations
from typing import Dict, List, Set, Tuple

from .core import (
    TransactionOrigin, OriginType,
    NotFound, Unauthorized, Conflict,
    RECORD_ADDED, RECORD_REMOVED,
    build_transaction,
)
from .assets import AssetKey, holder_of, asset_transfer_move
from .codec import PoolRecord, EMPTY_RECORD, check_field, encode_record, decode_record
from .ledger import Ledger
from .receipts import ReceiptIssuer, ReceiptKind


def _check_terms(flash_fee: int, price_per_tick: int, max_lease_ticks: int) -> None:
    check_field('flash_fee', flash_fee)
    check_field('price_per_tick', price_per_tick)
    check_field('max_lease_ticks', max_lease_ticks)


class LeaseRegistry:
    """
    Listed assets, their records and the per-asset lock set.

    Authorization is by receipt only: whoever holds a record's lender receipt
    may edit or remove it.
    """

    def __init__(self, ledger: Ledger, receipts: ReceiptIssuer, wallet: str):
        self.ledger = ledger
        self.receipts = receipts
        self.wallet = wallet
        self._words: Dict[AssetKey, int] = {}
        self._locked: Set[AssetKey] = set()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_record(self, asset: AssetKey) -> PoolRecord:
        """Return the asset's record, or the all-zero record if not listed."""
        word = self._words.get(asset)
        if word is None:
            return EMPTY_RECORD
        return decode_record(word)

    def has_record(self, asset: AssetKey) -> bool:
        return asset in self._words

    def assets(self) -> List[AssetKey]:
        """Listed assets in sorted order."""
        return sorted(self._words)

    def packed_word(self, asset: AssetKey) -> int:
        """Stored word for the asset (0 if not listed)."""
        return self._words.get(asset, 0)

    def require_record(self, asset: AssetKey) -> PoolRecord:
        """
        Raises:
            NotFound: If the asset is not listed
        """
        if asset not in self._words:
            raise NotFound(f"{asset.symbol} isn't in the pool")
        return decode_record(self._words[asset])

    def store(self, asset: AssetKey, record: PoolRecord) -> None:
        """
        Persist a record. A record without a lender receipt is deleted.

        Raises:
            RangeError: If a field does not fit its width (nothing stored)
        """
        if not record.is_resident:
            self._words.pop(asset, None)
            return
        self._words[asset] = encode_record(record)

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    def is_locked(self, asset: AssetKey) -> bool:
        return asset in self._locked

    def lock(self, asset: AssetKey) -> None:
        """
        Raises:
            Conflict: If the asset is already locked
        """
        if asset in self._locked:
            raise Conflict(f"{asset.symbol} is locked by an operation in progress")
        self._locked.add(asset)

    def unlock(self, asset: AssetKey) -> None:
        self._locked.discard(asset)

    def require_unlocked(self, asset: AssetKey) -> None:
        if asset in self._locked:
            raise Conflict(f"{asset.symbol} is locked by an operation in progress")

    # ------------------------------------------------------------------
    # Record operations
    # ------------------------------------------------------------------

    def add_record(
        self,
        caller: str,
        asset: AssetKey,
        flash_fee: int,
        price_per_tick: int,
        max_lease_ticks: int,
    ) -> int:
        """
        List an asset held by caller and return the new lender receipt id.

        Raises:
            Conflict: If the asset is locked or already listed
            RangeError: If a term does not fit its field
            Unauthorized: If caller does not hold the asset
        """
        self.require_unlocked(asset)
        if asset in self._words:
            raise Conflict(f"{asset.symbol} already in Pool")
        _check_terms(flash_fee, price_per_tick, max_lease_ticks)
        if holder_of(self.ledger, asset) != caller:
            raise Unauthorized(f"{caller} does not hold {asset.symbol}")

        minted = self.receipts.prepare_mint(ReceiptKind.LENDER, caller, asset)
        pending = build_transaction(
            self.ledger,
            [
                asset_transfer_move(asset, caller, self.wallet, f"deposit_{asset.symbol}"),
                minted.move,
            ],
            origin=TransactionOrigin(OriginType.CONTRACT, "pool", asset.symbol, RECORD_ADDED),
            units_to_create=(minted.unit,),
        )
        self.ledger.execute_or_raise(pending)
        self.store(asset, PoolRecord(
            flash_fee=flash_fee,
            price_per_tick=price_per_tick,
            max_lease_ticks=max_lease_ticks,
            lender_receipt_id=minted.receipt_id,
        ))
        return minted.receipt_id

    def edit_record(
        self,
        caller: str,
        asset: AssetKey,
        flash_fee: int,
        price_per_tick: int,
        max_lease_ticks: int,
    ) -> Tuple[PoolRecord, PoolRecord]:
        """
        Replace the three depositor terms; any lease is left as it is.

        Returns:
            (old_record, new_record)

        Raises:
            NotFound: If the asset is not listed
            Unauthorized: If caller does not hold the lender receipt
            RangeError: If a term does not fit its field
        """
        record = self.require_record(asset)
        if not self.receipts.holds(ReceiptKind.LENDER, record.lender_receipt_id, caller):
            raise Unauthorized(f"{caller} does not hold the lender receipt for {asset.symbol}")
        _check_terms(flash_fee, price_per_tick, max_lease_ticks)
        updated = record.with_terms(flash_fee, price_per_tick, max_lease_ticks)
        self.store(asset, updated)
        return record, updated

    def remove_record(self, caller: str, asset: AssetKey) -> PoolRecord:
        """
        Return the asset to caller, burn the lender receipt and drop the record.

        A lease that has expired but was never settled is settled in the same
        transaction: its borrower receipt is burned too.

        Returns:
            The record as it was before removal

        Raises:
            NotFound: If the asset is not listed
            Conflict: If the asset is locked or under a running lease
            Unauthorized: If caller does not hold the lender receipt
        """
        record = self.require_record(asset)
        self.require_unlocked(asset)
        if not self.receipts.holds(ReceiptKind.LENDER, record.lender_receipt_id, caller):
            raise Unauthorized(f"{caller} does not hold the lender receipt for {asset.symbol}")
        if record.is_leased(self.ledger.current_tick):
            raise Conflict(f"{asset.symbol} is leased until tick {record.lease_expiry_tick}")

        burns = [self.receipts.prepare_burn(ReceiptKind.LENDER, record.lender_receipt_id)]
        if record.has_lease:
            burns.append(self.receipts.prepare_burn(ReceiptKind.BORROWER, record.borrower_receipt_id))
        pending = build_transaction(
            self.ledger,
            [asset_transfer_move(asset, self.wallet, caller, f"withdraw_{asset.symbol}")]
            + [b.move for b in burns],
            [b.state_change for b in burns],
            origin=TransactionOrigin(OriginType.CONTRACT, "pool", asset.symbol, RECORD_REMOVED),
        )
        self.ledger.execute_or_raise(pending)
        self.store(asset, EMPTY_RECORD)
        return record

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> Tuple[Dict[AssetKey, int], frozenset]:
        return (dict(self._words), frozenset(self._locked))

    def restore(self, snap: Tuple[Dict[AssetKey, int], frozenset]) -> None:
        words, locked = snap
        self._words = dict(words)
        self._locked = set(locked)
