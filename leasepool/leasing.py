"""
leasing.py - Long-Term Leases

A lease gives one borrower exclusive flash rights over a listed asset for a
number of ticks, paid for in full upfront.

    IDLE   --acquire_lease-->  LEASED        (expiry = now + duration)
    LEASED --tick >= expiry-->  expired      (still recorded, not yet settled)
    expired --settle_lease-->  IDLE          (borrower receipt burned)

A running lease cannot be extended, replaced or cancelled. An expired lease
that nobody settled is settled on the way into the next acquire_lease or
remove_record.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from .core import (
    TransactionOrigin, OriginType,
    NotFound, Conflict, InsufficientPayment, RangeError,
    LEASE_ACQUIRED, LEASE_SETTLED,
    build_transaction,
)
from .assets import AssetKey
from .codec import check_field
from .fees import FeeLedger
from .receipts import ReceiptIssuer, ReceiptKind
from .registry import LeaseRegistry


class LeaseState(Enum):
    IDLE = "idle"
    LEASED = "leased"


@dataclass(frozen=True, slots=True)
class LeaseGrant:
    """Outcome of a successful acquire_lease."""
    asset: AssetKey
    lessee: str
    receiver: str
    borrower_receipt_id: int
    lease_expiry_tick: int
    price_per_tick: int
    duration_ticks: int
    total_paid: int
    lender: str
    lender_share: int
    protocol_share: int
    settled_receipt_id: Optional[int] = None
    settled_expiry_tick: Optional[int] = None


class LongTermLeaseFSM:
    """Lease lifecycle over the registry's records."""

    def __init__(self, registry: LeaseRegistry, fees: FeeLedger, receipts: ReceiptIssuer):
        self.registry = registry
        self.fees = fees
        self.receipts = receipts

    @property
    def ledger(self):
        return self.registry.ledger

    def lease_state(self, asset: AssetKey) -> LeaseState:
        """
        Raises:
            NotFound: If the asset is not listed
        """
        record = self.registry.require_record(asset)
        if record.is_leased(self.ledger.current_tick):
            return LeaseState.LEASED
        return LeaseState.IDLE

    def acquire_lease(
        self,
        caller: str,
        asset: AssetKey,
        offered_price: int,
        receiver: str,
        duration_ticks: int,
    ) -> LeaseGrant:
        """
        Lease an idle asset to receiver for duration_ticks.

        Pulls offered_price * duration_ticks from caller and splits it at the
        fee rate in force now.

        Raises:
            NotFound: If the asset is not listed or not offered for lease
            Conflict: If the asset is locked or already leased
            InsufficientPayment: If offered_price < max(price_per_tick, flash_fee)
            RangeError: If duration_ticks is outside [1, max_lease_ticks] or the
                        expiry tick does not fit its field
        """
        for name, value in (('offered_price', offered_price), ('duration_ticks', duration_ticks)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an int, got {value!r}")
        if offered_price < 0:
            raise ValueError(f"offered_price cannot be negative, got {offered_price}")

        record = self.registry.require_record(asset)
        if record.price_per_tick == 0:
            raise NotFound(f"{asset.symbol} isn't available for lease")
        self.registry.require_unlocked(asset)
        now = self.ledger.current_tick
        if record.is_leased(now):
            raise Conflict(f"{asset.symbol} is leased until tick {record.lease_expiry_tick}")
        floor = max(record.price_per_tick, record.flash_fee)
        if offered_price < floor:
            raise InsufficientPayment(
                f"offered {offered_price} per tick below floor {floor} for {asset.symbol}"
            )
        if duration_ticks < 1 or duration_ticks > record.max_lease_ticks:
            raise RangeError(
                f"duration {duration_ticks} outside [1, {record.max_lease_ticks}] for {asset.symbol}"
            )
        expiry = check_field('lease_expiry_tick', now + duration_ticks)

        settled_receipt_id = settled_expiry_tick = None
        if record.has_lease:
            settled_receipt_id = record.borrower_receipt_id
            settled_expiry_tick = record.lease_expiry_tick
            self.settle_lease(asset)
            record = self.registry.require_record(asset)

        total = offered_price * duration_ticks
        minted = self.receipts.prepare_mint(ReceiptKind.BORROWER, receiver, asset)
        pending = build_transaction(
            self.ledger,
            self.fees.payment_moves(caller, total, f"lease_{asset.symbol}") + [minted.move],
            origin=TransactionOrigin(OriginType.CONTRACT, "pool", asset.symbol, LEASE_ACQUIRED),
            units_to_create=(minted.unit,),
        )
        self.ledger.execute_or_raise(pending)
        self.registry.store(asset, replace(
            record,
            lease_expiry_tick=expiry,
            borrower_receipt_id=minted.receipt_id,
        ))

        lender = self.receipts.owner_of(ReceiptKind.LENDER, record.lender_receipt_id)
        lender_share, protocol_share = self.fees.distribute(lender, total)
        return LeaseGrant(
            asset=asset,
            lessee=caller,
            receiver=receiver,
            borrower_receipt_id=minted.receipt_id,
            lease_expiry_tick=expiry,
            price_per_tick=offered_price,
            duration_ticks=duration_ticks,
            total_paid=total,
            lender=lender,
            lender_share=lender_share,
            protocol_share=protocol_share,
            settled_receipt_id=settled_receipt_id,
            settled_expiry_tick=settled_expiry_tick,
        )

    def settle_lease(self, asset: AssetKey) -> bool:
        """
        Close an expired lease. Anyone may call it.

        Returns False and changes nothing if there is no lease or it is still
        running.

        Raises:
            NotFound: If the asset is not listed
        """
        record = self.registry.require_record(asset)
        if not record.has_lease or record.is_leased(self.ledger.current_tick):
            return False
        burned = self.receipts.prepare_burn(ReceiptKind.BORROWER, record.borrower_receipt_id)
        pending = build_transaction(
            self.ledger,
            [burned.move],
            [burned.state_change],
            origin=TransactionOrigin(OriginType.LIFECYCLE, "pool", asset.symbol, LEASE_SETTLED),
        )
        self.ledger.execute_or_raise(pending)
        self.registry.store(asset, record.without_lease())
        return True
