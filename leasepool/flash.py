"""
flash.py - Flash Access

A flash access hands a listed asset to a receiver for the duration of one
callback. The receiver must give custody back to the pool before returning:

    1. pull the fee from the initiator             (skipped for the lessee)
    2. lock the asset, move it pool -> receiver.wallet
    3. receiver.on_flash_access(asset, fee, initiator, data)
    4. unlock, check holder_of(asset) == pool wallet
    5. credit the fee, net of the protocol cut, to the lender receipt holder

Any failure after step 1 leaves partial effects on the ledger; the pool
unwinds them by restoring the snapshot it took when the operation began.
"""

from __future__ import annotations
from dataclasses import dataclass

from .core import (
    FlashReceiver, TransactionOrigin, OriginType,
    Unauthorized, InsufficientPayment, CustodyViolation,
    FLASH_ACCESS,
    build_transaction,
)
from .assets import AssetKey, holder_of, asset_transfer_move
from .fees import FeeLedger
from .receipts import ReceiptIssuer, ReceiptKind
from .registry import LeaseRegistry


@dataclass(frozen=True, slots=True)
class FlashResult:
    """What a completed flash access paid and to whom."""
    asset: AssetKey
    initiator: str
    receiver: str
    fee: int
    lender: str
    lender_share: int
    protocol_share: int


class FlashAccessProtocol:
    """Temporary same-operation custody transfer with post-call verification."""

    def __init__(self, registry: LeaseRegistry, fees: FeeLedger, receipts: ReceiptIssuer):
        self.registry = registry
        self.fees = fees
        self.receipts = receipts

    @property
    def ledger(self):
        return self.registry.ledger

    def flash_access(
        self,
        caller: str,
        asset: AssetKey,
        offered_fee: int,
        receiver: FlashReceiver,
        data: bytes = b"",
    ) -> FlashResult:
        """
        Lend the asset to receiver for one callback.

        While the asset is under a running lease only the borrower receipt
        holder may flash it, for free. Otherwise the offered fee must cover
        the listed flash fee and is pulled in full.

        Raises:
            NotFound: If the asset is not listed
            Conflict: If the asset is already out on another operation
            Unauthorized: If leased and caller does not hold the borrower receipt
            InsufficientPayment: If offered_fee is below the flash fee
            CustodyViolation: If the asset is not back in the pool afterwards
        """
        if isinstance(offered_fee, bool) or not isinstance(offered_fee, int) or offered_fee < 0:
            raise ValueError(f"offered_fee must be a non-negative int, got {offered_fee!r}")

        record = self.registry.require_record(asset)
        self.registry.require_unlocked(asset)

        if record.is_leased(self.ledger.current_tick):
            if not self.receipts.holds(ReceiptKind.BORROWER, record.borrower_receipt_id, caller):
                raise Unauthorized(f"{asset.symbol} is leased and {caller} is not the lessee")
            fee = 0
        else:
            if offered_fee < record.flash_fee:
                raise InsufficientPayment(
                    f"offered {offered_fee} below flash fee {record.flash_fee} for {asset.symbol}"
                )
            fee = offered_fee
            self.fees.collect(caller, fee, asset.symbol, FLASH_ACCESS)

        pool_wallet = self.registry.wallet
        self.registry.lock(asset)
        try:
            pending = build_transaction(
                self.ledger,
                [asset_transfer_move(asset, pool_wallet, receiver.wallet, f"flash_{asset.symbol}")],
                origin=TransactionOrigin(OriginType.CONTRACT, "pool", asset.symbol, FLASH_ACCESS),
            )
            self.ledger.execute_or_raise(pending)
            receiver.on_flash_access(asset, fee, caller, data)
        finally:
            self.registry.unlock(asset)

        if holder_of(self.ledger, asset) != pool_wallet:
            raise CustodyViolation(f"{asset.symbol} was not returned to the pool")

        record = self.registry.require_record(asset)
        lender = self.receipts.owner_of(ReceiptKind.LENDER, record.lender_receipt_id)
        lender_share, protocol_share = self.fees.distribute(lender, fee)
        return FlashResult(
            asset=asset,
            initiator=caller,
            receiver=receiver.wallet,
            fee=fee,
            lender=lender,
            lender_share=lender_share,
            protocol_share=protocol_share,
        )
