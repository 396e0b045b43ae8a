"""
pool.py - The Lease Pool

LeasePool wires the components together and is the only surface hosts should
call. Every entry point runs as one atomic operation:

    with self._atomic():
        ... any number of ledger transactions and component updates ...

If anything inside raises, the ledger and its clock, the records and locks,
the receipt counters, the earnings and fee rate, the admin slots and any
notifications not yet delivered are put back exactly as they were, and the
exception propagates. Operations started from inside a flash callback nest:
they are atomic on their own and are unwound again if the outer operation
fails.

Notifications are buffered while an operation runs and delivered to
subscribers only when the outermost operation completes. An exception raised
by a subscriber is not propagated: the operation it observes has committed.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Tuple

from .core import (
    FlashReceiver, PoolEvent, POOL_WALLET,
    RECORD_ADDED, RECORD_EDITED, RECORD_REMOVED,
    FLASH_ACCESS, LEASE_ACQUIRED, LEASE_SETTLED,
    EARNINGS_WITHDRAWN, POOL_FEE_CHANGED,
    OWNERSHIP_PROPOSED, OWNERSHIP_TRANSFERRED, RECEIPT_TRANSFERRED,
)
from .assets import AssetKey
from .codec import PoolRecord
from .fees import FeeLedger
from .flash import FlashAccessProtocol, FlashResult
from .leasing import LongTermLeaseFSM, LeaseState, LeaseGrant
from .ledger import Ledger
from .ownership import AdminOwnership
from .receipts import ReceiptIssuer, ReceiptKind
from .registry import LeaseRegistry


Subscriber = Callable[[PoolEvent], None]


class LeasePool:
    """
    Rental pool for non-fungible assets.

    Example:
        ledger = Ledger("main", verbose=False)
        ledger.register_unit(payment_token("WETH", "Wrapped Ether"))
        for w in ("admin", "alice", "bob"):
            ledger.register_wallet(w)
        pool = LeasePool(ledger, admin="admin", currency="WETH")

        punk = AssetKey("PUNK", 7)
        issue_asset(ledger, punk, "alice")
        pool.add_record("alice", punk, flash_fee=10, price_per_tick=20, max_lease_ticks=100)
        pool.acquire_lease("bob", punk, offered_price=20, receiver="bob", duration_ticks=20)
    """

    def __init__(
        self,
        ledger: Ledger,
        admin: str,
        currency: str,
        wallet: str = POOL_WALLET,
        verbose: Optional[bool] = None,
    ):
        """
        Args:
            ledger: Ledger holding assets, receipts and the currency
            admin: Initial admin identity
            currency: Symbol of a registered unit fees are paid in
            wallet: Pool custody wallet, registered here if needed
            verbose: Print one line per notification (default: ledger.verbose)
        """
        ledger.get_unit(currency)
        if not ledger.is_registered(wallet):
            ledger.register_wallet(wallet)
        self.ledger = ledger
        self.currency = currency
        self.wallet = wallet
        self.verbose = ledger.verbose if verbose is None else verbose

        self.ownership = AdminOwnership(admin)
        self.receipts = ReceiptIssuer(ledger, wallet)
        self.fees = FeeLedger(ledger, currency, wallet, self.ownership)
        self.registry = LeaseRegistry(ledger, self.receipts, wallet)
        self.flash = FlashAccessProtocol(self.registry, self.fees, self.receipts)
        self.leasing = LongTermLeaseFSM(self.registry, self.fees, self.receipts)

        self._events: List[PoolEvent] = []
        self._pending_events: List[PoolEvent] = []
        self._subscribers: List[Subscriber] = []
        self._depth = 0

    # ========================================================================
    # ATOMICITY AND NOTIFICATIONS
    # ========================================================================

    def _snapshot(self) -> Tuple[Any, ...]:
        return (
            self.ledger.snapshot(),
            self.registry.snapshot(),
            self.receipts.snapshot(),
            self.fees.snapshot(),
            self.ownership.snapshot(),
            len(self._pending_events),
        )

    def _restore(self, snap: Tuple[Any, ...]) -> None:
        ledger_snap, registry_snap, receipts_snap, fees_snap, ownership_snap, n_events = snap
        self.ledger.restore(ledger_snap)
        self.registry.restore(registry_snap)
        self.receipts.restore(receipts_snap)
        self.fees.restore(fees_snap)
        self.ownership.restore(ownership_snap)
        del self._pending_events[n_events:]

    @contextmanager
    def _atomic(self):
        snap = self._snapshot()
        self._depth += 1
        try:
            yield
        except Exception:
            self._restore(snap)
            raise
        finally:
            self._depth -= 1
        if self._depth == 0:
            self._publish()

    def _emit(self, name: str, **fields: Any) -> None:
        self._pending_events.append(PoolEvent(name, self.ledger.current_tick, fields))

    def _publish(self) -> None:
        committed, self._pending_events = self._pending_events, []
        for event in committed:
            self._events.append(event)
            if self.verbose:
                print(f"📣 {event!r}")
            for callback in list(self._subscribers):
                # Already committed: observer errors stay with the observer
                try:
                    callback(event)
                except Exception as e:
                    if self.verbose:
                        print(f"✗ DELIVERY FAILED: {event.name} to {callback!r}: {e}")

    def subscribe(self, callback: Subscriber) -> None:
        """Call callback with every notification committed from now on."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        self._subscribers.remove(callback)

    @property
    def events(self) -> Tuple[PoolEvent, ...]:
        """Every committed notification, oldest first."""
        return tuple(self._events)

    # ========================================================================
    # RECORDS
    # ========================================================================

    def add_record(
        self,
        caller: str,
        asset: AssetKey,
        flash_fee: int,
        price_per_tick: int,
        max_lease_ticks: int,
    ) -> int:
        """List an asset held by caller. Returns the lender receipt id."""
        with self._atomic():
            receipt_id = self.registry.add_record(
                caller, asset, flash_fee, price_per_tick, max_lease_ticks
            )
            self._emit(
                RECORD_ADDED,
                asset=asset,
                depositor=caller,
                lender_receipt_id=receipt_id,
                flash_fee=flash_fee,
                price_per_tick=price_per_tick,
                max_lease_ticks=max_lease_ticks,
            )
        return receipt_id

    def edit_record(
        self,
        caller: str,
        asset: AssetKey,
        flash_fee: int,
        price_per_tick: int,
        max_lease_ticks: int,
    ) -> PoolRecord:
        """Change a listed asset's terms. Returns the updated record."""
        with self._atomic():
            _, updated = self.registry.edit_record(
                caller, asset, flash_fee, price_per_tick, max_lease_ticks
            )
            self._emit(
                RECORD_EDITED,
                asset=asset,
                flash_fee=flash_fee,
                price_per_tick=price_per_tick,
                max_lease_ticks=max_lease_ticks,
            )
        return updated

    def remove_record(self, caller: str, asset: AssetKey) -> None:
        """Return a listed asset to the lender receipt holder."""
        with self._atomic():
            removed = self.registry.remove_record(caller, asset)
            if removed.has_lease:
                self._emit(
                    LEASE_SETTLED,
                    asset=asset,
                    borrower_receipt_id=removed.borrower_receipt_id,
                    lease_expiry_tick=removed.lease_expiry_tick,
                )
            self._emit(
                RECORD_REMOVED,
                asset=asset,
                recipient=caller,
                lender_receipt_id=removed.lender_receipt_id,
            )

    # ========================================================================
    # FLASH ACCESS AND LEASES
    # ========================================================================

    def flash_access(
        self,
        caller: str,
        asset: AssetKey,
        offered_fee: int,
        receiver: FlashReceiver,
        data: bytes = b"",
    ) -> FlashResult:
        """Lend an asset to receiver for a single callback."""
        with self._atomic():
            result = self.flash.flash_access(caller, asset, offered_fee, receiver, data)
            self._emit(
                FLASH_ACCESS,
                asset=asset,
                initiator=caller,
                receiver=result.receiver,
                fee=result.fee,
                lender=result.lender,
                lender_share=result.lender_share,
                protocol_share=result.protocol_share,
            )
        return result

    def acquire_lease(
        self,
        caller: str,
        asset: AssetKey,
        offered_price: int,
        receiver: str,
        duration_ticks: int,
    ) -> int:
        """Lease an idle asset. Returns the borrower receipt id minted to receiver."""
        with self._atomic():
            grant: LeaseGrant = self.leasing.acquire_lease(
                caller, asset, offered_price, receiver, duration_ticks
            )
            if grant.settled_receipt_id is not None:
                self._emit(
                    LEASE_SETTLED,
                    asset=asset,
                    borrower_receipt_id=grant.settled_receipt_id,
                    lease_expiry_tick=grant.settled_expiry_tick,
                )
            self._emit(
                LEASE_ACQUIRED,
                asset=asset,
                lessee=caller,
                receiver=receiver,
                borrower_receipt_id=grant.borrower_receipt_id,
                lease_expiry_tick=grant.lease_expiry_tick,
                price_per_tick=grant.price_per_tick,
                total_paid=grant.total_paid,
                lender=grant.lender,
                lender_share=grant.lender_share,
                protocol_share=grant.protocol_share,
            )
        return grant.borrower_receipt_id

    def settle_lease(self, asset: AssetKey) -> bool:
        """Close an expired lease. Returns False if there was nothing to settle."""
        with self._atomic():
            before = self.registry.require_record(asset)
            settled = self.leasing.settle_lease(asset)
            if settled:
                self._emit(
                    LEASE_SETTLED,
                    asset=asset,
                    borrower_receipt_id=before.borrower_receipt_id,
                    lease_expiry_tick=before.lease_expiry_tick,
                )
        return settled

    # ========================================================================
    # EARNINGS, FEE RATE, ADMIN
    # ========================================================================

    def withdraw_earnings(self, caller: str) -> int:
        """Pay out caller's accrued earnings. Returns the amount paid."""
        with self._atomic():
            amount = self.fees.withdraw(caller)
            self._emit(EARNINGS_WITHDRAWN, beneficiary=caller, amount=amount)
        return amount

    def change_pool_fee(self, caller: str, new_rate: int) -> None:
        with self._atomic():
            old_rate = self.fees.change_pool_fee(caller, new_rate)
            self._emit(POOL_FEE_CHANGED, old_rate=old_rate, new_rate=new_rate)

    def propose_new_owner(self, caller: str, candidate: str) -> None:
        with self._atomic():
            self.ownership.propose_new_owner(caller, candidate)
            self._emit(OWNERSHIP_PROPOSED, owner=caller, candidate=candidate)

    def claim_ownership(self, caller: str) -> None:
        with self._atomic():
            previous = self.ownership.claim_ownership(caller)
            self._emit(OWNERSHIP_TRANSFERRED, previous_owner=previous, new_owner=caller)

    def transfer_receipt(self, caller: str, kind: ReceiptKind, receipt_id: int, dest: str) -> None:
        """Hand a lender or borrower receipt held by caller to dest."""
        with self._atomic():
            self.receipts.transfer(kind, receipt_id, caller, dest)
            self._emit(
                RECEIPT_TRANSFERRED,
                kind=kind.value,
                receipt_id=receipt_id,
                source=caller,
                dest=dest,
            )

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_record(self, asset: AssetKey) -> PoolRecord:
        return self.registry.get_record(asset)

    def listed_assets(self) -> List[AssetKey]:
        return self.registry.assets()

    def lease_state(self, asset: AssetKey) -> LeaseState:
        return self.leasing.lease_state(asset)

    def earnings(self, beneficiary: str) -> int:
        return self.fees.earnings(beneficiary)

    def total_earnings(self) -> int:
        return self.fees.total_earnings()

    @property
    def pool_fee_rate(self) -> int:
        return self.fees.pool_fee_rate

    @property
    def owner(self) -> str:
        return self.ownership.owner

    @property
    def proposed_owner(self) -> Optional[str]:
        return self.ownership.proposed_owner

    def receipt_owner(self, kind: ReceiptKind, receipt_id: int) -> str:
        return self.receipts.owner_of(kind, receipt_id)

    def summary(self) -> Dict[str, Any]:
        """Snapshot of pool-level figures, for printing."""
        return {
            'owner': self.owner,
            'proposed_owner': self.proposed_owner,
            'pool_fee_rate': self.pool_fee_rate,
            'listed_assets': [a.symbol for a in self.listed_assets()],
            'total_earnings': self.total_earnings(),
            'lender_receipts_minted': self.receipts.minted_count(ReceiptKind.LENDER),
            'borrower_receipts_minted': self.receipts.minted_count(ReceiptKind.BORROWER),
        }
