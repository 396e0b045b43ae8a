"""
fees.py - Accrued Earnings and the Pool Fee Rate

Payments for flash access and leases are pulled into the pool wallet as
soon as they are made, but they are not paid out straight away. Each one is
split between the lender and the pool admin and credited to an earnings
balance; beneficiaries withdraw whenever they like.

    Payment of 1000 at a pool fee rate of 0.5% (5 * 10**15):
        protocol_share = 1000 * 5e15 // 1e18 = 5      -> admin's balance
        lender_share   = 1000 - 5           = 995    -> lender's balance

The rate is a fixed-point fraction scaled by RATE_SCALE. The admin may move it
by at most RATE_STEP per change and at most once per tick.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .core import (
    Move, TransactionOrigin, OriginType,
    LedgerError, NoEarnings, TransferFailed, RangeError, RateLimited,
    RATE_SCALE, RATE_STEP,
    build_transaction,
)
from .ledger import Ledger
from .ownership import AdminOwnership


class FeeLedger:
    """
    Per-beneficiary earnings map, withdrawals and the rate-limited fee rate.

    Earnings are bookkeeping only: credit() never moves currency. The
    currency itself sits in the pool wallet until withdraw() pays it out, so
    the pool wallet's currency balance always equals total_earnings().
    """

    def __init__(self, ledger: Ledger, currency: str, wallet: str, ownership: AdminOwnership):
        self.ledger = ledger
        self.currency = currency
        self.wallet = wallet
        self.ownership = ownership
        self._balances: Dict[str, int] = {}
        self._rate: int = 0
        self._last_change_tick: Optional[int] = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def pool_fee_rate(self) -> int:
        return self._rate

    @property
    def last_change_tick(self) -> Optional[int]:
        return self._last_change_tick

    def earnings(self, beneficiary: str) -> int:
        return self._balances.get(beneficiary, 0)

    def total_earnings(self) -> int:
        return sum(self._balances.values())

    def beneficiaries(self) -> Dict[str, int]:
        """Every non-zero earnings balance."""
        return {k: v for k, v in self._balances.items() if v}

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def payment_moves(self, payer: str, amount: int, contract_id: str) -> List[Move]:
        """Moves pulling amount of the currency from payer into the pool wallet."""
        if amount < 0:
            raise ValueError(f"payment cannot be negative, got {amount}")
        if amount == 0:
            return []
        return [Move(Decimal(amount), self.currency, payer, self.wallet, contract_id)]

    def collect(self, payer: str, amount: int, unit_symbol: str, event_type: str) -> None:
        """
        Pull amount of the currency from payer into the pool wallet.

        A zero amount pulls nothing.

        Raises:
            InsufficientFunds: If payer cannot cover amount
            TransferRuleViolation: If the currency refuses the transfer
        """
        moves = self.payment_moves(payer, amount, f"{event_type.lower()}_{unit_symbol}")
        if not moves:
            return
        pending = build_transaction(
            self.ledger,
            moves,
            origin=TransactionOrigin(OriginType.CONTRACT, "pool", unit_symbol, event_type),
        )
        self.ledger.execute_or_raise(pending)

    def split(self, amount: int) -> Tuple[int, int]:
        """Split a payment into (lender_share, protocol_share) at the current rate."""
        if amount < 0:
            raise ValueError(f"amount cannot be negative, got {amount}")
        protocol_share = amount * self._rate // RATE_SCALE
        return amount - protocol_share, protocol_share

    def credit(self, beneficiary: str, amount: int) -> None:
        """Increase beneficiary's earnings. Never moves currency."""
        if amount < 0:
            raise ValueError(f"credit cannot be negative, got {amount}")
        if amount == 0:
            return
        self._balances[beneficiary] = self._balances.get(beneficiary, 0) + amount

    def distribute(self, lender: str, amount: int) -> Tuple[int, int]:
        """
        Split amount and credit the lender's share to lender and the protocol
        share to the current admin.

        Returns:
            (lender_share, protocol_share)
        """
        lender_share, protocol_share = self.split(amount)
        self.credit(lender, lender_share)
        self.credit(self.ownership.owner, protocol_share)
        return lender_share, protocol_share

    def withdraw(self, caller: str) -> int:
        """
        Pay caller's whole balance out of the pool wallet.

        The balance is only zeroed once the payout has been applied.

        Raises:
            NoEarnings: If caller has nothing to withdraw
            TransferFailed: If the ledger refuses the payout (balance intact)
        """
        amount = self.earnings(caller)
        if amount == 0:
            raise NoEarnings(f"{caller} has no earnings to withdraw")
        pending = build_transaction(
            self.ledger,
            [Move(Decimal(amount), self.currency, self.wallet, caller, f"withdraw_{caller}")],
            origin=TransactionOrigin(OriginType.CONTRACT, "pool", self.currency, "WITHDRAW"),
        )
        try:
            self.ledger.execute_or_raise(pending)
        except LedgerError as e:
            raise TransferFailed(f"withdrawal of {amount} {self.currency} to {caller} failed: {e}") from e
        self._balances[caller] = 0
        return amount

    # ------------------------------------------------------------------
    # Fee rate
    # ------------------------------------------------------------------

    def change_pool_fee(self, caller: str, new_rate: int) -> int:
        """
        Set the pool fee rate and return the previous one.

        Raises:
            Unauthorized: If caller is not the admin
            RangeError: If new_rate is outside [0, RATE_SCALE]
            RateLimited: If the change exceeds RATE_STEP, or the rate already
                         changed in the current tick
        """
        self.ownership.require_owner(caller)
        if isinstance(new_rate, bool) or not isinstance(new_rate, int):
            raise RangeError(f"pool fee rate must be an int, got {type(new_rate).__name__}")
        if new_rate < 0 or new_rate > RATE_SCALE:
            raise RangeError(f"pool fee rate {new_rate} outside [0, {RATE_SCALE}]")
        if abs(new_rate - self._rate) > RATE_STEP:
            raise RateLimited(
                f"pool fee can move by at most {RATE_STEP} per change "
                f"({self._rate} -> {new_rate})"
            )
        now = self.ledger.current_tick
        if self._last_change_tick == now:
            raise RateLimited(f"pool fee already changed at tick {now}")
        previous = self._rate
        self._rate = new_rate
        self._last_change_tick = now
        return previous

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> Tuple[Dict[str, int], int, Optional[int]]:
        return (dict(self._balances), self._rate, self._last_change_tick)

    def restore(self, snap: Tuple[Dict[str, int], int, Optional[int]]) -> None:
        balances, self._rate, self._last_change_tick = snap
        self._balances = dict(balances)
