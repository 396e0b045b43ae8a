"""
Conservation Law Conformance Tests

INVARIANTS, after every pool operation (successful or not):

    balance(pool, currency) = Σ_{b} earnings(b)
    ∀ unit u: Σ_{w ∈ wallets ∪ {system}} balance(w, u) = 0
    has_record(a) ⟺ holder_of(a) = pool
    lease_expiry_tick(a) ≠ 0 ⟺ borrower_receipt_id(a) ≠ 0

Payments move cash into the pool, credits only redistribute claims on it,
withdrawals take cash and claims out together.

These tests use property-based testing to drive arbitrary operation
sequences through the pool.
"""

import pytest
from hypothesis import given, settings, note
from hypothesis import strategies as st
from decimal import Decimal
from typing import Tuple

from leasepool import (
    AssetKey, LeasePool, ReceiptKind, LedgerError,
    issue_asset, holder_of, RATE_STEP,
)

from tests.conftest import make_ledger, balance, CURRENCY
from tests.receivers import ReturningReceiver, KeepingReceiver, FailingReceiver


ASSETS = (AssetKey("PUNK", 7), AssetKey("APE", 1))
PEOPLE = ("alice", "bob", "carol", "mallory", "admin", "bot")


# =============================================================================
# STRATEGIES FOR PROPERTY-BASED TESTING
# =============================================================================

asset_index = st.integers(min_value=0, max_value=len(ASSETS) - 1)
person = st.sampled_from(PEOPLE)

operation = st.one_of(
    st.tuples(st.just("flash"), asset_index, person, st.integers(0, 60),
              st.sampled_from(["return", "keep", "fail"])),
    st.tuples(st.just("lease"), asset_index, person, st.integers(0, 60), st.integers(0, 12)),
    st.tuples(st.just("settle"), asset_index),
    st.tuples(st.just("withdraw"), person),
    st.tuples(st.just("fee"), st.integers(-2, 2)),
    st.tuples(st.just("advance"), st.integers(0, 8)),
    st.tuples(st.just("remove"), asset_index, person),
    st.tuples(st.just("add"), asset_index, person, st.integers(0, 30), st.integers(0, 30), st.integers(0, 12)),
    st.tuples(st.just("edit"), asset_index, person, st.integers(0, 30), st.integers(0, 30), st.integers(0, 12)),
    st.tuples(st.just("give_lender"), asset_index, person),
    st.tuples(st.just("pause"), st.booleans()),
)


def build_pool() -> Tuple[LeasePool, int]:
    ledger = make_ledger()
    pool = LeasePool(ledger, admin="admin", currency=CURRENCY)
    issue_asset(ledger, ASSETS[0], "alice")
    issue_asset(ledger, ASSETS[1], "carol")
    pool.add_record("alice", ASSETS[0], 10, 20, 10)
    pool.add_record("carol", ASSETS[1], 5, 5, 6)
    return pool, ledger.total_supply(CURRENCY)


def receiver_for(pool: LeasePool, kind: str):
    if kind == "return":
        return ReturningReceiver(pool.ledger, "bot", pool.wallet)
    if kind == "keep":
        return KeepingReceiver("bot")
    return FailingReceiver(pool.ledger, "bot", pool.wallet)


def apply(pool: LeasePool, op: tuple) -> None:
    """Run one operation; pool errors are expected and ignored."""
    name = op[0]
    try:
        if name == "flash":
            _, i, caller, offered, kind = op
            pool.flash_access(caller, ASSETS[i], offered, receiver_for(pool, kind))
        elif name == "lease":
            _, i, caller, price, duration = op
            pool.acquire_lease(caller, ASSETS[i], price, caller, duration)
        elif name == "settle":
            pool.settle_lease(ASSETS[op[1]])
        elif name == "withdraw":
            pool.withdraw_earnings(op[1])
        elif name == "fee":
            pool.change_pool_fee("admin", pool.pool_fee_rate + op[1] * RATE_STEP)
        elif name == "advance":
            pool.ledger.advance_ticks(op[1])
        elif name == "remove":
            pool.remove_record(op[2], ASSETS[op[1]])
        elif name == "add":
            _, i, caller, fee, price, cap = op
            pool.add_record(caller, ASSETS[i], fee, price, cap)
        elif name == "edit":
            _, i, caller, fee, price, cap = op
            pool.edit_record(caller, ASSETS[i], fee, price, cap)
        elif name == "give_lender":
            _, i, dest = op
            record = pool.get_record(ASSETS[i])
            if record.is_resident:
                holder = pool.receipt_owner(ReceiptKind.LENDER, record.lender_receipt_id)
                if holder != dest:
                    pool.transfer_receipt(holder, ReceiptKind.LENDER, record.lender_receipt_id, dest)
        elif name == "pause":
            pool.ledger.update_unit_state(CURRENCY, {'paused': op[1]})
    except (LedgerError, RuntimeError):
        pass


def check_invariants(pool: LeasePool, supply: Decimal) -> None:
    ledger = pool.ledger
    assert balance(ledger, pool.wallet) == pool.total_earnings()
    assert ledger.verify_double_entry()['valid']
    assert ledger.total_supply(CURRENCY) == supply
    for asset in ASSETS:
        record = pool.get_record(asset)
        assert pool.registry.has_record(asset) == (holder_of(ledger, asset) == pool.wallet)
        assert (record.lease_expiry_tick != 0) == (record.borrower_receipt_id != 0)
        assert not pool.registry.is_locked(asset)
        if record.is_resident:
            pool.receipt_owner(ReceiptKind.LENDER, record.lender_receipt_id)
        if record.has_lease:
            pool.receipt_owner(ReceiptKind.BORROWER, record.borrower_receipt_id)


class TestConservationProperties:
    """Property-based conservation tests."""

    @given(st.lists(operation, min_size=1, max_size=30))
    @settings(max_examples=100, deadline=None)
    def test_invariants_hold_after_every_operation(self, ops):
        """
        PROPERTY: Whatever sequence of operations runs, the pool's cash
        matches its earnings and records match custody.
        """
        pool, supply = build_pool()
        for op in ops:
            note(f"op: {op}")
            apply(pool, op)
            check_invariants(pool, supply)

    @given(st.lists(operation, min_size=1, max_size=30))
    @settings(max_examples=50, deadline=None)
    def test_everything_withdrawable(self, ops):
        """
        PROPERTY: Once the token is unpaused, every beneficiary can withdraw
        and the pool ends up holding no cash.
        """
        pool, supply = build_pool()
        for op in ops:
            apply(pool, op)
        pool.ledger.update_unit_state(CURRENCY, {'paused': False})
        for beneficiary in list(pool.fees.beneficiaries()):
            pool.withdraw_earnings(beneficiary)
        assert balance(pool.ledger, pool.wallet) == 0
        assert pool.total_earnings() == 0
        assert pool.ledger.total_supply(CURRENCY) == supply


class TestConservationExamples:
    """Explicit conservation examples."""

    def test_lease_payment_fully_accounted(self):
        pool, supply = build_pool()
        pool.change_pool_fee("admin", RATE_STEP)
        pool.acquire_lease("bob", ASSETS[0], 37, "bob", 3)
        assert pool.earnings("alice") + pool.earnings("admin") == 111
        check_invariants(pool, supply)

    def test_receipts_net_to_zero_after_burn(self):
        pool, supply = build_pool()
        pool.remove_record("alice", ASSETS[0])
        assert pool.ledger.total_supply("LENDER#1") == Decimal("0")
        check_invariants(pool, supply)
