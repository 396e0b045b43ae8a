"""
test_leasing.py - Tests for the long-term lease state machine

Tests:
- Payment floor and duration bounds
- Upfront payment split at the current rate
- Exclusivity while leased
- Settlement before and after expiry
- Implicit settlement of an expired lease
"""

import pytest

from leasepool import (
    AssetKey, ReceiptKind, LeaseState, issue_asset,
    NotFound, Conflict, InsufficientPayment, RangeError, InsufficientFunds,
    RATE_STEP,
)

from tests.conftest import balance, pool_state, assert_cash_conserved


class TestAcquire:

    def test_acquire(self, listed_pool):
        pool, punk = listed_pool
        before = balance(pool.ledger, "bob")
        receipt_id = pool.acquire_lease("bob", punk, 20, "carol", 20)
        assert receipt_id == 1
        assert balance(pool.ledger, "bob") == before - 400
        assert pool.receipt_owner(ReceiptKind.BORROWER, 1) == "carol"
        record = pool.get_record(punk)
        assert record.lease_expiry_tick == 20
        assert record.borrower_receipt_id == 1
        assert pool.earnings("alice") == 400
        assert pool.lease_state(punk) == LeaseState.LEASED
        assert_cash_conserved(pool)

    def test_expiry_relative_to_now(self, listed_pool):
        pool, punk = listed_pool
        pool.ledger.advance_time(50)
        pool.acquire_lease("bob", punk, 20, "bob", 7)
        assert pool.get_record(punk).lease_expiry_tick == 57

    def test_payment_and_receipt_one_transaction(self, listed_pool):
        pool, punk = listed_pool
        log_length = len(pool.ledger.transaction_log)
        pool.acquire_lease("bob", punk, 20, "bob", 5)
        assert len(pool.ledger.transaction_log) == log_length + 1

    def test_floor_is_price_per_tick(self, listed_pool):
        pool, punk = listed_pool
        with pytest.raises(InsufficientPayment):
            pool.acquire_lease("bob", punk, 19, "bob", 5)

    def test_floor_is_flash_fee_when_higher(self, listed_pool):
        pool, punk = listed_pool
        pool.edit_record("alice", punk, 50, 20, 100)
        with pytest.raises(InsufficientPayment):
            pool.acquire_lease("bob", punk, 49, "bob", 5)
        pool.acquire_lease("bob", punk, 50, "bob", 5)

    def test_duration_at_cap(self, listed_pool):
        pool, punk = listed_pool
        pool.acquire_lease("bob", punk, 20, "bob", 100)
        assert pool.get_record(punk).lease_expiry_tick == 100

    def test_duration_over_cap(self, listed_pool):
        pool, punk = listed_pool
        with pytest.raises(RangeError):
            pool.acquire_lease("bob", punk, 20, "bob", 101)

    def test_zero_duration(self, listed_pool):
        pool, punk = listed_pool
        with pytest.raises(RangeError):
            pool.acquire_lease("bob", punk, 20, "bob", 0)

    def test_expiry_overflow(self, listed_pool):
        pool, punk = listed_pool
        pool.ledger.advance_time((1 << 32) - 5)
        with pytest.raises(RangeError, match="lease_expiry_tick"):
            pool.acquire_lease("bob", punk, 20, "bob", 5)
        pool.acquire_lease("bob", punk, 20, "bob", 4)

    def test_not_offered_for_lease(self, pool, punk):
        issue_asset(pool.ledger, punk, "alice")
        pool.add_record("alice", punk, 10, 0, 100)
        with pytest.raises(NotFound, match="isn't available"):
            pool.acquire_lease("bob", punk, 20, "bob", 5)

    def test_unknown_asset(self, pool):
        with pytest.raises(NotFound):
            pool.acquire_lease("bob", AssetKey("NOPE", 1), 20, "bob", 5)

    def test_cannot_afford(self, listed_pool):
        pool, punk = listed_pool
        before = pool_state(pool)
        with pytest.raises(InsufficientFunds):
            pool.acquire_lease("bot", punk, 20, "bot", 5)
        assert pool_state(pool) == before

    def test_split_at_current_rate(self, listed_pool):
        pool, punk = listed_pool
        pool.change_pool_fee("admin", RATE_STEP)
        pool.acquire_lease("bob", punk, 20, "bob", 50)
        assert pool.earnings("alice") == 990
        assert pool.earnings("admin") == 10
        pool.ledger.advance_ticks()
        pool.change_pool_fee("admin", 0)
        assert pool.earnings("alice") == 990
        assert_cash_conserved(pool)

    def test_bad_argument_types(self, listed_pool):
        pool, punk = listed_pool
        with pytest.raises(ValueError):
            pool.acquire_lease("bob", punk, 20.5, "bob", 5)
        with pytest.raises(ValueError):
            pool.acquire_lease("bob", punk, -20, "bob", 5)


class TestExclusivity:

    @pytest.mark.parametrize("caller", ["bob", "carol", "alice"])
    def test_second_lease_conflicts(self, listed_pool, caller):
        pool, punk = listed_pool
        pool.acquire_lease("bob", punk, 20, "bob", 10)
        pool.ledger.advance_time(9)
        with pytest.raises(Conflict):
            pool.acquire_lease(caller, punk, 1_000, caller, 1)

    def test_conflict_checked_before_payment_floor(self, listed_pool):
        pool, punk = listed_pool
        pool.acquire_lease("bob", punk, 20, "bob", 10)
        with pytest.raises(Conflict):
            pool.acquire_lease("carol", punk, 0, "carol", 1)


class TestSettle:

    def test_settle_before_expiry_is_noop(self, listed_pool):
        pool, punk = listed_pool
        pool.acquire_lease("bob", punk, 20, "bob", 10)
        pool.ledger.advance_time(9)
        before = pool_state(pool)
        assert pool.settle_lease(punk) is False
        assert pool_state(pool) == before

    def test_settle_without_lease_is_noop(self, listed_pool):
        pool, punk = listed_pool
        before = pool_state(pool)
        assert pool.settle_lease(punk) is False
        assert pool_state(pool) == before

    def test_settle_after_expiry(self, listed_pool):
        pool, punk = listed_pool
        pool.acquire_lease("bob", punk, 20, "bob", 10)
        pool.ledger.advance_time(10)
        assert pool.lease_state(punk) == LeaseState.IDLE
        assert pool.settle_lease(punk) is True
        record = pool.get_record(punk)
        assert record.lease_expiry_tick == 0
        assert record.borrower_receipt_id == 0
        assert record.lender_receipt_id == 1
        with pytest.raises(NotFound):
            pool.receipt_owner(ReceiptKind.BORROWER, 1)
        assert pool.registry.has_record(punk)

    def test_settle_by_anyone(self, listed_pool):
        pool, punk = listed_pool
        pool.acquire_lease("bob", punk, 20, "carol", 10)
        pool.ledger.advance_time(11)
        assert pool.leasing.settle_lease(punk) is True

    def test_settle_unknown(self, pool):
        with pytest.raises(NotFound):
            pool.settle_lease(AssetKey("NOPE", 1))

    def test_acquire_settles_expired_lease(self, listed_pool):
        pool, punk = listed_pool
        pool.acquire_lease("bob", punk, 20, "bob", 10)
        pool.ledger.advance_time(10)
        receipt_id = pool.acquire_lease("carol", punk, 20, "carol", 10)
        assert receipt_id == 2
        with pytest.raises(NotFound):
            pool.receipt_owner(ReceiptKind.BORROWER, 1)
        assert pool.receipt_owner(ReceiptKind.BORROWER, 2) == "carol"
        assert pool.get_record(punk).lease_expiry_tick == 20

    def test_failed_acquire_keeps_expired_lease(self, listed_pool):
        pool, punk = listed_pool
        pool.acquire_lease("bob", punk, 20, "bob", 10)
        pool.ledger.advance_time(10)
        before = pool_state(pool)
        with pytest.raises(InsufficientFunds):
            pool.acquire_lease("bot", punk, 20, "bot", 10)
        assert pool_state(pool) == before
        assert pool.get_record(punk).borrower_receipt_id == 1
