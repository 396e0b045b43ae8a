"""
test_flash.py - Tests for flash access

Tests:
- Fee floor, fee pull and fee credit
- Custody during and after the callback
- Lessee privilege during a running lease
- Precondition ordering
- Re-entrant operations on the same asset
"""

import pytest

from leasepool import (
    AssetKey, ReceiptKind, issue_asset, holder_of,
    NotFound, Unauthorized, Conflict, InsufficientPayment, CustodyViolation,
    InsufficientFunds, WalletNotRegistered, RATE_STEP,
)

from tests.conftest import balance, pool_state, assert_cash_conserved
from tests.receivers import (
    ReturningReceiver, KeepingReceiver, RedirectingReceiver,
    FailingReceiver, ActingReceiver,
)


@pytest.fixture
def bot(listed_pool):
    pool, _ = listed_pool
    return ReturningReceiver(pool.ledger, "bot", pool.wallet)


class TestPaidFlash:

    def test_flash_at_fee(self, listed_pool, bot):
        pool, punk = listed_pool
        before = balance(pool.ledger, "bob")
        result = pool.flash_access("bob", punk, 10, bot, b"hello")
        assert result.fee == 10
        assert result.lender == "alice"
        assert balance(pool.ledger, "bob") == before - 10
        assert pool.earnings("alice") == 10
        assert holder_of(pool.ledger, punk) == pool.wallet
        assert bot.calls == [(punk, 10, "bob", b"hello")]
        assert bot.held_during_call == ["bot"]
        assert_cash_conserved(pool)

    def test_overpayment_is_kept(self, listed_pool, bot):
        pool, punk = listed_pool
        pool.flash_access("bob", punk, 25, bot)
        assert pool.earnings("alice") == 25
        assert bot.calls[0][1] == 25

    def test_below_fee(self, listed_pool, bot):
        pool, punk = listed_pool
        with pytest.raises(InsufficientPayment):
            pool.flash_access("bob", punk, 9, bot)
        assert bot.calls == []

    def test_free_listing(self, pool, punk):
        issue_asset(pool.ledger, punk, "alice")
        pool.add_record("alice", punk, 0, 0, 0)
        bot = ReturningReceiver(pool.ledger, "bot", pool.wallet)
        result = pool.flash_access("bob", punk, 0, bot)
        assert result.fee == 0
        assert pool.total_earnings() == 0

    def test_cannot_afford(self, listed_pool, bot):
        pool, punk = listed_pool
        with pytest.raises(InsufficientFunds):
            pool.flash_access("bot", punk, 10, bot)

    def test_negative_offer(self, listed_pool, bot):
        pool, punk = listed_pool
        with pytest.raises(ValueError):
            pool.flash_access("bob", punk, -1, bot)

    def test_protocol_cut(self, listed_pool, bot):
        pool, punk = listed_pool
        pool.change_pool_fee("admin", RATE_STEP)
        result = pool.flash_access("bob", punk, 1000, bot)
        assert (result.lender_share, result.protocol_share) == (990, 10)
        assert pool.earnings("alice") == 990
        assert pool.earnings("admin") == 10
        assert_cash_conserved(pool)

    def test_fee_goes_to_current_lender_receipt_holder(self, listed_pool, bot):
        pool, punk = listed_pool
        pool.transfer_receipt("alice", ReceiptKind.LENDER, 1, "carol")
        pool.flash_access("bob", punk, 10, bot)
        assert pool.earnings("carol") == 10
        assert pool.earnings("alice") == 0

    def test_unlocked_afterwards(self, listed_pool, bot):
        pool, punk = listed_pool
        pool.flash_access("bob", punk, 10, bot)
        assert not pool.registry.is_locked(punk)

    def test_no_record_change(self, listed_pool, bot):
        pool, punk = listed_pool
        word = pool.registry.packed_word(punk)
        pool.flash_access("bob", punk, 10, bot)
        assert pool.registry.packed_word(punk) == word


class TestFailedFlash:

    @pytest.mark.parametrize("make_receiver", [
        lambda ledger, pool_wallet: KeepingReceiver("bot"),
        lambda ledger, pool_wallet: RedirectingReceiver(ledger, "bot", "vault"),
    ])
    def test_not_returned(self, listed_pool, make_receiver):
        pool, punk = listed_pool
        before = pool_state(pool)
        with pytest.raises(CustodyViolation):
            pool.flash_access("bob", punk, 10, make_receiver(pool.ledger, pool.wallet))
        assert pool_state(pool) == before
        assert holder_of(pool.ledger, punk) == pool.wallet
        assert not pool.registry.is_locked(punk)

    def test_receiver_raises(self, listed_pool):
        pool, punk = listed_pool
        before = pool_state(pool)
        with pytest.raises(RuntimeError):
            pool.flash_access("bob", punk, 10, FailingReceiver(pool.ledger, "bot", pool.wallet))
        assert pool_state(pool) == before

    def test_unregistered_receiver_wallet(self, listed_pool):
        pool, punk = listed_pool
        before = pool_state(pool)
        with pytest.raises(WalletNotRegistered):
            pool.flash_access("bob", punk, 10, KeepingReceiver("nowhere"))
        assert pool_state(pool) == before


class TestPreconditions:

    def test_unknown_asset(self, pool, bot):
        with pytest.raises(NotFound):
            pool.flash_access("bob", AssetKey("NOPE", 1), 10, bot)

    def test_locked_before_fee_check(self, listed_pool, bot):
        pool, punk = listed_pool
        pool.registry.lock(punk)
        with pytest.raises(Conflict):
            pool.flash_access("bob", punk, 0, bot)

    def test_leased_non_lessee(self, listed_pool, bot):
        pool, punk = listed_pool
        pool.acquire_lease("bob", punk, 20, "bob", 10)
        with pytest.raises(Unauthorized):
            pool.flash_access("carol", punk, 1_000, bot)

    def test_lessee_flashes_free(self, listed_pool, bot):
        pool, punk = listed_pool
        pool.acquire_lease("bob", punk, 20, "bob", 10)
        earned = pool.earnings("alice")
        before = balance(pool.ledger, "bob")
        result = pool.flash_access("bob", punk, 500, bot)
        assert result.fee == 0
        assert bot.calls[-1][1] == 0
        assert balance(pool.ledger, "bob") == before
        assert pool.earnings("alice") == earned

    def test_lessee_rights_follow_receipt(self, listed_pool, bot):
        pool, punk = listed_pool
        pool.acquire_lease("bob", punk, 20, "bob", 10)
        pool.transfer_receipt("bob", ReceiptKind.BORROWER, 1, "carol")
        with pytest.raises(Unauthorized):
            pool.flash_access("bob", punk, 0, bot)
        assert pool.flash_access("carol", punk, 0, bot).fee == 0

    def test_after_expiry_anyone_pays(self, listed_pool, bot):
        pool, punk = listed_pool
        pool.acquire_lease("bob", punk, 20, "bob", 10)
        pool.ledger.advance_time(10)
        with pytest.raises(InsufficientPayment):
            pool.flash_access("bob", punk, 0, bot)
        assert pool.flash_access("carol", punk, 10, bot).fee == 10


class TestReentrancy:

    def test_nested_flash_same_asset(self, listed_pool):
        pool, punk = listed_pool
        inner = ReturningReceiver(pool.ledger, "vault", pool.wallet)
        outer = ActingReceiver(
            pool.ledger, "bot",
            lambda asset: pool.flash_access("bob", asset, 10, inner),
            pool.wallet,
        )
        pool.flash_access("bob", punk, 10, outer)
        assert isinstance(outer.errors[0], Conflict)
        assert inner.calls == []
        assert pool.earnings("alice") == 10

    def test_readd_during_flash(self, listed_pool):
        pool, punk = listed_pool
        outer = ActingReceiver(
            pool.ledger, "bot",
            lambda asset: pool.add_record("bot", asset, 0, 0, 0),
            pool.wallet,
        )
        pool.flash_access("bob", punk, 10, outer)
        assert isinstance(outer.errors[0], Conflict)
        assert pool.receipts.minted_count(ReceiptKind.LENDER) == 1
        assert pool.receipt_owner(ReceiptKind.LENDER, 1) == "alice"

    def test_remove_during_flash(self, listed_pool):
        pool, punk = listed_pool
        outer = ActingReceiver(
            pool.ledger, "bot",
            lambda asset: pool.remove_record("alice", asset),
            pool.wallet,
        )
        pool.flash_access("bob", punk, 10, outer)
        assert isinstance(outer.errors[0], Conflict)
        assert pool.registry.has_record(punk)

    def test_lease_during_flash(self, listed_pool):
        pool, punk = listed_pool
        outer = ActingReceiver(
            pool.ledger, "bot",
            lambda asset: pool.acquire_lease("bob", asset, 20, "bob", 5),
            pool.wallet,
        )
        pool.flash_access("bob", punk, 10, outer)
        assert isinstance(outer.errors[0], Conflict)
        assert pool.get_record(punk).lease_expiry_tick == 0

    def test_other_asset_usable_during_flash(self, listed_pool):
        pool, punk = listed_pool
        other = AssetKey("APE", 1)
        issue_asset(pool.ledger, other, "carol")
        pool.add_record("carol", other, 5, 0, 0)
        inner = ReturningReceiver(pool.ledger, "vault", pool.wallet)
        outer = ActingReceiver(
            pool.ledger, "bot",
            lambda asset: pool.flash_access("bob", other, 5, inner),
            pool.wallet,
        )
        pool.flash_access("bob", punk, 10, outer)
        assert outer.errors == []
        assert pool.earnings("carol") == 5
        assert pool.earnings("alice") == 10

    def test_nested_success_unwound_by_outer_failure(self, listed_pool):
        pool, punk = listed_pool
        other = AssetKey("APE", 1)
        issue_asset(pool.ledger, other, "carol")
        pool.add_record("carol", other, 5, 0, 0)
        before = pool_state(pool)
        inner = ReturningReceiver(pool.ledger, "vault", pool.wallet)

        class NestedThenKeep:
            wallet = "bot"

            def on_flash_access(self, asset, fee, initiator, data):
                pool.flash_access("bob", other, 5, inner)

        with pytest.raises(CustodyViolation):
            pool.flash_access("bob", punk, 10, NestedThenKeep())
        assert len(inner.calls) == 1
        assert pool_state(pool) == before
        assert pool.earnings("carol") == 0
