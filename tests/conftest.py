"""
conftest.py - Shared pytest fixtures for lease pool tests

Provides common fixtures used across unit, conformance and functional tests:
- Basic ledgers (empty, funded)
- Pools (empty, with one listed asset)
- State capture for atomicity comparisons
"""

import pytest
from decimal import Decimal
from typing import Any, Dict, Tuple

from leasepool import (
    Ledger, LeasePool, AssetKey, Move, ReceiptKind,
    build_transaction, issue_asset, payment_token,
    SYSTEM_WALLET,
)

from tests.fake_view import FakeView


CURRENCY = "WETH"
WALLETS = ("admin", "alice", "bob", "carol", "mallory", "bot", "vault")
PUNK = AssetKey("PUNK", 7)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def fund(ledger: Ledger, wallet: str, amount: int, unit: str = CURRENCY) -> None:
    """Issue amount of unit to wallet from the system wallet."""
    tx = build_transaction(ledger, [
        Move(Decimal(amount), unit, SYSTEM_WALLET, wallet, f"fund_{wallet}")
    ])
    ledger.execute_or_raise(tx)


def make_ledger(name: str = "test") -> Ledger:
    """Ledger with the payment token and the standard wallets, all funded."""
    ledger = Ledger(name, verbose=False, test_mode=True)
    ledger.register_unit(payment_token(CURRENCY, "Wrapped Ether"))
    for wallet in WALLETS:
        ledger.register_wallet(wallet)
    for wallet in ("alice", "bob", "carol", "mallory"):
        fund(ledger, wallet, 1_000_000)
    return ledger


def balance(ledger: Ledger, wallet: str, unit: str = CURRENCY) -> int:
    return int(ledger.get_balance(wallet, unit))


def pool_state(pool: LeasePool) -> Dict[str, Any]:
    """Everything an operation could change, in comparable form."""
    ledger = pool.ledger
    return {
        'balances': {
            w: {u: q for u, q in ledger.get_wallet_balances(w).items() if q != 0}
            for w in sorted(ledger.list_wallets())
        },
        'units': {s: ledger.get_unit_state(s) for s in ledger.list_units()},
        'log_length': len(ledger.transaction_log),
        'words': {a: pool.registry.packed_word(a) for a in pool.listed_assets()},
        'locked': [a for a in pool.listed_assets() if pool.registry.is_locked(a)],
        'lender_minted': pool.receipts.minted_count(ReceiptKind.LENDER),
        'borrower_minted': pool.receipts.minted_count(ReceiptKind.BORROWER),
        'earnings': pool.fees.beneficiaries(),
        'rate': (pool.pool_fee_rate, pool.fees.last_change_tick),
        'owner': (pool.owner, pool.proposed_owner),
        'events': len(pool.events),
    }


def assert_cash_conserved(pool: LeasePool) -> None:
    """Pool wallet currency equals the sum of accrued earnings."""
    assert balance(pool.ledger, pool.wallet) == pool.total_earnings()
    assert pool.ledger.verify_double_entry()['valid']


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", verbose=False, test_mode=True)


@pytest.fixture
def ledger():
    """Ledger with WETH and funded wallets."""
    return make_ledger()


@pytest.fixture
def pool(ledger):
    """Empty pool administered by 'admin'."""
    return LeasePool(ledger, admin="admin", currency=CURRENCY)


@pytest.fixture
def punk():
    return PUNK


@pytest.fixture
def listed_pool(pool, punk) -> Tuple[LeasePool, AssetKey]:
    """Pool with PUNK#7 listed by alice: flash_fee=10, price_per_tick=20, cap=100."""
    issue_asset(pool.ledger, punk, "alice")
    pool.add_record("alice", punk, flash_fee=10, price_per_tick=20, max_lease_ticks=100)
    return pool, punk


# =============================================================================
# FAKE VIEW FIXTURES
# =============================================================================

@pytest.fixture
def custody_view():
    """FakeView with PUNK#7 held by the pool."""
    return FakeView(
        balances={
            "pool": {"PUNK#7": Decimal("1"), "WETH": Decimal("30")},
            "alice": {"LENDER#1": Decimal("1")},
            SYSTEM_WALLET: {"PUNK#7": Decimal("-1"), "LENDER#1": Decimal("-1")},
        },
        states={
            "PUNK#7": {"collection": "PUNK", "asset_id": 7},
            "LENDER#1": {"kind": "LENDER", "receipt_id": 1, "burned": False},
        },
        tick=5,
    )
