#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Lease Pool Step by Step

This is a pedagogical demonstration of how the rental pool works.
Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Foundation  - The ledger, the payment token, listing an asset
  4-6:   Flash       - Paid flash access, a receiver that cheats, unwinding
  7-9:   Leasing     - Long-term lease, lessee privileges, expiry sweep
  10-12: Operations  - Protocol fee, withdrawals, admin handoff

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from decimal import Decimal
import sys

from leasepool import (
    # Core classes
    Ledger, LeasePool, LeaseLifecycleEngine, AssetKey, Move,
    # Builder functions
    build_transaction, payment_token, issue_asset, holder_of, transfer_asset,
    # Constants
    SYSTEM_WALLET, RATE_SCALE, RATE_STEP,
    # Errors
    CustodyViolation, Conflict, Unauthorized, RateLimited,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    currency: str = "WETH"
    initial_balance: int = 10_000

    # Listing terms
    flash_fee: int = 10
    price_per_tick: int = 20
    max_lease_ticks: int = 100

    # Lease
    lease_ticks: int = 20

    # Protocol cut, in RATE_SCALE units (0.5%)
    pool_fee_rate: int = RATE_SCALE * 5 // 1000


CONFIG = DemoConfig()
PUNK = AssetKey("PUNK", 7)

# Global state for interactive mode
QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def show_balances(ledger: Ledger, wallets=("alice", "bob", "carol", "pool")):
    for wallet in wallets:
        print(f"  {wallet:8s} {ledger.get_balance(wallet, CONFIG.currency):>10}")


# ============================================================================
# RECEIVERS
# ============================================================================

class ArbitrageBot:
    """Uses the asset for one operation and hands it back."""

    def __init__(self, ledger: Ledger, wallet: str, pool_wallet: str):
        self.ledger = ledger
        self.wallet = wallet
        self.pool_wallet = pool_wallet

    def on_flash_access(self, asset, fee, initiator, data):
        print(f"    [bot] holding {asset!r} for {initiator}, fee {fee}, data {data!r}")
        transfer_asset(self.ledger, asset, self.wallet, self.pool_wallet)


class Thief:
    """Keeps the asset."""

    def __init__(self, wallet: str):
        self.wallet = wallet

    def on_flash_access(self, asset, fee, initiator, data):
        print(f"    [thief] keeping {asset!r}")


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_ledger():
    """Create the ledger, the payment token and funded wallets."""
    step_header(1, "The Ledger",
        "Every balance, asset and receipt lives in one double-entry ledger.")

    ledger = Ledger("tutorial", verbose=False)
    ledger.register_unit(payment_token(CONFIG.currency, "Wrapped Ether"))
    for wallet in ("admin", "alice", "bob", "carol", "bot", "thief"):
        ledger.register_wallet(wallet)
    for wallet in ("alice", "bob", "carol"):
        ledger.execute(build_transaction(ledger, [
            Move(Decimal(CONFIG.initial_balance), CONFIG.currency, SYSTEM_WALLET, wallet, "initial_balance")
        ]))

    section_header("Balances")
    show_balances(ledger, ("alice", "bob", "carol"))
    return ledger


def step_02_pool(ledger: Ledger):
    """Create the pool."""
    step_header(2, "The Pool",
        "The pool holds deposited assets and the fees they earn.")

    pool = LeasePool(ledger, admin="admin", currency=CONFIG.currency, verbose=True)
    section_header("Summary")
    for key, value in pool.summary().items():
        print(f"  {key:26s} {value}")
    return pool


def step_03_list_asset(pool: LeasePool):
    """Alice deposits an asset."""
    step_header(3, "Listing an Asset",
        "Depositing moves custody to the pool and mints a lender receipt.")

    issue_asset(pool.ledger, PUNK, "alice")
    print(f">>> pool.add_record('alice', {PUNK!r}, {CONFIG.flash_fee}, "
          f"{CONFIG.price_per_tick}, {CONFIG.max_lease_ticks})")
    receipt_id = pool.add_record(
        "alice", PUNK, CONFIG.flash_fee, CONFIG.price_per_tick, CONFIG.max_lease_ticks)

    print(f"\n  Holder of {PUNK!r}:  {holder_of(pool.ledger, PUNK)}")
    print(f"  Lender receipt:      LENDER#{receipt_id}")
    print(f"  Record:              {pool.get_record(PUNK)}")
    print(f"  Packed word:         {pool.registry.packed_word(PUNK):#x}")
    wait_for_enter()


# ============================================================================
# PHASE 2: FLASH ACCESS (Steps 4-6)
# ============================================================================

def step_04_flash(pool: LeasePool):
    """Bob flashes the asset."""
    step_header(4, "Flash Access",
        "Borrow, use and return the asset within a single operation.")

    bot = ArbitrageBot(pool.ledger, "bot", pool.wallet)
    result = pool.flash_access("bob", PUNK, CONFIG.flash_fee, bot, b"rebalance")
    print(f"\n  Fee paid:        {result.fee}")
    print(f"  Alice earned:    {pool.earnings('alice')}")
    print(f"  Holder after:    {holder_of(pool.ledger, PUNK)}")
    wait_for_enter()
    return bot


def step_05_thief(pool: LeasePool):
    """A receiver that keeps the asset."""
    step_header(5, "Custody Check",
        "If the asset is not back in the pool, the whole operation unwinds.")

    before = pool.ledger.get_balance("bob", CONFIG.currency)
    try:
        pool.flash_access("bob", PUNK, CONFIG.flash_fee, Thief("thief"))
    except CustodyViolation as e:
        print(f"\n  ✗ {e}")
    print(f"  Holder:          {holder_of(pool.ledger, PUNK)}")
    print(f"  Bob's balance:   {pool.ledger.get_balance('bob', CONFIG.currency)} (was {before})")
    wait_for_enter()


def step_06_reentrancy(pool: LeasePool, bot: ArbitrageBot):
    """A receiver that tries to flash the same asset again."""
    step_header(6, "Re-entrancy",
        "While an asset is out on a flash, nothing else can touch it.")

    class Greedy:
        wallet = "bot"

        def on_flash_access(self, asset, fee, initiator, data):
            try:
                pool.flash_access("bob", asset, CONFIG.flash_fee, bot)
            except Conflict as e:
                print(f"    [greedy] refused: {e}")
            transfer_asset(pool.ledger, asset, self.wallet, pool.wallet)

    pool.flash_access("bob", PUNK, CONFIG.flash_fee, Greedy())
    wait_for_enter()


# ============================================================================
# PHASE 3: LEASING (Steps 7-9)
# ============================================================================

def step_07_lease(pool: LeasePool):
    """Bob leases the asset."""
    step_header(7, "Long-Term Lease",
        "Pay price_per_tick * duration upfront for exclusive access.")

    receipt_id = pool.acquire_lease(
        "bob", PUNK, CONFIG.price_per_tick, "bob", CONFIG.lease_ticks)
    print(f"\n  Borrower receipt:  BORROWER#{receipt_id}")
    print(f"  Expires at tick:   {pool.get_record(PUNK).lease_expiry_tick}")
    section_header("Balances")
    show_balances(pool.ledger)
    wait_for_enter()


def step_08_lessee(pool: LeasePool, bot: ArbitrageBot):
    """Only the lessee may flash during the lease, and for free."""
    step_header(8, "Lessee Privileges",
        "The borrower receipt holder flashes for free; everyone else is refused.")

    pool.ledger.advance_ticks(5)
    print(f"  Bob's flash fee:   {pool.flash_access('bob', PUNK, 0, bot).fee}")
    try:
        pool.flash_access("carol", PUNK, 1_000, bot)
    except Unauthorized as e:
        print(f"  ✗ carol: {e}")
    wait_for_enter()


def step_09_expiry(pool: LeasePool):
    """The lifecycle engine settles the lease at expiry."""
    step_header(9, "Expiry",
        "Expired leases are settled by anyone; the engine sweeps them.")

    engine = LeaseLifecycleEngine(pool)
    expiry = pool.get_record(PUNK).lease_expiry_tick
    print(f"  Settled at {expiry - 1}: {engine.step(expiry - 1)}")
    print(f"  Settled at {expiry}: {engine.step(expiry)}")
    print(f"  State:        {pool.lease_state(PUNK).value}")
    wait_for_enter()


# ============================================================================
# PHASE 4: OPERATIONS (Steps 10-12)
# ============================================================================

def step_10_pool_fee(pool: LeasePool, bot: ArbitrageBot):
    """The admin takes a cut."""
    step_header(10, "Protocol Fee",
        "A share of every fee goes to the admin; changes are throttled.")

    pool.change_pool_fee("admin", CONFIG.pool_fee_rate)
    try:
        pool.change_pool_fee("admin", CONFIG.pool_fee_rate + RATE_STEP)
    except RateLimited as e:
        print(f"  ✗ {e}")
    result = pool.flash_access("carol", PUNK, 1_000, bot)
    print(f"  Lender share:    {result.lender_share}")
    print(f"  Protocol share:  {result.protocol_share}")
    wait_for_enter()


def step_11_withdraw(pool: LeasePool):
    """Beneficiaries pull their earnings."""
    step_header(11, "Withdrawals",
        "Earnings accrue in the pool until each beneficiary pulls them.")

    for beneficiary in sorted(pool.fees.beneficiaries()):
        pool.withdraw_earnings(beneficiary)
    section_header("Balances")
    show_balances(pool.ledger, ("alice", "admin", "pool"))
    wait_for_enter()


def step_12_handoff(pool: LeasePool):
    """Two-step admin handoff and delisting."""
    step_header(12, "Handoff and Delisting",
        "Admin rights move only when the candidate claims them.")

    pool.propose_new_owner("admin", "carol")
    pool.claim_ownership("carol")
    print(f"  Owner: {pool.owner}")
    pool.remove_record("alice", PUNK)
    print(f"  Holder of {PUNK!r}: {holder_of(pool.ledger, PUNK)}")

    check = pool.ledger.verify_double_entry()
    print(f"\n  Double entry valid: {check['valid']}")


def main():
    ledger = step_01_ledger()
    pool = step_02_pool(ledger)
    step_03_list_asset(pool)
    bot = step_04_flash(pool)
    step_05_thief(pool)
    step_06_reentrancy(pool, bot)
    step_07_lease(pool)
    step_08_lessee(pool, bot)
    step_09_expiry(pool)
    step_10_pool_fee(pool, bot)
    step_11_withdraw(pool)
    step_12_handoff(pool)

    print(f"\n{'='*70}")
    print("TUTORIAL COMPLETE")
    print(f"{'='*70}")
    print("""
    Next steps:
      - See leasepool/*.py for the pool components
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
