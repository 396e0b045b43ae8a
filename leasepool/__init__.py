"""
leasepool - Rental Pool for Non-Fungible Assets

Owners deposit assets into a shared pool and earn fees from flash access
(borrowed and returned within one operation) or from exclusive leases paid
upfront. Everything runs on a small double-entry ledger.

Usage:
    from decimal import Decimal
    from leasepool import (
        Ledger, LeasePool, AssetKey, Move, build_transaction,
        issue_asset, payment_token, SYSTEM_WALLET,
    )

    ledger = Ledger("main", verbose=False)
    ledger.register_unit(payment_token("WETH", "Wrapped Ether"))
    for wallet in ("admin", "alice", "bob"):
        ledger.register_wallet(wallet)

    # Fund wallets via SYSTEM_WALLET (proper issuance)
    ledger.execute(build_transaction(ledger, [
        Move(Decimal(1000), "WETH", SYSTEM_WALLET, "bob", "initial_balance")
    ]))

    pool = LeasePool(ledger, admin="admin", currency="WETH")
    punk = AssetKey("PUNK", 7)
    issue_asset(ledger, punk, "alice")

    pool.add_record("alice", punk, flash_fee=10, price_per_tick=20, max_lease_ticks=100)
    pool.acquire_lease("bob", punk, offered_price=20, receiver="bob", duration_ticks=20)
    pool.withdraw_earnings("alice")
"""

# Core types
from .core import (
    LedgerView,
    FlashReceiver,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    PoolEvent,
    LedgerError,
    InsufficientFunds,
    BalanceConstraintViolation,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    NotFound,
    Unauthorized,
    RangeError,
    InsufficientPayment,
    CustodyViolation,
    Conflict,
    RateLimited,
    NoEarnings,
    TransferFailed,
    pausable_transfer_rule,
    payment_token,
    SYSTEM_WALLET,
    POOL_WALLET,
    RATE_SCALE,
    RATE_STEP,
    UNIT_TYPE_PAYMENT_TOKEN,
    UNIT_TYPE_ASSET,
    UNIT_TYPE_LENDER_RECEIPT,
    UNIT_TYPE_BORROWER_RECEIPT,
    RECORD_ADDED,
    RECORD_EDITED,
    RECORD_REMOVED,
    FLASH_ACCESS,
    LEASE_ACQUIRED,
    LEASE_SETTLED,
    EARNINGS_WITHDRAWN,
    POOL_FEE_CHANGED,
    OWNERSHIP_PROPOSED,
    OWNERSHIP_TRANSFERRED,
    RECEIPT_TRANSFERRED,
)

# Ledger
from .ledger import Ledger, LedgerSnapshot

# Assets
from .assets import (
    AssetKey,
    create_asset_unit,
    issue_asset,
    holder_of,
    transfer_asset,
)

# Record codec
from .codec import (
    PoolRecord,
    EMPTY_RECORD,
    FIELD_WIDTHS,
    RECORD_WORD_BITS,
    check_field,
    encode_record,
    decode_record,
)

# Components
from .receipts import ReceiptKind, ReceiptIssuer, receipt_symbol
from .ownership import AdminOwnership
from .fees import FeeLedger
from .registry import LeaseRegistry
from .flash import FlashAccessProtocol, FlashResult
from .leasing import LongTermLeaseFSM, LeaseState, LeaseGrant

# Pool
from .pool import LeasePool
from .lifecycle_engine import LeaseLifecycleEngine


__all__ = [
    # Core
    'LedgerView', 'FlashReceiver', 'Move', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'build_transaction',
    'Unit', 'UnitStateChange', 'ExecuteResult', 'PoolEvent',
    'LedgerError', 'InsufficientFunds', 'BalanceConstraintViolation',
    'TransferRuleViolation', 'UnitNotRegistered', 'WalletNotRegistered',
    'NotFound', 'Unauthorized', 'RangeError', 'InsufficientPayment',
    'CustodyViolation', 'Conflict', 'RateLimited', 'NoEarnings', 'TransferFailed',
    'pausable_transfer_rule', 'payment_token',
    'SYSTEM_WALLET', 'POOL_WALLET', 'RATE_SCALE', 'RATE_STEP',
    'UNIT_TYPE_PAYMENT_TOKEN', 'UNIT_TYPE_ASSET',
    'UNIT_TYPE_LENDER_RECEIPT', 'UNIT_TYPE_BORROWER_RECEIPT',
    # Notifications
    'RECORD_ADDED', 'RECORD_EDITED', 'RECORD_REMOVED', 'FLASH_ACCESS',
    'LEASE_ACQUIRED', 'LEASE_SETTLED', 'EARNINGS_WITHDRAWN', 'POOL_FEE_CHANGED',
    'OWNERSHIP_PROPOSED', 'OWNERSHIP_TRANSFERRED', 'RECEIPT_TRANSFERRED',
    # Ledger
    'Ledger', 'LedgerSnapshot',
    # Assets
    'AssetKey', 'create_asset_unit', 'issue_asset', 'holder_of', 'transfer_asset',
    # Codec
    'PoolRecord', 'EMPTY_RECORD', 'FIELD_WIDTHS', 'RECORD_WORD_BITS',
    'check_field', 'encode_record', 'decode_record',
    # Components
    'ReceiptKind', 'ReceiptIssuer', 'receipt_symbol',
    'AdminOwnership', 'FeeLedger', 'LeaseRegistry',
    'FlashAccessProtocol', 'FlashResult',
    'LongTermLeaseFSM', 'LeaseState', 'LeaseGrant',
    # Pool
    'LeasePool', 'LeaseLifecycleEngine',
]

__version__ = '1.0.0'
