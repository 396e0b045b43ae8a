"""
codec.py - Packed Pool Record Codec

A pool record is persisted as one fixed-width integer word. Each field owns a
contiguous bit range, least-significant field first:

    bits   0..71   flash_fee            (72 bits)
    bits  72..143  price_per_tick       (72 bits)
    bits 144..167  max_lease_ticks      (24 bits)
    bits 168..199  lease_expiry_tick    (32 bits)
    bits 200..231  borrower_receipt_id  (32 bits)
    bits 232..263  lender_receipt_id    (32 bits)

encode_record() range-checks every field and raises RangeError naming the
first field that does not fit. decode_record() is pure and total on the
264-bit word range and is the exact inverse of encode_record().
"""

from __future__ import annotations
from dataclasses import dataclass, fields, replace
from typing import Dict, Tuple

from .core import RangeError


# Field name -> width in bits, in packing order (least significant first).
FIELD_WIDTHS: Dict[str, int] = {
    'flash_fee': 72,
    'price_per_tick': 72,
    'max_lease_ticks': 24,
    'lease_expiry_tick': 32,
    'borrower_receipt_id': 32,
    'lender_receipt_id': 32,
}

RECORD_WORD_BITS = sum(FIELD_WIDTHS.values())


def _layout() -> Dict[str, Tuple[int, int]]:
    offsets = {}
    offset = 0
    for name, width in FIELD_WIDTHS.items():
        offsets[name] = (offset, width)
        offset += width
    return offsets


# Field name -> (bit offset, width)
FIELD_LAYOUT: Dict[str, Tuple[int, int]] = _layout()


@dataclass(frozen=True, slots=True)
class PoolRecord:
    """
    Bookkeeping entry for one deposited asset.

    Attributes:
        flash_fee: Minimum payment for a single flash access
        price_per_tick: Minimum per-tick price for a long-term lease
        max_lease_ticks: Longest lease the depositor accepts
        lease_expiry_tick: Tick at which the current lease ends (0 = none)
        borrower_receipt_id: Receipt held by the current lessee (0 = none)
        lender_receipt_id: Receipt held by the depositor (0 = not resident)
    """
    flash_fee: int = 0
    price_per_tick: int = 0
    max_lease_ticks: int = 0
    lease_expiry_tick: int = 0
    borrower_receipt_id: int = 0
    lender_receipt_id: int = 0

    @property
    def is_resident(self) -> bool:
        """True while the asset is listed in the pool."""
        return self.lender_receipt_id != 0

    def is_leased(self, now: int) -> bool:
        """True while a lease runs past the given tick."""
        return self.lease_expiry_tick > now

    @property
    def has_lease(self) -> bool:
        """True if a lease is recorded, expired or not, and not yet settled."""
        return self.lease_expiry_tick != 0

    def with_terms(self, flash_fee: int, price_per_tick: int, max_lease_ticks: int) -> PoolRecord:
        """Return a copy with the three depositor-controlled fields replaced."""
        return replace(
            self,
            flash_fee=flash_fee,
            price_per_tick=price_per_tick,
            max_lease_ticks=max_lease_ticks,
        )

    def without_lease(self) -> PoolRecord:
        return replace(self, lease_expiry_tick=0, borrower_receipt_id=0)


EMPTY_RECORD = PoolRecord()


def check_field(name: str, value: int) -> int:
    """
    Range-check a single record field.

    Raises:
        RangeError: If value is not an int in [0, 2**width - 1]
    """
    if name not in FIELD_WIDTHS:
        raise KeyError(f"Unknown record field: {name}")
    width = FIELD_WIDTHS[name]
    if isinstance(value, bool) or not isinstance(value, int):
        raise RangeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0 or value >= 1 << width:
        raise RangeError(f"{name} doesn't fit in {width} bits")
    return value


def encode_record(record: PoolRecord) -> int:
    """
    Pack a record into a single word.

    Raises:
        RangeError: Naming the first field (in packing order) that does not fit
    """
    word = 0
    for f in fields(PoolRecord):
        value = check_field(f.name, getattr(record, f.name))
        offset, _ = FIELD_LAYOUT[f.name]
        word |= value << offset
    return word


def decode_record(word: int) -> PoolRecord:
    """
    Unpack a word produced by encode_record().

    Raises:
        RangeError: If word is not an int in [0, 2**RECORD_WORD_BITS)
    """
    if isinstance(word, bool) or not isinstance(word, int):
        raise RangeError(f"record word must be an int, got {type(word).__name__}")
    if word < 0 or word >= 1 << RECORD_WORD_BITS:
        raise RangeError(f"record word doesn't fit in {RECORD_WORD_BITS} bits")
    values = {}
    for name, (offset, width) in FIELD_LAYOUT.items():
        values[name] = (word >> offset) & ((1 << width) - 1)
    return PoolRecord(**values)
