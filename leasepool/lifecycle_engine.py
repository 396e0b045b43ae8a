"""
lifecycle_engine.py - Lease Lifecycle Engine

Settling an expired lease is never automatic: somebody has to call
settle_lease(). The engine is the polling loop a host runs between
operations to do that for every listed asset.

Each step():
1. Advance ledger time
2. Settle every lease that has expired by the new tick
"""

from __future__ import annotations
from typing import List, Optional

from .assets import AssetKey
from .pool import LeasePool


class LeaseLifecycleEngine:
    """Advances the clock and settles expired leases."""

    def __init__(self, pool: LeasePool):
        self.pool = pool
        self.verbose = pool.verbose

    def due(self, tick: Optional[int] = None) -> List[AssetKey]:
        """Listed assets whose lease has expired by tick (default: now)."""
        now = self.pool.ledger.current_tick if tick is None else tick
        due = []
        for asset in self.pool.listed_assets():
            record = self.pool.get_record(asset)
            if record.has_lease and not record.is_leased(now):
                due.append(asset)
        return due

    def sweep(self) -> List[AssetKey]:
        """Settle every lease expired at the current tick. Returns the assets settled."""
        settled = []
        for asset in self.due():
            if self.pool.settle_lease(asset):
                settled.append(asset)
                if self.verbose:
                    print(f"[LIFECYCLE] Settled lease on {asset.symbol}")
        return settled

    def step(self, tick: int) -> List[AssetKey]:
        """
        Advance time to tick and settle whatever expired.

        Raises:
            ValueError: If tick is before the current tick
        """
        self.pool.ledger.advance_time(tick)
        return self.sweep()
