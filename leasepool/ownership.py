"""
ownership.py - Two-Phase Admin Handoff

The pool has one admin identity slot and one pending-admin slot. The admin
names a candidate; the candidate completes the handoff by claiming it. Until
the claim, the old admin stays in charge and may name someone else.
"""

from __future__ import annotations
from typing import Optional, Tuple

from .core import Unauthorized


class AdminOwnership:
    """Admin identity slot plus a pending candidate slot."""

    def __init__(self, admin: str):
        if not admin or not admin.strip():
            raise ValueError("admin cannot be empty")
        self._owner = admin
        self._proposed: Optional[str] = None

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def proposed_owner(self) -> Optional[str]:
        return self._proposed

    def require_owner(self, caller: str) -> None:
        """
        Raises:
            Unauthorized: If caller is not the current admin
        """
        if caller != self._owner:
            raise Unauthorized(f"{caller} is not the pool owner")

    def propose_new_owner(self, caller: str, candidate: str) -> None:
        """
        Record candidate as the pending admin, replacing any earlier proposal.

        Raises:
            Unauthorized: If caller is not the current admin
            ValueError: If candidate is empty
        """
        self.require_owner(caller)
        if not candidate or not candidate.strip():
            raise ValueError("candidate cannot be empty")
        self._proposed = candidate

    def claim_ownership(self, caller: str) -> str:
        """
        Complete the handoff and return the previous admin.

        Raises:
            Unauthorized: If caller is not the pending candidate
        """
        if self._proposed is None or caller != self._proposed:
            raise Unauthorized(f"{caller} is not the proposed owner")
        previous = self._owner
        self._owner = caller
        self._proposed = None
        return previous

    def snapshot(self) -> Tuple[str, Optional[str]]:
        return (self._owner, self._proposed)

    def restore(self, snap: Tuple[str, Optional[str]]) -> None:
        self._owner, self._proposed = snap
