"""
Minimal in-memory credit ledger for report generation.

Stands in for the subscription store during development: every user starts
with a fixed monthly allowance and an active subscription.
"""
import os
import threading
from typing import Dict, Optional


class CreditLedger:
    """
    Per-user credit counter with dict storage of {user: credits_remaining}.
    Users are created lazily with the default allowance on first access.
    """

    def __init__(self, default_credits: Optional[int] = None):
        """Initialize ledger with empty storage."""
        if default_credits is None:
            default_credits = int(os.getenv('DEFAULT_MONTHLY_CREDITS', '999'))
        self.default_credits = default_credits
        self._storage: Dict[str, int] = {}
        self._inactive = set()
        self._lock = threading.Lock()

    def get_access(self, user: str) -> dict:
        """
        Return the access record for a user.

        Args:
            user: User identifier (email).

        Returns:
            {"active": bool, "credits": int}
        """
        with self._lock:
            credits = self._storage.setdefault(user, self.default_credits)
            return {'active': user not in self._inactive, 'credits': credits}

    def decrement(self, user: str) -> int:
        """
        Spend one credit after a successful report.

        Returns:
            Credits remaining (never below zero).
        """
        with self._lock:
            credits = self._storage.setdefault(user, self.default_credits)
            credits = max(0, credits - 1)
            self._storage[user] = credits
            return credits

    def set_credits(self, user: str, credits: int) -> None:
        """Admin and test hook; no HTTP route calls it."""
        with self._lock:
            self._storage[user] = max(0, credits)

    def deactivate(self, user: str) -> None:
        """Admin and test hook: mark a subscription inactive (403 on /api/report)."""
        with self._lock:
            self._inactive.add(user)

    def reset(self) -> None:
        """Clear all users. Test hook for isolating ledger state."""
        with self._lock:
            self._storage.clear()
            self._inactive.clear()


# Module-level instance
credit_ledger = CreditLedger()
