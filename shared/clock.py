"""
Time source and expiry comparisons shared by tokens and caches.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


class ClockPolicy:
    """Provides "now" and expiration arithmetic in UTC.

    A validity of ``None``, zero or a negative number of seconds means the
    credential never expires and is represented by an expiration of ``None``.
    """

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def expiry_after(self, seconds: Optional[int]) -> Optional[datetime]:
        """Expiration ``seconds`` from now, or None for non-expiring."""
        if seconds is None or seconds <= 0:
            return None
        return self.now() + timedelta(seconds=seconds)

    def is_expired(self, expiration: Optional[datetime]) -> bool:
        """True once ``expiration`` is at or before now."""
        if expiration is None:
            return False
        return expiration <= self.now()

    def expires_in(self, expiration: Optional[datetime]) -> Optional[int]:
        """Whole seconds left before ``expiration``, never negative."""
        if expiration is None:
            return None
        return max(0, int((expiration - self.now()).total_seconds()))

    @staticmethod
    def from_timestamp(value: float) -> datetime:
        """Convert epoch seconds (as in an ``exp`` claim) to an aware datetime."""
        return datetime.fromtimestamp(value, tz=timezone.utc)


system_clock = ClockPolicy()
