"""
Clock abstraction so attempt timing can be driven deterministically
"""

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Wall-clock source used by the attempt state machine."""

    def now(self) -> datetime:
        """Return the current timezone-aware UTC datetime."""


class SystemClock:
    """Production clock backed by datetime.now(timezone.utc)."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
