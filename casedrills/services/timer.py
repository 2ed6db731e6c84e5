"""
Deadline tracking for timed drill attempts
"""

import math
from dataclasses import dataclass
from datetime import datetime

from casedrills.utils.constants import CRITICAL_FRACTION, TimerBand, WARNING_FRACTION


@dataclass(frozen=True)
class DrillTimer:
    """
    Pure view of an attempt's deadline.

    Remaining time is ``time_limit - floor(now - started_at)`` clamped to
    ``[0, time_limit]``, so a clock that reads earlier than the start (skew
    between servers) reports the full limit instead of a negative value.
    The timer never blocks; callers poll it or consult it at submission.
    """

    started_at: datetime
    time_limit_seconds: int

    def __post_init__(self):
        if self.time_limit_seconds <= 0:
            raise ValueError("time_limit_seconds must be positive")

    def elapsed_seconds(self, now: datetime) -> int:
        elapsed = math.floor((now - self.started_at).total_seconds())
        return max(0, elapsed)

    def remaining_seconds(self, now: datetime) -> int:
        return max(0, self.time_limit_seconds - self.elapsed_seconds(now))

    def is_expired(self, now: datetime) -> bool:
        return self.remaining_seconds(now) == 0

    def band(self, now: datetime) -> TimerBand:
        """Display band: critical at 10% of the limit or less, warning at 30% or less"""
        remaining = self.remaining_seconds(now)
        if remaining <= CRITICAL_FRACTION * self.time_limit_seconds:
            return TimerBand.CRITICAL
        if remaining <= WARNING_FRACTION * self.time_limit_seconds:
            return TimerBand.WARNING
        return TimerBand.NORMAL


def remaining_seconds(now: datetime, started_at: datetime, time_limit_seconds: int) -> int:
    """Seconds left before the deadline, never negative"""
    return DrillTimer(started_at, time_limit_seconds).remaining_seconds(now)
