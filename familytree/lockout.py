"""
Login lockout bookkeeping.

An account is ``Locked`` while ``lockout_until`` lies in the future and
``Normal`` otherwise. Each failed credential check bumps the counter; reaching
the threshold starts a timed lockout. An expired lockout is re-evaluated on the
next attempt rather than cleared by a background job.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

DEFAULT_THRESHOLD = 5
DEFAULT_LOCKOUT = timedelta(hours=24)


@dataclass(frozen=True)
class LockoutPolicy:
    threshold: int = DEFAULT_THRESHOLD
    duration: timedelta = DEFAULT_LOCKOUT


@dataclass(frozen=True)
class FailureUpdate:
    attempts: int
    lockout_until: Optional[datetime]

    @property
    def locked(self) -> bool:
        return self.lockout_until is not None


def is_locked(lockout_until: Optional[datetime], now: datetime) -> bool:
    return lockout_until is not None and lockout_until > now


def hours_remaining(lockout_until: datetime, now: datetime) -> int:
    """Whole hours left on a lockout, rounded up."""
    remaining = (lockout_until - now).total_seconds()
    return max(0, math.ceil(remaining / 3600))


def register_failure(
    attempts: int,
    lockout_until: Optional[datetime],
    now: datetime,
    policy: LockoutPolicy = LockoutPolicy(),
) -> FailureUpdate:
    """Compute the counter and lockout after one more failed attempt."""
    if lockout_until is not None and lockout_until <= now:
        # The previous lockout has run its course; start a fresh window.
        attempts = 0
    new_attempts = attempts + 1
    if new_attempts >= policy.threshold:
        return FailureUpdate(new_attempts, now + policy.duration)
    return FailureUpdate(new_attempts, None)


def needs_reset(attempts: int, lockout_until: Optional[datetime]) -> bool:
    return attempts > 0 or lockout_until is not None
