"""Fixed-point time math for linear voting-power decay.

All functions are pure integer arithmetic. Division always floors, so a
lock's slope is ``amount // maxtime`` and its bias is that slope times
the remaining seconds. Rounding therefore loses at most ``maxtime - 1``
units of principal per lock, never voting power that is not backed.
"""

from __future__ import annotations

from velock.config import MAXTIME, PRECISION, WEEK


def floor_to_week(timestamp: int, week: int = WEEK) -> int:
    """Round a timestamp down to the nearest multiple of ``week``."""
    return (timestamp // week) * week


def decayed_bias(bias: int, slope: int, dt: int) -> int:
    """Bias after ``dt`` seconds of decay at ``slope`` (slope <= 0)."""
    return max(bias + slope * dt, 0)


def slope_for_lock(amount: int, maxtime: int = MAXTIME) -> int:
    """Decay rate of a lock: ``-floor(amount / maxtime)``."""
    return -(amount // maxtime)


def bias_for_lock(amount: int, lock_seconds: int, maxtime: int = MAXTIME) -> int:
    """Voting power of ``amount`` locked for ``lock_seconds`` more seconds."""
    if lock_seconds <= 0:
        return 0
    return (amount // maxtime) * lock_seconds


def penalty_rate(
    remaining: int,
    max_penalty: int = PRECISION,
    maxtime: int = MAXTIME,
) -> int:
    """Penalty fraction (scaled by PRECISION) for quitting early.

    Proportional to the time left on the lock and capped at
    ``max_penalty``. Zero once the lock has run out or penalties are
    switched off.
    """
    if remaining <= 0 or max_penalty == 0:
        return 0
    return min(max_penalty, max_penalty * remaining // maxtime)


def penalty_amount(
    amount: int,
    remaining: int,
    max_penalty: int = PRECISION,
    maxtime: int = MAXTIME,
    precision: int = PRECISION,
) -> int:
    """Principal withheld when quitting ``amount`` with ``remaining`` seconds left."""
    return amount * penalty_rate(remaining, max_penalty, maxtime) // precision
