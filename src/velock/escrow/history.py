"""Historical voting-power queries addressed by block number.

A block has no timestamp of its own in the point logs, so its time is
estimated by linear interpolation between the two global points that
bracket it (or between the latest global point and the current clock
reading). Both queries use the same estimate, which keeps the sum of
account balances equal to total supply up to per-account rounding.
"""

from __future__ import annotations

from velock.clock import ClockReading
from velock.config import WEEK
from velock.errors import OnlyPastSequenceAllowed
from velock.escrow.checkpoints import CheckpointStore
from velock.escrow.timemath import floor_to_week
from velock.models.escrow import Point


def _require_past(blk: int, reading: ClockReading) -> None:
    if blk >= reading.block:
        raise OnlyPastSequenceAllowed(
            f"Block {blk} is not before current block {reading.block}"
        )


def estimate_block_time(
    store: CheckpointStore,
    blk: int,
    reading: ClockReading,
) -> tuple[int, int]:
    """Return ``(global_epoch, estimated_timestamp)`` for block ``blk``."""
    max_epoch = store.global_epoch
    epoch = store.find_global_epoch(blk, max_epoch)
    point_0 = store.global_point(epoch)
    if epoch < max_epoch:
        point_1 = store.global_point(epoch + 1)
        d_block = point_1.blk - point_0.blk
        d_t = point_1.ts - point_0.ts
    else:
        d_block = reading.block - point_0.blk
        d_t = reading.timestamp - point_0.ts
    block_time = point_0.ts
    if d_block != 0 and blk > point_0.blk:
        block_time += d_t * (blk - point_0.blk) // d_block
    return epoch, block_time


def balance_of_at(
    store: CheckpointStore,
    account: str,
    blk: int,
    reading: ClockReading,
) -> int:
    """Voting power ``account`` held at past block ``blk``."""
    _require_past(blk, reading)
    user_epoch = store.find_user_epoch(account, blk)
    if user_epoch == 0:
        return 0
    upoint = store.user_point(account, user_epoch)
    _, block_time = estimate_block_time(store, blk, reading)
    return upoint.bias_at(block_time)


def total_supply_at(
    store: CheckpointStore,
    blk: int,
    reading: ClockReading,
    week: int = WEEK,
) -> int:
    """Total voting power at past block ``blk``."""
    _require_past(blk, reading)
    epoch, block_time = estimate_block_time(store, blk, reading)
    point = store.global_point(epoch)
    if point.blk > blk:
        return 0
    return supply_at(store, point, block_time, week)


def supply_at(store: CheckpointStore, point: Point, t: int, week: int = WEEK) -> int:
    """Replay the slope-change schedule from ``point`` forward to time ``t``."""
    bias = point.bias
    slope = point.slope
    last_ts = point.ts
    t_i = floor_to_week(last_ts, week)
    while True:
        t_i += week
        d_slope = 0
        if t_i > t:
            t_i = t
        else:
            d_slope = store.slope_change(t_i)
        bias += slope * (t_i - last_ts)
        if t_i == t:
            break
        slope += d_slope
        last_ts = t_i
    return max(bias, 0)
