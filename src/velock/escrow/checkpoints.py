"""Append-only checkpoint logs and the slope-change schedule.

The store holds one global Point log and one Point log per account,
plus the schedule of future slope changes keyed by week-aligned expiry.
It knows nothing about locks: the ledger computes points and the store
records them, enforcing that each log is ordered by block and time.

Epoch numbering follows Curve's VotingEscrow. The global log starts
with point 0 at deployment and ``global_epoch`` is the index of the
latest point. Per-account logs start with an empty placeholder at index
0 so that ``user_epoch == 0`` means "never checkpointed".
"""

from __future__ import annotations

import logging
from typing import Optional

from velock.models.escrow import Point

logger = logging.getLogger(__name__)


class CheckpointStore:
    """Global and per-account Point logs with binary search by block.

    Usage:
        store = CheckpointStore(Point(0, 0, deploy_ts, deploy_blk))
        store.append_global(Point(bias, slope, ts, blk))
        store.append_user("0xabc...", Point(bias, slope, ts, blk))
        epoch = store.find_global_epoch(blk)
    """

    def __init__(self, genesis_point: Point) -> None:
        self._global: list[Point] = [genesis_point]
        self._user: dict[str, list[Point]] = {}
        self._slope_changes: dict[int, int] = {}

    def copy(self) -> CheckpointStore:
        """Independent copy of every log and the schedule."""
        clone = CheckpointStore(self._global[0])
        clone._global = list(self._global)
        clone._user = {account: list(points) for account, points in self._user.items()}
        clone._slope_changes = dict(self._slope_changes)
        return clone

    # ------------------------------------------------------------------
    # Global log
    # ------------------------------------------------------------------

    @property
    def global_epoch(self) -> int:
        return len(self._global) - 1

    def latest_global(self) -> Point:
        return self._global[-1]

    def global_point(self, epoch: int) -> Point:
        if epoch < 0 or epoch > self.global_epoch:
            raise IndexError(f"Global epoch {epoch} out of range")
        return self._global[epoch]

    def global_points(self) -> list[Point]:
        return list(self._global)

    def append_global(self, point: Point) -> int:
        """Append a global point; returns its epoch."""
        _check_order(self._global[-1], point, "global")
        self._global.append(point)
        return self.global_epoch

    # ------------------------------------------------------------------
    # Per-account logs
    # ------------------------------------------------------------------

    def user_epoch(self, account: str) -> int:
        return len(self._user.get(account, [Point()])) - 1

    def latest_user(self, account: str) -> Point:
        return self._user.get(account, [Point()])[-1]

    def user_point(self, account: str, epoch: int) -> Point:
        points = self._user.get(account, [Point()])
        if epoch < 0 or epoch >= len(points):
            raise IndexError(f"User epoch {epoch} out of range for {account}")
        return points[epoch]

    def user_points(self, account: str) -> list[Point]:
        return list(self._user.get(account, [Point()])[1:])

    def accounts(self) -> list[str]:
        return sorted(self._user)

    def append_user(self, account: str, point: Point) -> int:
        """Append a point to ``account``'s log; returns its epoch."""
        points = self._user.setdefault(account, [Point()])
        if len(points) > 1:
            _check_order(points[-1], point, account)
        points.append(point)
        return len(points) - 1

    # ------------------------------------------------------------------
    # Slope-change schedule
    # ------------------------------------------------------------------

    def slope_change(self, timestamp: int) -> int:
        """Amount added to the global slope when time reaches ``timestamp``."""
        return self._slope_changes.get(timestamp, 0)

    def set_slope_change(self, timestamp: int, value: int) -> None:
        if value == 0:
            self._slope_changes.pop(timestamp, None)
        else:
            self._slope_changes[timestamp] = value

    def slope_changes(self) -> dict[int, int]:
        return dict(sorted(self._slope_changes.items()))

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def find_global_epoch(self, blk: int, max_epoch: Optional[int] = None) -> int:
        """Latest global epoch whose point was recorded at or before ``blk``."""
        upper = self.global_epoch if max_epoch is None else max_epoch
        return _search(self._global, blk, 0, upper)

    def find_user_epoch(self, account: str, blk: int) -> int:
        """Latest epoch of ``account`` recorded at or before ``blk`` (0 if none)."""
        points = self._user.get(account)
        if points is None:
            return 0
        return _search(points, blk, 0, len(points) - 1)


def _search(points: list[Point], blk: int, lo: int, hi: int) -> int:
    # Placeholder user point 0 has blk 0 and always matches.
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if points[mid].blk <= blk:
            lo = mid
        else:
            hi = mid - 1
    return lo


def _check_order(last: Point, point: Point, label: str) -> None:
    if point.ts < last.ts or point.blk < last.blk:
        raise ValueError(
            f"Out-of-order checkpoint for {label}: "
            f"({point.ts}, {point.blk}) after ({last.ts}, {last.blk})"
        )
    if point.slope > 0:
        raise ValueError(f"Slope must be non-positive, got {point.slope}")
    if point.bias < 0:
        raise ValueError(f"Bias must be non-negative, got {point.bias}")
