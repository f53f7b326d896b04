"""Escrow data models: locks and checkpoint points.

Both records are immutable. The ledger replaces a Lock wholesale on
every mutation, and Points are never edited once appended to a log.
"""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class Lock:
    """Per-account escrow state.

    ``delegated`` is the voting-power inflow this account holds: the sum
    of the principal of every account delegating to it (itself included
    while self-delegated). Voting power is computed from ``delegated``
    and this account's own ``end``.
    """
    amount: int = 0
    end: int = 0
    delegatee: str = ""
    delegated: int = 0

    def is_delegated_away(self, account: str) -> bool:
        return self.delegatee != account

    def with_changes(self, **changes: int | str) -> Lock:
        return replace(self, **changes)


@dataclass(frozen=True)
class Point:
    """A linear-decay snapshot: ``bias(t) = max(bias + slope*(t - ts), 0)``.

    ``slope`` is never positive. ``blk`` is the sequence number the point
    was recorded at.
    """
    bias: int = 0
    slope: int = 0
    ts: int = 0
    blk: int = 0

    def bias_at(self, timestamp: int) -> int:
        return max(self.bias + self.slope * (timestamp - self.ts), 0)

    def to_dict(self) -> dict[str, int]:
        return {"bias": self.bias, "slope": self.slope, "ts": self.ts, "blk": self.blk}
