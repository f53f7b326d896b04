"""Clock sources: the (timestamp, block) reading every operation runs at.

The ledger never reads wall-clock time directly. All checkpoints are
stamped with a reading from a Clock, which makes every operation
replayable: feed the same readings and the same point logs come out.

Block numbers are the ledger's sequence numbers. They never decrease,
and historical queries are addressed by block.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True)
class ClockReading:
    """A single (timestamp, block) observation."""
    timestamp: int
    block: int


class Clock(Protocol):
    def now(self) -> ClockReading:
        ...


class SystemClock:
    """Wall-clock time with a synthetic block height.

    Block height is derived from the timestamp at a fixed block time so
    that it advances monotonically with real time.
    """

    def __init__(self, block_time: int = 12, genesis_timestamp: int = 0) -> None:
        if block_time <= 0:
            raise ValueError("block_time must be positive")
        self._block_time = block_time
        self._genesis_timestamp = genesis_timestamp

    def now(self) -> ClockReading:
        ts = int(time.time())
        return ClockReading(
            timestamp=ts,
            block=max(0, (ts - self._genesis_timestamp) // self._block_time),
        )


class ManualClock:
    """A clock that only moves when told to.

    Usage:
        clock = ManualClock(timestamp=1_700_000_000, block=1)
        clock.advance(7 * 86400)     # one week later, next block
        clock.mine()                 # same time, next block
    """

    def __init__(self, timestamp: int, block: int = 1) -> None:
        self._timestamp = timestamp
        self._block = block

    def now(self) -> ClockReading:
        return ClockReading(timestamp=self._timestamp, block=self._block)

    @property
    def timestamp(self) -> int:
        return self._timestamp

    @property
    def block(self) -> int:
        return self._block

    def advance(self, seconds: int = 0, blocks: int = 1) -> ClockReading:
        """Move forward by ``seconds`` and ``blocks``."""
        if seconds < 0 or blocks < 0:
            raise ValueError("Clock can only move forward")
        self._timestamp += seconds
        self._block += blocks
        return self.now()

    def advance_to(self, timestamp: int, blocks: int = 1) -> ClockReading:
        """Jump to an absolute timestamp (must not be in the past)."""
        if timestamp < self._timestamp:
            raise ValueError(
                f"Cannot move clock backwards: {timestamp} < {self._timestamp}"
            )
        return self.advance(timestamp - self._timestamp, blocks)

    def mine(self, blocks: int = 1) -> ClockReading:
        """Produce ``blocks`` new blocks without moving time."""
        return self.advance(0, blocks)


class PinnedClock:
    """Wraps a clock so one reading can be held for a whole operation.

    The service pins a reading before running an operation and records
    that same reading in the event log; replay pins the recorded reading
    back. Unpinned, it reads through to the wrapped clock.
    """

    def __init__(self, source: Clock) -> None:
        self._source = source
        self._pinned: Optional[ClockReading] = None

    @property
    def source(self) -> Clock:
        return self._source

    def now(self) -> ClockReading:
        if self._pinned is not None:
            return self._pinned
        return self._source.now()

    def pin(self, reading: Optional[ClockReading] = None) -> ClockReading:
        self._pinned = reading or self._source.now()
        return self._pinned

    def unpin(self) -> None:
        self._pinned = None

    def attach(self, source: Clock) -> None:
        """Read through to ``source`` from now on."""
        self._source = source
