"""Voting-escrow ledger: lock lifecycle, delegation and checkpointing.

An account locks principal until a week-aligned expiry. Its voting
power decays linearly to zero at that expiry:

    power(t) = floor(delegated / MAXTIME) * (end - t)

where ``delegated`` is the principal routed to the account (its own,
while self-delegated, plus everything delegated to it). An account that
delegates away keeps its principal and its expiry but contributes no
power of its own; the delegatee's expiry governs the decay instead, so
delegation is only allowed towards strictly longer locks.

Every mutation rewrites the affected Lock, appends a per-account Point,
and brings the global Point log forward to "now", walking one week at a
time and applying the slope changes scheduled at each expiry crossed.

All mutating methods run under one re-entrant lock around the whole
ledger and validate every precondition before the first write, so a
rejected call leaves no trace.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

from velock.clock import Clock, ClockReading
from velock.config import EscrowParams
from velock.crypto.hashing import normalize_address
from velock.errors import (
    AlreadyDelegated,
    DelegateeHasNoLock,
    DelegateeLockExpired,
    ExceedsMaxTime,
    FutureLockEndRequired,
    LockDelegated,
    LockExists,
    LockExpired,
    LockNotExpired,
    NoLock,
    NonZeroAmountRequired,
    OnlyDelegateToLongerLock,
    OnlyIncreaseLockEnd,
    Unauthorized,
)
from velock.escrow import history
from velock.escrow.checkpoints import CheckpointStore
from velock.escrow.timemath import floor_to_week, penalty_amount, penalty_rate
from velock.models.escrow import Lock, Point

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PenaltyCollection:
    recipient: str
    amount: int


class VotingEscrow:
    """The single owner of all escrow state.

    Usage:
        ve = VotingEscrow(owner="0xOwner...", clock=ManualClock(ts))
        ve.create_lock(alice, end=ts + 52 * WEEK, amount=10**21)
        ve.delegate(bob, alice)
        power = ve.balance_of(alice)
    """

    def __init__(
        self,
        owner: str,
        clock: Clock,
        params: Optional[EscrowParams] = None,
        penalty_recipient: Optional[str] = None,
    ) -> None:
        self._params = params or EscrowParams()
        self._clock = clock
        self._owner = normalize_address(owner)
        self._penalty_recipient = normalize_address(penalty_recipient or owner)
        self._max_penalty = self._params.max_penalty
        self._unlocked = False
        self._penalty_accumulated = 0
        self._supply = 0
        self._locks: dict[str, Lock] = {}
        self._mutex = threading.RLock()

        reading = clock.now()
        self._store = CheckpointStore(Point(0, 0, reading.timestamp, reading.block))

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    @property
    def params(self) -> EscrowParams:
        return self._params

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def penalty_recipient(self) -> str:
        return self._penalty_recipient

    @property
    def max_penalty(self) -> int:
        return self._max_penalty

    @property
    def unlocked(self) -> bool:
        return self._unlocked

    @property
    def penalty_accumulated(self) -> int:
        return self._penalty_accumulated

    @property
    def supply(self) -> int:
        """Total principal currently held in escrow."""
        return self._supply

    @property
    def global_epoch(self) -> int:
        return self._store.global_epoch

    @property
    def store(self) -> CheckpointStore:
        return self._store

    def locked(self, account: str) -> Lock:
        account = normalize_address(account)
        return self._locks.get(account, Lock(delegatee=account))

    def lock_end(self, account: str) -> int:
        return self.locked(account).end

    def accounts(self) -> list[str]:
        return sorted(self._locks)

    def user_point_epoch(self, account: str) -> int:
        return self._store.user_epoch(normalize_address(account))

    def user_point_history(self, account: str, epoch: int) -> Point:
        return self._store.user_point(normalize_address(account), epoch)

    def last_user_point(self, account: str) -> Point:
        return self._store.latest_user(normalize_address(account))

    def point_history(self, epoch: int) -> Point:
        return self._store.global_point(epoch)

    def penalty_rate(self, end: int) -> int:
        """Penalty fraction that quitting a lock ending at ``end`` would incur now."""
        if self._unlocked:
            return 0
        return penalty_rate(
            end - self._clock.now().timestamp, self._max_penalty, self._params.maxtime
        )

    # ------------------------------------------------------------------
    # Voting power
    # ------------------------------------------------------------------

    def balance_of(self, account: str) -> int:
        """Current voting power of ``account``."""
        account = normalize_address(account)
        with self._mutex:
            if self._store.user_epoch(account) == 0:
                return 0
            reading = self._clock.now()
            return self._store.latest_user(account).bias_at(reading.timestamp)

    def total_supply(self) -> int:
        """Current total voting power."""
        with self._mutex:
            reading = self._clock.now()
            return history.supply_at(
                self._store,
                self._store.latest_global(),
                reading.timestamp,
                self._params.week,
            )

    def balance_of_at(self, account: str, blk: int) -> int:
        account = normalize_address(account)
        with self._mutex:
            return history.balance_of_at(self._store, account, blk, self._clock.now())

    def total_supply_at(self, blk: int) -> int:
        with self._mutex:
            return history.total_supply_at(
                self._store, blk, self._clock.now(), self._params.week
            )

    # ------------------------------------------------------------------
    # Lock lifecycle
    # ------------------------------------------------------------------

    def create_lock(self, account: str, end: int, amount: int) -> None:
        account = normalize_address(account)
        with self._mutex:
            reading = self._reading()
            unlock_time = floor_to_week(end, self._params.week)
            locked = self.locked(account)

            if amount <= 0:
                raise NonZeroAmountRequired()
            if locked.amount != 0:
                raise LockExists()
            if locked.end != 0 and unlock_time <= locked.end:
                raise OnlyIncreaseLockEnd(
                    f"New end {unlock_time} must be after retained end {locked.end}"
                )
            if unlock_time <= reading.timestamp:
                raise FutureLockEndRequired()
            if unlock_time > reading.timestamp + self._params.maxtime:
                raise ExceedsMaxTime()

            new_locked = Lock(
                amount=amount,
                end=unlock_time,
                delegatee=account,
                delegated=locked.delegated + amount,
            )
            self._supply += amount
            self._write(account, locked, new_locked, reading)
            logger.info(
                "Lock created: account=%s amount=%d end=%d", account, amount, unlock_time
            )

    def increase_amount(self, account: str, delta: int) -> None:
        account = normalize_address(account)
        with self._mutex:
            reading = self._reading()
            locked = self.locked(account)

            if delta <= 0:
                raise NonZeroAmountRequired()
            if locked.amount == 0:
                raise NoLock()
            if locked.end <= reading.timestamp:
                raise LockExpired()

            if not locked.is_delegated_away(account):
                new_locked = locked.with_changes(
                    amount=locked.amount + delta,
                    delegated=locked.delegated + delta,
                )
                self._supply += delta
                self._write(account, locked, new_locked, reading)
            else:
                delegatee = locked.delegatee
                target = self.locked(delegatee)
                if target.amount == 0:
                    raise DelegateeHasNoLock()
                if target.end <= reading.timestamp:
                    raise DelegateeLockExpired()
                self._locks[account] = locked.with_changes(amount=locked.amount + delta)
                self._supply += delta
                self._write(
                    delegatee,
                    target,
                    target.with_changes(delegated=target.delegated + delta),
                    reading,
                )
            logger.info("Lock increased: account=%s delta=%d", account, delta)

    def increase_unlock_time(self, account: str, new_end: int) -> None:
        account = normalize_address(account)
        with self._mutex:
            reading = self._reading()
            locked = self.locked(account)
            unlock_time = floor_to_week(new_end, self._params.week)

            if locked.amount == 0:
                raise NoLock()
            if locked.end <= reading.timestamp:
                raise LockExpired()
            if unlock_time <= locked.end:
                raise OnlyIncreaseLockEnd()
            if unlock_time > reading.timestamp + self._params.maxtime:
                raise ExceedsMaxTime()

            self._write(account, locked, locked.with_changes(end=unlock_time), reading)
            logger.info("Lock extended: account=%s end=%d", account, unlock_time)

    def delegate(self, account: str, to: str) -> None:
        """Route ``account``'s principal to ``to``'s voting power.

        Delegating to oneself undoes any delegation. That direction is
        always allowed, even after expiry, and the account inherits the
        longer of its own end and the former delegatee's end.
        """
        account = normalize_address(account)
        to = normalize_address(to)
        with self._mutex:
            reading = self._reading()
            locked = self.locked(account)

            if locked.amount == 0:
                raise NoLock()
            if locked.delegatee == to:
                raise AlreadyDelegated()

            value = locked.amount
            current = locked.delegatee

            if to == account:
                # Undelegate
                source = self.locked(current)
                self._write(
                    current,
                    source,
                    source.with_changes(delegated=source.delegated - value),
                    reading,
                )
                mine = self.locked(account)
                self._write(
                    account,
                    mine,
                    mine.with_changes(
                        delegatee=account,
                        delegated=mine.delegated + value,
                        end=max(mine.end, source.end),
                    ),
                    reading,
                )
                logger.info("Undelegated: account=%s from=%s", account, current)
                return

            source = locked if current == account else self.locked(current)
            target = self.locked(to)
            if locked.end <= reading.timestamp:
                raise LockExpired()
            if target.amount == 0:
                raise DelegateeHasNoLock()
            if target.end <= reading.timestamp:
                raise DelegateeLockExpired()
            if target.end <= source.end:
                raise OnlyDelegateToLongerLock(
                    f"Delegatee end {target.end} must be after {source.end}"
                )

            if current == account:
                self._write(
                    account,
                    locked,
                    locked.with_changes(delegatee=to, delegated=locked.delegated - value),
                    reading,
                )
            else:
                self._locks[account] = locked.with_changes(delegatee=to)
                self._write(
                    current,
                    source,
                    source.with_changes(delegated=source.delegated - value),
                    reading,
                )
            target = self.locked(to)
            self._write(
                to, target, target.with_changes(delegated=target.delegated + value), reading
            )
            logger.info("Delegated: account=%s from=%s to=%s", account, current, to)

    def quit_lock(self, account: str) -> int:
        """Exit a lock early. Returns the principal paid back after penalty."""
        account = normalize_address(account)
        with self._mutex:
            reading = self._reading()
            locked = self.locked(account)

            if locked.amount == 0:
                raise NoLock()
            if locked.end <= reading.timestamp:
                raise LockExpired()
            if locked.is_delegated_away(account):
                raise LockDelegated()

            value = locked.amount
            penalty = 0
            if not self._unlocked:
                penalty = penalty_amount(
                    value,
                    locked.end - reading.timestamp,
                    self._max_penalty,
                    self._params.maxtime,
                    self._params.precision,
                )
            # end is retained so that a new lock must outlast this one
            new_locked = locked.with_changes(
                amount=0, delegatee=account, delegated=locked.delegated - value
            )
            self._supply -= value
            self._penalty_accumulated += penalty
            self._write(account, locked, new_locked, reading)
            logger.info(
                "Lock quit: account=%s amount=%d penalty=%d", account, value, penalty
            )
            return value - penalty

    def withdraw(self, account: str) -> int:
        """Withdraw an expired (or globally unlocked) lock. Returns the principal."""
        account = normalize_address(account)
        with self._mutex:
            reading = self._reading()
            locked = self.locked(account)

            if locked.amount == 0:
                raise NoLock()
            if locked.end > reading.timestamp and not self._unlocked:
                raise LockNotExpired()
            if locked.is_delegated_away(account):
                raise LockDelegated()

            value = locked.amount
            new_locked = Lock(
                amount=0, end=0, delegatee=account, delegated=locked.delegated - value
            )
            self._supply -= value
            self._write(account, locked, new_locked, reading)
            logger.info("Withdrawn: account=%s amount=%d", account, value)
            return value

    def checkpoint(self) -> None:
        """Bring the global point log up to the current clock reading."""
        with self._mutex:
            reading = self._reading()
            last = self._store.latest_global()
            if last.ts == reading.timestamp and last.blk == reading.block:
                return
            self._checkpoint(None, Lock(), Lock(), reading)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def unlock(self, caller: str) -> None:
        """Permanently disable penalties and allow withdrawal before expiry."""
        with self._mutex:
            self._require_owner(caller, "unlock")
            self._max_penalty = 0
            self._unlocked = True
            logger.info("Escrow unlocked by %s", self._owner)

    def set_penalty_recipient(self, caller: str, recipient: str) -> None:
        recipient = normalize_address(recipient)
        with self._mutex:
            self._require_owner(caller, "set_penalty_recipient")
            self._penalty_recipient = recipient
            logger.info("Penalty recipient set to %s", recipient)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        new_owner = normalize_address(new_owner)
        with self._mutex:
            self._require_owner(caller, "transfer_ownership")
            self._owner = new_owner
            logger.info("Ownership transferred to %s", new_owner)

    def collect_penalty(self) -> PenaltyCollection:
        """Pay out accumulated penalties to the penalty recipient."""
        with self._mutex:
            amount = self._penalty_accumulated
            self._penalty_accumulated = 0
            logger.info(
                "Penalty collected: recipient=%s amount=%d",
                self._penalty_recipient,
                amount,
            )
            return PenaltyCollection(recipient=self._penalty_recipient, amount=amount)

    # ------------------------------------------------------------------
    # Rollback support
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """Capture all mutable state so a committed change can be undone."""
        with self._mutex:
            return {
                "owner": self._owner,
                "penalty_recipient": self._penalty_recipient,
                "max_penalty": self._max_penalty,
                "unlocked": self._unlocked,
                "penalty_accumulated": self._penalty_accumulated,
                "supply": self._supply,
                "locks": dict(self._locks),
                "store": self._store.copy(),
            }

    def restore(self, state: dict[str, Any]) -> None:
        """Put back state captured by ``snapshot``."""
        with self._mutex:
            self._owner = state["owner"]
            self._penalty_recipient = state["penalty_recipient"]
            self._max_penalty = state["max_penalty"]
            self._unlocked = state["unlocked"]
            self._penalty_accumulated = state["penalty_accumulated"]
            self._supply = state["supply"]
            self._locks = dict(state["locks"])
            self._store = state["store"].copy()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require_owner(self, caller: str, action: str) -> None:
        if normalize_address(caller) != self._owner:
            logger.warning("Rejected %s from non-owner %s", action, caller)
            raise Unauthorized(f"Only the owner may {action}")

    def _reading(self) -> ClockReading:
        reading = self._clock.now()
        last = self._store.latest_global()
        if reading.timestamp < last.ts or reading.block < last.blk:
            raise ValueError(
                f"Clock moved backwards: ({reading.timestamp}, {reading.block}) "
                f"before ({last.ts}, {last.blk})"
            )
        return reading

    def _write(
        self, account: str, old: Lock, new: Lock, reading: ClockReading
    ) -> None:
        self._locks[account] = new
        self._checkpoint(account, old, new, reading)

    def _lock_point(self, lock: Lock, reading: ClockReading) -> Point:
        if lock.amount > 0 and lock.end > reading.timestamp:
            slope = -(lock.delegated // self._params.maxtime)
            return Point(
                bias=-slope * (lock.end - reading.timestamp),
                slope=slope,
                ts=reading.timestamp,
                blk=reading.block,
            )
        return Point(ts=reading.timestamp, blk=reading.block)

    def _checkpoint(
        self,
        account: Optional[str],
        old: Lock,
        new: Lock,
        reading: ClockReading,
    ) -> None:
        """Record ``account``'s new point and bring the global log forward.

        Walks one week at a time from the last global point to now,
        writing one global point per week boundary crossed. Passing
        ``account=None`` only advances the global log.
        """
        now = reading.timestamp
        week = self._params.week
        multiplier = self._params.multiplier

        u_old = Point()
        u_new = Point()
        old_dslope = 0
        new_dslope = 0
        if account is not None:
            u_old = self._lock_point(old, reading)
            u_new = self._lock_point(new, reading)
            old_dslope = self._store.slope_change(old.end)
            if new.end != 0:
                if new.end == old.end:
                    new_dslope = old_dslope
                else:
                    new_dslope = self._store.slope_change(new.end)

        last_point = self._store.latest_global()
        initial = last_point
        bias, slope = last_point.bias, last_point.slope
        last_checkpoint = last_point.ts
        block_slope = 0
        if now > last_point.ts:
            block_slope = multiplier * (reading.block - last_point.blk) // (
                now - last_point.ts
            )

        weeks = 0
        t_i = floor_to_week(last_checkpoint, week)
        while True:
            t_i += week
            d_slope = 0
            if t_i > now:
                t_i = now
            else:
                d_slope = self._store.slope_change(t_i)
            bias = max(bias + slope * (t_i - last_checkpoint), 0)
            slope = min(slope + d_slope, 0)
            last_checkpoint = t_i
            if t_i == now:
                break
            blk = initial.blk + block_slope * (t_i - initial.ts) // multiplier
            self._store.append_global(Point(bias, slope, t_i, blk))
            weeks += 1

        if account is not None:
            slope = min(slope + (u_new.slope - u_old.slope), 0)
            bias = max(bias + (u_new.bias - u_old.bias), 0)
        self._store.append_global(Point(bias, slope, now, reading.block))
        if weeks:
            logger.debug("Global checkpoint crossed %d week(s)", weeks)

        if account is None:
            return

        if old.end > now:
            # Cancel the change scheduled for the old lock
            old_dslope += u_old.slope
            if new.end == old.end:
                old_dslope -= u_new.slope
            self._store.set_slope_change(old.end, old_dslope)
        if new.end > now and new.end > old.end:
            new_dslope -= u_new.slope
            self._store.set_slope_change(new.end, new_dslope)

        self._store.append_user(account, u_new)
