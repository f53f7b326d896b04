"""velock service: unified facade over the escrow ledger and distributor.

This is the primary interface for programmatic access to velock. It
wires together:
- the voting-escrow ledger (locks, delegation, penalties, history)
- the reward distributor (roots, funding, claims)
- the event log (durable, hash-verified record of every operation)
- the clock (one pinned reading per operation)

All operations produce a typed ServiceResult; precondition, proof and
authorization failures come back as ``success=False`` with the error in
``errors``. Every successful state change is appended to the event log
together with the clock reading it ran at, so ``LedgerService.open``
can rebuild an identical ledger from the log alone.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from velock.clock import Clock, ClockReading, ManualClock, PinnedClock
from velock.config import DistributorParams, EscrowParams
from velock.crypto.merkle import RewardMerkleTree
from velock.errors import LedgerError
from velock.escrow.ledger import VotingEscrow
from velock.models.rewards import MerkleLeaf
from velock.persistence.event_log import EventKind, EventLog, EventRecord
from velock.rewards.distributor import RewardDistributor

logger = logging.getLogger(__name__)


@dataclass
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class LedgerService:
    """Unified escrow and reward facade.

    Usage:
        service = LedgerService(owner, clock, event_log=EventLog(path))
        service.create_lock(alice, end=now + 52 * WEEK, amount=10**21)
        service.delegate(bob, alice)
        service.publish_rewards(owner, leaves)
        service.claim(0, alice, 10**18, proof)

    Recovery:
        service = LedgerService.open(EventLog(path), clock)
    """

    def __init__(
        self,
        owner: str,
        clock: Clock,
        escrow_params: Optional[EscrowParams] = None,
        distributor_params: Optional[DistributorParams] = None,
        asset_manager: Optional[str] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        if event_log is not None and event_log.count:
            raise ValueError(
                "Event log already holds a ledger; use LedgerService.open()"
            )
        self._clock = PinnedClock(clock)
        self._escrow_params = escrow_params or EscrowParams()
        self._distributor_params = distributor_params or DistributorParams()
        self._mutex = threading.RLock()
        self._event_log: Optional[EventLog] = None
        self._event_counter = 0

        reading = self._clock.pin()
        try:
            self._ledger = VotingEscrow(owner, self._clock, self._escrow_params)
            self._distributor = RewardDistributor(
                owner, asset_manager, self._distributor_params
            )
        finally:
            self._clock.unpin()

        self._event_log = event_log
        if event_log is not None:
            err = self._record(
                EventKind.LEDGER_DEPLOYED,
                self._ledger.owner,
                {
                    "owner": self._ledger.owner,
                    "asset_manager": self._distributor.asset_manager,
                    "escrow_params": dataclasses.asdict(self._escrow_params),
                    "distributor_params": dataclasses.asdict(self._distributor_params),
                },
                reading,
            )
            if err:
                raise OSError(err)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    @classmethod
    def open(cls, event_log: EventLog, clock: Optional[Clock] = None) -> LedgerService:
        """Rebuild the ledger recorded in ``event_log`` and keep appending to it."""
        service = cls.replay(event_log.events(), clock)
        service._event_log = event_log
        return service

    @classmethod
    def replay(
        cls,
        events: list[EventRecord],
        clock: Optional[Clock] = None,
    ) -> LedgerService:
        """Apply recorded events in order to a fresh ledger.

        Each event runs at the clock reading it was recorded with, so
        the point logs come out identical. The result is detached from
        any event log.
        """
        if not events or events[0].event_kind != EventKind.LEDGER_DEPLOYED:
            raise ValueError("Event history must start with a ledger_deployed event")

        deploy = events[0]
        if clock is None:
            last = events[-1]
            clock = ManualClock(timestamp=last.timestamp, block=last.block)
        source = ManualClock(timestamp=deploy.timestamp, block=deploy.block)
        payload = deploy.payload
        service = cls(
            payload["owner"],
            source,
            escrow_params=EscrowParams(**payload["escrow_params"]),
            distributor_params=DistributorParams(**payload["distributor_params"]),
            asset_manager=payload["asset_manager"],
        )

        for event in events[1:]:
            reading = ClockReading(timestamp=event.timestamp, block=event.block)
            service._clock.pin(reading)
            try:
                service._dispatch(event.event_kind, event.payload)
            finally:
                service._clock.unpin()

        service._clock.attach(clock)
        service._event_counter = len(events)
        logger.info("Replayed %d events", len(events))
        return service

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def ledger(self) -> VotingEscrow:
        return self._ledger

    @property
    def distributor(self) -> RewardDistributor:
        return self._distributor

    @property
    def event_log(self) -> Optional[EventLog]:
        return self._event_log

    # ------------------------------------------------------------------
    # Escrow operations
    # ------------------------------------------------------------------

    def create_lock(self, account: str, end: int, amount: int) -> ServiceResult:
        return self._execute(
            EventKind.LOCK_CREATED,
            account,
            {"account": account, "end": end, "amount": amount},
        )

    def increase_amount(self, account: str, delta: int) -> ServiceResult:
        return self._execute(
            EventKind.AMOUNT_INCREASED, account, {"account": account, "delta": delta}
        )

    def increase_unlock_time(self, account: str, new_end: int) -> ServiceResult:
        return self._execute(
            EventKind.UNLOCK_TIME_INCREASED,
            account,
            {"account": account, "new_end": new_end},
        )

    def delegate(self, account: str, to: str) -> ServiceResult:
        return self._execute(EventKind.DELEGATED, account, {"account": account, "to": to})

    def quit_lock(self, account: str) -> ServiceResult:
        return self._execute(EventKind.LOCK_QUIT, account, {"account": account})

    def withdraw(self, account: str) -> ServiceResult:
        return self._execute(EventKind.WITHDRAWN, account, {"account": account})

    def checkpoint(self, caller: str = "system") -> ServiceResult:
        return self._execute(EventKind.CHECKPOINT, caller, {})

    def unlock(self, caller: str) -> ServiceResult:
        return self._execute(EventKind.ESCROW_UNLOCKED, caller, {"caller": caller})

    def set_penalty_recipient(self, caller: str, recipient: str) -> ServiceResult:
        return self._execute(
            EventKind.PENALTY_RECIPIENT_SET,
            caller,
            {"caller": caller, "recipient": recipient},
        )

    def collect_penalty(self, caller: str = "system") -> ServiceResult:
        return self._execute(EventKind.PENALTY_COLLECTED, caller, {})

    def transfer_ownership(self, caller: str, new_owner: str) -> ServiceResult:
        return self._execute(
            EventKind.OWNERSHIP_TRANSFERRED,
            caller,
            {"caller": caller, "new_owner": new_owner},
        )

    # ------------------------------------------------------------------
    # Reward operations
    # ------------------------------------------------------------------

    def update_root(self, caller: str, root: str) -> ServiceResult:
        return self._execute(
            EventKind.REWARD_ROOT_UPDATED, caller, {"caller": caller, "root": root}
        )

    def correct_root(self, caller: str, root: str) -> ServiceResult:
        return self._execute(
            EventKind.REWARD_ROOT_CORRECTED, caller, {"caller": caller, "root": root}
        )

    def publish_rewards(self, caller: str, leaves: list[MerkleLeaf]) -> ServiceResult:
        """Build a tree over ``leaves`` and publish its root.

        On success ``data["tree"]`` holds the root and every leaf's proof,
        ready to hand to claimants.
        """
        try:
            tree = RewardMerkleTree.build(leaves)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)])
        result = self.update_root(caller, tree.root)
        if result.success:
            result.data["tree"] = tree.to_dict()
        return result

    def fund_rewards(self, caller: str, amount: int) -> ServiceResult:
        return self._execute(
            EventKind.REWARD_FUNDED, caller, {"caller": caller, "amount": amount}
        )

    def withdraw_reward_funds(self, caller: str) -> ServiceResult:
        return self._execute(
            EventKind.REWARD_FUNDS_WITHDRAWN, caller, {"caller": caller}
        )

    def change_asset_manager(self, caller: str, new_manager: str) -> ServiceResult:
        return self._execute(
            EventKind.ASSET_MANAGER_CHANGED,
            caller,
            {"caller": caller, "new_manager": new_manager},
        )

    def claim(
        self,
        index: int,
        account: str,
        amount: int,
        proof: list[str],
        caller: Optional[str] = None,
    ) -> ServiceResult:
        return self._execute(
            EventKind.REWARD_CLAIMED,
            caller or account,
            {"index": index, "account": account, "amount": amount, "proof": list(proof)},
        )

    def claim_to_other_address(
        self,
        caller: str,
        index: int,
        account: str,
        amount: int,
        proof: list[str],
        recipient: str,
    ) -> ServiceResult:
        return self._execute(
            EventKind.REWARD_CLAIMED,
            caller,
            {
                "caller": caller,
                "index": index,
                "account": account,
                "amount": amount,
                "proof": list(proof),
                "recipient": recipient,
            },
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def balance_of(self, account: str) -> int:
        return self._ledger.balance_of(account)

    def balance_of_at(self, account: str, blk: int) -> int:
        return self._ledger.balance_of_at(account, blk)

    def total_supply(self) -> int:
        return self._ledger.total_supply()

    def total_supply_at(self, blk: int) -> int:
        return self._ledger.total_supply_at(blk)

    def unclaimed_reward(
        self, index: int, account: str, amount: int, proof: list[str]
    ) -> ServiceResult:
        try:
            value = self._distributor.unclaimed_reward(index, account, amount, proof)
        except (LedgerError, ValueError) as e:
            return ServiceResult(success=False, errors=[str(e)])
        return ServiceResult(success=True, data={"unclaimed": value})

    def lock_info(self, account: str) -> dict[str, Any]:
        lock = self._ledger.locked(account)
        return {
            "account": account,
            "amount": lock.amount,
            "end": lock.end,
            "delegatee": lock.delegatee,
            "delegated": lock.delegated,
            "voting_power": self._ledger.balance_of(account),
        }

    def status(self) -> dict[str, Any]:
        reading = self._clock.now()
        return {
            "timestamp": reading.timestamp,
            "block": reading.block,
            "owner": self._ledger.owner,
            "supply": self._ledger.supply,
            "total_voting_power": self._ledger.total_supply(),
            "global_epoch": self._ledger.global_epoch,
            "unlocked": self._ledger.unlocked,
            "penalty_accumulated": self._ledger.penalty_accumulated,
            "reward_root": self._distributor.root,
            "reward_epoch": self._distributor.current_epoch,
            "reward_balance": self._distributor.balance,
            "total_reward_claimed": self._distributor.total_reward_claimed,
            "events": self._event_counter,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _execute(
        self, kind: EventKind, actor: str, payload: dict[str, Any]
    ) -> ServiceResult:
        with self._mutex:
            ledger_state = self._ledger.snapshot()
            distributor_state = self._distributor.snapshot()

            def _rollback() -> None:
                self._ledger.restore(ledger_state)
                self._distributor.restore(distributor_state)

            reading = self._clock.pin()
            try:
                data = self._dispatch(kind, payload)
            except (LedgerError, ValueError) as e:
                logger.debug("%s rejected: %s", kind.value, e)
                return ServiceResult(success=False, errors=[str(e)])
            finally:
                self._clock.unpin()

            err = self._record(kind, actor, payload, reading, on_rollback=_rollback)
            if err:
                return ServiceResult(success=False, errors=[err])
            return ServiceResult(success=True, data=data)

    def _dispatch(self, kind: EventKind, payload: dict[str, Any]) -> dict[str, Any]:
        handler = _HANDLERS.get(kind)
        if handler is None:
            raise ValueError(f"No handler for event kind: {kind.value}")
        return handler(self, payload)

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record(
        self,
        kind: EventKind,
        actor: str,
        payload: dict[str, Any],
        reading: ClockReading,
        on_rollback: Optional[Callable[[], None]] = None,
    ) -> Optional[str]:
        """Append an event for a completed operation (fail-closed).

        On failure the event ID is released, ``on_rollback`` undoes the
        in-memory change, and an error string is returned. On success,
        returns None.
        """
        if self._event_log is None:
            self._event_counter += 1
            return None
        event_id = self._next_event_id()
        try:
            event = EventRecord.create(
                event_id=event_id,
                event_kind=kind,
                actor=actor,
                payload=payload,
                timestamp=reading.timestamp,
                block=reading.block,
            )
            self._event_log.append(event)
        except (ValueError, TypeError, OSError) as e:
            self._event_counter -= 1
            if on_rollback is not None:
                on_rollback()
            logger.error("Event log failure for %s: %s", kind.value, e)
            return f"Event log failure: {e}"
        return None

    # Handlers: apply one operation to the components and describe the outcome.

    def _apply_create_lock(self, p: dict[str, Any]) -> dict[str, Any]:
        self._ledger.create_lock(p["account"], p["end"], p["amount"])
        return self.lock_info(p["account"])

    def _apply_increase_amount(self, p: dict[str, Any]) -> dict[str, Any]:
        self._ledger.increase_amount(p["account"], p["delta"])
        return self.lock_info(p["account"])

    def _apply_increase_unlock_time(self, p: dict[str, Any]) -> dict[str, Any]:
        self._ledger.increase_unlock_time(p["account"], p["new_end"])
        return self.lock_info(p["account"])

    def _apply_delegate(self, p: dict[str, Any]) -> dict[str, Any]:
        self._ledger.delegate(p["account"], p["to"])
        return self.lock_info(p["account"])

    def _apply_quit_lock(self, p: dict[str, Any]) -> dict[str, Any]:
        before = self._ledger.penalty_accumulated
        returned = self._ledger.quit_lock(p["account"])
        return {
            "account": p["account"],
            "returned": returned,
            "penalty": self._ledger.penalty_accumulated - before,
        }

    def _apply_withdraw(self, p: dict[str, Any]) -> dict[str, Any]:
        return {"account": p["account"], "returned": self._ledger.withdraw(p["account"])}

    def _apply_checkpoint(self, p: dict[str, Any]) -> dict[str, Any]:
        self._ledger.checkpoint()
        return {"global_epoch": self._ledger.global_epoch}

    def _apply_unlock(self, p: dict[str, Any]) -> dict[str, Any]:
        self._ledger.unlock(p["caller"])
        return {"unlocked": True}

    def _apply_set_penalty_recipient(self, p: dict[str, Any]) -> dict[str, Any]:
        self._ledger.set_penalty_recipient(p["caller"], p["recipient"])
        return {"penalty_recipient": self._ledger.penalty_recipient}

    def _apply_collect_penalty(self, p: dict[str, Any]) -> dict[str, Any]:
        collection = self._ledger.collect_penalty()
        return {"recipient": collection.recipient, "amount": collection.amount}

    def _apply_transfer_ownership(self, p: dict[str, Any]) -> dict[str, Any]:
        self._ledger.transfer_ownership(p["caller"], p["new_owner"])
        return {"owner": self._ledger.owner}

    def _apply_update_root(self, p: dict[str, Any]) -> dict[str, Any]:
        epoch = self._distributor.update_root(p["caller"], p["root"])
        return {"root": epoch.root, "epoch": epoch.epoch}

    def _apply_correct_root(self, p: dict[str, Any]) -> dict[str, Any]:
        epoch = self._distributor.correct_root(p["caller"], p["root"])
        return {"root": epoch.root, "epoch": epoch.epoch}

    def _apply_fund(self, p: dict[str, Any]) -> dict[str, Any]:
        self._distributor.fund(p["caller"], p["amount"])
        return {"balance": self._distributor.balance}

    def _apply_withdraw_funds(self, p: dict[str, Any]) -> dict[str, Any]:
        return {"amount": self._distributor.withdraw_funds(p["caller"])}

    def _apply_change_asset_manager(self, p: dict[str, Any]) -> dict[str, Any]:
        self._distributor.change_asset_manager(p["caller"], p["new_manager"])
        return {"asset_manager": self._distributor.asset_manager}

    def _apply_claim(self, p: dict[str, Any]) -> dict[str, Any]:
        if "recipient" in p:
            result = self._distributor.claim_to_other_address(
                p["caller"], p["index"], p["account"], p["amount"], p["proof"],
                p["recipient"],
            )
        else:
            result = self._distributor.claim(
                p["index"], p["account"], p["amount"], p["proof"]
            )
        return dataclasses.asdict(result)


_HANDLERS: dict[EventKind, Callable[[LedgerService, dict[str, Any]], dict[str, Any]]] = {
    EventKind.LOCK_CREATED: LedgerService._apply_create_lock,
    EventKind.AMOUNT_INCREASED: LedgerService._apply_increase_amount,
    EventKind.UNLOCK_TIME_INCREASED: LedgerService._apply_increase_unlock_time,
    EventKind.DELEGATED: LedgerService._apply_delegate,
    EventKind.LOCK_QUIT: LedgerService._apply_quit_lock,
    EventKind.WITHDRAWN: LedgerService._apply_withdraw,
    EventKind.CHECKPOINT: LedgerService._apply_checkpoint,
    EventKind.ESCROW_UNLOCKED: LedgerService._apply_unlock,
    EventKind.PENALTY_RECIPIENT_SET: LedgerService._apply_set_penalty_recipient,
    EventKind.PENALTY_COLLECTED: LedgerService._apply_collect_penalty,
    EventKind.OWNERSHIP_TRANSFERRED: LedgerService._apply_transfer_ownership,
    EventKind.REWARD_ROOT_UPDATED: LedgerService._apply_update_root,
    EventKind.REWARD_ROOT_CORRECTED: LedgerService._apply_correct_root,
    EventKind.REWARD_FUNDED: LedgerService._apply_fund,
    EventKind.REWARD_FUNDS_WITHDRAWN: LedgerService._apply_withdraw_funds,
    EventKind.ASSET_MANAGER_CHANGED: LedgerService._apply_change_asset_manager,
    EventKind.REWARD_CLAIMED: LedgerService._apply_claim,
}
