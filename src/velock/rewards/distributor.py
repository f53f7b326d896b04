"""Cumulative Merkle reward distributor.

The owner periodically publishes a Merkle root whose leaves state the
*total* reward each account has ever earned. An account claims by
presenting its leaf and proof against the current root and receives the
difference between that total and what it has already been paid. A
proof from an older root no longer verifies; re-presenting the current
proof after claiming pays nothing but still stamps the claim record with
the current epoch.

Roles:
- owner: publishes and corrects roots, changes the reward token.
- asset manager: funds the distributor, withdraws its balance, and
  hands the role over.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from velock.config import DistributorParams
from velock.crypto.hashing import int_to_hash, leaf_hash, normalize_address
from velock.crypto.merkle import verify_proof
from velock.errors import (
    InsufficientRewardBalance,
    InvalidAccount,
    InvalidMerkleProof,
    NonZeroAmountRequired,
    Unauthorized,
)
from velock.models.rewards import ClaimRecord, ClaimResult, RewardEpoch

logger = logging.getLogger(__name__)

EMPTY_ROOT = "0x" + "00" * 32


class RewardDistributor:
    """Verifies claims against the current root and pays out deltas.

    Usage:
        dist = RewardDistributor(owner=owner, asset_manager=manager)
        dist.fund(manager, 10**21)
        dist.update_root(owner, tree.root)
        result = dist.claim(0, alice, 10**18, tree.get_proof(0).path)
    """

    def __init__(
        self,
        owner: str,
        asset_manager: Optional[str] = None,
        params: Optional[DistributorParams] = None,
    ) -> None:
        self._params = params or DistributorParams()
        self._owner = normalize_address(owner)
        self._asset_manager = normalize_address(asset_manager or owner)
        self._reward_token = self._params.reward_token
        self._current = RewardEpoch(root=EMPTY_ROOT, epoch=self._params.initial_epoch)
        self._claims: dict[str, ClaimRecord] = {}
        self._total_reward_claimed = 0
        self._balance = 0
        self._mutex = threading.RLock()

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def asset_manager(self) -> str:
        return self._asset_manager

    @property
    def reward_token(self) -> str:
        return self._reward_token

    @property
    def root(self) -> str:
        return self._current.root

    @property
    def current_epoch(self) -> int:
        return self._current.epoch

    @property
    def reward_epoch(self) -> RewardEpoch:
        return self._current

    @property
    def total_reward_claimed(self) -> int:
        return self._total_reward_claimed

    @property
    def balance(self) -> int:
        return self._balance

    def claim_record(self, account: str) -> ClaimRecord:
        return self._claims.get(normalize_address(account), ClaimRecord())

    def claimants(self) -> list[str]:
        return sorted(self._claims)

    def user_total_claimed(self, account: str) -> int:
        return self.claim_record(account).total_claimed

    def last_claimed_epoch(self, account: str) -> int:
        return self.claim_record(account).last_claimed_epoch

    # ------------------------------------------------------------------
    # Roots
    # ------------------------------------------------------------------

    def update_root(self, caller: str, root: str) -> RewardEpoch:
        """Publish a new cumulative root and advance the epoch."""
        with self._mutex:
            self._require_owner(caller, "update_root")
            self._current = RewardEpoch(
                root=_normalize_root(root), epoch=self._current.epoch + 1
            )
            logger.info(
                "Reward root updated: epoch=%d root=%s",
                self._current.epoch,
                self._current.root,
            )
            return self._current

    def correct_root(self, caller: str, root: str) -> RewardEpoch:
        """Replace a faulty root without advancing the epoch."""
        with self._mutex:
            self._require_owner(caller, "correct_root")
            self._current = RewardEpoch(
                root=_normalize_root(root), epoch=self._current.epoch
            )
            logger.info(
                "Reward root corrected: epoch=%d root=%s",
                self._current.epoch,
                self._current.root,
            )
            return self._current

    def change_reward_token(self, caller: str, token: str) -> None:
        with self._mutex:
            self._require_owner(caller, "change_reward_token")
            self._reward_token = token

    # ------------------------------------------------------------------
    # Funds
    # ------------------------------------------------------------------

    def fund(self, caller: str, amount: int) -> None:
        if amount <= 0:
            raise NonZeroAmountRequired()
        with self._mutex:
            self._balance += amount
            logger.info("Distributor funded: from=%s amount=%d", caller, amount)

    def withdraw_funds(self, caller: str) -> int:
        """Asset manager recovers the whole undistributed balance."""
        with self._mutex:
            self._require_asset_manager(caller, "withdraw_funds")
            amount = self._balance
            self._balance = 0
            return amount

    def change_asset_manager(self, caller: str, new_manager: str) -> None:
        new_manager = normalize_address(new_manager)
        with self._mutex:
            self._require_asset_manager(caller, "change_asset_manager")
            self._asset_manager = new_manager
            logger.info("Asset manager changed to %s", new_manager)

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def unclaimed_reward(
        self, index: int, account: str, amount: int, proof: list[str]
    ) -> int:
        """What ``account`` would receive by claiming this leaf now."""
        account = normalize_address(account)
        with self._mutex:
            self._verify(index, account, amount, proof)
            return max(amount - self.claim_record(account).total_claimed, 0)

    def claim(
        self, index: int, account: str, amount: int, proof: list[str]
    ) -> ClaimResult:
        """Pay the unclaimed part of a leaf to its own account.

        Anyone may submit the claim; the payout always goes to ``account``.
        """
        account = normalize_address(account)
        return self._claim(index, account, amount, proof, recipient=account)

    def claim_to_other_address(
        self,
        caller: str,
        index: int,
        account: str,
        amount: int,
        proof: list[str],
        recipient: str,
    ) -> ClaimResult:
        """Claim one's own leaf and send the payout to ``recipient``."""
        account = normalize_address(account)
        recipient = normalize_address(recipient)
        if normalize_address(caller) != account:
            raise InvalidAccount(f"{caller} cannot claim for {account}")
        return self._claim(index, account, amount, proof, recipient=recipient)

    def _claim(
        self,
        index: int,
        account: str,
        amount: int,
        proof: list[str],
        recipient: str,
    ) -> ClaimResult:
        with self._mutex:
            self._verify(index, account, amount, proof)
            record = self.claim_record(account)
            delta = max(amount - record.total_claimed, 0)
            if delta > self._balance:
                raise InsufficientRewardBalance(
                    f"Claim of {delta} exceeds balance {self._balance}"
                )
            # total_claimed never decreases, even for a smaller proven amount
            record = ClaimRecord(
                total_claimed=max(record.total_claimed, amount),
                last_claimed_epoch=self._current.epoch,
            )
            self._claims[account] = record
            if delta > 0:
                self._total_reward_claimed += delta
                self._balance -= delta
                logger.info(
                    "Reward claimed: account=%s recipient=%s index=%d delta=%d",
                    account,
                    recipient,
                    index,
                    delta,
                )
            return ClaimResult(
                account=account,
                recipient=recipient,
                delta=delta,
                total_claimed=record.total_claimed,
                epoch=self._current.epoch,
            )

    # ------------------------------------------------------------------
    # Rollback support
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        with self._mutex:
            return {
                "owner": self._owner,
                "asset_manager": self._asset_manager,
                "reward_token": self._reward_token,
                "current": self._current,
                "claims": dict(self._claims),
                "total_reward_claimed": self._total_reward_claimed,
                "balance": self._balance,
            }

    def restore(self, state: dict[str, Any]) -> None:
        with self._mutex:
            self._owner = state["owner"]
            self._asset_manager = state["asset_manager"]
            self._reward_token = state["reward_token"]
            self._current = state["current"]
            self._claims = dict(state["claims"])
            self._total_reward_claimed = state["total_reward_claimed"]
            self._balance = state["balance"]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _verify(self, index: int, account: str, amount: int, proof: list[str]) -> None:
        leaf = leaf_hash(index, account, amount)
        if not verify_proof(list(proof), self._current.root, leaf):
            raise InvalidMerkleProof()

    def _require_owner(self, caller: str, action: str) -> None:
        if normalize_address(caller) != self._owner:
            logger.warning("Rejected %s from non-owner %s", action, caller)
            raise Unauthorized(f"Only the owner may {action}")

    def _require_asset_manager(self, caller: str, action: str) -> None:
        if normalize_address(caller) != self._asset_manager:
            logger.warning("Rejected %s from non-manager %s", action, caller)
            raise Unauthorized(f"Only the asset manager may {action}")


def _normalize_root(root: str) -> str:
    value = int(root, 16)
    if value < 0 or value >= 2**256:
        raise ValueError(f"Root out of range: {root}")
    return int_to_hash(value)
