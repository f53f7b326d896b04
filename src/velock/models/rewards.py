"""Reward distribution data models."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MerkleLeaf:
    """One cumulative entitlement: ``account`` is owed ``amount`` in total."""
    index: int
    account: str
    amount: int


@dataclass(frozen=True)
class MerkleNode:
    """A node of the flat Merkle array.

    ``sibling_hash`` and ``parent_index`` are None until the node is
    paired; the root keeps both as None.
    """
    hash: str
    sibling_hash: str | None = None
    parent_index: int | None = None


@dataclass(frozen=True)
class RewardEpoch:
    root: str
    epoch: int


@dataclass(frozen=True)
class ClaimRecord:
    """What an account has already been paid out of its cumulative total."""
    total_claimed: int = 0
    last_claimed_epoch: int = 0


@dataclass(frozen=True)
class ClaimResult:
    """Outcome of a claim: ``delta`` is what was actually transferred."""
    account: str
    recipient: str
    delta: int
    total_claimed: int
    epoch: int
