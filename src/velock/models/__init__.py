"""Data models for the escrow ledger and the reward distributor."""

from velock.models.escrow import Lock, Point
from velock.models.rewards import (
    ClaimRecord,
    ClaimResult,
    MerkleLeaf,
    MerkleNode,
    RewardEpoch,
)

__all__ = [
    "ClaimRecord",
    "ClaimResult",
    "Lock",
    "MerkleLeaf",
    "MerkleNode",
    "Point",
    "RewardEpoch",
]
