"""Reward distribution: cumulative Merkle-root claims."""

from velock.rewards.distributor import RewardDistributor

__all__ = ["RewardDistributor"]
