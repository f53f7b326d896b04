"""Cryptographic primitives: keccak/ABI hashing and the reward Merkle tree."""

from velock.crypto.merkle import RewardMerkleTree, build_merkle_tree, verify_proof

__all__ = ["RewardMerkleTree", "build_merkle_tree", "verify_proof"]
