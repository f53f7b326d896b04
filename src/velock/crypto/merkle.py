"""Merkle tree over cumulative reward entitlements.

Leaves are ``(index, account, amount)`` triples sorted by index and
hashed as ``keccak256(abi.encode(uint256, address, uint256))``. Pairs are
hashed with their children ordered numerically, the convention of
OpenZeppelin's MerkleProof, so a proof is a plain list of sibling hashes
with no left/right markers.

Nodes live in one flat array. The builder pairs node ``i`` with node
``i + 1``, appends their parent to the end of the array, and moves on to
``i + 2`` until a single unpaired node, the root, remains. With an odd
number of nodes at some level the trailing node is not dropped: it is
paired with the first parent produced from that level, which yields an
unbalanced tree whose proofs still verify.
"""

from __future__ import annotations

from dataclasses import dataclass

from velock.crypto.hashing import hash_pair, leaf_hash
from velock.models.rewards import MerkleLeaf, MerkleNode


@dataclass(frozen=True)
class MerkleProof:
    """An inclusion proof for a single leaf."""
    leaf: MerkleLeaf
    leaf_hash: str
    path: list[str]
    root: str


class RewardMerkleTree:
    """A deterministic keccak Merkle tree over reward leaves.

    Usage:
        tree = RewardMerkleTree.build([
            MerkleLeaf(0, alice, 10**18),
            MerkleLeaf(1, bob, 2 * 10**18),
        ])
        root = tree.root
        proof = tree.get_proof(0)
        assert verify_proof(proof.path, root, proof.leaf_hash)
    """

    def __init__(self) -> None:
        self._nodes: list[MerkleNode] = []
        self._leaves: list[MerkleLeaf] = []
        self._root = ""

    @classmethod
    def build(cls, leaves: list[MerkleLeaf]) -> RewardMerkleTree:
        """Sort leaves by index and build the tree."""
        if not leaves:
            raise ValueError("Cannot build a Merkle tree with no leaves")
        indexes = [leaf.index for leaf in leaves]
        if len(set(indexes)) != len(indexes):
            raise ValueError("Leaf indexes must be unique")

        tree = cls()
        tree._leaves = sorted(leaves, key=lambda leaf: leaf.index)
        hashes = [leaf_hash(l.index, l.account, l.amount) for l in tree._leaves]
        siblings: list[str | None] = [None] * len(hashes)
        parents: list[int | None] = [None] * len(hashes)

        curr = 0
        while curr + 1 < len(hashes):
            sibling = curr + 1
            siblings[curr] = hashes[sibling]
            siblings[sibling] = hashes[curr]
            hashes.append(hash_pair(hashes[curr], hashes[sibling]))
            siblings.append(None)
            parents.append(None)
            parents[curr] = parents[sibling] = len(hashes) - 1
            curr += 2

        tree._nodes = [
            MerkleNode(hash=h, sibling_hash=s, parent_index=p)
            for h, s, p in zip(hashes, siblings, parents)
        ]
        tree._root = hashes[-1]
        return tree

    @property
    def root(self) -> str:
        return self._root

    @property
    def leaf_count(self) -> int:
        return len(self._leaves)

    @property
    def leaves(self) -> list[MerkleLeaf]:
        return list(self._leaves)

    @property
    def nodes(self) -> list[MerkleNode]:
        return list(self._nodes)

    def position_of(self, index: int) -> int:
        """Position in the sorted leaf array of the leaf with ``index``."""
        for position, leaf in enumerate(self._leaves):
            if leaf.index == index:
                return position
        raise KeyError(f"No leaf with index {index}")

    def get_proof(self, position: int) -> MerkleProof:
        """Proof for the leaf at ``position`` in index order.

        Collects sibling hashes walking parent pointers up to the root.
        """
        if position < 0 or position >= len(self._leaves):
            raise IndexError(f"Leaf position {position} out of range")
        path: list[str] = []
        node = self._nodes[position]
        while node.parent_index is not None:
            path.append(node.sibling_hash)
            node = self._nodes[node.parent_index]
        return MerkleProof(
            leaf=self._leaves[position],
            leaf_hash=self._nodes[position].hash,
            path=path,
            root=self._root,
        )

    def all_proofs(self) -> list[MerkleProof]:
        return [self.get_proof(i) for i in range(len(self._leaves))]

    def to_dict(self) -> dict:
        """JSON-ready claim file: root plus every leaf with its proof."""
        return {
            "root": self._root,
            "leaves": [
                {
                    "index": p.leaf.index,
                    "account": p.leaf.account,
                    "amount": str(p.leaf.amount),
                    "proof": p.path,
                }
                for p in self.all_proofs()
            ],
        }


def verify_proof(proof: list[str], root: str, leaf: str) -> bool:
    """Fold ``proof`` over ``leaf`` with sorted-pair hashing and compare to ``root``."""
    computed = leaf
    for sibling in proof:
        computed = hash_pair(computed, sibling)
    return int(computed, 16) == int(root, 16)


def build_merkle_tree(leaves: list[MerkleLeaf]) -> tuple[str, list[MerkleProof]]:
    """Build a tree and return ``(root, per-leaf proofs)`` in index order."""
    tree = RewardMerkleTree.build(leaves)
    return tree.root, tree.all_proofs()
