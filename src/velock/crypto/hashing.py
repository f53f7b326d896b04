"""Keccak-256 and ABI encoding helpers shared by the Merkle engine.

Hashes are exchanged as ``0x``-prefixed lowercase hex strings. Leaf and
pair encodings match Solidity's ``abi.encode`` so that roots and proofs
built here verify on-chain unchanged.
"""

from __future__ import annotations

from eth_abi import encode
from web3 import Web3


def normalize_address(account: str) -> str:
    """Return the EIP-55 checksum form of ``account``.

    Raises ValueError if ``account`` is not a 20-byte hex address.
    """
    if not isinstance(account, str) or not Web3.is_address(account):
        raise ValueError(f"Invalid account address: {account!r}")
    return Web3.to_checksum_address(account)


def keccak_hex(data: bytes) -> str:
    return "0x" + Web3.keccak(data).hex().removeprefix("0x")


def hash_to_int(value: str) -> int:
    return int(value, 16)


def int_to_hash(value: int) -> str:
    return "0x" + value.to_bytes(32, "big").hex()


def leaf_hash(index: int, account: str, amount: int) -> str:
    """keccak256(abi.encode(uint256 index, address account, uint256 amount))."""
    if index < 0 or amount < 0:
        raise ValueError("Leaf index and amount must be non-negative")
    encoded = encode(
        ["uint256", "address", "uint256"],
        [index, normalize_address(account), amount],
    )
    return keccak_hex(encoded)


def hash_pair(a: str, b: str) -> str:
    """keccak256(abi.encode(min(a, b), max(a, b))) over uint256 values."""
    left, right = sorted((hash_to_int(a), hash_to_int(b)))
    return keccak_hex(encode(["uint256", "uint256"], [left, right]))
