"""velock: vote-escrow ledger and cumulative Merkle reward distributor."""

__version__ = "0.1.0"
