"""Vote-escrow subsystem: time math, checkpoint logs, ledger, history queries."""

from velock.escrow.checkpoints import CheckpointStore
from velock.escrow.ledger import PenaltyCollection, VotingEscrow

__all__ = ["CheckpointStore", "PenaltyCollection", "VotingEscrow"]
