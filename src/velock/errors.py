"""Error taxonomy for the escrow ledger and the reward distributor.

Every rejection raised by velock derives from LedgerError and carries a
stable machine-readable ``code``. Three families exist:

- PreconditionError: the caller's input or the account's state does not
  allow the operation. Nothing was written; the caller may resubmit after
  fixing the input.
- ProofError: a reward claim could not be authenticated against the
  current Merkle root.
- Unauthorized: a privileged operation was attempted by a caller that is
  not the owner (or asset manager).

A repeated claim is not an error: it yields a zero delta.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger and distributor rejections."""

    code = "LEDGER_ERROR"
    default_reason = "Ledger operation rejected"

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason or self.default_reason
        super().__init__(self.reason)

    def __str__(self) -> str:
        return f"{self.code}: {self.reason}"


# ----------------------------------------------------------------------
# Precondition violations
# ----------------------------------------------------------------------


class PreconditionError(LedgerError):
    code = "PRECONDITION"


class LockExists(PreconditionError):
    code = "LOCK_EXISTS"
    default_reason = "Lock exists"


class NoLock(PreconditionError):
    code = "NO_LOCK"
    default_reason = "No lock"


class LockExpired(PreconditionError):
    code = "LOCK_EXPIRED"
    default_reason = "Lock expired"


class DelegateeLockExpired(LockExpired):
    code = "DELEGATEE_LOCK_EXPIRED"
    default_reason = "Delegatee lock expired"


class LockNotExpired(PreconditionError):
    code = "LOCK_NOT_EXPIRED"
    default_reason = "Lock not expired"


class LockDelegated(PreconditionError):
    code = "LOCK_DELEGATED"
    default_reason = "Lock delegated"


class AlreadyDelegated(PreconditionError):
    code = "ALREADY_DELEGATED"
    default_reason = "Already delegated"


class NonZeroAmountRequired(PreconditionError):
    code = "NON_ZERO_AMOUNT_REQUIRED"
    default_reason = "Only non zero amount"


class FutureLockEndRequired(PreconditionError):
    code = "FUTURE_LOCK_END_REQUIRED"
    default_reason = "Only future lock end"


class ExceedsMaxTime(PreconditionError):
    code = "EXCEEDS_MAX_TIME"
    default_reason = "Exceeds maxtime"


class OnlyIncreaseLockEnd(PreconditionError):
    code = "ONLY_INCREASE_LOCK_END"
    default_reason = "Only increase lock end"


class OnlyDelegateToLongerLock(PreconditionError):
    code = "ONLY_DELEGATE_TO_LONGER_LOCK"
    default_reason = "Only delegate to longer lock"


class DelegateeHasNoLock(PreconditionError):
    code = "DELEGATEE_HAS_NO_LOCK"
    default_reason = "Delegatee has no lock"


class OnlyPastSequenceAllowed(PreconditionError):
    code = "ONLY_PAST_SEQUENCE_ALLOWED"
    default_reason = "Only past block number"


class InsufficientRewardBalance(PreconditionError):
    code = "INSUFFICIENT_REWARD_BALANCE"
    default_reason = "Distributor balance too low for this claim"


# ----------------------------------------------------------------------
# Proof / authorization failures
# ----------------------------------------------------------------------


class ProofError(LedgerError):
    code = "PROOF"


class InvalidMerkleProof(ProofError):
    code = "INVALID_MERKLE_PROOF"
    default_reason = "Invalid merkle proof"


class InvalidAccount(ProofError):
    code = "INVALID_ACCOUNT"
    default_reason = "Invalid account"


# ----------------------------------------------------------------------
# Administrative misuse
# ----------------------------------------------------------------------


class Unauthorized(LedgerError):
    code = "UNAUTHORIZED"
    default_reason = "Caller is not authorized"
