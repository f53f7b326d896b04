"""Tests for delegation: proves power moves to longer locks and comes back intact."""

import pytest

from velock.clock import ManualClock
from velock.config import MAXTIME, WEEK
from velock.errors import (
    AlreadyDelegated,
    DelegateeHasNoLock,
    DelegateeLockExpired,
    LockDelegated,
    LockExpired,
    NoLock,
    OnlyDelegateToLongerLock,
)
from velock.escrow.ledger import VotingEscrow

from conftest import AMOUNT, START

SLOPE = AMOUNT // MAXTIME
END_A = START + 52 * WEEK
END_B = START + 26 * WEEK


@pytest.fixture
def locked_pair(ve: VotingEscrow, alice: str, bob: str) -> VotingEscrow:
    """alice locks for a year, bob for half a year."""
    ve.create_lock(alice, END_A, AMOUNT)
    ve.create_lock(bob, END_B, AMOUNT)
    return ve


def _delegated_total(ve: VotingEscrow) -> int:
    return sum(ve.locked(a).delegated for a in ve.accounts())


class TestDelegate:
    def test_delegate_moves_power(
        self, locked_pair: VotingEscrow, alice: str, bob: str
    ) -> None:
        ve = locked_pair
        before = ve.total_supply()
        ve.delegate(bob, alice)

        assert ve.locked(bob).delegatee == alice
        assert ve.locked(bob).delegated == 0
        assert ve.locked(bob).amount == AMOUNT
        assert ve.locked(alice).delegated == 2 * AMOUNT
        assert ve.balance_of(bob) == 0
        assert ve.balance_of(alice) == 2 * SLOPE * 52 * WEEK
        # bob's principal now decays on alice's longer schedule
        assert ve.total_supply() - before == SLOPE * 26 * WEEK
        assert ve.total_supply() == ve.balance_of(alice) + ve.balance_of(bob)

    def test_delegation_reschedules_slope_changes(
        self, locked_pair: VotingEscrow, alice: str, bob: str
    ) -> None:
        ve = locked_pair
        ve.delegate(bob, alice)
        assert ve.store.slope_change(END_B) == 0
        assert ve.store.slope_change(END_A) == 2 * SLOPE

    def test_principal_conserved(
        self, locked_pair: VotingEscrow, alice: str, bob: str
    ) -> None:
        ve = locked_pair
        ve.delegate(bob, alice)
        assert _delegated_total(ve) == ve.supply == 2 * AMOUNT

    def test_only_to_longer_lock(
        self, locked_pair: VotingEscrow, alice: str, bob: str
    ) -> None:
        with pytest.raises(OnlyDelegateToLongerLock):
            locked_pair.delegate(alice, bob)

    def test_equal_end_rejected(
        self, locked_pair: VotingEscrow, alice: str, charlie: str
    ) -> None:
        locked_pair.create_lock(charlie, END_A, AMOUNT)
        with pytest.raises(OnlyDelegateToLongerLock):
            locked_pair.delegate(charlie, alice)

    def test_delegatee_without_lock(
        self, locked_pair: VotingEscrow, alice: str, charlie: str
    ) -> None:
        with pytest.raises(DelegateeHasNoLock):
            locked_pair.delegate(alice, charlie)

    def test_delegator_without_lock(
        self, locked_pair: VotingEscrow, alice: str, charlie: str
    ) -> None:
        with pytest.raises(NoLock):
            locked_pair.delegate(charlie, alice)

    def test_delegatee_lock_expired(
        self,
        ve: VotingEscrow,
        clock: ManualClock,
        alice: str,
        david: str,
    ) -> None:
        ve.create_lock(alice, END_A, AMOUNT)
        ve.create_lock(david, START + WEEK, AMOUNT)
        clock.advance(WEEK)
        with pytest.raises(DelegateeLockExpired):
            ve.delegate(alice, david)

    def test_delegatee_expiry_is_a_lock_expiry(self) -> None:
        assert issubclass(DelegateeLockExpired, LockExpired)

    def test_own_lock_expired(
        self, locked_pair: VotingEscrow, clock: ManualClock, alice: str, bob: str
    ) -> None:
        clock.advance_to(END_B)
        with pytest.raises(LockExpired):
            locked_pair.delegate(bob, alice)

    def test_already_delegated(
        self, locked_pair: VotingEscrow, alice: str, bob: str
    ) -> None:
        locked_pair.delegate(bob, alice)
        with pytest.raises(AlreadyDelegated):
            locked_pair.delegate(bob, alice)

    def test_self_delegation_is_already_delegated(
        self, locked_pair: VotingEscrow, alice: str
    ) -> None:
        with pytest.raises(AlreadyDelegated):
            locked_pair.delegate(alice, alice)

    def test_rejection_leaves_no_trace(
        self, locked_pair: VotingEscrow, alice: str, bob: str
    ) -> None:
        ve = locked_pair
        epoch = ve.global_epoch
        locks = {a: ve.locked(a) for a in ve.accounts()}
        with pytest.raises(OnlyDelegateToLongerLock):
            ve.delegate(alice, bob)
        assert ve.global_epoch == epoch
        assert {a: ve.locked(a) for a in ve.accounts()} == locks


class TestUndelegate:
    def test_undelegate_restores_power(
        self, locked_pair: VotingEscrow, alice: str, bob: str
    ) -> None:
        ve = locked_pair
        ve.delegate(bob, alice)
        ve.delegate(bob, bob)

        assert ve.locked(bob).delegatee == bob
        assert ve.locked(bob).delegated == AMOUNT
        assert ve.locked(alice).delegated == AMOUNT
        # bob inherits the longer end it was decaying on
        assert ve.lock_end(bob) == END_A
        assert ve.balance_of(bob) == SLOPE * 52 * WEEK
        assert ve.balance_of(alice) == SLOPE * 52 * WEEK
        assert ve.store.slope_change(END_A) == 2 * SLOPE
        assert _delegated_total(ve) == ve.supply

    def test_undelegate_after_expiry(
        self, locked_pair: VotingEscrow, clock: ManualClock, alice: str, bob: str
    ) -> None:
        ve = locked_pair
        ve.delegate(bob, alice)
        clock.advance_to(END_A + WEEK)
        ve.delegate(bob, bob)
        assert ve.withdraw(bob) == AMOUNT
        assert ve.withdraw(alice) == AMOUNT
        assert ve.supply == 0

    def test_delegated_lock_cannot_exit(
        self, locked_pair: VotingEscrow, clock: ManualClock, alice: str, bob: str
    ) -> None:
        ve = locked_pair
        ve.delegate(bob, alice)
        with pytest.raises(LockDelegated):
            ve.quit_lock(bob)
        clock.advance_to(END_A)
        with pytest.raises(LockDelegated):
            ve.withdraw(bob)


class TestRedelegate:
    def test_redelegate_to_longer_lock(
        self, locked_pair: VotingEscrow, alice: str, bob: str, charlie: str
    ) -> None:
        ve = locked_pair
        ve.create_lock(charlie, START + 78 * WEEK, AMOUNT)
        ve.delegate(bob, alice)
        ve.delegate(bob, charlie)

        assert ve.locked(bob).delegatee == charlie
        assert ve.lock_end(bob) == END_B
        assert ve.locked(alice).delegated == AMOUNT
        assert ve.locked(charlie).delegated == 2 * AMOUNT
        assert ve.balance_of(charlie) == 2 * SLOPE * 78 * WEEK
        assert ve.total_supply() == sum(ve.balance_of(a) for a in ve.accounts())

    def test_redelegate_requires_longer_than_current_delegatee(
        self, locked_pair: VotingEscrow, alice: str, bob: str, charlie: str
    ) -> None:
        ve = locked_pair
        ve.create_lock(charlie, START + 40 * WEEK, AMOUNT)
        ve.delegate(bob, alice)
        with pytest.raises(OnlyDelegateToLongerLock):
            ve.delegate(bob, charlie)


class TestIncreaseWhileDelegated:
    def test_increase_amount_flows_to_delegatee(
        self, locked_pair: VotingEscrow, alice: str, bob: str
    ) -> None:
        ve = locked_pair
        ve.delegate(bob, alice)
        ve.increase_amount(bob, AMOUNT)

        assert ve.locked(bob).amount == 2 * AMOUNT
        assert ve.locked(bob).delegated == 0
        assert ve.locked(alice).delegated == 3 * AMOUNT
        assert ve.balance_of(alice) == 3 * SLOPE * 52 * WEEK
        assert ve.supply == 3 * AMOUNT
        assert _delegated_total(ve) == ve.supply

    def test_delegatee_quit_blocks_increase(
        self, locked_pair: VotingEscrow, alice: str, bob: str
    ) -> None:
        ve = locked_pair
        ve.delegate(bob, alice)
        ve.quit_lock(alice)
        with pytest.raises(DelegateeHasNoLock):
            ve.increase_amount(bob, AMOUNT)
        assert ve.locked(bob).amount == AMOUNT

    def test_extend_while_delegated(
        self, locked_pair: VotingEscrow, alice: str, bob: str
    ) -> None:
        ve = locked_pair
        ve.delegate(bob, alice)
        ve.increase_unlock_time(bob, START + 30 * WEEK)
        assert ve.lock_end(bob) == START + 30 * WEEK
        assert ve.balance_of(bob) == 0
