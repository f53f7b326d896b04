"""Tests for historical queries: proves block interpolation and supply conservation."""

import pytest

from velock.clock import ManualClock
from velock.config import MAXTIME, WEEK
from velock.errors import OnlyPastSequenceAllowed
from velock.escrow.ledger import VotingEscrow

from conftest import AMOUNT, START

SLOPE = AMOUNT // MAXTIME
END = START + 52 * WEEK


class TestPastOnly:
    def test_current_block_rejected(
        self, ve: VotingEscrow, clock: ManualClock, alice: str
    ) -> None:
        with pytest.raises(OnlyPastSequenceAllowed):
            ve.balance_of_at(alice, clock.block)
        with pytest.raises(OnlyPastSequenceAllowed):
            ve.total_supply_at(clock.block)

    def test_future_block_rejected(
        self, ve: VotingEscrow, clock: ManualClock
    ) -> None:
        with pytest.raises(OnlyPastSequenceAllowed):
            ve.total_supply_at(clock.block + 100)


class TestBalanceAt:
    def test_before_first_lock_is_zero(
        self, ve: VotingEscrow, clock: ManualClock, alice: str
    ) -> None:
        clock.advance(WEEK, blocks=10)
        ve.create_lock(alice, END, AMOUNT)
        clock.mine()
        assert ve.balance_of_at(alice, 5) == 0

    def test_interpolates_between_global_points(
        self, ve: VotingEscrow, clock: ManualClock, alice: str
    ) -> None:
        ve.create_lock(alice, END, AMOUNT)
        clock.advance(WEEK, blocks=100)
        ve.checkpoint()
        clock.mine()

        # block 51 sits halfway between blocks 1 and 101
        assert ve.balance_of_at(alice, 51) == SLOPE * (52 * WEEK - WEEK // 2)
        assert ve.total_supply_at(51) == SLOPE * (52 * WEEK - WEEK // 2)
        assert ve.balance_of_at(alice, 101) == SLOPE * 51 * WEEK
        assert ve.total_supply_at(101) == SLOPE * 51 * WEEK

    def test_extrapolates_towards_current_reading(
        self, ve: VotingEscrow, clock: ManualClock, alice: str
    ) -> None:
        ve.create_lock(alice, END, AMOUNT)
        clock.advance(2 * WEEK, blocks=20)
        # no checkpoint since block 1: block 11 is estimated one week in
        assert ve.balance_of_at(alice, 11) == SLOPE * 51 * WEEK
        assert ve.total_supply_at(11) == SLOPE * 51 * WEEK

    def test_history_survives_withdrawal(
        self, ve: VotingEscrow, clock: ManualClock, alice: str
    ) -> None:
        ve.create_lock(alice, START + 2 * WEEK, AMOUNT)
        clock.advance(WEEK, blocks=10)
        ve.checkpoint()
        clock.advance(WEEK, blocks=10)
        ve.withdraw(alice)
        clock.mine()
        assert ve.balance_of_at(alice, 11) == SLOPE * WEEK
        assert ve.balance_of_at(alice, 21) == 0

    def test_block_before_deployment(
        self, owner: str, alice: str
    ) -> None:
        clock = ManualClock(timestamp=START, block=50)
        ve = VotingEscrow(owner, clock)
        ve.create_lock(alice, END, AMOUNT)
        clock.mine()
        assert ve.total_supply_at(10) == 0
        assert ve.balance_of_at(alice, 10) == 0


class TestConservation:
    def test_supply_equals_sum_of_balances_at_every_block(
        self,
        ve: VotingEscrow,
        clock: ManualClock,
        alice: str,
        bob: str,
        charlie: str,
        david: str,
    ) -> None:
        ve.create_lock(alice, START + 10 * WEEK, AMOUNT)
        clock.advance(86400, blocks=7)
        ve.create_lock(bob, START + 30 * WEEK, 2 * AMOUNT)
        clock.advance(3 * WEEK, blocks=25)
        ve.create_lock(charlie, START + 60 * WEEK, AMOUNT)
        ve.delegate(alice, charlie)
        clock.advance(WEEK + 3600, blocks=9)
        ve.increase_amount(bob, AMOUNT)
        ve.create_lock(david, START + 20 * WEEK, 5 * AMOUNT)
        clock.advance(20 * WEEK, blocks=40)
        ve.quit_lock(bob)
        clock.advance(WEEK, blocks=3)

        accounts = [alice, bob, charlie, david]
        for blk in range(1, clock.block):
            summed = sum(ve.balance_of_at(a, blk) for a in accounts)
            assert ve.total_supply_at(blk) == summed, f"block {blk}"

    def test_conservation_with_unaligned_times_and_odd_amounts(
        self, owner: str, alice: str, bob: str, charlie: str, david: str
    ) -> None:
        clock = ManualClock(timestamp=START + 12345, block=1)
        ve = VotingEscrow(owner=owner, clock=clock)
        accounts = [alice, bob, charlie, david]

        ve.create_lock(alice, clock.timestamp + 40 * WEEK, 10**21 + 7)
        ve.create_lock(bob, clock.timestamp + 20 * WEEK, 3 * 10**20 + 12345)
        clock.advance(2 * 86400 + 77, blocks=3)
        ve.create_lock(charlie, clock.timestamp + 60 * WEEK, 777 * 10**18 + 1)
        ve.increase_amount(alice, 123456789)
        clock.advance(9 * 86400 + 5, blocks=11)
        ve.delegate(bob, charlie)
        clock.advance(3 * WEEK + 1, blocks=7)
        ve.create_lock(david, clock.timestamp + 10 * WEEK, 5 * 10**19 + 3)
        ve.increase_amount(bob, 10**18 + 9)
        clock.advance(WEEK + 333, blocks=5)
        ve.delegate(david, alice)
        ve.quit_lock(alice)
        clock.advance(15 * WEEK, blocks=20)
        ve.checkpoint()
        clock.advance(86400, blocks=2)

        for blk in range(1, clock.block):
            summed = sum(ve.balance_of_at(a, blk) for a in accounts)
            assert abs(ve.total_supply_at(blk) - summed) <= len(accounts), f"block {blk}"
        summed = sum(ve.balance_of(a) for a in accounts)
        assert abs(ve.total_supply() - summed) <= len(accounts)

    def test_current_supply_equals_sum_of_balances(
        self,
        ve: VotingEscrow,
        clock: ManualClock,
        alice: str,
        bob: str,
        charlie: str,
    ) -> None:
        ve.create_lock(alice, START + 5 * WEEK, AMOUNT)
        ve.create_lock(bob, START + 9 * WEEK, 3 * AMOUNT)
        ve.create_lock(charlie, START + 13 * WEEK, 2 * AMOUNT)
        ve.delegate(alice, bob)
        for _ in range(15):
            clock.advance(WEEK - 1000, blocks=5)
            summed = sum(ve.balance_of(a) for a in (alice, bob, charlie))
            assert ve.total_supply() == summed

    def test_total_supply_never_negative(
        self, ve: VotingEscrow, clock: ManualClock, alice: str
    ) -> None:
        ve.create_lock(alice, START + WEEK, AMOUNT)
        clock.advance(10 * WEEK, blocks=10)
        ve.checkpoint()
        clock.mine()
        assert ve.total_supply() == 0
        assert all(ve.total_supply_at(b) >= 0 for b in range(1, clock.block))
