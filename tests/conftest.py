"""Shared fixtures: a manual clock, deterministic accounts, a fresh ledger."""

import pytest
from eth_account import Account

from velock.clock import ManualClock
from velock.config import MAXTIME, WEEK
from velock.escrow.ledger import VotingEscrow

# Week-aligned so lock ends land exactly on the schedule.
START = 2812 * WEEK
# A multiple of MAXTIME keeps slopes exact: slope == AMOUNT // MAXTIME.
AMOUNT = MAXTIME * 10**13


def _address(seed: int) -> str:
    return Account.from_key(bytes([seed]) * 32).address


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(timestamp=START, block=1)


@pytest.fixture
def owner() -> str:
    return _address(1)


@pytest.fixture
def alice() -> str:
    return _address(2)


@pytest.fixture
def bob() -> str:
    return _address(3)


@pytest.fixture
def charlie() -> str:
    return _address(4)


@pytest.fixture
def david() -> str:
    return _address(5)


@pytest.fixture
def ve(owner: str, clock: ManualClock) -> VotingEscrow:
    return VotingEscrow(owner=owner, clock=clock)
