#!/usr/bin/env python3
"""velock invariant checks against the config file and the recorded ledger."""

import json
from pathlib import Path

from velock.config import PARAMS_FILENAME, ParamsResolver
from velock.persistence.event_log import EventLog
from velock.service import LedgerService


ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = ROOT / "config"
EVENTS_PATH = ROOT / "data" / "events.jsonl"


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_params(config_dir: Path, errors: list[str]) -> None:
    """Validate the parameter file resolves and keeps its arithmetic sane."""
    path = config_dir / PARAMS_FILENAME
    if path.exists():
        raw = load_json(path)
        for section in raw:
            if section not in ("escrow", "distributor"):
                errors.append(f"Unknown config section: {section}")
    try:
        resolver = ParamsResolver.from_config_dir(config_dir)
        escrow = resolver.escrow_params()
        resolver.distributor_params()
    except (ValueError, TypeError) as e:
        errors.append(f"Invalid parameters: {e}")
        return

    if escrow.maxtime > 4 * 365 * 86400:
        errors.append(f"maxtime must not exceed four years, got {escrow.maxtime}")
    if escrow.maxtime // escrow.week < 1:
        errors.append("maxtime must span at least one week")
    if escrow.max_penalty > escrow.precision:
        errors.append("max_penalty cannot exceed 100%")


def check_ledger(service: LedgerService, errors: list[str]) -> None:
    """Validate the state rebuilt from the event log."""
    ledger = service.ledger
    accounts = ledger.accounts()
    locks = {a: ledger.locked(a) for a in accounts}

    # --- Principal conservation ---
    principal = sum(lock.amount for lock in locks.values())
    if principal != ledger.supply:
        errors.append(f"supply {ledger.supply} != sum of lock amounts {principal}")

    # --- Delegated inflow matches the delegation edges ---
    for account in accounts:
        inflow = sum(
            lock.amount for lock in locks.values() if lock.delegatee == account
        )
        if locks[account].delegated != inflow:
            errors.append(
                f"{account} delegated {locks[account].delegated} != inflow {inflow}"
            )

    # --- Lock ends stay week-aligned ---
    week = ledger.params.week
    for account, lock in locks.items():
        if lock.end % week != 0:
            errors.append(f"{account} lock end {lock.end} is not week-aligned")

    # --- Point logs ---
    points = ledger.store.global_points()
    for prev, point in zip(points, points[1:]):
        if point.ts < prev.ts or point.blk < prev.blk:
            errors.append(f"Global log out of order at ts={point.ts}")
            break
    if any(p.slope > 0 or p.bias < 0 for p in points):
        errors.append("Global log holds a positive slope or negative bias")

    # --- Voting power conservation ---
    total = ledger.total_supply()
    summed = sum(ledger.balance_of(a) for a in accounts)
    if abs(total - summed) > len(accounts):
        errors.append(f"total_supply {total} != sum of balances {summed}")

    # --- Reward accounting ---
    distributor = service.distributor
    claimed = sum(distributor.user_total_claimed(a) for a in distributor.claimants())
    if claimed != distributor.total_reward_claimed:
        errors.append(
            f"total_reward_claimed {distributor.total_reward_claimed} != "
            f"sum of user claims {claimed}"
        )


def check(config_dir: Path = CONFIG_DIR, events_path: Path = EVENTS_PATH) -> int:
    errors: list[str] = []

    check_params(config_dir, errors)

    if events_path.exists():
        try:
            log = EventLog(storage_path=events_path)
        except ValueError as e:
            errors.append(f"Event log rejected: {e}")
        else:
            if log.count:
                service = LedgerService.open(log)
                check_ledger(service, errors)

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check())
