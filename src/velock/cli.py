"""velock CLI: command-line interface over the escrow ledger.

State lives in ``<data-dir>/events.jsonl``; every command replays it,
applies one operation, and appends the resulting event.

Usage:
    velock init --owner 0xOwner...
    velock create-lock --account 0xAlice... --amount 1000000000000000000000 --weeks 52
    velock delegate --account 0xBob... --to 0xAlice...
    velock balance --account 0xAlice...
    velock build-tree --leaves leaves.json --out tree.json
    velock publish-rewards --caller 0xOwner... --leaves leaves.json
    velock claim --index 0 --account 0xAlice... --amount 1000000000000000000 --proof 0xab..,0xcd..
    velock status

Environment (a ``.env`` file is honoured):
    VELOCK_DATA_DIR     default data directory
    VELOCK_CONFIG_DIR   directory holding velock_params.json
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from velock.clock import SystemClock
from velock.config import ParamsResolver
from velock.crypto.merkle import RewardMerkleTree
from velock.errors import LedgerError
from velock.models.rewards import MerkleLeaf
from velock.persistence.event_log import EventLog
from velock.service import LedgerService, ServiceResult

logger = logging.getLogger(__name__)

EVENTS_FILENAME = "events.jsonl"


def _events_path(args: argparse.Namespace) -> Path:
    return Path(args.data_dir) / EVENTS_FILENAME


def _open_service(args: argparse.Namespace) -> LedgerService:
    """Rebuild the service from the event log in the data directory."""
    path = _events_path(args)
    if not path.exists():
        raise FileNotFoundError(f"No ledger at {path}; run 'velock init' first")
    logger.debug("Opening ledger from %s", path)
    return LedgerService.open(EventLog(storage_path=path), SystemClock())


def _report(result: ServiceResult) -> int:
    if not result.success:
        for err in result.errors:
            print(f"Error: {err}", file=sys.stderr)
        return 1
    print(json.dumps(result.data, indent=2, default=str))
    return 0


def _load_leaves(path: Path) -> list[MerkleLeaf]:
    with path.open("r", encoding="utf-8") as handle:
        raw = json.load(handle)
    return [
        MerkleLeaf(index=int(r["index"]), account=r["account"], amount=int(r["amount"]))
        for r in raw
    ]


def _parse_proof(text: str) -> list[str]:
    return [p.strip() for p in text.split(",") if p.strip()]


def cmd_init(args: argparse.Namespace) -> int:
    path = _events_path(args)
    if path.exists():
        print(f"Error: ledger already exists at {path}", file=sys.stderr)
        return 1
    resolver = ParamsResolver.from_config_dir(Path(args.config))
    service = LedgerService(
        args.owner,
        SystemClock(),
        escrow_params=resolver.escrow_params(),
        distributor_params=resolver.distributor_params(),
        asset_manager=args.asset_manager,
        event_log=EventLog(storage_path=path),
    )
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    print(json.dumps(_open_service(args).status(), indent=2))
    return 0


def cmd_create_lock(args: argparse.Namespace) -> int:
    service = _open_service(args)
    end = args.end
    if end is None:
        week = service.ledger.params.week
        end = SystemClock().now().timestamp + args.weeks * week
    return _report(service.create_lock(args.account, end, args.amount))


def cmd_increase_amount(args: argparse.Namespace) -> int:
    return _report(_open_service(args).increase_amount(args.account, args.amount))


def cmd_increase_unlock_time(args: argparse.Namespace) -> int:
    return _report(_open_service(args).increase_unlock_time(args.account, args.end))


def cmd_delegate(args: argparse.Namespace) -> int:
    return _report(_open_service(args).delegate(args.account, args.to))


def cmd_quit_lock(args: argparse.Namespace) -> int:
    return _report(_open_service(args).quit_lock(args.account))


def cmd_withdraw(args: argparse.Namespace) -> int:
    return _report(_open_service(args).withdraw(args.account))


def cmd_checkpoint(args: argparse.Namespace) -> int:
    return _report(_open_service(args).checkpoint())


def cmd_unlock(args: argparse.Namespace) -> int:
    return _report(_open_service(args).unlock(args.caller))


def cmd_collect_penalty(args: argparse.Namespace) -> int:
    return _report(_open_service(args).collect_penalty())


def cmd_balance(args: argparse.Namespace) -> int:
    service = _open_service(args)
    data: dict[str, Any] = service.lock_info(args.account)
    if args.block is not None:
        data["voting_power_at"] = service.balance_of_at(args.account, args.block)
        data["block"] = args.block
    print(json.dumps(data, indent=2))
    return 0


def cmd_total_supply(args: argparse.Namespace) -> int:
    service = _open_service(args)
    if args.block is None:
        value = service.total_supply()
    else:
        value = service.total_supply_at(args.block)
    print(json.dumps({"total_supply": value, "block": args.block}, indent=2))
    return 0


def cmd_build_tree(args: argparse.Namespace) -> int:
    """Build a reward tree from a leaves file without touching the ledger."""
    tree = RewardMerkleTree.build(_load_leaves(Path(args.leaves)))
    output = json.dumps(tree.to_dict(), indent=2)
    if args.out:
        Path(args.out).write_text(output + "\n", encoding="utf-8")
        print(json.dumps({"root": tree.root, "leaves": tree.leaf_count}, indent=2))
    else:
        print(output)
    return 0


def cmd_publish_rewards(args: argparse.Namespace) -> int:
    service = _open_service(args)
    return _report(service.publish_rewards(args.caller, _load_leaves(Path(args.leaves))))


def cmd_fund_rewards(args: argparse.Namespace) -> int:
    return _report(_open_service(args).fund_rewards(args.caller, args.amount))


def cmd_claim(args: argparse.Namespace) -> int:
    service = _open_service(args)
    proof = _parse_proof(args.proof)
    if args.recipient:
        result = service.claim_to_other_address(
            args.caller or args.account,
            args.index,
            args.account,
            args.amount,
            proof,
            args.recipient,
        )
    else:
        result = service.claim(args.index, args.account, args.amount, proof, args.caller)
    return _report(result)


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run ledger invariant checks."""
    tools_dir = Path(__file__).resolve().parents[2] / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(Path(args.config), _events_path(args))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="velock",
        description="velock: vote-escrow ledger and Merkle reward distributor",
    )
    parser.add_argument(
        "--data-dir",
        default=os.environ.get("VELOCK_DATA_DIR", "data"),
        help="Directory holding events.jsonl (default: $VELOCK_DATA_DIR or data/)",
    )
    parser.add_argument(
        "--config",
        default=os.environ.get("VELOCK_CONFIG_DIR", "config"),
        help="Config directory (default: $VELOCK_CONFIG_DIR or config/)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="command")

    p_init = sub.add_parser("init", help="Deploy a new ledger")
    p_init.add_argument("--owner", required=True, help="Owner address")
    p_init.add_argument("--asset-manager", help="Reward asset manager (default: owner)")

    sub.add_parser("status", help="Show ledger status")

    p_lock = sub.add_parser("create-lock", help="Lock principal until a future week")
    p_lock.add_argument("--account", required=True)
    p_lock.add_argument("--amount", required=True, type=int)
    when = p_lock.add_mutually_exclusive_group(required=True)
    when.add_argument("--end", type=int, help="Absolute unlock timestamp")
    when.add_argument("--weeks", type=int, help="Lock length in weeks from now")

    p_inc = sub.add_parser("increase-amount", help="Add principal to an active lock")
    p_inc.add_argument("--account", required=True)
    p_inc.add_argument("--amount", required=True, type=int)

    p_ext = sub.add_parser("increase-unlock-time", help="Extend an active lock")
    p_ext.add_argument("--account", required=True)
    p_ext.add_argument("--end", required=True, type=int)

    p_del = sub.add_parser("delegate", help="Delegate voting power (to self undelegates)")
    p_del.add_argument("--account", required=True)
    p_del.add_argument("--to", required=True)

    p_quit = sub.add_parser("quit-lock", help="Exit a lock early, paying a penalty")
    p_quit.add_argument("--account", required=True)

    p_wd = sub.add_parser("withdraw", help="Withdraw an expired lock")
    p_wd.add_argument("--account", required=True)

    sub.add_parser("checkpoint", help="Bring the global checkpoint log up to date")

    p_unlock = sub.add_parser("unlock", help="Disable penalties permanently (owner)")
    p_unlock.add_argument("--caller", required=True)

    sub.add_parser("collect-penalty", help="Pay accumulated penalties to the recipient")

    p_bal = sub.add_parser("balance", help="Show an account's lock and voting power")
    p_bal.add_argument("--account", required=True)
    p_bal.add_argument("--block", type=int, help="Also report power at a past block")

    p_sup = sub.add_parser("total-supply", help="Show total voting power")
    p_sup.add_argument("--block", type=int, help="Past block (default: now)")

    p_tree = sub.add_parser("build-tree", help="Build a reward Merkle tree from a leaves file")
    p_tree.add_argument("--leaves", required=True, help="JSON list of {index, account, amount}")
    p_tree.add_argument("--out", help="Write root and proofs here")

    p_pub = sub.add_parser("publish-rewards", help="Build a tree and publish its root (owner)")
    p_pub.add_argument("--caller", required=True)
    p_pub.add_argument("--leaves", required=True)

    p_fund = sub.add_parser("fund-rewards", help="Add reward funds to the distributor")
    p_fund.add_argument("--caller", required=True)
    p_fund.add_argument("--amount", required=True, type=int)

    p_claim = sub.add_parser("claim", help="Claim rewards with a Merkle proof")
    p_claim.add_argument("--index", required=True, type=int)
    p_claim.add_argument("--account", required=True)
    p_claim.add_argument("--amount", required=True, type=int, help="Cumulative amount")
    p_claim.add_argument("--proof", default="", help="Comma-separated sibling hashes")
    p_claim.add_argument("--caller", help="Submitting account (default: --account)")
    p_claim.add_argument("--recipient", help="Send the payout elsewhere")

    sub.add_parser("check-invariants", help="Run ledger invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "init": cmd_init,
        "status": cmd_status,
        "create-lock": cmd_create_lock,
        "increase-amount": cmd_increase_amount,
        "increase-unlock-time": cmd_increase_unlock_time,
        "delegate": cmd_delegate,
        "quit-lock": cmd_quit_lock,
        "withdraw": cmd_withdraw,
        "checkpoint": cmd_checkpoint,
        "unlock": cmd_unlock,
        "collect-penalty": cmd_collect_penalty,
        "balance": cmd_balance,
        "total-supply": cmd_total_supply,
        "build-tree": cmd_build_tree,
        "publish-rewards": cmd_publish_rewards,
        "fund-rewards": cmd_fund_rewards,
        "claim": cmd_claim,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except (FileNotFoundError, ValueError, LedgerError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
