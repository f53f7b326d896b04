"""Runtime parameters for the escrow ledger and the reward distributor.

Defaults follow the usual Curve-style vote-escrow deployment: one-week
rounding, a two-year maximum lock, 1e18 fixed-point precision and a
100% maximum early-exit penalty. A deployment can override any of these
from ``velock_params.json`` in a config directory.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

WEEK = 7 * 86400
MAXTIME = 2 * 365 * 86400
PRECISION = 10**18
MULTIPLIER = 10**18

PARAMS_FILENAME = "velock_params.json"


@dataclass(frozen=True)
class EscrowParams:
    """Parameters governing lock arithmetic and penalties."""
    week: int = WEEK
    maxtime: int = MAXTIME
    precision: int = PRECISION
    multiplier: int = MULTIPLIER
    max_penalty: int = PRECISION  # 100%

    def __post_init__(self) -> None:
        if self.week <= 0:
            raise ValueError("week must be positive")
        if self.maxtime < self.week:
            raise ValueError("maxtime must be at least one week")
        if self.precision <= 0 or self.multiplier <= 0:
            raise ValueError("precision and multiplier must be positive")
        if not (0 <= self.max_penalty <= self.precision):
            raise ValueError(
                f"max_penalty must be in [0, {self.precision}], got {self.max_penalty}"
            )


@dataclass(frozen=True)
class DistributorParams:
    """Parameters for the Merkle reward distributor."""
    reward_token: str = "REWARD"
    initial_epoch: int = 0

    def __post_init__(self) -> None:
        if self.initial_epoch < 0:
            raise ValueError("initial_epoch must be non-negative")


class ParamsResolver:
    """Resolves escrow and distributor parameters from a JSON config.

    Usage:
        resolver = ParamsResolver.from_config_dir(Path("config"))
        params = resolver.escrow_params()
    """

    def __init__(self, raw: Optional[dict[str, Any]] = None) -> None:
        self._raw = raw or {}

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> ParamsResolver:
        """Load ``velock_params.json`` from a directory.

        A missing file yields the defaults.
        """
        path = Path(config_dir) / PARAMS_FILENAME
        if not path.exists():
            return cls()
        with path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    def escrow_params(self) -> EscrowParams:
        return _build(EscrowParams, self._raw.get("escrow", {}))

    def distributor_params(self) -> DistributorParams:
        return _build(DistributorParams, self._raw.get("distributor", {}))


def _build(cls: type, section: dict[str, Any]) -> Any:
    known = {f.name for f in fields(cls)}
    unknown = set(section) - known
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**section)
