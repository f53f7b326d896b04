"""Append-only event log: the durable record of every ledger operation.

Every successful state change made through the service is appended
here as an immutable record. Records carry the clock reading the
operation ran at, so replaying the log in order reproduces the ledger
exactly, point logs included.

The log can be persisted to a JSONL file (one JSON object per line).
On load each record's hash is recomputed and duplicate IDs are rejected,
so a tampered or replayed file fails closed.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    """Classification of ledger events."""
    LEDGER_DEPLOYED = "ledger_deployed"
    # Escrow
    LOCK_CREATED = "lock_created"
    AMOUNT_INCREASED = "amount_increased"
    UNLOCK_TIME_INCREASED = "unlock_time_increased"
    DELEGATED = "delegated"
    LOCK_QUIT = "lock_quit"
    WITHDRAWN = "withdrawn"
    CHECKPOINT = "checkpoint"
    ESCROW_UNLOCKED = "escrow_unlocked"
    PENALTY_RECIPIENT_SET = "penalty_recipient_set"
    PENALTY_COLLECTED = "penalty_collected"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"
    # Rewards
    REWARD_ROOT_UPDATED = "reward_root_updated"
    REWARD_ROOT_CORRECTED = "reward_root_corrected"
    REWARD_FUNDED = "reward_funded"
    REWARD_FUNDS_WITHDRAWN = "reward_funds_withdrawn"
    ASSET_MANAGER_CHANGED = "asset_manager_changed"
    REWARD_CLAIMED = "reward_claimed"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp: int,
    block: int,
    actor: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp": timestamp,
            "block": block,
            "actor": actor,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable ledger event.

    ``event_hash`` is computed at creation from the canonical JSON of
    every other field.
    """
    event_id: str
    event_kind: EventKind
    timestamp: int
    block: int
    actor: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor: str,
        payload: dict[str, Any],
        timestamp: int,
        block: int,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp=timestamp,
            block=block,
            actor=actor,
            payload=payload,
            event_hash=_canonical_hash(
                event_id, event_kind.value, timestamp, block, actor, payload
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp": self.timestamp,
            "block": self.block,
            "actor": self.actor,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional file persistence.

    Events can only be appended, never modified or deleted.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        Raises OSError if the file write fails; the event is then not
        held in memory either.
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        if self._storage_path:
            self._append_to_file(event)

        self._events.append(event)
        self._event_ids.add(event.event_id)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_since(
        self,
        block: int,
        kind: Optional[EventKind] = None,
    ) -> list[EventRecord]:
        """Return events recorded at or after ``block``."""
        return [e for e in self.events(kind) if e.block >= block]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, event: EventRecord) -> None:
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification."""
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)

                event_id = data["event_id"]
                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _canonical_hash(
                    data["event_id"],
                    data["event_kind"],
                    data["timestamp"],
                    data["block"],
                    data["actor"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=data["event_id"],
                    event_kind=EventKind(data["event_kind"]),
                    timestamp=data["timestamp"],
                    block=data["block"],
                    actor=data["actor"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event.event_id)
        logger.debug("Loaded %d events from %s", len(self._events), path)
