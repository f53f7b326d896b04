"""Tests for the append-only event log: proves tamper and replay detection."""

import json
from pathlib import Path

import pytest

from velock.persistence.event_log import EventKind, EventLog, EventRecord


def _event(n: int, kind: EventKind = EventKind.CHECKPOINT, block: int = 1) -> EventRecord:
    return EventRecord.create(
        event_id=f"EVT-{n:08d}",
        event_kind=kind,
        actor="system",
        payload={"n": n},
        timestamp=1_000 + n,
        block=block,
    )


class TestEventRecord:
    def test_hash_is_deterministic(self) -> None:
        assert _event(1).event_hash == _event(1).event_hash
        assert _event(1).event_hash.startswith("sha256:")

    def test_hash_covers_reading(self) -> None:
        assert _event(1, block=1).event_hash != _event(1, block=2).event_hash

    def test_to_dict_uses_kind_value(self) -> None:
        data = _event(1, EventKind.LOCK_CREATED).to_dict()
        assert data["event_kind"] == "lock_created"
        assert data["payload"] == {"n": 1}


class TestEventLog:
    def test_append_and_count(self) -> None:
        log = EventLog()
        log.append(_event(1))
        log.append(_event(2))
        assert log.count == 2
        assert log.last_event.event_id == "EVT-00000002"

    def test_duplicate_rejected(self) -> None:
        log = EventLog()
        log.append(_event(1))
        with pytest.raises(ValueError):
            log.append(_event(1))

    def test_filter_by_kind(self) -> None:
        log = EventLog()
        log.append(_event(1, EventKind.LOCK_CREATED))
        log.append(_event(2, EventKind.CHECKPOINT))
        assert [e.event_id for e in log.events(EventKind.LOCK_CREATED)] == ["EVT-00000001"]

    def test_events_since_block(self) -> None:
        log = EventLog()
        for n, blk in enumerate([1, 5, 9], start=1):
            log.append(_event(n, block=blk))
        assert [e.block for e in log.events_since(5)] == [5, 9]

    def test_empty_log(self) -> None:
        log = EventLog()
        assert log.count == 0
        assert log.last_event is None


class TestPersistence:
    def test_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1, EventKind.LOCK_CREATED))
        log.append(_event(2))

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.events() == log.events()

    def test_creates_parent_directory(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "events.jsonl"
        EventLog(storage_path=path).append(_event(1))
        assert path.exists()

    def test_tampered_payload_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_event(1))
        data = json.loads(path.read_text(encoding="utf-8"))
        data["payload"]["n"] = 99
        path.write_text(json.dumps(data) + "\n", encoding="utf-8")
        with pytest.raises(ValueError, match="Integrity"):
            EventLog(storage_path=path)

    def test_duplicated_line_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_event(1))
        line = path.read_text(encoding="utf-8")
        path.write_text(line + line, encoding="utf-8")
        with pytest.raises(ValueError, match="Duplicate"):
            EventLog(storage_path=path)

    def test_blank_lines_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_event(1))
        with path.open("a", encoding="utf-8") as f:
            f.write("\n\n")
        assert EventLog(storage_path=path).count == 1

    def test_failed_write_keeps_nothing_in_memory(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        path.mkdir()
        with pytest.raises(OSError):
            log.append(_event(1))
        assert log.count == 0
        path.rmdir()
        log.append(_event(1))
        assert log.count == 1
