"""Persistence: the append-only, hash-verified event log."""

from velock.persistence.event_log import EventKind, EventLog, EventRecord

__all__ = ["EventKind", "EventLog", "EventRecord"]
