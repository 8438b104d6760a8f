"""Append-only revision history for superseded records."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING

from .models import Record, snapshot

if TYPE_CHECKING:
    from memo.events import RecordEventBus


@dataclass(frozen=True)
class RevisionEntry:
    record_id: str
    old: Record
    new: Record
    reason: str | None
    created_at: str = field(default_factory=lambda: datetime.now().isoformat(timespec="seconds"))
    superseded: bool = False


class RevisionHistory:
    """Timeline of "what changed and why" per record.

    Entries are never edited in place. When a newer revision lands, the previous
    entry for the same record is swapped for a copy flagged ``superseded``; its
    snapshots are shared, not modified.
    """

    def __init__(self, events: RecordEventBus | None = None) -> None:
        self._entries: list[RevisionEntry] = []
        self._events = events

    def commit(self, old: Record, new: Record, reason: str | None) -> RevisionEntry:
        entry = RevisionEntry(
            record_id=new.local_id,
            old=snapshot(old),
            new=snapshot(new),
            reason=(reason or "").strip() or None,
        )
        for index in range(len(self._entries) - 1, -1, -1):
            previous = self._entries[index]
            if previous.record_id == entry.record_id and not previous.superseded:
                self._entries[index] = replace(previous, superseded=True)
                break
        self._entries.append(entry)
        if self._events is not None:
            self._events.revision_committed(entry.old, entry.new, entry.reason)
        return entry

    def entries(self, record_id: str | None = None) -> list[RevisionEntry]:
        if record_id is None:
            return list(self._entries)
        return [entry for entry in self._entries if entry.record_id == record_id]

    def latest(self, record_id: str) -> RevisionEntry | None:
        for entry in reversed(self._entries):
            if entry.record_id == record_id:
                return entry
        return None

    def __len__(self) -> int:
        return len(self._entries)
