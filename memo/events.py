"""Record events emitted upward to the UI layer and other collaborators."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from memo.records.models import Record

LOGGER = logging.getLogger(__name__)

RecordEventType = Literal["record_updated", "record_deleted", "revision_committed"]


@dataclass(frozen=True)
class RecordEvent:
    event_type: RecordEventType
    record: Record
    previous: Record | None = None
    reason: str | None = None


Listener = Callable[[RecordEvent], None]


class RecordEventBus:
    """Synchronous fan-out of record events; one failing listener never blocks the rest."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._listeners: list[Listener] = []
        self.logger = logger or LOGGER

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def record_updated(self, record: Record) -> None:
        self._emit(RecordEvent("record_updated", record))

    def record_deleted(self, record: Record) -> None:
        self._emit(RecordEvent("record_deleted", record))

    def revision_committed(self, old: Record, new: Record, reason: str | None) -> None:
        self._emit(RecordEvent("revision_committed", new, previous=old, reason=reason))

    def _emit(self, event: RecordEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                self.logger.error("[events] Listener failed for %s: %s", event.event_type, exc, exc_info=True)
