"""Local record store backed by a JSON file."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from memo.utils import norm

from .models import Record, record_from_dict

LOGGER = logging.getLogger(__name__)


class LocalRecordStore:
    """In-memory record table flushed to disk on ``save()``.

    Records are live objects: callers mutate fields in place and then call
    ``save()``. A failed flush is logged and the in-memory state stays
    authoritative until the next ``load()``.
    """

    def __init__(self, storage_path: Path | None = None, logger: logging.Logger | None = None) -> None:
        self._storage_path = storage_path
        self._records: dict[str, Record] = {}
        self.logger = logger or LOGGER

    def insert(self, record: Record) -> Record:
        self._records[record.local_id] = record
        return record

    def update(self, record: Record) -> Record:
        if record.local_id not in self._records:
            raise KeyError(record.local_id)
        self._records[record.local_id] = record
        return record

    def delete(self, record: Record) -> bool:
        return self._records.pop(record.local_id, None) is not None

    def fetch_by_id(self, local_id: str) -> Record | None:
        return self._records.get(local_id)

    def find_by_remote_id(self, remote_id: str | None) -> Record | None:
        rid = norm(remote_id)
        if not rid:
            return None
        for record in self._records.values():
            if norm(record.remote_id) == rid:
                return record
        return None

    def all(self) -> list[Record]:
        return list(self._records.values())

    def save(self) -> bool:
        if self._storage_path is None:
            return True
        payload = {"records": [record.to_json_dict() for record in self._records.values()]}
        try:
            self._storage_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._storage_path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp_path.replace(self._storage_path)
        except (OSError, TypeError, ValueError) as exc:
            self.logger.warning("[records] Failed to save records file %s: %s", self._storage_path, exc)
            return False
        return True

    def load(self) -> None:
        if self._storage_path is None or not self._storage_path.exists():
            return
        try:
            data = json.loads(self._storage_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            self.logger.warning("[records] Failed to load records file %s: %s", self._storage_path, exc)
            return
        if not isinstance(data, dict):
            self.logger.warning("[records] Ignoring records file %s with unexpected layout", self._storage_path)
            return
        records: dict[str, Record] = {}
        for item in data.get("records", []):
            try:
                record = record_from_dict(item)
            except (AttributeError, TypeError, ValueError):
                self.logger.debug("[records] Skipping invalid record entry: %s", item, exc_info=True)
                continue
            records[record.local_id] = record
        self._records = records
