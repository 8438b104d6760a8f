"""Draft/record reconciliation for an open record detail view.

Three sources of truth meet here: the backend's canonical record, the local
persisted record, and the in-progress draft the user is typing into. The rules:

- Background refreshes (``apply_remote_detail``) always update the persisted
  record but never clobber a draft the user has touched.
- Voice results (``apply_voice_result``) are explicit user actions and win over
  both, and leave a revision behind.
- Saves (``submit_save``) commit all-or-nothing: the local record only changes
  once the backend has produced a canonical record with an identity.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from memo.errors import SyncIncomplete
from memo.events import RecordEventBus
from memo.utils import norm

from .api import RecordApiError, RemoteRecordClient
from .models import Record, RecordKind, kind_for, normalize_gender, parse_server_datetime, snapshot
from .revisions import RevisionEntry, RevisionHistory
from .store import LocalRecordStore

LOGGER = logging.getLogger(__name__)

MANUAL_EDIT_REASON = "Edited manually"
_SERVER_FLAGS = ("is_full_day", "is_obsolete")


def _compare_value(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return norm(value)
    return value


def _stored_value(kind: RecordKind, name: str, value: Any) -> Any:
    if name in kind.time_fields:
        return parse_server_datetime(value)
    if name == "gender":
        return normalize_gender(value) or None
    if name == kind.required_field:
        return norm(value) or ""
    return norm(value)


class EditableDraft:
    """Per-field editable mirror of a persisted record."""

    def __init__(self, kind: RecordKind) -> None:
        self.kind = kind
        self.values: dict[str, Any] = dict.fromkeys(kind.editable_fields)
        self.has_user_edited = False
        self.initialized = False

    def load_from(self, record: Record, *, force: bool = False) -> bool:
        """Copy the record into the draft unless the user has unsaved edits."""
        if self.initialized and not force and self.has_user_edited:
            return False
        for name in self.kind.editable_fields:
            value = getattr(record, name)
            if name in self.kind.time_fields:
                self.values[name] = value
            elif name == "gender":
                self.values[name] = normalize_gender(value)
            else:
                self.values[name] = value or ""
        self.initialized = True
        if force:
            self.has_user_edited = False
        return True

    def edit(self, name: str, value: Any) -> None:
        if name not in self.values:
            raise KeyError(f"{self.kind.name} has no editable field {name!r}")
        if name in self.kind.time_fields and isinstance(value, str):
            value = parse_server_datetime(value)
        self.values[name] = value
        self.has_user_edited = True

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    def changed_fields(self, record: Record) -> list[str]:
        """Fields whose draft value differs from the record (blank equals unset)."""
        return [
            name
            for name in self.kind.editable_fields
            if _compare_value(self.values[name]) != _compare_value(getattr(record, name))
        ]

    def has_changes(self, record: Record) -> bool:
        return bool(self.changed_fields(record))


class RecordReconciler:
    """Single-writer coordinator for one record while its detail view is open."""

    def __init__(
        self,
        record: Record,
        *,
        store: LocalRecordStore,
        api: RemoteRecordClient | None = None,
        events: RecordEventBus | None = None,
        revisions: RevisionHistory | None = None,
        kind: RecordKind | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.record = record
        self.kind = kind or kind_for(record)
        self.store = store
        self.api = api
        self.events = events or RecordEventBus()
        self.revisions = revisions or RevisionHistory(self.events)
        self.logger = logger or LOGGER
        self.draft = EditableDraft(self.kind)
        self.draft.load_from(record, force=True)
        self._submitting = False

    @property
    def has_draft_changes(self) -> bool:
        return self.draft.has_changes(self.record)

    def apply_remote_detail(self, card: Record) -> None:
        """Overwrite the persisted record with backend truth; keep unsaved edits."""
        self._overwrite_from(card)
        self._commit_local()
        if not self.draft.load_from(self.record):
            self.logger.debug(
                "[records] Kept user draft for %s %s over background refresh",
                self.kind.name,
                self.record.local_id,
            )

    async def refresh_from_remote(self) -> Record | None:
        """Fetch the latest detail and apply it; no-op for records never synced."""
        rid = norm(self.record.remote_id)
        if not rid or self.api is None:
            return None
        card = await self.api.fetch_detail(rid, keep_local_id=self.record.local_id, force_refresh=True)
        self.apply_remote_detail(card)
        return self.record

    def apply_voice_result(self, card: Record, reason: str | None) -> RevisionEntry:
        """Apply an authoritative voice update to record and draft, recording why."""
        old = snapshot(self.record)
        self._overwrite_from(card)
        self._commit_local()
        self.draft.load_from(self.record, force=True)
        # the draft now mirrors a fresh authoritative change; background refreshes must not replace it
        self.draft.has_user_edited = True
        return self.revisions.commit(old, self.record, reason)

    async def submit_save(self) -> bool:
        """Push the draft to the backend; returns ``False`` when there was nothing to do."""
        if self._submitting:
            return False
        required = norm(self.draft[self.kind.required_field])
        if not required:
            raise ValueError(f"{self.kind.required_field} cannot be empty")
        changed = self.draft.changed_fields(self.record)
        if not changed:
            return False
        if self.api is None:
            raise SyncIncomplete(f"No backend configured to save {self.kind.name}")

        self._submitting = True
        try:
            submitted = dict(self.draft.values)
            current_rid = norm(self.record.remote_id)
            if current_rid:
                subset = {name: submitted[name] for name in changed}
                subset[self.kind.required_field] = submitted[self.kind.required_field]
                remote = await self.api.update(
                    current_rid,
                    self.kind.to_payload(subset),
                    keep_local_id=self.record.local_id,
                )
            else:
                remote = await self.api.create(
                    self.kind.to_payload(submitted),
                    keep_local_id=self.record.local_id,
                )
            effective_rid = norm(remote.remote_id if remote else None) or current_rid
            if not effective_rid:
                raise SyncIncomplete(f"Backend did not return a {self.kind.name} id; save is not confirmed")
            if remote is None:
                try:
                    remote = await self.api.fetch_detail(
                        effective_rid,
                        keep_local_id=self.record.local_id,
                        force_refresh=True,
                    )
                except RecordApiError as exc:
                    raise SyncIncomplete(f"Saved {self.kind.name} could not be re-fetched: {exc}") from exc

            old = snapshot(self.record)
            self._overwrite_from(remote, fallback=submitted, fallback_remote_id=effective_rid)
            self._commit_local()
            self.draft.load_from(self.record, force=True)
            self.revisions.commit(old, self.record, MANUAL_EDIT_REASON)
            self.logger.info("[records] Saved %s %s (%s)", self.kind.name, effective_rid, ", ".join(changed))
            return True
        finally:
            self._submitting = False

    async def delete(self) -> None:
        rid = norm(self.record.remote_id)
        if rid and self.api is not None:
            await self.api.delete(rid)
        self.store.delete(self.record)
        self.store.save()
        self.events.record_deleted(self.record)

    def _overwrite_from(
        self,
        card: Record,
        *,
        fallback: Mapping[str, Any] | None = None,
        fallback_remote_id: str | None = None,
    ) -> None:
        record = self.record
        record.remote_id = norm(card.remote_id) or fallback_remote_id or norm(record.remote_id)
        for name in self.kind.editable_fields:
            value = _stored_value(self.kind, name, getattr(card, name))
            if fallback is not None and _compare_value(value) in (None, ""):
                value = _stored_value(self.kind, name, fallback.get(name))
            setattr(record, name, value)
        for name in _SERVER_FLAGS:
            if hasattr(card, name):
                setattr(record, name, getattr(card, name))
        record.last_modified = datetime.now().isoformat(timespec="seconds")

    def _commit_local(self) -> None:
        if self.store.fetch_by_id(self.record.local_id) is None:
            self.store.insert(self.record)
        self.store.save()
        self.events.record_updated(self.record)
