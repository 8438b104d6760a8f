"""Record models for contacts and schedules plus their server adapters.

The backend is loose about field names (``title`` vs ``position``, ``location``
vs ``address``, ids as strings or numbers), so parsing goes through alias
lists. Blank values always parse to ``None``; nothing is inferred locally.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime, timedelta
from typing import Any, Literal
from uuid import uuid4

from memo.utils import norm

LOGGER = logging.getLogger(__name__)

RecordKindName = Literal["contact", "schedule"]

_TZ_SUFFIX = re.compile(r"(Z|[+-]\d{2}:?\d{2})$")


def _now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _first_str(data: Mapping[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str):
            stripped = value.strip()
            if stripped:
                return stripped
    return None


def _remote_id(data: Mapping[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        raw = data.get(key)
        if isinstance(raw, bool):
            continue
        if isinstance(raw, str) and raw.strip():
            return raw.strip()
        if isinstance(raw, int):
            return str(raw)
        if isinstance(raw, float) and math.isfinite(raw):
            return str(int(raw))
    return None


def parse_server_datetime(value: Any) -> datetime | None:
    """Parse backend times with local wall-clock semantics.

    Timezone suffixes are dropped rather than converted so the time shown is the
    time the backend sent. Numbers are epoch seconds.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value))
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    text = _TZ_SUFFIX.sub("", text)
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def format_local_datetime(value: datetime) -> str:
    """Serialise as ``YYYY-MM-DDTHH:MM:SS`` without a timezone."""
    return value.replace(tzinfo=None, microsecond=0).isoformat()


def _parse_full_day(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        day = date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None
    return datetime(day.year, day.month, day.day)


def normalize_gender(value: str | None) -> str:
    """Map free-form gender input to ``male`` / ``female`` / ``""``."""
    lowered = (value or "").strip().lower()
    if lowered in {"male", "m", "男"}:
        return "male"
    if lowered in {"female", "f", "女"}:
        return "female"
    return ""


@dataclass
class ContactRecord:
    local_id: str = field(default_factory=lambda: str(uuid4()))
    remote_id: str | None = None
    name: str = ""
    company: str | None = None
    title: str | None = None
    phone: str | None = None
    email: str | None = None
    industry: str | None = None
    location: str | None = None
    birthday: str | None = None
    gender: str | None = None
    notes: str | None = None
    last_modified: str | None = None
    is_obsolete: bool = False

    def to_json_dict(self) -> dict[str, Any]:
        return {"kind": "contact", **{f.name: getattr(self, f.name) for f in fields(self)}}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ContactRecord:
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in payload.items() if key in known})


@dataclass
class ScheduleRecord:
    local_id: str = field(default_factory=lambda: str(uuid4()))
    remote_id: str | None = None
    title: str = ""
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    location: str | None = None
    category: str | None = None
    reminder_time: str | None = None
    is_full_day: bool = False
    last_modified: str | None = None
    is_obsolete: bool = False

    def to_json_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": "schedule"}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = format_local_datetime(value) if isinstance(value, datetime) else value
        return data

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ScheduleRecord:
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in payload.items() if key in known}
        for key in ("start_time", "end_time"):
            values[key] = parse_server_datetime(values.get(key))
        return cls(**values)


Record = ContactRecord | ScheduleRecord


def parse_contact(data: Mapping[str, Any], keep_local_id: str | None = None) -> ContactRecord | None:
    name = _first_str(data, ("name", "full_name", "fullName"))
    if not name:
        return None
    record = ContactRecord(
        remote_id=_remote_id(data, ("id", "contact_id", "remote_id", "remoteId")),
        name=name,
        company=_first_str(data, ("company", "company_name")),
        title=_first_str(data, ("title", "position", "job_title")),
        phone=_first_str(data, ("phone", "phone_number", "mobile")),
        email=_first_str(data, ("email",)),
        industry=_first_str(data, ("industry",)),
        location=_first_str(data, ("location", "address", "region", "city")),
        birthday=_first_str(data, ("birthday", "birth", "birthday_text")),
        gender=normalize_gender(_first_str(data, ("gender",))) or None,
        notes=_first_str(data, ("notes", "note")),
        last_modified=_now_iso(),
        is_obsolete=bool(data.get("is_obsolete") or data.get("isObsolete")),
    )
    if keep_local_id:
        record.local_id = keep_local_id
    return record


def parse_schedule(data: Mapping[str, Any], keep_local_id: str | None = None) -> ScheduleRecord | None:
    title = _first_str(data, ("title", "name", "summary"))
    if not title:
        return None
    full_day_start = _parse_full_day(data.get("full_day") or data.get("fullDay"))
    if full_day_start is not None:
        start = full_day_start
        end: datetime | None = full_day_start + timedelta(days=1)
    else:
        start = None
        for key in ("start_time", "startTime", "start_date", "startDate"):
            start = parse_server_datetime(data.get(key))
            if start is not None:
                break
        if start is None:
            # never fall back to "now"; a schedule without a start is unusable
            LOGGER.debug("[records] Schedule %r has no parseable start time", title)
            return None
        end = None
        for key in ("end_time", "endTime", "end_date", "endDate"):
            end = parse_server_datetime(data.get(key))
            if end is not None:
                break
    record = ScheduleRecord(
        remote_id=_remote_id(data, ("id", "schedule_id", "remote_id", "remoteId")),
        title=title,
        description=_first_str(data, ("description", "desc", "content", "detail")),
        start_time=start,
        end_time=end,
        location=_first_str(data, ("location", "address")),
        category=_first_str(data, ("category",)),
        reminder_time=_first_str(data, ("reminder_time", "reminderTime")),
        is_full_day=full_day_start is not None,
        last_modified=_now_iso(),
        is_obsolete=bool(data.get("is_obsolete") or data.get("isObsolete")),
    )
    if keep_local_id:
        record.local_id = keep_local_id
    return record


def contact_payload(values: Mapping[str, Any]) -> dict[str, Any]:
    """Build a create/update body from draft values, skipping blanks."""
    payload: dict[str, Any] = {"name": norm(values.get("name")) or ""}
    for field_name, key in (
        ("company", "company"),
        ("title", "position"),
        ("phone", "phone"),
        ("email", "email"),
        ("industry", "industry"),
        ("location", "address"),
        ("birthday", "birthday"),
        ("notes", "notes"),
    ):
        value = norm(values.get(field_name))
        if value:
            payload[key] = value
    gender = normalize_gender(values.get("gender"))
    if gender:
        payload["gender"] = gender
    return payload


def schedule_payload(values: Mapping[str, Any]) -> dict[str, Any]:
    payload: dict[str, Any] = {"title": norm(values.get("title")) or ""}
    for key in ("start_time", "end_time"):
        value = values.get(key)
        if isinstance(value, datetime):
            payload[key] = format_local_datetime(value)
    for key in ("description", "location", "category", "reminder_time"):
        value = norm(values.get(key))
        if value:
            payload[key] = value
    return payload


@dataclass(frozen=True)
class RecordKind:
    """Per-kind wiring shared by the API client, transport, and reconciler."""

    name: RecordKindName
    collection_path: str
    voice_path: str
    editable_fields: tuple[str, ...]
    required_field: str
    record_type: type
    parse: Callable[[Mapping[str, Any], str | None], Record | None]
    payload: Callable[[Mapping[str, Any]], dict[str, Any]]
    time_fields: tuple[str, ...] = ()

    @property
    def id_param(self) -> str:
        return f"{self.name}_id"

    @property
    def event_key(self) -> str:
        return self.name

    def detail_path(self, remote_id: str) -> str:
        return f"{self.collection_path}/{remote_id}"

    def from_server(self, data: Mapping[str, Any], keep_local_id: str | None = None) -> Record | None:
        return self.parse(data, keep_local_id)

    def to_payload(self, values: Mapping[str, Any]) -> dict[str, Any]:
        return self.payload(values)

    def blank(self) -> Record:
        return self.record_type()

    def field_values(self, record: Record) -> dict[str, Any]:
        return {name: getattr(record, name) for name in self.editable_fields}


CONTACT = RecordKind(
    name="contact",
    collection_path="/api/v1/contacts",
    voice_path="/api/v1/contact/voice-update",
    editable_fields=(
        "name",
        "company",
        "title",
        "phone",
        "email",
        "industry",
        "location",
        "birthday",
        "gender",
        "notes",
    ),
    required_field="name",
    record_type=ContactRecord,
    parse=parse_contact,
    payload=contact_payload,
)

SCHEDULE = RecordKind(
    name="schedule",
    collection_path="/api/v1/schedules",
    voice_path="/api/v1/schedule/voice-update",
    editable_fields=(
        "title",
        "description",
        "start_time",
        "end_time",
        "location",
        "category",
        "reminder_time",
    ),
    required_field="title",
    record_type=ScheduleRecord,
    parse=parse_schedule,
    payload=schedule_payload,
    time_fields=("start_time", "end_time"),
)

RECORD_KINDS: dict[str, RecordKind] = {CONTACT.name: CONTACT, SCHEDULE.name: SCHEDULE}


def kind_for(record: Record) -> RecordKind:
    return SCHEDULE if isinstance(record, ScheduleRecord) else CONTACT


def record_from_dict(payload: Mapping[str, Any]) -> Record:
    if payload.get("kind") == "schedule":
        return ScheduleRecord.from_dict(payload)
    return ContactRecord.from_dict(payload)


def snapshot(record: Record) -> Record:
    """Detached copy used for revision history."""
    return replace(record)
