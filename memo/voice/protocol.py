"""Wire format for the voice-update websocket.

Client -> server: one WAV header, raw PCM binary frames, then a JSON text frame
(``audio_record_done`` or ``cancel``).

Server -> client: JSON objects tagged by ``type``.
"""

from __future__ import annotations

import json
import math
import struct
from dataclasses import dataclass
from typing import Any

from memo.errors import ProtocolError
from memo.records.models import Record, RecordKind


@dataclass(frozen=True)
class AsrResult:
    text: str
    is_final: bool


@dataclass(frozen=True)
class Processing:
    message: str | None


@dataclass(frozen=True)
class UpdateResult:
    record: Record
    message: str | None


@dataclass(frozen=True)
class Cancelled:
    message: str | None


@dataclass(frozen=True)
class ServerError:
    code: int | None
    message: str


ServerEvent = AsrResult | Processing | UpdateResult | Cancelled | ServerError

TERMINAL_EVENTS = (UpdateResult, Cancelled, ServerError)

DEFAULT_ERROR_MESSAGE = "unknown error"


def is_terminal(event: ServerEvent) -> bool:
    return isinstance(event, TERMINAL_EVENTS)


def wav_header(sample_rate: int = 16_000, channels: int = 1, bits_per_sample: int = 16, data_size: int = 0) -> bytes:
    """Build a 44-byte PCM RIFF/WAVE header.

    The stream length is unknown up front, so ``data_size`` is normally 0.
    """
    byte_rate = sample_rate * channels * bits_per_sample // 8
    block_align = channels * bits_per_sample // 8
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,
        1,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b"data",
        data_size,
    )


def done_message(asr_text: str | None = None, is_final: bool | None = None) -> str:
    payload: dict[str, Any] = {"action": "audio_record_done"}
    text = (asr_text or "").strip()
    if text:
        payload["asr_result"] = {"text": text, "is_final": True if is_final is None else is_final}
    return json.dumps(payload, ensure_ascii=False)


def cancel_message() -> str:
    return json.dumps({"action": "cancel"})


def _parse_code(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def parse_server_event(frame: str | bytes, kind: RecordKind, keep_local_id: str | None = None) -> ServerEvent:
    """Parse one server frame. Binary frames are accepted when they hold UTF-8 JSON."""
    if isinstance(frame, bytes):
        try:
            frame = frame.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"Binary server frame is not UTF-8 ({len(frame)} bytes)") from exc
    raw = frame.strip()
    if not raw:
        raise ProtocolError("Empty server frame")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Server frame is not JSON: {raw[:200]}") from exc
    if not isinstance(data, dict):
        raise ProtocolError(f"Server frame is not an object: {raw[:200]}")

    event_type = str(data.get("type") or "").strip()
    if event_type == "asr_result":
        text = data.get("text")
        return AsrResult(text=text if isinstance(text, str) else "", is_final=data.get("is_final") is True)
    if event_type == "processing":
        return Processing(message=_optional_str(data.get("message")))
    if event_type == "update_result":
        payload = data.get(kind.event_key)
        if not isinstance(payload, dict):
            raise ProtocolError(f"update_result without a {kind.event_key} object")
        try:
            record = kind.from_server(payload, keep_local_id)
        except (TypeError, ValueError, OverflowError) as exc:
            raise ProtocolError(f"update_result {kind.event_key} is malformed: {exc}") from exc
        if record is None:
            raise ProtocolError(f"update_result {kind.event_key} could not be parsed")
        return UpdateResult(record=record, message=_optional_str(data.get("message")))
    if event_type == "cancelled":
        return Cancelled(message=_optional_str(data.get("message")))
    if event_type == "error":
        message = data.get("message")
        if not isinstance(message, str) or not message.strip():
            message = DEFAULT_ERROR_MESSAGE
        return ServerError(code=_parse_code(data.get("code")), message=message)
    raise ProtocolError(f"Unknown server event type {event_type!r}")
