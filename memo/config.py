"""Configuration helpers for Memo record sync and voice updates."""

from __future__ import annotations

import os
import shlex
import socket
from dataclasses import dataclass
from pathlib import Path

from memo.utils import parse_bool, parse_float, parse_int


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


DEFAULT_BASE_URL = "https://api.molymemo.com"
DEFAULT_MIC_COMMAND = "arecord -q -t raw -f S16_LE -c 1 -r 16000 -"


def normalize_base_url(value: str | None) -> str:
    """Trim and drop trailing slashes; add https:// when no scheme is given."""
    trimmed = (value or "").strip().rstrip("/")
    if not trimmed:
        return ""
    lowered = trimmed.lower()
    if not (lowered.startswith("http://") or lowered.startswith("https://")):
        trimmed = f"https://{trimmed}"
    return trimmed


@dataclass(frozen=True)
class BackendConfig:
    base_url: str
    session_id: str | None
    app_id: str
    app_version: str
    device_id: str
    timeout: float
    verify_ssl: bool

    def common_headers(self) -> dict[str, str]:
        headers = {
            "X-App-Id": self.app_id,
            "X-App-Version": self.app_version,
            "X-Device-Id": self.device_id,
            "X-OS-Type": "linux",
        }
        if self.session_id:
            headers["X-Session-Id"] = self.session_id
        return headers


@dataclass(frozen=True)
class MicConfig:
    command: list[str]
    rate: int
    width: int
    channels: int
    chunk_ms: int

    @property
    def bytes_per_chunk(self) -> int:
        samples = int(self.rate * (self.chunk_ms / 1000))
        return samples * self.width * self.channels


@dataclass(frozen=True)
class SessionTiming:
    min_hold_seconds: float
    drain_interval: float
    result_timeout: float
    cancel_drag_threshold: float
    noise_floor: float
    auto_stop_silence: float


@dataclass(frozen=True)
class MqttConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    topic_base: str


@dataclass(frozen=True)
class MemoConfig:
    hostname: str
    backend: BackendConfig
    mic: MicConfig
    timing: SessionTiming
    mqtt: MqttConfig
    store_path: Path

    @staticmethod
    def from_env(env: dict[str, str] | None = None) -> MemoConfig:
        source = env or os.environ
        hostname = source.get("MEMO_HOSTNAME") or socket.gethostname()

        backend = BackendConfig(
            base_url=normalize_base_url(source.get("MEMO_BACKEND_BASE_URL")) or DEFAULT_BASE_URL,
            session_id=_strip_or_none(source.get("MEMO_SESSION_ID")),
            app_id=(source.get("MEMO_APP_ID") or "memo-voice").strip(),
            app_version=(source.get("MEMO_APP_VERSION") or "").strip(),
            device_id=(source.get("MEMO_DEVICE_ID") or hostname).strip(),
            timeout=max(1.0, parse_float(source.get("MEMO_BACKEND_TIMEOUT_SECONDS"), 30.0)),
            verify_ssl=parse_bool(source.get("MEMO_BACKEND_VERIFY_SSL"), True),
        )

        mic = MicConfig(
            command=shlex.split(source.get("MEMO_VOICE_MIC_CMD", DEFAULT_MIC_COMMAND)),
            rate=parse_int(source.get("MEMO_VOICE_MIC_RATE"), 16000),
            width=parse_int(source.get("MEMO_VOICE_MIC_WIDTH"), 2),
            channels=parse_int(source.get("MEMO_VOICE_MIC_CHANNELS"), 1),
            chunk_ms=parse_int(source.get("MEMO_VOICE_MIC_CHUNK_MS"), 30),
        )

        timing = SessionTiming(
            min_hold_seconds=max(0, parse_int(source.get("MEMO_VOICE_MIN_HOLD_MS"), 300)) / 1000,
            drain_interval=max(10, parse_int(source.get("MEMO_VOICE_DRAIN_MS"), 120)) / 1000,
            result_timeout=max(1.0, parse_float(source.get("MEMO_VOICE_RESULT_TIMEOUT_SECONDS"), 40.0)),
            cancel_drag_threshold=abs(parse_float(source.get("MEMO_VOICE_CANCEL_DRAG_PX"), 50.0)),
            noise_floor=min(1.0, max(0.0, parse_float(source.get("MEMO_VOICE_NOISE_FLOOR"), 0.12))),
            auto_stop_silence=max(0, parse_int(source.get("MEMO_VOICE_AUTO_STOP_SILENCE_MS"), 0)) / 1000,
        )

        topic_base = source.get("MEMO_TOPIC_BASE") or f"memo/{hostname}"
        mqtt = MqttConfig(
            host=_strip_or_none(source.get("MQTT_HOST")),
            port=parse_int(source.get("MQTT_PORT"), 1883),
            username=_strip_or_none(source.get("MQTT_USER") or source.get("MQTT_USERNAME")),
            password=_strip_or_none(source.get("MQTT_PASS") or source.get("MQTT_PASSWORD")),
            topic_base=topic_base.rstrip("/"),
        )

        store_path = Path(source.get("MEMO_STORE_PATH") or Path.home() / ".local/share/memo/records.json")

        return MemoConfig(
            hostname=hostname,
            backend=backend,
            mic=mic,
            timing=timing,
            mqtt=mqtt,
            store_path=store_path,
        )
