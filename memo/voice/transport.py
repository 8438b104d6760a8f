"""Websocket transport for one voice-update session."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import ssl
from typing import Literal
from urllib.parse import urlencode

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from memo.config import BackendConfig, MicConfig
from memo.errors import ConnectionFailed, TransportClosed
from memo.records.models import RecordKind
from memo.utils import norm

from .protocol import ServerEvent, cancel_message, done_message, parse_server_event, wav_header

LOGGER = logging.getLogger(__name__)

TransportState = Literal["idle", "open", "streaming", "closing", "closed"]

_SEND_ERRORS = (ConnectionClosed, WebSocketException, OSError, RuntimeError)


def build_voice_url(config: BackendConfig, kind: RecordKind, remote_id: str) -> str:
    """``{base}{voice_path}?session_id=..&<kind>_id=..`` with http(s) mapped to ws(s)."""
    base = config.base_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://") :]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://") :]
    query = urlencode({"session_id": config.session_id or "", kind.id_param: remote_id})
    return f"{base}{kind.voice_path}?{query}"


class VoiceTransport:
    """Duplex stream: header once, PCM chunks, done/cancel, typed server events.

    Sends are serialised through a lock; chunk sends are best-effort so a single
    dropped frame never ends an otherwise healthy session. Only ``receive_event``
    decides when the stream is over.
    """

    def __init__(
        self,
        config: BackendConfig,
        kind: RecordKind,
        *,
        mic: MicConfig | None = None,
        open_timeout: float = 10.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.kind = kind
        self.mic = mic
        self.open_timeout = open_timeout
        self.logger = logger or LOGGER
        self.state: TransportState = "idle"
        self._ws: ClientConnection | None = None
        self._send_lock = asyncio.Lock()
        self._header_sent = False
        self._done_sent = False
        self._keep_local_id: str | None = None
        self.remote_id: str | None = None

    @property
    def header_sent(self) -> bool:
        return self._header_sent

    @property
    def done_sent(self) -> bool:
        return self._done_sent

    async def open(self, remote_id: str | None, *, keep_local_id: str | None = None) -> None:
        if self.state != "idle":
            raise RuntimeError(f"Voice transport cannot open from state {self.state}")
        rid = norm(remote_id)
        if not rid:
            raise ConnectionFailed(f"This {self.kind.name} is not synced yet; voice update needs a remote id")
        if not self.config.session_id:
            raise ConnectionFailed("Not signed in (missing session id)")
        url = build_voice_url(self.config, self.kind, rid)
        ssl_context = None
        if url.startswith("wss://"):
            ssl_context = ssl.create_default_context()
            if not self.config.verify_ssl:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE
        try:
            self._ws = await connect(
                url,
                additional_headers=self.config.common_headers(),
                ssl=ssl_context,
                open_timeout=self.open_timeout,
            )
        except (OSError, TimeoutError, WebSocketException) as exc:
            self.state = "closed"
            raise ConnectionFailed(f"Could not open voice session: {exc}") from exc
        self.remote_id = rid
        self._keep_local_id = keep_local_id
        self.state = "open"
        self.logger.debug("[transport] Connected %s voice session for %s", self.kind.name, rid)

    async def send_header_once(self) -> None:
        if self._header_sent:
            raise RuntimeError("WAV header already sent for this session")
        if self.state != "open" or self._ws is None:
            raise RuntimeError(f"Cannot send header in state {self.state}")
        rate = self.mic.rate if self.mic else 16_000
        channels = self.mic.channels if self.mic else 1
        bits = (self.mic.width if self.mic else 2) * 8
        header = wav_header(sample_rate=rate, channels=channels, bits_per_sample=bits)
        self._header_sent = True
        try:
            async with self._send_lock:
                await self._ws.send(header)
        except _SEND_ERRORS as exc:
            raise ConnectionFailed(f"Could not start audio stream: {exc}") from exc
        self.state = "streaming"

    async def send_pcm_chunk(self, data: bytes) -> bool:
        if not self._header_sent:
            raise RuntimeError("Audio sent before the WAV header")
        if self._done_sent:
            raise RuntimeError("Audio sent after audio_record_done")
        if not data or self.state != "streaming" or self._ws is None:
            return False
        try:
            async with self._send_lock:
                if self._done_sent:
                    return False
                await self._ws.send(data)
        except _SEND_ERRORS as exc:
            self.logger.debug("[transport] Dropped PCM chunk (%d bytes): %s", len(data), exc)
            return False
        return True

    async def send_done(self, asr_text: str | None = None, is_final: bool | None = None) -> bool:
        if self._done_sent:
            raise RuntimeError("audio_record_done already sent")
        self._done_sent = True
        message = done_message(asr_text, is_final)
        self.logger.debug("[transport] client -> %s", message)
        return await self._send_text(message)

    async def send_cancel(self) -> bool:
        return await self._send_text(cancel_message())

    async def receive_event(self) -> ServerEvent:
        ws = self._ws
        if ws is None or self.state in ("closing", "closed"):
            raise TransportClosed("Voice transport is closed")
        try:
            frame = await ws.recv()
        except ConnectionClosed as exc:
            raise TransportClosed(f"Voice session ended: {exc}") from exc
        event = parse_server_event(frame, self.kind, self._keep_local_id)
        self.logger.debug("[transport] server -> %s", type(event).__name__)
        return event

    async def close(self) -> None:
        if self.state in ("closing", "closed"):
            return
        self.state = "closing"
        ws = self._ws
        if ws is not None:
            with contextlib.suppress(*_SEND_ERRORS):
                await ws.close()
        self.state = "closed"
        self.logger.debug("[transport] Closed %s voice session", self.kind.name)

    async def _send_text(self, text: str) -> bool:
        ws = self._ws
        if ws is None or self.state not in ("open", "streaming"):
            return False
        try:
            async with self._send_lock:
                await ws.send(text)
        except _SEND_ERRORS as exc:
            self.logger.debug("[transport] Failed to send control frame: %s", exc)
            return False
        return True
