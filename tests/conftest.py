"""Shared test fixtures for the Memo voice-update test suite.

This module provides reusable fixtures for common test scenarios including:
- Configuration objects (backend, microphone, session timing)
- A deterministic clock for watchdog and drain timing
- Fake capture and transport doubles for the session state machine
- Records, stores and reconcilers
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from unittest.mock import Mock

import pytest

from memo.config import BackendConfig, MicConfig, SessionTiming
from memo.errors import ConnectionFailed, TransportClosed
from memo.events import RecordEventBus
from memo.records.models import ContactRecord, ScheduleRecord
from memo.records.reconcile import RecordReconciler
from memo.records.revisions import RevisionHistory
from memo.records.store import LocalRecordStore

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


@pytest.fixture
def mock_logger():
    """Mock logger limited to the real logging.Logger API."""
    return Mock(spec=logging.Logger)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def backend_config():
    return BackendConfig(
        base_url="https://api.example.test",
        session_id="sid-123",
        app_id="memo-test",
        app_version="1.0.0",
        device_id="device-1",
        timeout=5.0,
        verify_ssl=True,
    )


@pytest.fixture
def mic_config():
    return MicConfig(
        command=["arecord", "-q", "-t", "raw", "-f", "S16_LE", "-c", "1", "-r", "16000", "-"],
        rate=16000,
        width=2,
        channels=1,
        chunk_ms=30,
    )


@pytest.fixture
def timing():
    return SessionTiming(
        min_hold_seconds=0.3,
        drain_interval=0.12,
        result_timeout=40.0,
        cancel_drag_threshold=50.0,
        noise_floor=0.12,
        auto_stop_silence=0.0,
    )


# ============================================================================
# Clock / Capture / Transport doubles
# ============================================================================


async def settle(rounds: int = 20) -> None:
    """Let ready tasks run without advancing any clock."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """Manual clock: ``sleep`` only returns once ``advance`` passes its deadline."""

    def __init__(self) -> None:
        self.now = 0.0
        self._sleepers: list[tuple[float, asyncio.Future]] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        entry = (self.now + seconds, future)
        self._sleepers.append(entry)
        try:
            await future
        finally:
            if entry in self._sleepers:
                self._sleepers.remove(entry)

    async def advance(self, seconds: float) -> None:
        await settle()
        self.now += seconds
        for deadline, future in list(self._sleepers):
            if deadline <= self.now and not future.done():
                future.set_result(None)
        await settle()


class FakeCapture:
    def __init__(self, mic: MicConfig, start_error: Exception | None = None) -> None:
        self.mic = mic
        self.start_error = start_error
        self.running = False
        self.silent = False
        self.start_calls = 0
        self.stop_calls: list[bool] = []
        self._pending = bytearray()

    def feed(self, data: bytes) -> None:
        self._pending.extend(data)

    async def start(self) -> None:
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error
        self.running = True

    def drain_pcm_bytes(self) -> bytes:
        data = bytes(self._pending)
        self._pending.clear()
        return data

    async def stop(self, discard: bool = False) -> bytes:
        self.stop_calls.append(discard)
        self.running = False
        data = self.drain_pcm_bytes()
        return b"" if discard else data

    def silent_for(self, seconds: float) -> bool:
        return self.silent


class FakeTransport:
    """Records every frame the session sends and replays pushed server events."""

    def __init__(self, open_error: Exception | None = None) -> None:
        self.open_error = open_error
        self.sent: list[tuple[Any, ...]] = []
        self.opened_with: str | None = None
        self.header_sent = False
        self.done_sent = False
        self.close_calls = 0
        self._events: asyncio.Queue = asyncio.Queue()

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    def push(self, event: Any) -> None:
        """Queue a server event; ``None`` ends the stream."""
        self._events.put_nowait(event)

    async def open(self, remote_id: str | None, *, keep_local_id: str | None = None) -> None:
        if self.open_error is not None:
            raise self.open_error
        if not remote_id:
            raise ConnectionFailed("record has no remote id")
        self.opened_with = remote_id

    async def send_header_once(self) -> None:
        if self.header_sent:
            raise RuntimeError("header already sent")
        self.header_sent = True
        self.sent.append(("header",))

    async def send_pcm_chunk(self, data: bytes) -> bool:
        if not self.header_sent:
            raise RuntimeError("audio before header")
        if self.done_sent:
            raise RuntimeError("audio after done")
        if not data:
            return False
        self.sent.append(("pcm", data))
        return True

    async def send_done(self, asr_text: str | None = None, is_final: bool | None = None) -> bool:
        if self.done_sent:
            raise RuntimeError("done already sent")
        self.done_sent = True
        self.sent.append(("done", asr_text, is_final))
        return True

    async def send_cancel(self) -> bool:
        self.sent.append(("cancel",))
        return True

    async def receive_event(self) -> Any:
        item = await self._events.get()
        if item is None:
            raise TransportClosed("socket closed")
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.close_calls += 1

    def kinds(self) -> list[str]:
        return [frame[0] for frame in self.sent]


class TransportFactory:
    """Hands out a fresh FakeTransport per recording and remembers them all."""

    def __init__(self) -> None:
        self.created: list[FakeTransport] = []
        self.open_error: Exception | None = None

    def __call__(self) -> FakeTransport:
        transport = FakeTransport(self.open_error)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_capture(mic_config):
    return FakeCapture(mic_config)


@pytest.fixture
def transport_factory():
    return TransportFactory()


# ============================================================================
# Record Fixtures
# ============================================================================


@pytest.fixture
def contact_record():
    return ContactRecord(
        local_id="local-1",
        remote_id="c-42",
        name="Ada Lovelace",
        company="Analytical Engines",
        title=None,
        phone="555-0100",
    )


@pytest.fixture
def schedule_record():
    from datetime import datetime

    return ScheduleRecord(
        local_id="local-s1",
        remote_id="s-7",
        title="Design review",
        start_time=datetime(2026, 3, 2, 10, 0),
        end_time=datetime(2026, 3, 2, 11, 0),
    )


@pytest.fixture
def event_bus():
    return RecordEventBus()


@pytest.fixture
def store(tmp_path):
    return LocalRecordStore(tmp_path / "records.json")


@pytest.fixture
def make_reconciler(store, event_bus):
    def _make(record, api=None):
        store.insert(record)
        return RecordReconciler(
            record,
            store=store,
            api=api,
            events=event_bus,
            revisions=RevisionHistory(event_bus),
        )

    return _make
