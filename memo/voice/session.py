"""Voice update state machine for one open record.

One ``VoiceUpdateSession`` belongs to a record detail view and may run many
recordings over its life. Each recording is a *generation*: starting a new one
force-closes the previous, and anything the old generation still delivers is
dropped on the floor.

Lifecycle of a generation::

    idle -> pressing -> recording -> awaiting_result -> exiting -> idle

``cancelling`` is tracked separately because it can flip back and forth while
the user keeps holding.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Protocol

from memo.config import SessionTiming
from memo.errors import MemoError, ProtocolError, TransportClosed, VoiceTimeout
from memo.records.models import Record
from memo.utils import chunk_bytes, norm

from .protocol import AsrResult, Cancelled, Processing, ServerError, UpdateResult

if TYPE_CHECKING:
    from memo.records.reconcile import RecordReconciler

    from .audio import PcmCapture
    from .transport import VoiceTransport

LOGGER = logging.getLogger(__name__)

SessionState = Literal["idle", "pressing", "recording", "awaiting_result", "exiting"]
SessionOutcome = Literal["updated", "cancelled", "failed", "timed_out"]

TIMEOUT_MESSAGE = "timed out"


class Clock(Protocol):
    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass(frozen=True)
class VoiceSessionResult:
    outcome: SessionOutcome
    message: str | None = None
    record: Record | None = None
    transcript: str | None = None
    error: Exception | None = None


def _cancel_task(task: asyncio.Task | None) -> None:
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()


class Watchdog:
    """Deadline that fires ``timeout`` seconds after the most recent ``touch``."""

    def __init__(self, timeout: float, clock: Clock, on_expire: Callable[[], Awaitable[Any]]) -> None:
        self.timeout = timeout
        self._clock = clock
        self._on_expire = on_expire
        self._deadline = 0.0
        self._task: asyncio.Task | None = None

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self) -> None:
        self.touch()
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    def touch(self) -> None:
        self._deadline = self._clock.monotonic() + self.timeout

    def cancel(self) -> None:
        _cancel_task(self._task)

    async def _run(self) -> None:
        while True:
            remaining = self._deadline - self._clock.monotonic()
            if remaining <= 0:
                break
            await self._clock.sleep(remaining)
        await self._on_expire()


class VoiceUpdateSession:
    """Press-to-talk voice update bound to one record through its reconciler."""

    def __init__(
        self,
        reconciler: RecordReconciler,
        *,
        capture: PcmCapture,
        transport_factory: Callable[[], VoiceTransport],
        timing: SessionTiming,
        clock: Clock | None = None,
        on_finished: Callable[[VoiceSessionResult], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.reconciler = reconciler
        self.capture = capture
        self.transport_factory = transport_factory
        self.timing = timing
        self.clock: Clock = clock or SystemClock()
        self.on_finished = on_finished
        self.logger = logger or LOGGER

        self.state: SessionState = "idle"
        self.cancelling = False
        self.transcript = ""
        self.transcript_final = False
        self.last_activity: float | None = None
        self.result: VoiceSessionResult | None = None

        self._generation = 0
        self._finished = True
        self._starting = False
        self._pending_release = False
        self._transport: VoiceTransport | None = None
        self._send_task: asyncio.Task | None = None
        self._receive_task: asyncio.Task | None = None
        self._watchdog: Watchdog | None = None
        self._closed = asyncio.Event()
        self._closed.set()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def active(self) -> bool:
        return not self._finished

    @property
    def best_transcript(self) -> str | None:
        return self.transcript.strip() or None

    # ------------------------------------------------------------------
    # Gesture entry points

    def begin_press(self) -> None:
        if self.state == "idle":
            self.state = "pressing"

    def abort_press(self) -> None:
        if self.state == "pressing":
            self.state = "idle"

    def set_cancelling(self, cancelling: bool) -> None:
        if self.state != "recording" or self.cancelling == cancelling:
            return
        self.cancelling = cancelling
        self.logger.debug("[voice] cancelling=%s", cancelling)

    async def start(self) -> None:
        """Open capture and transport together, then start the send/receive loops."""
        if not self._finished:
            await self._finish(
                self._generation,
                "cancelled",
                "Superseded by a new recording",
            )
        self._generation += 1
        generation = self._generation
        self._finished = False
        self._closed = asyncio.Event()
        self.result = None
        self.cancelling = False
        self.transcript = ""
        self.transcript_final = False
        self._pending_release = False
        self._watchdog = None
        self.state = "recording"

        transport = self.transport_factory()
        self._transport = transport
        record = self.reconciler.record
        self.logger.info(
            "[voice] Starting %s voice update for %s",
            self.reconciler.kind.name,
            record.remote_id or record.local_id,
        )

        self._starting = True
        try:
            results = await asyncio.gather(
                self.capture.start(),
                self._open_transport(transport, record),
                return_exceptions=True,
            )
        finally:
            self._starting = False

        if generation != self._generation:
            await transport.close()
            return
        if self._finished:
            await self.capture.stop(discard=True)
            await transport.close()
            return
        for outcome in results:
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
        errors = [outcome for outcome in results if isinstance(outcome, Exception)]
        if errors:
            error = errors[0]
            self.logger.warning("[voice] Could not start voice update: %s", error)
            await self._finish(generation, "failed", str(error), error=error)
            return

        self.last_activity = self.clock.monotonic()
        self._send_task = asyncio.create_task(self._send_loop(generation, transport))
        self._receive_task = asyncio.create_task(self._receive_loop(generation, transport))
        if self._pending_release:
            await self.release()

    async def release(self) -> None:
        """Finish the utterance, or abandon it when the user dragged to cancel."""
        if self._starting:
            self._pending_release = True
            return
        if self.state == "pressing":
            self.state = "idle"
            return
        if self.state != "recording" or self._finished:
            return
        generation = self._generation
        transport = self._transport
        if transport is None:
            return

        cancelling = self.cancelling
        self.state = "exiting" if cancelling else "awaiting_result"
        send_task, self._send_task = self._send_task, None
        _cancel_task(send_task)
        if send_task is not None and send_task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await send_task

        if cancelling:
            self.logger.info("[voice] Voice update cancelled by user")
            await transport.send_cancel()
            await self._finish(generation, "cancelled", None)
            return

        tail = await self.capture.stop(discard=False)
        if generation != self._generation or self._finished:
            return
        for chunk in chunk_bytes(tail, max(1, self.capture.mic.bytes_per_chunk)):
            await self._send_chunk(transport, chunk)
        await transport.send_done(self.best_transcript, self.transcript_final if self.best_transcript else None)
        if generation != self._generation or self._finished:
            return
        self._watchdog = Watchdog(self.timing.result_timeout, self.clock, lambda: self._expire(generation))
        self._watchdog.arm()
        self.logger.debug("[voice] Awaiting result (timeout %.0fs)", self.timing.result_timeout)

    async def teardown(self) -> None:
        """Leave immediately from any state; nothing is applied, nothing awaited."""
        if self.state == "pressing":
            self.state = "idle"
            return
        if self._finished:
            return
        await self._finish(self._generation, "cancelled", None)

    async def wait_closed(self) -> VoiceSessionResult | None:
        await self._closed.wait()
        return self.result

    # ------------------------------------------------------------------
    # Internals

    async def _open_transport(self, transport: VoiceTransport, record: Record) -> None:
        await transport.open(record.remote_id, keep_local_id=record.local_id)
        await transport.send_header_once()

    def _touch(self) -> None:
        self.last_activity = self.clock.monotonic()
        if self._watchdog is not None:
            self._watchdog.touch()

    async def _send_chunk(self, transport: VoiceTransport, chunk: bytes) -> None:
        try:
            await transport.send_pcm_chunk(chunk)
        except (MemoError, OSError) as exc:
            self.logger.debug("[voice] Dropped %d bytes of audio: %s", len(chunk), exc)

    async def _send_loop(self, generation: int, transport: VoiceTransport) -> None:
        auto_stop = self.timing.auto_stop_silence
        while True:
            await self.clock.sleep(self.timing.drain_interval)
            if generation != self._generation or self._finished or self.state != "recording":
                return
            chunk = self.capture.drain_pcm_bytes()
            if chunk:
                await self._send_chunk(transport, chunk)
            if auto_stop > 0 and not self.cancelling and self.capture.silent_for(auto_stop):
                self.logger.info("[voice] Silence detected; finishing utterance")
                await self.release()
                return

    async def _receive_loop(self, generation: int, transport: VoiceTransport) -> None:
        while True:
            try:
                event = await transport.receive_event()
            except ProtocolError as exc:
                self.logger.warning("[voice] Ignoring malformed server frame: %s", exc)
                continue
            except TransportClosed as exc:
                if self.state != "exiting":
                    await self._finish(generation, "failed", str(exc), error=exc)
                return
            except Exception as exc:
                self.logger.warning("[voice] Voice session receive failed: %s", exc, exc_info=True)
                await self._finish(generation, "failed", str(exc), error=exc)
                return
            if generation != self._generation or self._finished or self.state == "exiting":
                return
            self._touch()

            if isinstance(event, AsrResult):
                if event.text.strip() or event.is_final:
                    self.transcript = event.text
                    self.transcript_final = event.is_final
            elif isinstance(event, Processing):
                self.logger.debug("[voice] Processing: %s", event.message or "")
            elif isinstance(event, UpdateResult):
                if self.state != "awaiting_result" or self.cancelling:
                    self.logger.debug("[voice] Ignoring update_result received in state %s", self.state)
                    continue
                await self._apply_update(generation, event)
                return
            elif isinstance(event, Cancelled):
                await self._finish(generation, "cancelled", event.message)
                return
            elif isinstance(event, ServerError):
                error = MemoError(event.message)
                self.logger.warning("[voice] Server error %s: %s", event.code, event.message)
                await self._finish(generation, "failed", event.message, error=error)
                return

    async def _apply_update(self, generation: int, event: UpdateResult) -> None:
        reason = norm(event.message) or self.best_transcript
        try:
            self.reconciler.apply_voice_result(event.record, reason)
        except (OSError, ValueError, KeyError) as exc:
            self.logger.warning("[voice] Could not apply voice result: %s", exc)
            await self._finish(generation, "failed", str(exc), error=exc)
            return
        await self._finish(generation, "updated", event.message, record=self.reconciler.record)

    async def _expire(self, generation: int) -> None:
        self.logger.warning("[voice] No result within %.0fs of last activity", self.timing.result_timeout)
        error = VoiceTimeout(TIMEOUT_MESSAGE)
        await self._finish(generation, "timed_out", TIMEOUT_MESSAGE, error=error)

    async def _finish(
        self,
        generation: int,
        outcome: SessionOutcome,
        message: str | None,
        *,
        record: Record | None = None,
        error: Exception | None = None,
    ) -> bool:
        if generation != self._generation or self._finished:
            return False
        self._finished = True
        self.state = "exiting"

        _cancel_task(self._send_task)
        _cancel_task(self._receive_task)
        if self._watchdog is not None:
            self._watchdog.cancel()
        self._send_task = None
        self._receive_task = None
        self._watchdog = None

        await self.capture.stop(discard=True)
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close()

        result = VoiceSessionResult(
            outcome=outcome,
            message=message,
            record=record,
            transcript=self.best_transcript,
            error=error,
        )
        self.result = result
        self.cancelling = False
        self.state = "idle"
        self._closed.set()
        self.logger.info("[voice] Voice update finished: %s%s", outcome, f" ({message})" if message else "")
        if self.on_finished is not None:
            try:
                self.on_finished(result)
            except Exception:
                self.logger.exception("[voice] on_finished callback failed")
        return True
