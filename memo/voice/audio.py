"""Microphone capture for voice updates."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
import time
from asyncio.subprocess import Process
from collections.abc import Callable

from memo.config import MicConfig
from memo.errors import AudioUnavailable
from memo.utils import compute_rms

LOGGER = logging.getLogger(__name__)

DEFAULT_NOISE_FLOOR = 0.12

# one capture may own the microphone per process; a new start closes the previous owner
_MIC_OWNER: PcmCapture | None = None


def microphone_owner() -> PcmCapture | None:
    return _MIC_OWNER


def _binary_available(binary: str) -> bool:
    if os.path.isabs(binary):
        return os.access(binary, os.X_OK)
    return shutil.which(binary) is not None


class PcmCapture:
    """Capture PCM audio by shelling out to ``arecord`` and buffer it for draining.

    A background task reads fixed-size chunks into a ``bytearray``; callers pull
    whatever has accumulated with :meth:`drain_pcm_bytes`. Each chunk also
    updates :attr:`level`, a noise-gated 0.0-1.0 loudness value.
    """

    def __init__(
        self,
        mic: MicConfig,
        *,
        noise_floor: float = DEFAULT_NOISE_FLOOR,
        startup_grace: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self.mic = mic
        self.noise_floor = noise_floor
        self.startup_grace = startup_grace
        self.level = 0.0
        self._clock = clock
        self._logger = logger or LOGGER
        self._proc: Process | None = None
        self._reader: asyncio.Task | None = None
        self._buffer = bytearray()
        self._heard_speech = False
        self._last_voiced: float | None = None

    @property
    def running(self) -> bool:
        return self._proc is not None

    async def start(self) -> None:
        global _MIC_OWNER
        if self._proc:
            return
        previous = _MIC_OWNER
        if previous is not None and previous is not self:
            self._logger.info("[audio] Taking over the microphone from an earlier recording")
            await previous.stop(discard=True)
        if not self.mic.command or not _binary_available(self.mic.command[0]):
            raise AudioUnavailable(f"Capture command not found: {' '.join(self.mic.command) or '(empty)'}")

        self._logger.debug("[audio] Starting microphone capture: %s", " ".join(self.mic.command))
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.mic.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise AudioUnavailable(f"Could not start microphone capture: {exc}") from exc

        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(proc.wait(), timeout=self.startup_grace)
        if proc.returncode is not None:
            stderr = ""
            if proc.stderr:
                with contextlib.suppress(OSError):
                    stderr = (await proc.stderr.read()).decode("utf-8", errors="ignore").strip()
            message = f"Microphone capture exited immediately (code {proc.returncode})"
            if stderr:
                message = f"{message}: {stderr}"
            raise AudioUnavailable(message)

        _MIC_OWNER = self
        self._proc = proc
        self._buffer.clear()
        self._heard_speech = False
        self._last_voiced = None
        self.level = 0.0
        self._reader = asyncio.create_task(self._read_loop(proc))

    def drain_pcm_bytes(self) -> bytes:
        """Return and clear everything buffered since the previous drain."""
        if not self._buffer:
            return b""
        data = bytes(self._buffer)
        self._buffer.clear()
        return data

    async def stop(self, discard: bool = False) -> bytes:
        """Release the microphone; returns the unflushed tail unless ``discard``."""
        global _MIC_OWNER
        proc, self._proc = self._proc, None
        reader, self._reader = self._reader, None
        if proc is not None:
            self._logger.debug("[audio] Stopping microphone capture")
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(proc.wait(), timeout=2)
        if reader is not None:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        if _MIC_OWNER is self:
            _MIC_OWNER = None
        self.level = 0.0
        tail = self.drain_pcm_bytes()
        return b"" if discard else tail

    def silent_for(self, seconds: float) -> bool:
        """True once speech was heard and the gated level has stayed at zero for ``seconds``."""
        if not self._heard_speech or self._last_voiced is None or self.level > 0.0:
            return False
        return self._clock() - self._last_voiced >= seconds

    async def _read_loop(self, proc: Process) -> None:
        stdout = proc.stdout
        if stdout is None:
            return
        size = self.mic.bytes_per_chunk
        while True:
            try:
                chunk = await stdout.readexactly(size)
            except asyncio.IncompleteReadError as exc:
                if exc.partial:
                    self._ingest(exc.partial)
                self._logger.debug("[audio] Capture stream ended")
                return
            self._ingest(chunk)

    def _ingest(self, chunk: bytes) -> None:
        self._buffer.extend(chunk)
        full_scale = float(1 << (8 * self.mic.width - 1))
        raw = min(1.0, compute_rms(chunk, self.mic.width) / full_scale)
        level = raw if raw >= self.noise_floor else 0.0
        if level > 0.0:
            self._heard_speech = True
            self._last_voiced = self._clock()
        self.level = level
