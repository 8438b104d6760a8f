"""Press-and-hold interpretation for the voice button."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from .session import Clock, VoiceUpdateSession

LOGGER = logging.getLogger(__name__)

DEFAULT_MIN_HOLD_SECONDS = 0.3
DEFAULT_CANCEL_DRAG_THRESHOLD = 50.0


class HoldToTalkGesture:
    """Turn press / drag / release into session calls.

    A press only becomes a recording once it has been held for
    ``min_hold_seconds``; shorter taps are ignored. While recording, dragging
    up past ``cancel_drag_threshold`` arms cancel and dragging back disarms it.
    """

    def __init__(
        self,
        session: VoiceUpdateSession,
        *,
        min_hold_seconds: float = DEFAULT_MIN_HOLD_SECONDS,
        cancel_drag_threshold: float = DEFAULT_CANCEL_DRAG_THRESHOLD,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.session = session
        self.min_hold_seconds = min_hold_seconds
        self.cancel_drag_threshold = abs(cancel_drag_threshold)
        self.clock: Clock = clock or session.clock
        self.logger = logger or LOGGER
        self._hold_task: asyncio.Task | None = None
        self._held = False

    @classmethod
    def for_session(cls, session: VoiceUpdateSession, **kwargs) -> HoldToTalkGesture:
        timing = session.timing
        kwargs.setdefault("min_hold_seconds", timing.min_hold_seconds)
        kwargs.setdefault("cancel_drag_threshold", timing.cancel_drag_threshold)
        return cls(session, **kwargs)

    @property
    def pressed(self) -> bool:
        return self._hold_task is not None

    def press(self) -> None:
        if self._hold_task is not None:
            return
        self._held = False
        self.session.begin_press()
        self._hold_task = asyncio.create_task(self._hold())

    def drag(self, dy: float) -> None:
        """Vertical offset from the press point; negative is up."""
        if self._hold_task is None:
            return
        self.session.set_cancelling(dy < -self.cancel_drag_threshold)

    async def release(self) -> bool:
        """Returns ``False`` when the press was too short to count."""
        task, self._hold_task = self._hold_task, None
        if task is None:
            return False
        if not self._held:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            self.session.abort_press()
            self.logger.debug("[voice] Press shorter than %.2fs ignored", self.min_hold_seconds)
            return False
        await task
        await self.session.release()
        return True

    async def _hold(self) -> None:
        await self.clock.sleep(self.min_hold_seconds)
        self._held = True
        await self.session.start()
