"""Tests for hold-to-talk gesture handling (memo/voice/gesture.py)."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from memo.voice.gesture import HoldToTalkGesture
from memo.voice.session import VoiceUpdateSession

pytestmark = pytest.mark.anyio


@pytest.fixture
def session(fake_clock, timing):
    session = Mock(spec=VoiceUpdateSession)
    session.clock = fake_clock
    session.timing = timing
    return session


@pytest.fixture
def gesture(session):
    return HoldToTalkGesture.for_session(session)


class TestHoldToTalk:
    async def test_uses_session_timing(self, gesture):
        assert gesture.min_hold_seconds == pytest.approx(0.3)
        assert gesture.cancel_drag_threshold == 50.0

    async def test_short_press_is_ignored(self, gesture, session, fake_clock):
        gesture.press()
        await fake_clock.advance(0.1)

        assert await gesture.release() is False
        session.begin_press.assert_called_once()
        session.abort_press.assert_called_once()
        session.start.assert_not_called()
        session.release.assert_not_called()
        assert gesture.pressed is False

    async def test_long_press_starts_then_releases(self, gesture, session, fake_clock):
        gesture.press()
        gesture.press()
        await fake_clock.advance(0.35)

        session.start.assert_awaited_once()
        assert await gesture.release() is True
        session.release.assert_awaited_once()
        session.abort_press.assert_not_called()
        session.begin_press.assert_called_once()

    async def test_drag_past_threshold_arms_cancel(self, gesture, session, fake_clock):
        gesture.drag(-80)
        session.set_cancelling.assert_not_called()

        gesture.press()
        await fake_clock.advance(0.35)
        gesture.drag(-80)
        gesture.drag(-20)

        assert [call.args[0] for call in session.set_cancelling.call_args_list] == [True, False]
        await gesture.release()

    async def test_release_without_press(self, gesture, session, fake_clock):
        assert await gesture.release() is False
        await fake_clock.advance(0)
        session.abort_press.assert_not_called()
