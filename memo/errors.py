"""Error taxonomy for voice sessions and record sync."""

from __future__ import annotations


class MemoError(RuntimeError):
    """Base class for Memo failures that are surfaced to the user."""


class AudioUnavailable(MemoError):
    """The microphone could not be acquired (busy, missing, or denied)."""


class ConnectionFailed(MemoError):
    """The voice transport could not be opened."""


class TransportClosed(MemoError):
    """No more events will arrive on the voice transport."""


class ProtocolError(MemoError):
    """A server frame could not be parsed into a known event."""


class VoiceTimeout(MemoError):
    """No terminal event arrived before the renewable deadline."""


class SyncIncomplete(MemoError):
    """A save reached the backend but no canonical record identity came back."""
