"""
Press-to-talk voice updates for a single record

A voice update streams raw PCM from the microphone to the backend over a
websocket, receives incremental transcription and processing events, and
finally one authoritative ``update_result`` that is applied to the record.

Key modules:
- audio: Microphone capture via arecord with a noise-gated level signal
- protocol: Server event types, frame parsing, WAV header
- transport: Websocket session bound to one record id
- session: The voice update state machine and its renewable watchdog
- gesture: Press-and-hold / drag-to-cancel interpretation
"""

from __future__ import annotations

__all__ = [
    "audio",
    "protocol",
    "transport",
    "session",
    "gesture",
]
