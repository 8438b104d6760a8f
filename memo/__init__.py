"""
Memo - voice-driven record updates

This is the root package for Memo's record-update core: the pieces that keep
contacts and schedules in sync with the backend while a detail view is open,
including press-to-talk voice updates streamed over a websocket.

Core modules:
- utils: Env parsing, field normalisation, async helpers, RMS
- errors: Error taxonomy shared by capture, transport, and reconciliation
- events: Record updated/deleted/revision events for the UI layer
- mqtt: Optional MQTT fan-out of record events
- records: Record models, remote API client, local store, reconciliation
- voice: PCM capture, websocket transport, and the voice update session
"""

__version__ = "0.4.2"
