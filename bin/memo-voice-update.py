#!/usr/bin/env python3
"""Press-to-talk voice update for one contact or schedule from the terminal."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from memo.config import MemoConfig
from memo.events import RecordEventBus
from memo.mqtt import MemoMqtt, MqttEventPublisher
from memo.records.api import RecordApiError, RemoteRecordClient
from memo.records.models import RECORD_KINDS
from memo.records.reconcile import RecordReconciler
from memo.records.store import LocalRecordStore
from memo.voice.audio import PcmCapture
from memo.voice.gesture import HoldToTalkGesture
from memo.voice.session import VoiceUpdateSession
from memo.voice.transport import VoiceTransport

LOGGER = logging.getLogger("memo-voice-update")


async def _prompt(text: str) -> str:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, input, text)


async def run(kind_name: str, remote_id: str) -> int:
    config = MemoConfig.from_env()
    kind = RECORD_KINDS[kind_name]

    events = RecordEventBus()
    mqtt_client = MemoMqtt(config.mqtt)
    mqtt_client.connect()
    publisher = MqttEventPublisher(mqtt_client, config.mqtt.topic_base)
    publisher.attach(events)

    store = LocalRecordStore(config.store_path)
    store.load()
    api: RemoteRecordClient | None = None
    try:
        try:
            api = RemoteRecordClient(config.backend, kind)
        except ValueError as exc:
            LOGGER.error("Cannot reach the backend: %s", exc)
            return 1
        record = store.find_by_remote_id(remote_id)
        if record is None:
            try:
                record = await api.fetch_detail(remote_id, force_refresh=True)
            except RecordApiError as exc:
                LOGGER.error("Could not load %s %s: %s", kind.name, remote_id, exc)
                return 1
            store.insert(record)
            store.save()

        reconciler = RecordReconciler(record, store=store, api=api, events=events, kind=kind)
        session = VoiceUpdateSession(
            reconciler,
            capture=PcmCapture(config.mic, noise_floor=config.timing.noise_floor),
            transport_factory=lambda: VoiceTransport(config.backend, kind, mic=config.mic),
            timing=config.timing,
        )
        gesture = HoldToTalkGesture.for_session(session)

        await _prompt(f"Press Enter to start talking about {kind.name} {remote_id}... ")
        gesture.press()
        line = await _prompt("Recording. Press Enter to send, or type 'c' then Enter to cancel. ")
        if line.strip().lower() == "c":
            gesture.drag(-(gesture.cancel_drag_threshold + 1))
        if not await gesture.release():
            print("Press was too short; nothing recorded.")
            return 1

        result = await session.wait_closed()
        if result is None:
            return 1
        print(f"{result.outcome}: {result.message or ''}".rstrip(": "))
        if result.transcript:
            print(f"heard: {result.transcript}")
        if result.record is not None:
            for name, value in kind.field_values(result.record).items():
                if value not in (None, ""):
                    print(f"  {name}: {value}")
        return 0 if result.outcome == "updated" else 2
    finally:
        if api is not None:
            await api.close()
        publisher.detach()
        mqtt_client.disconnect()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("kind", choices=sorted(RECORD_KINDS))
    parser.add_argument("remote_id")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))
    try:
        sys.exit(asyncio.run(run(args.kind, args.remote_id)))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
