"""Optional MQTT fan-out of record events."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from typing import Any

import paho.mqtt.client as mqtt

from memo.config import MqttConfig
from memo.events import RecordEvent, RecordEventBus

LOGGER = logging.getLogger(__name__)


class MemoMqtt:
    def __init__(self, config: MqttConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self._logger = logger or LOGGER
        self._client: mqtt.Client | None = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        if not self.config.host:
            self._logger.debug("[mqtt] MQTT host not configured; record events stay local")
            return
        with self._lock:
            if self._client is not None:
                return
            client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=f"memo-voice-{self.config.topic_base}",
                clean_session=True,
            )
            if self.config.username:
                client.username_pw_set(self.config.username, self.config.password or "")
            try:
                client.connect(self.config.host, self.config.port, keepalive=30)
            except OSError as exc:
                self._logger.warning("[mqtt] Failed to connect to MQTT: %s", exc)
                return
            client.loop_start()
            self._client = client

    def disconnect(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
        if client:
            client.loop_stop()
            client.disconnect()

    def is_connected(self) -> bool:
        client = self._client
        return bool(client and client.is_connected())

    def publish(self, topic: str, payload: str, retain: bool = False, qos: int = 0) -> None:
        client = self._client
        if not client:
            return
        try:
            client.publish(topic, payload=payload, qos=qos, retain=retain)
        except (OSError, ValueError) as exc:
            self._logger.debug("[mqtt] Failed to publish MQTT message: %s", exc)


def event_payload(event: RecordEvent) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "event": event.event_type,
        "record": event.record.to_json_dict(),
    }
    if event.event_type == "revision_committed":
        payload["previous"] = event.previous.to_json_dict() if event.previous is not None else None
        payload["reason"] = event.reason
    return payload


class MqttEventPublisher:
    """Publish bus events on ``{topic_base}/records/updated|deleted|revisions``."""

    def __init__(self, mqtt_client: MemoMqtt, topic_base: str, logger: logging.Logger | None = None) -> None:
        self.mqtt = mqtt_client
        self.logger = logger or LOGGER
        base = topic_base.rstrip("/")
        self.topics = {
            "record_updated": f"{base}/records/updated",
            "record_deleted": f"{base}/records/deleted",
            "revision_committed": f"{base}/records/revisions",
        }
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self, bus: RecordEventBus) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = bus.subscribe(self.handle)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def handle(self, event: RecordEvent) -> None:
        topic = self.topics[event.event_type]
        self.mqtt.publish(topic, json.dumps(event_payload(event), ensure_ascii=False))
        self.logger.debug("[mqtt] %s -> %s", event.event_type, topic)
