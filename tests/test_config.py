"""Tests for environment-driven configuration (memo/config.py)."""

from __future__ import annotations

from pathlib import Path

import pytest

from memo.config import DEFAULT_BASE_URL, MemoConfig, normalize_base_url


class TestNormalizeBaseUrl:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("https://api.example.test/", "https://api.example.test"),
            ("  http://localhost:8080//  ", "http://localhost:8080"),
            ("api.example.test", "https://api.example.test"),
            ("", ""),
            (None, ""),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_base_url(raw) == expected


class TestFromEnv:
    def test_defaults(self):
        config = MemoConfig.from_env({"MEMO_HOSTNAME": "kitchen"})

        assert config.hostname == "kitchen"
        assert config.backend.base_url == DEFAULT_BASE_URL
        assert config.backend.session_id is None
        assert config.backend.device_id == "kitchen"
        assert config.mic.command[0] == "arecord"
        assert config.mic.bytes_per_chunk == 960
        assert config.timing.min_hold_seconds == pytest.approx(0.3)
        assert config.timing.drain_interval == pytest.approx(0.12)
        assert config.timing.result_timeout == 40.0
        assert config.timing.cancel_drag_threshold == 50.0
        assert config.timing.noise_floor == pytest.approx(0.12)
        assert config.timing.auto_stop_silence == 0
        assert config.mqtt.host is None
        assert config.mqtt.topic_base == "memo/kitchen"
        assert config.store_path.name == "records.json"

    def test_overrides(self):
        config = MemoConfig.from_env(
            {
                "MEMO_HOSTNAME": "desk",
                "MEMO_BACKEND_BASE_URL": "staging.example.test/",
                "MEMO_SESSION_ID": "  sid-9  ",
                "MEMO_APP_VERSION": "2.1.0",
                "MEMO_BACKEND_VERIFY_SSL": "false",
                "MEMO_VOICE_MIC_CMD": "parecord --raw -",
                "MEMO_VOICE_MIN_HOLD_MS": "500",
                "MEMO_VOICE_RESULT_TIMEOUT_SECONDS": "15",
                "MEMO_VOICE_CANCEL_DRAG_PX": "-80",
                "MEMO_VOICE_NOISE_FLOOR": "3",
                "MEMO_VOICE_AUTO_STOP_SILENCE_MS": "1500",
                "MQTT_HOST": "broker.local",
                "MQTT_USERNAME": "memo",
                "MEMO_TOPIC_BASE": "home/memo/",
                "MEMO_STORE_PATH": "/tmp/memo/records.json",
            }
        )

        assert config.backend.base_url == "https://staging.example.test"
        assert config.backend.session_id == "sid-9"
        assert config.backend.verify_ssl is False
        assert config.mic.command == ["parecord", "--raw", "-"]
        assert config.timing.min_hold_seconds == pytest.approx(0.5)
        assert config.timing.result_timeout == 15.0
        assert config.timing.cancel_drag_threshold == 80.0
        assert config.timing.noise_floor == 1.0
        assert config.timing.auto_stop_silence == pytest.approx(1.5)
        assert config.mqtt.host == "broker.local"
        assert config.mqtt.username == "memo"
        assert config.mqtt.topic_base == "home/memo"
        assert config.store_path == Path("/tmp/memo/records.json")

    def test_invalid_numbers_fall_back(self):
        config = MemoConfig.from_env({"MEMO_HOSTNAME": "x", "MEMO_VOICE_DRAIN_MS": "soon", "MQTT_PORT": "nope"})
        assert config.timing.drain_interval == pytest.approx(0.12)
        assert config.mqtt.port == 1883


class TestCommonHeaders:
    def test_session_header_only_when_signed_in(self, backend_config):
        headers = backend_config.common_headers()
        assert headers["X-Session-Id"] == "sid-123"
        assert headers["X-App-Version"] == "1.0.0"

        signed_out = MemoConfig.from_env({"MEMO_HOSTNAME": "x"}).backend.common_headers()
        assert "X-Session-Id" not in signed_out
        assert signed_out["X-OS-Type"] == "linux"
