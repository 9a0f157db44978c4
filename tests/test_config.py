"""Tests for configuration loading and validation."""

from __future__ import annotations

import json
import logging

import pytest

from stalink.config.const import (
    CONFIG_PATH_ENV,
    DEFAULT_MQTT_COMMAND_TOPICS,
    DEFAULT_MQTT_STATE_DEFAULTS,
    DEFAULT_WIFI_SSID,
)
from stalink.config.model import RuntimeConfig
from stalink.config.settings import load_runtime_config, resolve_config_path


def _write(tmp_path, payload) -> str:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(payload))
    return str(path)


def test_missing_file_yields_defaults(tmp_path, caplog) -> None:
    with caplog.at_level(logging.WARNING):
        config = load_runtime_config(tmp_path / "absent.json")

    assert config.default_ssid == DEFAULT_WIFI_SSID
    assert config.reconnect_short_interval == 5.0
    assert config.reconnect_long_interval == 10.0
    assert config.reconnect_max_short_attempts == 0
    assert config.mqtt_command_topics == DEFAULT_MQTT_COMMAND_TOPICS
    assert config.mqtt_state_defaults == DEFAULT_MQTT_STATE_DEFAULTS
    assert config.mqtt_topic_max_bytes == 30
    assert config.mqtt_payload_max_bytes == 30
    assert "not found" in caplog.text


def test_values_from_file_override_defaults(tmp_path) -> None:
    path = _write(
        tmp_path,
        {
            "default_ssid": "Workshop",
            "reconnect_max_short_attempts": 3,
            "reconnect_long_interval": 60,
            "mqtt_command_topics": ["/bench/led1"],
            "mqtt_state_defaults": {"/bench/led1/state": "off"},
            "mqtt_payload_max_bytes": 64,
            "ota_url": "",
        },
    )

    config = load_runtime_config(path)

    assert config.default_ssid == "Workshop"
    assert config.reconnect_max_short_attempts == 3
    assert config.reconnect_long_interval == 60.0
    assert config.mqtt_command_topics == ("/bench/led1",)
    assert config.mqtt_state_defaults == (("/bench/led1/state", "off"),)
    assert config.mqtt_payload_max_bytes == 64
    assert config.ota_url is None


def test_environment_selects_config_path(tmp_path, monkeypatch) -> None:
    path = _write(tmp_path, {"mqtt_host": "broker.lan"})
    monkeypatch.setenv(CONFIG_PATH_ENV, path)

    assert resolve_config_path() == tmp_path / "config.json"
    assert load_runtime_config().mqtt_host == "broker.lan"


@pytest.mark.parametrize(
    "payload",
    [
        {"default_ssid": "S" * 33},
        {"default_secret": "p" * 65},
        {"default_ssid": ""},
        {"reconnect_max_short_attempts": -1},
        {"mqtt_qos": 3},
        {"mqtt_topic_max_bytes": 0},
        {"mqtt_certfile": "/etc/stalink/client.crt"},
        {"ota_url": "ftp://updates.example/fw.bin"},
        {"link_driver": "esp-idf"},
        {"unexpected": True},
    ],
)
def test_invalid_values_are_rejected(tmp_path, payload) -> None:
    with pytest.raises(RuntimeError, match="Invalid configuration"):
        load_runtime_config(_write(tmp_path, payload))


def test_malformed_json_is_rejected(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json")

    with pytest.raises(RuntimeError, match="not valid JSON"):
        load_runtime_config(path)


def test_non_object_document_is_rejected(tmp_path) -> None:
    with pytest.raises(RuntimeError, match="JSON object"):
        load_runtime_config(_write(tmp_path, ["default_ssid"]))


def test_runtime_config_rejects_non_positive_intervals() -> None:
    with pytest.raises(ValueError, match="reconnect_short_interval"):
        RuntimeConfig(reconnect_short_interval=0)


def test_runtime_config_warns_when_long_tier_is_shorter(caplog) -> None:
    with caplog.at_level(logging.WARNING):
        RuntimeConfig(reconnect_short_interval=20.0, reconnect_long_interval=10.0)

    assert "shorter than reconnect_short_interval" in caplog.text


def test_runtime_config_hides_secrets_from_repr() -> None:
    config = RuntimeConfig(default_secret="hunter22", mqtt_pass="broker-pw")

    assert "hunter22" not in repr(config)
    assert "broker-pw" not in repr(config)
