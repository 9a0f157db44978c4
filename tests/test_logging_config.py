"""Tests for the logging configuration."""

import asyncio
import json
import logging
from unittest.mock import patch

from stalink.config import logging as log_mod
from stalink.config.model import RuntimeConfig
from stalink.link.models import Credential


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="stalink.link.coordinator",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="hello %s",
        args=("world",),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_renders_extras_as_json() -> None:
    record = _record(bssid=b"\xa0\xb1\xc2\xd3\xe4\xf5", digest=bytes(range(10)), custom_obj=object())

    payload = json.loads(log_mod.StructuredLogFormatter().format(record))

    assert payload["logger"] == "link.coordinator"
    assert payload["level"] == "INFO"
    assert payload["message"] == "hello world"
    assert payload["ts"].endswith("Z")
    assert payload["extra"]["bssid"] == "A0:B1:C2:D3:E4:F5"
    assert payload["extra"]["digest"] == "00 01 02 03 04 05 06 07 08 09"
    assert "object" in payload["extra"]["custom_obj"]


def test_formatter_redacts_secrets() -> None:
    record = _record(secret="hunter22", mqtt_password="pw", credential=Credential(ssid="Lab"))

    payload = json.loads(log_mod.StructuredLogFormatter().format(record))

    assert payload["extra"]["secret"] == "***"
    assert payload["extra"]["mqtt_password"] == "***"
    assert payload["extra"]["credential"]["ssid"] == "Lab"
    assert "hunter22" not in json.dumps(payload)


def test_formatter_includes_task_name() -> None:
    formatter = log_mod.StructuredLogFormatter()

    async def _run() -> dict:
        return json.loads(formatter.format(_record()))

    async def _outer() -> dict:
        return await asyncio.create_task(_run(), name="link-coordinator")

    payload = asyncio.run(_outer())
    assert payload["task"] == "link-coordinator"
    assert "task" not in json.loads(formatter.format(_record()))


def test_configure_logging_uses_syslog_socket(tmp_path) -> None:
    fake_socket = tmp_path / "log"
    fake_socket.touch()

    with patch.object(log_mod, "SYSLOG_SOCKETS", (fake_socket,)):
        with patch("stalink.config.logging.dictConfig") as mock_dict_config:
            log_mod.configure_logging(RuntimeConfig(debug_logging=True))
            mock_dict_config.assert_called_once()
            config_arg = mock_dict_config.call_args[0][0]
            assert "stalink" in config_arg["handlers"]
            assert config_arg["root"]["level"] == "DEBUG"
            assert config_arg["loggers"]["transitions"]["level"] == "DEBUG"


def test_build_handler_prefers_stream_when_requested(monkeypatch, tmp_path) -> None:
    fake_socket = tmp_path / "log"
    fake_socket.touch()
    monkeypatch.setattr(log_mod, "SYSLOG_SOCKETS", (fake_socket,))
    monkeypatch.setenv(log_mod.LOG_STREAM_ENV, "1")

    handler = log_mod._build_handler()

    assert type(handler) is logging.StreamHandler


def test_build_handler_falls_back_without_syslog(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(log_mod, "SYSLOG_SOCKETS", (tmp_path / "missing",))
    monkeypatch.delenv(log_mod.LOG_STREAM_ENV, raising=False)

    assert type(log_mod._build_handler()) is logging.StreamHandler
