"""Marshmallow schema for RuntimeConfig validation."""

from __future__ import annotations

from typing import Any, Dict

from marshmallow import Schema, ValidationError, fields, post_load, pre_load, validate, validates_schema

from .const import (
    DEFAULT_BUS_ENQUEUE_TIMEOUT,
    DEFAULT_BUS_QUEUE_LIMIT,
    DEFAULT_CREDENTIAL_STORE_PATH,
    DEFAULT_EMULATED_ADDRESS,
    DEFAULT_EVENT_QUEUE_LIMIT,
    DEFAULT_FIRMWARE_VERSION,
    DEFAULT_LINK_DRIVER,
    DEFAULT_MQTT_COMMAND_TOPICS,
    DEFAULT_MQTT_HOST,
    DEFAULT_MQTT_PAYLOAD_MAX_BYTES,
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_QOS,
    DEFAULT_MQTT_RECONNECT_DELAY,
    DEFAULT_MQTT_STATE_DEFAULTS,
    DEFAULT_MQTT_TOPIC_MAX_BYTES,
    DEFAULT_OTA_CHUNK_SIZE,
    DEFAULT_OTA_READ_ATTEMPTS,
    DEFAULT_OTA_STAGING_PATH,
    DEFAULT_OTA_TIMEOUT,
    DEFAULT_OTA_URL,
    DEFAULT_PROVISIONING_TIMEOUT,
    DEFAULT_RECONNECT_LONG_INTERVAL,
    DEFAULT_RECONNECT_MAX_SHORT_ATTEMPTS,
    DEFAULT_RECONNECT_SHORT_INTERVAL,
    DEFAULT_STATUS_FILE,
    DEFAULT_STATUS_INTERVAL,
    DEFAULT_WIFI_SECRET,
    DEFAULT_WIFI_SSID,
    SECRET_MAX_BYTES,
    SSID_MAX_BYTES,
    SUPPORTED_LINK_DRIVERS,
)
from .model import RuntimeConfig


def _utf8_length(limit: int, name: str) -> Any:
    def _check(value: str) -> None:
        if len(value.encode("utf-8")) > limit:
            raise ValidationError(f"{name} must fit in {limit} bytes (UTF-8)")

    return _check


class RuntimeConfigSchema(Schema):
    """Declarative validation schema for stalink configuration."""

    # Station
    default_ssid = fields.Str(
        load_default=DEFAULT_WIFI_SSID,
        validate=[validate.Length(min=1), _utf8_length(SSID_MAX_BYTES, "default_ssid")],
    )
    default_secret = fields.Str(
        load_default=DEFAULT_WIFI_SECRET,
        validate=_utf8_length(SECRET_MAX_BYTES, "default_secret"),
    )
    credential_store_path = fields.Str(load_default=DEFAULT_CREDENTIAL_STORE_PATH, validate=validate.Length(min=1))
    link_driver = fields.Str(load_default=DEFAULT_LINK_DRIVER, validate=validate.OneOf(SUPPORTED_LINK_DRIVERS))
    emulated_address = fields.Str(load_default=DEFAULT_EMULATED_ADDRESS)

    # Recovery
    reconnect_short_interval = fields.Float(
        load_default=DEFAULT_RECONNECT_SHORT_INTERVAL, validate=validate.Range(min=0.1)
    )
    reconnect_long_interval = fields.Float(
        load_default=DEFAULT_RECONNECT_LONG_INTERVAL, validate=validate.Range(min=0.1)
    )
    reconnect_max_short_attempts = fields.Int(
        load_default=DEFAULT_RECONNECT_MAX_SHORT_ATTEMPTS, validate=validate.Range(min=0)
    )
    provisioning_timeout = fields.Float(load_default=DEFAULT_PROVISIONING_TIMEOUT, validate=validate.Range(min=1.0))
    event_queue_limit = fields.Int(load_default=DEFAULT_EVENT_QUEUE_LIMIT, validate=validate.Range(min=1))

    # MQTT
    mqtt_host = fields.Str(load_default=DEFAULT_MQTT_HOST, validate=validate.Length(min=1))
    mqtt_port = fields.Int(load_default=DEFAULT_MQTT_PORT, validate=validate.Range(min=1, max=65535))
    mqtt_user = fields.Str(load_default=None, allow_none=True)
    mqtt_pass = fields.Str(load_default=None, allow_none=True)
    mqtt_tls = fields.Bool(load_default=False)
    mqtt_tls_insecure = fields.Bool(load_default=False)
    mqtt_cafile = fields.Str(load_default=None, allow_none=True)
    mqtt_certfile = fields.Str(load_default=None, allow_none=True)
    mqtt_keyfile = fields.Str(load_default=None, allow_none=True)
    mqtt_qos = fields.Int(load_default=DEFAULT_MQTT_QOS, validate=validate.OneOf((0, 1, 2)))
    mqtt_command_topics = fields.List(fields.Str(validate=validate.Length(min=1)), load_default=None)
    mqtt_state_defaults = fields.Dict(
        keys=fields.Str(validate=validate.Length(min=1)),
        values=fields.Str(),
        load_default=None,
    )
    mqtt_topic_max_bytes = fields.Int(load_default=DEFAULT_MQTT_TOPIC_MAX_BYTES, validate=validate.Range(min=1))
    mqtt_payload_max_bytes = fields.Int(load_default=DEFAULT_MQTT_PAYLOAD_MAX_BYTES, validate=validate.Range(min=1))
    mqtt_reconnect_delay = fields.Int(load_default=DEFAULT_MQTT_RECONNECT_DELAY, validate=validate.Range(min=1))
    bus_queue_limit = fields.Int(load_default=DEFAULT_BUS_QUEUE_LIMIT, validate=validate.Range(min=1))
    bus_enqueue_timeout = fields.Float(load_default=DEFAULT_BUS_ENQUEUE_TIMEOUT, validate=validate.Range(min=0.01))

    # Firmware update
    ota_url = fields.Str(load_default=DEFAULT_OTA_URL, allow_none=True)
    ota_cafile = fields.Str(load_default=None, allow_none=True)
    ota_timeout = fields.Float(load_default=DEFAULT_OTA_TIMEOUT, validate=validate.Range(min=0.1))
    ota_chunk_size = fields.Int(load_default=DEFAULT_OTA_CHUNK_SIZE, validate=validate.Range(min=64))
    ota_read_attempts = fields.Int(load_default=DEFAULT_OTA_READ_ATTEMPTS, validate=validate.Range(min=1))
    ota_allow_same_version = fields.Bool(load_default=False)
    ota_staging_path = fields.Str(load_default=DEFAULT_OTA_STAGING_PATH, validate=validate.Length(min=1))
    firmware_version = fields.Str(load_default=DEFAULT_FIRMWARE_VERSION, validate=validate.Length(min=1, max=31))

    # System
    status_file = fields.Str(load_default=DEFAULT_STATUS_FILE)
    status_interval = fields.Int(load_default=DEFAULT_STATUS_INTERVAL, validate=validate.Range(min=1))
    debug_logging = fields.Bool(load_default=False)

    @pre_load
    def normalize_ota_url(self, data: Dict[str, Any], **kwargs: Any) -> Dict[str, Any]:
        # An empty URL disables upgrades instead of failing validation.
        if "ota_url" in data and not (data["ota_url"] or "").strip():
            data["ota_url"] = None
        return data

    @validates_schema
    def validate_tls_material(self, data: Dict[str, Any], **kwargs: Any) -> None:
        certfile = data.get("mqtt_certfile")
        keyfile = data.get("mqtt_keyfile")
        if bool(certfile) != bool(keyfile):
            raise ValidationError(
                "mqtt_certfile and mqtt_keyfile must be configured together",
                field_name="mqtt_certfile",
            )

    @validates_schema
    def validate_ota_scheme(self, data: Dict[str, Any], **kwargs: Any) -> None:
        url = data.get("ota_url")
        if url and not url.startswith(("https://", "http://")):
            raise ValidationError("ota_url must be an http(s) URL", field_name="ota_url")

    @post_load
    def make_config(self, data: Dict[str, Any], **kwargs: Any) -> RuntimeConfig:
        topics = data.pop("mqtt_command_topics", None)
        data["mqtt_command_topics"] = tuple(topics) if topics is not None else DEFAULT_MQTT_COMMAND_TOPICS
        states = data.pop("mqtt_state_defaults", None)
        data["mqtt_state_defaults"] = tuple(states.items()) if states is not None else DEFAULT_MQTT_STATE_DEFAULTS
        return RuntimeConfig(**data)


__all__ = ["RuntimeConfigSchema"]
