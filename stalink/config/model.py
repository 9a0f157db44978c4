"""Data model for stalink configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .const import (
    DEFAULT_BUS_ENQUEUE_TIMEOUT,
    DEFAULT_BUS_QUEUE_LIMIT,
    DEFAULT_CREDENTIAL_STORE_PATH,
    DEFAULT_DEBUG_LOGGING,
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
    SUPPORTED_LINK_DRIVERS,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RuntimeConfig:
    """Strongly typed configuration for the daemon."""

    default_ssid: str = DEFAULT_WIFI_SSID
    default_secret: str = field(repr=False, default=DEFAULT_WIFI_SECRET)
    credential_store_path: str = DEFAULT_CREDENTIAL_STORE_PATH
    link_driver: str = DEFAULT_LINK_DRIVER
    emulated_address: str = DEFAULT_EMULATED_ADDRESS

    reconnect_short_interval: float = DEFAULT_RECONNECT_SHORT_INTERVAL
    reconnect_long_interval: float = DEFAULT_RECONNECT_LONG_INTERVAL
    reconnect_max_short_attempts: int = DEFAULT_RECONNECT_MAX_SHORT_ATTEMPTS
    provisioning_timeout: float = DEFAULT_PROVISIONING_TIMEOUT
    event_queue_limit: int = DEFAULT_EVENT_QUEUE_LIMIT

    mqtt_host: str = DEFAULT_MQTT_HOST
    mqtt_port: int = DEFAULT_MQTT_PORT
    mqtt_user: str | None = None
    mqtt_pass: str | None = field(repr=False, default=None)
    mqtt_tls: bool = False
    mqtt_tls_insecure: bool = False
    mqtt_cafile: str | None = None
    mqtt_certfile: str | None = None
    mqtt_keyfile: str | None = None
    mqtt_qos: int = DEFAULT_MQTT_QOS
    mqtt_command_topics: tuple[str, ...] = DEFAULT_MQTT_COMMAND_TOPICS
    mqtt_state_defaults: tuple[tuple[str, str], ...] = DEFAULT_MQTT_STATE_DEFAULTS
    mqtt_topic_max_bytes: int = DEFAULT_MQTT_TOPIC_MAX_BYTES
    mqtt_payload_max_bytes: int = DEFAULT_MQTT_PAYLOAD_MAX_BYTES
    mqtt_reconnect_delay: int = DEFAULT_MQTT_RECONNECT_DELAY
    bus_queue_limit: int = DEFAULT_BUS_QUEUE_LIMIT
    bus_enqueue_timeout: float = DEFAULT_BUS_ENQUEUE_TIMEOUT

    ota_url: str | None = DEFAULT_OTA_URL
    ota_cafile: str | None = None
    ota_timeout: float = DEFAULT_OTA_TIMEOUT
    ota_chunk_size: int = DEFAULT_OTA_CHUNK_SIZE
    ota_read_attempts: int = DEFAULT_OTA_READ_ATTEMPTS
    ota_allow_same_version: bool = False
    ota_staging_path: str = DEFAULT_OTA_STAGING_PATH
    firmware_version: str = DEFAULT_FIRMWARE_VERSION

    status_file: str = DEFAULT_STATUS_FILE
    status_interval: int = DEFAULT_STATUS_INTERVAL
    debug_logging: bool = DEFAULT_DEBUG_LOGGING

    @property
    def tls_enabled(self) -> bool:
        return self.mqtt_tls

    def __post_init__(self) -> None:
        if not self.default_ssid:
            raise ValueError("default_ssid must not be empty")
        if self.link_driver not in SUPPORTED_LINK_DRIVERS:
            raise ValueError(f"link_driver must be one of {', '.join(SUPPORTED_LINK_DRIVERS)}")
        self.reconnect_short_interval = self._require_positive(
            "reconnect_short_interval", self.reconnect_short_interval
        )
        self.reconnect_long_interval = self._require_positive(
            "reconnect_long_interval", self.reconnect_long_interval
        )
        if self.reconnect_max_short_attempts < 0:
            raise ValueError("reconnect_max_short_attempts must not be negative")
        self.provisioning_timeout = self._require_positive("provisioning_timeout", self.provisioning_timeout)
        self.event_queue_limit = self._require_positive("event_queue_limit", self.event_queue_limit)
        self.bus_queue_limit = self._require_positive("bus_queue_limit", self.bus_queue_limit)
        self.bus_enqueue_timeout = self._require_positive("bus_enqueue_timeout", self.bus_enqueue_timeout)
        self.ota_chunk_size = self._require_positive("ota_chunk_size", self.ota_chunk_size)
        self.ota_read_attempts = self._require_positive("ota_read_attempts", self.ota_read_attempts)
        self.mqtt_topic_max_bytes = self._require_positive("mqtt_topic_max_bytes", self.mqtt_topic_max_bytes)
        self.mqtt_payload_max_bytes = self._require_positive(
            "mqtt_payload_max_bytes", self.mqtt_payload_max_bytes
        )
        self.mqtt_command_topics = tuple(topic for topic in self.mqtt_command_topics if topic)
        self.mqtt_state_defaults = tuple((topic, value) for topic, value in self.mqtt_state_defaults if topic)
        if self.mqtt_qos not in (0, 1, 2):
            raise ValueError("mqtt_qos must be 0, 1 or 2")

        if self.reconnect_long_interval < self.reconnect_short_interval:
            logger.warning(
                "reconnect_long_interval (%.1fs) is shorter than reconnect_short_interval (%.1fs); "
                "the long tier will retry faster than the short one.",
                self.reconnect_long_interval,
                self.reconnect_short_interval,
            )
        for topic in self.mqtt_command_topics:
            if len(topic.encode("utf-8")) > self.mqtt_topic_max_bytes:
                logger.warning(
                    "Command topic %s is longer than mqtt_topic_max_bytes (%d) and will never match.",
                    topic,
                    self.mqtt_topic_max_bytes,
                )
        if not self.mqtt_tls and self.mqtt_user:
            logger.warning(
                "MQTT TLS is disabled; MQTT credentials and payloads will be sent in plaintext."
            )
        elif self.mqtt_tls and self.mqtt_tls_insecure:
            logger.warning(
                "MQTT TLS hostname verification is disabled (mqtt_tls_insecure); "
                "use only for known/self-hosted brokers."
            )

    @staticmethod
    def _require_positive(name: str, value: int | float) -> int | float:
        if value <= 0:
            raise ValueError(f"{name} must be positive")
        return value


__all__ = ["RuntimeConfig"]
