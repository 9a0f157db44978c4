"""Default values and fixed limits for the stalink daemon."""

from __future__ import annotations

import ssl
from typing import Final

# Station credentials
DEFAULT_WIFI_SSID: Final[str] = "QianKun_Board_Wi-Fi"
DEFAULT_WIFI_SECRET: Final[str] = "12345678"
SSID_MAX_BYTES: Final[int] = 32
SECRET_MAX_BYTES: Final[int] = 64
BSSID_LENGTH: Final[int] = 6

# Reconnection tiers
DEFAULT_RECONNECT_SHORT_INTERVAL: Final[float] = 5.0
DEFAULT_RECONNECT_LONG_INTERVAL: Final[float] = 10.0
DEFAULT_RECONNECT_MAX_SHORT_ATTEMPTS: Final[int] = 0

# Provisioning fallback
DEFAULT_PROVISIONING_TIMEOUT: Final[float] = 60.0

DEFAULT_EVENT_QUEUE_LIMIT: Final[int] = 32
DEFAULT_CREDENTIAL_STORE_PATH: Final[str] = "/etc/stalink/credential.json"
DEFAULT_LINK_DRIVER: Final[str] = "emulated"
SUPPORTED_LINK_DRIVERS: Final[tuple[str, ...]] = ("emulated",)
DEFAULT_EMULATED_ADDRESS: Final[str] = "192.168.4.2"

# Message bus
DEFAULT_MQTT_HOST: Final[str] = "47.102.193.111"
DEFAULT_MQTT_PORT: Final[int] = 1883
DEFAULT_MQTT_QOS: Final[int] = 1
DEFAULT_MQTT_RECONNECT_DELAY: Final[int] = 5
DEFAULT_MQTT_COMMAND_TOPICS: Final[tuple[str, ...]] = (
    "firstSwitchCommand",
    "secondSwitchCommand",
    "thirdSwitchCommand",
    "pumpCommand",
    "firstLightCommand",
    "secondLightCommand",
    "firstBrightnessCommand",
    "secondBrightnessCommand",
    "firstRgbCommand",
    "secondRgbCommand",
    "fanCommand",
    "fanSpeedCommand",
)
DEFAULT_MQTT_STATE_DEFAULTS: Final[tuple[tuple[str, str], ...]] = (
    ("firstSwitchState", "off"),
    ("secondSwitchState", "off"),
    ("thirdSwitchState", "off"),
    ("pumpState", "off"),
    ("firstLightState", "off"),
    ("secondLightState", "off"),
    ("firstBrightnessState", "255"),
    ("secondBrightnessState", "255"),
    ("firstRgbState", "255,255,255"),
    ("secondRgbState", "255,255,255"),
    ("fanState", "off"),
    ("fanSpeedState", "100"),
    ("firstSoilMoisture", "0.0"),
    ("secondSoilMoisture", "0.0"),
    ("thirdSoilMoisture", "0.0"),
    ("environmentMoisture", "0.0"),
    ("environmentTemp", "0.0"),
    ("atmos", "0.0"),
    ("tds", "0.0"),
)
DEFAULT_MQTT_TOPIC_MAX_BYTES: Final[int] = 30
DEFAULT_MQTT_PAYLOAD_MAX_BYTES: Final[int] = 30
MQTT_TLS_MIN_VERSION: Final[ssl.TLSVersion] = ssl.TLSVersion.TLSv1_2
DEFAULT_BUS_QUEUE_LIMIT: Final[int] = 10
DEFAULT_BUS_ENQUEUE_TIMEOUT: Final[float] = 5.0

# Firmware update
DEFAULT_OTA_URL: Final[str] = "https://192.168.2.106:8070/hello-world.bin"
DEFAULT_OTA_TIMEOUT: Final[float] = 10.0
DEFAULT_OTA_CHUNK_SIZE: Final[int] = 1024
DEFAULT_OTA_READ_ATTEMPTS: Final[int] = 3
DEFAULT_OTA_STAGING_PATH: Final[str] = "/tmp/stalink/firmware.bin"
DEFAULT_FIRMWARE_VERSION: Final[str] = "1.0.0"

# Status / logging
DEFAULT_STATUS_FILE: Final[str] = "/tmp/stalink/status.json"
DEFAULT_STATUS_INTERVAL: Final[int] = 30
DEFAULT_DEBUG_LOGGING: Final[bool] = False
DEFAULT_CONFIG_PATH: Final[str] = "/etc/stalink/config.json"
CONFIG_PATH_ENV: Final[str] = "STALINK_CONFIG"

# Task supervision
SUPERVISOR_DEFAULT_RESTART_INTERVAL: Final[float] = 60.0
SUPERVISOR_DEFAULT_MIN_BACKOFF: Final[float] = 1.0
SUPERVISOR_DEFAULT_MAX_BACKOFF: Final[float] = 30.0
SUPERVISOR_STATUS_RESTART_INTERVAL: Final[float] = 120.0
SUPERVISOR_STATUS_MAX_BACKOFF: Final[float] = 60.0
SUPERVISOR_MIN_RESTART_WINDOW: Final[float] = 10.0
