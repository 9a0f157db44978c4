"""Network transports (MQTT broker session, HTTP image download)."""

from .base import BusTransport, FetchHandle, InboundSink, ReadyHook, TransportError, UpdateTransport
from .http import HttpxUpdateTransport
from .mqtt import AiomqttTransport, configure_tls_context

__all__ = [
    "AiomqttTransport",
    "BusTransport",
    "FetchHandle",
    "HttpxUpdateTransport",
    "InboundSink",
    "ReadyHook",
    "TransportError",
    "UpdateTransport",
    "configure_tls_context",
]
