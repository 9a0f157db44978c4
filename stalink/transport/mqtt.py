"""MQTT session for the message-bus client."""

from __future__ import annotations

import asyncio
import logging
import ssl
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiomqtt
import tenacity
from transitions import Machine

from ..config.const import MQTT_TLS_MIN_VERSION
from ..config.model import RuntimeConfig
from .base import InboundSink, ReadyHook, TransportError

logger = logging.getLogger("stalink.transport.mqtt")


def configure_tls_context(config: RuntimeConfig) -> ssl.SSLContext | None:
    """Create the broker TLS context, or None when TLS is disabled."""
    if not config.tls_enabled:
        return None

    try:
        if config.mqtt_cafile:
            if not Path(config.mqtt_cafile).exists():
                raise RuntimeError(f"MQTT TLS CA file missing: {config.mqtt_cafile}")
            context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=config.mqtt_cafile)
        else:
            context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
        context.minimum_version = MQTT_TLS_MIN_VERSION
        if config.mqtt_tls_insecure:
            context.check_hostname = False
        if config.mqtt_certfile and config.mqtt_keyfile:
            context.load_cert_chain(config.mqtt_certfile, config.mqtt_keyfile)
        return context
    except (OSError, ssl.SSLError, ValueError) as exc:
        raise RuntimeError(f"TLS setup failed: {exc}") from exc


def _payload_bytes(payload: Any) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    return str(payload).encode("utf-8")


def _log_retry_attempt(retry_state: tenacity.RetryCallState) -> None:
    logger.info(
        "Reconnecting to MQTT broker (attempt %d, next wait %.2fs)...",
        retry_state.attempt_number,
        retry_state.next_action.sleep if retry_state.next_action else 0,
    )


class AiomqttTransport:
    """Broker session that subscribes to the command topics and stays up until cancelled."""

    STATE_DISCONNECTED = "disconnected"
    STATE_CONNECTING = "connecting"
    STATE_SUBSCRIBING = "subscribing"
    STATE_READY = "ready"

    if TYPE_CHECKING:
        fsm_state: str

        def dial(self) -> bool: ...
        def connected(self) -> bool: ...
        def subscribed(self) -> bool: ...
        def hang_up(self) -> bool: ...

    def __init__(self, config: RuntimeConfig) -> None:
        self.config = config
        self._client: aiomqtt.Client | None = None

        self.machine = Machine(
            model=self,
            states=[
                self.STATE_DISCONNECTED,
                self.STATE_CONNECTING,
                self.STATE_SUBSCRIBING,
                self.STATE_READY,
            ],
            initial=self.STATE_DISCONNECTED,
            model_attribute="fsm_state",
            ignore_invalid_triggers=True,
        )
        self.machine.add_transition("dial", "*", self.STATE_CONNECTING)
        self.machine.add_transition("connected", self.STATE_CONNECTING, self.STATE_SUBSCRIBING)
        self.machine.add_transition("subscribed", self.STATE_SUBSCRIBING, self.STATE_READY)
        self.machine.add_transition("hang_up", "*", self.STATE_DISCONNECTED)

    @property
    def ready(self) -> bool:
        return self.fsm_state == self.STATE_READY

    async def run(self, deliver: InboundSink, on_ready: ReadyHook | None = None) -> None:
        tls_context = configure_tls_context(self.config)
        retryer = tenacity.AsyncRetrying(
            wait=tenacity.wait_exponential(multiplier=self.config.mqtt_reconnect_delay, max=60)
            + tenacity.wait_random(0, 2),
            retry=tenacity.retry_if_exception_type((aiomqtt.MqttError, OSError, asyncio.TimeoutError)),
            before_sleep=_log_retry_attempt,
            reraise=True,
        )
        try:
            async for attempt in retryer:
                with attempt:
                    try:
                        await self._session(tls_context, deliver, on_ready)
                    except (aiomqtt.MqttError, OSError, asyncio.TimeoutError) as exc:
                        logger.error("MQTT session error: %s", exc)
                        raise
                    finally:
                        self._client = None
                        self.hang_up()
        except asyncio.CancelledError:
            logger.info("MQTT session stopping.")
            raise

    async def publish(self, topic: str, payload: bytes, *, retain: bool = False) -> None:
        client = self._client
        if client is None or not self.ready:
            raise TransportError("MQTT session is not ready")
        try:
            await client.publish(topic, payload, qos=self.config.mqtt_qos, retain=retain)
        except aiomqtt.MqttError as exc:
            raise TransportError(f"publish to {topic} failed: {exc}") from exc

    async def _session(
        self,
        tls_context: ssl.SSLContext | None,
        deliver: InboundSink,
        on_ready: ReadyHook | None,
    ) -> None:
        if not self.config.mqtt_user:
            logger.debug("Connecting to MQTT broker anonymously.")
        self.dial()
        async with aiomqtt.Client(
            hostname=self.config.mqtt_host,
            port=self.config.mqtt_port,
            username=self.config.mqtt_user or None,
            password=self.config.mqtt_pass or None,
            tls_context=tls_context,
            logger=logging.getLogger("stalink.transport.mqtt.client"),
            protocol=aiomqtt.ProtocolVersion.V5,
        ) as client:
            self.connected()
            logger.info("Connected to MQTT broker %s:%d.", self.config.mqtt_host, self.config.mqtt_port)
            for topic in self.config.mqtt_command_topics:
                await client.subscribe(topic, qos=self.config.mqtt_qos)
            self._client = client
            self.subscribed()
            logger.info("Subscribed to %d command topics.", len(self.config.mqtt_command_topics))
            if on_ready is not None:
                await on_ready()

            async for message in client.messages:
                topic = str(message.topic)
                if not topic:
                    continue
                await deliver(topic, _payload_bytes(message.payload))


__all__ = ["AiomqttTransport", "configure_tls_context"]
