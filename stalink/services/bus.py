"""Message-bus client: broker session plus a bounded inbound command queue."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

import msgspec

from ..config.model import RuntimeConfig
from ..transport.base import BusTransport, TransportError

logger = logging.getLogger("stalink.services.bus")

CommandHandler = Callable[[str, bytes], Awaitable[None]]


class InboundCommand(msgspec.Struct, frozen=True):
    topic: str
    payload: bytes
    epoch: int
    received_at: float


class BusStats(msgspec.Struct):
    sessions: int = 0
    delivered: int = 0
    dispatched: int = 0
    dropped_overflow: int = 0
    dropped_not_running: int = 0
    discarded_on_stop: int = 0
    discarded_stale: int = 0
    handler_errors: int = 0
    truncated: int = 0
    session_failures: int = 0
    announced: int = 0


async def log_command(topic: str, payload: bytes) -> None:
    """Default handler: actuator commands are only recorded."""
    try:
        value: Any = payload.decode("utf-8")
    except UnicodeDecodeError:
        value = payload
    logger.info("Command %s = %r", topic, value)


class CommandRouter:
    """Maps command topics to handlers."""

    def __init__(self, default: CommandHandler | None = log_command) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._default = default

    @classmethod
    def for_topics(cls, topics: Iterable[str], handler: CommandHandler = log_command) -> CommandRouter:
        router = cls(default=None)
        for topic in topics:
            router.register(topic, handler)
        return router

    def register(self, topic: str, handler: CommandHandler) -> None:
        self._handlers[topic] = handler

    async def dispatch(self, topic: str, payload: bytes) -> bool:
        handler = self._handlers.get(topic, self._default)
        if handler is None:
            logger.warning("No handler for command topic %s; dropping.", topic)
            return False
        await handler(topic, payload)
        return True


class MessageBusClient:
    """Owns the broker session and the inbound queue while the link is up.

    Each :meth:`start` opens a new epoch. Commands queued under an older
    epoch are discarded rather than dispatched, so nothing received
    before a link loss is acted on afterwards.

    If the broker session task ends on its own, the client tears itself
    down and reports not running, so the next link-up starts it afresh.
    """

    def __init__(self, config: RuntimeConfig, transport: BusTransport, router: CommandRouter) -> None:
        self._transport = transport
        self._router = router
        self._queue_limit = config.bus_queue_limit
        self._enqueue_timeout = config.bus_enqueue_timeout
        self._topic_max = config.mqtt_topic_max_bytes
        self._payload_max = config.mqtt_payload_max_bytes
        self._state_defaults = config.mqtt_state_defaults
        self._queue: asyncio.Queue[InboundCommand] | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._session_task: asyncio.Task[None] | None = None
        self._epoch = 0
        self._running = False
        self.stats = BusStats()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> bool:
        """Open a broker session. Returns False when one was already running."""
        if self._running:
            return False
        self._epoch += 1
        queue: asyncio.Queue[InboundCommand] = asyncio.Queue(maxsize=self._queue_limit)
        self._queue = queue
        self._running = True
        self.stats.sessions += 1
        session = asyncio.create_task(
            self._transport.run(self.deliver, on_ready=self._announce_state),
            name=f"bus-session-{self._epoch}",
        )
        session.add_done_callback(self._on_session_done)
        self._session_task = session
        self._tasks = [
            asyncio.create_task(self._consume(queue), name=f"bus-consumer-{self._epoch}"),
            session,
        ]
        logger.info("Message bus client started (epoch %d).", self._epoch)
        return True

    async def stop(self) -> bool:
        """Tear the session down and discard anything still queued."""
        if not self._running:
            return False
        self._running = False
        self._epoch += 1
        self._session_task = None
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for task, result in zip(tasks, results):
            if isinstance(result, Exception):
                logger.warning("%s ended with %s: %s", task.get_name(), type(result).__name__, result)

        discarded = self._discard_queued()
        if discarded:
            logger.warning("Discarded %d queued command(s) after link loss.", discarded)
        logger.info("Message bus client stopped.")
        return True

    def _on_session_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled() or task is not self._session_task:
            return
        exc = task.exception()
        self.stats.session_failures += 1
        if exc is None:
            logger.error("Broker session %s ended unexpectedly; stopping message bus client.", task.get_name())
        else:
            logger.error(
                "Broker session %s failed: %s; stopping message bus client.",
                task.get_name(),
                exc,
                exc_info=exc,
            )
        self._running = False
        self._epoch += 1
        self._session_task = None
        tasks, self._tasks = self._tasks, []
        for other in tasks:
            if not other.done():
                other.cancel()
        discarded = self._discard_queued()
        if discarded:
            logger.warning("Discarded %d queued command(s) after session failure.", discarded)

    def _discard_queued(self) -> int:
        queue, self._queue = self._queue, None
        discarded = 0
        while queue is not None and not queue.empty():
            queue.get_nowait()
            queue.task_done()
            discarded += 1
        self.stats.discarded_on_stop += discarded
        return discarded

    async def _announce_state(self) -> None:
        """Publish the default actuator and sensor state once subscribed."""
        published = 0
        for topic, value in self._state_defaults:
            if await self.publish(topic, value.encode("utf-8")):
                published += 1
        self.stats.announced += published
        if self._state_defaults:
            logger.info("Published %d of %d default state topics.", published, len(self._state_defaults))

    def _bound(self, topic: str, payload: bytes) -> tuple[str, bytes]:
        raw_topic = topic.encode("utf-8")
        if len(raw_topic) > self._topic_max:
            self.stats.truncated += 1
            logger.error("Command topic is %d bytes, truncating to %d.", len(raw_topic), self._topic_max)
            topic = raw_topic[: self._topic_max].decode("utf-8", errors="ignore")
        if len(payload) > self._payload_max:
            self.stats.truncated += 1
            logger.error(
                "Command payload on %s is %d bytes, truncating to %d.",
                topic,
                len(payload),
                self._payload_max,
            )
            payload = payload[: self._payload_max]
        return topic, payload

    async def deliver(self, topic: str, payload: bytes) -> bool:
        """Queue an inbound command, waiting a bounded time for room."""
        queue = self._queue
        if not self._running or queue is None:
            self.stats.dropped_not_running += 1
            logger.warning("Dropping command on %s: bus client not running.", topic)
            return False
        topic, payload = self._bound(topic, payload)
        command = InboundCommand(topic=topic, payload=payload, epoch=self._epoch, received_at=time.monotonic())
        try:
            await asyncio.wait_for(queue.put(command), timeout=self._enqueue_timeout)
        except asyncio.TimeoutError:
            self.stats.dropped_overflow += 1
            logger.error(
                "Inbound command queue full for %.1fs; dropping command on %s.",
                self._enqueue_timeout,
                topic,
                extra={"payload": payload},
            )
            return False
        self.stats.delivered += 1
        return True

    async def publish(self, topic: str, payload: bytes, *, retain: bool = False) -> bool:
        if not self._running:
            logger.warning("Cannot publish to %s: bus client not running.", topic)
            return False
        try:
            await self._transport.publish(topic, payload, retain=retain)
        except TransportError as exc:
            logger.warning("Publish to %s failed: %s", topic, exc)
            return False
        return True

    async def _consume(self, queue: asyncio.Queue[InboundCommand]) -> None:
        while True:
            command = await queue.get()
            try:
                if command.epoch != self._epoch or not self._running:
                    self.stats.discarded_stale += 1
                    logger.warning("Discarding stale command on %s (epoch %d).", command.topic, command.epoch)
                    continue
                try:
                    if await self._router.dispatch(command.topic, command.payload):
                        self.stats.dispatched += 1
                except Exception:
                    self.stats.handler_errors += 1
                    logger.exception("Error handling command on %s", command.topic)
            finally:
                queue.task_done()

    def snapshot(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "epoch": self._epoch,
            "queue_depth": self.queue_depth,
            "stats": msgspec.structs.asdict(self.stats),
        }


__all__ = ["BusStats", "CommandRouter", "InboundCommand", "MessageBusClient", "log_command"]
