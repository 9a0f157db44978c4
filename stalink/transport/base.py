"""Transport contracts used by the dependent services."""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol

InboundSink = Callable[[str, bytes], Awaitable[bool]]
ReadyHook = Callable[[], Awaitable[None]]


class TransportError(RuntimeError):
    """Network-level failure; the operation may succeed if retried later."""


class BusTransport(Protocol):
    """Session with the message broker.

    ``run`` keeps the session alive, feeding inbound commands to ``deliver``,
    until it is cancelled. ``on_ready`` is awaited each time the session has
    subscribed and can publish.
    """

    async def run(self, deliver: InboundSink, on_ready: ReadyHook | None = None) -> None: ...

    async def publish(self, topic: str, payload: bytes, *, retain: bool = False) -> None: ...


class FetchHandle(Protocol):
    url: str
    content_length: int | None


class UpdateTransport(Protocol):
    async def begin_fetch(self, url: str) -> FetchHandle: ...

    async def read_chunk(self, handle: FetchHandle) -> bytes | None:
        """Return the next chunk, or None once the body is exhausted."""
        ...

    async def close(self, handle: FetchHandle) -> None: ...


__all__ = ["BusTransport", "FetchHandle", "InboundSink", "ReadyHook", "TransportError", "UpdateTransport"]
