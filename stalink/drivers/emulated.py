"""In-process station and provisioning drivers.

They behave like a radio in a room with one known access point and are
used by the bench daemon and by the test-suite. Every command is recorded
in ``calls`` so callers can assert on ordering.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..link.models import (
    Credential,
    CredentialReceived,
    ExchangeComplete,
    IpAcquired,
    LinkDown,
    LinkEvent,
    LinkUp,
)
from .base import EventSink, LinkDriverError, ProvisioningDriverError

logger = logging.getLogger("stalink.drivers.emulated")


class _EventSource:
    def __init__(self) -> None:
        self._sink: EventSink | None = None
        self._pending: set[asyncio.Task[None]] = set()
        self.calls: list[tuple[Any, ...]] = []

    def attach(self, sink: EventSink) -> None:
        self._sink = sink

    async def emit(self, event: LinkEvent) -> None:
        if self._sink is None:
            raise RuntimeError("driver is not attached to an event sink")
        await self._sink(event)

    def _spawn(self, *events: LinkEvent) -> None:
        # Radio callbacks arrive asynchronously; never post from the caller's task.
        task = asyncio.create_task(self._emit_all(events), name=f"{type(self).__name__}-events")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _emit_all(self, events: tuple[LinkEvent, ...]) -> None:
        await asyncio.sleep(0)
        for event in events:
            await self.emit(event)

    async def close(self) -> None:
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


class EmulatedLinkDriver(_EventSource):
    """Station interface that can reach exactly one access point.

    With ``auto_associate`` disabled, ``connect`` only records the call and
    the test drives link events by hand.
    """

    STATE_IDLE = "idle"
    STATE_ASSOCIATING = "associating"
    STATE_ASSOCIATED = "associated"

    def __init__(
        self,
        access_point: Credential | None = None,
        *,
        address: str = "192.168.4.2",
        auto_associate: bool = True,
    ) -> None:
        super().__init__()
        self.access_point = access_point
        self.address = address
        self.auto_associate = auto_associate
        self.credential: Credential | None = None
        self.radio_state = self.STATE_IDLE
        self.fail_next_connect: LinkDriverError | None = None

    async def connect(self) -> None:
        self.calls.append(("connect",))
        if self.fail_next_connect is not None:
            exc, self.fail_next_connect = self.fail_next_connect, None
            raise exc
        if self.credential is None:
            raise LinkDriverError("station is not configured")
        if not self.auto_associate or self.radio_state != self.STATE_IDLE:
            return
        self.radio_state = self.STATE_ASSOCIATING
        if self._matches(self.credential):
            self.radio_state = self.STATE_ASSOCIATED
            self._spawn(LinkUp(), IpAcquired(address=self.address))
        else:
            self.radio_state = self.STATE_IDLE
            reason = "no ap found" if self.access_point is None else "auth fail"
            self._spawn(LinkDown(reason=reason))

    async def disconnect(self) -> bool:
        self.calls.append(("disconnect",))
        if self.radio_state == self.STATE_IDLE:
            return False
        self.radio_state = self.STATE_IDLE
        if not self.auto_associate:
            return False
        self._spawn(LinkDown(reason="assoc leave"))
        return True

    async def reconfigure(self, credential: Credential) -> None:
        self.calls.append(("reconfigure", credential))
        self.credential = credential

    async def drop(self, reason: str = "beacon timeout") -> None:
        """Simulate the access point going away."""
        self.radio_state = self.STATE_IDLE
        await self.emit(LinkDown(reason=reason))

    def _matches(self, credential: Credential) -> bool:
        ap = self.access_point
        if ap is None or credential.ssid != ap.ssid or credential.secret != ap.secret:
            return False
        return credential.bssid is None or ap.bssid is None or credential.bssid == ap.bssid


class EmulatedProvisioningDriver(_EventSource):
    """Provisioning listener fed by :meth:`deliver` instead of the air."""

    def __init__(self) -> None:
        super().__init__()
        self.listening = False
        self.fail_start: ProvisioningDriverError | None = None

    async def start_listening(self, timeout: float) -> None:
        self.calls.append(("start_listening", timeout))
        if self.fail_start is not None:
            raise self.fail_start
        self.listening = True

    async def stop_listening(self) -> None:
        self.calls.append(("stop_listening",))
        self.listening = False

    async def deliver(
        self,
        ssid: str,
        secret: str,
        bssid: bytes | None = None,
        *,
        acknowledge: bool = True,
    ) -> None:
        """Push a credential as a phone app would, optionally followed by its ACK."""
        if not self.listening:
            logger.debug("Provisioning listener is off; dropping delivery for %s", ssid)
            return
        await self.emit(CredentialReceived(ssid=ssid, secret=secret, bssid=bssid))
        if acknowledge:
            await self.emit(ExchangeComplete())


__all__ = ["EmulatedLinkDriver", "EmulatedProvisioningDriver"]
