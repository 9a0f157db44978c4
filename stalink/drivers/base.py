"""Driver contracts for the station radio, the provisioning protocol and credential storage."""

from __future__ import annotations

from typing import TYPE_CHECKING, Awaitable, Callable, Protocol

if TYPE_CHECKING:
    from ..link.models import Credential, LinkEvent

EventSink = Callable[["LinkEvent"], Awaitable[None]]


class LinkDriverError(RuntimeError):
    """The station interface rejected a command."""


class ProvisioningDriverError(RuntimeError):
    """The provisioning listener could not be started or stopped."""


class CredentialStoreError(RuntimeError):
    """Persistent credential storage is unreachable."""


class LinkDriver(Protocol):
    """Station interface. Outcomes arrive later as events on the attached sink."""

    def attach(self, sink: EventSink) -> None: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> bool:
        """Leave the access point.

        Returns True when the station was associated and will report the
        leave as a ``LinkDown`` event.
        """
        ...

    async def reconfigure(self, credential: Credential) -> None: ...


class ProvisioningDriver(Protocol):
    """Out-of-band credential delivery (SmartConfig style)."""

    def attach(self, sink: EventSink) -> None: ...

    async def start_listening(self, timeout: float) -> None: ...

    async def stop_listening(self) -> None: ...


class CredentialStore(Protocol):
    async def load(self) -> Credential | None: ...

    async def save(self, credential: Credential) -> bool: ...


__all__ = [
    "CredentialStore",
    "CredentialStoreError",
    "EventSink",
    "LinkDriver",
    "LinkDriverError",
    "ProvisioningDriver",
    "ProvisioningDriverError",
]
