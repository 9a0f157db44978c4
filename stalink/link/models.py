"""Shared types for the station link: credentials, states, events and counters."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Annotated, Any

import msgspec

from ..config.const import BSSID_LENGTH, SECRET_MAX_BYTES, SSID_MAX_BYTES

NonNegativeInt = Annotated[int, msgspec.Meta(ge=0)]


class MalformedCredentialError(ValueError):
    """Raised when a credential cannot be used at all (empty SSID, bad BSSID)."""


class LinkState(StrEnum):
    NOT_INITIALIZED = "not_initialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class Credential(msgspec.Struct, frozen=True):
    """Network credential applied to the station interface.

    ``ssid`` and ``secret`` are bounded by the radio's fixed buffers
    (32 and 64 bytes of UTF-8). Use :meth:`bounded` to build one from
    untrusted input.
    """

    ssid: str
    secret: str = ""
    bssid: bytes | None = None

    @classmethod
    def bounded(
        cls,
        ssid: str,
        secret: str,
        bssid: bytes | None = None,
    ) -> tuple[Credential, tuple[str, ...]]:
        """Clip fields to their buffers and return the credential plus clipped field names."""

        if not ssid:
            raise MalformedCredentialError("ssid is empty")
        if bssid is not None and len(bssid) != BSSID_LENGTH:
            raise MalformedCredentialError(f"bssid must be {BSSID_LENGTH} bytes, got {len(bssid)}")

        truncated: list[str] = []
        bounded_ssid, clipped = _clip_utf8(ssid, SSID_MAX_BYTES)
        if clipped:
            truncated.append("ssid")
        bounded_secret, clipped = _clip_utf8(secret, SECRET_MAX_BYTES)
        if clipped:
            truncated.append("secret")
        if not bounded_ssid:
            raise MalformedCredentialError("ssid is empty after truncation")

        credential = cls(
            ssid=bounded_ssid,
            secret=bounded_secret,
            bssid=bytes(bssid) if bssid else None,
        )
        return credential, tuple(truncated)

    def describe(self) -> str:
        if self.bssid:
            return f"{self.ssid} ({self.bssid.hex(':')})"
        return self.ssid


_FIELD_LIMITS = {"ssid": SSID_MAX_BYTES, "secret": SECRET_MAX_BYTES}


def _clip_utf8(value: str, limit: int) -> tuple[str, bool]:
    encoded = value.encode("utf-8")
    if len(encoded) <= limit:
        return value, False
    # Cut on a character boundary so the stored value stays valid UTF-8.
    return encoded[:limit].decode("utf-8", errors="ignore"), True


def log_truncation(
    logger: logging.Logger,
    credential: Credential,
    truncated: tuple[str, ...],
    source: str,
) -> None:
    for field in truncated:
        logger.error(
            "%s credential %s exceeded %d bytes and was truncated before use.",
            source,
            field,
            _FIELD_LIMITS[field],
            extra={"ssid": credential.ssid, "field": field},
        )


class LinkEvent(msgspec.Struct, frozen=True, tag=True):
    """Base class for everything posted to the coordinator's intake queue."""


class InitRequested(LinkEvent):
    credential: Credential


class LinkUp(LinkEvent):
    pass


class LinkDown(LinkEvent):
    reason: str = "unknown"


class IpAcquired(LinkEvent):
    address: str


class CredentialReceived(LinkEvent):
    ssid: str
    secret: str
    bssid: bytes | None = None


class ExchangeComplete(LinkEvent):
    pass


class ProvisioningTimeout(LinkEvent):
    session_id: int


class RetryNow(LinkEvent):
    pass


class ApplyCredential(LinkEvent):
    credential: Credential


def event_name(event: LinkEvent) -> str:
    tag = event.__struct_config__.tag
    return str(tag) if tag is not None else type(event).__name__


class ConnectivityStats(msgspec.Struct):
    """Counters published through the status snapshot."""

    connect_attempts: NonNegativeInt = 0
    connect_failures: NonNegativeInt = 0
    link_losses: NonNegativeInt = 0
    recoveries: NonNegativeInt = 0
    scheduler_starts: NonNegativeInt = 0
    scheduler_stops: NonNegativeInt = 0
    retries_fired: NonNegativeInt = 0
    provisioning_starts: NonNegativeInt = 0
    provisioning_stops: NonNegativeInt = 0
    provisioning_timeouts: NonNegativeInt = 0
    provisioning_discarded: NonNegativeInt = 0
    credentials_applied: NonNegativeInt = 0
    credential_truncations: NonNegativeInt = 0
    credential_store_failures: NonNegativeInt = 0
    events_dropped: NonNegativeInt = 0

    def as_dict(self) -> dict[str, Any]:
        return msgspec.structs.asdict(self)


__all__ = [
    "ApplyCredential",
    "ConnectivityStats",
    "Credential",
    "CredentialReceived",
    "ExchangeComplete",
    "InitRequested",
    "IpAcquired",
    "LinkDown",
    "LinkEvent",
    "LinkState",
    "LinkUp",
    "MalformedCredentialError",
    "ProvisioningTimeout",
    "RetryNow",
    "event_name",
    "log_truncation",
]
