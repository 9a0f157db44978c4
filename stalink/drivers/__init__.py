"""Station, provisioning and credential-storage drivers."""

from .base import (
    CredentialStore,
    CredentialStoreError,
    EventSink,
    LinkDriver,
    LinkDriverError,
    ProvisioningDriver,
    ProvisioningDriverError,
)
from .emulated import EmulatedLinkDriver, EmulatedProvisioningDriver
from .store import FileCredentialStore

__all__ = [
    "CredentialStore",
    "CredentialStoreError",
    "EmulatedLinkDriver",
    "EmulatedProvisioningDriver",
    "EventSink",
    "FileCredentialStore",
    "LinkDriver",
    "LinkDriverError",
    "ProvisioningDriver",
    "ProvisioningDriverError",
]
