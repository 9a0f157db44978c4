"""Station link lifecycle: monitor, reconnection timer, provisioning and coordinator."""

from .models import Credential, LinkEvent, LinkState
from .monitor import LinkMonitor
from .reconnect import ReconnectPolicy, ReconnectScheduler
from .provisioning import ProvisioningFallback
from .coordinator import ConnectivityCoordinator, ConnectivityInitError

__all__ = [
    "ConnectivityCoordinator",
    "ConnectivityInitError",
    "Credential",
    "LinkEvent",
    "LinkMonitor",
    "LinkState",
    "ProvisioningFallback",
    "ReconnectPolicy",
    "ReconnectScheduler",
]
