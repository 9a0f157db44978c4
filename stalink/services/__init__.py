"""Services that only run while the station link is up."""

from .bus import CommandRouter, MessageBusClient
from .lifecycle import DependentServiceManager
from .task_supervisor import SupervisedTaskSpec, SupervisorRegistry, supervise_task
from .update import UpdateAgent, UpgradeOutcome, UpgradeResult

__all__ = [
    "CommandRouter",
    "DependentServiceManager",
    "MessageBusClient",
    "SupervisedTaskSpec",
    "SupervisorRegistry",
    "UpdateAgent",
    "UpgradeOutcome",
    "UpgradeResult",
    "supervise_task",
]
