#!/usr/bin/env python3
"""Async orchestrator for the stalink daemon.

Architecture:
    main() -> ConnectivityDaemon -> TaskGroup
        ├── link-coordinator (ConnectivityCoordinator.run)
        └── status-writer (status_writer)

The message-bus client and the update agent are not supervised here: the
coordinator starts them when the link is up and stops them when it drops.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import NoReturn

import uvloop

from .config.const import SUPERVISOR_STATUS_MAX_BACKOFF, SUPERVISOR_STATUS_RESTART_INTERVAL
from .config.logging import configure_logging
from .config.model import RuntimeConfig
from .config.settings import load_runtime_config
from .drivers import (
    CredentialStore,
    EmulatedLinkDriver,
    EmulatedProvisioningDriver,
    FileCredentialStore,
    LinkDriver,
    ProvisioningDriver,
)
from .firmware.sink import FileImageSink, ImageSink
from .link.coordinator import ConnectivityCoordinator, ConnectivityInitError
from .link.models import Credential
from .services.bus import CommandRouter, MessageBusClient
from .services.lifecycle import DependentServiceManager
from .services.task_supervisor import SupervisedTaskSpec, SupervisorRegistry, supervise_task
from .services.update import UpdateAgent
from .state.status import cleanup_status_file, status_writer
from .transport.base import BusTransport, UpdateTransport
from .transport.http import HttpxUpdateTransport
from .transport.mqtt import AiomqttTransport

logger = logging.getLogger("stalink")


def build_link_drivers(config: RuntimeConfig) -> tuple[LinkDriver, ProvisioningDriver]:
    """Instantiate the station and provisioning drivers named by ``link_driver``."""
    if config.link_driver == "emulated":
        access_point = Credential(ssid=config.default_ssid, secret=config.default_secret)
        return (
            EmulatedLinkDriver(access_point, address=config.emulated_address),
            EmulatedProvisioningDriver(),
        )
    raise RuntimeError(f"Unsupported link_driver {config.link_driver!r}")


class ConnectivityDaemon:
    """Wires the coordinator to its drivers and dependent services.

    Every collaborator can be injected; anything left out is built from
    ``config``.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        *,
        link_driver: LinkDriver | None = None,
        provisioning_driver: ProvisioningDriver | None = None,
        store: CredentialStore | None = None,
        bus_transport: BusTransport | None = None,
        update_transport: UpdateTransport | None = None,
        image_sink: ImageSink | None = None,
        router: CommandRouter | None = None,
    ) -> None:
        self.config = config
        if link_driver is None or provisioning_driver is None:
            default_link, default_provisioning = build_link_drivers(config)
            link_driver = link_driver or default_link
            provisioning_driver = provisioning_driver or default_provisioning

        self.supervisors = SupervisorRegistry()
        self.bus = MessageBusClient(
            config,
            bus_transport or AiomqttTransport(config),
            router or CommandRouter.for_topics(config.mqtt_command_topics),
        )
        self.update_agent = UpdateAgent(
            config,
            update_transport or HttpxUpdateTransport(config),
            image_sink or FileImageSink(config.ota_staging_path),
        )
        self.services = DependentServiceManager(self.bus, self.update_agent)
        self.coordinator = ConnectivityCoordinator(
            config,
            link_driver=link_driver,
            provisioning_driver=provisioning_driver,
            store=store or FileCredentialStore(config.credential_store_path),
            services=self.services,
        )

    def snapshot(self) -> dict[str, object]:
        payload = self.coordinator.snapshot()
        payload["supervisors"] = self.supervisors.as_dict()
        return payload

    async def _run_status_writer(self) -> None:
        await status_writer(self.snapshot, self.config.status_file, self.config.status_interval)

    def _setup_supervision(self) -> list[SupervisedTaskSpec]:
        return [
            SupervisedTaskSpec(
                name="link-coordinator",
                factory=self.coordinator.run,
                fatal_exceptions=(ConnectivityInitError,),
            ),
            SupervisedTaskSpec(
                name="status-writer",
                factory=self._run_status_writer,
                max_restarts=5,
                restart_interval=SUPERVISOR_STATUS_RESTART_INTERVAL,
                max_backoff=SUPERVISOR_STATUS_MAX_BACKOFF,
            ),
        ]

    async def run(self) -> None:
        """Main async entry point."""
        default_credential = Credential(ssid=self.config.default_ssid, secret=self.config.default_secret)
        try:
            async with asyncio.TaskGroup() as task_group:
                for spec in self._setup_supervision():
                    task_group.create_task(
                        supervise_task(
                            spec.name,
                            spec.factory,
                            fatal_exceptions=spec.fatal_exceptions,
                            min_backoff=spec.min_backoff,
                            max_backoff=spec.max_backoff,
                            registry=self.supervisors,
                            max_restarts=spec.max_restarts,
                            restart_interval=spec.restart_interval,
                        ),
                        name=f"supervise-{spec.name}",
                    )
                await self.coordinator.init_connectivity(default_credential)
                logger.info("Connectivity initialised; link is %s.", self.coordinator.get_link_state().value)
        except* ConnectivityInitError as exc_group:
            for group_exc in exc_group.exceptions:
                logger.critical("Connectivity could not be initialised: %s", group_exc)
            raise
        except* asyncio.CancelledError:
            logger.info("Main task cancelled; shutting down.")
        except* Exception as exc_group:
            for group_exc in exc_group.exceptions:
                logger.critical("Unhandled exception in main task group: %s", group_exc, exc_info=group_exc)
            raise
        finally:
            await self.services.on_link_lost()
            cleanup_status_file(self.config.status_file)
            logger.info("stalink daemon stopped.")


def main() -> NoReturn:  # pragma: no cover (entry point wrapper)
    try:
        config = load_runtime_config()
    except RuntimeError as exc:
        logging.basicConfig(level=logging.INFO)
        logger.critical("Startup aborted: %s", exc)
        sys.exit(1)
    configure_logging(config)
    logger.info(
        "Starting stalink daemon. Driver: %s MQTT: %s:%d",
        config.link_driver,
        config.mqtt_host,
        config.mqtt_port,
    )

    try:
        daemon = ConnectivityDaemon(config)
        asyncio.run(daemon.run(), loop_factory=uvloop.new_event_loop)
        sys.exit(0)
    except KeyboardInterrupt:
        logger.info("Daemon interrupted by user.")
        sys.exit(0)
    except RuntimeError as exc:
        logger.critical("Startup aborted due to runtime error: %s", exc)
        sys.exit(1)
    except ExceptionGroup as exc_group:
        for group_exc in exc_group.exceptions:
            logger.critical("Fatal error in task group: %s", group_exc, exc_info=group_exc)
        sys.exit(1)
    except OSError as exc:
        logger.critical("System/OS error during daemon execution: %s", exc, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
