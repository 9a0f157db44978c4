"""Starts and stops the link-dependent services as the link comes and goes."""

from __future__ import annotations

import logging
from typing import Any

from .bus import MessageBusClient
from .update import UpdateAgent, UpgradeResult

logger = logging.getLogger("stalink.services.lifecycle")


class DependentServiceManager:
    """Message-bus client and update agent, run only while the link is up."""

    def __init__(self, bus: MessageBusClient, update_agent: UpdateAgent) -> None:
        self.bus = bus
        self.update_agent = update_agent

    async def on_link_connected(self) -> None:
        started = await self.bus.start()
        started = self.update_agent.start() or started
        if started:
            logger.info("Dependent services started.")

    async def on_link_lost(self) -> None:
        # Reverse of start order.
        stopped = await self.update_agent.stop()
        stopped = await self.bus.stop() or stopped
        if stopped:
            logger.info("Dependent services stopped after link loss.")

    def request_upgrade(self) -> UpgradeResult:
        return self.update_agent.request_upgrade()

    def snapshot(self) -> dict[str, Any]:
        return {
            "message_bus": self.bus.snapshot(),
            "update_agent": self.update_agent.snapshot(),
        }


__all__ = ["DependentServiceManager"]
