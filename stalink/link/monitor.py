"""Authoritative holder of the current link state."""

from __future__ import annotations

import asyncio
import logging
import time

from .models import LinkState

logger = logging.getLogger("stalink.link.monitor")


class LinkMonitor:
    """Stores the link state and lets observers wait for a given state.

    Only the coordinator writes the state; everything else reads it.
    """

    def __init__(self, initial: LinkState = LinkState.NOT_INITIALIZED) -> None:
        self._state = initial
        self._changed_at = time.monotonic()
        self._reached = {state: asyncio.Event() for state in LinkState}
        self._reached[initial].set()

    def get_state(self) -> LinkState:
        return self._state

    @property
    def seconds_in_state(self) -> float:
        return time.monotonic() - self._changed_at

    def set_state(self, state: LinkState) -> bool:
        previous = self._state
        if previous is state:
            return False
        self._state = state
        self._changed_at = time.monotonic()
        self._reached[previous].clear()
        self._reached[state].set()
        logger.info("Link state %s -> %s", previous.value, state.value)
        return True

    async def wait_for(self, state: LinkState) -> None:
        await self._reached[state].wait()


__all__ = ["LinkMonitor"]
