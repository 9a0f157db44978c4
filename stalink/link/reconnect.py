"""Two-tier periodic reconnection timer."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import msgspec

from .models import ConnectivityStats, NonNegativeInt

logger = logging.getLogger("stalink.link.reconnect")

SleepFn = Callable[[float], Awaitable[None]]


class ReconnectPolicy(msgspec.Struct):
    """Short/long retry tiers.

    ``max_short_attempts`` short intervals are handed out before one long
    interval, after which the counter starts over. Zero means every retry
    uses the short interval.
    """

    short_interval: float
    long_interval: float
    max_short_attempts: NonNegativeInt = 0
    attempt_counter: NonNegativeInt = 0

    def next_delay(self) -> float:
        if self.max_short_attempts == 0:
            return self.short_interval
        if self.attempt_counter < self.max_short_attempts:
            self.attempt_counter += 1
            return self.short_interval
        self.attempt_counter = 0
        return self.long_interval

    def reset(self) -> None:
        self.attempt_counter = 0


class ReconnectScheduler:
    """Periodic timer that asks the coordinator for a reconnect attempt.

    The timer never touches the link itself; each expiry only invokes
    ``request_retry`` so that every transition stays on the coordinator.
    """

    def __init__(
        self,
        policy: ReconnectPolicy,
        request_retry: Callable[[], Awaitable[None]],
        *,
        sleep: SleepFn = asyncio.sleep,
        stats: ConnectivityStats | None = None,
    ) -> None:
        self.policy = policy
        self._request_retry = request_retry
        self._sleep = sleep
        self._stats = stats if stats is not None else ConnectivityStats()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> bool:
        """Arm the timer. Returns False when it was already running."""
        if self._task is not None:
            return False
        self._task = asyncio.create_task(self._run(), name="link-reconnect-timer")
        self._stats.scheduler_starts += 1
        return True

    def stop(self) -> bool:
        """Disarm the timer. Returns False when it was not running."""
        task, self._task = self._task, None
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        self._stats.scheduler_stops += 1
        return True

    async def _run(self) -> None:
        me = asyncio.current_task()
        delay = self.policy.next_delay()
        try:
            while True:
                logger.debug("Next reconnect attempt in %.1fs", delay)
                await self._sleep(delay)
                if self._task is not me:
                    return
                self._stats.retries_fired += 1
                await self._request_retry()
                if self._task is not me:
                    return
                delay = self.policy.next_delay()
        except asyncio.CancelledError:
            logger.debug("Reconnect timer cancelled.")
            raise


__all__ = ["ReconnectPolicy", "ReconnectScheduler", "SleepFn"]
