"""Restart-on-failure supervision for the daemon's long-running tasks."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import msgspec
import tenacity

from ..config.const import (
    SUPERVISOR_DEFAULT_MAX_BACKOFF,
    SUPERVISOR_DEFAULT_MIN_BACKOFF,
    SUPERVISOR_DEFAULT_RESTART_INTERVAL,
    SUPERVISOR_MIN_RESTART_WINDOW,
)


@dataclass(slots=True)
class SupervisedTaskSpec:
    name: str
    factory: Callable[[], Awaitable[None]]
    fatal_exceptions: tuple[type[BaseException], ...] = ()
    max_restarts: int | None = None
    restart_interval: float = SUPERVISOR_DEFAULT_RESTART_INTERVAL
    min_backoff: float = SUPERVISOR_DEFAULT_MIN_BACKOFF
    max_backoff: float = SUPERVISOR_DEFAULT_MAX_BACKOFF


class SupervisorStats(msgspec.Struct):
    restarts: int = 0
    last_failure_unix: float = 0.0
    last_exception: str | None = None
    backoff_seconds: float = 0.0
    fatal: bool = False


class SupervisorRegistry:
    """Per-task restart bookkeeping, exported in the status snapshot."""

    def __init__(self) -> None:
        self.tasks: dict[str, SupervisorStats] = {}

    def record_failure(self, name: str, *, backoff: float, exc: BaseException, fatal: bool) -> None:
        stats = self.tasks.setdefault(name, SupervisorStats())
        stats.restarts += 1
        stats.last_failure_unix = time.time()
        stats.last_exception = f"{type(exc).__name__}: {exc}"
        stats.backoff_seconds = backoff
        stats.fatal = fatal

    def mark_healthy(self, name: str) -> None:
        stats = self.tasks.setdefault(name, SupervisorStats())
        stats.backoff_seconds = 0.0
        stats.fatal = False

    def as_dict(self) -> dict[str, Any]:
        return {name: msgspec.structs.asdict(stats) for name, stats in self.tasks.items()}


class _SupervisorRetryState:
    def __init__(
        self,
        name: str,
        log: logging.Logger,
        registry: SupervisorRegistry | None,
        window: float,
    ) -> None:
        self.name = name
        self.log = log
        self.registry = registry
        self.window = window
        self.last_start_time = 0.0

    def mark_started(self) -> None:
        self.last_start_time = time.monotonic()

    def ran_long_enough(self) -> bool:
        if self.last_start_time <= 0:
            return False
        return (time.monotonic() - self.last_start_time) > self.window

    def before_sleep(self, retry_state: tenacity.RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        self.log.error("%s failed (%s); restarting in %.1fs", self.name, exc, delay)

    def after(self, retry_state: tenacity.RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if self.registry is None or exc is None:
            return
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        self.registry.record_failure(self.name, backoff=delay, exc=exc, fatal=retry_state.next_action is None)


async def supervise_task(
    name: str,
    coro_factory: Callable[[], Awaitable[None]],
    *,
    fatal_exceptions: tuple[type[BaseException], ...] = (),
    min_backoff: float = SUPERVISOR_DEFAULT_MIN_BACKOFF,
    max_backoff: float = SUPERVISOR_DEFAULT_MAX_BACKOFF,
    registry: SupervisorRegistry | None = None,
    max_restarts: int | None = None,
    restart_interval: float = SUPERVISOR_DEFAULT_RESTART_INTERVAL,
    logger: logging.Logger | None = None,
) -> None:
    """Run *coro_factory*, restarting it with exponential backoff when it fails.

    ``fatal_exceptions`` propagate immediately. A task that ran longer than
    ``restart_interval`` before failing gets a fresh backoff budget.
    """
    log = logger or logging.getLogger("stalink.supervisor")
    helper = _SupervisorRetryState(name, log, registry, max(SUPERVISOR_MIN_RESTART_WINDOW, restart_interval))

    while True:
        retryer = tenacity.AsyncRetrying(
            wait=tenacity.wait_exponential(multiplier=min_backoff, max=max_backoff),
            retry=tenacity.retry_if_not_exception_type(
                (asyncio.CancelledError, SystemExit, KeyboardInterrupt, GeneratorExit) + fatal_exceptions
            ),
            stop=tenacity.stop_after_attempt(max_restarts + 1) if max_restarts is not None else tenacity.stop_never,
            before_sleep=helper.before_sleep,
            after=helper.after,
            reraise=True,
        )
        try:
            async for attempt in retryer:
                with attempt:
                    helper.mark_started()
                    await coro_factory()
                    log.warning("%s task exited cleanly; supervisor exiting", name)
                    if registry is not None:
                        registry.mark_healthy(name)
                    return
        except asyncio.CancelledError:
            log.debug("%s supervisor cancelled", name)
            raise
        except fatal_exceptions as exc:
            log.critical("%s failed with fatal exception: %s", name, exc)
            if registry is not None:
                registry.record_failure(name, backoff=0.0, exc=exc, fatal=True)
            raise
        except Exception:
            if helper.ran_long_enough():
                log.info("%s was healthy long enough; resetting backoff", name)
                if registry is not None:
                    registry.mark_healthy(name)
                continue
            log.error("%s exceeded max restarts (%s); giving up", name, max_restarts)
            raise


__all__ = ["SupervisedTaskSpec", "SupervisorRegistry", "SupervisorStats", "supervise_task"]
