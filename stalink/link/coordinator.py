"""Connectivity coordinator: the single owner of link-lifecycle transitions.

Every input (station events, provisioning events, timer expiries and
public requests) is posted to one bounded queue and applied in order by
:meth:`ConnectivityCoordinator.run`. Nothing else mutates the link state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Protocol

from transitions import Machine

from ..config.model import RuntimeConfig
from ..drivers.base import (
    CredentialStore,
    CredentialStoreError,
    LinkDriver,
    LinkDriverError,
    ProvisioningDriver,
)
from ..services.update import UpgradeResult
from .models import (
    ApplyCredential,
    ConnectivityStats,
    Credential,
    CredentialReceived,
    ExchangeComplete,
    InitRequested,
    IpAcquired,
    LinkDown,
    LinkEvent,
    LinkState,
    LinkUp,
    MalformedCredentialError,
    ProvisioningTimeout,
    RetryNow,
    event_name,
    log_truncation,
)
from .monitor import LinkMonitor
from .provisioning import ProvisioningFallback
from .reconnect import ReconnectPolicy, ReconnectScheduler, SleepFn

logger = logging.getLogger("stalink.link.coordinator")


class ConnectivityInitError(RuntimeError):
    """Raised when connectivity cannot be brought up at all; the daemon must exit."""


class ServiceLifecycle(Protocol):
    async def on_link_connected(self) -> None: ...

    async def on_link_lost(self) -> None: ...

    def request_upgrade(self) -> UpgradeResult: ...

    def snapshot(self) -> dict[str, Any]: ...


_QueueItem = tuple[LinkEvent, "asyncio.Future[Any] | None"]


class ConnectivityCoordinator:
    """Drives the link state machine and its recovery paths."""

    STATE_IDLE = "idle"
    STATE_CONNECTING = "connecting"
    STATE_CONNECTED = "connected"
    STATE_DISCONNECTED = "disconnected"

    _LINK_STATES = {
        STATE_IDLE: LinkState.NOT_INITIALIZED,
        STATE_CONNECTING: LinkState.CONNECTING,
        STATE_CONNECTED: LinkState.CONNECTED,
        STATE_DISCONNECTED: LinkState.DISCONNECTED,
    }

    if TYPE_CHECKING:
        fsm_state: str

        def begin_connecting(self) -> bool: ...
        def station_started(self) -> bool: ...
        def address_acquired(self) -> bool: ...
        def link_lost(self) -> bool: ...
        def retry_connect(self) -> bool: ...
        def connect_failed(self) -> bool: ...
        def credential_applied(self) -> bool: ...

    def __init__(
        self,
        config: RuntimeConfig,
        *,
        link_driver: LinkDriver,
        provisioning_driver: ProvisioningDriver,
        store: CredentialStore,
        services: ServiceLifecycle,
        monitor: LinkMonitor | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.config = config
        self.stats = ConnectivityStats()
        self.monitor = monitor or LinkMonitor()
        self._link = link_driver
        self._store = store
        self._services = services
        self._queue: asyncio.Queue[_QueueItem] = asyncio.Queue(maxsize=config.event_queue_limit)
        self._active_credential: Credential | None = None
        self._in_outage = False
        self._pending_leave = False
        self.last_event: str | None = None

        self.scheduler = ReconnectScheduler(
            ReconnectPolicy(
                short_interval=config.reconnect_short_interval,
                long_interval=config.reconnect_long_interval,
                max_short_attempts=config.reconnect_max_short_attempts,
            ),
            self.request_reconnect_now,
            sleep=sleep,
            stats=self.stats,
        )
        self.provisioning = ProvisioningFallback(
            provisioning_driver,
            self._report_provisioning_timeout,
            sleep=sleep,
            stats=self.stats,
        )

        self.state_machine = Machine(
            model=self,
            states=list(self._LINK_STATES),
            initial=self.STATE_IDLE,
            ignore_invalid_triggers=True,
            model_attribute="fsm_state",
            after_state_change="_publish_link_state",
        )
        self.state_machine.add_transition(
            trigger="begin_connecting", source=self.STATE_IDLE, dest=self.STATE_CONNECTING
        )
        self.state_machine.add_transition(
            trigger="station_started",
            source=[self.STATE_CONNECTING, self.STATE_DISCONNECTED],
            dest=self.STATE_CONNECTING,
        )
        self.state_machine.add_transition(
            trigger="address_acquired",
            source=[self.STATE_CONNECTING, self.STATE_CONNECTED],
            dest=self.STATE_CONNECTED,
        )
        self.state_machine.add_transition(
            trigger="link_lost",
            source=[self.STATE_CONNECTING, self.STATE_CONNECTED],
            dest=self.STATE_DISCONNECTED,
        )
        self.state_machine.add_transition(
            trigger="retry_connect", source=self.STATE_DISCONNECTED, dest=self.STATE_CONNECTING
        )
        self.state_machine.add_transition(
            trigger="connect_failed", source=self.STATE_CONNECTING, dest=self.STATE_DISCONNECTED
        )
        self.state_machine.add_transition(
            trigger="credential_applied",
            source=[self.STATE_CONNECTING, self.STATE_CONNECTED, self.STATE_DISCONNECTED],
            dest=self.STATE_CONNECTING,
        )

        link_driver.attach(self.post)
        provisioning_driver.attach(self.post)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def init_connectivity(self, default_credential: Credential) -> bool:
        """Bring the station up with the stored credential, or the default one.

        Raises :class:`ConnectivityInitError` when the credential store or
        the station interface is unusable.
        """
        return await self._request(InitRequested(credential=default_credential))

    def get_link_state(self) -> LinkState:
        return self.monitor.get_state()

    async def request_reconnect_now(self) -> None:
        """Ask for an immediate reconnect; honoured only while disconnected."""
        await self.post(RetryNow())

    async def apply_new_credential(self, credential: Credential) -> bool:
        """Persist and apply ``credential``, then reconnect with it.

        Returns False when the credential could not be persisted or
        applied; the current link is left untouched in that case.
        """
        return await self._request(ApplyCredential(credential=credential))

    def request_upgrade(self) -> UpgradeResult:
        if self.monitor.get_state() is not LinkState.CONNECTED:
            logger.warning("Upgrade request rejected: link is %s.", self.monitor.get_state().value)
            return UpgradeResult.REJECTED
        return self._services.request_upgrade()

    async def post(self, event: LinkEvent) -> None:
        await self._queue.put((event, None))

    def post_nowait(self, event: LinkEvent) -> bool:
        try:
            self._queue.put_nowait((event, None))
        except asyncio.QueueFull:
            self.stats.events_dropped += 1
            logger.error("Link event queue full; dropping %s.", event_name(event))
            return False
        return True

    async def join(self) -> None:
        """Wait until every queued event has been applied."""
        await self._queue.join()

    def snapshot(self) -> dict[str, Any]:
        credential = self._active_credential
        return {
            "link_state": self.monitor.get_state().value,
            "seconds_in_state": round(self.monitor.seconds_in_state, 3),
            "ssid": credential.ssid if credential else None,
            "last_event": self.last_event,
            "queue_depth": self._queue.qsize(),
            "reconnect": {
                "running": self.scheduler.running,
                "attempt_counter": self.scheduler.policy.attempt_counter,
            },
            "provisioning": self.provisioning.snapshot(),
            "services": self._services.snapshot(),
            "stats": self.stats.as_dict(),
        }

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Apply queued events one at a time until cancelled."""
        while True:
            event, reply = await self._queue.get()
            try:
                result = await self._dispatch(event)
            except ConnectivityInitError as exc:
                if reply is None:
                    raise
                if not reply.done():
                    reply.set_exception(exc)
            except Exception as exc:
                if reply is not None and not reply.done():
                    reply.set_exception(exc)
                raise
            else:
                if reply is not None and not reply.done():
                    reply.set_result(result)
            finally:
                self._queue.task_done()

    async def _request(self, event: LinkEvent) -> Any:
        reply: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        await self._queue.put((event, reply))
        return await reply

    async def _dispatch(self, event: LinkEvent) -> Any:
        self.last_event = event_name(event)
        logger.debug("Applying %s in state %s", self.last_event, self.fsm_state)
        match event:
            case InitRequested(credential=credential):
                return await self._on_init(credential)
            case LinkUp():
                await self._on_station_started()
            case IpAcquired(address=address):
                await self._on_address_acquired(address)
            case LinkDown(reason=reason):
                await self._on_link_down(reason)
            case RetryNow():
                await self._on_retry()
            case CredentialReceived():
                credential = self.provisioning.accept_credential(event)
                if credential is not None and not await self._apply(credential, "provisioning"):
                    self.provisioning.reject_credential()
            case ExchangeComplete():
                await self.provisioning.complete()
            case ProvisioningTimeout(session_id=session_id):
                logger.info(
                    "Provisioning session %d expired; recovery continues on the reconnect timer.",
                    session_id,
                )
            case ApplyCredential(credential=credential):
                return await self._on_apply_request(credential)
            case _:
                logger.warning("Ignoring unknown link event %r", event)
        return None

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _on_init(self, default_credential: Credential) -> bool:
        if self.fsm_state != self.STATE_IDLE:
            logger.warning("Connectivity already initialised; ignoring init request.")
            return False
        try:
            stored = await self._store.load()
        except CredentialStoreError as exc:
            raise ConnectivityInitError(f"credential store unavailable: {exc}") from exc

        if stored is not None:
            logger.info("Using stored credential for %s.", stored.describe())
            candidate = stored
        else:
            logger.info("No stored credential; using default %s.", default_credential.describe())
            candidate = default_credential
        try:
            credential = self._bound(candidate, "Initial")
        except MalformedCredentialError as exc:
            raise ConnectivityInitError(f"initial credential unusable: {exc}") from exc

        self.begin_connecting()
        try:
            await self._link.reconfigure(credential)
        except LinkDriverError as exc:
            raise ConnectivityInitError(f"station rejected configuration: {exc}") from exc
        self._active_credential = credential
        await self._issue_connect()
        return True

    async def _on_station_started(self) -> None:
        if self.station_started():
            await self._issue_connect()

    async def _on_address_acquired(self, address: str) -> None:
        if not self.address_acquired():
            logger.debug("Ignoring address %s in state %s.", address, self.fsm_state)
            return
        logger.info("Station connected with address %s.", address)
        self._pending_leave = False
        if self._in_outage:
            self.stats.recoveries += 1
        self._in_outage = False
        self.scheduler.stop()
        self.scheduler.policy.reset()
        await self.provisioning.stop()
        await self._services.on_link_connected()

    async def _on_link_down(self, reason: str) -> None:
        previous = self.fsm_state
        pending_leave, self._pending_leave = self._pending_leave, False
        if pending_leave and previous == self.STATE_CONNECTING:
            logger.debug("Station left the old access point (%s).", reason)
            return
        if self.link_lost():
            if previous == self.STATE_CONNECTED:
                self.stats.link_losses += 1
                logger.warning("Station link lost (%s).", reason)
            else:
                self.stats.connect_failures += 1
                logger.warning("Connect attempt failed (%s).", reason)
            await self._enter_disconnected()
        elif previous == self.STATE_DISCONNECTED:
            logger.debug("Link still down (%s).", reason)
        else:
            logger.debug("Ignoring link-down (%s) in state %s.", reason, previous)

    async def _on_retry(self) -> None:
        if not self.retry_connect():
            logger.debug("Reconnect request ignored in state %s.", self.fsm_state)
            return
        logger.info("Retrying station connect.")
        await self._issue_connect()

    async def _on_apply_request(self, credential: Credential) -> bool:
        try:
            bounded = self._bound(credential, "Requested")
        except MalformedCredentialError as exc:
            logger.error("Rejecting credential: %s", exc)
            return False
        return await self._apply(bounded, "requested")

    async def _apply(self, credential: Credential, source: str) -> bool:
        if self.fsm_state == self.STATE_IDLE:
            logger.warning("Cannot apply %s credential before connectivity is initialised.", source)
            return False
        try:
            saved = await self._store.save(credential)
        except CredentialStoreError as exc:
            logger.critical("Credential store unavailable (%s); %s credential not applied.", exc, source)
            saved = False
        if not saved:
            self.stats.credential_store_failures += 1
            logger.critical(
                "Failed to persist %s credential for %s; keeping the current link.",
                source,
                credential.describe(),
            )
            return False

        leaving = self.fsm_state == self.STATE_CONNECTED
        if self.fsm_state in (self.STATE_CONNECTED, self.STATE_CONNECTING):
            try:
                # A reported leave is the requested disconnect, not an outage.
                self._pending_leave = await self._link.disconnect() and leaving
            except LinkDriverError as exc:
                logger.warning("Station disconnect before reconfigure failed: %s", exc)
        if leaving:
            await self._services.on_link_lost()
        try:
            await self._link.reconfigure(credential)
        except LinkDriverError as exc:
            logger.error("Station rejected %s credential for %s: %s", source, credential.describe(), exc)
            return False

        self._active_credential = credential
        self.stats.credentials_applied += 1
        logger.info("Applied %s credential for %s.", source, credential.describe())
        self.credential_applied()
        await self._issue_connect()
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _issue_connect(self) -> None:
        self.stats.connect_attempts += 1
        try:
            await self._link.connect()
        except LinkDriverError as exc:
            self.stats.connect_failures += 1
            logger.error("Station connect failed: %s", exc)
            if self.connect_failed():
                await self._enter_disconnected()

    async def _enter_disconnected(self) -> None:
        new_outage = not self._in_outage
        self._in_outage = True
        await self._services.on_link_lost()
        self.scheduler.start()
        if new_outage:
            # One provisioning window per outage; a timed-out window is not reopened by retries.
            await self.provisioning.start(self.config.provisioning_timeout)

    async def _report_provisioning_timeout(self, session_id: int) -> None:
        await self.post(ProvisioningTimeout(session_id=session_id))

    def _bound(self, credential: Credential, source: str) -> Credential:
        bounded, truncated = Credential.bounded(credential.ssid, credential.secret, credential.bssid)
        if truncated:
            self.stats.credential_truncations += len(truncated)
            log_truncation(logger, bounded, truncated, source)
        return bounded

    def _publish_link_state(self) -> None:
        self.monitor.set_state(self._LINK_STATES[self.fsm_state])


__all__ = ["ConnectivityCoordinator", "ConnectivityInitError", "ServiceLifecycle"]
