"""Time-bounded out-of-band credential provisioning."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable

import msgspec
from transitions import Machine

from ..drivers.base import ProvisioningDriver, ProvisioningDriverError
from .models import (
    ConnectivityStats,
    Credential,
    CredentialReceived,
    MalformedCredentialError,
    log_truncation,
)
from .reconnect import SleepFn

logger = logging.getLogger("stalink.link.provisioning")


class ProvisioningSession(msgspec.Struct):
    session_id: int
    timeout: float
    active: bool = True
    credential: Credential | None = None


class ProvisioningFallback:
    """Runs at most one provisioning session at a time.

    A session ends on the first of: an explicit :meth:`stop`, the
    protocol's exchange-complete acknowledgement, or the deadline timer.
    Timeouts are reported through ``report_timeout`` with the session id.
    """

    STATE_IDLE = "idle"
    STATE_LISTENING = "listening"
    STATE_ACKNOWLEDGING = "acknowledging"

    if TYPE_CHECKING:
        fsm_state: str

        def begin_listening(self) -> bool: ...
        def credential_recorded(self) -> bool: ...
        def credential_refused(self) -> bool: ...
        def end_session(self) -> bool: ...

    def __init__(
        self,
        driver: ProvisioningDriver,
        report_timeout: Callable[[int], Awaitable[None]],
        *,
        sleep: SleepFn = asyncio.sleep,
        stats: ConnectivityStats | None = None,
    ) -> None:
        self._driver = driver
        self._report_timeout = report_timeout
        self._sleep = sleep
        self._stats = stats if stats is not None else ConnectivityStats()
        self._session: ProvisioningSession | None = None
        self._timer: asyncio.Task[None] | None = None
        self._session_seq = 0
        self._lock = asyncio.Lock()

        self.state_machine = Machine(
            model=self,
            states=[self.STATE_IDLE, self.STATE_LISTENING, self.STATE_ACKNOWLEDGING],
            initial=self.STATE_IDLE,
            ignore_invalid_triggers=True,
            model_attribute="fsm_state",
        )
        self.state_machine.add_transition(
            trigger="begin_listening", source=self.STATE_IDLE, dest=self.STATE_LISTENING
        )
        self.state_machine.add_transition(
            trigger="credential_recorded", source=self.STATE_LISTENING, dest=self.STATE_ACKNOWLEDGING
        )
        self.state_machine.add_transition(
            trigger="credential_refused", source=self.STATE_ACKNOWLEDGING, dest=self.STATE_LISTENING
        )
        self.state_machine.add_transition(trigger="end_session", source="*", dest=self.STATE_IDLE)

    @property
    def active(self) -> bool:
        return self._session is not None and self._session.active

    @property
    def session(self) -> ProvisioningSession | None:
        return self._session

    async def start(self, timeout: float) -> bool:
        """Open a session unless one is already active."""
        async with self._lock:
            if self._session is not None:
                logger.debug("Provisioning session %d already active.", self._session.session_id)
                return False
            self._session_seq += 1
            session = ProvisioningSession(session_id=self._session_seq, timeout=timeout)
            try:
                await self._driver.start_listening(timeout)
            except ProvisioningDriverError as exc:
                logger.error("Provisioning listener failed to start: %s", exc)
                return False
            self._session = session
            self.begin_listening()
            self._timer = asyncio.create_task(
                self._expire(session), name=f"provisioning-deadline-{session.session_id}"
            )
            self._stats.provisioning_starts += 1
            logger.info("Provisioning session %d listening for %.0fs.", session.session_id, timeout)
            return True

    async def stop(self) -> bool:
        """End the active session, if any. Safe to call repeatedly."""
        return await self._stop(None)

    async def _stop(self, expected: ProvisioningSession | None) -> bool:
        async with self._lock:
            session = self._session
            if session is None or (expected is not None and session is not expected):
                return False
            # Mark inactive before any await so a racing timer sees it.
            session.active = False
            self._session = None
            timer, self._timer = self._timer, None
            if timer is not None and timer is not asyncio.current_task():
                timer.cancel()
            self.end_session()
            self._stats.provisioning_stops += 1
            try:
                await self._driver.stop_listening()
            except ProvisioningDriverError as exc:
                logger.warning("Provisioning listener did not stop cleanly: %s", exc)
            logger.info("Provisioning session %d stopped.", session.session_id)
            return True

    async def _expire(self, session: ProvisioningSession) -> None:
        await self._sleep(session.timeout)
        if not session.active:
            return
        if not await self._stop(session):
            return
        self._stats.provisioning_timeouts += 1
        logger.warning(
            "Provisioning session %d timed out after %.0fs without a credential.",
            session.session_id,
            session.timeout,
        )
        await self._report_timeout(session.session_id)

    def accept_credential(self, event: CredentialReceived) -> Credential | None:
        """Validate a credential delivered by the provisioning protocol.

        Returns the bounded credential, or None when there is no active
        session or the exchange was malformed (the session keeps running).
        """
        session = self._session
        if session is None or not session.active:
            logger.warning("Ignoring provisioned credential: no active session.")
            return None
        try:
            credential, truncated = Credential.bounded(event.ssid, event.secret, event.bssid)
        except MalformedCredentialError as exc:
            self._stats.provisioning_discarded += 1
            logger.error("Discarding malformed provisioning exchange: %s", exc)
            return None
        if truncated:
            self._stats.credential_truncations += len(truncated)
            log_truncation(logger, credential, truncated, "Provisioned")
        session.credential = credential
        self.credential_recorded()
        logger.info("Provisioning session %d received credential for %s.", session.session_id, credential.describe())
        return credential

    def reject_credential(self) -> bool:
        """Resume listening after the recorded credential could not be applied."""
        session = self._session
        if session is None or not self.credential_refused():
            return False
        session.credential = None
        self._stats.provisioning_discarded += 1
        logger.warning(
            "Provisioning session %d: credential was not applied; still listening for another.",
            session.session_id,
        )
        return True

    async def complete(self) -> bool:
        """Handle the exchange-complete acknowledgement."""
        if self.fsm_state != self.STATE_ACKNOWLEDGING:
            logger.warning("Exchange-complete received before any credential; ignoring.")
            return False
        return await self.stop()

    def snapshot(self) -> dict[str, object]:
        session = self._session
        return {
            "state": self.fsm_state,
            "session_id": session.session_id if session else None,
            "timeout": session.timeout if session else None,
        }


__all__ = ["ProvisioningFallback", "ProvisioningSession"]
