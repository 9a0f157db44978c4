"""Over-the-air firmware update agent."""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import Any

import tenacity

from ..config.model import RuntimeConfig
from ..firmware.image import DESCRIPTOR_END, ImageDescriptor, ImageVerifier, UpgradeIntegrityError
from ..firmware.sink import ImageSink
from ..transport.base import FetchHandle, TransportError, UpdateTransport

logger = logging.getLogger("stalink.services.update")


class UpgradeResult(StrEnum):
    ACCEPTED = "accepted"
    BUSY = "busy"
    REJECTED = "rejected"


class UpgradeOutcome(StrEnum):
    SUCCEEDED = "succeeded"
    NETWORK_FAILED = "network_failed"
    INTEGRITY_FAILED = "integrity_failed"
    VERSION_REJECTED = "version_rejected"
    CANCELLED = "cancelled"


class UpgradeVersionRejected(Exception):
    """The offered image is not newer than the running firmware."""


def _log_read_retry(retry_state: tenacity.RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Firmware chunk read failed (%s); retry %d in %.1fs",
        exc,
        retry_state.attempt_number,
        retry_state.next_action.sleep if retry_state.next_action else 0.0,
    )


class UpdateAgent:
    """Downloads, verifies and stages one firmware image at a time.

    ``request_upgrade`` never blocks: it either starts a worker task and
    answers ACCEPTED, or answers BUSY/REJECTED straight away. The busy
    flag is released on every exit path of the worker.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        transport: UpdateTransport,
        sink: ImageSink,
        *,
        read_wait: tenacity.wait.wait_base | None = None,
    ) -> None:
        self._url = config.ota_url
        self._running_version = config.firmware_version
        self._allow_same_version = config.ota_allow_same_version
        self._read_attempts = config.ota_read_attempts
        self._transport = transport
        self._sink = sink
        self._read_wait = read_wait or tenacity.wait_exponential(multiplier=0.5, max=5)
        self._running = False
        self._busy = False
        self._task: asyncio.Task[None] | None = None
        self.last_outcome: UpgradeOutcome | None = None
        self.last_descriptor: ImageDescriptor | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def busy(self) -> bool:
        return self._busy

    def start(self) -> bool:
        if self._running:
            return False
        self._running = True
        logger.info("Update agent ready.")
        return True

    async def stop(self) -> bool:
        """Stop accepting requests and cancel an in-flight upgrade."""
        if not self._running:
            return False
        self._running = False
        task = self._task
        if task is not None and not task.done():
            logger.warning("Cancelling firmware upgrade in progress.")
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if self._busy:
            # Cancelled before the worker got to run.
            self._busy = False
            self.last_outcome = UpgradeOutcome.CANCELLED
        logger.info("Update agent stopped.")
        return True

    def request_upgrade(self, url: str | None = None) -> UpgradeResult:
        if not self._running:
            logger.warning("Upgrade request rejected: update agent not running.")
            return UpgradeResult.REJECTED
        target = url or self._url
        if not target:
            logger.warning("Upgrade request rejected: no image URL configured.")
            return UpgradeResult.REJECTED
        if self._busy:
            logger.info("Upgrade request refused: an upgrade is already in progress.")
            return UpgradeResult.BUSY
        self._busy = True
        self._task = asyncio.create_task(self._worker(target), name="firmware-upgrade")
        return UpgradeResult.ACCEPTED

    async def wait_idle(self) -> UpgradeOutcome | None:
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.last_outcome

    async def _worker(self, url: str) -> None:
        outcome = UpgradeOutcome.NETWORK_FAILED
        try:
            outcome = await self._upgrade(url)
        except asyncio.CancelledError:
            outcome = UpgradeOutcome.CANCELLED
            raise
        finally:
            self._busy = False
            self.last_outcome = outcome
            logger.info("Firmware upgrade finished: %s", outcome.value)

    async def _upgrade(self, url: str) -> UpgradeOutcome:
        try:
            handle = await self._transport.begin_fetch(url)
        except TransportError as exc:
            logger.warning("Firmware download could not start: %s", exc)
            return UpgradeOutcome.NETWORK_FAILED

        staged = False
        try:
            head = bytearray()
            while len(head) < DESCRIPTOR_END:
                chunk = await self._read_chunk(handle)
                if chunk is None:
                    raise UpgradeIntegrityError(f"image ended after {len(head)} bytes")
                head += chunk
            descriptor = ImageDescriptor.decode(head)
            self.last_descriptor = descriptor
            self._check_version(descriptor)

            verifier = ImageVerifier(
                expected_size=handle.content_length,
                digest_appended=descriptor.hash_appended,
            )
            await self._sink.begin(descriptor)
            staged = True
            verifier.update(bytes(head))
            await self._sink.write(bytes(head))
            while (chunk := await self._read_chunk(handle)) is not None:
                verifier.update(chunk)
                await self._sink.write(chunk)
            digest = verifier.verify()
            await self._sink.finalize()
            staged = False
        except UpgradeVersionRejected as exc:
            logger.info("Firmware upgrade skipped: %s", exc)
            return UpgradeOutcome.VERSION_REJECTED
        except UpgradeIntegrityError as exc:
            logger.error("Firmware image rejected: %s. Running image untouched.", exc)
            return UpgradeOutcome.INTEGRITY_FAILED
        except TransportError as exc:
            logger.warning("Firmware download failed: %s", exc)
            return UpgradeOutcome.NETWORK_FAILED
        except OSError as exc:
            logger.error("Firmware image could not be staged: %s", exc)
            return UpgradeOutcome.INTEGRITY_FAILED
        finally:
            if staged:
                await self._sink.abort()
            await self._transport.close(handle)

        logger.info(
            "Firmware %s staged (sha256 %s); reboot to activate.",
            descriptor.version,
            digest,
        )
        return UpgradeOutcome.SUCCEEDED

    def _check_version(self, descriptor: ImageDescriptor) -> None:
        logger.info("Offered firmware %s, running %s.", descriptor.version, self._running_version)
        if descriptor.version == self._running_version and not self._allow_same_version:
            raise UpgradeVersionRejected(f"image version {descriptor.version} is already running")

    async def _read_chunk(self, handle: FetchHandle) -> bytes | None:
        retryer = tenacity.AsyncRetrying(
            stop=tenacity.stop_after_attempt(self._read_attempts),
            wait=self._read_wait,
            retry=tenacity.retry_if_exception_type(TransportError),
            before_sleep=_log_read_retry,
            reraise=True,
        )
        async for attempt in retryer:
            with attempt:
                return await self._transport.read_chunk(handle)
        raise TransportError("read retries exhausted")

    def snapshot(self) -> dict[str, Any]:
        descriptor = self.last_descriptor
        return {
            "running": self._running,
            "busy": self._busy,
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "last_offered_version": descriptor.version if descriptor else None,
        }


__all__ = ["UpdateAgent", "UpgradeOutcome", "UpgradeResult", "UpgradeVersionRejected"]
