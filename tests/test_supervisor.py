from __future__ import annotations

import asyncio
import logging

import pytest

from stalink.services.task_supervisor import SupervisorRegistry, supervise_task


def test_supervise_task_returns_when_worker_exits(
    caplog: pytest.LogCaptureFixture,
) -> None:
    async def _run() -> None:
        caplog.set_level(logging.WARNING, logger="stalink.supervisor")

        async def worker() -> None:
            await asyncio.sleep(0.01)

        await supervise_task("status-writer", worker)

    asyncio.run(_run())
    assert "exited cleanly" in caplog.text


def test_supervise_task_propagates_fatal_exception(
    caplog: pytest.LogCaptureFixture,
) -> None:
    registry = SupervisorRegistry()

    async def _run() -> None:
        caplog.set_level(logging.CRITICAL, logger="stalink.supervisor")

        async def coordinator() -> None:
            raise LookupError("credential store unavailable")

        with pytest.raises(LookupError, match="credential store unavailable"):
            await supervise_task(
                "link-coordinator",
                coordinator,
                fatal_exceptions=(LookupError,),
                registry=registry,
            )

    asyncio.run(_run())
    assert "failed with fatal exception" in caplog.text
    assert registry.as_dict()["link-coordinator"]["fatal"] is True


def test_supervise_task_restarts_after_failure(
    caplog: pytest.LogCaptureFixture,
) -> None:
    registry = SupervisorRegistry()

    async def _run() -> None:
        caplog.set_level(logging.ERROR, logger="stalink.supervisor")
        attempts = 0

        async def flaky() -> None:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise RuntimeError("broker hiccup")
            await asyncio.sleep(0.01)

        await supervise_task(
            "flaky-worker",
            flaky,
            min_backoff=0.01,
            max_backoff=0.02,
            max_restarts=5,
            registry=registry,
        )
        assert attempts == 3

    asyncio.run(_run())
    assert "failed (broker hiccup); restarting" in caplog.text
    stats = registry.as_dict()["flaky-worker"]
    assert stats["restarts"] == 2
    assert stats["fatal"] is False


def test_supervise_task_gives_up_after_max_restarts(
    caplog: pytest.LogCaptureFixture,
) -> None:
    async def _run() -> None:
        caplog.set_level(logging.ERROR, logger="stalink.supervisor")

        async def broken() -> None:
            raise RuntimeError("broken")

        with pytest.raises(RuntimeError, match="broken"):
            await supervise_task(
                "broken-worker",
                broken,
                min_backoff=0.01,
                max_backoff=0.02,
                max_restarts=2,
                restart_interval=0.1,
            )

    asyncio.run(_run())
    assert "exceeded max restarts" in caplog.text


def test_supervise_task_propagates_cancellation() -> None:
    async def _run() -> None:
        started = asyncio.Event()

        async def forever() -> None:
            started.set()
            await asyncio.Event().wait()

        task = asyncio.create_task(supervise_task("idle", forever))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_run())
