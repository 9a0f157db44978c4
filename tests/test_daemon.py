"""End-to-end tests for the daemon wiring with emulated drivers."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
from pathlib import Path

import pytest
from mocks import (
    DEFAULT_CREDENTIAL,
    FakeBusTransport,
    FakeUpdateTransport,
    MemoryCredentialStore,
    MemoryImageSink,
)

from stalink.daemon import ConnectivityDaemon, build_link_drivers
from stalink.drivers import EmulatedLinkDriver, EmulatedProvisioningDriver
from stalink.firmware.image import build_image
from stalink.link.coordinator import ConnectivityInitError
from stalink.link.models import LinkState


def _daemon(config, store: MemoryCredentialStore | None = None):
    link = EmulatedLinkDriver(DEFAULT_CREDENTIAL)
    provisioning = EmulatedProvisioningDriver()
    bus_transport = FakeBusTransport()
    daemon = ConnectivityDaemon(
        config,
        link_driver=link,
        provisioning_driver=provisioning,
        store=store or MemoryCredentialStore(),
        bus_transport=bus_transport,
        update_transport=FakeUpdateTransport(build_image(version="1.1.0", body=b"\x00" * 256)),
        image_sink=MemoryImageSink(),
    )
    return daemon, link, bus_transport


async def _wait_state(daemon: ConnectivityDaemon, state: LinkState) -> None:
    await asyncio.wait_for(daemon.coordinator.monitor.wait_for(state), timeout=2.0)


def test_build_link_drivers_rejects_unknown_driver(runtime_config) -> None:
    runtime_config.link_driver = "esp-idf"

    with pytest.raises(RuntimeError, match="Unsupported link_driver"):
        build_link_drivers(runtime_config)


@pytest.mark.asyncio
async def test_daemon_connects_recovers_and_cleans_up(runtime_config) -> None:
    config = dataclasses.replace(
        runtime_config,
        reconnect_short_interval=0.05,
        reconnect_long_interval=0.05,
    )
    daemon, link, bus_transport = _daemon(config)
    task = asyncio.create_task(daemon.run())
    try:
        await _wait_state(daemon, LinkState.CONNECTED)
        await asyncio.wait_for(bus_transport.ready.wait(), timeout=1.0)
        assert daemon.update_agent.running

        status_path = Path(config.status_file)
        for _ in range(100):
            if status_path.exists():
                break
            await asyncio.sleep(0.01)
        assert status_path.exists()

        await link.drop()
        await _wait_state(daemon, LinkState.DISCONNECTED)
        assert not daemon.bus.running
        assert not daemon.update_agent.running

        await _wait_state(daemon, LinkState.CONNECTED)
        await asyncio.wait_for(bus_transport.ready.wait(), timeout=1.0)
        assert bus_transport.runs == 2
        assert daemon.coordinator.stats.recoveries == 1
        assert daemon.snapshot()["supervisors"] == {}
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    assert not daemon.bus.running
    assert not Path(config.status_file).exists()


@pytest.mark.asyncio
async def test_daemon_aborts_when_credential_store_fails(runtime_config) -> None:
    daemon, link, _ = _daemon(runtime_config, MemoryCredentialStore(fail_load=True))

    with pytest.raises(ExceptionGroup) as info:
        await asyncio.wait_for(daemon.run(), timeout=2.0)

    assert any(isinstance(exc, ConnectivityInitError) for exc in info.value.exceptions)
    assert link.calls == []
