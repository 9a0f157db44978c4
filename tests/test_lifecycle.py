"""Tests for starting and stopping link-dependent services."""

from __future__ import annotations

import asyncio

import pytest
import tenacity
from mocks import FakeBusTransport, FakeUpdateTransport, MemoryImageSink

from stalink.firmware.image import build_image
from stalink.services.bus import CommandRouter, MessageBusClient
from stalink.services.lifecycle import DependentServiceManager
from stalink.services.update import UpdateAgent, UpgradeOutcome, UpgradeResult


def _services(runtime_config, gate: asyncio.Event | None = None):
    bus_transport = FakeBusTransport()
    bus = MessageBusClient(runtime_config, bus_transport, CommandRouter())
    agent = UpdateAgent(
        runtime_config,
        FakeUpdateTransport(build_image(version="1.1.0", body=b"\x00" * 256), gate=gate),
        MemoryImageSink(),
        read_wait=tenacity.wait_none(),
    )
    return DependentServiceManager(bus, agent), bus_transport


@pytest.mark.asyncio
async def test_services_start_with_link_and_stop_on_loss(runtime_config) -> None:
    services, bus_transport = _services(runtime_config)

    await services.on_link_connected()
    await asyncio.wait_for(bus_transport.ready.wait(), timeout=1.0)
    assert services.bus.running
    assert services.update_agent.running

    await services.on_link_lost()
    assert not services.bus.running
    assert not services.update_agent.running
    assert bus_transport.cancelled == 1


@pytest.mark.asyncio
async def test_repeated_notifications_are_idempotent(runtime_config) -> None:
    services, _ = _services(runtime_config)

    await services.on_link_lost()
    await services.on_link_connected()
    await services.on_link_connected()
    assert services.bus.stats.sessions == 1

    await services.on_link_lost()
    await services.on_link_lost()
    await services.on_link_connected()
    assert services.bus.stats.sessions == 2
    await services.on_link_lost()


@pytest.mark.asyncio
async def test_link_loss_cancels_upgrade_in_progress(runtime_config) -> None:
    """Test an upgrade never outlives the link it was started on."""
    services, _ = _services(runtime_config, gate=asyncio.Event())
    await services.on_link_connected()

    assert services.request_upgrade() is UpgradeResult.ACCEPTED
    await services.on_link_lost()

    assert services.update_agent.last_outcome is UpgradeOutcome.CANCELLED
    assert not services.update_agent.busy
    assert services.request_upgrade() is UpgradeResult.REJECTED


@pytest.mark.asyncio
async def test_snapshot_combines_both_services(runtime_config) -> None:
    services, _ = _services(runtime_config)
    await services.on_link_connected()

    snapshot = services.snapshot()

    assert snapshot["message_bus"]["running"] is True
    assert snapshot["update_agent"]["running"] is True
    await services.on_link_lost()
