"""Pytest configuration for stalink tests."""

from __future__ import annotations

import asyncio
import importlib.util
import inspect
import logging
from pathlib import Path

import pytest

from stalink.config.model import RuntimeConfig

_HAS_PYTEST_ASYNCIO = importlib.util.find_spec("pytest_asyncio") is not None


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "asyncio: mark test to run on asyncio loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Fallback asyncio runner when pytest-asyncio is unavailable."""
    if _HAS_PYTEST_ASYNCIO:
        return None
    if "asyncio" not in pyfuncitem.keywords:
        return None
    test_function = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_function):
        return None

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        kwargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
        loop.run_until_complete(test_function(**kwargs))
    finally:
        try:
            loop.run_until_complete(loop.shutdown_asyncgens())
        except (RuntimeError, ValueError):
            pass
        loop.close()
        asyncio.set_event_loop(None)
    return True


@pytest.fixture(autouse=True)
def reset_logging_handlers():
    """Close and remove all logging handlers after each test to prevent ResourceWarnings."""
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        try:
            handler.close()
        except (OSError, RuntimeError):
            pass
        root.removeHandler(handler)


@pytest.fixture()
def runtime_config(tmp_path: Path) -> RuntimeConfig:
    return RuntimeConfig(
        credential_store_path=str(tmp_path / "credential.json"),
        reconnect_short_interval=5.0,
        reconnect_long_interval=30.0,
        reconnect_max_short_attempts=3,
        provisioning_timeout=60.0,
        event_queue_limit=16,
        mqtt_host="localhost",
        mqtt_port=1883,
        bus_queue_limit=4,
        bus_enqueue_timeout=0.05,
        mqtt_state_defaults=(),
        ota_url="https://updates.example/firmware.bin",
        ota_read_attempts=3,
        ota_staging_path=str(tmp_path / "staging" / "firmware.bin"),
        firmware_version="1.0.0",
        status_file=str(tmp_path / "status.json"),
        status_interval=1,
    )
