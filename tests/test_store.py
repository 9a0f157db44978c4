"""Tests for the JSON credential store."""

from __future__ import annotations

import logging
import stat

import pytest

from stalink.drivers import CredentialStoreError, FileCredentialStore
from stalink.link.models import Credential


@pytest.mark.asyncio
async def test_load_returns_none_when_nothing_stored(tmp_path) -> None:
    store = FileCredentialStore(tmp_path / "credential.json")

    assert await store.load() is None


@pytest.mark.asyncio
async def test_saved_credential_survives_reload(tmp_path) -> None:
    path = tmp_path / "nested" / "credential.json"
    credential = Credential(ssid="Workshop", secret="hunter22", bssid=bytes.fromhex("a0b1c2d3e4f5"))

    assert await FileCredentialStore(path).save(credential) is True

    assert await FileCredentialStore(path).load() == credential
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert [entry.name for entry in path.parent.iterdir()] == ["credential.json"]


@pytest.mark.asyncio
async def test_corrupt_file_is_ignored(tmp_path, caplog) -> None:
    path = tmp_path / "credential.json"
    path.write_text('{"ssid": 42}')

    with caplog.at_level(logging.WARNING, logger="stalink.drivers.store"):
        assert await FileCredentialStore(path).load() is None

    assert "unreadable" in caplog.text


@pytest.mark.asyncio
async def test_unreadable_location_raises(tmp_path) -> None:
    # A directory in place of the file makes the read fail with an OSError.
    path = tmp_path / "credential.json"
    path.mkdir()

    with pytest.raises(CredentialStoreError):
        await FileCredentialStore(path).load()


@pytest.mark.asyncio
async def test_save_failure_returns_false(tmp_path, caplog) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    store = FileCredentialStore(blocker / "credential.json")

    with caplog.at_level(logging.ERROR, logger="stalink.drivers.store"):
        assert await store.save(Credential(ssid="Lab")) is False

    assert "Failed to persist" in caplog.text
