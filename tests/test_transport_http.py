"""Tests for the httpx image download transport."""

from __future__ import annotations

import httpx
import pytest

from stalink.transport.base import TransportError
from stalink.transport.http import HttpxUpdateTransport

IMAGE = bytes(range(256)) * 10


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/firmware.bin":
        return httpx.Response(200, content=IMAGE)
    return httpx.Response(404)


@pytest.mark.asyncio
async def test_fetch_streams_chunks_of_configured_size(runtime_config) -> None:
    runtime_config.ota_chunk_size = 1024
    transport = HttpxUpdateTransport(runtime_config, transport=httpx.MockTransport(_handler))

    handle = await transport.begin_fetch("https://updates.example/firmware.bin")
    chunks = []
    while (chunk := await transport.read_chunk(handle)) is not None:
        chunks.append(chunk)
    await transport.close(handle)

    assert handle.content_length == len(IMAGE)
    assert [len(chunk) for chunk in chunks] == [1024, 1024, 512]
    assert b"".join(chunks) == IMAGE
    assert handle.client.is_closed


@pytest.mark.asyncio
async def test_http_error_status_becomes_transport_error(runtime_config) -> None:
    transport = HttpxUpdateTransport(runtime_config, transport=httpx.MockTransport(_handler))

    with pytest.raises(TransportError, match="404"):
        await transport.begin_fetch("https://updates.example/missing.bin")


@pytest.mark.asyncio
async def test_connection_failure_becomes_transport_error(runtime_config) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    transport = HttpxUpdateTransport(runtime_config, transport=httpx.MockTransport(refuse))

    with pytest.raises(TransportError, match="connection refused"):
        await transport.begin_fetch("https://updates.example/firmware.bin")
