"""HTTPS download of firmware images."""

from __future__ import annotations

import logging
import ssl
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from ..config.model import RuntimeConfig
from .base import TransportError

logger = logging.getLogger("stalink.transport.http")


@dataclass(slots=True)
class HttpFetch:
    url: str
    content_length: int | None
    client: httpx.AsyncClient
    response: httpx.Response
    chunks: AsyncIterator[bytes]


class HttpxUpdateTransport:
    """Streams an image over HTTP(S) in fixed-size chunks."""

    def __init__(self, config: RuntimeConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._timeout = httpx.Timeout(config.ota_timeout)
        self._chunk_size = config.ota_chunk_size
        self._cafile = config.ota_cafile
        self._transport = transport

    def _verify(self) -> ssl.SSLContext | bool:
        if self._cafile:
            return ssl.create_default_context(cafile=self._cafile)
        return True

    async def begin_fetch(self, url: str) -> HttpFetch:
        try:
            client = httpx.AsyncClient(timeout=self._timeout, verify=self._verify(), transport=self._transport)
        except (OSError, ssl.SSLError) as exc:
            raise TransportError(f"TLS setup for {url} failed: {exc}") from exc
        try:
            response = await client.send(client.build_request("GET", url), stream=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            await client.aclose()
            raise TransportError(f"GET {url} failed: {exc}") from exc

        length_header = response.headers.get("content-length")
        content_length = int(length_header) if length_header and length_header.isdigit() else None
        logger.info("Downloading firmware from %s (%s bytes).", url, content_length or "unknown")
        return HttpFetch(
            url=url,
            content_length=content_length,
            client=client,
            response=response,
            chunks=response.aiter_bytes(self._chunk_size),
        )

    async def read_chunk(self, handle: HttpFetch) -> bytes | None:
        try:
            return await anext(handle.chunks)
        except StopAsyncIteration:
            return None
        except httpx.HTTPError as exc:
            raise TransportError(f"reading {handle.url} failed: {exc}") from exc

    async def close(self, handle: HttpFetch) -> None:
        await handle.response.aclose()
        await handle.client.aclose()


__all__ = ["HttpFetch", "HttpxUpdateTransport"]
