"""Destinations for a downloaded firmware image."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import IO, Protocol

from .image import ImageDescriptor

logger = logging.getLogger("stalink.firmware.sink")


class ImageSink(Protocol):
    """Where a verified image ends up. ``finalize`` makes it bootable."""

    async def begin(self, descriptor: ImageDescriptor) -> None: ...

    async def write(self, chunk: bytes) -> None: ...

    async def finalize(self) -> None: ...

    async def abort(self) -> None: ...


class FileImageSink:
    """Stages the image next to ``path`` and renames it into place on finalize.

    The running image is never touched; an aborted download only removes
    the staging file.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._handle: IO[bytes] | None = None
        self.descriptor: ImageDescriptor | None = None

    async def begin(self, descriptor: ImageDescriptor) -> None:
        if self._handle is not None:
            await self.abort()
        self.descriptor = descriptor
        self._handle = await asyncio.to_thread(self._open)

    async def write(self, chunk: bytes) -> None:
        handle = self._require_handle()
        await asyncio.to_thread(handle.write, chunk)

    async def finalize(self) -> None:
        handle = self._require_handle()
        self._handle = None
        await asyncio.to_thread(self._commit, handle)
        logger.info("Staged firmware image at %s", self.path)

    async def abort(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        await asyncio.to_thread(self._discard, handle)
        logger.info("Discarded partial firmware image.")

    def _require_handle(self) -> IO[bytes]:
        if self._handle is None:
            raise RuntimeError("image sink has no download in progress")
        return self._handle

    def _open(self) -> IO[bytes]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return tempfile.NamedTemporaryFile(
            "wb", dir=self.path.parent, prefix=f".{self.path.name}.", delete=False
        )

    def _commit(self, handle: IO[bytes]) -> None:
        handle.flush()
        os.fsync(handle.fileno())
        handle.close()
        Path(handle.name).replace(self.path)

    @staticmethod
    def _discard(handle: IO[bytes]) -> None:
        handle.close()
        Path(handle.name).unlink(missing_ok=True)


__all__ = ["FileImageSink", "ImageSink"]
