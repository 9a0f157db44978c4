"""Periodic status snapshot writer."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any

import msgspec

from .. import __version__

logger = logging.getLogger("stalink.status")

SnapshotFn = Callable[[], dict[str, Any]]


async def status_writer(snapshot: SnapshotFn, path: str | Path, interval: float) -> None:
    """Write ``snapshot()`` as JSON to ``path`` every ``interval`` seconds."""

    target = Path(path)
    while True:
        payload = dict(snapshot())
        payload["version"] = __version__
        payload["heartbeat_unix"] = time.time()
        write_task = asyncio.create_task(asyncio.to_thread(write_status_file, target, payload))
        try:
            await asyncio.shield(write_task)
        except asyncio.CancelledError:
            # Let an in-flight write finish so the file is never left half-renamed.
            await write_task
            logger.info("Status writer task cancelled.")
            raise
        await asyncio.sleep(interval)


def write_status_file(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with NamedTemporaryFile("wb", dir=path.parent, prefix=f".{path.name}.", delete=False) as handle:
        handle.write(msgspec.json.encode(payload))
        temp_name = handle.name
    Path(temp_name).replace(path)


def cleanup_status_file(path: str | Path) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        logger.debug("Ignoring error while removing status file: %s", exc)


__all__ = ["cleanup_status_file", "status_writer", "write_status_file"]
