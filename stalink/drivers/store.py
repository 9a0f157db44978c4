"""JSON file backed credential storage."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path

import msgspec

from ..link.models import Credential
from .base import CredentialStoreError

logger = logging.getLogger("stalink.drivers.store")


class FileCredentialStore:
    """Persists the last applied credential as a small JSON document.

    Writes are atomic (temporary file + rename) so a power cut never
    leaves a half-written credential behind.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    async def load(self) -> Credential | None:
        try:
            raw = await asyncio.to_thread(self._read)
        except OSError as exc:
            raise CredentialStoreError(f"cannot read {self.path}: {exc}") from exc
        if raw is None:
            return None
        try:
            return msgspec.json.decode(raw, type=Credential)
        except (msgspec.DecodeError, msgspec.ValidationError) as exc:
            logger.warning("Stored credential in %s is unreadable (%s); ignoring it.", self.path, exc)
            return None

    async def save(self, credential: Credential) -> bool:
        payload = msgspec.json.encode(credential)
        try:
            await asyncio.to_thread(self._write_atomic, payload)
        except OSError as exc:
            logger.error("Failed to persist credential to %s: %s", self.path, exc)
            return False
        return True

    def _read(self) -> bytes | None:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None

    def _write_atomic(self, payload: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "wb",
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            delete=False,
        ) as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
            temp_name = handle.name
        try:
            os.chmod(temp_name, 0o600)
            Path(temp_name).replace(self.path)
        except OSError:
            Path(temp_name).unlink(missing_ok=True)
            raise


__all__ = ["FileCredentialStore"]
