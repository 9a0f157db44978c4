"""Application image layout, descriptor parsing and integrity checks.

An image starts with a 24 byte image header, one 8 byte segment header and
the 256 byte application descriptor. When ``hash_appended`` is set the last
32 bytes of the image are the SHA-256 digest of everything before them.
"""

from __future__ import annotations

import hashlib
from typing import Any

import msgspec
from construct import (  # type: ignore
    Bytes,
    Const,
    ConstructError,
    Int8ul,
    Int16ul,
    Int32ul,
    PaddedString,
    Struct as BinStruct,
)

IMAGE_MAGIC = 0xE9
APP_DESC_MAGIC = 0xABCD5432
DIGEST_SIZE = 32

IMAGE_HEADER = BinStruct(
    "magic" / Const(IMAGE_MAGIC, Int8ul),
    "segment_count" / Int8ul,
    "spi_mode" / Int8ul,
    "spi_speed_size" / Int8ul,
    "entry_addr" / Int32ul,
    "wp_pin" / Int8ul,
    "spi_pin_drv" / Bytes(3),
    "chip_id" / Int16ul,
    "min_chip_rev" / Int8ul,
    "min_chip_rev_full" / Int16ul,
    "max_chip_rev_full" / Int16ul,
    "reserved" / Bytes(4),
    "hash_appended" / Int8ul,
)

SEGMENT_HEADER = BinStruct(
    "load_addr" / Int32ul,
    "data_len" / Int32ul,
)

APP_DESCRIPTOR = BinStruct(
    "magic_word" / Const(APP_DESC_MAGIC, Int32ul),
    "secure_version" / Int32ul,
    "reserv1" / Bytes(8),
    "version" / PaddedString(32, "utf8"),
    "project_name" / PaddedString(32, "utf8"),
    "time" / PaddedString(16, "utf8"),
    "date" / PaddedString(16, "utf8"),
    "idf_ver" / PaddedString(32, "utf8"),
    "app_elf_sha256" / Bytes(32),
    "reserv2" / Bytes(80),
)

IMAGE_PREFIX = BinStruct(
    "header" / IMAGE_HEADER,
    "segment" / SEGMENT_HEADER,
    "app" / APP_DESCRIPTOR,
)

DESCRIPTOR_END = IMAGE_PREFIX.sizeof()


class UpgradeIntegrityError(Exception):
    """The downloaded image is malformed, incomplete or fails its digest."""


class ImageDescriptor(msgspec.Struct, frozen=True):
    version: str
    project_name: str
    build_time: str
    build_date: str
    idf_version: str
    secure_version: int
    segment_count: int
    hash_appended: bool

    @classmethod
    def decode(cls, data: bytes | bytearray | memoryview) -> ImageDescriptor:
        if len(data) < DESCRIPTOR_END:
            raise UpgradeIntegrityError(
                f"image ended after {len(data)} bytes, before the application descriptor"
            )
        try:
            container: Any = IMAGE_PREFIX.parse(bytes(data[:DESCRIPTOR_END]))
        except (ConstructError, UnicodeDecodeError) as exc:
            raise UpgradeIntegrityError(f"invalid image header: {exc}") from exc
        app = container.app
        if not app.version:
            raise UpgradeIntegrityError("application descriptor carries no version")
        return cls(
            version=app.version,
            project_name=app.project_name,
            build_time=app.time,
            build_date=app.date,
            idf_version=app.idf_ver,
            secure_version=app.secure_version,
            segment_count=container.header.segment_count,
            hash_appended=bool(container.header.hash_appended),
        )


class ImageVerifier:
    """Incremental size and SHA-256 check over a streamed image."""

    def __init__(self, *, expected_size: int | None = None, digest_appended: bool = False) -> None:
        self.expected_size = expected_size
        self.digest_appended = digest_appended
        self.received = 0
        self._hash = hashlib.sha256()
        self._tail = b""

    def update(self, chunk: bytes) -> None:
        self.received += len(chunk)
        if self.expected_size is not None and self.received > self.expected_size:
            raise UpgradeIntegrityError(
                f"image larger than announced ({self.received} > {self.expected_size} bytes)"
            )
        if not self.digest_appended:
            self._hash.update(chunk)
            return
        # Hold back the last DIGEST_SIZE bytes; they may be the trailing digest.
        data = self._tail + chunk
        if len(data) > DIGEST_SIZE:
            self._hash.update(data[:-DIGEST_SIZE])
            self._tail = data[-DIGEST_SIZE:]
        else:
            self._tail = data

    def verify(self) -> str:
        """Raise UpgradeIntegrityError unless the image is complete and intact."""
        if self.expected_size is not None and self.received != self.expected_size:
            raise UpgradeIntegrityError(
                f"incomplete image: received {self.received} of {self.expected_size} bytes"
            )
        if self.received <= DESCRIPTOR_END:
            raise UpgradeIntegrityError(f"image too short ({self.received} bytes)")
        if self.digest_appended:
            if len(self._tail) != DIGEST_SIZE or self._hash.digest() != self._tail:
                raise UpgradeIntegrityError("SHA-256 digest mismatch")
        return self._hash.hexdigest()


def build_image(
    *,
    version: str,
    body: bytes,
    project_name: str = "stalink",
    append_digest: bool = True,
    secure_version: int = 0,
) -> bytes:
    """Assemble a minimal application image. Used by bench tooling and tests."""
    prefix = IMAGE_PREFIX.build(
        {
            "header": {
                "segment_count": 1,
                "spi_mode": 2,
                "spi_speed_size": 0x20,
                "entry_addr": 0x40080000,
                "wp_pin": 0xEE,
                "spi_pin_drv": b"\x00\x00\x00",
                "chip_id": 0,
                "min_chip_rev": 0,
                "min_chip_rev_full": 0,
                "max_chip_rev_full": 0xFFFF,
                "reserved": b"\x00" * 4,
                "hash_appended": 1 if append_digest else 0,
            },
            "segment": {"load_addr": 0x3F400020, "data_len": APP_DESCRIPTOR.sizeof() + len(body)},
            "app": {
                "secure_version": secure_version,
                "reserv1": b"\x00" * 8,
                "version": version,
                "project_name": project_name,
                "time": "00:00:00",
                "date": "Jan  1 2024",
                "idf_ver": "v5.1",
                "app_elf_sha256": b"\x00" * 32,
                "reserv2": b"\x00" * 80,
            },
        }
    )
    image = prefix + body
    if append_digest:
        image += hashlib.sha256(image).digest()
    return image


__all__ = [
    "APP_DESC_MAGIC",
    "DESCRIPTOR_END",
    "IMAGE_PREFIX",
    "ImageDescriptor",
    "ImageVerifier",
    "UpgradeIntegrityError",
    "build_image",
]
