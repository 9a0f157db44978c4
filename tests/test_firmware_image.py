"""Tests for image descriptor parsing, verification and the file sink."""

from __future__ import annotations

import hashlib

import pytest

from stalink.firmware.image import (
    DESCRIPTOR_END,
    ImageDescriptor,
    ImageVerifier,
    UpgradeIntegrityError,
    build_image,
)
from stalink.firmware.sink import FileImageSink


def test_descriptor_sits_after_image_and_segment_headers() -> None:
    assert DESCRIPTOR_END == 24 + 8 + 256


def test_decode_reads_application_descriptor() -> None:
    image = build_image(version="2.3.1", body=b"\xaa" * 64, project_name="bench", secure_version=2)

    descriptor = ImageDescriptor.decode(image)

    assert descriptor.version == "2.3.1"
    assert descriptor.project_name == "bench"
    assert descriptor.idf_version == "v5.1"
    assert descriptor.secure_version == 2
    assert descriptor.segment_count == 1
    assert descriptor.hash_appended is True


@pytest.mark.parametrize(
    "data",
    [
        b"\xe9" * 100,
        b"\x00" * DESCRIPTOR_END,
    ],
)
def test_decode_rejects_short_or_foreign_images(data: bytes) -> None:
    with pytest.raises(UpgradeIntegrityError):
        ImageDescriptor.decode(data)


def test_decode_rejects_bad_descriptor_magic() -> None:
    image = bytearray(build_image(version="2.0.0", body=b"\x00" * 16))
    image[32] ^= 0xFF

    with pytest.raises(UpgradeIntegrityError, match="invalid image header"):
        ImageDescriptor.decode(image)


def test_verifier_accepts_image_fed_in_odd_chunks() -> None:
    image = build_image(version="2.0.0", body=bytes(range(200)))
    verifier = ImageVerifier(expected_size=len(image), digest_appended=True)

    for offset in range(0, len(image), 37):
        verifier.update(image[offset : offset + 37])

    assert verifier.verify() == hashlib.sha256(image[:-32]).hexdigest()


def test_verifier_without_digest_checks_size_only() -> None:
    image = build_image(version="2.0.0", body=b"\x01" * 100, append_digest=False)
    verifier = ImageVerifier(expected_size=None, digest_appended=False)
    verifier.update(image)

    assert verifier.verify() == hashlib.sha256(image).hexdigest()


def test_verifier_rejects_oversized_stream() -> None:
    verifier = ImageVerifier(expected_size=10)

    with pytest.raises(UpgradeIntegrityError, match="larger than announced"):
        verifier.update(b"\x00" * 11)


def test_verifier_rejects_digest_mismatch() -> None:
    image = bytearray(build_image(version="2.0.0", body=b"\x02" * 100))
    image[-1] ^= 0x01
    verifier = ImageVerifier(expected_size=len(image), digest_appended=True)
    verifier.update(bytes(image))

    with pytest.raises(UpgradeIntegrityError, match="digest mismatch"):
        verifier.verify()


@pytest.mark.asyncio
async def test_file_sink_commits_on_finalize(tmp_path) -> None:
    image = build_image(version="2.0.0", body=b"\x03" * 50)
    target = tmp_path / "ota" / "firmware.bin"
    sink = FileImageSink(target)

    await sink.begin(ImageDescriptor.decode(image))
    await sink.write(image[:100])
    await sink.write(image[100:])
    assert not target.exists()
    await sink.finalize()

    assert target.read_bytes() == image
    assert list(target.parent.iterdir()) == [target]


@pytest.mark.asyncio
async def test_file_sink_abort_removes_partial_file(tmp_path) -> None:
    image = build_image(version="2.0.0", body=b"\x03" * 50)
    target = tmp_path / "firmware.bin"
    target.write_bytes(b"previous image")
    sink = FileImageSink(target)

    await sink.begin(ImageDescriptor.decode(image))
    await sink.write(image[:64])
    await sink.abort()

    assert target.read_bytes() == b"previous image"
    assert list(tmp_path.iterdir()) == [target]
    with pytest.raises(RuntimeError):
        await sink.write(b"late")
