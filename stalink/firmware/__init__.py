"""Firmware image handling for over-the-air upgrades."""

from .image import ImageDescriptor, ImageVerifier, UpgradeIntegrityError, build_image
from .sink import FileImageSink, ImageSink

__all__ = [
    "FileImageSink",
    "ImageDescriptor",
    "ImageSink",
    "ImageVerifier",
    "UpgradeIntegrityError",
    "build_image",
]
