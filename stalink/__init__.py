"""Station-mode connectivity lifecycle manager."""

__version__ = "1.0.0"
