"""Configuration loading, validation and logging setup."""

from __future__ import annotations

from .model import RuntimeConfig
from .settings import load_runtime_config

__all__ = ["RuntimeConfig", "load_runtime_config"]
