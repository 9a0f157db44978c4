"""Settings loader for the stalink daemon.

Configuration is read from a JSON document (``/etc/stalink/config.json`` by
default, or the path named by ``STALINK_CONFIG``). Every key is optional; a
missing file yields the built-in defaults.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import msgspec
from marshmallow import ValidationError

from .const import CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH
from .model import RuntimeConfig
from .schema import RuntimeConfigSchema

logger = logging.getLogger(__name__)


def resolve_config_path(path: str | os.PathLike[str] | None = None) -> Path:
    if path is not None:
        return Path(path)
    return Path(os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)


def _load_raw_config(path: Path) -> dict[str, Any]:
    if not path.exists():
        logger.warning("Configuration file %s not found; using defaults.", path)
        return {}
    try:
        raw = msgspec.json.decode(path.read_bytes())
    except OSError as exc:
        raise RuntimeError(f"Cannot read configuration file {path}: {exc}") from exc
    except msgspec.DecodeError as exc:
        raise RuntimeError(f"Configuration file {path} is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise RuntimeError(f"Configuration file {path} must contain a JSON object")
    return raw


def load_runtime_config(path: str | os.PathLike[str] | None = None) -> RuntimeConfig:
    """Load, validate and return the daemon configuration."""

    config_path = resolve_config_path(path)
    raw = _load_raw_config(config_path)
    try:
        config = RuntimeConfigSchema().load(raw)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration in {config_path}: {exc.messages}") from exc
    except ValueError as exc:
        raise RuntimeError(f"Invalid configuration in {config_path}: {exc}") from exc
    logger.debug("Loaded configuration from %s", config_path)
    return config


__all__ = ["RuntimeConfig", "load_runtime_config", "resolve_config_path"]
