"""Configuration loader: YAML file + env override."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from schedbot.core.config.schema import Config


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load configuration.

    Resolution order for config file:
        1. Explicit ``config_path`` argument
        2. ``SCHEDBOT_CONFIG`` env variable
        3. ``./config.yaml`` in cwd

    Values priority (handled by pydantic-settings):
        env vars  >  .env file  >  YAML  >  defaults
    """
    path = _resolve_path(config_path)
    data = _load_yaml(path)
    if path and data:
        logger.debug(f"Config loaded from {path}")
    return Config(**data)


def _resolve_path(config_path: str | Path | None = None) -> Path | None:
    if config_path:
        return Path(config_path)

    env = os.environ.get("SCHEDBOT_CONFIG")
    if env:
        return Path(env)

    default = Path("config.yaml")
    return default if default.exists() else None


def _load_yaml(path: Path | None) -> dict[str, Any]:
    """Load YAML mapping; missing file → empty dict."""
    if not path or not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


def setup_logging(config: Config) -> None:
    """Route loguru to stderr at the configured level."""
    logger.remove()
    logger.add(sys.stderr, level=config.logging.level.upper())
