"""Configuration module."""

from schedbot.core.config.loader import load_config, setup_logging
from schedbot.core.config.schema import Config

__all__ = ["Config", "load_config", "setup_logging"]
