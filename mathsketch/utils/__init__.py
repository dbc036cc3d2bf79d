"""Utility helpers for MathSketch."""

from .config_loader import (
    AppConfig,
    ConfigError,
    ServerSettings,
    load_app_config,
    load_prompts_registry,
    validate_startup,
)
from .logger import configure_logging, get_logger, log_event

__all__ = [
    "AppConfig",
    "ConfigError",
    "ServerSettings",
    "load_app_config",
    "load_prompts_registry",
    "validate_startup",
    "configure_logging",
    "get_logger",
    "log_event",
]
