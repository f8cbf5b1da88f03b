# src/otelferry/core/__init__.py
"""Core infrastructure: Configuration, Logging."""

from otelferry.core.config import (
    ExportSettings,
    SignalSettings,
    load_settings,
    resolve_config,
)
from otelferry.core.logging import configure_logging, get_logger

__all__ = [
    "ExportSettings",
    "SignalSettings",
    "configure_logging",
    "get_logger",
    "load_settings",
    "resolve_config",
]
