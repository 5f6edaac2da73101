"""Configuration models and the lazily loaded global settings."""

from __future__ import annotations

from .config import (
    CaptureConfig,
    Config,
    MatchingConfig,
    MonitoringConfig,
    SQLiteConfig,
    StorageConfig,
    find_config_file,
    settings,
)

__all__ = [
    "CaptureConfig",
    "Config",
    "MatchingConfig",
    "MonitoringConfig",
    "SQLiteConfig",
    "StorageConfig",
    "find_config_file",
    "settings",
]
