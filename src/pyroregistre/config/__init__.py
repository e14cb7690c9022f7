"""
Configuration management for Pyroregistre.

This module handles loading, validating, and saving configuration settings.
"""

from pyroregistre.config.settings import (
    BackupConfig,
    ConfigurationError,
    DatabaseConfig,
    PurgeConfig,
    Settings,
    load_config,
    save_config,
)

__all__ = [
    "Settings",
    "DatabaseConfig",
    "BackupConfig",
    "PurgeConfig",
    "load_config",
    "save_config",
    "ConfigurationError",
]
