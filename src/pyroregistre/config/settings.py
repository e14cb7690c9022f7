"""
Configuration settings management for Pyroregistre.

This module handles loading, validating, and saving configuration settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.pyroregistre/config.yaml by default, with the
path overridable via the PYROREGISTRE_CONFIG environment variable. The
database connection also honours the conventional DATABASE_URL and PG*
variables so the same environment works for the dump tools.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from pyroregistre.scheduler.recurrence import (
    DEFAULT_BACKUP_RULE,
    DEFAULT_PURGE_RULE,
    RecurrenceSchedule,
    ScheduleError,
)

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".pyroregistre"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

DEFAULT_TIMEZONE = "Europe/Paris"
DEFAULT_BACKUP_SCHEDULE = DEFAULT_BACKUP_RULE
DEFAULT_PURGE_SCHEDULE = DEFAULT_PURGE_RULE


@dataclass
class DatabaseConfig:
    """
    Connection to the persistent store.

    A single connection string (``url``) takes precedence. When it is empty,
    the discrete host/port/name/user/password parameters are used instead.
    Supported schemes are ``postgresql://`` (and ``postgres://``) and
    ``sqlite:///``.
    """

    url: str = ""
    host: str = "localhost"
    port: int = 5432
    name: str = ""
    user: str = ""
    password: str = ""

    @property
    def uses_url(self) -> bool:
        """Whether the single connection-string form is configured."""
        return bool(self.url)

    @property
    def backend(self) -> str:
        """Return ``"sqlite"`` or ``"postgresql"``."""
        if self.url:
            scheme = urlparse(self.url).scheme.lower()
            if scheme.startswith("sqlite"):
                return "sqlite"
        return "postgresql"

    @property
    def sqlite_path(self) -> Path:
        """Filesystem path of a ``sqlite:///`` URL."""
        if self.backend != "sqlite":
            raise ValueError("Not a SQLite connection")
        # sqlite:///relative.db and sqlite:////absolute/path.db
        path = self.url.split(":///", 1)[1] if ":///" in self.url else ""
        return Path(path).expanduser()

    def describe(self) -> str:
        """Connection description safe for logs (password masked)."""
        if self.url:
            parsed = urlparse(self.url)
            if parsed.password:
                netloc = parsed.netloc.replace(f":{parsed.password}@", ":***@")
                return parsed._replace(netloc=netloc).geturl()
            return self.url
        return f"{self.user or '?'}@{self.host}:{self.port}/{self.name or '?'}"


@dataclass
class BackupConfig:
    """Backup engine settings."""

    directory: str = str(DEFAULT_CONFIG_DIR / "backups")
    max_count: int = 10
    schedule: str = DEFAULT_BACKUP_SCHEDULE
    initial_delay_seconds: float = 5.0
    max_output_mb: int = 50


@dataclass
class PurgeConfig:
    """Data retention settings."""

    retention_months: int = 19
    schedule: str = DEFAULT_PURGE_SCHEDULE


@dataclass
class Settings:
    """
    Complete Pyroregistre configuration settings.

    Attributes:
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        timezone: IANA zone the schedules and retention cutoff are computed in.
        database: Connection to the sales register database.
        backup: Backup engine settings.
        purge: Retention purge settings.
    """

    log_level: str = "INFO"
    timezone: str = DEFAULT_TIMEZONE

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    purge: PurgeConfig = field(default_factory=PurgeConfig)

    @property
    def backup_dir(self) -> Path:
        return Path(self.backup.directory).expanduser()


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from PYROREGISTRE_CONFIG environment variable if set,
    otherwise returns the default path (~/.pyroregistre/config.yaml).
    """
    env_path = os.environ.get("PYROREGISTRE_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or default if not provided),
    applies environment variable overrides, and validates the configuration.

    Args:
        config_path: Optional path to configuration file. If not provided,
                    uses PYROREGISTRE_CONFIG environment variable or default path.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = get_config_path()

    settings = Settings()

    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        try:
            settings = _apply_config_data(settings, config_data)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value in config file: {e}") from e

    try:
        settings = _apply_environment_overrides(settings)
    except ValueError as e:
        raise ConfigurationError(f"Invalid environment override: {e}") from e

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    general = data.get("pyroregistre", {}) or {}

    if "log_level" in general:
        settings.log_level = str(general["log_level"]).upper()
    if "timezone" in general:
        settings.timezone = str(general["timezone"])

    database = data.get("database", {}) or {}
    if "url" in database:
        settings.database.url = str(database["url"] or "")
    if "host" in database:
        settings.database.host = str(database["host"])
    if "port" in database:
        settings.database.port = int(database["port"])
    if "name" in database:
        settings.database.name = str(database["name"])
    if "user" in database:
        settings.database.user = str(database["user"])
    if "password" in database:
        settings.database.password = str(database["password"] or "")

    backup = data.get("backup", {}) or {}
    if "directory" in backup:
        settings.backup.directory = str(backup["directory"])
    if "max_count" in backup:
        settings.backup.max_count = int(backup["max_count"])
    if "schedule" in backup:
        settings.backup.schedule = str(backup["schedule"])
    if "initial_delay_seconds" in backup:
        settings.backup.initial_delay_seconds = float(backup["initial_delay_seconds"])
    if "max_output_mb" in backup:
        settings.backup.max_output_mb = int(backup["max_output_mb"])

    purge = data.get("purge", {}) or {}
    if "retention_months" in purge:
        settings.purge.retention_months = int(purge["retention_months"])
    if "schedule" in purge:
        settings.purge.schedule = str(purge["schedule"])

    return settings


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "DATABASE_URL": ("database.url", str),
        "PGHOST": ("database.host", str),
        "PGPORT": ("database.port", int),
        "PGDATABASE": ("database.name", str),
        "PGUSER": ("database.user", str),
        "PGPASSWORD": ("database.password", str),
        "PYROREGISTRE_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "PYROREGISTRE_TIMEZONE": ("timezone", str),
        "PYROREGISTRE_BACKUP_DIR": ("backup.directory", str),
        "PYROREGISTRE_MAX_BACKUPS": ("backup.max_count", int),
        "PYROREGISTRE_RETENTION_MONTHS": ("purge.retention_months", int),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_nested_attr(settings, attr_path, converter(value))

    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """Set a nested attribute on an object using dot notation."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(valid_log_levels))}"
        )

    try:
        ZoneInfo(settings.timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown timezone: {settings.timezone}") from e

    if settings.backup.max_count < 1:
        raise ConfigurationError("backup.max_count must be at least 1")

    if settings.backup.max_output_mb < 1:
        raise ConfigurationError("backup.max_output_mb must be at least 1")

    if settings.backup.initial_delay_seconds < 0:
        raise ConfigurationError("backup.initial_delay_seconds cannot be negative")

    if settings.purge.retention_months < 1:
        raise ConfigurationError("purge.retention_months must be at least 1")

    now = datetime.now(UTC)
    for label, rule in (
        ("backup.schedule", settings.backup.schedule),
        ("purge.schedule", settings.purge.schedule),
    ):
        try:
            schedule = RecurrenceSchedule(rule, settings.timezone)
        except ScheduleError as e:
            raise ConfigurationError(f"Invalid {label}: {e}") from e
        if schedule.next_after(now) is None:
            raise ConfigurationError(f"Invalid {label}: rule never fires again")

    if settings.database.url:
        scheme = urlparse(settings.database.url).scheme.lower()
        if scheme not in ("postgresql", "postgres", "sqlite"):
            raise ConfigurationError(
                f"Unsupported database URL scheme: {scheme or '(none)'}"
            )


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "pyroregistre": {
            "log_level": settings.log_level,
            "timezone": settings.timezone,
        },
        "database": {
            "url": settings.database.url,
            "host": settings.database.host,
            "port": settings.database.port,
            "name": settings.database.name,
            "user": settings.database.user,
            "password": settings.database.password,
        },
        "backup": {
            "directory": settings.backup.directory,
            "max_count": settings.backup.max_count,
            "schedule": settings.backup.schedule,
            "initial_delay_seconds": settings.backup.initial_delay_seconds,
            "max_output_mb": settings.backup.max_output_mb,
        },
        "purge": {
            "retention_months": settings.purge.retention_months,
            "schedule": settings.purge.schedule,
        },
    }
