"""
Backup and restore of the sales register database.

This module produces timestamped logical dumps of the register, keeps a
bounded number of them, and restores one on request. Dumps are plain SQL
scripts produced by pg_dump (PostgreSQL) or iterdump (SQLite).

Usage:
    from pyroregistre.backup import BackupEngine, provider_for

    engine = BackupEngine(store, provider_for(settings.database),
                          settings.database, settings.backup_dir)

    # Create a backup
    report = engine.create_backup()

    # Restore from a backup
    engine.restore_backup(report.path)
"""

from pyroregistre.backup.engine import (
    BackupEngine,
    BackupInfo,
    BackupReport,
    BackupStats,
    RestoreResult,
    artifact_filename,
)
from pyroregistre.backup.providers import (
    BackupError,
    DumpError,
    DumpProvider,
    PgDumpProvider,
    RestoreError,
    SqliteDumpProvider,
    provider_for,
)

__all__ = [
    "BackupEngine",
    "BackupReport",
    "BackupStats",
    "BackupInfo",
    "RestoreResult",
    "artifact_filename",
    "DumpProvider",
    "PgDumpProvider",
    "SqliteDumpProvider",
    "provider_for",
    "BackupError",
    "DumpError",
    "RestoreError",
]
