"""
Backup engine for the sales register.

Produces full logical dumps of the register database as timestamped SQL
files, keeps at most ``max_count`` of them (oldest evicted first), and
replays a chosen dump on operator request.

Artifacts are named ``auto-backup-<ISO 8601 UTC>.sql`` with ':' and '.'
replaced by '-', so name order is creation order. Eviction still sorts by
modification time.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pyroregistre.backup.providers import DumpProvider, RestoreError

if TYPE_CHECKING:
    from pyroregistre.config.settings import DatabaseConfig
    from pyroregistre.storage.sales_store import SalesStore

logger = logging.getLogger(__name__)

ARTIFACT_PREFIX = "auto-backup-"
ARTIFACT_SUFFIX = ".sql"
ARTIFACT_PATTERN = re.compile(r"^auto-backup-.+\.sql$")
DEFAULT_MAX_BACKUPS = 10


def artifact_filename(moment: datetime) -> str:
    """
    Build the artifact name for a given instant.

    >>> artifact_filename(datetime(2025, 1, 15, 10, 30, 0, 123000, tzinfo=UTC))
    'auto-backup-2025-01-15T10-30-00-123Z.sql'
    """
    moment = moment.astimezone(UTC)
    iso = moment.strftime("%Y-%m-%dT%H:%M:%S") + f".{moment.microsecond // 1000:03d}Z"
    return f"{ARTIFACT_PREFIX}{iso.replace(':', '-').replace('.', '-')}{ARTIFACT_SUFFIX}"


@dataclass
class BackupStats:
    """Summary of the artifact directory."""

    count: int
    directory: Path
    max_count: int
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "totalBackups": self.count,
            "backupDirectory": str(self.directory),
            "maxBackups": self.max_count,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class BackupReport:
    """Result of a backup operation."""

    success: bool
    filename: str | None = None
    path: Path | None = None
    size_bytes: int = 0
    stats: dict[str, int] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error}
        return {
            "success": True,
            "filename": self.filename,
            "sizeBytes": self.size_bytes,
            "stats": self.stats,
        }


@dataclass
class BackupInfo:
    """One artifact on disk."""

    name: str
    path: Path
    size_bytes: int
    modified: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "sizeBytes": self.size_bytes,
            "modified": self.modified.isoformat(),
        }


@dataclass
class RestoreResult:
    """Result of a restore operation."""

    success: bool
    filename: str
    size_bytes: int = 0


class BackupEngine:
    """
    Creates, caps, lists and restores register dumps.

    Every public method except ``restore_backup`` reports failures in its
    return value instead of raising, so the scheduler and the admin facade
    never see an exception from here.

    Usage:
        engine = BackupEngine(store, PgDumpProvider(), settings.database,
                              settings.backup_dir)
        report = engine.create_backup()
        if not report.success:
            print(report.error)
    """

    def __init__(
        self,
        store: SalesStore,
        provider: DumpProvider,
        database: DatabaseConfig,
        backup_dir: Path | str,
        max_count: int = DEFAULT_MAX_BACKUPS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the backup engine.

        Args:
            store: Register store, read for the backup statistics.
            provider: Dump provider matching the database.
            database: Connection the provider dumps and restores.
            backup_dir: Directory holding the artifacts.
            max_count: Maximum number of artifacts kept.
            clock: Returns the current aware datetime; defaults to UTC now.
        """
        self.store = store
        self.provider = provider
        self.database = database
        self.backup_dir = Path(backup_dir).expanduser()
        self.max_count = max_count
        self._clock = clock or (lambda: datetime.now(UTC))

    def create_backup(self) -> BackupReport:
        """
        Dump the database to a new artifact and enforce the retention cap.

        Nothing is written unless the dump succeeds.

        Returns:
            BackupReport with the filename and register counts, or the error.
        """
        try:
            logger.info("Creating automatic backup...")

            stats = self.collect_stats()
            content = self.provider.dump(self.database)

            self.backup_dir.mkdir(parents=True, exist_ok=True)
            path = self._write_artifact(content)

            logger.info(f"Automatic backup created: {path.name} ({len(content):,} bytes)")
            logger.info(
                f"Backup stats: {stats['total_users']} users, "
                f"{stats['total_stores']} stores, {stats['total_sales']} sales"
            )

        except Exception as e:
            logger.exception("Failed to create automatic backup")
            return BackupReport(success=False, error=str(e) or type(e).__name__)

        self.enforce_retention_cap()

        return BackupReport(
            success=True,
            filename=path.name,
            path=path,
            size_bytes=len(content),
            stats=stats,
        )

    def collect_stats(self) -> dict[str, int]:
        """Count users, stores and sales across all stores."""
        users = self.store.list_users()
        stores = self.store.list_stores()
        total_sales = sum(self.store.count_sales(store.id) for store in stores)
        return {
            "total_users": len(users),
            "total_stores": len(stores),
            "total_sales": total_sales,
        }

    def _write_artifact(self, content: bytes) -> Path:
        """
        Write ``content`` under a fresh artifact name, atomically.

        The dump goes to a hidden ``.auto-backup-*.tmp`` file first, which
        the artifact pattern does not match, and is then hard-linked under
        its final name. Linking fails if the name exists, so concurrent runs
        in the same millisecond move on to the next one.
        """
        fd, temp_path = tempfile.mkstemp(
            prefix=".auto-backup-",
            suffix=".tmp",
            dir=str(self.backup_dir),
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)

            moment = self._clock()
            while True:
                path = self.backup_dir / artifact_filename(moment)
                try:
                    os.link(temp_path, path)
                    break
                except FileExistsError:
                    moment += timedelta(milliseconds=1)
        finally:
            os.unlink(temp_path)

        return path

    def _artifacts(self) -> list[tuple[Path, os.stat_result]]:
        """Artifacts with their stat, newest modification first."""
        entries = []
        for entry in self.backup_dir.iterdir():
            if entry.is_file() and ARTIFACT_PATTERN.match(entry.name):
                entries.append((entry, entry.stat()))
        entries.sort(key=lambda item: item[1].st_mtime, reverse=True)
        return entries

    def enforce_retention_cap(self) -> list[Path]:
        """
        Delete every artifact beyond the ``max_count`` most recent.

        Failures are logged and never raised: the artifact that triggered
        the cleanup is already safely written.

        Returns:
            Paths that were deleted.
        """
        deleted: list[Path] = []
        try:
            artifacts = self._artifacts()
        except OSError as e:
            logger.error(f"Error cleaning up old backups: {e}")
            return deleted

        for path, _ in artifacts[self.max_count:]:
            try:
                path.unlink()
                deleted.append(path)
                logger.info(f"Deleted old backup: {path.name}")
            except OSError as e:
                logger.error(f"Could not delete old backup {path.name}: {e}")

        if deleted:
            logger.info(
                f"Cleaned up {len(deleted)} old backup(s), "
                f"keeping {self.max_count} most recent"
            )
        return deleted

    def list_backups(self) -> list[BackupInfo]:
        """Artifacts newest first; empty if the directory is unreadable."""
        try:
            artifacts = self._artifacts()
        except OSError as e:
            logger.warning(f"Could not read backup directory: {e}")
            return []
        return [
            BackupInfo(
                name=path.name,
                path=path,
                size_bytes=stat.st_size,
                modified=datetime.fromtimestamp(stat.st_mtime, UTC),
            )
            for path, stat in artifacts
        ]

    def get_backup_stats(self) -> BackupStats:
        """Count artifacts without ever raising."""
        try:
            count = sum(
                1
                for entry in self.backup_dir.iterdir()
                if ARTIFACT_PATTERN.match(entry.name)
            )
        except OSError:
            return BackupStats(
                count=0,
                directory=self.backup_dir,
                max_count=self.max_count,
                error="Could not read backup directory",
            )
        return BackupStats(count=count, directory=self.backup_dir, max_count=self.max_count)

    def restore_backup(self, filepath: Path | str) -> RestoreResult:
        """
        Replay a dump file into the configured database.

        This is an explicit operator action; it is never scheduled.

        Args:
            filepath: Dump file to restore.

        Returns:
            RestoreResult on success.

        Raises:
            RestoreError: If the file is missing, empty or not text, or if
                the restore tool fails.
        """
        path = Path(filepath)
        if not path.is_file():
            raise RestoreError(f"Backup file not found: {path}")

        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise RestoreError(f"Cannot read backup file {path}: {e}") from e

        if not text.strip():
            raise RestoreError(f"Backup file is empty: {path}")

        logger.info(f"Restoring backup {path.name} into {self.database.describe()}")

        content = text.encode("utf-8")
        try:
            self.provider.restore(self.database, content)
        except Exception as e:
            raise RestoreError(f"Restore from {path.name} failed: {e}") from e

        logger.info(f"Restore completed from {path.name}")
        return RestoreResult(success=True, filename=path.name, size_bytes=len(content))
