"""
Administrative facade of the register lifecycle.

This is the surface an HTTP layer or the CLI calls: statistics, manual
triggers, restore, and starting the two recurring schedules. Every method
returns a report object; only ``restore_backup`` raises, because a restore
is an explicit operator action whose failure must not pass unnoticed.

Manual triggers take no lock against the scheduled jobs. Two backups
started together write two distinct artifacts; two purges started together
delete each old sale once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from pyroregistre.backup.engine import (
    BackupEngine,
    BackupInfo,
    BackupReport,
    BackupStats,
    RestoreResult,
)
from pyroregistre.backup.providers import provider_for
from pyroregistre.purge.engine import PurgeEngine, PurgeReport, PurgeStats
from pyroregistre.reports.json_exporter import ExportResult, JsonExporter
from pyroregistre.reports.sales_export import SalesExporter
from pyroregistre.scheduler.recurrence import (
    DEFAULT_BACKUP_RULE,
    DEFAULT_PURGE_RULE,
    JobStatus,
    RecurrenceSchedule,
    ScheduledJob,
    SchedulerHandle,
)
from pyroregistre.storage.sales_store import open_store

if TYPE_CHECKING:
    from pyroregistre.config.settings import Settings
    from pyroregistre.storage.sales_store import SalesStore

logger = logging.getLogger(__name__)

BACKUP_JOB = "backup"
PURGE_JOB = "purge"
INITIAL_BACKUP_TASK = "initial-backup"


@dataclass
class Schedules:
    """Recurrence rules and zone of the two recurring jobs."""

    backup: str = DEFAULT_BACKUP_RULE
    purge: str = DEFAULT_PURGE_RULE
    timezone: str = "Europe/Paris"
    initial_backup_delay: float = 5.0


class Administration:
    """
    Statistics and manual triggers for the backup and purge engines.

    Example:
        admin = build_administration(settings)
        admin.start_backup_scheduler()
        admin.start_purge_scheduler()

        print(admin.get_purge_stats().to_dict())
        report = admin.execute_purge_manually()

        admin.stop()
    """

    def __init__(
        self,
        store: SalesStore,
        backup_engine: BackupEngine,
        purge_engine: PurgeEngine,
        scheduler: SchedulerHandle | None = None,
        schedules: Schedules | None = None,
    ) -> None:
        self.store = store
        self.backup_engine = backup_engine
        self.purge_engine = purge_engine
        self.scheduler = scheduler or SchedulerHandle()
        self.schedules = schedules or Schedules()

    # -------------------------------------------------------------------------
    # Backups
    # -------------------------------------------------------------------------

    def create_automatic_backup(self) -> BackupReport:
        """Create a backup now, exactly as a scheduled tick would."""
        return self.backup_engine.create_backup()

    def get_backup_stats(self) -> BackupStats:
        return self.backup_engine.get_backup_stats()

    def list_backups(self) -> list[BackupInfo]:
        return self.backup_engine.list_backups()

    def restore_backup(self, filepath: Path | str) -> RestoreResult:
        """
        Restore the register from a backup file.

        Raises:
            RestoreError: If the file is invalid or the restore fails.
        """
        logger.warning(f"Restore requested from {filepath}")
        return self.backup_engine.restore_backup(filepath)

    # -------------------------------------------------------------------------
    # Purge
    # -------------------------------------------------------------------------

    def execute_purge_manually(self) -> PurgeReport:
        """Run the retention purge now, on operator request."""
        logger.info("Manual purge requested from the administration interface")
        return self.purge_engine.purge_old_sales()

    def get_purge_stats(self) -> PurgeStats:
        return self.purge_engine.get_purge_stats()

    # -------------------------------------------------------------------------
    # Exports
    # -------------------------------------------------------------------------

    def export_json(self, output_dir: Path, compress: bool = False) -> ExportResult:
        """Write the full register snapshot as JSON."""
        return JsonExporter(self.store).export(output_dir, compress=compress)

    def export_csv(self, output_dir: Path, store_id: int | None = None) -> ExportResult:
        sales = self.store.list_sales(store_id)
        return SalesExporter(self.schedules.timezone).export_csv(sales, output_dir)

    def export_pdf(self, output_dir: Path, store_id: int | None = None) -> ExportResult:
        sales = self.store.list_sales(store_id)
        return SalesExporter(self.schedules.timezone).export_pdf(sales, output_dir)

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def start_backup_scheduler(self) -> None:
        """
        Schedule recurring backups and start the scheduler.

        If no backup exists yet, one is taken after the initial delay so a
        fresh installation is covered before the first tick.
        """
        if not self.scheduler.has_job(BACKUP_JOB):
            self.scheduler.add_job(
                ScheduledJob(
                    BACKUP_JOB,
                    RecurrenceSchedule(self.schedules.backup, self.schedules.timezone),
                    self.backup_engine.create_backup,
                )
            )

        stats = self.backup_engine.get_backup_stats()
        logger.info(f"Backup directory: {stats.directory}")
        logger.info(f"Maximum backups kept: {stats.max_count}")

        if stats.count == 0:
            logger.info("No existing backups found, creating initial backup")
            self.scheduler.run_later(
                self.schedules.initial_backup_delay,
                self.backup_engine.create_backup,
                name=INITIAL_BACKUP_TASK,
            )

        self._ensure_running()

    def start_purge_scheduler(self) -> None:
        """Schedule the monthly retention purge and start the scheduler."""
        if not self.scheduler.has_job(PURGE_JOB):
            self.scheduler.add_job(
                ScheduledJob(
                    PURGE_JOB,
                    RecurrenceSchedule(self.schedules.purge, self.schedules.timezone),
                    self.purge_engine.purge_old_sales,
                )
            )
        logger.info(
            f"Data retention: {self.purge_engine.retention_months} months maximum"
        )
        self._ensure_running()

    def _ensure_running(self) -> None:
        if not self.scheduler.is_running:
            self.scheduler.start()

    def scheduler_status(self) -> list[JobStatus]:
        return self.scheduler.status()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop every scheduled job and pending one-shot task."""
        self.scheduler.stop(timeout)


def build_administration(settings: Settings) -> Administration:
    """
    Wire the store, dump provider, engines and scheduler from settings.

    Nothing connects to the database until an operation runs.
    """
    store = open_store(settings.database)
    provider = provider_for(
        settings.database,
        max_output_bytes=settings.backup.max_output_mb * 1024 * 1024,
    )
    backup_engine = BackupEngine(
        store=store,
        provider=provider,
        database=settings.database,
        backup_dir=settings.backup_dir,
        max_count=settings.backup.max_count,
    )
    purge_engine = PurgeEngine(
        store=store,
        retention_months=settings.purge.retention_months,
        timezone=settings.timezone,
    )
    schedules = Schedules(
        backup=settings.backup.schedule,
        purge=settings.purge.schedule,
        timezone=settings.timezone,
        initial_backup_delay=settings.backup.initial_delay_seconds,
    )
    return Administration(
        store=store,
        backup_engine=backup_engine,
        purge_engine=purge_engine,
        scheduler=SchedulerHandle(),
        schedules=schedules,
    )
