"""
Tests for the administration facade.

Tests cover:
- Statistics and manual triggers
- Backup and purge scheduler start-up
- Initial backup on a fresh installation
- Wiring from settings
"""

import tempfile
import time
import unittest
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import MagicMock

from dateutil.relativedelta import relativedelta

from pyroregistre.admin import (
    BACKUP_JOB,
    INITIAL_BACKUP_TASK,
    PURGE_JOB,
    Administration,
    Schedules,
    build_administration,
)
from pyroregistre.backup import BackupEngine, SqliteDumpProvider
from pyroregistre.config.settings import Settings
from pyroregistre.purge import PurgeEngine
from pyroregistre.scheduler import DEFAULT_BACKUP_RULE, DEFAULT_PURGE_RULE, SchedulerHandle
from pyroregistre.storage import ProductLine, SaleRecord, SqliteSalesStore, Store, User


class AdministrationTestCase(unittest.TestCase):
    """Facade over a SQLite register."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        self.settings = Settings()
        self.settings.database.url = f"sqlite:///{Path(self.temp_dir) / 'registre.db'}"
        self.settings.backup.directory = str(Path(self.temp_dir) / "backups")
        self.settings.backup.initial_delay_seconds = 0.0

        self.admin = build_administration(self.settings)
        self.admin.store.initialize()

        self.shop = self.admin.store.create_store(Store(id=None, name="Boutique Centre"))
        self.user = self.admin.store.create_user(
            User(id=None, username="vendeur1", password_hash="$2b$10$hash")
        )

    def tearDown(self) -> None:
        self.admin.stop(timeout=1.0)
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def add_sale(self, timestamp: datetime | None = None) -> SaleRecord:
        return self.admin.store.create_sale(
            SaleRecord(
                store_id=self.shop.id,
                user_id=self.user.id,
                vendeur="Martin",
                nom="Dupont",
                prenom="Jeanne",
                date_naissance="1980-04-12",
                type_identite="CNI",
                numero_identite="X12345678",
                autorite_delivrance="Préfecture du Rhône",
                date_delivrance="2019-06-01",
                products=[ProductLine("Fontaine", "F2", 1)],
                timestamp=timestamp,
            )
        )

    def wait_for_backups(self, count: int, timeout: float = 5.0) -> int:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            current = self.admin.get_backup_stats().count
            if current >= count:
                return current
            time.sleep(0.05)
        return self.admin.get_backup_stats().count


class TestBuildAdministration(AdministrationTestCase):
    """Tests for build_administration."""

    def test_wiring(self) -> None:
        self.assertIsInstance(self.admin.store, SqliteSalesStore)
        self.assertIsInstance(self.admin.backup_engine, BackupEngine)
        self.assertIsInstance(self.admin.backup_engine.provider, SqliteDumpProvider)
        self.assertIsInstance(self.admin.purge_engine, PurgeEngine)
        self.assertIsInstance(self.admin.scheduler, SchedulerHandle)

        self.assertEqual(self.admin.backup_engine.backup_dir, Path(self.temp_dir) / "backups")
        self.assertEqual(self.admin.backup_engine.max_count, 10)
        self.assertEqual(self.admin.purge_engine.retention_months, 19)
        self.assertEqual(self.admin.schedules.backup, DEFAULT_BACKUP_RULE)
        self.assertEqual(self.admin.schedules.purge, DEFAULT_PURGE_RULE)
        self.assertEqual(self.admin.schedules.timezone, "Europe/Paris")

    def test_custom_settings(self) -> None:
        self.settings.backup.max_count = 3
        self.settings.purge.retention_months = 12
        self.settings.timezone = "UTC"

        admin = build_administration(self.settings)

        self.assertEqual(admin.backup_engine.max_count, 3)
        self.assertEqual(admin.purge_engine.retention_months, 12)
        self.assertEqual(admin.purge_engine.timezone, "UTC")


class TestManualOperations(AdministrationTestCase):
    """Tests for the manual triggers."""

    def test_create_automatic_backup(self) -> None:
        self.add_sale()

        report = self.admin.create_automatic_backup()

        self.assertTrue(report.success)
        self.assertEqual(report.stats["total_sales"], 1)
        self.assertEqual(self.admin.get_backup_stats().count, 1)
        self.assertEqual([b.name for b in self.admin.list_backups()], [report.filename])

    def test_execute_purge_manually(self) -> None:
        self.add_sale(datetime.now(UTC) - relativedelta(months=20))
        self.add_sale()

        with self.assertLogs("pyroregistre.admin", level="INFO") as logs:
            report = self.admin.execute_purge_manually()

        self.assertTrue(report.success)
        self.assertEqual(report.deleted_count, 1)
        self.assertTrue(any("Manual purge requested" in line for line in logs.output))
        self.assertEqual(self.admin.get_purge_stats().to_dict()["totalSales"], 1)

    def test_restore_backup(self) -> None:
        self.add_sale()
        report = self.admin.create_automatic_backup()
        self.add_sale()

        result = self.admin.restore_backup(report.path)

        self.assertTrue(result.success)
        self.assertEqual(self.admin.store.count_sales(), 1)

    def test_export_json(self) -> None:
        self.add_sale()

        result = self.admin.export_json(Path(self.temp_dir) / "exports")

        self.assertTrue(result.success)
        self.assertEqual(result.record_count, 1)

    def test_export_csv_for_one_store(self) -> None:
        other = self.admin.store.create_store(Store(id=None, name="Boutique Sud"))
        self.add_sale()

        result = self.admin.export_csv(Path(self.temp_dir) / "exports", store_id=other.id)

        self.assertTrue(result.success)
        self.assertEqual(result.record_count, 0)


class TestSchedulerStartup(unittest.TestCase):
    """Scheduler start-up with a mocked handle and engines."""

    def setUp(self) -> None:
        self.scheduler = MagicMock()
        self.scheduler.has_job.return_value = False
        self.scheduler.is_running = False

        self.backup_engine = MagicMock()
        self.purge_engine = MagicMock()
        self.purge_engine.retention_months = 19

        self.admin = Administration(
            store=MagicMock(),
            backup_engine=self.backup_engine,
            purge_engine=self.purge_engine,
            scheduler=self.scheduler,
            schedules=Schedules(initial_backup_delay=5.0),
        )

    def stats(self, count: int) -> MagicMock:
        return MagicMock(count=count, directory=Path("/backups"), max_count=10)

    def test_backup_scheduler_registers_job(self) -> None:
        self.backup_engine.get_backup_stats.return_value = self.stats(3)

        self.admin.start_backup_scheduler()

        job = self.scheduler.add_job.call_args.args[0]
        self.assertEqual(job.name, BACKUP_JOB)
        self.assertEqual(job.schedule.rule, DEFAULT_BACKUP_RULE)
        self.assertEqual(job.schedule.timezone, "Europe/Paris")
        self.scheduler.run_later.assert_not_called()
        self.scheduler.start.assert_called_once()

    def test_initial_backup_when_none_exist(self) -> None:
        self.backup_engine.get_backup_stats.return_value = self.stats(0)

        self.admin.start_backup_scheduler()

        self.scheduler.run_later.assert_called_once_with(
            5.0, self.backup_engine.create_backup, name=INITIAL_BACKUP_TASK
        )

    def test_purge_scheduler_registers_job(self) -> None:
        self.admin.start_purge_scheduler()

        job = self.scheduler.add_job.call_args.args[0]
        self.assertEqual(job.name, PURGE_JOB)
        self.assertEqual(job.schedule.rule, DEFAULT_PURGE_RULE)

    def test_no_duplicate_job(self) -> None:
        self.scheduler.has_job.return_value = True
        self.scheduler.is_running = True

        self.admin.start_purge_scheduler()

        self.scheduler.add_job.assert_not_called()
        self.scheduler.start.assert_not_called()


class TestSchedulerIntegration(AdministrationTestCase):
    """Scheduler start-up against a real handle."""

    def test_fresh_install_gets_initial_backup(self) -> None:
        self.admin.start_backup_scheduler()

        self.assertEqual(self.wait_for_backups(1), 1)

    def test_existing_backup_skips_initial_backup(self) -> None:
        self.admin.create_automatic_backup()

        self.admin.start_backup_scheduler()
        time.sleep(0.2)

        self.assertEqual(self.admin.get_backup_stats().count, 1)

    def test_both_schedulers_share_handle(self) -> None:
        self.admin.start_backup_scheduler()
        self.admin.start_purge_scheduler()

        names = [status.name for status in self.admin.scheduler_status()]

        self.assertEqual(names, [BACKUP_JOB, PURGE_JOB])
        self.assertTrue(all(status.running for status in self.admin.scheduler_status()))

    def test_stop(self) -> None:
        self.admin.start_backup_scheduler()
        self.admin.start_purge_scheduler()

        self.admin.stop(timeout=2.0)

        self.assertFalse(self.admin.scheduler.is_running)
        self.assertFalse(any(status.running for status in self.admin.scheduler_status()))


if __name__ == "__main__":
    unittest.main()
