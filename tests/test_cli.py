"""
Tests for the CLI commands.

Uses Python's unittest module.
Tests argument parsing and runs the commands against a SQLite register.
"""

from __future__ import annotations

import io
import json
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import patch

from dateutil.relativedelta import relativedelta

from pyroregistre.cli import create_parser, main
from pyroregistre.config.settings import Settings, save_config
from pyroregistre.storage import ProductLine, SaleRecord, SqliteSalesStore, Store, User


class TestArgumentParser(unittest.TestCase):
    """Tests for CLI argument parsing."""

    def setUp(self) -> None:
        """Set up parser for tests."""
        self.parser = create_parser()

    def test_version_argument(self) -> None:
        """Test --version argument."""
        with self.assertRaises(SystemExit) as cm, redirect_stdout(io.StringIO()):
            self.parser.parse_args(["--version"])

        self.assertEqual(cm.exception.code, 0)

    def test_no_command_defaults(self) -> None:
        """Test parsing with no command."""
        args = self.parser.parse_args([])

        self.assertIsNone(args.command)
        self.assertEqual(args.verbose, 0)
        self.assertFalse(args.quiet)

    def test_verbose_flag(self) -> None:
        """Test -v verbose flag."""
        self.assertEqual(self.parser.parse_args(["-vv"]).verbose, 2)

    def test_config_override(self) -> None:
        args = self.parser.parse_args(["--config", "/etc/pyroregistre.yaml", "info"])

        self.assertEqual(args.config, "/etc/pyroregistre.yaml")
        self.assertEqual(args.command, "info")


class TestBackupCommand(unittest.TestCase):
    """Tests for backup command parsing."""

    def setUp(self) -> None:
        self.parser = create_parser()

    def test_default_action_is_create(self) -> None:
        args = self.parser.parse_args(["backup"])

        self.assertEqual(args.action, "create")
        self.assertFalse(args.json)

    def test_list_and_stats(self) -> None:
        self.assertEqual(self.parser.parse_args(["backup", "list"]).action, "list")
        self.assertTrue(self.parser.parse_args(["backup", "stats", "--json"]).json)

    def test_invalid_action(self) -> None:
        with self.assertRaises(SystemExit), redirect_stderr(io.StringIO()):
            self.parser.parse_args(["backup", "delete"])


class TestRestoreCommand(unittest.TestCase):
    """Tests for restore command parsing."""

    def test_requires_file(self) -> None:
        parser = create_parser()

        with self.assertRaises(SystemExit), redirect_stderr(io.StringIO()):
            parser.parse_args(["restore"])

        args = parser.parse_args(["restore", "backup.sql", "--force"])
        self.assertEqual(args.backup_file, "backup.sql")
        self.assertTrue(args.force)


class TestPurgeCommand(unittest.TestCase):
    """Tests for purge command parsing."""

    def test_default_action_is_stats(self) -> None:
        args = create_parser().parse_args(["purge"])

        self.assertEqual(args.action, "stats")
        self.assertFalse(args.force)

    def test_run_with_force(self) -> None:
        args = create_parser().parse_args(["purge", "run", "--force"])

        self.assertEqual(args.action, "run")
        self.assertTrue(args.force)


class TestExportCommand(unittest.TestCase):
    """Tests for export command parsing."""

    def setUp(self) -> None:
        self.parser = create_parser()

    def test_export_type_required(self) -> None:
        with self.assertRaises(SystemExit), redirect_stderr(io.StringIO()):
            self.parser.parse_args(["export"])

    def test_export_options(self) -> None:
        args = self.parser.parse_args(["export", "csv", "-o", "/tmp/out", "--store", "3"])

        self.assertEqual(args.type, "csv")
        self.assertEqual(args.output, "/tmp/out")
        self.assertEqual(args.store_id, 3)

    def test_export_compress_flag(self) -> None:
        args = self.parser.parse_args(["export", "json", "--compress"])

        self.assertTrue(args.compress)
        self.assertIsNone(args.store_id)


class TestServeCommand(unittest.TestCase):
    """Tests for serve command parsing."""

    def test_flags(self) -> None:
        args = create_parser().parse_args(["serve", "--no-purge"])

        self.assertFalse(args.no_backup)
        self.assertTrue(args.no_purge)
        self.assertFalse(args.schedule_help)

    def test_schedule_help_flag(self) -> None:
        args = create_parser().parse_args(["serve", "--schedule-help"])

        self.assertTrue(args.schedule_help)


class CommandTestCase(unittest.TestCase):
    """Runs main() against a SQLite register in a temporary directory."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        root = Path(self.temp_dir)

        settings = Settings()
        settings.database.url = f"sqlite:///{root / 'registre.db'}"
        settings.backup.directory = str(root / "backups")
        self.config_path = root / "config.yaml"
        save_config(settings, self.config_path)

        self.store = SqliteSalesStore(root / "registre.db")
        self.store.initialize()
        self.shop = self.store.create_store(Store(id=None, name="Boutique Centre"))
        self.user = self.store.create_user(User(id=None, username="vendeur1", password_hash="h"))

        self.env = patch.dict(
            "os.environ",
            {"PYROREGISTRE_CONFIG": str(self.config_path)},
            clear=True,
        )
        self.env.start()

    def tearDown(self) -> None:
        self.env.stop()
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def add_sale(self, timestamp: datetime | None = None) -> None:
        self.store.create_sale(
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

    def run_main(self, *argv: str) -> tuple[int, str, str]:
        stdout, stderr = io.StringIO(), io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            with self.assertRaises(SystemExit) as cm:
                main(list(argv))
        return cm.exception.code, stdout.getvalue(), stderr.getvalue()


class TestCommands(CommandTestCase):
    """End-to-end command runs."""

    def test_no_command_prints_help(self) -> None:
        code, stdout, _ = self.run_main()

        self.assertEqual(code, 0)
        self.assertIn("usage: pyroregistre", stdout)

    def test_init_with_existing_config(self) -> None:
        code, stdout, _ = self.run_main("init")

        self.assertEqual(code, 0)
        self.assertIn("Configuration file already exists", stdout)
        self.assertTrue((Path(self.temp_dir) / "backups").is_dir())

    def test_backup_create_and_list(self) -> None:
        code, _, _ = self.run_main("-q", "backup", "create")
        self.assertEqual(code, 0)

        code, stdout, _ = self.run_main("-q", "backup", "list", "--json")

        self.assertEqual(code, 0)
        backups = json.loads(stdout)
        self.assertEqual(len(backups), 1)
        self.assertTrue(backups[0]["name"].startswith("auto-backup-"))

    def test_backup_stats_json(self) -> None:
        (Path(self.temp_dir) / "backups").mkdir()

        code, stdout, _ = self.run_main("-q", "backup", "stats", "--json")

        self.assertEqual(code, 0)
        data = json.loads(stdout)
        self.assertEqual(data["totalBackups"], 0)
        self.assertEqual(data["maxBackups"], 10)

    def test_backup_stats_missing_directory(self) -> None:
        code, stdout, _ = self.run_main("-q", "backup", "stats", "--json")

        self.assertEqual(code, 1)
        self.assertIn("error", json.loads(stdout))

    def test_purge_stats_json(self) -> None:
        self.add_sale(datetime.now(UTC) - relativedelta(months=20))
        self.add_sale()

        code, stdout, _ = self.run_main("-q", "purge", "stats", "--json")

        self.assertEqual(code, 0)
        data = json.loads(stdout)
        self.assertEqual(data["totalSales"], 2)
        self.assertEqual(data["oldSales"], 1)
        self.assertTrue(data["purgeEligible"])

    def test_purge_run_cancelled(self) -> None:
        self.add_sale(datetime.now(UTC) - relativedelta(months=20))

        with patch("builtins.input", return_value="n"):
            code, stdout, _ = self.run_main("purge", "run")

        self.assertEqual(code, 0)
        self.assertIn("Purge cancelled", stdout)
        self.assertEqual(self.store.count_sales(), 1)

    def test_purge_run_forced(self) -> None:
        self.add_sale(datetime.now(UTC) - relativedelta(months=20))

        code, stdout, _ = self.run_main("-q", "purge", "run", "--force", "--json")

        self.assertEqual(code, 0)
        self.assertEqual(json.loads(stdout)["deletedCount"], 1)
        self.assertEqual(self.store.count_sales(), 0)

    def test_restore_missing_file(self) -> None:
        code, _, stderr = self.run_main("restore", str(Path(self.temp_dir) / "missing.sql"))

        self.assertEqual(code, 1)
        self.assertIn("Backup file not found", stderr)

    def test_restore_forced(self) -> None:
        self.add_sale()
        self.run_main("-q", "backup", "create")
        backup = next((Path(self.temp_dir) / "backups").glob("auto-backup-*.sql"))
        self.add_sale()

        code, _, _ = self.run_main("-q", "restore", str(backup), "--force")

        self.assertEqual(code, 0)
        self.assertEqual(self.store.count_sales(), 1)

    def test_export_csv(self) -> None:
        self.add_sale()
        output_dir = Path(self.temp_dir) / "exports"

        code, stdout, _ = self.run_main("export", "csv", "-o", str(output_dir))

        self.assertEqual(code, 0)
        self.assertIn("Exported 1 sale(s)", stdout)
        self.assertEqual(len(list(output_dir.glob("registre-feux-artifice-*.csv"))), 1)

    def test_export_json_rejects_store_filter(self) -> None:
        code, _, stderr = self.run_main("export", "json", "--store", "1")

        self.assertEqual(code, 1)
        self.assertIn("--store", stderr)

    def test_info_json(self) -> None:
        code, stdout, _ = self.run_main("-q", "info", "--json")

        self.assertEqual(code, 0)
        data = json.loads(stdout)
        self.assertEqual(data["timezone"], "Europe/Paris")
        self.assertEqual(data["retention_months"], 19)

    def test_serve_needs_a_schedule(self) -> None:
        code, _, stderr = self.run_main("serve", "--no-backup", "--no-purge")

        self.assertEqual(code, 1)
        self.assertIn("Nothing to schedule", stderr)

    def test_serve_schedule_help(self) -> None:
        code, stdout, _ = self.run_main("serve", "--schedule-help")

        self.assertEqual(code, 0)
        self.assertIn("FREQ=DAILY;BYHOUR=0,12;BYMINUTE=0;BYSECOND=0", stdout)
        self.assertIn("DTSTART must not be given", stdout)

    def test_serve_schedule_help_ignores_broken_config(self) -> None:
        self.config_path.write_text("pyroregistre:\n  log_level: LOUD\n")

        code, stdout, _ = self.run_main("serve", "--schedule-help")

        self.assertEqual(code, 0)
        self.assertIn("Schedule Syntax", stdout)

    def test_invalid_config_exit_code(self) -> None:
        self.config_path.write_text("pyroregistre:\n  log_level: LOUD\n")

        code, _, stderr = self.run_main("backup", "stats")

        self.assertEqual(code, 2)
        self.assertIn("Configuration error", stderr)


if __name__ == "__main__":
    unittest.main()
