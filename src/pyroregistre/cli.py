"""
Command-line interface for Pyroregistre.

Provides commands for the register lifecycle: initialization, backups,
restore, retention purge, exports, and the long-running scheduler.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import json
import logging
import platform as platform_module
import signal
import sys
from pathlib import Path
from types import FrameType
from typing import Any, NoReturn

from pyroregistre import __version__
from pyroregistre.config.settings import (
    ConfigurationError,
    Settings,
    get_config_path,
    load_config,
    save_config,
)

# Set up logging
logger = logging.getLogger(__name__)

# Global verbosity settings (set during main() based on args)
_quiet_mode = False
_verbose_level = 0


def set_output_mode(quiet: bool = False, verbose: int = 0) -> None:
    """
    Set the output mode for the CLI.

    Args:
        quiet: If True, suppress non-essential output.
        verbose: Verbosity level (0=normal, 1+=verbose).
    """
    global _quiet_mode, _verbose_level
    _quiet_mode = quiet
    _verbose_level = verbose


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def output_json(data: Any) -> None:
    output(json.dumps(data, indent=2, default=str, ensure_ascii=False), force=True)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for Pyroregistre CLI."""
    parser = argparse.ArgumentParser(
        prog="pyroregistre",
        description="Record retention and backup for a fireworks sales register",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"pyroregistre {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.pyroregistre/config.yaml)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # info command
    info_parser = subparsers.add_parser(
        "info",
        help="Show configuration and register statistics",
        description="Display version, configuration, backup and purge statistics.",
    )
    info_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    info_parser.set_defaults(func=cmd_info)

    # init command
    init_parser = subparsers.add_parser(
        "init",
        help="Create the configuration file and database schema",
        description="Write a default configuration file and create the register tables.",
    )
    init_parser.add_argument(
        "--database-url",
        metavar="URL",
        dest="database_url",
        help="Connection string to store (postgresql://... or sqlite:///...)",
    )
    init_parser.set_defaults(func=cmd_init)

    # backup command
    backup_parser = subparsers.add_parser(
        "backup",
        help="Create, list and inspect database backups",
        description="Manage the timestamped SQL dumps of the register.",
    )
    backup_parser.add_argument(
        "action",
        choices=["create", "list", "stats"],
        nargs="?",
        default="create",
        help="Action to perform (default: create)",
    )
    backup_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    backup_parser.set_defaults(func=cmd_backup)

    # restore command
    restore_parser = subparsers.add_parser(
        "restore",
        help="Restore the register from a backup file",
        description="Replay a SQL dump into the configured database.",
    )
    restore_parser.add_argument(
        "backup_file",
        metavar="FILE",
        help="Path to backup file (.sql)",
    )
    restore_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompts",
    )
    restore_parser.set_defaults(func=cmd_restore)

    # purge command
    purge_parser = subparsers.add_parser(
        "purge",
        help="Delete sales older than the retention window",
        description="Run or preview the retention purge.",
    )
    purge_parser.add_argument(
        "action",
        choices=["run", "stats"],
        nargs="?",
        default="stats",
        help="Action to perform (default: stats)",
    )
    purge_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompts",
    )
    purge_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    purge_parser.set_defaults(func=cmd_purge)

    # export command
    export_parser = subparsers.add_parser(
        "export",
        help="Export the register",
        description="Export the register as JSON, CSV or PDF.",
    )
    export_parser.add_argument(
        "type",
        choices=["json", "csv", "pdf"],
        help="Export format",
    )
    export_parser.add_argument(
        "--output",
        "-o",
        metavar="PATH",
        default=".",
        help="Output directory (default: current directory)",
    )
    export_parser.add_argument(
        "--store",
        type=int,
        metavar="ID",
        dest="store_id",
        help="Only export sales of this store (csv and pdf)",
    )
    export_parser.add_argument(
        "--compress",
        action="store_true",
        help="Gzip the JSON export",
    )
    export_parser.set_defaults(func=cmd_export)

    # serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the backup and purge schedules in the foreground",
        description="Start both schedulers and block until interrupted.",
    )
    serve_parser.add_argument(
        "--no-backup",
        action="store_true",
        dest="no_backup",
        help="Do not schedule backups",
    )
    serve_parser.add_argument(
        "--no-purge",
        action="store_true",
        dest="no_purge",
        help="Do not schedule the retention purge",
    )
    serve_parser.add_argument(
        "--schedule-help",
        action="store_true",
        dest="schedule_help",
        help="Show recurrence rule syntax help and exit",
    )
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def setup_logging(verbose: int, quiet: bool) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _load_settings(args: argparse.Namespace) -> Settings:
    config_path = Path(args.config) if args.config else None
    return load_config(config_path)


def _build_admin(args: argparse.Namespace, settings: Settings | None = None) -> Any:
    from pyroregistre.admin import build_administration

    return build_administration(settings or _load_settings(args))


def _confirm(prompt: str) -> bool:
    response = input(f"{prompt} [y/N]: ").strip().lower()
    return response in ("y", "yes")


def cmd_info(args: argparse.Namespace) -> int:
    """Show configuration and register statistics."""
    from pyroregistre.reports import WEASYPRINT_AVAILABLE

    settings = _load_settings(args)
    admin = _build_admin(args, settings)

    info: dict[str, Any] = {
        "version": __version__,
        "python_version": platform_module.python_version(),
        "config_file": str(Path(args.config) if args.config else get_config_path()),
        "database": settings.database.describe(),
        "timezone": settings.timezone,
        "backup": admin.get_backup_stats().to_dict(),
        "purge": admin.get_purge_stats().to_dict(),
        "schedules": {
            "backup": settings.backup.schedule,
            "purge": settings.purge.schedule,
        },
        "retention_months": settings.purge.retention_months,
        "optional_dependencies": {
            "weasyprint": WEASYPRINT_AVAILABLE,
        },
    }

    if args.json:
        output_json(info)
        return 0

    output("Pyroregistre System Information")
    output("=" * 60)
    output()
    output(f"Version: {info['version']}")
    output(f"Python: {info['python_version']}")
    output(f"Config file: {info['config_file']}")
    output(f"Database: {info['database']}")
    output(f"Time zone: {info['timezone']}")
    output()
    output("Backups:")
    backup = info["backup"]
    output(f"  Directory: {backup['backupDirectory']}")
    output(f"  Stored: {backup['totalBackups']} / {backup['maxBackups']}")
    if backup.get("error"):
        output(f"  Error: {backup['error']}")
    output(f"  Schedule: {info['schedules']['backup']}")
    output()
    output("Retention:")
    purge = info["purge"]
    output(f"  Window: {info['retention_months']} months")
    output(f"  Total sales: {purge['totalSales']:,}")
    output(f"  Sales past retention: {purge['oldSales']:,}")
    if purge.get("error"):
        output(f"  Error: {purge['error']}")
    output(f"  Schedule: {info['schedules']['purge']}")
    output()
    output("Optional Dependencies:")
    for dep, available in info["optional_dependencies"].items():
        status = "installed" if available else "not installed"
        output(f"  {dep}: {status}")

    return 0


def cmd_init(args: argparse.Namespace) -> int:
    """Create the configuration file and the register schema."""
    from pyroregistre.storage import StorageError, open_store

    output("Pyroregistre Initialization")
    output("=" * 50)
    output()

    config_path = Path(args.config) if args.config else get_config_path()

    if config_path.exists():
        output(f"Configuration file already exists: {config_path}")
        settings = load_config(config_path)
    else:
        settings = Settings()
        if args.database_url:
            settings.database.url = args.database_url
        save_config(settings, config_path)
        output(f"Configuration file created: {config_path}")

    settings.backup_dir.mkdir(parents=True, exist_ok=True)
    output(f"Backup directory: {settings.backup_dir}")

    store = open_store(settings.database)
    try:
        store.initialize()
    except StorageError as e:
        output_error(f"Error creating database schema: {e}")
        return 1

    output(f"Database schema ready: {store.describe()}")
    output()
    output("Initialization complete.")
    output()
    output("Next steps:")
    output("  1. Run 'pyroregistre backup create' to take a first backup")
    output("  2. Run 'pyroregistre serve' to start the backup and purge schedules")
    output()

    return 0


def cmd_backup(args: argparse.Namespace) -> int:
    """Create, list or inspect backups."""
    admin = _build_admin(args)

    if args.action == "stats":
        stats = admin.get_backup_stats()
        if args.json:
            output_json(stats.to_dict())
        else:
            output(f"Backup directory: {stats.directory}")
            output(f"Backups stored: {stats.count} (max {stats.max_count})")
            if stats.error:
                output_error(f"Error: {stats.error}")
        return 1 if stats.error else 0

    if args.action == "list":
        backups = admin.list_backups()
        if args.json:
            output_json([backup.to_dict() for backup in backups])
            return 0
        if not backups:
            output("No backups found.")
            return 0
        output(f"{'Name':45} {'Size':>12}  Modified")
        output("-" * 80)
        for backup in backups:
            output(
                f"{backup.name:45} {backup.size_bytes:>12,}  "
                f"{backup.modified.strftime('%Y-%m-%d %H:%M:%S')}"
            )
        return 0

    output("Creating backup...")
    report = admin.create_automatic_backup()
    if args.json:
        output_json(report.to_dict())
    if not report.success:
        output_error(f"Backup failed: {report.error}")
        return 1

    if not args.json:
        output()
        output("Backup created successfully!")
        output()
        output(f"  File: {report.path}")
        output(f"  Size: {report.size_bytes:,} bytes")
        if report.stats:
            output(f"  Users: {report.stats['total_users']}")
            output(f"  Stores: {report.stats['total_stores']}")
            output(f"  Sales: {report.stats['total_sales']}")
    return 0


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore the register from a backup file."""
    from pyroregistre.backup import RestoreError

    backup_path = Path(args.backup_file)

    if not backup_path.exists():
        output_error(f"Error: Backup file not found: {backup_path}")
        return 1

    admin = _build_admin(args)

    output("Pyroregistre Restore")
    output("=" * 50)
    output()
    output(f"Backup file: {backup_path}")
    output(f"Target database: {admin.backup_engine.database.describe()}")
    output()

    if not args.force:
        output("WARNING: This will replace every table of the register.")
        output()
        if not _confirm("Proceed with restore?"):
            output("Restore cancelled.")
            return 0

    output("Restoring...")
    try:
        result = admin.restore_backup(backup_path)
    except RestoreError as e:
        output()
        output_error(f"Restore failed: {e}")
        return 1

    output()
    output("Restore completed successfully!")
    output(f"  Bytes replayed: {result.size_bytes:,}")
    return 0


def cmd_purge(args: argparse.Namespace) -> int:
    """Run or preview the retention purge."""
    admin = _build_admin(args)

    stats = admin.get_purge_stats()
    if stats.error:
        output_error(f"Error computing purge statistics: {stats.error}")
        return 1

    if args.action == "stats":
        if args.json:
            output_json(stats.to_dict())
        else:
            output(f"Retention cutoff: {admin.purge_engine.format_date(stats.cutoff_date)}")
            output(f"Total sales: {stats.total_sales:,}")
            output(f"Sales past retention: {stats.old_sales:,}")
            output(f"Purge eligible: {'Yes' if stats.purge_eligible else 'No'}")
        return 0

    if not args.force and stats.purge_eligible:
        output(
            f"WARNING: {stats.old_sales:,} sale(s) recorded before "
            f"{admin.purge_engine.format_date(stats.cutoff_date)} will be deleted."
        )
        if not _confirm("Proceed with purge?"):
            output("Purge cancelled.")
            return 0

    report = admin.execute_purge_manually()
    if args.json:
        output_json(report.to_dict())
    if not report.success:
        output_error(f"Purge failed: {report.error}")
        return 1
    if not args.json:
        output(report.message or "")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Export the register."""
    admin = _build_admin(args)
    output_dir = Path(args.output)

    if args.type == "json":
        if args.store_id is not None:
            output_error("--store is not supported for JSON exports")
            return 1
        result = admin.export_json(output_dir, compress=args.compress)
    elif args.type == "csv":
        result = admin.export_csv(output_dir, store_id=args.store_id)
    else:
        result = admin.export_pdf(output_dir, store_id=args.store_id)

    if not result.success:
        output_error(f"Export failed: {result.error}")
        return 1

    if result.export_type == "html" and args.type == "pdf":
        output("weasyprint not installed - HTML register written instead of PDF.")
        output("Install with: pip install weasyprint")

    output(f"Exported {result.record_count} sale(s) to {result.path}")
    output(f"  Size: {result.size_bytes:,} bytes")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the schedules until SIGINT or SIGTERM."""
    from pyroregistre.scheduler import get_schedule_help

    # Handle schedule help first (doesn't require a database)
    if args.schedule_help:
        output(get_schedule_help())
        return 0

    if args.no_backup and args.no_purge:
        output_error("Nothing to schedule: both --no-backup and --no-purge given")
        return 1

    admin = _build_admin(args)

    def _handle_sigterm(signum: int, frame: FrameType | None) -> None:
        logger.info(f"Received signal {signum}, stopping schedulers")
        admin.stop()

    previous = signal.signal(signal.SIGTERM, _handle_sigterm)
    try:
        if not args.no_backup:
            admin.start_backup_scheduler()
        if not args.no_purge:
            admin.start_purge_scheduler()

        for status in admin.scheduler_status():
            output(
                f"{status.name}: '{status.rule}' ({status.timezone}), "
                f"next run {status.next_run}"
            )
        output("Schedulers running. Press Ctrl+C to stop.")

        while admin.scheduler.is_running:
            if admin.scheduler.wait(1.0):
                break
    finally:
        admin.stop()
        signal.signal(signal.SIGTERM, previous)

    output("Schedulers stopped.")
    return 0


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for Pyroregistre CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Set up logging and output mode
    setup_logging(args.verbose, args.quiet)
    set_output_mode(args.quiet, args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(130)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(2)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
