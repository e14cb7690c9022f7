"""
Dump providers: how a logical dump of the register database is produced and
fed back.

The backup engine only needs two operations, ``dump`` and ``restore``. The
PostgreSQL provider shells out to ``pg_dump`` and ``psql``; the SQLite
provider uses the driver's own ``iterdump``. Both produce a plain SQL script
that drops and recreates every table, so a restore is idempotent against a
non-empty target.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import subprocess
import tempfile
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, unquote, urlencode, urlparse

if TYPE_CHECKING:
    from pyroregistre.config.settings import DatabaseConfig

logger = logging.getLogger(__name__)

# Largest dump accepted from a provider (50 MB)
DEFAULT_MAX_OUTPUT_BYTES = 50 * 1024 * 1024


class BackupError(Exception):
    """Error during backup operation."""

    pass


class DumpError(BackupError):
    """Raised when the dump tool fails or its output is refused."""

    pass


class RestoreError(BackupError):
    """Error during restore operation."""

    pass


class DumpProvider(ABC):
    """Produces and replays full logical dumps of a database."""

    def __init__(self, max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES) -> None:
        self.max_output_bytes = max_output_bytes

    @abstractmethod
    def dump(self, database: DatabaseConfig) -> bytes:
        """
        Dump schema and data.

        Raises:
            DumpError: If the dump cannot be produced.
        """

    @abstractmethod
    def restore(self, database: DatabaseConfig, content: bytes) -> None:
        """
        Replay a dump produced by ``dump``.

        Raises:
            RestoreError: If the dump cannot be applied.
        """

    def _check_size(self, size: int) -> None:
        if size > self.max_output_bytes:
            raise DumpError(
                f"Dump output of {size:,} bytes exceeds the "
                f"{self.max_output_bytes:,} byte limit"
            )


def log_tool_diagnostics(tool: str, stderr: str) -> None:
    """
    Log the diagnostic output of a dump or restore tool.

    NOTICE lines (e.g. "table does not exist, skipping" from a
    ``DROP ... IF EXISTS``) are advisory. Anything else is surfaced as a
    warning without failing the operation.
    """
    for line in stderr.splitlines():
        line = line.strip()
        if not line:
            continue
        if "NOTICE" in line.upper():
            logger.debug(f"{tool}: {line}")
        else:
            logger.warning(f"{tool}: {line}")


def split_url_password(url: str) -> tuple[str, str | None]:
    """
    Remove the password from a ``postgresql://`` connection string.

    The password may sit in the user info (``user:secret@host``) or in a
    ``password`` query parameter.

    Returns:
        The URL without its password, and the decoded password if any.
    """
    parsed = urlparse(url)
    password = None

    if parsed.password is not None:
        password = unquote(parsed.password)
        userinfo, _, host = parsed.netloc.rpartition("@")
        user = userinfo.split(":", 1)[0]
        parsed = parsed._replace(netloc=f"{user}@{host}" if user else host)

    if parsed.query:
        params = parse_qsl(parsed.query, keep_blank_values=True)
        kept = [(key, value) for key, value in params if key != "password"]
        if len(kept) != len(params):
            password = next(value for key, value in params if key == "password")
            parsed = parsed._replace(query=urlencode(kept))

    return parsed.geturl(), password


class PgDumpProvider(DumpProvider):
    """
    PostgreSQL provider using the ``pg_dump`` and ``psql`` client tools.

    The dump is plain SQL with ``--clean --if-exists`` and without ownership
    or privilege statements. stdout is spooled to a temporary file so a dump
    larger than ``max_output_bytes`` is refused without being held in memory.
    There is no timeout: a hung tool hangs the calling job.
    """

    DUMP_OPTIONS = (
        "--format=plain",
        "--clean",
        "--if-exists",
        "--no-owner",
        "--no-privileges",
    )

    def __init__(
        self,
        pg_dump: str = "pg_dump",
        psql: str = "psql",
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    ) -> None:
        super().__init__(max_output_bytes)
        self.pg_dump = pg_dump
        self.psql = psql

    def connection_args(self, database: DatabaseConfig) -> tuple[list[str], dict[str, str]]:
        """
        Build the connection arguments and environment for a client tool.

        The connection string is preferred; otherwise discrete parameters
        are passed as flags. Either way the password only travels through
        PGPASSWORD, never on the command line where ``ps`` would show it.
        """
        env = os.environ.copy()
        if database.uses_url:
            url, password = split_url_password(database.url)
            if password is not None:
                env["PGPASSWORD"] = password
            return [f"--dbname={url}"], env

        args = ["-h", database.host, "-p", str(database.port)]
        if database.user:
            args += ["-U", database.user]
        if database.name:
            args += ["-d", database.name]
        if database.password:
            env["PGPASSWORD"] = database.password
        return args, env

    def dump(self, database: DatabaseConfig) -> bytes:
        conn_args, env = self.connection_args(database)
        cmd = [self.pg_dump, *self.DUMP_OPTIONS, *conn_args]

        logger.info(f"Starting {self.pg_dump} for {database.describe()}")

        with tempfile.TemporaryFile() as out:
            try:
                process = subprocess.Popen(
                    cmd,
                    stdout=out,
                    stderr=subprocess.PIPE,
                    env=env,
                )
            except OSError as e:
                raise DumpError(f"Cannot run {self.pg_dump}: {e}") from e

            _, stderr = process.communicate()
            stderr_text = (stderr or b"").decode("utf-8", errors="replace")

            if process.returncode != 0:
                detail = stderr_text.strip() or "no error output"
                raise DumpError(
                    f"{self.pg_dump} failed with return code {process.returncode}: {detail}"
                )

            log_tool_diagnostics(self.pg_dump, stderr_text)

            out.flush()
            size = os.fstat(out.fileno()).st_size
            self._check_size(size)
            out.seek(0)
            content = out.read()

        if not content:
            raise DumpError(f"{self.pg_dump} produced no output")

        logger.info(f"{self.pg_dump} completed: {len(content):,} bytes")
        return content

    def restore(self, database: DatabaseConfig, content: bytes) -> None:
        conn_args, env = self.connection_args(database)
        cmd = [
            self.psql,
            "--no-psqlrc",
            "--quiet",
            "-v",
            "ON_ERROR_STOP=1",
            *conn_args,
        ]

        logger.info(f"Starting {self.psql} restore into {database.describe()}")

        try:
            result = subprocess.run(
                cmd,
                input=content,
                capture_output=True,
                env=env,
            )
        except OSError as e:
            raise RestoreError(f"Cannot run {self.psql}: {e}") from e

        stderr_text = (result.stderr or b"").decode("utf-8", errors="replace")
        if result.returncode != 0:
            detail = stderr_text.strip() or "no error output"
            raise RestoreError(
                f"{self.psql} failed with return code {result.returncode}: {detail}"
            )

        log_tool_diagnostics(self.psql, stderr_text)


class SqliteDumpProvider(DumpProvider):
    """
    SQLite provider using ``Connection.iterdump``.

    The script disables foreign keys and drops every table inside the dump's
    own transaction before recreating it, mirroring ``pg_dump --clean``.
    """

    def dump(self, database: DatabaseConfig) -> bytes:
        path = database.sqlite_path
        if not path.exists():
            raise DumpError(f"Database file not found: {path}")

        try:
            conn = sqlite3.connect(str(path))
            try:
                tables = [
                    row[0]
                    for row in conn.execute(
                        "SELECT name FROM sqlite_master "
                        "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY rowid"
                    )
                ]
                lines = list(conn.iterdump())
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise DumpError(f"SQLite dump failed: {e}") from e

        drops = [f'DROP TABLE IF EXISTS "{name}";' for name in reversed(tables)]
        try:
            begin = lines.index("BEGIN TRANSACTION;") + 1
        except ValueError:
            begin = 0

        script = ["PRAGMA foreign_keys=OFF;", *lines[:begin], *drops, *lines[begin:]]
        content = ("\n".join(script) + "\n").encode("utf-8")
        self._check_size(len(content))

        logger.info(f"SQLite dump of {path} completed: {len(content):,} bytes")
        return content

    def restore(self, database: DatabaseConfig, content: bytes) -> None:
        path = database.sqlite_path
        try:
            script = content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise RestoreError(f"Dump is not valid UTF-8: {e}") from e

        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path))
        try:
            conn.executescript(script)
        except sqlite3.Error as e:
            conn.rollback()
            raise RestoreError(f"SQLite restore failed: {e}") from e
        finally:
            conn.close()

        logger.info(f"SQLite restore into {path} completed")


def provider_for(
    database: DatabaseConfig,
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
) -> DumpProvider:
    """Return the dump provider matching the configured connection."""
    if database.backend == "sqlite":
        return SqliteDumpProvider(max_output_bytes=max_output_bytes)
    return PgDumpProvider(max_output_bytes=max_output_bytes)
