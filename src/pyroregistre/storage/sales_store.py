"""
Sales register storage engine for Pyroregistre.

This module provides the SalesStore classes which persist stores, users and
sales (with their product lines) in a relational database. Two back ends
share the same queries:

    - SqliteSalesStore: a single file, used for small installations and tests
    - PostgresSalesStore: the production register, reached through psycopg2

Storage Structure:
    stores          shop locations
    users           operators, each optionally attached to a store
    sales           one row per regulated transaction
    sale_products   product lines, deleted together with their sale

Design Decisions:
    - Sale timestamps are UTC; SQLite stores them as fixed-width ISO strings
      so that string comparison matches chronological order
    - Purge deletes product lines and sales in one transaction
    - Connection-per-operation; no pooling, the register is low traffic
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pyroregistre.storage.models import ProductLine, SaleRecord, Store, User

if TYPE_CHECKING:
    from pyroregistre.config.settings import DatabaseConfig


logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage errors."""

    pass


class SaleNotFoundError(StorageError):
    """Raised when a requested sale does not exist."""

    pass


SQLITE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS stores (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    address TEXT,
    phone TEXT,
    email TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY,
    username TEXT NOT NULL UNIQUE,
    password TEXT NOT NULL,
    email TEXT UNIQUE,
    first_name TEXT,
    last_name TEXT,
    role TEXT NOT NULL DEFAULT 'employee',
    store_id INTEGER REFERENCES stores(id),
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sales (
    id INTEGER PRIMARY KEY,
    store_id INTEGER NOT NULL REFERENCES stores(id),
    user_id INTEGER NOT NULL REFERENCES users(id),
    timestamp TEXT NOT NULL,
    vendeur TEXT NOT NULL,
    date_vente TEXT,
    nom TEXT NOT NULL,
    prenom TEXT NOT NULL,
    date_naissance TEXT NOT NULL,
    lieu_naissance TEXT,
    mode_paiement TEXT,
    type_identite TEXT NOT NULL,
    numero_identite TEXT NOT NULL,
    autorite_delivrance TEXT NOT NULL,
    date_delivrance TEXT NOT NULL,
    photo_recto TEXT,
    photo_verso TEXT,
    photo_ticket TEXT
);

CREATE INDEX IF NOT EXISTS idx_sales_timestamp ON sales(timestamp);
CREATE INDEX IF NOT EXISTS idx_sales_store ON sales(store_id);

CREATE TABLE IF NOT EXISTS sale_products (
    id INTEGER PRIMARY KEY,
    sale_id INTEGER NOT NULL REFERENCES sales(id) ON DELETE CASCADE,
    type_article TEXT NOT NULL,
    categorie TEXT NOT NULL,
    quantite INTEGER NOT NULL,
    gencode TEXT
);

CREATE INDEX IF NOT EXISTS idx_sale_products_sale ON sale_products(sale_id);
"""

POSTGRES_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS stores (
    id SERIAL PRIMARY KEY,
    name VARCHAR(255) NOT NULL,
    address TEXT,
    phone VARCHAR(20),
    email VARCHAR(255),
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS users (
    id SERIAL PRIMARY KEY,
    username VARCHAR(50) NOT NULL UNIQUE,
    password VARCHAR(255) NOT NULL,
    email VARCHAR(255) UNIQUE,
    first_name VARCHAR(100),
    last_name VARCHAR(100),
    role VARCHAR(20) NOT NULL DEFAULT 'employee',
    store_id INTEGER REFERENCES stores(id),
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS sales (
    id SERIAL PRIMARY KEY,
    store_id INTEGER NOT NULL REFERENCES stores(id),
    user_id INTEGER NOT NULL REFERENCES users(id),
    timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    vendeur VARCHAR(255) NOT NULL,
    date_vente VARCHAR(10),
    nom VARCHAR(255) NOT NULL,
    prenom VARCHAR(255) NOT NULL,
    date_naissance VARCHAR(10) NOT NULL,
    lieu_naissance VARCHAR(255),
    mode_paiement VARCHAR(50),
    type_identite VARCHAR(50) NOT NULL,
    numero_identite VARCHAR(100) NOT NULL,
    autorite_delivrance VARCHAR(255) NOT NULL,
    date_delivrance VARCHAR(10) NOT NULL,
    photo_recto TEXT,
    photo_verso TEXT,
    photo_ticket TEXT
);

CREATE INDEX IF NOT EXISTS idx_sales_timestamp ON sales(timestamp);
CREATE INDEX IF NOT EXISTS idx_sales_store ON sales(store_id);

CREATE TABLE IF NOT EXISTS sale_products (
    id SERIAL PRIMARY KEY,
    sale_id INTEGER NOT NULL REFERENCES sales(id) ON DELETE CASCADE,
    type_article VARCHAR(255) NOT NULL,
    categorie VARCHAR(2) NOT NULL,
    quantite INTEGER NOT NULL,
    gencode VARCHAR(13)
);

CREATE INDEX IF NOT EXISTS idx_sale_products_sale ON sale_products(sale_id);
"""

SALE_COLUMNS = (
    "store_id",
    "user_id",
    "timestamp",
    "vendeur",
    "date_vente",
    "nom",
    "prenom",
    "date_naissance",
    "lieu_naissance",
    "mode_paiement",
    "type_identite",
    "numero_identite",
    "autorite_delivrance",
    "date_delivrance",
    "photo_recto",
    "photo_verso",
    "photo_ticket",
)


class SalesStore(ABC):
    """
    Persistent storage for the sales register.

    Subclasses provide the connection, the schema and the parameter style;
    every query lives here so both back ends behave identically.

    Example:
        store = open_store(settings.database)
        store.initialize()

        cutoff = compute_cutoff(datetime.now(UTC))
        print(store.count_sales_older_than(cutoff))
        deleted = store.delete_sales_older_than(cutoff)
    """

    #: DB-API parameter marker used in the shared queries
    PLACEHOLDER = "?"

    @abstractmethod
    @contextmanager
    def _get_connection(self) -> Generator[Any, None, None]:
        """Yield a DB-API connection, closed on exit."""

    @abstractmethod
    def initialize(self) -> None:
        """Create tables and indexes if they do not exist."""

    @abstractmethod
    def describe(self) -> str:
        """Human-readable location of the store, safe for logs."""

    def _to_db_timestamp(self, value: datetime) -> Any:
        """Convert an aware datetime to the back end's parameter form."""
        return value.astimezone(UTC)

    def _insert(self, cursor: Any, sql: str, params: tuple[Any, ...]) -> int:
        """Run an INSERT and return the new row id."""
        cursor.execute(sql + " RETURNING id", params)
        return int(cursor.fetchone()[0])

    def _sql(self, sql: str) -> str:
        """Rewrite ``?`` markers to this back end's placeholder."""
        if self.PLACEHOLDER == "?":
            return sql
        return sql.replace("?", self.PLACEHOLDER)

    @contextmanager
    def _transaction(self) -> Generator[Any, None, None]:
        """Yield a cursor inside a transaction committed on success."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def _query(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        """Run a SELECT and return rows as dictionaries."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(self._sql(sql), params)
                columns = [d[0] for d in cursor.description]
                return [dict(zip(columns, row)) for row in cursor.fetchall()]
            finally:
                cursor.close()

    def _scalar(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(self._sql(sql), params)
                row = cursor.fetchone()
                return int(row[0]) if row and row[0] is not None else 0
            finally:
                cursor.close()

    # -------------------------------------------------------------------------
    # Stores and users
    # -------------------------------------------------------------------------

    def create_store(self, store: Store) -> Store:
        created_at = store.created_at or datetime.now(UTC)
        with self._transaction() as cursor:
            store.id = self._insert(
                cursor,
                self._sql(
                    "INSERT INTO stores (name, address, phone, email, is_active, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)"
                ),
                (
                    store.name,
                    store.address,
                    store.phone,
                    store.email,
                    store.is_active,
                    self._to_db_timestamp(created_at),
                ),
            )
        store.created_at = created_at
        logger.info(f"Created store {store.id} ({store.name})")
        return store

    def list_stores(self) -> list[Store]:
        rows = self._query("SELECT * FROM stores ORDER BY id")
        return [Store.from_row(row) for row in rows]

    def create_user(self, user: User) -> User:
        created_at = user.created_at or datetime.now(UTC)
        with self._transaction() as cursor:
            user.id = self._insert(
                cursor,
                self._sql(
                    "INSERT INTO users (username, password, email, first_name, last_name, "
                    "role, store_id, is_active, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"
                ),
                (
                    user.username,
                    user.password_hash,
                    user.email,
                    user.first_name,
                    user.last_name,
                    user.role,
                    user.store_id,
                    user.is_active,
                    self._to_db_timestamp(created_at),
                ),
            )
        user.created_at = created_at
        logger.info(f"Created user {user.id} ({user.username}, {user.role})")
        return user

    def list_users(self) -> list[User]:
        rows = self._query("SELECT * FROM users ORDER BY id")
        return [User.from_row(row) for row in rows]

    # -------------------------------------------------------------------------
    # Sales
    # -------------------------------------------------------------------------

    def create_sale(self, sale: SaleRecord) -> SaleRecord:
        """
        Record a sale and its product lines in one transaction.

        The creation timestamp defaults to now; an explicit timestamp is kept
        as given (imports, tests).

        Args:
            sale: Sale to insert. ``id`` is assigned on return.

        Returns:
            The same SaleRecord with ``id`` and ``timestamp`` populated.
        """
        timestamp = sale.timestamp or datetime.now(UTC)
        values = {
            "store_id": sale.store_id,
            "user_id": sale.user_id,
            "timestamp": self._to_db_timestamp(timestamp),
            "vendeur": sale.vendeur,
            "date_vente": sale.date_vente,
            "nom": sale.nom,
            "prenom": sale.prenom,
            "date_naissance": sale.date_naissance,
            "lieu_naissance": sale.lieu_naissance,
            "mode_paiement": sale.mode_paiement,
            "type_identite": sale.type_identite,
            "numero_identite": sale.numero_identite,
            "autorite_delivrance": sale.autorite_delivrance,
            "date_delivrance": sale.date_delivrance,
            "photo_recto": sale.photo_recto,
            "photo_verso": sale.photo_verso,
            "photo_ticket": sale.photo_ticket,
        }
        placeholders = ", ".join("?" * len(SALE_COLUMNS))

        with self._transaction() as cursor:
            sale.id = self._insert(
                cursor,
                self._sql(
                    f"INSERT INTO sales ({', '.join(SALE_COLUMNS)}) VALUES ({placeholders})"
                ),
                tuple(values[column] for column in SALE_COLUMNS),
            )
            for product in sale.products:
                product.sale_id = sale.id
                product.id = self._insert(
                    cursor,
                    self._sql(
                        "INSERT INTO sale_products (sale_id, type_article, categorie, "
                        "quantite, gencode) VALUES (?, ?, ?, ?, ?)"
                    ),
                    (
                        sale.id,
                        product.type_article,
                        product.categorie,
                        product.quantite,
                        product.gencode,
                    ),
                )

        sale.timestamp = timestamp
        logger.debug(f"Recorded sale {sale.id} with {len(sale.products)} product(s)")
        return sale

    def get_sale(self, sale_id: int) -> SaleRecord:
        """
        Get a sale with its product lines.

        Raises:
            SaleNotFoundError: If no sale has this id.
        """
        rows = self._query("SELECT * FROM sales WHERE id = ?", (sale_id,))
        if not rows:
            raise SaleNotFoundError(f"Sale not found: {sale_id}")
        return self._with_products(rows)[0]

    def list_sales_for_store(self, store_id: int) -> list[SaleRecord]:
        """All sales of one store, newest first, with product lines."""
        rows = self._query(
            "SELECT * FROM sales WHERE store_id = ? ORDER BY timestamp DESC, id DESC",
            (store_id,),
        )
        return self._with_products(rows)

    def list_sales(self, store_id: int | None = None) -> list[SaleRecord]:
        """All sales, optionally restricted to one store, newest first."""
        if store_id is not None:
            return self.list_sales_for_store(store_id)
        rows = self._query("SELECT * FROM sales ORDER BY timestamp DESC, id DESC")
        return self._with_products(rows)

    def _with_products(self, rows: list[dict[str, Any]]) -> list[SaleRecord]:
        if not rows:
            return []
        sale_ids = [row["id"] for row in rows]
        placeholders = ",".join("?" * len(sale_ids))
        product_rows = self._query(
            f"SELECT * FROM sale_products WHERE sale_id IN ({placeholders}) ORDER BY id",
            tuple(sale_ids),
        )
        by_sale: dict[int, list[ProductLine]] = {}
        for product_row in product_rows:
            by_sale.setdefault(product_row["sale_id"], []).append(
                ProductLine.from_row(product_row)
            )
        return [SaleRecord.from_row(row, by_sale.get(row["id"], [])) for row in rows]

    def delete_sale(self, sale_id: int) -> None:
        """
        Delete one sale and its product lines.

        Raises:
            SaleNotFoundError: If no sale has this id.
        """
        with self._transaction() as cursor:
            cursor.execute(self._sql("DELETE FROM sale_products WHERE sale_id = ?"), (sale_id,))
            cursor.execute(self._sql("DELETE FROM sales WHERE id = ?"), (sale_id,))
            if cursor.rowcount == 0:
                raise SaleNotFoundError(f"Sale not found: {sale_id}")
        logger.info(f"Deleted sale {sale_id}")

    def count_sales(self, store_id: int | None = None) -> int:
        if store_id is None:
            return self._scalar("SELECT COUNT(*) FROM sales")
        return self._scalar("SELECT COUNT(*) FROM sales WHERE store_id = ?", (store_id,))

    def count_sales_older_than(self, cutoff: datetime) -> int:
        """Count sales created strictly before ``cutoff``."""
        return self._scalar(
            "SELECT COUNT(*) FROM sales WHERE timestamp < ?",
            (self._to_db_timestamp(cutoff),),
        )

    def delete_sales_older_than(self, cutoff: datetime) -> int:
        """
        Delete every sale created strictly before ``cutoff``.

        Product lines of the deleted sales are removed in the same
        transaction.

        Returns:
            Number of sales deleted.
        """
        param = self._to_db_timestamp(cutoff)
        with self._transaction() as cursor:
            cursor.execute(
                self._sql(
                    "DELETE FROM sale_products WHERE sale_id IN "
                    "(SELECT id FROM sales WHERE timestamp < ?)"
                ),
                (param,),
            )
            cursor.execute(self._sql("DELETE FROM sales WHERE timestamp < ?"), (param,))
            return int(cursor.rowcount)


class SqliteSalesStore(SalesStore):
    """
    SQLite back end.

    Attributes:
        db_path: Path to the database file.
    """

    PLACEHOLDER = "?"

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)

    def initialize(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._get_connection() as conn:
            conn.executescript(SQLITE_SCHEMA_SQL)
            conn.commit()
        logger.info(f"Initialized register schema in {self.db_path}")

    def describe(self) -> str:
        return f"sqlite:///{self.db_path}"

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        try:
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}") from e
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    def _to_db_timestamp(self, value: datetime) -> str:
        # Fixed width so lexical order is chronological order
        return value.astimezone(UTC).isoformat(timespec="microseconds")

    def _insert(self, cursor: Any, sql: str, params: tuple[Any, ...]) -> int:
        cursor.execute(sql, params)
        return int(cursor.lastrowid)


class PostgresSalesStore(SalesStore):
    """
    PostgreSQL back end through psycopg2.

    Connects with the connection string when one is configured, otherwise
    with the discrete host/port/database/user/password parameters.
    """

    PLACEHOLDER = "%s"

    def __init__(self, database: DatabaseConfig) -> None:
        self.database = database

    def initialize(self) -> None:
        with self._transaction() as cursor:
            cursor.execute(POSTGRES_SCHEMA_SQL)
        logger.info(f"Initialized register schema in {self.describe()}")

    def describe(self) -> str:
        return self.database.describe()

    @contextmanager
    def _get_connection(self) -> Generator[Any, None, None]:
        import psycopg2

        try:
            if self.database.uses_url:
                conn = psycopg2.connect(self.database.url)
            else:
                conn = psycopg2.connect(
                    host=self.database.host,
                    port=self.database.port,
                    dbname=self.database.name,
                    user=self.database.user,
                    password=self.database.password or None,
                )
        except psycopg2.Error as e:
            raise StorageError(f"Cannot connect to {self.describe()}: {e}") from e
        try:
            yield conn
        finally:
            conn.close()


def open_store(database: DatabaseConfig) -> SalesStore:
    """Return the store matching the configured connection."""
    if database.backend == "sqlite":
        return SqliteSalesStore(database.sqlite_path)
    return PostgresSalesStore(database)
