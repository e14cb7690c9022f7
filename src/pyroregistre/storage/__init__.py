"""
Sales register storage.

This module provides persistent storage for the register: stores, users,
sales and their product lines, on SQLite or PostgreSQL.

Usage:
    from pyroregistre.storage import open_store

    store = open_store(settings.database)
    store.initialize()
    total = store.count_sales()
    deleted = store.delete_sales_older_than(cutoff)
"""

from pyroregistre.storage.models import (
    ProductLine,
    SaleRecord,
    Store,
    User,
)
from pyroregistre.storage.sales_store import (
    PostgresSalesStore,
    SaleNotFoundError,
    SalesStore,
    SqliteSalesStore,
    StorageError,
    open_store,
)

__all__ = [
    # Store classes
    "SalesStore",
    "SqliteSalesStore",
    "PostgresSalesStore",
    "open_store",
    # Data models
    "Store",
    "User",
    "SaleRecord",
    "ProductLine",
    # Exceptions
    "StorageError",
    "SaleNotFoundError",
]
