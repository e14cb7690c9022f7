"""
Pyroregistre - record retention and backup for a fireworks sales register

French regulations require every sale of category F2/F3/F4 fireworks to be
recorded with the customer's identity, and the records to be kept for a
bounded period. Pyroregistre is the lifecycle half of that register:

Key Features:
    - Scheduled logical dumps of the register database (pg_dump or SQLite)
    - Retention cap on stored dumps, oldest evicted first
    - Operator-triggered restore from a dump
    - Monthly purge of sales older than the 19-month retention window
    - Administrative facade for manual triggers and statistics
    - JSON, CSV and PDF exports of the register
"""

__version__ = "0.1.0"
__author__ = ""
__email__ = ""

from pyroregistre.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
