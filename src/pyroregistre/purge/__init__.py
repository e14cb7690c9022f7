"""
Retention purge of old sales.

Usage:
    from pyroregistre.purge import PurgeEngine

    engine = PurgeEngine(store)
    report = engine.purge_old_sales()
    print(report.message)
"""

from pyroregistre.purge.engine import (
    DEFAULT_RETENTION_MONTHS,
    PurgeEngine,
    PurgeReport,
    PurgeStats,
    compute_cutoff,
)

__all__ = [
    "PurgeEngine",
    "PurgeReport",
    "PurgeStats",
    "compute_cutoff",
    "DEFAULT_RETENTION_MONTHS",
]
