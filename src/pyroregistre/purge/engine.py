"""
Retention purge for the sales register.

Sales are kept for a fixed number of calendar months (19 by default) and
then deleted with their product lines. The cutoff is computed on the wall
clock of the register's time zone, so "19 months ago" means the same day of
the month, clamped to the month's last day when that day does not exist
(a purge on 31 January 2026 has a cutoff of 30 June 2024).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

if TYPE_CHECKING:
    from pyroregistre.storage.sales_store import SalesStore

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_MONTHS = 19
DEFAULT_TIMEZONE = "Europe/Paris"


def compute_cutoff(
    now: datetime,
    months: int = DEFAULT_RETENTION_MONTHS,
    timezone: str = DEFAULT_TIMEZONE,
) -> datetime:
    """
    Return the retention cutoff for ``now``.

    Sales created strictly before the cutoff are eligible for deletion.

    Args:
        now: Aware current time.
        months: Retention window in calendar months.
        timezone: Zone whose calendar the months are counted in.

    Returns:
        Aware UTC datetime.

    Raises:
        ValueError: If ``now`` is naive.
    """
    if now.tzinfo is None:
        raise ValueError("compute_cutoff requires an aware datetime")

    local_now = now.astimezone(ZoneInfo(timezone))
    return (local_now - relativedelta(months=months)).astimezone(UTC)


@dataclass
class PurgeReport:
    """Result of a purge run."""

    success: bool
    deleted_count: int = 0
    cutoff_date: datetime | None = None
    message: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error, "deletedCount": 0}
        return {
            "success": True,
            "deletedCount": self.deleted_count,
            "cutoffDate": self.cutoff_date.isoformat() if self.cutoff_date else None,
            "message": self.message,
        }


@dataclass
class PurgeStats:
    """Read-only view of what a purge would delete right now."""

    total_sales: int
    old_sales: int
    cutoff_date: datetime | None
    error: str | None = None

    @property
    def purge_eligible(self) -> bool:
        return self.old_sales > 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "totalSales": self.total_sales,
            "oldSales": self.old_sales,
            "cutoffDate": self.cutoff_date.isoformat() if self.cutoff_date else None,
            "purgeEligible": self.purge_eligible,
        }
        if self.error:
            data["error"] = self.error
        return data


class PurgeEngine:
    """
    Deletes sales older than the retention window.

    Neither method raises: store failures are logged and returned in the
    report, so a failed scheduled run never stops the scheduler.

    Usage:
        engine = PurgeEngine(store, retention_months=19, timezone="Europe/Paris")
        stats = engine.get_purge_stats()
        if stats.purge_eligible:
            report = engine.purge_old_sales()
            print(report.message)
    """

    def __init__(
        self,
        store: SalesStore,
        retention_months: int = DEFAULT_RETENTION_MONTHS,
        timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.retention_months = retention_months
        self.timezone = timezone
        self._clock = clock or (lambda: datetime.now(UTC))

    def cutoff(self) -> datetime:
        """Cutoff for the current time."""
        return compute_cutoff(self._clock(), self.retention_months, self.timezone)

    def format_date(self, moment: datetime) -> str:
        """dd/mm/yyyy on the register's calendar."""
        return moment.astimezone(ZoneInfo(self.timezone)).strftime("%d/%m/%Y")

    def purge_old_sales(self) -> PurgeReport:
        """
        Delete every sale created strictly before the cutoff.

        Running it again without new old data deletes nothing and succeeds.

        Returns:
            PurgeReport with the number of deleted sales and the cutoff.
        """
        try:
            cutoff = self.cutoff()
            logger.info(
                f"Purging sales older than {self.retention_months} months "
                f"(before {cutoff.isoformat()})"
            )

            deleted = self.store.delete_sales_older_than(cutoff)

            message = (
                f"{deleted} vente(s) supprimée(s) "
                f"(antérieures au {self.format_date(cutoff)})"
            )
            logger.info(f"Purge completed: {message}")

            return PurgeReport(
                success=True,
                deleted_count=deleted,
                cutoff_date=cutoff,
                message=message,
            )

        except Exception as e:
            logger.exception("Failed to purge old sales")
            return PurgeReport(success=False, error=str(e) or type(e).__name__)

    def get_purge_stats(self) -> PurgeStats:
        """Count all sales and those a purge would delete now."""
        try:
            cutoff = self.cutoff()
            total = self.store.count_sales()
            old = self.store.count_sales_older_than(cutoff)
            return PurgeStats(total_sales=total, old_sales=old, cutoff_date=cutoff)

        except Exception as e:
            logger.exception("Failed to compute purge statistics")
            return PurgeStats(
                total_sales=0,
                old_sales=0,
                cutoff_date=None,
                error=str(e) or type(e).__name__,
            )
