"""
JSON export of the complete register.

The export carries every store, every user (without password hash) and
every sale with its product lines, plus counts for a quick sanity check.
It is the portable counterpart of the SQL dumps: readable without a
database, but not replayable by the restore path.

Structure:
    {
        "timestamp": "...",
        "version": "1.0",
        "type": "manual",
        "data": {"users": [...], "stores": [...], "sales": [...]},
        "metadata": {"totalUsers": n, "totalStores": n, "totalSales": n,
                     "exportedBy": "..."}
    }
"""

from __future__ import annotations

import gzip
import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pyroregistre.storage.sales_store import SalesStore

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = "1.0"


@dataclass
class ExportResult:
    """
    Result of an export operation.

    Attributes:
        success: Whether the export completed.
        path: Written file.
        size_bytes: Size of the written file.
        record_count: Number of sales exported.
        export_type: json, csv, pdf or html.
        error: Error message if export failed.
    """

    success: bool
    path: Path | None
    size_bytes: int
    record_count: int
    export_type: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "path": str(self.path) if self.path else None,
            "size_bytes": self.size_bytes,
            "record_count": self.record_count,
            "export_type": self.export_type,
            "error": self.error,
        }


class JsonExporter:
    """
    Exporter for the JSON register snapshot.

    Example:
        exporter = JsonExporter(store)
        result = exporter.export(Path("./exports"))
    """

    def __init__(self, store: SalesStore, exported_by: str = "admin") -> None:
        self.store = store
        self.exported_by = exported_by

    def build(self, export_type: str = "manual") -> dict[str, Any]:
        """Collect the register into an export document."""
        users = self.store.list_users()
        stores = self.store.list_stores()

        sales = []
        for store in stores:
            sales.extend(self.store.list_sales_for_store(store.id))

        return {
            "timestamp": datetime.now(UTC).isoformat(),
            "version": EXPORT_FORMAT_VERSION,
            "type": export_type,
            "data": {
                "users": [user.to_dict(include_password=False) for user in users],
                "stores": [store.to_dict() for store in stores],
                "sales": [sale.to_dict() for sale in sales],
            },
            "metadata": {
                "totalUsers": len(users),
                "totalStores": len(stores),
                "totalSales": len(sales),
                "exportedBy": self.exported_by,
            },
        }

    def export(
        self,
        output_dir: Path,
        compress: bool = False,
        export_type: str = "manual",
    ) -> ExportResult:
        """
        Write the register snapshot to ``output_dir``.

        Args:
            output_dir: Directory to write into (created if missing).
            compress: Whether to gzip the file.
            export_type: Value of the document's ``type`` field.
        """
        try:
            document = self.build(export_type)

            output_dir = Path(output_dir)
            output_dir.mkdir(parents=True, exist_ok=True)
            filepath = output_dir / self._generate_filename(compress)
            size = self._write_json(document, filepath, compress)

            record_count = document["metadata"]["totalSales"]
            logger.info(f"Exported register to {filepath} ({record_count} sales)")

            return ExportResult(
                success=True,
                path=filepath,
                size_bytes=size,
                record_count=record_count,
                export_type="json",
            )

        except Exception as e:
            logger.exception("JSON export failed")
            return ExportResult(
                success=False,
                path=None,
                size_bytes=0,
                record_count=0,
                export_type="json",
                error=str(e),
            )

    def _generate_filename(self, compress: bool) -> str:
        """Generate filename with timestamp."""
        timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
        extension = ".json.gz" if compress else ".json"
        return f"registre-export-{timestamp}{extension}"

    def _write_json(
        self,
        data: dict[str, Any],
        filepath: Path,
        compress: bool,
    ) -> int:
        """Write JSON data to file and return its size."""
        json_content = json.dumps(data, indent=2, default=str, ensure_ascii=False)

        if compress:
            with gzip.open(filepath, "wt", encoding="utf-8") as f:
                f.write(json_content)
        else:
            with open(filepath, "w", encoding="utf-8") as f:
                f.write(json_content)

        return filepath.stat().st_size
