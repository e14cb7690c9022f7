"""
Exports of the sales register.

Supported Formats:
    - JSON: Complete register snapshot (stores, users without password
            hashes, sales with product lines).
    - CSV: One row per product line with French column headers.
    - PDF: Printable register table. Requires weasyprint.
    - HTML: Browser-viewable register (generated alongside PDF).

Example:
    from pyroregistre.reports import JsonExporter, SalesExporter

    result = JsonExporter(store).export(Path("./exports"))

    exporter = SalesExporter(timezone="Europe/Paris")
    result = exporter.export_csv(store.list_sales(), Path("./exports"))
"""

from pyroregistre.reports.json_exporter import (
    ExportResult,
    JsonExporter,
)
from pyroregistre.reports.sales_export import (
    COLUMNS,
    WEASYPRINT_AVAILABLE,
    SalesExporter,
)

__all__ = [
    # JSON Exporter
    "JsonExporter",
    "ExportResult",
    # Register exports
    "SalesExporter",
    "COLUMNS",
    "WEASYPRINT_AVAILABLE",
]
