"""
Register exports for inspection by the authorities.

The register is exported one row per product line with the French column
headers the inspectors expect. A sale without product lines still gets one
row, marked N/A.

Formats:
    - CSV: semicolon separated, UTF-8 with BOM so spreadsheet tools detect
      the encoding
    - PDF: the register as a printable table. Requires weasyprint; falls back
      to HTML output if weasyprint is not installed.
"""

from __future__ import annotations

import csv
import html
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from pyroregistre.reports.json_exporter import ExportResult

if TYPE_CHECKING:
    from pyroregistre.storage.models import SaleRecord

logger = logging.getLogger(__name__)

# Check for weasyprint availability
try:
    from weasyprint import CSS, HTML
    WEASYPRINT_AVAILABLE = True
except ImportError:
    WEASYPRINT_AVAILABLE = False
    logger.debug("weasyprint not installed - PDF generation unavailable")


COLUMNS = [
    "ID Vente",
    "Date",
    "Heure",
    "Vendeur",
    "Nom",
    "Prénom",
    "Date de naissance",
    "Lieu de naissance",
    "Type d'identité",
    "Numéro d'identité",
    "Autorité de délivrance",
    "Date de délivrance",
    "Mode de paiement",
    "Produit N°",
    "Type d'article",
    "Catégorie",
    "Quantité",
    "Code générique",
]

FILE_PREFIX = "registre-feux-artifice"

REGISTER_CSS = """
@page {
    size: A4 landscape;
    margin: 1cm;
    @bottom-right {
        content: "Page " counter(page) " / " counter(pages);
        font-size: 8pt;
        color: #666666;
    }
}

body {
    font-family: "Helvetica Neue", Arial, sans-serif;
    font-size: 8pt;
    color: #000000;
}

h1 {
    font-size: 14pt;
    font-weight: 600;
    margin-bottom: 0.2em;
}

.generated {
    color: #666666;
    margin-bottom: 1em;
}

table {
    width: 100%;
    border-collapse: collapse;
}

th, td {
    border: 1px solid #999999;
    padding: 2px 4px;
    text-align: left;
    vertical-align: top;
}

th {
    background: #e6e6e6;
}

tr.no-products td {
    color: #666666;
}
"""


class SalesExporter:
    """
    Exporter for the register in CSV and PDF form.

    Dates and times are shown on the register's local calendar.

    Example:
        exporter = SalesExporter(timezone="Europe/Paris")
        sales = store.list_sales()
        result = exporter.export_csv(sales, Path("./exports"))
    """

    def __init__(self, timezone: str = "Europe/Paris") -> None:
        self.timezone = timezone
        self._tz = ZoneInfo(timezone)

    @property
    def pdf_available(self) -> bool:
        """Check if PDF generation is available."""
        return WEASYPRINT_AVAILABLE

    def _local(self, sale: SaleRecord) -> datetime | None:
        if sale.timestamp is None:
            return None
        return sale.timestamp.astimezone(self._tz)

    def rows(self, sales: list[SaleRecord]) -> list[list[Any]]:
        """Flatten sales into one row per product line."""
        rows: list[list[Any]] = []
        for sale in sales:
            local = self._local(sale)
            prefix = [
                sale.id,
                local.strftime("%d/%m/%Y") if local else "",
                local.strftime("%H:%M:%S") if local else "",
                sale.vendeur,
                sale.nom,
                sale.prenom,
                sale.date_naissance or "",
                sale.lieu_naissance or "",
                sale.type_identite or "",
                sale.numero_identite or "",
                sale.autorite_delivrance or "",
                sale.date_delivrance or "",
                sale.mode_paiement or "",
            ]

            if not sale.products:
                rows.append(prefix + ["N/A", "N/A", "N/A", 0, ""])
                continue

            for index, product in enumerate(sale.products, start=1):
                rows.append(
                    prefix
                    + [
                        index,
                        product.type_article,
                        product.categorie,
                        product.quantite,
                        product.gencode or "",
                    ]
                )
        return rows

    def _filename(self, extension: str) -> str:
        return f"{FILE_PREFIX}-{datetime.now(UTC).strftime('%Y-%m-%d')}.{extension}"

    def export_csv(self, sales: list[SaleRecord], output_dir: Path) -> ExportResult:
        """
        Write the register as CSV.

        Args:
            sales: Sales to export, in the order they should appear.
            output_dir: Directory to write into (created if missing).
        """
        try:
            output_dir = Path(output_dir)
            output_dir.mkdir(parents=True, exist_ok=True)
            filepath = output_dir / self._filename("csv")

            with open(filepath, "w", encoding="utf-8-sig", newline="") as f:
                writer = csv.writer(f, delimiter=";", lineterminator="\n")
                writer.writerow(COLUMNS)
                writer.writerows(self.rows(sales))

            logger.info(f"Exported {len(sales)} sale(s) to {filepath}")
            return ExportResult(
                success=True,
                path=filepath,
                size_bytes=filepath.stat().st_size,
                record_count=len(sales),
                export_type="csv",
            )

        except OSError as e:
            logger.error(f"CSV export failed: {e}")
            return ExportResult(
                success=False,
                path=None,
                size_bytes=0,
                record_count=0,
                export_type="csv",
                error=str(e),
            )

    def generate_html(self, sales: list[SaleRecord], title: str = "Registre des ventes") -> str:
        """Render the register as a standalone HTML document."""
        generated = datetime.now(UTC).astimezone(self._tz).strftime("%d/%m/%Y %H:%M")

        header_cells = "".join(f"<th>{html.escape(column)}</th>" for column in COLUMNS)
        body_rows = []
        for row in self.rows(sales):
            css_class = ' class="no-products"' if row[13] == "N/A" else ""
            cells = "".join(f"<td>{html.escape(str(value))}</td>" for value in row)
            body_rows.append(f"<tr{css_class}>{cells}</tr>")

        return f"""<!DOCTYPE html>
<html lang="fr">
<head>
    <meta charset="UTF-8">
    <title>{html.escape(title)}</title>
    <style>{REGISTER_CSS}</style>
</head>
<body>
<h1>{html.escape(title)}</h1>
<p class="generated">Généré le {generated} - {len(sales)} vente(s)</p>
<table>
<thead><tr>{header_cells}</tr></thead>
<tbody>
{chr(10).join(body_rows)}
</tbody>
</table>
</body></html>"""

    def export_pdf(self, sales: list[SaleRecord], output_dir: Path) -> ExportResult:
        """
        Write the register as PDF.

        The HTML rendering is always written next to the PDF. Without
        weasyprint, only the HTML is produced and the result points at it.
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        html_content = self.generate_html(sales)
        html_path = output_dir / self._filename("html")
        with open(html_path, "w", encoding="utf-8") as f:
            f.write(html_content)

        if not WEASYPRINT_AVAILABLE:
            logger.warning(
                "weasyprint not installed - PDF generation skipped. "
                "Install with: pip install weasyprint"
            )
            return ExportResult(
                success=True,
                path=html_path,
                size_bytes=html_path.stat().st_size,
                record_count=len(sales),
                export_type="html",
            )

        pdf_path = output_dir / self._filename("pdf")
        try:
            HTML(string=html_content).write_pdf(
                pdf_path, stylesheets=[CSS(string=REGISTER_CSS)]
            )
        except Exception as e:
            logger.error(f"Failed to generate PDF: {e}")
            return ExportResult(
                success=False,
                path=html_path,
                size_bytes=html_path.stat().st_size,
                record_count=0,
                export_type="pdf",
                error=f"PDF generation failed: {e}",
            )

        logger.info(f"Generated PDF register: {pdf_path}")
        return ExportResult(
            success=True,
            path=pdf_path,
            size_bytes=pdf_path.stat().st_size,
            record_count=len(sales),
            export_type="pdf",
        )
