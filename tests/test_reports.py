"""
Tests for the reports module (json_exporter, sales_export).

Uses Python's unittest module with tempfile for file output tests.
Tests the JSON register snapshot, the CSV register and the PDF/HTML
register.
"""

from __future__ import annotations

import csv
import gzip
import json
import tempfile
import unittest
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

from pyroregistre.reports import COLUMNS, ExportResult, JsonExporter, SalesExporter
from pyroregistre.storage import ProductLine, SaleRecord, SqliteSalesStore, Store, User


def make_sale(sale_id: int = 1, products: list[ProductLine] | None = None) -> SaleRecord:
    return SaleRecord(
        id=sale_id,
        store_id=1,
        user_id=1,
        vendeur="Martin",
        nom="Dupont",
        prenom="Jeanne",
        date_naissance="1980-04-12",
        lieu_naissance="Lyon",
        type_identite="CNI",
        numero_identite="X12345678",
        autorite_delivrance="Préfecture du Rhône",
        date_delivrance="2019-06-01",
        mode_paiement="Carte",
        products=products if products is not None else [ProductLine("Fontaine", "F2", 2, "3760123456789")],
        timestamp=datetime(2025, 1, 15, 23, 30, tzinfo=UTC),
    )


class TestExportResult(unittest.TestCase):
    """Tests for ExportResult dataclass."""

    def test_to_dict(self) -> None:
        result = ExportResult(
            success=True,
            path=Path("/tmp/registre.json"),
            size_bytes=1024,
            record_count=3,
            export_type="json",
        )

        data = result.to_dict()

        self.assertTrue(data["success"])
        self.assertEqual(data["path"], "/tmp/registre.json")
        self.assertEqual(data["record_count"], 3)
        self.assertIsNone(data["error"])


class TestJsonExporter(unittest.TestCase):
    """Tests for JsonExporter."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        self.store = SqliteSalesStore(Path(self.temp_dir) / "registre.db")
        self.store.initialize()
        shop = self.store.create_store(Store(id=None, name="Boutique Centre"))
        user = self.store.create_user(
            User(id=None, username="admin", password_hash="$2b$10$secret", role="admin")
        )
        sale = make_sale()
        sale.id = None
        sale.store_id = shop.id
        sale.user_id = user.id
        self.store.create_sale(sale)

        self.exporter = JsonExporter(self.store)
        self.output_dir = Path(self.temp_dir) / "exports"

    def tearDown(self) -> None:
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_document_shape(self) -> None:
        document = self.exporter.build()

        self.assertEqual(document["version"], "1.0")
        self.assertEqual(document["type"], "manual")
        self.assertEqual(set(document["data"]), {"users", "stores", "sales"})
        self.assertEqual(
            document["metadata"],
            {"totalUsers": 1, "totalStores": 1, "totalSales": 1, "exportedBy": "admin"},
        )

    def test_password_hashes_never_exported(self) -> None:
        document = self.exporter.build()

        user = document["data"]["users"][0]
        self.assertNotIn("password", user)
        self.assertNotIn("$2b$10$secret", json.dumps(document))

    def test_sales_include_products(self) -> None:
        document = self.exporter.build()

        sale = document["data"]["sales"][0]
        self.assertEqual(sale["products"][0]["typeArticle"], "Fontaine")
        self.assertEqual(sale["autoriteDelivrance"], "Préfecture du Rhône")

    def test_export_writes_file(self) -> None:
        result = self.exporter.export(self.output_dir)

        self.assertTrue(result.success)
        self.assertEqual(result.record_count, 1)
        self.assertTrue(result.path.name.startswith("registre-export-"))
        self.assertTrue(result.path.name.endswith(".json"))

        with open(result.path, encoding="utf-8") as f:
            data = json.load(f)
        self.assertEqual(data["metadata"]["totalSales"], 1)
        # Non-ASCII kept as is
        self.assertIn("Préfecture", result.path.read_text(encoding="utf-8"))

    def test_export_compressed(self) -> None:
        result = self.exporter.export(self.output_dir, compress=True)

        self.assertTrue(result.path.name.endswith(".json.gz"))
        with gzip.open(result.path, "rt", encoding="utf-8") as f:
            data = json.load(f)
        self.assertEqual(data["metadata"]["totalStores"], 1)

    def test_export_failure_reported(self) -> None:
        store = MagicMock()
        store.list_users.side_effect = ConnectionError("connection refused")

        result = JsonExporter(store).export(self.output_dir)

        self.assertFalse(result.success)
        self.assertIn("connection refused", result.error)


class TestSalesExporterRows(unittest.TestCase):
    """Tests for the flattened register rows."""

    def setUp(self) -> None:
        self.exporter = SalesExporter(timezone="Europe/Paris")

    def test_columns(self) -> None:
        self.assertEqual(len(COLUMNS), 18)
        self.assertEqual(COLUMNS[0], "ID Vente")
        self.assertEqual(COLUMNS[-1], "Code générique")

    def test_one_row_per_product(self) -> None:
        sale = make_sale(products=[
            ProductLine("Fontaine", "F2", 2),
            ProductLine("Chandelle romaine", "F3", 1, "3760000000001"),
        ])

        rows = self.exporter.rows([sale])

        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[0][13:], [1, "Fontaine", "F2", 2, ""])
        self.assertEqual(rows[1][13:], [2, "Chandelle romaine", "F3", 1, "3760000000001"])
        self.assertEqual(rows[0][:13], rows[1][:13])

    def test_sale_without_products(self) -> None:
        rows = self.exporter.rows([make_sale(products=[])])

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0][13:], ["N/A", "N/A", "N/A", 0, ""])

    def test_local_date_and_time(self) -> None:
        # 23:30 UTC is 00:30 the next day in Paris
        rows = self.exporter.rows([make_sale()])

        self.assertEqual(rows[0][1], "16/01/2025")
        self.assertEqual(rows[0][2], "00:30:00")


class TestSalesExporterFiles(unittest.TestCase):
    """Tests for the CSV and PDF register files."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        self.output_dir = Path(self.temp_dir)
        self.exporter = SalesExporter()

    def tearDown(self) -> None:
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_export_csv(self) -> None:
        result = self.exporter.export_csv([make_sale(1), make_sale(2, products=[])], self.output_dir)

        self.assertTrue(result.success)
        self.assertEqual(result.export_type, "csv")
        self.assertEqual(result.record_count, 2)
        self.assertRegex(result.path.name, r"^registre-feux-artifice-\d{4}-\d{2}-\d{2}\.csv$")

        with open(result.path, encoding="utf-8-sig", newline="") as f:
            rows = list(csv.reader(f, delimiter=";"))
        self.assertEqual(rows[0], COLUMNS)
        self.assertEqual(len(rows), 3)
        self.assertEqual(rows[2][13], "N/A")

    def test_csv_has_bom(self) -> None:
        result = self.exporter.export_csv([make_sale()], self.output_dir)

        self.assertTrue(result.path.read_bytes().startswith(b"\xef\xbb\xbf"))

    def test_generate_html_escapes_values(self) -> None:
        sale = make_sale()
        sale.nom = "<script>"

        content = self.exporter.generate_html([sale])

        self.assertIn("&lt;script&gt;", content)
        self.assertNotIn("<td><script>", content)
        self.assertIn("Registre des ventes", content)

    def test_generate_html_marks_empty_sales(self) -> None:
        content = self.exporter.generate_html([make_sale(products=[])])

        self.assertIn('class="no-products"', content)

    def test_pdf_falls_back_to_html(self) -> None:
        with patch("pyroregistre.reports.sales_export.WEASYPRINT_AVAILABLE", False):
            result = self.exporter.export_pdf([make_sale()], self.output_dir)

        self.assertTrue(result.success)
        self.assertEqual(result.export_type, "html")
        self.assertEqual(result.path.suffix, ".html")
        self.assertTrue(result.path.exists())

    def test_pdf_generation_failure(self) -> None:
        html_cls = MagicMock()
        html_cls.return_value.write_pdf.side_effect = RuntimeError("cairo missing")

        with patch("pyroregistre.reports.sales_export.WEASYPRINT_AVAILABLE", True), \
                patch("pyroregistre.reports.sales_export.HTML", html_cls, create=True), \
                patch("pyroregistre.reports.sales_export.CSS", MagicMock(), create=True):
            result = self.exporter.export_pdf([make_sale()], self.output_dir)

        self.assertFalse(result.success)
        self.assertIn("PDF generation failed", result.error)
        self.assertEqual(result.path.suffix, ".html")


if __name__ == "__main__":
    unittest.main()
