"""
Unit tests for CSV and JSON export of receipts.
"""

import io
import json
import re
import pytest
import pandas as pd
from datetime import date
from decimal import Decimal

from smartspend.config import Settings
from smartspend.export import DataExporter
from smartspend.models import LineItem, Receipt


@pytest.fixture
def exporter():
    return DataExporter()


@pytest.fixture
def receipts():
    return [
        Receipt(id="r1", merchant_id="migros", merchant_name="Migros", purchase_date=date(2024, 1, 15),
                total=Decimal("37.50"),
                items=[
                    LineItem(name="Süt 1L", unit_price=Decimal("25.50"), total_price=Decimal("25.50"),
                             category="Dairy & Breakfast", taxonomy_id="1.1.1.1"),
                    LineItem(name="Ekmek", quantity=Decimal("2"), unit_price=Decimal("6.00"),
                             total_price=Decimal("12.00"), category="Bakery"),
                ]),
        Receipt(id="r2", merchant_name="Unknown", purchase_date=date(2024, 1, 20)),
    ]


class TestCSVExport:
    """Test cases for CSV export."""

    def test_one_row_per_item(self, exporter, receipts):
        content = exporter.export_to_csv(receipts)
        df = pd.read_csv(io.StringIO(content))

        assert len(df) == 3
        assert list(df["receipt_id"]) == ["r1", "r1", "r2"]
        assert df["item_name"].iloc[0] == "Süt 1L"
        assert df["item_total_price"].iloc[1] == pytest.approx(12.0)
        assert "item_product_id" in df.columns
        assert "item_barcode" in df.columns
        assert pd.isna(df["item_name"].iloc[2])

    def test_empty_export(self, exporter):
        assert exporter.export_to_csv([]) == ""


class TestJSONExport:
    """Test cases for JSON export."""

    def test_detailed(self, exporter, receipts):
        data = json.loads(exporter.export_to_json(receipts))

        assert data["export_info"]["format"] == "detailed"
        assert data["export_info"]["total_receipts"] == 2
        assert data["receipts"][0]["items"][1]["name"] == "Ekmek"
        assert data["receipts"][0]["purchase_date"] == "2024-01-15"

    def test_summary(self, exporter, receipts):
        data = json.loads(exporter.export_to_json(receipts, format_type="summary"))
        report = data["report"]

        assert Decimal(report["summary"]["total_spent"]) == Decimal("37.50")
        assert report["summary"]["receipt_count"] == 2
        assert report["category_breakdown"][0]["category"] == "Dairy & Breakfast"

    def test_summary_formatted_amounts(self, exporter, receipts):
        data = json.loads(exporter.export_to_json(receipts, format_type="summary"))

        assert data["export_info"]["currency"] == "TRY"
        assert data["formatted"]["total_spent"] == "₺37,50"

    def test_display_settings_from_configuration(self, receipts):
        settings = Settings(_env_file=None, currency="USD", locale="en_US")
        exporter = DataExporter.from_settings(settings)

        data = json.loads(exporter.export_to_json(receipts, format_type="summary"))

        assert data["export_info"]["currency"] == "USD"
        assert data["formatted"]["total_spent"] == "$37.50"

    def test_unsupported_format(self, exporter, receipts):
        with pytest.raises(ValueError):
            exporter.export_to_json(receipts, format_type="xml")


def test_export_filename(exporter):
    filename = exporter.get_export_filename("CSV", "filtered")
    assert re.match(r"^receipts_filtered_\d{8}_\d{6}\.csv$", filename)
