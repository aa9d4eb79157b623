"""
Export functionality for receipt data.
Provides CSV and JSON export of receipts and their line items.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

from .analytics import AnalyticsEngine
from .config import Settings
from .currency import format_amount
from .models import AnalyticsFilter, Receipt

logger = logging.getLogger(__name__)

RECEIPT_COLUMNS = [
    "receipt_id", "merchant_id", "merchant_name", "purchase_date", "total", "currency",
    "status", "ocr_confidence",
]
ITEM_COLUMNS = [
    "item_position", "item_name", "item_clean_name", "item_quantity", "item_unit",
    "item_unit_price", "item_total_price", "item_discount", "item_category", "item_taxonomy_id",
    "item_product_id", "item_barcode",
]


class DataExporter:
    """Handles data export functionality for receipt data."""

    def __init__(self, analytics: Optional[AnalyticsEngine] = None, currency: str = "TRY",
                 locale: str = "tr_TR"):
        """Initialize the data exporter.

        Args:
            analytics: Engine used for summary exports
            currency: Currency code for display amounts in summaries
            locale: Locale controlling separators of display amounts
        """
        self.analytics = analytics or AnalyticsEngine()
        self.currency = currency
        self.locale = locale
        self.logger = logger

    @classmethod
    def from_settings(cls, settings: Settings,
                      analytics: Optional[AnalyticsEngine] = None) -> "DataExporter":
        return cls(analytics=analytics, currency=settings.currency, locale=settings.locale)

    def export_to_csv(self, receipts: List[Receipt]) -> str:
        """Export receipts to CSV format, one row per line item.

        Receipts without items still get one row with empty item columns.

        Args:
            receipts: List of receipts to export

        Returns:
            CSV content as string
        """
        try:
            if not receipts:
                return ""

            rows = []
            for receipt in receipts:
                header = self._receipt_row(receipt)
                if not receipt.items:
                    rows.append(header)
                    continue
                for position, item in enumerate(receipt.items):
                    row = dict(header)
                    row.update({
                        "item_position": position,
                        "item_name": item.name,
                        "item_clean_name": item.clean_name,
                        "item_quantity": float(item.quantity),
                        "item_unit": item.unit,
                        "item_unit_price": float(item.unit_price),
                        "item_total_price": float(item.total_price),
                        "item_discount": float(item.discount) if item.discount is not None else None,
                        "item_category": item.category,
                        "item_taxonomy_id": item.taxonomy_id,
                        "item_product_id": item.product_id,
                        "item_barcode": item.barcode,
                    })
                    rows.append(row)

            df = pd.DataFrame(rows, columns=RECEIPT_COLUMNS + ITEM_COLUMNS)
            df["item_position"] = df["item_position"].astype("Int64")
            csv_content = df.to_csv(index=False)

            self.logger.info(f"Exported {len(receipts)} receipts ({len(rows)} rows) to CSV")
            return csv_content

        except Exception as e:
            self.logger.error(f"CSV export failed: {str(e)}")
            raise

    def export_to_json(self, receipts: List[Receipt], format_type: str = "detailed",
                       analytics_filter: Optional[AnalyticsFilter] = None) -> str:
        """Export receipts to JSON format.

        Args:
            receipts: List of receipts to export
            format_type: 'detailed' or 'summary'
            analytics_filter: Filter for the summary report

        Returns:
            JSON content as string
        """
        try:
            if format_type == "summary":
                return self._export_summary_json(receipts, analytics_filter)
            elif format_type == "detailed":
                return self._export_detailed_json(receipts)
            raise ValueError(f"Unsupported JSON export format: {format_type}")

        except Exception as e:
            self.logger.error(f"JSON export failed: {str(e)}")
            raise

    def _export_detailed_json(self, receipts: List[Receipt]) -> str:
        """Export detailed JSON format."""
        json_data = {
            "export_info": self._export_info("detailed", len(receipts)),
            "receipts": [receipt.model_dump(mode="json") for receipt in receipts],
        }
        return json.dumps(json_data, indent=2, ensure_ascii=False)

    def _export_summary_json(self, receipts: List[Receipt],
                             analytics_filter: Optional[AnalyticsFilter]) -> str:
        """Export summary JSON format with aggregated data."""
        report = self.analytics.build_report(receipts, analytics_filter)
        summary = report.summary
        export_info = self._export_info("summary", len(receipts))
        export_info["currency"] = self.currency
        json_data = {
            "export_info": export_info,
            "report": report.model_dump(mode="json"),
            "formatted": {
                "total_spent": format_amount(summary.total_spent, self.currency, self.locale),
                "average_receipt_amount": format_amount(summary.average_receipt_amount,
                                                        self.currency, self.locale),
            },
        }
        return json.dumps(json_data, indent=2, ensure_ascii=False)

    def get_export_filename(self, format_type: str, export_scope: str = "all") -> str:
        """Generate appropriate filename for export.

        Args:
            format_type: 'csv' or 'json'
            export_scope: 'all', 'filtered' or 'summary'

        Returns:
            Generated filename
        """
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"receipts_{export_scope}_{timestamp}.{format_type.lower()}"

    @staticmethod
    def _receipt_row(receipt: Receipt) -> Dict[str, Any]:
        return {
            "receipt_id": receipt.id,
            "merchant_id": receipt.merchant_id,
            "merchant_name": receipt.merchant_name,
            "purchase_date": receipt.purchase_date.isoformat() if receipt.purchase_date else None,
            "total": float(receipt.total) if receipt.total is not None else None,
            "currency": receipt.currency,
            "status": receipt.status.value,
            "ocr_confidence": receipt.ocr_confidence,
        }

    @staticmethod
    def _export_info(format_type: str, count: int) -> Dict[str, Any]:
        return {
            "timestamp": datetime.now().isoformat(),
            "format": format_type,
            "total_receipts": count,
        }
