"""
Unit tests for Pydantic models of the receipt core.
Tests data validation, type checking, and model behavior.
"""

import pytest
from datetime import date
from decimal import Decimal
from pydantic import ValidationError

from smartspend.models import (
    LineItem, Receipt, ReceiptCreate, ReceiptUpdate, ReceiptFilter, ReceiptStatus,
    PaginatedResult, FieldConfidence, FieldStatus, AnalyticsFilter, SpendingSummary,
    UNKNOWN_MERCHANT_NAME
)


class TestLineItemModel:
    """Test cases for the LineItem model."""

    def test_valid_line_item(self):
        """Test creating a valid line item."""
        item = LineItem(name="  Süt 1L ", quantity=Decimal("2"), unit_price=Decimal("12.50"),
                        total_price=Decimal("25.00"), confidence=0.9)

        assert item.name == "Süt 1L"
        assert item.display_name == "Süt 1L"
        assert item.total_price == Decimal("25.00")

    def test_display_name_prefers_clean_name(self):
        """Test the cleaned name is used for display when present."""
        item = LineItem(name="SUT 1L %1", clean_name="Süt 1L", unit_price=Decimal("25.50"),
                        total_price=Decimal("25.50"))
        assert item.display_name == "Süt 1L"

    def test_quantity_must_be_positive(self):
        """Test quantity validation."""
        with pytest.raises(ValidationError):
            LineItem(name="Ekmek", quantity=Decimal("0"), unit_price=Decimal("5"),
                     total_price=Decimal("0"))

    def test_blank_name_rejected(self):
        """Test item name validation."""
        with pytest.raises(ValidationError) as exc_info:
            LineItem(name="   ", unit_price=Decimal("5"), total_price=Decimal("5"))
        assert "Item name cannot be empty" in str(exc_info.value)

    def test_discount_cannot_exceed_gross(self):
        """Test discount is bounded by quantity times unit price."""
        with pytest.raises(ValidationError) as exc_info:
            LineItem(name="Ekmek", quantity=Decimal("1"), unit_price=Decimal("5.00"),
                     total_price=Decimal("0"), discount=Decimal("6.00"))
        assert "Discount cannot exceed" in str(exc_info.value)

        item = LineItem(name="Ekmek", quantity=Decimal("2"), unit_price=Decimal("5.00"),
                        total_price=Decimal("8.00"), discount=Decimal("2.00"))
        assert item.discount == Decimal("2.00")


class TestReceiptModel:
    """Test cases for the Receipt model."""

    @pytest.fixture
    def items(self):
        return [
            LineItem(name="Süt", unit_price=Decimal("25.50"), total_price=Decimal("25.50")),
            LineItem(name="Ekmek", quantity=Decimal("2"), unit_price=Decimal("5.00"),
                     total_price=Decimal("10.00")),
        ]

    def test_defaults(self):
        """Test a bare receipt is an unknown-merchant draft."""
        receipt = Receipt()

        assert receipt.merchant_name == UNKNOWN_MERCHANT_NAME
        assert receipt.status == ReceiptStatus.PROCESSING
        assert receipt.currency == "TRY"
        assert receipt.items == []
        assert receipt.amount == Decimal("0")

    def test_items_total(self, items):
        """Test line item totals are summed."""
        receipt = Receipt(merchant_name="Migros", total=Decimal("35.50"), items=items)
        assert receipt.items_total == Decimal("35.50")

    def test_completed_requires_total(self):
        """Test completed receipts must carry a total."""
        with pytest.raises(ValidationError) as exc_info:
            Receipt(merchant_name="Migros", status=ReceiptStatus.COMPLETED)
        assert "Completed receipts must have a total amount" in str(exc_info.value)

        receipt = Receipt(merchant_name="Migros", status=ReceiptStatus.COMPLETED,
                          total=Decimal("10.00"))
        assert receipt.status == ReceiptStatus.COMPLETED

    def test_negative_total_rejected(self):
        """Test amount validation rules."""
        with pytest.raises(ValidationError):
            Receipt(merchant_name="Migros", total=Decimal("-1.00"))

    def test_currency_validation(self):
        """Test currency code validation."""
        with pytest.raises(ValidationError) as exc_info:
            Receipt(merchant_name="Migros", currency="try")
        assert "Currency must be a 3-letter code" in str(exc_info.value)

    def test_merchant_name_validation(self):
        """Test merchant name is trimmed and may not be blank."""
        assert Receipt(merchant_name="  BİM  ").merchant_name == "BİM"
        with pytest.raises(ValidationError):
            Receipt(merchant_name="   ")

    def test_json_serialization(self, items):
        """Test JSON serialization of receipt."""
        receipt = Receipt(id="r1", merchant_name="Migros", purchase_date=date(2024, 1, 15),
                          total=Decimal("35.50"), items=items)

        data = receipt.model_dump(mode="json")
        assert data["purchase_date"] == "2024-01-15"
        assert data["status"] == "processing"
        assert len(data["items"]) == 2


class TestReceiptCreateUpdate:
    """Test cases for the create/update payload models."""

    def test_receipt_create(self):
        """Test creating a valid ReceiptCreate object."""
        payload = ReceiptCreate(merchant_name="A101", total=Decimal("15.50"))
        assert payload.merchant_name == "A101"
        assert payload.status == ReceiptStatus.PROCESSING

    def test_partial_update(self):
        """Test only specified fields are set."""
        update = ReceiptUpdate(total=Decimal("20.00"))

        assert update.model_dump(exclude_unset=True) == {"total": Decimal("20.00")}
        assert update.merchant_name is None

    def test_empty_update(self):
        """Test creating empty update object."""
        assert ReceiptUpdate().model_dump(exclude_unset=True) == {}


class TestFilters:
    """Test cases for filter and pagination models."""

    def test_receipt_filter_date_range(self):
        """Test date range validation."""
        with pytest.raises(ValidationError):
            ReceiptFilter(start_date=date(2024, 2, 1), end_date=date(2024, 1, 1))

    def test_receipt_filter_amount_range(self):
        """Test amount range validation."""
        with pytest.raises(ValidationError):
            ReceiptFilter(min_amount=Decimal("50"), max_amount=Decimal("10"))

    def test_analytics_filter_range(self):
        with pytest.raises(ValidationError):
            AnalyticsFilter(start_date=date(2024, 3, 1), end_date=date(2024, 1, 1))

    def test_paginated_result_pages(self):
        """Test page count is derived from total and page size."""
        result = PaginatedResult[int].build([1, 2], total=45, page=1, page_size=20)
        assert result.total_pages == 3

        empty = PaginatedResult[int].build([], total=0, page=1, page_size=20)
        assert empty.total_pages == 0


class TestDerivedModels:
    """Test cases for derived, immutable result models."""

    def test_field_confidence_requires_review(self):
        accepted = FieldConfidence(field="total", confidence=0.97, threshold=0.9,
                                   status=FieldStatus.AUTO_ACCEPTED)
        low = FieldConfidence(field="total", confidence=0.92, threshold=0.9,
                              status=FieldStatus.LOW_CONFIDENCE)

        assert not accepted.requires_review
        assert low.requires_review

    def test_analytics_results_are_frozen(self):
        summary = SpendingSummary(total_spent=Decimal("10"), receipt_count=1,
                                  average_receipt_amount=Decimal("10"))
        with pytest.raises(ValidationError):
            summary.total_spent = Decimal("20")
