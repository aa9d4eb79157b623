"""
Data models using Pydantic for the smartspend receipt core.
Provides validation and type checking for receipts, merchants, products,
decoded QR payloads, OCR results and derived analytics.
"""

import math
from datetime import datetime, date, time
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Generic, TypeVar

from pydantic import BaseModel, Field, field_validator, model_validator

UNKNOWN_MERCHANT_ID = "unknown"
UNKNOWN_MERCHANT_NAME = "Unknown"
UNKNOWN_ITEM_NAME = "Unknown item"

MAX_MERCHANT_NAME_LENGTH = 200
MAX_ITEM_NAME_LENGTH = 300
MAX_UNIT_LENGTH = 20
MAX_BARCODE_LENGTH = 32

T = TypeVar("T")


class ReceiptStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class MerchantCategory(str, Enum):
    GROCERY = "grocery"
    SUPERMARKET = "supermarket"
    CONVENIENCE = "convenience"
    OTHER = "other"


class PriceSource(str, Enum):
    """Provenance of a price observation. Not an ordering."""

    MANUAL = "manual"
    SCRAPED = "scraped"
    USER_REPORTED = "user_reported"


class TimePeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class QRDataFormat(str, Enum):
    GIB_EARCHIVE = "gib_earchive"
    UNKNOWN = "unknown"


class FieldStatus(str, Enum):
    """Review state of a single recognized field."""

    AUTO_ACCEPTED = "auto_accepted"
    LOW_CONFIDENCE = "low_confidence"
    NEEDS_REVIEW = "needs_review"


class MatchedBy(str, Enum):
    PATTERN = "pattern"
    FUZZY = "fuzzy"
    NONE = "none"


# ---------------------------------------------------------------------------
# Persistent entities
# ---------------------------------------------------------------------------

class LineItem(BaseModel):
    """A single purchased line on a receipt."""

    id: Optional[str] = Field(None, description="Line item identifier")
    receipt_id: Optional[str] = Field(None, description="Owning receipt identifier")
    name: str = Field(..., min_length=1, max_length=MAX_ITEM_NAME_LENGTH,
                      description="Raw item name as recognized")
    clean_name: Optional[str] = Field(None, max_length=MAX_ITEM_NAME_LENGTH,
                                      description="Cleaned/normalized name")
    quantity: Decimal = Field(Decimal("1"), gt=0, description="Purchased quantity")
    unit: Optional[str] = Field(None, max_length=MAX_UNIT_LENGTH,
                                description="Unit of measure (adet, kg, lt...)")
    unit_price: Decimal = Field(..., ge=0, description="Price per unit")
    total_price: Decimal = Field(..., ge=0, description="Line total after discount")
    confidence: float = Field(1.0, ge=0, le=1, description="Recognition confidence")
    category: Optional[str] = Field(None, max_length=100, description="Category label")
    taxonomy_id: Optional[str] = Field(None, description="Assigned taxonomy leaf id")
    product_id: Optional[str] = Field(None, description="Matched catalog product id")
    barcode: Optional[str] = Field(None, max_length=MAX_BARCODE_LENGTH,
                                   description="Printed or catalog barcode")
    discount: Optional[Decimal] = Field(None, ge=0, description="Discount applied to the line")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        """Item names must contain something other than whitespace."""
        if not v or not v.strip():
            raise ValueError('Item name cannot be empty')
        return v.strip()

    @model_validator(mode="after")
    def validate_discount(self):
        """Discount may not exceed the line total before discount."""
        if self.discount is not None and self.discount > self.quantity * self.unit_price:
            raise ValueError('Discount cannot exceed the line total before discount')
        return self

    @property
    def display_name(self) -> str:
        return self.clean_name or self.name


class Receipt(BaseModel):
    """Main receipt model with its owned line items."""

    id: Optional[str] = Field(None, description="Receipt identifier")
    merchant_id: Optional[str] = Field(None, description="Resolved merchant identifier")
    merchant_name: str = Field(UNKNOWN_MERCHANT_NAME, min_length=1,
                               max_length=MAX_MERCHANT_NAME_LENGTH,
                               description="Merchant display name")
    purchase_date: Optional[date] = Field(None, description="Date of purchase")
    total: Optional[Decimal] = Field(None, ge=0, description="Receipt total amount")
    currency: str = Field("TRY", max_length=3, description="Currency code")
    status: ReceiptStatus = Field(ReceiptStatus.PROCESSING, description="Processing status")
    items: List[LineItem] = Field(default_factory=list, description="Ordered line items")
    ocr_confidence: Optional[float] = Field(None, ge=0, le=1, description="Overall OCR confidence")
    created_at: Optional[datetime] = Field(None, description="Record creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")

    @field_validator('merchant_name')
    @classmethod
    def validate_merchant_name(cls, v):
        """Clean and validate merchant name."""
        if not v or not v.strip():
            raise ValueError('Merchant name cannot be empty')
        return v.strip()

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v):
        """Validate currency code format."""
        if len(v) != 3 or not v.isalpha() or not v.isupper():
            raise ValueError('Currency must be a 3-letter code (e.g., TRY, EUR)')
        return v

    @model_validator(mode="after")
    def validate_completed(self):
        """A completed receipt must carry a merchant name and a total."""
        if self.status == ReceiptStatus.COMPLETED and self.total is None:
            raise ValueError('Completed receipts must have a total amount')
        return self

    @property
    def items_total(self) -> Decimal:
        """Sum of the line item totals."""
        return sum((item.total_price for item in self.items), Decimal("0"))

    @property
    def amount(self) -> Decimal:
        """Total used for aggregation; an unset total counts as zero."""
        return self.total if self.total is not None else Decimal("0")


class ReceiptCreate(BaseModel):
    """Model for creating new receipts."""

    merchant_id: Optional[str] = None
    merchant_name: str = Field(UNKNOWN_MERCHANT_NAME, min_length=1, max_length=200)
    purchase_date: Optional[date] = None
    total: Optional[Decimal] = Field(None, ge=0)
    currency: str = Field("TRY", max_length=3)
    status: ReceiptStatus = ReceiptStatus.PROCESSING
    items: List[LineItem] = Field(default_factory=list)
    ocr_confidence: Optional[float] = Field(None, ge=0, le=1)


class ReceiptUpdate(BaseModel):
    """Model for updating existing receipts. Line items are not touched."""

    merchant_id: Optional[str] = None
    merchant_name: Optional[str] = Field(None, min_length=1, max_length=200)
    purchase_date: Optional[date] = None
    total: Optional[Decimal] = Field(None, ge=0)
    status: Optional[ReceiptStatus] = None
    ocr_confidence: Optional[float] = Field(None, ge=0, le=1)


class Merchant(BaseModel):
    """A known merchant and the patterns that identify it."""

    id: str = Field(..., min_length=1, description="Merchant identifier")
    name: str = Field(..., min_length=1, description="Canonical name")
    display_name: str = Field(..., min_length=1, description="Display name")
    category: MerchantCategory = Field(MerchantCategory.OTHER)
    patterns: List[str] = Field(default_factory=list,
                                description="Substring patterns, or regexes prefixed with 're:'")
    logo_url: Optional[str] = None
    created_at: Optional[datetime] = None


class Product(BaseModel):
    """A catalog product used as a cross-receipt matching target."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=300)
    category: str = Field("other", max_length=100)
    barcode: Optional[str] = Field(None, max_length=MAX_BARCODE_LENGTH)
    normalized_name: str = Field("", description="Matching key")
    created_at: Optional[datetime] = None


class ProductPrice(BaseModel):
    """A single observed price of a product at a merchant."""

    id: Optional[str] = None
    product_id: str = Field(..., min_length=1)
    merchant_id: str = Field(..., min_length=1)
    price: Decimal = Field(..., ge=0)
    observed_on: date = Field(..., description="Observation date")
    source: PriceSource = Field(PriceSource.MANUAL)


# ---------------------------------------------------------------------------
# Capture channels
# ---------------------------------------------------------------------------

class GIBQRData(BaseModel):
    """Sparse structured fields decoded from a GİB e-arşiv QR payload."""

    document_number: Optional[str] = Field(None, description="Belge No")
    document_date: Optional[date] = Field(None, description="Belge Tarihi")
    document_time: Optional[time] = Field(None, description="Belge Saati")
    merchant_tax_id: Optional[str] = Field(None, description="VKN or TCKN")
    merchant_title: Optional[str] = Field(None, description="Firma Ünvanı")
    merchant_name: Optional[str] = Field(None, description="Firma Adı")
    total_amount: Optional[Decimal] = Field(None, ge=0, description="Toplam Tutar")
    tax_amount: Optional[Decimal] = Field(None, ge=0, description="KDV Tutarı")
    discount_amount: Optional[Decimal] = Field(None, ge=0, description="İndirim Tutarı")
    ettn: Optional[str] = Field(None, description="Electronic invoice UUID")
    raw_data: Optional[str] = Field(None, description="Original QR string")
    format: QRDataFormat = Field(QRDataFormat.UNKNOWN)


class QRScanResult(BaseModel):
    """Result of decoding a scanned QR string."""

    success: bool = Field(..., description="Whether the mandatory fields were decoded")
    data: Optional[GIBQRData] = None
    error: Optional[str] = None
    raw_qr_string: Optional[str] = None


class OCRTextField(BaseModel):
    value: Optional[str] = None
    confidence: float = Field(0.0, ge=0, le=1)


class OCRDateField(BaseModel):
    value: Optional[date] = None
    confidence: float = Field(0.0, ge=0, le=1)


class OCRAmountField(BaseModel):
    value: Optional[Decimal] = None
    confidence: float = Field(0.0, ge=0, le=1)


class OCRItem(BaseModel):
    """An item candidate produced by the OCR engine."""

    name: str = Field(..., min_length=1)
    clean_name: Optional[str] = None
    category_hint: Optional[str] = None
    quantity: Decimal = Field(Decimal("1"), gt=0)
    unit: Optional[str] = None
    price: Decimal = Field(..., ge=0, description="Unit price")
    total: Optional[Decimal] = Field(None, ge=0, description="Line total when printed")
    discount: Optional[Decimal] = Field(None, ge=0)
    barcode: Optional[str] = None
    confidence: float = Field(0.0, ge=0, le=1)


class OCRResult(BaseModel):
    """Raw recognition result for one receipt photo."""

    merchant: OCRTextField = Field(default_factory=OCRTextField)
    date: OCRDateField = Field(default_factory=OCRDateField)
    total: OCRAmountField = Field(default_factory=OCRAmountField)
    items: List[OCRItem] = Field(default_factory=list)
    raw_text: str = ""


class FieldConfidence(BaseModel):
    """Confidence verdict for one field of a receipt draft."""

    model_config = {"frozen": True}

    field: str
    confidence: float = Field(..., ge=0, le=1)
    threshold: float = Field(..., ge=0, le=1)
    status: FieldStatus

    @property
    def requires_review(self) -> bool:
        return self.status != FieldStatus.AUTO_ACCEPTED


# ---------------------------------------------------------------------------
# Matching results
# ---------------------------------------------------------------------------

class MerchantMatch(BaseModel):
    model_config = {"frozen": True}

    merchant_id: Optional[str] = None
    merchant_name: Optional[str] = None
    confidence: float = Field(0.0, ge=0, le=1)
    matched_by: MatchedBy = MatchedBy.NONE
    matched_pattern: Optional[str] = None


class ClassificationResult(BaseModel):
    """Taxonomy assignment for one line item. Always populated."""

    model_config = {"frozen": True}

    department_id: str
    category_id: str
    subcategory_id: str
    item_group_id: str
    label: str = Field(..., description="Category label stored on the line item")
    path: List[str] = Field(default_factory=list, description="Names from department to leaf")
    score: float = Field(0.0, ge=0, le=1)
    is_fallback: bool = False


class CatalogProduct(BaseModel):
    """Product record returned by the remote catalog."""

    barcode: Optional[str] = None
    name: str
    brand: Optional[str] = None
    category: Optional[str] = None
    quantity: Optional[str] = None


class Enrichment(BaseModel):
    """Optional enrichment attached to a line item."""

    model_config = {"frozen": True}

    name: str
    brand: Optional[str] = None
    category: Optional[str] = None
    barcode: Optional[str] = None
    source: str = "catalog"


# ---------------------------------------------------------------------------
# Storage contract helpers
# ---------------------------------------------------------------------------

class ReceiptFilter(BaseModel):
    """Model for search and filter operations."""

    merchant_id: Optional[str] = Field(None, description="Filter by merchant")
    start_date: Optional[date] = Field(None, description="Start date range")
    end_date: Optional[date] = Field(None, description="End date range")
    min_amount: Optional[Decimal] = Field(None, ge=0, description="Minimum amount")
    max_amount: Optional[Decimal] = Field(None, ge=0, description="Maximum amount")
    search: Optional[str] = Field(None, description="Free text over merchant and item names")

    @model_validator(mode="after")
    def validate_ranges(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError('start_date must not be after end_date')
        if (self.min_amount is not None and self.max_amount is not None
                and self.min_amount > self.max_amount):
            raise ValueError('min_amount must not exceed max_amount')
        return self


class PaginatedResult(BaseModel, Generic[T]):
    data: List[T] = Field(default_factory=list)
    total: int = Field(0, ge=0)
    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1)
    total_pages: int = Field(0, ge=0)

    @classmethod
    def build(cls, data: List[T], total: int, page: int, page_size: int) -> "PaginatedResult[T]":
        return cls(
            data=data,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if total else 0,
        )


# ---------------------------------------------------------------------------
# Analytics results (derived, never persisted)
# ---------------------------------------------------------------------------

class AnalyticsFilter(BaseModel):
    period: TimePeriod = TimePeriod.MONTHLY
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    merchant_ids: Optional[List[str]] = None
    categories: Optional[List[str]] = None

    @model_validator(mode="after")
    def validate_range(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError('start_date must not be after end_date')
        return self


class SpendingSummary(BaseModel):
    model_config = {"frozen": True}

    total_spent: Decimal = Field(..., ge=0)
    receipt_count: int = Field(..., ge=0)
    average_receipt_amount: Decimal = Field(..., ge=0)
    period_start: Optional[date] = None
    period_end: Optional[date] = None


class CategoryBreakdown(BaseModel):
    model_config = {"frozen": True}

    category: str
    amount: Decimal = Field(..., ge=0)
    percentage: float = Field(..., ge=0)
    receipt_count: int = Field(..., ge=0)
    item_count: int = Field(..., ge=0)


class MerchantRanking(BaseModel):
    model_config = {"frozen": True}

    merchant_id: str
    merchant_name: str
    total_spent: Decimal = Field(..., ge=0)
    visit_count: int = Field(..., ge=0)
    average_spent: Decimal = Field(..., ge=0)


class SpendingTrend(BaseModel):
    model_config = {"frozen": True}

    period_start: date
    period_end: date
    label: str
    amount: Decimal = Field(..., ge=0)
    receipt_count: int = Field(..., ge=0)


class TopItem(BaseModel):
    model_config = {"frozen": True}

    name: str
    total_spent: Decimal
    purchase_count: int
    average_price: Decimal


class WeekdaySpending(BaseModel):
    model_config = {"frozen": True}

    weekday: int = Field(..., ge=0, le=6, description="0=Monday")
    total_spent: Decimal
    receipt_count: int


class Reconciliation(BaseModel):
    """Line item sum versus printed total. A flag only, never a correction."""

    model_config = {"frozen": True}

    receipt_id: Optional[str] = None
    items_total: Decimal
    total: Decimal
    difference: Decimal = Field(..., description="items_total - total")
    within_tolerance: bool


class AnalyticsReport(BaseModel):
    """All aggregations computed from one receipt snapshot."""

    model_config = {"frozen": True}

    summary: SpendingSummary
    category_breakdown: List[CategoryBreakdown]
    merchant_rankings: List[MerchantRanking]
    trends: List[SpendingTrend]


# ---------------------------------------------------------------------------
# Price comparison results
# ---------------------------------------------------------------------------

class PriceComparison(BaseModel):
    model_config = {"frozen": True}

    product_id: str
    product_name: str
    user_paid_price: Decimal = Field(..., ge=0)
    merchant_id: Optional[str] = None
    cheapest_price: Decimal = Field(..., ge=0)
    cheapest_merchant_id: str
    cheapest_observed_on: date
    savings: Decimal = Field(..., ge=0)
    savings_percentage: float = Field(..., ge=0)


class PriceStats(BaseModel):
    model_config = {"frozen": True}

    min: Decimal
    max: Decimal
    average: Decimal
    median: Decimal
    count: int


class PriceTrend(BaseModel):
    model_config = {"frozen": True}

    direction: str = Field(..., description="up, down or stable")
    change_percent: float
    last_price: Decimal
    previous_price: Decimal
