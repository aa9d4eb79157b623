"""
OCR normalizer: turns a raw recognition result into a receipt draft with a
per-field confidence verdict.
"""

import re
import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .config import ConfidenceThresholds
from .models import (FieldConfidence, FieldStatus, LineItem, OCRItem, OCRResult, Receipt,
                     ReceiptStatus, MAX_BARCODE_LENGTH, MAX_ITEM_NAME_LENGTH,
                     MAX_MERCHANT_NAME_LENGTH, MAX_UNIT_LENGTH, UNKNOWN_ITEM_NAME, UNKNOWN_MERCHANT_NAME)

logger = logging.getLogger(__name__)

MERCHANT_FIELD = "merchant"
DATE_FIELD = "date"
TOTAL_FIELD = "total"

_EDGE_PUNCTUATION = re.compile(r"^[^\w]+|[^\w]+$", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")


def item_field(index: int) -> str:
    """Field key used for the line item at ``index``."""
    return f"items[{index}]"


def evaluate_confidence(confidence: float, threshold: float, auto_accept: float) -> FieldStatus:
    """Classify a confidence value against a field threshold.

    Args:
        confidence: Recognition confidence in [0, 1]
        threshold: Field minimum
        auto_accept: Global auto-accept minimum

    Returns:
        AUTO_ACCEPTED at or above ``auto_accept``, LOW_CONFIDENCE between
        ``threshold`` and ``auto_accept``, NEEDS_REVIEW below ``threshold``
    """
    if confidence >= auto_accept:
        return FieldStatus.AUTO_ACCEPTED
    if confidence >= threshold:
        return FieldStatus.LOW_CONFIDENCE
    return FieldStatus.NEEDS_REVIEW


def clean_item_name(name: str) -> str:
    """Collapse whitespace and trim punctuation around an item name."""
    cleaned = _WHITESPACE.sub(" ", name or "").strip()
    return _EDGE_PUNCTUATION.sub("", cleaned)


def _clip(value: Optional[str], limit: int) -> Optional[str]:
    """Trim and cut ``value`` to ``limit`` characters; blank becomes None."""
    value = (value or "").strip()[:limit].rstrip()
    return value or None


class NormalizedReceipt(BaseModel):
    """Receipt draft plus the confidence verdict for each field."""

    receipt: Receipt
    field_confidence: Dict[str, FieldConfidence] = Field(default_factory=dict)

    @property
    def review_fields(self) -> List[str]:
        return [name for name, verdict in self.field_confidence.items() if verdict.requires_review]

    @property
    def requires_review(self) -> bool:
        return bool(self.review_fields)


class OCRNormalizer:
    """Applies confidence thresholds to OCR results. Performs no I/O."""

    def __init__(self, thresholds: Optional[ConfidenceThresholds] = None):
        """Initialize normalizer.

        Args:
            thresholds: Per-field and auto-accept thresholds
        """
        self.thresholds = thresholds or ConfidenceThresholds()
        self.logger = logger

    def normalize(self, ocr_result: OCRResult, receipt_id: Optional[str] = None,
                  reference_date: Optional[date] = None) -> NormalizedReceipt:
        """Build a receipt draft from an OCR result.

        No field failure aborts the draft: fields below their threshold are
        replaced by a placeholder and flagged for review. The receipt is
        ``completed`` only when every field is auto-accepted.

        Args:
            ocr_result: Raw recognition result
            receipt_id: Identifier to stamp on the draft and its items
            reference_date: Placeholder date used when the date is rejected

        Returns:
            NormalizedReceipt
        """
        verdicts: Dict[str, FieldConfidence] = {}

        raw_merchant = (ocr_result.merchant.value or "").strip()
        merchant_value = _clip(raw_merchant, MAX_MERCHANT_NAME_LENGTH)
        if len(raw_merchant) > MAX_MERCHANT_NAME_LENGTH:
            self.logger.warning(f"Merchant name truncated to {MAX_MERCHANT_NAME_LENGTH} characters")
        merchant = self._verdict(MERCHANT_FIELD, ocr_result.merchant.confidence,
                                 merchant_value is not None, self.thresholds.merchant)
        verdicts[MERCHANT_FIELD] = merchant

        date_verdict = self._verdict(DATE_FIELD, ocr_result.date.confidence,
                                     ocr_result.date.value is not None, self.thresholds.date)
        verdicts[DATE_FIELD] = date_verdict

        total_verdict = self._verdict(TOTAL_FIELD, ocr_result.total.confidence,
                                      ocr_result.total.value is not None, self.thresholds.total)
        verdicts[TOTAL_FIELD] = total_verdict

        items = []
        for index, ocr_item in enumerate(ocr_result.items):
            # An unreadable name cannot be trusted whatever its score
            has_name = bool(clean_item_name(ocr_item.name))
            verdict = self._verdict(item_field(index), ocr_item.confidence, has_name,
                                    self.thresholds.items)
            verdicts[item_field(index)] = verdict
            # Flagged items are kept so the reviewer can correct them
            items.append(self._to_line_item(ocr_item, index, receipt_id))

        # Rejected fields become placeholders
        merchant_name = UNKNOWN_MERCHANT_NAME
        if merchant.status != FieldStatus.NEEDS_REVIEW:
            merchant_name = merchant_value
        purchase_date = reference_date
        if date_verdict.status != FieldStatus.NEEDS_REVIEW:
            purchase_date = ocr_result.date.value
        total = None
        if total_verdict.status != FieldStatus.NEEDS_REVIEW:
            total = ocr_result.total.value

        all_accepted = all(not verdict.requires_review for verdict in verdicts.values())
        receipt = Receipt(
            id=receipt_id,
            merchant_name=merchant_name or UNKNOWN_MERCHANT_NAME,
            purchase_date=purchase_date,
            total=total,
            status=ReceiptStatus.COMPLETED if all_accepted else ReceiptStatus.PROCESSING,
            items=items,
            ocr_confidence=self._overall_confidence(ocr_result),
        )

        flagged = [name for name, verdict in verdicts.items()
                   if verdict.status == FieldStatus.NEEDS_REVIEW]
        if flagged:
            self.logger.info(f"Receipt draft {receipt_id or ''} has fields below threshold: "
                             f"{', '.join(flagged)}")

        return NormalizedReceipt(receipt=receipt, field_confidence=verdicts)

    def _verdict(self, field: str, confidence: float, present: bool,
                 threshold: float) -> FieldConfidence:
        # A missing value cannot be trusted regardless of the reported score
        effective = confidence if present else 0.0
        return FieldConfidence(
            field=field,
            confidence=effective,
            threshold=threshold,
            status=evaluate_confidence(effective, threshold, self.thresholds.auto_accept),
        )

    def _to_line_item(self, ocr_item: OCRItem, index: int,
                      receipt_id: Optional[str]) -> LineItem:
        gross = ocr_item.quantity * ocr_item.price
        discount = ocr_item.discount
        if discount is not None and discount > gross:
            self.logger.warning(f"Discount {discount} exceeds line total {gross} "
                                f"for item '{ocr_item.name}', ignoring discount")
            discount = None

        if ocr_item.total is not None:
            total_price = ocr_item.total
        else:
            total_price = gross - (discount or Decimal("0"))

        clean_name = ocr_item.clean_name or clean_item_name(ocr_item.name)
        return LineItem(
            id=f"{receipt_id}:{index}" if receipt_id else None,
            receipt_id=receipt_id,
            name=_clip(ocr_item.name, MAX_ITEM_NAME_LENGTH) or UNKNOWN_ITEM_NAME,
            clean_name=_clip(clean_name, MAX_ITEM_NAME_LENGTH),
            quantity=ocr_item.quantity,
            unit=_clip(ocr_item.unit, MAX_UNIT_LENGTH),
            unit_price=ocr_item.price,
            total_price=total_price,
            confidence=ocr_item.confidence,
            discount=discount,
            barcode=_clip(ocr_item.barcode, MAX_BARCODE_LENGTH),
        )

    @staticmethod
    def _overall_confidence(ocr_result: OCRResult) -> float:
        scores = [ocr_result.merchant.confidence, ocr_result.date.confidence,
                  ocr_result.total.confidence]
        scores.extend(item.confidence for item in ocr_result.items)
        return round(sum(scores) / len(scores), 4)
