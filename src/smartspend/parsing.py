"""
Text extraction for receipts whose OCR engine yields only raw text.
Recovers merchant, date, total and line items from a Turkish till slip and
scores each with a heuristic confidence.
"""

import re
import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from .currency import parse_amount
from .models import OCRAmountField, OCRDateField, OCRItem, OCRResult, OCRTextField
from .text import normalize_numeric, normalize_text

logger = logging.getLogger(__name__)


class ReceiptTextParser:
    """Extracts structured fields from raw receipt text."""

    # Date patterns found on Turkish receipts (day first)
    DATE_PATTERNS = [
        (re.compile(r'\b(\d{1,2})[./\-](\d{1,2})[./\-](\d{4})\b'), 'dmy'),
        (re.compile(r'\b(\d{4})[./\-](\d{1,2})[./\-](\d{1,2})\b'), 'ymd'),
        (re.compile(r'\b(\d{1,2})[./\-](\d{1,2})[./\-](\d{2})\b'), 'dmy2'),
    ]

    # Amount at the end of a line: "*25,50", "1.234,56 TL", "25.50"
    AMOUNT_AT_END = re.compile(
        r'\*?\s*(-?\d{1,3}(?:[.,]\d{3})*[.,]\d{2}|-?\d+[.,]\d{2})\s*(?:TL|TRY|₺)?\s*$',
        re.IGNORECASE,
    )

    # "2 X 12,50", "0,750 KG X 39,90", "3 AD x 5.00"
    QUANTITY_LINE = re.compile(
        r'^\s*(\d+(?:[.,]\d+)?)\s*(AD|ADET|KG|GR|LT|L)?\s*[Xx*]\s*(\d+[.,]\d{2})\s*$',
        re.IGNORECASE,
    )

    VAT_RATE = re.compile(r'%\s?\d{1,2}\b')

    # Normalized keywords; longer phrases first
    TOTAL_KEYWORDS = ('genel toplam', 'odenecek tutar', 'odenecek', 'toplam', 'tutar')
    SKIP_KEYWORDS = ('ara toplam', 'topkdv', 'toplam kdv', 'kdv', 'nakit', 'kart',
                     'kredi karti', 'para ustu', 'indirim toplam')
    HEADER_KEYWORDS = ('tarih', 'saat', 'fis no', 'fis', 'vkn', 'vergi', 'tel', 'adres',
                       'mah', 'cad', 'sok no', 'no')

    def __init__(self, max_header_lines: int = 5):
        """Initialize the parser.

        Args:
            max_header_lines: Number of leading lines searched for the merchant
        """
        self.max_header_lines = max_header_lines
        self.logger = logger

    def parse(self, raw_text: str) -> OCRResult:
        """Parse raw receipt text into an OCR result.

        Args:
            raw_text: Text recognized from the receipt image

        Returns:
            OCRResult with heuristic confidences; missing fields have
            confidence 0
        """
        lines = [line.strip() for line in (raw_text or '').splitlines() if line.strip()]
        if not lines:
            return OCRResult(raw_text=raw_text or '')

        merchant, merchant_conf = self._extract_merchant(lines[:self.max_header_lines])
        purchase_date, date_conf = self._extract_date(lines)
        items = self._extract_items(lines)
        total, total_conf = self._extract_total(lines, items)

        self.logger.debug(f"Parsed receipt text: merchant={merchant}, date={purchase_date}, "
                          f"total={total}, items={len(items)}")

        return OCRResult(
            merchant=OCRTextField(value=merchant, confidence=merchant_conf),
            date=OCRDateField(value=purchase_date, confidence=date_conf),
            total=OCRAmountField(value=total, confidence=total_conf),
            items=items,
            raw_text=raw_text,
        )

    @staticmethod
    def _starts_with(normalized: str, keywords: Tuple[str, ...]) -> bool:
        """Whether a normalized line starts with one of ``keywords`` as whole words."""
        return any(normalized == keyword or normalized.startswith(keyword + ' ')
                   for keyword in keywords)

    def _line_amount(self, line: str) -> Optional[Decimal]:
        match = self.AMOUNT_AT_END.search(normalize_numeric(line))
        return parse_amount(match.group(1)) if match else None

    def _extract_merchant(self, lines: List[str]) -> Tuple[Optional[str], float]:
        """Extract merchant name from the first lines.

        Args:
            lines: Leading text lines

        Returns:
            (merchant name, confidence)
        """
        for position, line in enumerate(lines):
            normalized = normalize_text(line)
            if not normalized:
                continue
            # Skip address / phone / tax office lines
            if len(re.findall(r'\d', line)) > 3:
                continue
            if self._starts_with(normalized, self.HEADER_KEYWORDS):
                continue
            letters = sum(1 for ch in line if ch.isalpha())
            if letters < 3:
                continue

            cleaned = re.sub(r'[^\w\s&.\-]', '', line).strip()
            confidence = 0.9 if position == 0 else 0.75
            return cleaned, confidence

        return None, 0.0

    def _extract_date(self, lines: List[str]) -> Tuple[Optional[date], float]:
        """Extract the purchase date.

        Args:
            lines: All text lines

        Returns:
            (date, confidence); a date on a TARIH line scores higher
        """
        for line in lines:
            text = normalize_numeric(line)
            for pattern, layout in self.DATE_PATTERNS:
                for match in pattern.finditer(text):
                    parsed = self._build_date(match.groups(), layout)
                    if parsed is None:
                        continue
                    on_date_line = 'tarih' in normalize_text(line)
                    return parsed, 0.95 if on_date_line else 0.9
        return None, 0.0

    @staticmethod
    def _build_date(groups: Tuple[str, ...], layout: str) -> Optional[date]:
        try:
            if layout == 'ymd':
                year, month, day = (int(g) for g in groups)
            else:
                day, month, year = (int(g) for g in groups)
                if layout == 'dmy2':
                    year += 2000
            return date(year, month, day)
        except ValueError:
            return None

    def _extract_total(self, lines: List[str],
                       items: List[OCRItem]) -> Tuple[Optional[Decimal], float]:
        """Extract the receipt total.

        Args:
            lines: All text lines
            items: Items already extracted, used as a cross-check

        Returns:
            (total, confidence)
        """
        best: Optional[Tuple[int, Decimal]] = None
        for line in lines:
            normalized = normalize_text(line)
            if self._starts_with(normalized, self.SKIP_KEYWORDS):
                continue
            for rank, keyword in enumerate(self.TOTAL_KEYWORDS):
                if self._starts_with(normalized, (keyword,)):
                    amount = self._line_amount(line)
                    if amount is not None and (best is None or rank < best[0]):
                        best = (rank, amount)
                    break

        if best is not None:
            total = best[1]
            confidence = 0.95 if best[0] <= 3 else 0.9
            items_sum = sum((item.total if item.total is not None else item.price * item.quantity
                             for item in items), Decimal('0'))
            if items and abs(items_sum - total) <= Decimal('0.01'):
                confidence = min(1.0, confidence + 0.03)
            return total, confidence

        # Fallback: the largest amount on the slip is usually the total
        amounts = [amount for amount in
                   (self._line_amount(line) for line in lines
                    if not self._starts_with(normalize_text(line), self.SKIP_KEYWORDS))
                   if amount is not None and amount > 0]
        if amounts:
            return max(amounts), 0.6
        return None, 0.0

    def _extract_items(self, lines: List[str]) -> List[OCRItem]:
        """Extract line items.

        Item lines end with an amount; a preceding ``qty X unit_price`` line
        sets the quantity of the next item.

        Args:
            lines: All text lines

        Returns:
            Ordered list of item candidates
        """
        items = []
        pending_quantity: Optional[Tuple[Decimal, Optional[str], Decimal]] = None

        for line in lines:
            quantity_match = self.QUANTITY_LINE.match(normalize_numeric(line))
            if quantity_match:
                # Weighed quantities use three decimals ("0,750 KG")
                quantity = Decimal(quantity_match.group(1).replace(',', '.'))
                unit_price = parse_amount(quantity_match.group(3))
                if quantity and quantity > 0 and unit_price is not None:
                    unit = (quantity_match.group(2) or '').lower() or None
                    pending_quantity = (quantity, unit, unit_price)
                continue

            normalized = normalize_text(line)
            if self._starts_with(normalized, self.SKIP_KEYWORDS + self.TOTAL_KEYWORDS):
                pending_quantity = None
                continue

            amount_match = self.AMOUNT_AT_END.search(line)
            if not amount_match:
                continue
            name = self.VAT_RATE.sub('', line[:amount_match.start()]).strip(' *\t')
            if sum(1 for ch in name if ch.isalpha()) < 2:
                continue
            price = parse_amount(amount_match.group(1))
            if price is None or price < 0:
                continue

            item = self._build_item(name, price, pending_quantity)
            pending_quantity = None
            if item is not None:
                items.append(item)

        return items

    def _build_item(self, name: str, line_total: Decimal,
                    quantity_info: Optional[Tuple[Decimal, Optional[str], Decimal]]) -> Optional[OCRItem]:
        confidence = 0.9
        quantity, unit, unit_price = Decimal('1'), None, line_total
        if quantity_info is not None:
            quantity, unit, unit_price = quantity_info
            # Quantity line agrees with the printed line total
            if abs(quantity * unit_price - line_total) <= Decimal('0.01'):
                confidence = 0.95
            else:
                confidence = 0.8
        if len(name) < 3:
            confidence -= 0.1

        try:
            return OCRItem(
                name=name,
                quantity=quantity,
                unit=unit,
                price=unit_price,
                total=line_total,
                confidence=max(0.0, min(1.0, confidence)),
            )
        except ValueError as e:
            self.logger.warning(f"Skipping unparseable item line '{name}': {str(e)}")
            return None


def parse_receipt_text(raw_text: str) -> OCRResult:
    """Parse raw receipt text with a default parser."""
    return ReceiptTextParser().parse(raw_text)
