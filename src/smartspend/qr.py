"""
Decoder for GİB e-arşiv receipt QR payloads.

Payloads seen in the wild come in several shapes: JSON objects, portal URLs
carrying query parameters, tagged ``key=value`` / ``key:value`` segments
joined by ``|`` ``;`` or ``&``, and bare pipe-positional records
(``VKN|BelgeNo|Tarih|Tutar|KDV|ETTN``). Tags are optional and unordered,
unknown tags are skipped and a field whose value cannot be coerced is left
unset. Decoding is a pure string transform and never raises for malformed
input.
"""

import re
import json
import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit

from .currency import parse_amount
from .models import (GIBQRData, OCRAmountField, OCRDateField, OCRResult, OCRTextField,
                     QRDataFormat, QRScanResult)
from .text import normalize_text

logger = logging.getLogger(__name__)

GIB_DOMAINS = ("earsivportal.efatura.gov.tr", "efatura.gov.tr", "gib.gov.tr")

# Normalized tag name -> GIBQRData field
TAG_ALIASES: Dict[str, str] = {
    "belgeno": "document_number",
    "documentno": "document_number",
    "faturano": "document_number",
    "fisno": "document_number",
    "vkn": "merchant_tax_id",
    "tckn": "merchant_tax_id",
    "vkntckn": "merchant_tax_id",
    "saticivkn": "merchant_tax_id",
    "unvan": "merchant_title",
    "title": "merchant_title",
    "saticiunvan": "merchant_title",
    "firmaadi": "merchant_name",
    "name": "merchant_name",
    "ettn": "ettn",
    "uuid": "ettn",
    "tarih": "document_date",
    "date": "document_date",
    "belgetarihi": "document_date",
    "saat": "document_time",
    "time": "document_time",
    "toplam": "total_amount",
    "tutar": "total_amount",
    "amount": "total_amount",
    "total": "total_amount",
    "toplamtutar": "total_amount",
    "odenecektutar": "total_amount",
    "kdv": "tax_amount",
    "tax": "tax_amount",
    "kdvtutari": "tax_amount",
    "hesaplanankdv": "tax_amount",
    "indirim": "discount_amount",
    "iskonto": "discount_amount",
    "discount": "discount_amount",
}

# Earlier aliases win when a payload carries several spellings of one field
_ALIAS_RANK = {alias: rank for rank, alias in enumerate(TAG_ALIASES)}

_AMOUNT_FIELDS = ("total_amount", "tax_amount", "discount_amount")
_TEXT_FIELDS = ("document_number", "merchant_tax_id", "merchant_title", "merchant_name", "ettn")

_SEGMENT_SPLIT = re.compile(r"[|;&\r\n]+")
_TAG_WORDS = re.compile(r"\b(ettn|vkn|tckn)\b", re.IGNORECASE)
_TAX_ID = re.compile(r"^\d{10,11}$")
_UUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

DATE_FORMATS = ("%d/%m/%Y", "%d.%m.%Y", "%d-%m-%Y", "%Y-%m-%d", "%Y/%m/%d",
                "%Y%m%d", "%d/%m/%y", "%d.%m.%y", "%d-%m-%y")
TIME_FORMATS = ("%H:%M:%S", "%H:%M", "%H.%M", "%H%M%S")


def _tag_key(raw_key: str) -> Optional[str]:
    key = normalize_text(str(raw_key)).replace(" ", "")
    return key if key in TAG_ALIASES else None


def parse_date(value: Any) -> Optional[date]:
    """Coerce a QR date value, ignoring any trailing time part."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    date_part = re.split(r"[ T]", text, maxsplit=1)[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(date_part, fmt).date()
        except ValueError:
            continue
    return None


def parse_time(value: Any) -> Optional[time]:
    """Coerce a QR time value (``14:30``, ``14:30:05``, ``143005``)."""
    if isinstance(value, time):
        return value
    text = str(value).strip()
    for fmt in TIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    return None


def _embedded_time(value: Any) -> Optional[time]:
    parts = re.split(r"[ T]", str(value).strip(), maxsplit=1)
    return parse_time(parts[1]) if len(parts) == 2 else None


class QRDecoder:
    """Parses raw QR strings into ``GIBQRData``."""

    def __init__(self):
        self.logger = logger

    def decode(self, raw_qr: Optional[str]) -> QRScanResult:
        """Decode a scanned QR string.

        Args:
            raw_qr: Raw string produced by the QR scanner

        Returns:
            QRScanResult; ``success`` requires a merchant identity or name
            and a total amount
        """
        if raw_qr is None or not raw_qr.strip():
            return QRScanResult(success=False, error="Empty QR payload",
                                raw_qr_string=raw_qr or "")

        payload = raw_qr.strip()
        pairs = list(self._tagged_pairs(payload))
        positional = [] if pairs else self._positional_pairs(payload)

        if not (pairs or positional or self._has_signature(payload)):
            return QRScanResult(
                success=False,
                data=GIBQRData(raw_data=raw_qr, format=QRDataFormat.UNKNOWN),
                error="Unrecognized QR format",
                raw_qr_string=raw_qr,
            )

        fields = self._coerce_fields(pairs + positional)
        data = GIBQRData(raw_data=raw_qr, format=QRDataFormat.GIB_EARCHIVE, **fields)

        missing = []
        if not (data.merchant_tax_id or data.merchant_name or data.merchant_title):
            missing.append("merchant")
        if data.total_amount is None:
            missing.append("total_amount")
        if missing:
            self.logger.info(f"QR payload decoded without mandatory fields: {', '.join(missing)}")
            return QRScanResult(success=False, data=data,
                                error=f"Missing mandatory fields: {', '.join(missing)}",
                                raw_qr_string=raw_qr)

        return QRScanResult(success=True, data=data, raw_qr_string=raw_qr)

    def is_receipt_qr(self, raw_qr: Optional[str]) -> bool:
        """Quick check whether a string looks like an e-arşiv payload."""
        if not raw_qr or not raw_qr.strip():
            return False
        payload = raw_qr.strip()
        return (self._has_signature(payload)
                or any(True for _ in self._tagged_pairs(payload))
                or bool(self._positional_pairs(payload)))

    # ------------------------------------------------------------------
    # Tokenizing
    # ------------------------------------------------------------------

    @staticmethod
    def _has_signature(payload: str) -> bool:
        lowered = payload.lower()
        return any(domain in lowered for domain in GIB_DOMAINS) or bool(_TAG_WORDS.search(payload))

    def _tagged_pairs(self, payload: str) -> Iterator[Tuple[str, Any]]:
        """Yield (alias, value) pairs for every recognized tag."""
        if payload.startswith("{") and payload.endswith("}"):
            try:
                document = json.loads(payload)
            except json.JSONDecodeError as e:
                self.logger.debug(f"QR payload is not valid JSON: {str(e)}")
            else:
                yield from self._json_pairs(document)
                return

        if payload.lower().startswith(("http://", "https://")):
            parts = urlsplit(payload)
            for key, value in parse_qsl(parts.query) + parse_qsl(parts.fragment):
                alias = _tag_key(key)
                if alias:
                    yield alias, value
            return

        for segment in _SEGMENT_SPLIT.split(payload):
            separator = "=" if "=" in segment else ":" if ":" in segment else None
            if separator is None:
                continue
            key, _, value = segment.partition(separator)
            alias = _tag_key(key)
            if alias:
                yield alias, value.strip()

    def _json_pairs(self, document: Any) -> Iterator[Tuple[str, Any]]:
        if isinstance(document, list):
            for element in document:
                yield from self._json_pairs(element)
        elif isinstance(document, dict):
            for key, value in document.items():
                if isinstance(value, (dict, list)):
                    yield from self._json_pairs(value)
                    continue
                alias = _tag_key(key)
                if alias and value is not None:
                    yield alias, value

    @staticmethod
    def _positional_pairs(payload: str) -> List[Tuple[str, Any]]:
        """Map ``VKN|BelgeNo|Tarih|Tutar|KDV-or-ETTN|ETTN`` records."""
        parts = [part.strip() for part in payload.split("|")]
        if len(parts) < 4 or not _TAX_ID.match(re.sub(r"\s", "", parts[0])):
            return []

        pairs: List[Tuple[str, Any]] = [("vkn", parts[0]), ("belgeno", parts[1]),
                                        ("tarih", parts[2]), ("toplam", parts[3])]
        if len(parts) >= 5:
            if _UUID.match(parts[4]):
                pairs.append(("ettn", parts[4]))
            else:
                pairs.append(("kdv", parts[4]))
        if len(parts) >= 6 and _UUID.match(parts[5]):
            pairs.append(("ettn", parts[5]))
        return pairs

    # ------------------------------------------------------------------
    # Coercion
    # ------------------------------------------------------------------

    def _coerce_fields(self, pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        ranks: Dict[str, int] = {}

        for alias, value in pairs:
            field = TAG_ALIASES[alias]
            rank = _ALIAS_RANK[alias]
            if field in ranks and ranks[field] <= rank:
                continue
            coerced = self._coerce(field, value)
            if coerced is None:
                self.logger.warning(f"Could not parse QR field '{alias}' from value '{value}'")
                continue
            fields[field] = coerced
            ranks[field] = rank

            if field == "document_date" and "document_time" not in fields:
                embedded = _embedded_time(value)
                if embedded is not None:
                    fields["document_time"] = embedded
                    ranks["document_time"] = len(_ALIAS_RANK)

        return fields

    @staticmethod
    def _coerce(field: str, value: Any) -> Any:
        if field in _AMOUNT_FIELDS:
            if isinstance(value, bool):
                return None
            amount = parse_amount(value if isinstance(value, (int, float, Decimal)) else str(value))
            if amount is None or amount < 0:
                return None
            # A receipt cannot total nothing
            if field == "total_amount" and amount == 0:
                return None
            return amount
        if field == "document_date":
            return parse_date(value)
        if field == "document_time":
            return parse_time(value)
        if field in _TEXT_FIELDS:
            text = str(value).strip()
            return text or None
        return None


def decode_qr(raw_qr: Optional[str]) -> QRScanResult:
    """Decode a QR string with a default decoder."""
    return QRDecoder().decode(raw_qr)


def is_receipt_qr(raw_qr: Optional[str]) -> bool:
    return QRDecoder().is_receipt_qr(raw_qr)


def to_ocr_result(data: GIBQRData) -> OCRResult:
    """Express decoded QR data as an OCR result.

    Values printed by the tax system are exact, so every present field gets
    confidence 1.0. E-arşiv payloads carry totals only, never line items.
    """
    merchant = data.merchant_name or data.merchant_title
    return OCRResult(
        merchant=OCRTextField(value=merchant, confidence=1.0 if merchant else 0.0),
        date=OCRDateField(value=data.document_date,
                          confidence=1.0 if data.document_date else 0.0),
        total=OCRAmountField(value=data.total_amount,
                             confidence=1.0 if data.total_amount is not None else 0.0),
        items=[],
        raw_text=data.raw_data or "",
    )
