"""
Receipt processing pipeline.

Runs one receipt through normalization, merchant resolution, item
classification, optional catalog enrichment and product matching, total
reconciliation and an optional save. Collaborators are injected; calls to
them run sequentially and only storage failures propagate.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from .analytics import reconcile
from .catalog import OpenFoodFactsClient, ProductEnricher
from .classifier import LineItemClassifier
from .config import Settings
from .database import ReceiptRepository
from .merchants import MerchantResolver
from .models import (ClassificationResult, Enrichment, FieldConfidence, FieldStatus, LineItem,
                     MerchantMatch, OCRResult, Product, Receipt, Reconciliation,
                     MAX_BARCODE_LENGTH)
from .normalizer import MERCHANT_FIELD, OCRNormalizer
from .products import ProductMatcher
from .qr import QRDecoder, to_ocr_result
from .taxonomy import get_default_taxonomy, load_taxonomy

logger = logging.getLogger(__name__)


class ProcessedReceipt(BaseModel):
    """Outcome of processing one receipt."""

    receipt: Receipt
    field_confidence: Dict[str, FieldConfidence] = Field(default_factory=dict)
    merchant_match: MerchantMatch = Field(default_factory=MerchantMatch)
    classifications: List[ClassificationResult] = Field(default_factory=list)
    enrichments: List[Optional[Enrichment]] = Field(default_factory=list)
    review_required: bool = False
    reconciliation: Optional[Reconciliation] = None

    @property
    def review_fields(self) -> List[str]:
        return [name for name, verdict in self.field_confidence.items() if verdict.requires_review]


class ReceiptPipeline:
    """Processes OCR and QR captures into stored receipts."""

    def __init__(self, normalizer: OCRNormalizer, resolver: MerchantResolver,
                 classifier: LineItemClassifier, enricher: Optional[ProductEnricher] = None,
                 repository: Optional[ReceiptRepository] = None,
                 tolerance: Decimal = Decimal("0.05"), decoder: Optional[QRDecoder] = None,
                 matcher: Optional[ProductMatcher] = None):
        """Initialize pipeline.

        Args:
            normalizer: Applies confidence thresholds to OCR results
            resolver: Maps merchant text to known merchants
            classifier: Assigns taxonomy leaves to line items
            enricher: Optional catalog enrichment
            repository: Optional receipt storage; results are saved when set
            tolerance: Relative tolerance for item sum vs. total
            decoder: QR decoder
            matcher: Optional product matcher; sets ``product_id`` on matched items
        """
        self.normalizer = normalizer
        self.resolver = resolver
        self.classifier = classifier
        self.enricher = enricher
        self.repository = repository
        self.tolerance = tolerance
        self.decoder = decoder or QRDecoder()
        self.matcher = matcher
        self.logger = logger

    @classmethod
    def from_settings(cls, settings: Settings, repository: Optional[ReceiptRepository] = None,
                      enrich: bool = False,
                      products: Optional[Iterable[Product]] = None) -> "ReceiptPipeline":
        """Wire a pipeline from configuration.

        Args:
            settings: Application settings
            repository: Optional receipt storage
            enrich: Whether to enrich items from the remote catalog
            products: Known products to link line items to

        Returns:
            ReceiptPipeline
        """
        if settings.taxonomy_path:
            taxonomy = load_taxonomy(settings.taxonomy_path)
        else:
            taxonomy = get_default_taxonomy()
        enricher = None
        if enrich:
            client = OpenFoodFactsClient(settings.catalog_base_url, timeout=settings.catalog_timeout)
            enricher = ProductEnricher(client)
        matcher = None
        if products is not None:
            matcher = ProductMatcher(products, fuzzy_threshold=settings.product_fuzzy_threshold,
                                     match_threshold=settings.product_match_threshold)
        return cls(
            normalizer=OCRNormalizer(settings.thresholds()),
            resolver=MerchantResolver(min_similarity=settings.merchant_min_similarity),
            classifier=LineItemClassifier(taxonomy),
            enricher=enricher,
            repository=repository,
            tolerance=settings.reconciliation_tolerance,
            matcher=matcher,
        )

    def process_ocr(self, ocr_result: OCRResult, receipt_id: Optional[str] = None,
                    reference_date: Optional[date] = None) -> ProcessedReceipt:
        """Process an OCR result.

        Reprocessing with the same ``receipt_id`` yields the same line item
        ids, so a save overwrites the earlier result.

        Args:
            ocr_result: Raw recognition result
            receipt_id: Receipt identifier
            reference_date: Placeholder date when the recognized date is rejected

        Returns:
            ProcessedReceipt

        Raises:
            StorageError: If saving fails
        """
        normalized = self.normalizer.normalize(ocr_result, receipt_id=receipt_id,
                                               reference_date=reference_date)
        receipt = normalized.receipt

        match = MerchantMatch()
        if normalized.field_confidence[MERCHANT_FIELD].status != FieldStatus.NEEDS_REVIEW:
            match = self.resolver.resolve(ocr_result.merchant.value)
        if match.merchant_id is not None:
            receipt = receipt.model_copy(update={
                "merchant_id": match.merchant_id,
                "merchant_name": match.merchant_name or receipt.merchant_name,
            })

        classifications = []
        enrichments = []
        items = []
        for item, ocr_item in zip(receipt.items, ocr_result.items):
            result = self.classifier.classify_item(item, ocr_item.category_hint)
            classifications.append(result)
            update = {
                "category": result.label,
                "taxonomy_id": result.item_group_id,
            }
            if self.enricher is not None:
                enrichment = self.enricher.enrich(item, barcode=item.barcode)
                enrichments.append(enrichment)
                if (item.barcode is None and enrichment is not None and enrichment.barcode
                        and len(enrichment.barcode) <= MAX_BARCODE_LENGTH):
                    update["barcode"] = enrichment.barcode
            if self.matcher is not None:
                product = self._match_product(item, update.get("barcode", item.barcode))
                if product is not None:
                    update["product_id"] = product.id
            items.append(item.model_copy(update=update))
        receipt = receipt.model_copy(update={"items": items})

        reconciliation = reconcile(receipt, self.tolerance)
        if reconciliation is not None and not reconciliation.within_tolerance:
            self.logger.warning(f"Receipt {receipt.id or ''} line items sum to "
                                f"{reconciliation.items_total}, total is {reconciliation.total}")

        if self.repository is not None:
            receipt = self.repository.save(receipt)

        self.logger.info(f"Processed receipt {receipt.id or ''}: merchant={receipt.merchant_id}, "
                         f"items={len(receipt.items)}, status={receipt.status.value}")

        return ProcessedReceipt(
            receipt=receipt,
            field_confidence=normalized.field_confidence,
            merchant_match=match,
            classifications=classifications,
            enrichments=enrichments,
            review_required=normalized.requires_review,
            reconciliation=reconciliation,
        )

    def process_qr(self, raw_qr: Optional[str], receipt_id: Optional[str] = None,
                   reference_date: Optional[date] = None) -> Optional[ProcessedReceipt]:
        """Process a scanned QR string.

        Args:
            raw_qr: Raw decoded QR string
            receipt_id: Receipt identifier
            reference_date: Placeholder date when the QR carries none

        Returns:
            ProcessedReceipt, or None when the QR could not be decoded
        """
        scan = self.decoder.decode(raw_qr)
        if not scan.success or scan.data is None:
            self.logger.warning(f"QR code not usable: {scan.error}")
            return None
        return self.process_ocr(to_ocr_result(scan.data), receipt_id=receipt_id,
                                reference_date=reference_date)

    def _match_product(self, item: LineItem, barcode: Optional[str]) -> Optional[Product]:
        # Barcode is exact, name similarity only when it is unknown
        product = self.matcher.find_by_barcode(barcode)
        if product is None:
            product = self.matcher.match(item.display_name)
        return product
