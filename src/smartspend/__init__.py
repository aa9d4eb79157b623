"""
Receipt processing core: OCR normalization, e-arşiv QR decoding, merchant
resolution, item classification, product matching, analytics and price
comparison.
"""

import logging
from typing import Optional

from .models import Receipt, ReceiptCreate, ReceiptUpdate, LineItem, Merchant, Product, ProductPrice
from .config import Settings, ConfidenceThresholds, get_settings
from .exceptions import SmartSpendError, InputValidationError, CollaboratorUnavailable, StorageError
from .normalizer import OCRNormalizer
from .qr import QRDecoder
from .merchants import MerchantResolver
from .taxonomy import Taxonomy, load_taxonomy, get_default_taxonomy
from .classifier import LineItemClassifier
from .products import ProductMatcher
from .analytics import AnalyticsEngine
from .pricing import PriceComparator
from .database import SQLiteStorage
from .pipeline import ReceiptPipeline, ProcessedReceipt
from .export import DataExporter

__version__ = "1.0.0"

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> None:
    """Configure root logging for applications embedding the package.

    Args:
        level: Logging level
        log_file: Optional file to log to in addition to stderr
    """
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)


__all__ = [
    'Receipt',
    'ReceiptCreate',
    'ReceiptUpdate',
    'LineItem',
    'Merchant',
    'Product',
    'ProductPrice',
    'Settings',
    'ConfidenceThresholds',
    'get_settings',
    'SmartSpendError',
    'InputValidationError',
    'CollaboratorUnavailable',
    'StorageError',
    'OCRNormalizer',
    'QRDecoder',
    'MerchantResolver',
    'Taxonomy',
    'load_taxonomy',
    'get_default_taxonomy',
    'LineItemClassifier',
    'ProductMatcher',
    'AnalyticsEngine',
    'PriceComparator',
    'SQLiteStorage',
    'ReceiptPipeline',
    'ProcessedReceipt',
    'DataExporter',
    'configure_logging',
]
