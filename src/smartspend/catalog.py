"""
Remote product catalog used to enrich line items with names and brands.

Enrichment is optional: catalog failures are logged and swallowed by
``ProductEnricher`` so they never block classification or storage.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from .exceptions import CatalogUnavailable
from .models import CatalogProduct, Enrichment, LineItem
from .products import normalize_product_name, similarity

logger = logging.getLogger(__name__)

SEARCH_FIELDS = "code,product_name,product_name_tr,brands,categories,quantity"


def _as_text(value: Any) -> Optional[str]:
    """Scalar catalog value as trimmed text; containers and blanks become None."""
    if value is None or isinstance(value, (dict, list, tuple)):
        return None
    text = str(value).strip()
    return text or None


def _as_list(value: Any) -> List[str]:
    """Comma separated text or a JSON array as a list of non-blank strings."""
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (list, tuple)):
        parts = [_as_text(part) or "" for part in value]
    else:
        return []
    return [part.strip() for part in parts if part.strip()]


class CatalogClient(ABC):
    """Lookup contract of a product catalog."""

    @abstractmethod
    def lookup_by_barcode(self, barcode: str) -> Optional[CatalogProduct]:
        """Product with the given barcode, or None if unknown.

        Raises:
            CatalogUnavailable: If the catalog cannot be reached
        """

    @abstractmethod
    def search(self, text: str, limit: int = 5) -> List[CatalogProduct]:
        """Products matching free text, best first.

        Raises:
            CatalogUnavailable: If the catalog cannot be reached
        """


class OpenFoodFactsClient(CatalogClient):
    """Open Food Facts API client."""

    def __init__(self, base_url: str = "https://world.openfoodfacts.org/api/v2",
                 timeout: int = 10, session: Optional[requests.Session] = None):
        """Initialize client.

        Args:
            base_url: API root
            timeout: Request timeout in seconds
            session: Optional requests session (shared connection pool)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logger

    def lookup_by_barcode(self, barcode: str) -> Optional[CatalogProduct]:
        code = (barcode or "").strip()
        if not code:
            return None

        data = self._get(f"{self.base_url}/product/{code}.json", params={"fields": SEARCH_FIELDS})
        if data is None or data.get("status") != 1 or not isinstance(data.get("product"), dict):
            return None
        return self._to_product(data["product"], default_code=code)

    def search(self, text: str, limit: int = 5) -> List[CatalogProduct]:
        query = (text or "").strip()
        if not query:
            return []

        params = {
            "search_terms": query,
            "page_size": limit,
            "fields": SEARCH_FIELDS,
        }
        data = self._get(f"{self.base_url}/search", params=params)
        if data is None:
            return []

        raw_products = data.get("products") or []
        if not isinstance(raw_products, list):
            self.logger.warning("Ignoring catalog search result with malformed products list")
            return []

        products = []
        for raw in raw_products:
            product = self._to_product(raw)
            if product is not None:
                products.append(product)
        return products[:limit]

    def _get(self, url: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """GET a JSON object; 404 means "not found", other failures raise."""
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            self.logger.error(f"Catalog request to {url} failed: {str(e)}")
            raise CatalogUnavailable(f"Catalog request failed: {str(e)}") from e

        if not isinstance(data, dict):
            self.logger.error(f"Catalog response from {url} is not a JSON object")
            raise CatalogUnavailable(f"Unexpected catalog payload of type {type(data).__name__}")
        return data

    @staticmethod
    def _to_product(raw: Any, default_code: Optional[str] = None) -> Optional[CatalogProduct]:
        if not isinstance(raw, dict):
            return None
        name = _as_text(raw.get("product_name_tr")) or _as_text(raw.get("product_name"))
        if not name:
            return None
        brands = _as_list(raw.get("brands"))
        categories = _as_list(raw.get("categories"))
        return CatalogProduct(
            barcode=_as_text(raw.get("code")) or default_code,
            name=name,
            brand=brands[0] if brands else None,
            category=categories[-1] if categories else None,
            quantity=_as_text(raw.get("quantity")),
        )


class ProductEnricher:
    """Attaches optional catalog data to line items."""

    def __init__(self, client: CatalogClient, min_similarity: float = 0.5):
        """Initialize enricher.

        Args:
            client: Catalog collaborator
            min_similarity: Minimum name similarity for a free-text search hit
        """
        self.client = client
        self.min_similarity = min_similarity
        self.logger = logger

    def enrich(self, item: LineItem, barcode: Optional[str] = None) -> Optional[Enrichment]:
        """Look up catalog data for a line item.

        Args:
            item: Line item to enrich
            barcode: Barcode printed for the item, if any

        Returns:
            Enrichment, or None when the catalog has nothing or is unavailable
        """
        try:
            product = None
            if barcode:
                product = self.client.lookup_by_barcode(barcode)
            if product is None:
                product = self._best_search_hit(item.display_name)
        except CatalogUnavailable as e:
            self.logger.warning(f"Catalog unavailable, skipping enrichment for "
                                f"'{item.display_name}': {str(e)}")
            return None

        if product is None:
            return None
        return Enrichment(
            name=product.name,
            brand=product.brand,
            category=product.category,
            barcode=product.barcode,
        )

    def _best_search_hit(self, name: str) -> Optional[CatalogProduct]:
        query = normalize_product_name(name)
        if not query:
            return None

        best, best_score = None, 0.0
        for candidate in self.client.search(name):
            score = similarity(query, normalize_product_name(candidate.name))
            if score > best_score:
                best, best_score = candidate, score
        if best_score < self.min_similarity:
            return None
        return best
