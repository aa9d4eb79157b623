"""
Product matching against the product catalog.

Names are reduced to a canonical matching key (Turkish folding, no digits,
no packaging noise words, sorted tokens) so that "Pınar Süt 1L" and
"SUT PINAR 1 LT" compare equal.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from rapidfuzz.distance import Levenshtein

from .exceptions import InputValidationError
from .models import Product
from .text import normalize_text

logger = logging.getLogger(__name__)

NOISE_WORDS = frozenset({
    "adet", "kg", "gr", "ml", "lt", "l", "g", "paket", "kutu", "sise", "sisesi",
    "poset", "tam", "yarim", "buyuk", "kucuk", "orta", "yeni", "fresh", "taze",
})


def normalize_product_name(name: str) -> str:
    """Build the product matching key.

    Args:
        name: Product or line item name

    Returns:
        Space separated, sorted, noise-free tokens (possibly empty)
    """
    normalized = normalize_text(name)
    tokens = []
    for token in normalized.split():
        token = "".join(ch for ch in token if not ch.isdigit())
        if token and token not in NOISE_WORDS:
            tokens.append(token)
    return " ".join(sorted(tokens))


def similarity(a: str, b: str) -> float:
    """Similarity of two matching keys in [0, 1]; 1.0 for identical keys."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    tokens_a, tokens_b = set(a.split()), set(b.split())
    token_overlap = len(tokens_a & tokens_b) / len(tokens_a | tokens_b)
    edit_score = Levenshtein.normalized_similarity(a, b)
    return min(1.0, 0.5 * token_overlap + 0.5 * edit_score)


class ProductMatcher:
    """Fuzzy matcher over a fixed product catalog."""

    def __init__(self, products: Iterable[Product], fuzzy_threshold: float = 0.80,
                 match_threshold: float = 0.85):
        """Initialize matcher.

        Args:
            products: Catalog entries
            fuzzy_threshold: Default threshold for ``fuzzy_match``
            match_threshold: Acceptance bar for ``match``
        """
        self.logger = logger
        self.fuzzy_threshold = fuzzy_threshold
        self.match_threshold = match_threshold
        self._entries: List[Tuple[Product, str]] = [
            (product, normalize_product_name(product.normalized_name or product.name))
            for product in products
        ]

    def __len__(self) -> int:
        return len(self._entries)

    def scored_matches(self, name: str,
                       threshold: Optional[float] = None) -> List[Tuple[Product, float]]:
        """Catalog entries scoring at or above ``threshold``, best first.

        Raises:
            InputValidationError: If ``name`` is empty or blank
        """
        if name is None or not str(name).strip():
            raise InputValidationError("Product name cannot be empty")
        if threshold is None:
            threshold = self.fuzzy_threshold
        if not 0 <= threshold <= 1:
            raise InputValidationError(f"Threshold must be within [0, 1], got {threshold}")

        query = normalize_product_name(name)
        if not query:
            return []

        results = []
        for product, key in self._entries:
            score = similarity(query, key)
            if score >= threshold:
                results.append((product, score))
        results.sort(key=lambda pair: (-pair[1], pair[0].id))
        return results

    def fuzzy_match(self, name: str, threshold: Optional[float] = None) -> List[Product]:
        """Products scoring at or above ``threshold``, best first.

        Args:
            name: Query name
            threshold: Minimum score; defaults to the configured fuzzy threshold

        Returns:
            Ordered list of products, possibly empty
        """
        return [product for product, _ in self.scored_matches(name, threshold)]

    def find_by_barcode(self, barcode: Optional[str]) -> Optional[Product]:
        code = (barcode or "").strip()
        if not code:
            return None
        for product, _ in self._entries:
            if product.barcode == code:
                return product
        return None

    def match(self, name: str) -> Optional[Product]:
        """Single best product above the acceptance bar, or None."""
        matches = self.scored_matches(name, self.match_threshold)
        if not matches:
            return None
        return matches[0][0]
