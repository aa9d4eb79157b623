"""
Merchant resolution: map a free-text merchant line to a known merchant.

Patterns are matched as substrings of the normalized text (Turkish case
folding plus diacritic stripping), so run-together OCR output such as
``MİGROSTİCARET`` still resolves. Patterns prefixed with ``re:`` are regular
expressions applied to the same normalized text; short names that occur
inside ordinary words use them to demand word boundaries. When no pattern
matches, the resolver falls back to fuzzy similarity against the merchant's
canonical and display names.
"""

import re
import logging
from typing import Iterable, List, Optional, Tuple

from rapidfuzz import fuzz

from .models import Merchant, MerchantCategory, MerchantMatch, MatchedBy
from .text import fold_diacritics, normalize_text

logger = logging.getLogger(__name__)

REGEX_PREFIX = "re:"

DEFAULT_MERCHANTS: List[Merchant] = [
    Merchant(id="a101", name="A101", display_name="A101",
             category=MerchantCategory.GROCERY, patterns=["a101", "a 101"]),
    Merchant(id="bim", name="BİM", display_name="BİM",
             category=MerchantCategory.GROCERY,
             patterns=[r"re:\bbim\b", "bim birlesik magazalar"]),
    Merchant(id="carrefour", name="CarrefourSA", display_name="CarrefourSA",
             category=MerchantCategory.SUPERMARKET, patterns=["carrefour", "carrefoursa"]),
    Merchant(id="migros", name="Migros", display_name="Migros",
             category=MerchantCategory.SUPERMARKET, patterns=["migros", "mıgros", "macrocenter"]),
    Merchant(id="sok", name="ŞOK", display_name="ŞOK Market",
             category=MerchantCategory.GROCERY, patterns=[r"re:\bsok\b", "şok market"]),
]


class _CompiledPattern:
    __slots__ = ("source", "regex")

    def __init__(self, source: str):
        self.source = source
        if source.startswith(REGEX_PREFIX):
            # Letters only; lowering would turn escapes like \S into \s
            body = fold_diacritics(source[len(REGEX_PREFIX):])
            self.regex = re.compile(body, re.IGNORECASE)
        else:
            normalized = normalize_text(source)
            self.regex = re.compile(re.escape(normalized)) if normalized else None

    def search(self, text: str) -> Optional[str]:
        if self.regex is None:
            return None
        match = self.regex.search(text)
        return match.group(0) if match else None


class MerchantResolver:
    """Resolves merchant text against a read-only merchant registry."""

    def __init__(self, merchants: Optional[Iterable[Merchant]] = None,
                 min_similarity: float = 0.80):
        """Initialize resolver.

        Args:
            merchants: Known merchants; defaults to the bundled Turkish retailers
            min_similarity: Minimum fuzzy score in [0, 1] for a name match
        """
        self.logger = logger
        self.min_similarity = min_similarity
        self._merchants: Tuple[Merchant, ...] = tuple(
            merchants if merchants is not None else DEFAULT_MERCHANTS
        )
        self._patterns = []
        for merchant in self._merchants:
            for pattern in merchant.patterns:
                try:
                    self._patterns.append((merchant, _CompiledPattern(pattern)))
                except re.error as e:
                    self.logger.warning(f"Skipping invalid pattern '{pattern}' "
                                        f"for merchant {merchant.id}: {str(e)}")
        self._names = [
            (merchant, {normalize_text(merchant.name), normalize_text(merchant.display_name)})
            for merchant in self._merchants
        ]

    @property
    def merchants(self) -> Tuple[Merchant, ...]:
        return self._merchants

    def get(self, merchant_id: str) -> Optional[Merchant]:
        for merchant in self._merchants:
            if merchant.id == merchant_id:
                return merchant
        return None

    def resolve(self, text: Optional[str]) -> MerchantMatch:
        """Resolve merchant text to a known merchant.

        Args:
            text: Merchant line from OCR or the QR title/name

        Returns:
            MerchantMatch; ``matched_by`` is ``none`` when nothing qualifies
        """
        normalized = normalize_text(text or "")
        if not normalized:
            return MerchantMatch()

        match = self._match_patterns(normalized)
        if match is None:
            match = self._match_fuzzy(normalized)
        if match is None:
            self.logger.debug(f"No merchant match for '{text}'")
            return MerchantMatch()
        return match

    def _match_patterns(self, normalized: str) -> Optional[MerchantMatch]:
        hits = []
        for merchant, pattern in self._patterns:
            matched = pattern.search(normalized)
            if matched is not None:
                hits.append((merchant, pattern, matched))
        if not hits:
            return None

        # Longest matched text wins, then the lowest merchant id
        merchant, pattern, _ = min(hits, key=lambda hit: (-len(hit[2]), hit[0].id))
        return MerchantMatch(
            merchant_id=merchant.id,
            merchant_name=merchant.display_name,
            confidence=1.0,
            matched_by=MatchedBy.PATTERN,
            matched_pattern=pattern.source,
        )

    def _match_fuzzy(self, normalized: str) -> Optional[MerchantMatch]:
        best = None
        for merchant, names in self._names:
            scores = [fuzz.ratio(normalized, name) / 100.0 for name in names if name]
            score = max(scores, default=0.0)
            if best is None or score > best[1] or (score == best[1] and merchant.id < best[0].id):
                best = (merchant, score)

        if best is None or best[1] < self.min_similarity:
            return None
        merchant, score = best
        return MerchantMatch(
            merchant_id=merchant.id,
            merchant_name=merchant.display_name,
            confidence=round(score, 4),
            matched_by=MatchedBy.FUZZY,
        )
