"""
Rule-based line item classifier over the static taxonomy.
"""

import logging
from typing import Dict, List, Optional, Tuple

from .models import ClassificationResult, LineItem
from .taxonomy import Taxonomy, TaxonomyNode
from .text import content_tokens, tokenize

logger = logging.getLogger(__name__)

# Trigger tokens at least this long also match as a prefix ("peynir" -> "peyniri")
MIN_PREFIX_LENGTH = 4
PREFIX_WEIGHT = 0.9


class LineItemClassifier:
    """Assigns department/category/subcategory/item group to line items."""

    def __init__(self, taxonomy: Taxonomy):
        """Initialize classifier.

        Args:
            taxonomy: Shared read-only taxonomy
        """
        self.taxonomy = taxonomy
        self.logger = logger
        self._prefix_tokens = tuple(
            token for token in taxonomy.by_token if len(token) >= MIN_PREFIX_LENGTH
        )

    def classify(self, name: str, hint: Optional[str] = None) -> ClassificationResult:
        """Classify an item name.

        Classification is total: names that match nothing land on the
        catch-all leaf. When the name falls back and a category hint is
        given (e.g. from the OCR engine), the hint is classified instead.

        Args:
            name: Raw or cleaned item name
            hint: Optional category hint

        Returns:
            ClassificationResult, never None
        """
        result = self._classify_text(name or "")
        if result.is_fallback and hint:
            hinted = self._classify_text(hint)
            if not hinted.is_fallback:
                return hinted
        return result

    def classify_item(self, item: LineItem, hint: Optional[str] = None) -> ClassificationResult:
        return self.classify(item.display_name, hint)

    def _classify_text(self, text: str) -> ClassificationResult:
        tokens = content_tokens(text) or tokenize(text)
        if not tokens:
            return self._result(self.taxonomy.fallback, 0.0, is_fallback=True)

        scores = self._score_nodes(tokens)
        if not scores:
            return self._result(self.taxonomy.fallback, 0.0, is_fallback=True)

        # Highest score, then deeper node, then declaration order
        best_id, best_score = min(
            scores.items(),
            key=lambda kv: (-kv[1], -self.taxonomy.get(kv[0]).level,
                            self.taxonomy.get(kv[0]).order),
        )
        leaf = self.taxonomy.first_leaf(best_id)
        return self._result(leaf, min(1.0, best_score / len(tokens)))

    def _score_nodes(self, tokens: List[str]) -> Dict[str, float]:
        candidates = set()
        for token in tokens:
            candidates.update(self.taxonomy.by_token.get(token, ()))
            for trigger_token in self._prefix_tokens:
                if token != trigger_token and token.startswith(trigger_token):
                    candidates.update(self.taxonomy.by_token[trigger_token])

        scores = {}
        for node_id in candidates:
            node = self.taxonomy.get(node_id)
            covered: Dict[int, float] = {}
            for phrase in node.triggers:
                matched = self._match_phrase(phrase, tokens)
                if matched is None:
                    continue
                for position, weight in matched:
                    covered[position] = max(covered.get(position, 0.0), weight)
            if covered:
                scores[node_id] = sum(covered.values())
        return scores

    @staticmethod
    def _match_phrase(phrase: Tuple[str, ...],
                      tokens: List[str]) -> Optional[List[Tuple[int, float]]]:
        """Match every phrase token to a distinct item token, or return None."""
        used = set()
        matched = []
        for trigger_token in phrase:
            hit = None
            for position, token in enumerate(tokens):
                if position in used:
                    continue
                if token == trigger_token:
                    hit = (position, 1.0)
                    break
                if (hit is None and len(trigger_token) >= MIN_PREFIX_LENGTH
                        and token.startswith(trigger_token)):
                    hit = (position, PREFIX_WEIGHT)
            if hit is None:
                return None
            used.add(hit[0])
            matched.append(hit)
        return matched

    def _result(self, leaf: TaxonomyNode, score: float,
                is_fallback: bool = False) -> ClassificationResult:
        chain = self.taxonomy.path(leaf.id)
        department, category, subcategory, item_group = chain
        return ClassificationResult(
            department_id=department.id,
            category_id=category.id,
            subcategory_id=subcategory.id,
            item_group_id=item_group.id,
            label=category.name_en or category.name,
            path=[node.name for node in chain],
            score=score,
            is_fallback=is_fallback,
        )
