"""
Unit tests for product name normalization and matching.
"""

import pytest

from smartspend.exceptions import InputValidationError
from smartspend.models import Product
from smartspend.products import ProductMatcher, normalize_product_name, similarity


class TestNormalizeProductName:
    """Test cases for the product matching key."""

    def test_word_order_sizes_and_units_ignored(self):
        assert normalize_product_name("Pınar Süt 1L") == "pinar sut"
        assert normalize_product_name("SUT PINAR 1 LT") == "pinar sut"

    def test_noise_words_removed(self):
        assert normalize_product_name("Taze Domates KG") == "domates"

    def test_empty(self):
        assert normalize_product_name("1 ADET") == ""


class TestSimilarity:
    """Test cases for the blended similarity score."""

    def test_identical_keys(self):
        assert similarity("pinar sut", "pinar sut") == 1.0

    def test_bounds(self):
        score = similarity("pinar sut", "sutas sut")
        assert 0.0 <= score < 1.0

    def test_empty_key(self):
        assert similarity("", "pinar sut") == 0.0


class TestProductMatcher:
    """Test cases for ProductMatcher."""

    @pytest.fixture
    def products(self):
        return [
            Product(id="p1", name="Pınar Süt 1L", category="1.1.1.1"),
            Product(id="p2", name="Sütaş Süt 1L", category="1.1.1.1"),
            Product(id="p3", name="Ülker Çikolata 80g", category="1.7.1.1"),
        ]

    @pytest.fixture
    def matcher(self, products):
        return ProductMatcher(products)

    def test_match_exact_normalized(self, matcher):
        """Test an OCR spelling matches its catalog entry."""
        product = matcher.match("SUT PINAR 1LT")
        assert product is not None
        assert product.id == "p1"

    def test_match_returns_none_for_unknown(self, matcher):
        """Test no match is not an error."""
        assert matcher.match("Çamaşır Deterjanı") is None

    def test_fuzzy_match_respects_threshold(self, matcher):
        """Test no result scores below the threshold."""
        results = matcher.scored_matches("Pinar Sut", threshold=0.8)

        assert [product.id for product, _ in results] == ["p1"]
        assert all(score >= 0.8 for _, score in results)

    def test_threshold_one_returns_exact_only(self, matcher):
        assert [p.id for p in matcher.fuzzy_match("Süt Pınar", 1.0)] == ["p1"]
        assert matcher.fuzzy_match("Pınar Sütü", 1.0) == []

    def test_results_ordered_best_first(self, matcher):
        results = matcher.scored_matches("Pınar Süt", threshold=0.0)
        scores = [score for _, score in results]

        assert len(results) == 3
        assert results[0][0].id == "p1"
        assert scores == sorted(scores, reverse=True)

    def test_typo_tolerated(self, matcher):
        assert [p.id for p in matcher.fuzzy_match("Ulker Cikolatta", 0.6)] == ["p3"]

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_blank_name_raises(self, matcher, name):
        with pytest.raises(InputValidationError):
            matcher.match(name)

    def test_invalid_threshold_raises(self, matcher):
        with pytest.raises(InputValidationError):
            matcher.fuzzy_match("Süt", threshold=1.5)

    def test_query_without_content(self, matcher):
        """Test a name reduced to nothing matches nothing."""
        assert matcher.fuzzy_match("2 ADET") == []

    def test_stored_normalized_name_used(self):
        matcher = ProductMatcher([Product(id="x", name="Marka X", normalized_name="yumurta")])
        assert matcher.match("Yumurta").id == "x"
