"""
Unit tests for merchant resolution.
"""

import pytest

from smartspend.merchants import DEFAULT_MERCHANTS, MerchantResolver
from smartspend.models import MatchedBy, Merchant, MerchantCategory


class TestMerchantResolver:
    """Test cases for MerchantResolver."""

    @pytest.fixture
    def resolver(self):
        return MerchantResolver()

    @pytest.mark.parametrize("text", ["MIGROS", "migros", "mıgros", "MİGROS TİCARET A.Ş."])
    def test_pattern_match_is_case_and_diacritic_insensitive(self, resolver, text):
        """Test every spelling resolves through the pattern table."""
        match = resolver.resolve(text)

        assert match.merchant_id == "migros"
        assert match.merchant_name == "Migros"
        assert match.matched_by == MatchedBy.PATTERN
        assert match.confidence == 1.0

    def test_longest_pattern_wins(self, resolver):
        """Test the most specific pattern is reported."""
        match = resolver.resolve("ŞOK MARKET KADIKÖY")

        assert match.merchant_id == "sok"
        assert match.matched_pattern == "şok market"

    def test_short_names_need_word_boundaries(self, resolver):
        """Test "sok" inside "sokak" is not the ŞOK chain."""
        match = resolver.resolve("SOKAK BAKKAL")

        assert match.merchant_id is None
        assert match.matched_by == MatchedBy.NONE

    def test_run_together_words_match_as_substring(self, resolver):
        """Test a merchant glued to the next word by OCR still resolves."""
        match = resolver.resolve("MİGROSTİCARET A.Ş.")

        assert match.merchant_id == "migros"
        assert match.matched_by == MatchedBy.PATTERN
        assert match.matched_pattern == "migros"

    def test_longer_match_beats_shorter_regex(self, resolver):
        match = resolver.resolve("ŞOK MARKETLERİ TİC. A.Ş.")

        assert match.merchant_id == "sok"
        assert match.matched_pattern == "şok market"

    def test_tie_break_by_lowest_id(self):
        """Test equally long patterns resolve to the lowest merchant id."""
        merchants = [
            Merchant(id="zeta", name="Zeta", display_name="Zeta", patterns=["market"]),
            Merchant(id="alpha", name="Alpha", display_name="Alpha", patterns=["market"]),
        ]
        match = MerchantResolver(merchants).resolve("MARKET")
        assert match.merchant_id == "alpha"

    def test_regex_pattern(self):
        merchants = [Merchant(id="file", name="File", display_name="File Market",
                              patterns=[r"re:\bfile\s+market\b"])]
        match = MerchantResolver(merchants).resolve("FİLE  MARKET")

        assert match.merchant_id == "file"
        assert match.matched_by == MatchedBy.PATTERN

    def test_regex_with_turkish_letters(self):
        """Test regex bodies are folded like the text they run against."""
        merchants = [Merchant(id="sok", name="ŞOK", display_name="ŞOK Market",
                              patterns=[r"re:şok\s+market"])]
        match = MerchantResolver(merchants).resolve("ŞOK MARKET")

        assert match.merchant_id == "sok"
        assert match.matched_pattern == r"re:şok\s+market"

    def test_invalid_regex_skipped(self):
        merchants = [Merchant(id="bad", name="Bad", display_name="Bad", patterns=["re:(unclosed"])]
        resolver = MerchantResolver(merchants)
        assert resolver.resolve("unclosed").matched_by != MatchedBy.PATTERN

    def test_fuzzy_fallback(self, resolver):
        """Test OCR misspellings resolve by similarity."""
        match = resolver.resolve("MIGORS")

        assert match.merchant_id == "migros"
        assert match.matched_by == MatchedBy.FUZZY
        assert 0.8 <= match.confidence < 1.0

    def test_fuzzy_below_threshold(self, resolver):
        match = resolver.resolve("KIRTASIYE DUNYASI")

        assert match.merchant_id is None
        assert match.confidence == 0.0

    @pytest.mark.parametrize("text", ["", "   ", None, "!!!"])
    def test_blank_text(self, resolver, text):
        assert resolver.resolve(text).matched_by == MatchedBy.NONE

    def test_registry_is_read_only(self, resolver):
        """Test resolving never changes the merchant registry."""
        before = [m.model_dump() for m in resolver.merchants]
        resolver.resolve("CARREFOURSA")
        assert [m.model_dump() for m in resolver.merchants] == before
        assert resolver.get("carrefour").category == MerchantCategory.SUPERMARKET
        assert resolver.get("missing") is None

    def test_default_merchants(self):
        assert {m.id for m in DEFAULT_MERCHANTS} == {"a101", "bim", "carrefour", "migros", "sok"}
