"""
Unit tests for the taxonomy asset and the line item classifier.
"""

import json
import pytest
from decimal import Decimal

from smartspend.classifier import LineItemClassifier
from smartspend.models import LineItem
from smartspend.taxonomy import build_taxonomy, get_default_taxonomy, load_taxonomy


@pytest.fixture(scope="module")
def taxonomy():
    return get_default_taxonomy()


@pytest.fixture(scope="module")
def classifier(taxonomy):
    return LineItemClassifier(taxonomy)


class TestTaxonomy:
    """Test cases for the taxonomy arena."""

    def test_departments_loaded(self, taxonomy):
        """Test all fourteen departments are present in declaration order."""
        departments = taxonomy.departments()

        assert len(departments) == 14
        assert departments[0].id == "1"
        assert departments[0].name_en == "Food & Beverage"
        assert departments[0].color and departments[0].icon
        assert departments[-1].id == "14"

    def test_leaves_are_item_groups(self, taxonomy):
        assert all(leaf.level == 3 for leaf in taxonomy.leaves())

    def test_path_and_parent_links(self, taxonomy):
        path = taxonomy.path("1.1.1.1")
        assert [node.id for node in path] == ["1", "1.1", "1.1.1", "1.1.1.1"]
        assert path[-1].parent_id == "1.1.1"

    def test_token_index(self, taxonomy):
        """Test trigger tokens are indexed in normalized form."""
        assert "1.1.1.1" in taxonomy.by_token["sut"]

    def test_fallback(self, taxonomy):
        assert taxonomy.fallback.id == "14.1.1.1"
        assert taxonomy.fallback.is_leaf

    def test_first_leaf(self, taxonomy):
        assert taxonomy.first_leaf("1").id == "1.1.1.1"

    def test_default_taxonomy_is_shared(self):
        """Test the default taxonomy is loaded once per process."""
        assert get_default_taxonomy() is get_default_taxonomy()

    def test_load_from_path(self, tmp_path):
        data = {
            "fallback_id": "9.1.1.1",
            "departments": [
                {"id": "9", "name": "Diğer", "categories": [
                    {"id": "9.1", "name": "Diğer", "subcategories": [
                        {"id": "9.1.1", "name": "Diğer", "item_groups": [
                            {"id": "9.1.1.1", "name": "Diğer", "triggers": ["şey"]}
                        ]}
                    ]}
                ]}
            ],
        }
        path = tmp_path / "taxonomy.json"
        path.write_text(json.dumps(data), encoding="utf-8")

        taxonomy = load_taxonomy(str(path))
        assert len(taxonomy) == 4
        assert taxonomy.get("9.1.1.1").triggers == (("sey",),)

    def test_duplicate_ids_rejected(self):
        data = {
            "fallback_id": "1.1.1.1",
            "departments": [
                {"id": "1", "name": "A", "categories": [
                    {"id": "1.1", "name": "B", "subcategories": [
                        {"id": "1.1.1", "name": "C", "item_groups": [
                            {"id": "1.1.1.1", "name": "D"},
                            {"id": "1.1.1.1", "name": "E"},
                        ]}
                    ]}
                ]}
            ],
        }
        with pytest.raises(ValueError):
            build_taxonomy(data)

    def test_missing_fallback_rejected(self):
        data = {
            "fallback_id": "missing",
            "departments": [
                {"id": "1", "name": "A", "categories": [
                    {"id": "1.1", "name": "B", "subcategories": [
                        {"id": "1.1.1", "name": "C", "item_groups": [{"id": "1.1.1.1", "name": "D"}]}
                    ]}
                ]}
            ],
        }
        with pytest.raises(ValueError):
            build_taxonomy(data)


class TestLineItemClassifier:
    """Test cases for LineItemClassifier."""

    def test_milk_is_dairy(self, classifier):
        """Test a milk line lands on the dairy leaf."""
        result = classifier.classify("Süt 1L")

        assert result.item_group_id == "1.1.1.1"
        assert result.subcategory_id == "1.1.1"
        assert result.category_id == "1.1"
        assert result.department_id == "1"
        assert result.label == "Dairy & Breakfast"
        assert not result.is_fallback
        assert result.score == pytest.approx(1.0)

    def test_case_and_diacritics_insensitive(self, classifier):
        assert classifier.classify("SUT").item_group_id == "1.1.1.1"
        assert classifier.classify("süt").item_group_id == "1.1.1.1"

    def test_phrase_beats_single_token(self, classifier):
        """Test the leaf covering more tokens wins."""
        assert classifier.classify("Portakal Suyu 1L").item_group_id == "1.6.1.3"
        assert classifier.classify("Çamaşır Suyu 2.5L").item_group_id == "2.1.2.1"
        assert classifier.classify("Portakal").item_group_id == "1.3.1.1"

    def test_exact_token_beats_prefix(self, classifier):
        """Test "zeytinyağı" is oil, not olives."""
        assert classifier.classify("Zeytinyağı 1L").item_group_id == "1.5.2.1"
        assert classifier.classify("Siyah Zeytin").item_group_id == "1.1.2.2"

    def test_prefix_match(self, classifier):
        """Test inflected forms match by prefix with a reduced score."""
        result = classifier.classify("Domatesler")

        assert result.item_group_id == "1.3.2.1"
        assert result.score == pytest.approx(0.9)

    def test_unmatched_falls_back(self, classifier):
        """Test classification is total."""
        result = classifier.classify("XQZ 4711")

        assert result.item_group_id == "14.1.1.1"
        assert result.is_fallback
        assert result.label == "Other"
        assert result.score == 0.0

    def test_empty_name_falls_back(self, classifier):
        assert classifier.classify("").is_fallback

    def test_hint_used_only_on_fallback(self, classifier):
        """Test the OCR category hint is a secondary signal."""
        assert classifier.classify("XQZ", hint="süt").item_group_id == "1.1.1.1"
        assert classifier.classify("Ekmek", hint="süt").item_group_id == "1.4.1.1"

    def test_classify_item_uses_display_name(self, classifier):
        item = LineItem(name="URUN 123", clean_name="Ekmek", unit_price=Decimal("5"),
                        total_price=Decimal("5"))
        assert classifier.classify_item(item).item_group_id == "1.4.1.1"

    def test_path_names(self, classifier):
        result = classifier.classify("Süt")
        assert result.path[-1] == "Süt"
        assert len(result.path) == 4
