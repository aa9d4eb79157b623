"""
Unit tests for the remote catalog client and product enrichment.
"""

import pytest
import requests
from decimal import Decimal
from unittest.mock import Mock

from smartspend.catalog import CatalogClient, OpenFoodFactsClient, ProductEnricher
from smartspend.exceptions import CatalogUnavailable
from smartspend.models import CatalogProduct, LineItem


def make_response(status_code=200, payload=None):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    else:
        response.raise_for_status.return_value = None
    return response


class TestOpenFoodFactsClient:
    """Test cases for OpenFoodFactsClient."""

    @pytest.fixture
    def session(self):
        return Mock(spec=requests.Session)

    @pytest.fixture
    def client(self, session):
        return OpenFoodFactsClient("https://catalog.example/api/v2/", timeout=5, session=session)

    def test_lookup_by_barcode(self, client, session):
        session.get.return_value = make_response(payload={
            "status": 1,
            "product": {"code": "8690000000001", "product_name": "Milk",
                        "product_name_tr": "Pınar Süt", "brands": "Pınar, Yaşar",
                        "categories": "Dairies, Milks", "quantity": "1 l"},
        })

        product = client.lookup_by_barcode("8690000000001")

        assert product.name == "Pınar Süt"
        assert product.brand == "Pınar"
        assert product.category == "Milks"
        assert product.barcode == "8690000000001"
        url = session.get.call_args[0][0]
        assert url == "https://catalog.example/api/v2/product/8690000000001.json"
        assert session.get.call_args[1]["timeout"] == 5

    def test_lookup_unknown_barcode(self, client, session):
        session.get.return_value = make_response(payload={"status": 0})
        assert client.lookup_by_barcode("000") is None

    def test_lookup_not_found(self, client, session):
        session.get.return_value = make_response(status_code=404)
        assert client.lookup_by_barcode("000") is None

    def test_blank_barcode_skips_request(self, client, session):
        assert client.lookup_by_barcode("  ") is None
        session.get.assert_not_called()

    def test_search(self, client, session):
        session.get.return_value = make_response(payload={"products": [
            {"code": "1", "product_name": "Süt"},
            {"code": "2", "product_name": ""},
            {"code": "3", "product_name": "Ayran"},
        ]})

        products = client.search("süt", limit=5)

        assert [p.barcode for p in products] == ["1", "3"]
        params = session.get.call_args[1]["params"]
        assert params["search_terms"] == "süt"
        assert params["page_size"] == 5

    def test_server_error_raises_catalog_unavailable(self, client, session):
        session.get.return_value = make_response(status_code=503)
        with pytest.raises(CatalogUnavailable):
            client.search("süt")

    def test_connection_error_raises_catalog_unavailable(self, client, session):
        session.get.side_effect = requests.ConnectionError("offline")
        with pytest.raises(CatalogUnavailable):
            client.lookup_by_barcode("123")

    def test_list_valued_fields_are_coerced(self, client, session):
        session.get.return_value = make_response(payload={
            "status": 1,
            "product": {"code": 8690000000001, "product_name": "Süt",
                        "brands": ["Pınar", "Yaşar"], "categories": ["Dairies", "Milks"],
                        "quantity": 1000},
        })

        product = client.lookup_by_barcode("8690000000001")

        assert product.brand == "Pınar"
        assert product.category == "Milks"
        assert product.barcode == "8690000000001"
        assert product.quantity == "1000"

    def test_top_level_array_raises_catalog_unavailable(self, client, session):
        session.get.return_value = make_response(payload=[{"code": "1", "product_name": "Süt"}])
        with pytest.raises(CatalogUnavailable):
            client.lookup_by_barcode("1")

    def test_malformed_search_entries_skipped(self, client, session):
        session.get.return_value = make_response(payload={"products": [
            "Süt", None, {"code": "3", "product_name": ["Ayran"]},
            {"code": "4", "product_name": "Kefir"},
        ]})
        assert [p.barcode for p in client.search("süt")] == ["4"]

        session.get.return_value = make_response(payload={"products": {"code": "1"}})
        assert client.search("süt") == []


class TestProductEnricher:
    """Test cases for ProductEnricher."""

    @pytest.fixture
    def item(self):
        return LineItem(name="PINAR SUT 1L", unit_price=Decimal("25.50"),
                        total_price=Decimal("25.50"))

    def test_barcode_lookup_first(self, item):
        client = Mock(spec=CatalogClient)
        client.lookup_by_barcode.return_value = CatalogProduct(barcode="869", name="Pınar Süt",
                                                               brand="Pınar")

        enrichment = ProductEnricher(client).enrich(item, barcode="869")

        assert enrichment.name == "Pınar Süt"
        assert enrichment.brand == "Pınar"
        client.search.assert_not_called()

    def test_search_fallback_picks_similar_hit(self, item):
        client = Mock(spec=CatalogClient)
        client.search.return_value = [
            CatalogProduct(name="Çikolata"),
            CatalogProduct(name="Pınar Süt 1 L", brand="Pınar"),
        ]

        enrichment = ProductEnricher(client).enrich(item)

        assert enrichment.name == "Pınar Süt 1 L"

    def test_dissimilar_hits_ignored(self, item):
        client = Mock(spec=CatalogClient)
        client.search.return_value = [CatalogProduct(name="Deterjan")]
        assert ProductEnricher(client).enrich(item) is None

    def test_catalog_failure_degrades_silently(self, item):
        """Test enrichment never propagates catalog outages."""
        client = Mock(spec=CatalogClient)
        client.lookup_by_barcode.side_effect = CatalogUnavailable("offline")

        assert ProductEnricher(client).enrich(item, barcode="869") is None

    def test_malformed_catalog_payload_through_enricher(self, item):
        """Test an unexpected response shape degrades to no enrichment."""
        session = Mock(spec=requests.Session)
        session.get.return_value = make_response(payload=[{"status": 1}])
        client = OpenFoodFactsClient("https://catalog.example/api/v2", session=session)

        assert ProductEnricher(client).enrich(item, barcode="869") is None

    def test_list_valued_brands_through_enricher(self, item):
        session = Mock(spec=requests.Session)
        session.get.return_value = make_response(payload={
            "status": 1,
            "product": {"code": "869", "product_name": "Pınar Süt", "brands": ["Pınar"]},
        })
        client = OpenFoodFactsClient("https://catalog.example/api/v2", session=session)

        enrichment = ProductEnricher(client).enrich(item, barcode="869")

        assert enrichment.brand == "Pınar"
        assert enrichment.barcode == "869"
