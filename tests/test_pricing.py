"""
Unit tests for cross-merchant price comparison and price history.
"""

import pytest
from datetime import date
from decimal import Decimal

from smartspend.models import LineItem, PriceSource, Product, ProductPrice
from smartspend.pricing import PriceComparator, price_statistics, price_trend
from smartspend.products import ProductMatcher


def observation(merchant_id, price, observed_on=date(2024, 1, 10), product_id="p1",
                source=PriceSource.MANUAL):
    return ProductPrice(product_id=product_id, merchant_id=merchant_id, price=Decimal(price),
                        observed_on=observed_on, source=source)


@pytest.fixture
def product():
    return Product(id="p1", name="Pınar Süt 1L")


@pytest.fixture
def comparator():
    return PriceComparator()


class TestPriceComparator:
    """Test cases for PriceComparator."""

    def test_cheapest_merchant_and_savings(self, comparator, product):
        """Test paying 10.00 where 8.50 was available saves 15%."""
        observations = [observation("MerchantA", "10.00"), observation("MerchantB", "8.50")]

        comparison = comparator.compare(product, Decimal("10.00"), observations,
                                        merchant_id="MerchantA")

        assert comparison.cheapest_merchant_id == "MerchantB"
        assert comparison.cheapest_price == Decimal("8.50")
        assert comparison.savings == Decimal("1.50")
        assert comparison.savings_percentage == pytest.approx(15.0)

    def test_best_price_paid_means_zero_savings(self, comparator, product):
        observations = [observation("MerchantA", "10.00")]
        comparison = comparator.compare(product, Decimal("9.00"), observations)

        assert comparison.savings == Decimal("0")
        assert comparison.savings_percentage == 0.0

    def test_zero_paid_price(self, comparator, product):
        comparison = comparator.compare(product, Decimal("0"), [observation("A", "0")])
        assert comparison.savings_percentage == 0.0

    def test_tie_goes_to_most_recent(self, comparator, product):
        observations = [
            observation("MerchantA", "8.50", observed_on=date(2024, 1, 1)),
            observation("MerchantB", "8.50", observed_on=date(2024, 2, 1)),
        ]
        comparison = comparator.compare(product, Decimal("10.00"), observations)

        assert comparison.cheapest_merchant_id == "MerchantB"
        assert comparison.cheapest_observed_on == date(2024, 2, 1)

    def test_other_products_ignored(self, comparator, product):
        observations = [observation("A", "1.00", product_id="other"), observation("B", "9.00")]
        assert comparator.compare(product, Decimal("10"), observations).cheapest_merchant_id == "B"

    def test_no_observations(self, comparator, product):
        assert comparator.compare(product, Decimal("10"), []) is None

    def test_source_filter(self, comparator, product):
        """Test provenance only matters when the caller filters on it."""
        observations = [
            observation("A", "5.00", source=PriceSource.SCRAPED),
            observation("B", "7.00", source=PriceSource.USER_REPORTED),
        ]
        assert comparator.compare(product, Decimal("10"), observations).cheapest_merchant_id == "A"

        filtered = comparator.compare(product, Decimal("10"), observations,
                                      sources=[PriceSource.USER_REPORTED])
        assert filtered.cheapest_merchant_id == "B"

    def test_compare_receipt(self, comparator, product):
        matcher = ProductMatcher([product])
        items = [
            LineItem(name="SUT PINAR 1L", unit_price=Decimal("10.00"), total_price=Decimal("10.00")),
            LineItem(name="Bilinmeyen Ürün", unit_price=Decimal("3.00"), total_price=Decimal("3.00")),
        ]
        prices = {"p1": [observation("MerchantB", "8.50")]}

        comparisons = comparator.compare_receipt(items, "MerchantA", matcher,
                                                 lambda product_id: prices.get(product_id, []))

        assert len(comparisons) == 1
        assert comparisons[0].merchant_id == "MerchantA"
        assert comparisons[0].savings == Decimal("1.50")


class TestPriceHistory:
    """Test cases for price statistics and trends."""

    def test_statistics(self):
        stats = price_statistics([observation("A", "10.00"), observation("B", "8.50"),
                                  observation("C", "9.00"), observation("D", "12.00")])

        assert stats.min == Decimal("8.50")
        assert stats.max == Decimal("12.00")
        assert stats.average == Decimal("9.88")
        assert stats.median == Decimal("9.50")
        assert stats.count == 4

    def test_statistics_empty(self):
        assert price_statistics([]) is None

    def test_trend_up(self):
        trend = price_trend([observation("A", "10.00", date(2024, 1, 1)),
                             observation("A", "11.00", date(2024, 2, 1))])

        assert trend.direction == "up"
        assert trend.change_percent == pytest.approx(10.0)
        assert trend.last_price == Decimal("11.00")

    def test_trend_down(self):
        trend = price_trend([observation("A", "10.00", date(2024, 2, 1)),
                             observation("A", "12.00", date(2024, 1, 1))])
        assert trend.direction == "down"

    def test_trend_stable_within_two_percent(self):
        trend = price_trend([observation("A", "10.00", date(2024, 1, 1)),
                             observation("A", "10.15", date(2024, 2, 1))])
        assert trend.direction == "stable"

    def test_trend_needs_two_observations(self):
        assert price_trend([observation("A", "10.00")]) is None
