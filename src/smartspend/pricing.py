"""
Cross-merchant price comparison and price history statistics.
"""

import logging
import statistics
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Iterable, List, Optional, Sequence

from .models import (LineItem, PriceComparison, PriceSource, PriceStats, PriceTrend, Product,
                     ProductPrice)
from .products import ProductMatcher

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Relative change below which the price counts as stable
STABLE_THRESHOLD = Decimal("0.02")


class PriceComparator:
    """Finds the cheapest known price of a product and the savings."""

    def __init__(self):
        self.logger = logger

    @staticmethod
    def cheapest(observations: Iterable[ProductPrice],
                 sources: Optional[Sequence[PriceSource]] = None) -> Optional[ProductPrice]:
        """Cheapest observation; ties go to the most recent, then merchant id.

        Args:
            observations: Price observations of one product
            sources: Optional provenance filter

        Returns:
            The winning observation, or None when there is none
        """
        candidates = [obs for obs in observations if not sources or obs.source in sources]
        if not candidates:
            return None
        return min(candidates,
                   key=lambda obs: (obs.price, -obs.observed_on.toordinal(), obs.merchant_id))

    def compare(self, product: Product, user_paid_price: Decimal,
                observations: Iterable[ProductPrice], merchant_id: Optional[str] = None,
                sources: Optional[Sequence[PriceSource]] = None) -> Optional[PriceComparison]:
        """Compare what the user paid with the cheapest known price.

        Savings never go negative: paying the best price means zero savings.
        The savings percentage is 0 when the user paid nothing.

        Args:
            product: Matched product
            user_paid_price: Unit price the user paid
            observations: Known price observations
            merchant_id: Merchant where the user paid
            sources: Optional provenance filter

        Returns:
            PriceComparison, or None when no observation exists
        """
        relevant = [obs for obs in observations if obs.product_id == product.id]
        best = self.cheapest(relevant, sources)
        if best is None:
            self.logger.debug(f"No price observations for product {product.id}")
            return None

        paid = Decimal(user_paid_price)
        savings = max(paid - best.price, Decimal("0"))
        percentage = float(savings / paid * 100) if paid > 0 else 0.0

        return PriceComparison(
            product_id=product.id,
            product_name=product.name,
            user_paid_price=paid,
            merchant_id=merchant_id,
            cheapest_price=best.price,
            cheapest_merchant_id=best.merchant_id,
            cheapest_observed_on=best.observed_on,
            savings=savings,
            savings_percentage=round(percentage, 4),
        )

    def compare_receipt(self, items: Iterable[LineItem], merchant_id: Optional[str],
                        matcher: ProductMatcher,
                        prices_for_product: Callable[[str], List[ProductPrice]],
                        sources: Optional[Sequence[PriceSource]] = None) -> List[PriceComparison]:
        """Compare every matched line item of a receipt.

        Args:
            items: Receipt line items
            merchant_id: Merchant of the receipt
            matcher: Product matcher used to resolve item names
            prices_for_product: Callable returning observations for a product id
            sources: Optional provenance filter

        Returns:
            Comparisons for items that matched a product with known prices
        """
        comparisons = []
        for item in items:
            product = matcher.match(item.display_name)
            if product is None:
                continue
            comparison = self.compare(product, item.unit_price, prices_for_product(product.id),
                                      merchant_id=merchant_id, sources=sources)
            if comparison is not None:
                comparisons.append(comparison)
        return comparisons


def price_statistics(observations: Iterable[ProductPrice]) -> Optional[PriceStats]:
    """Min, max, average and median of observed prices, or None if empty."""
    prices = [obs.price for obs in observations]
    if not prices:
        return None
    average = sum(prices, Decimal("0")) / len(prices)
    return PriceStats(
        min=min(prices),
        max=max(prices),
        average=average.quantize(CENT, rounding=ROUND_HALF_UP),
        median=statistics.median(prices),
        count=len(prices),
    )


def price_trend(observations: Iterable[ProductPrice]) -> Optional[PriceTrend]:
    """Direction of the latest price change.

    Compares the two most recent observations; changes within 2% count as
    stable.

    Returns:
        PriceTrend, or None with fewer than two observations
    """
    ordered = sorted(observations, key=lambda obs: (obs.observed_on, obs.merchant_id))
    if len(ordered) < 2:
        return None

    previous, last = ordered[-2].price, ordered[-1].price
    if previous == 0:
        change = Decimal("0") if last == 0 else Decimal("1")
    else:
        change = (last - previous) / previous

    if abs(change) <= STABLE_THRESHOLD:
        direction = "stable"
    elif change > 0:
        direction = "up"
    else:
        direction = "down"

    return PriceTrend(
        direction=direction,
        change_percent=round(float(change * 100), 2),
        last_price=last,
        previous_price=previous,
    )
