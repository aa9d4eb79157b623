"""
Spending analytics over a snapshot of receipts.
Implements summaries, category breakdowns, merchant rankings, trend series
and a few supporting aggregations.
"""

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple

import pandas as pd

from .models import (AnalyticsFilter, AnalyticsReport, CategoryBreakdown, MerchantRanking,
                     Receipt, ReceiptFilter, ReceiptStatus, Reconciliation, SpendingSummary,
                     SpendingTrend, TimePeriod, TopItem, WeekdaySpending,
                     UNKNOWN_MERCHANT_ID, UNKNOWN_MERCHANT_NAME)
from .text import normalize_text

logger = logging.getLogger(__name__)

OTHER_CATEGORY = "other"
CENT = Decimal("0.01")

# pandas period frequency per granularity; weeks run Monday..Sunday
PERIOD_FREQUENCIES = {
    TimePeriod.DAILY: "D",
    TimePeriod.WEEKLY: "W-SUN",
    TimePeriod.MONTHLY: "M",
    TimePeriod.YEARLY: "Y",
}

LABEL_FORMATS = {
    TimePeriod.DAILY: "%Y-%m-%d",
    TimePeriod.WEEKLY: "%Y-%m-%d",
    TimePeriod.MONTHLY: "%Y-%m",
    TimePeriod.YEARLY: "%Y",
}


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def reconcile(receipt: Receipt, tolerance: Decimal = Decimal("0.05")) -> Optional[Reconciliation]:
    """Compare the line item sum with the receipt total.

    Args:
        receipt: Receipt to check
        tolerance: Allowed relative deviation from the total

    Returns:
        Reconciliation, or None when the receipt has no total or no items
    """
    if receipt.total is None or not receipt.items:
        return None
    items_total = receipt.items_total
    difference = items_total - receipt.total
    allowed = max(receipt.total * tolerance, CENT)
    return Reconciliation(
        receipt_id=receipt.id,
        items_total=items_total,
        total=receipt.total,
        difference=difference,
        within_tolerance=abs(difference) <= allowed,
    )


class AnalyticsEngine:
    """Analytics and aggregation functions for receipt data."""

    def __init__(self, repository=None, page_size: int = 500):
        """Initialize analytics engine.

        Args:
            repository: Optional ReceiptRepository used to load snapshots
            page_size: Page size used while loading a snapshot
        """
        self.repository = repository
        self.page_size = page_size
        self.logger = logger

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def load_snapshot(self, analytics_filter: Optional[AnalyticsFilter] = None) -> List[Receipt]:
        """Read every receipt in the filter's date range from the repository.

        Args:
            analytics_filter: Filter whose date bounds narrow the read

        Returns:
            List of receipts
        """
        if self.repository is None:
            raise ValueError("AnalyticsEngine has no repository to load receipts from")

        analytics_filter = analytics_filter or AnalyticsFilter()
        receipt_filter = ReceiptFilter(start_date=analytics_filter.start_date,
                                       end_date=analytics_filter.end_date)
        receipts: List[Receipt] = []
        page = 1
        while True:
            result = self.repository.find_all(receipt_filter, page=page, page_size=self.page_size)
            receipts.extend(result.data)
            if page >= result.total_pages:
                break
            page += 1
        self.logger.debug(f"Loaded analytics snapshot of {len(receipts)} receipts")
        return receipts

    def build_report(self, receipts: Optional[List[Receipt]] = None,
                     analytics_filter: Optional[AnalyticsFilter] = None) -> AnalyticsReport:
        """Compute summary, breakdown, ranking and trend from one snapshot.

        Args:
            receipts: Receipt snapshot; loaded from the repository when omitted
            analytics_filter: Filter applied to every sub-computation

        Returns:
            AnalyticsReport
        """
        analytics_filter = analytics_filter or AnalyticsFilter()
        if receipts is None:
            receipts = self.load_snapshot(analytics_filter)
        snapshot = list(receipts)

        report = AnalyticsReport(
            summary=self.get_summary(snapshot, analytics_filter),
            category_breakdown=self.get_category_breakdown(snapshot, analytics_filter),
            merchant_rankings=self.get_merchant_rankings(snapshot, analytics_filter),
            trends=self.get_trends(snapshot, analytics_filter),
        )
        self.logger.info(f"Built analytics report over {report.summary.receipt_count} receipts")
        return report

    # ------------------------------------------------------------------
    # Aggregations
    # ------------------------------------------------------------------

    def get_summary(self, receipts: List[Receipt],
                    analytics_filter: Optional[AnalyticsFilter] = None) -> SpendingSummary:
        """Total, count and average of the included receipts.

        The average is 0 when no receipt is included.
        """
        analytics_filter = analytics_filter or AnalyticsFilter()
        included = self.filter_receipts(receipts, analytics_filter)

        total = sum((receipt.amount for receipt in included), Decimal("0"))
        count = len(included)
        average = _money(total / count) if count else Decimal("0")
        start, end = self._date_range(included, analytics_filter)

        return SpendingSummary(
            total_spent=total,
            receipt_count=count,
            average_receipt_amount=average,
            period_start=start,
            period_end=end,
        )

    def get_category_breakdown(self, receipts: List[Receipt],
                               analytics_filter: Optional[AnalyticsFilter] = None) -> List[CategoryBreakdown]:
        """Group included line items by category.

        Percentages are shares of the grouped item total, all 0 when that
        total is 0. Sorted by amount descending, then category.
        """
        analytics_filter = analytics_filter or AnalyticsFilter()
        included = self.filter_receipts(receipts, analytics_filter)
        wanted = set(analytics_filter.categories) if analytics_filter.categories else None

        amounts: Dict[str, Decimal] = defaultdict(Decimal)
        item_counts: Dict[str, int] = defaultdict(int)
        receipt_ids: Dict[str, set] = defaultdict(set)

        for position, receipt in enumerate(included):
            receipt_key = receipt.id or f"#{position}"
            for item in receipt.items:
                category = item.category or OTHER_CATEGORY
                if wanted is not None and category not in wanted:
                    continue
                amounts[category] += item.total_price
                item_counts[category] += 1
                receipt_ids[category].add(receipt_key)

        grand_total = sum(amounts.values(), Decimal("0"))
        breakdown = []
        for category, amount in amounts.items():
            percentage = float(amount / grand_total * 100) if grand_total > 0 else 0.0
            breakdown.append(CategoryBreakdown(
                category=category,
                amount=amount,
                percentage=percentage,
                receipt_count=len(receipt_ids[category]),
                item_count=item_counts[category],
            ))
        breakdown.sort(key=lambda entry: (-entry.amount, entry.category))
        return breakdown

    def get_merchant_rankings(self, receipts: List[Receipt],
                              analytics_filter: Optional[AnalyticsFilter] = None,
                              limit: Optional[int] = None) -> List[MerchantRanking]:
        """Rank merchants by total spend, then visits, then merchant id.

        Receipts without a resolved merchant share the ``unknown`` bucket.
        """
        analytics_filter = analytics_filter or AnalyticsFilter()
        included = self.filter_receipts(receipts, analytics_filter)

        totals: Dict[str, Decimal] = defaultdict(Decimal)
        visits: Dict[str, int] = defaultdict(int)
        names: Dict[str, str] = {}

        for receipt in included:
            merchant_id = receipt.merchant_id or UNKNOWN_MERCHANT_ID
            totals[merchant_id] += receipt.amount
            visits[merchant_id] += 1
            if merchant_id == UNKNOWN_MERCHANT_ID:
                names[merchant_id] = UNKNOWN_MERCHANT_NAME
            else:
                names.setdefault(merchant_id, receipt.merchant_name)

        rankings = [
            MerchantRanking(
                merchant_id=merchant_id,
                merchant_name=names[merchant_id],
                total_spent=total,
                visit_count=visits[merchant_id],
                average_spent=_money(total / visits[merchant_id]),
            )
            for merchant_id, total in totals.items()
        ]
        rankings.sort(key=lambda r: (-r.total_spent, -r.visit_count, r.merchant_id))
        return rankings[:limit] if limit else rankings

    def get_trends(self, receipts: List[Receipt],
                   analytics_filter: Optional[AnalyticsFilter] = None) -> List[SpendingTrend]:
        """One point per period across the requested range, zero-filled.

        The range is the filter's explicit bounds, falling back to the
        earliest / latest included receipt date. Empty when neither exists.
        """
        analytics_filter = analytics_filter or AnalyticsFilter()
        included = [r for r in self.filter_receipts(receipts, analytics_filter)
                    if r.purchase_date is not None]
        start, end = self._date_range(included, analytics_filter)
        if start is None or end is None:
            return []

        freq = PERIOD_FREQUENCIES[analytics_filter.period]
        label_format = LABEL_FORMATS[analytics_filter.period]
        periods = pd.period_range(start=pd.Timestamp(start), end=pd.Timestamp(end), freq=freq)

        amounts: Dict[pd.Period, Decimal] = defaultdict(Decimal)
        counts: Dict[pd.Period, int] = defaultdict(int)
        for receipt in included:
            period = pd.Period(pd.Timestamp(receipt.purchase_date), freq=freq)
            amounts[period] += receipt.amount
            counts[period] += 1

        trends = []
        for period in periods:
            period_start = period.start_time.date()
            trends.append(SpendingTrend(
                period_start=period_start,
                period_end=period.end_time.date(),
                label=period_start.strftime(label_format),
                amount=amounts.get(period, Decimal("0")),
                receipt_count=counts.get(period, 0),
            ))
        return trends

    def get_top_items(self, receipts: List[Receipt],
                      analytics_filter: Optional[AnalyticsFilter] = None,
                      limit: int = 10) -> List[TopItem]:
        """Most purchased items by spend.

        Args:
            receipts: Receipt snapshot
            analytics_filter: Optional filter
            limit: Maximum number of items

        Returns:
            Items sorted by total spent descending
        """
        analytics_filter = analytics_filter or AnalyticsFilter()
        totals: Dict[str, Decimal] = defaultdict(Decimal)
        counts: Dict[str, int] = defaultdict(int)
        names: Dict[str, str] = {}

        for receipt in self.filter_receipts(receipts, analytics_filter):
            for item in receipt.items:
                key = normalize_text(item.display_name) or item.display_name
                names.setdefault(key, item.display_name)
                totals[key] += item.total_price
                counts[key] += 1

        items = [
            TopItem(
                name=names[key],
                total_spent=total,
                purchase_count=counts[key],
                average_price=_money(total / counts[key]),
            )
            for key, total in totals.items()
        ]
        items.sort(key=lambda entry: (-entry.total_spent, -entry.purchase_count, entry.name))
        return items[:limit]

    def get_spending_by_weekday(self, receipts: List[Receipt],
                                analytics_filter: Optional[AnalyticsFilter] = None) -> List[WeekdaySpending]:
        """Spending per weekday, 0=Monday .. 6=Sunday, all seven present."""
        analytics_filter = analytics_filter or AnalyticsFilter()
        totals = [Decimal("0")] * 7
        counts = [0] * 7

        for receipt in self.filter_receipts(receipts, analytics_filter):
            if receipt.purchase_date is None:
                continue
            weekday = receipt.purchase_date.weekday()
            totals[weekday] += receipt.amount
            counts[weekday] += 1

        return [WeekdaySpending(weekday=day, total_spent=totals[day], receipt_count=counts[day])
                for day in range(7)]

    def reconciliation_issues(self, receipts: List[Receipt],
                              tolerance: Decimal = Decimal("0.05")) -> List[Reconciliation]:
        """Receipts whose line items disagree with the total beyond tolerance."""
        issues = []
        for receipt in receipts:
            check = reconcile(receipt, tolerance)
            if check is not None and not check.within_tolerance:
                issues.append(check)
        return issues

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def filter_receipts(self, receipts: List[Receipt],
                        analytics_filter: AnalyticsFilter) -> List[Receipt]:
        """Apply the filter's date, merchant and category restrictions.

        Failed receipts never count. Undated receipts are dropped as soon as
        a date bound is given.
        """
        merchant_ids = set(analytics_filter.merchant_ids) if analytics_filter.merchant_ids else None
        categories = set(analytics_filter.categories) if analytics_filter.categories else None
        has_bounds = analytics_filter.start_date is not None or analytics_filter.end_date is not None

        included = []
        for receipt in receipts:
            if receipt.status == ReceiptStatus.FAILED:
                continue
            purchase_date = receipt.purchase_date
            if has_bounds and purchase_date is None:
                continue
            if analytics_filter.start_date and purchase_date < analytics_filter.start_date:
                continue
            if analytics_filter.end_date and purchase_date > analytics_filter.end_date:
                continue
            if merchant_ids is not None and (receipt.merchant_id or UNKNOWN_MERCHANT_ID) not in merchant_ids:
                continue
            if categories is not None and not any(
                    (item.category or OTHER_CATEGORY) in categories for item in receipt.items):
                continue
            included.append(receipt)
        return included

    @staticmethod
    def _date_range(receipts: List[Receipt],
                    analytics_filter: AnalyticsFilter) -> Tuple[Optional[date], Optional[date]]:
        dates = [r.purchase_date for r in receipts if r.purchase_date is not None]
        start = analytics_filter.start_date or (min(dates) if dates else None)
        end = analytics_filter.end_date or (max(dates) if dates else None)
        return start, end
