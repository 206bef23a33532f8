"""
Delta engine

Trailing-30-day and month-over-month changes for the headline metrics
(sales, spent, profit, margin).

The month-over-month comparison puts the partial current month
[month start, now] against the full previous calendar month.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Iterable, Optional

from app.core.config import settings
from app.modules.analytics.aggregator import summarize_transactions
from app.modules.analytics.bucketing import month_end, month_start, shift_months
from app.modules.analytics.calculator import HUNDRED, pct_change, round_decimal, safe_divide
from app.modules.analytics.schemas import KpiDelta, WindowTotals
from app.modules.transactions.schemas import DateRange, ensure_aware

TRAILING_DAYS = 30


def _margin(totals: WindowTotals) -> Decimal:
    return safe_divide(totals.total_profit, totals.total_sales) * HUNDRED


HEADLINE_METRICS: Dict[str, Callable[[WindowTotals], Decimal]] = {
    "sales": lambda totals: totals.total_sales,
    "spent": lambda totals: totals.total_spent,
    "profit": lambda totals: totals.total_profit,
    "margin": _margin,
}


def delta_windows(now: datetime) -> Dict[str, DateRange]:
    """The four comparison windows anchored at ``now``"""
    now = ensure_aware(now)
    current_month_start = month_start(now)
    previous_month_start = shift_months(current_month_start, -1)

    return {
        "last30": DateRange(start=now - timedelta(days=TRAILING_DAYS), end=now),
        "prev30": DateRange(
            start=now - timedelta(days=TRAILING_DAYS * 2),
            end=now - timedelta(days=TRAILING_DAYS),
            end_inclusive=False,
        ),
        "current_month": DateRange(start=current_month_start, end=now),
        "previous_month": DateRange(start=previous_month_start, end=month_end(previous_month_start)),
    }


def window_totals(transactions: Iterable, now: datetime) -> Dict[str, WindowTotals]:
    transactions = list(transactions)
    return {
        name: summarize_transactions(transactions, date_range)
        for name, date_range in delta_windows(now).items()
    }


def compute_deltas(
    transactions: Iterable,
    now: datetime,
    totals: Optional[Dict[str, WindowTotals]] = None,
    precision: Optional[int] = None,
) -> Dict[str, KpiDelta]:
    """
    Percentage and absolute change per headline metric.

    ``totals`` may carry precomputed window totals (see ``window_totals``).
    """
    if precision is None:
        precision = settings.ANALYTICS_KPI_PRECISION
    if totals is None:
        totals = window_totals(transactions, now)

    deltas = {}
    for metric, value_of in HEADLINE_METRICS.items():
        last30 = value_of(totals["last30"])
        prev30 = value_of(totals["prev30"])
        current_month = value_of(totals["current_month"])
        previous_month = value_of(totals["previous_month"])

        deltas[metric] = KpiDelta(
            pct_30d=round_decimal(pct_change(last30, prev30), precision),
            pct_mom=round_decimal(pct_change(current_month, previous_month), precision),
            value_30d=round_decimal(last30, precision),
            value_mom=round_decimal(current_month, precision),
        )
    return deltas


def lookback_start(now: datetime, months: int) -> datetime:
    """Earliest instant the pipeline needs: bucket window, trailing windows and previous month."""
    now = ensure_aware(now)
    bucket_start = shift_months(month_start(now), -(months - 1))
    previous_month_start = shift_months(month_start(now), -1)
    trailing_start = now - timedelta(days=max(settings.ANALYTICS_LOOKBACK_DAYS, TRAILING_DAYS * 2))
    return min(bucket_start, previous_month_start, trailing_start)
