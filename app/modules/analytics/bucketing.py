"""
Monthly bucketer

Partitions a rolling window of transactions into calendar-month buckets,
oldest first. Every month of the window gets a bucket even when empty.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from app.modules.analytics.calculator import ZERO, transaction_value
from app.modules.analytics.exceptions import InvalidTransactionError
from app.modules.analytics.schemas import MonthlyBucket
from app.modules.transactions.schemas import TransactionKind, ensure_aware

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MONTHS = 6

KIND_FIELDS = {
    TransactionKind.SALE: "sales",
    TransactionKind.PURCHASE: "purchase",
    TransactionKind.EXPENSE: "expense",
    TransactionKind.ORDER: "order",
}


@dataclass(frozen=True)
class MonthWindow:
    year: int
    month: int
    start: datetime
    end: datetime

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def label(self) -> str:
        return self.start.strftime("%b %Y")

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def shift_months(start: datetime, offset: int) -> datetime:
    """Move a month start ``offset`` months forward (negative goes back)."""
    index = start.year * 12 + (start.month - 1) + offset
    return start.replace(year=index // 12, month=index % 12 + 1, day=1)


def month_end(start: datetime) -> datetime:
    """Last instant of the month beginning at ``start``."""
    return shift_months(start, 1) - timedelta(microseconds=1)


def month_windows(months: int, now: datetime) -> List[MonthWindow]:
    """
    Calendar-month boundaries for the last ``months`` months, oldest first.

    Every window covers its whole month except the most recent one, which
    runs from the first day of the current month up to ``now``.
    """
    if months < 1:
        raise ValueError("months must be at least 1")

    now = ensure_aware(now)
    current = month_start(now)
    windows = []
    for offset in range(months - 1, -1, -1):
        start = shift_months(current, -offset)
        end = now if offset == 0 else month_end(start)
        windows.append(MonthWindow(year=start.year, month=start.month, start=start, end=end))
    return windows


def _find_window(windows_by_month: Dict[Tuple[int, int], MonthWindow], moment: datetime,
                 now: datetime) -> Optional[MonthWindow]:
    local = ensure_aware(moment).astimezone(now.tzinfo)
    window = windows_by_month.get((local.year, local.month))
    if window is None or not window.contains(local):
        return None
    return window


def build_monthly_buckets(
    transactions: Iterable,
    months: int = DEFAULT_WINDOW_MONTHS,
    now: Optional[datetime] = None,
) -> List[MonthlyBucket]:
    """
    Accumulate transaction values into ``months`` calendar-month buckets.

    Transactions outside the window (including future-dated ones) are
    ignored. A transaction that cannot be valued is skipped with a warning.
    """
    now = ensure_aware(now or datetime.now(timezone.utc))

    windows = month_windows(months, now)
    windows_by_month = {(w.year, w.month): w for w in windows}
    values: Dict[str, Dict[str, Decimal]] = defaultdict(lambda: defaultdict(lambda: ZERO))
    counts: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))

    skipped = 0
    for transaction in transactions:
        window = _find_window(windows_by_month, transaction.date, now)
        if window is None:
            continue

        try:
            value = transaction_value(transaction)
        except InvalidTransactionError as e:
            skipped += 1
            logger.warning(f"Skipping transaction {transaction.id} in bucket {window.key}: {e}")
            continue

        field = KIND_FIELDS[TransactionKind(transaction.kind)]
        values[window.key][field] += value
        counts[window.key][field] += 1

    if skipped:
        logger.warning(f"{skipped} transaction(s) skipped while bucketing {months} month(s)")

    buckets = []
    for window in windows:
        bucket_values = values.get(window.key, {})
        bucket_counts = counts.get(window.key, {})
        buckets.append(MonthlyBucket(
            month_key=window.key,
            label=window.label,
            start=window.start,
            end=window.end,
            sales_value=bucket_values.get("sales", ZERO),
            purchase_value=bucket_values.get("purchase", ZERO),
            expense_value=bucket_values.get("expense", ZERO),
            order_value=bucket_values.get("order", ZERO),
            sales_count=bucket_counts.get("sales", 0),
            purchase_count=bucket_counts.get("purchase", 0),
            expense_count=bucket_counts.get("expense", 0),
            order_count=bucket_counts.get("order", 0),
        ))
    return buckets

