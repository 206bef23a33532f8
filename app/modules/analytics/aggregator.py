"""
Aggregator

Totals sales, purchases and expenses over a bucket list, or directly over a
transaction stream restricted to a date range.
"""

import logging
from typing import Iterable, Optional, Sequence

from app.modules.analytics.calculator import ZERO, transaction_value
from app.modules.analytics.exceptions import InvalidTransactionError
from app.modules.analytics.schemas import MonthlyBucket, WindowTotals
from app.modules.transactions.schemas import DateRange, TransactionKind

logger = logging.getLogger(__name__)


def aggregate(buckets: Sequence[MonthlyBucket]) -> WindowTotals:
    """Window-wide totals of a bucket list"""
    return WindowTotals(
        total_sales=sum((b.sales_value for b in buckets), ZERO),
        total_purchases=sum((b.purchase_value for b in buckets), ZERO),
        total_expenses=sum((b.expense_value for b in buckets), ZERO),
        total_orders_value=sum((b.order_value for b in buckets), ZERO),
        sales_count=sum(b.sales_count for b in buckets),
        purchase_count=sum(b.purchase_count for b in buckets),
        expense_count=sum(b.expense_count for b in buckets),
        order_count=sum(b.order_count for b in buckets),
    )


def summarize_transactions(transactions: Iterable, date_range: Optional[DateRange] = None) -> WindowTotals:
    """
    Totals of the transactions falling inside ``date_range`` (all of them when
    no range is given). Transactions that cannot be valued are skipped.
    """
    sums = {kind: ZERO for kind in TransactionKind}
    counts = {kind: 0 for kind in TransactionKind}

    for transaction in transactions:
        if date_range is not None and not date_range.contains(transaction.date):
            continue
        try:
            value = transaction_value(transaction)
        except InvalidTransactionError as e:
            logger.warning(f"Skipping transaction {transaction.id} while summarizing: {e}")
            continue

        kind = TransactionKind(transaction.kind)
        sums[kind] += value
        counts[kind] += 1

    return WindowTotals(
        total_sales=sums[TransactionKind.SALE],
        total_purchases=sums[TransactionKind.PURCHASE],
        total_expenses=sums[TransactionKind.EXPENSE],
        total_orders_value=sums[TransactionKind.ORDER],
        sales_count=counts[TransactionKind.SALE],
        purchase_count=counts[TransactionKind.PURCHASE],
        expense_count=counts[TransactionKind.EXPENSE],
        order_count=counts[TransactionKind.ORDER],
    )
