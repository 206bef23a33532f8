"""
Change notifications for the analytics cache

SQLAlchemy session events collect which watched tables were touched during a
flush and publish them once the transaction commits. Subscribers (the
analytics cache) receive ``(table, tenant_id)`` pairs.
"""

import itertools
import logging
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy import event
from sqlalchemy.orm import Session

from app.modules.transactions.models import (
    Expense,
    ExpenseItem,
    KpiTarget,
    Order,
    OrderItem,
    Product,
    StockEntry,
    StockEntryItem,
    StockExit,
    StockExitItem,
)

logger = logging.getLogger(__name__)

PENDING_CHANGES_KEY = "analytics_pending_changes"

WATCHED_TABLES = {
    Expense: "expenses",
    ExpenseItem: "expenses",
    StockEntry: "stock_entries",
    StockEntryItem: "stock_entries",
    StockExit: "stock_exits",
    StockExitItem: "stock_exits",
    Order: "orders",
    OrderItem: "orders",
    KpiTarget: "kpi_targets",
    Product: "products",
}

Subscriber = Callable[[str, Optional[UUID]], None]


class ChangeNotifier:
    """Fan-out of table change signals to subscribers"""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, table: str, tenant_id: Optional[UUID] = None) -> None:
        for callback in list(self._subscribers):
            try:
                callback(table, tenant_id)
            except Exception as e:
                # A lost signal only means data stays cached until the TTL expires
                logger.warning(f"Change subscriber failed for table={table}: {e}")


change_notifier = ChangeNotifier()


def _collect_changes(session, flush_context):
    pending = session.info.setdefault(PENDING_CHANGES_KEY, set())
    for instance in itertools.chain(session.new, session.dirty, session.deleted):
        table = WATCHED_TABLES.get(type(instance))
        if table is not None:
            pending.add((table, getattr(instance, "tenant_id", None)))


def _make_publisher(notifier: ChangeNotifier):
    def _publish_changes(session):
        pending = session.info.pop(PENDING_CHANGES_KEY, set())
        for table, tenant_id in pending:
            logger.debug(f"Publishing change on {table} for tenant {tenant_id}")
            notifier.publish(table, tenant_id)

    return _publish_changes


def _discard_changes(session, previous_transaction):
    session.info.pop(PENDING_CHANGES_KEY, None)


_registered = {}


def register_session_listeners(notifier: ChangeNotifier = change_notifier) -> None:
    """Hook the notifier into SQLAlchemy sessions (idempotent per notifier)."""
    if id(notifier) in _registered:
        return

    publisher = _make_publisher(notifier)
    event.listen(Session, "after_flush", _collect_changes)
    event.listen(Session, "after_commit", publisher)
    event.listen(Session, "after_soft_rollback", _discard_changes)
    _registered[id(notifier)] = publisher
