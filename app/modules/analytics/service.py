"""
Analytics Service

Orchestrates the aggregation pipeline for one tenant:

1. Fan out the repository reads (sales, purchases, expenses, orders, counts,
   KPI targets, product stock and open orders) concurrently and join them.
2. Run bucketing, aggregation, KPI, delta, target comparison and stock
   alerts synchronously over the joined data.
3. Store the result in the staleness cache keyed by the window parameters.

A failed read for one source is logged and treated as an empty set; the
result is then flagged as partial and kept out of the cache.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple
from uuid import UUID

from app.core.config import settings
from app.modules.analytics.aggregator import aggregate
from app.modules.analytics.bucketing import DEFAULT_WINDOW_MONTHS, build_monthly_buckets
from app.modules.analytics.cache import StalenessCache
from app.modules.analytics.deltas import compute_deltas, lookback_start, window_totals
from app.modules.analytics.exceptions import InvalidWindowError
from app.modules.analytics.kpis import calculate_kpis
from app.modules.analytics.schemas import AnalyticsResult, KpiCounts
from app.modules.analytics.stock import build_stock_alerts
from app.modules.analytics.targets import apply_targets
from app.modules.transactions.repository import TransactionRepository
from app.modules.transactions.schemas import DateRange, OrderTransaction, ProductStock, Transaction, TransactionKind

logger = logging.getLogger(__name__)

SOURCE_TABLES = {
    TransactionKind.SALE: "stock_exits",
    TransactionKind.PURCHASE: "stock_entries",
    TransactionKind.EXPENSE: "expenses",
    TransactionKind.ORDER: "orders",
}

# Tables whose changes affect a result besides the transaction sources
AUXILIARY_TABLES = ["kpi_targets", "products"]


@dataclass
class SourceData:
    transactions: List[Transaction]
    counts: KpiCounts
    targets: Dict[str, Decimal]
    products: List[ProductStock] = field(default_factory=list)
    open_orders: List[OrderTransaction] = field(default_factory=list)
    failed_sources: List[str] = field(default_factory=list)


def tenant_tag(tenant_id: UUID, table: Optional[str] = None) -> str:
    """Cache tag scoping a table (or a whole tenant) for invalidation"""
    if table is None:
        return f"tenant:{tenant_id}"
    return f"{tenant_id}:{table}"


def result_tags(tenant_id: UUID) -> List[str]:
    tags = [tenant_tag(tenant_id)]
    for table in list(SOURCE_TABLES.values()) + AUXILIARY_TABLES:
        tags.append(table)
        tags.append(tenant_tag(tenant_id, table))
    return tags


def subscribe_cache(cache: StalenessCache, notifier) -> Callable[[], None]:
    """Invalidate ``cache`` whenever ``notifier`` reports a table change"""

    def on_change(table: str, tenant_id: Optional[UUID]):
        if tenant_id is None:
            cache.invalidate(table)
        else:
            cache.invalidate(tenant_tag(tenant_id, table))

    return notifier.subscribe(on_change)


class AnalyticsService:
    """Service computing dashboard analytics for a tenant"""

    def __init__(
        self,
        repository: TransactionRepository,
        tenant_id: UUID,
        cache: Optional[StalenessCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.tenant_id = tenant_id
        self.cache = cache if cache is not None else StalenessCache()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _cache_key(self, months: int) -> Tuple[str, UUID, int]:
        return ("analytics", self.tenant_id, months)

    async def compute_analytics(self, months: Optional[int] = None, force_refresh: bool = False) -> AnalyticsResult:
        """
        Return buckets, KPIs, deltas and stock alerts for the last ``months`` months.

        Served from cache while fresh. Partial results are never cached. When
        recomputation fails, or every transaction source is unavailable, a
        stale entry is returned instead when one exists.
        """
        if months is None:
            months = settings.ANALYTICS_WINDOW_MONTHS or DEFAULT_WINDOW_MONTHS
        if months < 1 or months > settings.ANALYTICS_MAX_WINDOW_MONTHS:
            raise InvalidWindowError(
                f"months must be between 1 and {settings.ANALYTICS_MAX_WINDOW_MONTHS}"
            )

        key = self._cache_key(months)
        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"Analytics cache hit for tenant {self.tenant_id} ({months} months)")
                return cached

        try:
            result = await self._compute(months)
        except Exception as e:
            stale = self.cache.get_stale(key)
            if stale is None:
                raise
            logger.warning(f"Analytics recomputation failed for tenant {self.tenant_id}, serving stale data: {e}")
            return stale

        if result.partial:
            stale = self.cache.get_stale(key)
            if stale is not None and set(SOURCE_TABLES.values()) <= set(result.failed_sources):
                logger.warning(f"All transaction sources failed for tenant {self.tenant_id}, serving stale data")
                return stale
            logger.warning(
                f"Partial analytics for tenant {self.tenant_id} not cached "
                f"(failed sources: {', '.join(result.failed_sources)})"
            )
            return result

        self.cache.set(key, result, tags=result_tags(self.tenant_id))
        return result

    async def _compute(self, months: int) -> AnalyticsResult:
        now = self.clock()
        date_range = DateRange(start=lookback_start(now, months), end=now)

        sources = await self._load_sources(date_range)
        result = self._build_result(sources, months, now)

        logger.info(
            f"Analytics computed for tenant {self.tenant_id}: {months} months, "
            f"{len(sources.transactions)} transactions, partial={result.partial}"
        )
        return result

    async def _load_sources(self, date_range: DateRange) -> SourceData:
        kinds = list(SOURCE_TABLES.keys())
        reads = [self.repository.list_transactions(kind, date_range) for kind in kinds]
        reads.extend([
            self.repository.count_distinct_clients(),
            self.repository.count_active_products(),
            self.repository.get_kpi_targets(),
            self.repository.list_products(),
            self.repository.list_open_orders(),
        ])

        results = await asyncio.gather(*reads, return_exceptions=True)
        transaction_results = results[:len(kinds)]
        client_count, product_count, targets, products, open_orders = results[len(kinds):]

        failed_sources = []
        transactions = []
        for kind, result in zip(kinds, transaction_results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to load {kind.value} transactions for tenant {self.tenant_id}: {result}")
                failed_sources.append(SOURCE_TABLES[kind])
                continue
            transactions.extend(result or [])

        if isinstance(client_count, Exception):
            logger.warning(f"Failed to count clients for tenant {self.tenant_id}: {client_count}")
            failed_sources.append("clients")
            client_count = 0
        if isinstance(product_count, Exception):
            logger.warning(f"Failed to count products for tenant {self.tenant_id}: {product_count}")
            failed_sources.append("products")
            product_count = 0
        if isinstance(targets, Exception):
            logger.warning(f"Failed to load KPI targets for tenant {self.tenant_id}, using defaults: {targets}")
            failed_sources.append("kpi_targets")
            targets = {}
        if isinstance(products, Exception):
            logger.warning(f"Failed to load product stock for tenant {self.tenant_id}: {products}")
            failed_sources.append("product_stock")
            products = []
        if isinstance(open_orders, Exception):
            logger.warning(f"Failed to load open orders for tenant {self.tenant_id}: {open_orders}")
            failed_sources.append("open_orders")
            open_orders = []

        counts = KpiCounts(
            client_count=client_count or 0,
            active_product_count=product_count or 0,
            pending_order_count=sum(1 for order in open_orders or [] if order.is_pending),
        )
        return SourceData(
            transactions=transactions,
            counts=counts,
            targets=targets or {},
            products=products or [],
            open_orders=open_orders or [],
            failed_sources=failed_sources,
        )

    def _build_result(self, sources: SourceData, months: int, now: datetime) -> AnalyticsResult:
        buckets = build_monthly_buckets(sources.transactions, months=months, now=now)
        totals = aggregate(buckets)

        comparison_totals = window_totals(sources.transactions, now)
        deltas = compute_deltas(sources.transactions, now, totals=comparison_totals)

        kpis = calculate_kpis(totals, sources.counts, previous_totals=comparison_totals["previous_month"])
        kpis = apply_targets(kpis, sources.targets)

        return AnalyticsResult(
            tenant_id=self.tenant_id,
            window_months=months,
            generated_at=now,
            buckets=buckets,
            totals=totals,
            kpis=kpis,
            deltas=deltas,
            stock_alerts=build_stock_alerts(sources.products, sources.open_orders),
            partial=bool(sources.failed_sources),
            failed_sources=sources.failed_sources,
        )

    async def get_kpi_targets(self) -> Dict[str, Decimal]:
        return await self.repository.get_kpi_targets()

    async def save_kpi_targets(self, targets: Dict[str, Decimal]) -> None:
        """Persist targets and force the next read to recompute"""
        await self.repository.save_kpi_targets(targets)
        self.invalidate("kpi_targets")

    def invalidate(self, table: Optional[str] = None) -> int:
        """Invalidate this tenant's cached results (one table or all of them)"""
        return self.cache.invalidate(tenant_tag(self.tenant_id, table))
