"""
KPI catalog and calculator

Each KPI is defined once in KPI_CATALOG with its unit, default target and
direction. Every ratio goes through safe_divide so a zero denominator yields
0 instead of an error.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional

from app.core.config import settings
from app.modules.analytics.calculator import HUNDRED, round_decimal, safe_divide, to_decimal
from app.modules.analytics.schemas import KPIMetric, KpiCounts, KpiUnit, WindowTotals


@dataclass(frozen=True)
class KpiDefinition:
    key: str
    name: str
    unit: KpiUnit
    default_target: Decimal
    compute: Callable[[WindowTotals, KpiCounts], Decimal]
    is_inverse: bool = False
    description: str = ""
    formula: str = ""


def _roi(totals: WindowTotals, counts: KpiCounts) -> Decimal:
    return safe_divide(totals.total_profit, totals.total_spent) * HUNDRED


def _profit_margin(totals: WindowTotals, counts: KpiCounts) -> Decimal:
    return safe_divide(totals.total_profit, totals.total_sales) * HUNDRED


def _conversion_rate(totals: WindowTotals, counts: KpiCounts) -> Decimal:
    return safe_divide(totals.sales_count, counts.client_count) * HUNDRED


def _average_sale_value(totals: WindowTotals, counts: KpiCounts) -> Decimal:
    return safe_divide(totals.total_sales, totals.sales_count)


def _average_purchase_value(totals: WindowTotals, counts: KpiCounts) -> Decimal:
    return safe_divide(totals.total_spent, totals.purchase_count + totals.expense_count)


def _total_profit(totals: WindowTotals, counts: KpiCounts) -> Decimal:
    return totals.total_profit


def _average_profit_per_sale(totals: WindowTotals, counts: KpiCounts) -> Decimal:
    return safe_divide(totals.total_profit, totals.sales_count)


def _profit_per_client(totals: WindowTotals, counts: KpiCounts) -> Decimal:
    return safe_divide(totals.total_profit, counts.client_count)


def _sales_per_product(totals: WindowTotals, counts: KpiCounts) -> Decimal:
    return safe_divide(totals.total_sales, counts.active_product_count)


def _pending_orders(totals: WindowTotals, counts: KpiCounts) -> Decimal:
    return Decimal(counts.pending_order_count)


KPI_CATALOG: List[KpiDefinition] = [
    KpiDefinition(
        key="roi",
        name="ROI",
        unit=KpiUnit.PERCENT,
        default_target=Decimal("40"),
        compute=_roi,
        description="Return relative to the amount spent on purchases and expenses.",
        formula="(Profit / Spent) x 100",
    ),
    KpiDefinition(
        key="profit_margin",
        name="Profit margin",
        unit=KpiUnit.PERCENT,
        default_target=Decimal("25"),
        compute=_profit_margin,
        description="Share of sales revenue kept as profit.",
        formula="(Profit / Sales) x 100",
    ),
    KpiDefinition(
        key="conversion_rate",
        name="Conversion rate",
        unit=KpiUnit.PERCENT,
        default_target=Decimal("10"),
        compute=_conversion_rate,
        description="Sales relative to the number of registered clients.",
        formula="(Sales count / Clients) x 100",
    ),
    KpiDefinition(
        key="average_sale_value",
        name="Average sale value",
        unit=KpiUnit.CURRENCY,
        default_target=Decimal("500"),
        compute=_average_sale_value,
        formula="Sales / Sales count",
    ),
    KpiDefinition(
        key="average_purchase_value",
        name="Average purchase value",
        unit=KpiUnit.CURRENCY,
        default_target=Decimal("1000"),
        compute=_average_purchase_value,
        is_inverse=True,
        formula="Spent / (Purchases count + Expenses count)",
    ),
    KpiDefinition(
        key="total_profit",
        name="Total profit",
        unit=KpiUnit.CURRENCY,
        default_target=Decimal("10000"),
        compute=_total_profit,
        formula="Sales - Spent",
    ),
    KpiDefinition(
        key="average_profit_per_sale",
        name="Average profit per sale",
        unit=KpiUnit.CURRENCY,
        default_target=Decimal("100"),
        compute=_average_profit_per_sale,
        formula="Profit / Sales count",
    ),
    KpiDefinition(
        key="profit_per_client",
        name="Profit per client",
        unit=KpiUnit.CURRENCY,
        default_target=Decimal("200"),
        compute=_profit_per_client,
        formula="Profit / Clients",
    ),
    KpiDefinition(
        key="sales_per_product",
        name="Sales per active product",
        unit=KpiUnit.CURRENCY,
        default_target=Decimal("250"),
        compute=_sales_per_product,
        formula="Sales / Active products",
    ),
    KpiDefinition(
        key="pending_orders",
        name="Pending orders",
        unit=KpiUnit.COUNT,
        default_target=Decimal("5"),
        compute=_pending_orders,
        is_inverse=True,
        description="Orders waiting to be converted into stock exits.",
        formula="Count of pending orders",
    ),
]


def calculate_kpis(
    totals: WindowTotals,
    counts: KpiCounts,
    previous_totals: Optional[WindowTotals] = None,
    precision: Optional[int] = None,
) -> List[KPIMetric]:
    """
    Compute the KPI catalog from window totals.

    ``previous_totals`` (usually the previous calendar month) fills
    ``previous_value`` for trend indicators.
    """
    if precision is None:
        precision = settings.ANALYTICS_KPI_PRECISION

    metrics = []
    for definition in KPI_CATALOG:
        raw_value = to_decimal(definition.compute(totals, counts))
        previous_value = None
        if previous_totals is not None:
            previous_value = round_decimal(definition.compute(previous_totals, counts), precision)

        metrics.append(KPIMetric(
            key=definition.key,
            name=definition.name,
            value=round_decimal(raw_value, precision),
            raw_value=raw_value,
            unit=definition.unit,
            target=definition.default_target,
            previous_value=previous_value,
            is_inverse=definition.is_inverse,
            description=definition.description,
            formula=definition.formula,
        ))
    return metrics
