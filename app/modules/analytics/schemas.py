"""
Pydantic schemas for the analytics engine

Derived, immutable models: they are rebuilt from the transaction stream on
every cache miss and never mutated in place.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from app.modules.transactions.schemas import ProductStock


class KpiUnit(str, Enum):
    PERCENT = "percent"
    CURRENCY = "currency"
    COUNT = "count"


class MonthlyBucket(BaseModel):
    """One calendar month of aggregated transaction values"""
    model_config = ConfigDict(frozen=True)

    month_key: str = Field(description="Year and month, YYYY-MM")
    label: str = Field(description="Short display label, e.g. 'Mar 2026'")
    start: datetime
    end: datetime
    sales_value: Decimal = Decimal("0")
    purchase_value: Decimal = Decimal("0")
    expense_value: Decimal = Decimal("0")
    order_value: Decimal = Decimal("0")
    sales_count: int = 0
    purchase_count: int = 0
    expense_count: int = 0
    order_count: int = 0

    @computed_field
    @property
    def profit(self) -> Decimal:
        return self.sales_value - self.purchase_value - self.expense_value


class WindowTotals(BaseModel):
    """Totals over a set of buckets or a date range"""
    model_config = ConfigDict(frozen=True)

    total_sales: Decimal = Decimal("0")
    total_purchases: Decimal = Decimal("0")
    total_expenses: Decimal = Decimal("0")
    total_orders_value: Decimal = Decimal("0")
    sales_count: int = 0
    purchase_count: int = 0
    expense_count: int = 0
    order_count: int = 0

    @computed_field
    @property
    def total_spent(self) -> Decimal:
        return self.total_purchases + self.total_expenses

    @computed_field
    @property
    def total_profit(self) -> Decimal:
        return self.total_sales - self.total_spent


class KpiCounts(BaseModel):
    """Auxiliary repository counts feeding KPI ratios"""
    model_config = ConfigDict(frozen=True)

    client_count: int = Field(0, ge=0)
    active_product_count: int = Field(0, ge=0)
    pending_order_count: int = Field(0, ge=0)


class KPIMetric(BaseModel):
    """A derived performance indicator with its target"""
    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    value: Decimal
    raw_value: Decimal = Field(description="Unrounded value")
    unit: KpiUnit
    target: Decimal
    previous_value: Optional[Decimal] = None
    is_inverse: bool = Field(False, description="True when a higher value is worse")
    description: str = ""
    formula: str = ""

    @computed_field
    @property
    def below_target(self) -> bool:
        if self.is_inverse:
            return self.value > self.target
        return self.value < self.target


class KpiDelta(BaseModel):
    """Trailing-30-day and month-over-month change of a headline metric"""
    model_config = ConfigDict(frozen=True)

    pct_30d: Decimal
    pct_mom: Decimal
    value_30d: Decimal
    value_mom: Decimal


class InsufficientStockItem(BaseModel):
    """A pending order line that current stock cannot cover"""
    model_config = ConfigDict(frozen=True)

    order_id: UUID
    order_date: datetime
    client_id: Optional[UUID] = None
    product_id: UUID
    product_name: str
    ordered_quantity: int
    current_stock: int
    shortfall: int


class StockAlerts(BaseModel):
    """Low-stock products and pending order lines short of stock"""
    model_config = ConfigDict(frozen=True)

    low_stock_products: List[ProductStock] = Field(default_factory=list)
    insufficient_stock_items: List[InsufficientStockItem] = Field(default_factory=list)


class AnalyticsResult(BaseModel):
    """Everything the dashboard needs, as produced by one pipeline run"""
    model_config = ConfigDict(frozen=True)

    tenant_id: UUID
    window_months: int
    generated_at: datetime
    buckets: List[MonthlyBucket]
    totals: WindowTotals
    kpis: List[KPIMetric]
    deltas: Dict[str, KpiDelta]
    stock_alerts: StockAlerts = Field(default_factory=StockAlerts)
    partial: bool = Field(False, description="True when one or more sources failed to load")
    failed_sources: List[str] = Field(default_factory=list)


class CacheStatsResponse(BaseModel):
    entries: int
    hits: int
    misses: int
    invalidations: int
    ttl_seconds: float
