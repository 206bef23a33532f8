"""
Pydantic schemas for transactional records

Every record handed to the analytics engine is validated into one of the
discriminated variants below (Sale | Purchase | Expense | Order), all sharing
the same line-value contract.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class TransactionKind(str, Enum):
    SALE = "sale"          # Salida de stock
    PURCHASE = "purchase"  # Entrada de stock
    EXPENSE = "expense"    # Gasto
    ORDER = "order"        # Encomienda (valor provisional)


def clamp_percent(value: Decimal, field_name: str = "discount_percent") -> Decimal:
    """Clamp a percentage into [0, 100], logging when the input was out of range."""
    if value < 0:
        logger.warning(f"{field_name}={value} below 0, clamped to 0")
        return Decimal("0")
    if value > HUNDRED:
        logger.warning(f"{field_name}={value} above 100, clamped to 100")
        return HUNDRED
    return value


def ensure_aware(value: datetime) -> datetime:
    """Naive datetimes coming from the repository are interpreted as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TransactionLine(BaseModel):
    """One line of a transaction document"""
    quantity: int = Field(..., ge=0, description="Units on the line")
    unit_price: Decimal = Field(..., ge=0, description="Price per unit")
    discount_percent: Decimal = Field(Decimal("0"), description="Line discount in percent (0-100)")
    product_id: Optional[UUID] = None

    @field_validator("discount_percent", mode="before")
    @classmethod
    def default_discount(cls, v):
        return Decimal("0") if v is None else v

    @field_validator("discount_percent")
    @classmethod
    def clamp_discount(cls, v):
        return clamp_percent(v)


class TransactionBase(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    date: datetime
    document_discount_percent: Decimal = Field(Decimal("0"), description="Document-level discount in percent")
    lines: List[TransactionLine] = Field(default_factory=list)

    @field_validator("date")
    @classmethod
    def normalize_date(cls, v):
        return ensure_aware(v)

    @field_validator("document_discount_percent", mode="before")
    @classmethod
    def default_document_discount(cls, v):
        return Decimal("0") if v is None else v

    @field_validator("document_discount_percent")
    @classmethod
    def clamp_document_discount(cls, v):
        return clamp_percent(v, "document_discount_percent")


class SaleTransaction(TransactionBase):
    kind: Literal[TransactionKind.SALE] = TransactionKind.SALE
    client_id: Optional[UUID] = None


class PurchaseTransaction(TransactionBase):
    kind: Literal[TransactionKind.PURCHASE] = TransactionKind.PURCHASE
    supplier_id: Optional[UUID] = None


class ExpenseTransaction(TransactionBase):
    kind: Literal[TransactionKind.EXPENSE] = TransactionKind.EXPENSE
    supplier_id: Optional[UUID] = None


class OrderTransaction(TransactionBase):
    kind: Literal[TransactionKind.ORDER] = TransactionKind.ORDER
    client_id: Optional[UUID] = None
    status: str = Field("pending", pattern="^(pending|completed|cancelled)$")

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"


Transaction = Annotated[
    Union[SaleTransaction, PurchaseTransaction, ExpenseTransaction, OrderTransaction],
    Field(discriminator="kind"),
]

TransactionAdapter = TypeAdapter(Transaction)


class DateRange(BaseModel):
    """Closed or half-open datetime range used for repository reads"""
    start: datetime
    end: datetime
    end_inclusive: bool = True

    @field_validator("start", "end")
    @classmethod
    def normalize(cls, v):
        return ensure_aware(v)

    @model_validator(mode="after")
    def validate_order(self):
        if self.end < self.start:
            raise ValueError("end must be greater than or equal to start")
        return self

    def contains(self, moment: datetime) -> bool:
        moment = ensure_aware(moment)
        if moment < self.start:
            return False
        return moment <= self.end if self.end_inclusive else moment < self.end


class ProductStock(BaseModel):
    """Stock level of a catalog product"""
    id: UUID
    name: str
    current_stock: int = 0
    min_stock: int = 0


class KpiTargetItem(BaseModel):
    kpi_name: str = Field(..., min_length=1, max_length=100)
    target_value: Decimal


class KpiTargetsUpdate(BaseModel):
    """Request body for saving KPI targets"""
    targets: List[KpiTargetItem] = Field(..., min_length=1)

    def as_mapping(self):
        return {item.kpi_name: item.target_value for item in self.targets}
