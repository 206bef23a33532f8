"""
Repository layer for transactional records

Reads stock entries, stock exits, expenses and orders for one tenant and
hands them to the analytics engine as validated Transaction variants.
Soft-deleted and cancelled documents are filtered here, never in the engine.
"""

import logging
from decimal import Decimal
from typing import Callable, Dict, List, Protocol
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.modules.analytics.exceptions import RepositoryReadError
from app.modules.transactions.models import (
    Client,
    DocumentStatus,
    Expense,
    KpiTarget,
    Order,
    OrderStatus,
    Product,
    StockEntry,
    StockExit,
)
from app.modules.transactions.schemas import (
    DateRange,
    OrderTransaction,
    ProductStock,
    Transaction,
    TransactionAdapter,
    TransactionKind,
)

logger = logging.getLogger(__name__)


class TransactionRepository(Protocol):
    """Interface the analytics engine consumes"""

    async def list_transactions(self, kind: TransactionKind, date_range: DateRange) -> List[Transaction]:
        ...

    async def get_kpi_targets(self) -> Dict[str, Decimal]:
        ...

    async def save_kpi_targets(self, targets: Dict[str, Decimal]) -> None:
        ...

    async def count_distinct_clients(self) -> int:
        ...

    async def count_active_products(self) -> int:
        ...

    async def list_products(self) -> List[ProductStock]:
        ...

    async def list_open_orders(self) -> List[OrderTransaction]:
        ...


# (model, name of the price column on its items, name of the counterpart column)
KIND_SOURCES = {
    TransactionKind.SALE: (StockExit, "sale_price", "client_id"),
    TransactionKind.PURCHASE: (StockEntry, "purchase_price", "supplier_id"),
    TransactionKind.EXPENSE: (Expense, "unit_price", "supplier_id"),
    TransactionKind.ORDER: (Order, "sale_price", "client_id"),
}


class SQLAlchemyTransactionRepository:
    """
    Tenant-scoped repository backed by async SQLAlchemy sessions.

    Each read opens its own session from ``session_factory`` so the service can
    run the reads concurrently.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession], tenant_id: UUID):
        self.session_factory = session_factory
        self.tenant_id = tenant_id

    def _build_transaction_query(self, kind: TransactionKind, date_range: DateRange):
        model, _, _ = KIND_SOURCES[kind]
        query = select(model).options(selectinload(model.items)).where(
            model.tenant_id == self.tenant_id,
            model.deleted_at.is_(None),
            model.date >= date_range.start,
        )
        if date_range.end_inclusive:
            query = query.where(model.date <= date_range.end)
        else:
            query = query.where(model.date < date_range.end)

        if kind == TransactionKind.ORDER:
            query = query.where(model.status != OrderStatus.CANCELLED)
        else:
            query = query.where(model.status == DocumentStatus.ACTIVE)
        return query.order_by(model.date)

    def _to_payload(self, kind: TransactionKind, row) -> dict:
        _, price_attr, counterpart_attr = KIND_SOURCES[kind]
        payload = {
            "kind": kind.value,
            "id": row.id,
            "date": row.date,
            "document_discount_percent": row.discount,
            counterpart_attr: getattr(row, counterpart_attr),
            "lines": [
                {
                    "quantity": item.quantity,
                    "unit_price": getattr(item, price_attr),
                    "discount_percent": item.discount_percent,
                    "product_id": getattr(item, "product_id", None),
                }
                for item in row.items
            ],
        }
        if kind == TransactionKind.ORDER:
            payload["status"] = row.status.value
        return payload

    async def _load_transactions(self, kind: TransactionKind, query) -> List[Transaction]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Database error reading {kind.value} for tenant {self.tenant_id}: {e}")
            raise RepositoryReadError(kind.value, e) from e

        transactions = []
        for row in rows:
            try:
                transactions.append(TransactionAdapter.validate_python(self._to_payload(kind, row)))
            except ValidationError as e:
                logger.warning(
                    f"Skipping malformed {kind.value} record {row.id} for tenant {self.tenant_id}: "
                    f"{e.error_count()} validation error(s)"
                )

        logger.debug(f"Loaded {len(transactions)} {kind.value} records for tenant {self.tenant_id}")
        return transactions

    async def list_transactions(self, kind: TransactionKind, date_range: DateRange) -> List[Transaction]:
        """Obtener documentos válidos de un tipo dentro del rango de fechas"""
        return await self._load_transactions(kind, self._build_transaction_query(kind, date_range))

    async def list_open_orders(self) -> List[OrderTransaction]:
        """Encomiendas pendientes de conversión, sin importar su fecha"""
        query = select(Order).options(selectinload(Order.items)).where(
            Order.tenant_id == self.tenant_id,
            Order.deleted_at.is_(None),
            Order.status == OrderStatus.PENDING,
        ).order_by(Order.date.desc())
        return await self._load_transactions(TransactionKind.ORDER, query)

    async def list_products(self) -> List[ProductStock]:
        """Niveles de stock de los productos activos"""
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Product).where(
                        Product.tenant_id == self.tenant_id,
                        Product.deleted_at.is_(None),
                    ).order_by(Product.name)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Database error reading products for tenant {self.tenant_id}: {e}")
            raise RepositoryReadError("products", e) from e

        return [
            ProductStock(
                id=row.id,
                name=row.name,
                current_stock=row.current_stock or 0,
                min_stock=row.min_stock or 0,
            )
            for row in rows
        ]

    async def get_kpi_targets(self) -> Dict[str, Decimal]:
        """Carga las metas de KPIs configuradas por la empresa"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(KpiTarget.kpi_name, KpiTarget.target_value).where(
                    KpiTarget.tenant_id == self.tenant_id,
                    KpiTarget.deleted_at.is_(None),
                )
            )
            return {name: Decimal(value) for name, value in result.all()}

    async def save_kpi_targets(self, targets: Dict[str, Decimal]) -> None:
        """Guarda las metas de KPIs: actualiza las existentes e inserta las nuevas"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(KpiTarget).where(
                    KpiTarget.tenant_id == self.tenant_id,
                    KpiTarget.kpi_name.in_(list(targets.keys())),
                )
            )
            existing = {target.kpi_name: target for target in result.scalars().all()}

            for kpi_name, target_value in targets.items():
                if kpi_name in existing:
                    existing[kpi_name].target_value = target_value
                    existing[kpi_name].deleted_at = None
                else:
                    session.add(KpiTarget(
                        tenant_id=self.tenant_id,
                        kpi_name=kpi_name,
                        target_value=target_value,
                    ))

            await session.commit()
        logger.info(f"Saved {len(targets)} KPI target(s) for tenant {self.tenant_id}")

    async def count_distinct_clients(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(Client.id)).where(
                    Client.tenant_id == self.tenant_id,
                    Client.deleted_at.is_(None),
                )
            )
            return result.scalar() or 0

    async def count_active_products(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(Product.id)).where(
                    Product.tenant_id == self.tenant_id,
                    Product.deleted_at.is_(None),
                )
            )
            return result.scalar() or 0
