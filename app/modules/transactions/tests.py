"""
Tests para el módulo de Transacciones

Cubren:
- Validación de líneas y documentos (descuentos, fechas, cantidades)
- Unión discriminada por tipo de transacción
- Rangos de fechas cerrados y semiabiertos
- Mapeo de filas del repositorio a transacciones validadas y niveles de stock
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from app.modules.analytics.exceptions import RepositoryReadError
from app.modules.transactions.models import OrderStatus
from app.modules.transactions.repository import SQLAlchemyTransactionRepository
from app.modules.transactions.schemas import (
    DateRange,
    ExpenseTransaction,
    KpiTargetsUpdate,
    OrderTransaction,
    ProductStock,
    SaleTransaction,
    TransactionAdapter,
    TransactionKind,
    TransactionLine,
)


# ===== FIXTURES =====

class FakeResult:
    def __init__(self, rows):
        self._rows = rows

    def scalars(self):
        return self

    def all(self):
        return list(self._rows)


class FakeSession:
    def __init__(self, rows, error=None):
        self.rows = rows
        self.error = error
        self.queries = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def execute(self, query):
        if self.error is not None:
            raise self.error
        self.queries.append(query)
        return FakeResult(self.rows)


def stock_exit_row(quantity=2, price="10.00", discount=None, document_discount="0"):
    return SimpleNamespace(
        id=uuid4(),
        date=datetime(2026, 2, 10, 9, 30),
        discount=Decimal(document_discount),
        client_id=uuid4(),
        items=[SimpleNamespace(
            quantity=quantity,
            sale_price=Decimal(price),
            discount_percent=discount,
            product_id=uuid4(),
        )],
    )


@pytest.fixture
def tenant_id():
    return uuid4()


# ===== TESTS DE ESQUEMAS =====

class TestTransactionLine:

    def test_missing_discount_defaults_to_zero(self):
        line = TransactionLine(quantity=1, unit_price=Decimal("4.00"), discount_percent=None)
        assert line.discount_percent == 0

    def test_discount_is_clamped(self):
        assert TransactionLine(quantity=1, unit_price=1, discount_percent=250).discount_percent == 100
        assert TransactionLine(quantity=1, unit_price=1, discount_percent=-3).discount_percent == 0

    def test_negative_values_rejected(self):
        with pytest.raises(ValidationError):
            TransactionLine(quantity=-1, unit_price=Decimal("1.00"))
        with pytest.raises(ValidationError):
            TransactionLine(quantity=1, unit_price=Decimal("-1.00"))


class TestTransactionVariants:

    def test_discriminated_by_kind(self):
        sale = TransactionAdapter.validate_python({"kind": "sale", "date": "2026-01-05T10:00:00Z"})
        expense = TransactionAdapter.validate_python({"kind": "expense", "date": "2026-01-05T10:00:00Z"})

        assert isinstance(sale, SaleTransaction)
        assert isinstance(expense, ExpenseTransaction)
        assert expense.kind == TransactionKind.EXPENSE

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            TransactionAdapter.validate_python({"kind": "refund", "date": "2026-01-05T10:00:00Z"})

    def test_naive_date_is_utc(self):
        sale = SaleTransaction(date=datetime(2026, 1, 5, 10, 0))
        assert sale.date.tzinfo == timezone.utc

    def test_document_discount_clamped(self):
        sale = SaleTransaction(date=datetime.now(timezone.utc), document_discount_percent=120)
        assert sale.document_discount_percent == 100

    def test_order_status(self):
        assert OrderTransaction(date=datetime.now(timezone.utc)).is_pending
        assert not OrderTransaction(date=datetime.now(timezone.utc), status="completed").is_pending
        with pytest.raises(ValidationError):
            OrderTransaction(date=datetime.now(timezone.utc), status="lost")


class TestDateRange:

    def test_closed_range(self):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        end = start + timedelta(days=30)
        date_range = DateRange(start=start, end=end)

        assert date_range.contains(start)
        assert date_range.contains(end)
        assert not date_range.contains(end + timedelta(microseconds=1))
        assert not date_range.contains(start - timedelta(microseconds=1))

    def test_half_open_range(self):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        end = start + timedelta(days=30)
        date_range = DateRange(start=start, end=end, end_inclusive=False)

        assert date_range.contains(start)
        assert not date_range.contains(end)

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError):
            DateRange(start=datetime(2026, 2, 1), end=datetime(2026, 1, 1))


class TestKpiTargetsUpdate:

    def test_as_mapping(self):
        payload = KpiTargetsUpdate(targets=[
            {"kpi_name": "roi", "target_value": "35"},
            {"kpi_name": "pending_orders", "target_value": 3},
        ])
        assert payload.as_mapping() == {"roi": Decimal("35"), "pending_orders": Decimal("3")}

    def test_empty_targets_rejected(self):
        with pytest.raises(ValidationError):
            KpiTargetsUpdate(targets=[])


# ===== TESTS DEL REPOSITORIO =====

class TestTransactionRepository:

    def test_query_filters_tenant_deleted_and_status(self, tenant_id):
        repository = SQLAlchemyTransactionRepository(lambda: None, tenant_id)
        date_range = DateRange(
            start=datetime(2026, 1, 1, tzinfo=timezone.utc),
            end=datetime(2026, 2, 1, tzinfo=timezone.utc),
        )

        sql = str(repository._build_transaction_query(TransactionKind.SALE, date_range))

        assert "stock_exits.tenant_id" in sql
        assert "stock_exits.deleted_at IS NULL" in sql
        assert "stock_exits.status" in sql
        assert "stock_exits.date <=" in sql

    def test_half_open_query_uses_strict_end(self, tenant_id):
        repository = SQLAlchemyTransactionRepository(lambda: None, tenant_id)
        date_range = DateRange(
            start=datetime(2026, 1, 1, tzinfo=timezone.utc),
            end=datetime(2026, 2, 1, tzinfo=timezone.utc),
            end_inclusive=False,
        )

        sql = str(repository._build_transaction_query(TransactionKind.EXPENSE, date_range))

        assert "expenses.date <" in sql
        assert "expenses.date <=" not in sql

    def test_rows_become_transactions(self, tenant_id):
        row = stock_exit_row(quantity=3, price="20.00", discount=Decimal("10"), document_discount="5")
        session = FakeSession([row])
        repository = SQLAlchemyTransactionRepository(lambda: session, tenant_id)
        date_range = DateRange(start=datetime(2026, 1, 1), end=datetime(2026, 3, 1))

        transactions = asyncio.run(repository.list_transactions(TransactionKind.SALE, date_range))

        assert len(transactions) == 1
        sale = transactions[0]
        assert isinstance(sale, SaleTransaction)
        assert sale.id == row.id
        assert sale.client_id == row.client_id
        assert sale.date.tzinfo == timezone.utc
        assert sale.document_discount_percent == Decimal("5")
        assert sale.lines[0].unit_price == Decimal("20.00")
        assert sale.lines[0].discount_percent == Decimal("10")
        assert len(session.queries) == 1

    def test_malformed_rows_are_skipped(self, tenant_id):
        rows = [stock_exit_row(quantity=-4), stock_exit_row()]
        repository = SQLAlchemyTransactionRepository(lambda: FakeSession(rows), tenant_id)
        date_range = DateRange(start=datetime(2026, 1, 1), end=datetime(2026, 3, 1))

        transactions = asyncio.run(repository.list_transactions(TransactionKind.SALE, date_range))

        assert [t.id for t in transactions] == [rows[1].id]

    def test_order_rows_carry_status(self, tenant_id):
        row = stock_exit_row()
        row.status = OrderStatus.PENDING
        repository = SQLAlchemyTransactionRepository(lambda: FakeSession([row]), tenant_id)
        date_range = DateRange(start=datetime(2026, 1, 1), end=datetime(2026, 3, 1))

        orders = asyncio.run(repository.list_transactions(TransactionKind.ORDER, date_range))

        assert isinstance(orders[0], OrderTransaction)
        assert orders[0].is_pending

    def test_database_errors_are_wrapped(self, tenant_id):
        session = FakeSession([], error=SQLAlchemyError("connection lost"))
        repository = SQLAlchemyTransactionRepository(lambda: session, tenant_id)
        date_range = DateRange(start=datetime(2026, 1, 1), end=datetime(2026, 3, 1))

        with pytest.raises(RepositoryReadError) as exc_info:
            asyncio.run(repository.list_transactions(TransactionKind.PURCHASE, date_range))

        assert exc_info.value.source == "purchase"

    def test_open_orders_ignore_dates(self, tenant_id):
        row = stock_exit_row()
        row.date = datetime(2024, 6, 1)
        row.status = OrderStatus.PENDING
        session = FakeSession([row])
        repository = SQLAlchemyTransactionRepository(lambda: session, tenant_id)

        orders = asyncio.run(repository.list_open_orders())

        assert [o.id for o in orders] == [row.id]
        assert orders[0].is_pending
        sql = str(session.queries[0])
        assert "orders.status" in sql
        assert "orders.date >=" not in sql

    def test_products_become_stock_levels(self, tenant_id):
        rows = [
            SimpleNamespace(id=uuid4(), name="Arroz 1kg", current_stock=4, min_stock=10),
            SimpleNamespace(id=uuid4(), name="Sal", current_stock=None, min_stock=None),
        ]
        repository = SQLAlchemyTransactionRepository(lambda: FakeSession(rows), tenant_id)

        products = asyncio.run(repository.list_products())

        assert products == [
            ProductStock(id=rows[0].id, name="Arroz 1kg", current_stock=4, min_stock=10),
            ProductStock(id=rows[1].id, name="Sal", current_stock=0, min_stock=0),
        ]

    def test_product_errors_are_wrapped(self, tenant_id):
        session = FakeSession([], error=SQLAlchemyError("timeout"))
        repository = SQLAlchemyTransactionRepository(lambda: session, tenant_id)

        with pytest.raises(RepositoryReadError) as exc_info:
            asyncio.run(repository.list_products())

        assert exc_info.value.source == "products"
