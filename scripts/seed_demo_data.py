"""
Seed script: Populate a demo tenant with transactional data for the dashboard.

What it creates:
- Clients (~40) and suppliers (~12).
- Products with purchase and sale prices.
- Stock entries (compras) and stock exits (ventas) spread over the last N
  months, with line and document discounts; a few are cancelled.
- Expenses (gastos) and orders (encomiendas) in mixed states.
- Default KPI targets for the company.

Run inside the API container to use 'postgres' host and project PYTHONPATH:
    docker compose exec api python scripts/seed_demo_data.py \
        --months 6 --entries 120 --exits 400 --expenses 60 --orders 50

Note: This is intended for development environments only.
"""

# Add project root (/code) to sys.path so `app.*` imports work even if CWD changes
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import argparse
import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from app.database.database import Base, SessionLocal, sync_engine
from app.modules.analytics.kpis import KPI_CATALOG
from app.modules.transactions.models import (
    Client,
    DocumentStatus,
    Expense,
    ExpenseItem,
    KpiTarget,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    StockEntry,
    StockEntryItem,
    StockExit,
    StockExitItem,
    Supplier,
)

PRODUCT_NAMES = [
    "Arroz 1kg", "Aceite 1L", "Azúcar 1kg", "Café 500g", "Leche 1L", "Huevos x30",
    "Pasta 500g", "Atún lata", "Jabón barra", "Detergente 1kg", "Papel higiénico x4",
    "Gaseosa 1.5L", "Agua 600ml", "Galletas", "Chocolate 100g", "Harina 1kg",
]

EXPENSE_CONCEPTS = ["Arriendo", "Energía", "Internet", "Transporte", "Papelería", "Mantenimiento"]


def pick(seq):
    return random.choice(seq)


def random_date(months: int) -> datetime:
    now = datetime.now(timezone.utc)
    return now - timedelta(days=random.randint(0, months * 30), minutes=random.randint(0, 24 * 60))


def maybe_discount(probability: float, high: int) -> Decimal:
    if random.random() < probability:
        return Decimal(random.randint(1, high))
    return Decimal("0")


def create_master_data(db, tenant_id, clients_count=40, suppliers_count=12):
    clients = [
        Client(tenant_id=tenant_id, name=f"Cliente {i:03d}", email=f"cliente{i:03d}@demo.com")
        for i in range(1, clients_count + 1)
    ]
    suppliers = [
        Supplier(tenant_id=tenant_id, name=f"Proveedor {i:02d}", email=f"proveedor{i:02d}@demo.com")
        for i in range(1, suppliers_count + 1)
    ]
    products = []
    for i, name in enumerate(PRODUCT_NAMES, start=1):
        purchase_price = Decimal(random.randint(1500, 20000))
        products.append(Product(
            tenant_id=tenant_id,
            name=name,
            code=f"SKU-{i:04d}",
            purchase_price=purchase_price,
            sale_price=(purchase_price * Decimal("1.35")).quantize(Decimal("1")),
            current_stock=random.randint(0, 200),
            min_stock=10,
        ))

    db.add_all(clients + suppliers + products)
    db.commit()
    return clients, suppliers, products


def create_stock_entries(db, tenant_id, suppliers, products, count, months):
    for i in range(count):
        entry = StockEntry(
            tenant_id=tenant_id,
            supplier_id=pick(suppliers).id,
            number=f"ENT-{i:05d}",
            date=random_date(months),
            status=DocumentStatus.CANCELLED if random.random() < 0.05 else DocumentStatus.ACTIVE,
            discount=maybe_discount(0.2, 10),
        )
        for _ in range(random.randint(1, 5)):
            product = pick(products)
            entry.items.append(StockEntryItem(
                tenant_id=tenant_id,
                product_id=product.id,
                quantity=random.randint(5, 60),
                purchase_price=product.purchase_price,
                discount_percent=maybe_discount(0.3, 15),
            ))
        db.add(entry)
    db.commit()
    return count


def create_stock_exits(db, tenant_id, clients, products, count, months):
    for i in range(count):
        stock_exit = StockExit(
            tenant_id=tenant_id,
            client_id=pick(clients).id if random.random() < 0.8 else None,
            number=f"SAL-{i:05d}",
            date=random_date(months),
            status=DocumentStatus.CANCELLED if random.random() < 0.05 else DocumentStatus.ACTIVE,
            discount=maybe_discount(0.15, 10),
        )
        for _ in range(random.randint(1, 6)):
            product = pick(products)
            stock_exit.items.append(StockExitItem(
                tenant_id=tenant_id,
                product_id=product.id,
                quantity=random.randint(1, 8),
                sale_price=product.sale_price,
                discount_percent=maybe_discount(0.25, 20),
            ))
        db.add(stock_exit)
        if (i + 1) % 200 == 0:
            db.commit()
            print(f"  Stock exits created: {i + 1}")
    db.commit()
    return count


def create_expenses(db, tenant_id, suppliers, count, months):
    for i in range(count):
        expense = Expense(
            tenant_id=tenant_id,
            supplier_id=pick(suppliers).id if random.random() < 0.5 else None,
            number=f"GAS-{i:05d}",
            date=random_date(months),
            discount=Decimal("0"),
        )
        expense.items.append(ExpenseItem(
            tenant_id=tenant_id,
            description=pick(EXPENSE_CONCEPTS),
            quantity=1,
            unit_price=Decimal(random.randint(50000, 900000)),
        ))
        db.add(expense)
    db.commit()
    return count


def create_orders(db, tenant_id, clients, products, count, months):
    statuses = [OrderStatus.PENDING, OrderStatus.COMPLETED, OrderStatus.CANCELLED]
    for i in range(count):
        order = Order(
            tenant_id=tenant_id,
            client_id=pick(clients).id,
            number=f"ENC-{i:05d}",
            date=random_date(months),
            status=random.choices(statuses, weights=[0.4, 0.5, 0.1])[0],
        )
        for _ in range(random.randint(1, 3)):
            product = pick(products)
            order.items.append(OrderItem(
                tenant_id=tenant_id,
                product_id=product.id,
                quantity=random.randint(1, 10),
                sale_price=product.sale_price,
            ))
        db.add(order)
    db.commit()
    return count


def create_kpi_targets(db, tenant_id):
    for definition in KPI_CATALOG:
        db.add(KpiTarget(tenant_id=tenant_id, kpi_name=definition.key, target_value=definition.default_target))
    db.commit()


def main():
    parser = argparse.ArgumentParser(description="Seed analytics demo data")
    parser.add_argument("--tenant-id", type=UUID, default=None, help="Existing company id (new one when omitted)")
    parser.add_argument("--months", type=int, default=6)
    parser.add_argument("--entries", type=int, default=120)
    parser.add_argument("--exits", type=int, default=400)
    parser.add_argument("--expenses", type=int, default=60)
    parser.add_argument("--orders", type=int, default=50)
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible data")
    args = parser.parse_args()

    if args.seed is not None:
        random.seed(args.seed)
    tenant_id = args.tenant_id or uuid4()

    Base.metadata.create_all(bind=sync_engine)

    db = SessionLocal()
    try:
        print("Creating clients, suppliers and products...")
        clients, suppliers, products = create_master_data(db, tenant_id)
        print(f"Clients: {len(clients)}, Suppliers: {len(suppliers)}, Products: {len(products)}")

        print("Creating stock entries (compras)...")
        print(f"Stock entries created: {create_stock_entries(db, tenant_id, suppliers, products, args.entries, args.months)}")

        print("Creating stock exits (ventas)...")
        print(f"Stock exits created: {create_stock_exits(db, tenant_id, clients, products, args.exits, args.months)}")

        print("Creating expenses and orders...")
        print(f"Expenses created: {create_expenses(db, tenant_id, suppliers, args.expenses, args.months)}")
        print(f"Orders created: {create_orders(db, tenant_id, clients, products, args.orders, args.months)}")

        create_kpi_targets(db, tenant_id)

        print("\nSeed completed.")
        print("Headers for API requests:")
        print(f"  X-Company-ID: {tenant_id}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
