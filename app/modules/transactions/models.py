"""
Modelos SQLAlchemy para los movimientos transaccionales

Este módulo contiene las tablas que alimentan el motor de analítica:
- Entradas de stock (compras a proveedores)
- Salidas de stock (ventas a clientes)
- Gastos (expenses)
- Encomiendas (orders) pendientes de conversión
- Metas de KPIs por empresa

Cada documento tiene un descuento global (porcentaje) y líneas con su propio
descuento por línea. Los registros eliminados se marcan con deleted_at
(soft delete) y nunca llegan al motor.

Arquitectura multi-tenant: Todas las tablas incluyen tenant_id
"""

from app.database.database import Base
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Numeric, Enum, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin
import enum


# ===== ENUMS =====

class DocumentStatus(enum.Enum):
    """Estados de documentos de stock y gastos"""
    ACTIVE = "active"       # Vigente, cuenta para reportes
    CANCELLED = "cancelled" # Anulado


class OrderStatus(enum.Enum):
    """Estados de encomiendas"""
    PENDING = "pending"       # Pendiente de conversión en salida
    COMPLETED = "completed"   # Convertida en salida de stock
    CANCELLED = "cancelled"   # Anulada


# ===== MAESTROS =====

class Client(Base, TenantMixin, TimestampMixin):
    """Clientes de la empresa"""
    __tablename__ = "clients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False, index=True)
    email = Column(String(100), nullable=True)
    phone = Column(String(50), nullable=True)


class Supplier(Base, TenantMixin, TimestampMixin):
    """Proveedores de la empresa"""
    __tablename__ = "suppliers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False, index=True)
    email = Column(String(100), nullable=True)
    phone = Column(String(50), nullable=True)


class Product(Base, TenantMixin, TimestampMixin):
    """Productos del catálogo"""
    __tablename__ = "products"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False, index=True)
    code = Column(String(50), nullable=True)
    purchase_price = Column(Numeric(15, 2), nullable=False, default=0)
    sale_price = Column(Numeric(15, 2), nullable=False, default=0)
    current_stock = Column(Integer, nullable=False, default=0)
    min_stock = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_product_tenant_code"),
    )


# ===== ENTRADAS (COMPRAS) =====

class StockEntry(Base, TenantMixin, TimestampMixin):
    """
    Entradas de stock

    Representan compras a proveedores. Su valor alimenta purchase_value.
    """
    __tablename__ = "stock_entries"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.id"), nullable=True, index=True)
    number = Column(String(50), nullable=True)
    date = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    status = Column(Enum(DocumentStatus), nullable=False, default=DocumentStatus.ACTIVE, index=True)
    discount = Column(Numeric(5, 2), nullable=False, default=0)  # Descuento global en %
    notes = Column(Text, nullable=True)

    supplier = relationship("Supplier")
    items = relationship("StockEntryItem", back_populates="entry", cascade="all, delete-orphan")


class StockEntryItem(Base, TenantMixin):
    """Líneas de una entrada de stock"""
    __tablename__ = "stock_entry_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    entry_id = Column(UUID(as_uuid=True), ForeignKey("stock_entries.id"), nullable=False, index=True)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id"), nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    purchase_price = Column(Numeric(15, 2), nullable=False, default=0)
    discount_percent = Column(Numeric(5, 2), nullable=True)

    entry = relationship("StockEntry", back_populates="items")


# ===== SALIDAS (VENTAS) =====

class StockExit(Base, TenantMixin, TimestampMixin):
    """
    Salidas de stock

    Representan ventas a clientes. Su valor alimenta sales_value.
    """
    __tablename__ = "stock_exits"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=True, index=True)
    number = Column(String(50), nullable=True)
    date = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    status = Column(Enum(DocumentStatus), nullable=False, default=DocumentStatus.ACTIVE, index=True)
    discount = Column(Numeric(5, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)

    client = relationship("Client")
    items = relationship("StockExitItem", back_populates="exit", cascade="all, delete-orphan")


class StockExitItem(Base, TenantMixin):
    """Líneas de una salida de stock"""
    __tablename__ = "stock_exit_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    exit_id = Column(UUID(as_uuid=True), ForeignKey("stock_exits.id"), nullable=False, index=True)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id"), nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    sale_price = Column(Numeric(15, 2), nullable=False, default=0)
    discount_percent = Column(Numeric(5, 2), nullable=True)

    exit = relationship("StockExit", back_populates="items")


# ===== GASTOS =====

class Expense(Base, TenantMixin, TimestampMixin):
    """Gastos operativos (no afectan inventario)"""
    __tablename__ = "expenses"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.id"), nullable=True, index=True)
    number = Column(String(50), nullable=True)
    date = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    status = Column(Enum(DocumentStatus), nullable=False, default=DocumentStatus.ACTIVE, index=True)
    discount = Column(Numeric(5, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)

    supplier = relationship("Supplier")
    items = relationship("ExpenseItem", back_populates="expense", cascade="all, delete-orphan")


class ExpenseItem(Base, TenantMixin):
    """Líneas de un gasto"""
    __tablename__ = "expense_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    expense_id = Column(UUID(as_uuid=True), ForeignKey("expenses.id"), nullable=False, index=True)
    description = Column(String(200), nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    unit_price = Column(Numeric(15, 2), nullable=False, default=0)
    discount_percent = Column(Numeric(5, 2), nullable=True)

    expense = relationship("Expense", back_populates="items")


# ===== ENCOMIENDAS =====

class Order(Base, TenantMixin, TimestampMixin):
    """
    Encomiendas de clientes

    No afectan inventario; su total es provisional y solo se usa en reportes.
    """
    __tablename__ = "orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=True, index=True)
    number = Column(String(50), nullable=True)
    date = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING, index=True)
    discount = Column(Numeric(5, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)

    client = relationship("Client")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base, TenantMixin):
    """Líneas de una encomienda"""
    __tablename__ = "order_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id"), nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    sale_price = Column(Numeric(15, 2), nullable=False, default=0)
    discount_percent = Column(Numeric(5, 2), nullable=True)

    order = relationship("Order", back_populates="items")


# ===== METAS DE KPIs =====

class KpiTarget(Base, TenantMixin, TimestampMixin):
    """Meta configurada por la empresa para un KPI del catálogo"""
    __tablename__ = "kpi_targets"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    kpi_name = Column(String(100), nullable=False)
    target_value = Column(Numeric(15, 2), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "kpi_name", name="uq_kpi_target_tenant_name"),
    )
