# backoffice_hub/db_models.py
"""
SQLAlchemy ORM Models for Backoffice Hub.

Catalog tables (products, product_variations) are filled by the upstream
shop synchronization and are only read here. Purchase orders own their
items; expiry batches and inventory rows are independent stores.
"""
from __future__ import annotations
import datetime as dt
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List
import enum

from sqlalchemy import (
    String, Integer, Text, Date, DateTime, Numeric, ForeignKey, Index,
    UniqueConstraint, Enum as SQLEnum, JSON,
)
from sqlalchemy.orm import (
    Mapped, mapped_column, relationship, validates
)

from backoffice_hub.database import Base

# ============================================================================
# ENUMS
# ============================================================================

class PurchaseOrderStatus(str, enum.Enum):
    ordered = "ordered"
    partially_received = "partially_received"
    received = "received"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# ============================================================================
# MIXIN for updated_at
# ============================================================================

class TimestampMixin:
    """Mixin for created_at and updated_at columns."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )


# ============================================================================
# 1. SUPPLIERS
# ============================================================================

class Supplier(TimestampMixin, Base):
    __tablename__ = "suppliers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    purchase_orders: Mapped[List["PurchaseOrder"]] = relationship(back_populates="supplier")


# ============================================================================
# 2. CATALOG: PRODUCTS / VARIATIONS (read-only here)
# ============================================================================

class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sku: Mapped[Optional[str]] = mapped_column(String(100), unique=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    cost_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    stock_quantity: Mapped[Optional[int]] = mapped_column(Integer)

    variations: Mapped[List["ProductVariation"]] = relationship(back_populates="parent")


class ProductVariation(Base):
    __tablename__ = "product_variations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    parent_id: Mapped[int] = mapped_column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(100), unique=True)
    attributes: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    cost_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    stock_quantity: Mapped[Optional[int]] = mapped_column(Integer)

    parent: Mapped["Product"] = relationship(back_populates="variations")

    __table_args__ = (
        Index("idx_product_variations_parent", "parent_id"),
    )


# ============================================================================
# 3. INVENTORY
# ============================================================================

class InventoryItem(TimestampMixin, Base):
    __tablename__ = "inventory"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(Integer, nullable=False)
    variation_id: Mapped[Optional[int]] = mapped_column(Integer)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    cost_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    supplier_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    supplier_name: Mapped[Optional[str]] = mapped_column(String(255))
    supplier_updated: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("idx_inventory_sku", "sku"),
        Index("idx_inventory_product", "product_id", "variation_id"),
    )


# ============================================================================
# 4. PRODUCT EXPIRY (batch ledger)
# ============================================================================

class ProductExpiry(TimestampMixin, Base):
    __tablename__ = "product_expiry"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    variation_id: Mapped[Optional[int]] = mapped_column(Integer)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    product_name: Mapped[Optional[str]] = mapped_column(String(500))
    expiry_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    # NULL when the batch is unnamed; NULLs never collide in the unique index
    batch_number: Mapped[Optional[str]] = mapped_column(String(100))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_quantity: Mapped[Optional[int]] = mapped_column(Integer)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("sku", "batch_number", name="uq_product_expiry_sku_batch"),
        Index("idx_product_expiry_sku", "sku"),
        Index("idx_product_expiry_date", "expiry_date"),
    )


# ============================================================================
# 5. PURCHASE ORDERS
# ============================================================================

class PurchaseOrder(TimestampMixin, Base):
    __tablename__ = "purchase_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    supplier_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"))
    supplier_name: Mapped[str] = mapped_column(String(255), nullable=False)
    reference_number: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), default="", nullable=False)
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        SQLEnum(PurchaseOrderStatus, name="purchase_order_status"),
        default=PurchaseOrderStatus.ordered,
        nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)
    expiry_date: Mapped[Optional[dt.date]] = mapped_column(Date)

    # Relationships
    supplier: Mapped[Optional["Supplier"]] = relationship(back_populates="purchase_orders")
    items: Mapped[List["PurchaseOrderItem"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id",
    )

    __table_args__ = (
        Index("idx_purchase_orders_date", "date"),
        Index("idx_purchase_orders_status", "status"),
    )

    def recalculate_total(self) -> Decimal:
        self.total_amount = sum((item.total_price for item in self.items), Decimal("0"))
        return self.total_amount


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False
    )
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    product_name: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    quantity_received: Mapped[Optional[int]] = mapped_column(Integer)
    batch_number: Mapped[Optional[str]] = mapped_column(String(100))
    expiry_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    # Units of this line already added to inventory
    stock_applied: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    purchase_order: Mapped["PurchaseOrder"] = relationship(back_populates="items")

    __table_args__ = (
        Index("idx_purchase_order_items_order", "purchase_order_id"),
        Index("idx_purchase_order_items_sku", "sku"),
    )

    @validates("quantity", "unit_price")
    def _recompute_total_price(self, key, value):
        if key == "unit_price" and value is not None:
            value = to_money(value)
        quantity = value if key == "quantity" else self.quantity
        unit_price = value if key == "unit_price" else self.unit_price
        if quantity is not None and unit_price is not None:
            self.total_price = to_money(unit_price) * int(quantity)
        return value
