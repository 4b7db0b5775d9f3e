# import_hub/db_models.py
"""
SQLAlchemy ORM Models for Import Hub.

Shipments (supplier invoices priced in foreign currency), their items,
the product master with running weighted-average costs, and the
append-only stock movement ledger.
"""
from __future__ import annotations
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List
import enum

from sqlalchemy import (
    String, Integer, BigInteger, Boolean, Text, DateTime,
    Numeric, ForeignKey, Index, CheckConstraint,
    Enum as SQLEnum, event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from import_hub.database import Base

# SQLite only autoincrements INTEGER PRIMARY KEY
PK = BigInteger().with_variant(Integer, "sqlite")

Money = Numeric(14, 4)
Rate = Numeric(12, 6)
Percent = Numeric(7, 4)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(e) -> list[str]:
    return [m.value for m in e]


# ============================================================================
# ENUMS
# ============================================================================

class ShipmentStatus(str, enum.Enum):
    pending = "pending"
    in_transit = "in_transit"
    customs = "customs"
    delivered = "delivered"
    cancelled = "cancelled"


class MovementType(str, enum.Enum):
    receipt = "receipt"
    reversal = "reversal"
    adjustment = "adjustment"
    sale = "sale"
    customer_return = "return"


# ============================================================================
# MIXIN for updated_at
# ============================================================================

class TimestampMixin:
    """Mixin for created_at and updated_at columns."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False
    )


# ============================================================================
# 1. SUPPLIERS
# ============================================================================

class Supplier(TimestampMixin, Base):
    __tablename__ = "suppliers"

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    company_name: Mapped[Optional[str]] = mapped_column(String(255))
    country: Mapped[Optional[str]] = mapped_column(String(100))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    contact_person: Mapped[Optional[str]] = mapped_column(String(255))


# ============================================================================
# 2. PRODUCTS
# ============================================================================

class Product(TimestampMixin, Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    sku: Mapped[Optional[str]] = mapped_column(String(100), unique=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    supplier_product_code: Mapped[Optional[str]] = mapped_column(String(100))
    last_supplier_id: Mapped[Optional[int]] = mapped_column(
        PK, ForeignKey("suppliers.id", ondelete="SET NULL")
    )
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_cost_local: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    average_cost_foreign: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    last_received_unit_price_foreign: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    # Optimistic concurrency counter, bumped on every UPDATE
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_products_last_supplier", "last_supplier_id"),
    )


# ============================================================================
# 3. SHIPMENTS (importations)
# ============================================================================

class Shipment(TimestampMixin, Base):
    __tablename__ = "shipments"

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    invoice_number: Mapped[Optional[str]] = mapped_column(String(100))
    supplier_id: Mapped[Optional[int]] = mapped_column(
        PK, ForeignKey("suppliers.id", ondelete="SET NULL")
    )
    import_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    status: Mapped[ShipmentStatus] = mapped_column(
        SQLEnum(ShipmentStatus, name="shipment_status"),
        default=ShipmentStatus.pending,
        nullable=False
    )

    exchange_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False)
    subtotal_foreign: Mapped[Decimal] = mapped_column(Money, nullable=False)
    freight_foreign: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    total_foreign: Mapped[Decimal] = mapped_column(Money, nullable=False)

    subtotal_local: Mapped[Decimal] = mapped_column(Money, nullable=False)
    freight_local: Mapped[Decimal] = mapped_column(Money, nullable=False)
    import_tax_rate: Mapped[Decimal] = mapped_column(Percent, default=Decimal("0"), nullable=False)
    icms_rate: Mapped[Decimal] = mapped_column(Percent, default=Decimal("0"), nullable=False)
    import_tax: Mapped[Decimal] = mapped_column(Money, nullable=False)
    icms: Mapped[Decimal] = mapped_column(Money, nullable=False)
    other_taxes: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    total_local_cost: Mapped[Decimal] = mapped_column(Money, nullable=False)

    transaction_number: Mapped[Optional[str]] = mapped_column(String(100))
    payment_method: Mapped[Optional[str]] = mapped_column(String(100))
    shipping_method: Mapped[Optional[str]] = mapped_column(String(100))
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100))
    estimated_delivery: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    actual_delivery_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Relationships
    items: Mapped[List["ShipmentItem"]] = relationship(
        back_populates="shipment",
        cascade="all, delete-orphan",
        order_by="ShipmentItem.line_number",
    )

    __table_args__ = (
        CheckConstraint("exchange_rate > 0", name="chk_shipment_exchange_rate_positive"),
        Index("idx_shipments_status", "status"),
        Index("idx_shipments_supplier", "supplier_id"),
    )

    @property
    def reference(self) -> str:
        """Free-text reference written on ledger rows."""
        return self.invoice_number or f"Shipment {self.id}"


# ============================================================================
# 4. SHIPMENT ITEMS
# ============================================================================

class ShipmentItem(TimestampMixin, Base):
    __tablename__ = "shipment_items"

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    shipment_id: Mapped[int] = mapped_column(PK, ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[Optional[int]] = mapped_column(PK, ForeignKey("products.id", ondelete="SET NULL"))

    product_name: Mapped[str] = mapped_column(String(500), nullable=False)
    product_description: Mapped[Optional[str]] = mapped_column(Text)
    supplier_product_code: Mapped[Optional[str]] = mapped_column(String(100))
    color: Mapped[Optional[str]] = mapped_column(String(100))
    size: Mapped[Optional[str]] = mapped_column(String(100))

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_foreign: Mapped[Decimal] = mapped_column(Money, nullable=False)
    item_total_foreign: Mapped[Decimal] = mapped_column(Money, nullable=False)

    allocation_share: Mapped[Decimal] = mapped_column(Numeric(16, 12), nullable=False)
    allocated_freight_local: Mapped[Decimal] = mapped_column(Money, nullable=False)
    allocated_import_tax: Mapped[Decimal] = mapped_column(Money, nullable=False)
    allocated_icms: Mapped[Decimal] = mapped_column(Money, nullable=False)
    allocated_other_taxes: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    unit_cost_local: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_cost_local: Mapped[Decimal] = mapped_column(Money, nullable=False)

    # Relationships
    shipment: Mapped["Shipment"] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="chk_shipment_item_quantity_positive"),
        Index("idx_shipment_items_shipment", "shipment_id"),
        Index("idx_shipment_items_product", "product_id"),
    )

    @property
    def is_linked(self) -> bool:
        """Only linked items ever touch inventory."""
        return self.product_id is not None


# ============================================================================
# 5. STOCK MOVEMENTS (IMMUTABLE LEDGER)
# ============================================================================

class StockMovement(Base):
    __tablename__ = "stock_movements"

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    product_id: Mapped[int] = mapped_column(PK, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    shipment_id: Mapped[Optional[int]] = mapped_column(PK, ForeignKey("shipments.id", ondelete="SET NULL"))
    movement_type: Mapped[MovementType] = mapped_column(
        SQLEnum(MovementType, name="movement_type", values_callable=_enum_values),
        nullable=False
    )
    quantity_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_before: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_after: Mapped[int] = mapped_column(Integer, nullable=False)
    avg_cost_local_before: Mapped[Decimal] = mapped_column(Money, nullable=False)
    avg_cost_local_after: Mapped[Decimal] = mapped_column(Money, nullable=False)
    avg_cost_foreign_before: Mapped[Decimal] = mapped_column(Money, nullable=False)
    avg_cost_foreign_after: Mapped[Decimal] = mapped_column(Money, nullable=False)
    unit_cost_local: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    unit_cost_foreign: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    shipment_ref: Mapped[Optional[str]] = mapped_column(String(255))
    reverses_movement_id: Mapped[Optional[int]] = mapped_column(
        PK, ForeignKey("stock_movements.id", ondelete="RESTRICT")
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[str] = mapped_column(String(100), default="system", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity_delta != 0", name="chk_movement_quantity_not_zero"),
        Index("idx_movements_product", "product_id"),
        Index("idx_movements_shipment", "shipment_id", "movement_type"),
        Index("idx_movements_reverses", "reverses_movement_id"),
        Index("idx_movements_created", "created_at"),
    )


@event.listens_for(StockMovement, "before_update")
def _stock_movement_is_append_only(mapper, connection, target):
    raise ValueError(f"Stock movement {target.id} is immutable")


# ============================================================================
# 6. TAX CONFIG
# ============================================================================

class TaxConfig(TimestampMixin, Base):
    __tablename__ = "tax_configs"

    id: Mapped[int] = mapped_column(PK, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    import_tax_rate: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    icms_rate: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
