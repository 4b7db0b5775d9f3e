from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from import_hub.db_models import MovementType, ShipmentStatus

# Largest accepted gap between a declared subtotal and the sum of its lines
SUBTOTAL_TOLERANCE = Decimal("0.005")


# ============================================================================
# Shipments
# ============================================================================

class ShipmentItemIn(BaseModel):
    product_id: Optional[int] = None
    product_name: str = Field(min_length=1)
    product_description: Optional[str] = None
    supplier_product_code: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    quantity: int = Field(gt=0)
    unit_price_foreign: Decimal = Field(ge=0)

    @property
    def item_total_foreign(self) -> Decimal:
        return self.quantity * self.unit_price_foreign


class ShipmentHeaderIn(BaseModel):
    invoice_number: Optional[str] = None
    supplier_id: Optional[int] = None
    import_date: Optional[datetime] = None
    exchange_rate: Decimal = Field(gt=0)
    subtotal_foreign: Optional[Decimal] = Field(default=None, ge=0)
    freight_foreign: Decimal = Field(default=Decimal("0"), ge=0)
    # percent; None -> active tax configuration
    import_tax_rate: Optional[Decimal] = Field(default=None, ge=0)
    icms_rate: Optional[Decimal] = Field(default=None, ge=0)
    other_taxes: Decimal = Field(default=Decimal("0"), ge=0)
    transaction_number: Optional[str] = None
    payment_method: Optional[str] = None
    shipping_method: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    notes: Optional[str] = None


def _check_subtotal(declared: Optional[Decimal], items: List[ShipmentItemIn]) -> Decimal:
    computed = sum((i.item_total_foreign for i in items), Decimal("0"))
    if declared is not None and abs(declared - computed) > SUBTOTAL_TOLERANCE:
        raise ValueError(
            f"subtotal_foreign {declared} does not match the sum of item totals {computed}"
        )
    return computed


class ShipmentCreate(ShipmentHeaderIn):
    status: ShipmentStatus = ShipmentStatus.pending
    items: List[ShipmentItemIn] = Field(min_length=1)

    @field_validator("status")
    @classmethod
    def _not_delivered(cls, v: ShipmentStatus) -> ShipmentStatus:
        # stock is only received through a status change
        if v == ShipmentStatus.delivered:
            raise ValueError("a shipment cannot be created as delivered; create it, then set its status")
        return v

    @model_validator(mode="after")
    def _subtotal_matches_items(self) -> "ShipmentCreate":
        self.subtotal_foreign = _check_subtotal(self.subtotal_foreign, self.items)
        return self


class ShipmentItemsReplace(BaseModel):
    """New item set, optionally with a revised header."""
    header: Optional[ShipmentHeaderIn] = None
    items: List[ShipmentItemIn] = Field(min_length=1)

    @model_validator(mode="after")
    def _subtotal_matches_items(self) -> "ShipmentItemsReplace":
        if self.header is not None:
            self.header.subtotal_foreign = _check_subtotal(self.header.subtotal_foreign, self.items)
        return self


class ShipmentStatusIn(BaseModel):
    status: ShipmentStatus
    actual_delivery_date: Optional[datetime] = None


class ShipmentItemLinkIn(BaseModel):
    product_id: int


class ShipmentItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    line_number: int
    product_id: Optional[int]
    product_name: str
    product_description: Optional[str] = None
    supplier_product_code: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    quantity: int
    unit_price_foreign: Decimal
    item_total_foreign: Decimal
    allocation_share: Decimal
    allocated_freight_local: Decimal
    allocated_import_tax: Decimal
    allocated_icms: Decimal
    allocated_other_taxes: Decimal
    unit_cost_local: Decimal
    total_cost_local: Decimal


class ShipmentSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: Optional[str]
    supplier_id: Optional[int]
    import_date: datetime
    status: ShipmentStatus
    exchange_rate: Decimal
    subtotal_foreign: Decimal
    freight_foreign: Decimal
    total_foreign: Decimal
    subtotal_local: Decimal
    freight_local: Decimal
    import_tax_rate: Decimal
    icms_rate: Decimal
    import_tax: Decimal
    icms: Decimal
    other_taxes: Decimal
    total_local_cost: Decimal
    transaction_number: Optional[str] = None
    payment_method: Optional[str] = None
    shipping_method: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    notes: Optional[str] = None


class ShipmentOut(ShipmentSummaryOut):
    items: List[ShipmentItemOut]


# ============================================================================
# Catalogue
# ============================================================================

class SupplierIn(BaseModel):
    name: str = Field(min_length=1)
    company_name: Optional[str] = None
    country: Optional[str] = None
    email: Optional[str] = None
    contact_person: Optional[str] = None


class SupplierOut(SupplierIn):
    model_config = ConfigDict(from_attributes=True)

    id: int


class ProductIn(BaseModel):
    name: str = Field(min_length=1)
    sku: Optional[str] = None
    supplier_product_code: Optional[str] = None
    # opening balance
    stock_quantity: int = Field(default=0, ge=0)
    average_cost_local: Decimal = Field(default=Decimal("0"), ge=0)
    average_cost_foreign: Decimal = Field(default=Decimal("0"), ge=0)


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    sku: Optional[str]
    supplier_product_code: Optional[str]
    last_supplier_id: Optional[int]
    stock_quantity: int
    average_cost_local: Decimal
    average_cost_foreign: Decimal
    last_received_unit_price_foreign: Decimal
    version: int


# ============================================================================
# Stock ledger
# ============================================================================

class StockAdjustIn(BaseModel):
    quantity: int
    notes: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def _non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("quantity must not be zero")
        return v


class StockMovementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    shipment_id: Optional[int]
    movement_type: MovementType
    quantity_delta: int
    stock_before: int
    stock_after: int
    avg_cost_local_before: Decimal
    avg_cost_local_after: Decimal
    avg_cost_foreign_before: Decimal
    avg_cost_foreign_after: Decimal
    unit_cost_local: Decimal
    unit_cost_foreign: Decimal
    shipment_ref: Optional[str]
    reverses_movement_id: Optional[int]
    notes: Optional[str]
    created_at: datetime


# ============================================================================
# Tax config
# ============================================================================

class TaxConfigIn(BaseModel):
    name: str = Field(min_length=1)
    import_tax_rate: Decimal = Field(ge=0)
    icms_rate: Decimal = Field(ge=0)


class TaxConfigOut(TaxConfigIn):
    model_config = ConfigDict(from_attributes=True)

    id: int
    is_active: bool
