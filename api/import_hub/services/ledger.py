# import_hub/services/ledger.py
"""
Inventory ledger: applies one received shipment item to its product.

The product's stock and weighted-average costs (local and foreign) are
updated in place and a ``receipt`` movement snapshotting the full
before/after state is returned, unsaved. The caller adds it to the
session, and is responsible for never receiving the same item twice:
there is no dedup key here.
"""
from __future__ import annotations
from decimal import Decimal

from import_hub.db_models import MovementType, Product, Shipment, ShipmentItem, StockMovement
from import_hub.services.allocation import ZERO, quantize_money


def weighted_average(stock_before: int, avg_before: Decimal, quantity: int, unit_cost: Decimal) -> Decimal:
    """(S0*A0 + q*c) / (S0 + q); falls back to the unit cost when nothing is on hand after."""
    total_qty = stock_before + quantity
    if total_qty <= 0:
        return Decimal(unit_cost)
    return (Decimal(stock_before) * Decimal(avg_before) + Decimal(quantity) * Decimal(unit_cost)) / Decimal(total_qty)


def receive(product: Product, item: ShipmentItem, shipment: Shipment, places: int = 4) -> StockMovement:
    """Merge ``item`` into ``product`` and return the receipt movement."""
    stock_before = product.stock_quantity or 0
    avg_local_before = product.average_cost_local if product.average_cost_local is not None else ZERO
    avg_foreign_before = product.average_cost_foreign if product.average_cost_foreign is not None else ZERO

    stock_after = stock_before + item.quantity
    avg_local_after = quantize_money(
        weighted_average(stock_before, avg_local_before, item.quantity, item.unit_cost_local), places
    )
    avg_foreign_after = quantize_money(
        weighted_average(stock_before, avg_foreign_before, item.quantity, item.unit_price_foreign), places
    )

    product.stock_quantity = stock_after
    product.average_cost_local = avg_local_after
    product.average_cost_foreign = avg_foreign_after
    product.last_received_unit_price_foreign = item.unit_price_foreign

    return StockMovement(
        product_id=product.id,
        shipment_id=shipment.id,
        movement_type=MovementType.receipt,
        quantity_delta=item.quantity,
        stock_before=stock_before,
        stock_after=stock_after,
        avg_cost_local_before=avg_local_before,
        avg_cost_local_after=avg_local_after,
        avg_cost_foreign_before=avg_foreign_before,
        avg_cost_foreign_after=avg_foreign_after,
        unit_cost_local=item.unit_cost_local,
        unit_cost_foreign=item.unit_price_foreign,
        shipment_ref=shipment.reference,
        notes=f"Stock receipt - {shipment.reference}",
    )
