# import_hub/services/reversal.py
"""
Reversal of a receipt movement.

Never recomputes an average: the product gets back the ``*_before``
values stored on the receipt, and stock is reduced by the received
quantity, clamped at zero. Exact only when nothing else moved the product
between the receipt and its reversal.
"""
from __future__ import annotations

from import_hub.db_models import MovementType, Product, StockMovement


def reverse(product: Product, movement: StockMovement) -> StockMovement:
    """Restore ``product`` to the state before ``movement`` and return the compensating row."""
    if movement.movement_type != MovementType.receipt:
        raise ValueError(f"Only receipt movements can be reversed, got {movement.movement_type}")
    if product.id != movement.product_id:
        raise ValueError(f"Movement {movement.id} belongs to product {movement.product_id}, not {product.id}")

    stock_before = product.stock_quantity
    stock_after = max(0, stock_before - movement.quantity_delta)

    compensating = StockMovement(
        product_id=product.id,
        shipment_id=movement.shipment_id,
        movement_type=MovementType.reversal,
        quantity_delta=-movement.quantity_delta,
        stock_before=stock_before,
        stock_after=stock_after,
        avg_cost_local_before=product.average_cost_local,
        avg_cost_local_after=movement.avg_cost_local_before,
        avg_cost_foreign_before=product.average_cost_foreign,
        avg_cost_foreign_after=movement.avg_cost_foreign_before,
        unit_cost_local=movement.unit_cost_local,
        unit_cost_foreign=movement.unit_cost_foreign,
        shipment_ref=movement.shipment_ref,
        reverses_movement_id=movement.id,
        notes=f"Receipt reversal - {movement.shipment_ref}",
    )

    product.stock_quantity = stock_after
    product.average_cost_local = movement.avg_cost_local_before
    product.average_cost_foreign = movement.avg_cost_foreign_before
    return compensating
