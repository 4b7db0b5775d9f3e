# import_hub/services/stock.py
"""Read access to the stock ledger and manual stock corrections."""
from __future__ import annotations
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from import_hub.db_models import MovementType, Product, StockMovement
from import_hub.services.exceptions import ProductNotFound

logger = logging.getLogger(__name__)


async def product_movements(db: AsyncSession, product_id: int, limit: int = 100) -> List[StockMovement]:
    """Ledger rows of one product, newest first."""
    stmt = (
        select(StockMovement)
        .where(StockMovement.product_id == product_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars())


async def shipment_movements(db: AsyncSession, shipment_id: int) -> List[StockMovement]:
    """Ledger rows written for one shipment, in the order they were written."""
    stmt = (
        select(StockMovement)
        .where(StockMovement.shipment_id == shipment_id)
        .order_by(StockMovement.id)
    )
    result = await db.execute(stmt)
    return list(result.scalars())


async def adjust_stock(
    db: AsyncSession,
    product_id: int,
    quantity: int,
    notes: Optional[str] = None,
    created_by: str = "system",
) -> StockMovement:
    """
    Add (or remove, when negative) stock by hand.

    Averages are left alone: a correction has no purchase cost.
    """
    stmt = (
        select(Product)
        .where(Product.id == product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    product = result.scalar_one_or_none()
    if product is None:
        raise ProductNotFound(product_id)

    stock_before = product.stock_quantity
    product.stock_quantity = stock_before + quantity
    movement = StockMovement(
        product_id=product.id,
        movement_type=MovementType.adjustment,
        quantity_delta=quantity,
        stock_before=stock_before,
        stock_after=product.stock_quantity,
        avg_cost_local_before=product.average_cost_local,
        avg_cost_local_after=product.average_cost_local,
        avg_cost_foreign_before=product.average_cost_foreign,
        avg_cost_foreign_after=product.average_cost_foreign,
        notes=notes,
        created_by=created_by,
    )
    db.add(movement)
    await db.flush()
    logger.info(f"Manual adjustment of product {product.id}: {quantity:+d} ({stock_before}->{product.stock_quantity})")
    return movement
