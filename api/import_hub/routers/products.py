# import_hub/routers/products.py
from __future__ import annotations
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from import_hub.database import get_session
from import_hub.models import ProductIn, ProductOut, StockAdjustIn, StockMovementOut
from import_hub.routers.errors import http_errors
from import_hub.services import catalog
from import_hub.services import stock as stock_service

router = APIRouter(prefix="/products", tags=["Products"])


@router.post("", response_model=ProductOut)
async def create_product(
    request: ProductIn,
    db: AsyncSession = Depends(get_session),
):
    product = await catalog.create_product(db, request)
    return ProductOut.model_validate(product)


@router.get("/{product_id}", response_model=ProductOut)
async def get_product(
    product_id: int,
    db: AsyncSession = Depends(get_session),
):
    with http_errors():
        product = await catalog.get_product(db, product_id)
    return ProductOut.model_validate(product)


@router.get("/{product_id}/movements", response_model=List[StockMovementOut])
async def get_product_movements(
    product_id: int,
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_session),
):
    """Stock ledger of the product, newest first."""
    with http_errors():
        await catalog.get_product(db, product_id)
    movements = await stock_service.product_movements(db, product_id, limit=limit)
    return [StockMovementOut.model_validate(m) for m in movements]


@router.post("/{product_id}/adjust", response_model=StockMovementOut)
async def adjust_stock(
    product_id: int,
    request: StockAdjustIn,
    db: AsyncSession = Depends(get_session),
):
    """Manual stock correction; average costs are not touched."""
    with http_errors():
        movement = await stock_service.adjust_stock(db, product_id, request.quantity, request.notes)
    return StockMovementOut.model_validate(movement)
