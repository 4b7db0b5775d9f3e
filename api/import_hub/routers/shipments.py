# import_hub/routers/shipments.py
"""
Shipments Router - importations priced in foreign currency.

Creating or editing a shipment only stores allocated costs; stock moves
when the status enters or leaves ``delivered``.
"""
from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from import_hub.database import get_session
from import_hub.db_models import ShipmentStatus
from import_hub.models import (
    ShipmentCreate, ShipmentItemLinkIn, ShipmentItemOut, ShipmentItemsReplace,
    ShipmentOut, ShipmentStatusIn, ShipmentSummaryOut, StockMovementOut,
)
from import_hub.routers.errors import http_errors
from import_hub.services import shipments as shipment_service
from import_hub.services import stock as stock_service

router = APIRouter(prefix="/shipments", tags=["Shipments"])


@router.post("", response_model=ShipmentOut)
async def create_shipment(
    request: ShipmentCreate,
    db: AsyncSession = Depends(get_session),
):
    """Create a shipment; item landed costs are allocated and stored."""
    with http_errors():
        shipment = await shipment_service.create_shipment(db, request)
    return ShipmentOut.model_validate(shipment)


@router.get("", response_model=List[ShipmentSummaryOut])
async def list_shipments(
    status: Optional[ShipmentStatus] = None,
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
):
    shipments = await shipment_service.list_shipments(db, status=status, limit=limit)
    return [ShipmentSummaryOut.model_validate(s) for s in shipments]


@router.get("/{shipment_id}", response_model=ShipmentOut)
async def get_shipment(
    shipment_id: int,
    db: AsyncSession = Depends(get_session),
):
    with http_errors():
        shipment = await shipment_service.get_shipment(db, shipment_id)
    return ShipmentOut.model_validate(shipment)


@router.post("/{shipment_id}/status", response_model=ShipmentOut)
async def set_shipment_status(
    shipment_id: int,
    request: ShipmentStatusIn,
    db: AsyncSession = Depends(get_session),
):
    """
    Change shipment status.

    Entering ``delivered`` receives every linked item into stock;
    leaving it reverses those receipts.
    """
    with http_errors():
        shipment = await shipment_service.set_shipment_status(
            db, shipment_id, request.status, request.actual_delivery_date
        )
    return ShipmentOut.model_validate(shipment)


@router.put("/{shipment_id}/items", response_model=ShipmentOut)
async def replace_shipment_items(
    shipment_id: int,
    request: ShipmentItemsReplace,
    db: AsyncSession = Depends(get_session),
):
    """Replace all items (and optionally the header). Rejected once delivered."""
    with http_errors():
        shipment = await shipment_service.replace_shipment_items(db, shipment_id, request)
    return ShipmentOut.model_validate(shipment)


@router.post("/items/{item_id}/link", response_model=ShipmentItemOut)
async def link_item_to_product(
    item_id: int,
    request: ShipmentItemLinkIn,
    db: AsyncSession = Depends(get_session),
):
    with http_errors():
        item = await shipment_service.link_item_to_product(db, item_id, request.product_id)
    return ShipmentItemOut.model_validate(item)


@router.delete("/{shipment_id}")
async def delete_shipment(
    shipment_id: int,
    db: AsyncSession = Depends(get_session),
):
    with http_errors():
        await shipment_service.delete_shipment(db, shipment_id)
    return {"shipment_id": shipment_id, "deleted": True}


@router.get("/{shipment_id}/movements", response_model=List[StockMovementOut])
async def get_shipment_movements(
    shipment_id: int,
    db: AsyncSession = Depends(get_session),
):
    with http_errors():
        await shipment_service.get_shipment(db, shipment_id)
    movements = await stock_service.shipment_movements(db, shipment_id)
    return [StockMovementOut.model_validate(m) for m in movements]
