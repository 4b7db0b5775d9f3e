# import_hub/routers/suppliers.py
from __future__ import annotations
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from import_hub.database import get_session
from import_hub.models import SupplierIn, SupplierOut
from import_hub.routers.errors import http_errors
from import_hub.services import catalog

router = APIRouter(prefix="/suppliers", tags=["Suppliers"])


@router.get("", response_model=List[SupplierOut])
async def list_suppliers(db: AsyncSession = Depends(get_session)):
    return [SupplierOut.model_validate(s) for s in await catalog.list_suppliers(db)]


@router.post("", response_model=SupplierOut)
async def create_supplier(
    request: SupplierIn,
    db: AsyncSession = Depends(get_session),
):
    supplier = await catalog.create_supplier(db, request)
    return SupplierOut.model_validate(supplier)


@router.get("/{supplier_id}", response_model=SupplierOut)
async def get_supplier(
    supplier_id: int,
    db: AsyncSession = Depends(get_session),
):
    with http_errors():
        supplier = await catalog.get_supplier(db, supplier_id)
    return SupplierOut.model_validate(supplier)
