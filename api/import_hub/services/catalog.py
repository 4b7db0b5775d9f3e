# import_hub/services/catalog.py
"""Minimal supplier/product records that shipment items link to."""
from __future__ import annotations
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from import_hub.db_models import Product, Supplier
from import_hub.models import ProductIn, SupplierIn
from import_hub.services.exceptions import ProductNotFound, SupplierNotFound


async def create_supplier(db: AsyncSession, data: SupplierIn) -> Supplier:
    supplier = Supplier(**data.model_dump())
    db.add(supplier)
    await db.flush()
    return supplier


async def get_supplier(db: AsyncSession, supplier_id: int) -> Supplier:
    supplier = await db.get(Supplier, supplier_id)
    if supplier is None:
        raise SupplierNotFound(supplier_id)
    return supplier


async def list_suppliers(db: AsyncSession) -> List[Supplier]:
    result = await db.execute(select(Supplier).order_by(Supplier.name))
    return list(result.scalars())


async def create_product(db: AsyncSession, data: ProductIn) -> Product:
    product = Product(**data.model_dump())
    db.add(product)
    await db.flush()
    return product


async def get_product(db: AsyncSession, product_id: int) -> Product:
    product = await db.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return product
