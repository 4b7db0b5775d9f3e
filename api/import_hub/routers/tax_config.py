# import_hub/routers/tax_config.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from import_hub.database import get_session
from import_hub.models import TaxConfigIn, TaxConfigOut
from import_hub.services.tax_config import get_active_tax_config, set_active_tax_config

router = APIRouter(prefix="/tax-config", tags=["Tax config"])


@router.get("", response_model=TaxConfigOut)
async def get_tax_config(db: AsyncSession = Depends(get_session)):
    config = await get_active_tax_config(db)
    if config is None:
        raise HTTPException(404, detail="No active tax configuration")
    return TaxConfigOut.model_validate(config)


@router.put("", response_model=TaxConfigOut)
async def put_tax_config(
    request: TaxConfigIn,
    db: AsyncSession = Depends(get_session),
):
    """Replace the active default rates used by shipments without their own."""
    config = await set_active_tax_config(db, request)
    return TaxConfigOut.model_validate(config)
