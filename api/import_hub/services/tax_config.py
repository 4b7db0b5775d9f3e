# import_hub/services/tax_config.py
"""Default import tax / ICMS rates for shipments that do not state their own."""
from __future__ import annotations
import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from import_hub.db_models import TaxConfig
from import_hub.models import TaxConfigIn

logger = logging.getLogger(__name__)


async def get_active_tax_config(db: AsyncSession) -> Optional[TaxConfig]:
    stmt = (
        select(TaxConfig)
        .where(TaxConfig.is_active == True)
        .order_by(TaxConfig.id.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def set_active_tax_config(db: AsyncSession, data: TaxConfigIn) -> TaxConfig:
    """Store a new configuration and make it the only active one."""
    await db.execute(
        update(TaxConfig)
        .where(TaxConfig.is_active == True)
        .values(is_active=False)
    )
    config = TaxConfig(**data.model_dump(), is_active=True)
    db.add(config)
    await db.flush()
    logger.info(
        f"Tax config '{config.name}' active: import {config.import_tax_rate}%, ICMS {config.icms_rate}%"
    )
    return config
