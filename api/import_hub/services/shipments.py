# import_hub/services/shipments.py
"""
Shipment Service - creation, item edits and status changes.

Handles:
- Landed-cost allocation persisted per item at create/edit time
- Receiving stock when a shipment enters ``delivered``
- Reversing that receipt when it leaves ``delivered``
- Rejecting edits to delivered shipments

Nothing here commits. The caller's session scope is the transaction, so a
failure on any item rolls back every product and ledger row of the
operation. Shipment and product rows are read FOR UPDATE (products in id
order) and ``Product.version`` catches writers that bypassed the lock.
"""
from __future__ import annotations
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, exists
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased, selectinload

from import_hub.db_models import (
    MovementType, Product, Shipment, ShipmentItem, ShipmentStatus, StockMovement, Supplier,
)
from import_hub.models import ShipmentCreate, ShipmentHeaderIn, ShipmentItemIn, ShipmentItemsReplace
from import_hub.settings import settings
from import_hub.services import ledger, reversal
from import_hub.services.allocation import (
    ItemAllocation, ItemInput, ShipmentHeader, ShipmentTotals, allocate, quantize_money, quantize_rate, ZERO,
)
from import_hub.services.exceptions import (
    InvalidShipment, ProductNotFound, ShipmentDeliveredError, ShipmentItemNotFound,
    ShipmentNotFound, SupplierNotFound,
)
from import_hub.services.status import TransitionEffect, classify_transition
from import_hub.services.tax_config import get_active_tax_config

logger = logging.getLogger(__name__)


# header metadata copied verbatim from the request
HEADER_FIELDS = (
    "invoice_number", "supplier_id", "transaction_number", "payment_method",
    "shipping_method", "tracking_number", "estimated_delivery", "notes",
)


def _places() -> int:
    return settings.MONEY_DECIMAL_PLACES


def _money(value: Decimal) -> Decimal:
    return quantize_money(value, _places())


# ============================================================================
# Loading & locking
# ============================================================================

async def _load_shipment(db: AsyncSession, shipment_id: int, lock: bool = False) -> Shipment:
    stmt = (
        select(Shipment)
        .options(selectinload(Shipment.items))
        .where(Shipment.id == shipment_id)
    )
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    shipment = result.scalar_one_or_none()
    if shipment is None:
        raise ShipmentNotFound(shipment_id)
    return shipment


async def _lock_products(db: AsyncSession, product_ids: Iterable[int]) -> Dict[int, Product]:
    """Row-lock products in id order so concurrent deliveries cannot deadlock."""
    ids = sorted({pid for pid in product_ids if pid is not None})
    if not ids:
        return {}
    stmt = (
        select(Product)
        .where(Product.id.in_(ids))
        .order_by(Product.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return {p.id: p for p in result.scalars()}


async def _ensure_references(db: AsyncSession, supplier_id: Optional[int], items: List[ShipmentItemIn]) -> None:
    if supplier_id is not None and await db.get(Supplier, supplier_id) is None:
        raise SupplierNotFound(supplier_id)

    wanted = {i.product_id for i in items if i.product_id is not None}
    if not wanted:
        return
    result = await db.execute(select(Product.id).where(Product.id.in_(wanted)))
    missing = wanted - set(result.scalars())
    if missing:
        raise ProductNotFound(min(missing))


# ============================================================================
# Allocation -> rows
# ============================================================================

async def _resolve_rates(
    db: AsyncSession,
    header: ShipmentHeaderIn,
    stored: Optional[Shipment] = None,
) -> Tuple[Decimal, Decimal]:
    """Header rates, else the shipment's own stored rates, else the active tax config."""
    import_rate, icms_rate = header.import_tax_rate, header.icms_rate
    if stored is not None:
        if import_rate is None:
            import_rate = stored.import_tax_rate
        if icms_rate is None:
            icms_rate = stored.icms_rate
    if import_rate is None or icms_rate is None:
        config = await get_active_tax_config(db)
        if import_rate is None:
            import_rate = config.import_tax_rate if config else ZERO
        if icms_rate is None:
            icms_rate = config.icms_rate if config else ZERO
    return Decimal(import_rate), Decimal(icms_rate)


def _run_allocation(header: ShipmentHeader, items: List[ShipmentItemIn]) -> Tuple[ShipmentTotals, List[ItemAllocation]]:
    for item in items:
        if item.quantity <= 0:
            raise InvalidShipment(f"Item '{item.product_name}' has non-positive quantity {item.quantity}")
    if header.exchange_rate <= 0:
        raise InvalidShipment(f"Exchange rate must be positive, got {header.exchange_rate}")
    return allocate(
        header,
        [ItemInput(quantity=i.quantity, unit_price_foreign=i.unit_price_foreign) for i in items],
        absorb_remainder=settings.ALLOCATION_ABSORB_REMAINDER,
        places=_places(),
    )


def _apply_totals(shipment: Shipment, header: ShipmentHeader, totals: ShipmentTotals) -> None:
    shipment.exchange_rate = header.exchange_rate
    shipment.subtotal_foreign = _money(header.subtotal_foreign)
    shipment.freight_foreign = _money(header.freight_foreign)
    shipment.total_foreign = _money(totals.total_foreign)
    shipment.subtotal_local = _money(totals.subtotal_local)
    shipment.freight_local = _money(totals.freight_local)
    shipment.import_tax_rate = header.import_tax_rate
    shipment.icms_rate = header.icms_rate
    shipment.import_tax = _money(totals.import_tax)
    shipment.icms = _money(totals.icms)
    shipment.other_taxes = _money(totals.other_taxes)
    shipment.total_local_cost = _money(totals.total_local_cost)


def _build_items(items: List[ShipmentItemIn], allocations: List[ItemAllocation]) -> List[ShipmentItem]:
    rows = []
    for line_number, (item, alloc) in enumerate(zip(items, allocations), start=1):
        rows.append(ShipmentItem(
            line_number=line_number,
            product_id=item.product_id,
            product_name=item.product_name,
            product_description=item.product_description,
            supplier_product_code=item.supplier_product_code,
            color=item.color,
            size=item.size,
            quantity=item.quantity,
            unit_price_foreign=_money(item.unit_price_foreign),
            item_total_foreign=_money(alloc.item_total_foreign),
            allocation_share=alloc.share.quantize(Decimal("1e-12")),
            allocated_freight_local=_money(alloc.allocated_freight_local),
            allocated_import_tax=_money(alloc.allocated_import_tax),
            allocated_icms=_money(alloc.allocated_icms),
            allocated_other_taxes=_money(alloc.allocated_other_taxes),
            unit_cost_local=_money(alloc.unit_cost_local),
            total_cost_local=_money(alloc.total_cost_local),
        ))
    return rows


def _header_from_input(data: ShipmentHeaderIn, import_rate: Decimal, icms_rate: Decimal) -> ShipmentHeader:
    return ShipmentHeader(
        exchange_rate=quantize_rate(data.exchange_rate),
        subtotal_foreign=data.subtotal_foreign,
        freight_foreign=data.freight_foreign,
        import_tax_rate=import_rate,
        icms_rate=icms_rate,
        other_taxes=data.other_taxes,
    )


# ============================================================================
# Receipt / reversal
# ============================================================================

async def _receive_shipment(db: AsyncSession, shipment: Shipment) -> List[StockMovement]:
    linked = [item for item in shipment.items if item.is_linked]
    skipped = len(shipment.items) - len(linked)
    if skipped:
        logger.debug(f"Shipment {shipment.id}: {skipped} unlinked item(s) skipped on receipt")

    products = await _lock_products(db, (item.product_id for item in linked))
    movements = []
    # Strictly in line order: a product listed twice must see its first update
    for item in linked:
        product = products.get(item.product_id)
        if product is None:
            logger.debug(f"Shipment {shipment.id}: product {item.product_id} is gone, item {item.id} skipped")
            continue
        movement = ledger.receive(product, item, shipment, _places())
        db.add(movement)
        movements.append(movement)
        logger.info(
            f"Received {item.quantity} x product {product.id} from {shipment.reference}: "
            f"stock {movement.stock_before}->{movement.stock_after}, "
            f"avg {movement.avg_cost_local_before}->{movement.avg_cost_local_after}"
        )
    await db.flush()
    return movements


async def _open_receipts(db: AsyncSession, shipment_id: int) -> List[StockMovement]:
    """Receipt rows of the shipment that no reversal points at yet, newest first."""
    compensating = aliased(StockMovement)
    stmt = (
        select(StockMovement)
        .where(
            StockMovement.shipment_id == shipment_id,
            StockMovement.movement_type == MovementType.receipt,
            ~exists().where(compensating.reverses_movement_id == StockMovement.id),
        )
        .order_by(StockMovement.id.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars())


async def _reverse_shipment(db: AsyncSession, shipment: Shipment) -> List[StockMovement]:
    receipts = await _open_receipts(db, shipment.id)
    products = await _lock_products(db, (m.product_id for m in receipts))
    movements = []
    # Newest first, so a product received twice ends on its oldest snapshot
    for receipt in receipts:
        product = products.get(receipt.product_id)
        if product is None:
            continue
        movement = reversal.reverse(product, receipt)
        db.add(movement)
        movements.append(movement)
        logger.info(
            f"Reversed receipt {receipt.id} of product {product.id} ({shipment.reference}): "
            f"stock {movement.stock_before}->{movement.stock_after}, "
            f"avg restored to {movement.avg_cost_local_after}"
        )
    await db.flush()
    return movements


async def _transition(
    db: AsyncSession,
    shipment: Shipment,
    new_status: ShipmentStatus,
    actual_delivery_date: Optional[datetime] = None,
) -> TransitionEffect:
    effect = classify_transition(shipment.status, new_status)
    if effect == TransitionEffect.receive:
        await _receive_shipment(db, shipment)
        if actual_delivery_date is None and shipment.actual_delivery_date is None:
            actual_delivery_date = datetime.now(timezone.utc)
    elif effect == TransitionEffect.reverse:
        await _reverse_shipment(db, shipment)

    if actual_delivery_date is not None:
        shipment.actual_delivery_date = actual_delivery_date
    if effect != TransitionEffect.none or shipment.status != new_status:
        logger.info(f"Shipment {shipment.id}: {shipment.status.value} -> {new_status.value} ({effect.value})")
    shipment.status = new_status
    await db.flush()
    return effect


# ============================================================================
# Public operations
# ============================================================================

async def create_shipment(db: AsyncSession, data: ShipmentCreate) -> Shipment:
    """
    Allocate and persist a shipment with its items.

    Inventory is untouched; ``delivered`` is refused at the request layer,
    so stock only moves through :func:`set_shipment_status`.
    """
    await _ensure_references(db, data.supplier_id, data.items)
    import_rate, icms_rate = await _resolve_rates(db, data)
    header = _header_from_input(data, import_rate, icms_rate)
    totals, allocations = _run_allocation(header, data.items)

    shipment = Shipment(
        status=data.status,
        items=_build_items(data.items, allocations),
        **{field: getattr(data, field) for field in HEADER_FIELDS},
    )
    if data.import_date is not None:
        shipment.import_date = data.import_date
    _apply_totals(shipment, header, totals)
    db.add(shipment)
    await db.flush()
    logger.info(
        f"Created shipment {shipment.id} ({shipment.reference}): {len(shipment.items)} item(s), "
        f"total {shipment.total_local_cost} {settings.LOCAL_CURRENCY}"
    )
    return shipment


async def get_shipment(db: AsyncSession, shipment_id: int) -> Shipment:
    return await _load_shipment(db, shipment_id)


async def list_shipments(
    db: AsyncSession,
    status: Optional[ShipmentStatus] = None,
    limit: int = 50,
) -> List[Shipment]:
    stmt = select(Shipment).order_by(Shipment.import_date.desc(), Shipment.id.desc()).limit(limit)
    if status is not None:
        stmt = stmt.where(Shipment.status == status)
    result = await db.execute(stmt)
    return list(result.scalars())


async def set_shipment_status(
    db: AsyncSession,
    shipment_id: int,
    new_status: ShipmentStatus,
    actual_delivery_date: Optional[datetime] = None,
) -> Shipment:
    """Change status, receiving or reversing stock on entering/leaving ``delivered``."""
    shipment = await _load_shipment(db, shipment_id, lock=True)
    await _transition(db, shipment, ShipmentStatus(new_status), actual_delivery_date)
    return shipment


async def replace_shipment_items(db: AsyncSession, shipment_id: int, data: ShipmentItemsReplace) -> Shipment:
    """
    Replace every item of a not-yet-delivered shipment and re-run allocation.

    Without a new header the stored exchange rate, freight and tax rates
    are reused and the subtotal is recomputed from the new items.
    """
    shipment = await _load_shipment(db, shipment_id, lock=True)
    if shipment.status == ShipmentStatus.delivered:
        logger.warning(f"Rejected item edit on delivered shipment {shipment_id}")
        raise ShipmentDeliveredError(shipment_id)

    if data.header is not None:
        await _ensure_references(db, data.header.supplier_id, data.items)
        import_rate, icms_rate = await _resolve_rates(db, data.header, stored=shipment)
        header = _header_from_input(data.header, import_rate, icms_rate)
        for field in HEADER_FIELDS:
            setattr(shipment, field, getattr(data.header, field))
        if data.header.import_date is not None:
            shipment.import_date = data.header.import_date
    else:
        await _ensure_references(db, None, data.items)
        header = ShipmentHeader(
            exchange_rate=shipment.exchange_rate,
            subtotal_foreign=sum((i.item_total_foreign for i in data.items), ZERO),
            freight_foreign=shipment.freight_foreign,
            import_tax_rate=shipment.import_tax_rate,
            icms_rate=shipment.icms_rate,
            other_taxes=shipment.other_taxes,
        )

    totals, allocations = _run_allocation(header, data.items)
    shipment.items = _build_items(data.items, allocations)
    _apply_totals(shipment, header, totals)

    # Linked products remember where they were last bought
    products = await _lock_products(db, (i.product_id for i in data.items))
    for item in data.items:
        product = products.get(item.product_id)
        if product is None:
            continue
        if shipment.supplier_id is not None:
            product.last_supplier_id = shipment.supplier_id
        if item.supplier_product_code:
            product.supplier_product_code = item.supplier_product_code

    await db.flush()
    logger.info(
        f"Replaced items of shipment {shipment.id}: {len(shipment.items)} item(s), "
        f"total {shipment.total_local_cost} {settings.LOCAL_CURRENCY}"
    )
    return shipment


async def link_item_to_product(db: AsyncSession, item_id: int, product_id: int) -> ShipmentItem:
    item = await db.get(ShipmentItem, item_id)
    if item is None:
        raise ShipmentItemNotFound(item_id)
    shipment = await _load_shipment(db, item.shipment_id, lock=True)
    if shipment.status == ShipmentStatus.delivered:
        logger.warning(f"Rejected relink of item {item_id} on delivered shipment {shipment.id}")
        raise ShipmentDeliveredError(shipment.id, action="relink items of")
    if await db.get(Product, product_id) is None:
        raise ProductNotFound(product_id)

    item.product_id = product_id
    await db.flush()
    return item


async def delete_shipment(db: AsyncSession, shipment_id: int) -> None:
    """Delete a shipment, first reversing its receipt if it is delivered."""
    shipment = await _load_shipment(db, shipment_id, lock=True)
    if shipment.status == ShipmentStatus.delivered:
        await _reverse_shipment(db, shipment)
    await db.delete(shipment)
    await db.flush()
    logger.info(f"Deleted shipment {shipment_id} ({shipment.reference})")
