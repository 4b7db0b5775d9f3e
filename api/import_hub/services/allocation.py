# import_hub/services/allocation.py
"""
Landed-cost allocation.

Turns one supplier invoice priced in foreign currency into a total
local-currency cost (exchange conversion, freight, import tax, ICMS and
other taxes) and spreads that total over the invoice lines in proportion
to each line's share of the foreign subtotal.

Everything here is pure: no session, no ORM objects, no side effects.
The same function runs at shipment creation and on every item edit.
"""
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Sequence, Tuple

ZERO = Decimal("0")
HUNDRED = Decimal("100")
RATE_PLACES = 6


def quantize_money(value: Decimal, places: int = 4) -> Decimal:
    """Round half-up to the storage scale of money columns."""
    return Decimal(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def quantize_rate(value: Decimal) -> Decimal:
    """Exchange rates are stored as NUMERIC(12, 6); allocate with the stored value."""
    return quantize_money(value, RATE_PLACES)


# ============================================================================
# Inputs / Outputs
# ============================================================================

@dataclass(frozen=True)
class ShipmentHeader:
    exchange_rate: Decimal
    subtotal_foreign: Decimal
    freight_foreign: Decimal = ZERO
    import_tax_rate: Decimal = ZERO  # percent
    icms_rate: Decimal = ZERO  # percent
    other_taxes: Decimal = ZERO  # local currency amount


@dataclass(frozen=True)
class ItemInput:
    quantity: int
    unit_price_foreign: Decimal

    @property
    def item_total_foreign(self) -> Decimal:
        return Decimal(self.quantity) * Decimal(self.unit_price_foreign)


@dataclass(frozen=True)
class ShipmentTotals:
    total_foreign: Decimal
    subtotal_local: Decimal
    freight_local: Decimal
    total_before_tax_local: Decimal
    import_tax: Decimal
    icms: Decimal
    other_taxes: Decimal
    total_local_cost: Decimal


@dataclass(frozen=True)
class ItemAllocation:
    item_total_foreign: Decimal
    share: Decimal
    allocated_freight_local: Decimal
    allocated_import_tax: Decimal
    allocated_icms: Decimal
    allocated_other_taxes: Decimal
    total_cost_local: Decimal
    unit_cost_local: Decimal


# ============================================================================
# Computation
# ============================================================================

def compute_totals(header: ShipmentHeader) -> ShipmentTotals:
    """
    Shipment-level totals.

    Order matters for reproducing stored totals: both taxes are levied on
    (subtotal + freight) converted at the shipment exchange rate.
    """
    rate = Decimal(header.exchange_rate)
    total_foreign = header.subtotal_foreign + header.freight_foreign
    subtotal_local = header.subtotal_foreign * rate
    freight_local = header.freight_foreign * rate
    total_before_tax_local = total_foreign * rate

    import_tax = total_before_tax_local * header.import_tax_rate / HUNDRED
    icms = total_before_tax_local * header.icms_rate / HUNDRED
    total_local_cost = total_before_tax_local + import_tax + icms + header.other_taxes

    return ShipmentTotals(
        total_foreign=total_foreign,
        subtotal_local=subtotal_local,
        freight_local=freight_local,
        total_before_tax_local=total_before_tax_local,
        import_tax=import_tax,
        icms=icms,
        other_taxes=Decimal(header.other_taxes),
        total_local_cost=total_local_cost,
    )


def _allocate_item(header: ShipmentHeader, totals: ShipmentTotals, item: ItemInput) -> ItemAllocation:
    item_total = item.item_total_foreign
    quantity = Decimal(item.quantity)

    if header.subtotal_foreign == 0:
        # Freight-only or all-zero invoice: nothing to be proportional to
        total_cost = item_total * header.exchange_rate
        return ItemAllocation(
            item_total_foreign=item_total,
            share=ZERO,
            allocated_freight_local=ZERO,
            allocated_import_tax=ZERO,
            allocated_icms=ZERO,
            allocated_other_taxes=ZERO,
            total_cost_local=total_cost,
            unit_cost_local=total_cost / quantity,
        )

    share = item_total / header.subtotal_foreign
    total_cost = totals.total_local_cost * share
    return ItemAllocation(
        item_total_foreign=item_total,
        share=share,
        allocated_freight_local=totals.freight_local * share,
        allocated_import_tax=totals.import_tax * share,
        allocated_icms=totals.icms * share,
        allocated_other_taxes=totals.other_taxes * share,
        total_cost_local=total_cost,
        unit_cost_local=total_cost / quantity,
    )


def _absorb_remainder(
    totals: ShipmentTotals,
    items: Sequence[ItemInput],
    allocations: List[ItemAllocation],
    places: int,
) -> List[ItemAllocation]:
    """Round item totals and push the residual onto the last shared item."""
    last = max((i for i, a in enumerate(allocations) if a.share > 0), default=None)
    if last is None:
        return allocations

    rounded = [quantize_money(a.total_cost_local, places) for a in allocations]
    residual_target = quantize_money(totals.total_local_cost, places) - sum(
        (r for i, r in enumerate(rounded) if i != last), ZERO
    )

    out = []
    for i, a in enumerate(allocations):
        total_cost = residual_target if i == last else rounded[i]
        out.append(ItemAllocation(
            item_total_foreign=a.item_total_foreign,
            share=a.share,
            allocated_freight_local=a.allocated_freight_local,
            allocated_import_tax=a.allocated_import_tax,
            allocated_icms=a.allocated_icms,
            allocated_other_taxes=a.allocated_other_taxes,
            total_cost_local=total_cost,
            unit_cost_local=total_cost / Decimal(items[i].quantity),
        ))
    return out


def allocate(
    header: ShipmentHeader,
    items: Sequence[ItemInput],
    absorb_remainder: bool = False,
    places: Optional[int] = None,
) -> Tuple[ShipmentTotals, List[ItemAllocation]]:
    """
    Compute shipment totals and each item's proportional landed cost.

    Args:
        header: shipment-level amounts; ``subtotal_foreign`` is trusted to
            equal the sum of item totals (the request layer checks it).
        items: invoice lines in order.
        absorb_remainder: when True, item totals are rounded to ``places``
            and the last item with a non-zero share takes the rounding
            residual so they sum exactly to the rounded shipment total.
        places: money scale used by ``absorb_remainder`` (default 4).

    Returns:
        (totals, allocations) with allocations in the same order as items.
    """
    totals = compute_totals(header)
    allocations = [_allocate_item(header, totals, item) for item in items]
    if absorb_remainder:
        allocations = _absorb_remainder(totals, items, allocations, 4 if places is None else places)
    return totals, allocations
