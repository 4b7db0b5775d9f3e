from datetime import datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from import_hub.db_models import MovementType, ShipmentStatus
from import_hub.models import ShipmentItemsReplace, TaxConfigIn
from import_hub.services import shipments as service
from import_hub.services.exceptions import (
    ProductNotFound,
    ShipmentDeliveredError,
    ShipmentNotFound,
    SupplierNotFound,
)
from import_hub.services.stock import adjust_stock, product_movements, shipment_movements
from import_hub.services.tax_config import set_active_tax_config


@pytest.fixture
async def products(product_factory):
    product_a = await product_factory(name="Item A")
    product_b = await product_factory(name="Item B", stock=4, avg_local="100", avg_foreign="10")
    return product_a, product_b


@pytest.fixture
async def shipment(db, products, shipment_data):
    product_a, product_b = products
    return await service.create_shipment(db, shipment_data(product_a.id, product_b.id))


def _by_type(movements, movement_type):
    return [m for m in movements if m.movement_type == movement_type]


async def test_create_shipment_persists_allocation(db, shipment):
    # then
    assert shipment.status == ShipmentStatus.pending
    assert shipment.total_foreign == Decimal("120")
    assert shipment.import_tax == Decimal("360")
    assert shipment.icms == Decimal("108")
    assert shipment.total_local_cost == Decimal("1068")
    first, second = shipment.items
    assert first.line_number == 1
    assert first.allocation_share == Decimal("0.8")
    assert first.unit_cost_local == Decimal("854.4")
    assert second.unit_cost_local == Decimal("213.6")
    assert first.total_cost_local + second.total_cost_local == shipment.total_local_cost


async def test_create_shipment_does_not_touch_stock(db, products, shipment):
    product_a, product_b = products

    assert product_a.stock_quantity == 0
    assert product_b.stock_quantity == 4
    assert await shipment_movements(db, shipment.id) == []


async def test_create_shipment_rejects_unknown_product(db, shipment_data):
    with pytest.raises(ProductNotFound):
        await service.create_shipment(db, shipment_data(999))


async def test_create_shipment_rejects_unknown_supplier(db, shipment_data):
    with pytest.raises(SupplierNotFound):
        await service.create_shipment(db, shipment_data(supplier_id=999))


async def test_deliver_receives_every_linked_item(db, products, shipment):
    # given
    product_a, product_b = products

    # when
    await service.set_shipment_status(db, shipment.id, ShipmentStatus.delivered)

    # then
    assert product_a.stock_quantity == 1
    assert product_a.average_cost_local == Decimal("854.4")
    assert product_a.average_cost_foreign == Decimal("80")
    # (4 * 100 + 213.6) / 5
    assert product_b.stock_quantity == 5
    assert product_b.average_cost_local == Decimal("122.72")
    assert product_b.last_received_unit_price_foreign == Decimal("20")

    movements = await shipment_movements(db, shipment.id)
    assert [m.movement_type for m in movements] == [MovementType.receipt, MovementType.receipt]
    assert [m.product_id for m in movements] == [product_a.id, product_b.id]
    assert all(m.shipment_ref == "INV-2024-001" for m in movements)


async def test_redelivering_is_a_noop(db, products, shipment):
    product_a, _ = products
    await service.set_shipment_status(db, shipment.id, ShipmentStatus.delivered)

    await service.set_shipment_status(db, shipment.id, ShipmentStatus.delivered)

    assert product_a.stock_quantity == 1
    assert len(await shipment_movements(db, shipment.id)) == 2


async def test_leaving_delivered_restores_products(db, products, shipment):
    # given
    product_a, product_b = products
    await service.set_shipment_status(db, shipment.id, ShipmentStatus.delivered)

    # when
    await service.set_shipment_status(db, shipment.id, ShipmentStatus.customs)

    # then
    assert product_a.stock_quantity == 0
    assert product_a.average_cost_local == Decimal("0")
    assert product_b.stock_quantity == 4
    assert product_b.average_cost_local == Decimal("100")
    assert product_b.average_cost_foreign == Decimal("10")

    movements = await shipment_movements(db, shipment.id)
    receipts = _by_type(movements, MovementType.receipt)
    reversals = _by_type(movements, MovementType.reversal)
    assert len(reversals) == 2
    assert {r.reverses_movement_id for r in reversals} == {m.id for m in receipts}


async def test_non_delivered_transitions_leave_stock_alone(db, products, shipment):
    product_a, _ = products

    for status in (ShipmentStatus.in_transit, ShipmentStatus.customs, ShipmentStatus.cancelled):
        await service.set_shipment_status(db, shipment.id, status)

    assert product_a.stock_quantity == 0
    assert await shipment_movements(db, shipment.id) == []


async def test_repeated_cycles_reverse_each_receipt_once(db, products, shipment):
    # given
    product_a, product_b = products

    # when
    for status in (
        ShipmentStatus.delivered,
        ShipmentStatus.pending,
        ShipmentStatus.delivered,
        ShipmentStatus.cancelled,
    ):
        await service.set_shipment_status(db, shipment.id, status)

    # then
    assert product_a.stock_quantity == 0
    assert product_b.stock_quantity == 4
    assert product_b.average_cost_local == Decimal("100")

    movements = await shipment_movements(db, shipment.id)
    receipts = _by_type(movements, MovementType.receipt)
    reversals = _by_type(movements, MovementType.reversal)
    assert len(receipts) == 4
    assert len(reversals) == 4
    reversed_ids = [r.reverses_movement_id for r in reversals]
    assert sorted(reversed_ids) == sorted(m.id for m in receipts)


async def test_same_product_twice_in_one_shipment(db, product_factory, shipment_data):
    # given
    product = await product_factory(name="Item A")
    shipment = await service.create_shipment(db, shipment_data(product.id, product.id))

    # when
    await service.set_shipment_status(db, shipment.id, ShipmentStatus.delivered)

    # then - second line sees the first line's average: (854.4 + 213.6) / 2
    assert product.stock_quantity == 2
    assert product.average_cost_local == Decimal("534")
    second = (await shipment_movements(db, shipment.id))[1]
    assert second.avg_cost_local_before == Decimal("854.4")

    # when
    await service.set_shipment_status(db, shipment.id, ShipmentStatus.pending)

    # then
    assert product.stock_quantity == 0
    assert product.average_cost_local == Decimal("0")


async def test_unlinked_items_are_skipped(db, product_factory, shipment_data):
    product = await product_factory(name="Item A")
    shipment = await service.create_shipment(db, shipment_data(product.id, None))

    await service.set_shipment_status(db, shipment.id, ShipmentStatus.delivered)

    movements = await shipment_movements(db, shipment.id)
    assert [m.product_id for m in movements] == [product.id]


async def test_reversal_clamps_after_intervening_sale(db, products, shipment):
    # given
    product_a, _ = products
    await service.set_shipment_status(db, shipment.id, ShipmentStatus.delivered)
    await adjust_stock(db, product_a.id, -1, notes="sold")

    # when
    await service.set_shipment_status(db, shipment.id, ShipmentStatus.pending)

    # then
    assert product_a.stock_quantity == 0


async def test_create_as_delivered_is_refused(products, shipment_data):
    # given
    product_a, _ = products

    # when / then
    with pytest.raises(ValidationError, match="cannot be created as delivered"):
        shipment_data(product_a.id, None, status="delivered")
    assert product_a.stock_quantity == 0


async def test_create_with_other_status_leaves_stock_alone(db, products, shipment_data):
    product_a, _ = products

    shipment = await service.create_shipment(
        db, shipment_data(product_a.id, None, status=ShipmentStatus.in_transit)
    )

    assert shipment.status == ShipmentStatus.in_transit
    assert shipment.actual_delivery_date is None
    assert product_a.stock_quantity == 0
    assert await shipment_movements(db, shipment.id) == []


async def test_delivery_date_defaults_to_now(db, shipment):
    before = datetime.now(timezone.utc)

    await service.set_shipment_status(db, shipment.id, ShipmentStatus.delivered)

    assert shipment.actual_delivery_date >= before


async def test_given_delivery_date_is_kept(db, shipment):
    delivered_on = datetime(2024, 5, 1, tzinfo=timezone.utc)

    await service.set_shipment_status(db, shipment.id, ShipmentStatus.delivered, delivered_on)

    assert shipment.actual_delivery_date == delivered_on


async def test_set_status_of_unknown_shipment(db):
    with pytest.raises(ShipmentNotFound):
        await service.set_shipment_status(db, 12345, ShipmentStatus.delivered)


async def test_replace_items_recomputes_with_stored_header(db, products, shipment):
    # given
    product_a, _ = products
    data = ShipmentItemsReplace.model_validate({
        "items": [
            {"product_id": product_a.id, "product_name": "Item A", "quantity": 2, "unit_price_foreign": "30"},
        ],
    })

    # when
    updated = await service.replace_shipment_items(db, shipment.id, data)

    # then - 80 USD * 5 = 400, + 60% + 18%
    assert updated.subtotal_foreign == Decimal("60")
    assert updated.total_foreign == Decimal("80")
    assert updated.total_local_cost == Decimal("712")
    assert len(updated.items) == 1
    assert updated.items[0].total_cost_local == Decimal("712")
    assert updated.items[0].unit_cost_local == Decimal("356")
    assert product_a.stock_quantity == 0


async def test_replace_items_with_new_header(db, products, shipment, supplier):
    # given
    product_a, _ = products
    data = ShipmentItemsReplace.model_validate({
        "header": {
            "invoice_number": "INV-2024-001-B",
            "supplier_id": supplier.id,
            "exchange_rate": "4",
            "freight_foreign": "0",
            "import_tax_rate": "0",
            "icms_rate": "0",
        },
        "items": [
            {
                "product_id": product_a.id,
                "product_name": "Item A",
                "supplier_product_code": "PL-4411",
                "quantity": 1,
                "unit_price_foreign": "50",
            },
        ],
    })

    # when
    updated = await service.replace_shipment_items(db, shipment.id, data)

    # then
    assert updated.invoice_number == "INV-2024-001-B"
    assert updated.exchange_rate == Decimal("4")
    assert updated.total_local_cost == Decimal("200")
    assert product_a.last_supplier_id == supplier.id
    assert product_a.supplier_product_code == "PL-4411"


async def test_replace_items_rejected_when_delivered(db, products, shipment):
    # given
    product_a, _ = products
    await service.set_shipment_status(db, shipment.id, ShipmentStatus.delivered)
    data = ShipmentItemsReplace.model_validate({
        "items": [{"product_id": product_a.id, "product_name": "Item A", "quantity": 9, "unit_price_foreign": "1"}],
    })

    # when / then
    with pytest.raises(ShipmentDeliveredError):
        await service.replace_shipment_items(db, shipment.id, data)
    assert product_a.stock_quantity == 1
    assert shipment.items[0].quantity == 1


async def test_link_item_then_deliver(db, product_factory, shipment_data):
    # given
    product = await product_factory(name="Item B")
    shipment = await service.create_shipment(db, shipment_data())
    item = shipment.items[1]

    # when
    await service.link_item_to_product(db, item.id, product.id)
    await service.set_shipment_status(db, shipment.id, ShipmentStatus.delivered)

    # then
    assert item.product_id == product.id
    assert product.stock_quantity == 1
    assert product.average_cost_local == Decimal("213.6")


async def test_link_item_rejected_when_delivered(db, products, shipment):
    product_a, _ = products
    await service.set_shipment_status(db, shipment.id, ShipmentStatus.delivered)

    with pytest.raises(ShipmentDeliveredError):
        await service.link_item_to_product(db, shipment.items[0].id, product_a.id)


async def test_delete_delivered_shipment_reverses_first(db, products, shipment):
    # given
    product_a, product_b = products
    await service.set_shipment_status(db, shipment.id, ShipmentStatus.delivered)

    # when
    await service.delete_shipment(db, shipment.id)

    # then
    assert product_a.stock_quantity == 0
    assert product_b.stock_quantity == 4
    assert product_b.average_cost_local == Decimal("100")
    history = await product_movements(db, product_b.id)
    assert [m.movement_type for m in history] == [MovementType.reversal, MovementType.receipt]
    with pytest.raises(ShipmentNotFound):
        await service.get_shipment(db, shipment.id)


async def test_rates_default_to_active_tax_config(db, shipment_data):
    # given
    await set_active_tax_config(db, TaxConfigIn(name="2024", import_tax_rate=Decimal("60"), icms_rate=Decimal("18")))

    # when
    shipment = await service.create_shipment(db, shipment_data(import_tax_rate=None, icms_rate=None))

    # then
    assert shipment.import_tax_rate == Decimal("60")
    assert shipment.icms_rate == Decimal("18")
    assert shipment.total_local_cost == Decimal("1068")


async def test_rates_default_to_zero_without_tax_config(db, shipment_data):
    shipment = await service.create_shipment(db, shipment_data(import_tax_rate=None, icms_rate=None))

    assert shipment.total_local_cost == Decimal("600")


async def test_list_shipments_filters_by_status(db, products, shipment, shipment_data):
    other = await service.create_shipment(db, shipment_data(invoice_number="INV-2024-002"))
    await service.set_shipment_status(db, other.id, ShipmentStatus.in_transit)

    pending = await service.list_shipments(db, status=ShipmentStatus.pending)
    everything = await service.list_shipments(db)

    assert [s.id for s in pending] == [shipment.id]
    assert {s.id for s in everything} == {shipment.id, other.id}


async def test_same_items_edit_keeps_totals_with_long_exchange_rate(db, products, shipment_data):
    # given - more decimals than the rate column keeps
    product_a, _ = products
    shipment = await service.create_shipment(db, shipment_data(
        exchange_rate="5.123456789",
        subtotal_foreign=None,
        items=[{"product_id": product_a.id, "product_name": "Item A", "quantity": 1000, "unit_price_foreign": "9000"}],
    ))
    created_total = shipment.total_local_cost
    created_unit_cost = shipment.items[0].unit_cost_local

    # when
    data = ShipmentItemsReplace.model_validate({
        "items": [{"product_id": product_a.id, "product_name": "Item A", "quantity": 1000, "unit_price_foreign": "9000"}],
    })
    updated = await service.replace_shipment_items(db, shipment.id, data)

    # then
    assert updated.exchange_rate == Decimal("5.123457")
    assert updated.total_local_cost == created_total
    assert updated.items[0].unit_cost_local == created_unit_cost


async def test_edit_header_without_rates_keeps_shipment_rates(db, products, shipment):
    # given - the default rates changed after the shipment was created
    product_a, _ = products
    await set_active_tax_config(db, TaxConfigIn(name="2025", import_tax_rate=Decimal("10"), icms_rate=Decimal("5")))
    data = ShipmentItemsReplace.model_validate({
        "header": {"invoice_number": "INV-2024-001", "exchange_rate": "5", "freight_foreign": "20"},
        "items": [
            {"product_id": product_a.id, "product_name": "Item A", "quantity": 1, "unit_price_foreign": "80"},
            {"product_id": None, "product_name": "Item B", "quantity": 1, "unit_price_foreign": "20"},
        ],
    })

    # when
    updated = await service.replace_shipment_items(db, shipment.id, data)

    # then
    assert updated.import_tax_rate == Decimal("60")
    assert updated.icms_rate == Decimal("18")
    assert updated.total_local_cost == Decimal("1068")


async def test_header_metadata_is_stored(db, shipment_data):
    shipment = await service.create_shipment(
        db, shipment_data(transaction_number="TX-991", payment_method="wire transfer")
    )

    assert shipment.transaction_number == "TX-991"
    assert shipment.payment_method == "wire transfer"
