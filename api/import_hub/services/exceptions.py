# import_hub/services/exceptions.py
"""Errors raised by the shipment services; routers map them to HTTP codes."""
from __future__ import annotations


class ImportHubError(Exception):
    """Base class for domain errors."""


class ShipmentNotFound(ImportHubError, LookupError):
    def __init__(self, shipment_id: int):
        self.shipment_id = shipment_id
        super().__init__(f"Shipment {shipment_id} not found")


class ShipmentItemNotFound(ImportHubError, LookupError):
    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__(f"Shipment item {item_id} not found")


class ProductNotFound(ImportHubError, LookupError):
    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class SupplierNotFound(ImportHubError, LookupError):
    def __init__(self, supplier_id: int):
        self.supplier_id = supplier_id
        super().__init__(f"Supplier {supplier_id} not found")


class ShipmentDeliveredError(ImportHubError):
    """Raised when editing a shipment whose stock has already been received."""

    def __init__(self, shipment_id: int, action: str = "edit"):
        self.shipment_id = shipment_id
        self.action = action
        super().__init__(
            f"Cannot {action} shipment {shipment_id}: it is delivered and its items are "
            f"already in stock. Change the status first."
        )


class InvalidShipment(ImportHubError, ValueError):
    """Raised when shipment data fails validation."""
