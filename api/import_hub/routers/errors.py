# import_hub/routers/errors.py
"""Domain errors -> HTTPException, raised from inside the route handlers."""
from __future__ import annotations
import logging
from contextlib import contextmanager

from fastapi import HTTPException

from import_hub.services.exceptions import InvalidShipment, ShipmentDeliveredError

logger = logging.getLogger(__name__)


@contextmanager
def http_errors():
    """
    Usage:
        with http_errors():
            shipment = await shipment_service.get_shipment(db, shipment_id)
    """
    try:
        yield
    except LookupError as e:
        raise HTTPException(404, detail=str(e))
    except ShipmentDeliveredError as e:
        raise HTTPException(409, detail=str(e))
    except InvalidShipment as e:
        logger.info(f"Rejected shipment data: {e}")
        raise HTTPException(422, detail=str(e))
