# import_hub/services/status.py
"""Which shipment status changes touch inventory."""
from __future__ import annotations
import enum

from import_hub.db_models import ShipmentStatus


class TransitionEffect(str, enum.Enum):
    receive = "receive"
    reverse = "reverse"
    none = "none"


def classify_transition(current: ShipmentStatus, requested: ShipmentStatus) -> TransitionEffect:
    """
    Any status may move to any other; only entering or leaving
    ``delivered`` has an inventory effect. Re-setting the same status is
    a no-op, so a shipment is never received twice in a row.
    """
    current = ShipmentStatus(current)
    requested = ShipmentStatus(requested)
    if current == requested:
        return TransitionEffect.none
    if requested == ShipmentStatus.delivered:
        return TransitionEffect.receive
    if current == ShipmentStatus.delivered:
        return TransitionEffect.reverse
    return TransitionEffect.none
