"""
Business logic services for Import Hub.
"""
from import_hub.services.allocation import allocate, compute_totals
from import_hub.services.ledger import receive, weighted_average
from import_hub.services.reversal import reverse
from import_hub.services.status import TransitionEffect, classify_transition

__all__ = [
    "allocate",
    "compute_totals",
    "receive",
    "weighted_average",
    "reverse",
    "TransitionEffect",
    "classify_transition",
]
