"""
Parcel status enumeration and the lifecycle transition table.

Status flow:
    PENDING -> PICKED_UP (assignment) | CANCELLED (cancel)
    PICKED_UP -> IN_TRANSIT | DELIVERED
    IN_TRANSIT -> DELIVERED | RETURNED
    DELIVERED, CANCELLED, RETURNED are terminal.
"""

import enum
from typing import Dict, FrozenSet


class ParcelStatus(str, enum.Enum):
    """Parcel status enumeration."""
    PENDING = "PENDING"  # Created by sender, waiting for a delivery man
    PICKED_UP = "PICKED_UP"  # Delivery man assigned and holding the parcel
    IN_TRANSIT = "IN_TRANSIT"  # On its way
    DELIVERED = "DELIVERED"  # Delivered to recipient
    CANCELLED = "CANCELLED"  # Cancelled by sender or admin
    RETURNED = "RETURNED"  # Could not be delivered and returned to sender


INITIAL_STATUS = ParcelStatus.PENDING

TERMINAL_STATUSES: FrozenSet[ParcelStatus] = frozenset({
    ParcelStatus.DELIVERED,
    ParcelStatus.CANCELLED,
    ParcelStatus.RETURNED,
})

ALLOWED_TRANSITIONS: Dict[ParcelStatus, FrozenSet[ParcelStatus]] = {
    ParcelStatus.PENDING: frozenset({ParcelStatus.PICKED_UP, ParcelStatus.CANCELLED}),
    ParcelStatus.PICKED_UP: frozenset({ParcelStatus.IN_TRANSIT, ParcelStatus.DELIVERED}),
    ParcelStatus.IN_TRANSIT: frozenset({ParcelStatus.DELIVERED, ParcelStatus.RETURNED}),
    ParcelStatus.DELIVERED: frozenset(),
    ParcelStatus.CANCELLED: frozenset(),
    ParcelStatus.RETURNED: frozenset(),
}

# Targets that only a dedicated operation may reach from PENDING
ASSIGNMENT_TARGET = ParcelStatus.PICKED_UP
CANCELLATION_TARGET = ParcelStatus.CANCELLED


def is_terminal(status: ParcelStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: ParcelStatus, target: ParcelStatus) -> bool:
    """True when `current -> target` is an edge of the transition table."""
    return target in ALLOWED_TRANSITIONS[current]
