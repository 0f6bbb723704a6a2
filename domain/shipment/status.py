"""
Shipment state machine.

Two layers: the transition table says what is legal at all, the privileged
table says which of those moves only an admin (or the system monitor) may
make. Tracking updates never get privileged moves.
"""
from __future__ import annotations

from enum import Enum


class ShipmentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PICKUP_SCHEDULED = "PICKUP_SCHEDULED"
    PICKUP_FAILED = "PICKUP_FAILED"
    SHIPPED = "SHIPPED"
    IN_TRANSIT = "IN_TRANSIT"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    HELD_AT_WAREHOUSE = "HELD_AT_WAREHOUSE"
    INVESTIGATION = "INVESTIGATION"
    LOST = "LOST"
    RETURNED_TO_SENDER = "RETURNED_TO_SENDER"
    REPLACED = "REPLACED"
    CANCELLED = "CANCELLED"

    @property
    def is_final(self) -> bool:
        return self in (ShipmentStatus.DELIVERED, ShipmentStatus.CANCELLED, ShipmentStatus.REPLACED)

    @property
    def is_problematic(self) -> bool:
        return self in PROBLEM_STATUSES

    @property
    def requires_action(self) -> bool:
        return self in (
            ShipmentStatus.PICKUP_FAILED,
            ShipmentStatus.DELIVERY_FAILED,
            ShipmentStatus.INVESTIGATION,
            ShipmentStatus.LOST,
            ShipmentStatus.RETURNED_TO_SENDER,
        )

    @property
    def is_trackable(self) -> bool:
        return self in TRACKABLE_STATUSES

    @property
    def can_reship(self) -> bool:
        return self in (ShipmentStatus.LOST, ShipmentStatus.RETURNED_TO_SENDER, ShipmentStatus.INVESTIGATION)


class TransitionActor(str, Enum):
    ADMIN = "admin"
    SYSTEM = "system"
    TRACKING = "tracking"
    # Order-level cascade (payment received, order cancelled)
    CASCADE = "cascade"

    @property
    def is_privileged(self) -> bool:
        return self in (TransitionActor.ADMIN, TransitionActor.SYSTEM)


PROBLEM_STATUSES = frozenset({
    ShipmentStatus.PICKUP_FAILED,
    ShipmentStatus.DELIVERY_FAILED,
    ShipmentStatus.HELD_AT_WAREHOUSE,
    ShipmentStatus.INVESTIGATION,
    ShipmentStatus.LOST,
    ShipmentStatus.RETURNED_TO_SENDER,
})

TRACKABLE_STATUSES = frozenset({
    ShipmentStatus.SHIPPED,
    ShipmentStatus.IN_TRANSIT,
    ShipmentStatus.OUT_FOR_DELIVERY,
})

_S = ShipmentStatus

SHIPMENT_TRANSITIONS: dict[ShipmentStatus, frozenset[ShipmentStatus]] = {
    _S.PENDING: frozenset({_S.PROCESSING, _S.CANCELLED}),
    _S.PROCESSING: frozenset({_S.PICKUP_SCHEDULED, _S.SHIPPED, _S.CANCELLED}),
    _S.PICKUP_SCHEDULED: frozenset({_S.SHIPPED, _S.PICKUP_FAILED, _S.CANCELLED}),
    _S.PICKUP_FAILED: frozenset({_S.PICKUP_SCHEDULED, _S.CANCELLED}),
    _S.SHIPPED: frozenset({_S.IN_TRANSIT, _S.DELIVERED, _S.LOST, _S.INVESTIGATION}),
    _S.IN_TRANSIT: frozenset({
        _S.OUT_FOR_DELIVERY,
        _S.DELIVERED,
        _S.HELD_AT_WAREHOUSE,
        _S.RETURNED_TO_SENDER,
        _S.LOST,
        _S.INVESTIGATION,
    }),
    _S.OUT_FOR_DELIVERY: frozenset({_S.DELIVERED, _S.DELIVERY_FAILED, _S.HELD_AT_WAREHOUSE}),
    _S.DELIVERY_FAILED: frozenset({_S.OUT_FOR_DELIVERY, _S.HELD_AT_WAREHOUSE, _S.RETURNED_TO_SENDER}),
    _S.HELD_AT_WAREHOUSE: frozenset({_S.OUT_FOR_DELIVERY, _S.RETURNED_TO_SENDER, _S.DELIVERED}),
    _S.RETURNED_TO_SENDER: frozenset({_S.REPLACED, _S.CANCELLED}),
    _S.INVESTIGATION: frozenset({_S.LOST, _S.DELIVERED, _S.IN_TRANSIT, _S.REPLACED}),
    _S.LOST: frozenset({_S.REPLACED}),
    _S.DELIVERED: frozenset({_S.INVESTIGATION}),
    _S.CANCELLED: frozenset({_S.PROCESSING}),
}

PRIVILEGED_TRANSITIONS: dict[ShipmentStatus, frozenset[ShipmentStatus]] = {
    _S.PENDING: frozenset({_S.CANCELLED}),
    _S.PROCESSING: frozenset({_S.CANCELLED}),
    _S.PICKUP_SCHEDULED: frozenset({_S.CANCELLED}),
    _S.PICKUP_FAILED: frozenset({_S.CANCELLED}),
    _S.SHIPPED: frozenset({_S.LOST, _S.INVESTIGATION}),
    _S.IN_TRANSIT: frozenset({_S.LOST, _S.INVESTIGATION}),
    _S.RETURNED_TO_SENDER: SHIPMENT_TRANSITIONS[_S.RETURNED_TO_SENDER],
    _S.INVESTIGATION: SHIPMENT_TRANSITIONS[_S.INVESTIGATION],
    _S.LOST: SHIPMENT_TRANSITIONS[_S.LOST],
    _S.DELIVERED: SHIPMENT_TRANSITIONS[_S.DELIVERED],
    _S.CANCELLED: SHIPMENT_TRANSITIONS[_S.CANCELLED],
}


def can_transition(current: ShipmentStatus, target: ShipmentStatus) -> bool:
    return target in SHIPMENT_TRANSITIONS.get(current, frozenset())


def requires_privilege(current: ShipmentStatus, target: ShipmentStatus) -> bool:
    return target in PRIVILEGED_TRANSITIONS.get(current, frozenset())


def is_allowed_for(current: ShipmentStatus, target: ShipmentStatus, actor: TransitionActor) -> bool:
    """Legal move that `actor` is permitted to make.

    Order cancellation cascades may cancel a not-yet-shipped shipment without
    admin rights; every other privileged move needs an admin or the monitor.
    """
    if not can_transition(current, target):
        return False
    if not requires_privilege(current, target):
        return True
    if actor.is_privileged:
        return True
    return actor is TransitionActor.CASCADE and target is ShipmentStatus.CANCELLED
