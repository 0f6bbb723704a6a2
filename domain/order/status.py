"""
Order state machine.

`can_transition` is pure and is the single authority the engine consults;
re-entering the current state is reported separately so callers can treat
it as an idempotent no-op.
"""
from __future__ import annotations

from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    PACKING = "PACKING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def requires_stock_restore(self) -> bool:
        return self in (OrderStatus.CANCELLED, OrderStatus.EXPIRED, OrderStatus.FAILED)

    @property
    def can_be_cancelled_by_admin(self) -> bool:
        return self in (OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.PACKING)

    @property
    def can_be_cancelled_by_customer(self) -> bool:
        return self is OrderStatus.PENDING

    @property
    def is_resi_locked(self) -> bool:
        return self in (
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
            OrderStatus.COMPLETED,
            OrderStatus.REFUNDED,
        )

    @property
    def is_paid_or_later(self) -> bool:
        return self in PAID_OR_LATER


TERMINAL_STATUSES = frozenset({
    OrderStatus.COMPLETED,
    OrderStatus.CANCELLED,
    OrderStatus.EXPIRED,
    OrderStatus.FAILED,
    OrderStatus.REFUNDED,
})

PAID_OR_LATER = frozenset({
    OrderStatus.PAID,
    OrderStatus.PACKING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
})

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.PAID,
        OrderStatus.CANCELLED,
        OrderStatus.FAILED,
        OrderStatus.EXPIRED,
    }),
    OrderStatus.PAID: frozenset({OrderStatus.PACKING, OrderStatus.CANCELLED}),
    OrderStatus.PACKING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED, OrderStatus.REFUNDED}),
    OrderStatus.COMPLETED: frozenset({OrderStatus.REFUNDED}),
}

# Only reachable through admin force-actions (payment reconciliation of a
# late settlement). Stock must be re-reserved before the move is allowed.
ADMIN_OVERRIDE_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.EXPIRED: frozenset({OrderStatus.PAID}),
    OrderStatus.CANCELLED: frozenset({OrderStatus.PAID}),
    OrderStatus.FAILED: frozenset({OrderStatus.PAID}),
}


def can_transition(current: OrderStatus, target: OrderStatus, *, admin_override: bool = False) -> bool:
    """Is `current -> target` a legal move? Same-state is not a move."""
    if target in ORDER_TRANSITIONS.get(current, frozenset()):
        return True
    if admin_override:
        return target in ADMIN_OVERRIDE_TRANSITIONS.get(current, frozenset())
    return False


def allowed_targets(current: OrderStatus) -> list[OrderStatus]:
    return sorted(ORDER_TRANSITIONS.get(current, frozenset()), key=lambda s: s.value)
