"""
Refund state machine, refund types and reasons.
"""
from __future__ import annotations

from enum import Enum


class RefundStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def counts_against_balance(self) -> bool:
        return self in (RefundStatus.COMPLETED, RefundStatus.PROCESSING)


class RefundType(str, Enum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"
    SHIPPING_ONLY = "SHIPPING_ONLY"
    ITEM_ONLY = "ITEM_ONLY"


class RefundReason(str, Enum):
    CUSTOMER_REQUEST = "CUSTOMER_REQUEST"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    DAMAGED_ITEM = "DAMAGED_ITEM"
    WRONG_ITEM = "WRONG_ITEM"
    LATE_DELIVERY = "LATE_DELIVERY"
    DUPLICATE_ORDER = "DUPLICATE_ORDER"
    FRAUD_SUSPECTED = "FRAUD_SUSPECTED"
    ADMIN_DECISION = "ADMIN_DECISION"
    SHIPPING_FAILED = "SHIPPING_FAILED"
    OTHER = "OTHER"


REFUND_TRANSITIONS: dict[RefundStatus, frozenset[RefundStatus]] = {
    RefundStatus.PENDING: frozenset({RefundStatus.PROCESSING, RefundStatus.COMPLETED, RefundStatus.FAILED}),
    # back to PENDING when the gateway asks for manual processing
    RefundStatus.PROCESSING: frozenset({RefundStatus.COMPLETED, RefundStatus.FAILED, RefundStatus.PENDING}),
    RefundStatus.FAILED: frozenset({RefundStatus.PENDING}),
}


def can_transition(current: RefundStatus, target: RefundStatus) -> bool:
    return target in REFUND_TRANSITIONS.get(current, frozenset())
