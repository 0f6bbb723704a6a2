"""
Payment state machine and gateway status mapping.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from domain.order.status import OrderStatus
from shared.codes.payment_codes import GATEWAY_STATUS_TO_INTERNAL


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

    @property
    def is_final(self) -> bool:
        return self is not PaymentStatus.PENDING


class PaymentMethod(str, Enum):
    VA_BCA = "bca_va"
    VA_BNI = "bni_va"
    VA_BRI = "bri_va"
    VA_PERMATA = "permata_va"
    VA_MANDIRI = "mandiri_va"
    QRIS = "qris"
    GOPAY = "gopay"
    CREDIT_CARD = "credit_card"


# Order status a payment status drives the order into
ORDER_STATUS_FOR_PAYMENT = {
    PaymentStatus.PAID: OrderStatus.PAID,
    PaymentStatus.EXPIRED: OrderStatus.EXPIRED,
    PaymentStatus.CANCELLED: OrderStatus.CANCELLED,
    PaymentStatus.FAILED: OrderStatus.FAILED,
}

# Payment status that follows an order into a stock-restoring state
PAYMENT_STATUS_FOR_ORDER = {
    OrderStatus.EXPIRED: PaymentStatus.EXPIRED,
    OrderStatus.CANCELLED: PaymentStatus.CANCELLED,
    OrderStatus.FAILED: PaymentStatus.FAILED,
}


def can_transition(current: PaymentStatus, target: PaymentStatus, *, admin_override: bool = False) -> bool:
    if current is PaymentStatus.PENDING:
        return target is not PaymentStatus.PENDING
    # late settlement reconciled by an admin
    return admin_override and target is PaymentStatus.PAID and current is not PaymentStatus.PAID


def map_gateway_status(transaction_status: str, fraud_status: Optional[str] = None) -> PaymentStatus:
    """Translate a gateway transaction status into a local payment status.

    A card `capture` that the fraud engine has not accepted stays PENDING.
    Unknown statuses are treated as PENDING so they never finalise a payment.
    """
    status = (transaction_status or "").strip().lower()
    if status == "capture" and fraud_status and fraud_status.lower() != "accept":
        return PaymentStatus.PENDING
    return PaymentStatus(GATEWAY_STATUS_TO_INTERNAL.get(status, "PENDING"))
