"""
Order lifecycle error codes (7xxxx).

Grouped by error kind so the HTTP layer can map a whole range at once:
71xxx validation, 72xxx not found, 73xxx conflict, 74xxx gateway.
"""
from __future__ import annotations

from enum import IntEnum


class OrderCode(IntEnum):
    # Validation (71xxx)
    INVALID_TRANSITION = 71001
    INSUFFICIENT_STOCK = 71002
    INVALID_ADDRESS = 71003
    REFUND_EXCEEDS_BALANCE = 71004
    INVALID_RESI_FORMAT = 71005
    CART_EMPTY = 71006
    INVALID_PAYMENT_TYPE = 71007
    REFUND_NOT_ALLOWED = 71008
    RESHIP_LIMIT_REACHED = 71009

    # Not found (72xxx)
    ORDER_NOT_FOUND = 72001
    PAYMENT_NOT_FOUND = 72002
    REFUND_NOT_FOUND = 72003
    SHIPMENT_NOT_FOUND = 72004
    MISMATCH_NOT_FOUND = 72005
    NOTIFICATION_NOT_FOUND = 72006

    # Conflict (73xxx)
    PAYMENT_ALREADY_FINAL = 73001
    ORDER_ALREADY_FINAL = 73002
    RESI_LOCKED = 73003
    IDEMPOTENCY_CONFLICT = 73004
    PAYMENT_EXPIRED = 73005
    MISMATCH_ALREADY_RESOLVED = 73006
    NOTIFICATION_NOT_FAILED = 73007
    ORDER_CODE_CONFLICT = 73008

    # Gateway (74xxx)
    GATEWAY_TRANSIENT = 74001
    GATEWAY_PERMANENT = 74002
    INVALID_SIGNATURE = 74003
    MANUAL_REFUND_REQUIRED = 74004


def is_in_range(code: int, start: int, end: int) -> bool:
    return start <= int(code) < end
