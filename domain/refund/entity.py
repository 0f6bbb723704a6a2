"""
Refund aggregate: a refund row and the order lines it covers.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from domain.common.exceptions import DomainValidationException, InvalidTransitionException
from domain.common.time import ensure_utc, utcnow
from domain.refund.status import RefundReason, RefundStatus, RefundType, can_transition

ZERO = Decimal("0")
MANUAL_REFUND_ID = "MANUAL_REFUND"


@dataclass
class RefundItem:
    id: Optional[int]
    refund_id: Optional[int]
    order_item_id: int
    quantity: int
    price: Decimal
    refund_amount: Decimal = ZERO
    product_id: Optional[int] = None
    stock_restored: bool = False

    def __post_init__(self):
        if self.quantity <= 0:
            raise DomainValidationException("Refund quantity must be positive", field="quantity")
        if not self.refund_amount:
            self.refund_amount = self.price * self.quantity


@dataclass
class Refund:
    """
    Business rules:
    1. refund_amount = items_refund + shipping_refund, and > 0
    2. status moves only along the refund transition table
    3. gateway_refund_id is set once the money is out
    """

    id: Optional[int]
    refund_code: str
    order_id: int
    refund_type: RefundType
    reason: RefundReason
    original_amount: Decimal
    refund_amount: Decimal
    shipping_refund: Decimal = ZERO
    items_refund: Decimal = ZERO
    payment_id: Optional[int] = None
    status: RefundStatus = RefundStatus.PENDING
    reason_detail: Optional[str] = None
    idempotency_key: Optional[str] = None
    gateway_refund_id: Optional[str] = None
    gateway_status: Optional[str] = None
    note: Optional[str] = None
    requested_by: Optional[str] = None
    processed_by: Optional[str] = None
    items: list[RefundItem] = field(default_factory=list)
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.refund_amount <= 0:
            raise DomainValidationException("Refund amount must be positive", field="amount")
        if self.items_refund + self.shipping_refund != self.refund_amount:
            raise DomainValidationException(
                f"Refund split {self.items_refund} + {self.shipping_refund} does not add up to {self.refund_amount}",
                field="amount",
            )
        for name in ("processed_at", "completed_at", "created_at", "updated_at"):
            setattr(self, name, ensure_utc(getattr(self, name)))

    def transition_to(self, target: RefundStatus, *, note: Optional[str] = None, now: Optional[datetime] = None) -> bool:
        if self.status is target:
            return False
        if not can_transition(self.status, target):
            raise InvalidTransitionException("refund", self.status.value, target.value)
        now = now or utcnow()
        self.status = target
        if target is RefundStatus.PROCESSING:
            self.processed_at = now
        elif target is RefundStatus.COMPLETED:
            self.completed_at = now
        if note is not None:
            self.note = note
        self.updated_at = now
        return True

    def mark_completed(self, gateway_refund_id: str, *, processed_by: Optional[str] = None) -> bool:
        changed = self.transition_to(RefundStatus.COMPLETED)
        self.gateway_refund_id = gateway_refund_id
        if processed_by:
            self.processed_by = processed_by
        return changed

    @property
    def is_manual(self) -> bool:
        return self.gateway_refund_id == MANUAL_REFUND_ID
