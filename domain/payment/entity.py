"""
Payment record: one gateway charge attempt for an order.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException, PaymentAlreadyFinalException
from domain.common.time import ensure_utc, utcnow
from domain.payment.status import PaymentStatus, can_transition


@dataclass
class Payment:
    """
    Business rules:
    1. amount > 0
    2. only PENDING payments change status; every other status is final
    3. the latest non-final record is the active one for an order
    """

    id: Optional[int]
    order_id: int
    payment_method: str
    external_id: str
    amount: Decimal
    status: PaymentStatus = PaymentStatus.PENDING
    bank: Optional[str] = None
    transaction_id: Optional[str] = None
    va_number: Optional[str] = None
    qr_url: Optional[str] = None
    expiry_time: Optional[datetime] = None
    raw_response: dict[str, Any] = field(default_factory=dict)
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise DomainValidationException(f"Payment amount must be positive: {self.amount}", field="amount")
        self.expiry_time = ensure_utc(self.expiry_time)
        self.paid_at = ensure_utc(self.paid_at)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)
        if self.raw_response is None:
            self.raw_response = {}

    @property
    def is_final(self) -> bool:
        return self.status.is_final

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.status is not PaymentStatus.PENDING or self.expiry_time is None:
            return False
        return self.expiry_time < (now or utcnow())

    def apply_status(
        self,
        target: PaymentStatus,
        *,
        transaction_id: Optional[str] = None,
        raw_response: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
        admin_override: bool = False,
    ) -> bool:
        """Move to `target`. Returns False when already there."""
        now = now or utcnow()
        if raw_response:
            self.raw_response = dict(raw_response)
        if transaction_id and not self.transaction_id:
            self.transaction_id = transaction_id
        if target is self.status:
            self.updated_at = now
            return False
        if not can_transition(self.status, target, admin_override=admin_override):
            raise PaymentAlreadyFinalException(self.id or 0, self.status.value)
        self.status = target
        if target is PaymentStatus.PAID:
            self.paid_at = now
        self.updated_at = now
        return True
