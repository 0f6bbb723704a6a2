"""
Admin force-action and reconciliation DTOs.
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from application.dtos.refunds import RefundItemInput, RefundView
from domain.audit.entity import AuditLog
from domain.notification.entity import NotificationLog
from domain.reconciliation.entity import Mismatch
from domain.refund.status import RefundReason, RefundType
from domain.shipment.status import ShipmentStatus


class AdminContext(BaseModel):
    admin_email: str = Field(min_length=3)
    admin_id: Optional[int] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def actor(self) -> str:
        return f"admin:{self.admin_email}"


class AdminActionType(str, Enum):
    FORCE_CANCEL = "FORCE_CANCEL"
    FORCE_REFUND = "FORCE_REFUND"
    FORCE_RESHIP = "FORCE_RESHIP"
    RECONCILE_PAYMENT = "RECONCILE_PAYMENT"


class ReconcileAction(str, Enum):
    MARK_PAID = "MARK_PAID"
    MARK_FAILED = "MARK_FAILED"
    MARK_EXPIRED = "MARK_EXPIRED"
    SYNC_GATEWAY = "SYNC_GATEWAY"


class ForceCancelRequest(BaseModel):
    order_id: int
    reason: str = Field(min_length=1)
    restore_stock: bool = True
    idempotency_key: Optional[str] = Field(default=None, max_length=100)


class ForceRefundRequest(BaseModel):
    order_id: int
    refund_type: RefundType = RefundType.FULL
    reason: RefundReason = RefundReason.ADMIN_DECISION
    reason_detail: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    items: list[RefundItemInput] = Field(default_factory=list)
    skip_gateway: bool = False
    idempotency_key: Optional[str] = Field(default=None, max_length=100)


class ForceReshipRequest(BaseModel):
    order_id: int
    reason: str = Field(min_length=1)
    new_tracking_number: Optional[str] = None
    idempotency_key: Optional[str] = Field(default=None, max_length=100)


class ReconcilePaymentRequest(BaseModel):
    payment_id: int
    action: ReconcileAction
    note: Optional[str] = None
    idempotency_key: Optional[str] = Field(default=None, max_length=100)


class AdminActionResult(BaseModel):
    audit_id: Optional[int] = None
    action_type: str
    success: bool
    state_before: dict[str, Any] = Field(default_factory=dict)
    state_after: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    # True when an earlier result was returned for the same idempotency key
    replayed: bool = False
    # gateway outcome of a force-refund, filled after the audited commit
    refund: Optional[RefundView] = None

    @classmethod
    def from_audit(cls, log: AuditLog, *, replayed: bool = False) -> "AdminActionResult":
        return cls(
            audit_id=log.id,
            action_type=log.action_type,
            success=log.success,
            state_before=log.state_before,
            state_after=log.state_after,
            error_message=log.error_message,
            replayed=replayed,
        )


class ReconciliationReport(BaseModel):
    id: Optional[int] = None
    reconciliation_date: date
    status: str
    total_orders: int
    total_payments: int
    order_counts: dict[str, int]
    payment_counts: dict[str, int]
    mismatch_count: int
    orphan_orders: int
    orphan_payments: int
    stuck_payments: int
    expected_revenue: Decimal
    actual_revenue: Decimal
    revenue_variance: Decimal
    refund_total: Decimal


class MismatchView(BaseModel):
    id: int
    mismatch_type: str
    description: str
    order_id: Optional[int] = None
    order_code: Optional[str] = None
    payment_id: Optional[int] = None
    order_status: Optional[str] = None
    payment_status: Optional[str] = None
    resolved: bool
    resolved_by: Optional[str] = None
    resolution_note: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, mismatch: Mismatch) -> "MismatchView":
        return cls(
            id=mismatch.id,
            mismatch_type=mismatch.mismatch_type.value,
            description=mismatch.description,
            order_id=mismatch.order_id,
            order_code=mismatch.order_code,
            payment_id=mismatch.payment_id,
            order_status=mismatch.order_status,
            payment_status=mismatch.payment_status,
            resolved=mismatch.resolved,
            resolved_by=mismatch.resolved_by,
            resolution_note=mismatch.resolution_note,
            resolved_at=mismatch.resolved_at,
            created_at=mismatch.created_at,
        )


class ResolveMismatchRequest(BaseModel):
    note: str = Field(min_length=1)


class NotificationView(BaseModel):
    id: int
    order_id: int
    event_kind: str
    status: str
    attempts: int
    error: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, log: NotificationLog) -> "NotificationView":
        return cls(
            id=log.id,
            order_id=log.order_id,
            event_kind=log.event_kind.value,
            status=log.status.value,
            attempts=log.attempts,
            error=log.error,
            sent_at=log.sent_at,
            created_at=log.created_at,
        )


class TransitionShipmentRequest(BaseModel):
    target: ShipmentStatus
    reason: Optional[str] = None


class SchedulePickupRequest(BaseModel):
    deadline: Optional[datetime] = None


class CompleteRefundRequest(BaseModel):
    note: Optional[str] = None
