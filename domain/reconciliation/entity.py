"""
Daily reconciliation results and payment sync audit rows.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

ZERO = Decimal("0")


class MismatchType(str, Enum):
    STATUS_MISMATCH = "STATUS_MISMATCH"
    ORPHAN_ORDER = "ORPHAN_ORDER"
    ORPHAN_PAYMENT = "ORPHAN_PAYMENT"
    STUCK_PAYMENT = "STUCK_PAYMENT"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"


class SyncType(str, Enum):
    WEBHOOK = "webhook"
    MANUAL_CHECK = "manual_check"
    AUTO_RESOLVE = "auto_resolve"
    ADMIN_SYNC = "admin_sync"
    EXPIRY = "expiry"


class SyncStatus(str, Enum):
    SYNCED = "SYNCED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


@dataclass
class Mismatch:
    id: Optional[int]
    mismatch_type: MismatchType
    description: str
    order_id: Optional[int] = None
    order_code: Optional[str] = None
    payment_id: Optional[int] = None
    order_status: Optional[str] = None
    payment_status: Optional[str] = None
    reconciliation_id: Optional[int] = None
    resolved: bool = False
    resolved_by: Optional[str] = None
    resolution_note: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class ReconciliationLog:
    id: Optional[int]
    reconciliation_date: date
    total_orders: int = 0
    total_payments: int = 0
    order_counts: dict[str, int] = field(default_factory=dict)
    payment_counts: dict[str, int] = field(default_factory=dict)
    mismatch_count: int = 0
    orphan_orders: int = 0
    orphan_payments: int = 0
    stuck_payments: int = 0
    expected_revenue: Decimal = ZERO
    actual_revenue: Decimal = ZERO
    revenue_variance: Decimal = ZERO
    refund_total: Decimal = ZERO
    status: str = "OK"
    details: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None


@dataclass
class PaymentSyncLog:
    id: Optional[int]
    payment_id: int
    order_id: int
    sync_type: SyncType
    sync_status: SyncStatus
    gateway_status: Optional[str] = None
    local_payment_status: Optional[str] = None
    local_order_status: Optional[str] = None
    has_mismatch: bool = False
    error_message: Optional[str] = None
    raw_response: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
