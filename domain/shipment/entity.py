"""
Shipment aggregate and the monitoring records hanging off it
(alerts, courier failure log, customer disputes).
"""
from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import InvalidTransitionException
from domain.common.time import ensure_utc, utcnow
from domain.shipment.status import ShipmentStatus, TransitionActor, is_allowed_for

_STATUS_TIMESTAMPS = {
    ShipmentStatus.SHIPPED: "shipped_at",
    ShipmentStatus.DELIVERED: "delivered_at",
    ShipmentStatus.INVESTIGATION: "investigation_opened_at",
    ShipmentStatus.LOST: "marked_lost_at",
}

_DATETIME_FIELDS = (
    "pickup_deadline",
    "shipped_at",
    "delivered_at",
    "investigation_opened_at",
    "marked_lost_at",
    "last_tracking_update",
    "last_tracking_check",
    "created_at",
    "updated_at",
)


@dataclass
class Shipment:
    id: Optional[int]
    order_id: int
    provider_code: str
    service_code: str
    status: ShipmentStatus = ShipmentStatus.PENDING
    provider_name: Optional[str] = None
    service_name: Optional[str] = None
    cost: Decimal = Decimal("0")
    etd: Optional[str] = None
    weight_grams: int = 0
    tracking_number: Optional[str] = None
    origin: dict[str, Any] = field(default_factory=dict)
    destination: dict[str, Any] = field(default_factory=dict)
    rate_snapshot: dict[str, Any] = field(default_factory=dict)

    pickup_attempts: int = 0
    delivery_attempts: int = 0
    reship_count: int = 0
    days_without_update: int = 0

    requires_admin_action: bool = False
    admin_action_reason: Optional[str] = None
    is_replacement: bool = False
    original_shipment_id: Optional[int] = None
    replaced_by_shipment_id: Optional[int] = None
    tracking_stale: bool = False
    investigation_reason: Optional[str] = None

    pickup_deadline: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    investigation_opened_at: Optional[datetime] = None
    marked_lost_at: Optional[datetime] = None
    last_tracking_update: Optional[datetime] = None
    last_tracking_check: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        for name in _DATETIME_FIELDS:
            setattr(self, name, ensure_utc(getattr(self, name)))

    def transition_to(self, target: ShipmentStatus, *, actor: TransitionActor, now: Optional[datetime] = None) -> bool:
        if self.status is target:
            return False
        if not is_allowed_for(self.status, target, actor):
            raise InvalidTransitionException("shipment", self.status.value, target.value)
        now = now or utcnow()
        self.status = target
        stamp = _STATUS_TIMESTAMPS.get(target)
        if stamp:
            setattr(self, stamp, now)
        self.updated_at = now
        return True

    def flag_for_admin(self, reason: str) -> None:
        self.requires_admin_action = True
        self.admin_action_reason = reason

    def last_activity(self) -> Optional[datetime]:
        candidates = [ts for ts in (self.last_tracking_update, self.shipped_at, self.created_at) if ts is not None]
        return max(candidates) if candidates else None

    def refresh_staleness(self, now: datetime, *, stale_after_days: int) -> int:
        """Recompute days_without_update and the stale flag from the last activity."""
        last = self.last_activity()
        days = (now - last).days if last else 0
        self.days_without_update = max(days, 0)
        self.tracking_stale = self.days_without_update >= stale_after_days
        return self.days_without_update


class AlertLevel(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"
    URGENT = "urgent"


@dataclass
class ShipmentAlert:
    id: Optional[int]
    shipment_id: int
    alert_type: str
    alert_level: AlertLevel
    title: str
    description: str = ""
    auto_action_taken: bool = False
    auto_action_type: Optional[str] = None
    resolved: bool = False
    created_at: Optional[datetime] = None


@dataclass
class CourierFailure:
    id: Optional[int]
    shipment_id: int
    failure_type: str
    failure_reason: str
    courier_code: Optional[str] = None
    created_at: Optional[datetime] = None


class DisputeType(str, Enum):
    LOST_PACKAGE = "LOST_PACKAGE"
    DAMAGED_ITEM = "DAMAGED_ITEM"
    WRONG_ITEM = "WRONG_ITEM"
    MISSING_ITEM = "MISSING_ITEM"
    NOT_DELIVERED = "NOT_DELIVERED"
    FAKE_DELIVERY = "FAKE_DELIVERY"
    OTHER = "OTHER"


class DisputeStatus(str, Enum):
    OPEN = "OPEN"
    INVESTIGATING = "INVESTIGATING"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


@dataclass
class Dispute:
    id: Optional[int]
    dispute_code: str
    order_id: int
    dispute_type: DisputeType
    title: str
    status: DisputeStatus = DisputeStatus.OPEN
    shipment_id: Optional[int] = None
    description: str = ""
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    opened_by: str = "customer"
    created_at: Optional[datetime] = None


def generate_dispute_code(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"DSP-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"
