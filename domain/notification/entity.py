"""
Outbox notification rows.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class NotificationStatus(str, Enum):
    PENDING = "PENDING"
    # claimed by the publisher; never picked up again
    SENDING = "SENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class EventKind(str, Enum):
    ORDER_CREATED = "OrderCreated"
    PAYMENT_SUCCESS = "PaymentSuccess"
    ORDER_SHIPPED = "OrderShipped"
    ORDER_DELIVERED = "OrderDelivered"
    ORDER_CANCELLED = "OrderCancelled"
    ORDER_REFUNDED = "OrderRefunded"


@dataclass
class NotificationLog:
    id: Optional[int]
    order_id: int
    event_kind: EventKind
    recipient: str
    payload: dict[str, Any] = field(default_factory=dict)
    status: NotificationStatus = NotificationStatus.PENDING
    attempts: int = 0
    error: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
