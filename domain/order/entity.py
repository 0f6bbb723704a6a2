"""
Order aggregate: the order row and its immutable item snapshots.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from domain.common.exceptions import (
    DomainValidationException,
    InvalidTransitionException,
    ResiLockedException,
)
from domain.common.time import ensure_utc, utcnow
from domain.order.metadata import OrderMetadata
from domain.order.status import OrderStatus, can_transition

ZERO = Decimal("0")

# Timestamp column stamped on entry into each status
_STATUS_TIMESTAMPS = {
    OrderStatus.PAID: "paid_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
    OrderStatus.REFUNDED: "refunded_at",
    OrderStatus.EXPIRED: "expired_at",
    OrderStatus.FAILED: "failed_at",
}


@dataclass
class OrderItem:
    id: Optional[int]
    order_id: Optional[int]
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    variant_id: Optional[int] = None
    product_image: Optional[str] = None
    weight_grams: int = 0
    subtotal: Decimal = ZERO

    def __post_init__(self):
        if self.quantity <= 0:
            raise DomainValidationException("Quantity must be positive", field="quantity")
        if self.unit_price < 0:
            raise DomainValidationException("Unit price must not be negative", field="unit_price")
        self.subtotal = self.unit_price * self.quantity


@dataclass
class Order:
    """
    Order aggregate root.

    Business rules:
    1. total_amount = subtotal + shipping_cost + tax - discount
    2. status only changes through `transition_to`
    3. resi is frozen once the order is SHIPPED or later
    """

    id: Optional[int]
    order_code: str
    customer_name: str
    customer_email: str
    customer_phone: str
    subtotal: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    status: OrderStatus = OrderStatus.PENDING
    tax: Decimal = ZERO
    discount: Decimal = ZERO
    user_id: Optional[int] = None
    stock_reserved: bool = False
    resi: Optional[str] = None
    metadata: OrderMetadata = field(default_factory=OrderMetadata)
    refund_status: Optional[str] = None
    refund_amount: Decimal = ZERO
    items: list[OrderItem] = field(default_factory=list)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.metadata, OrderMetadata):
            self.metadata = OrderMetadata(self.metadata)
        for name in ("created_at", "updated_at", *_STATUS_TIMESTAMPS.values()):
            setattr(self, name, ensure_utc(getattr(self, name)))

    @staticmethod
    def compute_total(subtotal: Decimal, shipping_cost: Decimal, tax: Decimal = ZERO, discount: Decimal = ZERO) -> Decimal:
        return subtotal + shipping_cost + tax - discount

    def validate_totals(self) -> None:
        """Check subtotal against the items and total = subtotal + shipping + tax - discount."""
        if self.items:
            items_total = sum((item.subtotal for item in self.items), ZERO)
            if items_total != self.subtotal:
                raise DomainValidationException(
                    f"Subtotal {self.subtotal} does not match items total {items_total}",
                    field="subtotal",
                )
        expected = self.compute_total(self.subtotal, self.shipping_cost, self.tax, self.discount)
        if expected != self.total_amount:
            raise DomainValidationException(
                f"Total {self.total_amount} does not match computed total {expected}",
                field="total_amount",
            )
        if self.total_amount < 0:
            raise DomainValidationException("Total must not be negative", field="total_amount")

    def transition_to(self, target: OrderStatus, *, admin_override: bool = False, now: Optional[datetime] = None) -> bool:
        """Move to `target`. Returns False when already there."""
        if self.status is target:
            return False
        if not can_transition(self.status, target, admin_override=admin_override):
            raise InvalidTransitionException("order", self.status.value, target.value)
        now = now or utcnow()
        self.status = target
        stamp = _STATUS_TIMESTAMPS.get(target)
        if stamp:
            setattr(self, stamp, now)
        self.updated_at = now
        return True

    def assign_resi(self, resi: str) -> bool:
        """Set the tracking number. Returns False when it is unchanged."""
        if self.resi == resi:
            return False
        if self.status.is_resi_locked:
            raise ResiLockedException(self.order_code, self.status.value)
        self.resi = resi
        self.updated_at = utcnow()
        return True

    @property
    def recipient(self) -> str:
        return self.customer_email

    def snapshot(self) -> dict:
        """State map recorded in audit rows."""
        return {
            "id": self.id,
            "order_code": self.order_code,
            "status": self.status.value,
            "total_amount": str(self.total_amount),
            "stock_reserved": self.stock_reserved,
        }

    def age(self, now: Optional[datetime] = None):
        now = now or datetime.now(timezone.utc)
        return now - (self.created_at or now)
