"""
Order DTOs (Pydantic v2).
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from domain.order.entity import Order

ZERO = Decimal("0")


class CustomerInfo(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    phone: str = Field(min_length=6, max_length=30)


class ShippingAddress(BaseModel):
    recipient_name: str
    phone: str
    address: str
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    area_id: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("postal_code")
    @classmethod
    def _strip_postal(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v


class CheckoutRequest(BaseModel):
    cart_id: int
    customer: CustomerInfo
    address: ShippingAddress
    courier_code: str = Field(min_length=2, max_length=20)
    service_code: str = Field(min_length=1, max_length=50)
    user_id: Optional[int] = None


class CourierSummary(BaseModel):
    courier_code: str
    service_code: str
    service_name: Optional[str] = None
    etd: Optional[str] = None
    cost: Decimal
    fallback: bool = False


class CheckoutResult(BaseModel):
    order_id: int
    order_code: str
    status: str
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    discount: Decimal
    total_amount: Decimal
    courier: CourierSummary


class OrderItemView(BaseModel):
    id: int
    product_id: int
    variant_id: Optional[int] = None
    product_name: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


class OrderView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_code: str
    status: str
    customer_name: str
    customer_email: str
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    discount: Decimal
    total_amount: Decimal
    stock_reserved: bool
    resi: Optional[str] = None
    refund_status: Optional[str] = None
    refund_amount: Decimal = ZERO
    metadata: dict[str, Any] = Field(default_factory=dict)
    items: list[OrderItemView] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, order: Order) -> "OrderView":
        return cls(
            id=order.id,
            order_code=order.order_code,
            status=order.status.value,
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            subtotal=order.subtotal,
            shipping_cost=order.shipping_cost,
            tax=order.tax,
            discount=order.discount,
            total_amount=order.total_amount,
            stock_reserved=order.stock_reserved,
            resi=order.resi,
            refund_status=order.refund_status,
            refund_amount=order.refund_amount,
            metadata=order.metadata.to_dict(),
            items=[
                OrderItemView(
                    id=item.id,
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    subtotal=item.subtotal,
                )
                for item in order.items
            ],
            created_at=order.created_at,
            paid_at=order.paid_at,
            shipped_at=order.shipped_at,
            delivered_at=order.delivered_at,
        )


class ShipOrderRequest(BaseModel):
    resi: Optional[str] = None
