"""
Refund DTOs.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from domain.refund.entity import Refund
from domain.refund.status import RefundReason, RefundType


class RefundItemInput(BaseModel):
    order_item_id: int
    quantity: int = Field(gt=0)


class CreateRefundRequest(BaseModel):
    order_id: int
    refund_type: RefundType
    reason: RefundReason = RefundReason.CUSTOMER_REQUEST
    reason_detail: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    items: list[RefundItemInput] = Field(default_factory=list)
    idempotency_key: Optional[str] = Field(default=None, max_length=100)
    requested_by: Optional[str] = None

    @model_validator(mode="after")
    def _check_type_inputs(self):
        if self.refund_type is RefundType.PARTIAL and self.amount is None:
            raise ValueError("amount is required for PARTIAL refunds")
        if self.refund_type is RefundType.ITEM_ONLY and not self.items:
            raise ValueError("items are required for ITEM_ONLY refunds")
        return self


class RefundItemView(BaseModel):
    order_item_id: int
    quantity: int
    price: Decimal
    refund_amount: Decimal
    stock_restored: bool


class RefundView(BaseModel):
    id: int
    refund_code: str
    order_id: int
    payment_id: Optional[int] = None
    refund_type: str
    reason: str
    status: str
    original_amount: Decimal
    refund_amount: Decimal
    shipping_refund: Decimal
    items_refund: Decimal
    gateway_refund_id: Optional[str] = None
    note: Optional[str] = None
    items: list[RefundItemView] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, refund: Refund) -> "RefundView":
        return cls(
            id=refund.id,
            refund_code=refund.refund_code,
            order_id=refund.order_id,
            payment_id=refund.payment_id,
            refund_type=refund.refund_type.value,
            reason=refund.reason.value,
            status=refund.status.value,
            original_amount=refund.original_amount,
            refund_amount=refund.refund_amount,
            shipping_refund=refund.shipping_refund,
            items_refund=refund.items_refund,
            gateway_refund_id=refund.gateway_refund_id,
            note=refund.note,
            items=[
                RefundItemView(
                    order_item_id=item.order_item_id,
                    quantity=item.quantity,
                    price=item.price,
                    refund_amount=item.refund_amount,
                    stock_restored=item.stock_restored,
                )
                for item in refund.items
            ],
            created_at=refund.created_at,
            completed_at=refund.completed_at,
        )
