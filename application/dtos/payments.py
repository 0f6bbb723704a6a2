"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.types import condecimal

from domain.payment.entity import Payment
from domain.payment.status import PaymentMethod


class ChargeCustomer(BaseModel):
    name: str
    email: str
    phone: str = ""


class ChargeRequest(BaseModel):
    external_id: str
    amount: condecimal(gt=0)  # type: ignore[valid-type]
    method: PaymentMethod
    customer: ChargeCustomer
    expiry_minutes: int = Field(default=24 * 60, gt=0)


class ChargeResult(BaseModel):
    transaction_id: Optional[str] = None
    transaction_status: str = "pending"
    bank: Optional[str] = None
    va_number: Optional[str] = None
    qr_url: Optional[str] = None
    expiry_time: Optional[datetime] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class GatewayStatus(BaseModel):
    transaction_status: str
    transaction_id: Optional[str] = None
    fraud_status: Optional[str] = None
    status_code: Optional[str] = None
    gross_amount: Optional[str] = None
    payment_type: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class GatewayRefundRequest(BaseModel):
    refund_key: str
    amount: condecimal(gt=0)  # type: ignore[valid-type]
    reason: Optional[str] = None


class GatewayRefundResult(BaseModel):
    chargeback_id: Optional[str] = None
    status: str = "success"
    raw: dict[str, Any] = Field(default_factory=dict)


class PaymentNotification(BaseModel):
    """Normalised webhook body. String fields are kept exactly as received
    because the signature is computed over them."""

    external_id: str
    status_code: str
    gross_amount: str
    signature_key: str = ""
    transaction_status: str
    transaction_id: Optional[str] = None
    fraud_status: Optional[str] = None
    payment_type: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @field_validator("status_code", "gross_amount", mode="before")
    @classmethod
    def _as_raw_string(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @classmethod
    def from_gateway_payload(cls, body: dict[str, Any]) -> "PaymentNotification":
        return cls(
            external_id=str(body.get("order_id") or ""),
            status_code=body.get("status_code"),
            gross_amount=body.get("gross_amount"),
            signature_key=str(body.get("signature_key") or ""),
            transaction_status=str(body.get("transaction_status") or ""),
            transaction_id=body.get("transaction_id"),
            fraud_status=body.get("fraud_status"),
            payment_type=body.get("payment_type"),
            raw=body,
        )


class CreateChargeRequest(BaseModel):
    order_id: int
    payment_method: PaymentMethod


class PaymentView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    payment_method: str
    bank: Optional[str] = None
    external_id: str
    transaction_id: Optional[str] = None
    amount: Decimal
    status: str
    va_number: Optional[str] = None
    qr_url: Optional[str] = None
    expiry_time: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, payment: Payment) -> "PaymentView":
        return cls(
            id=payment.id,
            order_id=payment.order_id,
            payment_method=payment.payment_method,
            bank=payment.bank,
            external_id=payment.external_id,
            transaction_id=payment.transaction_id,
            amount=payment.amount,
            status=payment.status.value,
            va_number=payment.va_number,
            qr_url=payment.qr_url,
            expiry_time=payment.expiry_time,
            paid_at=payment.paid_at,
            created_at=payment.created_at,
        )


class WebhookResult(BaseModel):
    order_code: str
    payment_id: Optional[int] = None
    payment_status: Optional[str] = None
    order_status: Optional[str] = None
    changed: bool = False
