"""
Shipping aggregator DTOs.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from domain.shipment.entity import Dispute, DisputeType, Shipment


class ShippingItem(BaseModel):
    name: str
    value: Decimal
    quantity: int = Field(gt=0)
    weight_grams: int = Field(gt=0)


class ShippingContact(BaseModel):
    name: str
    phone: str
    address: str
    postal_code: Optional[str] = None
    area_id: Optional[str] = None
    email: Optional[str] = None


class RateQuery(BaseModel):
    origin_postal_code: str
    origin_area_id: Optional[str] = None
    destination_postal_code: Optional[str] = None
    destination_area_id: Optional[str] = None
    couriers: list[str]
    items: list[ShippingItem]


class ShippingRate(BaseModel):
    courier_code: str
    courier_name: Optional[str] = None
    service_code: str
    service_name: Optional[str] = None
    price: Decimal
    duration: Optional[str] = None
    service_type: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class DraftOrderRequest(BaseModel):
    reference_id: str
    origin: ShippingContact
    destination: ShippingContact
    courier_code: str
    service_code: str
    items: list[ShippingItem]


class DraftOrderResult(BaseModel):
    id: str
    status: Optional[str] = None


class ConfirmResult(BaseModel):
    waybill_id: Optional[str] = None
    tracking_id: Optional[str] = None


class TrackingEvent(BaseModel):
    status: str
    note: Optional[str] = None
    updated_at: Optional[datetime] = None


class TrackingResult(BaseModel):
    waybill_id: str
    status: str
    last_update: Optional[datetime] = None
    history: list[TrackingEvent] = Field(default_factory=list)


class ShipmentView(BaseModel):
    id: int
    order_id: int
    status: str
    provider_code: str
    service_code: str
    tracking_number: Optional[str] = None
    pickup_attempts: int = 0
    delivery_attempts: int = 0
    reship_count: int = 0
    days_without_update: int = 0
    tracking_stale: bool = False
    requires_admin_action: bool = False
    admin_action_reason: Optional[str] = None
    is_replacement: bool = False
    original_shipment_id: Optional[int] = None
    replaced_by_shipment_id: Optional[int] = None
    pickup_deadline: Optional[datetime] = None
    last_tracking_update: Optional[datetime] = None

    @classmethod
    def from_entity(cls, shipment: Shipment) -> "ShipmentView":
        return cls(
            id=shipment.id,
            order_id=shipment.order_id,
            status=shipment.status.value,
            provider_code=shipment.provider_code,
            service_code=shipment.service_code,
            tracking_number=shipment.tracking_number,
            pickup_attempts=shipment.pickup_attempts,
            delivery_attempts=shipment.delivery_attempts,
            reship_count=shipment.reship_count,
            days_without_update=shipment.days_without_update,
            tracking_stale=shipment.tracking_stale,
            requires_admin_action=shipment.requires_admin_action,
            admin_action_reason=shipment.admin_action_reason,
            is_replacement=shipment.is_replacement,
            original_shipment_id=shipment.original_shipment_id,
            replaced_by_shipment_id=shipment.replaced_by_shipment_id,
            pickup_deadline=shipment.pickup_deadline,
            last_tracking_update=shipment.last_tracking_update,
        )


class OpenDisputeRequest(BaseModel):
    order_id: int
    dispute_type: DisputeType
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    opened_by: str = "customer"


class DisputeView(BaseModel):
    id: int
    dispute_code: str
    order_id: int
    shipment_id: Optional[int] = None
    dispute_type: str
    status: str
    title: str
    description: str = ""
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, dispute: Dispute) -> "DisputeView":
        return cls(
            id=dispute.id,
            dispute_code=dispute.dispute_code,
            order_id=dispute.order_id,
            shipment_id=dispute.shipment_id,
            dispute_type=dispute.dispute_type.value,
            status=dispute.status.value,
            title=dispute.title,
            description=dispute.description,
            created_at=dispute.created_at,
        )
