"""
Biteship shipping aggregator client.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping, Optional

import httpx

from application.dtos.shipping import (
    ConfirmResult,
    DraftOrderRequest,
    DraftOrderResult,
    RateQuery,
    ShippingContact,
    ShippingItem,
    ShippingRate,
    TrackingEvent,
    TrackingResult,
)
from domain.common.exceptions import GatewayRejectedException
from domain.common.time import ensure_utc
from infrastructure.external.base import BaseGatewayClient


def _items(items: list[ShippingItem]) -> list[dict[str, Any]]:
    return [
        {"name": item.name, "value": int(item.value), "weight": item.weight_grams, "quantity": item.quantity}
        for item in items
    ]


def _area(prefix: str, postal_code: Optional[str], area_id: Optional[str]) -> dict[str, Any]:
    # area_id 优先，邮编兜底
    if area_id:
        return {f"{prefix}_area_id": area_id}
    return {f"{prefix}_postal_code": int(postal_code) if postal_code and postal_code.isdigit() else postal_code}


def _contact(prefix: str, contact: ShippingContact) -> dict[str, Any]:
    payload = {
        f"{prefix}_contact_name": contact.name,
        f"{prefix}_contact_phone": contact.phone,
        f"{prefix}_address": contact.address,
        f"{prefix}_postal_code": contact.postal_code,
    }
    if contact.area_id:
        payload[f"{prefix}_area_id"] = contact.area_id
    if contact.email:
        payload[f"{prefix}_contact_email"] = contact.email
    return payload


class BiteshipClient(BaseGatewayClient):
    provider = "biteship"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.biteship.com",
        timeout: float = 30.0,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        super().__init__(base_url=base_url, timeout=timeout, retry=retry, transport=transport)

    def _headers(self) -> dict[str, str]:
        return {**super()._headers(), "Authorization": f"Bearer {self._api_key}"}

    def _ensure_success(self, body: Mapping[str, Any], operation: str) -> None:
        if body.get("success", True) is False:
            raise GatewayRejectedException(
                self.provider,
                200,
                str(body.get("error") or body.get("message") or f"{operation} failed"),
                details={"operation": operation},
            )

    async def get_rates(self, query: RateQuery) -> list[ShippingRate]:
        payload = {
            **_area("origin", query.origin_postal_code, query.origin_area_id),
            **_area("destination", query.destination_postal_code, query.destination_area_id),
            "couriers": ",".join(query.couriers),
            "items": _items(query.items),
        }
        body = await self._request("POST", "/v1/rates/couriers", operation="get_rates", json=payload)
        self._ensure_success(body, "get_rates")
        rates = [
            ShippingRate(
                courier_code=str(entry.get("courier_code") or ""),
                courier_name=entry.get("courier_name"),
                service_code=str(entry.get("courier_service_code") or ""),
                service_name=entry.get("courier_service_name"),
                price=Decimal(str(entry.get("price") or 0)),
                duration=entry.get("duration"),
                service_type=entry.get("type"),
                raw=entry,
            )
            for entry in body.get("pricing") or []
        ]
        self._log("shipping_rates_fetched", couriers=query.couriers, count=len(rates))
        return rates

    async def create_draft_order(self, req: DraftOrderRequest) -> DraftOrderResult:
        payload = {
            **_contact("origin", req.origin),
            **_contact("destination", req.destination),
            "shipper_contact_name": req.origin.name,
            "shipper_contact_phone": req.origin.phone,
            "reference_id": req.reference_id,
            "courier_company": req.courier_code,
            "courier_code": req.courier_code,
            "courier_type": req.service_code,
            "courier_service_code": req.service_code,
            "delivery_type": "now",
            "items": _items(req.items),
        }
        body = await self._request("POST", "/v1/draft_orders", operation="create_draft_order", json=payload)
        self._ensure_success(body, "create_draft_order")
        draft_id = str(body.get("id") or "")
        if not draft_id:
            raise GatewayRejectedException(self.provider, 200, "Draft order response has no id")
        self._log("draft_order_created", reference_id=req.reference_id, draft_order_id=draft_id)
        return DraftOrderResult(id=draft_id, status=body.get("status"))

    async def confirm_draft_order(self, draft_order_id: str) -> ConfirmResult:
        body = await self._request(
            "POST", f"/v1/draft_orders/{draft_order_id}/confirm", operation="confirm_draft_order"
        )
        self._ensure_success(body, "confirm_draft_order")
        courier = body.get("courier") or {}
        result = ConfirmResult(
            waybill_id=body.get("waybill_id") or courier.get("waybill_id"),
            tracking_id=body.get("tracking_id") or courier.get("tracking_id"),
        )
        self._log("draft_order_confirmed", draft_order_id=draft_order_id, waybill_id=result.waybill_id)
        return result

    async def track(self, waybill_id: str) -> TrackingResult:
        body = await self._request("GET", f"/v1/trackings/{waybill_id}", operation="track")
        self._ensure_success(body, "track")
        history = [
            TrackingEvent(status=str(h.get("status") or ""), note=h.get("note"), updated_at=h.get("updated_at"))
            for h in body.get("history") or []
        ]
        stamps = [ensure_utc(h.updated_at) for h in history if h.updated_at is not None]
        return TrackingResult(
            waybill_id=str(body.get("waybill_id") or waybill_id),
            status=str(body.get("status") or ""),
            last_update=max(stamps) if stamps else None,
            history=history,
        )
