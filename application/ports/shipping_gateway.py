"""
Shipping aggregator port.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from application.dtos.shipping import (
    ConfirmResult,
    DraftOrderRequest,
    DraftOrderResult,
    RateQuery,
    ShippingRate,
    TrackingResult,
)


@runtime_checkable
class ShippingGateway(Protocol):
    provider: str

    async def get_rates(self, query: RateQuery) -> list[ShippingRate]: ...

    async def create_draft_order(self, req: DraftOrderRequest) -> DraftOrderResult: ...

    async def confirm_draft_order(self, draft_order_id: str) -> ConfirmResult: ...

    async def track(self, waybill_id: str) -> TrackingResult: ...
