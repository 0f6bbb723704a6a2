"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from application.dtos.payments import (
    ChargeRequest,
    ChargeResult,
    GatewayRefundRequest,
    GatewayRefundResult,
    GatewayStatus,
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the payment provider.

    Errors surface as GatewayTransientException (timeout, 5xx, 418) or
    GatewayPermanentException / InvalidPaymentTypeException.
    """

    provider: str

    async def charge(self, req: ChargeRequest) -> ChargeResult: ...

    async def get_status(self, external_id: str) -> GatewayStatus: ...

    async def refund(self, external_id: str, req: GatewayRefundRequest) -> GatewayRefundResult: ...
