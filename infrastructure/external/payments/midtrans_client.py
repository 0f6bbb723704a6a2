"""
Midtrans Core API client.

Charges are created with `/v2/charge` (bank transfer VA, Mandiri echannel,
QRIS, GoPay), read back with `/v2/{order_id}/status` and refunded with
`/v2/{order_id}/refund`. Midtrans reports some failures with HTTP 200 and an
error `status_code` in the body, so both are checked.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

import httpx

from application.dtos.payments import (
    ChargeRequest,
    ChargeResult,
    GatewayRefundRequest,
    GatewayRefundResult,
    GatewayStatus,
)
from domain.common.exceptions import (
    GatewayPermanentException,
    GatewayTransientException,
    InvalidPaymentTypeException,
    gateway_error_from_status,
)
from domain.payment.status import PaymentMethod
from infrastructure.external.base import BaseGatewayClient
from shared.codes.payment_codes import REFUND_ERROR_MESSAGES

SANDBOX_URL = "https://api.sandbox.midtrans.com"
PRODUCTION_URL = "https://api.midtrans.com"

# Midtrans 返回的 expiry_time 为雅加达时间
_WIB = timezone(timedelta(hours=7))

_VA_BANKS = {
    PaymentMethod.VA_BCA: "bca",
    PaymentMethod.VA_BNI: "bni",
    PaymentMethod.VA_BRI: "bri",
    PaymentMethod.VA_PERMATA: "permata",
}


def _payment_payload(req: ChargeRequest) -> dict[str, Any]:
    method = req.method
    if method in _VA_BANKS:
        return {"payment_type": "bank_transfer", "bank_transfer": {"bank": _VA_BANKS[method]}}
    if method is PaymentMethod.VA_MANDIRI:
        return {"payment_type": "echannel", "echannel": {"bill_info1": "Payment for", "bill_info2": req.external_id}}
    if method is PaymentMethod.QRIS:
        return {"payment_type": "qris", "qris": {"acquirer": "gopay"}}
    if method is PaymentMethod.GOPAY:
        return {"payment_type": "gopay", "gopay": {"enable_callback": True}}
    # credit card needs client-side tokenisation
    raise InvalidPaymentTypeException(method.value)


def _parse_expiry(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%SZ"):
        try:
            parsed = datetime.strptime(value, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc if fmt.endswith("Z") else _WIB)
        return parsed.astimezone(timezone.utc)
    return None


def _action_url(body: Mapping[str, Any], name: str) -> Optional[str]:
    for action in body.get("actions") or []:
        if action.get("name") == name:
            return action.get("url")
    return None


class MidtransClient(BaseGatewayClient):
    provider = "midtrans"

    def __init__(
        self,
        server_key: str,
        *,
        environment: str = "sandbox",
        timeout: float = 30.0,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._server_key = server_key
        base_url = PRODUCTION_URL if environment == "production" else SANDBOX_URL
        super().__init__(base_url=base_url, timeout=timeout, retry=retry, transport=transport)

    def _auth(self) -> httpx.Auth:
        # server key as username, empty password
        return httpx.BasicAuth(self._server_key, "")

    def _check_body(self, body: Mapping[str, Any], operation: str, ok: tuple[str, ...] = ("200", "201")) -> None:
        code = str(body.get("status_code") or "")
        if not code or code in ok:
            return
        try:
            status_code = int(code)
        except ValueError:
            status_code = 500
        message = str(body.get("status_message") or f"Midtrans status {code}")
        self._log("gateway_body_error", operation=operation, status_code=status_code, message=message)
        raise gateway_error_from_status(self.provider, status_code, message, details={"operation": operation})

    async def charge(self, req: ChargeRequest) -> ChargeResult:
        payload = {
            "transaction_details": {"order_id": req.external_id, "gross_amount": int(req.amount)},
            "customer_details": {
                "first_name": req.customer.name,
                "email": req.customer.email,
                "phone": req.customer.phone,
            },
            "custom_expiry": {"expiry_duration": req.expiry_minutes, "unit": "minute"},
            **_payment_payload(req),
        }
        body = await self._request("POST", "/v2/charge", operation="charge", json=payload)
        self._check_body(body, "charge")

        bank, va_number, qr_url = self._instrument(req.method, body)
        self._log("charge_created", external_id=req.external_id, method=req.method.value, transaction_id=body.get("transaction_id"))
        return ChargeResult(
            transaction_id=body.get("transaction_id"),
            transaction_status=str(body.get("transaction_status") or "pending"),
            bank=bank,
            va_number=va_number,
            qr_url=qr_url,
            expiry_time=_parse_expiry(body.get("expiry_time")),
            raw=body,
        )

    @staticmethod
    def _instrument(method: PaymentMethod, body: Mapping[str, Any]) -> tuple[Optional[str], Optional[str], Optional[str]]:
        """(bank, va_number, qr_url) for the charged method."""
        if method in (PaymentMethod.VA_BCA, PaymentMethod.VA_BNI, PaymentMethod.VA_BRI):
            numbers = body.get("va_numbers") or []
            if numbers:
                return numbers[0].get("bank"), numbers[0].get("va_number"), None
            return _VA_BANKS[method], None, None
        if method is PaymentMethod.VA_PERMATA:
            return "permata", body.get("permata_va_number"), None
        if method is PaymentMethod.VA_MANDIRI:
            biller, key = body.get("biller_code"), body.get("bill_key")
            return "mandiri", f"{biller}{key}" if biller and key else None, None
        qr_url = _action_url(body, "generate-qr-code")
        if method is PaymentMethod.GOPAY:
            return "gopay", _action_url(body, "deeplink-redirect") or qr_url, qr_url
        return "qris", body.get("transaction_id"), qr_url

    async def get_status(self, external_id: str) -> GatewayStatus:
        body = await self._request("GET", f"/v2/{external_id}/status", operation="get_status")
        # 404 in the body: the transaction does not exist (yet)
        self._check_body(body, "get_status", ok=("200", "201", "407"))
        return GatewayStatus(
            transaction_status=str(body.get("transaction_status") or ""),
            transaction_id=body.get("transaction_id"),
            fraud_status=body.get("fraud_status"),
            status_code=str(body.get("status_code") or ""),
            gross_amount=body.get("gross_amount"),
            payment_type=body.get("payment_type"),
            raw=body,
        )

    async def refund(self, external_id: str, req: GatewayRefundRequest) -> GatewayRefundResult:
        payload = {"refund_key": req.refund_key, "amount": int(req.amount), "reason": req.reason or ""}
        try:
            body = await self._request("POST", f"/v2/{external_id}/refund", operation="refund", json=payload)
            self._check_body(body, "refund")
        except (GatewayTransientException, GatewayPermanentException) as exc:
            status_code = exc.status_code
            if status_code in REFUND_ERROR_MESSAGES:
                raise gateway_error_from_status(
                    self.provider,
                    status_code,
                    REFUND_ERROR_MESSAGES[status_code],
                    details={"operation": "refund", "refund_key": req.refund_key},
                ) from exc
            raise
        chargeback = body.get("refund_chargeback_id")
        self._log("refund_accepted", external_id=external_id, refund_key=req.refund_key, chargeback_id=chargeback)
        return GatewayRefundResult(
            chargeback_id=str(chargeback) if chargeback is not None else None,
            status=str(body.get("transaction_status") or "success"),
            raw=body,
        )
