import base64
import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from application.dtos.payments import ChargeCustomer, ChargeRequest, GatewayRefundRequest
from application.dtos.shipping import RateQuery, ShippingItem
from domain.common.exceptions import (
    GatewayRejectedException,
    GatewayTimeoutException,
    GatewayTransientException,
    InvalidPaymentTypeException,
)
from domain.notification.entity import EventKind, NotificationLog
from domain.payment.status import PaymentMethod
from infrastructure.external.notifications.transports import WebhookTransport
from infrastructure.external.payments.midtrans_client import MidtransClient
from infrastructure.external.shipping.biteship_client import BiteshipClient

NO_WAIT = {"max": 1, "base": 0}


def _midtrans(handler) -> MidtransClient:
    return MidtransClient("SB-Mid-server-abc", retry=NO_WAIT, transport=httpx.MockTransport(handler))


def _charge_request(method=PaymentMethod.VA_BCA) -> ChargeRequest:
    return ChargeRequest(
        external_id="ZVR-20261019-ABCDEFGH-1760864400-a1b2",
        amount=Decimal("215000"),
        method=method,
        customer=ChargeCustomer(name="Ayu", email="ayu@example.com", phone="0812"),
        expiry_minutes=60,
    )


@pytest.mark.asyncio
async def test_midtrans_charge_bank_transfer():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            201,
            json={
                "status_code": "201",
                "transaction_id": "trx-1",
                "transaction_status": "pending",
                "va_numbers": [{"bank": "bca", "va_number": "12345678901"}],
                "expiry_time": "2026-10-20 16:00:00",
            },
        )

    client = _midtrans(handler)
    result = await client.charge(_charge_request())
    await client.aclose()

    assert seen["path"] == "/v2/charge"
    assert seen["auth"] == "Basic " + base64.b64encode(b"SB-Mid-server-abc:").decode()
    assert seen["body"]["payment_type"] == "bank_transfer"
    assert seen["body"]["transaction_details"] == {"order_id": "ZVR-20261019-ABCDEFGH-1760864400-a1b2", "gross_amount": 215000}
    assert result.va_number == "12345678901"
    assert result.bank == "bca"
    # Jakarta time
    assert result.expiry_time == datetime(2026, 10, 20, 9, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_midtrans_rejects_credit_card_before_calling_out():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(InvalidPaymentTypeException):
        await _midtrans(handler).charge(_charge_request(PaymentMethod.CREDIT_CARD))


@pytest.mark.asyncio
async def test_midtrans_error_in_body_is_classified():
    def handler(request):
        return httpx.Response(200, json={"status_code": "404", "status_message": "Transaction doesn't exist."})

    with pytest.raises(GatewayRejectedException) as exc_info:
        await _midtrans(handler).get_status("ZVR-missing")
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_midtrans_server_errors_are_transient_and_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, json={"status_message": "maintenance"})

    with pytest.raises(GatewayTransientException) as exc_info:
        await _midtrans(handler).get_status("ZVR-1")
    assert exc_info.value.status_code == 503
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_transport_errors_are_retried_then_reported_as_timeout():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayTimeoutException):
        await _midtrans(handler).get_status("ZVR-1")
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_midtrans_refund_teapot_maps_to_manual_message():
    def handler(request):
        return httpx.Response(418, json={"status_message": "I'm a teapot"})

    with pytest.raises(GatewayTransientException) as exc_info:
        await _midtrans(handler).refund("ZVR-1", GatewayRefundRequest(refund_key="RFD-1", amount=Decimal("1000")))
    assert exc_info.value.status_code == 418
    assert "manual" in exc_info.value.message


@pytest.mark.asyncio
async def test_midtrans_refund_success():
    def handler(request):
        assert json.loads(request.content) == {"refund_key": "RFD-1", "amount": 50000, "reason": "damaged"}
        return httpx.Response(200, json={"status_code": "200", "refund_chargeback_id": 8812, "transaction_status": "partial_refund"})

    result = await _midtrans(handler).refund(
        "ZVR-1", GatewayRefundRequest(refund_key="RFD-1", amount=Decimal("50000"), reason="damaged")
    )
    assert result.chargeback_id == "8812"
    assert result.status == "partial_refund"


def _biteship(handler) -> BiteshipClient:
    return BiteshipClient("biteship-key", retry=NO_WAIT, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_biteship_rates_prefer_area_id():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(
            200,
            json={
                "success": True,
                "pricing": [
                    {
                        "courier_code": "jne",
                        "courier_name": "JNE",
                        "courier_service_code": "reg",
                        "courier_service_name": "Reguler",
                        "price": 18000,
                        "duration": "2 - 3 days",
                        "type": "standard",
                    }
                ],
            },
        )

    rates = await _biteship(handler).get_rates(
        RateQuery(
            origin_postal_code="40115",
            origin_area_id="IDNP9",
            destination_postal_code="40135",
            couriers=["jne"],
            items=[ShippingItem(name="Shirt", value=Decimal("100000"), quantity=2, weight_grams=500)],
        )
    )

    assert seen["auth"] == "Bearer biteship-key"
    assert seen["body"]["origin_area_id"] == "IDNP9"
    assert "origin_postal_code" not in seen["body"]
    assert seen["body"]["destination_postal_code"] == 40135
    [rate] = rates
    assert (rate.courier_code, rate.service_code, rate.price) == ("jne", "reg", Decimal("18000"))


@pytest.mark.asyncio
async def test_biteship_unsuccessful_body_is_rejected():
    def handler(request):
        return httpx.Response(200, json={"success": False, "error": "No courier available"})

    with pytest.raises(GatewayRejectedException):
        await _biteship(handler).confirm_draft_order("draft-1")


@pytest.mark.asyncio
async def test_biteship_tracking_takes_latest_history_entry():
    def handler(request):
        assert request.url.path == "/v1/trackings/JNE001"
        return httpx.Response(
            200,
            json={
                "success": True,
                "waybill_id": "JNE001",
                "status": "dropping_off",
                "history": [
                    {"status": "picked", "updated_at": "2026-10-18T08:00:00+07:00"},
                    {"status": "dropping_off", "updated_at": "2026-10-19T10:00:00+07:00"},
                ],
            },
        )

    result = await _biteship(handler).track("JNE001")

    assert result.status == "dropping_off"
    assert result.last_update == datetime(2026, 10, 19, 3, 0, tzinfo=timezone.utc)
    assert len(result.history) == 2


@pytest.mark.asyncio
async def test_webhook_transport_raises_on_error_status():
    received = []

    def handler(request):
        received.append(json.loads(request.content))
        return httpx.Response(502)

    transport = WebhookTransport("https://hooks.zavera.id/notify", transport=httpx.MockTransport(handler))
    row = NotificationLog(id=3, order_id=9, event_kind=EventKind.ORDER_SHIPPED, recipient="ayu@example.com", payload={"resi": "JNE001"})

    with pytest.raises(httpx.HTTPStatusError):
        await transport.send(row)
    await transport.aclose()

    assert received == [{"id": 3, "order_id": 9, "event": "OrderShipped", "recipient": "ayu@example.com", "payload": {"resi": "JNE001"}}]
