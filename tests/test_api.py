"""HTTP surface: routing, response envelope and error mapping."""
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from conftest import ADMIN_EMAIL, checkout_request, signed_webhook
from main import app

ADMIN_HEADERS = {"X-Admin-Email": ADMIN_EMAIL}


@pytest_asyncio.fixture
async def client(container):
    app.state.container = container
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.state.container = None


async def _checkout(client, seed_cart) -> dict:
    seeded = await seed_cart()
    resp = await client.post("/api/v1/orders/checkout", json=checkout_request(seeded.cart_id).model_dump(mode="json"))
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


@pytest.mark.asyncio
async def test_checkout_and_fetch_order(client, seed_cart):
    order = await _checkout(client, seed_cart)

    assert order["status"] == "PENDING"
    assert Decimal(order["total_amount"]) == Decimal("215000")

    resp = await client.get(f"/api/v1/orders/{order['order_code']}")
    body = resp.json()
    assert resp.status_code == 200
    assert body["code"] == 0
    assert body["data"]["order_code"] == order["order_code"]
    assert resp.headers.get("X-Request-ID")


@pytest.mark.asyncio
async def test_unknown_order_is_404(client):
    resp = await client.get("/api/v1/orders/ZVR-NOPE")

    assert resp.status_code == 404
    assert resp.json()["error"]["type"]


@pytest.mark.asyncio
async def test_webhook_settles_order_and_rejects_bad_signature(client, seed_cart):
    order = await _checkout(client, seed_cart)
    resp = await client.post("/api/v1/payments/charge", json={"order_id": order["order_id"], "payment_method": "bca_va"})
    assert resp.status_code == 200, resp.text
    charge = resp.json()["data"]
    assert charge["va_number"]

    forged = signed_webhook(charge["external_id"], f"{Decimal(charge['amount']):.2f}")
    forged["signature_key"] = "0" * 128
    resp = await client.post("/api/v1/payments/webhook", json=forged)
    assert resp.status_code == 401

    body = signed_webhook(charge["external_id"], f"{Decimal(charge['amount']):.2f}")
    resp = await client.post("/api/v1/payments/webhook", json=body)
    assert resp.status_code == 200
    assert resp.json()["data"]["order_status"] == "PAID"
    assert resp.json()["data"]["changed"] is True


@pytest.mark.asyncio
async def test_webhook_requires_json_with_order_id(client):
    resp = await client.post("/api/v1/payments/webhook", content=b"order_id=1", headers={"Content-Type": "text/plain"})
    assert resp.status_code == 400

    resp = await client.post("/api/v1/payments/webhook", json={"transaction_status": "settlement"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_invalid_transition_maps_to_422(client, flow):
    result = await flow.paid_order()

    resp = await client.post(f"/api/v1/orders/{result.order_code}/cancel", json={"customer_email": "ayu@example.com"})

    assert resp.status_code == 422
    assert resp.json()["code"] != 0


@pytest.mark.asyncio
async def test_admin_routes_require_admin_header(client, flow):
    result = await flow.paid_order()

    resp = await client.post(f"/api/v1/admin/orders/{result.order_id}/pack")
    assert resp.status_code == 401

    resp = await client.post(f"/api/v1/admin/orders/{result.order_id}/pack", headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "PACKING"


@pytest.mark.asyncio
async def test_admin_force_cancel_and_audit(client, flow):
    result = await flow.paid_order()

    resp = await client.post(
        "/api/v1/admin/actions/force-cancel",
        json={"order_id": result.order_id, "reason": "fraud check failed"},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["success"] is True

    resp = await client.get(f"/api/v1/admin/audit/order/{result.order_id}", headers=ADMIN_HEADERS)
    [audit] = resp.json()["data"]
    assert audit["action_type"] == "FORCE_CANCEL"


@pytest.mark.asyncio
async def test_admin_job_endpoint(client):
    resp = await client.post("/api/v1/admin/jobs/auto_complete/run", headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["data"] == {"job": "auto_complete", "result": 0}

    resp = await client.post("/api/v1/admin/jobs/vacuum/run", headers=ADMIN_HEADERS)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_service_unavailable_without_container():
    app.state.container = None
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        resp = await c.get("/api/v1/orders/ZVR-ANY")
        health = await c.get("/health")

    assert resp.status_code == 503
    assert health.json()["data"] == {"status": "healthy", "sweepers": []}
