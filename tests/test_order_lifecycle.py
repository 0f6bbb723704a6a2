from datetime import timedelta
from decimal import Decimal

import pytest

from application.dtos.payments import PaymentNotification
from conftest import ADMIN_EMAIL, checkout_request, signed_webhook
from domain.common.exceptions import (
    CartEmptyException,
    GatewayTimeoutException,
    InsufficientStockException,
    InvalidAddressException,
    InvalidPaymentTypeException,
    InvalidSignatureException,
    InvalidTransitionException,
    OrderNotFoundException,
)
from domain.common.time import utcnow
from domain.inventory.entity import MovementType
from domain.notification.entity import EventKind
from domain.order.codes import validate_resi_format
from domain.order.status import OrderStatus
from domain.payment.status import PaymentMethod, PaymentStatus
from domain.shipment.status import ShipmentStatus


async def _history(container, entity_type, entity_id):
    async with container.uow_factory(readonly=True) as uow:
        return await uow.status_history_repository.list_for(entity_type, entity_id)


async def _order(container, order_id):
    async with container.uow_factory(readonly=True) as uow:
        return await uow.order_repository.get_by_id(order_id)


async def _product_stock(container, product_id):
    async with container.uow_factory(readonly=True) as uow:
        return (await uow.inventory_repository.get_product(product_id)).stock


async def _shipment(container, order_id):
    async with container.uow_factory(readonly=True) as uow:
        return await uow.shipment_repository.get_current_for_order(order_id)


async def _payments(container, order_id):
    async with container.uow_factory(readonly=True) as uow:
        return await uow.payment_repository.list_for_order(order_id)


async def _notifications(container, order_id):
    return await container.outbox.list_for_order(order_id)


@pytest.mark.asyncio
async def test_checkout_then_settlement_webhook(flow, container):
    result = await flow.checkout(price=Decimal("100000"), quantity=2, stock=10)

    assert result.status == "PENDING"
    assert result.subtotal == Decimal("200000")
    assert result.shipping_cost == Decimal("15000")
    assert result.total_amount == Decimal("215000")
    assert result.courier.fallback is False
    assert await _product_stock(container, flow.seeded.product_id) == 8
    shipment = await _shipment(container, result.order_id)
    assert shipment.status is ShipmentStatus.PENDING

    webhook = await flow.pay(result.order_id)

    assert webhook.changed
    order = await _order(container, result.order_id)
    assert order.status is OrderStatus.PAID
    assert order.paid_at is not None
    [payment] = await _payments(container, result.order_id)
    assert payment.status is PaymentStatus.PAID
    assert (await _shipment(container, result.order_id)).status is ShipmentStatus.PROCESSING
    notifications = await _notifications(container, result.order_id)
    assert [n.event_kind for n in notifications] == [EventKind.PAYMENT_SUCCESS]
    history = await _history(container, "order", result.order_id)
    assert [(h.from_status, h.to_status) for h in history] == [("PENDING", "PAID")]
    # the sale does not touch stock a second time
    assert await _product_stock(container, flow.seeded.product_id) == 8
    async with container.uow_factory(readonly=True) as uow:
        deducts = await uow.inventory_repository.list_movements(order_id=result.order_id, movement_type=MovementType.DEDUCT)
    assert len(deducts) == 1


@pytest.mark.asyncio
async def test_duplicate_webhook_is_a_no_op(flow, container):
    result = await flow.checkout()
    charge = await flow.charge(result.order_id)
    body = signed_webhook(charge.external_id, f"{charge.amount:.2f}")

    first = await container.payments.handle_webhook(PaymentNotification.from_gateway_payload(body))
    second = await container.payments.handle_webhook(PaymentNotification.from_gateway_payload(body))

    assert first.changed and not second.changed
    assert second.payment_status == "PAID"
    assert len(await _history(container, "order", result.order_id)) == 1
    assert len(await _notifications(container, result.order_id)) == 1


@pytest.mark.asyncio
async def test_webhook_with_bad_signature_is_rejected(flow, container):
    result = await flow.checkout()
    charge = await flow.charge(result.order_id)
    body = signed_webhook(charge.external_id, f"{charge.amount:.2f}")
    body["gross_amount"] = "1.00"

    with pytest.raises(InvalidSignatureException):
        await container.payments.handle_webhook(PaymentNotification.from_gateway_payload(body))
    assert (await _order(container, result.order_id)).status is OrderStatus.PENDING


@pytest.mark.asyncio
async def test_webhook_for_unknown_order(container):
    body = signed_webhook("ZVR-20261019-ZZZZZZZZ-1760864400-abcd", "1000.00")
    with pytest.raises(OrderNotFoundException):
        await container.payments.handle_webhook(PaymentNotification.from_gateway_payload(body))


@pytest.mark.asyncio
async def test_payment_expiry_wins_over_late_webhook(flow, container):
    result = await flow.checkout(stock=5, quantity=2)
    charge = await flow.charge(result.order_id)

    later = utcnow() + timedelta(days=2)
    assert await container.payments.expire_payment(charge.id, later)

    body = signed_webhook(charge.external_id, f"{charge.amount:.2f}")
    late = await container.payments.handle_webhook(PaymentNotification.from_gateway_payload(body))

    assert not late.changed
    assert late.payment_status == "EXPIRED"
    order = await _order(container, result.order_id)
    assert order.status is OrderStatus.EXPIRED
    assert not order.stock_reserved
    assert await _product_stock(container, flow.seeded.product_id) == 5
    assert [n.event_kind for n in await _notifications(container, result.order_id)] == []


@pytest.mark.asyncio
async def test_webhook_wins_over_payment_expiry(flow, container):
    result = await flow.checkout(stock=5, quantity=2)
    charge = await flow.charge(result.order_id)
    body = signed_webhook(charge.external_id, f"{charge.amount:.2f}")
    await container.payments.handle_webhook(PaymentNotification.from_gateway_payload(body))

    assert await container.payments.expire_payment(charge.id, utcnow() + timedelta(days=2)) is False

    order = await _order(container, result.order_id)
    assert order.status is OrderStatus.PAID
    assert await _product_stock(container, flow.seeded.product_id) == 3
    assert [n.event_kind for n in await _notifications(container, result.order_id)] == [EventKind.PAYMENT_SUCCESS]


@pytest.mark.asyncio
async def test_customer_cancel_restores_stock_and_cancels_payment(flow, container):
    result = await flow.checkout(stock=4, quantity=3)
    charge = await flow.charge(result.order_id)
    assert await _product_stock(container, flow.seeded.product_id) == 1

    view = await container.orders.cancel_by_customer(result.order_code, "AYU@example.com")

    assert view.status == "CANCELLED"
    assert await _product_stock(container, flow.seeded.product_id) == 4
    [payment] = await _payments(container, result.order_id)
    assert payment.id == charge.id and payment.status is PaymentStatus.CANCELLED
    assert (await _shipment(container, result.order_id)).status is ShipmentStatus.CANCELLED
    assert [n.event_kind for n in await _notifications(container, result.order_id)] == [EventKind.ORDER_CANCELLED]

    # second cancel is a no-op
    again = await container.orders.cancel_by_customer(result.order_code)
    assert again.status == "CANCELLED"
    assert await _product_stock(container, flow.seeded.product_id) == 4


@pytest.mark.asyncio
async def test_customer_cannot_cancel_paid_order_or_someone_elses(flow, container):
    result = await flow.paid_order()
    with pytest.raises(OrderNotFoundException):
        await container.orders.cancel_by_customer(result.order_code, "other@example.com")
    with pytest.raises(InvalidTransitionException):
        await container.orders.cancel_by_customer(result.order_code)


@pytest.mark.asyncio
async def test_order_expiry_sweeper(flow, container):
    result = await flow.checkout(stock=3, quantity=1)

    assert await container.orders.expire_stale_orders(utcnow() + timedelta(hours=1)) == 0
    assert await container.jobs.run("order_expiry", utcnow() + timedelta(hours=25)) == 1

    order = await _order(container, result.order_id)
    assert order.status is OrderStatus.EXPIRED
    assert order.expired_at is not None
    assert await _product_stock(container, flow.seeded.product_id) == 3
    history = await _history(container, "order", result.order_id)
    assert history[-1].actor == "system:order_expiry"


@pytest.mark.asyncio
async def test_payment_expiry_sweeper_expires_order(flow, container):
    result = await flow.checkout()
    await flow.charge(result.order_id)

    assert await container.payments.expire_overdue_payments(utcnow() + timedelta(days=2)) == 1

    [payment] = await _payments(container, result.order_id)
    assert payment.status is PaymentStatus.EXPIRED
    assert (await _order(container, result.order_id)).status is OrderStatus.EXPIRED


@pytest.mark.asyncio
async def test_charge_is_reused_while_pending(flow, container, payment_gateway):
    result = await flow.checkout()
    first = await flow.charge(result.order_id)
    second = await flow.charge(result.order_id)

    assert first.id == second.id
    assert len(payment_gateway.charges) == 1
    assert first.external_id.startswith(result.order_code + "-")
    assert first.va_number == "80777000123456"


@pytest.mark.asyncio
async def test_credit_card_is_not_supported(flow, container):
    result = await flow.checkout()
    with pytest.raises(InvalidPaymentTypeException):
        await container.payments.create_charge(result.order_id, PaymentMethod.CREDIT_CARD)
    with pytest.raises(InvalidPaymentTypeException):
        await container.payments.create_charge(result.order_id, "bitcoin")


@pytest.mark.asyncio
async def test_status_check_applies_gateway_verdict(flow, container, payment_gateway):
    result = await flow.checkout()
    charge = await flow.charge(result.order_id)
    payment_gateway.statuses[charge.external_id] = "settlement"

    view = await container.payments.check_status(charge.id)

    assert view.status == "PAID"
    assert (await _order(container, result.order_id)).status is OrderStatus.PAID


@pytest.mark.asyncio
async def test_stuck_payment_recovery(flow, container, payment_gateway):
    paid = await flow.checkout()
    paid_charge = await flow.charge(paid.order_id)
    pending = await flow.checkout()
    await flow.charge(pending.order_id)
    payment_gateway.statuses[paid_charge.external_id] = "settlement"

    report = await container.payments.recover_stuck_payments(utcnow() + timedelta(hours=3))

    assert report.checked == 2
    assert report.resolved == 1
    assert report.still_pending == 1
    assert (await _order(container, paid.order_id)).status is OrderStatus.PAID
    assert (await _order(container, pending.order_id)).status is OrderStatus.PENDING


@pytest.mark.asyncio
async def test_stuck_payment_recovery_records_gateway_failures(flow, container, payment_gateway):
    result = await flow.checkout()
    charge = await flow.charge(result.order_id)
    payment_gateway.status_error = GatewayTimeoutException("stub", "get_status")

    report = await container.payments.recover_stuck_payments(utcnow() + timedelta(hours=3))

    assert report.failed == 1
    async with container.uow_factory(readonly=True) as uow:
        logs = await uow.payment_sync_log_repository.list_for_payment(charge.id)
    assert logs[-1].sync_status.value == "FAILED"


@pytest.mark.asyncio
async def test_checkout_falls_back_to_flat_shipping_rate(flow, container, shipping_gateway):
    shipping_gateway.rate_error = GatewayTimeoutException("stub", "get_rates")

    result = await flow.checkout(price=Decimal("50000"), quantity=1)

    assert result.courier.fallback
    assert result.shipping_cost == Decimal("15000")
    assert result.total_amount == Decimal("65000")
    order = await _order(container, result.order_id)
    assert order.metadata.to_dict()["fallbacks"]


@pytest.mark.asyncio
async def test_checkout_validations(container, seed_cart):
    seeded = await seed_cart(stock=1, quantity=2)
    with pytest.raises(InsufficientStockException):
        await container.orders.checkout(checkout_request(seeded.cart_id))

    req = checkout_request(seeded.cart_id)
    req.address.postal_code = "4013"
    with pytest.raises(InvalidAddressException):
        await container.orders.checkout(req)

    with pytest.raises(CartEmptyException):
        await container.orders.checkout(checkout_request(9999))


@pytest.mark.asyncio
async def test_checkout_clears_cart(container, seed_cart):
    seeded = await seed_cart()
    await container.orders.checkout(checkout_request(seeded.cart_id))
    with pytest.raises(CartEmptyException):
        await container.orders.checkout(checkout_request(seeded.cart_id))


@pytest.mark.asyncio
async def test_variant_stock_is_reserved_when_product_stock_is_zero(flow, container):
    result = await flow.checkout(stock=0, variant_stock=5, quantity=2)
    async with container.uow_factory(readonly=True) as uow:
        variant = await uow.inventory_repository.get_variant(flow.seeded.variant_id)
    assert variant.stock == 3

    await container.orders.cancel_by_customer(result.order_code)
    async with container.uow_factory(readonly=True) as uow:
        variant = await uow.inventory_repository.get_variant(flow.seeded.variant_id)
        product = await uow.inventory_repository.get_product(flow.seeded.product_id)
    assert variant.stock == 5
    assert product.stock == 0


@pytest.mark.asyncio
async def test_ship_uses_courier_waybill_and_cascades(flow, container, shipping_gateway):
    result = await flow.paid_order()
    assert len(shipping_gateway.drafts) == 1

    shipped = await flow.ship(result.order_id)

    assert shipped.status == "SHIPPED"
    assert shipped.resi == "JNE0012345678"
    shipment = await _shipment(container, result.order_id)
    assert shipment.status is ShipmentStatus.SHIPPED
    assert shipment.tracking_number == "JNE0012345678"
    kinds = [n.event_kind for n in await _notifications(container, result.order_id)]
    assert kinds == [EventKind.PAYMENT_SUCCESS, EventKind.ORDER_SHIPPED]


@pytest.mark.asyncio
async def test_ship_generates_local_resi_without_waybill(flow, container, shipping_gateway):
    shipping_gateway.waybill = None
    result = await flow.paid_order()

    shipped = await flow.ship(result.order_id)

    validate_resi_format(shipped.resi)
    order = await _order(container, result.order_id)
    assert order.metadata.to_dict()["resi_source"] == "local"


@pytest.mark.asyncio
async def test_ship_requires_packing(flow, container):
    result = await flow.paid_order()
    with pytest.raises(InvalidTransitionException):
        await container.orders.ship(result.order_id, actor=f"admin:{ADMIN_EMAIL}", resi="JNE0099887766")


@pytest.mark.asyncio
async def test_auto_complete_after_grace_period(flow, container):
    result = await flow.delivered_order()
    assert (await _order(container, result.order_id)).status is OrderStatus.DELIVERED

    assert await container.orders.auto_complete_delivered(utcnow() + timedelta(days=1)) == 0
    assert await container.orders.auto_complete_delivered(utcnow() + timedelta(days=8)) == 1
    assert (await _order(container, result.order_id)).status is OrderStatus.COMPLETED


@pytest.mark.asyncio
async def test_checkout_ignores_customer_supplied_tax_and_discount(container, seed_cart):
    seeded = await seed_cart(price=Decimal("100000"), quantity=2)

    result = await container.orders.checkout(
        checkout_request(seeded.cart_id, discount=Decimal("200000"), tax=Decimal("-5000"))
    )

    assert result.discount == Decimal("0")
    assert result.tax == Decimal("0")
    assert result.total_amount == Decimal("215000")
    order = await _order(container, result.order_id)
    assert (order.discount, order.tax, order.total_amount) == (Decimal("0"), Decimal("0"), Decimal("215000"))


@pytest.mark.asyncio
async def test_checkout_retries_when_order_code_is_taken_on_insert(container, seed_cart, monkeypatch):
    from application.services import order_engine
    from infrastructure.repositories.order_repository import SQLAlchemyOrderRepository

    first = await container.orders.checkout(checkout_request((await seed_cart()).cart_id))
    codes = iter([first.order_code, "ZVR-20261019-RETRYOK1"])
    monkeypatch.setattr(order_engine, "generate_order_code", lambda **_: next(codes))

    # another writer grabs the code between the existence check and the insert
    async def _never_exists(self, order_code):
        return False

    monkeypatch.setattr(SQLAlchemyOrderRepository, "code_exists", _never_exists)
    seeded = await seed_cart(stock=10, quantity=2)

    second = await container.orders.checkout(checkout_request(seeded.cart_id))

    assert second.order_code == "ZVR-20261019-RETRYOK1"
    assert await _product_stock(container, seeded.product_id) == 8
    async with container.uow_factory(readonly=True) as uow:
        movements = await uow.inventory_repository.list_movements(order_id=second.order_id)
    assert [m.movement_type for m in movements] == [MovementType.RESERVE]


@pytest.mark.asyncio
async def test_expired_order_with_late_webhook_conserves_stock(flow, container):
    result = await flow.checkout(stock=10, quantity=2)
    charge = await flow.charge(result.order_id)
    assert await container.orders.expire_stale_orders(utcnow() + timedelta(days=2)) == 1

    body = signed_webhook(charge.external_id, f"{charge.amount:.2f}")
    late = await container.payments.handle_webhook(PaymentNotification.from_gateway_payload(body))
    assert not late.changed

    async with container.uow_factory(readonly=True) as uow:
        movements = await uow.inventory_repository.list_movements(order_id=result.order_id)
    stock_now = await _product_stock(container, flow.seeded.product_id)
    assert sum(m.quantity for m in movements) == stock_now - 10
    assert stock_now == 10
    assert [m.movement_type for m in movements].count(MovementType.RELEASE) == 1
    assert (await _order(container, result.order_id)).status is OrderStatus.EXPIRED


@pytest.mark.asyncio
async def test_stuck_payment_recovery_moves_past_payments_that_stay_pending(
    flow, container, narrow_container, payment_gateway
):
    still_pending = await flow.checkout()
    await flow.charge(still_pending.order_id)
    settles = await flow.checkout()
    settles_charge = await flow.charge(settles.order_id)
    payment_gateway.statuses[settles_charge.external_id] = "settlement"

    first = await narrow_container.payments.recover_stuck_payments(utcnow() + timedelta(hours=3))
    second = await narrow_container.payments.recover_stuck_payments(utcnow() + timedelta(hours=4))

    assert (first.checked, first.still_pending, first.resolved) == (1, 1, 0)
    assert (second.checked, second.resolved) == (1, 1)
    assert (await _order(container, settles.order_id)).status is OrderStatus.PAID
    assert (await _order(container, still_pending.order_id)).status is OrderStatus.PENDING
