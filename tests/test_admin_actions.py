from datetime import timedelta

import pytest

from application.dtos.admin import (
    AdminContext,
    ForceCancelRequest,
    ForceRefundRequest,
    ForceReshipRequest,
    ReconcileAction,
    ReconcilePaymentRequest,
)
from conftest import ADMIN_EMAIL
from domain.common.exceptions import InvalidTransitionException, PaymentAlreadyFinalException
from domain.common.time import utcnow
from domain.inventory.entity import MovementType
from domain.order.status import OrderStatus
from domain.payment.status import PaymentStatus
from domain.shipment.status import ShipmentStatus

ADMIN = AdminContext(admin_email=ADMIN_EMAIL, admin_id=7, ip_address="10.0.0.5", user_agent="pytest")


async def _order(container, order_id):
    async with container.uow_factory(readonly=True) as uow:
        return await uow.order_repository.get_by_id(order_id)


async def _movements(container, order_id):
    async with container.uow_factory(readonly=True) as uow:
        return await uow.inventory_repository.list_movements(order_id=order_id)


async def _stock(container, product_id):
    async with container.uow_factory(readonly=True) as uow:
        return (await uow.inventory_repository.get_product(product_id)).stock


@pytest.mark.asyncio
async def test_force_cancel_of_shipped_order_is_rejected_and_audited(flow, container):
    result = await flow.paid_order()
    await flow.ship(result.order_id)
    movements_before = await _movements(container, result.order_id)

    with pytest.raises(InvalidTransitionException):
        await container.admin.force_cancel(ADMIN, ForceCancelRequest(order_id=result.order_id, reason="customer changed mind"))

    assert (await _order(container, result.order_id)).status is OrderStatus.SHIPPED
    assert len(await _movements(container, result.order_id)) == len(movements_before)
    [audit] = await container.admin.list_audit("order", result.order_id)
    assert audit.action_type == "FORCE_CANCEL"
    assert audit.success is False
    assert "SHIPPED" in audit.error_message
    assert audit.state_before["status"] == "SHIPPED"


@pytest.mark.asyncio
async def test_force_cancel_of_paid_order_restores_stock(flow, container):
    result = await flow.paid_order(stock=10, quantity=2)
    assert await _stock(container, flow.seeded.product_id) == 8

    action = await container.admin.force_cancel(ADMIN, ForceCancelRequest(order_id=result.order_id, reason="fraud check failed"))

    assert action.success
    assert action.state_before["status"] == "PAID"
    assert action.state_after == {"status": "CANCELLED", "stock_restored": True}
    assert await _stock(container, flow.seeded.product_id) == 10
    order = await _order(container, result.order_id)
    assert order.status is OrderStatus.CANCELLED
    async with container.uow_factory(readonly=True) as uow:
        history = await uow.status_history_repository.list_for("order", result.order_id)
        shipment = await uow.shipment_repository.get_current_for_order(result.order_id)
    assert history[-1].actor == f"admin:{ADMIN_EMAIL}"
    assert history[-1].metadata == {"force": True}
    assert shipment.status is ShipmentStatus.CANCELLED


@pytest.mark.asyncio
async def test_force_cancel_without_restock(flow, container):
    result = await flow.paid_order(stock=10, quantity=2)

    action = await container.admin.force_cancel(
        ADMIN, ForceCancelRequest(order_id=result.order_id, reason="damaged in warehouse", restore_stock=False)
    )

    assert action.state_after["stock_restored"] is False
    assert await _stock(container, flow.seeded.product_id) == 8


@pytest.mark.asyncio
async def test_admin_action_is_replayed_for_same_idempotency_key(flow, container):
    result = await flow.paid_order()
    req = ForceCancelRequest(order_id=result.order_id, reason="duplicate order", idempotency_key="cancel-1")

    first = await container.admin.force_cancel(ADMIN, req)
    second = await container.admin.force_cancel(ADMIN, req)

    assert not first.replayed and second.replayed
    assert first.audit_id == second.audit_id
    assert len(await container.admin.list_audit("order", result.order_id)) == 1


@pytest.mark.asyncio
async def test_late_settlement_is_reconciled_by_admin(flow, container):
    result = await flow.checkout(stock=5, quantity=2)
    charge = await flow.charge(result.order_id)
    assert await container.payments.expire_payment(charge.id, utcnow() + timedelta(days=2))
    assert await _stock(container, flow.seeded.product_id) == 5

    action = await container.admin.reconcile_payment(
        ADMIN, ReconcilePaymentRequest(payment_id=charge.id, action=ReconcileAction.MARK_PAID, note="BCA statement 19/10")
    )

    assert action.success
    assert action.state_after["payment_status"] == "PAID"
    assert action.state_after["order_status"] == "PAID"
    assert action.state_after["stock_reserved"] is True
    order = await _order(container, result.order_id)
    assert order.status is OrderStatus.PAID
    assert order.stock_reserved
    assert await _stock(container, flow.seeded.product_id) == 3
    async with container.uow_factory(readonly=True) as uow:
        payment = await uow.payment_repository.get_by_id(charge.id)
    assert payment.status is PaymentStatus.PAID
    assert await container.admin.list_audit("payment", charge.id)


@pytest.mark.asyncio
async def test_reconcile_cannot_fail_a_paid_payment(flow, container):
    result = await flow.paid_order()
    async with container.uow_factory(readonly=True) as uow:
        payment = await uow.payment_repository.get_latest_for_order(result.order_id)

    with pytest.raises(PaymentAlreadyFinalException):
        await container.admin.reconcile_payment(
            ADMIN, ReconcilePaymentRequest(payment_id=payment.id, action=ReconcileAction.MARK_FAILED)
        )
    [audit] = await container.admin.list_audit("payment", payment.id)
    assert audit.success is False


@pytest.mark.asyncio
async def test_reconcile_syncs_with_gateway(flow, container, payment_gateway):
    result = await flow.checkout()
    charge = await flow.charge(result.order_id)
    payment_gateway.statuses[charge.external_id] = "settlement"

    action = await container.admin.reconcile_payment(
        ADMIN, ReconcilePaymentRequest(payment_id=charge.id, action=ReconcileAction.SYNC_GATEWAY)
    )

    assert action.state_after["gateway_status"] == "settlement"
    assert action.state_after["order_status"] == "PAID"
    assert (await _order(container, result.order_id)).status is OrderStatus.PAID


@pytest.mark.asyncio
async def test_force_refund_goes_through_gateway_after_commit(flow, container, payment_gateway):
    result = await flow.delivered_order()

    action = await container.admin.force_refund(ADMIN, ForceRefundRequest(order_id=result.order_id, reason_detail="goodwill"))

    assert action.success
    assert action.state_after["manual"] is False
    assert action.refund is not None and action.refund.status == "COMPLETED"
    assert len(payment_gateway.refunds) == 1
    assert (await _order(container, result.order_id)).status is OrderStatus.REFUNDED


@pytest.mark.asyncio
async def test_force_refund_can_skip_gateway(flow, container, payment_gateway):
    result = await flow.delivered_order()

    action = await container.admin.force_refund(
        ADMIN, ForceRefundRequest(order_id=result.order_id, skip_gateway=True, reason_detail="paid back in store")
    )

    assert action.state_after["manual"] is True
    assert action.state_after["refund_status"] == "COMPLETED"
    assert payment_gateway.refunds == []
    [refund] = await container.refunds.list_for_order(result.order_id)
    assert refund.gateway_refund_id == "MANUAL_REFUND"


@pytest.mark.asyncio
async def test_force_reship_after_lost_package(flow, container):
    result = await flow.paid_order()
    await flow.ship(result.order_id)
    async with container.uow_factory(readonly=True) as uow:
        shipment = await uow.shipment_repository.get_current_for_order(result.order_id)
    await container.fulfillment.transition_shipment(shipment.id, ShipmentStatus.LOST, actor=ADMIN.actor)

    action = await container.admin.force_reship(
        ADMIN, ForceReshipRequest(order_id=result.order_id, reason="lost by courier", new_tracking_number="JNE0055554444")
    )

    assert action.state_after["original_status"] == "REPLACED"
    assert action.state_after["new_status"] == "PROCESSING"
    assert action.state_after["new_tracking_number"] == "JNE0055554444"
    assert action.state_after["reship_count"] == 1


@pytest.mark.asyncio
async def test_force_cancel_after_payment_conserves_stock(flow, container):
    result = await flow.paid_order(stock=10, quantity=3)

    await container.admin.force_cancel(ADMIN, ForceCancelRequest(order_id=result.order_id, reason="supplier recall"))

    movements = await _movements(container, result.order_id)
    stock_now = await _stock(container, flow.seeded.product_id)
    assert stock_now == 10
    assert sum(m.quantity for m in movements) == stock_now - 10
    assert [m.movement_type for m in movements].count(MovementType.RELEASE) == 1
    assert not (await _order(container, result.order_id)).stock_reserved
