from decimal import Decimal

import pytest

from application.dtos.refunds import CreateRefundRequest, RefundItemInput
from domain.common.exceptions import (
    GatewayTransientException,
    ManualRefundRequiredException,
    RefundAmountExceedsBalanceException,
    RefundNotAllowedException,
)
from domain.inventory.entity import MovementType
from domain.notification.entity import EventKind
from domain.order.status import OrderStatus
from domain.refund.entity import MANUAL_REFUND_ID
from domain.refund.status import RefundType


async def _order(container, order_id):
    async with container.uow_factory(readonly=True) as uow:
        return await uow.order_repository.get_by_id(order_id)


async def _refund(container, order_id, refund_type, amount=None, **kwargs):
    view = await container.refunds.create_refund(
        CreateRefundRequest(order_id=order_id, refund_type=refund_type, amount=amount, **kwargs)
    )
    return await container.refunds.process_refund(view.id, actor="admin:ops@zavera.id")


@pytest.mark.asyncio
async def test_partial_refunds_cannot_exceed_paid_amount(flow, container, payment_gateway):
    result = await flow.delivered_order(price=Decimal("142500"), quantity=2)
    assert result.total_amount == Decimal("300000")

    first = await _refund(container, result.order_id, RefundType.PARTIAL, Decimal("200000"))
    assert first.status == "COMPLETED"
    order = await _order(container, result.order_id)
    assert order.status is OrderStatus.DELIVERED
    assert order.refund_status == "PARTIAL"
    assert order.refund_amount == Decimal("200000")

    with pytest.raises(RefundAmountExceedsBalanceException):
        await container.refunds.create_refund(
            CreateRefundRequest(order_id=result.order_id, refund_type=RefundType.PARTIAL, amount=Decimal("150000"))
        )

    last = await _refund(container, result.order_id, RefundType.PARTIAL, Decimal("100000"))
    assert last.status == "COMPLETED"
    order = await _order(container, result.order_id)
    assert order.status is OrderStatus.REFUNDED
    assert order.refund_status == "FULL"
    assert order.refund_amount == Decimal("300000")
    assert [req.amount for _, req in payment_gateway.refunds] == [Decimal("200000"), Decimal("100000")]
    kinds = [n.event_kind for n in await container.outbox.list_for_order(result.order_id)]
    assert kinds[-1] is EventKind.ORDER_REFUNDED


@pytest.mark.asyncio
async def test_full_refund_returns_goods_to_stock(flow, container, payment_gateway):
    result = await flow.delivered_order(stock=10, quantity=2)

    refund = await _refund(container, result.order_id, RefundType.FULL)

    assert refund.refund_amount == result.total_amount
    assert refund.items_refund == result.subtotal
    assert refund.shipping_refund == result.shipping_cost
    assert refund.gateway_refund_id == "cb-1"
    [(external_id, req)] = payment_gateway.refunds
    assert external_id.startswith(result.order_code)
    assert req.amount == result.total_amount
    async with container.uow_factory(readonly=True) as uow:
        product = await uow.inventory_repository.get_product(flow.seeded.product_id)
        adjustments = await uow.inventory_repository.list_movements(
            order_id=result.order_id, movement_type=MovementType.ADJUSTMENT
        )
    assert product.stock == 10
    assert [m.quantity for m in adjustments] == [2]


@pytest.mark.asyncio
async def test_item_refund_restocks_only_selected_quantity(flow, container):
    result = await flow.delivered_order(price=Decimal("100000"), stock=10, quantity=3)
    order = await container.orders.get_order(result.order_code)
    item_id = order.items[0].id

    refund = await _refund(
        container, result.order_id, RefundType.ITEM_ONLY, items=[RefundItemInput(order_item_id=item_id, quantity=1)]
    )

    assert refund.refund_amount == Decimal("100000")
    assert refund.items[0].stock_restored
    async with container.uow_factory(readonly=True) as uow:
        product = await uow.inventory_repository.get_product(flow.seeded.product_id)
    assert product.stock == 8
    assert (await _order(container, result.order_id)).refund_status == "PARTIAL"


@pytest.mark.asyncio
async def test_refund_needs_delivered_order(flow, container):
    result = await flow.paid_order()
    with pytest.raises(RefundNotAllowedException):
        await container.refunds.create_refund(
            CreateRefundRequest(order_id=result.order_id, refund_type=RefundType.FULL)
        )


@pytest.mark.asyncio
async def test_idempotency_key_returns_the_same_refund(flow, container):
    result = await flow.delivered_order()
    req = CreateRefundRequest(
        order_id=result.order_id,
        refund_type=RefundType.SHIPPING_ONLY,
        idempotency_key="refund-shipping-1",
    )

    first = await container.refunds.create_refund(req)
    second = await container.refunds.create_refund(req)

    assert first.id == second.id
    assert first.refund_amount == Decimal("15000")
    assert len(await container.refunds.list_for_order(result.order_id)) == 1


@pytest.mark.asyncio
async def test_gateway_teapot_leaves_refund_pending_for_manual_completion(flow, container, payment_gateway):
    result = await flow.delivered_order()
    view = await container.refunds.create_refund(
        CreateRefundRequest(order_id=result.order_id, refund_type=RefundType.PARTIAL, amount=Decimal("50000"))
    )
    payment_gateway.refund_error = GatewayTransientException("refund not supported", status_code=418)

    with pytest.raises(ManualRefundRequiredException):
        await container.refunds.process_refund(view.id, actor="admin:ops@zavera.id")

    pending = await container.refunds.get_refund(view.id)
    assert pending.status == "PENDING"

    done = await container.refunds.complete_manually(view.id, actor="admin:ops@zavera.id", note="BCA transfer 19/10")
    assert done.status == "COMPLETED"
    assert done.gateway_refund_id == MANUAL_REFUND_ID
    assert done.note == "BCA transfer 19/10"


@pytest.mark.asyncio
async def test_failed_refund_can_be_retried(flow, container, payment_gateway):
    result = await flow.delivered_order()
    view = await container.refunds.create_refund(
        CreateRefundRequest(order_id=result.order_id, refund_type=RefundType.PARTIAL, amount=Decimal("50000"))
    )
    payment_gateway.refund_error = GatewayTransientException("upstream error", status_code=502)

    with pytest.raises(GatewayTransientException):
        await container.refunds.process_refund(view.id)
    assert (await container.refunds.get_refund(view.id)).status == "FAILED"

    payment_gateway.refund_error = None
    retried = await container.refunds.process_refund(view.id)

    assert retried.status == "COMPLETED"
    async with container.uow_factory(readonly=True) as uow:
        history = await uow.status_history_repository.list_for("refund", view.id)
    assert [h.to_status for h in history] == ["PENDING", "PROCESSING", "FAILED", "PENDING", "PROCESSING", "COMPLETED"]
