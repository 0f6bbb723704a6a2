from datetime import timedelta

import pytest
from sqlalchemy import update

from application.dtos.refunds import CreateRefundRequest
from domain.common.exceptions import ConflictException, MismatchNotFoundException
from domain.common.time import utcnow
from domain.refund.status import RefundType
from infrastructure.models import OrderModel


async def _created_day(container, order_id):
    async with container.uow_factory(readonly=True) as uow:
        return (await uow.order_repository.get_by_id(order_id)).created_at.date()


@pytest.mark.asyncio
async def test_daily_reconciliation_reports_every_mismatch_kind(flow, container, session_factory):
    paid = await flow.paid_order()
    stuck = await flow.checkout()
    await flow.charge(stuck.order_id)
    orphan = await flow.checkout()
    drifted = await flow.paid_order()
    # simulate an order row that was edited by hand
    async with session_factory() as session:
        await session.execute(update(OrderModel).where(OrderModel.id == drifted.order_id).values(status="PENDING"))
        await session.commit()

    report = await container.reconciliation.run_daily(
        await _created_day(container, paid.order_id), now=utcnow() + timedelta(hours=3)
    )

    assert report.status == "MISMATCH"
    assert report.total_orders == 4
    assert report.total_payments == 3
    assert report.orphan_orders == 1
    assert report.stuck_payments == 1
    assert report.orphan_payments == 0
    assert report.expected_revenue == paid.total_amount
    assert report.actual_revenue == paid.total_amount + drifted.total_amount

    mismatches = await container.reconciliation.list_unresolved_mismatches()
    by_type = {m.mismatch_type: m for m in mismatches}
    assert set(by_type) == {"STATUS_MISMATCH", "ORPHAN_ORDER", "STUCK_PAYMENT"}
    assert by_type["STATUS_MISMATCH"].order_id == drifted.order_id
    assert by_type["ORPHAN_ORDER"].order_id == orphan.order_id
    assert by_type["STUCK_PAYMENT"].order_id == stuck.order_id


@pytest.mark.asyncio
async def test_young_orders_and_payments_are_not_flagged(flow, container):
    result = await flow.checkout()
    await flow.charge(result.order_id)
    await flow.checkout()

    report = await container.reconciliation.run_daily(await _created_day(container, result.order_id), now=utcnow())

    assert report.mismatch_count == 0
    assert report.status == "OK"


@pytest.mark.asyncio
async def test_resolving_a_mismatch(flow, container):
    result = await flow.checkout()
    await container.reconciliation.run_daily(
        await _created_day(container, result.order_id), now=utcnow() + timedelta(hours=2)
    )
    [mismatch] = await container.reconciliation.list_unresolved_mismatches()

    resolved = await container.reconciliation.resolve_mismatch(
        mismatch.id, resolved_by="admin:ops@zavera.id", note="customer abandoned checkout"
    )

    assert resolved.resolved
    assert resolved.resolved_by == "admin:ops@zavera.id"
    assert await container.reconciliation.list_unresolved_mismatches() == []
    with pytest.raises(ConflictException):
        await container.reconciliation.resolve_mismatch(mismatch.id, resolved_by="admin:ops@zavera.id", note="again")
    with pytest.raises(MismatchNotFoundException):
        await container.reconciliation.resolve_mismatch(99999, resolved_by="admin:ops@zavera.id", note="missing")


@pytest.mark.asyncio
async def test_refunded_order_still_balances_gross_revenue(flow, container):
    result = await flow.delivered_order()
    view = await container.refunds.create_refund(
        CreateRefundRequest(order_id=result.order_id, refund_type=RefundType.FULL)
    )
    await container.refunds.process_refund(view.id, actor="admin:ops@zavera.id")

    report = await container.reconciliation.run_daily(await _created_day(container, result.order_id), now=utcnow())

    assert report.status == "OK"
    assert report.expected_revenue == result.total_amount
    assert report.actual_revenue == result.total_amount
    assert report.revenue_variance == 0
    assert report.refund_total == result.total_amount
