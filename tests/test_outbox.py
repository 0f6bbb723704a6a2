import pytest

from domain.common.exceptions import ConflictException, NotificationNotFoundException
from domain.notification.entity import EventKind, NotificationStatus


@pytest.mark.asyncio
async def test_publisher_delivers_each_row_once(flow, container, transport):
    result = await flow.paid_order()

    assert await container.outbox.publish_pending() == 1
    assert await container.outbox.publish_pending() == 0

    [sent] = transport.sent
    assert sent.event_kind is EventKind.PAYMENT_SUCCESS
    assert sent.recipient == "ayu@example.com"
    assert sent.payload["order_code"] == result.order_code
    [row] = await container.outbox.list_for_order(result.order_id)
    assert row.status is NotificationStatus.SENT
    assert row.attempts == 1
    assert row.sent_at is not None


@pytest.mark.asyncio
async def test_failed_delivery_is_parked_until_redriven(flow, container, transport):
    result = await flow.paid_order()
    transport.fail = True

    assert await container.outbox.publish_pending() == 0
    [row] = await container.outbox.list_for_order(result.order_id)
    assert row.status is NotificationStatus.FAILED
    assert "transport down" in row.error
    # failed rows are not retried automatically
    assert await container.outbox.publish_pending() == 0

    transport.fail = False
    redriven = await container.outbox.redrive(row.id)
    assert redriven.status is NotificationStatus.PENDING
    assert redriven.error is None

    assert await container.outbox.publish_pending() == 1
    [row] = await container.outbox.list_for_order(result.order_id)
    assert row.status is NotificationStatus.SENT
    assert row.attempts == 2


@pytest.mark.asyncio
async def test_only_failed_rows_can_be_redriven(flow, container):
    result = await flow.paid_order()
    [row] = await container.outbox.list_for_order(result.order_id)

    with pytest.raises(ConflictException):
        await container.outbox.redrive(row.id)
    with pytest.raises(NotificationNotFoundException):
        await container.outbox.redrive(99999)


@pytest.mark.asyncio
async def test_enqueue_is_one_row_per_order_and_event(flow, container):
    result = await flow.checkout()

    async with container.uow_factory() as uow:
        first = await container.notifier.enqueue(
            uow, order_id=result.order_id, event_kind=EventKind.ORDER_CANCELLED, recipient="ayu@example.com", payload={}
        )
        second = await container.notifier.enqueue(
            uow, order_id=result.order_id, event_kind=EventKind.ORDER_CANCELLED, recipient="ayu@example.com", payload={}
        )

    assert first and not second
    assert len(await container.outbox.list_for_order(result.order_id)) == 1
