from datetime import timedelta

import pytest

from application.dtos.shipping import OpenDisputeRequest, TrackingResult
from application.services.fulfillment import MONITOR_ACTOR, map_courier_status
from conftest import ADMIN_EMAIL
from domain.common.exceptions import InvalidTransitionException
from domain.common.time import utcnow
from domain.notification.entity import EventKind
from domain.order.status import OrderStatus
from domain.shipment.entity import AlertLevel, DisputeType
from domain.shipment.status import ShipmentStatus

ACTOR = f"admin:{ADMIN_EMAIL}"


async def _current_shipment(container, order_id):
    async with container.uow_factory(readonly=True) as uow:
        return await uow.shipment_repository.get_current_for_order(order_id)


async def _alerts(container, shipment_id):
    async with container.uow_factory(readonly=True) as uow:
        return await uow.shipment_repository.list_alerts(shipment_id)


@pytest.mark.parametrize(
    "courier_status,expected",
    [
        ("delivered", ShipmentStatus.DELIVERED),
        ("dropping_off", ShipmentStatus.OUT_FOR_DELIVERY),
        ("picked", ShipmentStatus.SHIPPED),
        ("returned", ShipmentStatus.RETURNED_TO_SENDER),
        ("on_hold", ShipmentStatus.HELD_AT_WAREHOUSE),
        ("courier_not_found", ShipmentStatus.PICKUP_FAILED),
        ("something_new", ShipmentStatus.IN_TRANSIT),
    ],
)
def test_map_courier_status(courier_status, expected):
    assert map_courier_status(courier_status) is expected


@pytest.mark.asyncio
async def test_stuck_shipment_goes_to_investigation_then_lost(flow, container):
    result = await flow.paid_order()
    await flow.ship(result.order_id)
    shipment = await _current_shipment(container, result.order_id)

    early = await container.fulfillment.run_monitor(utcnow() + timedelta(days=2))
    assert early.investigated == 0

    report = await container.fulfillment.run_monitor(utcnow() + timedelta(days=8))

    assert report.investigated == 1
    view = await container.fulfillment.get_shipment(shipment.id)
    assert view.status == "INVESTIGATION"
    assert view.requires_admin_action
    assert view.days_without_update == 8
    [alert] = await _alerts(container, shipment.id)
    assert alert.alert_type == "stuck_shipment"
    assert alert.alert_level is AlertLevel.CRITICAL
    async with container.uow_factory(readonly=True) as uow:
        history = await uow.status_history_repository.list_for("shipment", shipment.id)
    assert history[-1].to_status == "INVESTIGATION"
    assert history[-1].actor == MONITOR_ACTOR

    report = await container.fulfillment.run_monitor(utcnow() + timedelta(days=15))

    assert report.lost == 1
    assert (await container.fulfillment.get_shipment(shipment.id)).status == "LOST"
    alerts = await _alerts(container, shipment.id)
    assert (alerts[-1].alert_type, alerts[-1].alert_level) == ("lost_package", AlertLevel.URGENT)
    [dispute] = await container.fulfillment.list_disputes(result.order_id)
    assert dispute.dispute_type == "LOST_PACKAGE"
    # the order itself stays shipped until an admin acts
    async with container.uow_factory(readonly=True) as uow:
        order = await uow.order_repository.get_by_id(result.order_id)
    assert order.status is OrderStatus.SHIPPED


@pytest.mark.asyncio
async def test_open_investigation_times_out_to_lost(flow, container):
    result = await flow.paid_order()
    await flow.ship(result.order_id)
    shipment = await _current_shipment(container, result.order_id)
    await container.fulfillment.transition_shipment(
        shipment.id, ShipmentStatus.INVESTIGATION, actor=ACTOR, reason="customer says nothing arrived"
    )

    assert await container.fulfillment.detect_investigation_timeouts(utcnow() + timedelta(days=3)) == 0
    assert await container.fulfillment.detect_investigation_timeouts(utcnow() + timedelta(days=8)) == 1

    view = await container.fulfillment.get_shipment(shipment.id)
    assert view.status == "LOST"
    assert view.requires_admin_action
    alerts = await _alerts(container, shipment.id)
    assert (alerts[-1].alert_type, alerts[-1].alert_level) == ("investigation_timeout", AlertLevel.URGENT)


@pytest.mark.asyncio
async def test_courier_delivery_completes_order_delivery(flow, container, shipping_gateway):
    result = await flow.paid_order()
    shipped = await flow.ship(result.order_id)
    shipment = await _current_shipment(container, result.order_id)
    now = utcnow()
    shipping_gateway.tracking[shipped.resi] = TrackingResult(waybill_id=shipped.resi, status="delivered", last_update=now)

    assert await container.fulfillment.refresh_tracking(now) == 1

    view = await container.fulfillment.get_shipment(shipment.id)
    assert view.status == "DELIVERED"
    assert view.last_tracking_update == now
    async with container.uow_factory(readonly=True) as uow:
        order = await uow.order_repository.get_by_id(result.order_id)
    assert order.status is OrderStatus.DELIVERED
    kinds = [n.event_kind for n in await container.outbox.list_for_order(result.order_id)]
    assert kinds[-1] is EventKind.ORDER_DELIVERED


@pytest.mark.asyncio
async def test_tracking_never_makes_privileged_moves(flow, container):
    result = await flow.paid_order()
    shipped = await flow.ship(result.order_id)
    shipment = await _current_shipment(container, result.order_id)

    # SHIPPED -> RETURNED_TO_SENDER is not in the table at all
    view = await container.fulfillment.apply_tracking(
        shipment.id, TrackingResult(waybill_id=shipped.resi, status="returned")
    )
    assert view.status == "SHIPPED"

    view = await container.fulfillment.apply_tracking(
        shipment.id, TrackingResult(waybill_id=shipped.resi, status="in_transit")
    )
    assert view.status == "IN_TRANSIT"


@pytest.mark.asyncio
async def test_missed_pickup_is_detected(flow, container):
    result = await flow.paid_order()
    shipment = await _current_shipment(container, result.order_id)
    now = utcnow()

    scheduled = await container.fulfillment.schedule_pickup(shipment.id, actor=ACTOR, now=now)
    assert scheduled.status == "PICKUP_SCHEDULED"
    assert scheduled.pickup_deadline == now + timedelta(hours=48)

    report = await container.fulfillment.run_monitor(now + timedelta(days=3))

    assert report.pickup_failed == 1
    view = await container.fulfillment.get_shipment(shipment.id)
    assert view.status == "PICKUP_FAILED"
    assert view.pickup_attempts == 1
    [alert] = await _alerts(container, shipment.id)
    assert alert.alert_level is AlertLevel.WARNING


@pytest.mark.asyncio
async def test_reship_replaces_lost_shipment(flow, container):
    result = await flow.paid_order()
    await flow.ship(result.order_id)
    shipment = await _current_shipment(container, result.order_id)
    await container.fulfillment.transition_shipment(shipment.id, ShipmentStatus.LOST, actor=ACTOR, reason="courier confirmed loss")

    replacement = await container.fulfillment.reship(shipment.id, actor=ACTOR, reason="lost in transit")

    assert replacement.status == "PROCESSING"
    assert replacement.is_replacement
    assert replacement.original_shipment_id == shipment.id
    assert replacement.reship_count == 1
    original = await container.fulfillment.get_shipment(shipment.id)
    assert original.status == "REPLACED"
    assert original.replaced_by_shipment_id == replacement.id
    assert (await _current_shipment(container, result.order_id)).id == replacement.id


@pytest.mark.asyncio
async def test_reship_requires_a_failed_delivery(flow, container):
    result = await flow.paid_order()
    await flow.ship(result.order_id)
    shipment = await _current_shipment(container, result.order_id)
    with pytest.raises(InvalidTransitionException):
        await container.fulfillment.reship(shipment.id, actor=ACTOR, reason="customer asked")


@pytest.mark.asyncio
async def test_customer_dispute_flags_shipment(flow, container):
    result = await flow.delivered_order()

    dispute = await container.fulfillment.open_dispute(
        OpenDisputeRequest(order_id=result.order_id, dispute_type=DisputeType.DAMAGED_ITEM, title="Torn sleeve")
    )

    assert dispute.dispute_code
    assert dispute.status == "OPEN"
    shipment = await _current_shipment(container, result.order_id)
    assert shipment.requires_admin_action
    assert dispute.dispute_code in shipment.admin_action_reason


@pytest.mark.asyncio
async def test_stuck_shipment_is_found_behind_a_healthy_one(flow, container, narrow_container):
    later = utcnow() + timedelta(days=8)
    healthy = await flow.paid_order()
    healthy_resi = (await flow.ship(healthy.order_id)).resi
    stuck = await flow.paid_order()
    await flow.ship(stuck.order_id)
    healthy_shipment = await _current_shipment(container, healthy.order_id)
    await container.fulfillment.apply_tracking(
        healthy_shipment.id, TrackingResult(waybill_id=healthy_resi, status="in_transit", last_update=later), now=later
    )

    report = await narrow_container.fulfillment.run_monitor(later)

    assert report.investigated == 1
    assert (await _current_shipment(container, stuck.order_id)).status is ShipmentStatus.INVESTIGATION
    assert (await _current_shipment(container, healthy.order_id)).status is ShipmentStatus.IN_TRANSIT


@pytest.mark.asyncio
async def test_tracking_refresh_rotates_through_shipments(flow, container, narrow_container, shipping_gateway):
    first = await flow.paid_order()
    first_resi = (await flow.ship(first.order_id)).resi
    second = await flow.paid_order()
    second_resi = (await flow.ship(second.order_id)).resi
    for resi in (first_resi, second_resi):
        shipping_gateway.tracking[resi] = TrackingResult(waybill_id=resi, status="picked")
    t1 = utcnow() + timedelta(hours=1)
    t2 = t1 + timedelta(hours=1)

    assert await narrow_container.fulfillment.refresh_tracking(t1) == 1
    assert (await _current_shipment(container, first.order_id)).last_tracking_check == t1
    assert (await _current_shipment(container, second.order_id)).last_tracking_check is None

    assert await narrow_container.fulfillment.refresh_tracking(t2) == 1
    assert (await _current_shipment(container, second.order_id)).last_tracking_check == t2
