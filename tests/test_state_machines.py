from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import (
    DomainValidationException,
    InvalidResiFormatException,
    InvalidTransitionException,
    ResiLockedException,
)
from domain.order.codes import ORDER_CODE_PATTERN, generate_order_code, generate_resi, validate_admin_resi, validate_resi_format
from domain.order.entity import Order, OrderItem
from domain.order.status import OrderStatus, allowed_targets, can_transition as order_can_transition
from domain.payment.signature import (
    compute_signature,
    generate_external_id,
    order_code_from_external_id,
    verify_signature,
)
from domain.payment.status import PaymentStatus, can_transition as payment_can_transition, map_gateway_status
from domain.refund.status import RefundStatus, can_transition as refund_can_transition
from domain.shipment.entity import Shipment
from domain.shipment.status import ShipmentStatus, TransitionActor, is_allowed_for


def _order(status=OrderStatus.PENDING) -> Order:
    return Order(
        id=1,
        order_code="ZVR-20261019-ABCDEFGH",
        customer_name="Ayu",
        customer_email="ayu@example.com",
        customer_phone="0812",
        subtotal=Decimal("200000"),
        shipping_cost=Decimal("15000"),
        total_amount=Decimal("215000"),
        status=status,
        items=[OrderItem(id=1, order_id=1, product_id=1, product_name="Shirt", quantity=2, unit_price=Decimal("100000"))],
    )


@pytest.mark.parametrize(
    "current,target",
    [
        (OrderStatus.PENDING, OrderStatus.PAID),
        (OrderStatus.PENDING, OrderStatus.EXPIRED),
        (OrderStatus.PAID, OrderStatus.PACKING),
        (OrderStatus.PACKING, OrderStatus.SHIPPED),
        (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
        (OrderStatus.DELIVERED, OrderStatus.COMPLETED),
        (OrderStatus.COMPLETED, OrderStatus.REFUNDED),
    ],
)
def test_order_forward_moves(current, target):
    assert order_can_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
        (OrderStatus.PENDING, OrderStatus.SHIPPED),
        (OrderStatus.EXPIRED, OrderStatus.PAID),
        (OrderStatus.REFUNDED, OrderStatus.COMPLETED),
        (OrderStatus.PAID, OrderStatus.PAID),
    ],
)
def test_order_illegal_moves(current, target):
    assert not order_can_transition(current, target)


def test_late_settlement_needs_admin_override():
    assert not order_can_transition(OrderStatus.EXPIRED, OrderStatus.PAID)
    assert order_can_transition(OrderStatus.EXPIRED, OrderStatus.PAID, admin_override=True)
    assert order_can_transition(OrderStatus.CANCELLED, OrderStatus.PAID, admin_override=True)
    assert not order_can_transition(OrderStatus.REFUNDED, OrderStatus.PAID, admin_override=True)


def test_terminal_statuses_have_no_targets():
    for status in (OrderStatus.CANCELLED, OrderStatus.EXPIRED, OrderStatus.FAILED, OrderStatus.REFUNDED):
        assert status.is_terminal
        assert allowed_targets(status) == []
    assert allowed_targets(OrderStatus.COMPLETED) == [OrderStatus.REFUNDED]


def test_order_transition_stamps_timestamp_and_rejects_same_state():
    order = _order()
    now = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)
    assert order.transition_to(OrderStatus.PAID, now=now)
    assert order.paid_at == now
    assert order.transition_to(OrderStatus.PAID) is False
    with pytest.raises(InvalidTransitionException):
        order.transition_to(OrderStatus.DELIVERED)


def test_resi_is_frozen_after_shipping():
    order = _order(OrderStatus.SHIPPED)
    order.resi = "JNE0012345678"
    with pytest.raises(ResiLockedException):
        order.assign_resi("JNE9999999999")


def test_payment_final_statuses_never_change_without_override():
    assert payment_can_transition(PaymentStatus.PENDING, PaymentStatus.PAID)
    assert not payment_can_transition(PaymentStatus.PENDING, PaymentStatus.PENDING)
    assert not payment_can_transition(PaymentStatus.EXPIRED, PaymentStatus.PAID)
    assert payment_can_transition(PaymentStatus.EXPIRED, PaymentStatus.PAID, admin_override=True)
    assert not payment_can_transition(PaymentStatus.PAID, PaymentStatus.FAILED, admin_override=True)


@pytest.mark.parametrize(
    "gateway,fraud,expected",
    [
        ("settlement", None, PaymentStatus.PAID),
        ("capture", "accept", PaymentStatus.PAID),
        ("capture", "challenge", PaymentStatus.PENDING),
        ("expire", None, PaymentStatus.EXPIRED),
        ("cancel", None, PaymentStatus.CANCELLED),
        ("deny", None, PaymentStatus.FAILED),
        ("refund", None, PaymentStatus.PENDING),
        ("", None, PaymentStatus.PENDING),
    ],
)
def test_gateway_status_mapping(gateway, fraud, expected):
    assert map_gateway_status(gateway, fraud) is expected


def test_shipment_privileged_moves():
    # tracking may deliver but never declare a package lost
    assert is_allowed_for(ShipmentStatus.IN_TRANSIT, ShipmentStatus.DELIVERED, TransitionActor.TRACKING)
    assert not is_allowed_for(ShipmentStatus.IN_TRANSIT, ShipmentStatus.LOST, TransitionActor.TRACKING)
    assert is_allowed_for(ShipmentStatus.IN_TRANSIT, ShipmentStatus.LOST, TransitionActor.SYSTEM)
    # order cancellation may cancel a shipment that has not left
    assert is_allowed_for(ShipmentStatus.PROCESSING, ShipmentStatus.CANCELLED, TransitionActor.CASCADE)
    assert not is_allowed_for(ShipmentStatus.SHIPPED, ShipmentStatus.CANCELLED, TransitionActor.ADMIN)
    assert not is_allowed_for(ShipmentStatus.LOST, ShipmentStatus.REPLACED, TransitionActor.TRACKING)


def test_shipment_staleness_counts_from_last_activity():
    shipped = datetime(2026, 10, 1, tzinfo=timezone.utc)
    shipment = Shipment(id=1, order_id=1, provider_code="jne", service_code="reg", status=ShipmentStatus.SHIPPED, shipped_at=shipped)
    assert shipment.refresh_staleness(shipped + timedelta(days=4), stale_after_days=3) == 4
    assert shipment.tracking_stale
    shipment.last_tracking_update = shipped + timedelta(days=3)
    assert shipment.refresh_staleness(shipped + timedelta(days=4), stale_after_days=3) == 1
    assert not shipment.tracking_stale


def test_refund_transitions():
    assert refund_can_transition(RefundStatus.PENDING, RefundStatus.PROCESSING)
    assert refund_can_transition(RefundStatus.PROCESSING, RefundStatus.PENDING)
    assert refund_can_transition(RefundStatus.FAILED, RefundStatus.PENDING)
    assert not refund_can_transition(RefundStatus.COMPLETED, RefundStatus.PENDING)
    assert RefundStatus.PROCESSING.counts_against_balance
    assert not RefundStatus.PENDING.counts_against_balance


def test_order_totals_must_add_up():
    order = _order()
    order.validate_totals()
    order.total_amount = Decimal("1")
    with pytest.raises(DomainValidationException):
        order.validate_totals()


def test_order_totals_cover_items_tax_and_discount():
    order = _order()
    order.tax, order.discount = Decimal("5000"), Decimal("20000")
    order.total_amount = Order.compute_total(order.subtotal, order.shipping_cost, order.tax, order.discount)
    assert order.total_amount == Decimal("200000")
    order.validate_totals()

    order.subtotal = Decimal("190000")
    with pytest.raises(DomainValidationException) as exc:
        order.validate_totals()
    assert exc.value.field == "subtotal"


def test_order_code_and_resi_formats():
    code = generate_order_code(datetime(2026, 10, 19, tzinfo=timezone.utc))
    assert ORDER_CODE_PATTERN.match(code)
    assert code.startswith("ZVR-20261019-")

    resi = generate_resi("jne", 42, datetime(2026, 10, 19, tzinfo=timezone.utc))
    validate_resi_format(resi)
    assert resi.startswith("ZVR-JNE-20261019-42-")
    with pytest.raises(InvalidResiFormatException):
        validate_resi_format("ZVR-JNE-20261019-42")
    assert validate_admin_resi("  JNE0012345678 ") == "JNE0012345678"
    with pytest.raises(InvalidResiFormatException):
        validate_admin_resi("JNE 12 34 56")


def test_external_id_round_trip_and_signature():
    external_id = generate_external_id("ZVR-20261019-ABCDEFGH", now=1760864400)
    assert external_id.startswith("ZVR-20261019-ABCDEFGH-1760864400-")
    assert order_code_from_external_id(external_id) == "ZVR-20261019-ABCDEFGH"
    assert order_code_from_external_id("ZVR-20261019-ABCDEFGH") == "ZVR-20261019-ABCDEFGH"

    signature = compute_signature(external_id, "200", "215000.00", "server-key")
    assert len(signature) == 128
    assert verify_signature(external_id, "200", "215000.00", "server-key", signature.upper())
    assert not verify_signature(external_id, "200", "215000", "server-key", signature)
    assert not verify_signature(external_id, "200", "215000.00", "server-key", "")
