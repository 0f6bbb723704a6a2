"""
Refund arithmetic per refund type.

Pure functions over order amounts; balance checks happen in the engine
under the order row lock.
"""
from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from domain.common.exceptions import DomainValidationException, RefundAmountExceedsBalanceException
from domain.common.time import utcnow
from domain.order.entity import Order
from domain.refund.entity import RefundItem
from domain.refund.status import RefundType

ZERO = Decimal("0")


@dataclass(frozen=True)
class ItemSelection:
    order_item_id: int
    quantity: int


@dataclass
class RefundBreakdown:
    refund_amount: Decimal
    items_refund: Decimal
    shipping_refund: Decimal
    items: list[RefundItem] = field(default_factory=list)


def compute_breakdown(
    order: Order,
    refund_type: RefundType,
    *,
    amount: Optional[Decimal] = None,
    selections: Iterable[ItemSelection] = (),
    already_refunded: Optional[Mapping[int, int]] = None,
) -> RefundBreakdown:
    if refund_type is RefundType.FULL:
        return RefundBreakdown(
            refund_amount=order.total_amount,
            items_refund=order.subtotal,
            shipping_refund=order.shipping_cost,
        )
    if refund_type is RefundType.SHIPPING_ONLY:
        if order.shipping_cost <= 0:
            raise DomainValidationException("Order has no shipping cost to refund", field="refund_type")
        return RefundBreakdown(
            refund_amount=order.shipping_cost,
            items_refund=ZERO,
            shipping_refund=order.shipping_cost,
        )
    if refund_type is RefundType.PARTIAL:
        if amount is None or amount <= 0:
            raise DomainValidationException("Partial refund requires a positive amount", field="amount")
        return RefundBreakdown(refund_amount=amount, items_refund=amount, shipping_refund=ZERO)
    return _item_breakdown(order, list(selections), already_refunded or {})


def _item_breakdown(order: Order, selections: list[ItemSelection], already_refunded: Mapping[int, int]) -> RefundBreakdown:
    if not selections:
        raise DomainValidationException("Item refund requires at least one item", field="items")
    by_id = {item.id: item for item in order.items}
    requested: dict[int, int] = {}
    for selection in selections:
        requested[selection.order_item_id] = requested.get(selection.order_item_id, 0) + selection.quantity

    refund_items: list[RefundItem] = []
    total = ZERO
    for order_item_id, quantity in requested.items():
        item = by_id.get(order_item_id)
        if item is None:
            raise DomainValidationException(
                f"Order item {order_item_id} does not belong to order {order.order_code}",
                field="items",
            )
        refundable_qty = item.quantity - already_refunded.get(order_item_id, 0)
        if quantity <= 0 or quantity > refundable_qty:
            raise DomainValidationException(
                f"Requested quantity {quantity} for item {order_item_id} exceeds refundable quantity {refundable_qty}",
                field="items",
                details={"order_item_id": order_item_id, "refundable": refundable_qty},
            )
        line = RefundItem(
            id=None,
            refund_id=None,
            order_item_id=order_item_id,
            quantity=quantity,
            price=item.unit_price,
            product_id=item.product_id,
        )
        refund_items.append(line)
        total += line.refund_amount
    return RefundBreakdown(refund_amount=total, items_refund=total, shipping_refund=ZERO, items=refund_items)


def refundable_balance(paid_amount: Decimal, counted_refunds: Decimal) -> Decimal:
    return max(paid_amount - counted_refunds, ZERO)


def ensure_within_balance(requested: Decimal, balance: Decimal) -> None:
    if requested > balance:
        raise RefundAmountExceedsBalanceException(requested, balance)


def generate_refund_code(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"RFD-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"
