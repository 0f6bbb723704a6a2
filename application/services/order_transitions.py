"""
The single transactional path for order and shipment status changes.

Every caller (checkout flow, webhooks, sweepers, admin actions, refunds)
holds the order row lock and hands the locked entity here. One call writes
the new status, its StatusHistory row, stock movements, the payment and
shipment cascades and the outbox notification, all inside the caller's
unit of work.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from application.ports.notifier import Notifier
from application.services.stock import StockLedger
from core.logging_config import get_logger
from domain.audit.entity import StatusHistory
from domain.common.exceptions import InvalidTransitionException
from domain.common.time import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.notification.entity import EventKind
from domain.order.entity import Order
from domain.order.status import OrderStatus, can_transition
from domain.payment.status import PAYMENT_STATUS_FOR_ORDER
from domain.shipment.entity import Shipment
from domain.shipment.status import ShipmentStatus, TransitionActor, is_allowed_for

logger = get_logger(__name__)

NOTIFY_ON = {
    OrderStatus.PAID: EventKind.PAYMENT_SUCCESS,
    OrderStatus.SHIPPED: EventKind.ORDER_SHIPPED,
    OrderStatus.DELIVERED: EventKind.ORDER_DELIVERED,
    OrderStatus.CANCELLED: EventKind.ORDER_CANCELLED,
    OrderStatus.REFUNDED: EventKind.ORDER_REFUNDED,
}

# shipment status an order status drags the shipment into
_SHIPMENT_CASCADE = {
    OrderStatus.PAID: ShipmentStatus.PROCESSING,
    OrderStatus.SHIPPED: ShipmentStatus.SHIPPED,
    OrderStatus.DELIVERED: ShipmentStatus.DELIVERED,
    OrderStatus.CANCELLED: ShipmentStatus.CANCELLED,
    OrderStatus.EXPIRED: ShipmentStatus.CANCELLED,
    OrderStatus.FAILED: ShipmentStatus.CANCELLED,
}


class OrderTransitioner:
    def __init__(self, notifier: Notifier, stock: StockLedger) -> None:
        self._notifier = notifier
        self._stock = stock

    async def apply(
        self,
        uow: AbstractUnitOfWork,
        order: Order,
        target: OrderStatus,
        *,
        actor: str,
        reason: Optional[str] = None,
        admin_override: bool = False,
        restore_stock: bool = True,
        metadata: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Move a locked order to `target`. Returns False if it was already there."""
        if order.status is target:
            return False
        previous = order.status
        if not can_transition(previous, target, admin_override=admin_override):
            raise InvalidTransitionException("order", previous.value, target.value)
        now = now or utcnow()

        if admin_override and previous.requires_stock_restore and not order.stock_reserved:
            # late settlement of an order whose stock went back to the shelf
            await self._stock.reserve(uow, order)

        order.transition_to(target, admin_override=admin_override, now=now)

        if target is OrderStatus.PAID:
            await self._stock.deduct(uow, order)
        elif target.requires_stock_restore and restore_stock:
            await self._stock.release(uow, order)

        await uow.order_repository.update(order)
        await uow.status_history_repository.add(
            StatusHistory(
                id=None,
                entity_type="order",
                entity_id=order.id,
                from_status=previous.value,
                to_status=target.value,
                actor=actor,
                reason=reason,
                metadata=metadata or {},
                created_at=now,
            )
        )

        if target.requires_stock_restore:
            await self._cascade_payment(uow, order, target, actor=actor, now=now)
        await self._cascade_shipment(uow, order, target, actor=actor, reason=reason, admin_override=admin_override, now=now)

        kind = NOTIFY_ON.get(target)
        if kind is not None:
            await self._notifier.enqueue(
                uow,
                order_id=order.id,
                event_kind=kind,
                recipient=order.recipient,
                payload=self._payload(order, previous),
            )

        logger.info(
            "order_transitioned",
            order_id=order.id,
            order_code=order.order_code,
            from_status=previous.value,
            to_status=target.value,
            actor=actor,
            admin_override=admin_override,
        )
        return True

    async def apply_shipment(
        self,
        uow: AbstractUnitOfWork,
        shipment: Shipment,
        target: ShipmentStatus,
        *,
        actor: TransitionActor,
        actor_label: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Move a locked shipment and write its history row."""
        previous = shipment.status
        if not shipment.transition_to(target, actor=actor, now=now):
            return False
        await uow.shipment_repository.update(shipment)
        await uow.status_history_repository.add(
            StatusHistory(
                id=None,
                entity_type="shipment",
                entity_id=shipment.id,
                from_status=previous.value,
                to_status=target.value,
                actor=actor_label,
                reason=reason,
                created_at=now or utcnow(),
            )
        )
        logger.info(
            "shipment_transitioned",
            shipment_id=shipment.id,
            order_id=shipment.order_id,
            from_status=previous.value,
            to_status=target.value,
            actor=actor_label,
        )
        return True

    async def _cascade_payment(self, uow: AbstractUnitOfWork, order: Order, target: OrderStatus, *, actor: str, now: datetime) -> None:
        payment = await uow.payment_repository.get_active_for_order(order.id, for_update=True)
        if payment is None:
            return
        payment_target = PAYMENT_STATUS_FOR_ORDER[target]
        previous = payment.status
        payment.apply_status(payment_target, now=now)
        await uow.payment_repository.update(payment)
        await uow.status_history_repository.add(
            StatusHistory(
                id=None,
                entity_type="payment",
                entity_id=payment.id,
                from_status=previous.value,
                to_status=payment_target.value,
                actor=actor,
                reason=f"order {target.value.lower()}",
                created_at=now,
            )
        )

    async def _cascade_shipment(
        self,
        uow: AbstractUnitOfWork,
        order: Order,
        target: OrderStatus,
        *,
        actor: str,
        reason: Optional[str],
        admin_override: bool,
        now: datetime,
    ) -> None:
        shipment_target = _SHIPMENT_CASCADE.get(target)
        if shipment_target is None:
            return
        shipment = await uow.shipment_repository.get_current_for_order(order.id, for_update=True)
        if shipment is None or shipment.status is shipment_target:
            return
        if target is OrderStatus.SHIPPED and order.resi:
            shipment.tracking_number = order.resi
        # the order move was already authorised; the shipment table still applies
        privileged = admin_override or target is OrderStatus.DELIVERED
        kind = TransitionActor.ADMIN if privileged else TransitionActor.CASCADE
        if not is_allowed_for(shipment.status, shipment_target, kind):
            logger.warning(
                "shipment_cascade_skipped",
                order_id=order.id,
                shipment_id=shipment.id,
                shipment_status=shipment.status.value,
                target=shipment_target.value,
            )
            return
        await self.apply_shipment(
            uow,
            shipment,
            shipment_target,
            actor=kind,
            actor_label=actor,
            reason=reason or f"order {target.value.lower()}",
            now=now,
        )

    @staticmethod
    def _payload(order: Order, previous: OrderStatus) -> dict[str, Any]:
        return {
            "order_code": order.order_code,
            "customer_name": order.customer_name,
            "status": order.status.value,
            "previous_status": previous.value,
            "total_amount": str(order.total_amount),
            "resi": order.resi,
            "refund_amount": str(order.refund_amount),
        }
