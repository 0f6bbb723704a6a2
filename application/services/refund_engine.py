"""
Refund engine.

Creation and every move that makes a refund count against the balance
(PENDING -> PROCESSING, PENDING -> COMPLETED) re-check the refundable
balance while holding the order row lock.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Callable, Optional

from application.dtos.payments import GatewayRefundRequest
from application.dtos.refunds import CreateRefundRequest, RefundView
from application.ports.payment_gateway import PaymentGateway
from application.services.order_transitions import OrderTransitioner
from application.services.stock import StockLedger
from core.logging_config import get_logger
from domain.audit.entity import StatusHistory
from domain.common.exceptions import (
    GatewayPermanentException,
    GatewayTransientException,
    IdempotencyConflictException,
    ManualRefundRequiredException,
    OrderNotFoundException,
    RefundNotAllowedException,
    RefundNotFoundException,
)
from domain.common.time import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order
from domain.order.status import OrderStatus
from domain.payment.entity import Payment
from domain.payment.status import PaymentStatus
from domain.refund.calculator import (
    ItemSelection,
    compute_breakdown,
    ensure_within_balance,
    generate_refund_code,
    refundable_balance,
)
from domain.refund.entity import MANUAL_REFUND_ID, Refund
from domain.refund.status import RefundStatus, RefundType
from shared.codes.payment_codes import REFUND_ERROR_MESSAGES

logger = get_logger(__name__)

REFUNDABLE_ORDER_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.COMPLETED})
MANUAL_PROCESSING_NOTE = "manual processing required"


class RefundEngine:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        transitioner: OrderTransitioner,
        stock: StockLedger,
        *,
        skip_gateway: bool = False,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._transitioner = transitioner
        self._stock = stock
        self._skip_gateway = skip_gateway

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_refund(self, req: CreateRefundRequest) -> RefundView:
        if req.idempotency_key:
            existing = await self._by_idempotency_key(req.idempotency_key)
            if existing is not None:
                return RefundView.from_entity(existing)
        try:
            async with self._uow_factory() as uow:
                order = await uow.order_repository.get_for_update(req.order_id)
                if order is None:
                    raise OrderNotFoundException(req.order_id)
                refund = await self.create_in(uow, order, req)
        except IdempotencyConflictException:
            # lost an insert race on the same key
            existing = await self._by_idempotency_key(req.idempotency_key)
            if existing is None:
                raise
            return RefundView.from_entity(existing)
        return RefundView.from_entity(refund)

    async def create_in(self, uow: AbstractUnitOfWork, order: Order, req: CreateRefundRequest) -> Refund:
        """Create a PENDING refund for a locked order."""
        if order.status not in REFUNDABLE_ORDER_STATUSES:
            raise RefundNotAllowedException(
                f"Order {order.order_code} is {order.status.value}; refunds need DELIVERED or COMPLETED",
                details={"order_status": order.status.value},
            )
        payment = await self._paid_payment(uow, order)
        balance = await self._balance(uow, order, payment)
        already = await uow.refund_repository.refunded_quantities(order.id)
        breakdown = compute_breakdown(
            order,
            req.refund_type,
            amount=req.amount,
            selections=[ItemSelection(i.order_item_id, i.quantity) for i in req.items],
            already_refunded=already,
        )
        ensure_within_balance(breakdown.refund_amount, balance)

        refund = await uow.refund_repository.create(
            Refund(
                id=None,
                refund_code=generate_refund_code(),
                order_id=order.id,
                payment_id=payment.id if payment else None,
                refund_type=req.refund_type,
                reason=req.reason,
                reason_detail=req.reason_detail,
                original_amount=order.total_amount,
                refund_amount=breakdown.refund_amount,
                items_refund=breakdown.items_refund,
                shipping_refund=breakdown.shipping_refund,
                idempotency_key=req.idempotency_key,
                requested_by=req.requested_by,
                items=breakdown.items,
            )
        )
        await self._history(uow, refund, None, RefundStatus.PENDING, actor=req.requested_by or "system")
        logger.info(
            "refund_created",
            refund_id=refund.id,
            refund_code=refund.refund_code,
            order_id=order.id,
            refund_type=refund.refund_type.value,
            amount=str(refund.refund_amount),
            balance=str(balance),
        )
        return refund

    # ------------------------------------------------------------------
    # Process
    # ------------------------------------------------------------------

    async def process_refund(self, refund_id: int, *, actor: str = "system") -> RefundView:
        async with self._uow_factory() as uow:
            refund = await self._locked_refund(uow, refund_id)
            order = await uow.order_repository.get_for_update(refund.order_id)
            refund = await uow.refund_repository.get_for_update(refund_id)
            if refund.status is RefundStatus.COMPLETED:
                return RefundView.from_entity(refund)
            payment = await uow.payment_repository.get_by_id(refund.payment_id) if refund.payment_id else None
            if payment is None:
                # nothing to refund through the gateway
                await self.complete_in(uow, order, refund, MANUAL_REFUND_ID, actor=actor)
                return RefundView.from_entity(refund)
            if refund.status is RefundStatus.FAILED:
                await self._move(uow, refund, RefundStatus.PENDING, actor=actor, note="retry")
            if refund.status is not RefundStatus.PENDING:
                raise RefundNotAllowedException(
                    f"Refund {refund.refund_code} is {refund.status.value}",
                    details={"refund_status": refund.status.value},
                )
            await self._ensure_balance_for(uow, order, refund, payment)
            await self._move(uow, refund, RefundStatus.PROCESSING, actor=actor)
            external_id = payment.external_id

        if self._skip_gateway:
            gateway_refund_id = f"DEV-{refund.refund_code}"
            gateway_status = "skipped"
            logger.warning("refund_gateway_skipped", refund_id=refund_id)
        else:
            try:
                result = await self._gateway.refund(
                    external_id,
                    GatewayRefundRequest(
                        refund_key=refund.refund_code,
                        amount=refund.refund_amount,
                        reason=refund.reason_detail or refund.reason.value,
                    ),
                )
            except GatewayTransientException as exc:
                if exc.status_code == 418:
                    await self._back_to_pending(refund_id, actor=actor)
                    raise ManualRefundRequiredException(refund.refund_code, REFUND_ERROR_MESSAGES[418]) from exc
                await self._fail(refund_id, exc.message, actor=actor)
                raise
            except GatewayPermanentException as exc:
                message = REFUND_ERROR_MESSAGES.get(exc.status_code or 0, exc.message)
                await self._fail(refund_id, message, actor=actor)
                raise
            gateway_refund_id = result.chargeback_id or refund.refund_code
            gateway_status = result.status

        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_for_update(refund.order_id)
            refund = await uow.refund_repository.get_for_update(refund_id)
            refund.gateway_status = gateway_status
            await self.complete_in(uow, order, refund, gateway_refund_id, actor=actor)
        return RefundView.from_entity(refund)

    async def complete_manually(self, refund_id: int, *, actor: str, note: Optional[str] = None) -> RefundView:
        """Admin confirms the money went out by bank transfer."""
        async with self._uow_factory() as uow:
            refund = await self._locked_refund(uow, refund_id)
            order = await uow.order_repository.get_for_update(refund.order_id)
            refund = await uow.refund_repository.get_for_update(refund_id)
            if refund.status is RefundStatus.COMPLETED:
                return RefundView.from_entity(refund)
            if refund.status is not RefundStatus.PENDING:
                raise RefundNotAllowedException(
                    f"Only PENDING refunds can be completed manually; {refund.refund_code} is {refund.status.value}",
                    details={"refund_status": refund.status.value},
                )
            if note:
                refund.note = note
            await self.complete_in(uow, order, refund, MANUAL_REFUND_ID, actor=actor)
        return RefundView.from_entity(refund)

    async def complete_in(
        self,
        uow: AbstractUnitOfWork,
        order: Order,
        refund: Refund,
        gateway_refund_id: str,
        *,
        actor: str,
    ) -> None:
        """Mark a locked refund COMPLETED and run the order-side effects."""
        previous = refund.status
        if previous is RefundStatus.PENDING:
            payment = await uow.payment_repository.get_by_id(refund.payment_id) if refund.payment_id else None
            await self._ensure_balance_for(uow, order, refund, payment)
        refund.mark_completed(gateway_refund_id, processed_by=actor)
        await self._restock(uow, order, refund)
        await uow.refund_repository.update(refund)
        await self._history(uow, refund, previous, RefundStatus.COMPLETED, actor=actor)

        completed = [r for r in await uow.refund_repository.list_for_order(order.id) if r.status is RefundStatus.COMPLETED]
        total_refunded = sum((r.refund_amount for r in completed), Decimal("0"))
        order.refund_amount = total_refunded
        fully_refunded = total_refunded >= order.total_amount
        order.refund_status = "FULL" if fully_refunded else "PARTIAL"
        order.refunded_at = order.refunded_at or utcnow()
        if fully_refunded and order.status is not OrderStatus.REFUNDED:
            await self._transitioner.apply(
                uow, order, OrderStatus.REFUNDED, actor=actor, reason=f"refund {refund.refund_code}",
                metadata={"refund_id": refund.id},
            )
        else:
            await uow.order_repository.update(order)
        logger.info(
            "refund_completed",
            refund_id=refund.id,
            refund_code=refund.refund_code,
            order_id=order.id,
            gateway_refund_id=gateway_refund_id,
            total_refunded=str(total_refunded),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_refund(self, refund_id: int) -> RefundView:
        async with self._uow_factory(readonly=True) as uow:
            refund = await uow.refund_repository.get_by_id(refund_id)
            if refund is None:
                raise RefundNotFoundException(refund_id)
            return RefundView.from_entity(refund)

    async def list_for_order(self, order_id: int) -> list[RefundView]:
        async with self._uow_factory(readonly=True) as uow:
            return [RefundView.from_entity(r) for r in await uow.refund_repository.list_for_order(order_id)]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _by_idempotency_key(self, key: str) -> Optional[Refund]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.refund_repository.get_by_idempotency_key(key)

    @staticmethod
    async def _locked_refund(uow: AbstractUnitOfWork, refund_id: int) -> Refund:
        # plain read first: the order lock must be taken before the refund lock
        refund = await uow.refund_repository.get_by_id(refund_id)
        if refund is None:
            raise RefundNotFoundException(refund_id)
        return refund

    @staticmethod
    async def _paid_payment(uow: AbstractUnitOfWork, order: Order) -> Optional[Payment]:
        payment = await uow.payment_repository.get_latest_for_order(order.id, for_update=True)
        if payment is not None and payment.status is not PaymentStatus.PAID:
            raise RefundNotAllowedException(
                f"Payment of order {order.order_code} is {payment.status.value}",
                details={"payment_status": payment.status.value},
            )
        return payment

    @staticmethod
    async def _balance(
        uow: AbstractUnitOfWork,
        order: Order,
        payment: Optional[Payment],
        *,
        exclude_refund_id: Optional[int] = None,
    ) -> Decimal:
        paid = payment.amount if payment else order.total_amount
        counted = await uow.refund_repository.sum_counted_for_order(order.id, exclude_refund_id=exclude_refund_id)
        return refundable_balance(paid, counted)

    async def _ensure_balance_for(self, uow: AbstractUnitOfWork, order: Order, refund: Refund, payment: Optional[Payment]) -> None:
        balance = await self._balance(uow, order, payment, exclude_refund_id=refund.id)
        ensure_within_balance(refund.refund_amount, balance)

    async def _restock(self, uow: AbstractUnitOfWork, order: Order, refund: Refund) -> None:
        if refund.refund_type is RefundType.FULL:
            already = await self._restored_quantities(uow, order, exclude_refund_id=refund.id)
            for item in order.items:
                quantity = item.quantity - already.get(item.id, 0)
                if quantity > 0:
                    await self._stock.restock(uow, order, item, quantity, f"refund {refund.refund_code}")
            return
        if refund.refund_type is not RefundType.ITEM_ONLY:
            return
        by_id = {item.id: item for item in order.items}
        for line in refund.items:
            if line.stock_restored:
                continue
            await self._stock.restock(uow, order, by_id[line.order_item_id], line.quantity, f"refund {refund.refund_code}")
            line.stock_restored = True

    @staticmethod
    async def _restored_quantities(uow: AbstractUnitOfWork, order: Order, *, exclude_refund_id: int) -> dict[int, int]:
        restored: dict[int, int] = {}
        for other in await uow.refund_repository.list_for_order(order.id):
            if other.id == exclude_refund_id:
                continue
            for line in other.items:
                if line.stock_restored:
                    restored[line.order_item_id] = restored.get(line.order_item_id, 0) + line.quantity
        return restored

    async def _move(self, uow: AbstractUnitOfWork, refund: Refund, target: RefundStatus, *, actor: str, note: Optional[str] = None) -> None:
        previous = refund.status
        refund.transition_to(target, note=note)
        await uow.refund_repository.update(refund)
        await self._history(uow, refund, previous, target, actor=actor, reason=note)

    async def _back_to_pending(self, refund_id: int, *, actor: str) -> None:
        async with self._uow_factory() as uow:
            refund = await self._locked_refund(uow, refund_id)
            await uow.order_repository.get_for_update(refund.order_id)
            refund = await uow.refund_repository.get_for_update(refund_id)
            await self._move(uow, refund, RefundStatus.PENDING, actor=actor, note=MANUAL_PROCESSING_NOTE)
        logger.warning("refund_manual_processing_required", refund_id=refund_id)

    async def _fail(self, refund_id: int, message: str, *, actor: str) -> None:
        async with self._uow_factory() as uow:
            refund = await self._locked_refund(uow, refund_id)
            await uow.order_repository.get_for_update(refund.order_id)
            refund = await uow.refund_repository.get_for_update(refund_id)
            await self._move(uow, refund, RefundStatus.FAILED, actor=actor, note=message)
        logger.warning("refund_failed", refund_id=refund_id, error=message)

    @staticmethod
    async def _history(
        uow: AbstractUnitOfWork,
        refund: Refund,
        previous: Optional[RefundStatus],
        target: RefundStatus,
        *,
        actor: str,
        reason: Optional[str] = None,
    ) -> None:
        await uow.status_history_repository.add(
            StatusHistory(
                id=None,
                entity_type="refund",
                entity_id=refund.id,
                from_status=previous.value if previous else None,
                to_status=target.value,
                actor=actor,
                reason=reason,
            )
        )
