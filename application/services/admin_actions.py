"""
Admin force-actions.

Every action follows one pattern: replay an earlier result for a known
idempotency key, run the state change under row locks, and write the audit
row in the same transaction. A rejected action rolls back and leaves a
`success=false` audit row written on its own.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from application.dtos.admin import (
    AdminActionResult,
    AdminActionType,
    AdminContext,
    ForceCancelRequest,
    ForceRefundRequest,
    ForceReshipRequest,
    ReconcileAction,
    ReconcilePaymentRequest,
)
from application.dtos.payments import GatewayStatus
from application.dtos.refunds import CreateRefundRequest
from application.ports.payment_gateway import PaymentGateway
from application.services.fulfillment import FulfillmentEngine
from application.services.order_transitions import OrderTransitioner
from application.services.payment_coordinator import PaymentCoordinator
from application.services.refund_engine import RefundEngine
from core.logging_config import get_logger
from domain.audit.entity import AuditLog, StatusHistory
from domain.common.exceptions import (
    BusinessException,
    IdempotencyConflictException,
    InvalidTransitionException,
    OrderNotFoundException,
    PaymentAlreadyFinalException,
    PaymentNotFoundException,
    ShipmentNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order
from domain.order.status import OrderStatus
from domain.payment.entity import Payment
from domain.payment.status import PaymentStatus
from domain.reconciliation.entity import SyncType
from domain.refund.entity import MANUAL_REFUND_ID

logger = get_logger(__name__)

_MARK_TARGETS = {
    ReconcileAction.MARK_PAID: PaymentStatus.PAID,
    ReconcileAction.MARK_FAILED: PaymentStatus.FAILED,
    ReconcileAction.MARK_EXPIRED: PaymentStatus.EXPIRED,
}
_ORDER_FOR_MARK = {
    PaymentStatus.PAID: OrderStatus.PAID,
    PaymentStatus.FAILED: OrderStatus.FAILED,
    PaymentStatus.EXPIRED: OrderStatus.EXPIRED,
}


@dataclass
class _Outcome:
    """What an action reports back into its audit row."""

    target_id: Optional[int] = None
    target_code: Optional[str] = None
    state_before: dict[str, Any] = field(default_factory=dict)
    state_after: dict[str, Any] = field(default_factory=dict)


class AdminActions:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        transitioner: OrderTransitioner,
        refunds: RefundEngine,
        fulfillment: FulfillmentEngine,
        payments: PaymentCoordinator,
        gateway: PaymentGateway,
    ) -> None:
        self._uow_factory = uow_factory
        self._transitioner = transitioner
        self._refunds = refunds
        self._fulfillment = fulfillment
        self._payments = payments
        self._gateway = gateway

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def force_cancel(self, admin: AdminContext, req: ForceCancelRequest) -> AdminActionResult:
        async def operation(uow: AbstractUnitOfWork, outcome: _Outcome) -> None:
            order = await self._lock_order(uow, req.order_id, outcome)
            if not order.status.can_be_cancelled_by_admin:
                raise InvalidTransitionException("order", order.status.value, OrderStatus.CANCELLED.value)
            was_reserved = order.stock_reserved
            await self._transitioner.apply(
                uow,
                order,
                OrderStatus.CANCELLED,
                actor=admin.actor,
                reason=req.reason,
                restore_stock=req.restore_stock,
                metadata={"force": True},
            )
            outcome.state_after = {
                "status": order.status.value,
                "stock_restored": was_reserved and not order.stock_reserved,
            }

        return await self._guarded(
            admin,
            AdminActionType.FORCE_CANCEL,
            target_type="order",
            target_id=req.order_id,
            reason=req.reason,
            idempotency_key=req.idempotency_key,
            operation=operation,
        )

    async def force_refund(self, admin: AdminContext, req: ForceRefundRequest) -> AdminActionResult:
        created: dict[str, Any] = {}

        async def operation(uow: AbstractUnitOfWork, outcome: _Outcome) -> None:
            order = await self._lock_order(uow, req.order_id, outcome)
            refund = await self._refunds.create_in(
                uow,
                order,
                CreateRefundRequest(
                    order_id=order.id,
                    refund_type=req.refund_type,
                    reason=req.reason,
                    reason_detail=req.reason_detail,
                    amount=req.amount,
                    items=req.items,
                    idempotency_key=req.idempotency_key,
                    requested_by=admin.actor,
                ),
            )
            manual = req.skip_gateway or refund.payment_id is None
            if manual:
                await self._refunds.complete_in(uow, order, refund, MANUAL_REFUND_ID, actor=admin.actor)
            created.update(refund_id=refund.id, manual=manual)
            outcome.state_after = {
                "refund_id": refund.id,
                "refund_code": refund.refund_code,
                "refund_type": refund.refund_type.value,
                "refund_amount": str(refund.refund_amount),
                "refund_status": refund.status.value,
                "order_status": order.status.value,
                "manual": manual,
            }

        result = await self._guarded(
            admin,
            AdminActionType.FORCE_REFUND,
            target_type="order",
            target_id=req.order_id,
            reason=req.reason_detail or req.reason.value,
            idempotency_key=req.idempotency_key,
            operation=operation,
        )
        if created and not created["manual"]:
            # money moves after the audited commit; the refund history records the gateway outcome
            result.refund = await self._refunds.process_refund(created["refund_id"], actor=admin.actor)
        return result

    async def force_reship(self, admin: AdminContext, req: ForceReshipRequest) -> AdminActionResult:
        async def operation(uow: AbstractUnitOfWork, outcome: _Outcome) -> None:
            order = await self._lock_order(uow, req.order_id, outcome)
            shipment = await uow.shipment_repository.get_current_for_order(order.id, for_update=True)
            if shipment is None:
                raise ShipmentNotFoundException(f"order {order.id}")
            outcome.state_before.update(
                shipment_id=shipment.id,
                shipment_status=shipment.status.value,
                reship_count=shipment.reship_count,
            )
            replacement = await self._fulfillment.reship_in(
                uow,
                order,
                shipment,
                actor=admin.actor,
                reason=req.reason,
                new_tracking_number=req.new_tracking_number,
            )
            outcome.state_after = {
                "original_shipment_id": shipment.id,
                "original_status": shipment.status.value,
                "reship_count": shipment.reship_count,
                "new_shipment_id": replacement.id,
                "new_status": replacement.status.value,
                "new_tracking_number": replacement.tracking_number,
            }

        return await self._guarded(
            admin,
            AdminActionType.FORCE_RESHIP,
            target_type="order",
            target_id=req.order_id,
            reason=req.reason,
            idempotency_key=req.idempotency_key,
            operation=operation,
        )

    async def reconcile_payment(self, admin: AdminContext, req: ReconcilePaymentRequest) -> AdminActionResult:
        verdict: Optional[GatewayStatus] = None
        if req.action is ReconcileAction.SYNC_GATEWAY:
            replay = await self._replay(req.idempotency_key)
            if replay is not None:
                return replay
            async with self._uow_factory(readonly=True) as uow:
                payment = await uow.payment_repository.get_by_id(req.payment_id)
                if payment is None:
                    raise PaymentNotFoundException(req.payment_id)
                external_id = payment.external_id
            verdict = await self._gateway.get_status(external_id)

        async def operation(uow: AbstractUnitOfWork, outcome: _Outcome) -> None:
            peek = await uow.payment_repository.get_by_id(req.payment_id)
            if peek is None:
                raise PaymentNotFoundException(req.payment_id)
            order = await self._lock_order(uow, peek.order_id, outcome)
            payment = await uow.payment_repository.get_for_update(req.payment_id)
            outcome.target_id = payment.id
            outcome.state_before.update(payment_status=payment.status.value)

            if verdict is not None:
                result = await self._payments.resolve_in(
                    uow, order, verdict, sync_type=SyncType.ADMIN_SYNC, external_id=payment.external_id, actor=admin.actor,
                )
                after_payment = result.payment_status
                gateway_status = verdict.transaction_status
            else:
                await self._mark(uow, order, payment, _MARK_TARGETS[req.action], admin=admin, note=req.note)
                after_payment = payment.status.value
                gateway_status = None
            outcome.state_after = {
                "action": req.action.value,
                "reconciled": True,
                "payment_status": after_payment,
                "order_status": order.status.value,
                "stock_reserved": order.stock_reserved,
            }
            if gateway_status:
                outcome.state_after["gateway_status"] = gateway_status

        return await self._guarded(
            admin,
            AdminActionType.RECONCILE_PAYMENT,
            target_type="payment",
            target_id=req.payment_id,
            reason=req.note or req.action.value,
            idempotency_key=req.idempotency_key,
            operation=operation,
            replay_checked=verdict is not None,
        )

    async def list_audit(self, target_type: str, target_id: int) -> list[AdminActionResult]:
        async with self._uow_factory(readonly=True) as uow:
            return [AdminActionResult.from_audit(log) for log in await uow.audit_log_repository.list_for_target(target_type, target_id)]

    # ------------------------------------------------------------------
    # Shared pattern
    # ------------------------------------------------------------------

    async def _guarded(
        self,
        admin: AdminContext,
        action: AdminActionType,
        *,
        target_type: str,
        target_id: Optional[int],
        reason: Optional[str],
        idempotency_key: Optional[str],
        operation: Callable[[AbstractUnitOfWork, _Outcome], Awaitable[None]],
        replay_checked: bool = False,
    ) -> AdminActionResult:
        if not replay_checked:
            replay = await self._replay(idempotency_key)
            if replay is not None:
                return replay

        outcome = _Outcome(target_id=target_id)
        try:
            async with self._uow_factory() as uow:
                await operation(uow, outcome)
                log = await uow.audit_log_repository.add(
                    self._audit(admin, action, target_type, outcome, reason=reason, idempotency_key=idempotency_key)
                )
        except IdempotencyConflictException:
            # a concurrent request with the same key won the insert
            replay = await self._replay(idempotency_key)
            if replay is None:
                raise
            return replay
        except BusinessException as exc:
            await self._record_failure(admin, action, target_type, outcome, reason=reason, error=exc)
            raise

        logger.info(
            "admin_action_succeeded",
            action=action.value,
            target_type=target_type,
            target_id=outcome.target_id,
            admin=admin.admin_email,
            audit_id=log.id,
        )
        return AdminActionResult.from_audit(log)

    async def _replay(self, idempotency_key: Optional[str]) -> Optional[AdminActionResult]:
        if not idempotency_key:
            return None
        async with self._uow_factory(readonly=True) as uow:
            existing = await uow.audit_log_repository.get_by_idempotency_key(idempotency_key)
        if existing is None:
            return None
        logger.info("admin_action_replayed", idempotency_key=idempotency_key, audit_id=existing.id)
        return AdminActionResult.from_audit(existing, replayed=True)

    async def _record_failure(
        self,
        admin: AdminContext,
        action: AdminActionType,
        target_type: str,
        outcome: _Outcome,
        *,
        reason: Optional[str],
        error: BusinessException,
    ) -> None:
        # no idempotency key: a rejected action may be retried with the same key
        async with self._uow_factory() as uow:
            await uow.audit_log_repository.add(
                self._audit(admin, action, target_type, outcome, reason=reason, success=False, error_message=error.message)
            )
        logger.warning(
            "admin_action_rejected",
            action=action.value,
            target_type=target_type,
            target_id=outcome.target_id,
            admin=admin.admin_email,
            error=error.message,
            error_type=error.error_type,
        )

    @staticmethod
    def _audit(
        admin: AdminContext,
        action: AdminActionType,
        target_type: str,
        outcome: _Outcome,
        *,
        reason: Optional[str],
        idempotency_key: Optional[str] = None,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> AuditLog:
        return AuditLog(
            id=None,
            admin_email=admin.admin_email,
            admin_id=admin.admin_id,
            admin_ip=admin.ip_address,
            admin_user_agent=admin.user_agent,
            action_type=action.value,
            target_type=target_type,
            target_id=outcome.target_id,
            target_code=outcome.target_code,
            state_before=outcome.state_before,
            state_after=outcome.state_after if success else {},
            success=success,
            error_message=error_message,
            reason=reason,
            idempotency_key=idempotency_key,
        )

    @staticmethod
    async def _lock_order(uow: AbstractUnitOfWork, order_id: int, outcome: _Outcome) -> Order:
        order = await uow.order_repository.get_for_update(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        outcome.target_code = order.order_code
        outcome.state_before = order.snapshot()
        return order

    async def _mark(
        self,
        uow: AbstractUnitOfWork,
        order: Order,
        payment: Payment,
        target: PaymentStatus,
        *,
        admin: AdminContext,
        note: Optional[str],
    ) -> None:
        if payment.status is target:
            return
        late_settlement = target is PaymentStatus.PAID and payment.is_final
        if payment.is_final and not late_settlement:
            raise PaymentAlreadyFinalException(payment.id, payment.status.value)
        order_target = _ORDER_FOR_MARK[target]
        override = late_settlement or (target is PaymentStatus.PAID and order.status.requires_stock_restore)
        if order.status is not order_target and order.status.is_paid_or_later and target is not PaymentStatus.PAID:
            raise InvalidTransitionException("order", order.status.value, order_target.value)

        previous = payment.status
        payment.apply_status(target, admin_override=late_settlement)
        await uow.payment_repository.update(payment)
        await uow.status_history_repository.add(
            StatusHistory(
                id=None,
                entity_type="payment",
                entity_id=payment.id,
                from_status=previous.value,
                to_status=target.value,
                actor=admin.actor,
                reason=note or "admin reconciliation",
            )
        )
        if order.status is order_target or (target is PaymentStatus.PAID and order.status.is_paid_or_later):
            return
        await self._transitioner.apply(
            uow,
            order,
            order_target,
            actor=admin.actor,
            reason=note or "admin reconciliation",
            admin_override=override,
            metadata={"payment_id": payment.id, "reconcile": target.value},
        )
