"""
Payment coordinator: charge creation, webhook processing, status polling,
expiry and auto-resolution of stuck payments.

All paths that apply a gateway verdict share `resolve_in`, which runs
under the order row lock inside the caller's unit of work.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential

from application.dtos.payments import (
    ChargeCustomer,
    ChargeRequest,
    GatewayStatus,
    PaymentNotification,
    PaymentView,
    WebhookResult,
)
from application.ports.payment_gateway import PaymentGateway
from application.services.order_transitions import OrderTransitioner
from core.config import PaymentTuning
from core.logging_config import get_logger
from domain.audit.entity import StatusHistory
from domain.common.exceptions import (
    BusinessException,
    GatewayPermanentException,
    GatewayTransientException,
    InvalidPaymentTypeException,
    InvalidSignatureException,
    OrderAlreadyFinalException,
    OrderNotFoundException,
    PaymentExpiredException,
    PaymentNotFoundException,
)
from domain.common.time import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order
from domain.order.status import OrderStatus, can_transition as order_can_transition
from domain.payment.entity import Payment
from domain.payment.signature import generate_external_id, order_code_from_external_id, verify_signature
from domain.payment.status import ORDER_STATUS_FOR_PAYMENT, PaymentMethod, PaymentStatus, map_gateway_status
from domain.reconciliation.entity import PaymentSyncLog, SyncStatus, SyncType
from shared.codes.payment_codes import FINAL_GATEWAY_STATUSES

logger = get_logger(__name__)

SUPPORTED_METHODS = frozenset(m for m in PaymentMethod if m is not PaymentMethod.CREDIT_CARD)


def should_auto_resolve(local: PaymentStatus, gateway_status: str) -> bool:
    """Only a still-pending local row is overwritten by a final gateway verdict."""
    return local is PaymentStatus.PENDING and (gateway_status or "").lower() in FINAL_GATEWAY_STATUSES


@dataclass
class RecoveryReport:
    checked: int = 0
    resolved: int = 0
    still_pending: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


class PaymentCoordinator:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        transitioner: OrderTransitioner,
        *,
        server_key: str,
        tuning: PaymentTuning,
        batch_size: int = 100,
        sleep: Callable[[float], object] = asyncio.sleep,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._transitioner = transitioner
        self._server_key = server_key
        self._tuning = tuning
        self._batch_size = batch_size
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Charge
    # ------------------------------------------------------------------

    async def create_charge(self, order_id: int, method: PaymentMethod | str) -> PaymentView:
        method = self._parse_method(method)

        expired_order: Optional[str] = None
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_for_update(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            existing = await uow.payment_repository.get_active_for_order(order.id, for_update=True)
            if existing is not None:
                if not existing.is_expired():
                    logger.info("charge_reused", order_id=order.id, payment_id=existing.id)
                    return PaymentView.from_entity(existing)
                await self._expire_locked(uow, order, existing, actor="system:payment_expiry")
                expired_order = order.order_code
            elif order.status is not OrderStatus.PENDING:
                raise OrderAlreadyFinalException(order.order_code, order.status.value)
            customer = ChargeCustomer(name=order.customer_name, email=order.customer_email, phone=order.customer_phone)
            amount = order.total_amount
            order_code = order.order_code
        if expired_order:
            raise PaymentExpiredException(expired_order)

        external_id = generate_external_id(order_code)
        charge = await self._gateway.charge(
            ChargeRequest(
                external_id=external_id,
                amount=amount,
                method=method,
                customer=customer,
                expiry_minutes=self._tuning.charge_expiry_minutes,
            )
        )

        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_for_update(order_id)
            existing = await uow.payment_repository.get_active_for_order(order.id, for_update=True)
            if existing is not None:
                # a concurrent request won; its row is the answer
                logger.warning("charge_race_lost", order_id=order_id, kept_payment_id=existing.id, orphan_external_id=external_id)
                return PaymentView.from_entity(existing)
            if order.status is not OrderStatus.PENDING:
                raise OrderAlreadyFinalException(order.order_code, order.status.value)
            payment = await uow.payment_repository.create(
                Payment(
                    id=None,
                    order_id=order.id,
                    payment_method=method.value,
                    external_id=external_id,
                    amount=amount,
                    bank=charge.bank,
                    transaction_id=charge.transaction_id,
                    va_number=charge.va_number,
                    qr_url=charge.qr_url,
                    expiry_time=charge.expiry_time or utcnow() + timedelta(minutes=self._tuning.charge_expiry_minutes),
                    raw_response=charge.raw,
                )
            )
        logger.info("charge_created", order_id=order_id, payment_id=payment.id, external_id=external_id, method=method.value)
        return PaymentView.from_entity(payment)

    @staticmethod
    def _parse_method(method: PaymentMethod | str) -> PaymentMethod:
        try:
            parsed = PaymentMethod(method)
        except ValueError:
            raise InvalidPaymentTypeException(str(method)) from None
        if parsed not in SUPPORTED_METHODS:
            raise InvalidPaymentTypeException(parsed.value)
        return parsed

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    async def handle_webhook(self, notification: PaymentNotification) -> WebhookResult:
        if not verify_signature(
            notification.external_id,
            notification.status_code,
            notification.gross_amount,
            self._server_key,
            notification.signature_key,
        ):
            logger.warning("webhook_signature_invalid", external_id=notification.external_id)
            raise InvalidSignatureException(notification.external_id)

        order_code = order_code_from_external_id(notification.external_id)
        verdict = GatewayStatus(
            transaction_status=notification.transaction_status,
            transaction_id=notification.transaction_id,
            fraud_status=notification.fraud_status,
            status_code=notification.status_code,
            gross_amount=notification.gross_amount,
            payment_type=notification.payment_type,
            raw=notification.raw,
        )

        attempts = max(self._tuning.webhook_lookup_attempts, 1)
        for attempt in range(1, attempts + 1):
            async with self._uow_factory() as uow:
                order = await uow.order_repository.get_by_code_for_update(order_code)
                if order is not None:
                    return await self.resolve_in(
                        uow, order, verdict, sync_type=SyncType.WEBHOOK, external_id=notification.external_id
                    )
            if attempt < attempts:
                # checkout may not have committed yet
                await self._sleep(self._tuning.webhook_lookup_delay_seconds)
        logger.warning("webhook_order_not_found", order_code=order_code, external_id=notification.external_id)
        raise OrderNotFoundException(order_code)

    async def resolve_in(
        self,
        uow: AbstractUnitOfWork,
        order: Order,
        verdict: GatewayStatus,
        *,
        sync_type: SyncType,
        external_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> WebhookResult:
        """Apply a gateway verdict to a locked order and its payment."""
        payment = None
        if external_id:
            payment = await uow.payment_repository.get_by_external_id(external_id, for_update=True)
            if payment is not None and payment.order_id != order.id:
                payment = None
        if payment is None:
            payment = await uow.payment_repository.get_latest_for_order(order.id, for_update=True)
        result = WebhookResult(order_code=order.order_code, order_status=order.status.value)
        if payment is None:
            logger.warning("payment_missing_for_verdict", order_id=order.id, sync_type=sync_type.value)
            return result
        result.payment_id = payment.id
        result.payment_status = payment.status.value

        if payment.is_final:
            logger.info(
                "payment_already_final",
                order_id=order.id,
                payment_id=payment.id,
                status=payment.status.value,
                gateway_status=verdict.transaction_status,
                sync_type=sync_type.value,
            )
            return result

        new_status = map_gateway_status(verdict.transaction_status, verdict.fraud_status)
        actor = actor or f"gateway:{sync_type.value}"
        previous = payment.status
        payment.apply_status(new_status, transaction_id=verdict.transaction_id, raw_response=verdict.raw)
        await uow.payment_repository.update(payment)

        mismatch = False
        if new_status is not previous:
            await uow.status_history_repository.add(
                StatusHistory(
                    id=None,
                    entity_type="payment",
                    entity_id=payment.id,
                    from_status=previous.value,
                    to_status=new_status.value,
                    actor=actor,
                    reason=f"gateway {verdict.transaction_status}",
                )
            )
            target = ORDER_STATUS_FOR_PAYMENT[new_status]
            if order.status is not target:
                if order_can_transition(order.status, target):
                    await self._transitioner.apply(
                        uow,
                        order,
                        target,
                        actor=actor,
                        reason=f"payment {new_status.value.lower()}",
                        metadata={"payment_id": payment.id, "gateway_status": verdict.transaction_status},
                    )
                else:
                    mismatch = True
                    logger.warning(
                        "payment_order_status_conflict",
                        order_id=order.id,
                        order_status=order.status.value,
                        payment_status=new_status.value,
                    )
            result.changed = True

        await uow.payment_sync_log_repository.add(
            PaymentSyncLog(
                id=None,
                payment_id=payment.id,
                order_id=order.id,
                sync_type=sync_type,
                sync_status=SyncStatus.SYNCED,
                gateway_status=verdict.transaction_status,
                local_payment_status=payment.status.value,
                local_order_status=order.status.value,
                has_mismatch=mismatch,
                raw_response=verdict.raw,
            )
        )
        result.payment_status = payment.status.value
        result.order_status = order.status.value
        logger.info(
            "payment_verdict_applied",
            order_id=order.id,
            payment_id=payment.id,
            payment_status=payment.status.value,
            order_status=order.status.value,
            sync_type=sync_type.value,
        )
        return result

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def check_status(self, payment_id: int) -> PaymentView:
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
            if payment is None:
                raise PaymentNotFoundException(payment_id)
        if payment.is_final:
            return PaymentView.from_entity(payment)

        try:
            verdict = await self._gateway.get_status(payment.external_id)
        except (GatewayTransientException, GatewayPermanentException) as exc:
            logger.warning("payment_status_check_failed", payment_id=payment_id, error=exc.message)
            return PaymentView.from_entity(payment)

        if map_gateway_status(verdict.transaction_status, verdict.fraud_status) is payment.status:
            return PaymentView.from_entity(payment)

        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_for_update(payment.order_id)
            await self.resolve_in(uow, order, verdict, sync_type=SyncType.MANUAL_CHECK, external_id=payment.external_id)
            refreshed = await uow.payment_repository.get_by_id(payment_id)
        return PaymentView.from_entity(refreshed)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    async def expire_payment(self, payment_id: int, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
            if payment is None:
                raise PaymentNotFoundException(payment_id)
            order_id = payment.order_id

        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_for_update(order_id)
            payment = await uow.payment_repository.get_for_update(payment_id)
            if payment.status is not PaymentStatus.PENDING or not payment.is_expired(now):
                return False
            await self._expire_locked(uow, order, payment, actor="system:payment_expiry", now=now)
            return True

    async def expire_overdue_payments(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        async with self._uow_factory(readonly=True) as uow:
            overdue = await uow.payment_repository.list_expired_pending(now, self._batch_size)
        expired = 0
        for payment in overdue:
            try:
                if await self.expire_payment(payment.id, now):
                    expired += 1
            except Exception:
                logger.exception("payment_expiry_failed", payment_id=payment.id)
        if expired:
            logger.info("payments_expired", count=expired)
        return expired

    async def _expire_locked(
        self,
        uow: AbstractUnitOfWork,
        order: Order,
        payment: Payment,
        *,
        actor: str,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or utcnow()
        previous = payment.status
        payment.apply_status(PaymentStatus.EXPIRED, now=now)
        await uow.payment_repository.update(payment)
        await uow.status_history_repository.add(
            StatusHistory(
                id=None,
                entity_type="payment",
                entity_id=payment.id,
                from_status=previous.value,
                to_status=PaymentStatus.EXPIRED.value,
                actor=actor,
                reason="payment deadline passed",
                created_at=now,
            )
        )
        await uow.payment_sync_log_repository.add(
            PaymentSyncLog(
                id=None,
                payment_id=payment.id,
                order_id=order.id,
                sync_type=SyncType.EXPIRY,
                sync_status=SyncStatus.SYNCED,
                local_payment_status=PaymentStatus.EXPIRED.value,
                local_order_status=order.status.value,
            )
        )
        if order.status is OrderStatus.PENDING:
            await self._transitioner.apply(uow, order, OrderStatus.EXPIRED, actor=actor, reason="payment expired", now=now)

    # ------------------------------------------------------------------
    # Auto-resolve
    # ------------------------------------------------------------------

    async def recover_stuck_payments(self, now: Optional[datetime] = None) -> RecoveryReport:
        now = now or utcnow()
        cutoff = now - timedelta(minutes=self._tuning.stuck_after_minutes)
        async with self._uow_factory(readonly=True) as uow:
            stuck = await uow.payment_repository.list_pending_created_before(cutoff, self._batch_size)
        if stuck:
            async with self._uow_factory() as uow:
                await uow.payment_repository.mark_status_checked([p.id for p in stuck], now)

        report = RecoveryReport()
        for payment in stuck:
            report.checked += 1
            try:
                verdict = await self._status_with_backoff(payment.external_id)
            except (RetryError, BusinessException) as exc:
                report.failed += 1
                report.errors.append(f"{payment.external_id}: {exc}")
                await self._record_sync_failure(payment, str(exc))
                continue

            if not should_auto_resolve(payment.status, verdict.transaction_status):
                report.still_pending += 1
                continue
            try:
                async with self._uow_factory() as uow:
                    order = await uow.order_repository.get_for_update(payment.order_id)
                    result = await self.resolve_in(
                        uow, order, verdict, sync_type=SyncType.AUTO_RESOLVE, external_id=payment.external_id
                    )
            except Exception:
                logger.exception("payment_auto_resolve_apply_failed", payment_id=payment.id)
                report.failed += 1
                continue
            if result.changed:
                report.resolved += 1
        logger.info(
            "stuck_payments_recovered",
            checked=report.checked,
            resolved=report.resolved,
            still_pending=report.still_pending,
            failed=report.failed,
        )
        return report

    async def _status_with_backoff(self, external_id: str) -> GatewayStatus:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._tuning.recovery_max_attempts),
            wait=wait_exponential(multiplier=self._tuning.recovery_base_backoff, max=30),
            retry=retry_if_exception_type(GatewayTransientException),
            reraise=True,
        ):
            with attempt:
                return await self._gateway.get_status(external_id)

    async def _record_sync_failure(self, payment: Payment, error: str) -> None:
        async with self._uow_factory() as uow:
            await uow.payment_sync_log_repository.add(
                PaymentSyncLog(
                    id=None,
                    payment_id=payment.id,
                    order_id=payment.order_id,
                    sync_type=SyncType.AUTO_RESOLVE,
                    sync_status=SyncStatus.FAILED,
                    local_payment_status=payment.status.value,
                    error_message=error[:1000],
                )
            )
        logger.warning("payment_auto_resolve_failed", payment_id=payment.id, error=error)
