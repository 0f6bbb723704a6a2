"""
Daily reconciliation of orders, payments and refunds.
"""
from __future__ import annotations

from collections import Counter
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional

from application.dtos.admin import MismatchView, ReconciliationReport
from core.logging_config import get_logger
from domain.common.exceptions import ConflictException, MismatchNotFoundException
from domain.common.time import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order
from domain.order.status import OrderStatus
from domain.payment.entity import Payment
from domain.payment.status import PaymentStatus
from domain.reconciliation.entity import Mismatch, MismatchType, ReconciliationLog
from shared.codes.order_codes import OrderCode

logger = get_logger(__name__)

ZERO = Decimal("0")
ORPHAN_ORDER_AGE = timedelta(hours=1)
STUCK_PAYMENT_AGE = timedelta(hours=2)

# order statuses each payment status is consistent with
_CONSISTENT_ORDER_STATUSES = {
    PaymentStatus.PAID: frozenset({
        OrderStatus.PAID,
        OrderStatus.PACKING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.COMPLETED,
        OrderStatus.REFUNDED,
    }),
    PaymentStatus.PENDING: frozenset({OrderStatus.PENDING}),
}
_CLOSED_ORDER_STATUSES = frozenset({OrderStatus.FAILED, OrderStatus.EXPIRED, OrderStatus.CANCELLED})
_REVENUE_ORDER_STATUSES = frozenset({
    OrderStatus.PAID,
    OrderStatus.PACKING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
    OrderStatus.REFUNDED,
})


def is_consistent(payment_status: PaymentStatus, order_status: OrderStatus) -> bool:
    allowed = _CONSISTENT_ORDER_STATUSES.get(payment_status, _CLOSED_ORDER_STATUSES)
    return order_status in allowed


class ReconciliationService:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]) -> None:
        self._uow_factory = uow_factory

    async def run_daily(self, day: Optional[date] = None, *, now: Optional[datetime] = None) -> ReconciliationReport:
        """Reconcile one calendar day (UTC); defaults to yesterday."""
        now = now or utcnow()
        day = day or (now - timedelta(days=1)).date()
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        end = start + timedelta(days=1)

        async with self._uow_factory() as uow:
            orders = await uow.order_repository.list_created_between(start, end)
            payments = await uow.payment_repository.list_created_between(start, end)
            orphan_payments = await uow.payment_repository.list_orphans_created_between(start, end)
            refund_total = await uow.refund_repository.sum_completed_between(start, end)

            latest = self._latest_payment_by_order(payments)
            mismatches: list[Mismatch] = []
            mismatches += self._status_mismatches(orders, latest)
            orphan_orders = []
            for order in orders:
                if order.id in latest or not self._older_than(order.created_at, now, ORPHAN_ORDER_AGE):
                    continue
                # the payment may fall outside the window
                if await uow.payment_repository.get_latest_for_order(order.id) is None:
                    orphan_orders.append(order)
            mismatches += [
                Mismatch(
                    id=None,
                    mismatch_type=MismatchType.ORPHAN_ORDER,
                    description=f"Order {o.order_code} has no payment",
                    order_id=o.id,
                    order_code=o.order_code,
                    order_status=o.status.value,
                )
                for o in orphan_orders
            ]
            mismatches += [
                Mismatch(
                    id=None,
                    mismatch_type=MismatchType.ORPHAN_PAYMENT,
                    description=f"Payment {p.external_id} has no order",
                    payment_id=p.id,
                    payment_status=p.status.value,
                )
                for p in orphan_payments
            ]
            stuck = [
                p for p in payments
                if p.status is PaymentStatus.PENDING and self._older_than(p.created_at, now, STUCK_PAYMENT_AGE)
            ]
            mismatches += [
                Mismatch(
                    id=None,
                    mismatch_type=MismatchType.STUCK_PAYMENT,
                    description=f"Payment {p.external_id} pending for more than 2 hours",
                    order_id=p.order_id,
                    payment_id=p.id,
                    payment_status=p.status.value,
                )
                for p in stuck
            ]

            expected = sum((o.total_amount for o in orders if o.status in _REVENUE_ORDER_STATUSES), ZERO)
            actual = sum((p.amount for p in payments if p.status is PaymentStatus.PAID), ZERO)
            log = await uow.reconciliation_repository.add_log(
                ReconciliationLog(
                    id=None,
                    reconciliation_date=day,
                    total_orders=len(orders),
                    total_payments=len(payments),
                    order_counts=dict(Counter(o.status.value for o in orders)),
                    payment_counts=dict(Counter(p.status.value for p in payments)),
                    mismatch_count=len(mismatches),
                    orphan_orders=len(orphan_orders),
                    orphan_payments=len(orphan_payments),
                    stuck_payments=len(stuck),
                    expected_revenue=expected,
                    actual_revenue=actual,
                    revenue_variance=actual - expected,
                    refund_total=refund_total,
                    status="OK" if not mismatches and actual == expected else "MISMATCH",
                    details={
                        "period_start": start.isoformat(),
                        "period_end": end.isoformat(),
                        "stuck_payment_ids": [p.id for p in stuck],
                    },
                )
            )
            for mismatch in mismatches:
                mismatch.reconciliation_id = log.id
                await uow.reconciliation_repository.add_mismatch(mismatch)

        logger.info(
            "reconciliation_completed",
            day=day.isoformat(),
            orders=log.total_orders,
            payments=log.total_payments,
            mismatches=log.mismatch_count,
            variance=str(log.revenue_variance),
        )
        return ReconciliationReport(
            id=log.id,
            reconciliation_date=log.reconciliation_date,
            status=log.status,
            total_orders=log.total_orders,
            total_payments=log.total_payments,
            order_counts=log.order_counts,
            payment_counts=log.payment_counts,
            mismatch_count=log.mismatch_count,
            orphan_orders=log.orphan_orders,
            orphan_payments=log.orphan_payments,
            stuck_payments=log.stuck_payments,
            expected_revenue=log.expected_revenue,
            actual_revenue=log.actual_revenue,
            revenue_variance=log.revenue_variance,
            refund_total=log.refund_total,
        )

    async def list_unresolved_mismatches(self, limit: int = 100) -> list[MismatchView]:
        async with self._uow_factory(readonly=True) as uow:
            return [MismatchView.from_entity(m) for m in await uow.reconciliation_repository.list_unresolved(limit)]

    async def resolve_mismatch(self, mismatch_id: int, *, resolved_by: str, note: str) -> MismatchView:
        async with self._uow_factory() as uow:
            mismatch = await uow.reconciliation_repository.get_mismatch_for_update(mismatch_id)
            if mismatch is None:
                raise MismatchNotFoundException(mismatch_id)
            if mismatch.resolved:
                raise ConflictException(
                    code=OrderCode.MISMATCH_ALREADY_RESOLVED,
                    message=f"Mismatch {mismatch_id} is already resolved",
                    error_type="MismatchAlreadyResolved",
                )
            mismatch.resolved = True
            mismatch.resolved_by = resolved_by
            mismatch.resolution_note = note
            mismatch.resolved_at = utcnow()
            await uow.reconciliation_repository.update_mismatch(mismatch)
        logger.info("mismatch_resolved", mismatch_id=mismatch_id, resolved_by=resolved_by)
        return MismatchView.from_entity(mismatch)

    @staticmethod
    def _latest_payment_by_order(payments: list[Payment]) -> dict[int, Payment]:
        latest: dict[int, Payment] = {}
        for payment in sorted(payments, key=lambda p: p.id or 0):
            latest[payment.order_id] = payment
        return latest

    @staticmethod
    def _status_mismatches(orders: list[Order], latest: dict[int, Payment]) -> list[Mismatch]:
        found = []
        for order in orders:
            payment = latest.get(order.id)
            if payment is None or is_consistent(payment.status, order.status):
                continue
            found.append(
                Mismatch(
                    id=None,
                    mismatch_type=MismatchType.STATUS_MISMATCH,
                    description=f"Order {order.order_code} is {order.status.value} but payment is {payment.status.value}",
                    order_id=order.id,
                    order_code=order.order_code,
                    payment_id=payment.id,
                    order_status=order.status.value,
                    payment_status=payment.status.value,
                )
            )
        return found

    @staticmethod
    def _older_than(created_at: Optional[datetime], now: datetime, age: timedelta) -> bool:
        return created_at is not None and now - created_at > age
