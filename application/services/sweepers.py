"""
Background jobs run by the sweeper runner or by Celery beat.

Each job is a thin entry point onto a service method that already selects a
bounded batch and processes every item in its own transaction.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from application.services.fulfillment import FulfillmentEngine
from application.services.order_engine import OrderEngine
from application.services.payment_coordinator import PaymentCoordinator
from application.services.reconciliation import ReconciliationService
from core.logging_config import get_logger
from domain.common.time import utcnow

logger = get_logger(__name__)

JobFn = Callable[[Optional[datetime]], Awaitable[Any]]


class SweeperJobs:
    ORDER_EXPIRY = "order_expiry"
    PAYMENT_EXPIRY = "payment_expiry"
    PAYMENT_RECOVERY = "payment_recovery"
    TRACKING_REFRESH = "tracking_refresh"
    AUTO_COMPLETE = "auto_complete"
    RECONCILIATION = "daily_reconciliation"
    ALL = (ORDER_EXPIRY, PAYMENT_EXPIRY, PAYMENT_RECOVERY, TRACKING_REFRESH, AUTO_COMPLETE, RECONCILIATION)

    def __init__(
        self,
        orders: OrderEngine,
        payments: PaymentCoordinator,
        fulfillment: FulfillmentEngine,
        reconciliation: ReconciliationService,
    ) -> None:
        self._orders = orders
        self._payments = payments
        self._fulfillment = fulfillment
        self._reconciliation = reconciliation

    async def expire_orders(self, now: Optional[datetime] = None) -> int:
        return await self._orders.expire_stale_orders(now or utcnow())

    async def expire_payments(self, now: Optional[datetime] = None) -> int:
        return await self._payments.expire_overdue_payments(now or utcnow())

    async def recover_payments(self, now: Optional[datetime] = None):
        return await self._payments.recover_stuck_payments(now or utcnow())

    async def refresh_tracking(self, now: Optional[datetime] = None):
        return await self._fulfillment.run_monitor(now or utcnow())

    async def auto_complete(self, now: Optional[datetime] = None) -> int:
        return await self._orders.auto_complete_delivered(now or utcnow())

    async def reconcile(self, now: Optional[datetime] = None):
        return await self._reconciliation.run_daily(now=now or utcnow())

    def by_name(self) -> dict[str, JobFn]:
        return {
            self.ORDER_EXPIRY: self.expire_orders,
            self.PAYMENT_EXPIRY: self.expire_payments,
            self.PAYMENT_RECOVERY: self.recover_payments,
            self.TRACKING_REFRESH: self.refresh_tracking,
            self.AUTO_COMPLETE: self.auto_complete,
            self.RECONCILIATION: self.reconcile,
        }

    async def run(self, name: str, now: Optional[datetime] = None) -> Any:
        job = self.by_name().get(name)
        if job is None:
            raise KeyError(f"unknown sweeper job: {name}")
        return await job(now)
