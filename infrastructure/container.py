"""
Composition root: wires repositories, gateways and services for one process.

The API lifespan, the Celery tasks and the test-suite all build a
`Container`; tests pass stub gateways and their own session factory.
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from application.ports.notifier import NotificationTransport
from application.ports.payment_gateway import PaymentGateway
from application.ports.shipping_gateway import ShippingGateway
from application.services.admin_actions import AdminActions
from application.services.fulfillment import FulfillmentEngine
from application.services.order_engine import OrderEngine
from application.services.order_transitions import OrderTransitioner
from application.services.outbox import OutboxNotifier, OutboxPublisher
from application.services.payment_coordinator import PaymentCoordinator
from application.services.reconciliation import ReconciliationService
from application.services.refund_engine import RefundEngine
from application.services.stock import StockLedger
from application.services.sweepers import SweeperJobs
from core.config import Settings
from core.logging_config import get_logger
from infrastructure.database import build_engine, build_session_factory
from infrastructure.external.notifications.transports import LogTransport, WebhookTransport
from infrastructure.external.payments import build_payment_gateway
from infrastructure.external.shipping import build_shipping_gateway
from infrastructure.scheduler.periodic import DailySweeper, PeriodicSweeper, SweeperRunner
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

logger = get_logger(__name__)

OUTBOX_SWEEPER = "outbox_publisher"


class Container:
    def __init__(
        self,
        settings: Settings,
        *,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        payment_gateway: Optional[PaymentGateway] = None,
        shipping_gateway: Optional[ShippingGateway] = None,
        transport: Optional[NotificationTransport] = None,
    ) -> None:
        self.settings = settings
        self._engine: Optional[AsyncEngine] = None
        if session_factory is None:
            self._engine = build_engine(settings.database_url, echo=settings.DB_ECHO)
            session_factory = build_session_factory(self._engine)
        self.session_factory = session_factory

        self.payment_gateway = payment_gateway or build_payment_gateway(settings)
        self.shipping_gateway = shipping_gateway or build_shipping_gateway(settings)
        self.transport = transport or self._build_transport(settings)

        jobs = settings.jobs
        self.notifier = OutboxNotifier()
        self.stock = StockLedger()
        self.transitioner = OrderTransitioner(self.notifier, self.stock)
        self.orders = OrderEngine(
            self.uow_factory,
            self.transitioner,
            self.stock,
            self.shipping_gateway,
            shipping=settings.shipping,
            jobs=jobs,
            store=settings.store,
        )
        self.payments = PaymentCoordinator(
            self.uow_factory,
            self.payment_gateway,
            self.transitioner,
            server_key=settings.PAYMENT_SERVER_KEY or "",
            tuning=settings.payment,
            batch_size=jobs.batch_size,
        )
        self.fulfillment = FulfillmentEngine(
            self.uow_factory,
            self.transitioner,
            self.shipping_gateway,
            jobs=jobs,
            tracking_enabled=settings.ENABLE_TRACKING_JOB,
        )
        self.refunds = RefundEngine(
            self.uow_factory,
            self.payment_gateway,
            self.transitioner,
            self.stock,
            skip_gateway=settings.SKIP_GATEWAY_REFUND,
        )
        self.admin = AdminActions(
            self.uow_factory,
            self.transitioner,
            self.refunds,
            self.fulfillment,
            self.payments,
            self.payment_gateway,
        )
        self.reconciliation = ReconciliationService(self.uow_factory)
        self.outbox = OutboxPublisher(
            self.uow_factory,
            self.transport,
            batch_size=settings.notification.batch_size,
        )
        self.jobs = SweeperJobs(self.orders, self.payments, self.fulfillment, self.reconciliation)
        self.runner = self._build_runner()

    def uow_factory(self, *, readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(self.session_factory, readonly=readonly)

    @staticmethod
    def _build_transport(settings: Settings) -> NotificationTransport:
        if settings.notification.webhook_url:
            return WebhookTransport(settings.notification.webhook_url, timeout=settings.notification.timeout_seconds)
        return LogTransport()

    def _build_runner(self) -> SweeperRunner:
        runner = SweeperRunner()
        jobs = self.settings.jobs
        budget = jobs.tick_budget_seconds
        if self.settings.ENABLE_SWEEPERS:
            for name, interval in (
                (SweeperJobs.ORDER_EXPIRY, jobs.order_expiry_interval_seconds),
                (SweeperJobs.PAYMENT_EXPIRY, jobs.payment_expiry_interval_seconds),
                (SweeperJobs.PAYMENT_RECOVERY, jobs.payment_recovery_interval_seconds),
                (SweeperJobs.TRACKING_REFRESH, jobs.tracking_interval_seconds),
                (SweeperJobs.AUTO_COMPLETE, jobs.auto_complete_interval_seconds),
            ):
                runner.add(PeriodicSweeper(name, self.jobs.by_name()[name], interval, budget_seconds=budget))
            runner.add(DailySweeper(SweeperJobs.RECONCILIATION, self.jobs.reconcile, jobs.reconciliation_hour, budget_seconds=budget))
        if self.settings.ENABLE_OUTBOX_PUBLISHER:
            runner.add(
                PeriodicSweeper(
                    OUTBOX_SWEEPER,
                    self._publish_outbox,
                    self.settings.notification.poll_interval_seconds,
                    budget_seconds=budget,
                    run_immediately=True,
                )
            )
        return runner

    async def _publish_outbox(self, _now=None) -> int:
        return await self.outbox.publish_pending()

    def start(self) -> None:
        self.runner.start()
        logger.info("container_started", sweepers=self.runner.names)

    async def stop(self) -> None:
        await self.runner.stop()

    async def aclose(self) -> None:
        await self.stop()
        for resource in (self.payment_gateway, self.shipping_gateway, self.transport):
            close = getattr(resource, "aclose", None)
            if close is not None:
                await close()
        if self._engine is not None:
            await self._engine.dispose()
        logger.info("container_closed")
