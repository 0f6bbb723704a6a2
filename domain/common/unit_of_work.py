"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.audit.repository import AuditLogRepository, StatusHistoryRepository
from domain.inventory.repository import CartRepository, InventoryRepository
from domain.notification.repository import NotificationRepository
from domain.order.repository import OrderRepository
from domain.payment.repository import PaymentRepository
from domain.reconciliation.repository import PaymentSyncLogRepository, ReconciliationRepository
from domain.refund.repository import RefundRepository
from domain.shipment.repository import ShipmentRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象

    Lock-taking reads must follow the order: order, payment, shipment,
    refunds by ascending id.
    """

    order_repository: OrderRepository
    payment_repository: PaymentRepository
    payment_sync_log_repository: PaymentSyncLogRepository
    shipment_repository: ShipmentRepository
    refund_repository: RefundRepository
    audit_log_repository: AuditLogRepository
    status_history_repository: StatusHistoryRepository
    inventory_repository: InventoryRepository
    cart_repository: CartRepository
    notification_repository: NotificationRepository
    reconciliation_repository: ReconciliationRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
