"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.repositories.audit_repository import (
    SQLAlchemyAuditLogRepository,
    SQLAlchemyStatusHistoryRepository,
)
from infrastructure.repositories.inventory_repository import (
    SQLAlchemyCartRepository,
    SQLAlchemyInventoryRepository,
)
from infrastructure.repositories.notification_repository import SQLAlchemyNotificationRepository
from infrastructure.repositories.order_repository import SQLAlchemyOrderRepository
from infrastructure.repositories.payment_repository import (
    SQLAlchemyPaymentRepository,
    SQLAlchemyPaymentSyncLogRepository,
)
from infrastructure.repositories.reconciliation_repository import SQLAlchemyReconciliationRepository
from infrastructure.repositories.refund_repository import SQLAlchemyRefundRepository
from infrastructure.repositories.shipment_repository import SQLAlchemyShipmentRepository

_REPOSITORIES = {
    "order_repository": SQLAlchemyOrderRepository,
    "payment_repository": SQLAlchemyPaymentRepository,
    "payment_sync_log_repository": SQLAlchemyPaymentSyncLogRepository,
    "shipment_repository": SQLAlchemyShipmentRepository,
    "refund_repository": SQLAlchemyRefundRepository,
    "audit_log_repository": SQLAlchemyAuditLogRepository,
    "status_history_repository": SQLAlchemyStatusHistoryRepository,
    "inventory_repository": SQLAlchemyInventoryRepository,
    "cart_repository": SQLAlchemyCartRepository,
    "notification_repository": SQLAlchemyNotificationRepository,
    "reconciliation_repository": SQLAlchemyReconciliationRepository,
}


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work

    One instance is one transaction. Readonly instances never commit.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session
        self._transaction = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        for name, repo_cls in _REPOSITORIES.items():
            setattr(self, name, repo_cls(self.session))
        # 仅在非只读模式下显式开启事务
        if not self._readonly:
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            tx = self._transaction
            if tx is not None and tx.is_active:
                await tx.close()
            self._transaction = None
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            for name in _REPOSITORIES:
                setattr(self, name, None)

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
