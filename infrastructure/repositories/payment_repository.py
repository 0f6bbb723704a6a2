"""
支付仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.payment.entity import Payment
from domain.payment.repository import PaymentRepository
from domain.payment.status import PaymentStatus
from domain.reconciliation.entity import PaymentSyncLog, SyncStatus, SyncType
from domain.reconciliation.repository import PaymentSyncLogRepository
from infrastructure.models.order import OrderModel
from infrastructure.models.payment import PaymentModel, PaymentSyncLogModel

logger = get_logger(__name__)


class SQLAlchemyPaymentRepository(PaymentRepository):
    """支付仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        """将数据库模型转换为领域实体"""
        return Payment(
            id=model.id,
            order_id=model.order_id,
            payment_method=model.payment_method,
            bank=model.bank,
            external_id=model.external_id,
            transaction_id=model.transaction_id,
            amount=Decimal(str(model.amount)),
            status=PaymentStatus(model.status),
            va_number=model.va_number,
            qr_url=model.qr_url,
            expiry_time=model.expiry_time,
            raw_response=model.raw_response or {},
            paid_at=model.paid_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Payment) -> PaymentModel:
        """将领域实体转换为数据库模型"""
        model = PaymentModel(
            order_id=entity.order_id,
            payment_method=entity.payment_method,
            bank=entity.bank,
            external_id=entity.external_id,
            transaction_id=entity.transaction_id,
            amount=entity.amount,
            status=entity.status.value,
            va_number=entity.va_number,
            qr_url=entity.qr_url,
            expiry_time=entity.expiry_time,
            raw_response=entity.raw_response,
            paid_at=entity.paid_at,
        )
        if entity.created_at:
            model.created_at = entity.created_at
        return model

    async def _one(self, stmt, for_update: bool = False) -> Optional[Payment]:
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt.limit(1))
        db_payment = result.scalars().first()
        return self._to_entity(db_payment) if db_payment else None

    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        db_payment = self._to_model(payment)
        self.session.add(db_payment)
        await self.session.flush()
        await self.session.refresh(db_payment)
        logger.info(
            "payment_created",
            payment_id=db_payment.id,
            order_id=db_payment.order_id,
            external_id=db_payment.external_id,
            payment_method=db_payment.payment_method,
        )
        return self._to_entity(db_payment)

    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        return await self._one(select(PaymentModel).where(PaymentModel.id == payment_id))

    async def get_for_update(self, payment_id: int) -> Optional[Payment]:
        return await self._one(select(PaymentModel).where(PaymentModel.id == payment_id), for_update=True)

    async def get_by_external_id(self, external_id: str, *, for_update: bool = False) -> Optional[Payment]:
        return await self._one(select(PaymentModel).where(PaymentModel.external_id == external_id), for_update)

    async def get_latest_for_order(self, order_id: int, *, for_update: bool = False) -> Optional[Payment]:
        stmt = (
            select(PaymentModel)
            .where(PaymentModel.order_id == order_id)
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
        )
        return await self._one(stmt, for_update)

    async def get_active_for_order(self, order_id: int, *, for_update: bool = False) -> Optional[Payment]:
        stmt = (
            select(PaymentModel)
            .where(PaymentModel.order_id == order_id, PaymentModel.status == PaymentStatus.PENDING.value)
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
        )
        return await self._one(stmt, for_update)

    async def list_for_order(self, order_id: int) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel).where(PaymentModel.order_id == order_id).order_by(PaymentModel.id)
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def update(self, payment: Payment) -> Payment:
        db_payment = await self.session.get(PaymentModel, payment.id)
        if db_payment is None:
            raise ValueError(f"Payment {payment.id} does not exist")
        db_payment.status = payment.status.value
        db_payment.transaction_id = payment.transaction_id
        db_payment.va_number = payment.va_number
        db_payment.qr_url = payment.qr_url
        db_payment.expiry_time = payment.expiry_time
        db_payment.raw_response = payment.raw_response
        db_payment.paid_at = payment.paid_at
        if payment.updated_at:
            db_payment.updated_at = payment.updated_at
        await self.session.flush()
        return payment

    async def list_expired_pending(self, now: datetime, limit: int) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(
                PaymentModel.status == PaymentStatus.PENDING.value,
                PaymentModel.expiry_time.is_not(None),
                PaymentModel.expiry_time < now,
            )
            .order_by(PaymentModel.expiry_time)
            .limit(limit)
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def list_pending_created_before(self, cutoff: datetime, limit: int) -> List[Payment]:
        last_check = func.coalesce(PaymentModel.last_status_check, PaymentModel.created_at)
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.status == PaymentStatus.PENDING.value, PaymentModel.created_at < cutoff)
            .order_by(last_check, PaymentModel.id)
            .limit(limit)
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def mark_status_checked(self, payment_ids: Iterable[int], checked_at: datetime) -> None:
        ids = list(payment_ids)
        if not ids:
            return
        await self.session.execute(
            update(PaymentModel).where(PaymentModel.id.in_(ids)).values(last_status_check=checked_at)
        )

    async def list_created_between(self, start: datetime, end: datetime) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.created_at >= start, PaymentModel.created_at < end)
            .order_by(PaymentModel.id)
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def list_orphans_created_between(self, start: datetime, end: datetime) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .outerjoin(OrderModel, OrderModel.id == PaymentModel.order_id)
            .where(
                PaymentModel.created_at >= start,
                PaymentModel.created_at < end,
                OrderModel.id.is_(None),
            )
            .order_by(PaymentModel.id)
        )
        return [self._to_entity(p) for p in result.scalars().all()]


class SQLAlchemyPaymentSyncLogRepository(PaymentSyncLogRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: PaymentSyncLogModel) -> PaymentSyncLog:
        return PaymentSyncLog(
            id=model.id,
            payment_id=model.payment_id,
            order_id=model.order_id,
            sync_type=SyncType(model.sync_type),
            sync_status=SyncStatus(model.sync_status),
            gateway_status=model.gateway_status,
            local_payment_status=model.local_payment_status,
            local_order_status=model.local_order_status,
            has_mismatch=bool(model.has_mismatch),
            error_message=model.error_message,
            raw_response=model.raw_response or {},
            created_at=model.created_at,
        )

    async def add(self, entry: PaymentSyncLog) -> PaymentSyncLog:
        model = PaymentSyncLogModel(
            payment_id=entry.payment_id,
            order_id=entry.order_id,
            sync_type=entry.sync_type.value,
            sync_status=entry.sync_status.value,
            gateway_status=entry.gateway_status,
            local_payment_status=entry.local_payment_status,
            local_order_status=entry.local_order_status,
            has_mismatch=entry.has_mismatch,
            error_message=entry.error_message,
            raw_response=entry.raw_response,
        )
        self.session.add(model)
        await self.session.flush()
        return self._to_entity(model)

    async def list_for_payment(self, payment_id: int) -> List[PaymentSyncLog]:
        result = await self.session.execute(
            select(PaymentSyncLogModel)
            .where(PaymentSyncLogModel.payment_id == payment_id)
            .order_by(PaymentSyncLogModel.id)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
