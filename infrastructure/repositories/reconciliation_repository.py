"""
对账仓储实现
"""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.time import ensure_utc
from domain.reconciliation.entity import Mismatch, MismatchType, ReconciliationLog
from domain.reconciliation.repository import ReconciliationRepository
from infrastructure.models.reconciliation import ReconciliationLogModel, ReconciliationMismatchModel


class SQLAlchemyReconciliationRepository(ReconciliationRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_mismatch(model: ReconciliationMismatchModel) -> Mismatch:
        return Mismatch(
            id=model.id,
            reconciliation_id=model.reconciliation_id,
            mismatch_type=MismatchType(model.mismatch_type),
            description=model.description,
            order_id=model.order_id,
            order_code=model.order_code,
            payment_id=model.payment_id,
            order_status=model.order_status,
            payment_status=model.payment_status,
            resolved=bool(model.resolved),
            resolved_by=model.resolved_by,
            resolution_note=model.resolution_note,
            resolved_at=ensure_utc(model.resolved_at),
            created_at=ensure_utc(model.created_at),
        )

    async def add_log(self, log: ReconciliationLog) -> ReconciliationLog:
        model = ReconciliationLogModel(
            reconciliation_date=log.reconciliation_date,
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
            status=log.status,
            details=log.details,
        )
        self.session.add(model)
        await self.session.flush()
        log.id = model.id
        log.created_at = ensure_utc(model.created_at)
        return log

    async def add_mismatch(self, mismatch: Mismatch) -> Mismatch:
        model = ReconciliationMismatchModel(
            reconciliation_id=mismatch.reconciliation_id,
            mismatch_type=mismatch.mismatch_type.value,
            description=mismatch.description,
            order_id=mismatch.order_id,
            order_code=mismatch.order_code,
            payment_id=mismatch.payment_id,
            order_status=mismatch.order_status,
            payment_status=mismatch.payment_status,
            resolved=mismatch.resolved,
        )
        self.session.add(model)
        await self.session.flush()
        mismatch.id = model.id
        mismatch.created_at = ensure_utc(model.created_at)
        return mismatch

    async def list_unresolved(self, limit: int = 100) -> List[Mismatch]:
        result = await self.session.execute(
            select(ReconciliationMismatchModel)
            .where(ReconciliationMismatchModel.resolved.is_(False))
            .order_by(ReconciliationMismatchModel.id.desc())
            .limit(limit)
        )
        return [self._to_mismatch(m) for m in result.scalars().all()]

    async def get_mismatch_for_update(self, mismatch_id: int) -> Optional[Mismatch]:
        result = await self.session.execute(
            select(ReconciliationMismatchModel)
            .where(ReconciliationMismatchModel.id == mismatch_id)
            .with_for_update()
        )
        model = result.scalar_one_or_none()
        return self._to_mismatch(model) if model else None

    async def update_mismatch(self, mismatch: Mismatch) -> Mismatch:
        model = await self.session.get(ReconciliationMismatchModel, mismatch.id)
        if model is None:
            raise ValueError(f"Mismatch {mismatch.id} does not exist")
        model.resolved = mismatch.resolved
        model.resolved_by = mismatch.resolved_by
        model.resolution_note = mismatch.resolution_note
        model.resolved_at = mismatch.resolved_at
        await self.session.flush()
        return mismatch
