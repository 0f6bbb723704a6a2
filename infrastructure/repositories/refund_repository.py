"""
退款仓储实现
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import IdempotencyConflictException
from domain.refund.entity import Refund, RefundItem
from domain.refund.repository import RefundRepository
from domain.refund.status import RefundReason, RefundStatus, RefundType
from infrastructure.models.refund import RefundItemModel, RefundModel

logger = get_logger(__name__)

_COUNTED = (RefundStatus.COMPLETED.value, RefundStatus.PROCESSING.value)
_OPEN_OR_DONE = (RefundStatus.PENDING.value, RefundStatus.PROCESSING.value, RefundStatus.COMPLETED.value)


def _money(value) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


class SQLAlchemyRefundRepository(RefundRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: RefundModel) -> Refund:
        return Refund(
            id=model.id,
            refund_code=model.refund_code,
            order_id=model.order_id,
            payment_id=model.payment_id,
            refund_type=RefundType(model.refund_type),
            reason=RefundReason(model.reason),
            reason_detail=model.reason_detail,
            original_amount=_money(model.original_amount),
            refund_amount=_money(model.refund_amount),
            shipping_refund=_money(model.shipping_refund),
            items_refund=_money(model.items_refund),
            status=RefundStatus(model.status),
            idempotency_key=model.idempotency_key,
            gateway_refund_id=model.gateway_refund_id,
            gateway_status=model.gateway_status,
            note=model.note,
            requested_by=model.requested_by,
            processed_by=model.processed_by,
            items=[
                RefundItem(
                    id=item.id,
                    refund_id=item.refund_id,
                    order_item_id=item.order_item_id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    price=_money(item.price),
                    refund_amount=_money(item.refund_amount),
                    stock_restored=bool(item.stock_restored),
                )
                for item in model.items
            ],
            processed_at=model.processed_at,
            completed_at=model.completed_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def _one(self, stmt, for_update: bool = False) -> Optional[Refund]:
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def create(self, refund: Refund) -> Refund:
        model = RefundModel(
            refund_code=refund.refund_code,
            order_id=refund.order_id,
            payment_id=refund.payment_id,
            refund_type=refund.refund_type.value,
            reason=refund.reason.value,
            reason_detail=refund.reason_detail,
            original_amount=refund.original_amount,
            refund_amount=refund.refund_amount,
            shipping_refund=refund.shipping_refund,
            items_refund=refund.items_refund,
            status=refund.status.value,
            idempotency_key=refund.idempotency_key,
            gateway_refund_id=refund.gateway_refund_id,
            gateway_status=refund.gateway_status,
            note=refund.note,
            requested_by=refund.requested_by,
            processed_by=refund.processed_by,
            items=[
                RefundItemModel(
                    order_item_id=item.order_item_id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    price=item.price,
                    refund_amount=item.refund_amount,
                    stock_restored=item.stock_restored,
                )
                for item in refund.items
            ],
        )
        try:
            self.session.add(model)
            await self.session.flush()
            await self.session.refresh(model)
        except IntegrityError as e:
            if refund.idempotency_key and "idempotency_key" in str(e.orig).lower():
                logger.warning("refund_idempotency_conflict", idempotency_key=refund.idempotency_key)
                raise IdempotencyConflictException(refund.idempotency_key) from e
            raise
        return self._to_entity(model)

    async def get_by_id(self, refund_id: int) -> Optional[Refund]:
        return await self._one(select(RefundModel).where(RefundModel.id == refund_id))

    async def get_for_update(self, refund_id: int) -> Optional[Refund]:
        return await self._one(select(RefundModel).where(RefundModel.id == refund_id), for_update=True)

    async def get_by_idempotency_key(self, key: str) -> Optional[Refund]:
        return await self._one(select(RefundModel).where(RefundModel.idempotency_key == key))

    async def list_for_order(self, order_id: int) -> List[Refund]:
        result = await self.session.execute(
            select(RefundModel).where(RefundModel.order_id == order_id).order_by(RefundModel.id)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def update(self, refund: Refund) -> Refund:
        model = await self.session.get(RefundModel, refund.id)
        if model is None:
            raise ValueError(f"Refund {refund.id} does not exist")
        model.status = refund.status.value
        model.gateway_refund_id = refund.gateway_refund_id
        model.gateway_status = refund.gateway_status
        model.note = refund.note
        model.processed_by = refund.processed_by
        model.processed_at = refund.processed_at
        model.completed_at = refund.completed_at
        if refund.updated_at:
            model.updated_at = refund.updated_at
        restored = {item.id for item in refund.items if item.stock_restored}
        for item in model.items:
            if item.id in restored:
                item.stock_restored = True
        await self.session.flush()
        return refund

    async def sum_counted_for_order(self, order_id: int, *, exclude_refund_id: Optional[int] = None) -> Decimal:
        stmt = select(func.coalesce(func.sum(RefundModel.refund_amount), 0)).where(
            RefundModel.order_id == order_id,
            RefundModel.status.in_(_COUNTED),
        )
        if exclude_refund_id is not None:
            stmt = stmt.where(RefundModel.id != exclude_refund_id)
        result = await self.session.execute(stmt)
        return _money(result.scalar())

    async def refunded_quantities(self, order_id: int) -> Dict[int, int]:
        result = await self.session.execute(
            select(RefundItemModel.order_item_id, func.sum(RefundItemModel.quantity))
            .join(RefundModel, RefundModel.id == RefundItemModel.refund_id)
            .where(RefundModel.order_id == order_id, RefundModel.status.in_(_OPEN_OR_DONE))
            .group_by(RefundItemModel.order_item_id)
        )
        return {order_item_id: int(qty) for order_item_id, qty in result.all()}

    async def sum_completed_between(self, start: datetime, end: datetime) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(RefundModel.refund_amount), 0)).where(
                RefundModel.status == RefundStatus.COMPLETED.value,
                RefundModel.completed_at >= start,
                RefundModel.completed_at < end,
            )
        )
        return _money(result.scalar())
