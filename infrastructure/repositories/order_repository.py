"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import noload

from core.logging_config import get_logger
from domain.common.exceptions import ConflictException
from domain.order.entity import Order, OrderItem
from domain.order.repository import OrderRepository
from domain.order.status import OrderStatus
from infrastructure.models.order import OrderItemModel, OrderModel
from shared.codes.order_codes import OrderCode

logger = get_logger(__name__)


def _money(value) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel, *, with_items: bool = True) -> Order:
        items = []
        if with_items:
            items = [
                OrderItem(
                    id=item.id,
                    order_id=item.order_id,
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    product_name=item.product_name,
                    product_image=item.product_image,
                    quantity=item.quantity,
                    unit_price=_money(item.unit_price),
                    weight_grams=item.weight_grams or 0,
                )
                for item in model.items
            ]
        return Order(
            id=model.id,
            order_code=model.order_code,
            user_id=model.user_id,
            customer_name=model.customer_name,
            customer_email=model.customer_email,
            customer_phone=model.customer_phone,
            subtotal=_money(model.subtotal),
            shipping_cost=_money(model.shipping_cost),
            tax=_money(model.tax),
            discount=_money(model.discount),
            total_amount=_money(model.total_amount),
            status=OrderStatus(model.status),
            stock_reserved=bool(model.stock_reserved),
            resi=model.resi,
            metadata=model.extra_metadata or {},
            refund_status=model.refund_status,
            refund_amount=_money(model.refund_amount),
            items=items,
            created_at=model.created_at,
            updated_at=model.updated_at,
            paid_at=model.paid_at,
            shipped_at=model.shipped_at,
            delivered_at=model.delivered_at,
            completed_at=model.completed_at,
            cancelled_at=model.cancelled_at,
            refunded_at=model.refunded_at,
            expired_at=model.expired_at,
            failed_at=model.failed_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        model = OrderModel(
            order_code=entity.order_code,
            user_id=entity.user_id,
            customer_name=entity.customer_name,
            customer_email=entity.customer_email,
            customer_phone=entity.customer_phone,
            subtotal=entity.subtotal,
            shipping_cost=entity.shipping_cost,
            tax=entity.tax,
            discount=entity.discount,
            total_amount=entity.total_amount,
            status=entity.status.value,
            stock_reserved=entity.stock_reserved,
            resi=entity.resi,
            extra_metadata=entity.metadata.to_dict(),
            refund_status=entity.refund_status,
            refund_amount=entity.refund_amount,
        )
        if entity.created_at:
            model.created_at = entity.created_at
        model.items = [
            OrderItemModel(
                product_id=item.product_id,
                variant_id=item.variant_id,
                product_name=item.product_name,
                product_image=item.product_image,
                quantity=item.quantity,
                unit_price=item.unit_price,
                subtotal=item.subtotal,
                weight_grams=item.weight_grams,
            )
            for item in entity.items
        ]
        return model

    async def create(self, order: Order) -> Order:
        try:
            db_order = self._to_model(order)
            self.session.add(db_order)
            await self.session.flush()
            await self.session.refresh(db_order)
        except IntegrityError as e:
            logger.warning("order_create_conflict", order_code=order.order_code, error=str(e.orig))
            raise ConflictException(
                code=OrderCode.ORDER_CODE_CONFLICT,
                message=f"Order code {order.order_code} already exists",
                error_type="OrderCodeConflict",
            ) from e
        logger.info("order_created", order_id=db_order.id, order_code=db_order.order_code)
        return self._to_entity(db_order)

    async def get_by_id(self, order_id: int) -> Optional[Order]:
        result = await self.session.execute(select(OrderModel).where(OrderModel.id == order_id))
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_by_code(self, order_code: str) -> Optional[Order]:
        result = await self.session.execute(select(OrderModel).where(OrderModel.order_code == order_code))
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_for_update(self, order_id: int) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.id == order_id).with_for_update()
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_by_code_for_update(self, order_code: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.order_code == order_code).with_for_update()
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def update(self, order: Order) -> Order:
        db_order = await self.session.get(OrderModel, order.id)
        if db_order is None:
            raise ValueError(f"Order {order.id} does not exist")
        db_order.status = order.status.value
        db_order.stock_reserved = order.stock_reserved
        db_order.resi = order.resi
        db_order.extra_metadata = order.metadata.to_dict()
        db_order.refund_status = order.refund_status
        db_order.refund_amount = order.refund_amount
        for name in (
            "paid_at",
            "shipped_at",
            "delivered_at",
            "completed_at",
            "cancelled_at",
            "refunded_at",
            "expired_at",
            "failed_at",
        ):
            setattr(db_order, name, getattr(order, name))
        if order.updated_at:
            db_order.updated_at = order.updated_at
        await self.session.flush()
        return order

    async def code_exists(self, order_code: str) -> bool:
        result = await self.session.execute(select(exists().where(OrderModel.order_code == order_code)))
        return bool(result.scalar())

    async def resi_exists(self, resi: str, *, exclude_order_id: Optional[int] = None) -> bool:
        condition = OrderModel.resi == resi
        if exclude_order_id is not None:
            condition = condition & (OrderModel.id != exclude_order_id)
        result = await self.session.execute(select(exists().where(condition)))
        return bool(result.scalar())

    async def list_pending_created_before(self, cutoff: datetime, limit: int) -> List[int]:
        result = await self.session.execute(
            select(OrderModel.id)
            .where(OrderModel.status == OrderStatus.PENDING.value, OrderModel.created_at < cutoff)
            .order_by(OrderModel.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_delivered_before(self, cutoff: datetime, limit: int) -> List[int]:
        result = await self.session.execute(
            select(OrderModel.id)
            .where(OrderModel.status == OrderStatus.DELIVERED.value, OrderModel.delivered_at < cutoff)
            .order_by(OrderModel.delivered_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_created_between(self, start: datetime, end: datetime) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .options(noload(OrderModel.items))
            .where(OrderModel.created_at >= start, OrderModel.created_at < end)
            .order_by(OrderModel.id)
        )
        return [self._to_entity(m, with_items=False) for m in result.scalars().all()]
