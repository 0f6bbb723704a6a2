"""
库存与购物车仓储实现
"""
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.inventory.entity import (
    Cart, CartItem, MovementType, Product, ProductVariant, StockMovement,
)
from domain.inventory.repository import CartRepository, InventoryRepository
from infrastructure.models.inventory import (
    CartModel, ProductModel, ProductVariantModel, StockMovementModel,
)


class SQLAlchemyInventoryRepository(InventoryRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_product(self, product_id: int, *, for_update: bool = False) -> Optional[Product]:
        stmt = select(ProductModel).where(ProductModel.id == product_id)
        if for_update:
            stmt = stmt.with_for_update()
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        if model is None:
            return None
        return Product(
            id=model.id,
            name=model.name,
            price=Decimal(str(model.price)),
            stock=model.stock,
            weight_grams=model.weight_grams or 0,
            image_url=model.image_url,
            is_active=bool(model.is_active),
        )

    async def get_variant(self, variant_id: int, *, for_update: bool = False) -> Optional[ProductVariant]:
        stmt = select(ProductVariantModel).where(ProductVariantModel.id == variant_id)
        if for_update:
            stmt = stmt.with_for_update()
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        if model is None:
            return None
        return ProductVariant(
            id=model.id,
            product_id=model.product_id,
            sku=model.sku,
            stock=model.stock,
            price=Decimal(str(model.price)) if model.price is not None else None,
            weight_grams=model.weight_grams,
        )

    async def set_product_stock(self, product_id: int, stock: int) -> None:
        await self.session.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id)
            .values(stock=stock)
            .execution_options(synchronize_session="fetch")
        )

    async def set_variant_stock(self, variant_id: int, stock: int) -> None:
        await self.session.execute(
            update(ProductVariantModel)
            .where(ProductVariantModel.id == variant_id)
            .values(stock=stock)
            .execution_options(synchronize_session="fetch")
        )

    async def add_movement(self, movement: StockMovement) -> StockMovement:
        model = StockMovementModel(
            product_id=movement.product_id,
            variant_id=movement.variant_id,
            order_id=movement.order_id,
            order_item_id=movement.order_item_id,
            movement_type=movement.movement_type.value,
            quantity=movement.quantity,
            balance_after=movement.balance_after,
            reason=movement.reason,
        )
        self.session.add(model)
        await self.session.flush()
        movement.id = model.id
        movement.created_at = model.created_at
        return movement

    async def list_movements(
        self,
        *,
        order_id: Optional[int] = None,
        product_id: Optional[int] = None,
        movement_type: Optional[MovementType] = None,
    ) -> List[StockMovement]:
        stmt = select(StockMovementModel)
        if order_id is not None:
            stmt = stmt.where(StockMovementModel.order_id == order_id)
        if product_id is not None:
            stmt = stmt.where(StockMovementModel.product_id == product_id)
        if movement_type is not None:
            stmt = stmt.where(StockMovementModel.movement_type == movement_type.value)
        result = await self.session.execute(stmt.order_by(StockMovementModel.id))
        return [
            StockMovement(
                id=m.id,
                product_id=m.product_id,
                variant_id=m.variant_id,
                order_id=m.order_id,
                order_item_id=m.order_item_id,
                movement_type=MovementType(m.movement_type),
                quantity=m.quantity,
                balance_after=m.balance_after,
                reason=m.reason,
                created_at=m.created_at,
            )
            for m in result.scalars().all()
        ]


class SQLAlchemyCartRepository(CartRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, cart_id: int) -> Optional[Cart]:
        model = (await self.session.execute(select(CartModel).where(CartModel.id == cart_id))).scalar_one_or_none()
        if model is None:
            return None
        return Cart(
            id=model.id,
            session_id=model.session_id,
            user_id=model.user_id,
            items=[
                CartItem(id=i.id, product_id=i.product_id, variant_id=i.variant_id, quantity=i.quantity)
                for i in model.items
            ],
        )

    async def clear(self, cart_id: int) -> None:
        model = (await self.session.execute(select(CartModel).where(CartModel.id == cart_id))).scalar_one_or_none()
        if model is None:
            return
        # delete-orphan cascade removes the rows
        model.items.clear()
        await self.session.flush()
