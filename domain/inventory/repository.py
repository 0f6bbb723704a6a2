"""
库存与购物车仓储接口
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import Cart, MovementType, Product, ProductVariant, StockMovement


class InventoryRepository(ABC):
    @abstractmethod
    async def get_product(self, product_id: int, *, for_update: bool = False) -> Optional[Product]:
        pass

    @abstractmethod
    async def get_variant(self, variant_id: int, *, for_update: bool = False) -> Optional[ProductVariant]:
        pass

    @abstractmethod
    async def set_product_stock(self, product_id: int, stock: int) -> None:
        pass

    @abstractmethod
    async def set_variant_stock(self, variant_id: int, stock: int) -> None:
        pass

    @abstractmethod
    async def add_movement(self, movement: StockMovement) -> StockMovement:
        pass

    @abstractmethod
    async def list_movements(
        self,
        *,
        order_id: Optional[int] = None,
        product_id: Optional[int] = None,
        movement_type: Optional[MovementType] = None,
    ) -> List[StockMovement]:
        pass


class CartRepository(ABC):
    @abstractmethod
    async def get(self, cart_id: int) -> Optional[Cart]:
        """带明细加载购物车"""

    @abstractmethod
    async def clear(self, cart_id: int) -> None:
        pass
