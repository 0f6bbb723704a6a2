"""
订单仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import Order


class OrderRepository(ABC):
    """Orders are loaded together with their items."""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """插入订单及明细"""

    @abstractmethod
    async def get_by_id(self, order_id: int) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_code(self, order_code: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_for_update(self, order_id: int) -> Optional[Order]:
        """SELECT ... FOR UPDATE，锁顺序中的第一把锁"""

    @abstractmethod
    async def get_by_code_for_update(self, order_code: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """写回状态、时间戳、resi、元数据与退款字段（明细不可变）"""

    @abstractmethod
    async def code_exists(self, order_code: str) -> bool:
        pass

    @abstractmethod
    async def resi_exists(self, resi: str, *, exclude_order_id: Optional[int] = None) -> bool:
        pass

    @abstractmethod
    async def list_pending_created_before(self, cutoff: datetime, limit: int) -> List[int]:
        pass

    @abstractmethod
    async def list_delivered_before(self, cutoff: datetime, limit: int) -> List[int]:
        pass

    @abstractmethod
    async def list_created_between(self, start: datetime, end: datetime) -> List[Order]:
        """对账用；不加载明细"""
