"""
支付仓储接口 - 定义支付数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from .entity import Payment


class PaymentRepository(ABC):
    """支付仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""

    @abstractmethod
    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        pass

    @abstractmethod
    async def get_for_update(self, payment_id: int) -> Optional[Payment]:
        """SELECT ... FOR UPDATE；调用方须先锁定订单"""

    @abstractmethod
    async def get_by_external_id(self, external_id: str, *, for_update: bool = False) -> Optional[Payment]:
        pass

    @abstractmethod
    async def get_latest_for_order(self, order_id: int, *, for_update: bool = False) -> Optional[Payment]:
        """最新一条支付记录（created_at 最大）"""

    @abstractmethod
    async def get_active_for_order(self, order_id: int, *, for_update: bool = False) -> Optional[Payment]:
        """最新一条非终态（PENDING）支付记录"""

    @abstractmethod
    async def list_for_order(self, order_id: int) -> List[Payment]:
        pass

    @abstractmethod
    async def update(self, payment: Payment) -> Payment:
        pass

    @abstractmethod
    async def list_expired_pending(self, now: datetime, limit: int) -> List[Payment]:
        """PENDING 且 expiry_time < now"""

    @abstractmethod
    async def list_pending_created_before(self, cutoff: datetime, limit: int) -> List[Payment]:
        """PENDING 且 created_at < cutoff，最久未查询网关的排在前面"""

    @abstractmethod
    async def mark_status_checked(self, payment_ids: Iterable[int], checked_at: datetime) -> None:
        pass

    @abstractmethod
    async def list_created_between(self, start: datetime, end: datetime) -> List[Payment]:
        pass

    @abstractmethod
    async def list_orphans_created_between(self, start: datetime, end: datetime) -> List[Payment]:
        """订单不存在的支付记录"""
