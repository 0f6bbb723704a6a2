"""
退款仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from .entity import Refund


class RefundRepository(ABC):
    @abstractmethod
    async def create(self, refund: Refund) -> Refund:
        """插入退款及明细；幂等键冲突时抛出 IdempotencyConflictException"""

    @abstractmethod
    async def get_by_id(self, refund_id: int) -> Optional[Refund]:
        pass

    @abstractmethod
    async def get_for_update(self, refund_id: int) -> Optional[Refund]:
        pass

    @abstractmethod
    async def get_by_idempotency_key(self, key: str) -> Optional[Refund]:
        pass

    @abstractmethod
    async def list_for_order(self, order_id: int) -> List[Refund]:
        pass

    @abstractmethod
    async def update(self, refund: Refund) -> Refund:
        """写回状态、网关字段与明细的 stock_restored 标记"""

    @abstractmethod
    async def sum_counted_for_order(self, order_id: int, *, exclude_refund_id: Optional[int] = None) -> Decimal:
        """COMPLETED + PROCESSING 退款金额合计"""

    @abstractmethod
    async def refunded_quantities(self, order_id: int) -> Dict[int, int]:
        """order_item_id -> 已退数量（仅计 COMPLETED/PROCESSING/PENDING）"""

    @abstractmethod
    async def sum_completed_between(self, start: datetime, end: datetime) -> Decimal:
        pass
