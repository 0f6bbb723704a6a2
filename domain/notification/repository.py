"""
通知发件箱仓储接口
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import EventKind, NotificationLog


class NotificationRepository(ABC):
    @abstractmethod
    async def add(self, notification: NotificationLog) -> NotificationLog:
        pass

    @abstractmethod
    async def exists_active(self, order_id: int, event_kind: EventKind) -> bool:
        """是否已有 PENDING/SENDING/SENT 记录"""

    @abstractmethod
    async def list_pending_for_update(self, limit: int) -> List[NotificationLog]:
        """锁定待发送记录（并发发布者跳过已锁定行）"""

    @abstractmethod
    async def get_for_update(self, notification_id: int) -> Optional[NotificationLog]:
        pass

    @abstractmethod
    async def update(self, notification: NotificationLog) -> NotificationLog:
        pass

    @abstractmethod
    async def list_for_order(self, order_id: int) -> List[NotificationLog]:
        pass
