"""
审计仓储接口
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import AuditLog, StatusHistory


class AuditLogRepository(ABC):
    """Insert-only; rows are never updated."""

    @abstractmethod
    async def add(self, log: AuditLog) -> AuditLog:
        """写入审计记录；幂等键冲突时抛出 IdempotencyConflictException"""

    @abstractmethod
    async def get_by_idempotency_key(self, key: str) -> Optional[AuditLog]:
        pass

    @abstractmethod
    async def list_for_target(self, target_type: str, target_id: int) -> List[AuditLog]:
        pass


class StatusHistoryRepository(ABC):
    @abstractmethod
    async def add(self, entry: StatusHistory) -> StatusHistory:
        pass

    @abstractmethod
    async def list_for(self, entity_type: str, entity_id: int) -> List[StatusHistory]:
        """按时间顺序返回实体的状态流转记录"""
