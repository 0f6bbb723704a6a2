"""
对账仓储接口
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import Mismatch, PaymentSyncLog, ReconciliationLog


class ReconciliationRepository(ABC):
    @abstractmethod
    async def add_log(self, log: ReconciliationLog) -> ReconciliationLog:
        pass

    @abstractmethod
    async def add_mismatch(self, mismatch: Mismatch) -> Mismatch:
        pass

    @abstractmethod
    async def list_unresolved(self, limit: int = 100) -> List[Mismatch]:
        pass

    @abstractmethod
    async def get_mismatch_for_update(self, mismatch_id: int) -> Optional[Mismatch]:
        pass

    @abstractmethod
    async def update_mismatch(self, mismatch: Mismatch) -> Mismatch:
        pass


class PaymentSyncLogRepository(ABC):
    @abstractmethod
    async def add(self, entry: PaymentSyncLog) -> PaymentSyncLog:
        pass

    @abstractmethod
    async def list_for_payment(self, payment_id: int) -> List[PaymentSyncLog]:
        pass
