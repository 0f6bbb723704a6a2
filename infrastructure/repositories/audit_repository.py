"""
审计仓储实现（只追加）
"""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.audit.entity import AuditLog, StatusHistory
from domain.audit.repository import AuditLogRepository, StatusHistoryRepository
from domain.common.exceptions import IdempotencyConflictException
from domain.common.time import ensure_utc
from infrastructure.models.audit import AdminAuditLogModel, StatusHistoryModel

logger = get_logger(__name__)


class SQLAlchemyAuditLogRepository(AuditLogRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: AdminAuditLogModel) -> AuditLog:
        return AuditLog(
            id=model.id,
            admin_id=model.admin_id,
            admin_email=model.admin_email,
            admin_ip=model.admin_ip,
            admin_user_agent=model.admin_user_agent,
            action_type=model.action_type,
            target_type=model.target_type,
            target_id=model.target_id,
            target_code=model.target_code,
            state_before=model.state_before or {},
            state_after=model.state_after or {},
            success=bool(model.success),
            error_message=model.error_message,
            reason=model.reason,
            idempotency_key=model.idempotency_key,
            created_at=ensure_utc(model.created_at),
        )

    async def add(self, log: AuditLog) -> AuditLog:
        model = AdminAuditLogModel(
            admin_id=log.admin_id,
            admin_email=log.admin_email,
            admin_ip=log.admin_ip,
            admin_user_agent=log.admin_user_agent,
            action_type=log.action_type,
            target_type=log.target_type,
            target_id=log.target_id,
            target_code=log.target_code,
            state_before=log.state_before,
            state_after=log.state_after,
            success=log.success,
            error_message=log.error_message,
            reason=log.reason,
            idempotency_key=log.idempotency_key,
        )
        try:
            self.session.add(model)
            await self.session.flush()
        except IntegrityError as e:
            if log.idempotency_key:
                logger.warning("audit_idempotency_conflict", idempotency_key=log.idempotency_key)
                raise IdempotencyConflictException(log.idempotency_key) from e
            raise
        logger.info(
            "admin_action_audited",
            audit_id=model.id,
            action_type=log.action_type,
            target_type=log.target_type,
            target_id=log.target_id,
            success=log.success,
        )
        return self._to_entity(model)

    async def get_by_idempotency_key(self, key: str) -> Optional[AuditLog]:
        result = await self.session.execute(
            select(AdminAuditLogModel).where(AdminAuditLogModel.idempotency_key == key)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def list_for_target(self, target_type: str, target_id: int) -> List[AuditLog]:
        result = await self.session.execute(
            select(AdminAuditLogModel)
            .where(AdminAuditLogModel.target_type == target_type, AdminAuditLogModel.target_id == target_id)
            .order_by(AdminAuditLogModel.id)
        )
        return [self._to_entity(m) for m in result.scalars().all()]


class SQLAlchemyStatusHistoryRepository(StatusHistoryRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, entry: StatusHistory) -> StatusHistory:
        model = StatusHistoryModel(
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            from_status=entry.from_status,
            to_status=entry.to_status,
            actor=entry.actor,
            reason=entry.reason,
            extra_metadata=entry.metadata or None,
        )
        self.session.add(model)
        await self.session.flush()
        entry.id = model.id
        entry.created_at = ensure_utc(model.created_at)
        return entry

    async def list_for(self, entity_type: str, entity_id: int) -> List[StatusHistory]:
        result = await self.session.execute(
            select(StatusHistoryModel)
            .where(StatusHistoryModel.entity_type == entity_type, StatusHistoryModel.entity_id == entity_id)
            .order_by(StatusHistoryModel.id)
        )
        return [
            StatusHistory(
                id=m.id,
                entity_type=m.entity_type,
                entity_id=m.entity_id,
                from_status=m.from_status,
                to_status=m.to_status,
                actor=m.actor,
                reason=m.reason,
                metadata=m.extra_metadata or {},
                created_at=ensure_utc(m.created_at),
            )
            for m in result.scalars().all()
        ]
