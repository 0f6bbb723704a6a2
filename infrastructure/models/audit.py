"""
审计数据库模型：管理员操作日志与状态流转历史（只追加）
"""
from sqlalchemy import Boolean, Column, DateTime, Index, Integer, JSON, String, Text

from .base import Base, utc_now


class AdminAuditLogModel(Base):
    __tablename__ = "admin_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    admin_id = Column(Integer, nullable=True)
    admin_email = Column(String(255), nullable=False, index=True)
    admin_ip = Column(String(64), nullable=True)
    admin_user_agent = Column(Text, nullable=True)

    action_type = Column(String(50), nullable=False)
    target_type = Column(String(30), nullable=False)
    target_id = Column(Integer, nullable=True)
    target_code = Column(String(50), nullable=True)

    state_before = Column(JSON, nullable=False, default=dict, comment="操作前状态快照")
    state_after = Column(JSON, nullable=False, default=dict, comment="操作后状态快照")
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text, nullable=True)
    reason = Column(Text, nullable=True)
    idempotency_key = Column(String(100), unique=True, nullable=True, comment="防重复提交")

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (Index("ix_admin_audit_logs_target", "target_type", "target_id"),)


class StatusHistoryModel(Base):
    __tablename__ = "status_history"

    id = Column(Integer, primary_key=True, index=True)
    entity_type = Column(String(30), nullable=False, comment="order/payment/shipment/refund")
    entity_id = Column(Integer, nullable=False)
    from_status = Column(String(30), nullable=True)
    to_status = Column(String(30), nullable=False)
    actor = Column(String(255), nullable=False)
    reason = Column(Text, nullable=True)
    extra_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (Index("ix_status_history_entity", "entity_type", "entity_id"),)
