"""
通知发件箱模型
"""
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text, text

from domain.notification.entity import EventKind, NotificationStatus

from .base import Base, enum_check, utc_now


class NotificationLogModel(Base):
    __tablename__ = "notification_logs"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    event_kind = Column(String(30), nullable=False)
    recipient = Column(String(255), nullable=False)
    payload = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default=NotificationStatus.PENDING.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        enum_check("status", NotificationStatus, "ck_notification_logs_status"),
        enum_check("event_kind", EventKind, "ck_notification_logs_event_kind"),
        # 每个订单每种事件最多成功发送一次
        Index(
            "uq_notification_logs_sent_once",
            "order_id",
            "event_kind",
            unique=True,
            postgresql_where=text("status = 'SENT'"),
            sqlite_where=text("status = 'SENT'"),
        ),
    )
