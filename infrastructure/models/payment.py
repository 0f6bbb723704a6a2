"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, Text,
)

from domain.payment.status import PaymentStatus
from domain.reconciliation.entity import SyncStatus, SyncType

from .base import Base, enum_check, utc_now


class PaymentModel(Base):
    """
    支付数据库模型

    每次向网关发起的收款尝试一行；所有业务规则都在 domain.payment.entity.Payment 中
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True, comment="订单ID")

    payment_method = Column(String(30), nullable=False, comment="bca_va/bni_va/qris/gopay ...")
    bank = Column(String(30), nullable=True)
    external_id = Column(String(100), unique=True, nullable=False, comment="网关订单号，每次尝试唯一")
    transaction_id = Column(String(100), nullable=True, index=True, comment="网关交易ID")

    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="支付金额")
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)

    va_number = Column(String(50), nullable=True)
    qr_url = Column(Text, nullable=True)
    expiry_time = Column(DateTime(timezone=True), nullable=True, comment="支付截止时间")
    raw_response = Column(JSON, nullable=True, comment="网关最近一次响应")

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    last_status_check = Column(DateTime(timezone=True), nullable=True, comment="自动对账上次查询网关的时间")

    __table_args__ = (
        enum_check("status", PaymentStatus, "ck_payments_status"),
        Index("ix_payments_order_status", "order_id", "status"),
        Index("ix_payments_status_expiry", "status", "expiry_time"),
    )

    def __repr__(self):
        return f"<PaymentModel(id={self.id}, external_id='{self.external_id}', status='{self.status}')>"


class PaymentSyncLogModel(Base):
    """支付状态同步审计（webhook / 主动查询 / 自动修复）"""

    __tablename__ = "payment_sync_logs"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False, index=True)
    order_id = Column(Integer, nullable=True, index=True)
    sync_type = Column(String(20), nullable=False)
    sync_status = Column(String(20), nullable=False)
    gateway_status = Column(String(50), nullable=True)
    local_payment_status = Column(String(20), nullable=True)
    local_order_status = Column(String(20), nullable=True)
    has_mismatch = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    raw_response = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)

    __table_args__ = (
        enum_check("sync_type", SyncType, "ck_payment_sync_logs_type"),
        enum_check("sync_status", SyncStatus, "ck_payment_sync_logs_status"),
    )
