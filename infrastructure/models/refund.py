"""
退款数据库模型
"""
from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text,
)
from sqlalchemy.orm import relationship

from domain.refund.status import RefundReason, RefundStatus, RefundType

from .base import Base, enum_check, utc_now


class RefundModel(Base):
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, index=True)
    refund_code = Column(String(40), unique=True, nullable=False, comment="退款编号 RFD-YYYYMMDD-XXXXXX")
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True)

    refund_type = Column(String(20), nullable=False)
    reason = Column(String(30), nullable=False)
    reason_detail = Column(Text, nullable=True)

    original_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="订单已支付金额")
    refund_amount = Column(Numeric(precision=15, scale=2), nullable=False)
    shipping_refund = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    items_refund = Column(Numeric(precision=15, scale=2), nullable=False, default=0)

    status = Column(String(20), nullable=False, default=RefundStatus.PENDING.value, index=True)
    idempotency_key = Column(String(100), unique=True, nullable=True, comment="客户端幂等键")
    gateway_refund_id = Column(String(100), nullable=True)
    gateway_status = Column(String(50), nullable=True)
    note = Column(Text, nullable=True)

    requested_by = Column(String(255), nullable=True)
    processed_by = Column(String(255), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    items = relationship(
        "RefundItemModel",
        back_populates="refund",
        lazy="selectin",
        order_by="RefundItemModel.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        enum_check("status", RefundStatus, "ck_refunds_status"),
        enum_check("refund_type", RefundType, "ck_refunds_type"),
        enum_check("reason", RefundReason, "ck_refunds_reason"),
        Index("ix_refunds_order_status", "order_id", "status"),
    )

    def __repr__(self):
        return f"<RefundModel(id={self.id}, refund_code='{self.refund_code}', status='{self.status}')>"


class RefundItemModel(Base):
    __tablename__ = "refund_items"

    id = Column(Integer, primary_key=True, index=True)
    refund_id = Column(Integer, ForeignKey("refunds.id", ondelete="CASCADE"), nullable=False, index=True)
    order_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=False)
    product_id = Column(Integer, nullable=True)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(precision=15, scale=2), nullable=False)
    refund_amount = Column(Numeric(precision=15, scale=2), nullable=False)
    stock_restored = Column(Boolean, nullable=False, default=False, comment="该行库存是否已回补")

    refund = relationship("RefundModel", back_populates="items")
