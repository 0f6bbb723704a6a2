"""
订单数据库模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, Text,
)
from sqlalchemy.orm import relationship

from domain.order.status import OrderStatus

from .base import Base, enum_check, utc_now


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_code = Column(String(40), unique=True, nullable=False, comment="订单号 ZVR-YYYYMMDD-XXXXXXXX")
    user_id = Column(Integer, nullable=True, index=True, comment="用户ID（游客下单为空）")

    # 客户快照
    customer_name = Column(String(200), nullable=False)
    customer_email = Column(String(255), nullable=False, index=True)
    customer_phone = Column(String(50), nullable=False)

    # 金额：total = subtotal + shipping + tax - discount
    subtotal = Column(Numeric(precision=15, scale=2), nullable=False, comment="商品小计")
    shipping_cost = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="运费")
    tax = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    discount = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    total_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="应付总额")

    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True, comment="订单状态")
    stock_reserved = Column(Boolean, nullable=False, default=False, comment="库存是否仍被占用")
    resi = Column(String(100), unique=True, nullable=True, comment="运单号，SHIPPED 后锁定")

    refund_status = Column(String(20), nullable=True, comment="FULL/PARTIAL")
    refund_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="累计已退款")

    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据：地址快照/物流/降级记录")

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItemModel.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        enum_check("status", OrderStatus, "ck_orders_status"),
        Index("ix_orders_status_created", "status", "created_at"),
        Index("ix_orders_status_delivered", "status", "delivered_at"),
    )

    def __repr__(self):
        return f"<OrderModel(id={self.id}, order_code='{self.order_code}', status='{self.status}')>"


class OrderItemModel(Base):
    """订单明细：下单时的商品快照，之后不再修改"""

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False, index=True)
    variant_id = Column(Integer, nullable=True)
    product_name = Column(String(255), nullable=False)
    product_image = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(precision=15, scale=2), nullable=False)
    subtotal = Column(Numeric(precision=15, scale=2), nullable=False)
    weight_grams = Column(Integer, nullable=False, default=0)

    order = relationship("OrderModel", back_populates="items")
