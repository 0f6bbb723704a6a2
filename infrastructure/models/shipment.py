"""
发货数据库模型（含告警、承运商失败记录与纠纷）
"""
from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, Text,
)

from domain.shipment.entity import AlertLevel, DisputeStatus, DisputeType
from domain.shipment.status import ShipmentStatus

from .base import Base, enum_check, utc_now


class ShipmentModel(Base):
    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)

    provider_code = Column(String(50), nullable=False, comment="承运商编码 jne/jnt/sicepat ...")
    provider_name = Column(String(100), nullable=True)
    service_code = Column(String(50), nullable=False)
    service_name = Column(String(100), nullable=True)
    cost = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    etd = Column(String(50), nullable=True)
    weight_grams = Column(Integer, nullable=False, default=0)
    tracking_number = Column(String(100), unique=True, nullable=True, comment="运单号")
    status = Column(String(30), nullable=False, default=ShipmentStatus.PENDING.value, index=True)

    origin = Column(JSON, nullable=True)
    destination = Column(JSON, nullable=True)
    rate_snapshot = Column(JSON, nullable=True, comment="下单时的运费报价快照")

    # 监控计数
    pickup_attempts = Column(Integer, nullable=False, default=0)
    delivery_attempts = Column(Integer, nullable=False, default=0)
    reship_count = Column(Integer, nullable=False, default=0)
    days_without_update = Column(Integer, nullable=False, default=0)

    requires_admin_action = Column(Boolean, nullable=False, default=False, index=True)
    admin_action_reason = Column(Text, nullable=True)
    is_replacement = Column(Boolean, nullable=False, default=False)
    original_shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=True)
    replaced_by_shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=True)
    tracking_stale = Column(Boolean, nullable=False, default=False)
    investigation_reason = Column(Text, nullable=True)

    pickup_deadline = Column(DateTime(timezone=True), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    investigation_opened_at = Column(DateTime(timezone=True), nullable=True)
    marked_lost_at = Column(DateTime(timezone=True), nullable=True)
    last_tracking_update = Column(DateTime(timezone=True), nullable=True)
    last_tracking_check = Column(DateTime(timezone=True), nullable=True, comment="上次向承运商查询的时间")
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        enum_check("status", ShipmentStatus, "ck_shipments_status"),
        Index("ix_shipments_order_status", "order_id", "status"),
    )

    def __repr__(self):
        return f"<ShipmentModel(id={self.id}, order_id={self.order_id}, status='{self.status}')>"


class ShipmentAlertModel(Base):
    __tablename__ = "shipment_alerts"

    id = Column(Integer, primary_key=True, index=True)
    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=False, index=True)
    alert_type = Column(String(50), nullable=False)
    alert_level = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    auto_action_taken = Column(Boolean, nullable=False, default=False)
    auto_action_type = Column(String(50), nullable=True)
    resolved = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (enum_check("alert_level", AlertLevel, "ck_shipment_alerts_level"),)


class CourierFailureLogModel(Base):
    __tablename__ = "courier_failure_logs"

    id = Column(Integer, primary_key=True, index=True)
    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=False, index=True)
    courier_code = Column(String(50), nullable=True, index=True)
    failure_type = Column(String(50), nullable=False)
    failure_reason = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class DisputeModel(Base):
    __tablename__ = "disputes"

    id = Column(Integer, primary_key=True, index=True)
    dispute_code = Column(String(40), unique=True, nullable=False, comment="纠纷编号 DSP-YYYYMMDD-XXXXXX")
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=True)
    dispute_type = Column(String(30), nullable=False)
    status = Column(String(20), nullable=False, default=DisputeStatus.OPEN.value)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)
    opened_by = Column(String(100), nullable=False, default="customer")
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        enum_check("dispute_type", DisputeType, "ck_disputes_type"),
        enum_check("status", DisputeStatus, "ck_disputes_status"),
    )
