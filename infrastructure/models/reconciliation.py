"""
对账结果模型
"""
from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text,
)

from domain.reconciliation.entity import MismatchType

from .base import Base, enum_check, utc_now


class ReconciliationLogModel(Base):
    __tablename__ = "reconciliation_logs"

    id = Column(Integer, primary_key=True, index=True)
    reconciliation_date = Column(Date, nullable=False, index=True)
    total_orders = Column(Integer, nullable=False, default=0)
    total_payments = Column(Integer, nullable=False, default=0)
    order_counts = Column(JSON, nullable=True, comment="按状态统计的订单数")
    payment_counts = Column(JSON, nullable=True)
    mismatch_count = Column(Integer, nullable=False, default=0)
    orphan_orders = Column(Integer, nullable=False, default=0)
    orphan_payments = Column(Integer, nullable=False, default=0)
    stuck_payments = Column(Integer, nullable=False, default=0)
    expected_revenue = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    actual_revenue = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    revenue_variance = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    refund_total = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="OK")
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class ReconciliationMismatchModel(Base):
    __tablename__ = "reconciliation_mismatches"

    id = Column(Integer, primary_key=True, index=True)
    reconciliation_id = Column(Integer, ForeignKey("reconciliation_logs.id"), nullable=True, index=True)
    mismatch_type = Column(String(30), nullable=False)
    description = Column(Text, nullable=False)
    order_id = Column(Integer, nullable=True)
    order_code = Column(String(40), nullable=True)
    payment_id = Column(Integer, nullable=True)
    order_status = Column(String(20), nullable=True)
    payment_status = Column(String(20), nullable=True)
    resolved = Column(Boolean, nullable=False, default=False, index=True)
    resolved_by = Column(String(255), nullable=True)
    resolution_note = Column(Text, nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (enum_check("mismatch_type", MismatchType, "ck_reconciliation_mismatches_type"),)
