"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderItemModel, OrderModel
from .payment import PaymentModel, PaymentSyncLogModel
from .shipment import CourierFailureLogModel, DisputeModel, ShipmentAlertModel, ShipmentModel
from .refund import RefundItemModel, RefundModel
from .audit import AdminAuditLogModel, StatusHistoryModel
from .inventory import CartItemModel, CartModel, ProductModel, ProductVariantModel, StockMovementModel
from .notification import NotificationLogModel
from .reconciliation import ReconciliationLogModel, ReconciliationMismatchModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "OrderItemModel",
    "PaymentModel",
    "PaymentSyncLogModel",
    "ShipmentModel",
    "ShipmentAlertModel",
    "CourierFailureLogModel",
    "DisputeModel",
    "RefundModel",
    "RefundItemModel",
    "AdminAuditLogModel",
    "StatusHistoryModel",
    "ProductModel",
    "ProductVariantModel",
    "StockMovementModel",
    "CartModel",
    "CartItemModel",
    "NotificationLogModel",
    "ReconciliationLogModel",
    "ReconciliationMismatchModel",
]
