"""create_order_lifecycle_tables

Revision ID: 3c1f7a9e2b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3c1f7a9e2b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUSES = ('PENDING', 'PAID', 'PACKING', 'SHIPPED', 'DELIVERED', 'COMPLETED', 'CANCELLED', 'EXPIRED', 'FAILED', 'REFUNDED')
PAYMENT_STATUSES = ('PENDING', 'PAID', 'EXPIRED', 'CANCELLED', 'FAILED')
SHIPMENT_STATUSES = (
    'PENDING', 'PROCESSING', 'PICKUP_SCHEDULED', 'PICKUP_FAILED', 'SHIPPED', 'IN_TRANSIT', 'OUT_FOR_DELIVERY',
    'DELIVERED', 'DELIVERY_FAILED', 'HELD_AT_WAREHOUSE', 'INVESTIGATION', 'LOST', 'RETURNED_TO_SENDER',
    'REPLACED', 'CANCELLED',
)
REFUND_STATUSES = ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')
REFUND_TYPES = ('FULL', 'PARTIAL', 'SHIPPING_ONLY', 'ITEM_ONLY')
REFUND_REASONS = (
    'CUSTOMER_REQUEST', 'OUT_OF_STOCK', 'DAMAGED_ITEM', 'WRONG_ITEM', 'LATE_DELIVERY', 'DUPLICATE_ORDER',
    'FRAUD_SUSPECTED', 'ADMIN_DECISION', 'SHIPPING_FAILED', 'OTHER',
)
MOVEMENT_TYPES = ('RESERVE', 'RELEASE', 'DEDUCT', 'ADJUSTMENT')
EVENT_KINDS = ('OrderCreated', 'PaymentSuccess', 'OrderShipped', 'OrderDelivered', 'OrderCancelled', 'OrderRefunded')
NOTIFICATION_STATUSES = ('PENDING', 'SENDING', 'SENT', 'FAILED')
MISMATCH_TYPES = ('STATUS_MISMATCH', 'ORPHAN_ORDER', 'ORPHAN_PAYMENT', 'STUCK_PAYMENT', 'AMOUNT_MISMATCH')
SYNC_TYPES = ('webhook', 'manual_check', 'auto_resolve', 'admin_sync', 'expiry')
SYNC_STATUSES = ('SYNCED', 'FAILED', 'SKIPPED')
ALERT_LEVELS = ('warning', 'critical', 'urgent')
DISPUTE_STATUSES = ('OPEN', 'INVESTIGATING', 'RESOLVED', 'CLOSED')
DISPUTE_TYPES = ('LOST_PACKAGE', 'DAMAGED_ITEM', 'WRONG_ITEM', 'MISSING_ITEM', 'NOT_DELIVERED', 'FAKE_DELIVERY', 'OTHER')


def _in(column: str, values: Sequence[str], name: str) -> sa.CheckConstraint:
    return sa.CheckConstraint(f"{column} IN ({', '.join(repr(v) for v in values)})", name=name)


def _money(name: str, nullable: bool = False, **kw) -> sa.Column:
    return sa.Column(name, sa.Numeric(precision=15, scale=2), nullable=nullable, **kw)


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    # Catalog, stock ledger and carts
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        _money('price'),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0', comment='可售库存'),
        sa.Column('weight_grams', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
    )
    op.create_table(
        'product_variants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        _money('price', nullable=True, comment='为空时使用商品价格'),
        sa.Column('weight_grams', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku'),
        sa.CheckConstraint('stock >= 0', name='ck_product_variants_stock_non_negative'),
    )
    op.create_index('ix_product_variants_product_id', 'product_variants', ['product_id'])

    op.create_table(
        'carts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.String(length=100), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        _ts('created_at', nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_carts_session_id', 'carts', ['session_id'])
    op.create_index('ix_carts_user_id', 'carts', ['user_id'])
    op.create_table(
        'cart_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cart_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['cart_id'], ['carts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_cart_items_cart_id', 'cart_items', ['cart_id'])

    # Orders
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_code', sa.String(length=40), nullable=False, comment='订单号 ZVR-YYYYMMDD-XXXXXXXX'),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('customer_name', sa.String(length=200), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=False),
        sa.Column('customer_phone', sa.String(length=50), nullable=False),
        _money('subtotal'),
        _money('shipping_cost', server_default='0'),
        _money('tax', server_default='0'),
        _money('discount', server_default='0'),
        _money('total_amount'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING'),
        sa.Column('stock_reserved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('resi', sa.String(length=100), nullable=True, comment='运单号，SHIPPED 后锁定'),
        sa.Column('refund_status', sa.String(length=20), nullable=True),
        _money('refund_amount', server_default='0'),
        sa.Column('metadata', sa.JSON(), nullable=True),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        _ts('paid_at'),
        _ts('shipped_at'),
        _ts('delivered_at'),
        _ts('completed_at'),
        _ts('cancelled_at'),
        _ts('refunded_at'),
        _ts('expired_at'),
        _ts('failed_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_code'),
        sa.UniqueConstraint('resi'),
        _in('status', ORDER_STATUSES, 'ck_orders_status'),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_customer_email', 'orders', ['customer_email'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])
    op.create_index('ix_orders_status_delivered', 'orders', ['status', 'delivered_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('product_image', sa.Text(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        _money('unit_price'),
        _money('subtotal'),
        sa.Column('weight_grams', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('order_item_id', sa.Integer(), nullable=True),
        sa.Column('movement_type', sa.String(length=20), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        _ts('created_at', nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id']),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        _in('movement_type', MOVEMENT_TYPES, 'ck_stock_movements_type'),
    )
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_order_id', 'stock_movements', ['order_id'])
    op.create_index('ix_stock_movements_order_type', 'stock_movements', ['order_id', 'movement_type'])

    # Payments
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('payment_method', sa.String(length=30), nullable=False),
        sa.Column('bank', sa.String(length=30), nullable=True),
        sa.Column('external_id', sa.String(length=100), nullable=False, comment='网关订单号，每次尝试唯一'),
        sa.Column('transaction_id', sa.String(length=100), nullable=True),
        _money('amount'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING'),
        sa.Column('va_number', sa.String(length=50), nullable=True),
        sa.Column('qr_url', sa.Text(), nullable=True),
        _ts('expiry_time'),
        sa.Column('raw_response', sa.JSON(), nullable=True),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        _ts('paid_at'),
        _ts('last_status_check'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id'),
        _in('status', PAYMENT_STATUSES, 'ck_payments_status'),
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])
    op.create_index('ix_payments_transaction_id', 'payments', ['transaction_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_created_at', 'payments', ['created_at'])
    op.create_index('ix_payments_order_status', 'payments', ['order_id', 'status'])
    op.create_index('ix_payments_status_expiry', 'payments', ['status', 'expiry_time'])

    op.create_table(
        'payment_sync_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('sync_type', sa.String(length=20), nullable=False),
        sa.Column('sync_status', sa.String(length=20), nullable=False),
        sa.Column('gateway_status', sa.String(length=50), nullable=True),
        sa.Column('local_payment_status', sa.String(length=20), nullable=True),
        sa.Column('local_order_status', sa.String(length=20), nullable=True),
        sa.Column('has_mismatch', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('raw_response', sa.JSON(), nullable=True),
        _ts('created_at', nullable=False),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id']),
        sa.PrimaryKeyConstraint('id'),
        _in('sync_type', SYNC_TYPES, 'ck_payment_sync_logs_type'),
        _in('sync_status', SYNC_STATUSES, 'ck_payment_sync_logs_status'),
    )
    op.create_index('ix_payment_sync_logs_payment_id', 'payment_sync_logs', ['payment_id'])
    op.create_index('ix_payment_sync_logs_order_id', 'payment_sync_logs', ['order_id'])
    op.create_index('ix_payment_sync_logs_created_at', 'payment_sync_logs', ['created_at'])

    # Shipments
    op.create_table(
        'shipments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('provider_code', sa.String(length=50), nullable=False),
        sa.Column('provider_name', sa.String(length=100), nullable=True),
        sa.Column('service_code', sa.String(length=50), nullable=False),
        sa.Column('service_name', sa.String(length=100), nullable=True),
        _money('cost', server_default='0'),
        sa.Column('etd', sa.String(length=50), nullable=True),
        sa.Column('weight_grams', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tracking_number', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='PENDING'),
        sa.Column('origin', sa.JSON(), nullable=True),
        sa.Column('destination', sa.JSON(), nullable=True),
        sa.Column('rate_snapshot', sa.JSON(), nullable=True),
        sa.Column('pickup_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delivery_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reship_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('days_without_update', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('requires_admin_action', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('admin_action_reason', sa.Text(), nullable=True),
        sa.Column('is_replacement', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('original_shipment_id', sa.Integer(), nullable=True),
        sa.Column('replaced_by_shipment_id', sa.Integer(), nullable=True),
        sa.Column('tracking_stale', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('investigation_reason', sa.Text(), nullable=True),
        _ts('pickup_deadline'),
        _ts('shipped_at'),
        _ts('delivered_at'),
        _ts('investigation_opened_at'),
        _ts('marked_lost_at'),
        _ts('last_tracking_update'),
        _ts('last_tracking_check'),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['original_shipment_id'], ['shipments.id']),
        sa.ForeignKeyConstraint(['replaced_by_shipment_id'], ['shipments.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tracking_number'),
        _in('status', SHIPMENT_STATUSES, 'ck_shipments_status'),
    )
    op.create_index('ix_shipments_order_id', 'shipments', ['order_id'])
    op.create_index('ix_shipments_status', 'shipments', ['status'])
    op.create_index('ix_shipments_requires_admin_action', 'shipments', ['requires_admin_action'])
    op.create_index('ix_shipments_order_status', 'shipments', ['order_id', 'status'])

    op.create_table(
        'shipment_alerts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shipment_id', sa.Integer(), nullable=False),
        sa.Column('alert_type', sa.String(length=50), nullable=False),
        sa.Column('alert_level', sa.String(length=20), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('auto_action_taken', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('auto_action_type', sa.String(length=50), nullable=True),
        sa.Column('resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts('created_at', nullable=False),
        sa.ForeignKeyConstraint(['shipment_id'], ['shipments.id']),
        sa.PrimaryKeyConstraint('id'),
        _in('alert_level', ALERT_LEVELS, 'ck_shipment_alerts_level'),
    )
    op.create_index('ix_shipment_alerts_shipment_id', 'shipment_alerts', ['shipment_id'])

    op.create_table(
        'courier_failure_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shipment_id', sa.Integer(), nullable=False),
        sa.Column('courier_code', sa.String(length=50), nullable=True),
        sa.Column('failure_type', sa.String(length=50), nullable=False),
        sa.Column('failure_reason', sa.Text(), nullable=False),
        _ts('created_at', nullable=False),
        sa.ForeignKeyConstraint(['shipment_id'], ['shipments.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_courier_failure_logs_shipment_id', 'courier_failure_logs', ['shipment_id'])
    op.create_index('ix_courier_failure_logs_courier_code', 'courier_failure_logs', ['courier_code'])

    op.create_table(
        'disputes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('dispute_code', sa.String(length=40), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('shipment_id', sa.Integer(), nullable=True),
        sa.Column('dispute_type', sa.String(length=30), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='OPEN'),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=50), nullable=True),
        sa.Column('opened_by', sa.String(length=100), nullable=False, server_default='customer'),
        _ts('created_at', nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['shipment_id'], ['shipments.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('dispute_code'),
        _in('dispute_type', DISPUTE_TYPES, 'ck_disputes_type'),
        _in('status', DISPUTE_STATUSES, 'ck_disputes_status'),
    )
    op.create_index('ix_disputes_order_id', 'disputes', ['order_id'])

    # Refunds
    op.create_table(
        'refunds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('refund_code', sa.String(length=40), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('refund_type', sa.String(length=20), nullable=False),
        sa.Column('reason', sa.String(length=30), nullable=False),
        sa.Column('reason_detail', sa.Text(), nullable=True),
        _money('original_amount'),
        _money('refund_amount'),
        _money('shipping_refund', server_default='0'),
        _money('items_refund', server_default='0'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING'),
        sa.Column('idempotency_key', sa.String(length=100), nullable=True),
        sa.Column('gateway_refund_id', sa.String(length=100), nullable=True),
        sa.Column('gateway_status', sa.String(length=50), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('requested_by', sa.String(length=255), nullable=True),
        sa.Column('processed_by', sa.String(length=255), nullable=True),
        _ts('processed_at'),
        _ts('completed_at'),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('refund_code'),
        sa.UniqueConstraint('idempotency_key'),
        _in('status', REFUND_STATUSES, 'ck_refunds_status'),
        _in('refund_type', REFUND_TYPES, 'ck_refunds_type'),
        _in('reason', REFUND_REASONS, 'ck_refunds_reason'),
    )
    op.create_index('ix_refunds_order_id', 'refunds', ['order_id'])
    op.create_index('ix_refunds_status', 'refunds', ['status'])
    op.create_index('ix_refunds_completed_at', 'refunds', ['completed_at'])
    op.create_index('ix_refunds_order_status', 'refunds', ['order_id', 'status'])

    op.create_table(
        'refund_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('refund_id', sa.Integer(), nullable=False),
        sa.Column('order_item_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        _money('price'),
        _money('refund_amount'),
        sa.Column('stock_restored', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(['refund_id'], ['refunds.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['order_item_id'], ['order_items.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_refund_items_refund_id', 'refund_items', ['refund_id'])

    # Append-only audit
    op.create_table(
        'admin_audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('admin_id', sa.Integer(), nullable=True),
        sa.Column('admin_email', sa.String(length=255), nullable=False),
        sa.Column('admin_ip', sa.String(length=64), nullable=True),
        sa.Column('admin_user_agent', sa.Text(), nullable=True),
        sa.Column('action_type', sa.String(length=50), nullable=False),
        sa.Column('target_type', sa.String(length=30), nullable=False),
        sa.Column('target_id', sa.Integer(), nullable=True),
        sa.Column('target_code', sa.String(length=50), nullable=True),
        sa.Column('state_before', sa.JSON(), nullable=False),
        sa.Column('state_after', sa.JSON(), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('idempotency_key', sa.String(length=100), nullable=True),
        _ts('created_at', nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key'),
    )
    op.create_index('ix_admin_audit_logs_admin_email', 'admin_audit_logs', ['admin_email'])
    op.create_index('ix_admin_audit_logs_target', 'admin_audit_logs', ['target_type', 'target_id'])

    op.create_table(
        'status_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(length=30), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('from_status', sa.String(length=30), nullable=True),
        sa.Column('to_status', sa.String(length=30), nullable=False),
        sa.Column('actor', sa.String(length=255), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        _ts('created_at', nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_status_history_entity', 'status_history', ['entity_type', 'entity_id'])

    # Notification outbox
    op.create_table(
        'notification_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('event_kind', sa.String(length=30), nullable=False),
        sa.Column('recipient', sa.String(length=255), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error', sa.Text(), nullable=True),
        _ts('sent_at'),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        _in('status', NOTIFICATION_STATUSES, 'ck_notification_logs_status'),
        _in('event_kind', EVENT_KINDS, 'ck_notification_logs_event_kind'),
    )
    op.create_index('ix_notification_logs_order_id', 'notification_logs', ['order_id'])
    op.create_index('ix_notification_logs_status', 'notification_logs', ['status'])
    # 每个订单每种事件最多成功发送一次
    op.create_index(
        'uq_notification_logs_sent_once',
        'notification_logs',
        ['order_id', 'event_kind'],
        unique=True,
        postgresql_where=sa.text("status = 'SENT'"),
        sqlite_where=sa.text("status = 'SENT'"),
    )

    # Reconciliation
    op.create_table(
        'reconciliation_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reconciliation_date', sa.Date(), nullable=False),
        sa.Column('total_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_payments', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('order_counts', sa.JSON(), nullable=True),
        sa.Column('payment_counts', sa.JSON(), nullable=True),
        sa.Column('mismatch_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('orphan_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('orphan_payments', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stuck_payments', sa.Integer(), nullable=False, server_default='0'),
        _money('expected_revenue', server_default='0'),
        _money('actual_revenue', server_default='0'),
        _money('revenue_variance', server_default='0'),
        _money('refund_total', server_default='0'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='OK'),
        sa.Column('details', sa.JSON(), nullable=True),
        _ts('created_at', nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_reconciliation_logs_reconciliation_date', 'reconciliation_logs', ['reconciliation_date'])

    op.create_table(
        'reconciliation_mismatches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reconciliation_id', sa.Integer(), nullable=True),
        sa.Column('mismatch_type', sa.String(length=30), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('order_code', sa.String(length=40), nullable=True),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('order_status', sa.String(length=20), nullable=True),
        sa.Column('payment_status', sa.String(length=20), nullable=True),
        sa.Column('resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('resolved_by', sa.String(length=255), nullable=True),
        sa.Column('resolution_note', sa.Text(), nullable=True),
        _ts('resolved_at'),
        _ts('created_at', nullable=False),
        sa.ForeignKeyConstraint(['reconciliation_id'], ['reconciliation_logs.id']),
        sa.PrimaryKeyConstraint('id'),
        _in('mismatch_type', MISMATCH_TYPES, 'ck_reconciliation_mismatches_type'),
    )
    op.create_index('ix_reconciliation_mismatches_reconciliation_id', 'reconciliation_mismatches', ['reconciliation_id'])
    op.create_index('ix_reconciliation_mismatches_resolved', 'reconciliation_mismatches', ['resolved'])


def downgrade() -> None:
    # Drop in reverse dependency order; indexes go with their tables
    for table in (
        'reconciliation_mismatches',
        'reconciliation_logs',
        'notification_logs',
        'status_history',
        'admin_audit_logs',
        'refund_items',
        'refunds',
        'disputes',
        'courier_failure_logs',
        'shipment_alerts',
        'shipments',
        'payment_sync_logs',
        'payments',
        'stock_movements',
        'order_items',
        'orders',
        'cart_items',
        'carts',
        'product_variants',
        'products',
    ):
        op.drop_table(table)
