"""领域层业务异常定义，供领域、应用与基础设施使用。

Every error carries a numeric code plus a kind base class (validation,
not found, conflict, gateway transient, gateway permanent). The core layer
only maps kinds to HTTP responses; it never inspects concrete subclasses.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from shared.codes import BusinessCode
from shared.codes.order_codes import OrderCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Kinds
# ---------------------------------------------------------------------------


class ValidationException(BusinessException):
    """Caller input violates a contract; never retried automatically."""


class NotFoundException(BusinessException):
    pass


class ConflictException(BusinessException):
    pass


class GatewayTransientException(BusinessException):
    """Timeout, 5xx or 418 from a gateway. Safe to try again later."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, details: Optional[dict] = None):
        self.status_code = status_code
        super().__init__(
            code=OrderCode.GATEWAY_TRANSIENT,
            message=message,
            error_type="GatewayTransient",
            details={"status_code": status_code, **(details or {})},
        )


class GatewayPermanentException(BusinessException):
    """4xx (other than 418) from a gateway or a bad webhook signature."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, details: Optional[dict] = None, code: int = OrderCode.GATEWAY_PERMANENT):
        self.status_code = status_code
        super().__init__(
            code=code,
            message=message,
            error_type="GatewayPermanent",
            details={"status_code": status_code, **(details or {})},
        )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class DomainValidationException(ValidationException):
    def __init__(self, message: str, *, field: str | None = None, details: dict | None = None):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class InvalidTransitionException(ValidationException):
    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            code=OrderCode.INVALID_TRANSITION,
            message=f"Cannot move {entity} from {current} to {target}",
            error_type="InvalidTransition",
            details={"entity": entity, "from": current, "to": target},
            field="status",
        )


class InsufficientStockException(ValidationException):
    def __init__(self, product_id: int, requested: int, available: int, *, variant_id: Optional[int] = None):
        super().__init__(
            code=OrderCode.INSUFFICIENT_STOCK,
            message=f"Insufficient stock for product {product_id}: requested {requested}, available {available}",
            error_type="InsufficientStock",
            details={
                "product_id": product_id,
                "variant_id": variant_id,
                "requested": requested,
                "available": available,
            },
        )


class InvalidAddressException(ValidationException):
    def __init__(self, reason: str):
        super().__init__(
            code=OrderCode.INVALID_ADDRESS,
            message=f"Invalid shipping address: {reason}",
            error_type="InvalidAddress",
            field="address",
        )


class CartEmptyException(ValidationException):
    def __init__(self):
        super().__init__(
            code=OrderCode.CART_EMPTY,
            message="Cart is empty",
            error_type="CartEmpty",
        )


class RefundAmountExceedsBalanceException(ValidationException):
    def __init__(self, requested: Decimal, balance: Decimal):
        super().__init__(
            code=OrderCode.REFUND_EXCEEDS_BALANCE,
            message=f"Refund amount {requested} exceeds refundable balance {balance}",
            error_type="RefundAmountExceedsBalance",
            details={"requested": str(requested), "balance": str(balance)},
            field="amount",
        )


class RefundNotAllowedException(ValidationException):
    def __init__(self, reason: str, *, details: Optional[dict] = None):
        super().__init__(
            code=OrderCode.REFUND_NOT_ALLOWED,
            message=reason,
            error_type="RefundNotAllowed",
            details=details,
        )


class InvalidResiFormatException(ValidationException):
    def __init__(self, resi: str, reason: str):
        super().__init__(
            code=OrderCode.INVALID_RESI_FORMAT,
            message=f"Invalid resi '{resi}': {reason}",
            error_type="InvalidResiFormat",
            details={"resi": resi},
            field="resi",
        )


class InvalidPaymentTypeException(ValidationException):
    def __init__(self, method: str):
        super().__init__(
            code=OrderCode.INVALID_PAYMENT_TYPE,
            message=f"Unsupported payment method: {method}",
            error_type="InvalidPaymentType",
            details={"method": method},
            field="payment_method",
        )


class ReshipLimitReachedException(ValidationException):
    def __init__(self, shipment_id: int, reship_count: int):
        super().__init__(
            code=OrderCode.RESHIP_LIMIT_REACHED,
            message=f"Shipment {shipment_id} was already reshipped {reship_count} times",
            error_type="ReshipLimitReached",
            details={"shipment_id": shipment_id, "reship_count": reship_count},
        )


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class _NotFound(NotFoundException):
    code_value: int = BusinessCode.NOT_FOUND
    label: str = "Resource"

    def __init__(self, identifier: object = None):
        details = {"id": str(identifier)} if identifier is not None else None
        super().__init__(
            code=self.code_value,
            message=f"{self.label} not found" + (f": {identifier}" if identifier is not None else ""),
            error_type=f"{self.label.replace(' ', '')}NotFound",
            details=details,
        )


class OrderNotFoundException(_NotFound):
    code_value = OrderCode.ORDER_NOT_FOUND
    label = "Order"


class PaymentNotFoundException(_NotFound):
    code_value = OrderCode.PAYMENT_NOT_FOUND
    label = "Payment"


class RefundNotFoundException(_NotFound):
    code_value = OrderCode.REFUND_NOT_FOUND
    label = "Refund"


class ShipmentNotFoundException(_NotFound):
    code_value = OrderCode.SHIPMENT_NOT_FOUND
    label = "Shipment"


class MismatchNotFoundException(_NotFound):
    code_value = OrderCode.MISMATCH_NOT_FOUND
    label = "Mismatch"


class NotificationNotFoundException(_NotFound):
    code_value = OrderCode.NOTIFICATION_NOT_FOUND
    label = "Notification"


# ---------------------------------------------------------------------------
# Conflict
# ---------------------------------------------------------------------------


class PaymentAlreadyFinalException(ConflictException):
    def __init__(self, payment_id: int, status: str):
        super().__init__(
            code=OrderCode.PAYMENT_ALREADY_FINAL,
            message=f"Payment {payment_id} is already {status}",
            error_type="PaymentAlreadyFinal",
            details={"payment_id": payment_id, "status": status},
        )


class OrderAlreadyFinalException(ConflictException):
    def __init__(self, order_code: str, status: str):
        super().__init__(
            code=OrderCode.ORDER_ALREADY_FINAL,
            message=f"Order {order_code} is already {status}",
            error_type="OrderAlreadyFinal",
            details={"order_code": order_code, "status": status},
        )


class PaymentExpiredException(ConflictException):
    def __init__(self, order_code: str):
        super().__init__(
            code=OrderCode.PAYMENT_EXPIRED,
            message=f"Payment for order {order_code} has expired",
            error_type="PaymentExpired",
            details={"order_code": order_code},
        )


class ResiLockedException(ConflictException):
    def __init__(self, order_code: str, status: str):
        super().__init__(
            code=OrderCode.RESI_LOCKED,
            message=f"Resi of order {order_code} is locked in status {status}",
            error_type="ResiLocked",
            details={"order_code": order_code, "status": status},
            field="resi",
        )


class IdempotencyConflictException(ConflictException):
    def __init__(self, key: str):
        super().__init__(
            code=OrderCode.IDEMPOTENCY_CONFLICT,
            message=f"Idempotency key {key} was already used for a different request",
            error_type="IdempotencyConflict",
            details={"idempotency_key": key},
        )


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class GatewayTimeoutException(GatewayTransientException):
    def __init__(self, gateway: str, operation: str):
        super().__init__(f"{gateway} timed out during {operation}", details={"gateway": gateway, "operation": operation})


class GatewayRejectedException(GatewayPermanentException):
    def __init__(self, gateway: str, status_code: int, message: str, *, details: Optional[dict] = None):
        super().__init__(message, status_code=status_code, details={"gateway": gateway, **(details or {})})


class InvalidSignatureException(GatewayPermanentException):
    def __init__(self, external_id: str):
        super().__init__(
            "Webhook signature mismatch",
            details={"external_id": external_id},
            code=OrderCode.INVALID_SIGNATURE,
        )


class ManualRefundRequiredException(GatewayTransientException):
    """Gateway answered 418: the refund stays PENDING until done by hand."""

    def __init__(self, refund_code: str, message: str):
        super().__init__(message, status_code=418, details={"refund_code": refund_code})
        self.code = OrderCode.MANUAL_REFUND_REQUIRED
        self.error_type = "ManualRefundRequired"


def gateway_error_from_status(gateway: str, status_code: int, message: str, *, details: Optional[dict] = None) -> BusinessException:
    """Classify a gateway HTTP failure into the transient/permanent kinds."""
    if status_code == 418 or status_code >= 500:
        return GatewayTransientException(message, status_code=status_code, details={"gateway": gateway, **(details or {})})
    return GatewayRejectedException(gateway, status_code, message, details=details)
