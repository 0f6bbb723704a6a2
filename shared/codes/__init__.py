"""
Shared business codes used across layers (Domain/Core/API).

`BusinessCode` holds the generic envelope codes; order-lifecycle failures
live in `OrderCode` (7xxxx) and gateway status tables in `payment_codes`.
"""
from enum import IntEnum

from .order_codes import OrderCode


class BusinessCode(IntEnum):
    """Generic response codes carried in the `code` field of every response."""

    SUCCESS = 0

    # Parameter errors (1xxxx)
    PARAM_ERROR = 10000
    PARAM_VALIDATION_ERROR = 10003

    # Business errors (2xxxx)
    NOT_FOUND = 20006
    CONFLICT = 20007

    # Authorization errors (3xxxx)
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # System errors (4xxxx)
    SYSTEM_ERROR = 40000
    SERVICE_UNAVAILABLE = 40003

    # Rate limiting (5xxxx)
    TOO_MANY_REQUESTS = 50001


__all__ = ["BusinessCode", "OrderCode"]
