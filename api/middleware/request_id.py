"""
请求上下文中间件

Generates or propagates `X-Request-ID` and binds it, together with the caller
identity (client IP, admin email, gateway webhook), to the structlog context
so every service log line of the request carries it.
"""
import uuid
from typing import Optional

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

WEBHOOK_PATH_SUFFIX = "/payments/webhook"


def resolve_client_ip(request: Request) -> str:
    # 代理链取第一个地址
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """请求ID与调用方身份绑定"""

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        client_ip = resolve_client_ip(request)

        request.state.request_id = request_id
        request.state.client_ip = client_ip

        context = {
            "request_id": request_id,
            "client_ip": client_ip,
            "method": request.method,
            "path": request.url.path,
        }
        admin_email = request.headers.get("X-Admin-Email")
        if admin_email:
            context["admin"] = admin_email
        if request.url.path.endswith(WEBHOOK_PATH_SUFFIX):
            context["source"] = "payment_gateway"

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**context)

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response


def get_request_id() -> Optional[str]:
    """当前请求的 request_id，不在请求上下文中时为 None"""
    return structlog.contextvars.get_contextvars().get("request_id")
