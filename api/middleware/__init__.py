from .logging import LoggingMiddleware
from .request_id import RequestIDMiddleware, get_request_id, resolve_client_ip

__all__ = ["RequestIDMiddleware", "LoggingMiddleware", "get_request_id", "resolve_client_ip"]
