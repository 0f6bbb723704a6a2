"""
Base gateway client implementing shared concerns: http, retry, logging, error mapping.

Concrete gateways subclass and implement provider-specific request/response
shapes. Failures leave this layer only as GatewayTimeoutException,
GatewayTransientException or GatewayRejectedException.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.logging_config import get_logger
from domain.common.exceptions import GatewayTimeoutException, gateway_error_from_status

logger = get_logger(__name__)


class BaseGatewayClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float = 30.0,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "Content-Type": "application/json"}

    def _auth(self) -> Optional[httpx.Auth]:
        return None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout),
                headers=self._headers(),
                auth=self._auth(),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _send(self, method: str, path: str, *, json: Optional[Mapping[str, Any]] = None) -> httpx.Response:
        """One request, retried on transport errors only."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0, max=2.0),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                return await self.client.request(method, path, json=json)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        json: Optional[Mapping[str, Any]] = None,
    ) -> dict[str, Any]:
        try:
            response = await self._send(method, path, json=json)
        except httpx.TimeoutException as exc:
            self._log("gateway_timeout", operation=operation, path=path)
            raise GatewayTimeoutException(self.provider, operation) from exc
        except httpx.TransportError as exc:
            self._log("gateway_transport_error", operation=operation, path=path, error=str(exc))
            raise GatewayTimeoutException(self.provider, operation) from exc

        body = self._decode(response)
        if response.status_code >= 400:
            message = self._error_message(response.status_code, body)
            self._log("gateway_http_error", operation=operation, status_code=response.status_code, message=message)
            raise gateway_error_from_status(self.provider, response.status_code, message, details={"operation": operation})
        return body

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {"raw_text": response.text[:500]}
        return body if isinstance(body, dict) else {"data": body}

    def _error_message(self, status_code: int, body: Mapping[str, Any]) -> str:
        return str(body.get("status_message") or body.get("error") or body.get("message") or f"HTTP {status_code}")

    def _log(self, event: str, **kwargs) -> None:
        logger.info(event, provider=self.provider, **kwargs)
