"""Async REST client for the orders API."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
import structlog

from sync_client.exceptions import ServiceUnavailable, error_from_response
from sync_client.settings import ClientSettings

logger = structlog.get_logger(__name__)


class MarketplaceApi:
    def __init__(
        self,
        settings: ClientSettings,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if settings.access_token:
            headers["Authorization"] = f"Bearer {settings.access_token}"
        self._client = client or httpx.AsyncClient(
            base_url=settings.api_url,
            headers=headers,
            timeout=settings.request_timeout,
        )

    async def __aenter__(self) -> MarketplaceApi:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("api.unreachable", method=method, path=path, error=str(exc))
            raise ServiceUnavailable(str(exc) or "API unreachable.", code="unreachable") from exc
        if response.is_error:
            error = error_from_response(response)
            logger.info(
                "api.error",
                method=method,
                path=path,
                status_code=response.status_code,
                code=error.code,
            )
            raise error
        return response.json()

    # Orders

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/orders/{order_id}/")

    async def list_orders(self, role: str = "buyer", page: int = 1, **filters: Any) -> Dict[str, Any]:
        params = {"role": role, "page": page, **filters}
        return await self._request("GET", "/orders/", params=params)

    async def sync_tracking(self, order_id: str) -> Dict[str, Any]:
        """``{"order": snapshot, "syncFailed": bool, "appended": [...]}``"""
        return await self._request("POST", f"/orders/{order_id}/sync-tracking/")

    async def generate_label(self, order_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/orders/{order_id}/generate-label/")

    async def transition(self, order_id: str, status: str, note: str = "") -> Dict[str, Any]:
        return await self._request("PATCH", f"/orders/{order_id}/", json={"status": status, "note": note})

    async def request_cancellation(self, order_id: str, reason: str = "") -> Dict[str, Any]:
        return await self._request("POST", f"/orders/{order_id}/cancel/", json={"reason": reason})

    async def cancel_pending(self, order_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/orders/{order_id}/cancel-pending/")

    async def checkout(self, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        return await self._request("POST", "/orders/cart-checkout/", headers=headers)

    # Payments

    async def can_retry_payment(self, order_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/orders/{order_id}/can-retry-payment/")

    async def retry_payment(self, order_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/orders/{order_id}/retry-payment/")

    async def verify_payment(self, order_id: str, payment_id: str, signature: str) -> Dict[str, Any]:
        body = {"order_id": order_id, "payment_id": payment_id, "signature": signature}
        return await self._request("POST", "/orders/verify-payment/", json=body)

    async def abort_payment(self, order_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/orders/{order_id}/abort-payment/")

    # Cart

    async def cart_count(self) -> int:
        body = await self._request("GET", "/cart/count/")
        return int(body["count"])
