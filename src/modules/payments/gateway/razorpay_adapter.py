"""Razorpay-style HTTP payment gateway adapter.

Basic-auth JSON API over httpx.  Callback signatures are HMAC-SHA256 of
``"<order_id>|<payment_id>"`` keyed with the API secret.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from modules.payments.exceptions import GatewayUnavailable
from modules.payments.gateway.port import (
    GatewayOrder,
    GatewayPayment,
    PaymentGateway,
    RefundResult,
)
from modules.payments.gateway.signing import signature_matches

logger = structlog.get_logger(__name__)


class RazorpayGateway(PaymentGateway):
    """HTTP adapter for a Razorpay-compatible processor."""

    def __init__(
        self,
        base_url: str,
        key_id: str,
        key_secret: str,
        timeout: float = 10.0,
    ) -> None:
        self.key_id = key_id
        self._secret = key_secret
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            auth=(key_id, key_secret),
            timeout=timeout,
        )

    def close(self) -> None:
        self._client.close()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    def _send(self, method: str, path: str, **kwargs: Any) -> dict:
        response = self._client.request(method, path, **kwargs)
        response.raise_for_status()
        return response.json()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        try:
            return self._send(method, path, **kwargs)
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "payment.gateway_http_error",
                path=path,
                status_code=exc.response.status_code,
            )
            raise GatewayUnavailable(
                f"Gateway answered {exc.response.status_code} for {path}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("payment.gateway_transport_error", path=path, error=str(exc))
            raise GatewayUnavailable(f"Gateway unreachable: {exc}") from exc

    def create_order(self, amount: int, currency: str, receipt: str) -> GatewayOrder:
        body = self._request(
            "POST",
            "/orders",
            json={"amount": amount, "currency": currency, "receipt": receipt},
        )
        return GatewayOrder(
            id=body["id"],
            amount=int(body.get("amount", amount)),
            currency=body.get("currency", currency),
        )

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        body = self._request("GET", f"/payments/{payment_id}")
        created_at = body.get("created_at")
        return GatewayPayment(
            id=body.get("id", payment_id),
            order_id=body.get("order_id") or "",
            amount=int(body.get("amount", 0)),
            status=body.get("status", ""),
            captured_at=datetime.fromtimestamp(created_at, tz=UTC) if created_at else None,
        )

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return signature_matches(self._secret, order_id, payment_id, signature)

    def create_refund(self, payment_id: str, amount: int) -> RefundResult:
        try:
            body = self._request(
                "POST", f"/payments/{payment_id}/refund", json={"amount": amount}
            )
        except GatewayUnavailable as exc:
            return RefundResult(success=False, failure_reason=str(exc))
        return RefundResult(
            success=True,
            gateway_refund_id=body.get("id"),
            gateway_status=body.get("status"),
        )
