"""Configurable fake payment gateway for development and testing.

Simulates the processor without external calls.  Sessions and payments
live in memory; ``simulate_payment`` plays the buyer completing the
checkout widget and returns what the success callback would carry.
"""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from modules.payments.exceptions import GatewayUnavailable
from modules.payments.gateway.port import (
    GatewayOrder,
    GatewayPayment,
    PaymentGateway,
    RefundResult,
)
from modules.payments.gateway.signing import sign, signature_matches

FAKE_SECRET = "fake-gateway-secret"


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    key_id = "rzp_test_fake"

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Gateway unavailable"
        self.calls: list[dict] = []
        self.orders: dict[str, GatewayOrder] = {}
        self.payments: dict[str, GatewayPayment] = {}

    def configure(self, should_succeed: bool, failure_reason: str = "Gateway unavailable") -> None:
        """Configure gateway behaviour at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def simulate_payment(
        self,
        payment_order_id: str,
        amount: int | None = None,
        captured_at: datetime | None = None,
        status: str = "captured",
    ) -> tuple[str, str]:
        """Record a payment against a session; returns ``(payment_id, signature)``."""
        session = self.orders[payment_order_id]
        payment_id = f"pay_{uuid4().hex[:14]}"
        self.payments[payment_id] = GatewayPayment(
            id=payment_id,
            order_id=payment_order_id,
            amount=session.amount if amount is None else amount,
            status=status,
            captured_at=captured_at or datetime.now(UTC),
        )
        return payment_id, sign(FAKE_SECRET, payment_order_id, payment_id)

    def create_order(self, amount: int, currency: str, receipt: str) -> GatewayOrder:
        self.calls.append(
            {"method": "create_order", "amount": amount, "currency": currency, "receipt": receipt}
        )
        if not self.should_succeed:
            raise GatewayUnavailable(self.failure_reason)
        session = GatewayOrder(id=f"order_{uuid4().hex[:14]}", amount=amount, currency=currency)
        self.orders[session.id] = session
        return session

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        self.calls.append({"method": "fetch_payment", "payment_id": payment_id})
        if not self.should_succeed:
            raise GatewayUnavailable(self.failure_reason)
        payment = self.payments.get(payment_id)
        if payment is None:
            return GatewayPayment(id=payment_id, order_id="", amount=0, status="failed")
        return payment

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return signature_matches(FAKE_SECRET, order_id, payment_id, signature)

    def create_refund(self, payment_id: str, amount: int) -> RefundResult:
        self.calls.append({"method": "create_refund", "payment_id": payment_id, "amount": amount})
        if self.should_succeed:
            return RefundResult(
                success=True,
                gateway_refund_id=f"rfnd_{uuid4().hex[:12]}",
                gateway_status="processed",
            )
        return RefundResult(success=False, failure_reason=self.failure_reason)
