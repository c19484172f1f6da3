"""Payment gateway port (abstract interface).

Defines the contract that all payment gateway adapters must implement.
Swapping between FakeGateway (dev/test) and RazorpayGateway
(production) needs no change in the coordinator.

Amounts crossing this boundary are integers in minor units (paise).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

CAPTURED_STATES = frozenset({"captured", "authorized"})


@dataclass(frozen=True)
class GatewayOrder:
    """A processor-side payment session."""

    id: str
    amount: int
    currency: str


@dataclass(frozen=True)
class GatewayPayment:
    id: str
    order_id: str
    amount: int
    status: str
    captured_at: datetime | None = None

    @property
    def is_captured(self) -> bool:
        return self.status in CAPTURED_STATES


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund attempt."""

    success: bool
    gateway_refund_id: str | None = None
    gateway_status: str | None = None
    failure_reason: str | None = None


class PaymentGateway(ABC):
    """Abstract payment gateway interface.

    Transport or server errors raise ``GatewayUnavailable``.
    """

    key_id: str = ""

    @abstractmethod
    def create_order(self, amount: int, currency: str, receipt: str) -> GatewayOrder:
        """Open a payment session for *amount* minor units."""

    @abstractmethod
    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        """Look up a payment as the processor sees it."""

    @abstractmethod
    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Check the success-callback signature for a session/payment pair."""

    @abstractmethod
    def create_refund(self, payment_id: str, amount: int) -> RefundResult:
        """Refund a captured payment."""
