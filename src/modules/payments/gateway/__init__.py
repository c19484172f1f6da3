"""Payment gateway factory.

Provides get_gateway() / set_gateway() / reset_gateway() to swap
implementations:
- FakeGateway for development and testing
- RazorpayGateway for production
"""

from __future__ import annotations

from django.conf import settings

from modules.payments.gateway.port import PaymentGateway

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """Return the configured payment gateway (singleton)."""
    global _current_gateway
    if _current_gateway is None:
        name = settings.PAYMENT_GATEWAY
        if name == "fake":
            from modules.payments.gateway.fake_adapter import FakeGateway

            _current_gateway = FakeGateway()
        elif name == "razorpay":
            from modules.payments.gateway.razorpay_adapter import RazorpayGateway

            _current_gateway = RazorpayGateway(
                base_url=settings.PAYMENT_GATEWAY_URL,
                key_id=settings.PAYMENT_KEY_ID,
                key_secret=settings.PAYMENT_KEY_SECRET,
                timeout=settings.PAYMENT_TIMEOUT_SECONDS,
            )
        else:
            raise ValueError(f"Unknown payment gateway: {name}")
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to the configured gateway."""
    global _current_gateway
    _current_gateway = None
