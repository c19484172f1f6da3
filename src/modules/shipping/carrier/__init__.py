"""Carrier adapter factory.

Provides get_carrier() / set_carrier() / reset_carrier() to swap
implementations:
- FakeCarrier for development and testing
- ShiprocketCarrier for production
"""

from __future__ import annotations

from django.conf import settings

from modules.shipping.carrier.port import CarrierPort

_carrier_instance: CarrierPort | None = None


def get_carrier() -> CarrierPort:
    """Return the configured carrier adapter (singleton)."""
    global _carrier_instance
    if _carrier_instance is None:
        adapter = settings.CARRIER_ADAPTER
        if adapter == "fake":
            from modules.shipping.carrier.fake_adapter import FakeCarrier

            _carrier_instance = FakeCarrier()
        elif adapter == "shiprocket":
            from modules.shipping.carrier.shiprocket_adapter import ShiprocketCarrier

            _carrier_instance = ShiprocketCarrier(
                base_url=settings.CARRIER_API_URL,
                token=settings.CARRIER_API_TOKEN,
                timeout=settings.CARRIER_TIMEOUT_SECONDS,
            )
        else:
            raise ValueError(f"Unknown carrier adapter: {adapter}")
    return _carrier_instance


def set_carrier(carrier: CarrierPort) -> None:
    """Override the active carrier adapter (useful for tests)."""
    global _carrier_instance
    _carrier_instance = carrier


def reset_carrier() -> None:
    """Reset the carrier singleton (useful for testing)."""
    global _carrier_instance
    _carrier_instance = None
