"""Carrier port: abstract interface for shipping carrier integrations.

All carrier adapters implement this interface.  The reconciler and the
label flow program against the port; adapters are swapped via the
``CARRIER_ADAPTER`` setting.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class ShipmentResult:
    """Carrier assignment returned by ``create_shipment``."""

    shipment_id: str
    awb_code: str
    courier_name: str
    tracking_url: str | None = None
    scheduled_pickup_date: datetime | None = None
    estimated_delivery_date: datetime | None = None


@dataclass(frozen=True)
class TrackingEvent:
    """One scan reported by the carrier, in the carrier's vocabulary."""

    status: str
    occurred_at: datetime
    location: str = ""
    description: str = ""


@dataclass(frozen=True)
class TrackingResult:
    awb_code: str
    events: list[TrackingEvent] = field(default_factory=list)
    courier_name: str | None = None
    tracking_url: str | None = None
    estimated_delivery_date: datetime | None = None


@dataclass(frozen=True)
class ShipmentRequest:
    """Everything the carrier needs to book a pickup for an order."""

    order_id: str
    order_number: str
    total_price: str
    units: int
    line_items: list[dict] = field(default_factory=list)


class CarrierPort(ABC):
    """Abstract interface for carrier adapters.

    Transport or server errors raise ``CarrierUnavailable``; a carrier
    that answers but refuses the booking raises ``ShipmentNotCreated``.
    """

    @abstractmethod
    def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        """Book a shipment and assign an AWB."""

    @abstractmethod
    def get_tracking(self, awb_code: str) -> TrackingResult:
        """Fetch the live tracking timeline for *awb_code*."""

    @abstractmethod
    def cancel_shipment(self, awb_code: str) -> bool:
        """Cancel a booked shipment. Returns ``True`` when the carrier accepted."""
