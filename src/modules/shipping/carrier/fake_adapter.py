"""Fake carrier adapter: deterministic carrier for testing and development.

Generates mock AWB codes and serves scripted tracking timelines.
Configurable success/failure behaviour for integration testing.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4

from modules.shipping.carrier.port import (
    CarrierPort,
    ShipmentRequest,
    ShipmentResult,
    TrackingEvent,
    TrackingResult,
)
from modules.shipping.exceptions import CarrierUnavailable, ShipmentNotCreated


class FakeCarrier(CarrierPort):
    """Fake carrier that always succeeds by default."""

    def __init__(self) -> None:
        self.should_succeed = True
        self.failure_reason = "Carrier unavailable"
        self.calls: list[dict] = []
        self._timelines: dict[str, list[TrackingEvent]] = {}

    def configure(
        self, should_succeed: bool = True, failure_reason: str = "Carrier unavailable"
    ) -> None:
        """Configure the fake carrier behaviour for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def script(self, awb_code: str, *events: tuple[str, datetime]) -> None:
        """Set the timeline ``get_tracking`` returns for *awb_code*."""
        self._timelines[awb_code] = [
            TrackingEvent(status=status, occurred_at=occurred_at)
            for status, occurred_at in events
        ]

    def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        self.calls.append({"method": "create_shipment", "order_id": request.order_id})
        if not self.should_succeed:
            raise ShipmentNotCreated(self.failure_reason)

        now = datetime.now(UTC)
        awb_code = f"FAKE{uuid4().hex[:10].upper()}"
        self._timelines.setdefault(awb_code, [])
        return ShipmentResult(
            shipment_id=f"ship-{uuid4().hex[:8]}",
            awb_code=awb_code,
            courier_name="Fake Express",
            tracking_url=f"https://fake-carrier.example.com/track/{awb_code}",
            scheduled_pickup_date=now + timedelta(days=1),
            estimated_delivery_date=now + timedelta(days=5),
        )

    def get_tracking(self, awb_code: str) -> TrackingResult:
        self.calls.append({"method": "get_tracking", "awb_code": awb_code})
        if not self.should_succeed:
            raise CarrierUnavailable(self.failure_reason)
        return TrackingResult(
            awb_code=awb_code,
            events=list(self._timelines.get(awb_code, [])),
            courier_name="Fake Express",
            tracking_url=f"https://fake-carrier.example.com/track/{awb_code}",
        )

    def cancel_shipment(self, awb_code: str) -> bool:
        self.calls.append({"method": "cancel_shipment", "awb_code": awb_code})
        if not self.should_succeed:
            return False
        self._timelines.pop(awb_code, None)
        return True
