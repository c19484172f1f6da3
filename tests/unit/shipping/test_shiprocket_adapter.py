"""Unit tests for the HTTP carrier adapter (httpx mocked with respx)."""

from __future__ import annotations

import httpx
import pytest
import respx
from django.utils import timezone

from modules.shipping.carrier.port import ShipmentRequest
from modules.shipping.carrier.shiprocket_adapter import ShiprocketCarrier
from modules.shipping.exceptions import CarrierUnavailable, ShipmentNotCreated

pytestmark = pytest.mark.unit

BASE_URL = "https://carrier.test/v1"


@pytest.fixture()
def adapter():
    carrier = ShiprocketCarrier(base_url=BASE_URL, token="carrier-token")
    yield carrier
    carrier.close()


@pytest.fixture()
def shipment_request():
    return ShipmentRequest(
        order_id="0190b1f2-0000-7000-8000-000000000001",
        order_number="ORD-20260101-ABC123",
        total_price="100.00",
        units=10,
    )


class TestCreateShipment:
    @respx.mock
    def test_books_pickup_and_returns_awb(self, adapter, shipment_request):
        created = respx.post(f"{BASE_URL}/orders/create/adhoc").mock(
            return_value=httpx.Response(200, json={"shipment_id": 5521})
        )
        respx.post(f"{BASE_URL}/courier/assign/awb").mock(
            return_value=httpx.Response(
                200,
                json={
                    "response": {
                        "data": {
                            "awb_code": "AWB998877",
                            "courier_name": "Delhivery",
                            "track_url": "https://track.test/AWB998877",
                            "etd": "2026-01-06 18:00:00",
                        }
                    }
                },
            )
        )
        respx.post(f"{BASE_URL}/courier/generate/pickup").mock(
            return_value=httpx.Response(
                200, json={"response": {"pickup_scheduled_date": "2026-01-02 10:00:00"}}
            )
        )

        result = adapter.create_shipment(shipment_request)

        assert result.shipment_id == "5521"
        assert result.awb_code == "AWB998877"
        assert result.courier_name == "Delhivery"
        assert timezone.is_aware(result.estimated_delivery_date)
        assert result.scheduled_pickup_date < result.estimated_delivery_date
        assert created.calls.last.request.headers["Authorization"] == "Bearer carrier-token"

    @respx.mock
    def test_missing_awb_is_a_refusal(self, adapter, shipment_request):
        respx.post(f"{BASE_URL}/orders/create/adhoc").mock(
            return_value=httpx.Response(200, json={"shipment_id": 5521})
        )
        respx.post(f"{BASE_URL}/courier/assign/awb").mock(
            return_value=httpx.Response(200, json={"message": "No courier serviceable"})
        )

        with pytest.raises(ShipmentNotCreated, match="No courier serviceable"):
            adapter.create_shipment(shipment_request)

    @respx.mock
    def test_server_error_is_unavailable(self, adapter, shipment_request):
        respx.post(f"{BASE_URL}/orders/create/adhoc").mock(return_value=httpx.Response(500))

        with pytest.raises(CarrierUnavailable):
            adapter.create_shipment(shipment_request)


class TestGetTracking:
    @respx.mock
    def test_activities_become_sorted_events(self, adapter):
        respx.get(f"{BASE_URL}/courier/track/awb/AWB1").mock(
            return_value=httpx.Response(
                200,
                json={
                    "tracking_data": {
                        "track_url": "https://track.test/AWB1",
                        "shipment_track": [{"courier_name": "Delhivery"}],
                        "shipment_track_activities": [
                            {
                                "date": "2026-01-03 09:00:00",
                                "sr-status-label": "IN TRANSIT",
                                "location": "Nagpur Hub",
                            },
                            {
                                "date": "2026-01-02 17:30:00",
                                "sr-status-label": "PICKED UP",
                                "activity": "Shipment picked up",
                            },
                            {"date": None, "sr-status-label": "MANIFESTED"},
                        ],
                    }
                },
            )
        )

        result = adapter.get_tracking("AWB1")

        assert [e.status for e in result.events] == ["PICKED UP", "IN TRANSIT"]
        assert result.events[0].description == "Shipment picked up"
        assert result.events[1].location == "Nagpur Hub"
        assert all(timezone.is_aware(e.occurred_at) for e in result.events)
        assert result.courier_name == "Delhivery"

    @respx.mock
    def test_empty_timeline(self, adapter):
        respx.get(f"{BASE_URL}/courier/track/awb/AWB2").mock(
            return_value=httpx.Response(200, json={"tracking_data": {}})
        )
        assert adapter.get_tracking("AWB2").events == []

    @respx.mock
    def test_server_error_is_unavailable(self, adapter):
        respx.get(f"{BASE_URL}/courier/track/awb/AWB3").mock(
            return_value=httpx.Response(503)
        )
        with pytest.raises(CarrierUnavailable, match="503"):
            adapter.get_tracking("AWB3")
