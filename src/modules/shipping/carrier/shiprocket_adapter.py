"""Shiprocket-style HTTP carrier adapter.

Talks to an AWB-based aggregator API over httpx.  Carrier timestamps are
naive local times (``YYYY-MM-DD HH:MM:SS``) and are made aware in the
project time zone.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx
import structlog
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from modules.shipping.carrier.port import (
    CarrierPort,
    ShipmentRequest,
    ShipmentResult,
    TrackingEvent,
    TrackingResult,
)
from modules.shipping.exceptions import CarrierUnavailable, ShipmentNotCreated

logger = structlog.get_logger(__name__)


def _parse_carrier_datetime(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    parsed = parse_datetime(value.strip())
    if parsed is None:
        return None
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


class ShiprocketCarrier(CarrierPort):
    """HTTP adapter for a Shiprocket-compatible carrier API."""

    def __init__(self, base_url: str, token: str, timeout: float = 10.0) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
        )

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

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
                "carrier.http_error",
                path=path,
                status_code=exc.response.status_code,
            )
            raise CarrierUnavailable(
                f"Carrier answered {exc.response.status_code} for {path}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("carrier.transport_error", path=path, error=str(exc))
            raise CarrierUnavailable(f"Carrier unreachable: {exc}") from exc

    # ------------------------------------------------------------------
    # CarrierPort
    # ------------------------------------------------------------------

    def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        order = self._request(
            "POST",
            "/orders/create/adhoc",
            json={
                "order_id": request.order_number,
                "sub_total": request.total_price,
                "order_items": request.line_items,
                "units": request.units,
            },
        )
        shipment_id = order.get("shipment_id")
        if not shipment_id:
            raise ShipmentNotCreated(order.get("message") or "No shipment id returned.")

        assigned = self._request(
            "POST", "/courier/assign/awb", json={"shipment_id": shipment_id}
        )
        data = assigned.get("response", {}).get("data", {})
        awb_code = data.get("awb_code")
        if not awb_code:
            raise ShipmentNotCreated(assigned.get("message") or "AWB not assigned.")

        pickup = self._request(
            "POST", "/courier/generate/pickup", json={"shipment_id": [shipment_id]}
        )
        pickup_data = pickup.get("response", {})

        logger.info(
            "carrier.shipment_created",
            order_id=request.order_id,
            shipment_id=str(shipment_id),
            awb_code=awb_code,
        )
        return ShipmentResult(
            shipment_id=str(shipment_id),
            awb_code=str(awb_code),
            courier_name=data.get("courier_name") or "",
            tracking_url=data.get("track_url"),
            scheduled_pickup_date=_parse_carrier_datetime(
                pickup_data.get("pickup_scheduled_date")
            ),
            estimated_delivery_date=_parse_carrier_datetime(data.get("etd")),
        )

    def get_tracking(self, awb_code: str) -> TrackingResult:
        body = self._request("GET", f"/courier/track/awb/{awb_code}")
        tracking = body.get("tracking_data") or {}
        track = (tracking.get("shipment_track") or [{}])[0]

        events = []
        for activity in tracking.get("shipment_track_activities") or []:
            occurred_at = _parse_carrier_datetime(activity.get("date"))
            status = activity.get("sr-status-label") or activity.get("status")
            if occurred_at is None or not status:
                continue
            events.append(
                TrackingEvent(
                    status=str(status),
                    occurred_at=occurred_at,
                    location=activity.get("location") or "",
                    description=activity.get("activity") or "",
                )
            )
        events.sort(key=lambda event: event.occurred_at)

        return TrackingResult(
            awb_code=awb_code,
            events=events,
            courier_name=track.get("courier_name"),
            tracking_url=tracking.get("track_url"),
            estimated_delivery_date=_parse_carrier_datetime(track.get("edd")),
        )

    def cancel_shipment(self, awb_code: str) -> bool:
        body = self._request(
            "POST", "/orders/cancel/shipment/awbs", json={"awbs": [awb_code]}
        )
        return body.get("status_code", 200) == 200
