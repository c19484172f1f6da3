"""Carrier scan vocabulary → order status."""

from __future__ import annotations

from typing import Optional

from modules.orders.constants import OrderStatus

CARRIER_STATUS_MAP: dict[str, str] = {
    "PICKED UP": OrderStatus.SHIPPED,
    "SHIPPED": OrderStatus.SHIPPED,
    "IN TRANSIT": OrderStatus.IN_TRANSIT,
    "REACHED AT DESTINATION HUB": OrderStatus.IN_TRANSIT,
    "OUT FOR DELIVERY": OrderStatus.OUT_FOR_DELIVERY,
    "DELIVERED": OrderStatus.DELIVERED,
    "UNDELIVERED": OrderStatus.DELIVERY_FAILED,
    "DELIVERY FAILED": OrderStatus.DELIVERY_FAILED,
    "RTO INITIATED": OrderStatus.RTO_INITIATED,
    "RTO DELIVERED": OrderStatus.RTO_DELIVERED,
}


def map_carrier_status(raw: str) -> Optional[str]:
    """Order status for a carrier scan, or ``None`` for scans we ignore."""
    key = " ".join(raw.replace("_", " ").replace("-", " ").upper().split())
    return CARRIER_STATUS_MAP.get(key)
