"""Order DTOs for the Service Layer.

Framework-agnostic data transfer objects using Pydantic v2.
These are the contracts between the API layer (DRF Serializers),
the Service layer and the real-time channel.  DTOs are immutable
(``frozen=True``).

- ``CheckoutDTO``: input for cart checkout.
- ``BuyNowDTO``: input for a single-product purchase that skips the cart.
- ``TransitionOrderDTO``: input for a generic status change.
- ``OrderSnapshotDTO``: full order snapshot, identical for the REST
  detail endpoint and ``orderUpdated`` push events.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from modules.orders.constants import OrderStatus

if TYPE_CHECKING:
    from modules.orders.models import Order, OrderItem, OrderStatusHistory


# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


class CheckoutDTO(BaseModel):
    """Immutable DTO for a cart checkout request.

    The whole active cart is checked out; lines are grouped per seller.
    """

    model_config = ConfigDict(frozen=True)

    buyer_id: int
    idempotency_key: Optional[str] = None


class BuyNowDTO(BaseModel):
    """Immutable DTO for buying one product straight from its page."""

    model_config = ConfigDict(frozen=True)

    buyer_id: int
    product_id: UUID
    quantity: int = Field(ge=1)
    idempotency_key: Optional[str] = None


class TransitionOrderDTO(BaseModel):
    """Immutable DTO for a status change requested through the API."""

    model_config = ConfigDict(frozen=True)

    order_id: UUID
    new_status: str
    actor_id: Optional[int] = None
    note: str = ""

    @field_validator("new_status")
    @classmethod
    def status_must_be_known(cls, v: str) -> str:
        if v not in OrderStatus.values:
            raise ValueError(f"Unknown order status {v!r}.")
        return v


# ---------------------------------------------------------------------------
# Output DTOs
# ---------------------------------------------------------------------------


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """camelCase, JSON-safe dict used by the API and the channel."""
        return self.model_dump(mode="json", by_alias=True)


class OrderItemSnapshotDTO(_WireModel):
    product_id: UUID
    product_name: str
    product_sku: str
    quantity: int
    lot_size: int
    unit_price: Decimal
    line_total: Decimal

    @classmethod
    def from_entity(cls, item: OrderItem) -> OrderItemSnapshotDTO:
        return cls(
            product_id=item.product_id,
            product_name=item.product.name,  # type: ignore[attr-defined]
            product_sku=item.product.sku,  # type: ignore[attr-defined]
            quantity=item.quantity,
            lot_size=item.lot_size,
            unit_price=item.unit_price,
            line_total=item.line_total,
        )


class StatusHistoryEntryDTO(_WireModel):
    status: str
    timestamp: datetime
    note: str = ""

    @classmethod
    def from_entity(cls, history: OrderStatusHistory) -> StatusHistoryEntryDTO:
        return cls(
            status=history.new_status,
            timestamp=history.timestamp,
            note=history.note,
        )


class OrderSnapshotDTO(_WireModel):
    """Everything a client view needs to render one order."""

    order_id: UUID
    order_number: str
    buyer_id: str
    seller_id: str
    status: str
    payment_status: str
    total_price: Decimal
    version: int
    items: List[OrderItemSnapshotDTO]
    status_history: List[StatusHistoryEntryDTO]
    payment_order_id: str = ""
    awb_code: Optional[str] = None
    courier_name: Optional[str] = None
    shipment_id: Optional[str] = None
    tracking_url: Optional[str] = None
    scheduled_pickup_date: Optional[datetime] = None
    estimated_delivery_date: Optional[datetime] = None
    last_tracking_sync_at: Optional[datetime] = None
    tracking_sync_failed: bool = False
    created_at: datetime
    updated_at: datetime
    expires_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: str = ""

    @classmethod
    def from_entity(cls, order: Order) -> OrderSnapshotDTO:
        """Build a snapshot from an Order model instance.

        Assumes ``items__product`` and ``status_history`` are prefetched.
        """
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            buyer_id=str(order.buyer_id),
            seller_id=str(order.seller_id),
            status=order.status,
            payment_status=order.payment_status,
            total_price=order.total_price,
            version=order.version,
            items=[OrderItemSnapshotDTO.from_entity(i) for i in order.items.all()],
            status_history=[
                StatusHistoryEntryDTO.from_entity(h) for h in order.status_history.all()
            ],
            payment_order_id=order.payment_order_id,
            awb_code=order.awb_code,
            courier_name=order.courier_name,
            shipment_id=order.shipment_id,
            tracking_url=order.tracking_url,
            scheduled_pickup_date=order.scheduled_pickup_date,
            estimated_delivery_date=order.estimated_delivery_date,
            last_tracking_sync_at=order.last_tracking_sync_at,
            tracking_sync_failed=order.tracking_sync_failed,
            created_at=order.created_at,
            updated_at=order.updated_at,
            expires_at=order.expires_at,
            cancelled_at=order.cancelled_at,
            cancellation_reason=order.cancellation_reason,
        )
