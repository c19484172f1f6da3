"""Order, OrderItem, and OrderStatusHistory models.

Business rules implemented:
- Invalid status transitions rejected (enforced at service layer).
- Each accepted status change appends exactly one history record.
- History is append-only and non-decreasing by ``timestamp``.
- ``version`` grows on every committed mutation; clients use it to drop
  stale snapshots.
- Idempotency via ``idempotency_key``: one checkout key yields at most one
  order per seller.
- OrderItem snapshots product price and lot size at checkout time.
- ``line_total`` is always ``unit_price * quantity * lot_size``.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel
from modules.orders.constants import (
    ACTIVE_SHIPMENT_STATES,
    ORDER_NUMBER_MAX_RETRIES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    OrderStatus,
    PaymentStatus,
)
from shared.domain.events import DomainEventMixin


class Order(DomainEventMixin, BaseModel):
    """Order aggregate root.

    ``order_number`` is a human-readable identifier auto-generated on first
    save (format: ``ORD-YYYYMMDD-XXXXXX``).  The UUIDv7 ``id`` is used for
    all internal references, API lookups and channel topics.

    Carrier fields stay ``NULL`` until a shipment is created.
    """

    order_number: models.CharField = models.CharField(
        max_length=20, unique=True, editable=False
    )
    buyer: models.ForeignKey = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="purchases",
    )
    seller: models.ForeignKey = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="sales",
    )
    status: models.CharField = models.CharField(
        max_length=32,
        choices=OrderStatus.choices,
        default=OrderStatus.PAYMENT_PENDING,
    )
    payment_status: models.CharField = models.CharField(
        max_length=32,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    total_price: models.DecimalField = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    version: models.PositiveIntegerField = models.PositiveIntegerField(default=1)

    # Payment processor session
    payment_order_id: models.CharField = models.CharField(
        max_length=64, blank=True, default=""
    )
    payment_id: models.CharField = models.CharField(max_length=64, blank=True, default="")
    paid_at = models.DateTimeField(null=True, blank=True, default=None)
    payment_attempts: models.PositiveIntegerField = models.PositiveIntegerField(default=0)

    # Carrier metadata
    awb_code = models.CharField(max_length=64, null=True, blank=True, default=None)  # noqa: DJ01
    courier_name = models.CharField(max_length=128, null=True, blank=True, default=None)  # noqa: DJ01
    shipment_id = models.CharField(max_length=64, null=True, blank=True, default=None)  # noqa: DJ01
    tracking_url = models.URLField(max_length=500, null=True, blank=True, default=None)  # noqa: DJ01
    scheduled_pickup_date = models.DateTimeField(null=True, blank=True, default=None)
    estimated_delivery_date = models.DateTimeField(null=True, blank=True, default=None)
    last_tracking_sync_at = models.DateTimeField(null=True, blank=True, default=None)
    tracking_sync_failed: models.BooleanField = models.BooleanField(default=False)

    cancelled_at = models.DateTimeField(null=True, blank=True, default=None)
    cancellation_reason: models.CharField = models.CharField(
        max_length=255, blank=True, default=""
    )
    idempotency_key = models.CharField(  # noqa: DJ01
        max_length=255,
        null=True,
        blank=True,
    )

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="orders_status_idx"),
            models.Index(fields=["-created_at"], name="orders_created_idx"),
            models.Index(fields=["buyer", "-created_at"], name="orders_buyer_idx"),
            models.Index(fields=["seller", "-created_at"], name="orders_seller_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["idempotency_key", "seller"],
                name="orders_idempotency_per_seller",
            ),
        ]

    # ------------------------------------------------------------------
    # State Machine helpers
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` if the order is in a terminal state."""
        return self.status in TERMINAL_STATES

    @property
    def is_shipment_active(self) -> bool:
        return self.status in ACTIVE_SHIPMENT_STATES

    def can_transition_to(self, new_status: str) -> bool:
        """Check whether transitioning to *new_status* is valid."""
        allowed = VALID_TRANSITIONS.get(self.status, set())
        return new_status in allowed

    # ------------------------------------------------------------------
    # Payment window
    # ------------------------------------------------------------------

    @property
    def expires_at(self) -> Optional[datetime]:
        """Instant the unpaid order becomes eligible for the expiration sweep."""
        if self.created_at is None:
            return None
        return self.created_at + timedelta(minutes=settings.ORDER_PAYMENT_WINDOW_MINUTES)

    def is_participant(self, user_id: Any) -> bool:
        return str(user_id) in {str(self.buyer_id), str(self.seller_id)}

    # ------------------------------------------------------------------
    # Order number generation
    # ------------------------------------------------------------------

    @staticmethod
    def generate_order_number() -> str:
        """Generate a human-readable order number: ``ORD-YYYYMMDD-XXXXXX``."""
        now = timezone.now()
        suffix = secrets.token_hex(3).upper()
        return f"ORD-{now:%Y%m%d}-{suffix}"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self.order_number:
            for _attempt in range(ORDER_NUMBER_MAX_RETRIES):
                candidate = self.generate_order_number()
                if not Order.objects.filter(order_number=candidate).exists():
                    self.order_number = candidate
                    break
            else:
                raise RuntimeError(
                    f"Failed to generate unique order_number after "
                    f"{ORDER_NUMBER_MAX_RETRIES} attempts"
                )
        super().save(*args, **kwargs)

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        return f"{self.order_number} ({self.status})"


class OrderItem(BaseModel):
    """Line item linking an Order to a Product.

    ``unit_price`` and ``lot_size`` are **snapshots** taken at checkout.
    ``quantity`` counts lots; ``line_total`` is recalculated on every save.
    """

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="items",
    )
    product: models.ForeignKey = models.ForeignKey(
        "products.Product",
        on_delete=models.PROTECT,
        related_name="order_items",
    )
    quantity: models.PositiveIntegerField = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1)],
    )
    lot_size: models.PositiveIntegerField = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1)],
    )
    unit_price: models.DecimalField = models.DecimalField(
        max_digits=10,
        decimal_places=2,
    )
    line_total: models.DecimalField = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        editable=False,
    )

    class Meta:
        db_table = "order_items"
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(
                check=models.Q(quantity__gte=1),
                name="order_items_quantity_positive",
            ),
        ]

    @property
    def units(self) -> int:
        return self.quantity * self.lot_size

    def clean(self) -> None:
        super().clean()
        if self.quantity is not None and self.quantity < 1:
            raise ValidationError({"quantity": "Quantity must be at least 1."})

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self.unit_price:
            unit_price = getattr(self.product, "price", None)
            if unit_price is None:
                raise ValidationError({"unit_price": "Product price is required."})
            self.unit_price = unit_price
        self.line_total = self.unit_price * self.units
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.product_id} x{self.quantity} lots of {self.lot_size}"


class OrderStatusHistory(BaseModel):
    """Append-only audit trail for order status transitions.

    ``timestamp`` is server-assigned, except for entries merged from the
    carrier where it is the scan time (clamped so the trail never goes
    back in time).  ``user`` is ``None`` for system-driven changes
    (expiration sweep, carrier reconciliation).
    """

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="status_history",
    )
    old_status: models.CharField = models.CharField(  # noqa: DJ01
        max_length=32,
        choices=OrderStatus.choices,
        null=True,
        blank=True,
    )
    new_status: models.CharField = models.CharField(
        max_length=32,
        choices=OrderStatus.choices,
    )
    timestamp = models.DateTimeField(default=timezone.now)
    user: models.ForeignKey = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    note: models.TextField = models.TextField(blank=True, default="")

    class Meta:
        db_table = "order_status_history"
        ordering = ["timestamp", "id"]
        indexes = [
            models.Index(
                fields=["order", "timestamp"],
                name="osh_order_timestamp_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.order_id} : {self.old_status} -> {self.new_status}"
