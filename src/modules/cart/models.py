"""Cart and cart reservation models.

Business rules implemented:
- One active cart per buyer; a product appears at most once per cart.
- ``quantity`` counts lots of ``lot_size`` units.
- A checkout moves cart lines into a ``CartReservation`` owned by the
  order.  The reservation is RESTORED to the cart when the order is
  cancelled or expires before payment, and CONSUMED when payment succeeds.
"""

from __future__ import annotations

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from modules.core.models import BaseModel
from shared.domain.events import DomainEventMixin


class Cart(DomainEventMixin, BaseModel):
    buyer: models.OneToOneField = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="cart",
    )

    class Meta:
        db_table = "carts"

    @property
    def item_count(self) -> int:
        return self.items.count()

    def __str__(self) -> str:
        return f"Cart({self.buyer_id})"


class CartItem(BaseModel):
    cart: models.ForeignKey = models.ForeignKey(
        "cart.Cart",
        on_delete=models.CASCADE,
        related_name="items",
    )
    product: models.ForeignKey = models.ForeignKey(
        "products.Product",
        on_delete=models.CASCADE,
        related_name="cart_items",
    )
    lot_size = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])

    class Meta:
        db_table = "cart_items"
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["cart", "product"],
                name="cart_items_unique_product",
            ),
            models.CheckConstraint(
                check=models.Q(quantity__gte=1),
                name="cart_items_quantity_positive",
            ),
        ]

    @property
    def units(self) -> int:
        return self.quantity * self.lot_size

    def __str__(self) -> str:
        return f"{self.product_id} x{self.quantity} lots of {self.lot_size}"


class ReservationStatus(models.TextChoices):
    ACTIVE = "ACTIVE", "Active"
    RESTORED = "RESTORED", "Restored to cart"
    CONSUMED = "CONSUMED", "Consumed by payment"


class CartReservation(BaseModel):
    """Cart lines held by a Payment Pending order."""

    order: models.OneToOneField = models.OneToOneField(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="reservation",
    )
    buyer: models.ForeignKey = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="cart_reservations",
    )
    status = models.CharField(
        max_length=20,
        choices=ReservationStatus.choices,
        default=ReservationStatus.ACTIVE,
    )
    resolved_at = models.DateTimeField(null=True, blank=True, default=None)

    class Meta:
        db_table = "cart_reservations"
        indexes = [
            models.Index(fields=["buyer", "status"], name="cart_res_buyer_status_idx"),
        ]

    @property
    def is_active(self) -> bool:
        return self.status == ReservationStatus.ACTIVE

    def __str__(self) -> str:
        return f"Reservation({self.order_id}) [{self.status}]"


class ReservationItem(BaseModel):
    reservation: models.ForeignKey = models.ForeignKey(
        "cart.CartReservation",
        on_delete=models.CASCADE,
        related_name="items",
    )
    product: models.ForeignKey = models.ForeignKey(
        "products.Product",
        on_delete=models.CASCADE,
        related_name="reservation_items",
    )
    lot_size = models.PositiveIntegerField(default=1)
    quantity = models.PositiveIntegerField(default=1)
    # Lots actually put back; lower than ``quantity`` only when the stock
    # cap clipped the merge.
    restored_quantity = models.PositiveIntegerField(null=True, blank=True, default=None)

    class Meta:
        db_table = "cart_reservation_items"
        ordering = ["created_at"]

    def __str__(self) -> str:
        return f"{self.product_id} x{self.quantity} lots of {self.lot_size}"
