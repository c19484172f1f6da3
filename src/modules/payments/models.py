"""Payment session ledger.

Every processor session opened for an order is kept, not only the
latest one, so a buyer who pays on an older checkout widget after a
retry is still recognised.  A capture on a session whose order is
already paid (or cancelled with its payment settled) is refunded on its
own, without touching the order's payment status.
"""

from __future__ import annotations

from django.db import models

from modules.core.models import BaseModel


class AttemptStatus(models.TextChoices):
    OPEN = "OPEN", "Open"
    CAPTURED = "CAPTURED", "Captured"
    REFUND_REQUESTED = "REFUND_REQUESTED", "Refund requested"
    REFUNDED = "REFUNDED", "Refunded"


class PaymentAttempt(BaseModel):
    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="payment_sessions",
    )
    payment_order_id: models.CharField = models.CharField(max_length=64, unique=True)
    amount = models.PositiveIntegerField()
    payment_id: models.CharField = models.CharField(max_length=64, blank=True, default="")
    status = models.CharField(
        max_length=20,
        choices=AttemptStatus.choices,
        default=AttemptStatus.OPEN,
    )

    class Meta:
        db_table = "payment_attempts"
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        return f"{self.payment_order_id} ({self.order_id}) [{self.status}]"
