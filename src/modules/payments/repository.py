"""Django ORM access to payment sessions."""

from __future__ import annotations

from typing import List, Optional

from django.core.exceptions import ValidationError

from modules.payments.models import AttemptStatus, PaymentAttempt


class PaymentAttemptRepository:
    def record(self, order_id: str, payment_order_id: str, amount: int) -> PaymentAttempt:
        return PaymentAttempt.objects.create(
            order_id=order_id, payment_order_id=payment_order_id, amount=amount
        )

    def for_order(self, order_id: str) -> List[PaymentAttempt]:
        """Sessions of *order_id*, newest first."""
        return list(PaymentAttempt.objects.filter(order_id=order_id))

    def get_for_update(self, attempt_id: str) -> Optional[PaymentAttempt]:
        try:
            return PaymentAttempt.objects.select_for_update().filter(id=attempt_id).first()
        except (ValueError, ValidationError):
            return None

    def mark(self, attempt: PaymentAttempt, status: AttemptStatus, payment_id: str = "") -> None:
        attempt.status = status
        if payment_id:
            attempt.payment_id = payment_id
        attempt.save(update_fields=["status", "payment_id"])
